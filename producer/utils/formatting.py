SIZE_MULTIPLIERS = {
    "GB": 1073741824,
    "MB": 1048576,
}


def size_to_bytes(value: str, unit: str):
    # Unknown units count as zero bytes rather than missing.
    multiplier = SIZE_MULTIPLIERS.get(unit)
    if multiplier is None:
        return 0

    return int(float(value) * multiplier)
