STANDARD_LOG_LEVELS = {
    "DEBUG": {"icon": "🕸️", "loguru_color": "<fg #DC5F00>"},
    "INFO": {"icon": "📰", "loguru_color": "<fg #FC5F39>"},
    "WARNING": {"icon": "⚠️", "loguru_color": "<fg #DC5F00>"},
    "ERROR": {"icon": "❌", "loguru_color": "<fg #ff0000>"},
    "CRITICAL": {"icon": "💀", "loguru_color": "<fg #ff0000>"},
}

CUSTOM_LOG_LEVELS = {
    "PRODUCER": {
        "icon": "🌠",
        "loguru_color": "<fg #7871d6>",
        "no": 50,
    },
    "CRAWLER": {
        "icon": "👻",
        "loguru_color": "<fg #d6bb71>",
        "no": 25,
    },
    "DATABASE": {
        "icon": "💾",
        "loguru_color": "<fg #5aa5d9>",
        "no": 22,
    },
}
