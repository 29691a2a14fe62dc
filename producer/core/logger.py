import sys

from loguru import logger

from producer.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS
from producer.core.models import settings


def setupLogger(level: str):
    # Configure custom log levels
    for level_name, level_config in CUSTOM_LOG_LEVELS.items():
        logger.level(
            level_name,
            no=level_config["no"],
            icon=level_config["icon"],
            color=level_config["loguru_color"],
        )

    # Configure standard log levels (override defaults)
    for level_name, level_config in STANDARD_LOG_LEVELS.items():
        logger.level(
            level_name, icon=level_config["icon"], color=level_config["loguru_color"]
        )

    log_format = (
        "<white>{time:YYYY-MM-DD}</white> <magenta>{time:HH:mm:ss}</magenta> | "
        "<level>{level.icon}</level> <level>{level}</level> | "
        "<cyan>{module}</cyan>.<cyan>{function}</cyan> - <level>{message}</level>"
    )

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": level,
                "format": log_format,
                "backtrace": False,
                "diagnose": False,
                "enqueue": True,
            }
        ]
    )


setupLogger(settings.LOG_LEVEL)


def log_crawler_error(source: str, instance_name: str, imdb_id: str, error: Exception):
    logger.warning(
        f"Exception while getting torrents for {imdb_id} with {source} ({instance_name}), you are most likely being ratelimited: {error}"
    )


def log_startup_info(settings):
    logger.log(
        "PRODUCER",
        f"Database ({settings.DATABASE_TYPE}): {settings.DATABASE_PATH if settings.DATABASE_TYPE == 'sqlite' else settings.DATABASE_URL}",
    )
    logger.log(
        "PRODUCER",
        f"HTTP Client: limit={settings.HTTP_CLIENT_LIMIT} per_host={settings.HTTP_CLIENT_LIMIT_PER_HOST} timeout={settings.HTTP_CLIENT_TIMEOUT_TOTAL}s",
    )
    logger.log(
        "PRODUCER",
        f"Start Cursor: {settings.CRAWLER_START_CURSOR or 'beginning'}",
    )

    for instance in settings.TORRENTIO_INSTANCES:
        rate_limit = instance.rate_limit
        logger.log(
            "PRODUCER",
            f"Torrentio Instance: {instance.name} - {instance.url} - Batch Size: {rate_limit.batch_size} - Concurrency: {rate_limit.max_concurrency} - Exception Limit: {rate_limit.exception_limit} - Break: {rate_limit.exception_interval_seconds}s - Retries: {rate_limit.retry_count}",
        )
