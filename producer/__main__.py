import asyncio
import signal
import traceback

from producer.core.database import (
    DatabaseStorage,
    connect_database,
    teardown_database,
)
from producer.core.logger import log_startup_info, logger
from producer.core.models import database, settings
from producer.crawlers.torrentio import create_crawler
from producer.utils.http_client import http_client_manager


async def main():
    log_startup_info(settings)

    await connect_database()
    crawler = create_crawler(DatabaseStorage(database))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, crawler.stop)
        except NotImplementedError:
            pass

    try:
        await crawler.execute()
    finally:
        await http_client_manager.close()
        await teardown_database()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.log("PRODUCER", "Producer stopped by user")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.exception(traceback.format_exc())
    finally:
        logger.log("PRODUCER", "Producer Shutdown")
