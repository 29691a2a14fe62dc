from abc import ABC, abstractmethod
from typing import List

from producer.core.database import DataStorage
from producer.core.logger import logger
from producer.crawlers.models import IngestedTorrent


class BaseCrawler(ABC):
    source: str = ""

    def __init__(self, storage: DataStorage, log=logger):
        self.storage = storage
        self.log = log

    @abstractmethod
    async def execute(self):
        pass

    async def insert_torrents(self, torrents: List[IngestedTorrent]) -> bool:
        if not torrents:
            return True

        try:
            inserted = await self.storage.insert_batch(torrents)
        except Exception as e:
            self.log.error(f"Failed to insert {len(torrents)} torrents from {self.source}: {e}")
            return False

        if not inserted:
            self.log.error(f"Storage rejected {len(torrents)} torrents from {self.source}")
            return False

        self.log.log("CRAWLER", f"Ingested {len(torrents)} torrents from {self.source}")
        return True
