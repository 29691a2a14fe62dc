import os
import time
from typing import List, Optional, Protocol

from databases import Database

from producer.core.logger import logger
from producer.core.models import database, settings
from producer.crawlers.models import CandidateItem, IngestedTorrent


class DataStorage(Protocol):
    async def get_total_available_count(self) -> int: ...

    async def get_next_batch(
        self, year: int, batch_size: int, after_cursor: Optional[str]
    ) -> List[CandidateItem]: ...

    async def insert_batch(self, torrents: List[IngestedTorrent]) -> bool: ...


def _is_sqlite(db: Database):
    return db.url.dialect == "sqlite"


async def setup_database(db: Database = database):
    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS imdb_metadata (
                imdb_id TEXT PRIMARY KEY,
                title TEXT,
                category TEXT,
                year INTEGER,
                adult BOOLEAN DEFAULT FALSE
            )
        """
    )

    await db.execute(
        """
            CREATE INDEX IF NOT EXISTS idx_imdb_metadata_category_year
            ON imdb_metadata (category, year)
        """
    )

    await db.execute(
        """
            CREATE TABLE IF NOT EXISTS ingested_torrents (
                name TEXT,
                source TEXT,
                category TEXT,
                info_hash TEXT,
                size BIGINT,
                seeders INTEGER,
                leechers INTEGER,
                imdb TEXT,
                processed BOOLEAN DEFAULT FALSE,
                created_at INTEGER,
                updated_at INTEGER
            )
        """
    )

    await db.execute(
        """
            CREATE UNIQUE INDEX IF NOT EXISTS ingested_torrent_unique_source_info_hash
            ON ingested_torrents (source, info_hash)
        """
    )


async def connect_database():
    if settings.DATABASE_TYPE == "sqlite":
        directory = os.path.dirname(settings.DATABASE_PATH)
        if directory:
            os.makedirs(directory, exist_ok=True)

    await database.connect()
    await setup_database(database)
    logger.log("DATABASE", f"Database connected ({settings.DATABASE_TYPE})")


async def teardown_database():
    if database.is_connected:
        await database.disconnect()
        logger.log("DATABASE", "Database disconnected")


class DatabaseStorage:
    def __init__(self, db: Database = database, chunk_size: int = 500):
        self.db = db
        self.chunk_size = chunk_size

        is_sqlite = _is_sqlite(db)
        self.or_ignore = "OR IGNORE" if is_sqlite else ""
        self.on_conflict_do_nothing = "" if is_sqlite else "ON CONFLICT DO NOTHING"

    async def get_total_available_count(self):
        count = await self.db.fetch_val(
            "SELECT COUNT(*) FROM imdb_metadata WHERE category = 'movie'"
        )
        return int(count or 0)

    async def get_next_batch(
        self, year: int, batch_size: int, after_cursor: Optional[str]
    ):
        rows = await self.db.fetch_all(
            """
            SELECT imdb_id, title, year FROM imdb_metadata
            WHERE category = 'movie'
              AND year <= :year
              AND imdb_id > :after
            ORDER BY imdb_id
            LIMIT :limit
            """,
            {"year": year, "after": after_cursor or "", "limit": batch_size},
        )
        return [
            CandidateItem(imdb_id=row["imdb_id"], title=row["title"], year=row["year"])
            for row in rows
        ]

    async def insert_batch(self, torrents: List[IngestedTorrent]):
        if not torrents:
            return True

        query = f"""
            INSERT {self.or_ignore} INTO ingested_torrents
            (name, source, category, info_hash, size, seeders, leechers, imdb, processed, created_at, updated_at)
            VALUES (:name, :source, :category, :info_hash, :size, :seeders, :leechers, :imdb, :processed, :created_at, :updated_at)
            {self.on_conflict_do_nothing}
        """

        for i in range(0, len(torrents), self.chunk_size):
            chunk = torrents[i : i + self.chunk_size]
            chunk_timestamp = int(time.time())

            values = []
            for torrent in chunk:
                row = torrent.model_dump()
                row["created_at"] = chunk_timestamp
                row["updated_at"] = chunk_timestamp
                values.append(row)

            await self.db.execute_many(query, values)

        return True
