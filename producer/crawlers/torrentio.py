import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp
import orjson

from producer.core.database import DataStorage
from producer.core.logger import log_crawler_error, logger
from producer.core.models import settings
from producer.crawlers.base import BaseCrawler
from producer.crawlers.models import (
    BatchResult,
    CandidateItem,
    CrawlState,
    IngestedTorrent,
    ProviderInstance,
)
from producer.crawlers.resilience import (
    BackoffSignal,
    CircuitBreaker,
    ResiliencyPolicy,
)
from producer.utils.formatting import size_to_bytes
from producer.utils.http_client import HttpClientManager, http_client_manager

SIZE_PATTERN = re.compile(r"(\d+(\.\d+)?) (GB|MB)")
MAXIMUM_EMPTY_ITEMS_COUNT = 5

SOURCE = "Torrentio"
CATEGORY = "movies"  # only movies are crawled for now
MOVIE_SLUG = "movie/{}.json"
URL = "sort=size%7Cqualityfilter=other,scr,cam,unknown/stream/{}"


class ScrapeError(Exception):
    pass


def parse_size(title: str) -> Optional[int]:
    match = SIZE_PATTERN.search(title)
    if not match:
        return None

    return size_to_bytes(match.group(1), match.group(3))


def parse_torrent(
    instance: ProviderInstance, item: dict, imdb_id: str
) -> Optional[IngestedTorrent]:
    if not isinstance(item, dict):
        return None

    title = item.get("title")
    info_hash = item.get("infoHash")

    if not title or not info_hash:
        return None

    name = title.split("\n", 1)[0].replace(".", " ").rstrip(".")
    if not name:
        return None

    return IngestedTorrent(
        source=f"{SOURCE}_{instance.name}",
        info_hash=info_hash,
        name=name,
        category=CATEGORY,
        imdb=imdb_id,
        size=parse_size(title),
    )


def build_request_url(instance: ProviderInstance, imdb_id: str) -> str:
    return f"{instance.url}/{URL.format(MOVIE_SLUG.format(imdb_id))}"


class TorrentioCrawler(BaseCrawler):
    source = SOURCE

    def __init__(
        self,
        storage: DataStorage,
        instances: List[ProviderInstance],
        http_client: HttpClientManager = http_client_manager,
        log=logger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        start_cursor: Optional[str] = None,
    ):
        super().__init__(storage, log)
        self.instances = instances
        self.http_client = http_client
        self.start_cursor = start_cursor
        self._sleep = sleep
        self._clock = clock
        self.stop_event = asyncio.Event()

    def stop(self):
        if not self.stop_event.is_set():
            self.log.log("CRAWLER", f"Stopping {self.source} crawler")
        self.stop_event.set()

    async def execute(self) -> Dict[str, CrawlState]:
        try:
            total_record_count = await self.storage.get_total_available_count()
        except Exception as e:
            self.log.error(f"Failed to get total record count from metadata: {e}")
            return {}

        self.log.log("CRAWLER", f"Total IMDB records to process: {total_record_count}")

        session = await self.http_client.get_session()
        results = await asyncio.gather(
            *[
                self.process_instance(instance, session, total_record_count)
                for instance in self.instances
            ],
            return_exceptions=True,
        )

        states = {}
        for instance, result in zip(self.instances, results):
            if isinstance(result, BaseException):
                self.log.error(f"{self.source} instance {instance.name} failed: {result}")
                continue

            states[instance.name] = result
            elapsed = datetime.now(timezone.utc) - result.started_at
            self.log.log(
                "CRAWLER",
                f"Finished {instance.name}: processed={result.total_processed} batches={result.batches} failures={result.signal.failure_count} cursor={result.last_processed_imdb_id} elapsed={elapsed.total_seconds():.1f}s",
            )

        return states

    def setup_resiliency_policy(self, instance: ProviderInstance) -> ResiliencyPolicy:
        rate_limit = instance.rate_limit
        breaker = CircuitBreaker(
            instance.name,
            failure_threshold=rate_limit.exception_limit,
            break_duration=rate_limit.exception_interval_seconds,
            clock=self._clock,
            log=self.log,
        )
        return ResiliencyPolicy(
            instance.name,
            breaker,
            retry_count=rate_limit.retry_count,
            sleep=self._sleep,
            log=self.log,
        )

    def create_state(self, instance: ProviderInstance) -> CrawlState:
        signal = BackoffSignal(self.setup_resiliency_policy(instance))
        return CrawlState(signal=signal, last_processed_imdb_id=self.start_cursor)

    async def process_instance(
        self,
        instance: ProviderInstance,
        session: aiohttp.ClientSession,
        total_record_count: int,
    ) -> CrawlState:
        state = self.create_state(instance)
        empty_items_count = 0

        while state.total_processed < total_record_count:
            await self.wait_for_cooldown(instance, state.signal)

            if self.stop_event.is_set():
                self.log.log("CRAWLER", f"Stop requested, leaving {instance.name}")
                break

            self.log.info(f"Processing {instance.name}")
            self.log.info(f"Current processed requests: {state.total_processed}")

            try:
                items = await self.storage.get_next_batch(
                    datetime.now(timezone.utc).year,
                    instance.rate_limit.batch_size,
                    state.last_processed_imdb_id,
                )
            except Exception as e:
                self.log.error(f"Failed to fetch next batch for {instance.name}: {e}")
                break

            if not items:
                empty_items_count += 1
                self.log.info(f"No items to process for {instance.name}")

                if empty_items_count >= MAXIMUM_EMPTY_ITEMS_COUNT:
                    self.log.info(
                        f"Maximum empty document count reached. Cancelling {instance.name}"
                    )
                    break

                continue

            empty_items_count = 0
            result = await self.scrape_batch(instance, session, items, state.signal)

            await self.insert_torrents(result.torrents)

            if result.processed < len(items):
                # Interrupted before every item was attempted; keep the cursor.
                break

            state.last_processed_imdb_id = items[-1].imdb_id
            state.total_processed += len(items)
            state.batches += 1

        return state

    async def wait_for_cooldown(self, instance: ProviderInstance, signal: BackoffSignal):
        if not signal.possibly_rate_limited:
            return

        delay = signal.cooldown_remaining()
        signal.clear()
        if delay <= 0 or self.stop_event.is_set():
            return

        self.log.warning(
            f"{instance.name} is possibly rate limited, pausing for {delay:.0f} seconds"
        )
        await self._sleep(delay)

    async def scrape_batch(
        self,
        instance: ProviderInstance,
        session: aiohttp.ClientSession,
        items: List[CandidateItem],
        signal: BackoffSignal,
    ) -> BatchResult:
        result = BatchResult()
        semaphore = asyncio.Semaphore(max(1, instance.rate_limit.max_concurrency))

        async def process_item(item: CandidateItem):
            async with semaphore:
                if self.stop_event.is_set():
                    return

                try:
                    torrents = await self.scrape_instance(
                        instance, item.imdb_id, session, signal.policy
                    )
                    result.torrents.extend(torrents)
                except Exception as e:
                    log_crawler_error(self.source, instance.name, item.imdb_id, e)
                    signal.set_possibly_rate_limited()
                    result.failed += 1
                finally:
                    result.processed += 1

        await asyncio.gather(*[process_item(item) for item in items])

        self.log.log(
            "CRAWLER",
            f"{instance.name}: batch processed {result.processed}/{len(items)} items, {result.failed} failed, {len(result.torrents)} torrents",
        )
        return result

    async def scrape_instance(
        self,
        instance: ProviderInstance,
        imdb_id: str,
        session: aiohttp.ClientSession,
        policy: ResiliencyPolicy,
    ) -> List[IngestedTorrent]:
        self.log.info(f"Searching {self.source} {instance.name}: {imdb_id}")
        request_url = build_request_url(instance, imdb_id)

        body = await policy.execute(lambda: self.run_request(session, request_url))

        data = orjson.loads(body)
        if not isinstance(data, dict) or not isinstance(data.get("streams"), list):
            raise ScrapeError(f"No streams in response from {request_url}")

        torrents = []
        for stream in data["streams"]:
            torrent = parse_torrent(instance, stream, imdb_id)
            if torrent is not None:
                torrents.append(torrent)

        return torrents

    async def run_request(self, session: aiohttp.ClientSession, request_url: str):
        async with session.get(request_url) as response:
            if not 200 <= response.status < 300:
                raise ScrapeError(f"Failed to fetch {request_url} ({response.status})")

            return await response.read()


def create_crawler(storage: DataStorage, **kwargs):
    return TorrentioCrawler(
        storage,
        settings.TORRENTIO_INSTANCES,
        start_cursor=settings.CRAWLER_START_CURSOR,
        **kwargs,
    )
