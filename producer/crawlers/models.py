from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

if TYPE_CHECKING:
    from producer.crawlers.resilience import BackoffSignal


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_size: int = 100
    exception_limit: int = 10  # failures before the circuit breaks
    exception_interval_seconds: int = 60  # how long the circuit stays open
    retry_count: int = 2
    max_concurrency: int = 8


class ProviderInstance(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    rate_limit: RateLimit = RateLimit()

    @field_validator("url")
    def remove_trailing_slash(cls, v):
        if v and v.endswith("/"):
            return v[:-1]
        return v


class CandidateItem(BaseModel):
    imdb_id: str
    title: Optional[str] = None
    year: Optional[int] = None


class IngestedTorrent(BaseModel):
    source: str
    info_hash: str
    name: str
    category: str
    imdb: str
    size: Optional[int] = None
    seeders: Optional[int] = None
    leechers: Optional[int] = None
    processed: bool = False


@dataclass
class BatchResult:
    torrents: List[IngestedTorrent] = field(default_factory=list)
    processed: int = 0
    failed: int = 0


@dataclass
class CrawlState:
    """Per-instance crawl progress, owned by a single crawl loop."""

    signal: "BackoffSignal"
    last_processed_imdb_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    total_processed: int = 0
    batches: int = 0
