from typing import Optional

import aiohttp

from producer.core.models import settings


class HttpClientManager:
    """Owns the one session shared by every crawler instance and item task."""

    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None

    def _create_session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(
            limit=settings.HTTP_CLIENT_LIMIT,
            limit_per_host=settings.HTTP_CLIENT_LIMIT_PER_HOST,
            ttl_dns_cache=settings.HTTP_CLIENT_TTL_DNS_CACHE,
            keepalive_timeout=settings.HTTP_CLIENT_KEEPALIVE_TIMEOUT,
        )
        return aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=settings.HTTP_CLIENT_TIMEOUT_TOTAL),
            headers={"User-Agent": settings.HTTP_CLIENT_USER_AGENT},
        )

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = self._create_session()
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


http_client_manager = HttpClientManager()
