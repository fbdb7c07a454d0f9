import asyncio
import logging

import httpx

from hktransport.common.config import AppConfig
from hktransport.common.errors import NetworkError
from hktransport.ingest.cache import ApiCache
from hktransport.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = frozenset({408, 413, 429, 500, 502, 503, 504})

DEFAULT_HEADERS = {
    'User-Agent': 'HK-Transport-Data-Collector/1.0.0',
    'Accept': 'application/json, text/plain, */*',
    'Accept-Encoding': 'gzip, deflate',
}

SMALL = 'small'
LARGE = 'large'


class ApiClient:
    """Cached, rate limited JSON GETs with retry on transient failures.

    Order per call: cache lookup, then rate limiter, then network. A cache hit
    costs neither a token nor a request.
    """

    def __init__(self, rate_limiter: RateLimiter, cache: ApiCache, timeout=30.0, large_timeout=60.0,
                 retry_limit=3, retry_backoff=2.0, headers=None, transport=None, sleep=asyncio.sleep):
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.timeouts = {SMALL: timeout, LARGE: large_timeout}
        self.retry_limit = retry_limit
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            headers=headers or DEFAULT_HEADERS,
            timeout=httpx.Timeout(timeout, pool=None),
            follow_redirects=True,
            transport=transport,
        )
        self.cache_hits = 0

    @classmethod
    def from_config(cls, config: AppConfig, transport=None, **kwargs) -> "ApiClient":
        return cls(
            RateLimiter(config.api.requests_per_second),
            ApiCache(config.cache.dir, config.cache.ttl, enabled=config.cache.enabled),
            timeout=config.api.timeout,
            large_timeout=config.api.large_timeout,
            retry_limit=config.api.retry_limit,
            retry_backoff=config.api.retry_backoff,
            transport=transport,
            **kwargs,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def _backoff_for(self, attempt: int) -> float:
        # 2s, 4s, 8s, ...
        return self.retry_backoff * (2 ** attempt)

    async def fetch_json(self, url: str, profile: str = SMALL):
        if self.cache.is_enabled():
            cached = await asyncio.to_thread(self.cache.get, url)
            if cached is not None:
                self.cache_hits += 1
                logger.debug(f"Cache hit for {url}")
                return cached

        data = await self._get_with_retry(url, self.timeouts.get(profile, self.timeouts[SMALL]))

        if self.cache.is_enabled():
            await asyncio.to_thread(self.cache.set, url, data)
        return data

    async def _get_with_retry(self, url: str, timeout: float):
        attempt = 0
        while True:
            await self.rate_limiter.acquire()
            try:
                response = await self._client.get(url, timeout=timeout)
            except httpx.TransportError as e:
                if attempt >= self.retry_limit:
                    raise NetworkError(f"Failed to fetch {url}: {e!r}", url=url) from e
                delay = self._backoff_for(attempt)
                logger.info(f"Network error for {url} ({type(e).__name__}), retrying in {delay:g}s "
                            f"(attempt {attempt + 1}/{self.retry_limit})")
            except httpx.RequestError as e:
                raise NetworkError(f"Failed to fetch {url}: {e!r}", url=url) from e
            else:
                if response.is_success:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise NetworkError(f"Failed to fetch {url}: invalid JSON body ({e})",
                                           url=url, status_code=response.status_code) from e

                status = response.status_code
                if status not in RETRY_STATUS_CODES or attempt >= self.retry_limit:
                    raise NetworkError(f"Failed to fetch {url}: HTTP {status} {response.reason_phrase}",
                                       url=url, status_code=status)
                delay = self._backoff_for(attempt)
                logger.info(f"HTTP {status} for {url}, retrying in {delay:g}s "
                            f"(attempt {attempt + 1}/{self.retry_limit})")

            await self._sleep(delay)
            attempt += 1
