"""
Rank-check API Client

Async HTTP client for the DataForSEO SERP endpoint with:
- Connection pooling
- Automatic retry with exponential backoff (429, 5xx, timeouts)
- Graceful extraction of malformed responses
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from rankwatch.errors import RankCheckError
from rankwatch.utils.config import get_settings
from rankwatch.utils.dates import utcnow
from rankwatch.utils.domain import domain_matches

logger = logging.getLogger(__name__)

SERP_ENDPOINT = "serp/google/organic/live/advanced"


def safe_get_items(response: Dict) -> List[Dict]:
    """
    Safely extract SERP items from a DataForSEO response.

    Handles cases where tasks/result/items are None, empty, or malformed.
    """
    try:
        tasks = response.get("tasks")
        if not tasks or not isinstance(tasks, list):
            return []
        result = tasks[0].get("result")
        if not result or not isinstance(result, list) or not isinstance(result[0], dict):
            return []
        items = result[0].get("items")
        return items if items and isinstance(items, list) else []
    except (AttributeError, TypeError, IndexError, KeyError) as e:
        logger.debug(f"Safe item extraction failed: {e}")
        return []


def find_domain_rank(items: List[Dict], domain: str) -> Optional[Dict]:
    """First organic item belonging to domain (subdomains count), or None."""
    for item in items:
        if not isinstance(item, dict) or item.get("type") != "organic":
            continue
        if domain_matches(item.get("domain") or item.get("url"), domain):
            return item
    return None


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


@dataclass
class RankCheckResult:
    """One SERP lookup for one keyword and domain."""
    keyword: str
    domain: str
    rank: Optional[int]
    url: Optional[str]
    checked_at: datetime
    location_code: int
    source: str = "dataforseo"

    @property
    def found(self) -> bool:
        return self.rank is not None

    def to_raw(self) -> Dict[str, Any]:
        """Raw rank-check shape accepted by the normalizer."""
        return {
            "domain": self.domain,
            "keyword": self.keyword,
            "rank": self.rank,
            "locationCode": self.location_code,
            "source": self.source,
            "checkedAt": self.checked_at,
        }


class RankCheckClient:
    """
    Async client for SERP rank checks.

    Usage:
        async with RankCheckClient(login="...", password="...") as client:
            result = await client.check_rank("dental implants", "example.com")
    """

    BASE_URL = "https://api.dataforseo.com/v3"

    def __init__(
        self,
        login: Optional[str] = None,
        password: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        max_connections: int = 20,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize rank-check client.

        Args:
            login: DataForSEO login (defaults to settings)
            password: DataForSEO API password (defaults to settings)
            retry_config: Retry configuration (optional)
            max_connections: Maximum concurrent connections
            timeout: Request timeout in seconds (defaults to API_TIMEOUT)
            transport: Custom httpx transport (tests)
        """
        settings = get_settings()
        login = login or settings.DATAFORSEO_LOGIN
        password = password or settings.DATAFORSEO_PASSWORD
        if not login or not password:
            raise RankCheckError("DataForSEO credentials are not configured")

        self.retry_config = retry_config or RetryConfig()
        self.depth = settings.RANK_CHECK_DEPTH
        self.language_code = settings.DEFAULT_LANGUAGE
        self.location_code = settings.DEFAULT_LOCATION_CODE

        auth_token = base64.b64encode(f"{login}:{password}".encode()).decode()

        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Basic {auth_token}",
                "Content-Type": "application/json",
            },
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(timeout or settings.API_TIMEOUT),
            transport=transport,
        )
        self._closed = False

    async def post(self, endpoint: str, data: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        POST with retry.

        Raises:
            RankCheckError: On API error after retries
        """
        if self._closed:
            raise RankCheckError("Client is closed")
        return await self._request_with_retry(f"/{endpoint}", data)

    async def _make_request(self, url: str, data: List[Dict]) -> Dict[str, Any]:
        """Make a single HTTP request."""
        logger.debug(f"POST {url}")

        response = await self._client.post(url, json=data)

        if response.status_code != 200:
            raise RankCheckError(
                f"API request failed: {response.status_code}",
                status_code=response.status_code,
                response=None,
            )

        result = response.json()

        if result.get("status_code") != 20000:
            raise RankCheckError(
                f"API error: {result.get('status_message', 'Unknown error')}",
                status_code=result.get("status_code"),
                response=result,
            )

        for task in result.get("tasks") or []:
            task_status = task.get("status_code")
            if task_status not in (20000, 20100):
                logger.error(
                    f"Rank check task error in {url}: {task.get('status_message', 'Task error')} "
                    f"(status: {task_status})"
                )

        return result

    async def _request_with_retry(self, url: str, data: List[Dict]) -> Dict[str, Any]:
        """Make request with automatic retry on failure."""
        config = self.retry_config
        last_exception: Optional[RankCheckError] = None
        delay = config.initial_delay

        for attempt in range(config.max_retries + 1):
            try:
                return await self._make_request(url, data)

            except RankCheckError as e:
                last_exception = e
                # Don't retry client errors (4xx except 429)
                if e.status_code and e.status_code not in config.retryable_status_codes and e.status_code < 500:
                    raise

            except httpx.TimeoutException as e:
                last_exception = RankCheckError(f"Request timed out: {e}")

            except httpx.HTTPError as e:
                last_exception = RankCheckError(f"HTTP error: {e}")

            if attempt < config.max_retries:
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{config.max_retries + 1}): "
                    f"{last_exception}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * config.exponential_base, config.max_delay)

        raise last_exception

    async def check_rank(
        self,
        keyword: str,
        domain: str,
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
        depth: Optional[int] = None,
    ) -> RankCheckResult:
        """
        Look up where domain ranks for keyword.

        Returns:
            RankCheckResult; rank is None when the domain is not in the top `depth`
        """
        location_code = location_code or self.location_code
        response = await self.post(SERP_ENDPOINT, [{
            "keyword": keyword,
            "location_code": location_code,
            "language_code": language_code or self.language_code,
            "depth": depth or self.depth,
        }])

        item = find_domain_rank(safe_get_items(response), domain)
        rank = item.get("rank_group") if item else None

        if item:
            logger.info(f"'{keyword}' for {domain}: #{rank}")
        else:
            logger.info(f"'{keyword}' for {domain}: not in top {depth or self.depth}")

        return RankCheckResult(
            keyword=keyword,
            domain=domain,
            rank=rank,
            url=item.get("url") if item else None,
            checked_at=utcnow(),
            location_code=location_code,
        )

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
