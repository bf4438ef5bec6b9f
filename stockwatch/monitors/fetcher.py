"""
Product Page Fetch Client
Issues one GET per check with a rotated identity and reports typed failures
"""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
import structlog

from .identity import RequestIdentity

logger = structlog.get_logger()


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"
    NETWORK = "network"
    INVALID_URL = "invalid_url"


@dataclass
class FetchResult:
    """Outcome of a single page fetch"""
    success: bool
    body: str = ""
    status_code: Optional[int] = None
    error_kind: Optional[FetchErrorKind] = None
    error: Optional[str] = None
    response_time: float = 0.0

    @classmethod
    def failed(cls, kind: FetchErrorKind, error: str, response_time: float = 0.0) -> "FetchResult":
        return cls(success=False, error_kind=kind, error=error, response_time=response_time)


def is_valid_url(url: str) -> bool:
    """Check that a URL can be dispatched at all"""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


class FetchClient:
    """
    Fetches product pages over a shared httpx session

    - Per-request identity headers (user agent, accept-language, region cookies)
    - Randomised pre-request pacing delay
    - Timeout enforced by the transport
    - Never raises: every failure becomes a FetchResult
    """

    def __init__(
        self,
        timeout: float = 30.0,
        delay_range: tuple = (1.0, 3.0),
        proxy_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.delay_range = delay_range
        self.proxy_url = proxy_url
        self._transport = transport
        self._session: Optional[httpx.AsyncClient] = None

        # Stats
        self.request_count = 0
        self.failure_count = 0

    @classmethod
    def from_settings(cls, settings) -> "FetchClient":
        return cls(
            timeout=settings.fetch_timeout,
            delay_range=(settings.request_delay_min, settings.request_delay_max),
            proxy_url=settings.proxy_url,
        )

    async def _get_session(self) -> httpx.AsyncClient:
        """Get or create the HTTP session"""
        if self._session is None or self._session.is_closed:
            kwargs = {}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif self.proxy_url:
                kwargs["proxy"] = self.proxy_url

            self._session = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                **kwargs,
            )
        return self._session

    async def _pace(self):
        low, high = self.delay_range
        if high > 0:
            await asyncio.sleep(random.uniform(low, max(low, high)))

    async def fetch(self, url: str, identity: RequestIdentity) -> FetchResult:
        """Fetch a page, returning body and status or a typed failure"""
        if not is_valid_url(url):
            return FetchResult.failed(FetchErrorKind.INVALID_URL, f"Invalid URL: {url!r}")

        await self._pace()

        self.request_count += 1
        start_time = time.monotonic()

        headers = identity.headers()
        if identity.cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in identity.cookies.items())

        try:
            session = await self._get_session()
            response = await session.get(url.strip(), headers=headers)

            return FetchResult(
                success=True,
                body=response.text,
                status_code=response.status_code,
                response_time=time.monotonic() - start_time,
            )

        except httpx.TimeoutException:
            self.failure_count += 1
            return FetchResult.failed(
                FetchErrorKind.TIMEOUT,
                f"Request timed out after {self.timeout:.0f}s",
                time.monotonic() - start_time,
            )
        except httpx.ConnectError as e:
            self.failure_count += 1
            return FetchResult.failed(
                FetchErrorKind.NOT_CONNECTED,
                f"Connection failed: {e}",
                time.monotonic() - start_time,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return FetchResult.failed(
                FetchErrorKind.INVALID_URL,
                str(e),
                time.monotonic() - start_time,
            )
        except httpx.HTTPError as e:
            self.failure_count += 1
            logger.warning("Fetch error", url=url, error=str(e))
            return FetchResult.failed(
                FetchErrorKind.NETWORK,
                f"Network error: {e}",
                time.monotonic() - start_time,
            )

    async def close(self):
        """Close the session"""
        if self._session:
            await self._session.aclose()
            self._session = None
