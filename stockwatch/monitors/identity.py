"""
Request Identity Pools
Rotated browser identities and region-steering cookies for product page requests
"""

import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional


USER_AGENTS: List[str] = [
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
]

ACCEPT_LANGUAGES: List[str] = [
    "de-DE,de;q=0.9,en;q=0.8",
    "en-US,en;q=0.9,de;q=0.8",
    "zh-CN,zh;q=0.9,en;q=0.8",
    "ja-JP,ja;q=0.9,en;q=0.8",
]

# Steers server-side rendering towards one canonical storefront
REGION_COOKIES: Dict[str, str] = {
    "locale": "de",
    "region": "DE",
    "currency": "EUR",
}

BASE_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Dest": "document",
}


@dataclass(frozen=True)
class RequestIdentity:
    """One rotated browser identity"""
    user_agent: str
    accept_language: str
    cookies: Dict[str, str] = field(default_factory=lambda: dict(REGION_COOKIES))

    def headers(self) -> Dict[str, str]:
        return {
            **BASE_HEADERS,
            "User-Agent": self.user_agent,
            "Accept-Language": self.accept_language,
        }


def rotate_identity(
    custom_user_agent: Optional[str] = None,
    cookies: Optional[Dict[str, str]] = None,
) -> RequestIdentity:
    """
    Pick a fresh identity for one request

    A non-empty custom user agent (per-product override) wins over the pool.
    """
    user_agent = custom_user_agent.strip() if custom_user_agent else ""
    return RequestIdentity(
        user_agent=user_agent or random.choice(USER_AGENTS),
        accept_language=random.choice(ACCEPT_LANGUAGES),
        cookies=dict(cookies if cookies is not None else REGION_COOKIES),
    )
