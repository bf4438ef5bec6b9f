"""
Availability Classifier
Infers stock status from product page markup and extracts display fields
"""

import html as html_lib
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

logger = structlog.get_logger()


class Verdict(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ANTI_BOT_BLOCKED = "anti_bot_blocked"
    INDETERMINATE = "indeterminate"


BLOCK_STATUS_CODES = frozenset({403, 429})

BLOCK_MARKERS: List[str] = [
    "access denied",
    "attention required! | cloudflare",
    "cf-browser-verification",
    "checking your browser before accessing",
    "verify you are human",
    "request blocked",
]

UNAVAILABLE_MARKERS: List[str] = [
    "sorry, this item is currently out of stock",
    "temporarily unavailable",
    "currently unavailable",
    "out of stock",
    "sold out",
    "leider ausverkauft",
    "vorübergehend nicht verfügbar",
    "nicht verfügbar",
    "ausverkauft",
    "épuisé",
    "agotado",
    "缺货",
    "售罄",
    "在庫切れ",
]

AVAILABLE_MARKERS: List[str] = [
    "add to cart",
    "add to bag",
    "add to basket",
    "buy now",
    "in stock",
    "in den warenkorb",
    "in den einkaufswagen",
    "jetzt kaufen",
    "ajouter au panier",
    "加入购物车",
    "立即购买",
    "カートに入れる",
]


@dataclass
class Classification:
    """Classifier output for one page"""
    verdict: Verdict
    marker: Optional[str] = None
    name: Optional[str] = None
    price: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def is_blocked(self) -> bool:
        return self.verdict == Verdict.ANTI_BOT_BLOCKED


_JSON_LD = re.compile(
    r'<script[^>]*type=["\']application/ld\+json["\'][^>]*>(.*?)</script>',
    re.IGNORECASE | re.DOTALL,
)
_TAG = re.compile(r"<[^>]+>")

NAME_PATTERNS = [
    r'<meta[^>]*property="og:title"[^>]*content="([^"]+)"',
    r'<h1[^>]*class="[^"]*product[^"]*title[^"]*"[^>]*>(.*?)</h1>',
    r'<span[^>]*id="productTitle"[^>]*>(.*?)</span>',
    r"<h1[^>]*>(.*?)</h1>",
    r"<title>(.*?)</title>",
]

PRICE_PATTERNS = [
    r'<meta[^>]*property="product:price:amount"[^>]*content="([\d.,]+)"',
    r'itemprop="price"[^>]*content="([\d.,]+)"',
    r"€\s*(\d+[.,]\d{2})",
    r"EUR\s*(\d+[.,]\d{2})",
    r"(\d+[.,]\d{2})\s*€",
    r"(\d+[.,]\d{2})\s*EUR",
    r'class="[^"]*price[^"]*"[^>]*>[^<]*?(\d+[.,]\d{2})',
]

IMAGE_PATTERNS = [
    r'<meta[^>]*property="og:image"[^>]*content="([^"]+)"',
    r'<img[^>]*class="[^"]*product[^"]*"[^>]*src="([^"]+)"',
    r'<img[^>]*src="([^"]*product[^"]*\.(?:jpg|jpeg|png|webp))"',
    r'<img[^>]*data-old-hires="([^"]+)"',
]


def clean_text(value: str) -> str:
    """Strip tags, unescape entities and collapse whitespace"""
    text = _TAG.sub("", value)
    text = html_lib.unescape(text)
    return " ".join(text.split())


def normalize_price(raw: Any) -> Optional[str]:
    """Render a price as '€12.34'; keeps strings that already carry a currency"""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if "€" in text or "$" in text:
        return text
    text = text.replace(",", ".")
    try:
        return f"€{float(text):.2f}"
    except ValueError:
        return None


def absolute_image_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    url = html_lib.unescape(url.strip())
    if url.startswith("http"):
        return url
    if url.startswith("//"):
        return "https:" + url
    return None


def _first_match(patterns: Iterable[str], text: str) -> Optional[str]:
    for pattern in patterns:
        match = re.search(pattern, text, re.IGNORECASE | re.DOTALL)
        if match:
            value = clean_text(match.group(1))
            if value:
                return value
    return None


def iter_json_ld(body: str) -> Iterable[Dict[str, Any]]:
    """Yield every JSON-LD object on the page, flattening lists and @graph"""
    for block in _JSON_LD.findall(body):
        try:
            data = json.loads(block.strip())
        except ValueError:
            continue

        stack = [data]
        while stack:
            item = stack.pop()
            if isinstance(item, list):
                stack.extend(item)
            elif isinstance(item, dict):
                if "@graph" in item:
                    stack.append(item["@graph"])
                yield item


def _is_product(item: Dict[str, Any]) -> bool:
    kind = item.get("@type")
    if isinstance(kind, list):
        return "Product" in kind
    return kind == "Product"


def find_json_ld_product(body: str) -> Optional[Dict[str, Any]]:
    for item in iter_json_ld(body):
        if _is_product(item):
            return item
    return None


def _offer_price(product: Dict[str, Any]) -> Optional[str]:
    offers = product.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if not isinstance(offers, dict):
        return None
    price = offers.get("price", offers.get("lowPrice"))
    if price is None:
        return None
    currency = offers.get("priceCurrency", "EUR")
    formatted = normalize_price(price)
    if formatted and currency not in ("EUR", None):
        return f"{currency} {formatted.lstrip('€')}"
    return formatted


def _ld_image(product: Dict[str, Any]) -> Optional[str]:
    image = product.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")
    return absolute_image_url(image) if isinstance(image, str) else None


def extract_name(body: str) -> Optional[str]:
    product = find_json_ld_product(body)
    if product and isinstance(product.get("name"), str):
        name = clean_text(product["name"])
        if name:
            return name
    return _first_match(NAME_PATTERNS, body)


def extract_price(body: str) -> Optional[str]:
    product = find_json_ld_product(body)
    if product:
        price = _offer_price(product)
        if price:
            return price
    raw = _first_match(PRICE_PATTERNS, body)
    return normalize_price(raw)


def extract_image(body: str) -> Optional[str]:
    product = find_json_ld_product(body)
    if product:
        image = _ld_image(product)
        if image:
            return image
    for pattern in IMAGE_PATTERNS:
        match = re.search(pattern, body, re.IGNORECASE)
        if match:
            url = absolute_image_url(match.group(1))
            if url:
                return url
    return None


class AvailabilityClassifier:
    """
    Heuristic stock classifier

    Decision order (first match wins):
    1. HTTP 403/429 or a block-page marker -> ANTI_BOT_BLOCKED
    2. Any unavailability marker -> UNAVAILABLE
    3. Any availability marker -> AVAILABLE
    4. Nothing matched -> INDETERMINATE
    """

    def __init__(
        self,
        unavailable_markers: Optional[Sequence[str]] = None,
        available_markers: Optional[Sequence[str]] = None,
        block_markers: Optional[Sequence[str]] = None,
        extract_fields: bool = True,
    ):
        self.unavailable_markers = [m.lower() for m in (unavailable_markers or UNAVAILABLE_MARKERS)]
        self.available_markers = [m.lower() for m in (available_markers or AVAILABLE_MARKERS)]
        self.block_markers = [m.lower() for m in (block_markers or BLOCK_MARKERS)]
        self.extract_fields = extract_fields

    @staticmethod
    def _find(markers: Sequence[str], text: str) -> Optional[str]:
        for marker in markers:
            if marker in text:
                return marker
        return None

    def classify(self, body: str, status_code: Optional[int]) -> Classification:
        lowered = (body or "").lower()

        if status_code in BLOCK_STATUS_CODES:
            return Classification(Verdict.ANTI_BOT_BLOCKED, marker=f"HTTP {status_code}")

        marker = self._find(self.block_markers, lowered)
        if marker:
            return Classification(Verdict.ANTI_BOT_BLOCKED, marker=marker)

        marker = self._find(self.unavailable_markers, lowered)
        if marker:
            verdict = Verdict.UNAVAILABLE
        else:
            marker = self._find(self.available_markers, lowered)
            verdict = Verdict.AVAILABLE if marker else Verdict.INDETERMINATE

        result = Classification(verdict, marker=marker)

        if self.extract_fields and body:
            try:
                result.name = extract_name(body)
                result.price = extract_price(body)
                result.image_url = extract_image(body)
            except (re.error, ValueError, TypeError) as e:
                logger.warning("Field extraction failed", error=str(e))

        return result
