"""
Variant Discovery
Scrapes a product page into its purchasable options so each can be monitored

Detection methods, in order:
1. Embedded Shopify product JSON (variants with ids, SKUs, availability)
2. JSON-LD Product offers
3. <select> option lists
4. A single default option for the page itself
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from .classifier import (
    AvailabilityClassifier,
    Verdict,
    absolute_image_url,
    clean_text,
    extract_image,
    extract_name,
    extract_price,
    find_json_ld_product,
    normalize_price,
)
from .fetcher import FetchClient
from .identity import rotate_identity
from .products import Variant, VariantKind

logger = structlog.get_logger()


class DiscoveryError(Exception):
    """The page could not be fetched or does not look like a product page"""


@dataclass
class VariantOption:
    """A purchasable option found on a product page"""
    label: str
    url: str
    kind: VariantKind = VariantKind.NAMED
    price: Optional[str] = None
    is_available: bool = False
    image_url: Optional[str] = None
    sku: Optional[str] = None
    stock_level: Optional[int] = None

    def to_variant(self) -> Variant:
        return Variant(
            url=self.url,
            name=self.label,
            kind=self.kind,
            option=self.label if self.kind == VariantKind.NAMED else None,
            price=self.price,
            image_url=self.image_url,
            sku=self.sku,
            stock_level=self.stock_level,
            is_available=self.is_available,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "url": self.url,
            "kind": self.kind.value,
            "price": self.price,
            "is_available": self.is_available,
            "image_url": self.image_url,
            "sku": self.sku,
            "stock_level": self.stock_level,
        }


@dataclass
class PageInfo:
    """Parsed product page"""
    url: str
    name: str
    variants: List[VariantOption] = field(default_factory=list)
    image_url: Optional[str] = None
    brand: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "name": self.name,
            "image_url": self.image_url,
            "brand": self.brand,
            "variants": [v.to_dict() for v in self.variants],
        }


_SHOPIFY_JSON = [
    re.compile(r'<script[^>]*data-product-json[^>]*>(.*?)</script>', re.IGNORECASE | re.DOTALL),
    re.compile(r'<script[^>]*id="ProductJson-[^"]*"[^>]*>(.*?)</script>', re.IGNORECASE | re.DOTALL),
]
_SELECT = re.compile(r'<select[^>]*>(.*?)</select>', re.IGNORECASE | re.DOTALL)
_OPTION = re.compile(r'<option([^>]*)>(.*?)</option>', re.IGNORECASE | re.DOTALL)
_OPTION_VALUE = re.compile(r'value="([^"]*)"', re.IGNORECASE)


def variant_url(base_url: str, variant_id: Any) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}variant={variant_id}"


def _classify_label(label: str, sku: str = "") -> VariantKind:
    kind = VariantKind.infer(label, sku)
    # Labels that carry no canonical hint stay free-form
    return VariantKind.NAMED if kind == VariantKind.SINGLE_BOX else kind


def _shopify_options(body: str, base_url: str) -> List[VariantOption]:
    for pattern in _SHOPIFY_JSON:
        match = pattern.search(body)
        if not match:
            continue
        try:
            product = json.loads(match.group(1).strip())
        except ValueError:
            continue
        if not isinstance(product, dict) or not isinstance(product.get("variants"), list):
            continue

        options = []
        for variant in product["variants"]:
            if not isinstance(variant, dict):
                continue
            variant_id = variant.get("id")
            title = clean_text(str(variant.get("title") or ""))
            if variant_id is None or not title:
                continue

            sku = variant.get("sku") or ""
            price = variant.get("price")
            # products.js reports cents as an integer
            if isinstance(price, int):
                price = price / 100

            image = variant.get("featured_image") or {}
            options.append(VariantOption(
                label=title,
                url=variant_url(base_url, variant_id),
                kind=_classify_label(title, sku),
                price=normalize_price(price),
                is_available=bool(variant.get("available", False)),
                image_url=absolute_image_url(image.get("src")) if isinstance(image, dict) else None,
                sku=sku or None,
                stock_level=variant.get("inventory_quantity"),
            ))
        if options:
            return options
    return []


def _json_ld_options(body: str, base_url: str) -> List[VariantOption]:
    product = find_json_ld_product(body)
    if not product:
        return []

    offers = product.get("offers")
    if isinstance(offers, dict):
        offers = offers.get("offers", [offers])
    if not isinstance(offers, list) or len(offers) < 2:
        return []

    options = []
    for index, offer in enumerate(offers):
        if not isinstance(offer, dict):
            continue
        label = clean_text(str(offer.get("name") or offer.get("sku") or f"Option {index + 1}"))
        sku = offer.get("sku") or ""
        url = offer.get("url") or variant_url(base_url, sku or index + 1)
        availability = str(offer.get("availability", "")).lower()
        options.append(VariantOption(
            label=label,
            url=url,
            kind=_classify_label(label, sku),
            price=normalize_price(offer.get("price")),
            is_available=availability.endswith("instock"),
            sku=sku or None,
        ))
    return options


def _select_options(body: str, base_url: str) -> List[VariantOption]:
    options = []
    seen = set()
    for select in _SELECT.findall(body):
        for attrs, text in _OPTION.findall(select):
            label = clean_text(text)
            if not label or len(label) >= 100 or "select" in label.lower() or "wählen" in label.lower():
                continue
            value_match = _OPTION_VALUE.search(attrs)
            value = value_match.group(1) if value_match else label
            url = variant_url(base_url, value)
            if url in seen:
                continue
            seen.add(url)
            options.append(VariantOption(
                label=label,
                url=url,
                kind=_classify_label(label),
                price=normalize_price(_price_in(label)),
                is_available="disabled" not in attrs.lower(),
            ))
    return options


def _price_in(text: str) -> Optional[str]:
    match = re.search(r"(\d+[.,]\d{2})", text)
    return match.group(1) if match else None


def _brand(body: str) -> Optional[str]:
    product = find_json_ld_product(body)
    if not product:
        return None
    brand = product.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")
    return clean_text(brand) if isinstance(brand, str) and brand.strip() else None


def parse_product_page(
    body: str,
    url: str,
    classifier: Optional[AvailabilityClassifier] = None,
) -> PageInfo:
    """Extract name, image and variants from a product page body"""
    name = extract_name(body)
    if not name:
        raise DiscoveryError("Could not find a product name on the page")

    options = (
        _shopify_options(body, url)
        or _json_ld_options(body, url)
        or _select_options(body, url)
    )

    if not options:
        classifier = classifier or AvailabilityClassifier(extract_fields=False)
        verdict = classifier.classify(body, 200).verdict
        options = [VariantOption(
            label=name,
            url=url,
            kind=VariantKind.SINGLE_BOX,
            price=extract_price(body),
            is_available=verdict == Verdict.AVAILABLE,
        )]

    return PageInfo(
        url=url,
        name=name,
        variants=options,
        image_url=extract_image(body),
        brand=_brand(body),
    )


async def discover_variants(
    url: str,
    fetcher: FetchClient,
    classifier: Optional[AvailabilityClassifier] = None,
    custom_user_agent: Optional[str] = None,
) -> PageInfo:
    """Fetch a product page and parse its variants"""
    result = await fetcher.fetch(url, rotate_identity(custom_user_agent))
    if not result.success:
        raise DiscoveryError(result.error or "Fetch failed")

    if classifier is not None and classifier.classify(result.body, result.status_code).is_blocked:
        raise DiscoveryError(f"Blocked by anti-bot protection (HTTP {result.status_code})")

    if result.status_code is not None and result.status_code >= 400:
        raise DiscoveryError(f"HTTP {result.status_code}")

    page = parse_product_page(result.body, url, classifier)
    logger.info("Product page parsed", url=url, name=page.name[:50], variants=len(page.variants))
    return page
