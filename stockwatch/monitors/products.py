"""
Monitored Product Model
Products own an ordered list of independently monitored variants
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class VariantKind(str, Enum):
    SINGLE_BOX = "single_box"
    WHOLE_SET = "whole_set"
    RANDOM = "random"
    LIMITED = "limited"
    SPECIFIC = "specific"
    NAMED = "named"  # free-form option found by page discovery

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ")

    @classmethod
    def infer(cls, text: str, sku: str = "") -> "VariantKind":
        """Map an option label (and optional SKU) onto a canonical kind"""
        label = f"{sku} {text}".lower()

        if any(k in label for k in ("set", "complete", "整套", "pack")):
            return cls.WHOLE_SET
        if any(k in label for k in ("random", "随机")):
            return cls.RANDOM
        if any(k in label for k in ("limited", "special", "限定")):
            return cls.LIMITED
        if any(k in label for k in ("specific", "style", "size", "指定")):
            return cls.SPECIFIC
        return cls.SINGLE_BOX


def _new_id() -> str:
    return uuid.uuid4().hex


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Variant:
    """One independently monitored purchase option"""
    url: str
    name: str = ""
    kind: VariantKind = VariantKind.SINGLE_BOX
    option: Optional[str] = None
    price: Optional[str] = None
    image_url: Optional[str] = None
    sku: Optional[str] = None
    stock_level: Optional[int] = None
    monitoring_interval: Optional[float] = None
    id: str = field(default_factory=_new_id)

    # State
    is_available: bool = False
    is_monitoring: bool = False
    last_checked: Optional[datetime] = None
    total_checks: int = 0
    successful_checks: int = 0
    error_count: int = 0

    @property
    def label(self) -> str:
        return self.option or self.name or self.kind.display_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "name": self.name,
            "kind": self.kind.value,
            "option": self.option,
            "price": self.price,
            "image_url": self.image_url,
            "sku": self.sku,
            "stock_level": self.stock_level,
            "monitoring_interval": self.monitoring_interval,
            "is_available": self.is_available,
            "is_monitoring": self.is_monitoring,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
            "total_checks": self.total_checks,
            "successful_checks": self.successful_checks,
            "error_count": self.error_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variant":
        return cls(
            id=data.get("id") or _new_id(),
            url=data.get("url", ""),
            name=data.get("name", ""),
            kind=VariantKind(data.get("kind", VariantKind.SINGLE_BOX.value)),
            option=data.get("option"),
            price=data.get("price"),
            image_url=data.get("image_url"),
            sku=data.get("sku"),
            stock_level=data.get("stock_level"),
            monitoring_interval=data.get("monitoring_interval"),
            is_available=data.get("is_available", False),
            is_monitoring=data.get("is_monitoring", False),
            last_checked=_parse_time(data.get("last_checked")),
            total_checks=data.get("total_checks", 0),
            successful_checks=data.get("successful_checks", 0),
            error_count=data.get("error_count", 0),
        )


@dataclass
class Product:
    """A monitored product listing with one or more variants"""
    base_url: str
    name: str
    variants: List[Variant] = field(default_factory=list)
    image_url: Optional[str] = None
    monitoring_interval: float = 300.0
    auto_start: bool = False
    custom_user_agent: Optional[str] = None
    max_retries: int = 3
    id: str = field(default_factory=_new_id)

    @classmethod
    def single(
        cls,
        url: str,
        name: str,
        kind: VariantKind = VariantKind.SINGLE_BOX,
        image_url: Optional[str] = None,
        monitoring_interval: float = 300.0,
        auto_start: bool = False,
        max_retries: int = 3,
    ) -> "Product":
        """Single-variant product; the variant shares the product URL"""
        variant = Variant(url=url, name=name, kind=kind, image_url=image_url)
        return cls(
            base_url=url,
            name=name,
            variants=[variant],
            image_url=image_url,
            monitoring_interval=monitoring_interval,
            auto_start=auto_start,
            max_retries=max_retries,
        )

    @classmethod
    def from_variants(
        cls,
        base_url: str,
        name: str,
        variants: List[Variant],
        image_url: Optional[str] = None,
        monitoring_interval: float = 300.0,
        auto_start: bool = False,
        max_retries: int = 3,
    ) -> "Product":
        """Multi-variant product; duplicate variant URLs are dropped"""
        product = cls(
            base_url=base_url,
            name=name,
            image_url=image_url,
            monitoring_interval=monitoring_interval,
            auto_start=auto_start,
            max_retries=max_retries,
        )
        for variant in variants:
            product.add_variant(variant)
        return product

    # Backwards-compatible single-variant view

    @property
    def url(self) -> str:
        return self.base_url

    @property
    def primary_variant(self) -> Optional[Variant]:
        return self.variants[0] if self.variants else None

    @property
    def kind(self) -> VariantKind:
        primary = self.primary_variant
        return primary.kind if primary else VariantKind.SINGLE_BOX

    @property
    def price(self) -> Optional[str]:
        primary = self.primary_variant
        return primary.price if primary else None

    # Aggregates

    @property
    def is_available(self) -> bool:
        return any(v.is_available for v in self.variants)

    @property
    def is_monitoring(self) -> bool:
        return any(v.is_monitoring for v in self.variants)

    @property
    def last_checked(self) -> Optional[datetime]:
        stamps = [v.last_checked for v in self.variants if v.last_checked]
        return max(stamps) if stamps else None

    @property
    def total_checks(self) -> int:
        return sum(v.total_checks for v in self.variants)

    @property
    def successful_checks(self) -> int:
        return sum(v.successful_checks for v in self.variants)

    @property
    def error_count(self) -> int:
        return sum(v.error_count for v in self.variants)

    @property
    def available_variants(self) -> List[Variant]:
        return [v for v in self.variants if v.is_available]

    @property
    def monitoring_variants(self) -> List[Variant]:
        return [v for v in self.variants if v.is_monitoring]

    @property
    def full_display_name(self) -> str:
        if len(self.variants) == 1:
            return f"{self.name} ({self.variants[0].label})"
        return f"{self.name} ({len(self.variants)} variants)"

    def interval_for(self, variant: Variant) -> float:
        return variant.monitoring_interval or self.monitoring_interval

    # Variant management

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    def has_variant_url(self, url: str) -> bool:
        return any(v.url == url for v in self.variants)

    def add_variant(self, variant: Variant) -> bool:
        """Append a variant unless one with the same URL exists"""
        if self.has_variant_url(variant.url):
            return False
        self.variants.append(variant)
        return True

    def remove_variant(self, variant_id: str) -> bool:
        before = len(self.variants)
        self.variants = [v for v in self.variants if v.id != variant_id]
        return len(self.variants) != before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "base_url": self.base_url,
            "name": self.name,
            "image_url": self.image_url,
            "monitoring_interval": self.monitoring_interval,
            "auto_start": self.auto_start,
            "custom_user_agent": self.custom_user_agent,
            "max_retries": self.max_retries,
            "variants": [v.to_dict() for v in self.variants],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=data.get("id") or _new_id(),
            base_url=data.get("base_url", ""),
            name=data.get("name", ""),
            image_url=data.get("image_url"),
            monitoring_interval=data.get("monitoring_interval", 300.0),
            auto_start=data.get("auto_start", False),
            custom_user_agent=data.get("custom_user_agent"),
            max_retries=data.get("max_retries", 3),
            variants=[Variant.from_dict(v) for v in data.get("variants", [])],
        )


DEFAULT_PRODUCT_URL = (
    "https://www.popmart.com/de/products/1991/"
    "THE-MONSTERS-Big-into-Energy-Series-Vinyl-Plush-Pendant-Blind-Box"
)
DEFAULT_PRODUCT_NAME = "THE MONSTERS Big into Energy Series Vinyl Plush Pendant Blind Box"


def default_product(monitoring_interval: float = 300.0, max_retries: int = 3) -> Product:
    """Seed product used when nothing has been persisted yet"""
    return Product.single(
        url=DEFAULT_PRODUCT_URL,
        name=DEFAULT_PRODUCT_NAME,
        monitoring_interval=monitoring_interval,
        max_retries=max_retries,
    )
