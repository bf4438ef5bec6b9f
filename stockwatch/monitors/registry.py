"""
Product Registry
In-memory product collection with write-through persistence and the event log
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from ..config import Settings
from .discovery import PageInfo
from .events import EventLog, LogStatus, MonitorEvent
from .fetcher import is_valid_url
from .products import Product, Variant, VariantKind, default_product
from .storage import ProductStore

logger = structlog.get_logger()

RemoveHook = Callable[[str, Optional[str]], None]


class RegistryError(Exception):
    """Base class for registry misuse"""


class ProductNotFoundError(RegistryError):
    def __init__(self, product_id: str, variant_id: Optional[str] = None):
        self.product_id = product_id
        self.variant_id = variant_id
        what = f"variant {variant_id} of product {product_id}" if variant_id else f"product {product_id}"
        super().__init__(f"Unknown {what}")


class InvalidProductError(RegistryError):
    pass


class ProductRegistry:
    """
    Owns every Product and the MonitorEvent stream

    Every mutation persists the whole product collection immediately.
    Event log saves are coalesced: inside a running loop all events
    appended in one loop iteration are written once.
    Removal hooks (registered by the scheduler) run before a product or
    variant leaves the registry, so no timer outlives its variant.
    """

    def __init__(self, store: ProductStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()
        self._products: Dict[str, Product] = {}
        self.logs = EventLog(max_events=self.settings.log_retention)
        self._remove_hooks: List[RemoveHook] = []
        self._logs_dirty = False
        self._log_flush_pending = False

    # ============ Lifecycle ============

    def initialize(self) -> int:
        """Load persisted state; seed the default product when there is none"""
        self._products.clear()

        for data in self.store.load_products():
            try:
                product = Product.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable product", error=str(e))
                continue
            try:
                self._validate(product)
            except InvalidProductError as e:
                logger.warning("Skipping invalid product", product=product.name, error=str(e))
                continue
            if product.id in self._products:
                logger.warning("Skipping duplicate product", product=product.name, id=product.id)
                continue
            self._products[product.id] = product

        events = []
        for data in self.store.load_logs():
            try:
                events.append(MonitorEvent.from_dict(data))
            except (KeyError, TypeError, ValueError):
                continue
        self.logs = EventLog(max_events=self.settings.log_retention, events=events)

        if not self._products:
            seed = default_product(
                monitoring_interval=self.settings.default_interval,
                max_retries=self.settings.default_max_retries,
            )
            self._products[seed.id] = seed
            self.save()
            self.log(seed, LogStatus.SUCCESS, "Product added to watch list")

        logger.info("Registry loaded", products=len(self._products), events=len(self.logs))
        return len(self._products)

    def add_remove_hook(self, hook: RemoveHook):
        self._remove_hooks.append(hook)

    def save(self):
        self.store.save_products([p.to_dict() for p in self._products.values()])

    # ============ Queries ============

    @property
    def products(self) -> List[Product]:
        return list(self._products.values())

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, product_id: str) -> bool:
        return product_id in self._products

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def require(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def require_variant(self, product_id: str, variant_id: str) -> Variant:
        variant = self.require(product_id).get_variant(variant_id)
        if variant is None:
            raise ProductNotFoundError(product_id, variant_id)
        return variant

    def monitoring_products(self) -> List[Product]:
        """Products with at least one variant flagged for monitoring"""
        return [p for p in self._products.values() if p.is_monitoring]

    def restore_ids(self) -> List[str]:
        return [p.id for p in self.monitoring_products()]

    # ============ Mutations ============

    def _validate(self, product: Product):
        if not product.variants:
            raise InvalidProductError("A product needs at least one variant")
        urls = [v.url for v in product.variants]
        if len(set(urls)) != len(urls):
            raise InvalidProductError("Variant URLs must be unique within a product")
        for url in [product.base_url, *urls]:
            if not is_valid_url(url):
                raise InvalidProductError(f"Invalid URL: {url!r}")
        if product.monitoring_interval <= 0:
            raise InvalidProductError("Monitoring interval must be positive")
        if product.max_retries < 1:
            raise InvalidProductError("max_retries must be at least 1")

    def add_product(self, product: Product) -> Product:
        self._validate(product)
        if product.id in self._products:
            raise InvalidProductError(f"Product {product.id} already exists")

        self._products[product.id] = product
        self.save()
        self.log(product, LogStatus.SUCCESS, "Product added to watch list")
        return product

    def add_single(
        self,
        url: str,
        name: str,
        kind: VariantKind = VariantKind.SINGLE_BOX,
        image_url: Optional[str] = None,
        monitoring_interval: Optional[float] = None,
        auto_start: bool = False,
    ) -> Product:
        product = Product.single(
            url=url,
            name=name,
            kind=kind,
            image_url=image_url,
            monitoring_interval=monitoring_interval or self.settings.default_interval,
            auto_start=auto_start,
            max_retries=self.settings.default_max_retries,
        )
        return self.add_product(product)

    def add_from_page(
        self,
        page: PageInfo,
        selected: Optional[Iterable[str]] = None,
        monitoring_interval: Optional[float] = None,
        auto_start: bool = False,
    ) -> Product:
        """Create a multi-variant product from a discovered page, optionally keeping only selected variant URLs"""
        options = page.variants
        if selected is not None:
            wanted = set(selected)
            options = [o for o in options if o.url in wanted or o.label in wanted]

        if not options:
            raise InvalidProductError("No variants selected")

        product = Product.from_variants(
            base_url=page.url,
            name=page.name,
            variants=[o.to_variant() for o in options],
            image_url=page.image_url,
            monitoring_interval=monitoring_interval or self.settings.default_interval,
            auto_start=auto_start,
            max_retries=self.settings.default_max_retries,
        )
        return self.add_product(product)

    def remove_product(self, product_id: str) -> Product:
        product = self.require(product_id)

        for hook in self._remove_hooks:
            hook(product_id, None)

        del self._products[product_id]
        self.save()
        self.log(product, LogStatus.SUCCESS, "Product removed from watch list")
        return product

    def update_settings(
        self,
        product_id: str,
        interval: Optional[float] = None,
        auto_start: Optional[bool] = None,
        custom_user_agent: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Product:
        product = self.require(product_id)

        if interval is not None and interval <= 0:
            raise InvalidProductError("Monitoring interval must be positive")
        if max_retries is not None and max_retries < 1:
            raise InvalidProductError("max_retries must be at least 1")

        if interval is not None:
            product.monitoring_interval = interval
        if auto_start is not None:
            product.auto_start = auto_start
        if custom_user_agent is not None:
            product.custom_user_agent = custom_user_agent.strip() or None
        if max_retries is not None:
            product.max_retries = max_retries

        self.save()
        self.log(
            product,
            LogStatus.SUCCESS,
            f"Monitoring settings updated - interval: {int(product.monitoring_interval)}s",
        )
        return product

    def add_variant(self, product_id: str, variant: Variant) -> bool:
        """Add a variant; a no-op (False) when its URL is already tracked"""
        product = self.require(product_id)
        if not is_valid_url(variant.url):
            raise InvalidProductError(f"Invalid URL: {variant.url!r}")

        if not product.add_variant(variant):
            return False

        self.save()
        self.log(product, LogStatus.SUCCESS, f"Variant added: {variant.label}")
        return True

    def remove_variant(self, product_id: str, variant_id: str) -> bool:
        product = self.require(product_id)
        variant = product.get_variant(variant_id)
        if variant is None:
            return False
        if len(product.variants) == 1:
            raise InvalidProductError("Cannot remove the last variant; remove the product instead")

        for hook in self._remove_hooks:
            hook(product_id, variant_id)

        product.remove_variant(variant_id)
        self.save()
        self.log(product, LogStatus.SUCCESS, f"Variant removed: {variant.label}")
        return True

    # ============ Event log ============

    def log(
        self,
        product: Product,
        status: LogStatus,
        message: str,
        response_time: Optional[float] = None,
        http_status: Optional[int] = None,
    ) -> MonitorEvent:
        event = self.logs.append(MonitorEvent(
            product_id=product.id,
            product_name=product.name,
            status=status,
            message=message,
            response_time=response_time,
            http_status=http_status,
        ))
        self._schedule_log_save()

        log_method = logger.warning if status.is_error else logger.info
        log_method(message, product=product.name[:50], status=status.value)
        return event

    def clear_logs(self, product_id: Optional[str] = None) -> int:
        removed = self.logs.clear(product_id)
        self._schedule_log_save()
        return removed

    def _schedule_log_save(self):
        self._logs_dirty = True
        if self._log_flush_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush_logs()
            return
        self._log_flush_pending = True
        loop.call_soon(self.flush_logs)

    def flush_logs(self):
        """Write the event log if it changed since the last save"""
        self._log_flush_pending = False
        if not self._logs_dirty:
            return
        self._logs_dirty = False
        self.store.save_logs(self.logs.to_list())

    def clear_logs_for_product(self, product_id: str) -> int:
        self.require(product_id)
        return self.clear_logs(product_id)

    # ============ Stats ============

    def stats(self) -> Dict[str, Any]:
        products = self.products
        variants = [v for p in products for v in p.variants]
        return {
            "products": len(products),
            "variants": len(variants),
            "monitoring_variants": sum(1 for v in variants if v.is_monitoring),
            "available_variants": sum(1 for v in variants if v.is_available),
            "total_checks": sum(v.total_checks for v in variants),
            "successful_checks": sum(v.successful_checks for v in variants),
            "events_stored": len(self.logs),
        }
