"""
Monitor Manager
Owns the store, registry, fetch client and scheduler for one running engine
"""

from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import structlog

from ..config import Settings, get_settings
from .classifier import AvailabilityClassifier
from .discovery import PageInfo, discover_variants
from .fetcher import FetchClient
from .products import Product, VariantKind
from .registry import ProductRegistry
from .scheduler import AvailableCallback, PollScheduler
from .storage import JsonFileStore, ProductStore

logger = structlog.get_logger()


class Monitor:
    """
    Engine context object

    Features:
    - Restores persisted monitoring on start
    - Starts auto_start products on start and on add
    - Stops a product's tasks before removing it
    - Discovers variants from a product page URL
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProductRegistry,
        fetcher: FetchClient,
        scheduler: PollScheduler,
    ):
        self.settings = settings
        self.registry = registry
        self.fetcher = fetcher
        self.scheduler = scheduler
        self.classifier = scheduler.classifier
        self._running = False

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[ProductStore] = None,
        fetcher: Optional[FetchClient] = None,
        classifier: Optional[AvailabilityClassifier] = None,
        on_available: Optional[AvailableCallback] = None,
    ) -> "Monitor":
        settings = settings or get_settings()
        store = store or JsonFileStore(str(Path(settings.data_dir)))
        fetcher = fetcher or FetchClient.from_settings(settings)

        registry = ProductRegistry(store, settings)
        scheduler = PollScheduler(
            registry,
            fetcher,
            classifier=classifier,
            settings=settings,
            on_available=on_available,
        )
        return cls(settings, registry, fetcher, scheduler)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Load state, restore persisted monitoring, then start auto_start products"""
        if self._running:
            logger.warning("Monitor already running")
            return

        self.registry.initialize()
        restored = self.scheduler.restore_monitoring()

        auto_started = 0
        for product in self.registry.products:
            if product.auto_start and not product.is_monitoring:
                if self.scheduler.start_monitoring(product.id):
                    auto_started += 1

        self._running = True
        logger.info(
            "Monitor started",
            products=len(self.registry),
            restored=restored,
            auto_started=auto_started,
        )

    async def close(self):
        self.registry.flush_logs()
        if not self._running:
            await self.fetcher.close()
            return

        self._running = False
        await self.scheduler.close()
        self.registry.flush_logs()
        logger.info("Monitor stopped")

    # ============ Products ============

    def _after_add(self, product: Product) -> Product:
        if product.auto_start:
            self.scheduler.start_monitoring(product.id)
        return product

    def add_product(self, product: Product) -> Product:
        return self._after_add(self.registry.add_product(product))

    def add_single(
        self,
        url: str,
        name: str,
        kind: VariantKind = VariantKind.SINGLE_BOX,
        image_url: Optional[str] = None,
        monitoring_interval: Optional[float] = None,
        auto_start: bool = False,
    ) -> Product:
        return self._after_add(self.registry.add_single(
            url,
            name,
            kind=kind,
            image_url=image_url,
            monitoring_interval=monitoring_interval,
            auto_start=auto_start,
        ))

    async def discover(self, url: str, custom_user_agent: Optional[str] = None) -> PageInfo:
        """Fetch a product page and list its variants without adding anything"""
        return await discover_variants(
            url,
            self.fetcher,
            classifier=self.classifier,
            custom_user_agent=custom_user_agent,
        )

    async def add_discovered(
        self,
        url: str,
        selected: Optional[Iterable[str]] = None,
        monitoring_interval: Optional[float] = None,
        auto_start: bool = False,
    ) -> Product:
        page = await self.discover(url)
        product = self.registry.add_from_page(
            page,
            selected=selected,
            monitoring_interval=monitoring_interval,
            auto_start=auto_start,
        )
        return self._after_add(product)

    def remove_product(self, product_id: str) -> Product:
        self.scheduler.stop_monitoring(product_id)
        return self.registry.remove_product(product_id)

    # ============ Stats ============

    def get_stats(self) -> Dict[str, Any]:
        """Get monitoring statistics"""
        return {
            "running": self._running,
            **self.registry.stats(),
            "scheduler": self.scheduler.get_stats(),
            "fetcher": {
                "requests": self.fetcher.request_count,
                "failures": self.fetcher.failure_count,
            },
        }
