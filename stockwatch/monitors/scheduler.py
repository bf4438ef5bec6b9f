"""
Poll Scheduler
One independent asyncio task per monitored variant, keyed by (product id, variant id)
"""

import asyncio
import random
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

import structlog

from ..config import Settings
from .classifier import AvailabilityClassifier, Classification, Verdict
from .events import LogStatus
from .fetcher import FetchClient, FetchErrorKind, FetchResult
from .identity import rotate_identity
from .products import Product, Variant
from .registry import ProductRegistry
from .tracker import CheckOutcome, VariantTracker

logger = structlog.get_logger()

TimerKey = Tuple[str, str]
AvailableCallback = Callable[[Product, Variant], Awaitable[None]]


class PollScheduler:
    """
    Drives fetch -> classify -> apply for every active variant

    - start() on a variant checks immediately, then every monitoring interval
    - a tick is skipped, not queued, while the previous check for the same
      variant is still in flight
    - results that arrive after the variant was stopped or removed are dropped
    - instant checks never create or reset tasks
    """

    def __init__(
        self,
        registry: ProductRegistry,
        fetcher: FetchClient,
        classifier: Optional[AvailabilityClassifier] = None,
        settings: Optional[Settings] = None,
        on_available: Optional[AvailableCallback] = None,
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.classifier = classifier or AvailabilityClassifier()
        self.settings = settings or registry.settings

        self._timers: Dict[TimerKey, asyncio.Task] = {}
        self._in_flight: Set[TimerKey] = set()
        self._on_available = on_available

        # Stats
        self.checks_run = 0
        self.ticks_skipped = 0
        self.results_discarded = 0

        registry.add_remove_hook(self._on_remove)

    def set_available_callback(self, callback: AvailableCallback):
        """Set callback fired when a variant goes from out of stock to in stock"""
        self._on_available = callback

    # ============ Introspection ============

    @property
    def timer_count(self) -> int:
        return sum(1 for t in self._timers.values() if not t.done())

    def active_keys(self) -> List[TimerKey]:
        return [k for k, t in self._timers.items() if not t.done()]

    def is_scheduled(self, product_id: str, variant_id: str) -> bool:
        task = self._timers.get((product_id, variant_id))
        return task is not None and not task.done()

    def _lookup(self, key: TimerKey) -> Optional[Tuple[Product, Variant]]:
        product = self.registry.get(key[0])
        if product is None:
            return None
        variant = product.get_variant(key[1])
        if variant is None:
            return None
        return product, variant

    def _tracker(self, product: Product, variant: Variant) -> VariantTracker:
        return VariantTracker(product, variant, self.settings.indeterminate_policy)

    # ============ Start / stop ============

    def start_monitoring(self, product_id: str, initial_delay: float = 0.0) -> int:
        """Start every idle variant of a product; returns how many were started"""
        product = self.registry.require(product_id)

        started = [v for v in product.variants if self._start(product, v, initial_delay)]
        if started:
            self.registry.save()
            self.registry.log(
                product,
                LogStatus.SUCCESS,
                f"Monitoring started, interval {int(product.monitoring_interval)}s",
            )
        return len(started)

    def start_variant(self, product_id: str, variant_id: str, initial_delay: float = 0.0) -> bool:
        product = self.registry.require(product_id)
        variant = self.registry.require_variant(product_id, variant_id)

        if not self._start(product, variant, initial_delay):
            return False

        self.registry.save()
        self.registry.log(
            product,
            LogStatus.SUCCESS,
            f"[{variant.label}] Monitoring started, interval {int(product.interval_for(variant))}s",
        )
        return True

    def _start(self, product: Product, variant: Variant, initial_delay: float) -> bool:
        if not self._tracker(product, variant).start():
            return False
        self._arm((product.id, variant.id), initial_delay)
        return True

    def _arm(self, key: TimerKey, initial_delay: float):
        existing = self._timers.get(key)
        if existing is not None and not existing.done():
            return
        self._timers[key] = asyncio.create_task(
            self._monitor_loop(key, initial_delay),
            name=f"monitor:{key[0]}:{key[1]}",
        )

    def stop_monitoring(self, product_id: str) -> int:
        """Stop every variant of a product and release its tasks"""
        product = self.registry.require(product_id)

        stopped = 0
        for variant in product.variants:
            if self._tracker(product, variant).stop():
                stopped += 1
            self._release((product.id, variant.id))

        if stopped:
            self.registry.save()
            self.registry.log(product, LogStatus.SUCCESS, "Monitoring stopped")
        return stopped

    def stop_variant(self, product_id: str, variant_id: str) -> bool:
        product = self.registry.require(product_id)
        variant = self.registry.require_variant(product_id, variant_id)

        stopped = self._tracker(product, variant).stop()
        self._release((product_id, variant_id))

        if stopped:
            self.registry.save()
            self.registry.log(product, LogStatus.SUCCESS, f"[{variant.label}] Monitoring stopped")
        return stopped

    def _release(self, key: TimerKey):
        task = self._timers.pop(key, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _on_remove(self, product_id: str, variant_id: Optional[str]):
        product = self.registry.get(product_id)
        if product is None:
            return
        for variant in product.variants:
            if variant_id is None or variant.id == variant_id:
                self._tracker(product, variant).stop()
                self._release((product_id, variant.id))

    def start_all(self) -> int:
        """Start every product, each after a small random delay"""
        count = 0
        for product in self.registry.products:
            if all(v.is_monitoring for v in product.variants):
                continue
            delay = random.uniform(0, self.settings.jitter_max)
            if self.start_monitoring(product.id, initial_delay=delay):
                count += 1
        logger.info("All monitoring started", products=count)
        return count

    def stop_all(self) -> int:
        count = 0
        for product in self.registry.products:
            if product.is_monitoring or any(self.is_scheduled(product.id, v.id) for v in product.variants):
                self.stop_monitoring(product.id)
                count += 1
        logger.info("All monitoring stopped", products=count)
        return count

    def restore_monitoring(self) -> int:
        """
        Re-arm variants that were monitoring when state was last saved

        The persisted flag records intent, not a live task, so it is cleared
        before starting; otherwise the already-active guard would skip them.
        """
        restored = 0
        for product_id in self.registry.restore_ids():
            product = self.registry.require(product_id)
            wanted = [v for v in product.variants if v.is_monitoring]
            for variant in wanted:
                variant.is_monitoring = False

            for variant in wanted:
                if self._start(product, variant, 0.0):
                    restored += 1

            self.registry.log(
                product,
                LogStatus.SUCCESS,
                f"Monitoring restored for {len(wanted)} variant(s), interval {int(product.monitoring_interval)}s",
            )

        if restored:
            self.registry.save()
        return restored

    async def update_settings(
        self,
        product_id: str,
        interval: Optional[float] = None,
        auto_start: Optional[bool] = None,
        custom_user_agent: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Product:
        """Change product settings, restarting active variants instead of mutating live tasks"""
        product = self.registry.require(product_id)
        active = [v.id for v in product.variants if v.is_monitoring]

        for variant_id in active:
            self.stop_variant(product_id, variant_id)

        try:
            product = self.registry.update_settings(
                product_id,
                interval=interval,
                auto_start=auto_start,
                custom_user_agent=custom_user_agent,
                max_retries=max_retries,
            )
        finally:
            # Rejected settings still restart what was running
            if active:
                await asyncio.sleep(self.settings.restart_settle_delay)
                for variant_id in active:
                    if product_id in self.registry and self.registry.get(product_id).get_variant(variant_id):
                        self.start_variant(product_id, variant_id)

        return product

    # ============ Checks ============

    async def instant_check(self, product_id: str, variant_id: Optional[str] = None) -> List[CheckOutcome]:
        """Check now without touching the monitoring flag or the task cadence"""
        product = self.registry.require(product_id)
        if variant_id is not None:
            variants = [self.registry.require_variant(product_id, variant_id)]
        else:
            variants = list(product.variants)

        self.registry.log(product, LogStatus.INSTANT_CHECK, "Running instant check...")

        results = await asyncio.gather(*(self._check((product.id, v.id), manual=True) for v in variants))
        return [r for r in results if r is not None]

    async def instant_check_all(self) -> List[CheckOutcome]:
        """Instant-check every product, spreading requests with a random delay"""

        async def _delayed(product: Product) -> List[CheckOutcome]:
            await asyncio.sleep(random.uniform(0, self.settings.jitter_max))
            if product.id not in self.registry:
                return []
            return await self.instant_check(product.id)

        batches = await asyncio.gather(*(_delayed(p) for p in self.registry.products))
        return [outcome for batch in batches for outcome in batch]

    async def _monitor_loop(self, key: TimerKey, initial_delay: float):
        """Monitor a single variant in a loop"""
        if initial_delay > 0:
            try:
                await asyncio.sleep(initial_delay)
            except asyncio.CancelledError:
                return

        while self._is_armed(key):
            try:
                await self._check(key)

                found = self._lookup(key)
                if found is None or not self._is_armed(key):
                    break

                product, variant = found
                await asyncio.sleep(product.interval_for(variant))

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Monitor loop error", product=key[0], variant=key[1], error=str(e))
                await asyncio.sleep(5)

    def _is_armed(self, key: TimerKey) -> bool:
        found = self._lookup(key)
        return (
            found is not None
            and found[1].is_monitoring
            and self._timers.get(key) is asyncio.current_task()
        )

    async def _check(self, key: TimerKey, manual: bool = False) -> Optional[CheckOutcome]:
        """One fetch/classify/apply cycle; returns None when skipped or discarded"""
        found = self._lookup(key)
        if found is None:
            return None
        product, variant = found

        if key in self._in_flight:
            self.ticks_skipped += 1
            logger.debug("Check still in flight, skipping", product=key[0], variant=key[1])
            if manual:
                self.registry.log(
                    product,
                    LogStatus.INSTANT_CHECK,
                    f"[{variant.label}] Check already in progress, skipped",
                )
            return None

        # Snapshot what the request needs; state is re-read after the fetch
        url = variant.url
        identity = rotate_identity(product.custom_user_agent)

        self._in_flight.add(key)
        try:
            fetch = await self.fetcher.fetch(url, identity)
        except Exception as e:
            logger.error("Fetch raised", product=product.name[:50], variant=variant.label, error=str(e))
            fetch = FetchResult.failed(FetchErrorKind.NETWORK, f"Network error: {e}")
        finally:
            self._in_flight.discard(key)

        self.checks_run += 1
        classification = self._classify(fetch) if fetch.success else None
        return await self._apply(key, fetch, classification, manual)

    def _classify(self, fetch: FetchResult) -> Classification:
        try:
            return self.classifier.classify(fetch.body, fetch.status_code)
        except Exception as e:
            logger.error("Classifier error", error=str(e))
            return Classification(Verdict.INDETERMINATE)

    async def _apply(
        self,
        key: TimerKey,
        fetch: FetchResult,
        classification: Optional[Classification],
        manual: bool,
    ) -> Optional[CheckOutcome]:
        found = self._lookup(key)
        if found is None:
            self.results_discarded += 1
            logger.info("Discarding result for removed variant", product=key[0], variant=key[1])
            return None

        product, variant = found
        if not manual and not variant.is_monitoring:
            self.results_discarded += 1
            logger.info("Discarding result for stopped variant", product=product.name[:50], variant=variant.label)
            return None

        outcome = self._tracker(product, variant).apply(fetch, classification)

        for status, message in outcome.events:
            self.registry.log(
                product,
                status,
                message,
                response_time=outcome.response_time,
                http_status=outcome.http_status,
            )
        if outcome.counted:
            self.registry.save()

        if outcome.auto_paused:
            self._release(key)

        if outcome.became_available:
            await self._notify_available(product, variant)

        return outcome

    async def _notify_available(self, product: Product, variant: Variant):
        logger.info("Variant became available", product=product.name[:50], variant=variant.label, url=variant.url)
        if self._on_available is None:
            return
        try:
            await self._on_available(product, variant)
        except Exception as e:
            logger.error("Availability callback failed", product=product.name[:50], error=str(e))

    # ============ Shutdown ============

    async def close(self):
        """Cancel every task and close the fetcher; monitoring flags are left as persisted intent"""
        tasks = list(self._timers.values())
        self._timers.clear()

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.fetcher.close()
        logger.info("Scheduler closed", tasks=len(tasks))

    def get_stats(self) -> Dict:
        return {
            "timers": self.timer_count,
            "in_flight": len(self._in_flight),
            "checks_run": self.checks_run,
            "ticks_skipped": self.ticks_skipped,
            "results_discarded": self.results_discarded,
        }
