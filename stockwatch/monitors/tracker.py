"""
Variant Tracker
Lifecycle and check-result application for one monitored variant

States:
    Idle        is_monitoring = False
    Active      is_monitoring = True, scheduler task running
    AutoPaused  is_monitoring forced False after max_retries consecutive errors;
                only the log tells it apart from Idle
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from ..config import IndeterminatePolicy
from .classifier import Classification, Verdict
from .events import LogStatus
from .fetcher import FetchErrorKind, FetchResult
from .products import Product, Variant


@dataclass
class CheckOutcome:
    """What applying one check did to a variant"""
    events: List[Tuple[LogStatus, str]] = field(default_factory=list)
    counted: bool = True
    failed: bool = False
    availability_changed: bool = False
    became_available: bool = False
    auto_paused: bool = False
    response_time: Optional[float] = None
    http_status: Optional[int] = None


class VariantTracker:
    """Applies check results to one variant of one product"""

    def __init__(
        self,
        product: Product,
        variant: Variant,
        policy: IndeterminatePolicy = IndeterminatePolicy.ASSUME_AVAILABLE,
    ):
        self.product = product
        self.variant = variant
        self.policy = policy

    @property
    def key(self) -> Tuple[str, str]:
        return (self.product.id, self.variant.id)

    @property
    def is_active(self) -> bool:
        return self.variant.is_monitoring

    def _tag(self, message: str) -> str:
        if len(self.product.variants) > 1:
            return f"[{self.variant.label}] {message}"
        return message

    def start(self) -> bool:
        """Idle -> Active; False when already Active"""
        if self.variant.is_monitoring:
            return False
        self.variant.is_monitoring = True
        return True

    def stop(self) -> bool:
        """Active -> Idle; False when already Idle"""
        if not self.variant.is_monitoring:
            return False
        self.variant.is_monitoring = False
        return True

    def apply(self, fetch: FetchResult, classification: Optional[Classification] = None) -> CheckOutcome:
        """
        Apply one check result

        Order matters: counters first, then the failure branch (availability
        untouched) or the success branch (error count reset before the
        availability comparison).
        """
        outcome = CheckOutcome(response_time=fetch.response_time, http_status=fetch.status_code)

        # Rejected before dispatch: not a check, nothing counted
        if not fetch.success and fetch.error_kind == FetchErrorKind.INVALID_URL:
            outcome.counted = False
            outcome.failed = True
            outcome.events.append((LogStatus.ERROR, self._tag(f"Invalid URL: {self.variant.url}")))
            return outcome

        variant = self.variant
        variant.total_checks += 1
        variant.last_checked = datetime.now()

        failure = self._failure(fetch, classification)
        if failure:
            status, message = failure
            outcome.failed = True
            variant.error_count += 1
            outcome.events.append((status, self._tag(message)))

            if variant.error_count >= self.product.max_retries and variant.is_monitoring:
                self.stop()
                outcome.auto_paused = True
                outcome.events.append((
                    LogStatus.ERROR,
                    self._tag(f"Monitoring auto-paused after {variant.error_count} consecutive errors"),
                ))
            return outcome

        initial = variant.successful_checks == 0
        was_available = variant.is_available

        variant.error_count = 0
        variant.successful_checks += 1

        now_available = self._resolve(classification, was_available, initial)
        variant.is_available = now_available
        self._update_fields(classification)

        state = "in stock" if now_available else "out of stock"
        price_info = f" (price: {variant.price})" if variant.price else ""
        if classification is not None and classification.verdict == Verdict.INDETERMINATE:
            state += ", no stock markers found"

        if now_available != was_available:
            outcome.availability_changed = True
            outcome.became_available = now_available and not was_available
            headline = "Back in stock!" if now_available else "Went out of stock"
            outcome.events.append((
                LogStatus.AVAILABILITY_CHANGED,
                self._tag(f"{headline} - {state}{price_info}"),
            ))
        else:
            outcome.events.append((LogStatus.SUCCESS, self._tag(f"Status check: {state}{price_info}")))

        return outcome

    def _failure(
        self, fetch: FetchResult, classification: Optional[Classification]
    ) -> Optional[Tuple[LogStatus, str]]:
        if not fetch.success:
            if fetch.error_kind == FetchErrorKind.NOT_CONNECTED:
                return LogStatus.NETWORK_ERROR, f"Not connected: {fetch.error}"
            if fetch.error_kind == FetchErrorKind.TIMEOUT:
                return LogStatus.NETWORK_ERROR, f"Request timed out: {fetch.error}"
            return LogStatus.NETWORK_ERROR, fetch.error or "Network error"

        if classification is not None and classification.is_blocked:
            return (
                LogStatus.ANTI_BOT,
                f"Anti-bot protection detected (HTTP {fetch.status_code}, {classification.marker})",
            )

        if fetch.status_code is not None and fetch.status_code >= 500:
            return LogStatus.NETWORK_ERROR, f"Server error (HTTP {fetch.status_code})"

        return None

    def _resolve(self, classification: Optional[Classification], previous: bool, initial: bool) -> bool:
        verdict = classification.verdict if classification else Verdict.INDETERMINATE

        if verdict == Verdict.AVAILABLE:
            return True
        if verdict == Verdict.UNAVAILABLE:
            return False

        if self.policy == IndeterminatePolicy.ASSUME_UNAVAILABLE:
            return False
        if self.policy == IndeterminatePolicy.ASSUME_AVAILABLE and initial:
            return True
        return previous

    def _update_fields(self, classification: Optional[Classification]):
        if classification is None:
            return
        if classification.price:
            self.variant.price = classification.price
        if classification.image_url:
            self.variant.image_url = classification.image_url
            if not self.product.image_url:
                self.product.image_url = classification.image_url
        if classification.name and not self.variant.name:
            self.variant.name = classification.name
