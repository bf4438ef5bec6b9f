"""Stock monitoring modules"""

from .identity import RequestIdentity, rotate_identity
from .fetcher import FetchClient, FetchResult, FetchErrorKind, is_valid_url
from .classifier import AvailabilityClassifier, Classification, Verdict
from .products import Product, Variant, VariantKind, default_product
from .events import EventLog, LogStatus, MonitorEvent
from .storage import ProductStore, JsonFileStore, MemoryStore
from .tracker import CheckOutcome, VariantTracker
from .discovery import DiscoveryError, PageInfo, VariantOption, discover_variants, parse_product_page
from .registry import ProductRegistry, RegistryError, ProductNotFoundError, InvalidProductError
from .scheduler import PollScheduler
from .manager import Monitor

__all__ = [
    # Fetching
    'RequestIdentity', 'rotate_identity',
    'FetchClient', 'FetchResult', 'FetchErrorKind', 'is_valid_url',

    # Classification
    'AvailabilityClassifier', 'Classification', 'Verdict',

    # Model
    'Product', 'Variant', 'VariantKind', 'default_product',
    'EventLog', 'LogStatus', 'MonitorEvent',
    'ProductStore', 'JsonFileStore', 'MemoryStore',

    # Tracking
    'CheckOutcome', 'VariantTracker',

    # Discovery
    'DiscoveryError', 'PageInfo', 'VariantOption', 'discover_variants', 'parse_product_page',

    # Registry
    'ProductRegistry', 'RegistryError', 'ProductNotFoundError', 'InvalidProductError',

    # Scheduling
    'PollScheduler', 'Monitor',
]
