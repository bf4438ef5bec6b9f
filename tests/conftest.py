import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from stockwatch.config import IndeterminatePolicy, Settings
from stockwatch.monitors.fetcher import FetchErrorKind, FetchResult
from stockwatch.monitors.products import Product, Variant, VariantKind
from stockwatch.monitors.registry import ProductRegistry
from stockwatch.monitors.scheduler import PollScheduler
from stockwatch.monitors.storage import MemoryStore

IN_STOCK_PAGE = """
<html><head><title>Labubu Pendant | POP MART</title>
<meta property="og:title" content="Labubu Pendant">
<meta property="og:image" content="https://cdn.example.com/labubu.png">
</head><body><span class="price">€ 19,90</span><button>In den Warenkorb</button></body></html>
"""

SOLD_OUT_PAGE = """
<html><head><title>Labubu Pendant | POP MART</title></head>
<body><span class="price">€ 19,90</span><div class="badge">Ausverkauft</div></body></html>
"""

BLANK_PAGE = "<html><head><title>Labubu Pendant</title></head><body></body></html>"


def page(body: str, status_code: int = 200) -> FetchResult:
    return FetchResult(success=True, body=body, status_code=status_code, response_time=0.01)


def timeout() -> FetchResult:
    return FetchResult.failed(FetchErrorKind.TIMEOUT, "Request timed out after 30s", 30.0)


class FakeFetcher:
    """Scripted stand-in for FetchClient"""

    def __init__(self, default: Optional[FetchResult] = None):
        self.default = default or page(IN_STOCK_PAGE)
        self.scripts: Dict[str, List[FetchResult]] = {}
        self.responder: Optional[Callable[[str], FetchResult]] = None
        self.calls: List[str] = []
        self.identities = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False
        self.request_count = 0
        self.failure_count = 0

    def script(self, url: str, *results: FetchResult):
        self.scripts.setdefault(url, []).extend(results)

    async def fetch(self, url, identity):
        self.calls.append(url)
        self.identities.append(identity)
        self.request_count += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.scripts.get(url):
            return self.scripts[url].pop(0)
        if self.responder is not None:
            return self.responder(url)
        return self.default

    async def close(self):
        self.closed = True


def make_settings(**overrides) -> Settings:
    values = dict(
        request_delay_min=0.0,
        request_delay_max=0.0,
        jitter_max=0.0,
        restart_settle_delay=0.0,
        indeterminate_policy=IndeterminatePolicy.ASSUME_AVAILABLE,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_product(url: str = "https://shop.example.com/products/labubu", **kwargs) -> Product:
    return Product.single(url=url, name=kwargs.pop("name", "Labubu Pendant"), **kwargs)


def make_multi_product(*urls: str, **kwargs) -> Product:
    variants = [Variant(url=u, name="", kind=VariantKind.NAMED, option=f"Option {i + 1}") for i, u in enumerate(urls)]
    return Product.from_variants(
        base_url="https://shop.example.com/products/labubu",
        name=kwargs.pop("name", "Labubu Pendant"),
        variants=variants,
        **kwargs,
    )


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store, settings):
    return ProductRegistry(store, settings)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def scheduler(registry, fetcher, settings):
    return PollScheduler(registry, fetcher, settings=settings)


async def wait_for(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
