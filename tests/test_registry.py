import asyncio

import pytest

from stockwatch.monitors.discovery import PageInfo, VariantOption
from stockwatch.monitors.events import LogStatus
from stockwatch.monitors.products import DEFAULT_PRODUCT_URL, Product, Variant, VariantKind
from stockwatch.monitors.registry import InvalidProductError, ProductNotFoundError, ProductRegistry
from stockwatch.monitors.storage import MemoryStore

from conftest import make_multi_product, make_product, make_settings


def test_initialize_seeds_default_product(store, settings):
    registry = ProductRegistry(store, settings)

    assert registry.initialize() == 1

    product = registry.products[0]
    assert product.url == DEFAULT_PRODUCT_URL
    assert not product.is_monitoring
    assert len(store.products) == 1
    assert registry.logs.recent(1)[0].message == "Product added to watch list"


def test_initialize_loads_persisted_state_and_skips_broken_products(settings):
    good = make_product()
    empty = Product(base_url="https://shop.example.com/products/empty", name="Empty")
    store = MemoryStore(
        products=[good.to_dict(), empty.to_dict(), {"variants": [{"kind": "bogus"}]}],
        logs=[{"product_id": good.id, "product_name": good.name, "status": "anti_bot", "message": "blocked"}],
    )
    registry = ProductRegistry(store, settings)

    assert registry.initialize() == 1
    assert registry.get(good.id).name == good.name
    assert registry.logs.recent()[0].status == LogStatus.ANTI_BOT


def test_initialize_skips_products_that_fail_validation(settings):
    good = make_product()
    duplicated = make_product("https://shop.example.com/products/twice")
    duplicated.variants.append(Variant(url=duplicated.url))
    bad_interval = make_product("https://shop.example.com/products/zero", monitoring_interval=0)
    store = MemoryStore(products=[good.to_dict(), duplicated.to_dict(), bad_interval.to_dict(), good.to_dict()])
    registry = ProductRegistry(store, settings)

    assert registry.initialize() == 1
    assert [p.id for p in registry.products] == [good.id]


def test_every_mutation_is_persisted(registry, store):
    product = registry.add_product(make_product())
    assert store.products[0]["id"] == product.id

    registry.update_settings(product.id, interval=90, custom_user_agent="  ")
    assert store.products[0]["monitoring_interval"] == 90
    assert store.products[0]["custom_user_agent"] is None

    registry.remove_product(product.id)
    assert store.products == []
    assert [e["message"] for e in store.logs][:2] == [
        "Product removed from watch list",
        "Monitoring settings updated - interval: 90s",
    ]


def test_invalid_products_are_rejected(registry):
    with pytest.raises(InvalidProductError):
        registry.add_product(Product(base_url="https://shop.example.com/p", name="No variants"))

    with pytest.raises(InvalidProductError):
        registry.add_single("not a url", "Broken")

    duplicated = make_product()
    duplicated.variants.append(Variant(url=duplicated.url))
    with pytest.raises(InvalidProductError):
        registry.add_product(duplicated)

    with pytest.raises(InvalidProductError):
        registry.add_product(make_product(max_retries=0))

    assert len(registry) == 0


def test_unknown_ids_raise_not_found(registry):
    with pytest.raises(ProductNotFoundError):
        registry.require("missing")

    product = registry.add_product(make_product())
    with pytest.raises(ProductNotFoundError) as excinfo:
        registry.require_variant(product.id, "missing")
    assert excinfo.value.variant_id == "missing"


def test_update_settings_validates(registry):
    product = registry.add_product(make_product())

    with pytest.raises(InvalidProductError):
        registry.update_settings(product.id, interval=0)
    with pytest.raises(InvalidProductError):
        registry.update_settings(product.id, max_retries=0)

    updated = registry.update_settings(product.id, auto_start=True, custom_user_agent="StockBot/2")
    assert updated.auto_start
    assert updated.custom_user_agent == "StockBot/2"


def test_settings_are_edited_in_place(registry):
    product = registry.add_product(make_product())

    registry.update_settings(product.id, interval=45)

    # Running tasks hold this object; it must never be swapped out
    assert registry.get(product.id) is product
    assert product.monitoring_interval == 45


def test_add_and_remove_variants(registry):
    product = registry.add_product(make_product())
    extra = Variant(url=product.url + "?variant=2", kind=VariantKind.WHOLE_SET)

    assert registry.add_variant(product.id, extra) is True
    assert registry.add_variant(product.id, Variant(url=extra.url)) is False
    assert len(product.variants) == 2

    assert registry.remove_variant(product.id, "missing") is False
    assert registry.remove_variant(product.id, extra.id) is True

    with pytest.raises(InvalidProductError):
        registry.remove_variant(product.id, product.variants[0].id)


def test_remove_hooks_run_before_removal(registry):
    seen = []
    product = registry.add_product(make_multi_product(
        "https://shop.example.com/products/labubu?variant=1",
        "https://shop.example.com/products/labubu?variant=2",
    ))

    def hook(product_id, variant_id):
        seen.append((product_id, variant_id, product_id in registry))

    second = product.variants[1]
    registry.add_remove_hook(hook)
    registry.remove_variant(product.id, second.id)
    registry.remove_product(product.id)

    assert seen == [
        (product.id, second.id, True),
        (product.id, None, True),
    ]


def test_add_from_page_keeps_selected_variants(registry):
    page = PageInfo(
        url="https://shop.example.com/products/monsters",
        name="THE MONSTERS",
        image_url="https://cdn.example.com/m.png",
        variants=[
            VariantOption("Single box", "https://shop.example.com/products/monsters?variant=1"),
            VariantOption("Whole set", "https://shop.example.com/products/monsters?variant=2", kind=VariantKind.WHOLE_SET),
            VariantOption("Secret", "https://shop.example.com/products/monsters?variant=3"),
        ],
    )

    product = registry.add_from_page(page, selected=["Whole set", "https://shop.example.com/products/monsters?variant=3"])

    assert [v.label for v in product.variants] == ["Whole set", "Secret"]
    assert product.image_url == "https://cdn.example.com/m.png"

    with pytest.raises(InvalidProductError):
        registry.add_from_page(page, selected=["nothing"])


def test_logs_are_capped_and_newest_first(store):
    registry = ProductRegistry(store, make_settings(log_retention=3))
    product = registry.add_product(make_product())

    for i in range(5):
        registry.log(product, LogStatus.SUCCESS, f"check {i}")

    assert [e.message for e in registry.logs] == ["check 4", "check 3", "check 2"]
    assert len(store.logs) == 3


@pytest.mark.asyncio
async def test_log_saves_are_coalesced_inside_the_loop(registry, store):
    product = registry.add_product(make_product())
    await asyncio.sleep(0)
    saves = store.log_saves

    for i in range(10):
        registry.log(product, LogStatus.SUCCESS, f"check {i}")
    assert store.log_saves == saves

    await asyncio.sleep(0)

    assert store.log_saves == saves + 1
    assert store.logs[0]["message"] == "check 9"


@pytest.mark.asyncio
async def test_flush_logs_writes_pending_events(registry, store):
    product = registry.add_product(make_product())
    registry.log(product, LogStatus.SUCCESS, "last words")

    registry.flush_logs()

    assert store.logs[0]["message"] == "last words"


def test_clear_logs(registry):
    a = registry.add_product(make_product("https://shop.example.com/products/a"))
    b = registry.add_product(make_product("https://shop.example.com/products/b"))
    registry.log(a, LogStatus.SUCCESS, "a")
    registry.log(b, LogStatus.SUCCESS, "b")

    assert registry.clear_logs_for_product(a.id) == 2
    assert all(e.product_id == b.id for e in registry.logs)
    assert registry.clear_logs() == 2
    assert len(registry.logs) == 0

    with pytest.raises(ProductNotFoundError):
        registry.clear_logs_for_product("missing")


def test_stats(registry):
    product = registry.add_product(make_multi_product(
        "https://shop.example.com/products/labubu?variant=1",
        "https://shop.example.com/products/labubu?variant=2",
    ))
    product.variants[0].is_monitoring = True
    product.variants[1].is_available = True

    stats = registry.stats()

    assert stats["products"] == 1
    assert stats["variants"] == 2
    assert stats["monitoring_variants"] == 1
    assert stats["available_variants"] == 1
    assert registry.restore_ids() == [product.id]
