import json

from stockwatch.monitors.events import EventLog, LogStatus, MonitorEvent
from stockwatch.monitors.products import Product, Variant, VariantKind, default_product
from stockwatch.monitors.registry import ProductRegistry
from stockwatch.monitors.storage import JsonFileStore, MemoryStore

from conftest import make_multi_product, make_settings


def test_json_store_round_trip(tmp_path):
    store = JsonFileStore(str(tmp_path / "data"))
    product = make_multi_product(
        "https://shop.example.com/products/labubu?variant=1",
        "https://shop.example.com/products/labubu?variant=2",
    )
    product.variants[0].is_monitoring = True
    product.variants[1].monitoring_interval = 60

    store.save_products([product.to_dict()])
    loaded = Product.from_dict(store.load_products()[0])

    assert loaded.id == product.id
    assert [v.id for v in loaded.variants] == [v.id for v in product.variants]
    assert loaded.variants[0].is_monitoring
    assert loaded.interval_for(loaded.variants[1]) == 60
    assert loaded.interval_for(loaded.variants[0]) == 300
    assert not list(tmp_path.joinpath("data").glob("*.tmp"))


def test_json_store_missing_or_corrupt_files(tmp_path):
    store = JsonFileStore(str(tmp_path))
    assert store.load_products() == []

    (tmp_path / "products.json").write_text("{broken", encoding="utf-8")
    (tmp_path / "logs.json").write_text(json.dumps({"not": "a list"}), encoding="utf-8")

    assert store.load_products() == []
    assert store.load_logs() == []


def test_registry_state_survives_restart(tmp_path):
    settings = make_settings()
    first = ProductRegistry(JsonFileStore(str(tmp_path)), settings)
    product = first.add_single("https://shop.example.com/products/a", "Crybaby", kind=VariantKind.RANDOM)
    first.log(product, LogStatus.ANTI_BOT, "Anti-bot protection detected (HTTP 403, HTTP 403)", http_status=403)

    second = ProductRegistry(JsonFileStore(str(tmp_path)), settings)
    second.initialize()

    restored = second.get(product.id)
    assert restored.kind == VariantKind.RANDOM
    assert second.logs.recent(1)[0].http_status == 403


def test_memory_store_copies_snapshots():
    store = MemoryStore()
    snapshot = [default_product().to_dict()]

    store.save_products(snapshot)
    snapshot[0]["name"] = "changed"

    assert store.load_products()[0]["name"] != "changed"
    assert store.product_saves == 1


def test_variant_serialization_keeps_state():
    variant = Variant(url="https://shop.example.com/p?variant=9", kind=VariantKind.LIMITED, price="€89.00")
    variant.total_checks = 7
    variant.successful_checks = 5
    variant.error_count = 2

    data = json.loads(json.dumps(variant.to_dict()))
    restored = Variant.from_dict(data)

    assert restored == variant


def test_event_log_from_persisted_entries_respects_cap():
    events = [MonitorEvent("p", "Product", LogStatus.SUCCESS, f"m{i}") for i in range(5)]

    log = EventLog(max_events=2, events=events)

    assert [e.message for e in log] == ["m0", "m1"]
    assert MonitorEvent.from_dict(events[0].to_dict()).timestamp == events[0].timestamp
