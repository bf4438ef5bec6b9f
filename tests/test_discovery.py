import json

import pytest

from stockwatch.monitors.classifier import AvailabilityClassifier
from stockwatch.monitors.discovery import DiscoveryError, discover_variants, parse_product_page, variant_url
from stockwatch.monitors.products import VariantKind

from conftest import FakeFetcher, IN_STOCK_PAGE, page, timeout

URL = "https://shop.example.com/products/monsters"


def _shopify_page():
    product = {
        "title": "THE MONSTERS Big into Energy",
        "variants": [
            {"id": 101, "title": "Single Box", "price": 1990, "available": False, "sku": "MON-1"},
            {"id": 102, "title": "Whole Set", "price": 11940, "available": True, "sku": "MON-SET",
             "featured_image": {"src": "//cdn.example.com/set.png"}},
            {"id": None, "title": "Broken"},
        ],
    }
    return (
        '<meta property="og:title" content="THE MONSTERS Big into Energy">'
        f'<script type="application/json" data-product-json>{json.dumps(product)}</script>'
    )


def test_variant_url():
    assert variant_url(URL, 5) == URL + "?variant=5"
    assert variant_url(URL + "?ref=home", 5) == URL + "?ref=home&variant=5"


def test_shopify_product_json():
    info = parse_product_page(_shopify_page(), URL)

    assert info.name == "THE MONSTERS Big into Energy"
    assert [o.url for o in info.variants] == [URL + "?variant=101", URL + "?variant=102"]

    single, whole = info.variants
    assert single.kind == VariantKind.NAMED
    assert single.price == "€19.90"
    assert not single.is_available
    assert whole.kind == VariantKind.WHOLE_SET
    assert whole.price == "€119.40"
    assert whole.is_available
    assert whole.image_url == "https://cdn.example.com/set.png"
    assert whole.sku == "MON-SET"


def test_json_ld_offers():
    ld = {
        "@type": "Product",
        "name": "Crybaby Sad Club",
        "brand": {"@type": "Brand", "name": "POP MART"},
        "offers": [
            {"name": "Random box", "sku": "CB-R", "price": "15.90", "availability": "https://schema.org/InStock"},
            {"name": "Limited figure", "sku": "CB-L", "price": "39.00", "availability": "https://schema.org/OutOfStock"},
        ],
    }
    body = f'<script type="application/ld+json">{json.dumps(ld)}</script>'

    info = parse_product_page(body, URL)

    assert info.brand == "POP MART"
    assert [o.kind for o in info.variants] == [VariantKind.RANDOM, VariantKind.LIMITED]
    assert [o.is_available for o in info.variants] == [True, False]
    assert info.variants[0].url == URL + "?variant=CB-R"


def test_select_options():
    body = """
    <h1>Hirono Reshape</h1>
    <select name="id">
      <option value="">Please select</option>
      <option value="11">Single box - 12,90 €</option>
      <option value="12" disabled>Whole set</option>
    </select>
    """

    info = parse_product_page(body, URL)

    assert [o.label for o in info.variants] == ["Single box - 12,90 €", "Whole set"]
    assert info.variants[0].price == "€12.90"
    assert info.variants[0].is_available
    assert not info.variants[1].is_available
    assert info.variants[1].kind == VariantKind.WHOLE_SET


def test_plain_page_becomes_single_option():
    info = parse_product_page(IN_STOCK_PAGE, URL)

    assert len(info.variants) == 1
    option = info.variants[0]
    assert option.url == URL
    assert option.kind == VariantKind.SINGLE_BOX
    assert option.is_available
    assert info.image_url == "https://cdn.example.com/labubu.png"

    variant = option.to_variant()
    assert variant.label == "Labubu Pendant"


@pytest.mark.parametrize("payload", [
    [{"id": 1, "title": "Single Box"}],
    {"title": "Labubu", "variants": {"id": 1}},
    {"title": "Labubu", "variants": ["Single Box", None]},
])
def test_unexpected_product_json_falls_back(payload):
    body = f'<script type="application/json" data-product-json>{json.dumps(payload)}</script>' + IN_STOCK_PAGE

    info = parse_product_page(body, URL)

    assert [o.url for o in info.variants] == [URL]
    assert info.name == "Labubu Pendant"


def test_page_without_name_is_rejected():
    with pytest.raises(DiscoveryError):
        parse_product_page("<html><body>nothing here</body></html>", URL)


@pytest.mark.asyncio
async def test_discover_variants_fetches_and_parses():
    fetcher = FakeFetcher(page(_shopify_page()))

    info = await discover_variants(URL, fetcher, AvailabilityClassifier(), custom_user_agent="StockBot/1.0")

    assert len(info.variants) == 2
    assert fetcher.calls == [URL]
    assert fetcher.identities[0].user_agent == "StockBot/1.0"


@pytest.mark.asyncio
@pytest.mark.parametrize("result, message", [
    (timeout(), "timed out"),
    (page("<title>Attention Required! | Cloudflare</title>", 200), "anti-bot"),
    (page("<title>Not found</title>", 404), "HTTP 404"),
])
async def test_discover_variants_failures(result, message):
    fetcher = FakeFetcher(result)

    with pytest.raises(DiscoveryError, match=message):
        await discover_variants(URL, fetcher, AvailabilityClassifier())
