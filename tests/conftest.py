import pytest

from site_taxonomy.hierarchy import HierarchyBuilder, HierarchyResult

SHOP = "https://shop.example.com"


@pytest.fixture
def shop_urls() -> list[str]:
    return [
        f"{SHOP}/",
        f"{SHOP}/shoes",
        f"{SHOP}/shoes/running",
        f"{SHOP}/shoes/running/mens",
        f"{SHOP}/shirts",
    ]


@pytest.fixture
def shop_hierarchy(shop_urls) -> HierarchyResult:
    return HierarchyBuilder().build(shop_urls)


@pytest.fixture
def catalog_records() -> list[dict]:
    """A small catalog with metadata, a sibling group and a deeper branch."""
    return [
        {"url": f"{SHOP}/", "title": "Home", "metadata": {"hasContent": True, "contentStatus": "processed"}},
        {"url": f"{SHOP}/shoes", "title": "Shoes", "metadata": {"skuCount": 120, "hasContent": True}},
        {"url": f"{SHOP}/shoes/red", "title": "Red Shoes", "metadata": {"skuCount": 12}},
        {"url": f"{SHOP}/shoes/blue", "title": "Blue Shoes", "metadata": {"skuCount": 10}},
        {"url": f"{SHOP}/shoes/green", "title": "Green Shoes", "metadata": {"skuCount": 11}},
        {"url": f"{SHOP}/shirts", "title": "Shirts", "lastmod": "2024-01-10"},
        {"url": f"{SHOP}/shirts/polo", "title": "Polo Shirts", "changefreq": "weekly", "priority": 0.5},
    ]
