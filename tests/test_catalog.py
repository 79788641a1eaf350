import pytest

import catalog
from catalog import ProductQuery


@pytest.fixture
def products(make_product):
    return [
        make_product("a", name="Trail Runner", description="Grippy running shoe", price=80,
                     category="Footwear", subcategory="Sport", brand="Stride", rating=4.1,
                     tags=["Outdoor"], createdAt="2024-01-02T00:00:00.000Z"),
        make_product("b", name="city sneaker", description="Everyday shoe", price=45.5,
                     category="footwear", subcategory="Casual", brand="Urbanite", rating=4.8,
                     featured=True, createdAt="2024-03-01T00:00:00.000Z"),
        make_product("c", name="Anorak", description="Rain jacket", price=120,
                     category="Apparel", subcategory="Outerwear", brand="Stride", rating=3.9,
                     tags=["waterproof", "outdoor"], createdAt="2023-12-25T00:00:00.000Z"),
        make_product("d", name="Beanie", description="Wool hat", price=15,
                     category="Apparel", subcategory="Accessories", brand="Urbanite", rating=4.8,
                     featured=True, createdAt="2024-02-10T00:00:00.000Z"),
    ]


def ids(result):
    return [p["id"] for p in result["products"]]


def test_no_filters_keeps_collection_order(products):
    assert ids(catalog.search(products, ProductQuery())) == ["a", "b", "c", "d"]


@pytest.mark.parametrize("term,expected", [
    ("SHOE", ["a", "b"]),
    ("jacket", ["c"]),
    ("outdoor", ["a", "c"]),
    ("nothing-like-this", []),
])
def test_search_covers_name_description_and_tags(products, term, expected):
    assert ids(catalog.search(products, ProductQuery(search=term))) == expected


def test_category_brand_subcategory_are_case_insensitive(products):
    assert ids(catalog.search(products, ProductQuery(category="FOOTWEAR"))) == ["a", "b"]
    assert ids(catalog.search(products, ProductQuery(brand="stride"))) == ["a", "c"]
    assert ids(catalog.search(products, ProductQuery(subcategory="casual"))) == ["b"]


def test_filters_compose_with_and(products):
    query = ProductQuery(category="apparel", brand="Urbanite", featured=True)
    assert ids(catalog.search(products, query)) == ["d"]


def test_price_range_is_inclusive(products):
    assert ids(catalog.search(products, ProductQuery(minPrice=45.5, maxPrice=80))) == ["a", "b"]


def test_featured_false_does_not_filter(products):
    assert len(catalog.search(products, ProductQuery(featured=False))["products"]) == 4
    assert ids(catalog.search(products, ProductQuery(featured=True))) == ["b", "d"]


@pytest.mark.parametrize("sort,expected", [
    ("price-asc", ["d", "b", "a", "c"]),
    ("price-desc", ["c", "a", "b", "d"]),
    ("name-asc", ["c", "d", "b", "a"]),
    ("name-desc", ["a", "b", "d", "c"]),
    ("rating", ["b", "d", "a", "c"]),
    ("newest", ["b", "d", "a", "c"]),
    ("bogus", ["a", "b", "c", "d"]),
])
def test_sort_orders(products, sort, expected):
    assert ids(catalog.search(products, ProductQuery(sort=sort))) == expected


def test_sort_does_not_mutate_input(products):
    catalog.sort_products(products, "price-desc")
    assert [p["id"] for p in products] == ["a", "b", "c", "d"]


def test_pagination_metadata(make_product):
    many = [make_product(str(i)) for i in range(25)]
    result = catalog.search(many, ProductQuery(page=3, limit=12))
    assert ids(result) == ["24"]
    assert result["pagination"] == {"total": 25, "page": 3, "pageSize": 12, "totalPages": 3}


def test_page_beyond_end_is_empty_with_accurate_totals(make_product):
    many = [make_product(str(i)) for i in range(25)]
    result = catalog.search(many, ProductQuery(page=9))
    assert result["products"] == []
    assert result["pagination"]["total"] == 25
    assert result["pagination"]["totalPages"] == 3


def test_default_page_size_and_empty_catalog():
    result = catalog.search([], ProductQuery())
    assert result["pagination"] == {"total": 0, "page": 1, "pageSize": 12, "totalPages": 0}


def test_facets_are_distinct_in_first_seen_order(products):
    assert catalog.facets(products) == {
        "categories": ["Footwear", "footwear", "Apparel"],
        "subcategories": ["Sport", "Casual", "Outerwear", "Accessories"],
        "brands": ["Stride", "Urbanite"],
    }


def test_related_excludes_self_and_caps(make_product):
    many = [make_product(str(i), category="Same") for i in range(7)]
    many.append(make_product("x", category="Other"))
    related = catalog.related(many, many[0])
    assert [p["id"] for p in related] == ["1", "2", "3", "4"]
