import math

import pytest
from sqlalchemy import select

from storefront.catalog import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    MAX_PAGE,
    ProductFilter,
    clamp_limit,
    clamp_page,
    get_product_by_slug,
    list_categories,
    list_products,
    page_count,
)
from storefront.checkout import CartLine, checkout
from storefront.errors import NotFound
from storefront.models import OrderItem, Product
from storefront.seed import DEMO_PRODUCTS, seed


def test_ten_products_paginate_nine_then_one(session, make_product):
    for _ in range(10):
        make_product()

    first = list_products(session, ProductFilter(), page=1, limit=9)
    assert len(first.items) == 9
    assert first.total == 10
    assert first.page_count == 2

    second = list_products(session, ProductFilter(), page=2, limit=9)
    assert len(second.items) == 1
    assert second.page_count == 2


def test_newest_first(session, make_product):
    a = make_product(name="Old")
    b = make_product(name="Newer")
    c = make_product(name="Newest")
    page = list_products(session, ProductFilter())
    assert [p.id for p in page.items] == [c.id, b.id, a.id]


@pytest.mark.parametrize("limit", [1, 2, 3, 4, 7, 24])
def test_page_size_and_page_count(session, make_product, limit):
    for _ in range(7):
        make_product()
    for page in range(1, 5):
        result = list_products(session, ProductFilter(), page=page, limit=limit)
        assert len(result.items) <= limit
        assert result.page_count == max(1, math.ceil(result.total / limit))


def test_empty_catalog_has_one_page(session):
    result = list_products(session, ProductFilter())
    assert result.items == []
    assert result.total == 0
    assert result.page_count == 1


def test_clamping():
    assert clamp_limit(None) == DEFAULT_LIMIT
    assert clamp_limit(0) == 1
    assert clamp_limit(-5) == 1
    assert clamp_limit(100) == MAX_LIMIT
    assert clamp_page(0) == 1
    assert clamp_page(-3) == 1
    assert clamp_page(None) == 1
    assert clamp_page(10**18) == MAX_PAGE
    assert page_count(0, 9) == 1
    assert page_count(18, 9) == 2
    assert page_count(19, 9) == 3


def test_oversized_limit_is_clamped(session, make_product):
    for _ in range(30):
        make_product()
    result = list_products(session, ProductFilter(), page=1, limit=500)
    assert result.limit == 24
    assert len(result.items) == 24
    assert result.page_count == 2


def test_text_matches_name_or_description_case_insensitively(session, make_product):
    tee = make_product(name="Basic Tee", description="Soft cotton")
    hoodie = make_product(name="Hoodie", description="Comfy COTTON blend")
    make_product(name="Cap", description="Adjustable")

    ids = {p.id for p in list_products(session, ProductFilter(text="cotton")).items}
    assert ids == {tee.id, hoodie.id}

    ids = {p.id for p in list_products(session, ProductFilter(text="TEE")).items}
    assert ids == {tee.id}


def test_text_wildcards_are_literal(session, make_product):
    make_product(name="Plain")
    pct = make_product(name="100% wool")
    ids = {p.id for p in list_products(session, ProductFilter(text="%")).items}
    assert ids == {pct.id}


def test_category_matches_slug_or_name(session, make_category, make_product):
    clothing = make_category("Clothing", "clothing")
    shoes = make_category("Running Shoes", "running-shoes")
    tee = make_product(name="Tee", category=clothing)
    runner = make_product(name="Runner", category=shoes)

    by_slug = list_products(session, ProductFilter(category="RUNNING-SHOES")).items
    assert [p.id for p in by_slug] == [runner.id]

    by_name = list_products(session, ProductFilter(category="running shoes")).items
    assert [p.id for p in by_name] == [runner.id]

    assert [p.id for p in list_products(session, ProductFilter(category="clothing")).items] == [tee.id]
    assert list_products(session, ProductFilter(category="nope")).total == 0


def test_text_and_category_combine_with_and(session, make_category, make_product):
    clothing = make_category("Clothing", "clothing")
    shoes = make_category("Shoes", "shoes")
    cotton_tee = make_product(name="Cotton Tee", category=clothing)
    make_product(name="Cotton Sneaker", category=shoes)
    make_product(name="Wool Jumper", category=clothing)

    result = list_products(session, ProductFilter(text="cotton", category="clothing"))
    assert [p.id for p in result.items] == [cotton_tee.id]
    assert result.total == 1


def test_blank_params_mean_no_filter():
    assert ProductFilter.from_params("  ", "") == ProductFilter()
    assert ProductFilter.from_params(" tee ", " Shoes ") == ProductFilter(text="tee", category="Shoes")


def test_get_product_by_slug(session, make_product):
    p = make_product(slug="basic-tee")
    assert get_product_by_slug(session, "basic-tee").id == p.id
    with pytest.raises(NotFound):
        get_product_by_slug(session, "missing")


def test_categories_sorted_by_name(session, make_category):
    make_category("Shoes", "shoes")
    make_category("Accessories", "accessories")
    assert [c.name for c in list_categories(session)] == ["Accessories", "Shoes"]


def test_huge_page_is_empty_not_an_error(session, make_product):
    make_product()
    result = list_products(session, ProductFilter(), page=10**18, limit=24)
    assert result.items == []
    assert result.page == MAX_PAGE
    assert result.total == 1


def test_text_folds_non_ascii_case(session, make_category, make_product):
    jacket = make_product(name="Élan Jacket", description="Ärmellos")
    make_product(name="Plain Tee")
    assert [p.id for p in list_products(session, ProductFilter(text="élan")).items] == [jacket.id]
    assert [p.id for p in list_products(session, ProductFilter(text="ÄRMEL")).items] == [jacket.id]

    cafe = make_category("Café", "cafe")
    mug = make_product(name="Mug", category=cafe)
    assert [p.id for p in list_products(session, ProductFilter(category="CAFÉ")).items] == [mug.id]


def test_seed_loads_demo_catalog(session):
    assert seed(session) == len(DEMO_PRODUCTS)
    session.commit()

    assert [c.slug for c in list_categories(session)] == ["clothing"]
    result = list_products(session, ProductFilter(category="Clothing"))
    assert result.total == 4
    assert get_product_by_slug(session, "hoodie").price_cents == 4999


def test_seed_reruns_after_orders_reference_products(session):
    seed(session)
    session.commit()
    hoodie = get_product_by_slug(session, "hoodie")
    hoodie_id = hoodie.id
    order = checkout(session, [CartLine(hoodie_id, 2)])
    order_id = order.id

    hoodie = session.get(Product, hoodie_id)
    hoodie.price_cents = 1
    session.commit()

    # upserts in place instead of deleting ordered products
    seed(session)
    session.commit()

    hoodie = get_product_by_slug(session, "hoodie")
    assert hoodie.id == hoodie_id
    assert hoodie.price_cents == 4999
    assert hoodie.stock == 30
    assert list_products(session, ProductFilter()).total == 4
    item = session.execute(select(OrderItem).where(OrderItem.order_id == order_id)).scalar_one()
    assert item.product_id == hoodie_id
    assert item.price_cents == 4999
