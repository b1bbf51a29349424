"""
Tests for the product catalog: listing, stock checks, advisory inventory
reservations and admin stock management.
"""

import re
from decimal import Decimal

import pytest

from src.services.catalog.repository import CatalogRepository, ProductNotFoundError
from src.services.catalog.service import CatalogService, CatalogValidationError

INV_TOKEN = re.compile(r"^INV_\d{8}_\d{6}_[A-F0-9]{8}$")


@pytest.fixture
def catalog(session) -> CatalogService:
    return CatalogService(session)


# ============================================================================
# Reads
# ============================================================================


class TestProductReads:
    async def test_active_products_by_name(self, catalog):
        products = await catalog.list_products()

        assert [p.name for p in products] == ["Gadget", "Widget"]

    async def test_include_inactive(self, catalog):
        products = await catalog.list_products(active_only=False)

        assert {p.id for p in products} == {1, 2, 3}

    async def test_get_product(self, catalog):
        product = await catalog.get_product(1)

        assert product.name == "Widget"
        assert product.formatted_price == "$10.00"

    async def test_get_unknown_product(self, catalog):
        with pytest.raises(ProductNotFoundError, match="Product with ID 42 not found"):
            await catalog.get_product(42)

    async def test_stock_check_hides_inactive_stock(self, catalog):
        levels = {level.product_id: level for level in await catalog.check_stock([1, 3, 99])}

        assert set(levels) == {1, 3}
        assert levels[1].stock == 5
        assert levels[1].in_stock
        assert levels[3].stock == 0
        assert not levels[3].in_stock

    async def test_reads_release_the_write_lock(self, catalog, session, session_factory, read_stock):
        await catalog.list_products()
        await catalog.get_product(1)
        await catalog.check_stock([1, 2])
        await catalog.reserve_inventory([(1, 1)])

        assert not session.in_transaction()
        async with session_factory() as other:
            await CatalogService(other).set_stock(2, 7)
        assert await read_stock(2) == 7

    async def test_failed_lookup_releases_the_write_lock(self, catalog, session):
        with pytest.raises(ProductNotFoundError):
            await catalog.get_product(42)

        assert not session.in_transaction()


# ============================================================================
# Reservations
# ============================================================================


class TestReserveInventory:
    """Reservations are advisory and issue an INV token on success."""

    async def test_available_items_get_a_token(self, catalog, read_stock):
        reservation = await catalog.reserve_inventory([(1, 2), (2, 3)])

        assert reservation.reserved
        assert INV_TOKEN.match(reservation.token)
        assert reservation.total == Decimal("33.50")
        assert reservation.problems == []
        assert await read_stock(1) == 5

    async def test_duplicate_lines_are_combined(self, catalog):
        reservation = await catalog.reserve_inventory([(1, 3), (1, 3)])

        assert not reservation.reserved
        assert reservation.token is None
        assert reservation.lines[0].requested == 6
        assert reservation.problems == [
            "Insufficient stock for 'Widget'. Available: 5, Requested: 6"
        ]

    async def test_every_problem_is_listed(self, catalog):
        reservation = await catalog.reserve_inventory([(3, 1), (77, 1), (2, 1)])

        assert not reservation.reserved
        assert reservation.problems == [
            "Product 'Retired item' is not available",
            "Product with ID 77 not found",
        ]

    async def test_empty_request(self, catalog):
        with pytest.raises(CatalogValidationError):
            await catalog.reserve_inventory([])

    @pytest.mark.parametrize("item", [(0, 1), (1, 0), (1, -2)])
    async def test_non_positive_values(self, catalog, item):
        with pytest.raises(CatalogValidationError):
            await catalog.reserve_inventory([item])


# ============================================================================
# Admin stock management
# ============================================================================


class TestStockManagement:
    async def test_set_stock(self, catalog, read_stock):
        product = await catalog.set_stock(1, 42)

        assert product.stock == 42
        assert await read_stock(1) == 42

    async def test_negative_stock_rejected(self, catalog):
        with pytest.raises(CatalogValidationError):
            await catalog.set_stock(1, -1)

    async def test_unknown_product(self, catalog):
        with pytest.raises(ProductNotFoundError):
            await catalog.set_stock(404, 1)

    async def test_deactivate_and_reactivate(self, catalog):
        await catalog.set_product_active(1, False)
        assert [p.id for p in await catalog.list_products()] == [2]

        await catalog.set_product_active(1, True)
        assert {p.id for p in await catalog.list_products()} == {1, 2}


class TestGuardedDecrement:
    """The conditional update never takes stock below zero."""

    async def test_decrement_within_stock(self, session, read_stock):
        repository = CatalogRepository(session)

        affected = await repository.decrement_stock(1, 5)
        await session.commit()

        assert affected == 1
        assert await read_stock(1) == 0

    async def test_decrement_beyond_stock_touches_nothing(self, session, read_stock):
        repository = CatalogRepository(session)

        affected = await repository.decrement_stock(1, 6)
        await session.commit()

        assert affected == 0
        assert await read_stock(1) == 5

    async def test_lock_products_skips_missing_ids(self, session):
        locked = await CatalogRepository(session).lock_products([2, 1, 99, 2])

        assert sorted(locked) == [1, 2]
