from __future__ import annotations

import pytest

from conftest import create_location, create_product, put_stock
from medstock.apps.inventory import ledger
from medstock.apps.inventory import models as inventory_models
from medstock.apps.inventory.errors import InsufficientStock, InvalidQuantity


def _setup(db_session, quantity: int = 5):
    warehouse = create_location(db_session, "Warehouse")
    product = create_product(db_session, "WidgetX")
    put_stock(db_session, warehouse, product, quantity)
    return warehouse, product


def test_get_returns_none_for_unknown_pair(db_session):
    warehouse = create_location(db_session, "Warehouse")
    product = create_product(db_session, "WidgetX")

    assert ledger.get(db_session, warehouse.id, product.id) is None


def test_get_for_update_returns_entry(db_session):
    warehouse, product = _setup(db_session)

    entry = ledger.get(db_session, warehouse.id, product.id, for_update=True)
    assert entry is not None
    assert entry.quantity == 5
    assert entry.status == inventory_models.StockStatusEnum.FOR_SALE


def test_decrement_subtracts_and_keeps_entry_at_zero(db_session):
    warehouse, product = _setup(db_session)

    entry = ledger.decrement(db_session, warehouse.id, product.id, 5)
    db_session.commit()

    assert entry.quantity == 0
    assert ledger.get(db_session, warehouse.id, product.id).quantity == 0


def test_decrement_beyond_available_raises_with_names(db_session):
    warehouse, product = _setup(db_session)

    with pytest.raises(InsufficientStock) as excinfo:
        ledger.decrement(db_session, warehouse.id, product.id, 6)
    db_session.rollback()

    err = excinfo.value
    assert err.available == 5
    assert err.requested == 6
    assert err.location_name == "Warehouse"
    assert err.product_name == "WidgetX"
    assert ledger.get(db_session, warehouse.id, product.id).quantity == 5


def test_decrement_missing_entry_reports_zero_available(db_session):
    warehouse = create_location(db_session, "Warehouse")
    product = create_product(db_session, "WidgetX")

    with pytest.raises(InsufficientStock) as excinfo:
        ledger.decrement(db_session, warehouse.id, product.id, 1)
    assert excinfo.value.available == 0


def test_increment_or_create_creates_with_given_status(db_session):
    clinic = create_location(db_session, "Clinic-A")
    product = create_product(db_session, "WidgetX")

    entry = ledger.increment_or_create(
        db_session,
        clinic.id,
        product.id,
        3,
        inventory_models.StockStatusEnum.FOR_RENT,
    )
    db_session.commit()

    assert entry.quantity == 3
    assert entry.status == inventory_models.StockStatusEnum.FOR_RENT


def test_increment_or_create_keeps_status_without_override(db_session):
    clinic = create_location(db_session, "Clinic-A")
    product = create_product(db_session, "WidgetX")
    put_stock(db_session, clinic, product, 2, inventory_models.StockStatusEnum.FOR_SALE)

    entry = ledger.increment_or_create(
        db_session,
        clinic.id,
        product.id,
        3,
        inventory_models.StockStatusEnum.DEFECTIVE,
    )
    db_session.commit()

    assert entry.quantity == 5
    assert entry.status == inventory_models.StockStatusEnum.FOR_SALE
    assert len(ledger.list_entries(db_session, location_id=clinic.id)) == 1


def test_increment_or_create_overrides_status_when_given(db_session):
    clinic = create_location(db_session, "Clinic-A")
    product = create_product(db_session, "WidgetX")
    put_stock(db_session, clinic, product, 2, inventory_models.StockStatusEnum.FOR_SALE)

    entry = ledger.increment_or_create(
        db_session,
        clinic.id,
        product.id,
        1,
        inventory_models.StockStatusEnum.FOR_SALE,
        new_status=inventory_models.StockStatusEnum.RESERVED,
    )
    db_session.commit()

    assert entry.quantity == 3
    assert entry.status == inventory_models.StockStatusEnum.RESERVED


@pytest.mark.parametrize("amount", [0, -2, True, 1.5, "3"])
def test_mutations_reject_non_positive_or_non_integer_amounts(db_session, amount):
    warehouse, product = _setup(db_session)

    with pytest.raises(InvalidQuantity):
        ledger.decrement(db_session, warehouse.id, product.id, amount)
    with pytest.raises(InvalidQuantity):
        ledger.increment_or_create(
            db_session,
            warehouse.id,
            product.id,
            amount,
            inventory_models.StockStatusEnum.FOR_SALE,
        )
    assert ledger.get(db_session, warehouse.id, product.id).quantity == 5


def test_total_quantity_sums_all_locations(db_session):
    warehouse, product = _setup(db_session, quantity=7)
    clinic = create_location(db_session, "Clinic-A")
    put_stock(db_session, clinic, product, 3)

    assert ledger.total_quantity(db_session, product.id) == 10
