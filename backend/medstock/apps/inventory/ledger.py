"""
Stock ledger: current quantity and status per (location, product).

Mutations here never commit. They run inside an atomic unit owned by the
caller (see services.atomic_unit) so a failed decrement or upsert leaves
nothing behind.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, lazyload

from medstock.utils.identifiers import generate_uuid7

from . import models
from .errors import InsufficientStock, ensure_positive_quantity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        return None
    return insert


def get(
    db: Session,
    location_id: str,
    product_id: str,
    *,
    for_update: bool = False,
) -> Optional[models.StockLedgerEntry]:
    query = (
        db.query(models.StockLedgerEntry)
        .populate_existing()
        .filter(
            models.StockLedgerEntry.location_id == location_id,
            models.StockLedgerEntry.product_id == product_id,
        )
    )
    if for_update:
        query = query.options(lazyload("*")).with_for_update(of=models.StockLedgerEntry)
    return query.first()


def list_entries(
    db: Session,
    *,
    location_id: Optional[str] = None,
    product_id: Optional[str] = None,
) -> List[models.StockLedgerEntry]:
    query = db.query(models.StockLedgerEntry)
    if location_id:
        query = query.filter(models.StockLedgerEntry.location_id == location_id)
    if product_id:
        query = query.filter(models.StockLedgerEntry.product_id == product_id)
    return query.order_by(models.StockLedgerEntry.location_id, models.StockLedgerEntry.product_id).all()


def total_quantity(db: Session, product_id: str) -> int:
    return sum(entry.quantity for entry in list_entries(db, product_id=product_id))


def _insufficient(
    db: Session,
    location_id: str,
    product_id: str,
    *,
    available: int,
    requested: int,
) -> InsufficientStock:
    location = db.get(models.StockLocation, location_id)
    product = db.get(models.Product, product_id)
    return InsufficientStock(
        location_name=location.name if location else location_id,
        product_name=product.name if product else product_id,
        available=available,
        requested=requested,
    )


def decrement(
    db: Session,
    location_id: str,
    product_id: str,
    amount: int,
) -> models.StockLedgerEntry:
    """
    Remove `amount` units from the entry.

    The check and the subtraction are one conditional UPDATE, so two
    writers can never both pass the check against the same quantity.
    """
    amount = ensure_positive_quantity(amount)
    result = db.execute(
        update(models.StockLedgerEntry)
        .where(
            models.StockLedgerEntry.location_id == location_id,
            models.StockLedgerEntry.product_id == product_id,
            models.StockLedgerEntry.quantity >= amount,
        )
        .values(
            quantity=models.StockLedgerEntry.quantity - amount,
            updated_at=_utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    entry = get(db, location_id, product_id)
    if result.rowcount != 1:
        raise _insufficient(
            db,
            location_id,
            product_id,
            available=entry.quantity if entry else 0,
            requested=amount,
        )
    return entry


def increment_or_create(
    db: Session,
    location_id: str,
    product_id: str,
    amount: int,
    status_if_created: models.StockStatusEnum,
    *,
    new_status: Optional[models.StockStatusEnum] = None,
) -> models.StockLedgerEntry:
    """
    Add `amount` units, creating the entry on first arrival.

    A new entry takes `new_status` or else `status_if_created`. An existing
    entry keeps its status unless `new_status` is given.
    """
    amount = ensure_positive_quantity(amount)
    insert = _upsert_insert(db)
    if insert is None:
        return _increment_or_create_portable(
            db,
            location_id,
            product_id,
            amount,
            status_if_created,
            new_status=new_status,
        )

    table = models.StockLedgerEntry.__table__
    now = _utcnow()
    stmt = insert(table).values(
        id=generate_uuid7(),
        location_id=location_id,
        product_id=product_id,
        quantity=amount,
        status=new_status or status_if_created,
        created_at=now,
        updated_at=now,
    )
    on_conflict_set = {
        "quantity": table.c.quantity + stmt.excluded.quantity,
        "updated_at": stmt.excluded.updated_at,
    }
    if new_status is not None:
        on_conflict_set["status"] = stmt.excluded.status
    db.execute(
        stmt.on_conflict_do_update(
            index_elements=[table.c.location_id, table.c.product_id],
            set_=on_conflict_set,
        )
    )
    return get(db, location_id, product_id)


def _increment_or_create_portable(
    db: Session,
    location_id: str,
    product_id: str,
    amount: int,
    status_if_created: models.StockStatusEnum,
    *,
    new_status: Optional[models.StockStatusEnum],
) -> models.StockLedgerEntry:
    # Backends without INSERT .. ON CONFLICT: lock-then-write. A concurrent
    # first insert hits the unique constraint and aborts the unit instead.
    entry = get(db, location_id, product_id, for_update=True)
    if entry is None:
        entry = models.StockLedgerEntry(
            location_id=location_id,
            product_id=product_id,
            quantity=amount,
            status=new_status or status_if_created,
        )
        db.add(entry)
        db.flush()
        return entry
    db.execute(
        update(models.StockLedgerEntry)
        .where(models.StockLedgerEntry.id == entry.id)
        .values(
            quantity=models.StockLedgerEntry.quantity + amount,
            updated_at=_utcnow(),
            **({"status": new_status} if new_status is not None else {}),
        )
        .execution_options(synchronize_session=False)
    )
    return get(db, location_id, product_id)
