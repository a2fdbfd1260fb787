from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import os
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func, or_, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from medstock.apps.accounts import models as account_models
from medstock.apps.audit import services as audit_services
from medstock.apps.events.broker import publish_event
from medstock.database import SQLITE_BEGIN_OPTION

from . import ledger, models, schemas
from .errors import (
    DuplicateName,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    SameLocation,
    StockError,
    TransferAborted,
    ensure_positive_quantity,
)

logger = logging.getLogger(__name__)

__all__ = [
    "DuplicateName",
    "InsufficientStock",
    "InvalidQuantity",
    "NotFound",
    "SameLocation",
    "StockError",
    "TransferAborted",
]

STOCK_LOCK_TIMEOUT_MS = int(os.getenv("STOCK_LOCK_TIMEOUT_MS", "5000"))

TRANSFER_EVENT_TYPE = "stock_transfer.create"
RECEIVE_EVENT_TYPE = "stock_ledger.receive"


# ---------------------------------------------------------------------------
# Atomic unit
# ---------------------------------------------------------------------------


def _apply_lock_timeout(db: Session) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET does not take bind parameters.
    db.execute(text(f"SET LOCAL lock_timeout = {int(STOCK_LOCK_TIMEOUT_MS)}"))


def _begin_write_transaction(db: Session) -> None:
    if db.get_bind().dialect.name != "sqlite":
        return
    # End a read transaction the caller left open (the auth lookup, for one)
    # so the unit begins holding the write lock.
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})


@contextmanager
def atomic_unit(db: Session, *, operation: str) -> Iterator[Session]:
    """
    One all-or-nothing stock mutation on `db`.

    Commits when the block exits cleanly. Any exception rolls back every
    write made inside the block. Store failures (lock timeout, busy database,
    deadlock, serialization failure, dropped connection) surface as
    TransferAborted, including a failure to take the lock at the start.
    """
    try:
        _begin_write_transaction(db)
        _apply_lock_timeout(db)
        yield db
        db.commit()
    except StockError:
        db.rollback()
        raise
    except DBAPIError as exc:
        db.rollback()
        logger.warning(
            "Stock unit aborted by the store",
            extra={"operation": operation, "error": exc.__class__.__name__},
        )
        raise TransferAborted() from exc
    except Exception:
        db.rollback()
        raise


# ---------------------------------------------------------------------------
# Reference lookups
# ---------------------------------------------------------------------------


def _active_location(db: Session, location_id: str, *, reference: str) -> models.StockLocation:
    location = db.get(models.StockLocation, location_id)
    if location is None or not location.is_active:
        raise NotFound(reference, location_id)
    return location


def _active_product(db: Session, product_id: str) -> models.Product:
    product = db.get(models.Product, product_id)
    if product is None or not product.is_active:
        raise NotFound("product", product_id)
    return product


def _plain(value):
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


def execute_transfer(
    db: Session,
    *,
    from_location_id: str,
    to_location_id: str,
    product_id: str,
    quantity: int,
    new_status: Optional[models.StockStatusEnum] = None,
    notes: Optional[str] = None,
    actor_user_id: Optional[str],
) -> models.StockTransfer:
    """
    Move `quantity` units of a product between two locations.

    The decrement, the destination upsert, the transfer record and its audit
    event commit together or not at all. Returns the committed transfer;
    callers re-read the ledger for post-transfer quantities.
    """
    quantity = ensure_positive_quantity(quantity)
    if from_location_id == to_location_id:
        raise SameLocation(from_location_id)

    try:
        with atomic_unit(db, operation="transfer"):
            from_location = _active_location(db, from_location_id, reference="from_location")
            to_location = _active_location(db, to_location_id, reference="to_location")
            product = _active_product(db, product_id)

            source = ledger.get(db, from_location.id, product.id, for_update=True)
            if source is None:
                raise InsufficientStock(
                    location_name=from_location.name,
                    product_name=product.name,
                    available=0,
                    requested=quantity,
                )
            source_before = source.quantity
            destination_existing = ledger.get(db, to_location.id, product.id)
            destination_before = destination_existing.quantity if destination_existing else 0

            source = ledger.decrement(db, from_location.id, product.id, quantity)
            destination = ledger.increment_or_create(
                db,
                to_location.id,
                product.id,
                quantity,
                source.status,
                new_status=new_status,
            )

            transfer = models.StockTransfer(
                from_location_id=from_location.id,
                to_location_id=to_location.id,
                product_id=product.id,
                quantity=quantity,
                new_status=new_status,
                notes=notes,
                transferred_by_user_id=actor_user_id,
            )
            db.add(transfer)
            db.flush()

            audit_event = audit_services.log_event(
                db,
                actor_user_id=actor_user_id,
                entity_type="StockTransfer",
                entity_id=transfer.id,
                action="transfer",
                before={
                    "source_quantity": source_before,
                    "destination_quantity": destination_before,
                },
                after={
                    "source_quantity": source.quantity,
                    "destination_quantity": destination.quantity,
                    "destination_status": _plain(destination.status),
                },
                metadata={
                    "module": "inventory",
                    "from_location_id": from_location.id,
                    "to_location_id": to_location.id,
                    "product_id": product.id,
                    "quantity": quantity,
                    "new_status": _plain(new_status),
                },
                occurred_at=transfer.transfer_date,
                critical=True,
            )
    except InsufficientStock as exc:
        logger.warning(
            "Stock transfer rejected",
            extra={
                "from_location_id": from_location_id,
                "to_location_id": to_location_id,
                "product_id": product_id,
                "requested": exc.requested,
                "available": exc.available,
            },
        )
        raise

    logger.info(
        "Stock transfer committed",
        extra={
            "transfer_id": transfer.id,
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "product_id": product_id,
            "quantity": quantity,
            "actor_user_id": actor_user_id,
        },
    )
    publish_event(audit_services.to_envelope(audit_event, event_type=TRANSFER_EVENT_TYPE))
    return transfer


def create_transfer(
    db: Session,
    *,
    payload: schemas.StockTransferCreate,
    actor_user_id: Optional[str],
) -> models.StockTransfer:
    return execute_transfer(
        db,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        new_status=payload.new_status,
        notes=payload.notes,
        actor_user_id=actor_user_id,
    )


def list_transfers(
    db: Session,
    *,
    location_id: Optional[str] = None,
    product_id: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.StockTransfer]:
    query = db.query(models.StockTransfer)
    if location_id:
        query = query.filter(
            or_(
                models.StockTransfer.from_location_id == location_id,
                models.StockTransfer.to_location_id == location_id,
            )
        )
    if product_id:
        query = query.filter(models.StockTransfer.product_id == product_id)
    if actor_user_id:
        query = query.filter(models.StockTransfer.transferred_by_user_id == actor_user_id)
    if start:
        query = query.filter(models.StockTransfer.transfer_date >= start)
    if end:
        query = query.filter(models.StockTransfer.transfer_date <= end)
    if search:
        query = query.filter(
            models.StockTransfer.product_id.in_(
                db.query(models.Product.id).filter(models.Product.name.ilike(f"%{search.strip()}%"))
            )
        )
    return (
        query.order_by(models.StockTransfer.transfer_date.desc(), models.StockTransfer.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_transfer(db: Session, transfer_id: str) -> models.StockTransfer:
    transfer = db.get(models.StockTransfer, transfer_id)
    if transfer is None:
        raise NotFound("transfer", transfer_id)
    return transfer


def check_availability(
    db: Session,
    *,
    from_location_id: str,
    product_id: str,
    quantity: int,
) -> schemas.StockAvailabilityRead:
    """Answer whether a transfer of `quantity` could start now. Writes nothing."""
    quantity = ensure_positive_quantity(quantity)
    location = db.get(models.StockLocation, from_location_id)
    if location is None:
        raise NotFound("from_location", from_location_id)
    product = db.get(models.Product, product_id)
    if product is None:
        raise NotFound("product", product_id)

    entry = ledger.get(db, location.id, product.id)
    available_quantity = entry.quantity if entry else 0
    if entry is None:
        reason = "Product is not stocked at this location."
    elif available_quantity < quantity:
        reason = f"Only {available_quantity} available, {quantity} requested."
    else:
        reason = None
    return schemas.StockAvailabilityRead(
        available=reason is None,
        reason=reason,
        available_quantity=available_quantity,
        requested_quantity=quantity,
        product_name=product.name,
        location_name=location.name,
        status=entry.status if entry else None,
    )


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------


def receive_stock(
    db: Session,
    *,
    location_id: str,
    product_id: str,
    quantity: int,
    status: Optional[models.StockStatusEnum] = None,
    notes: Optional[str] = None,
    actor_user_id: Optional[str],
) -> models.StockLedgerEntry:
    """Book goods arriving from outside the system into one location."""
    quantity = ensure_positive_quantity(quantity)

    with atomic_unit(db, operation="receive"):
        location = _active_location(db, location_id, reference="location")
        product = _active_product(db, product_id)
        existing = ledger.get(db, location.id, product.id)
        quantity_before = existing.quantity if existing else 0
        entry = ledger.increment_or_create(
            db,
            location.id,
            product.id,
            quantity,
            status or models.StockStatusEnum.FOR_SALE,
            new_status=status,
        )
        audit_event = audit_services.log_event(
            db,
            actor_user_id=actor_user_id,
            entity_type="StockLedgerEntry",
            entity_id=entry.id,
            action="receive",
            before={"quantity": quantity_before},
            after={"quantity": entry.quantity, "status": _plain(entry.status)},
            metadata={
                "module": "inventory",
                "location_id": location.id,
                "product_id": product.id,
                "quantity": quantity,
                "notes": notes,
            },
            critical=True,
        )

    logger.info(
        "Stock received",
        extra={
            "location_id": location.id,
            "product_id": product.id,
            "quantity": quantity,
            "actor_user_id": actor_user_id,
        },
    )
    publish_event(audit_services.to_envelope(audit_event, event_type=RECEIVE_EVENT_TYPE))
    return entry


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def _count_by_location(db: Session, column) -> Dict[str, int]:
    rows = db.query(column, func.count()).group_by(column).all()
    return {location_id: count for location_id, count in rows if location_id is not None}


def _location_read(
    location: models.StockLocation,
    *,
    stock_counts: Dict[str, int],
    device_counts: Dict[str, int],
) -> schemas.StockLocationRead:
    read = schemas.StockLocationRead.model_validate(location)
    return read.model_copy(
        update={
            "stock_count": stock_counts.get(location.id, 0),
            "device_count": device_counts.get(location.id, 0),
        }
    )


def list_locations(
    db: Session,
    *,
    include_inactive: bool = False,
    location_type: Optional[models.StockLocationTypeEnum] = None,
) -> List[schemas.StockLocationRead]:
    query = db.query(models.StockLocation)
    if not include_inactive:
        query = query.filter(models.StockLocation.is_active.is_(True))
    if location_type:
        query = query.filter(models.StockLocation.location_type == location_type)
    locations = query.order_by(models.StockLocation.name.asc()).all()

    stock_counts = _count_by_location(db, models.StockLedgerEntry.location_id)
    device_counts = _count_by_location(db, models.MedicalDevice.stock_location_id)
    return [
        _location_read(location, stock_counts=stock_counts, device_counts=device_counts)
        for location in locations
    ]


def get_location_read(db: Session, location_id: str) -> schemas.StockLocationRead:
    location = db.get(models.StockLocation, location_id)
    if location is None:
        raise NotFound("location", location_id)
    stock_counts = {
        location.id: db.query(func.count(models.StockLedgerEntry.id))
        .filter(models.StockLedgerEntry.location_id == location.id)
        .scalar()
    }
    device_counts = {
        location.id: db.query(func.count(models.MedicalDevice.id))
        .filter(models.MedicalDevice.stock_location_id == location.id)
        .scalar()
    }
    return _location_read(location, stock_counts=stock_counts, device_counts=device_counts)


def _ensure_unique_location_name(db: Session, name: str, *, exclude_id: Optional[str] = None) -> None:
    query = db.query(models.StockLocation.id).filter(func.lower(models.StockLocation.name) == name.lower())
    if exclude_id:
        query = query.filter(models.StockLocation.id != exclude_id)
    if query.first() is not None:
        raise DuplicateName(name)


def _ensure_user(db: Session, user_id: Optional[str]) -> None:
    if user_id and db.get(account_models.User, user_id) is None:
        raise NotFound("user", user_id)


def create_location(
    db: Session,
    *,
    payload: schemas.StockLocationCreate,
    actor_user_id: Optional[str],
) -> models.StockLocation:
    name = payload.name.strip()
    _ensure_unique_location_name(db, name)
    _ensure_user(db, payload.responsible_user_id)
    location = models.StockLocation(
        name=name,
        description=payload.description,
        location_type=payload.location_type,
        responsible_user_id=payload.responsible_user_id,
    )
    db.add(location)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="StockLocation",
        entity_id=location.id,
        action="create",
        after={"name": location.name, "location_type": location.location_type.value},
        metadata={"module": "inventory"},
    )
    return location


def update_location(
    db: Session,
    *,
    location_id: str,
    payload: schemas.StockLocationUpdate,
    actor_user_id: Optional[str],
) -> models.StockLocation:
    location = db.get(models.StockLocation, location_id)
    if location is None:
        raise NotFound("location", location_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("name") is None:
        data.pop("name", None)
    else:
        data["name"] = data["name"].strip()
        _ensure_unique_location_name(db, data["name"], exclude_id=location.id)
    if "responsible_user_id" in data:
        _ensure_user(db, data["responsible_user_id"])

    before = {key: _plain(getattr(location, key)) for key in data}
    for key, value in data.items():
        setattr(location, key, value)
    db.add(location)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="StockLocation",
        entity_id=location.id,
        action="update",
        before=before,
        after={key: _plain(getattr(location, key)) for key in data},
        metadata={"module": "inventory"},
    )
    return location


def deactivate_location(
    db: Session,
    *,
    location_id: str,
    actor_user_id: Optional[str],
) -> models.StockLocation:
    """
    Retire a location from new transfers.

    Ledger entries and transfer history that reference it stay readable.
    """
    location = db.get(models.StockLocation, location_id)
    if location is None:
        raise NotFound("location", location_id)
    if not location.is_active:
        return location
    location.is_active = False
    db.add(location)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="StockLocation",
        entity_id=location.id,
        action="deactivate",
        before={"is_active": True},
        after={"is_active": False},
        metadata={"module": "inventory"},
    )
    return location


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def create_product(
    db: Session,
    *,
    payload: schemas.ProductCreate,
    actor_user_id: Optional[str],
) -> models.Product:
    product = models.Product(
        name=payload.name.strip(),
        brand=payload.brand,
        model=payload.model,
        product_type=payload.product_type,
    )
    db.add(product)
    db.flush()
    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        entity_type="Product",
        entity_id=product.id,
        action="create",
        after={"name": product.name, "product_type": product.product_type.value},
        metadata={"module": "inventory"},
    )
    return product


def list_products(
    db: Session,
    *,
    product_type: Optional[models.ProductTypeEnum] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Product]:
    query = db.query(models.Product)
    if not include_inactive:
        query = query.filter(models.Product.is_active.is_(True))
    if product_type:
        query = query.filter(models.Product.product_type == product_type)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                models.Product.name.ilike(pattern),
                models.Product.brand.ilike(pattern),
                models.Product.model.ilike(pattern),
            )
        )
    return query.order_by(models.Product.name.asc()).offset(skip).limit(limit).all()
