"""
Read-only inventory view.

Ledger rows (accessories, spare parts) and serialized devices are listed
together. Devices always count as one unit and never pass through the ledger.
"""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas

HIDDEN_DEVICE_STATUSES = (models.DeviceStatusEnum.SOLD, models.DeviceStatusEnum.RETIRED)

_SUMMARY_KEYS = {
    models.ProductTypeEnum.ACCESSORY: "accessories",
    models.ProductTypeEnum.SPARE_PART: "spare_parts",
    models.ProductTypeEnum.MEDICAL_DEVICE: "medical_devices",
    models.ProductTypeEnum.DIAGNOSTIC_DEVICE: "diagnostic_devices",
}

_KIND_ORDER = {"stock": 0, "device": 1}


def _search_filter(pattern: str, *columns):
    return or_(*(column.ilike(pattern) for column in columns))


def _stock_items(
    db: Session,
    *,
    location_id: Optional[str],
    search: Optional[str],
    product_type: Optional[models.ProductTypeEnum],
) -> List[schemas.StockItemRead]:
    query = (
        db.query(models.StockLedgerEntry)
        .join(models.StockLedgerEntry.product)
        .join(models.StockLedgerEntry.location)
    )
    if location_id:
        query = query.filter(models.StockLedgerEntry.location_id == location_id)
    if product_type:
        query = query.filter(models.Product.product_type == product_type)
    if search:
        query = query.filter(
            _search_filter(
                f"%{search.strip()}%",
                models.Product.name,
                models.Product.brand,
                models.Product.model,
            )
        )
    return [
        schemas.StockItemRead(
            id=entry.id,
            product_id=entry.product_id,
            name=entry.product.name,
            brand=entry.product.brand,
            model=entry.product.model,
            product_type=entry.product.product_type,
            quantity=entry.quantity,
            status=entry.status,
            location=schemas.LocationBrief.model_validate(entry.location),
            updated_at=entry.updated_at,
        )
        for entry in query.all()
    ]


def _device_items(
    db: Session,
    *,
    location_id: Optional[str],
    search: Optional[str],
    product_type: Optional[models.ProductTypeEnum],
) -> List[schemas.DeviceItemRead]:
    if product_type and product_type not in models.DEVICE_PRODUCT_TYPES:
        return []
    query = (
        db.query(models.MedicalDevice)
        .join(models.MedicalDevice.stock_location)
        .filter(models.MedicalDevice.status.notin_(HIDDEN_DEVICE_STATUSES))
    )
    if location_id:
        query = query.filter(models.MedicalDevice.stock_location_id == location_id)
    if product_type:
        query = query.filter(models.MedicalDevice.device_type == product_type)
    if search:
        query = query.filter(
            _search_filter(
                f"%{search.strip()}%",
                models.MedicalDevice.name,
                models.MedicalDevice.brand,
                models.MedicalDevice.model,
                models.MedicalDevice.serial_number,
            )
        )
    return [
        schemas.DeviceItemRead(
            id=device.id,
            name=device.name,
            brand=device.brand,
            model=device.model,
            serial_number=device.serial_number,
            product_type=device.device_type,
            status=device.status,
            location=schemas.LocationBrief.model_validate(device.stock_location),
        )
        for device in query.all()
    ]


def _sort_key(item: schemas.InventoryItem) -> Tuple[str, str, int, str]:
    return (item.location.name.lower(), item.name.lower(), _KIND_ORDER[item.kind], item.id)


def summarize(items: List[schemas.InventoryItem]) -> schemas.InventorySummary:
    """Count listed items per product type. A ledger row counts once, whatever its quantity."""
    summary = schemas.InventorySummary(total=len(items))
    for item in items:
        key = _SUMMARY_KEYS[item.product_type]
        setattr(summary, key, getattr(summary, key) + 1)
    return summary


def list_inventory(
    db: Session,
    *,
    location_id: Optional[str] = None,
    search: Optional[str] = None,
    product_type: Optional[models.ProductTypeEnum] = None,
    page: int = 1,
    page_size: int = 10,
) -> schemas.InventoryPage:
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")

    items: List[schemas.InventoryItem] = []
    items.extend(_stock_items(db, location_id=location_id, search=search, product_type=product_type))
    items.extend(_device_items(db, location_id=location_id, search=search, product_type=product_type))
    items.sort(key=_sort_key)

    total = len(items)
    offset = (page - 1) * page_size
    return schemas.InventoryPage(
        items=items[offset:offset + page_size],
        pagination=schemas.InventoryPagination(
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
        summary=summarize(items),
    )
