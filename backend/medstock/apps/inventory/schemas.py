from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from . import models


class UserBrief(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        from_attributes = True


class LocationBrief(BaseModel):
    id: str
    name: str
    location_type: models.StockLocationTypeEnum

    class Config:
        from_attributes = True


class ProductBrief(BaseModel):
    id: str
    name: str
    brand: Optional[str] = None
    model: Optional[str] = None
    product_type: models.ProductTypeEnum

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


class StockLocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: Optional[str] = None
    location_type: models.StockLocationTypeEnum = models.StockLocationTypeEnum.PHYSICAL
    responsible_user_id: Optional[str] = None


class StockLocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    description: Optional[str] = None
    location_type: Optional[models.StockLocationTypeEnum] = None
    responsible_user_id: Optional[str] = None


class StockLocationRead(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    location_type: models.StockLocationTypeEnum
    is_active: bool
    responsible_user: Optional[UserBrief] = None
    created_at: datetime
    updated_at: datetime
    stock_count: int = 0
    device_count: int = 0

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    brand: Optional[str] = None
    model: Optional[str] = None
    product_type: models.ProductTypeEnum = models.ProductTypeEnum.ACCESSORY

    @field_validator("product_type")
    @classmethod
    def _fungible_only(cls, value: models.ProductTypeEnum) -> models.ProductTypeEnum:
        if value not in models.FUNGIBLE_PRODUCT_TYPES:
            raise ValueError("Serialized devices are registered as medical devices, not products.")
        return value


class ProductRead(ProductBrief):
    is_active: bool
    created_at: datetime


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class StockLedgerRead(BaseModel):
    id: str
    location_id: str
    product_id: str
    quantity: int
    status: models.StockStatusEnum
    location: Optional[LocationBrief] = None
    product: Optional[ProductBrief] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class StockReceiveRequest(BaseModel):
    location_id: str
    product_id: str
    # Range is checked by the service so the client gets the domain error.
    quantity: int
    status: Optional[models.StockStatusEnum] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


class StockTransferCreate(BaseModel):
    from_location_id: str
    to_location_id: str
    product_id: str
    quantity: int
    new_status: Optional[models.StockStatusEnum] = None
    notes: Optional[str] = None


class StockTransferRead(BaseModel):
    id: str
    from_location_id: str
    to_location_id: str
    product_id: str
    quantity: int
    new_status: Optional[models.StockStatusEnum] = None
    notes: Optional[str] = None
    transferred_by_user_id: Optional[str] = None
    transfer_date: datetime
    from_location: Optional[LocationBrief] = None
    to_location: Optional[LocationBrief] = None
    product: Optional[ProductBrief] = None
    transferred_by: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class StockAvailabilityRequest(BaseModel):
    from_location_id: str
    product_id: str
    quantity: int


class StockAvailabilityRead(BaseModel):
    available: bool
    reason: Optional[str] = None
    available_quantity: int
    requested_quantity: int
    product_name: str
    location_name: str
    status: Optional[models.StockStatusEnum] = None


# ---------------------------------------------------------------------------
# Inventory view
# ---------------------------------------------------------------------------


class StockItemRead(BaseModel):
    kind: Literal["stock"] = "stock"
    id: str
    product_id: str
    name: str
    brand: Optional[str] = None
    model: Optional[str] = None
    product_type: models.ProductTypeEnum
    quantity: int
    status: models.StockStatusEnum
    location: LocationBrief
    updated_at: datetime


class DeviceItemRead(BaseModel):
    kind: Literal["device"] = "device"
    id: str
    name: str
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    product_type: models.ProductTypeEnum
    quantity: Literal[1] = 1
    status: models.DeviceStatusEnum
    location: LocationBrief


InventoryItem = Annotated[Union[StockItemRead, DeviceItemRead], Field(discriminator="kind")]


class InventoryPagination(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class InventorySummary(BaseModel):
    total: int = 0
    accessories: int = 0
    spare_parts: int = 0
    medical_devices: int = 0
    diagnostic_devices: int = 0


class InventoryPage(BaseModel):
    items: List[InventoryItem] = Field(default_factory=list)
    pagination: InventoryPagination
    summary: InventorySummary
