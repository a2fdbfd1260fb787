from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from medstock.database import Base
from medstock.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockLocationTypeEnum(str, enum.Enum):
    PHYSICAL = "PHYSICAL"
    VIRTUAL = "VIRTUAL"
    ARCHIVE = "ARCHIVE"


class ProductTypeEnum(str, enum.Enum):
    ACCESSORY = "ACCESSORY"
    SPARE_PART = "SPARE_PART"
    MEDICAL_DEVICE = "MEDICAL_DEVICE"
    DIAGNOSTIC_DEVICE = "DIAGNOSTIC_DEVICE"


# Counted through the ledger; the other two types are serialized devices.
FUNGIBLE_PRODUCT_TYPES = (ProductTypeEnum.ACCESSORY, ProductTypeEnum.SPARE_PART)
DEVICE_PRODUCT_TYPES = (ProductTypeEnum.MEDICAL_DEVICE, ProductTypeEnum.DIAGNOSTIC_DEVICE)


class StockStatusEnum(str, enum.Enum):
    FOR_SALE = "FOR_SALE"
    FOR_RENT = "FOR_RENT"
    RESERVED = "RESERVED"
    DEFECTIVE = "DEFECTIVE"
    IN_REPAIR = "IN_REPAIR"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class DeviceStatusEnum(str, enum.Enum):
    ACTIVE = "ACTIVE"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"
    RESERVED = "RESERVED"
    SOLD = "SOLD"


class StockLocation(Base):
    __tablename__ = "stock_locations"
    __table_args__ = (
        UniqueConstraint("name", name="uq_stock_location_name"),
        Index("ix_stock_locations_active", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
    location_type = Column(
        SAEnum(StockLocationTypeEnum, name="stock_location_type_enum", native_enum=False),
        nullable=False,
        default=StockLocationTypeEnum.PHYSICAL,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    responsible_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    responsible_user = relationship("User", lazy="joined")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_type_active", "product_type", "is_active"),
        CheckConstraint(
            "product_type IN ('ACCESSORY', 'SPARE_PART')",
            name="ck_products_fungible_type",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=False, index=True)
    brand = Column(String(128), nullable=True)
    model = Column(String(128), nullable=True)
    product_type = Column(
        SAEnum(ProductTypeEnum, name="product_type_enum", native_enum=False),
        nullable=False,
        default=ProductTypeEnum.ACCESSORY,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class MedicalDevice(Base):
    """
    Individually tracked unit (serial number, maintenance history).

    Devices never appear in the stock ledger; their location and status live
    on the row itself.
    """

    __tablename__ = "medical_devices"
    __table_args__ = (
        UniqueConstraint("serial_number", name="uq_medical_device_serial"),
        Index("ix_medical_devices_location", "stock_location_id"),
        CheckConstraint(
            "device_type IN ('MEDICAL_DEVICE', 'DIAGNOSTIC_DEVICE')",
            name="ck_medical_devices_type",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    name = Column(String(255), nullable=False)
    brand = Column(String(128), nullable=True)
    model = Column(String(128), nullable=True)
    serial_number = Column(String(128), nullable=True)
    device_type = Column(
        SAEnum(ProductTypeEnum, name="device_type_enum", native_enum=False),
        nullable=False,
        default=ProductTypeEnum.MEDICAL_DEVICE,
    )
    status = Column(
        SAEnum(DeviceStatusEnum, name="device_status_enum", native_enum=False),
        nullable=False,
        default=DeviceStatusEnum.ACTIVE,
    )
    stock_location_id = Column(String(36), ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    stock_location = relationship("StockLocation", lazy="joined")


class StockLedgerEntry(Base):
    __tablename__ = "stocks"
    __table_args__ = (
        UniqueConstraint("location_id", "product_id", name="uq_stocks_location_product"),
        CheckConstraint("quantity >= 0", name="ck_stocks_quantity_non_negative"),
        Index("ix_stocks_product", "product_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    location_id = Column(String(36), ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    status = Column(
        SAEnum(StockStatusEnum, name="stock_status_enum", native_enum=False),
        nullable=False,
        default=StockStatusEnum.FOR_SALE,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    location = relationship("StockLocation", lazy="joined")
    product = relationship("Product", lazy="joined")


class StockTransfer(Base):
    """
    Immutable record of one committed movement between two locations.
    """

    __tablename__ = "stock_transfers"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_transfers_quantity_positive"),
        CheckConstraint("from_location_id <> to_location_id", name="ck_stock_transfers_distinct_locations"),
        Index("ix_stock_transfers_date", "transfer_date"),
        Index("ix_stock_transfers_from", "from_location_id", "transfer_date"),
        Index("ix_stock_transfers_to", "to_location_id", "transfer_date"),
        Index("ix_stock_transfers_product", "product_id", "transfer_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    from_location_id = Column(String(36), ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=False)
    to_location_id = Column(String(36), ForeignKey("stock_locations.id", ondelete="RESTRICT"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity = Column(Integer, nullable=False)
    new_status = Column(
        SAEnum(StockStatusEnum, name="stock_transfer_status_enum", native_enum=False),
        nullable=True,
    )
    notes = Column(Text, nullable=True)
    transferred_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=True, index=True)
    transfer_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    from_location = relationship("StockLocation", foreign_keys=[from_location_id], lazy="joined")
    to_location = relationship("StockLocation", foreign_keys=[to_location_id], lazy="joined")
    product = relationship("Product", lazy="joined")
    transferred_by = relationship("User", lazy="joined")
