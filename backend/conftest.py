from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

from medstock.database import Base, configure_sqlite_locking  # noqa: E402
from medstock.apps.accounts import models as account_models  # noqa: E402
from medstock.apps.audit import models as audit_models  # noqa: E402
from medstock.apps.events.broker import broker  # noqa: E402
from medstock.apps.inventory import models as inventory_models  # noqa: E402

STOCK_TABLES = [
    account_models.User.__table__,
    audit_models.AuditEvent.__table__,
    inventory_models.StockLocation.__table__,
    inventory_models.Product.__table__,
    inventory_models.MedicalDevice.__table__,
    inventory_models.StockLedgerEntry.__table__,
    inventory_models.StockTransfer.__table__,
]


def make_sqlite_engine(url: str = "sqlite+pysqlite:///:memory:", *, busy_timeout: float = 30):
    """SQLite engine locked the same way as the application's."""
    if url.endswith(":memory:"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": busy_timeout})
    configure_sqlite_locking(engine)
    Base.metadata.create_all(bind=engine, tables=STOCK_TABLES)
    return engine


def make_session_factory(engine):
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_engine():
    engine = make_sqlite_engine()
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(db_engine):
    session = make_session_factory(db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clear_event_history():
    broker.clear()
    yield
    broker.clear()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


def create_user(
    db,
    *,
    email: str = "employee@example.com",
    role: account_models.AccountRole = account_models.AccountRole.EMPLOYEE,
    is_active: bool = True,
) -> account_models.User:
    user = account_models.User(
        email=email,
        first_name="Test",
        last_name=role.value.title(),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    return user


def create_location(
    db,
    name: str,
    *,
    is_active: bool = True,
    location_type: inventory_models.StockLocationTypeEnum = inventory_models.StockLocationTypeEnum.PHYSICAL,
) -> inventory_models.StockLocation:
    location = inventory_models.StockLocation(name=name, is_active=is_active, location_type=location_type)
    db.add(location)
    db.commit()
    return location


def create_product(
    db,
    name: str,
    *,
    product_type: inventory_models.ProductTypeEnum = inventory_models.ProductTypeEnum.ACCESSORY,
    brand: str | None = None,
    model: str | None = None,
    is_active: bool = True,
) -> inventory_models.Product:
    product = inventory_models.Product(
        name=name,
        product_type=product_type,
        brand=brand,
        model=model,
        is_active=is_active,
    )
    db.add(product)
    db.commit()
    return product


def put_stock(
    db,
    location: inventory_models.StockLocation,
    product: inventory_models.Product,
    quantity: int,
    status: inventory_models.StockStatusEnum = inventory_models.StockStatusEnum.FOR_SALE,
) -> inventory_models.StockLedgerEntry:
    entry = inventory_models.StockLedgerEntry(
        location_id=location.id,
        product_id=product.id,
        quantity=quantity,
        status=status,
    )
    db.add(entry)
    db.commit()
    return entry


def create_device(
    db,
    name: str,
    location: inventory_models.StockLocation,
    *,
    serial_number: str,
    device_type: inventory_models.ProductTypeEnum = inventory_models.ProductTypeEnum.MEDICAL_DEVICE,
    status: inventory_models.DeviceStatusEnum = inventory_models.DeviceStatusEnum.ACTIVE,
) -> inventory_models.MedicalDevice:
    device = inventory_models.MedicalDevice(
        name=name,
        serial_number=serial_number,
        device_type=device_type,
        status=status,
        stock_location_id=location.id,
    )
    db.add(device)
    db.commit()
    return device
