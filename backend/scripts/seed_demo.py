from __future__ import annotations

import logging

from medstock.database import WriteSessionLocal
from medstock.apps.accounts import models as account_models
from medstock.apps.inventory import ledger
from medstock.apps.inventory import models as inventory_models
from medstock.apps.inventory import schemas as inventory_schemas
from medstock.apps.inventory import services as inventory_services

logger = logging.getLogger(__name__)

DEMO_LOCATIONS = [
    ("Central Warehouse", inventory_models.StockLocationTypeEnum.PHYSICAL),
    ("Clinic Nord", inventory_models.StockLocationTypeEnum.PHYSICAL),
    ("Technician Van", inventory_models.StockLocationTypeEnum.VIRTUAL),
]

DEMO_PRODUCTS = [
    ("Nasal Mask", "ResMed", "AirFit N20", inventory_models.ProductTypeEnum.ACCESSORY),
    ("Heated Tubing", "ResMed", "ClimateLine", inventory_models.ProductTypeEnum.ACCESSORY),
    ("Air Filter", "Philips", "DreamStation", inventory_models.ProductTypeEnum.SPARE_PART),
]

DEMO_DEVICES = [
    ("CPAP AirSense 10", "ResMed", "SN-CPAP-0001", inventory_models.ProductTypeEnum.MEDICAL_DEVICE, "Clinic Nord"),
    ("Oxygen Concentrator", "Philips", "SN-OXY-0001", inventory_models.ProductTypeEnum.MEDICAL_DEVICE, "Central Warehouse"),
    ("Polygraph Nox T3", "Nox", "SN-DX-0001", inventory_models.ProductTypeEnum.DIAGNOSTIC_DEVICE, "Central Warehouse"),
]


def _get_or_create_admin(db) -> account_models.User:
    user = db.query(account_models.User).filter(account_models.User.email == "admin@medstock.example").first()
    if user:
        return user
    user = account_models.User(
        email="admin@medstock.example",
        first_name="Demo",
        last_name="Admin",
        role=account_models.AccountRole.ADMIN,
        is_active=True,
        is_superuser=True,
    )
    db.add(user)
    db.commit()
    return user


def _get_or_create_locations(db, admin: account_models.User) -> dict:
    locations = {}
    for name, location_type in DEMO_LOCATIONS:
        location = db.query(inventory_models.StockLocation).filter(inventory_models.StockLocation.name == name).first()
        if location is None:
            location = inventory_services.create_location(
                db,
                payload=inventory_schemas.StockLocationCreate(
                    name=name,
                    location_type=location_type,
                    responsible_user_id=admin.id,
                ),
                actor_user_id=admin.id,
            )
            db.commit()
        locations[name] = location
    return locations


def _get_or_create_products(db, admin: account_models.User) -> dict:
    products = {}
    for name, brand, model, product_type in DEMO_PRODUCTS:
        product = db.query(inventory_models.Product).filter(inventory_models.Product.name == name).first()
        if product is None:
            product = inventory_services.create_product(
                db,
                payload=inventory_schemas.ProductCreate(
                    name=name,
                    brand=brand,
                    model=model,
                    product_type=product_type,
                ),
                actor_user_id=admin.id,
            )
            db.commit()
        products[name] = product
    return products


def _seed_devices(db, locations: dict) -> None:
    for name, brand, serial_number, device_type, location_name in DEMO_DEVICES:
        exists = (
            db.query(inventory_models.MedicalDevice.id)
            .filter(inventory_models.MedicalDevice.serial_number == serial_number)
            .first()
        )
        if exists:
            continue
        db.add(
            inventory_models.MedicalDevice(
                name=name,
                brand=brand,
                serial_number=serial_number,
                device_type=device_type,
                stock_location_id=locations[location_name].id,
            )
        )
    db.commit()


def _seed_stock(db, admin: account_models.User, locations: dict, products: dict) -> None:
    warehouse = locations["Central Warehouse"]
    if ledger.list_entries(db, location_id=warehouse.id):
        return
    for product, quantity in ((products["Nasal Mask"], 40), (products["Heated Tubing"], 25), (products["Air Filter"], 120)):
        inventory_services.receive_stock(
            db,
            location_id=warehouse.id,
            product_id=product.id,
            quantity=quantity,
            notes="Demo opening balance",
            actor_user_id=admin.id,
        )
    inventory_services.execute_transfer(
        db,
        from_location_id=warehouse.id,
        to_location_id=locations["Clinic Nord"].id,
        product_id=products["Nasal Mask"].id,
        quantity=6,
        new_status=inventory_models.StockStatusEnum.FOR_RENT,
        notes="Demo clinic restock",
        actor_user_id=admin.id,
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    db = WriteSessionLocal()
    try:
        admin = _get_or_create_admin(db)
        locations = _get_or_create_locations(db, admin)
        products = _get_or_create_products(db, admin)
        _seed_devices(db, locations)
        _seed_stock(db, admin, locations, products)
        logger.info("Demo stock data ready", extra={"locations": len(locations), "products": len(products)})
    finally:
        db.close()


if __name__ == "__main__":
    main()
