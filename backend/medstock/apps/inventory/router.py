from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from medstock.security import get_current_active_user, require_roles
from medstock.database import get_db, get_read_db
from medstock.apps.accounts import models as account_models

from . import ledger, models, queries, schemas, services
from .errors import StockError

router = APIRouter(
    prefix="/stock",
    tags=["stock"],
)

STOCK_WRITE_ROLES = [
    account_models.AccountRole.ADMIN,
    account_models.AccountRole.MANAGER,
    account_models.AccountRole.EMPLOYEE,
]

LOCATION_ADMIN_ROLES = [
    account_models.AccountRole.ADMIN,
    account_models.AccountRole.MANAGER,
]

_ERROR_STATUS = {
    services.InvalidQuantity: status.HTTP_400_BAD_REQUEST,
    services.SameLocation: status.HTTP_400_BAD_REQUEST,
    services.NotFound: status.HTTP_404_NOT_FOUND,
    services.InsufficientStock: status.HTTP_409_CONFLICT,
    services.DuplicateName: status.HTTP_409_CONFLICT,
    services.TransferAborted: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: StockError) -> HTTPException:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=exc.to_detail())


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


@router.post(
    "/transfers",
    response_model=schemas.StockTransferRead,
    status_code=status.HTTP_201_CREATED,
)
def create_transfer(
    payload: schemas.StockTransferCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    try:
        return services.create_transfer(db, payload=payload, actor_user_id=current_user.id)
    except StockError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/transfers",
    response_model=List[schemas.StockTransferRead],
)
def list_transfers(
    location_id: Optional[str] = None,
    product_id: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_transfers(
        db,
        location_id=location_id,
        product_id=product_id,
        actor_user_id=actor_user_id,
        start=start,
        end=end,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/transfers/{transfer_id}",
    response_model=schemas.StockTransferRead,
)
def get_transfer(
    transfer_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.get_transfer(db, transfer_id)
    except StockError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/check-availability",
    response_model=schemas.StockAvailabilityRead,
)
def check_availability(
    payload: schemas.StockAvailabilityRequest,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    try:
        return services.check_availability(
            db,
            from_location_id=payload.from_location_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
        )
    except StockError as exc:
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Ledger and inventory
# ---------------------------------------------------------------------------


@router.get(
    "/inventory",
    response_model=schemas.InventoryPage,
)
def list_inventory(
    location_id: Optional[str] = None,
    search: Optional[str] = None,
    product_type: Optional[models.ProductTypeEnum] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return queries.list_inventory(
        db,
        location_id=location_id,
        search=search,
        product_type=product_type,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/ledger",
    response_model=List[schemas.StockLedgerRead],
)
def list_ledger(
    location_id: Optional[str] = None,
    product_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return ledger.list_entries(db, location_id=location_id, product_id=product_id)


@router.post(
    "/receive",
    response_model=schemas.StockLedgerRead,
    status_code=status.HTTP_201_CREATED,
)
def receive_stock(
    payload: schemas.StockReceiveRequest,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    try:
        return services.receive_stock(
            db,
            location_id=payload.location_id,
            product_id=payload.product_id,
            quantity=payload.quantity,
            status=payload.status,
            notes=payload.notes,
            actor_user_id=current_user.id,
        )
    except StockError as exc:
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


@router.get(
    "/locations",
    response_model=List[schemas.StockLocationRead],
)
def list_locations(
    include_inactive: bool = False,
    location_type: Optional[models.StockLocationTypeEnum] = None,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_locations(db, include_inactive=include_inactive, location_type=location_type)


@router.post(
    "/locations",
    response_model=schemas.StockLocationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_location(
    payload: schemas.StockLocationCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*LOCATION_ADMIN_ROLES)),
):
    try:
        location = services.create_location(db, payload=payload, actor_user_id=current_user.id)
        db.commit()
        return services.get_location_read(db, location.id)
    except StockError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@router.patch(
    "/locations/{location_id}",
    response_model=schemas.StockLocationRead,
)
def update_location(
    location_id: str,
    payload: schemas.StockLocationUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*LOCATION_ADMIN_ROLES)),
):
    try:
        location = services.update_location(
            db,
            location_id=location_id,
            payload=payload,
            actor_user_id=current_user.id,
        )
        db.commit()
        return services.get_location_read(db, location.id)
    except StockError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@router.post(
    "/locations/{location_id}/deactivate",
    response_model=schemas.StockLocationRead,
)
def deactivate_location(
    location_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*LOCATION_ADMIN_ROLES)),
):
    try:
        location = services.deactivate_location(db, location_id=location_id, actor_user_id=current_user.id)
        db.commit()
        return services.get_location_read(db, location.id)
    except StockError as exc:
        db.rollback()
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


@router.get(
    "/products",
    response_model=List[schemas.ProductRead],
)
def list_products(
    product_type: Optional[models.ProductTypeEnum] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_products(
        db,
        product_type=product_type,
        search=search,
        include_inactive=include_inactive,
        skip=skip,
        limit=limit,
    )


@router.post(
    "/products",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def create_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*STOCK_WRITE_ROLES)),
):
    product = services.create_product(db, payload=payload, actor_user_id=current_user.id)
    db.commit()
    db.refresh(product)
    return product
