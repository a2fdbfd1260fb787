from __future__ import annotations

from typing import Any, Dict, Optional


class StockError(Exception):
    """Base class for failures of a single stock operation.

    Every subclass is scoped to the call that raised it: nothing was written.
    """

    code = "stock_error"

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class InvalidQuantity(StockError):
    """Raised when a quantity is not a positive whole number."""

    code = "invalid_quantity"

    def __init__(self, quantity: Any) -> None:
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}.")
        self.quantity = quantity


class SameLocation(StockError):
    """Raised when source and destination of a transfer are the same location."""

    code = "same_location"

    def __init__(self, location_id: str) -> None:
        super().__init__("Source and destination locations must be different.")
        self.location_id = location_id


class NotFound(StockError):
    """Raised when a referenced location, product or transfer does not exist."""

    code = "not_found"

    def __init__(self, reference: str, reference_id: Optional[str]) -> None:
        super().__init__(f"{reference} {reference_id!r} not found.")
        self.reference = reference
        self.reference_id = reference_id

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail.update({"reference": self.reference, "id": self.reference_id})
        return detail


class InsufficientStock(StockError):
    """Raised when the source location holds less than the requested quantity."""

    code = "insufficient_stock"

    def __init__(
        self,
        *,
        location_name: str,
        product_name: str,
        available: int,
        requested: int,
    ) -> None:
        super().__init__(
            f"Insufficient stock of {product_name} at {location_name}: "
            f"{available} available, {requested} requested."
        )
        self.location_name = location_name
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail.update(
            {
                "location_name": self.location_name,
                "product_name": self.product_name,
                "available": self.available,
                "requested": self.requested,
            }
        )
        return detail


class TransferAborted(StockError):
    """Raised when the store could not commit the unit (lock timeout, deadlock,
    serialization failure, lost connection). Safe to retry."""

    code = "transfer_aborted"

    def __init__(self, message: str = "Stock operation could not be committed; retry.") -> None:
        super().__init__(message)



class DuplicateName(StockError):
    """Raised when a location name is already taken."""

    code = "duplicate_name"

    def __init__(self, name: str) -> None:
        super().__init__(f"A location named {name!r} already exists.")
        self.name = name


def ensure_positive_quantity(quantity: Any) -> int:
    # bool is an int subclass; True must not mean "one unit"
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return quantity
