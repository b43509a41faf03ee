"""
Checkout error taxonomy.

Services raise these; the API layer renders them as
``{"success": false, "error": ..., "kind": ...}`` with ``status_code``.
"""
from typing import Optional


class CheckoutError(Exception):
    """Base class for checkout pipeline failures."""
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "kind": self.kind}


class ValidationError(CheckoutError):
    """Bad or missing cart data."""
    status_code = 400


class ProductNotFound(CheckoutError):
    """A cart line names a product the catalog does not have."""
    status_code = 404

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["product_id"] = self.product_id
        return data


class InsufficientStock(CheckoutError):
    """Requested quantity exceeds the catalog's current stock."""
    status_code = 409

    def __init__(self, product_id: str, product_name: str, available: int, requested: Optional[int] = None):
        super().__init__(f"Insufficient stock for {product_name}: only {available} left")
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "product_id": self.product_id,
            "product_name": self.product_name,
            "available": self.available,
        })
        return data


class PaymentGatewayError(CheckoutError):
    """The payment gateway refused or failed to create an intent."""
    status_code = 502


class InvalidSignature(CheckoutError):
    """Payment callback signature did not verify."""
    status_code = 400

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message)


class SettlementPartialWarning(CheckoutError):
    """Payment verified but the local order could not be found."""
    status_code = 200

    def __init__(self, local_order_id: str):
        super().__init__(f"Payment verified but order {local_order_id} was not found")
        self.local_order_id = local_order_id
