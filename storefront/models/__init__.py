from storefront.models.product import Product
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from storefront.models.order_sequence import OrderSequence
from storefront.models.affiliate import (
    Affiliate,
    AffiliateStatus,
    AffiliateCommission,
    CommissionStatus,
    AffiliateReferral,
)

__all__ = [
    "Product",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "OrderSequence",
    "Affiliate",
    "AffiliateStatus",
    "AffiliateCommission",
    "CommissionStatus",
    "AffiliateReferral",
]
