# Services module
from storefront.services.catalog_service import CatalogService
from storefront.services.order_intake_service import OrderIntakeService
from storefront.services.payment_service import PaymentService
from storefront.services.settlement_service import SettlementService
from storefront.services.referral_service import ReferralCaptureService
from storefront.services.attribution_service import AttributionService

__all__ = [
    "CatalogService",
    "OrderIntakeService",
    "PaymentService",
    "SettlementService",
    "ReferralCaptureService",
    "AttributionService",
]
