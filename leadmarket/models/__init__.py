from leadmarket.models.partner import (
    Partner,
    PartnerStatus,
    PartnerEarning,
    EarningStatus,
    PayoutRequest,
    PayoutStatus,
)
from leadmarket.models.lead import Lead, PartnerUploadBatch
from leadmarket.models.marketplace import (
    MarketplacePurchaseItem,
    CommissionStatus,
    CommissionBonus,
)

__all__ = [
    "Partner",
    "PartnerStatus",
    "PartnerEarning",
    "EarningStatus",
    "PayoutRequest",
    "PayoutStatus",
    "Lead",
    "PartnerUploadBatch",
    "MarketplacePurchaseItem",
    "CommissionStatus",
    "CommissionBonus",
]
