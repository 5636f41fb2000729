# Services module
from leadmarket.services.audit_service import CommissionAuditService
from leadmarket.services.balance_ledger import BalanceLedger
from leadmarket.services.commission_service import CommissionService
from leadmarket.services.deduplication_service import DeduplicationService
from leadmarket.services.holdback_service import HoldbackScheduler
from leadmarket.services.payout_service import PayoutService

__all__ = [
    "CommissionAuditService",
    "BalanceLedger",
    "CommissionService",
    "DeduplicationService",
    "HoldbackScheduler",
    "PayoutService",
]
