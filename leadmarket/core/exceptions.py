"""Domain errors raised by the marketplace core services."""

import uuid
from decimal import Decimal
from typing import Optional


class LeadMarketError(Exception):
    """Base class for marketplace core errors."""


class PartnerNotFoundError(LeadMarketError):
    def __init__(self, partner_id: uuid.UUID):
        self.partner_id = partner_id
        super().__init__(f"Partner {partner_id} not found")


class InvalidPartnerError(LeadMarketError):
    """Partner argument is missing or lacks the fields commission needs."""


class LedgerError(LeadMarketError):
    """A balance operation was rejected before reaching the database."""


class InsufficientBalanceError(LedgerError):
    """The balance is smaller than the requested debit. Nothing was changed."""

    def __init__(
        self,
        partner_id: uuid.UUID,
        balance_field: str,
        requested: Decimal,
        current: Optional[Decimal] = None,
    ):
        self.partner_id = partner_id
        self.balance_field = balance_field
        self.requested = requested
        self.current = current
        super().__init__(
            f"Insufficient {balance_field} for partner {partner_id}: "
            f"requested {requested}, current {current}"
        )


class PurchaseItemNotFoundError(LeadMarketError):
    def __init__(self, purchase_item_id: uuid.UUID):
        self.purchase_item_id = purchase_item_id
        super().__init__(f"Purchase item {purchase_item_id} not found")


class CommissionAlreadyRecordedError(LeadMarketError):
    def __init__(self, purchase_item_id: uuid.UUID):
        self.purchase_item_id = purchase_item_id
        super().__init__(f"Commission already recorded for purchase item {purchase_item_id}")


class CommissionAuditError(LeadMarketError):
    """The commission audit trail could not be written; the sale was rolled back."""


class PayoutError(LeadMarketError):
    """Payout could not be created (below minimum, nothing payable, ...)."""


class InvalidStatusTransitionError(LeadMarketError):
    def __init__(self, current: str, target: Optional[str]):
        self.current = current
        self.target = target
        super().__init__(f"Commission status cannot move from {current} to {target}")
