"""Marketplace purchase items and their commission state.

Each purchased lead becomes one MarketplacePurchaseItem. When the sale
completes, the item is stamped with its commission fields; from then on
commission_status only moves forward:

    PENDING_HOLDBACK -> PAYABLE -> PAID
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadmarket.core.exceptions import InvalidStatusTransitionError
from leadmarket.database import Base
from leadmarket.db_types import UUIDType, JSONType, MoneyType, RateType

if TYPE_CHECKING:
    from leadmarket.models.lead import Lead
    from leadmarket.models.partner import Partner, PayoutRequest


class CommissionStatus(str, Enum):
    """Commission lifecycle of a purchased lead."""
    PENDING_HOLDBACK = "PENDING_HOLDBACK"  # Sale recorded, inside holdback window
    PAYABLE = "PAYABLE"                    # Holdback elapsed, counted in available balance
    PAID = "PAID"                          # Included in a payout

    @property
    def rank(self) -> int:
        return _COMMISSION_ORDER.index(self)

    def can_transition_to(self, target: "CommissionStatus") -> bool:
        """Only the next status in the lifecycle is reachable."""
        return target.rank == self.rank + 1

    def next(self) -> Optional["CommissionStatus"]:
        if self.rank + 1 < len(_COMMISSION_ORDER):
            return _COMMISSION_ORDER[self.rank + 1]
        return None

    def advance(self, target: Optional["CommissionStatus"] = None) -> "CommissionStatus":
        """
        Status reached by moving forward from this one.

        Raises:
            InvalidStatusTransitionError: target is not the next status, or
                this status is final
        """
        target = target or self.next()
        if target is None or not self.can_transition_to(target):
            raise InvalidStatusTransitionError(self.value, target.value if target else None)
        return target


_COMMISSION_ORDER = [
    CommissionStatus.PENDING_HOLDBACK,
    CommissionStatus.PAYABLE,
    CommissionStatus.PAID,
]


class CommissionBonus(str, Enum):
    """Bonus tags recorded on a commission, in evaluation order."""
    FRESH_SALE = "fresh_sale"
    HIGH_VERIFICATION = "high_verification"
    VOLUME = "volume"


class MarketplacePurchaseItem(Base):
    """
    A single lead bought by a business.

    Commission columns stay NULL until the sale-completion event is
    processed; recording is conditional on commission_status IS NULL so a
    retried webhook cannot credit the partner twice.
    """
    __tablename__ = "marketplace_purchase_items"
    __table_args__ = (
        Index('ix_purchase_items_partner_status', 'partner_id', 'commission_status'),
        Index('ix_purchase_items_status_payable_at', 'commission_status', 'commission_payable_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Purchase & Lead Reference
    purchase_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        nullable=True,
        index=True,
        comment="Checkout/purchase this item belongs to"
    )
    lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("leads.id", ondelete="SET NULL"),
        nullable=True
    )
    partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("partners.id", ondelete="SET NULL"),
        nullable=True,
        comment="Seller of the lead; NULL for platform-owned leads"
    )
    price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Commission
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(RateType, nullable=True)
    commission_amount: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)
    commission_bonuses: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)
    commission_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="PENDING_HOLDBACK, PAYABLE, PAID"
    )
    commission_payable_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    commission_paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    payout_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("payout_requests.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    lead: Mapped[Optional["Lead"]] = relationship("Lead", lazy="noload")
    partner: Mapped[Optional["Partner"]] = relationship("Partner", lazy="noload")
    payout: Mapped[Optional["PayoutRequest"]] = relationship(
        "PayoutRequest",
        back_populates="items",
        lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<MarketplacePurchaseItem(id={self.id}, partner={self.partner_id}, status={self.commission_status})>"
