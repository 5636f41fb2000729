"""Partner models for the lead marketplace.

Partners are the sell side of the marketplace: they upload leads, earn a
commission when one of their leads is sold, and are paid out once the
holdback period has passed.

Balance columns are only ever changed through BalanceLedger, which issues
single atomic UPDATE statements. Application code must never assign to them.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Integer, Text,
    Numeric, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadmarket.database import Base
from leadmarket.db_types import UUIDType, MoneyType, RateType

if TYPE_CHECKING:
    from leadmarket.models.marketplace import MarketplacePurchaseItem


# ==================== ENUMS (stored as VARCHAR) ====================

class PartnerStatus(str, Enum):
    """Partner account status."""
    PENDING = "PENDING"          # Registered, not yet approved
    ACTIVE = "ACTIVE"            # Can upload and earn
    SUSPENDED = "SUSPENDED"      # Earning paused, no payouts


class EarningStatus(str, Enum):
    """Status of an audit-trail earning entry at the time it was written."""
    PENDING = "PENDING"
    AVAILABLE = "AVAILABLE"
    PAID = "PAID"


class PayoutStatus(str, Enum):
    """Payout request status."""
    PENDING = "PENDING"          # Balance deducted, awaiting transfer
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ==================== MODELS ====================

class Partner(Base):
    """
    Sell-side marketplace account.

    Invariant: total_earnings == pending_balance + available_balance + total_paid_out
    """
    __tablename__ = "partners"
    __table_args__ = (
        CheckConstraint("pending_balance >= 0", name="ck_partners_pending_balance_nonnegative"),
        CheckConstraint("available_balance >= 0", name="ck_partners_available_balance_nonnegative"),
        Index('ix_partners_status', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        default="ACTIVE",
        nullable=False,
        comment="PENDING, ACTIVE, SUSPENDED"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Commission attributes
    base_commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Overrides the platform base rate when set"
    )
    bonus_commission_rate: Mapped[Decimal] = mapped_column(
        RateType,
        default=Decimal("0"),
        nullable=False,
        comment="Volume bonus added on top of the base rate"
    )
    verification_pass_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False,
        comment="Percentage of uploaded leads passing verification (0-100)"
    )

    # Balances (mutated only by BalanceLedger)
    pending_balance: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_earnings: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_paid_out: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    last_payout_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    earnings: Mapped[List["PartnerEarning"]] = relationship(
        "PartnerEarning",
        back_populates="partner",
        lazy="noload"
    )
    payouts: Mapped[List["PayoutRequest"]] = relationship(
        "PayoutRequest",
        back_populates="partner",
        lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, name={self.name}, pending={self.pending_balance}, available={self.available_balance})>"


class PartnerEarning(Base):
    """
    Append-only audit trail of commission events.

    Rows are inserted in the same transaction as the balance mutation they
    describe and are never updated, so the table can be replayed to
    reconcile partner balances.
    """
    __tablename__ = "partner_earnings"
    __table_args__ = (
        Index('ix_partner_earnings_partner_created', 'partner_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False
    )
    purchase_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("marketplace_purchase_items.id", ondelete="SET NULL"),
        nullable=True
    )
    lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        comment="PENDING, AVAILABLE, PAID"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    partner: Mapped["Partner"] = relationship("Partner", back_populates="earnings")

    def __repr__(self) -> str:
        return f"<PartnerEarning(partner={self.partner_id}, amount={self.amount}, status={self.status})>"


class PayoutRequest(Base):
    """
    A payout drawn from a partner's available balance.

    The idempotency key makes weekly payout runs safe to retry: a second
    attempt with the same key finds the existing row instead of paying twice.
    """
    __tablename__ = "payout_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(
        String(150),
        unique=True,
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        comment="PENDING, COMPLETED, FAILED"
    )
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    partner: Mapped["Partner"] = relationship("Partner", back_populates="payouts")
    items: Mapped[List["MarketplacePurchaseItem"]] = relationship(
        "MarketplacePurchaseItem",
        back_populates="payout",
        lazy="noload"
    )

    def __repr__(self) -> str:
        return f"<PayoutRequest(partner={self.partner_id}, amount={self.amount}, status={self.status})>"
