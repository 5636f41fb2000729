"""
Commission Service

Handles the money side of a completed lead sale:
- Commission recording (sale-completion event)
- Volume bonus eligibility
- Partner commission summary

Recording is one transaction: stamp the purchase item, credit the partner's
pending balance through BalanceLedger, append the audit entry, commit. If
any step fails the whole sale is rolled back and the error is raised, so a
partner can never be credited for a sale that was not recorded.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.core.clock import Clock, utcnow
from leadmarket.core.exceptions import (
    CommissionAlreadyRecordedError,
    PartnerNotFoundError,
    PurchaseItemNotFoundError,
)
from leadmarket.models.lead import Lead
from leadmarket.models.marketplace import MarketplacePurchaseItem, CommissionStatus, CommissionBonus
from leadmarket.models.partner import Partner
from leadmarket.services.audit_service import CommissionAuditService
from leadmarket.services.balance_ledger import BalanceLedger, BalanceSnapshot
from leadmarket.services.commission_engine import (
    COMMISSION_CONFIG,
    CommissionConfig,
    CommissionCalculation,
    CommissionPartnerInput,
    as_utc,
    calculate_commission,
    calculate_payable_date,
)

logger = logging.getLogger(__name__)


@dataclass
class CommissionRecordResult:
    purchase_item_id: uuid.UUID
    partner_id: uuid.UUID
    calculation: CommissionCalculation
    payable_at: datetime
    balance: BalanceSnapshot


@dataclass
class VolumeBonusStatus:
    eligible: bool
    leads_this_month: int
    threshold: int
    bonus_rate: Decimal


@dataclass
class CommissionSummary:
    partner_id: uuid.UUID
    total_earned: Decimal
    total_pending: Decimal
    total_available: Decimal
    total_paid_out: Decimal
    commission_rate: Decimal
    active_bonuses: List[str] = field(default_factory=list)


class CommissionService:
    """Service for partner commission operations."""

    def __init__(
        self,
        db: AsyncSession,
        config: CommissionConfig = COMMISSION_CONFIG,
        clock: Clock = utcnow,
        audit: Optional[CommissionAuditService] = None,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.ledger = BalanceLedger(db)
        self.audit = audit or CommissionAuditService(db)

    async def get_partner(self, partner_id: uuid.UUID) -> Partner:
        result = await self.db.execute(select(Partner).where(Partner.id == partner_id))
        partner = result.scalar_one_or_none()
        if partner is None:
            raise PartnerNotFoundError(partner_id)
        return partner

    # ========================================================================
    # Commission Recording
    # ========================================================================

    async def record_commission(
        self,
        purchase_item_id: uuid.UUID,
        partner_id: uuid.UUID,
        sale_price: Decimal,
        lead_created_at: datetime,
        sale_date: Optional[datetime] = None,
    ) -> CommissionRecordResult:
        """
        Calculate and record commission for a purchased lead.

        Flow:
        1. Load partner and calculate commission
        2. Stamp the purchase item (only if no commission recorded yet)
        3. Atomically credit pending_balance and total_earnings
        4. Append the earnings audit entry
        5. Commit

        Raises:
            PartnerNotFoundError, PurchaseItemNotFoundError,
            CommissionAlreadyRecordedError, CommissionAuditError
        """
        sale_date = as_utc(sale_date or self.clock())

        try:
            partner = await self.get_partner(partner_id)
            calculation = calculate_commission(
                sale_price=sale_price,
                partner=CommissionPartnerInput.from_partner(partner),
                lead_created_at=lead_created_at,
                sale_date=sale_date,
                config=self.config,
            )
            payable_at = calculate_payable_date(sale_date, config=self.config)

            # Conditional on no prior commission: a retried webhook matches no row
            stamped = await self.db.execute(
                update(MarketplacePurchaseItem)
                .where(
                    MarketplacePurchaseItem.id == purchase_item_id,
                    MarketplacePurchaseItem.commission_status.is_(None),
                )
                .values(
                    partner_id=partner_id,
                    commission_rate=calculation.rate,
                    commission_amount=calculation.amount,
                    commission_bonuses=list(calculation.bonuses),
                    commission_status=CommissionStatus.PENDING_HOLDBACK.value,
                    commission_payable_at=payable_at,
                )
                .returning(MarketplacePurchaseItem.id, MarketplacePurchaseItem.lead_id)
                .execution_options(synchronize_session="fetch")
            )
            row = stamped.first()
            if row is None:
                exists = await self.db.execute(
                    select(MarketplacePurchaseItem.id).where(MarketplacePurchaseItem.id == purchase_item_id)
                )
                if exists.first() is None:
                    raise PurchaseItemNotFoundError(purchase_item_id)
                raise CommissionAlreadyRecordedError(purchase_item_id)

            balance = await self.ledger.increment_partner_balance(
                partner_id,
                pending_delta=calculation.amount,
                earnings_delta=calculation.amount,
            )

            await self.audit.log_commission_recorded(
                partner_id=partner_id,
                amount=calculation.amount,
                rate=calculation.rate,
                purchase_item_id=purchase_item_id,
                lead_id=row.lead_id,
            )

            await self.db.commit()

        except CommissionAlreadyRecordedError:
            await self.db.rollback()
            logger.warning(f"Commission for purchase item {purchase_item_id} already recorded, skipping")
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record commission for purchase item {purchase_item_id}: {e}")
            raise

        logger.info(
            f"Recorded commission {calculation.amount} ({calculation.rate}) for partner {partner_id}, "
            f"bonuses={calculation.bonuses}, payable_at={payable_at.isoformat()}"
        )
        return CommissionRecordResult(
            purchase_item_id=purchase_item_id,
            partner_id=partner_id,
            calculation=calculation,
            payable_at=payable_at,
            balance=balance,
        )

    # ========================================================================
    # Bonus & Summary
    # ========================================================================

    async def calculate_volume_bonus(self, partner_id: uuid.UUID) -> VolumeBonusStatus:
        """Check whether the partner uploaded enough leads this month for the volume bonus."""
        month_start = self.clock().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        result = await self.db.execute(
            select(func.count(Lead.id)).where(
                Lead.partner_id == partner_id,
                Lead.created_at >= month_start,
            )
        )
        leads_this_month = result.scalar() or 0
        eligible = leads_this_month >= self.config.volume_threshold

        return VolumeBonusStatus(
            eligible=eligible,
            leads_this_month=leads_this_month,
            threshold=self.config.volume_threshold,
            bonus_rate=self.config.volume_bonus if eligible else Decimal("0"),
        )

    async def get_partner_commission_summary(self, partner_id: uuid.UUID) -> CommissionSummary:
        """Balances plus the rate the partner would earn on a non-fresh sale today."""
        partner = await self.get_partner(partner_id)
        balance = await self.ledger.get_balance(partner_id)

        active_bonuses: List[str] = []
        rate = partner.base_commission_rate or self.config.base_rate

        if (partner.verification_pass_rate or 0) >= self.config.high_verification_threshold:
            active_bonuses.append(CommissionBonus.HIGH_VERIFICATION.value)
            rate += self.config.high_verification_bonus

        volume = await self.calculate_volume_bonus(partner_id)
        if volume.eligible:
            active_bonuses.append(CommissionBonus.VOLUME.value)
            rate += volume.bonus_rate

        return CommissionSummary(
            partner_id=partner_id,
            total_earned=balance.total_earnings,
            total_pending=balance.pending_balance,
            total_available=balance.available_balance,
            total_paid_out=balance.total_paid_out,
            commission_rate=min(rate, self.config.max_rate),
            active_bonuses=active_bonuses,
        )
