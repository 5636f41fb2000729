"""
Payout Service

Draws matured commissions out of a partner's available balance:
- PAYABLE commissions -> PAID, linked to a PayoutRequest
- available_balance -> total_paid_out via BalanceLedger
- Weekly run over every eligible partner, idempotent per partner and week

The money transfer itself happens outside this service; payouts are left
PENDING until complete_payout() records the transfer outcome.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.core.clock import Clock, utcnow
from leadmarket.core.exceptions import LeadMarketError, PayoutError
from leadmarket.models.marketplace import MarketplacePurchaseItem, CommissionStatus
from leadmarket.models.partner import (
    EarningStatus,
    Partner,
    PartnerStatus,
    PayoutRequest,
    PayoutStatus,
)
from leadmarket.services.audit_service import CommissionAuditService
from leadmarket.services.balance_ledger import BalanceLedger
from leadmarket.services.commission_engine import COMMISSION_CONFIG, CommissionConfig

logger = logging.getLogger(__name__)


@dataclass
class WeeklyPayoutResult:
    week_start: date
    payouts_created: int = 0
    total_paid: Decimal = Decimal("0")
    errors: List[str] = field(default_factory=list)


def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


class PayoutService:
    """Service for partner payouts."""

    def __init__(
        self,
        db: AsyncSession,
        config: CommissionConfig = COMMISSION_CONFIG,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.ledger = BalanceLedger(db)

    async def get_payout_by_key(self, idempotency_key: str) -> Optional[PayoutRequest]:
        result = await self.db.execute(
            select(PayoutRequest).where(PayoutRequest.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def get_partners_eligible_for_payout(self) -> List[Partner]:
        """Active, non-suspended partners whose available balance meets the minimum."""
        result = await self.db.execute(
            select(Partner)
            .where(
                Partner.available_balance >= self.config.min_payout_amount,
                Partner.is_active.is_(True),
                Partner.status != PartnerStatus.SUSPENDED.value,
            )
            .order_by(Partner.created_at)
        )
        return list(result.scalars().all())

    async def create_payout(self, partner_id: uuid.UUID, idempotency_key: str) -> PayoutRequest:
        """
        Pay out every PAYABLE commission of a partner.

        A repeated idempotency key returns the existing payout unchanged.

        Raises:
            PayoutError: nothing payable, or total below the payout minimum
            InsufficientBalanceError: available balance disagrees with payable items
        """
        existing = await self.get_payout_by_key(idempotency_key)
        if existing:
            logger.info(f"Payout {idempotency_key} already exists, returning it")
            return existing

        now = self.clock()
        source = CommissionStatus.PAYABLE
        target = source.advance(CommissionStatus.PAID)
        try:
            payout = PayoutRequest(
                id=uuid.uuid4(),
                partner_id=partner_id,
                amount=Decimal("0"),
                idempotency_key=idempotency_key,
                status=PayoutStatus.PENDING.value,
            )
            self.db.add(payout)
            # Claims the key; a concurrent run with the same key fails here
            await self.db.flush()

            result = await self.db.execute(
                update(MarketplacePurchaseItem)
                .where(
                    MarketplacePurchaseItem.partner_id == partner_id,
                    MarketplacePurchaseItem.commission_status == source.value,
                )
                .values(
                    commission_status=target.value,
                    commission_paid_at=now,
                    payout_id=payout.id,
                )
                .returning(MarketplacePurchaseItem.commission_amount)
                .execution_options(synchronize_session="fetch")
            )
            amounts = [row[0] or Decimal("0") for row in result.all()]
            total = sum(amounts, Decimal("0"))

            if not amounts:
                raise PayoutError(f"No payable commissions for partner {partner_id}")
            if total < self.config.min_payout_amount:
                raise PayoutError(
                    f"Payable amount {total} below minimum {self.config.min_payout_amount}"
                )

            await self.ledger.deduct_available_balance(partner_id, total)

            payout.amount = total
            payout.items_count = len(amounts)
            await self.db.execute(
                update(Partner).where(Partner.id == partner_id).values(last_payout_at=now)
            )
            await CommissionAuditService(self.db).log(
                partner_id=partner_id,
                amount=total,
                status=EarningStatus.PAID,
                description=f"Payout {idempotency_key} for {len(amounts)} commission(s)",
            )

            await self.db.commit()
            await self.db.refresh(payout)

        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_payout_by_key(idempotency_key)
            if existing:
                return existing
            raise
        except LeadMarketError:
            await self.db.rollback()
            raise
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Payout {idempotency_key} failed: {e}")
            raise

        logger.info(f"Created payout {idempotency_key}: {total} for {len(amounts)} commissions")
        return payout

    async def complete_payout(
        self,
        payout_id: uuid.UUID,
        reference: Optional[str] = None,
        success: bool = True,
    ) -> PayoutRequest:
        """Record the outcome of the external transfer."""
        result = await self.db.execute(select(PayoutRequest).where(PayoutRequest.id == payout_id))
        payout = result.scalar_one_or_none()
        if not payout:
            raise PayoutError(f"Payout {payout_id} not found")
        if payout.status != PayoutStatus.PENDING.value:
            raise PayoutError(f"Payout {payout_id} is already {payout.status}")

        payout.status = PayoutStatus.COMPLETED.value if success else PayoutStatus.FAILED.value
        payout.transfer_reference = reference
        payout.completed_at = self.clock()

        await self.db.commit()
        await self.db.refresh(payout)
        if not success:
            logger.error(f"Payout {payout_id} transfer failed, needs manual reconciliation")
        return payout

    async def run_weekly_payouts(self) -> WeeklyPayoutResult:
        """Create this week's payout for every eligible partner."""
        week_start = week_start_for(self.clock().date())
        outcome = WeeklyPayoutResult(week_start=week_start)

        partners = await self.get_partners_eligible_for_payout()
        logger.info(f"Found {len(partners)} partners eligible for payout")

        for partner_id in [p.id for p in partners]:
            key = f"payout-{partner_id}-{week_start.isoformat()}"
            try:
                payout = await self.create_payout(partner_id, key)
            except Exception as e:
                logger.error(f"Weekly payout failed for partner {partner_id}: {e}")
                outcome.errors.append(f"Partner {partner_id}: {e}")
                continue

            outcome.payouts_created += 1
            outcome.total_paid += payout.amount

        logger.info(
            f"Weekly payouts completed: {outcome.payouts_created} created, "
            f"{outcome.total_paid} paid, {len(outcome.errors)} errors"
        )
        return outcome
