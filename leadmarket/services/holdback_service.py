"""
Holdback Scheduler

Matures commissions whose holdback window has elapsed:
PENDING_HOLDBACK -> PAYABLE, and the matured amount moves from the
partner's pending_balance to available_balance.

Work is done one partner per transaction. The status flip is a single
UPDATE ... WHERE commission_status = 'PENDING_HOLDBACK' RETURNING amount, so
only the run that actually flips a row counts its amount, and the balance
move for the flipped rows commits together with the flip. A second run finds
nothing to flip and moves nothing. Stopping mid-run leaves every partner
either fully processed or untouched.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadmarket.core.clock import Clock, utcnow
from leadmarket.models.marketplace import MarketplacePurchaseItem, CommissionStatus
from leadmarket.models.partner import EarningStatus
from leadmarket.services.audit_service import CommissionAuditService
from leadmarket.services.balance_ledger import BalanceLedger

logger = logging.getLogger(__name__)


@dataclass
class HoldbackRunResult:
    started_at: datetime
    processed: int = 0
    total_amount: Decimal = Decimal("0")
    partners: Dict[uuid.UUID, Decimal] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "processed": self.processed,
            "total_amount": str(self.total_amount),
            "partners": len(self.partners),
            "errors": self.errors,
        }


class HoldbackScheduler:
    """Moves matured commissions from pending to available balance."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock

    async def _partners_with_matured_commissions(self, now: datetime) -> List[uuid.UUID]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MarketplacePurchaseItem.partner_id)
                .where(
                    MarketplacePurchaseItem.commission_status == CommissionStatus.PENDING_HOLDBACK.value,
                    MarketplacePurchaseItem.commission_payable_at <= now,
                    MarketplacePurchaseItem.partner_id.is_not(None),
                )
                .distinct()
            )
            return [row[0] for row in result.all()]

    async def mature_partner(
        self,
        session: AsyncSession,
        partner_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[int, Decimal]:
        """
        Flip one partner's matured items to PAYABLE and move their total.

        Does not commit. Returns (items flipped, amount moved).
        """
        source = CommissionStatus.PENDING_HOLDBACK
        target = source.advance()
        result = await session.execute(
            update(MarketplacePurchaseItem)
            .where(
                MarketplacePurchaseItem.partner_id == partner_id,
                MarketplacePurchaseItem.commission_status == source.value,
                MarketplacePurchaseItem.commission_payable_at <= now,
            )
            .values(commission_status=target.value)
            .returning(MarketplacePurchaseItem.id, MarketplacePurchaseItem.commission_amount)
            .execution_options(synchronize_session="fetch")
        )
        rows = result.all()
        if not rows:
            return 0, Decimal("0")

        total = sum((row.commission_amount or Decimal("0") for row in rows), Decimal("0"))
        if total > 0:
            # One ledger call per partner, not per item
            await BalanceLedger(session).move_pending_to_available(partner_id, total)
            await CommissionAuditService(session).log(
                partner_id=partner_id,
                amount=total,
                status=EarningStatus.AVAILABLE,
                description=f"Holdback released for {len(rows)} commission(s)",
            )
        return len(rows), total

    async def run(self) -> HoldbackRunResult:
        """Process every partner with matured commissions."""
        now = self.clock()
        outcome = HoldbackRunResult(started_at=now)

        partner_ids = await self._partners_with_matured_commissions(now)
        if not partner_ids:
            logger.info("Holdback run: no matured commissions")
            return outcome

        for partner_id in partner_ids:
            async with self.session_factory() as session:
                try:
                    count, amount = await self.mature_partner(session, partner_id, now)
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Holdback run: failed to mature commissions for partner {partner_id}: {e}")
                    outcome.errors.append(f"Partner {partner_id}: {e}")
                    continue

            if count:
                outcome.processed += count
                outcome.total_amount += amount
                outcome.partners[partner_id] = amount

        logger.info(
            f"Holdback run: {outcome.processed} commissions matured, "
            f"{outcome.total_amount} moved for {len(outcome.partners)} partners, "
            f"{len(outcome.errors)} errors"
        )
        return outcome
