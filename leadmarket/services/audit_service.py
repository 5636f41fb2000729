from typing import Optional, List
import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.core.exceptions import CommissionAuditError
from leadmarket.models.partner import PartnerEarning, EarningStatus

logger = logging.getLogger(__name__)


class CommissionAuditService:
    """
    Append-only audit trail of partner commission events.

    Entries are flushed inside the caller's transaction. A failed write is
    raised as CommissionAuditError so the surrounding sale is rolled back
    instead of leaving a balance change nobody can reconcile.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        partner_id: uuid.UUID,
        amount: Decimal,
        status: EarningStatus = EarningStatus.PENDING,
        purchase_item_id: Optional[uuid.UUID] = None,
        lead_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
    ) -> PartnerEarning:
        """
        Create an earning audit entry.

        Args:
            partner_id: Partner credited
            amount: Commission amount
            status: Balance bucket the amount landed in
            purchase_item_id: Purchased lead the commission came from
            lead_id: Lead sold
            description: Human-readable description

        Returns:
            The created PartnerEarning entry
        """
        earning = PartnerEarning(
            partner_id=partner_id,
            purchase_item_id=purchase_item_id,
            lead_id=lead_id,
            amount=amount,
            status=status.value,
            description=description,
        )
        try:
            self.db.add(earning)
            await self.db.flush()
        except SQLAlchemyError as e:
            logger.critical(f"Failed to record partner earnings audit for partner {partner_id}: {e}")
            raise CommissionAuditError(f"Failed to record commission audit trail: {e}") from e
        return earning

    async def log_commission_recorded(
        self,
        partner_id: uuid.UUID,
        amount: Decimal,
        rate: Decimal,
        purchase_item_id: uuid.UUID,
        lead_id: Optional[uuid.UUID] = None,
    ) -> PartnerEarning:
        """Log a commission credited to pending balance."""
        percent = (rate * 100).quantize(Decimal("1"))
        return await self.log(
            partner_id=partner_id,
            amount=amount,
            status=EarningStatus.PENDING,
            purchase_item_id=purchase_item_id,
            lead_id=lead_id,
            description=f"Commission from lead sale ({percent}%)",
        )

    async def get_partner_earnings(
        self,
        partner_id: uuid.UUID,
        limit: int = 100,
    ) -> List[PartnerEarning]:
        result = await self.db.execute(
            select(PartnerEarning)
            .where(PartnerEarning.partner_id == partner_id)
            .order_by(PartnerEarning.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
