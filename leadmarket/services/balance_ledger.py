"""
Balance Ledger

The only code allowed to change partner balances. Every operation is one
UPDATE statement whose new value is computed by the database from the
current row (SET balance = balance + :delta), guarded by a WHERE clause for
debits. There is no read-then-write path: concurrent callers cannot lose
each other's updates, and a rejected debit matches zero rows so nothing
changes.

Operations:
- increment_partner_balance: commission recorded (pending + earnings)
- move_pending_to_available: holdback elapsed (pending -> available)
- deduct_available_balance: payout drawn (available -> paid out)

Callers own the transaction; the ledger never commits.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadmarket.core.exceptions import (
    InsufficientBalanceError,
    LedgerError,
    PartnerNotFoundError,
)
from leadmarket.models.partner import Partner

logger = logging.getLogger(__name__)

MONEY_PRECISION = Decimal("0.0001")


@dataclass(frozen=True)
class BalanceSnapshot:
    partner_id: uuid.UUID
    pending_balance: Decimal
    available_balance: Decimal
    total_earnings: Decimal
    total_paid_out: Decimal

    @property
    def is_reconciled(self) -> bool:
        """total_earnings == pending + available + paid out"""
        return self.total_earnings == self.pending_balance + self.available_balance + self.total_paid_out


def _money(value, name: str, allow_zero: bool = False) -> Decimal:
    amount = Decimal(str(value)).quantize(MONEY_PRECISION)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise LedgerError(f"{name} must be positive, got {value}")
    return amount


class BalanceLedger:
    """Atomic partner balance primitives."""

    _RETURNING = (
        Partner.id,
        Partner.pending_balance,
        Partner.available_balance,
        Partner.total_earnings,
        Partner.total_paid_out,
    )

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _execute(self, stmt):
        result = await self.db.execute(
            stmt.returning(*self._RETURNING).execution_options(synchronize_session="fetch")
        )
        row = result.first()
        if row is None:
            return None
        return BalanceSnapshot(
            partner_id=row.id,
            pending_balance=row.pending_balance,
            available_balance=row.available_balance,
            total_earnings=row.total_earnings,
            total_paid_out=row.total_paid_out,
        )

    async def _current_value(self, partner_id: uuid.UUID, column) -> Decimal:
        result = await self.db.execute(select(column).where(Partner.id == partner_id))
        row = result.first()
        if row is None:
            raise PartnerNotFoundError(partner_id)
        return row[0]

    async def get_balance(self, partner_id: uuid.UUID) -> BalanceSnapshot:
        """Read-only view of a partner's balances."""
        result = await self.db.execute(select(*self._RETURNING).where(Partner.id == partner_id))
        row = result.first()
        if row is None:
            raise PartnerNotFoundError(partner_id)
        return BalanceSnapshot(
            partner_id=row.id,
            pending_balance=row.pending_balance,
            available_balance=row.available_balance,
            total_earnings=row.total_earnings,
            total_paid_out=row.total_paid_out,
        )

    async def increment_partner_balance(
        self,
        partner_id: uuid.UUID,
        pending_delta: Decimal,
        earnings_delta: Decimal,
    ) -> BalanceSnapshot:
        """Add a recorded commission to pending_balance and total_earnings."""
        pending_delta = _money(pending_delta, "pending_delta", allow_zero=True)
        earnings_delta = _money(earnings_delta, "earnings_delta", allow_zero=True)

        snapshot = await self._execute(
            update(Partner)
            .where(Partner.id == partner_id)
            .values(
                pending_balance=Partner.pending_balance + pending_delta,
                total_earnings=Partner.total_earnings + earnings_delta,
            )
        )
        if snapshot is None:
            raise PartnerNotFoundError(partner_id)

        logger.debug(f"Partner {partner_id}: +{pending_delta} pending, +{earnings_delta} earnings")
        return snapshot

    async def move_pending_to_available(
        self,
        partner_id: uuid.UUID,
        amount: Decimal,
    ) -> BalanceSnapshot:
        """
        Mature commissions: pending_balance -> available_balance.

        Raises:
            InsufficientBalanceError: pending_balance < amount (no change made)
            PartnerNotFoundError: unknown partner
        """
        amount = _money(amount, "amount")

        snapshot = await self._execute(
            update(Partner)
            .where(Partner.id == partner_id, Partner.pending_balance >= amount)
            .values(
                pending_balance=Partner.pending_balance - amount,
                available_balance=Partner.available_balance + amount,
            )
        )
        if snapshot is None:
            current = await self._current_value(partner_id, Partner.pending_balance)
            raise InsufficientBalanceError(partner_id, "pending_balance", amount, current)

        logger.debug(f"Partner {partner_id}: moved {amount} pending -> available")
        return snapshot

    async def deduct_available_balance(
        self,
        partner_id: uuid.UUID,
        amount: Decimal,
    ) -> BalanceSnapshot:
        """
        Draw a payout: available_balance -> total_paid_out.

        Never clamps to zero. If the balance is short the UPDATE matches no
        row and InsufficientBalanceError is raised with the balance untouched.

        Raises:
            InsufficientBalanceError: available_balance < amount (no change made)
            PartnerNotFoundError: unknown partner
        """
        amount = _money(amount, "amount")

        snapshot = await self._execute(
            update(Partner)
            .where(Partner.id == partner_id, Partner.available_balance >= amount)
            .values(
                available_balance=Partner.available_balance - amount,
                total_paid_out=Partner.total_paid_out + amount,
            )
        )
        if snapshot is None:
            current = await self._current_value(partner_id, Partner.available_balance)
            logger.warning(f"Partner {partner_id}: payout of {amount} refused, available {current}")
            raise InsufficientBalanceError(partner_id, "available_balance", amount, current)

        logger.debug(f"Partner {partner_id}: deducted {amount} from available")
        return snapshot
