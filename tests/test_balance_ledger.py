import asyncio
import uuid
from decimal import Decimal

import pytest

from leadmarket.core.exceptions import InsufficientBalanceError, LedgerError, PartnerNotFoundError
from leadmarket.services.balance_ledger import BalanceLedger


async def test_increment_returns_post_update_snapshot(db, make_partner):
    partner_id = await make_partner(pending_balance=Decimal("10.00"), total_earnings=Decimal("10.00"))

    snapshot = await BalanceLedger(db).increment_partner_balance(partner_id, Decimal("2.50"), Decimal("2.50"))
    await db.commit()

    assert snapshot.pending_balance == Decimal("12.50")
    assert snapshot.total_earnings == Decimal("12.50")
    assert snapshot.is_reconciled


async def test_concurrent_increments_are_never_lost(session_factory, make_partner, get_partner):
    start = Decimal("100.00")
    step = Decimal("1.25")
    n = 25
    partner_id = await make_partner(pending_balance=start, total_earnings=start)

    async def credit():
        async with session_factory() as session:
            await BalanceLedger(session).increment_partner_balance(partner_id, step, step)
            await session.commit()

    await asyncio.gather(*(credit() for _ in range(n)))

    partner = await get_partner(partner_id)
    assert partner.pending_balance == start + n * step
    assert partner.total_earnings == start + n * step


async def test_move_pending_to_available(db, make_partner):
    partner_id = await make_partner(pending_balance=Decimal("30.00"), total_earnings=Decimal("30.00"))

    snapshot = await BalanceLedger(db).move_pending_to_available(partner_id, Decimal("20.00"))

    assert snapshot.pending_balance == Decimal("10.00")
    assert snapshot.available_balance == Decimal("20.00")
    assert snapshot.is_reconciled


async def test_move_more_than_pending_changes_nothing(db, make_partner, get_partner):
    partner_id = await make_partner(pending_balance=Decimal("5.00"), total_earnings=Decimal("5.00"))

    with pytest.raises(InsufficientBalanceError) as exc:
        await BalanceLedger(db).move_pending_to_available(partner_id, Decimal("5.50"))
    await db.commit()

    assert exc.value.current == Decimal("5.00")
    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("5.00")
    assert partner.available_balance == Decimal("0")


async def test_deduct_available_balance(db, make_partner):
    partner_id = await make_partner(available_balance=Decimal("80.00"), total_earnings=Decimal("80.00"))

    snapshot = await BalanceLedger(db).deduct_available_balance(partner_id, Decimal("75.00"))

    assert snapshot.available_balance == Decimal("5.00")
    assert snapshot.total_paid_out == Decimal("75.00")
    assert snapshot.is_reconciled


async def test_deduct_short_balance_fails_and_changes_nothing(db, make_partner, get_partner):
    partner_id = await make_partner(available_balance=Decimal("40.00"), total_earnings=Decimal("40.00"))

    with pytest.raises(InsufficientBalanceError) as exc:
        await BalanceLedger(db).deduct_available_balance(partner_id, Decimal("40.25"))
    await db.commit()

    assert exc.value.balance_field == "available_balance"
    partner = await get_partner(partner_id)
    assert partner.available_balance == Decimal("40.00")
    assert partner.total_paid_out == Decimal("0")


async def test_concurrent_deductions_never_overdraw(session_factory, make_partner, get_partner):
    partner_id = await make_partner(available_balance=Decimal("100.00"), total_earnings=Decimal("100.00"))

    async def withdraw():
        async with session_factory() as session:
            try:
                await BalanceLedger(session).deduct_available_balance(partner_id, Decimal("30.00"))
            except InsufficientBalanceError:
                await session.rollback()
                return False
            await session.commit()
            return True

    outcomes = await asyncio.gather(*(withdraw() for _ in range(5)))

    assert outcomes.count(True) == 3
    partner = await get_partner(partner_id)
    assert partner.available_balance == Decimal("10.00")
    assert partner.total_paid_out == Decimal("90.00")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
async def test_non_positive_amounts_rejected(db, make_partner, amount):
    partner_id = await make_partner(available_balance=Decimal("10.00"), pending_balance=Decimal("10.00"))
    ledger = BalanceLedger(db)

    with pytest.raises(LedgerError):
        await ledger.move_pending_to_available(partner_id, amount)
    with pytest.raises(LedgerError):
        await ledger.deduct_available_balance(partner_id, amount)


async def test_negative_increment_rejected(db, make_partner):
    partner_id = await make_partner()
    with pytest.raises(LedgerError):
        await BalanceLedger(db).increment_partner_balance(partner_id, Decimal("-1"), Decimal("0"))


async def test_unknown_partner(db):
    ledger = BalanceLedger(db)
    with pytest.raises(PartnerNotFoundError):
        await ledger.increment_partner_balance(uuid.uuid4(), Decimal("1"), Decimal("1"))
    with pytest.raises(PartnerNotFoundError):
        await ledger.deduct_available_balance(uuid.uuid4(), Decimal("1"))
