from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from leadmarket.core.exceptions import InvalidStatusTransitionError
from leadmarket.models import CommissionStatus, EarningStatus, PartnerEarning
from leadmarket.services.holdback_service import HoldbackScheduler
from tests.conftest import NOW


async def pending_item(make_purchase_item, partner_id, amount, payable_at):
    return await make_purchase_item(
        partner_id=partner_id,
        commission_amount=amount,
        commission_rate=Decimal("0.30"),
        commission_status=CommissionStatus.PENDING_HOLDBACK.value,
        commission_payable_at=payable_at,
    )


async def test_matures_only_elapsed_commissions(session_factory, clock, make_partner, make_purchase_item, get_item, get_partner):
    partner_id = await make_partner(pending_balance=Decimal("37.50"), total_earnings=Decimal("37.50"))
    first = await pending_item(make_purchase_item, partner_id, Decimal("12.50"), NOW - timedelta(days=1))
    second = await pending_item(make_purchase_item, partner_id, Decimal("15.00"), NOW)
    later = await pending_item(make_purchase_item, partner_id, Decimal("10.00"), NOW + timedelta(hours=1))

    result = await HoldbackScheduler(session_factory, clock=clock).run()

    assert result.processed == 2
    assert result.total_amount == Decimal("27.50")
    assert result.partners == {partner_id: Decimal("27.50")}
    assert result.errors == []

    assert (await get_item(first)).commission_status == CommissionStatus.PAYABLE.value
    assert (await get_item(second)).commission_status == CommissionStatus.PAYABLE.value
    assert (await get_item(later)).commission_status == CommissionStatus.PENDING_HOLDBACK.value

    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("10.00")
    assert partner.available_balance == Decimal("27.50")
    assert partner.total_earnings == Decimal("37.50")


async def test_second_run_moves_nothing(session_factory, clock, make_partner, make_purchase_item, get_partner):
    partner_id = await make_partner(pending_balance=Decimal("20.00"), total_earnings=Decimal("20.00"))
    await pending_item(make_purchase_item, partner_id, Decimal("20.00"), NOW - timedelta(days=1))
    scheduler = HoldbackScheduler(session_factory, clock=clock)

    await scheduler.run()
    second = await scheduler.run()

    assert second.processed == 0
    assert second.total_amount == Decimal("0")
    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("0")
    assert partner.available_balance == Decimal("20.00")


async def test_one_ledger_move_and_audit_row_per_partner(session_factory, clock, make_partner, make_purchase_item):
    a = await make_partner(name="A", pending_balance=Decimal("3.75"), total_earnings=Decimal("3.75"))
    b = await make_partner(name="B", pending_balance=Decimal("8.00"), total_earnings=Decimal("8.00"))
    for _ in range(3):
        await pending_item(make_purchase_item, a, Decimal("1.25"), NOW - timedelta(days=2))
    await pending_item(make_purchase_item, b, Decimal("8.00"), NOW - timedelta(days=2))

    result = await HoldbackScheduler(session_factory, clock=clock).run()

    assert result.processed == 4
    assert result.partners == {a: Decimal("3.75"), b: Decimal("8.00")}

    async with session_factory() as session:
        rows = (await session.execute(
            select(PartnerEarning).where(PartnerEarning.status == EarningStatus.AVAILABLE.value)
        )).scalars().all()
    assert sorted((r.partner_id == a, r.amount) for r in rows) == [(False, Decimal("8.00")), (True, Decimal("3.75"))]


async def test_partner_failure_is_isolated(session_factory, clock, make_partner, make_purchase_item, get_item, get_partner):
    # Pending balance disagrees with the items, so the ledger move is refused
    broken = await make_partner(name="Broken", pending_balance=Decimal("1.00"), total_earnings=Decimal("1.00"))
    healthy = await make_partner(name="Healthy", pending_balance=Decimal("5.00"), total_earnings=Decimal("5.00"))
    broken_item = await pending_item(make_purchase_item, broken, Decimal("5.00"), NOW - timedelta(days=1))
    await pending_item(make_purchase_item, healthy, Decimal("5.00"), NOW - timedelta(days=1))

    result = await HoldbackScheduler(session_factory, clock=clock).run()

    assert len(result.errors) == 1
    assert str(broken) in result.errors[0]
    assert result.partners == {healthy: Decimal("5.00")}
    assert (await get_item(broken_item)).commission_status == CommissionStatus.PENDING_HOLDBACK.value
    assert (await get_partner(broken)).pending_balance == Decimal("1.00")
    assert (await get_partner(healthy)).available_balance == Decimal("5.00")


async def test_clock_controls_maturity(session_factory, make_partner, make_purchase_item):
    partner_id = await make_partner(pending_balance=Decimal("10.00"), total_earnings=Decimal("10.00"))
    await pending_item(make_purchase_item, partner_id, Decimal("10.00"), NOW + timedelta(days=14))

    early = await HoldbackScheduler(session_factory, clock=lambda: NOW + timedelta(days=13)).run()
    late = await HoldbackScheduler(session_factory, clock=lambda: NOW + timedelta(days=14)).run()

    assert early.processed == 0
    assert late.processed == 1
    assert Decimal(late.to_dict()["total_amount"]) == Decimal("10.00")


def test_commission_status_moves_forward_only():
    assert CommissionStatus.PENDING_HOLDBACK.can_transition_to(CommissionStatus.PAYABLE)
    assert CommissionStatus.PAYABLE.can_transition_to(CommissionStatus.PAID)
    assert not CommissionStatus.PENDING_HOLDBACK.can_transition_to(CommissionStatus.PAID)
    assert not CommissionStatus.PAID.can_transition_to(CommissionStatus.PAYABLE)
    assert not CommissionStatus.PAYABLE.can_transition_to(CommissionStatus.PAYABLE)
    assert CommissionStatus.PAID.next() is None


def test_advance_rejects_skipped_or_final_status():
    assert CommissionStatus.PENDING_HOLDBACK.advance() == CommissionStatus.PAYABLE
    assert CommissionStatus.PAYABLE.advance(CommissionStatus.PAID) == CommissionStatus.PAID
    with pytest.raises(InvalidStatusTransitionError):
        CommissionStatus.PENDING_HOLDBACK.advance(CommissionStatus.PAID)
    with pytest.raises(InvalidStatusTransitionError):
        CommissionStatus.PAYABLE.advance(CommissionStatus.PENDING_HOLDBACK)
    with pytest.raises(InvalidStatusTransitionError):
        CommissionStatus.PAID.advance()


async def test_paid_items_are_never_matured_again(session_factory, clock, make_partner, make_purchase_item, get_item):
    partner_id = await make_partner(total_paid_out=Decimal("20.00"), total_earnings=Decimal("20.00"))
    paid = await make_purchase_item(
        partner_id=partner_id,
        commission_amount=Decimal("20.00"),
        commission_status=CommissionStatus.PAID.value,
        commission_payable_at=NOW - timedelta(days=3),
    )

    result = await HoldbackScheduler(session_factory, clock=clock).run()

    assert result.processed == 0
    assert (await get_item(paid)).commission_status == CommissionStatus.PAID.value
