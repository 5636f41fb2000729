import uuid
from datetime import timedelta, timezone
from decimal import Decimal

import pytest

from leadmarket.core.exceptions import (
    CommissionAlreadyRecordedError,
    CommissionAuditError,
    PartnerNotFoundError,
    PurchaseItemNotFoundError,
)
from leadmarket.models import CommissionStatus
from leadmarket.services.audit_service import CommissionAuditService
from leadmarket.services.commission_service import CommissionService
from leadmarket.services.holdback_service import HoldbackScheduler
from tests.conftest import NOW


async def test_record_commission(db, clock, make_partner, make_lead, make_purchase_item, get_item, get_partner):
    partner_id = await make_partner()
    lead_id = await make_lead("sold@acme.com", partner_id=partner_id)
    item_id = await make_purchase_item(price=Decimal("100.00"), lead_id=lead_id)

    result = await CommissionService(db, clock=clock).record_commission(
        purchase_item_id=item_id,
        partner_id=partner_id,
        sale_price=Decimal("100.00"),
        lead_created_at=NOW - timedelta(days=2),
    )

    assert result.calculation.rate == Decimal("0.40")
    assert result.calculation.amount == Decimal("40.0000")
    assert result.payable_at == NOW + timedelta(days=14)
    assert result.balance.pending_balance == Decimal("40.0000")

    item = await get_item(item_id)
    assert item.commission_status == CommissionStatus.PENDING_HOLDBACK.value
    assert item.partner_id == partner_id
    assert item.commission_amount == Decimal("40.0000")
    assert item.commission_bonuses == ["fresh_sale"]

    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("40.0000")
    assert partner.total_earnings == Decimal("40.0000")

    earnings = await CommissionAuditService(db).get_partner_earnings(partner_id)
    assert len(earnings) == 1
    assert earnings[0].lead_id == lead_id
    assert earnings[0].description == "Commission from lead sale (40%)"


async def test_retried_sale_credits_once(db, clock, make_partner, make_purchase_item, get_partner):
    partner_id = await make_partner()
    item_id = await make_purchase_item()
    service = CommissionService(db, clock=clock)
    sale = dict(
        purchase_item_id=item_id,
        partner_id=partner_id,
        sale_price=Decimal("100.00"),
        lead_created_at=NOW - timedelta(days=30),
    )

    await service.record_commission(**sale)
    with pytest.raises(CommissionAlreadyRecordedError):
        await service.record_commission(**sale)

    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("30.0000")
    assert partner.total_earnings == Decimal("30.0000")


async def test_unknown_purchase_item(db, clock, make_partner):
    partner_id = await make_partner()
    with pytest.raises(PurchaseItemNotFoundError):
        await CommissionService(db, clock=clock).record_commission(
            uuid.uuid4(), partner_id, Decimal("10"), NOW,
        )


async def test_unknown_partner(db, clock, make_purchase_item, get_item):
    item_id = await make_purchase_item()
    with pytest.raises(PartnerNotFoundError):
        await CommissionService(db, clock=clock).record_commission(
            item_id, uuid.uuid4(), Decimal("10"), NOW,
        )
    assert (await get_item(item_id)).commission_status is None


class BrokenAudit(CommissionAuditService):
    async def log(self, *args, **kwargs):
        raise CommissionAuditError("Failed to record commission audit trail: disk full")


async def test_audit_failure_rolls_back_everything(db, clock, make_partner, make_purchase_item, get_partner, get_item):
    partner_id = await make_partner()
    item_id = await make_purchase_item()
    service = CommissionService(db, clock=clock, audit=BrokenAudit(db))

    with pytest.raises(CommissionAuditError):
        await service.record_commission(item_id, partner_id, Decimal("100.00"), NOW - timedelta(days=30))

    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("0")
    assert partner.total_earnings == Decimal("0")
    assert (await get_item(item_id)).commission_status is None

    # The sale can be recorded once the audit sink recovers
    result = await CommissionService(db, clock=clock).record_commission(
        item_id, partner_id, Decimal("100.00"), NOW - timedelta(days=30),
    )
    assert result.balance.pending_balance == Decimal("30.0000")


async def test_commission_summary(db, clock, make_partner, make_lead):
    partner_id = await make_partner(
        verification_pass_rate=Decimal("96"),
        pending_balance=Decimal("12.50"),
        available_balance=Decimal("20.00"),
        total_paid_out=Decimal("50.00"),
        total_earnings=Decimal("82.50"),
    )
    await make_lead("this-month@acme.com", partner_id=partner_id)

    summary = await CommissionService(db, clock=clock).get_partner_commission_summary(partner_id)

    assert summary.total_pending == Decimal("12.50")
    assert summary.total_available == Decimal("20.00")
    assert summary.total_paid_out == Decimal("50.00")
    assert summary.total_earned == Decimal("82.50")
    assert summary.commission_rate == Decimal("0.35")
    assert summary.active_bonuses == ["high_verification"]


async def test_volume_bonus_counts_this_month_only(db, clock, make_partner, make_lead):
    partner_id = await make_partner()
    await make_lead("march@acme.com", partner_id=partner_id)
    await make_lead("february@acme.com", partner_id=partner_id, created_at=NOW - timedelta(days=10))

    service = CommissionService(db, clock=clock)
    status = await service.calculate_volume_bonus(partner_id)

    assert status.leads_this_month == 1
    assert not status.eligible
    assert status.bonus_rate == Decimal("0")


async def test_audit_write_failure_is_raised(db, make_partner):
    partner_id = await make_partner()
    with pytest.raises(CommissionAuditError):
        await CommissionAuditService(db).log(partner_id=partner_id, amount=None)
    await db.rollback()


async def test_offset_sale_date_is_stored_in_utc(db, session_factory, clock, make_partner, make_purchase_item, get_item):
    partner_id = await make_partner()
    item_id = await make_purchase_item(price=Decimal("100.00"))
    india = timezone(timedelta(hours=5, minutes=30))

    result = await CommissionService(db, clock=clock).record_commission(
        purchase_item_id=item_id,
        partner_id=partner_id,
        sale_price=Decimal("100.00"),
        lead_created_at=NOW - timedelta(days=30),
        sale_date=NOW.astimezone(india),
    )

    due = NOW + timedelta(days=14)
    assert result.payable_at == due
    assert result.payable_at.utcoffset() == timedelta(0)
    item = await get_item(item_id)
    assert item.commission_payable_at.replace(tzinfo=None) == due.replace(tzinfo=None)

    matured = await HoldbackScheduler(session_factory, clock=lambda: due).run()
    assert matured.processed == 1
    assert (await get_item(item_id)).commission_status == CommissionStatus.PAYABLE.value
