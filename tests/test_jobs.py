from datetime import timedelta
from decimal import Decimal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from leadmarket.config import settings
from leadmarket.jobs import scheduler as scheduler_module
from leadmarket.jobs.commission_jobs import run_holdback_job, run_weekly_payouts_job
from leadmarket.models import CommissionStatus
from tests.conftest import NOW


def test_register_jobs():
    target = AsyncIOScheduler()
    scheduler_module.register_jobs(target)

    jobs = {job.id: job for job in target.get_jobs()}
    assert set(jobs) == {"release_commission_holdback", "weekly_partner_payouts"}
    assert isinstance(jobs["release_commission_holdback"].trigger, IntervalTrigger)
    assert jobs["release_commission_holdback"].trigger.interval == timedelta(minutes=settings.HOLDBACK_INTERVAL_MINUTES)
    assert isinstance(jobs["weekly_partner_payouts"].trigger, CronTrigger)


def test_job_status_lists_registered_jobs():
    scheduler_module.register_jobs(scheduler_module.scheduler)
    try:
        status = scheduler_module.get_job_status()
    finally:
        scheduler_module.scheduler.remove_all_jobs()

    assert {s["id"] for s in status} == {"release_commission_holdback", "weekly_partner_payouts"}
    assert all(s["next_run_time"] is None for s in status)


async def test_holdback_then_payout_jobs(session_factory, clock, make_partner, make_purchase_item, get_partner):
    partner_id = await make_partner(pending_balance=Decimal("60.00"), total_earnings=Decimal("60.00"))
    await make_purchase_item(
        partner_id=partner_id,
        commission_amount=Decimal("60.00"),
        commission_status=CommissionStatus.PENDING_HOLDBACK.value,
        commission_payable_at=NOW - timedelta(days=1),
    )

    holdback = await run_holdback_job(session_factory, clock=clock)
    assert holdback["status"] == "completed"
    assert holdback["processed"] == 1

    payouts = await run_weekly_payouts_job(session_factory, clock=clock)
    assert payouts["status"] == "completed"
    assert payouts["payouts_created"] == 1
    assert payouts["week_start"] == "2026-03-02"

    partner = await get_partner(partner_id)
    assert partner.pending_balance == Decimal("0")
    assert partner.available_balance == Decimal("0")
    assert partner.total_paid_out == Decimal("60.00")
    assert partner.total_earnings == Decimal("60.00")
