"""
Commission Jobs

Background jobs for the partner money flow:
- Holdback release (PENDING_HOLDBACK -> PAYABLE, pending -> available)
- Weekly payouts (PAYABLE -> PAID, available -> paid out)
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadmarket.core.clock import Clock, utcnow

logger = logging.getLogger(__name__)


async def run_holdback_job(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    clock: Clock = utcnow,
) -> Dict[str, Any]:
    """
    Mature commissions whose holdback period has ended.

    Runs every HOLDBACK_INTERVAL_MINUTES. Safe to run repeatedly: a commission
    is only moved by the run that flips its status.
    """
    from leadmarket.database import async_session_factory
    from leadmarket.services.holdback_service import HoldbackScheduler

    logger.info("Starting holdback release...")
    try:
        scheduler = HoldbackScheduler(session_factory or async_session_factory, clock=clock)
        result = await scheduler.run()
    except Exception as e:
        logger.error(f"Holdback release failed: {e}")
        return {"status": "failed", "error": str(e)}

    return {"status": "completed", **result.to_dict()}


async def run_weekly_payouts_job(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    clock: Clock = utcnow,
) -> Dict[str, Any]:
    """Create this week's payout for every eligible partner."""
    from leadmarket.database import get_db_session
    from leadmarket.services.payout_service import PayoutService

    logger.info("Starting weekly payouts...")
    try:
        async with get_db_session(session_factory) as session:
            result = await PayoutService(session, clock=clock).run_weekly_payouts()
    except Exception as e:
        logger.error(f"Weekly payouts failed: {e}")
        return {"status": "failed", "error": str(e)}

    return {
        "status": "completed",
        "week_start": result.week_start.isoformat(),
        "payouts_created": result.payouts_created,
        "total_paid": str(result.total_paid),
        "errors": result.errors,
    }
