"""
Partner API Endpoints

Commission tracking and upload quality for lead-supplying partners.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException

from leadmarket.api.deps import DB
from leadmarket.core.exceptions import PartnerNotFoundError
from leadmarket.schemas.partner import CommissionSummaryResponse, PartnerDuplicateStatsResponse
from leadmarket.services.commission_service import CommissionService
from leadmarket.services.deduplication_service import DeduplicationService


router = APIRouter(prefix="/partners", tags=["Partners"])


@router.get("/{partner_id}/commission-summary", response_model=CommissionSummaryResponse)
async def get_commission_summary(partner_id: UUID, db: DB):
    """
    Get a partner's balances and current commission rate.
    """
    service = CommissionService(db)
    try:
        summary = await service.get_partner_commission_summary(partner_id)
    except PartnerNotFoundError:
        raise HTTPException(status_code=404, detail="Partner not found")

    return CommissionSummaryResponse.model_validate(summary)


@router.get("/{partner_id}/duplicate-stats", response_model=PartnerDuplicateStatsResponse)
async def get_duplicate_stats(partner_id: UUID, db: DB):
    """Leads owned by the partner against duplicates rejected from its uploads."""
    stats = await DeduplicationService(db).get_partner_duplicate_stats(partner_id)
    return PartnerDuplicateStatsResponse(
        partner_id=stats.partner_id,
        total_leads=stats.total_leads,
        duplicates_rejected=stats.duplicates_rejected,
        duplicate_rate=stats.duplicate_rate,
    )
