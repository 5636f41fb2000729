"""Pydantic schemas for partner commission reporting."""
from decimal import Decimal
from typing import List
from uuid import UUID

from leadmarket.schemas.base import BaseResponseSchema


class CommissionSummaryResponse(BaseResponseSchema):
    """Partner balances and the rate earned on a non-fresh sale today."""
    partner_id: UUID
    total_earned: Decimal
    total_pending: Decimal
    total_available: Decimal
    total_paid_out: Decimal
    commission_rate: Decimal
    active_bonuses: List[str] = []


class PartnerDuplicateStatsResponse(BaseResponseSchema):
    partner_id: UUID
    total_leads: int
    duplicates_rejected: int
    duplicate_rate: Decimal
