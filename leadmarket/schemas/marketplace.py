"""Pydantic schemas for marketplace sale events."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from leadmarket.schemas.base import BaseCreateSchema, BaseResponseSchema


class SaleCompletedRequest(BaseCreateSchema):
    """Sale-completion webhook payload."""
    purchase_item_id: UUID
    partner_id: UUID
    sale_price: Decimal = Field(..., ge=0)
    lead_created_at: datetime
    sale_date: Optional[datetime] = None


class CommissionRecordResponse(BaseResponseSchema):
    purchase_item_id: UUID
    partner_id: UUID
    commission_rate: Decimal
    commission_amount: Decimal
    bonuses: List[str] = []
    payable_at: datetime
    pending_balance: Decimal
    total_earnings: Decimal
