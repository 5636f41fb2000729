"""Pydantic schemas for lead duplicate checks."""
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from leadmarket.schemas.base import BaseCreateSchema, BaseResponseSchema
from leadmarket.services.deduplication_service import DedupScope, RejectionReason


class ContactRecordIn(BaseCreateSchema):
    email: Optional[str] = None
    company_domain: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_title: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None


class DuplicateCheckRequest(BaseCreateSchema):
    records: List[ContactRecordIn] = Field(..., min_length=1)
    partner_id: Optional[UUID] = None
    workspace_id: Optional[UUID] = None
    scope: DedupScope = DedupScope.MARKETPLACE


class RejectionResponse(BaseResponseSchema):
    row_number: int
    reason: RejectionReason
    message: str
    field: Optional[str] = None
    value: Optional[str] = None
    existing_lead_id: Optional[UUID] = None
    existing_partner_id: Optional[UUID] = None


class DuplicateCheckResponse(BaseResponseSchema):
    total: int
    new_count: int
    duplicate_count: int
    duplicate_rate: Decimal
    rejections: List[RejectionResponse] = []
