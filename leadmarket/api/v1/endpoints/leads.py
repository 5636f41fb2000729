"""
Lead API Endpoints

Pre-upload duplicate check: tells a partner which rows of a batch are already
known to the marketplace, and why, without inserting anything.
"""

from fastapi import APIRouter, HTTPException

from leadmarket.api.deps import DB
from leadmarket.schemas.lead import DuplicateCheckRequest, DuplicateCheckResponse, RejectionResponse
from leadmarket.services.deduplication_service import DeduplicationService
from leadmarket.services.identity_resolution import RawContactRecord


router = APIRouter(prefix="/leads", tags=["Leads"])


@router.post("/duplicates/check", response_model=DuplicateCheckResponse)
async def check_duplicates(data: DuplicateCheckRequest, db: DB):
    records = [RawContactRecord(**r.model_dump()) for r in data.records]

    service = DeduplicationService(db)
    try:
        check = await service.check_batch(
            records,
            partner_id=data.partner_id,
            workspace_id=data.workspace_id,
            scope=data.scope,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    partition = check.partition
    return DuplicateCheckResponse(
        total=partition.total,
        new_count=partition.new_count,
        duplicate_count=partition.duplicate_count,
        duplicate_rate=partition.duplicate_rate,
        rejections=[RejectionResponse.model_validate(r) for r in check.rejections],
    )
