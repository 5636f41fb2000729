"""
Marketplace API Endpoints

Sale-completion webhook: records the supplying partner's commission for a
purchased lead. Retried deliveries are rejected with 409 and credit nothing.
"""

from fastapi import APIRouter, HTTPException, status

from leadmarket.api.deps import DB
from leadmarket.core.exceptions import (
    CommissionAlreadyRecordedError,
    CommissionAuditError,
    InvalidPartnerError,
    PartnerNotFoundError,
    PurchaseItemNotFoundError,
)
from leadmarket.schemas.marketplace import SaleCompletedRequest, CommissionRecordResponse
from leadmarket.services.commission_service import CommissionService


router = APIRouter(prefix="/marketplace", tags=["Marketplace"])


@router.post(
    "/sales/completed",
    response_model=CommissionRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def sale_completed(data: SaleCompletedRequest, db: DB):
    """Record the partner commission for a completed lead sale."""
    service = CommissionService(db)
    try:
        result = await service.record_commission(
            purchase_item_id=data.purchase_item_id,
            partner_id=data.partner_id,
            sale_price=data.sale_price,
            lead_created_at=data.lead_created_at,
            sale_date=data.sale_date,
        )
    except (PartnerNotFoundError, PurchaseItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CommissionAlreadyRecordedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidPartnerError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CommissionAuditError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return CommissionRecordResponse(
        purchase_item_id=result.purchase_item_id,
        partner_id=result.partner_id,
        commission_rate=result.calculation.rate,
        commission_amount=result.calculation.amount,
        bonuses=result.calculation.bonuses,
        payable_at=result.payable_at,
        pending_balance=result.balance.pending_balance,
        total_earnings=result.balance.total_earnings,
    )
