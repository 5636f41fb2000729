"""
Base Schema Classes for Pydantic Models

RULE: Response schemas that read from ORM rows or service results MUST inherit
from BaseResponseSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM models or service dataclasses.

    Usage:
        class CommissionSummaryResponse(BaseResponseSchema):
            partner_id: UUID
            total_earned: Decimal
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Accepts string UUIDs from clients and converts them to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )

