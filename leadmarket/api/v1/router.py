from fastapi import APIRouter

from leadmarket.api.v1.endpoints import (
    # Sale completion webhook
    marketplace,
    # Upload deduplication
    leads,
    # Partner earnings
    partners,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(marketplace.router)
api_router.include_router(leads.router)
api_router.include_router(partners.router)
