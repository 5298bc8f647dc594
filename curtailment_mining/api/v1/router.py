"""Main API router."""

from fastapi import APIRouter

from curtailment_mining.api.v1.endpoints import mining, reconciliation, summaries

api_router = APIRouter()

api_router.include_router(mining.router, prefix="/mining", tags=["mining"])
api_router.include_router(reconciliation.router, prefix="/reconciliation", tags=["reconciliation"])
api_router.include_router(summaries.router, prefix="/summaries", tags=["summaries"])
