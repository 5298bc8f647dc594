"""Reconciliation status endpoints."""

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.constants import DEFAULT_MISSING_LIMIT, MAX_MISSING_LIMIT
from curtailment_mining.core.deps import get_db
from curtailment_mining.core.exceptions import ValidationException
from curtailment_mining.schemas.reconciliation import MissingCalculation, ReconciliationReport
from curtailment_mining.services.reconciliation_service import ReconciliationChecker

router = APIRouter()


def _check_range(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationException("end_date must be on or after start_date")


@router.get("/status", response_model=ReconciliationReport)
async def reconciliation_status(
    start_date: date = Query(..., description="First settlement date (inclusive)"),
    end_date: date = Query(..., description="Last settlement date (inclusive)"),
    db: AsyncSession = Depends(get_db),
) -> ReconciliationReport:
    """Per-date reconciliation status and totals for a date range."""
    _check_range(start_date, end_date)
    return await ReconciliationChecker(db).check_range(start_date, end_date)


@router.get("/missing", response_model=List[MissingCalculation])
async def missing_calculations(
    start_date: date = Query(..., description="First settlement date (inclusive)"),
    end_date: date = Query(..., description="Last settlement date (inclusive)"),
    limit: int = Query(DEFAULT_MISSING_LIMIT, ge=1, le=MAX_MISSING_LIMIT),
    db: AsyncSession = Depends(get_db),
) -> List[MissingCalculation]:
    """Curtailment records lacking a mining calculation, one entry per miner model."""
    _check_range(start_date, end_date)
    return await ReconciliationChecker(db).find_missing(start_date, end_date, limit=limit)
