"""Rollup summary endpoints."""

from datetime import date

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.deps import get_db
from curtailment_mining.schemas.summary import ConsistencyReport, DailyFarmBreakdown, SummaryResponse
from curtailment_mining.services.summary_service import SummaryService

router = APIRouter()


@router.get("/daily/{summary_date}", response_model=SummaryResponse)
async def get_daily_summary(
    summary_date: date,
    db: AsyncSession = Depends(get_db),
) -> SummaryResponse:
    """Curtailed energy, payment and Bitcoin per miner model for one date."""
    return await SummaryService(db).get_daily_summary(summary_date)


@router.get("/daily/{summary_date}/farms", response_model=DailyFarmBreakdown)
async def get_daily_farms(
    summary_date: date,
    db: AsyncSession = Depends(get_db),
) -> DailyFarmBreakdown:
    """Per-farm breakdown for one date."""
    return await SummaryService(db).farm_breakdown(summary_date)


@router.get("/monthly/{year_month}", response_model=SummaryResponse)
async def get_monthly_summary(
    year_month: str = Path(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$", description="YYYY-MM"),
    db: AsyncSession = Depends(get_db),
) -> SummaryResponse:
    """Totals for one month."""
    return await SummaryService(db).get_monthly_summary(year_month)


@router.get("/yearly/{year}", response_model=SummaryResponse)
async def get_yearly_summary(
    year: str = Path(..., pattern=r"^\d{4}$", description="YYYY"),
    db: AsyncSession = Depends(get_db),
) -> SummaryResponse:
    """Totals for one year."""
    return await SummaryService(db).get_yearly_summary(year)


@router.get("/consistency/{year}", response_model=ConsistencyReport)
async def check_consistency(
    year: int = Path(..., ge=2000, le=2100),
    db: AsyncSession = Depends(get_db),
) -> ConsistencyReport:
    """
    Compare each rollup for the year with the sum of its constituents.

    Differences are reported, never repaired here; rebuild the affected
    period to fix them.
    """
    return await SummaryService(db).check_consistency(year)
