"""Pydantic schemas package."""

from .elexon import SettlementStackRecord, SettlementStackResponse
from .mining import MinerModelInfo, MinerModelList, MiningCalculationRequest, MiningCalculationResponse
from .processing import (
    DateProcessingResult,
    DerivationResult,
    FillResult,
    IngestionResult,
    PeriodFailure,
)
from .reconciliation import (
    DateReconciliation,
    MissingCalculation,
    ReconciliationReport,
    ReconciliationStatus,
)
from .summary import (
    ConsistencyReport,
    DailyFarmBreakdown,
    FarmBreakdown,
    RollupInconsistency,
    SummaryResponse,
)

__all__ = [
    "ConsistencyReport",
    "DailyFarmBreakdown",
    "DateProcessingResult",
    "DateReconciliation",
    "DerivationResult",
    "FarmBreakdown",
    "FillResult",
    "IngestionResult",
    "MinerModelInfo",
    "MinerModelList",
    "MiningCalculationRequest",
    "MiningCalculationResponse",
    "MissingCalculation",
    "PeriodFailure",
    "ReconciliationReport",
    "ReconciliationStatus",
    "RollupInconsistency",
    "SettlementStackRecord",
    "SettlementStackResponse",
    "SummaryResponse",
]
