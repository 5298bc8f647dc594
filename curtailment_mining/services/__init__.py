"""Services package."""

from .bmu_mapping import BmuMapping
from .curtailment_service import CurtailmentIngestionService
from .difficulty import DifficultyTable
from .elexon_client import ElexonClient
from .mining_service import MiningCalculationService
from .pipeline import DateProcessor
from .reconciliation_service import ReconciliationChecker
from .summary_service import SummaryService

__all__ = [
    "BmuMapping",
    "CurtailmentIngestionService",
    "DateProcessor",
    "DifficultyTable",
    "ElexonClient",
    "MiningCalculationService",
    "ReconciliationChecker",
    "SummaryService",
]
