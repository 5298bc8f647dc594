"""Per-date record of curtailment ingestion runs."""

import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, Enum, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from curtailment_mining.core.database import Base


class IngestionStatus(str, enum.Enum):
    """Outcome of the latest ingestion run for a date."""
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class IngestionLog(Base):
    """Marks a settlement date as ingested, even when it had no curtailment."""

    __tablename__ = "ingestion_log"

    settlement_date: Mapped[date] = mapped_column(Date, primary_key=True)
    status: Mapped[IngestionStatus] = mapped_column(Enum(IngestionStatus), nullable=False)
    records_stored: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    periods_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    periods_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<IngestionLog(date={self.settlement_date}, status={self.status})>"
