"""Daily, monthly and yearly rollups.

Every value here is derived: a daily row sums curtailment records, a monthly
row sums daily rows, a yearly row sums monthly rows. Rows are recomputed, never
edited in place.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from curtailment_mining.core.database import Base


class DailySummary(Base):
    """Curtailment totals for one settlement date."""

    __tablename__ = "daily_summaries"

    summary_date: Mapped[date] = mapped_column(Date, primary_key=True)
    total_curtailed_energy: Mapped[Decimal] = mapped_column(Numeric(16, 3), nullable=False)
    total_payment: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class MonthlySummary(Base):
    """Curtailment totals for one calendar month (``YYYY-MM``)."""

    __tablename__ = "monthly_summaries"

    year_month: Mapped[str] = mapped_column(String(7), primary_key=True)
    total_curtailed_energy: Mapped[Decimal] = mapped_column(Numeric(16, 3), nullable=False)
    total_payment: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class YearlySummary(Base):
    """Curtailment totals for one calendar year (``YYYY``)."""

    __tablename__ = "yearly_summaries"

    year: Mapped[str] = mapped_column(String(4), primary_key=True)
    total_curtailed_energy: Mapped[Decimal] = mapped_column(Numeric(16, 3), nullable=False)
    total_payment: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class BitcoinDailySummary(Base):
    """Bitcoin mining potential for one settlement date and miner model."""

    __tablename__ = "bitcoin_daily_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    summary_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    miner_model: Mapped[str] = mapped_column(String(20), nullable=False)
    bitcoin_mined: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    value_at_mining: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("summary_date", "miner_model", name="uq_bitcoin_daily_date_model"),
    )


class BitcoinMonthlySummary(Base):
    """Bitcoin mining potential for one month and miner model."""

    __tablename__ = "bitcoin_monthly_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    miner_model: Mapped[str] = mapped_column(String(20), nullable=False)
    bitcoin_mined: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    value_at_mining: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("year_month", "miner_model", name="uq_bitcoin_monthly_month_model"),
    )


class BitcoinYearlySummary(Base):
    """Bitcoin mining potential for one year and miner model."""

    __tablename__ = "bitcoin_yearly_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[str] = mapped_column(String(4), nullable=False, index=True)
    miner_model: Mapped[str] = mapped_column(String(20), nullable=False)
    bitcoin_mined: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    value_at_mining: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("year", "miner_model", name="uq_bitcoin_yearly_year_model"),
    )
