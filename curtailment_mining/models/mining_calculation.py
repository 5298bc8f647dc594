"""Derived Bitcoin mining potential per curtailment record and miner model."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from curtailment_mining.core.database import Base


class MiningCalculation(Base):
    """Bitcoin that could have been mined with one curtailment record's energy."""

    __tablename__ = "historical_bitcoin_calculations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    settlement_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    settlement_period: Mapped[int] = mapped_column(Integer, nullable=False)
    farm_id: Mapped[str] = mapped_column(String(50), nullable=False)
    miner_model: Mapped[str] = mapped_column(String(20), nullable=False)

    bitcoin_mined: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    difficulty: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)

    # GBP; null when no Bitcoin price was known for the date
    btc_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    value_at_mining: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "settlement_date",
            "settlement_period",
            "farm_id",
            "miner_model",
            name="uq_bitcoin_calc_date_period_farm_model",
        ),
        Index("idx_bitcoin_calc_date_model", "settlement_date", "miner_model"),
    )

    def __repr__(self) -> str:
        return (
            f"<MiningCalculation(date={self.settlement_date}, period={self.settlement_period}, "
            f"farm_id={self.farm_id}, miner_model={self.miner_model}, bitcoin_mined={self.bitcoin_mined})>"
        )
