"""Curtailment records ingested from the Elexon settlement stack."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from curtailment_mining.core.database import Base


class CurtailmentRecord(Base):
    """
    One farm's accepted curtailment in one settlement period.

    ``volume`` is signed as published (curtailment bids are negative MWh) and
    ``payment`` is ``|volume| * original_price * -1``.
    """

    __tablename__ = "curtailment_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    settlement_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    settlement_period: Mapped[int] = mapped_column(Integer, nullable=False)
    farm_id: Mapped[str] = mapped_column(String(50), nullable=False)
    lead_party_name: Mapped[Optional[str]] = mapped_column(String(255))

    volume: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    payment: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    original_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    final_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    so_flag: Mapped[Optional[bool]] = mapped_column(Boolean)
    cadl_flag: Mapped[Optional[bool]] = mapped_column(Boolean)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "settlement_date", "settlement_period", "farm_id", name="uq_curtailment_date_period_farm"
        ),
        Index("idx_curtailment_farm_date", "farm_id", "settlement_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<CurtailmentRecord(date={self.settlement_date}, period={self.settlement_period}, "
            f"farm_id={self.farm_id}, volume={self.volume})>"
        )
