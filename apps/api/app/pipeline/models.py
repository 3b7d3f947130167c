from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.pipeline.constants import DEAL_STAGES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


class SalesRep(Base):
    __tablename__ = "sales_rep"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    territory: Mapped[str | None] = mapped_column(String(64), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class Deal(Base):
    __tablename__ = "deal"
    __table_args__ = (
        CheckConstraint(
            "stage IN (" + ", ".join(f"'{stage}'" for stage in DEAL_STAGES) + ")",
            name="ck_deal_stage",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # human-facing code, e.g. RV-001; never rewritten after insert
    deal_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    company_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    contact_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    transportation_mode: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage: Mapped[str] = mapped_column(String(32), nullable=False, default="prospect")
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    probability: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    created_date: Mapped[str] = mapped_column(String(40), nullable=False, default=utcnow_iso)
    updated_date: Mapped[str] = mapped_column(String(40), nullable=False, default=utcnow_iso)
    expected_close_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    sales_rep_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sales_rep.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    origin_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    destination_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    cargo_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    territory: Mapped[str | None] = mapped_column(String(64), nullable=True)
