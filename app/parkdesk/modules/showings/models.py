from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.parkdesk.models import Base
from app.parkdesk.modules.properties.models import Lot

SHOWING_STATUSES = ("SCHEDULED", "CANCELED", "COMPLETED")
REMINDER_PREFERENCES = ("SMS", "EMAIL", "BOTH")
RULE_TYPES = ("OPEN_SLOT", "BLOCKED")


class Showing(Base):
    __tablename__ = "showings"
    __table_args__ = (
        Index("idx_showings_lot_time", "lot_id", "start_dt", "end_dt"),
        Index("idx_showings_manager", "manager_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lot_id: Mapped[int] = mapped_column(ForeignKey("lots.id", ondelete="CASCADE"), nullable=False)
    manager_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # naive UTC
    start_dt: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_dt: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    reminder_preference: Mapped[str] = mapped_column(String(16), nullable=False, default="BOTH")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="SCHEDULED")

    calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_html_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    calendar_sync_error: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    lot: Mapped[Lot] = relationship(lazy="joined")


class AvailabilityRule(Base):
    """Manual availability rule for a lot. Only BLOCKED rules remove slots."""

    __tablename__ = "availability_rules"
    __table_args__ = (Index("idx_availability_lot_time", "lot_id", "start_dt", "end_dt"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lot_id: Mapped[int] = mapped_column(ForeignKey("lots.id", ondelete="CASCADE"), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(16), nullable=False)  # OPEN_SLOT | BLOCKED
    start_dt: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_dt: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
