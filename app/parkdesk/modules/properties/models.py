from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.parkdesk.models import Base


class Park(Base):
    __tablename__ = "parks"
    __table_args__ = (Index("idx_parks_name", "name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Address fields are optional; some parks are listed before the address is confirmed.
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    lots: Mapped[list["Lot"]] = relationship(back_populates="park", lazy="selectin")
    manager_assignments: Mapped[list["ManagerAssignment"]] = relationship(
        back_populates="park",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ManagerAssignment.id",
    )


class Lot(Base):
    __tablename__ = "lots"
    __table_args__ = (Index("idx_lots_park", "park_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    park_id: Mapped[int] = mapped_column(ForeignKey("parks.id", ondelete="CASCADE"), nullable=False)
    name_or_number: Mapped[str] = mapped_column(String(128), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    park: Mapped[Park] = relationship(back_populates="lots", lazy="joined")


class ManagerAssignment(Base):
    __tablename__ = "manager_assignments"
    __table_args__ = (UniqueConstraint("user_id", "park_id", name="uq_manager_assignment"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    park_id: Mapped[int] = mapped_column(ForeignKey("parks.id", ondelete="CASCADE"), nullable=False)

    park: Mapped[Park] = relationship(back_populates="manager_assignments")
