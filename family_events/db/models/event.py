"""ORM model for discovered family events (owned by discovery; status mutated via the state machine)."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from family_events.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    """One row per discovered event. Never deleted, only transitioned."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(256), unique=True, nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    location_address: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    age_range_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_range_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    registration_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    registration_opens_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    # Spots still available, out of max_capacity
    current_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    social_proof_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    influencer_mentions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previously_attended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="discovered", index=True)
    status_changed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    @property
    def is_free(self) -> bool:
        return not self.cost or self.cost <= 0
