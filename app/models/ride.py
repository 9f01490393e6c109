import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import String, Float, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RideRequest(Base):
    __tablename__ = "ride_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    passenger_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String, ForeignKey("drivers.id"), nullable=True, index=True)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    dest_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dest_address: Mapped[str] = mapped_column(String(500), nullable=False)

    # Computed once at creation, never recomputed
    distance: Mapped[float] = mapped_column(Float, nullable=False)
    suggested_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    passenger_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    # Reserved for counter-offers; nothing writes it yet
    driver_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # pending | accepted | rejected | driver_arrived | in_progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    # Python-side defaults keep sub-second ordering for "newest first" queries
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=func.now()
    )
