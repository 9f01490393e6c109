import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Numeric, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Trip(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ride_request_id: Mapped[str] = mapped_column(
        String, ForeignKey("ride_requests.id"), unique=True, nullable=False, index=True
    )
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False, index=True)
    passenger_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    distance: Mapped[float] = mapped_column(Float, nullable=False)
    # Snapshot of passenger_price or suggested_price at trip start
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # active | completed
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
