import uuid
from datetime import datetime
from sqlalchemy import String, Float, Integer, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    car_model: Mapped[str] = mapped_column(String(100), nullable=False, default="Not set")
    car_color: Mapped[str] = mapped_column(String(50), nullable=False, default="Not set")
    plate: Mapped[str] = mapped_column(String(20), nullable=False, default="Not set")
    online_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_trips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
