"""Initial schema — drivers, locations, ride_requests, trips, ratings"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "drivers",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("car_model", sa.String(100), nullable=False, server_default="Not set"),
        sa.Column("car_color", sa.String(50), nullable=False, server_default="Not set"),
        sa.Column("plate", sa.String(20), nullable=False, server_default="Not set"),
        sa.Column("online_status", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("rating_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_user", "drivers", ["user_id"])
    op.create_index("idx_drivers_online", "drivers", ["online_status"])

    op.create_table(
        "locations",
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), primary_key=True),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("heading", sa.Float, nullable=False, server_default="0"),
        sa.Column("speed", sa.Float, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("passenger_id", sa.String, nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("dest_lat", sa.Float, nullable=False),
        sa.Column("dest_lng", sa.Float, nullable=False),
        sa.Column("dest_address", sa.String(500), nullable=False),
        sa.Column("distance", sa.Float, nullable=False),
        sa.Column("suggested_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("passenger_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("driver_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'driver_arrived', "
            "'in_progress', 'completed', 'cancelled')",
            name="ck_ride_requests_status",
        ),
    )
    op.create_index("idx_ride_requests_status", "ride_requests", ["status"])
    op.create_index("idx_ride_requests_passenger", "ride_requests", ["passenger_id"])
    op.create_index("idx_ride_requests_driver", "ride_requests", ["driver_id"])
    op.create_index("idx_ride_requests_created", "ride_requests", ["created_at"])

    op.create_table(
        "trips",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_request_id", sa.String, sa.ForeignKey("ride_requests.id"), unique=True, nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("passenger_id", sa.String, nullable=False),
        sa.Column("distance", sa.Float, nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_trips_ride_request", "trips", ["ride_request_id"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_passenger", "trips", ["passenger_id"])
    op.create_index("idx_trips_status", "trips", ["status"])

    op.create_table(
        "ratings",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("trip_id", sa.String, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("rater_id", sa.String, nullable=False),
        sa.Column("rated_id", sa.String, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("comment", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("trip_id", "rater_id", name="uq_ratings_trip_rater"),
    )
    op.create_index("idx_ratings_trip", "ratings", ["trip_id"])


def downgrade() -> None:
    op.drop_table("ratings")
    op.drop_table("trips")
    op.drop_table("ride_requests")
    op.drop_table("locations")
    op.drop_table("drivers")
