"""Initial schema: PostGIS extension, zones, fare rules, drivers, rides.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

BOOKING_TYPES = ("regular", "rental", "outstation", "outstation_slab", "airport")
VEHICLE_TYPES = ("hatchback", "hatchback_ac", "sedan", "sedan_ac", "suv", "suv_ac")
RIDE_STATUSES = (
    "requested", "accepted", "driver_arrived", "in_progress", "completed", "cancelled",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # Shared enum types are created once, up front
    bind = op.get_bind()
    booking_type = postgresql.ENUM(*BOOKING_TYPES, name="bookingtype", create_type=False)
    vehicle_type = postgresql.ENUM(*VEHICLE_TYPES, name="vehicletype", create_type=False)
    booking_type.create(bind, checkfirst=True)
    vehicle_type.create(bind, checkfirst=True)

    # ── zones ─────────────────────────────────────────────────────────
    op.create_table(
        "zones",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("shape_type", sa.String(10), nullable=False),
        sa.Column("center_lat", sa.Float, nullable=True),
        sa.Column("center_lng", sa.Float, nullable=True),
        sa.Column("radius_m", sa.Float, nullable=True),
        sa.Column("vertices", sa.JSON, nullable=True),
        sa.Column("footprint", Geometry("GEOMETRY", srid=4326), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=True),
        sa.Column("per_km_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("surge_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "(shape_type = 'circle' AND radius_m > 0) "
            "OR (shape_type = 'polygon' AND vertices IS NOT NULL)",
            name="ck_zones_shape",
        ),
    )
    op.create_index(
        "idx_zones_footprint", "zones", ["footprint"], postgresql_using="gist"
    )
    op.create_index("idx_zones_active", "zones", ["is_active"])

    # ── fare_rules ────────────────────────────────────────────────────
    op.create_table(
        "fare_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_type", booking_type, nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column(
            "pricing_model",
            sa.Enum("metered", "hourly", "slab", name="pricingmodel"),
            nullable=False,
        ),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=True),
        sa.Column("per_km_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("per_minute_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("minimum_fare", sa.Numeric(10, 2), nullable=True),
        sa.Column("cancellation_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("minimum_hours", sa.Integer, nullable=True),
        sa.Column("slabs", sa.JSON, nullable=True),
        sa.Column("extra_km_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("driver_allowance_per_day", sa.Numeric(10, 2), nullable=True),
        sa.Column("night_charge_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("toll_included", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "platform_fee_kind",
            sa.Enum("fixed", "percent", name="platformfeekind"),
            nullable=False,
            server_default="fixed",
        ),
        sa.Column("platform_fee_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("peak_hour_multiplier", sa.Numeric(4, 2), nullable=False, server_default="1"),
        sa.Column("airport_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("booking_type", "vehicle_type", name="uq_fare_rules_pair"),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "status",
            sa.Enum("offline", "online", "busy", "suspended", name="driverstatus"),
            nullable=False,
            server_default="offline",
        ),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("vehicle_type", vehicle_type, nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("active_ride_ids", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("active_ride_count", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])
    op.create_index(
        "idx_drivers_eligible",
        "drivers",
        ["status", "is_verified", "active_ride_count"],
    )

    # ── ride_claims ───────────────────────────────────────────────────
    op.create_table(
        "ride_claims",
        sa.Column("ride_id", sa.String(36), primary_key=True),
        sa.Column("driver_id", sa.String(36), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("booking_type", booking_type, nullable=False),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("rental_hours", sa.Integer, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("duration_min", sa.Float, nullable=True),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUSES, name="ridestatus"),
            nullable=False,
            server_default="requested",
        ),
        sa.Column("driver_id", sa.String(36), nullable=True),
        sa.Column("quoted_fare", sa.Numeric(10, 2), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])


def downgrade() -> None:
    op.drop_table("rides")
    op.drop_table("ride_claims")
    op.drop_table("drivers")
    op.drop_table("fare_rules")
    op.drop_table("zones")
    for enum_name in (
        "ridestatus",
        "driverstatus",
        "platformfeekind",
        "pricingmodel",
        "vehicletype",
        "bookingtype",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
