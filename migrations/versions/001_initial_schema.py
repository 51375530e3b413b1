"""Initial schema: bookings, drivers and the status update log.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("pickup_address", sa.String(255), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_address", sa.String(255), nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        _ts("arrived_pickup_at"),
        _ts("arrived_dropoff_at"),
        _ts("actual_delivery_time"),
        _ts("assigned_at"),
        _ts("accepted_at"),
        _ts("enroute_at"),
        _ts("picked_up_at"),
        _ts("in_transit_at"),
        _ts("delivered_at"),
        _ts("money_collection_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_event_id", sa.String(128), nullable=True),
        sa.Column("last_event_source", sa.String(64), nullable=True),
        _ts("last_event_at"),
        sa.Column("last_status_before", sa.String(32), nullable=True),
        sa.Column("last_status_after", sa.String(32), nullable=True),
        _ts("last_heartbeat_at"),
        sa.Column("last_heartbeat_source", sa.String(64), nullable=True),
        sa.Column("last_heartbeat_id", sa.String(128), nullable=True),
        sa.Column("recent_event_ids", sa.JSON, nullable=True),
        sa.Column("driver_location", sa.JSON, nullable=True),
        sa.Column("status_notes", sa.Text, nullable=True),
        sa.Column("delivery_notes", sa.Text, nullable=True),
        sa.Column("delivery_verification", sa.JSON, nullable=True),
        sa.Column("recipient", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_driver", "bookings", ["driver_id"])
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("current_booking_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), server_default="available"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_available", "drivers", ["is_available"])

    # ── booking_status_updates ────────────────────────────────────────
    op.create_table(
        "booking_status_updates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("event_id", sa.String(128), nullable=True),
        _ts("event_at"),
        sa.Column("idempotent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_status_updates_booking", "booking_status_updates", ["booking_id"]
    )


def downgrade() -> None:
    op.drop_table("booking_status_updates")
    op.drop_table("drivers")
    op.drop_table("bookings")
