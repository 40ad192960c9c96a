"""Initial schema: trips, bookings, cancellation log and suspensions.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("available_seats", sa.Integer, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "scheduled",
                "fully_booked",
                "completed",
                "cancelled",
                name="tripstatus",
            ),
            default="scheduled",
            nullable=False,
        ),
        sa.Column("version", sa.Integer, default=0, nullable=False),
        sa.Column("departure_city", sa.String(120), nullable=True),
        sa.Column("arrival_city", sa.String(120), nullable=True),
        sa.Column("departure_at", sa.DateTime(timezone=True), nullable=True),
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
        sa.CheckConstraint("total_seats > 0", name="ck_trips_total_seats_positive"),
        sa.CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_trips_available_seats_range",
        ),
    )
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_status", "trips", ["status"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("passenger_id", sa.Integer, nullable=False),
        sa.Column("driver_id", sa.Integer, nullable=False),
        sa.Column("seats", sa.Integer, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "confirmed",
                "enroute",
                "completed",
                "cancelled",
                name="bookingstatus",
            ),
            default="pending",
            nullable=False,
        ),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("seats > 0", name="ck_bookings_seats_positive"),
    )
    op.create_index("idx_bookings_trip", "bookings", ["trip_id"])
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index(
        "idx_bookings_status_created", "bookings", ["status", "created_at"]
    )

    # ── cancellation_events ───────────────────────────────────────────
    op.create_table(
        "cancellation_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, nullable=False),
        sa.Column(
            "role",
            sa.Enum("driver", "passenger", name="userrole"),
            nullable=False,
        ),
        sa.Column(
            "attribution",
            sa.Enum(
                "user-initiated",
                "system-expired",
                name="cancellationattribution",
            ),
            nullable=False,
        ),
        sa.Column(
            "booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=True
        ),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_cancellations_user_window",
        "cancellation_events",
        ["user_id", "role", "occurred_at"],
    )
    op.create_index(
        "idx_cancellations_occurred", "cancellation_events", ["occurred_at"]
    )

    # ── suspensions ───────────────────────────────────────────────────
    op.create_table(
        "suspensions",
        sa.Column("user_id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("is_suspended", sa.Boolean, default=False, nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "cancellations_reset_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("suspensions")
    op.drop_table("cancellation_events")
    op.drop_table("bookings")
    op.drop_table("trips")
    op.execute("DROP TYPE IF EXISTS cancellationattribution")
    op.execute("DROP TYPE IF EXISTS userrole")
    op.execute("DROP TYPE IF EXISTS bookingstatus")
    op.execute("DROP TYPE IF EXISTS tripstatus")
