"""Initial schema: users, cars, bookings, drivers, assignment history, reviews.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users (customers and admins)
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("role", sa.String(10), nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("role IN ('user', 'admin')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Cars
    op.create_table(
        "cars",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("brand", sa.String(100), nullable=False),
        sa.Column("type", sa.String(50), nullable=True),
        sa.Column("transmission", sa.String(50), nullable=True),
        sa.Column("fuel", sa.String(50), nullable=True),
        sa.Column("price_per_day", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        *_timestamps(),
        sa.CheckConstraint("price_per_day > 0", name="check_car_price_positive"),
        sa.CheckConstraint("status IN ('available', 'unavailable')", name="check_car_status"),
    )
    op.create_index("ix_cars_id", "cars", ["id"])

    # Drivers; current_booking_id gets its FK after bookings exists
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("license_number", sa.String(50), nullable=False, unique=True),
        sa.Column("phone", sa.String(30), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("experience", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'available'")),
        sa.Column("current_booking_id", sa.Integer(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('available', 'assigned', 'on-leave', 'inactive')",
            name="check_driver_status",
        ),
        # A driver is assigned exactly when it points at a booking
        sa.CheckConstraint(
            "(status = 'assigned' AND current_booking_id IS NOT NULL) "
            "OR (status != 'assigned' AND current_booking_id IS NULL)",
            name="check_driver_current_booking",
        ),
        sa.CheckConstraint("experience >= 0", name="check_driver_experience"),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="check_driver_rating"),
    )
    op.create_index("ix_drivers_id", "drivers", ["id"])
    op.create_index("ix_drivers_status", "drivers", ["status"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("car_id", sa.Integer(), sa.ForeignKey("cars.id"), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("contact", sa.String(30), nullable=False),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_lng", sa.Float(), nullable=True),
        sa.Column("has_separate_locations", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pickup_lat", sa.Float(), nullable=True),
        sa.Column("pickup_lng", sa.Float(), nullable=True),
        sa.Column("dropoff_lat", sa.Float(), nullable=True),
        sa.Column("dropoff_lng", sa.Float(), nullable=True),
        sa.Column("pickup_address", sa.String(255), nullable=True),
        sa.Column("dropoff_address", sa.String(255), nullable=True),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("needs_driver", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("driver_price", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("driver_assigned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default=sa.text("'cod'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("transaction_id", sa.String(100), nullable=True),
        sa.Column("khalti_pidx", sa.String(100), nullable=True),
        sa.Column("payment_conflict", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("start_date < end_date", name="check_booking_window"),
        sa.CheckConstraint("total_amount > 0", name="check_booking_amount_positive"),
        sa.CheckConstraint("driver_price >= 0", name="check_driver_price_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'active', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'initiated', 'completed', 'failed', 'refunded')",
            name="check_booking_payment_status",
        ),
        sa.CheckConstraint("payment_method IN ('cod', 'khalti')", name="check_booking_payment_method"),
        sa.CheckConstraint(
            "(driver_assigned AND driver_id IS NOT NULL) OR (NOT driver_assigned AND driver_id IS NULL)",
            name="check_booking_driver_link",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_car_id", "bookings", ["car_id"])
    op.create_index("ix_bookings_driver_id", "bookings", ["driver_id"])
    # Webhooks and lookups find the booking by payment session id only
    op.create_index("ix_bookings_khalti_pidx", "bookings", ["khalti_pidx"])

    op.create_foreign_key(
        "fk_drivers_current_booking_id",
        "drivers",
        "bookings",
        ["current_booking_id"],
        ["id"],
    )

    # Assignment history, append-only
    op.create_table(
        "driver_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_driver_assignments_id", "driver_assignments", ["id"])
    op.create_index(
        "ix_driver_assignments_driver_booking", "driver_assignments", ["driver_id", "booking_id"]
    )

    # Reviews, one per customer per driver
    op.create_table(
        "driver_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer(), sa.ForeignKey("drivers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("driver_id", "user_id", name="uq_driver_review_user"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="check_review_rating"),
    )
    op.create_index("ix_driver_reviews_id", "driver_reviews", ["id"])
    op.create_index("ix_driver_reviews_driver_id", "driver_reviews", ["driver_id"])


def downgrade() -> None:
    op.drop_table("driver_reviews")
    op.drop_table("driver_assignments")
    op.drop_constraint("fk_drivers_current_booking_id", "drivers", type_="foreignkey")
    op.drop_table("bookings")
    op.drop_table("drivers")
    op.drop_table("cars")
    op.drop_table("users")
