"""Initial schema: zones, slots, reservations with live-hold constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_PREDICATE = sa.text("status IN ('pending', 'active')")


def upgrade() -> None:
    # Zones table
    op.create_table(
        "zones",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("boundary", sa.JSON(), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("name", name="uq_zones_name"),
        sa.CheckConstraint("capacity >= 1", name="check_zone_capacity_positive"),
    )
    op.create_index("ix_zones_id", "zones", ["id"])

    # Slots table
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id"), nullable=False),
        sa.Column("slot_id", sa.String(64), nullable=False),
        sa.Column("tag", sa.String(64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("geometry", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("zone_id", "slot_id", name="uq_slot_zone_slot_id"),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    op.create_index("ix_slots_zone_id", "slots", ["zone_id"])

    # Reservations table
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("zone_id", sa.Integer(), sa.ForeignKey("zones.id"), nullable=False),
        sa.Column("slot_id", sa.String(64), nullable=True),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("window_start < window_end", name="check_reservation_window"),
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'cancelled', 'expired', 'completed')",
            name="check_reservation_status",
        ),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_user_id", "reservations", ["user_id"])
    # ONE LIVE HOLD PER USER PER ZONE: a partial unique index, so terminal
    # history rows never collide while two live rows can never coexist.
    op.create_index(
        "uq_reservations_user_zone_live",
        "reservations",
        ["user_id", "zone_id"],
        unique=True,
        postgresql_where=LIVE_PREDICATE,
        sqlite_where=LIVE_PREDICATE,
    )
    # Ledger: live holds of one zone
    op.create_index("ix_reservations_zone_status", "reservations", ["zone_id", "status"])
    # Sweeper: live holds by end of window
    op.create_index("ix_reservations_status_window_end", "reservations", ["status", "window_end"])


def downgrade() -> None:
    op.drop_table("reservations")
    op.drop_table("slots")
    op.drop_table("zones")
