"""registry schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── devices ──
    op.create_table(
        "devices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("device_uuid", sa.Uuid(), nullable=False),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column("mac_address", sa.String(64), nullable=True),
        sa.Column("device_type", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="unregistered"),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_devices_device_uuid", "devices", ["device_uuid"], unique=True)

    # ── token_issuances ──
    op.create_table(
        "token_issuances",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("token_id", sa.String(64), nullable=False, unique=True),
        sa.Column("device_id", sa.String(255), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_token_issuances_device_id", "token_issuances", ["device_id"])


def downgrade() -> None:
    op.drop_index("ix_token_issuances_device_id", table_name="token_issuances")
    op.drop_table("token_issuances")
    op.drop_index("ix_devices_device_uuid", table_name="devices")
    op.drop_table("devices")
