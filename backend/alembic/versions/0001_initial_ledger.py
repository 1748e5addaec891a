"""Initial ledger tables: farmers, payments, deliveries, activity_logs.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── farmers ──────────────────────────────────────────────
    op.create_table(
        "farmers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("cell_number", sa.String(20), nullable=False, unique=True),
        sa.Column("national_id", sa.String(30), nullable=False, unique=True),
        sa.Column("season", sa.String(10), nullable=False),
        sa.Column("weigh_station", sa.String(100), nullable=False),
        sa.Column("farm_lat", sa.Float()),
        sa.Column("farm_lng", sa.Float()),
        sa.Column("farm_address", sa.String(255)),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_farmers_name", "farmers", ["name"])
    op.create_index("ix_farmers_weigh_station", "farmers", ["weigh_station"])

    # ── payments ─────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("payment_ref", sa.String(50), nullable=False),
        sa.Column("farmer_id", sa.String(36), sa.ForeignKey("farmers.id"), nullable=False),
        sa.Column("delivery_ids", sa.JSON()),
        sa.Column("retry_of", sa.String(36)),
        sa.Column("delivery_type", sa.String(20), nullable=False),
        sa.Column("kgs_delivered", sa.Float(), nullable=False),
        sa.Column("price_per_kg", sa.Float(), nullable=False),
        sa.Column("amount_paid", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), server_default="KES"),
        sa.Column("status", sa.String(20), server_default="Completed"),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("recorded_by", sa.String(36), nullable=False),
        sa.Column("retry_reason", sa.Text()),
        sa.Column("void_reason", sa.Text()),
        sa.Column("voided_at", sa.DateTime()),
        sa.Column("voided_by", sa.String(36)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_payments_payment_ref", "payments", ["payment_ref"], unique=True)
    op.create_index("ix_payments_farmer_id", "payments", ["farmer_id"])
    op.create_index("ix_payments_retry_of", "payments", ["retry_of"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_farmer_date", "payments", ["farmer_id", "date"])
    op.create_index("ix_payments_status_date", "payments", ["status", "date"])

    # ── deliveries ───────────────────────────────────────────
    op.create_table(
        "deliveries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("farmer_id", sa.String(36), sa.ForeignKey("farmers.id"), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("kgs_delivered", sa.Float(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("region", sa.String(100), nullable=False),
        sa.Column("driver", sa.String(100), nullable=False),
        sa.Column("payment_id", sa.String(36), sa.ForeignKey("payments.id")),
        sa.Column("recorded_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_deliveries_farmer_id", "deliveries", ["farmer_id"])
    op.create_index("ix_deliveries_type", "deliveries", ["type"])
    op.create_index("ix_deliveries_date", "deliveries", ["date"])
    op.create_index("ix_deliveries_region", "deliveries", ["region"])
    op.create_index("ix_deliveries_payment_id", "deliveries", ["payment_id"])
    op.create_index("ix_deliveries_created_at", "deliveries", ["created_at"])
    op.create_index("ix_deliveries_farmer_date", "deliveries", ["farmer_id", "date"])
    op.create_index("ix_deliveries_farmer_type", "deliveries", ["farmer_id", "type"])

    # ── activity_logs ────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_role", sa.String(20), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("deliveries")
    op.drop_table("payments")
    op.drop_table("farmers")
