"""Create tenants, users, audit trail and inventory ledger tables.

Revision ID: a1f3c9d2e7b4
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "a1f3c9d2e7b4"
down_revision = None
branch_labels = None
depends_on = None

ACCOUNT_ROLES = (
    "SUPER_ADMIN",
    "BRAND_ADMIN",
    "BRAND_STAFF",
    "SERVICE_CENTER",
    "DISTRIBUTOR",
    "VIEW_ONLY",
)
LEDGER_ACTIONS = ("ADD", "TRANSFER_IN", "TRANSFER_OUT", "REVERSE_IN", "REVERSE_OUT", "CONSUMED")


def _table_exists(table_name: str) -> bool:
    return bool(inspect(op.get_bind()).has_table(table_name))


def upgrade() -> None:
    if not _table_exists("tenants"):
        op.create_table(
            "tenants",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("contact_email", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_tenants_code", "tenants", ["code"], unique=True)
        op.create_index("ix_tenants_is_active", "tenants", ["is_active"])

    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=False),
            sa.Column("role", sa.Enum(*ACCOUNT_ROLES, name="account_role_enum"), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        )
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("ix_users_role", "users", ["role"])
        op.create_index("ix_users_is_active", "users", ["is_active"])
        op.create_index("ix_users_is_superuser", "users", ["is_superuser"])
        op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("entity_type", sa.String(length=64), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=False),
            sa.Column("action", sa.String(length=64), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
        op.create_index("ix_audit_events_id", "audit_events", ["id"])
        op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"])
        op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
        op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
        op.create_index("ix_audit_events_action", "audit_events", ["action"])
        op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
        op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
        op.create_index("ix_audit_events_tenant_entity", "audit_events", ["tenant_id", "entity_type", "entity_id"])
        op.create_index(
            "ix_audit_events_tenant_time_desc",
            "audit_events",
            ["tenant_id", sa.text("occurred_at DESC")],
        )

    if not _table_exists("inventory_parts"):
        op.create_table(
            "inventory_parts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("part_number", sa.String(length=64), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("category", sa.String(length=64), nullable=True),
            sa.Column("cost_price", sa.Float(), nullable=True),
            sa.Column("price", sa.Float(), nullable=True),
            sa.Column("min_stock_level", sa.Integer(), nullable=True),
            sa.Column("max_stock_level", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("tenant_id", "code", name="uq_inventory_part_code"),
        )
        op.create_index("ix_inventory_parts_id", "inventory_parts", ["id"])
        op.create_index("ix_inventory_parts_tenant_id", "inventory_parts", ["tenant_id"])
        op.create_index("ix_inventory_parts_code", "inventory_parts", ["code"])
        op.create_index("ix_inventory_parts_part_number", "inventory_parts", ["part_number"])
        op.create_index("ix_inventory_parts_tenant_part_number", "inventory_parts", ["tenant_id", "part_number"])

    if not _table_exists("inventory_ledger_entries"):
        op.create_table(
            "inventory_ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("inventory_parts.id", ondelete="CASCADE"), nullable=False),
            sa.Column("part_number", sa.String(length=64), nullable=True),
            sa.Column(
                "action_type",
                sa.Enum(*LEDGER_ACTIONS, name="ledger_action_type_enum", native_enum=False),
                nullable=False,
            ),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("source", sa.String(length=64), nullable=False),
            sa.Column("destination", sa.String(length=64), nullable=False),
            sa.Column("unit_cost", sa.Float(), nullable=True),
            sa.Column("total_value", sa.Float(), nullable=True),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("reference_id", sa.String(length=64), nullable=True),
            sa.Column("reference_note", sa.Text(), nullable=True),
            sa.Column("created_by_user_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("quantity > 0", name="ck_inventory_ledger_quantity_positive"),
            sa.CheckConstraint("balance_after >= 0", name="ck_inventory_ledger_balance_after_non_negative"),
        )
        for column in ("id", "tenant_id", "part_id", "action_type", "source", "destination", "reference_id"):
            op.create_index(f"ix_inventory_ledger_entries_{column}", "inventory_ledger_entries", [column])
        op.create_index(
            "ix_inventory_ledger_tenant_part_created",
            "inventory_ledger_entries",
            ["tenant_id", "part_id", "created_at"],
        )
        op.create_index("ix_inventory_ledger_tenant_created", "inventory_ledger_entries", ["tenant_id", "created_at"])

    if not _table_exists("inventory_balances"):
        op.create_table(
            "inventory_balances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("part_id", sa.Integer(), sa.ForeignKey("inventory_parts.id", ondelete="CASCADE"), nullable=False),
            sa.Column("on_hand_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("available_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("defective_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("quarantine_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_restocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_issued_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_cost", sa.Float(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.UniqueConstraint("tenant_id", "part_id", name="uq_inventory_balance_tenant_part"),
            sa.CheckConstraint("on_hand_quantity >= 0", name="ck_inventory_balance_on_hand_non_negative"),
        )
        op.create_index("ix_inventory_balances_id", "inventory_balances", ["id"])
        op.create_index("ix_inventory_balances_tenant_id", "inventory_balances", ["tenant_id"])
        op.create_index("ix_inventory_balances_part_id", "inventory_balances", ["part_id"])


def downgrade() -> None:
    for table_name in (
        "inventory_balances",
        "inventory_ledger_entries",
        "inventory_parts",
        "audit_events",
        "users",
        "tenants",
    ):
        if _table_exists(table_name):
            op.drop_table(table_name)
    sa.Enum(name="account_role_enum").drop(op.get_bind(), checkfirst=True)
