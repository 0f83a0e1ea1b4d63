"""create clinics, users and medication ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _create_index(inspector: sa.Inspector, name: str, table: str, columns: list, **kwargs) -> None:
    if not _index_exists(inspector, table, name):
        op.create_index(name, table, columns, **kwargs)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
            sa.UniqueConstraint("username"),
        )

    if not _table_exists(inspector, "clinics"):
        op.create_table(
            "clinics",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("owner_user_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "clinic_memberships"):
        op.create_table(
            "clinic_memberships",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("clinic_id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("role", sa.String(length=20), server_default="owner", nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "medications"):
        op.create_table(
            "medications",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("clinic_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("generic_name", sa.String(length=255), nullable=True),
            sa.Column("brand_name", sa.String(length=255), nullable=True),
            sa.Column("manufacturer", sa.String(length=255), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=False),
            sa.Column("form", sa.String(length=30), nullable=False),
            sa.Column("strength", sa.String(length=50), nullable=False),
            sa.Column("unit", sa.String(length=20), nullable=False),
            sa.Column("sku", sa.String(length=100), nullable=True),
            sa.Column("barcode", sa.String(length=100), nullable=True),
            sa.Column("requires_prescription", sa.Boolean(), nullable=False),
            sa.Column("is_controlled", sa.Boolean(), nullable=False),
            sa.Column("controlled_class", sa.String(length=20), nullable=True),
            sa.Column("current_stock", sa.Integer(), server_default="0", nullable=False),
            sa.Column("reorder_level", sa.Integer(), server_default="10", nullable=False),
            sa.Column("reorder_quantity", sa.Integer(), server_default="50", nullable=False),
            sa.Column("max_stock_level", sa.Integer(), nullable=True),
            sa.Column("cost_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("selling_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), server_default="USD", nullable=False),
            sa.Column("storage_location", sa.String(length=100), nullable=True),
            sa.Column("storage_conditions", sa.String(length=255), nullable=True),
            sa.Column("requires_refrigeration", sa.Boolean(), nullable=False),
            sa.Column("dosage_instructions", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("has_low_stock", sa.Boolean(), nullable=True),
            sa.Column("has_expiring_soon", sa.Boolean(), nullable=True),
            sa.Column("has_expired", sa.Boolean(), nullable=True),
            sa.Column("created_by_user_id", sa.String(length=36), nullable=False),
            sa.Column("last_updated_by_user_id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
            sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["last_updated_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "medication_batches"):
        op.create_table(
            "medication_batches",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("medication_id", sa.String(length=36), nullable=False),
            sa.Column("batch_number", sa.String(length=100), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("supplier", sa.String(length=255), nullable=True),
            sa.Column("cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["medication_id"], ["medications.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "stock_adjustments"):
        op.create_table(
            "stock_adjustments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("clinic_id", sa.String(length=36), nullable=False),
            sa.Column("medication_id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("adjustment_type", sa.String(length=20), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("qty_delta", sa.Integer(), nullable=False),
            sa.Column("stock_after", sa.Integer(), nullable=False),
            sa.Column("batch_number", sa.String(length=100), nullable=True),
            sa.Column("allocations_json", sa.JSON(), nullable=True),
            sa.Column("reason", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("performed_by_user_id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
            sa.ForeignKeyConstraint(["medication_id"], ["medications.id"]),
            sa.ForeignKeyConstraint(["performed_by_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("clinic_id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.ForeignKeyConstraint(["clinic_id"], ["clinics.id"]),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    _create_index(inspector, "ix_users_email", "users", ["email"], unique=False)
    _create_index(inspector, "ix_users_username", "users", ["username"], unique=False)
    _create_index(inspector, "ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
    _create_index(inspector, "ux_users_username_lower", "users", [sa.text("lower(username)")], unique=True)
    _create_index(inspector, "ix_clinics_owner_user_id", "clinics", ["owner_user_id"])
    _create_index(inspector, "ix_clinic_memberships_clinic_id", "clinic_memberships", ["clinic_id"])
    _create_index(inspector, "ix_clinic_memberships_user_id", "clinic_memberships", ["user_id"])
    _create_index(
        inspector,
        "ux_clinic_memberships_clinic_user",
        "clinic_memberships",
        ["clinic_id", "user_id"],
        unique=True,
    )
    _create_index(
        inspector,
        "ix_clinic_memberships_user_active_created_at",
        "clinic_memberships",
        ["user_id", "is_active", "created_at"],
    )
    _create_index(inspector, "ix_medications_clinic_id", "medications", ["clinic_id"])
    _create_index(inspector, "ix_medications_barcode", "medications", ["barcode"])
    _create_index(inspector, "ix_medications_is_active", "medications", ["is_active"])
    _create_index(inspector, "ix_medications_clinic_name", "medications", ["clinic_id", "name"])
    _create_index(inspector, "ix_medications_clinic_active", "medications", ["clinic_id", "is_active"])
    _create_index(inspector, "ix_medications_clinic_low_stock", "medications", ["clinic_id", "has_low_stock"])
    _create_index(
        inspector,
        "ix_medications_clinic_expiring_soon",
        "medications",
        ["clinic_id", "has_expiring_soon"],
    )
    _create_index(
        inspector,
        "ux_medications_clinic_sku_lower",
        "medications",
        ["clinic_id", sa.text("lower(sku)")],
        unique=True,
        postgresql_where=sa.text("sku IS NOT NULL"),
        sqlite_where=sa.text("sku IS NOT NULL"),
    )
    _create_index(inspector, "ix_medication_batches_medication_id", "medication_batches", ["medication_id"])
    _create_index(
        inspector,
        "ux_medication_batches_medication_batch_number",
        "medication_batches",
        ["medication_id", "batch_number"],
        unique=True,
    )
    _create_index(
        inspector,
        "ix_medication_batches_medication_expiry",
        "medication_batches",
        ["medication_id", "expiry_date"],
    )
    _create_index(inspector, "ix_stock_adjustments_clinic_id", "stock_adjustments", ["clinic_id"])
    _create_index(inspector, "ix_stock_adjustments_medication_id", "stock_adjustments", ["medication_id"])
    _create_index(
        inspector,
        "ux_stock_adjustments_medication_sequence",
        "stock_adjustments",
        ["medication_id", "sequence"],
        unique=True,
    )
    _create_index(
        inspector,
        "ix_stock_adjustments_clinic_created_at",
        "stock_adjustments",
        ["clinic_id", "created_at"],
    )
    _create_index(inspector, "ix_audit_logs_clinic_id", "audit_logs", ["clinic_id"])
    _create_index(inspector, "ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    _create_index(inspector, "ix_audit_logs_target_id", "audit_logs", ["target_id"])
    _create_index(inspector, "ix_audit_logs_clinic_created_at", "audit_logs", ["clinic_id", "created_at"])
    _create_index(
        inspector,
        "ix_audit_logs_clinic_action_created_at",
        "audit_logs",
        ["clinic_id", "action", "created_at"],
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "audit_logs",
        "stock_adjustments",
        "medication_batches",
        "medications",
        "clinic_memberships",
        "clinics",
        "users",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
