"""Create dotation schema

Revision ID: 3a1c9e0d7b21
Revises:
Create Date: 2026-03-02 09:14:05.118402

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3a1c9e0d7b21"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    """Create users, registry, allocation, return, audit and sync tables."""
    op.create_table(
        "app_user",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entra_object_id", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("given_name", sa.String(length=100), nullable=True),
        sa.Column("surname", sa.String(length=100), nullable=True),
        sa.Column("department", sa.String(length=200), nullable=True),
        sa.Column("job_title", sa.String(length=200), nullable=True),
        sa.Column("office_location", sa.String(length=200), nullable=True),
        sa.Column("role_name", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "role_name IN ('admin', 'it', 'rh', 'viewer')",
            name="CK_app_user_role_name",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entra_object_id"),
    )
    op.create_index("ix_app_user_email", "app_user", ["email"], unique=True)

    op.create_table(
        "equipment",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("external_asset_id", sa.String(length=100), nullable=True),
        sa.Column("internal_id", sa.String(length=100), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("brand", sa.String(length=100), nullable=False),
        sa.Column("model", sa.String(length=200), nullable=False),
        sa.Column("imei", sa.String(length=50), nullable=True),
        sa.Column("phone_line", sa.String(length=50), nullable=True),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("assigned_user_id", sa.Integer(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(status = 'assigned' AND assigned_user_id IS NOT NULL) "
            "OR (status <> 'assigned' AND assigned_user_id IS NULL)",
            name="CK_equipment_assignment",
        ),
        sa.CheckConstraint(
            "type IN ('laptop', 'desktop', 'mobile', 'ip_phone', "
            "'monitor', 'tablet', 'other')",
            name="CK_equipment_type",
        ),
        sa.CheckConstraint(
            "status IN ('available', 'assigned', 'in_repair', "
            "'returned', 'lost', 'destroyed')",
            name="CK_equipment_status",
        ),
        sa.ForeignKeyConstraint(["assigned_user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_equipment_serial_number", "equipment", ["serial_number"], unique=True)
    op.create_index(
        "ix_equipment_external_asset_id", "equipment", ["external_asset_id"], unique=True
    )
    op.create_index("ix_equipment_status", "equipment", ["status"])
    op.create_index("ix_equipment_assigned_user_id", "equipment", ["assigned_user_id"])

    op.create_table(
        "allocation",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_name", sa.String(length=200), nullable=False),
        sa.Column("user_email", sa.String(length=200), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("accessories", sa.JSON(), nullable=False),
        sa.Column("standard_software", sa.JSON(), nullable=False),
        sa.Column("additional_software", sa.JSON(), nullable=False),
        sa.Column("services", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("signer_name", sa.String(length=200), nullable=True),
        sa.Column("signature_image", sa.Text(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('in_progress', 'completed', 'overdue', 'cancelled')",
            name="CK_allocation_status",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_allocation_user_id", "allocation", ["user_id"])
    op.create_index("ix_allocation_status", "allocation", ["status"])

    op.create_table(
        "allocation_item",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("allocation_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("equipment_id", sa.Integer(), nullable=False),
        sa.Column("internal_id", sa.String(length=100), nullable=True),
        sa.Column("equipment_type", sa.String(length=20), nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("delivered_at", sa.Date(), nullable=False),
        sa.Column("condition", sa.String(length=20), nullable=False),
        sa.CheckConstraint(
            "condition IN ('new', 'good', 'normal_wear')",
            name="CK_allocation_item_condition",
        ),
        sa.ForeignKeyConstraint(["allocation_id"], ["allocation.id"]),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "allocation_id", "equipment_id", name="UQ_allocation_item_allocation_equipment"
        ),
    )
    op.create_index("ix_allocation_item_allocation_id", "allocation_item", ["allocation_id"])
    op.create_index("ix_allocation_item_equipment_id", "allocation_item", ["equipment_id"])

    op.create_table(
        "equipment_return",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("allocation_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("user_name", sa.String(length=200), nullable=False),
        sa.Column("return_date", sa.Date(), nullable=False),
        sa.Column("removed_software", sa.JSON(), nullable=False),
        sa.Column("employee_signer_name", sa.String(length=200), nullable=True),
        sa.Column("employee_signature", sa.Text(), nullable=True),
        sa.Column("employee_signed_at", sa.DateTime(), nullable=True),
        sa.Column("it_signer_name", sa.String(length=200), nullable=True),
        sa.Column("it_signature", sa.Text(), nullable=True),
        sa.Column("it_signed_at", sa.DateTime(), nullable=True),
        sa.Column("rh_signer_name", sa.String(length=200), nullable=True),
        sa.Column("rh_signature", sa.Text(), nullable=True),
        sa.Column("rh_signed_at", sa.DateTime(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("validated_by", sa.Integer(), nullable=True),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        sa.Column("full_settlement", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["allocation_id"], ["allocation.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["validated_by"], ["app_user.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_equipment_return_allocation_id", "equipment_return", ["allocation_id"])
    op.create_index("ix_equipment_return_user_id", "equipment_return", ["user_id"])

    op.create_table(
        "returned_item",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("return_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("equipment_id", sa.Integer(), nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("internal_id", sa.String(length=100), nullable=True),
        sa.Column("returned_at", sa.Date(), nullable=False),
        sa.Column("condition", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("photos", sa.JSON(), nullable=False),
        sa.CheckConstraint(
            "condition IN ('good', 'degraded', 'damaged', 'missing', 'destroyed')",
            name="CK_returned_item_condition",
        ),
        sa.ForeignKeyConstraint(["return_id"], ["equipment_return.id"]),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_returned_item_return_id", "returned_item", ["return_id"])
    op.create_index("ix_returned_item_equipment_id", "returned_item", ["equipment_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("previous_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "asset_sync_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("triggered_by", sa.Integer(), nullable=True),
        sa.Column("query", sa.String(length=500), nullable=True),
        sa.Column("attribute_mapping", sa.JSON(), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("records_created", sa.Integer(), nullable=False),
        sa.Column("records_updated", sa.Integer(), nullable=False),
        sa.Column("records_skipped", sa.Integer(), nullable=False),
        sa.Column("records_errors", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["triggered_by"], ["app_user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "pending_sync",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("equipment_id", sa.Integer(), nullable=False),
        sa.Column("serial_number", sa.String(length=100), nullable=False),
        sa.Column("external_asset_id", sa.String(length=100), nullable=True),
        sa.Column("operation", sa.String(length=50), nullable=False),
        sa.Column("attribute_ids", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["equipment_id"], ["equipment.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pending_sync_equipment_id", "pending_sync", ["equipment_id"])
    op.create_index("ix_pending_sync_resolved_at", "pending_sync", ["resolved_at"])


def downgrade():
    """Drop every table created in upgrade(), children first."""
    op.drop_table("pending_sync")
    op.drop_table("asset_sync_log")
    op.drop_table("audit_log")
    op.drop_table("returned_item")
    op.drop_table("equipment_return")
    op.drop_table("allocation_item")
    op.drop_table("allocation")
    op.drop_table("equipment")
    op.drop_table("app_user")
