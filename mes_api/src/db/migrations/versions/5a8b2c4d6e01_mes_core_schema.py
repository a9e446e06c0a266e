"""MES core schema: master data, production orders, scheduling and material consumption.

Adds tenant-scoped tables with UUID PKs, timestamps, indexes, and RLS policies:
- Master data: work_centers, equipment_assets, parts, stock_locations
- Production: production_orders, production_steps, production_bom_items,
  production_time_logs, material_move_requests
- Scheduling: operation_runs
- Inventory: part_inventory, serialized_parts, material_consumption
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5a8b2c4d6e01"
down_revision: Union[str, None] = "3c1d9e2f7a10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TENANT_DEFAULT = sa.text("current_setting('app.tenant_id', true)::uuid")
UUID_DEFAULT = sa.text("uuid_generate_v4()")
NOW = sa.text("now()")

TABLES = [
    "work_centers",
    "equipment_assets",
    "parts",
    "stock_locations",
    "production_orders",
    "production_steps",
    "production_bom_items",
    "production_time_logs",
    "material_move_requests",
    "operation_runs",
    "part_inventory",
    "serialized_parts",
    "material_consumption",
]


def _enable_rls_with_policy(table: str) -> None:
    op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
    op.execute(
        f"""
        CREATE POLICY {table}_tenant_isolation ON {table}
        USING (tenant_id = current_setting('app.tenant_id', true)::uuid)
        WITH CHECK (tenant_id = current_setting('app.tenant_id', true)::uuid);
        """
    )


def _base_columns() -> list:
    return [
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("tenant_id", sa.UUID(), nullable=False, server_default=TENANT_DEFAULT),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def _tenant_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE")


def upgrade() -> None:
    # MASTER DATA
    op.create_table(
        "work_centers",
        *_base_columns(),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("center_type", sa.Text(), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("capacity_per_hour", sa.Numeric(18, 6), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("default_technician_id", sa.UUID(), nullable=True),
        sa.Column("location_notes", sa.Text(), nullable=True),
        sa.Column("ideal_cycle_time_seconds", sa.Numeric(18, 6), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["default_technician_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_work_centers_tenant_code"),
        sa.CheckConstraint(
            "center_type IN ('fabrication','assembly','testing','finishing','packaging','general')",
            name="ck_work_centers_center_type",
        ),
        sa.CheckConstraint(
            "ideal_cycle_time_seconds IS NULL OR ideal_cycle_time_seconds > 0",
            name="ck_work_centers_ideal_cycle_time",
        ),
    )

    op.create_table(
        "equipment_assets",
        *_base_columns(),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("asset_code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("manufacturer", sa.Text(), nullable=True),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("serial_number", sa.Text(), nullable=True),
        sa.Column("ideal_cycle_time_seconds", sa.Numeric(18, 6), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "asset_code", name="uq_equipment_assets_tenant_asset_code"),
        sa.CheckConstraint(
            "ideal_cycle_time_seconds IS NULL OR ideal_cycle_time_seconds > 0",
            name="ck_equipment_assets_ideal_cycle_time",
        ),
        sa.Index("ix_equipment_assets_work_center", "tenant_id", "work_center_id"),
    )

    op.create_table(
        "parts",
        *_base_columns(),
        sa.Column("part_number", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("uom", sa.Text(), nullable=False, server_default="ea"),
        sa.Column("unit_cost", sa.Numeric(18, 6), nullable=True),
        sa.Column("is_serialized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "part_number", name="uq_parts_tenant_part_number"),
    )

    op.create_table(
        "stock_locations",
        *_base_columns(),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("location_type", sa.Text(), nullable=False, server_default="warehouse"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_stock_locations_tenant_code"),
    )

    # PRODUCTION
    op.create_table(
        "production_orders",
        *_base_columns(),
        sa.Column("order_number", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("ticket_id", sa.UUID(), nullable=True),
        sa.Column("project_id", sa.UUID(), nullable=True),
        sa.Column("customer_id", sa.UUID(), nullable=True),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quantity_ordered", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("quantity_completed", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("assigned_to", sa.UUID(), nullable=True),
        sa.Column("hold_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "order_number", name="uq_production_orders_tenant_order_number"),
        sa.CheckConstraint("status IN ('queued','in_progress','hold','complete')", name="ck_production_orders_status"),
        sa.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_production_orders_priority"),
        sa.Index("ix_production_orders_status_priority", "tenant_id", "status", "priority"),
    )

    op.create_table(
        "production_steps",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("estimated_minutes", sa.Integer(), nullable=True),
        sa.Column("actual_minutes", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["completed_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "production_order_id", "step_number", name="uq_production_steps_order_step"),
        sa.CheckConstraint("status IN ('pending','in_progress','complete','skipped')", name="ck_production_steps_status"),
    )

    op.create_table(
        "production_bom_items",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=False),
        sa.Column("part_id", sa.UUID(), nullable=False),
        sa.Column("quantity_required", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("quantity_allocated", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("quantity_consumed", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("source_location_id", sa.UUID(), nullable=True),
        sa.Column("unit_cost", sa.Numeric(18, 6), nullable=True),
        sa.Column("is_allocated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_consumed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["source_location_id"], ["stock_locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "production_order_id", "part_id", name="uq_production_bom_items_order_part"),
    )

    op.create_table(
        "production_time_logs",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=False),
        sa.Column("production_step_id", sa.UUID(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("technician_id", sa.UUID(), nullable=False),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "duration_minutes",
            sa.Numeric(18, 2),
            sa.Computed("EXTRACT(EPOCH FROM (clock_out - clock_in)) / 60", persisted=True),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["production_step_id"], ["production_steps.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["technician_id"], ["users.id"], ondelete="CASCADE"),
        sa.Index("ix_production_time_logs_open", "tenant_id", "technician_id", "clock_out"),
    )

    op.create_table(
        "material_move_requests",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=True),
        sa.Column("from_location_id", sa.UUID(), nullable=True),
        sa.Column("to_work_center_id", sa.UUID(), nullable=True),
        sa.Column("to_location_id", sa.UUID(), nullable=True),
        sa.Column("part_id", sa.UUID(), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("status", sa.Text(), nullable=False, server_default="requested"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("requested_by", sa.UUID(), nullable=True),
        sa.Column("assigned_to", sa.UUID(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["from_location_id"], ["stock_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["to_work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["to_location_id"], ["stock_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="SET NULL"),
        sa.CheckConstraint("status IN ('requested','in_transit','delivered','cancelled')", name="ck_material_move_requests_status"),
        sa.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_material_move_requests_priority"),
    )

    # SCHEDULING
    op.create_table(
        "operation_runs",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=False),
        sa.Column("production_step_id", sa.UUID(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=False),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="NOT_STARTED"),
        sa.Column("scheduled_start_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_end_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=True),
        sa.Column("started_by", sa.UUID(), nullable=True),
        sa.Column("completed_by", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["production_step_id"], ["production_steps.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["equipment_asset_id"], ["equipment_assets.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('NOT_STARTED','RUNNING','PAUSED','COMPLETED')", name="ck_operation_runs_status"
        ),
        sa.Index("ix_operation_runs_wc_start", "tenant_id", "work_center_id", "scheduled_start_ts"),
    )

    # INVENTORY
    op.create_table(
        "part_inventory",
        *_base_columns(),
        sa.Column("part_id", sa.UUID(), nullable=False),
        sa.Column("stock_location_id", sa.UUID(), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 6), nullable=False, server_default="0"),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stock_location_id"], ["stock_locations.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "part_id", "stock_location_id", name="uq_part_inventory_part_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_part_inventory_non_negative"),
    )

    op.create_table(
        "serialized_parts",
        *_base_columns(),
        sa.Column("part_id", sa.UUID(), nullable=False),
        sa.Column("serial_number", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="in_stock"),
        sa.Column("current_location_id", sa.UUID(), nullable=True),
        sa.Column("lot_number", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["current_location_id"], ["stock_locations.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "part_id", "serial_number", name="uq_serialized_parts_part_serial"),
        sa.CheckConstraint("status IN ('in_stock','consumed','scrapped')", name="ck_serialized_parts_status"),
    )

    op.create_table(
        "material_consumption",
        *_base_columns(),
        sa.Column("production_order_id", sa.UUID(), nullable=False),
        sa.Column("production_step_id", sa.UUID(), nullable=True),
        sa.Column("operation_run_id", sa.UUID(), nullable=True),
        sa.Column("part_id", sa.UUID(), nullable=False),
        sa.Column("bom_item_id", sa.UUID(), nullable=True),
        sa.Column("source_location_id", sa.UUID(), nullable=True),
        sa.Column("qty", sa.Numeric(18, 6), nullable=False),
        sa.Column("unit_cost", sa.Numeric(18, 6), nullable=True),
        sa.Column("method", sa.Text(), nullable=False, server_default="manual"),
        sa.Column("is_reversal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reversal_of_id", sa.UUID(), nullable=True),
        sa.Column("reversal_reason", sa.Text(), nullable=True),
        sa.Column("serialized_part_id", sa.UUID(), nullable=True),
        sa.Column("lot_number", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.Text(), nullable=True),
        sa.Column("consumed_by", sa.UUID(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["bom_item_id"], ["production_bom_items.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["source_location_id"], ["stock_locations.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["material_consumption.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["serialized_part_id"], ["serialized_parts.id"], ondelete="SET NULL"),
        sa.CheckConstraint("method IN ('scan','manual','backflush')", name="ck_material_consumption_method"),
        sa.Index("ix_material_consumption_order", "tenant_id", "production_order_id", "consumed_at"),
    )
    op.create_index(
        "uq_material_consumption_idempotency_key",
        "material_consumption",
        ["tenant_id", "idempotency_key"],
        unique=True,
        postgresql_where=sa.text("idempotency_key IS NOT NULL"),
    )

    for tbl in TABLES:
        _enable_rls_with_policy(tbl)


def downgrade() -> None:
    for tbl in TABLES:
        op.execute(f"DROP POLICY IF EXISTS {tbl}_tenant_isolation ON {tbl};")
        op.execute(f"ALTER TABLE {tbl} DISABLE ROW LEVEL SECURITY;")

    op.drop_index("uq_material_consumption_idempotency_key", table_name="material_consumption")
    for tbl in reversed(TABLES):
        op.drop_table(tbl)
