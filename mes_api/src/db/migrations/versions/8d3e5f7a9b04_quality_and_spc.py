"""Quality execution and SPC schema.

- sampling_plans, inspection_plans, inspection_characteristics
- inspection_runs, inspection_measurements, inspection_measurement_revisions
- defect_codes, nonconformances, nc_defects, nc_dispositions, capas
- spc_subgroups, spc_points, spc_rule_violations
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "8d3e5f7a9b04"
down_revision: Union[str, None] = "7e2f4a6b8c03"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TENANT_DEFAULT = sa.text("current_setting('app.tenant_id', true)::uuid")
UUID_DEFAULT = sa.text("uuid_generate_v4()")
NOW = sa.text("now()")
JSONB_EMPTY = sa.text("'{}'::jsonb")

TABLES = [
    "sampling_plans",
    "inspection_plans",
    "inspection_characteristics",
    "inspection_runs",
    "inspection_measurements",
    "inspection_measurement_revisions",
    "defect_codes",
    "nonconformances",
    "nc_defects",
    "nc_dispositions",
    "capas",
    "spc_subgroups",
    "spc_points",
    "spc_rule_violations",
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
    # INSPECTION PLANNING
    op.create_table(
        "sampling_plans",
        *_base_columns(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("method", sa.Text(), nullable=False, server_default="100_PERCENT"),
        sa.Column("sample_size", sa.Integer(), nullable=True),
        sa.Column("frequency_n", sa.Integer(), nullable=True),
        sa.Column("aql_level", sa.Numeric(8, 3), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.CheckConstraint(
            "method IN ('100_PERCENT','EVERY_N','PER_LOT','AQL')", name="ck_sampling_plans_method"
        ),
    )

    op.create_table(
        "inspection_plans",
        *_base_columns(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("plan_type", sa.Text(), nullable=False, server_default="IN_PROCESS"),
        sa.Column("applies_to", sa.Text(), nullable=False, server_default="OPERATION"),
        sa.Column("product_id", sa.UUID(), nullable=True),
        sa.Column("production_step_id", sa.UUID(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=True),
        sa.Column("part_id", sa.UUID(), nullable=True),
        sa.Column("revision", sa.Text(), nullable=False, server_default="1.0"),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sampling_plan_id", sa.UUID(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["equipment_asset_id"], ["equipment_assets.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["sampling_plan_id"], ["sampling_plans.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "plan_type IN ('INCOMING','IN_PROCESS','FINAL','AUDIT')", name="ck_inspection_plans_plan_type"
        ),
        sa.CheckConstraint(
            "applies_to IN ('PRODUCT','OPERATION','WORK_CENTER','ASSET','VENDOR_PART')",
            name="ck_inspection_plans_applies_to",
        ),
    )

    op.create_table(
        "inspection_characteristics",
        *_base_columns(),
        sa.Column("inspection_plan_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("char_type", sa.Text(), nullable=False, server_default="VARIABLE"),
        sa.Column("uom", sa.Text(), nullable=True),
        sa.Column("target_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("lsl", sa.Numeric(18, 6), nullable=True),
        sa.Column("usl", sa.Numeric(18, 6), nullable=True),
        sa.Column("data_capture", sa.Text(), nullable=False, server_default="numeric"),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["inspection_plan_id"], ["inspection_plans.id"], ondelete="CASCADE"),
        sa.CheckConstraint("char_type IN ('VARIABLE','ATTRIBUTE')", name="ck_inspection_characteristics_char_type"),
        sa.CheckConstraint(
            "data_capture IN ('numeric','pass_fail','count','text','photo')",
            name="ck_inspection_characteristics_data_capture",
        ),
        sa.CheckConstraint("lsl IS NULL OR usl IS NULL OR lsl <= usl", name="ck_inspection_characteristics_limits"),
    )

    # INSPECTION EXECUTION
    op.create_table(
        "inspection_runs",
        *_base_columns(),
        sa.Column("inspection_plan_id", sa.UUID(), nullable=False),
        sa.Column("production_order_id", sa.UUID(), nullable=True),
        sa.Column("operation_run_id", sa.UUID(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=True),
        sa.Column("lot_id", sa.Text(), nullable=True),
        sa.Column("serial_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("inspector_id", sa.UUID(), nullable=True),
        sa.Column("total_characteristics", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("passed_characteristics", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_characteristics", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["inspection_plan_id"], ["inspection_plans.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["operation_run_id"], ["operation_runs.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('PENDING','IN_PROGRESS','PASSED','FAILED','WAIVED')", name="ck_inspection_runs_status"
        ),
        sa.Index("ix_inspection_runs_status", "tenant_id", "status", "created_at"),
    )

    op.create_table(
        "inspection_measurements",
        *_base_columns(),
        sa.Column("inspection_run_id", sa.UUID(), nullable=False),
        sa.Column("characteristic_id", sa.UUID(), nullable=False),
        sa.Column("measured_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("pass_fail", sa.Boolean(), nullable=True),
        sa.Column("defect_count", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("attachment_url", sa.Text(), nullable=True),
        sa.Column("is_within_spec", sa.Boolean(), nullable=True),
        sa.Column("revision_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("recorded_by", sa.UUID(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("revised_by", sa.UUID(), nullable=True),
        sa.Column("revised_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision_reason", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["inspection_run_id"], ["inspection_runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["characteristic_id"], ["inspection_characteristics.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "tenant_id", "inspection_run_id", "characteristic_id", name="uq_inspection_measurements_run_char"
        ),
    )

    op.create_table(
        "inspection_measurement_revisions",
        *_base_columns(),
        sa.Column("measurement_id", sa.UUID(), nullable=False),
        sa.Column("revision_number", sa.Integer(), nullable=False),
        sa.Column("before_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("after_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("before_pass_fail", sa.Boolean(), nullable=True),
        sa.Column("after_pass_fail", sa.Boolean(), nullable=True),
        sa.Column("before_defect_count", sa.Integer(), nullable=True),
        sa.Column("after_defect_count", sa.Integer(), nullable=True),
        sa.Column("before_is_within_spec", sa.Boolean(), nullable=True),
        sa.Column("after_is_within_spec", sa.Boolean(), nullable=True),
        sa.Column("changed_by", sa.UUID(), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=False),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["measurement_id"], ["inspection_measurements.id"], ondelete="CASCADE"),
    )

    # NONCONFORMANCE / CAPA
    op.create_table(
        "defect_codes",
        *_base_columns(),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("severity_default", sa.Text(), nullable=False, server_default="MINOR"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_defect_codes_tenant_code"),
        sa.CheckConstraint(
            "severity_default IN ('MINOR','MAJOR','CRITICAL')", name="ck_defect_codes_severity_default"
        ),
    )

    op.create_table(
        "nonconformances",
        *_base_columns(),
        sa.Column("nc_number", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False, server_default="OPERATOR_REPORTED"),
        sa.Column("inspection_run_id", sa.UUID(), nullable=True),
        sa.Column("production_order_id", sa.UUID(), nullable=True),
        sa.Column("operation_run_id", sa.UUID(), nullable=True),
        sa.Column("lot_id", sa.Text(), nullable=True),
        sa.Column("serial_id", sa.Text(), nullable=True),
        sa.Column("part_id", sa.UUID(), nullable=True),
        sa.Column("product_id", sa.UUID(), nullable=True),
        sa.Column("severity", sa.Text(), nullable=False, server_default="MINOR"),
        sa.Column("status", sa.Text(), nullable=False, server_default="OPEN"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("qty_affected", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("reported_by", sa.UUID(), nullable=True),
        sa.Column("assigned_to", sa.UUID(), nullable=True),
        sa.Column("reported_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["inspection_run_id"], ["inspection_runs.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["part_id"], ["parts.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "nc_number", name="uq_nonconformances_tenant_nc_number"),
        sa.CheckConstraint(
            "source IN ('INSPECTION','OPERATOR_REPORTED','CUSTOMER_RETURN','AUDIT')", name="ck_nonconformances_source"
        ),
        sa.CheckConstraint("severity IN ('MINOR','MAJOR','CRITICAL')", name="ck_nonconformances_severity"),
        sa.CheckConstraint(
            "status IN ('OPEN','UNDER_REVIEW','DISPOSITIONED','CLOSED')", name="ck_nonconformances_status"
        ),
        sa.Index("ix_nonconformances_status", "tenant_id", "status", "reported_at"),
    )

    op.create_table(
        "nc_defects",
        *_base_columns(),
        sa.Column("nonconformance_id", sa.UUID(), nullable=False),
        sa.Column("defect_code_id", sa.UUID(), nullable=False),
        sa.Column("qty_affected", sa.Numeric(18, 6), nullable=False, server_default="1"),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["nonconformance_id"], ["nonconformances.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["defect_code_id"], ["defect_codes.id"], ondelete="RESTRICT"),
    )

    op.create_table(
        "nc_dispositions",
        *_base_columns(),
        sa.Column("nonconformance_id", sa.UUID(), nullable=False),
        sa.Column("disposition", sa.Text(), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.UUID(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("executed_by", sa.UUID(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["nonconformance_id"], ["nonconformances.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "disposition IN ('SCRAP','REWORK','USE_AS_IS','RETURN_TO_VENDOR','SORT_100')",
            name="ck_nc_dispositions_disposition",
        ),
    )

    op.create_table(
        "capas",
        *_base_columns(),
        sa.Column("capa_number", sa.Text(), nullable=False),
        sa.Column("nonconformance_id", sa.UUID(), nullable=True),
        sa.Column("root_cause", sa.Text(), nullable=True),
        sa.Column("root_cause_method", sa.Text(), nullable=True),
        sa.Column("corrective_action", sa.Text(), nullable=True),
        sa.Column("corrective_action_due", sa.Date(), nullable=True),
        sa.Column("corrective_action_completed", sa.Date(), nullable=True),
        sa.Column("preventive_action", sa.Text(), nullable=True),
        sa.Column("preventive_action_due", sa.Date(), nullable=True),
        sa.Column("preventive_action_completed", sa.Date(), nullable=True),
        sa.Column("owner_id", sa.UUID(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="OPEN"),
        sa.Column("verified_by", sa.UUID(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["nonconformance_id"], ["nonconformances.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "capa_number", name="uq_capas_tenant_capa_number"),
        sa.CheckConstraint("status IN ('OPEN','IN_PROGRESS','VERIFIED','CLOSED')", name="ck_capas_status"),
    )

    # SPC
    op.create_table(
        "spc_subgroups",
        *_base_columns(),
        sa.Column("characteristic_id", sa.UUID(), nullable=False),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=True),
        sa.Column("product_id", sa.UUID(), nullable=True),
        sa.Column("production_step_id", sa.UUID(), nullable=True),
        sa.Column("subgroup_ts", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("n", sa.Integer(), nullable=False),
        sa.Column("mean", sa.Numeric(18, 6), nullable=False),
        sa.Column("range_value", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("stddev", sa.Numeric(18, 6), nullable=True),
        sa.Column("min_value", sa.Numeric(18, 6), nullable=True),
        sa.Column("max_value", sa.Numeric(18, 6), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["characteristic_id"], ["inspection_characteristics.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.CheckConstraint("n >= 1", name="ck_spc_subgroups_n"),
        sa.Index("ix_spc_subgroups_char_ts", "tenant_id", "characteristic_id", "subgroup_ts"),
    )

    op.create_table(
        "spc_points",
        *_base_columns(),
        sa.Column("subgroup_id", sa.UUID(), nullable=False),
        sa.Column("measured_value", sa.Numeric(18, 6), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("measurement_id", sa.UUID(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["subgroup_id"], ["spc_subgroups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["measurement_id"], ["inspection_measurements.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "spc_rule_violations",
        *_base_columns(),
        sa.Column("characteristic_id", sa.UUID(), nullable=False),
        sa.Column("subgroup_id", sa.UUID(), nullable=True),
        sa.Column("violation_type", sa.Text(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default=JSONB_EMPTY),
        sa.Column("acknowledged_by", sa.UUID(), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledgment_notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["characteristic_id"], ["inspection_characteristics.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subgroup_id"], ["spc_subgroups.id"], ondelete="SET NULL"),
        sa.Index("ix_spc_rule_violations_char_detected", "tenant_id", "characteristic_id", "detected_at"),
    )

    for tbl in TABLES:
        _enable_rls_with_policy(tbl)


def downgrade() -> None:
    for tbl in TABLES:
        op.execute(f"DROP POLICY IF EXISTS {tbl}_tenant_isolation ON {tbl};")
        op.execute(f"ALTER TABLE {tbl} DISABLE ROW LEVEL SECURITY;")

    for tbl in reversed(TABLES):
        op.drop_table(tbl)
