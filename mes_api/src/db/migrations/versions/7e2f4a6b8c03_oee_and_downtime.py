"""OEE and downtime schema.

- production_counts: good/scrap/rework quantities per work center
- oee_snapshots: stored OEE results per grain/scope/period
- downtime_reason_codes: classification catalogue
- equipment_state_events: equipment state intervals with generated duration
- downtime_events: classification of non-RUN state events
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "7e2f4a6b8c03"
down_revision: Union[str, None] = "5a8b2c4d6e01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TENANT_DEFAULT = sa.text("current_setting('app.tenant_id', true)::uuid")
UUID_DEFAULT = sa.text("uuid_generate_v4()")
NOW = sa.text("now()")

TABLES = [
    "downtime_reason_codes",
    "equipment_state_events",
    "downtime_events",
    "production_counts",
    "oee_snapshots",
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
    op.create_table(
        "downtime_reason_codes",
        *_base_columns(),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=False, server_default="unplanned"),
        sa.Column("reason_group", sa.Text(), nullable=False, server_default="other"),
        sa.Column("parent_code_id", sa.UUID(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["parent_code_id"], ["downtime_reason_codes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_downtime_reason_codes_tenant_code"),
        sa.CheckConstraint("category IN ('planned','unplanned')", name="ck_downtime_reason_codes_category"),
        sa.CheckConstraint(
            "reason_group IN ('mechanical','electrical','material','quality','ops','other')",
            name="ck_downtime_reason_codes_group",
        ),
    )

    op.create_table(
        "equipment_state_events",
        *_base_columns(),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=False),
        sa.Column("work_center_id", sa.UUID(), nullable=True),
        sa.Column("state", sa.Text(), nullable=False, server_default="STOP"),
        sa.Column("start_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "duration_seconds",
            sa.Numeric(18, 2),
            sa.Computed("EXTRACT(EPOCH FROM (end_ts - start_ts))", persisted=True),
        ),
        sa.Column("external_event_id", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False, server_default="manual"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.UUID(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["equipment_asset_id"], ["equipment_assets.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "state IN ('RUN','STOP','IDLE','CHANGEOVER','PLANNED_STOP')", name="ck_equipment_state_events_state"
        ),
        sa.CheckConstraint("end_ts IS NULL OR end_ts >= start_ts", name="ck_equipment_state_events_interval"),
        sa.Index("ix_equipment_state_events_wc_start", "tenant_id", "work_center_id", "start_ts"),
    )
    op.create_index(
        "uq_equipment_state_events_external_event_id",
        "equipment_state_events",
        ["tenant_id", "external_event_id"],
        unique=True,
        postgresql_where=sa.text("external_event_id IS NOT NULL"),
    )

    op.create_table(
        "downtime_events",
        *_base_columns(),
        sa.Column("equipment_state_event_id", sa.UUID(), nullable=False),
        sa.Column("reason_code_id", sa.UUID(), nullable=True),
        sa.Column("is_classified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("classification_notes", sa.Text(), nullable=True),
        sa.Column("classified_by", sa.UUID(), nullable=True),
        sa.Column("classified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_planned", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["equipment_state_event_id"], ["equipment_state_events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reason_code_id"], ["downtime_reason_codes.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "equipment_state_event_id", name="uq_downtime_events_state_event"),
    )

    op.create_table(
        "production_counts",
        *_base_columns(),
        sa.Column("operation_run_id", sa.UUID(), nullable=True),
        sa.Column("production_order_id", sa.UUID(), nullable=True),
        sa.Column("work_center_id", sa.UUID(), nullable=False),
        sa.Column("equipment_asset_id", sa.UUID(), nullable=True),
        sa.Column("count_timestamp", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("total_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("good_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("scrap_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("rework_qty", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("scrap_reason_code_id", sa.UUID(), nullable=True),
        sa.Column("rework_reason_code_id", sa.UUID(), nullable=True),
        sa.Column("recorded_by", sa.UUID(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["operation_run_id"], ["operation_runs.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["production_order_id"], ["production_orders.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_center_id"], ["work_centers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["equipment_asset_id"], ["equipment_assets.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "total_qty >= 0 AND good_qty >= 0 AND scrap_qty >= 0 AND rework_qty >= 0",
            name="ck_production_counts_non_negative",
        ),
        sa.Index("ix_production_counts_wc_ts", "tenant_id", "work_center_id", "count_timestamp"),
    )

    op.create_table(
        "oee_snapshots",
        *_base_columns(),
        sa.Column("grain", sa.Text(), nullable=False),
        sa.Column("scope_type", sa.Text(), nullable=False),
        sa.Column("scope_id", sa.UUID(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("shift_name", sa.Text(), nullable=True),
        sa.Column("planned_production_time_seconds", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("actual_run_time_seconds", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("downtime_seconds", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_count", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("good_count", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("scrap_count", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("rework_count", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("ideal_cycle_time_seconds", sa.Numeric(18, 6), nullable=True),
        sa.Column("availability_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        sa.Column("performance_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        sa.Column("quality_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        sa.Column("oee_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        _tenant_fk(),
        sa.UniqueConstraint(
            "tenant_id", "grain", "scope_type", "scope_id", "period_start", name="uq_oee_snapshots_scope_period"
        ),
        sa.CheckConstraint("grain IN ('hourly','shift','daily')", name="ck_oee_snapshots_grain"),
        sa.CheckConstraint(
            "scope_type IN ('work_center','equipment','line','plant','site')", name="ck_oee_snapshots_scope_type"
        ),
    )

    for tbl in TABLES:
        _enable_rls_with_policy(tbl)


def downgrade() -> None:
    for tbl in TABLES:
        op.execute(f"DROP POLICY IF EXISTS {tbl}_tenant_isolation ON {tbl};")
        op.execute(f"ALTER TABLE {tbl} DISABLE ROW LEVEL SECURITY;")

    op.drop_index("uq_equipment_state_events_external_event_id", table_name="equipment_state_events")
    for tbl in reversed(TABLES):
        op.drop_table(tbl)
