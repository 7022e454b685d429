"""monitoring_core_tables

Create resource plan registry tables (when the host application has not
already created them) and the monitoring tables: consumption records,
thresholds, alerts, notification preferences and scheduled jobs.

Revision ID: a7c1e5d20f31
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a7c1e5d20f31"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    # ── Resource plan registry (owned by the host application) ──────────
    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="productor"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="planificacion"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("total_budget", sa.Numeric(14, 2), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    if "project_phases" not in existing_tables:
        op.create_table(
            "project_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_phases_project_id", "project_phases", ["project_id"])

    if "resource_types" not in existing_tables:
        op.create_table(
            "resource_types",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("unit", sa.String(length=30), nullable=False, server_default="unidad"),
            sa.Column("category", sa.String(length=50), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "planned_resources" not in existing_tables:
        op.create_table(
            "planned_resources",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("phase_id", sa.Integer(), nullable=False),
            sa.Column("resource_type_id", sa.Integer(), nullable=False),
            sa.Column("planned_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
            sa.Column("unit_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["phase_id"], ["project_phases.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["resource_type_id"], ["resource_types.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_planned_resources_phase_id", "planned_resources", ["phase_id"])
        op.create_index("ix_planned_resources_resource_type_id", "planned_resources", ["resource_type_id"])

    # ── Monitoring ──────────────────────────────────────────────────────
    op.create_table(
        "consumption_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("planned_resource_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("consumed_on", sa.Date(), nullable=False),
        sa.Column("note", sa.String(length=500), nullable=True),
        sa.Column("recorded_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["planned_resource_id"], ["planned_resources.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_consumption_records_planned_resource_id", "consumption_records",
                    ["planned_resource_id"])

    op.create_table(
        "thresholds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("resource_type_id", sa.Integer(), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("day_count", sa.Integer(), nullable=True),
        sa.Column("min_quantity", sa.Numeric(14, 3), nullable=True),
        sa.Column("severity", sa.String(length=10), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["resource_type_id"], ["resource_types.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_thresholds_resource_type_id", "thresholds", ["resource_type_id"])
    op.create_index("ix_thresholds_project_id", "thresholds", ["project_id"])
    # NULL scope columns map to 0 so wildcard scopes are unique as well
    op.create_index(
        "uq_thresholds_active_scope_kind",
        "thresholds",
        [sa.text("coalesce(resource_type_id, 0)"), sa.text("coalesce(project_id, 0)"), "kind"],
        unique=True,
        postgresql_where=sa.text("active"),
        sqlite_where=sa.text("active = 1"),
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("planned_resource_id", sa.Integer(), nullable=True),
        sa.Column("threshold_id", sa.Integer(), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False, server_default="media"),
        sa.Column("message", sa.String(length=500), nullable=False),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("state", sa.String(length=10), nullable=False, server_default="activa"),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_id", sa.Integer(), nullable=True),
        sa.Column("resolution_note", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["planned_resource_id"], ["planned_resources.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["threshold_id"], ["thresholds.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["resolved_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alerts_project_id", "alerts", ["project_id"])
    op.create_index("ix_alerts_planned_resource_id", "alerts", ["planned_resource_id"])
    op.create_index("ix_alerts_project_state", "alerts", ["project_id", "state"])
    op.create_index(
        "uq_alerts_open_per_resource_kind",
        "alerts",
        ["project_id", sa.text("coalesce(planned_resource_id, 0)"), "kind"],
        unique=True,
        postgresql_where=sa.text("state IN ('activa', 'leida')"),
        sqlite_where=sa.text("state IN ('activa', 'leida')"),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("platform_alerts", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_alerts", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("digest_frequency", sa.String(length=10), nullable=False, server_default="semanal"),
        sa.Column("alert_kinds", sa.JSON(), nullable=False),
        sa.Column("preferred_time", sa.Time(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_preferences_user_id", "notification_preferences",
                    ["user_id"], unique=True)

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("schedule_type", sa.String(length=30), nullable=True),
        sa.Column("schedule_config", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_status", sa.String(length=20), nullable=True),
        sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
        sa.Column("last_run_result", sa.JSON(), nullable=True),
        sa.Column("run_count", sa.Integer(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_name"),
    )


def downgrade():
    op.drop_table("scheduled_jobs")
    op.drop_index("ix_notification_preferences_user_id", table_name="notification_preferences")
    op.drop_table("notification_preferences")
    op.drop_index("uq_alerts_open_per_resource_kind", table_name="alerts")
    op.drop_index("ix_alerts_project_state", table_name="alerts")
    op.drop_index("ix_alerts_planned_resource_id", table_name="alerts")
    op.drop_index("ix_alerts_project_id", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("uq_thresholds_active_scope_kind", table_name="thresholds")
    op.drop_index("ix_thresholds_project_id", table_name="thresholds")
    op.drop_index("ix_thresholds_resource_type_id", table_name="thresholds")
    op.drop_table("thresholds")
    op.drop_index("ix_consumption_records_planned_resource_id", table_name="consumption_records")
    op.drop_table("consumption_records")
    # Registry tables belong to the host application and are left in place.
