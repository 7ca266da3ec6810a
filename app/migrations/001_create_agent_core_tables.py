"""Create the company directory and agent orchestration tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_agent_core_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSONB = postgresql.JSONB()

_COMPANY_SCOPED_TABLES = (
    "employees",
    "agent_instances",
    "agent_targets",
    "agent_schedules",
    "agent_runs",
    "conversations",
    "messages",
    "feedback_summaries",
    "agent_escalations",
)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _company_column() -> sa.Column:
    return sa.Column(
        "company_id",
        _UUID,
        sa.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("now()"),
    )


def upgrade() -> None:
    """Create tables, indexes and row level security policies."""

    op.create_table(
        "companies",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        _timestamp("created_at"),
    )

    op.create_table(
        "employees",
        _id_column(),
        _company_column(),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("job_title", sa.String(length=255), nullable=True),
        sa.Column(
            "role",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'employee'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
    )
    op.create_index("ix_employees_company_id", "employees", ["company_id"])
    op.create_index(
        "ix_employees_company_department", "employees", ["company_id", "department"]
    )
    op.create_index("ix_employees_email_unique", "employees", ["email"], unique=True)

    op.create_table(
        "agent_instances",
        _id_column(),
        _company_column(),
        sa.Column("agent_id", sa.String(length=64), nullable=False),
        sa.Column(
            "created_by",
            _UUID,
            sa.ForeignKey("employees.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("config", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('active', 'paused', 'draft')", name="ck_agent_instances_status"
        ),
    )
    op.create_index("ix_agent_instances_company_id", "agent_instances", ["company_id"])

    op.create_table(
        "agent_targets",
        _company_column(),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "employee_id",
            _UUID,
            sa.ForeignKey("employees.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("agent_instance_id", "employee_id"),
    )

    op.create_table(
        "agent_schedules",
        _id_column(),
        _company_column(),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("cadence", sa.String(length=16), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("last_run_at", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint(
            "cadence IN ('once', 'daily', 'weekly', 'biweekly', 'monthly')",
            name="ck_agent_schedules_cadence",
        ),
    )
    op.create_index(
        "ix_agent_schedules_due",
        "agent_schedules",
        ["company_id", "next_run_at"],
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "agent_runs",
        _id_column(),
        _company_column(),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("run_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("finished_at", nullable=True),
        sa.Column("messages_sent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "conversations_touched", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        _timestamp("created_at"),
    )
    op.create_index("ix_agent_runs_company_started", "agent_runs", ["company_id", "started_at"])

    op.create_table(
        "conversations",
        _id_column(),
        _company_column(),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "participant_user_id",
            _UUID,
            sa.ForeignKey("employees.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("agent_type", sa.String(length=64), nullable=True),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("last_message_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'escalated', 'closed')",
            name="ck_conversations_status",
        ),
    )
    # At most one active conversation per (instance, employee).
    op.create_index(
        "ux_conversations_active_pair",
        "conversations",
        ["agent_instance_id", "participant_user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "ix_conversations_participant",
        "conversations",
        ["company_id", "participant_user_id", "last_message_at"],
    )

    op.create_table(
        "messages",
        _id_column(),
        _company_column(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_type", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_messages_sequence"),
        sa.CheckConstraint(
            "sender_type IN ('agent', 'employee', 'system')", name="ck_messages_sender_type"
        ),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"])

    op.create_table(
        "feedback_summaries",
        _id_column(),
        _company_column(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("sentiment", sa.String(length=16), nullable=False),
        sa.Column("sentiment_score", sa.Float(), nullable=True),
        sa.Column("risk_level", sa.String(length=16), nullable=False),
        sa.Column("tags", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("action_items", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("engagement_score", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("summary", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'ok'")),
        _timestamp("created_at"),
    )

    op.create_table(
        "agent_escalations",
        _id_column(),
        _company_column(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "agent_instance_id",
            _UUID,
            sa.ForeignKey("agent_instances.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "participant_user_id",
            _UUID,
            sa.ForeignKey("employees.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("escalation_type", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'open'")),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "escalation_type IN ('safety', 'negative_sentiment')",
            name="ck_agent_escalations_type",
        ),
        sa.CheckConstraint(
            "severity IN ('low', 'moderate', 'high')", name="ck_agent_escalations_severity"
        ),
        sa.CheckConstraint("status IN ('open', 'resolved')", name="ck_agent_escalations_status"),
    )
    op.create_index(
        "ix_agent_escalations_company_created", "agent_escalations", ["company_id", "created_at"]
    )

    for table in _COMPANY_SCOPED_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(
            f"""
            CREATE POLICY {table}_company_isolation ON {table}
            USING (company_id::text = current_setting('app.company_id', true))
            WITH CHECK (company_id::text = current_setting('app.company_id', true))
            """
        )


def downgrade() -> None:
    """Drop every table created by :func:`upgrade`."""

    for table in reversed(_COMPANY_SCOPED_TABLES):
        op.execute(f"DROP POLICY IF EXISTS {table}_company_isolation ON {table}")
    for table in reversed(_COMPANY_SCOPED_TABLES):
        op.drop_table(table)
    op.drop_table("companies")
