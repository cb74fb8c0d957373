"""Initial schema: subjects, transition records, notifications, counters

Revision ID: 0001
Revises:
Create Date: 2026-10-18

This migration:
1. Creates the moderation tables
2. Creates database triggers that keep transition_records append-only
   (no UPDATE, no DELETE)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create moderation tables and the audit trail triggers."""

    op.create_table(
        "approval_subjects",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("payload_ref", sa.String(512), nullable=False),
        sa.Column("submitted_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("decided_by", sa.String(128), nullable=True),
        sa.Column("decided_at", sa.DateTime(), nullable=True),
        sa.Column("decision_reason", sa.Text(), nullable=True),
        sa.Column(
            "previous_subject_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("approval_subjects.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("extra_data", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_approval_subjects_status"
        ),
    )
    op.create_index("ix_approval_subjects_kind", "approval_subjects", ["kind"])
    op.create_index("ix_approval_subjects_status", "approval_subjects", ["status"])
    op.create_index("ix_approval_subjects_owner_id", "approval_subjects", ["owner_id"])
    op.create_index("ix_approval_subjects_created_at", "approval_subjects", ["created_at"])
    op.create_index("ix_approval_subjects_kind_status", "approval_subjects", ["kind", "status"])
    op.create_index("ix_approval_subjects_kind_payload", "approval_subjects", ["kind", "payload_ref"])
    op.create_index(
        "uq_approval_subjects_pending_payload",
        "approval_subjects",
        ["kind", "payload_ref"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "transition_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subject_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("approval_subjects.id"),
            nullable=False,
        ),
        sa.Column("from_status", sa.String(20), nullable=False),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("committed_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("extra_data", sa.JSON(), nullable=False, server_default="{}"),
    )
    op.create_index("ix_transition_records_subject_id", "transition_records", ["subject_id"])
    op.create_index("ix_transition_records_actor_id", "transition_records", ["actor_id"])
    op.create_index("ix_transition_records_committed_at", "transition_records", ["committed_at"])

    op.create_table(
        "notification_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", sa.String(128), nullable=False),
        sa.Column(
            "subject_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("approval_subjects.id"),
            nullable=False,
        ),
        sa.Column(
            "transition_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("transition_records.id"),
            nullable=True,
        ),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("push_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("push_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pushed_at", sa.DateTime(), nullable=True),
        sa.Column("push_error", sa.Text(), nullable=True),
        sa.UniqueConstraint("recipient_id", "sequence_no", name="uq_notification_recipient_sequence"),
    )
    op.create_index("ix_notification_events_recipient_id", "notification_events", ["recipient_id"])
    op.create_index("ix_notification_events_subject_id", "notification_events", ["subject_id"])
    op.create_index(
        "ix_notification_events_recipient_read", "notification_events", ["recipient_id", "read_at"]
    )

    op.create_table(
        "notification_sequences",
        sa.Column("recipient_id", sa.String(128), primary_key=True),
        sa.Column("last_sequence_no", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "status_counters",
        sa.Column("kind", sa.String(50), primary_key=True),
        sa.Column("pending_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reconciled_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # Create trigger function rejecting any change to a transition record
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_transition_record_change()
        RETURNS TRIGGER AS $trigger$
        BEGIN
            RAISE EXCEPTION 'Transition records are append-only. Record ID: %', OLD.id;
        END;
        $trigger$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER transition_records_prevent_update
        BEFORE UPDATE ON transition_records
        FOR EACH ROW
        EXECUTE FUNCTION prevent_transition_record_change();
    """)

    op.execute("""
        CREATE TRIGGER transition_records_prevent_delete
        BEFORE DELETE ON transition_records
        FOR EACH ROW
        EXECUTE FUNCTION prevent_transition_record_change();
    """)


def downgrade() -> None:
    """Drop moderation tables."""

    op.execute("DROP TRIGGER IF EXISTS transition_records_prevent_delete ON transition_records;")
    op.execute("DROP TRIGGER IF EXISTS transition_records_prevent_update ON transition_records;")
    op.execute("DROP FUNCTION IF EXISTS prevent_transition_record_change();")

    op.drop_table("status_counters")
    op.drop_table("notification_sequences")
    op.drop_index("ix_notification_events_recipient_read", table_name="notification_events")
    op.drop_index("ix_notification_events_subject_id", table_name="notification_events")
    op.drop_index("ix_notification_events_recipient_id", table_name="notification_events")
    op.drop_table("notification_events")
    op.drop_index("ix_transition_records_committed_at", table_name="transition_records")
    op.drop_index("ix_transition_records_actor_id", table_name="transition_records")
    op.drop_index("ix_transition_records_subject_id", table_name="transition_records")
    op.drop_table("transition_records")
    op.drop_index("uq_approval_subjects_pending_payload", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_kind_payload", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_kind_status", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_created_at", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_owner_id", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_status", table_name="approval_subjects")
    op.drop_index("ix_approval_subjects_kind", table_name="approval_subjects")
    op.drop_table("approval_subjects")
