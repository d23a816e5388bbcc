"""Create meetings, attendance and emotion sample tables.

Revision ID: 20261017a1b2
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261017a1b2"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "meetings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_meetings_status", "meetings", ["status"])
    op.create_index("ix_meetings_status_scheduled", "meetings", ["status", "scheduled_start"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("meeting_id", sa.Integer(), sa.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("student_name", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("first_join_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_duration", sa.Integer(), nullable=False),
        sa.Column("rejoin_count", sa.Integer(), nullable=False),
        sa.Column("is_currently_present", sa.Boolean(), nullable=False),
        sa.Column("attendance_percentage", sa.Float(), nullable=False),
        sa.Column("is_late", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("meeting_id", "student_id", name="uq_attendance_meeting_student"),
    )
    op.create_index("ix_attendance_records_meeting_id", "attendance_records", ["meeting_id"])
    op.create_index("ix_attendance_records_student_id", "attendance_records", ["student_id"])
    op.create_index("ix_attendance_records_status", "attendance_records", ["status"])
    op.create_index("ix_attendance_meeting_present", "attendance_records", ["meeting_id", "is_currently_present"])

    op.create_table(
        "attendance_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("record_id", sa.Integer(), sa.ForeignKey("attendance_records.id", ondelete="CASCADE"), nullable=False),
        sa.Column("join_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
    )
    op.create_index("ix_attendance_sessions_record_id", "attendance_sessions", ["record_id"])

    op.create_table(
        "emotion_samples",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("meeting_id", sa.Integer(), sa.ForeignKey("meetings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("student_name", sa.String(length=120), nullable=True),
        sa.Column("session_id", sa.String(length=120), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("happy", sa.Float(), nullable=False),
        sa.Column("sad", sa.Float(), nullable=False),
        sa.Column("angry", sa.Float(), nullable=False),
        sa.Column("surprised", sa.Float(), nullable=False),
        sa.Column("fearful", sa.Float(), nullable=False),
        sa.Column("disgusted", sa.Float(), nullable=False),
        sa.Column("neutral", sa.Float(), nullable=False),
        sa.Column("dominant_emotion", sa.String(length=20), nullable=False),
        sa.Column("face_detected", sa.Boolean(), nullable=False),
        sa.Column("detection_confidence", sa.Float(), nullable=False),
        sa.Column("attentiveness", sa.Float(), nullable=False),
    )
    op.create_index("ix_emotion_samples_meeting_id", "emotion_samples", ["meeting_id"])
    op.create_index("ix_emotion_samples_student_id", "emotion_samples", ["student_id"])
    op.create_index("ix_emotion_samples_timestamp", "emotion_samples", ["timestamp"])
    op.create_index("ix_emotion_meeting_student_time", "emotion_samples", ["meeting_id", "student_id", "timestamp"])
    op.create_index("ix_emotion_meeting_time", "emotion_samples", ["meeting_id", "timestamp"])


def downgrade() -> None:
    op.drop_index("ix_emotion_meeting_time", table_name="emotion_samples")
    op.drop_index("ix_emotion_meeting_student_time", table_name="emotion_samples")
    op.drop_index("ix_emotion_samples_timestamp", table_name="emotion_samples")
    op.drop_index("ix_emotion_samples_student_id", table_name="emotion_samples")
    op.drop_index("ix_emotion_samples_meeting_id", table_name="emotion_samples")
    op.drop_table("emotion_samples")
    op.drop_index("ix_attendance_sessions_record_id", table_name="attendance_sessions")
    op.drop_table("attendance_sessions")
    op.drop_index("ix_attendance_meeting_present", table_name="attendance_records")
    op.drop_index("ix_attendance_records_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_student_id", table_name="attendance_records")
    op.drop_index("ix_attendance_records_meeting_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_meetings_status_scheduled", table_name="meetings")
    op.drop_index("ix_meetings_status", table_name="meetings")
    op.drop_table("meetings")
