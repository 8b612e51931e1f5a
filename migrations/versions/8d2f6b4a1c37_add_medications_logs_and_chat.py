"""add medications, medication logs and chat messages

Revision ID: 8d2f6b4a1c37
Revises: 3a7c1e9d5b20
Create Date: 2026-09-09 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8d2f6b4a1c37"
down_revision = "3a7c1e9d5b20"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "medications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("brand_name", sa.String(length=255), nullable=True),
        sa.Column("generic_names", sa.JSON(), nullable=True),
        sa.Column("strength", sa.String(length=120), nullable=True),
        sa.Column("dosage", sa.String(length=120), nullable=True),
        sa.Column("dosage_form", sa.String(length=120), nullable=True),
        sa.Column("manufacturer", sa.String(length=255), nullable=True),
        sa.Column("uses", sa.JSON(), nullable=True),
        sa.Column("warnings", sa.JSON(), nullable=True),
        sa.Column("side_effects", sa.JSON(), nullable=True),
        sa.Column("risk_level", sa.String(length=20), nullable=True),
        sa.Column("requires_prescription", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("identified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("image_path", sa.String(length=500), nullable=True),
        sa.Column("frequency", sa.String(length=20), nullable=True),
        sa.Column("times", sa.JSON(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("added_to_calendar", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("encrypted_payload", sa.LargeBinary(), nullable=True),
        sa.Column("scanned_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("medications", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_medications_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_medications_source"), ["source"], unique=False)
        batch_op.create_index(batch_op.f("ix_medications_scanned_at"), ["scanned_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_medications_created_at"), ["created_at"], unique=False)

    op.create_table(
        "medication_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("medication_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.String(length=5), nullable=False),
        sa.Column("med_name", sa.String(length=255), nullable=True),
        sa.Column("dosage", sa.String(length=120), nullable=True),
        sa.Column("taken", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("taken_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["medication_id"], ["medications.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "medication_id", "day", "scheduled_time", name="uq_medication_logs_med_day_time"
        ),
    )
    with op.batch_alter_table("medication_logs", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_medication_logs_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_medication_logs_medication_id"), ["medication_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_medication_logs_day"), ["day"], unique=False)

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("encrypted_payload", sa.LargeBinary(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("chat_messages", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_chat_messages_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_chat_messages_created_at"), ["created_at"], unique=False)


def downgrade():
    with op.batch_alter_table("chat_messages", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_chat_messages_created_at"))
        batch_op.drop_index(batch_op.f("ix_chat_messages_user_id"))
    op.drop_table("chat_messages")

    with op.batch_alter_table("medication_logs", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_medication_logs_day"))
        batch_op.drop_index(batch_op.f("ix_medication_logs_medication_id"))
        batch_op.drop_index(batch_op.f("ix_medication_logs_user_id"))
    op.drop_table("medication_logs")

    with op.batch_alter_table("medications", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_medications_created_at"))
        batch_op.drop_index(batch_op.f("ix_medications_scanned_at"))
        batch_op.drop_index(batch_op.f("ix_medications_source"))
        batch_op.drop_index(batch_op.f("ix_medications_user_id"))
    op.drop_table("medications")
