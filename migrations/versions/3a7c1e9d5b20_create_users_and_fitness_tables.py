"""create users and fitness tables

Revision ID: 3a7c1e9d5b20
Revises:
Create Date: 2026-09-02 10:15:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3a7c1e9d5b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("encrypted_dek", sa.LargeBinary(), nullable=True),
        sa.Column("daily_calorie_goal", sa.Integer(), nullable=True),
        sa.Column("last_active_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_users_last_active_at"), ["last_active_at"], unique=False)

    op.create_table(
        "workouts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("performed_at", sa.DateTime(), nullable=False),
        sa.Column("exercises", sa.JSON(), nullable=True),
        sa.Column("duration_min", sa.Integer(), nullable=False),
        sa.Column("calories", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("workouts", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_workouts_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_workouts_performed_at"), ["performed_at"], unique=False)

    op.create_table(
        "meals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("eaten_at", sa.DateTime(), nullable=False),
        sa.Column("meal_type", sa.String(length=20), nullable=False),
        sa.Column("foods", sa.JSON(), nullable=True),
        sa.Column("total_calories", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("meals", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_meals_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_meals_eaten_at"), ["eaten_at"], unique=False)

    op.create_table(
        "calorie_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("calories_in", sa.Integer(), nullable=False),
        sa.Column("calories_out", sa.Integer(), nullable=False),
        sa.Column("protein_g", sa.Float(), nullable=False),
        sa.Column("carbs_g", sa.Float(), nullable=False),
        sa.Column("fat_g", sa.Float(), nullable=False),
        sa.Column("goal", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "day", name="uq_calorie_logs_user_day"),
    )
    with op.batch_alter_table("calorie_logs", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_calorie_logs_user_id"), ["user_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_calorie_logs_day"), ["day"], unique=False)


def downgrade():
    with op.batch_alter_table("calorie_logs", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_calorie_logs_day"))
        batch_op.drop_index(batch_op.f("ix_calorie_logs_user_id"))
    op.drop_table("calorie_logs")

    with op.batch_alter_table("meals", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_meals_eaten_at"))
        batch_op.drop_index(batch_op.f("ix_meals_user_id"))
    op.drop_table("meals")

    with op.batch_alter_table("workouts", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_workouts_performed_at"))
        batch_op.drop_index(batch_op.f("ix_workouts_user_id"))
    op.drop_table("workouts")

    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_users_last_active_at"))
    op.drop_table("users")
