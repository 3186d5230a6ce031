"""Create experience upgrade table

Revision ID: experience_upgrades
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


revision = "experience_upgrades"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    from sqlalchemy import inspect
    inspector = inspect(conn)
    tables = inspector.get_table_names()

    if "model_ExperienceUpgrade" not in tables:
        op.create_table(
            "model_ExperienceUpgrade",
            sa.Column(
                "id",
                sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
                primary_key=True,
                autoincrement=True,
                nullable=False,
            ),
            sa.Column("record_type", sa.Integer(), nullable=False),
            sa.Column("unique_id", sa.String(), nullable=False),
            sa.Column("first_viewed_timestamp", sa.Float(), nullable=False, server_default=sa.text("0")),
            sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("last_snoozed_timestamp", sa.Float(), nullable=False, server_default=sa.text("0")),
        )
        op.create_index(
            op.f("ix_model_ExperienceUpgrade_unique_id"),
            "model_ExperienceUpgrade",
            ["unique_id"],
            unique=True,
        )


def downgrade() -> None:
    op.drop_index(op.f("ix_model_ExperienceUpgrade_unique_id"), table_name="model_ExperienceUpgrade")
    op.drop_table("model_ExperienceUpgrade")
