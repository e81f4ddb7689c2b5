"""Add repo_env_vars table for per-repository build variables.

Revision ID: 002
Revises: 001
Create Date: 2026-09-04
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "repo_env_vars",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "repo_id",
            sa.BigInteger(),
            sa.ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("repo_id", "key", name="uq_repo_env_vars_repo_key"),
    )
    op.create_index("ix_repo_env_vars_user_id", "repo_env_vars", ["user_id"])
    op.create_index("ix_repo_env_vars_repo_id", "repo_env_vars", ["repo_id"])


def downgrade() -> None:
    op.drop_index("ix_repo_env_vars_repo_id", table_name="repo_env_vars")
    op.drop_index("ix_repo_env_vars_user_id", table_name="repo_env_vars")
    op.drop_table("repo_env_vars")
