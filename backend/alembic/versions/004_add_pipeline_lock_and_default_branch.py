"""Add pipeline_locked_at and default_branch to repositories.

pipeline_locked_at marks a repository owned by a running setup or
deployment; default_branch is what redeploys dispatch on.

Revision ID: 004
Revises: 003
Create Date: 2026-09-21
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("repositories") as batch_op:
        batch_op.add_column(sa.Column("pipeline_locked_at", sa.DateTime(), nullable=True))
        batch_op.add_column(
            sa.Column("default_branch", sa.String(), nullable=False, server_default="main")
        )


def downgrade() -> None:
    with op.batch_alter_table("repositories") as batch_op:
        batch_op.drop_column("default_branch")
        batch_op.drop_column("pipeline_locked_at")
