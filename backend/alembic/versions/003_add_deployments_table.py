"""Add deployments table (latest workflow run per repository).

Revision ID: 003
Revises: 002
Create Date: 2026-09-09
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "deployments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "repo_id",
            sa.BigInteger(),
            sa.ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("workflow_run_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("conclusion", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("html_url", sa.String(), nullable=True),
        sa.Column("project_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("repo_id", name="uq_deployments_repo_id"),
        sa.UniqueConstraint("workflow_run_id", name="uq_deployments_workflow_run_id"),
        sa.UniqueConstraint("project_url", name="uq_deployments_project_url"),
    )


def downgrade() -> None:
    op.drop_table("deployments")
