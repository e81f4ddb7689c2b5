"""Initial schema - users and repositories tables.

Revision ID: 001
Revises: None
Create Date: 2026-09-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Databases created with create_all() before migrations existed
    # already have these tables.
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("github_id", sa.BigInteger(), nullable=False),
            sa.Column("handle", sa.String(), nullable=True),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("avatar_url", sa.String(), nullable=True),
            sa.Column("profile_url", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("access_token", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(op.f("ix_users_github_id"), "users", ["github_id"], unique=True)

    if "repositories" not in existing_tables:
        op.create_table(
            "repositories",
            sa.Column("repo_id", sa.BigInteger(), autoincrement=False, nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("repo_name", sa.String(), nullable=False),
            sa.Column("owner_login", sa.String(), nullable=False),
            sa.Column("deploy_yml_injected", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("deploy_yml_workflow_id", sa.BigInteger(), nullable=True),
            sa.Column("deploy_status", sa.String(), nullable=False, server_default="not-deployed"),
            sa.Column("project_url", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint("repo_id"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
        op.create_index(op.f("ix_repositories_user_id"), "repositories", ["user_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_repositories_user_id"), table_name="repositories")
    op.drop_table("repositories")
    op.drop_index(op.f("ix_users_github_id"), table_name="users")
    op.drop_table("users")
