"""
SQLAlchemy database models.

Four tables back the deployment pipeline:
    users         - one row per connected GitHub account
    repositories  - repositories a user has set up for deployment
    repo_env_vars - per-repository build-time environment variables
    deployments   - the latest workflow run of each repository

Repository rows are keyed by GitHub's numeric repository id, which is
globally unique, so the same id can never belong to two users.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def generate_id() -> str:
    """Generate a short random ID (12 hex characters) for use as primary keys."""
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    """Return the current UTC time. Used as default value for timestamp columns."""
    return datetime.now(timezone.utc)


class DeployStatus:
    """Values of Repository.deploy_status."""

    NOT_DEPLOYED = "not-deployed"
    PENDING = "pending"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_id)
    github_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True)
    handle: Mapped[str | None] = mapped_column(default=None)
    display_name: Mapped[str | None] = mapped_column(default=None)
    avatar_url: Mapped[str | None] = mapped_column(default=None)
    profile_url: Mapped[str | None] = mapped_column(default=None)
    email: Mapped[str | None] = mapped_column(default=None)
    # Revocable GitHub OAuth token, replaced on every login.
    access_token: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    repositories: Mapped[list["Repository"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )


class Repository(Base):
    """
    A GitHub repository registered for deployment.

    Created with deploy_status="pending" when workflow setup starts.
    deploy_yml_workflow_id is only set once GitHub lists the injected
    workflow; no Deployment row is meaningful before that.
    """

    __tablename__ = "repositories"

    repo_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    repo_name: Mapped[str]
    owner_login: Mapped[str]
    default_branch: Mapped[str] = mapped_column(default="main")
    deploy_yml_injected: Mapped[bool] = mapped_column(default=False)
    deploy_yml_workflow_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    deploy_status: Mapped[str] = mapped_column(default=DeployStatus.NOT_DEPLOYED)
    project_url: Mapped[str | None] = mapped_column(default=None)
    # Set while a provisioning or upload pipeline owns this repository.
    pipeline_locked_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped["User"] = relationship(back_populates="repositories")
    env_vars: Mapped[list["EnvVar"]] = relationship(
        back_populates="repository", cascade="all, delete-orphan", passive_deletes=True
    )
    deployment: Mapped["Deployment | None"] = relationship(
        back_populates="repository", cascade="all, delete-orphan", passive_deletes=True
    )


class EnvVar(Base):
    """
    A build-time environment variable for a repository.

    Values are stored in plain text: the CI runner downloads them with its
    repository token and writes them to .env before building.
    """

    __tablename__ = "repo_env_vars"
    __table_args__ = (UniqueConstraint("repo_id", "key", name="uq_repo_env_vars_repo_key"),)

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    repo_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("repositories.repo_id", ondelete="CASCADE"), index=True
    )
    key: Mapped[str]
    value: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    repository: Mapped["Repository"] = relationship(back_populates="env_vars")


class Deployment(Base):
    """
    The latest GitHub Actions run of a repository's deploy workflow.

    One row per repository: each new run overwrites the previous one.
    status follows GitHub's run status (queued, in_progress, completed)
    and conclusion is only set once the run is completed.
    """

    __tablename__ = "deployments"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_id)
    repo_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("repositories.repo_id", ondelete="CASCADE"), unique=True
    )
    workflow_run_id: Mapped[int] = mapped_column(BigInteger, unique=True)
    status: Mapped[str | None] = mapped_column(default=None)
    conclusion: Mapped[str | None] = mapped_column(default=None)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    html_url: Mapped[str | None] = mapped_column(default=None)
    project_url: Mapped[str | None] = mapped_column(unique=True, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    repository: Mapped["Repository"] = relationship(back_populates="deployment")
