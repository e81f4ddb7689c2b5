"""
Persistence for repositories, env vars and deployments.

All writes that must be idempotent go through INSERT ... ON CONFLICT
DO UPDATE, so retried setups and repeated status observations never
create duplicate rows. Functions take the caller's AsyncSession and
commit before returning.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.errors import PipelineBusyError
from frontbase.models import (
    Deployment,
    DeployStatus,
    EnvVar,
    Repository,
    User,
    generate_id,
    utcnow,
)

logger = logging.getLogger(__name__)

TERMINAL_RUN_STATUS = "completed"

# Progress order of GitHub run statuses; unknown statuses rank as queued.
RUN_STATUS_RANK = {
    "requested": 0,
    "queued": 0,
    "waiting": 0,
    "pending": 0,
    "in_progress": 1,
    TERMINAL_RUN_STATUS: 2,
}


def run_rank(status: str | None) -> int:
    return RUN_STATUS_RANK.get(status, 0)


def _insert(session: AsyncSession, table):
    """Dialect-specific INSERT that supports on_conflict_do_update()."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # GitHub timestamps are ISO 8601 with a trailing Z.
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# --- users ---


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    return await session.get(User, user_id)


async def upsert_github_user(
    session: AsyncSession, profile: dict, email: str | None, access_token: str
) -> User:
    """Create the user on first login; afterwards refresh the token and profile."""
    result = await session.execute(select(User).where(User.github_id == profile["id"]))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(github_id=profile["id"])
        session.add(user)
    user.handle = profile.get("login")
    user.display_name = profile.get("name")
    user.avatar_url = profile.get("avatar_url")
    user.profile_url = profile.get("html_url")
    if email:
        user.email = email
    user.access_token = access_token
    await session.commit()
    await session.refresh(user)
    return user


# --- repositories ---


async def get_user_repository(
    session: AsyncSession, repo_id: int, user_id: str
) -> Repository | None:
    repo = await session.get(Repository, repo_id)
    if repo is None or repo.user_id != user_id:
        return None
    return repo


async def list_user_repositories(session: AsyncSession, user_id: str) -> list[Repository]:
    result = await session.execute(
        select(Repository).where(Repository.user_id == user_id).order_by(Repository.created_at)
    )
    return list(result.scalars().all())


async def upsert_repository(
    session: AsyncSession, repo_id: int, repo_name: str, owner_login: str, user_id: str
) -> Repository:
    """
    Insert the repository as "pending" if absent.

    On conflict only the name and owner are refreshed: progress markers
    (deploy_status, deploy_yml_injected, workflow id) survive a retry.
    """
    now = utcnow()
    stmt = _insert(session, Repository).values(
        repo_id=repo_id,
        repo_name=repo_name,
        owner_login=owner_login,
        user_id=user_id,
        deploy_yml_injected=False,
        deploy_status=DeployStatus.PENDING,
        default_branch="main",
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Repository.repo_id],
        set_={"repo_name": repo_name, "owner_login": owner_login, "updated_at": now},
    )
    await session.execute(stmt)
    await session.commit()
    repo = await session.get(Repository, repo_id, populate_existing=True)
    return repo


async def set_default_branch(session: AsyncSession, repo_id: int, branch: str) -> None:
    await session.execute(
        update(Repository)
        .where(Repository.repo_id == repo_id)
        .values(default_branch=branch, updated_at=utcnow())
    )
    await session.commit()


async def set_workflow_info(session: AsyncSession, repo_id: int, workflow_id: int) -> None:
    await session.execute(
        update(Repository)
        .where(Repository.repo_id == repo_id)
        .values(deploy_yml_injected=True, deploy_yml_workflow_id=workflow_id, updated_at=utcnow())
    )
    await session.commit()


async def set_deploy_status(
    session: AsyncSession, repo_id: int, status: str, project_url: str | None = None
) -> None:
    values = {"deploy_status": status, "updated_at": utcnow()}
    if project_url is not None:
        values["project_url"] = project_url
    await session.execute(update(Repository).where(Repository.repo_id == repo_id).values(**values))
    await session.commit()


# --- pipeline lock ---


async def acquire_pipeline_lock(session: AsyncSession, repo_id: int, ttl_seconds: int) -> None:
    """
    Mark the repository as owned by a running pipeline.

    A single conditional UPDATE, so two concurrent callers cannot both win.
    Locks older than ttl_seconds are treated as abandoned and taken over.
    """
    now = utcnow()
    stale_before = now - timedelta(seconds=ttl_seconds)
    result = await session.execute(
        update(Repository)
        .where(
            Repository.repo_id == repo_id,
            or_(
                Repository.pipeline_locked_at.is_(None),
                Repository.pipeline_locked_at < stale_before,
            ),
        )
        .values(pipeline_locked_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount != 1:
        raise PipelineBusyError(repo_id)
    logger.debug("Acquired pipeline lock for repository %s", repo_id)


async def release_pipeline_lock(session: AsyncSession, repo_id: int) -> None:
    await session.execute(
        update(Repository)
        .where(Repository.repo_id == repo_id)
        .values(pipeline_locked_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.debug("Released pipeline lock for repository %s", repo_id)


# --- env vars ---


async def list_env_vars(session: AsyncSession, repo_id: int) -> list[EnvVar]:
    result = await session.execute(
        select(EnvVar).where(EnvVar.repo_id == repo_id).order_by(EnvVar.key)
    )
    return list(result.scalars().all())


async def replace_env_vars(
    session: AsyncSession, repo_id: int, user_id: str, env_vars: list[tuple[str, str]]
) -> int:
    """
    Replace the repository's env set wholesale in one transaction.

    Entries with a blank key are skipped; a later duplicate key wins.
    Returns the number of variables stored.
    """
    entries: dict[str, str] = {}
    for key, value in env_vars:
        if key and key.strip():
            entries[key.strip()] = value if value is not None else ""

    await session.execute(
        delete(EnvVar).where(EnvVar.repo_id == repo_id, EnvVar.user_id == user_id)
    )
    session.add_all(
        EnvVar(user_id=user_id, repo_id=repo_id, key=key, value=value)
        for key, value in entries.items()
    )
    await session.commit()
    return len(entries)


async def upsert_env_var(
    session: AsyncSession, repo_id: int, user_id: str, key: str, value: str
) -> EnvVar:
    now = utcnow()
    stmt = _insert(session, EnvVar).values(
        id=generate_id(),
        user_id=user_id,
        repo_id=repo_id,
        key=key,
        value=value,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[EnvVar.repo_id, EnvVar.key],
        set_={"value": value, "updated_at": now},
    )
    await session.execute(stmt)
    await session.commit()
    result = await session.execute(
        select(EnvVar)
        .where(EnvVar.repo_id == repo_id, EnvVar.key == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def delete_env_var(session: AsyncSession, repo_id: int, user_id: str, key: str) -> bool:
    result = await session.execute(
        delete(EnvVar).where(
            EnvVar.repo_id == repo_id, EnvVar.user_id == user_id, EnvVar.key == key
        )
    )
    await session.commit()
    return result.rowcount > 0


# --- deployments ---


async def get_deployment(session: AsyncSession, repo_id: int) -> Deployment | None:
    result = await session.execute(
        select(Deployment)
        .where(Deployment.repo_id == repo_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_user_deployments(session: AsyncSession, user_id: str) -> list[tuple[Deployment, Repository]]:
    result = await session.execute(
        select(Deployment, Repository)
        .join(Repository, Deployment.repo_id == Repository.repo_id)
        .where(Repository.user_id == user_id)
        .order_by(Deployment.created_at.desc())
    )
    return [(deployment, repo) for deployment, repo in result.all()]


async def record_run(
    session: AsyncSession, repo_id: int, run: dict, project_url: str | None
) -> Deployment:
    """
    Upsert the repository's deployment row from a GitHub workflow run.

    Keyed by repo_id: a new run replaces the previous one. An observation
    of the stored run that is behind its stored status (queued after
    in_progress, anything after completed)
    is ignored so out-of-order polls cannot move the status backwards.
    """
    existing = await get_deployment(session, repo_id)
    if (
        existing is not None
        and existing.workflow_run_id == run["id"]
        and run_rank(run.get("status")) < run_rank(existing.status)
    ):
        logger.info("Ignoring stale %s observation of run %s", run.get("status"), run["id"])
        return existing

    now = utcnow()
    values = {
        "workflow_run_id": run["id"],
        "status": run.get("status"),
        "conclusion": run.get("conclusion"),
        "started_at": _parse_timestamp(run.get("run_started_at") or run.get("created_at")),
        "completed_at": _parse_timestamp(run.get("updated_at"))
        if run.get("status") == TERMINAL_RUN_STATUS
        else None,
        "html_url": run.get("html_url"),
        "project_url": project_url,
        "updated_at": now,
    }
    stmt = _insert(session, Deployment).values(
        id=generate_id(), repo_id=repo_id, created_at=now, **values
    )
    stmt = stmt.on_conflict_do_update(index_elements=[Deployment.repo_id], set_=values)
    await session.execute(stmt)
    await session.commit()

    deployment = await get_deployment(session, repo_id)
    await session.refresh(deployment)
    return deployment


async def update_run_status(
    session: AsyncSession, deployment: Deployment, run: dict
) -> bool:
    """Write status/conclusion only if GitHub reports something newer."""
    if run.get("status") == deployment.status and run.get("conclusion") == deployment.conclusion:
        return False
    if run_rank(run.get("status")) < run_rank(deployment.status):
        return False
    deployment.status = run.get("status")
    deployment.conclusion = run.get("conclusion")
    if deployment.status == TERMINAL_RUN_STATUS:
        deployment.completed_at = _parse_timestamp(run.get("updated_at")) or utcnow()
    await session.commit()
    await session.refresh(deployment)
    return True
