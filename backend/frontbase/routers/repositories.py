"""
Repositories router.

Lists the signed-in user's GitHub repositories, decorated with the local
deployment state of those that have been set up.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import CurrentUser, get_current_user
from frontbase.database import get_db
from frontbase.models import DeployStatus, Repository, User
from frontbase.schemas import CommitSummary, RepositorySummary
from frontbase.services import record_store
from frontbase.services.container import Services, get_services

router = APIRouter(prefix="/api/repositories", tags=["repositories"])


async def _get_user(db: AsyncSession, user_id: str) -> User:
    """Load the user behind a token, or 401 if they have been removed."""
    user = await record_store.get_user(db, user_id)
    if not user or not user.access_token:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def _get_user_repository(db: AsyncSession, repo_id: int, user_id: str) -> Repository:
    """Fetch a set-up repository and verify it belongs to the user, or 404."""
    repo = await record_store.get_user_repository(db, repo_id, user_id)
    if not repo:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repo


def _summary(remote: dict, local: Repository | None) -> RepositorySummary:
    return RepositorySummary(
        repo_id=remote["id"],
        repo_name=remote["name"],
        owner_login=remote["owner"]["login"],
        full_name=remote.get("full_name"),
        private=remote.get("private", False),
        html_url=remote.get("html_url"),
        description=remote.get("description"),
        default_branch=remote.get("default_branch"),
        updated_at=remote.get("updated_at"),
        deploy_yml_injected=local.deploy_yml_injected if local else False,
        deploy_status=local.deploy_status if local else DeployStatus.NOT_DEPLOYED,
        project_url=local.project_url if local else None,
    )


@router.get("", response_model=list[RepositorySummary])
async def list_repositories(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await _get_user(db, current.user_id)
    remote_repos = await services.github(user.access_token).list_user_repos()
    local = {r.repo_id: r for r in await record_store.list_user_repositories(db, user.id)}
    return [_summary(remote, local.get(remote["id"])) for remote in remote_repos]


@router.get("/{repo_id}", response_model=RepositorySummary)
async def get_repository(
    repo_id: int,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await _get_user(db, current.user_id)
    local = await record_store.get_user_repository(db, repo_id, user.id)
    github = services.github(user.access_token)
    if local:
        remote = await github.get_repo(local.owner_login, local.repo_name)
    else:
        # Not set up yet; GitHub can resolve a repository by id alone.
        remote = await github.get_repo_by_id(repo_id)
    return _summary(remote, local)


@router.get("/{repo_id}/commits", response_model=list[CommitSummary])
async def list_commits(
    repo_id: int,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """The 20 most recent commits, for picking one to redeploy."""
    user = await _get_user(db, current.user_id)
    repo = await _get_user_repository(db, repo_id, user.id)
    commits = await services.github(user.access_token).list_commits(repo.owner_login, repo.repo_name)
    return [
        CommitSummary(
            sha=c["sha"],
            message=c["commit"]["message"],
            author=(c["commit"].get("author") or {}).get("name"),
            date=(c["commit"].get("author") or {}).get("date"),
            html_url=c.get("html_url"),
        )
        for c in commits
    ]
