"""
Environment variables router.

Per-repository build variables. The dashboard manages them; the CI runner
downloads them (with its repository token) into a .env file before
building. Values are stored and returned in plain text.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import CurrentUser, get_current_principal, get_current_user, require_repo_access
from frontbase.database import get_db
from frontbase.routers.repositories import _get_user_repository
from frontbase.schemas import EnvVarEntry, EnvVarResponse
from frontbase.services import record_store

router = APIRouter(prefix="/api/environment/variables", tags=["env_vars"])


@router.get("/{repo_id}")
async def get_env_vars(
    repo_id: int,
    principal: CurrentUser = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """All variables as a flat {key: value} map, the shape the workflow's jq step expects."""
    require_repo_access(principal, repo_id)
    await _get_user_repository(db, repo_id, principal.user_id)
    return {ev.key: ev.value for ev in await record_store.list_env_vars(db, repo_id)}


@router.post("/{repo_id}", response_model=EnvVarResponse)
async def set_env_var(
    repo_id: int,
    data: EnvVarEntry,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Set one variable; an existing key is overwritten."""
    key = data.key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="Key is required")
    await _get_user_repository(db, repo_id, current.user_id)

    return await record_store.upsert_env_var(db, repo_id, current.user_id, key, data.value)


@router.delete("/{repo_id}/{key}")
async def delete_env_var(
    repo_id: int,
    key: str,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_user_repository(db, repo_id, current.user_id)
    if not await record_store.delete_env_var(db, repo_id, current.user_id, key):
        raise HTTPException(status_code=404, detail="Variable not found")
    return {"message": f"Deleted {key}"}
