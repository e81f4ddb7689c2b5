"""
Artifact upload router.

The deploy workflow's last step POSTs build.zip here with its repository
token. The archive is spooled to disk, the repository's pipeline lock is
taken, and the rest of the deployment runs in the background; the runner
gets a 202 straight away.
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import CurrentUser, get_current_principal, require_repo_access
from frontbase.config import MAX_UPLOAD_BYTES, PIPELINE_LOCK_TTL_SECONDS
from frontbase.database import get_db
from frontbase.models import generate_id
from frontbase.routers.repositories import _get_user_repository
from frontbase.schemas import UploadAccepted
from frontbase.services import record_store
from frontbase.services.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

CHUNK_SIZE = 1024 * 1024


async def _spool(file: UploadFile, target: Path, limit: int) -> int:
    """Copy the upload to `target` in chunks, refusing anything over `limit` bytes."""
    target.parent.mkdir(parents=True, exist_ok=True)
    size = 0
    try:
        with open(target, "wb") as out:
            while chunk := await file.read(CHUNK_SIZE):
                size += len(chunk)
                if size > limit:
                    break
                out.write(chunk)
    except Exception:
        target.unlink(missing_ok=True)
        raise
    if size > limit:
        target.unlink(missing_ok=True)
        raise HTTPException(status_code=413, detail=f"Archive exceeds {limit} bytes")
    return size


@router.post("/{repo_id}", status_code=202, response_model=UploadAccepted)
async def upload_artifact(
    repo_id: int,
    file: UploadFile | None = File(None),
    project_slug: str | None = Form(None, alias="projectSlug"),
    owner_login: str | None = Form(None, alias="ownerLogin"),
    repo_name: str | None = Form(None, alias="repoName"),
    user_email: str | None = Form(None, alias="userEmail"),
    github_id: str | None = Form(None, alias="githubId"),
    principal: CurrentUser = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    require_repo_access(principal, repo_id)
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not (project_slug and owner_login and repo_name):
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: projectSlug, ownerLogin, or repoName",
        )
    await _get_user_repository(db, repo_id, principal.user_id)

    archive = Path(services.pipeline.upload_dir) / "archives" / f"{generate_id()}.zip"
    size = await _spool(file, archive, MAX_UPLOAD_BYTES)
    logger.info(
        "Received %d byte artifact for %s/%s (slug %s, github id %s, %s)",
        size, owner_login, repo_name, project_slug, github_id, user_email,
    )

    try:
        await record_store.acquire_pipeline_lock(db, repo_id, PIPELINE_LOCK_TTL_SECONDS)
    except Exception:
        archive.unlink(missing_ok=True)
        raise

    services.supervisor.spawn(
        f"deploy-{repo_id}",
        services.pipeline.run(repo_id, archive, project_slug, owner_login, repo_name),
    )
    return UploadAccepted(message="File received, processing in background.", repo_id=repo_id)
