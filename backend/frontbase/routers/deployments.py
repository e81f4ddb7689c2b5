"""
Deployments router.

Each repository keeps only its latest deployment. The dashboard polls
/status while a build runs; that endpoint reconciles the stored record
with GitHub before answering.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import CurrentUser, get_current_user
from frontbase.database import get_db
from frontbase.routers.repositories import _get_user, _get_user_repository
from frontbase.schemas import DeploymentListItem, DeploymentResponse, DeploymentStatusResponse
from frontbase.services import record_store
from frontbase.services.container import Services, get_services
from frontbase.services.deployment_monitor import refresh_status
from frontbase.services.upload_pipeline import project_url_for

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@router.get("", response_model=list[DeploymentListItem])
async def list_deployments(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Latest deployment of every repository the user owns, newest first."""
    rows = await record_store.list_user_deployments(db, current.user_id)
    return [
        DeploymentListItem(
            repo_id=d.repo_id,
            workflow_run_id=d.workflow_run_id,
            status=d.status,
            conclusion=d.conclusion,
            started_at=d.started_at,
            completed_at=d.completed_at,
            html_url=d.html_url,
            project_url=d.project_url,
            updated_at=d.updated_at,
            repo_name=repo.repo_name,
            owner_login=repo.owner_login,
            deploy_status=repo.deploy_status,
        )
        for d, repo in rows
    ]


@router.get("/{repo_id}", response_model=DeploymentResponse)
async def get_deployment(
    repo_id: int,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_user_repository(db, repo_id, current.user_id)
    deployment = await record_store.get_deployment(db, repo_id)
    if not deployment:
        raise HTTPException(status_code=404, detail="No deployment found")
    return deployment


@router.get("/{repo_id}/status", response_model=DeploymentStatusResponse)
async def get_deployment_status(
    repo_id: int,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await _get_user(db, current.user_id)
    repo = await _get_user_repository(db, repo_id, user.id)

    deployment = await refresh_status(
        db,
        services.github(user.access_token),
        repo,
        project_url_for(repo.owner_login, repo.repo_name, services.pipeline.public_domain),
    )
    await db.refresh(repo)
    if deployment is None:
        return DeploymentStatusResponse(
            status="pending",
            conclusion=None,
            message="Deployment not yet started",
            deploy_status=repo.deploy_status,
        )
    return DeploymentStatusResponse(
        status=deployment.status,
        conclusion=deployment.conclusion,
        workflow_run_id=deployment.workflow_run_id,
        html_url=deployment.html_url,
        project_url=deployment.project_url,
        deploy_status=repo.deploy_status,
    )
