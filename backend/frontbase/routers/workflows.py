"""
Workflows router.

    POST /api/workflows/{repo_id}/setup     provision the deploy workflow
    POST /api/workflows/{repo_id}/redeploy  start another run of it
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import CurrentUser, get_current_user
from frontbase.database import get_db
from frontbase.routers.repositories import _get_user, _get_user_repository
from frontbase.schemas import RedeployRequest, WorkflowSetup, WorkflowSetupResponse
from frontbase.services import workflow_dispatcher
from frontbase.services.container import Services, get_services
from frontbase.services.workflow_provisioner import FRAMEWORK_DEFAULTS, FRAMEWORKS, SetupRequest

router = APIRouter(prefix="/api/workflows", tags=["workflows"])


def _build_settings(data: WorkflowSetup) -> tuple[str, str]:
    """Explicit values win; anything missing comes from the framework table."""
    default_command, default_folder = None, None
    if data.framework:
        if data.framework not in FRAMEWORKS:
            raise HTTPException(status_code=400, detail=f"Unknown framework: {data.framework}")
        default_command, default_folder = FRAMEWORK_DEFAULTS.get(data.framework, (None, None))

    build_command = data.build_command or default_command
    output_folder = data.output_folder or default_folder
    if not build_command or not output_folder:
        raise HTTPException(
            status_code=400,
            detail="buildCommand and outputFolder are required when no framework is given",
        )
    return build_command, output_folder


@router.post("/{repo_id}/setup", response_model=WorkflowSetupResponse)
async def setup_workflow(
    repo_id: int,
    data: WorkflowSetup,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Inject the deploy workflow into the repository.

    Runs the whole provisioning sequence in the request (it is bounded by
    the workflow discovery budget) and kicks off a first deployment.
    Calling it again on a set-up repository updates the workflow in place.
    """
    build_command, output_folder = _build_settings(data)
    user = await _get_user(db, current.user_id)

    result = await services.provisioner.provision(
        db,
        user,
        SetupRequest(
            repo_id=repo_id,
            repo_name=data.repo_name,
            owner_login=data.owner_login,
            build_command=build_command,
            output_folder=output_folder,
            env_vars=[(ev.key, ev.value) for ev in data.env_vars],
        ),
    )
    return WorkflowSetupResponse(
        message="Workflow set up successfully",
        workflow_id=result.workflow_id,
        dispatched=result.dispatched,
    )


@router.post("/{repo_id}/redeploy")
async def redeploy(
    repo_id: int,
    data: RedeployRequest | None = None,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Dispatch the workflow on the given commit, or on the default branch."""
    user = await _get_user(db, current.user_id)
    repo = await _get_user_repository(db, repo_id, user.id)
    if not repo.deploy_yml_workflow_id:
        raise HTTPException(status_code=400, detail="Workflow has not been set up for this repository")

    await workflow_dispatcher.dispatch(
        services.github(user.access_token),
        repo.owner_login,
        repo.repo_name,
        repo.deploy_yml_workflow_id,
        ref=data.commit_sha if data else None,
        default_branch=repo.default_branch,
    )
    return {"message": "Deployment triggered"}
