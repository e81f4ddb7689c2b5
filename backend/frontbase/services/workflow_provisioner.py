"""
Workflow provisioning.

Sets a repository up for deployment:

    Requested -> RepoRecorded -> AccessVerified -> SecretInjected
      -> EnvVarsReplaced -> WorkflowFileWritten -> WorkflowIdDiscovered
      -> Provisioned

Each step runs strictly after the previous one. A failure is raised as
ProvisioningError naming the step being entered; the repository row is
left in "pending" so calling provision() again resumes from the
idempotent RepoRecorded step without duplicating anything.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import create_repo_token
from frontbase.config import BACKEND_URL
from frontbase.errors import (
    FrontbaseError,
    ProvisioningError,
    RepositoryAccessError,
    UpstreamError,
    WorkflowDiscoveryTimeoutError,
)
from frontbase.models import User
from frontbase.services import record_store, workflow_dispatcher, workflow_template
from frontbase.services.access_verifier import verify_access
from frontbase.services.github_service import GitHubClient
from frontbase.services.polling import PollPolicy, Sleep, wait_between
from frontbase.services.secret_injector import inject_secret

logger = logging.getLogger(__name__)

WORKFLOW_PATH = ".github/workflows/deploy.yml"
SECRET_NAME = "ENV_ACCESS_TOKEN"

# (build command, output folder) for frameworks the dashboard offers.
FRAMEWORK_DEFAULTS: dict[str, tuple[str, str]] = {
    "react": ("npm run build", "build"),
    "vite": ("npm run build", "dist"),
    "vue": ("npm run build", "dist"),
    "angular": ("ng build --configuration production", "dist"),
    "nextjs": ("npm run build && npm run export", "out"),
    "svelte": ("npm run build", "public"),
}
# "custom" has no defaults: the build command and output folder must be given.
FRAMEWORKS = set(FRAMEWORK_DEFAULTS) | {"custom"}


class ProvisioningState(str, Enum):
    REQUESTED = "Requested"
    REPO_RECORDED = "RepoRecorded"
    ACCESS_VERIFIED = "AccessVerified"
    SECRET_INJECTED = "SecretInjected"
    ENV_VARS_REPLACED = "EnvVarsReplaced"
    WORKFLOW_FILE_WRITTEN = "WorkflowFileWritten"
    WORKFLOW_ID_DISCOVERED = "WorkflowIdDiscovered"
    PROVISIONED = "Provisioned"


@dataclass
class SetupRequest:
    repo_id: int
    repo_name: str
    owner_login: str
    build_command: str
    output_folder: str
    env_vars: list[tuple[str, str]] = field(default_factory=list)

    @property
    def project_slug(self) -> str:
        return f"{self.owner_login}-{self.repo_name}"


@dataclass
class ProvisionResult:
    workflow_id: int
    dispatched: bool
    state: ProvisioningState = ProvisioningState.PROVISIONED


class WorkflowProvisioner:
    def __init__(
        self,
        github_for: Callable[[str], GitHubClient],
        discovery_policy: PollPolicy,
        lock_ttl_seconds: int,
        backend_url: str = BACKEND_URL,
        sleep: Sleep = asyncio.sleep,
        dispatch_on_success: bool = True,
    ):
        self.github_for = github_for
        self.discovery_policy = discovery_policy
        self.lock_ttl_seconds = lock_ttl_seconds
        self.backend_url = backend_url.rstrip("/")
        self.sleep = sleep
        self.dispatch_on_success = dispatch_on_success

    async def provision(
        self, session: AsyncSession, user: User, request: SetupRequest
    ) -> ProvisionResult:
        github = self.github_for(user.access_token)
        owner, repo = request.owner_login, request.repo_name
        state = ProvisioningState.REQUESTED
        locked = False
        logger.info("Provisioning %s/%s (repo %s)", owner, repo, request.repo_id)

        try:
            state = ProvisioningState.REPO_RECORDED
            await record_store.upsert_repository(
                session, request.repo_id, repo, owner, user.id
            )
            await record_store.acquire_pipeline_lock(
                session, request.repo_id, self.lock_ttl_seconds
            )
            locked = True

            state = ProvisioningState.ACCESS_VERIFIED
            access = await verify_access(github, owner, repo)
            if not access.ok:
                raise RepositoryAccessError(access.reason)
            await record_store.set_default_branch(session, request.repo_id, access.default_branch)

            state = ProvisioningState.SECRET_INJECTED
            repo_token = create_repo_token(user.id, request.repo_id)
            await inject_secret(github, owner, repo, SECRET_NAME, repo_token)

            state = ProvisioningState.ENV_VARS_REPLACED
            stored = await record_store.replace_env_vars(
                session, request.repo_id, user.id, request.env_vars
            )
            logger.info("Stored %d env vars for %s/%s", stored, owner, repo)

            state = ProvisioningState.WORKFLOW_FILE_WRITTEN
            content = self.render_workflow(user, request, access.default_branch)
            await self.write_workflow_file(github, owner, repo, content)

            state = ProvisioningState.WORKFLOW_ID_DISCOVERED
            workflow_id = await self.discover_workflow_id(github, owner, repo)

            state = ProvisioningState.PROVISIONED
            await record_store.set_workflow_info(session, request.repo_id, workflow_id)
        except FrontbaseError as exc:
            logger.error("Provisioning %s/%s failed at %s: %s", owner, repo, state.value, exc)
            raise ProvisioningError(state.value, exc) from exc
        except Exception:
            # Database error: the session must be usable again to release the lock.
            await session.rollback()
            raise
        finally:
            if locked:
                await record_store.release_pipeline_lock(session, request.repo_id)

        logger.info("Provisioned %s/%s with workflow %s", owner, repo, workflow_id)

        dispatched = False
        if self.dispatch_on_success:
            try:
                await workflow_dispatcher.dispatch(
                    github, owner, repo, workflow_id, default_branch=access.default_branch
                )
                dispatched = True
            except FrontbaseError as exc:
                # Setup itself succeeded; the user can redeploy manually.
                logger.warning("Initial deployment of %s/%s not triggered: %s", owner, repo, exc)

        return ProvisionResult(workflow_id=workflow_id, dispatched=dispatched)

    def render_workflow(self, user: User, request: SetupRequest, default_branch: str) -> str:
        template = workflow_template.load_template()
        return workflow_template.render(
            template,
            {
                "BACKEND_URL": self.backend_url,
                "PROJECT_SLUG": request.project_slug,
                "OWNER_LOGIN": request.owner_login,
                "REPO_NAME": request.repo_name,
                "USER_EMAIL": user.email or "",
                "GITHUB_ID": user.github_id,
                "REPO_ID": request.repo_id,
                "DEFAULT_BRANCH": default_branch,
                "BUILD_COMMAND": request.build_command,
                "BUILD_DIR": request.output_folder,
            },
        )

    async def write_workflow_file(
        self, github: GitHubClient, owner: str, repo: str, content: str
    ) -> None:
        """Create the workflow file, or update it in place using its current sha."""
        existing = await github.get_file(owner, repo, WORKFLOW_PATH)
        if existing is None:
            await github.put_file(owner, repo, WORKFLOW_PATH, content, "Add Frontbase deploy workflow")
            logger.info("Created %s in %s/%s", WORKFLOW_PATH, owner, repo)
        else:
            await github.put_file(
                owner,
                repo,
                WORKFLOW_PATH,
                content,
                "Update Frontbase deploy workflow",
                sha=existing["sha"],
            )
            logger.info("Updated %s in %s/%s", WORKFLOW_PATH, owner, repo)

    async def discover_workflow_id(self, github: GitHubClient, owner: str, repo: str) -> int:
        """
        Find the id GitHub assigned to our workflow file.

        A freshly committed workflow takes a few seconds to show up in the
        workflow list, so poll within the discovery policy's budget.
        """
        policy = self.discovery_policy
        for attempt in range(policy.max_attempts):
            try:
                workflows = await github.list_workflows(owner, repo)
            except UpstreamError as exc:
                logger.warning("Listing workflows of %s/%s failed (attempt %d): %s", owner, repo, attempt + 1, exc)
                workflows = []

            for workflow in workflows:
                if workflow.get("path") == WORKFLOW_PATH:
                    return workflow["id"]

            logger.info("Workflow not listed yet for %s/%s (attempt %d/%d)", owner, repo, attempt + 1, policy.max_attempts)
            await wait_between(policy, attempt, self.sleep)

        raise WorkflowDiscoveryTimeoutError(WORKFLOW_PATH, policy.max_attempts)
