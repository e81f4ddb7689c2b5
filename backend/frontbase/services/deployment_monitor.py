"""
Watching GitHub Actions runs.

await_completion() is the background poll used after an artifact upload:
it checks the most recent run of the deploy workflow until GitHub reports
it completed, or gives up and returns None once the attempt budget is
spent. None means "still unknown", not "failed".

refresh_status() is the cheap, synchronous path used when the dashboard
polls: it re-reads one run by id and writes only when something changed.
It settles the repository's deploy status only for a pipeline that
published the site and then ran out of polls; a failed or still running
pipeline keeps the status it set.
"""

import asyncio
import logging
from typing import Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.errors import UpstreamError
from frontbase.models import Deployment, DeployStatus, Repository
from frontbase.services import record_store
from frontbase.services.github_service import GitHubClient
from frontbase.services.polling import PollPolicy, Sleep, wait_between

logger = logging.getLogger(__name__)

TERMINAL_STATUS = "completed"
ACTIVE_STATUSES = {"queued", "in_progress", "waiting", "requested", "pending"}

RunObserver = Callable[[dict], None]


def deploy_status_for(run: dict) -> str:
    """Repository deploy status implied by a completed run."""
    return DeployStatus.DEPLOYED if run.get("conclusion") == "success" else DeployStatus.FAILED


class DeploymentMonitor:
    def __init__(self, policy: PollPolicy, sleep: Sleep = asyncio.sleep):
        self.policy = policy
        self.sleep = sleep

    async def await_completion(
        self,
        github: GitHubClient,
        owner: str,
        repo: str,
        workflow_id: int,
        on_observe: RunObserver | None = None,
    ) -> dict | None:
        """
        Poll the latest run of `workflow_id` until it completes.

        Fetch errors count as ordinary attempts. `on_observe` receives every
        run seen, so callers can keep the last non-terminal observation.
        """
        for attempt in range(self.policy.max_attempts):
            try:
                run = await github.latest_workflow_run(owner, repo, workflow_id)
            except (UpstreamError, httpx.HTTPError) as exc:
                logger.warning(
                    "Polling runs of %s/%s failed (attempt %d/%d): %s",
                    owner, repo, attempt + 1, self.policy.max_attempts, exc,
                )
                run = None

            if run is not None:
                if on_observe is not None:
                    on_observe(run)
                if run.get("status") == TERMINAL_STATUS:
                    logger.info(
                        "Run %s of %s/%s completed (%s)", run.get("id"), owner, repo, run.get("conclusion")
                    )
                    return run
                logger.debug("Run %s of %s/%s is %s", run.get("id"), owner, repo, run.get("status"))

            await wait_between(self.policy, attempt, self.sleep)

        logger.info("Run of %s/%s not completed after %d polls", owner, repo, self.policy.max_attempts)
        return None


async def _awaiting_run(session: AsyncSession, repository: Repository) -> bool:
    """
    True when the upload pipeline has published the artifact and stopped
    watching the run before it completed. Only then may a status poll
    settle Repository.deploy_status; otherwise the pipeline owns it.
    """
    await session.refresh(repository)
    return repository.deploy_status == DeployStatus.DEPLOYING and repository.pipeline_locked_at is None


async def refresh_status(
    session: AsyncSession,
    github: GitHubClient,
    repository: Repository,
    project_url: str | None,
) -> Deployment | None:
    """
    Bring the stored deployment of `repository` up to date with GitHub.

    Remote failures are logged and the stored record is returned as is.
    Returns None when there is nothing to report yet.
    """
    owner, repo = repository.owner_login, repository.repo_name
    deployment = await record_store.get_deployment(session, repository.repo_id)

    if deployment is None:
        if not repository.deploy_yml_workflow_id:
            return None
        try:
            run = await github.latest_workflow_run(owner, repo, repository.deploy_yml_workflow_id)
        except UpstreamError as exc:
            logger.warning("Could not fetch latest run of %s/%s: %s", owner, repo, exc)
            return None
        if run is None:
            return None
        logger.info("Adopting run %s as deployment of %s/%s", run["id"], owner, repo)
        return await record_store.record_run(session, repository.repo_id, run, project_url)

    if deployment.status not in ACTIVE_STATUSES:
        return deployment

    try:
        run = await github.get_workflow_run(owner, repo, deployment.workflow_run_id)
    except UpstreamError as exc:
        logger.warning("Could not refresh run %s of %s/%s: %s", deployment.workflow_run_id, owner, repo, exc)
        return deployment

    if await record_store.update_run_status(session, deployment, run):
        logger.info("Run %s of %s/%s is now %s", run.get("id"), owner, repo, run.get("status"))
        if deployment.status == TERMINAL_STATUS and await _awaiting_run(session, repository):
            await record_store.set_deploy_status(
                session, repository.repo_id, deploy_status_for(run), deployment.project_url or project_url
            )
    return deployment
