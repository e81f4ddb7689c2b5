"""Starting workflow runs through GitHub's workflow_dispatch event."""

import logging

from frontbase.errors import UpstreamError, WorkflowDispatchError
from frontbase.services.github_service import GitHubClient

logger = logging.getLogger(__name__)


async def dispatch(
    github: GitHubClient,
    owner: str,
    repo: str,
    workflow_id: int,
    ref: str | None = None,
    default_branch: str = "main",
) -> None:
    """
    Trigger a run of `workflow_id` on `ref` (the default branch if omitted).

    No retries: a rejected dispatch is reported to the user, who can try again.
    """
    target = ref or default_branch
    try:
        await github.dispatch_workflow(owner, repo, workflow_id, target)
    except UpstreamError as exc:
        logger.error("Dispatch of workflow %s on %s/%s@%s failed: %s", workflow_id, owner, repo, target, exc)
        raise WorkflowDispatchError(exc) from exc
    logger.info("Dispatched workflow %s on %s/%s@%s", workflow_id, owner, repo, target)
