"""
Repository access check.

Runs before any mutating GitHub call so that setup on a repository the
user cannot push to fails without leaving secrets or files behind.
"""

import logging
from dataclasses import dataclass

from frontbase.errors import UpstreamRejectedError
from frontbase.services.github_service import GitHubClient

logger = logging.getLogger(__name__)


@dataclass
class AccessResult:
    ok: bool
    reason: str | None = None
    default_branch: str = "main"


async def verify_access(github: GitHubClient, owner: str, repo: str) -> AccessResult:
    try:
        repo_data = await github.get_repo(owner, repo)
    except UpstreamRejectedError as exc:
        logger.info("Access check for %s/%s rejected by GitHub: %s", owner, repo, exc)
        return AccessResult(ok=False, reason="Repository not found or no access")

    permissions = repo_data.get("permissions") or {}
    if not (permissions.get("push") or permissions.get("admin")):
        return AccessResult(ok=False, reason="No push permission to repository")

    return AccessResult(ok=True, default_branch=repo_data.get("default_branch") or "main")
