"""
GitHub REST API client.

Thin async wrapper over the endpoints the deployment pipeline needs:
repository metadata, contents, Actions secrets, workflows and runs.
One GitHubClient is bound to one user's OAuth token; all clients share
the process-wide httpx.AsyncClient passed in by the service container.

Errors are normalised into the taxonomy in frontbase.errors:
4xx -> UpstreamRejectedError (with GitHub's message), 5xx and
transport failures -> UpstreamUnavailableError.

API docs: https://docs.github.com/en/rest
"""

import base64
import logging

import httpx

from frontbase.config import (
    GITHUB_API_URL,
    GITHUB_OAUTH_CLIENT_ID,
    GITHUB_OAUTH_CLIENT_SECRET,
)
from frontbase.errors import UpstreamRejectedError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

OAUTH_TOKEN_URL = "https://github.com/login/oauth/access_token"
OAUTH_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"


def _error_message(resp: httpx.Response) -> str:
    """Pull GitHub's error message out of a failed response."""
    try:
        body = resp.json()
        if isinstance(body, dict):
            return body.get("message") or body.get("error_description") or resp.text
    except ValueError:
        pass
    return resp.text or resp.reason_phrase


def raise_for_upstream(resp: httpx.Response, service: str = "GitHub") -> None:
    if resp.status_code < 400:
        return
    message = _error_message(resp)
    if resp.status_code >= 500:
        raise UpstreamUnavailableError(service, message, resp.status_code)
    raise UpstreamRejectedError(service, message, resp.status_code)


class GitHubClient:
    def __init__(self, http: httpx.AsyncClient, token: str, base_url: str = GITHUB_API_URL):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and raise on any non-2xx response."""
        url = f"{self.base_url}{path}"
        try:
            resp = await self.http.request(method, url, headers=self.headers, **kwargs)
        except httpx.TransportError as exc:
            logger.error("GitHub %s %s failed: %s", method, path, exc)
            raise UpstreamUnavailableError("GitHub", str(exc)) from exc
        raise_for_upstream(resp)
        return resp

    # --- users ---

    async def get_user(self) -> dict:
        return (await self._request("GET", "/user")).json()

    async def get_primary_email(self) -> str | None:
        emails = (await self._request("GET", "/user/emails")).json()
        for entry in emails:
            if entry.get("primary"):
                return entry.get("email")
        return None

    async def list_user_repos(self) -> list[dict]:
        resp = await self._request(
            "GET", "/user/repos", params={"per_page": 100, "sort": "updated"}
        )
        return resp.json()

    # --- repositories ---

    async def get_repo(self, owner: str, repo: str) -> dict:
        return (await self._request("GET", f"/repos/{owner}/{repo}")).json()

    async def get_repo_by_id(self, repo_id: int) -> dict:
        return (await self._request("GET", f"/repositories/{repo_id}")).json()

    async def list_commits(self, owner: str, repo: str, per_page: int = 20) -> list[dict]:
        resp = await self._request(
            "GET", f"/repos/{owner}/{repo}/commits", params={"per_page": per_page}
        )
        return resp.json()

    async def get_file(self, owner: str, repo: str, path: str) -> dict | None:
        """Return the contents entry for `path`, or None if the file does not exist."""
        try:
            resp = await self._request("GET", f"/repos/{owner}/{repo}/contents/{path}")
        except UpstreamRejectedError as exc:
            if exc.status_code == 404:
                return None
            raise
        return resp.json()

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        sha: str | None = None,
    ) -> dict:
        """Create a file, or update it when `sha` (its current blob hash) is given."""
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            payload["sha"] = sha
        resp = await self._request(
            "PUT", f"/repos/{owner}/{repo}/contents/{path}", json=payload
        )
        return resp.json()

    # --- actions secrets ---

    async def get_secrets_public_key(self, owner: str, repo: str) -> tuple[str, str]:
        """Return (key_id, base64 public key) used to seal repository secrets."""
        data = (
            await self._request("GET", f"/repos/{owner}/{repo}/actions/secrets/public-key")
        ).json()
        return data["key_id"], data["key"]

    async def put_secret(
        self, owner: str, repo: str, name: str, encrypted_value: str, key_id: str
    ) -> None:
        await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/actions/secrets/{name}",
            json={"encrypted_value": encrypted_value, "key_id": key_id},
        )

    # --- actions workflows and runs ---

    async def list_workflows(self, owner: str, repo: str) -> list[dict]:
        resp = await self._request(
            "GET", f"/repos/{owner}/{repo}/actions/workflows", params={"per_page": 100}
        )
        return resp.json().get("workflows", [])

    async def dispatch_workflow(self, owner: str, repo: str, workflow_id: int, ref: str) -> None:
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/dispatches",
            json={"ref": ref},
        )

    async def latest_workflow_run(self, owner: str, repo: str, workflow_id: int) -> dict | None:
        resp = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/runs",
            params={"per_page": 1},
        )
        runs = resp.json().get("workflow_runs") or []
        return runs[0] if runs else None

    async def get_workflow_run(self, owner: str, repo: str, run_id: int) -> dict:
        return (await self._request("GET", f"/repos/{owner}/{repo}/actions/runs/{run_id}")).json()


async def exchange_oauth_code(http: httpx.AsyncClient, code: str, redirect_uri: str) -> str:
    """Trade an OAuth authorization code for a user access token."""
    try:
        resp = await http.post(
            OAUTH_TOKEN_URL,
            headers={"Accept": "application/json"},
            data={
                "client_id": GITHUB_OAUTH_CLIENT_ID,
                "client_secret": GITHUB_OAUTH_CLIENT_SECRET,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
    except httpx.TransportError as exc:
        raise UpstreamUnavailableError("GitHub", str(exc)) from exc
    raise_for_upstream(resp)

    data = resp.json()
    token = data.get("access_token")
    if not token:
        # GitHub answers 200 with an "error" field for bad/expired codes.
        raise UpstreamRejectedError(
            "GitHub", data.get("error_description") or "No access token returned", 400
        )
    return token
