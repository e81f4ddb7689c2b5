"""Tests for the HTTP API, end to end against the fakes."""

import io

import pytest

from frontbase.auth import COOKIE_NAME, create_access_token
from frontbase.models import Repository
from frontbase.routers import upload as upload_router
from frontbase.services import record_store
from tests.conftest import OWNER, REPO, REPO_ID, WORKFLOW_ID, make_run, make_zip

SETUP_BODY = {
    "repoName": REPO,
    "ownerLogin": OWNER,
    "envVars": [{"key": "API_URL", "value": "https://api.acme.test"}],
    "buildCommand": "npm run build",
    "outputFolder": "dist",
}


def upload_form(**overrides):
    data = {"projectSlug": "acme-site", "ownerLogin": OWNER, "repoName": REPO, "githubId": "9001"}
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


async def test_health(client):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_requires_credentials(client):
    response = await client.get("/api/repositories")
    assert response.status_code == 401


async def test_me_accepts_cookie(client, user):
    client.cookies.set(COOKIE_NAME, create_access_token(user.id))
    response = await client.get("/api/auth/me")
    assert response.status_code == 200
    body = response.json()
    assert body["handle"] == OWNER
    assert "accessToken" not in body


async def test_repo_token_cannot_use_dashboard_routes(client, repo_headers):
    response = await client.get("/api/repositories", headers=repo_headers)
    assert response.status_code == 403


async def test_list_repositories_merges_local_state(client, session, user, auth_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)

    response = await client.get("/api/repositories", headers=auth_headers)

    assert response.status_code == 200
    [repo] = response.json()
    assert repo["repoId"] == REPO_ID
    assert repo["deployStatus"] == "pending"
    assert repo["deployYmlInjected"] is False


async def test_list_commits(client, session, user, auth_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)

    response = await client.get(f"/api/repositories/{REPO_ID}/commits", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()[0]["sha"] == "abc123"


async def test_setup_requires_build_settings(client, auth_headers):
    body = {"repoName": REPO, "ownerLogin": OWNER}
    response = await client.post(f"/api/workflows/{REPO_ID}/setup", json=body, headers=auth_headers)
    assert response.status_code == 400


async def test_setup_fills_framework_defaults(client, auth_headers, upstream):
    body = {"repoName": REPO, "ownerLogin": OWNER, "framework": "react"}
    response = await client.post(f"/api/workflows/{REPO_ID}/setup", json=body, headers=auth_headers)

    assert response.status_code == 200
    workflow = upstream.files[".github/workflows/deploy.yml"]["decoded"]
    assert 'cp -r "build" .frontbase/dist' in workflow


async def test_setup_without_push_permission_is_forbidden(client, auth_headers, upstream):
    upstream.add_repo(push=False)
    response = await client.post(f"/api/workflows/{REPO_ID}/setup", json=SETUP_BODY, headers=auth_headers)
    assert response.status_code == 403
    assert upstream.mutating_requests == []


async def test_setup_on_busy_repository_conflicts(client, session, user, auth_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.acquire_pipeline_lock(session, REPO_ID, ttl_seconds=600)

    response = await client.post(f"/api/workflows/{REPO_ID}/setup", json=SETUP_BODY, headers=auth_headers)

    assert response.status_code == 409


async def test_env_vars_for_ci_runner(client, session, user, auth_headers, repo_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)

    response = await client.post(
        f"/api/environment/variables/{REPO_ID}",
        json={"key": "MODE", "value": "prod"},
        headers=auth_headers,
    )
    assert response.status_code == 200

    response = await client.get(f"/api/environment/variables/{REPO_ID}", headers=repo_headers)
    assert response.json() == {"MODE": "prod"}

    response = await client.delete(f"/api/environment/variables/{REPO_ID}/MODE", headers=auth_headers)
    assert response.status_code == 200
    response = await client.delete(f"/api/environment/variables/{REPO_ID}/MODE", headers=auth_headers)
    assert response.status_code == 404


async def test_blank_env_key_is_rejected(client, session, user, auth_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    response = await client.post(
        f"/api/environment/variables/{REPO_ID}", json={"key": "  ", "value": "x"}, headers=auth_headers
    )
    assert response.status_code == 400


async def test_repo_token_is_scoped_to_its_repository(client, session, user, repo_headers, upstream):
    upstream.add_repo(name="other", repo_id=888)
    await record_store.upsert_repository(session, 888, "other", OWNER, user.id)

    response = await client.get("/api/environment/variables/888", headers=repo_headers)

    assert response.status_code == 403


async def test_status_before_any_run(client, session, user, auth_headers):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)

    response = await client.get(f"/api/deployments/{REPO_ID}/status", headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["conclusion"] is None
    assert body["message"] == "Deployment not yet started"


async def test_upload_missing_fields(client, session, user, repo_headers, tmp_path):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"x"})

    response = await client.post(
        f"/api/upload/{REPO_ID}",
        data=upload_form(projectSlug=None),
        files={"file": ("build.zip", archive.read_bytes(), "application/zip")},
        headers=repo_headers,
    )

    assert response.status_code == 400


async def test_upload_too_large(client, session, user, repo_headers, monkeypatch):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    monkeypatch.setattr(upload_router, "MAX_UPLOAD_BYTES", 10)

    response = await client.post(
        f"/api/upload/{REPO_ID}",
        data=upload_form(),
        files={"file": ("build.zip", io.BytesIO(b"x" * 100), "application/zip")},
        headers=repo_headers,
    )

    assert response.status_code == 413


async def test_interrupted_upload_leaves_no_partial_archive(tmp_path):
    class DroppedUpload:
        def __init__(self):
            self.reads = 0

        async def read(self, size=-1):
            self.reads += 1
            if self.reads == 1:
                return b"PK\x03\x04partial"
            raise OSError("connection reset")

    target = tmp_path / "archives" / "partial.zip"

    with pytest.raises(OSError):
        await upload_router._spool(DroppedUpload(), target, limit=1024)

    assert not target.exists()


async def test_upload_while_busy_conflicts(client, session, user, repo_headers, services, tmp_path):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.acquire_pipeline_lock(session, REPO_ID, ttl_seconds=600)
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"x"})

    response = await client.post(
        f"/api/upload/{REPO_ID}",
        data=upload_form(),
        files={"file": ("build.zip", archive.read_bytes(), "application/zip")},
        headers=repo_headers,
    )

    assert response.status_code == 409
    assert list((tmp_path / "uploads" / "archives").iterdir()) == []


async def test_setup_then_upload_deploys_site(
    client, session, user, auth_headers, repo_headers, services, upstream, storage, tmp_path
):
    response = await client.post(f"/api/workflows/{REPO_ID}/setup", json=SETUP_BODY, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["workflowId"] == WORKFLOW_ID

    repo = await session.get(Repository, REPO_ID, populate_existing=True)
    assert repo.deploy_status == "pending"
    assert repo.deploy_yml_injected is True
    assert repo.deploy_yml_workflow_id > 0

    upstream.runs = [make_run(71, "in_progress"), make_run(71, "completed", "success")]
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"<h1>acme</h1>"})
    response = await client.post(
        f"/api/upload/{REPO_ID}",
        data=upload_form(),
        files={"file": ("build.zip", archive.read_bytes(), "application/zip")},
        headers=repo_headers,
    )
    assert response.status_code == 202

    await services.supervisor.wait_idle()

    assert storage.objects == {"acme/site/index.html": b"<h1>acme</h1>"}
    assert upstream.kv == {"acme-site": "acme/site"}
    repo = await session.get(Repository, REPO_ID, populate_existing=True)
    assert repo.deploy_status == "deployed"
    assert repo.project_url == "https://acme-site.frontbase.space"

    response = await client.get(f"/api/deployments/{REPO_ID}/status", headers=auth_headers)
    body = response.json()
    assert body["status"] == "completed"
    assert body["conclusion"] == "success"
    assert body["deployStatus"] == "deployed"
    assert body["projectUrl"] == "https://acme-site.frontbase.space"

    response = await client.get("/api/deployments", headers=auth_headers)
    [item] = response.json()
    assert item["repoName"] == REPO
    assert item["workflowRunId"] == 71


async def test_status_poll_keeps_failed_pipeline_failed(
    client, session, user, auth_headers, repo_headers, services, upstream, storage, tmp_path
):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.set_workflow_info(session, REPO_ID, WORKFLOW_ID)
    upstream.runs = [make_run(72, "completed", "success")]
    upstream.failures[("PUT", "/client/v4/accounts/account-1/storage/kv/namespaces/namespace-1/values/acme-site")] = 500
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"<h1>acme</h1>"})

    response = await client.post(
        f"/api/upload/{REPO_ID}",
        data=upload_form(),
        files={"file": ("build.zip", archive.read_bytes(), "application/zip")},
        headers=repo_headers,
    )
    assert response.status_code == 202
    await services.supervisor.wait_idle()

    repo = await session.get(Repository, REPO_ID, populate_existing=True)
    assert repo.deploy_status == "failed"

    response = await client.get(f"/api/deployments/{REPO_ID}/status", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["workflowRunId"] == 72
    assert body["deployStatus"] == "failed"

    repo = await session.get(Repository, REPO_ID, populate_existing=True)
    assert repo.deploy_status == "failed"
    assert repo.project_url is None


async def test_redeploy_uses_commit_sha(client, session, user, auth_headers, upstream):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.set_workflow_info(session, REPO_ID, WORKFLOW_ID)

    response = await client.post(
        f"/api/workflows/{REPO_ID}/redeploy", json={"commitSha": "abc123"}, headers=auth_headers
    )

    assert response.status_code == 200
    assert upstream.dispatches == [{"workflow_id": WORKFLOW_ID, "ref": "abc123"}]


async def test_redeploy_rejected_by_github(client, session, user, auth_headers, upstream):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.set_workflow_info(session, REPO_ID, WORKFLOW_ID)
    path = f"/repos/{OWNER}/{REPO}/actions/workflows/{WORKFLOW_ID}/dispatches"
    upstream.failures[("POST", path)] = 422

    response = await client.post(f"/api/workflows/{REPO_ID}/redeploy", headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["detail"].startswith("Failed to trigger deployment")
