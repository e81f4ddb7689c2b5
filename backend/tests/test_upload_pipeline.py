"""Tests for the background deployment pipeline."""

import pytest

from frontbase.errors import ArtifactError
from frontbase.models import DeployStatus, Repository
from frontbase.services import record_store
from frontbase.services.upload_pipeline import project_url_for
from tests.conftest import OWNER, REPO, REPO_ID, WORKFLOW_ID, make_run, make_zip


@pytest.fixture
async def provisioned(session, user):
    await record_store.upsert_repository(session, REPO_ID, REPO, OWNER, user.id)
    await record_store.set_workflow_info(session, REPO_ID, WORKFLOW_ID)
    await record_store.acquire_pipeline_lock(session, REPO_ID, ttl_seconds=600)


async def repository(session) -> Repository:
    return await session.get(Repository, REPO_ID, populate_existing=True)


def test_project_url():
    assert project_url_for("Acme", "Site", "frontbase.space") == "https://acme-site.frontbase.space"


async def test_successful_deployment(session, provisioned, services, upstream, storage, tmp_path):
    upstream.runs = [make_run(61, "in_progress"), make_run(61, "completed", "success")]
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"<h1>acme</h1>"})

    await services.pipeline.run(REPO_ID, archive, "acme-site", OWNER, REPO)

    assert storage.objects == {"acme/site/index.html": b"<h1>acme</h1>"}
    assert upstream.kv == {"acme-site": "acme/site"}
    assert not archive.exists()

    repo = await repository(session)
    assert repo.deploy_status == DeployStatus.DEPLOYED
    assert repo.project_url == "https://acme-site.frontbase.space"
    assert repo.pipeline_locked_at is None

    deployment = await record_store.get_deployment(session, REPO_ID)
    assert deployment.workflow_run_id == 61
    assert deployment.conclusion == "success"
    assert deployment.project_url == "https://acme-site.frontbase.space"


async def test_failed_run_marks_repository_failed(session, provisioned, services, upstream, tmp_path):
    upstream.runs = [make_run(62, "completed", "failure")]
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"x"})

    await services.pipeline.run(REPO_ID, archive, "acme-site", OWNER, REPO)

    repo = await repository(session)
    assert repo.deploy_status == DeployStatus.FAILED


async def test_unfinished_run_leaves_deploying(session, provisioned, services, upstream, tmp_path):
    upstream.runs = [make_run(63, "in_progress")]
    archive = make_zip(tmp_path / "build.zip", {"dist/index.html": b"x"})

    await services.pipeline.run(REPO_ID, archive, "acme-site", OWNER, REPO)

    repo = await repository(session)
    assert repo.deploy_status == DeployStatus.DEPLOYING
    assert repo.pipeline_locked_at is None
    deployment = await record_store.get_deployment(session, REPO_ID)
    assert deployment.workflow_run_id == 63
    assert deployment.status == "in_progress"


async def test_bad_archive_marks_failed_and_releases_lock(session, provisioned, services, upstream, tmp_path):
    archive = make_zip(tmp_path / "build.zip", {"out/index.html": b"x"})

    with pytest.raises(ArtifactError):
        await services.pipeline.run(REPO_ID, archive, "acme-site", OWNER, REPO)

    repo = await repository(session)
    assert repo.deploy_status == DeployStatus.FAILED
    assert repo.pipeline_locked_at is None
    assert not archive.exists()
    assert upstream.kv == {}
