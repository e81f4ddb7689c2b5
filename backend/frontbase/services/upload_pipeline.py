"""
The post-build deployment pipeline.

Runs in the background after the CI runner has uploaded its artifact:

    deploying -> extract -> upload to storage -> map subdomain
      -> wait for the workflow run -> record deployment -> deployed | failed

The upload route acquires the repository's pipeline lock before spawning
run(); run() always releases it.
"""

import logging
from pathlib import Path
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontbase.config import PUBLIC_DOMAIN, UPLOAD_DIR
from frontbase.models import DeployStatus, Repository
from frontbase.services import artifact_ingestor, record_store
from frontbase.services.deployment_monitor import DeploymentMonitor, deploy_status_for
from frontbase.services.domain_mapper import DomainMapper, storage_prefix_for, subdomain_for
from frontbase.services.github_service import GitHubClient

logger = logging.getLogger(__name__)


def project_url_for(owner: str, repo: str, public_domain: str = PUBLIC_DOMAIN) -> str:
    return f"https://{subdomain_for(owner, repo)}.{public_domain}"


class DeploymentPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: artifact_ingestor.ObjectStorage,
        domain_mapper: DomainMapper,
        monitor: DeploymentMonitor,
        github_for: Callable[[str], GitHubClient],
        public_domain: str = PUBLIC_DOMAIN,
        upload_dir: str | Path = UPLOAD_DIR,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.domain_mapper = domain_mapper
        self.monitor = monitor
        self.github_for = github_for
        self.public_domain = public_domain
        self.upload_dir = upload_dir

    async def run(
        self,
        repo_id: int,
        archive_path: Path,
        project_slug: str,
        owner: str,
        repo: str,
    ) -> None:
        async with self.session_factory() as session:
            try:
                await self._deploy(session, repo_id, archive_path, project_slug, owner, repo)
            except Exception:
                logger.error("Deployment of %s/%s failed, marking it failed", owner, repo)
                await session.rollback()
                await self._mark_failed(session, repo_id)
                raise
            finally:
                await record_store.release_pipeline_lock(session, repo_id)

    async def _deploy(
        self,
        session: AsyncSession,
        repo_id: int,
        archive_path: Path,
        project_slug: str,
        owner: str,
        repo: str,
    ) -> None:
        logger.info("Deploying %s/%s from %s", owner, repo, Path(archive_path).name)
        await record_store.set_deploy_status(session, repo_id, DeployStatus.DEPLOYING)

        async with artifact_ingestor.ingested(archive_path, project_slug, self.upload_dir) as artifact:
            await artifact_ingestor.upload_directory(self.storage, artifact.output_dir, owner, repo)

        await self.domain_mapper.publish(subdomain_for(owner, repo), storage_prefix_for(owner, repo))

        repository = await session.get(Repository, repo_id)
        if repository is None or not repository.deploy_yml_workflow_id:
            logger.warning("%s/%s has no known workflow; skipping run tracking", owner, repo)
            return

        user = await record_store.get_user(session, repository.user_id)
        github = self.github_for(user.access_token)
        project_url = project_url_for(owner, repo, self.public_domain)

        observed: list[dict] = []
        run = await self.monitor.await_completion(
            github, owner, repo, repository.deploy_yml_workflow_id, on_observe=observed.append
        )

        if run is None:
            if observed:
                # Leave "deploying"; the status endpoint reconciles it later.
                await record_store.record_run(session, repo_id, observed[-1], project_url)
            logger.info("Run of %s/%s still in progress, leaving status as deploying", owner, repo)
            return

        await record_store.record_run(session, repo_id, run, project_url)
        status = deploy_status_for(run)
        await record_store.set_deploy_status(session, repo_id, status, project_url)
        logger.info("%s/%s is %s at %s", owner, repo, status, project_url)

    async def _mark_failed(self, session: AsyncSession, repo_id: int) -> None:
        try:
            await record_store.set_deploy_status(session, repo_id, DeployStatus.FAILED)
        except Exception:
            logger.exception("Could not mark repository %s as failed", repo_id)
