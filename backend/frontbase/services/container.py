"""
Service wiring.

Everything with a lifecycle (the shared httpx client, the storage client,
the background task supervisor) is built here once by the app lifespan and
handed to the components that need it.
"""

import asyncio
from dataclasses import dataclass
from functools import partial

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from frontbase import config
from frontbase.services.artifact_ingestor import ObjectStorage
from frontbase.services.deployment_monitor import DeploymentMonitor
from frontbase.services.domain_mapper import DomainMapper
from frontbase.services.github_service import GitHubClient
from frontbase.services.polling import PollPolicy, Sleep
from frontbase.services.storage_service import S3Storage
from frontbase.services.task_supervisor import TaskSupervisor
from frontbase.services.upload_pipeline import DeploymentPipeline
from frontbase.services.workflow_provisioner import WorkflowProvisioner


@dataclass
class Services:
    http: httpx.AsyncClient
    session_factory: async_sessionmaker[AsyncSession]
    storage: ObjectStorage
    domain_mapper: DomainMapper
    provisioner: WorkflowProvisioner
    monitor: DeploymentMonitor
    pipeline: DeploymentPipeline
    supervisor: TaskSupervisor
    github_api_url: str = config.GITHUB_API_URL

    def github(self, token: str) -> GitHubClient:
        """A GitHub client acting as the owner of `token`."""
        return GitHubClient(self.http, token, self.github_api_url)

    async def aclose(self) -> None:
        await self.supervisor.shutdown()
        await self.http.aclose()


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient | None = None,
    storage: ObjectStorage | None = None,
    domain_mapper: DomainMapper | None = None,
    github_api_url: str = config.GITHUB_API_URL,
    discovery_policy: PollPolicy | None = None,
    monitor_policy: PollPolicy | None = None,
    sleep: Sleep = asyncio.sleep,
    upload_dir: str = config.UPLOAD_DIR,
) -> Services:
    """Build the service graph; any collaborator can be swapped out for tests."""
    http = http or httpx.AsyncClient(timeout=30.0)
    storage = storage or S3Storage()
    domain_mapper = domain_mapper or DomainMapper(http)
    discovery_policy = discovery_policy or PollPolicy(
        config.WORKFLOW_DISCOVERY_ATTEMPTS,
        config.WORKFLOW_DISCOVERY_DELAY,
        config.POLL_BACKOFF_FACTOR,
        config.POLL_JITTER,
    )
    monitor_policy = monitor_policy or PollPolicy(
        config.RUN_MONITOR_ATTEMPTS,
        config.RUN_MONITOR_DELAY,
        config.POLL_BACKOFF_FACTOR,
        config.POLL_JITTER,
    )
    github_for = partial(GitHubClient, http, base_url=github_api_url)

    monitor = DeploymentMonitor(monitor_policy, sleep=sleep)
    provisioner = WorkflowProvisioner(
        github_for,
        discovery_policy,
        config.PIPELINE_LOCK_TTL_SECONDS,
        sleep=sleep,
    )
    pipeline = DeploymentPipeline(
        session_factory,
        storage,
        domain_mapper,
        monitor,
        github_for,
        upload_dir=upload_dir,
    )
    return Services(
        http=http,
        session_factory=session_factory,
        storage=storage,
        domain_mapper=domain_mapper,
        provisioner=provisioner,
        monitor=monitor,
        pipeline=pipeline,
        supervisor=TaskSupervisor(),
        github_api_url=github_api_url,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
