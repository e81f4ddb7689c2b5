"""
Pydantic schemas for request/response validation.

The dashboard speaks camelCase JSON (repoName, deployStatus, ...), so
every schema uses a camelCase alias generator while the Python side stays
snake_case. Responses are serialized by alias; requests accept either
spelling.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Auth ---


class UserResponse(CamelModel):
    """The signed-in user. The GitHub access token never leaves the server."""

    id: str
    github_id: int
    handle: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    profile_url: str | None = None
    email: str | None = None


# --- Repositories ---


class RepositorySummary(CamelModel):
    """A GitHub repository merged with what we know about its deployments."""

    repo_id: int
    repo_name: str
    owner_login: str
    full_name: str | None = None
    private: bool = False
    html_url: str | None = None
    description: str | None = None
    default_branch: str | None = None
    updated_at: datetime | None = None
    deploy_yml_injected: bool = False
    deploy_status: str = "not-deployed"
    project_url: str | None = None


class CommitSummary(CamelModel):
    sha: str
    message: str
    author: str | None = None
    date: datetime | None = None
    html_url: str | None = None


# --- Environment variables ---


class EnvVarEntry(CamelModel):
    key: str
    value: str = ""


class EnvVarResponse(CamelModel):
    key: str
    value: str
    updated_at: datetime


# --- Workflows ---


class WorkflowSetup(CamelModel):
    """
    Body of POST /api/workflows/{repo_id}/setup.

    buildCommand and outputFolder may be omitted when framework is given;
    the framework's usual values are filled in.
    """

    repo_name: str
    owner_login: str
    env_vars: list[EnvVarEntry] = Field(default_factory=list)
    build_command: str | None = None
    output_folder: str | None = None
    framework: str | None = None


class WorkflowSetupResponse(CamelModel):
    message: str
    workflow_id: int
    deploy_yml_injected: bool = True
    dispatched: bool


class RedeployRequest(CamelModel):
    commit_sha: str | None = None


# --- Deployments ---


class DeploymentResponse(CamelModel):
    repo_id: int
    workflow_run_id: int
    status: str | None = None
    conclusion: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    html_url: str | None = None
    project_url: str | None = None
    updated_at: datetime | None = None


class DeploymentListItem(DeploymentResponse):
    repo_name: str
    owner_login: str
    deploy_status: str


class DeploymentStatusResponse(CamelModel):
    status: str | None = None
    conclusion: str | None = None
    message: str | None = None
    workflow_run_id: int | None = None
    html_url: str | None = None
    project_url: str | None = None
    deploy_status: str | None = None


# --- Upload ---


class UploadAccepted(CamelModel):
    message: str
    repo_id: int
