"""
Exception taxonomy for the deployment pipeline.

    UpstreamUnavailableError  GitHub / Cloudflare 5xx or network failure
    UpstreamRejectedError     4xx from a remote API (permission, not found, validation)
    IntegrityViolationError   generated workflow is broken or never became visible
    ArtifactError             uploaded archive is unusable
    PipelineBusyError         another pipeline already owns the repository

main.py maps each class to an HTTP response.
"""


class FrontbaseError(Exception):
    pass


class UpstreamError(FrontbaseError):
    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.message = message
        self.status_code = status_code
        if status_code is None:
            super().__init__(f"{service} error: {message}")
        else:
            super().__init__(f"{service} error ({status_code}): {message}")


class UpstreamUnavailableError(UpstreamError):
    pass


class UpstreamRejectedError(UpstreamError):
    pass


class IntegrityViolationError(FrontbaseError):
    pass


class TemplateIncompleteError(IntegrityViolationError):
    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        super().__init__(f"Unresolved template variables: {', '.join(tokens)}")


class WorkflowDiscoveryTimeoutError(IntegrityViolationError):
    def __init__(self, path: str, attempts: int):
        self.path = path
        self.attempts = attempts
        super().__init__(f"Workflow {path} not listed by GitHub after {attempts} attempts")


class ArtifactError(FrontbaseError):
    pass


class PipelineBusyError(FrontbaseError):
    def __init__(self, repo_id: int):
        self.repo_id = repo_id
        super().__init__(f"Another deployment pipeline is already running for repository {repo_id}")


class RepositoryAccessError(FrontbaseError):
    """The acting credential cannot push to the target repository."""


class ProvisioningError(FrontbaseError):
    """A workflow setup step failed. `step` names the state being entered."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Workflow setup failed at {step}: {cause}")


class WorkflowDispatchError(FrontbaseError):
    """GitHub refused to start a workflow run."""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Failed to trigger deployment: {cause}")
