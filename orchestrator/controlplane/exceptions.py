"""
Error taxonomy for the build-and-deploy pipeline.

Every failure that can end a pipeline run is one of these types. The
pipeline turns any of them into a FAILED deployment whose fail_reason is
the exception message; the API layer maps `http_status` onto responses.
"""


class ControlPlaneError(Exception):
    """Base exception for control plane failures."""

    code = "COMMON_004"
    http_status = 500
    default_message = "Internal control plane error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class CredentialError(ControlPlaneError):
    """Installation token could not be issued (usually needs operator action)."""
    code = "GH_002"
    default_message = "Failed to issue GitHub App installation token"


class GitHubAppNotInstalledError(CredentialError):
    """The GitHub App is not installed on the repository."""
    code = "GH_001"
    http_status = 422

    def __init__(self, owner: str, repo: str):
        self.owner = owner
        self.repo = repo
        super().__init__(f"GitHub App is not installed on repository {owner}/{repo}")


class SourceUploadError(ControlPlaneError):
    code = "INFRA_001"
    default_message = "Failed to upload source to object storage"


class BuildTriggerError(ControlPlaneError):
    code = "INFRA_002"
    default_message = "Failed to trigger build"


class BuildTimeoutError(ControlPlaneError):
    code = "INFRA_003"
    default_message = "Build timed out"


class BuildFailedError(ControlPlaneError):
    code = "INFRA_004"
    default_message = "Build failed"


class DeployError(ControlPlaneError):
    code = "INFRA_005"
    default_message = "Failed to deploy to Kubernetes"


class ConfigNotFoundError(ControlPlaneError):
    code = "DEPLOY_002"
    http_status = 404
    default_message = "Deployment config not found"


class ConfigurationError(ControlPlaneError):
    """Unknown or unsupported cloud vendor."""
    code = "INFRA_007"
    http_status = 400
    default_message = "Invalid infrastructure configuration"


class DeploymentNotFoundError(ControlPlaneError):
    code = "DEPLOY_001"
    http_status = 404
    default_message = "Deployment not found"


class RepositoryNotFoundError(ControlPlaneError):
    code = "REPO_001"
    http_status = 404
    default_message = "Repository not found"


class RepositoryAlreadyExistsError(ControlPlaneError):
    code = "REPO_002"
    http_status = 409
    default_message = "Repository is already registered"


class InvalidStateTransitionError(ControlPlaneError):
    code = "DEPLOY_003"
    http_status = 409
    default_message = "Invalid deployment state transition"
