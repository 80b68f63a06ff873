"""
Value objects passed across the provider boundary and API request/response models.
"""

from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field

from .enums import DeploymentStatus, CloudVendor


# ============================================================================
# Provider boundary values (never persisted directly)
# ============================================================================

class BuildResult(BaseModel):
    """Result of submitting a build."""
    external_build_id: str = Field(..., description="Provider's build identifier")
    tracking_handle: str = Field(..., description="Opaque handle used to poll the build")
    image_uri: str = Field(..., description="Destination image URI")


class BuildStatusResult(BaseModel):
    """Snapshot of a build's progress."""
    completed: bool = Field(..., description="Whether the build reached a terminal state")
    succeeded: bool = Field(False, description="Whether the terminal state is a success")
    image_uri: Optional[str] = Field(None, description="Built image URI, when known")
    message: str = Field("", description="Human-readable status message")

    @classmethod
    def running(cls, message: str = "Build is running") -> "BuildStatusResult":
        return cls(completed=False, succeeded=False, message=message)

    @classmethod
    def failed(cls, message: str, image_uri: Optional[str] = None) -> "BuildStatusResult":
        return cls(completed=True, succeeded=False, image_uri=image_uri, message=message)


class PipelineResult(BaseModel):
    """Outcome of one pipeline run."""
    deployment_id: int
    success: bool
    status: Optional[DeploymentStatus] = Field(None, description="Final status, unknown when the run was not started")
    image_uri: Optional[str] = None
    error_code: Optional[str] = Field(None, description="Taxonomy code when the run failed")
    error: Optional[str] = Field(None, description="Failure reason when the run failed")


# ============================================================================
# API models
# ============================================================================

class CreateRepositoryRequest(BaseModel):
    owner: str
    repo_name: str
    git_url: str
    cloud_vendor: CloudVendor = CloudVendor.NCP


class RepositoryResponse(BaseModel):
    id: int
    owner: str
    repo_name: str
    git_url: str
    cloud_vendor: str
    external_build_project_id: Optional[str]

    class Config:
        from_attributes = True


class UpdateDeploymentConfigRequest(BaseModel):
    min_replicas: int = Field(1, ge=0)
    max_replicas: int = Field(1, ge=0)
    env_vars: Dict[str, str] = Field(default_factory=dict)
    container_port: int = 8080
    domain_url: Optional[str] = None


class DeploymentConfigResponse(BaseModel):
    repository_id: int
    min_replicas: int
    max_replicas: int
    env_vars: Dict[str, str]
    container_port: int
    domain_url: Optional[str]

    class Config:
        from_attributes = True


class CreateDeploymentRequest(BaseModel):
    repository_id: int
    branch_name: str
    commit_hash: str = Field(..., min_length=7)


class DeploymentResponse(BaseModel):
    id: int
    repository_id: int
    branch_name: str
    commit_hash: str
    storage_object_key: Optional[str]
    external_build_id: Optional[str]
    status: DeploymentStatus
    fail_reason: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeploymentStatusResponse(BaseModel):
    deployment_id: int
    status: DeploymentStatus
    fail_reason: Optional[str]


class ScaleRequest(BaseModel):
    replicas: int = Field(..., ge=0)
