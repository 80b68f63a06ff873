from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base
from .enums import DeploymentStatus, CloudVendor
from .exceptions import InvalidStateTransitionError

DEFAULT_CONTAINER_PORT = 8080


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceRepository(Base):
    """A buildable source location plus its cached build-system resource."""
    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("owner", "repo_name", name="uq_repositories_owner_repo"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False)
    repo_name = Column(String(255), nullable=False)
    git_url = Column(String(500), nullable=False)
    cloud_vendor = Column(String(32), nullable=False, default=CloudVendor.NCP.value)

    # Build project id, created on the first build and reused afterwards
    external_build_project_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    deployments = relationship("Deployment", back_populates="repository", cascade="all, delete-orphan")

    @property
    def app_name(self) -> str:
        """
        Kubernetes app name shared by workload, service, ingress and image.

        This is `{owner}-{repo_name}` lowercased, since Kubernetes object names
        and registry repository names must be lowercase (GitHub owners and
        repository names may not be).
        """
        return f"{self.owner}-{self.repo_name}".lower()

    def assign_build_project_id(self, project_id: str) -> str:
        """
        Compare-and-set the build project id.

        Assigns only when no id is cached yet and returns the id in effect,
        so a late writer adopts the id that won instead of overwriting it.
        """
        if not self.external_build_project_id:
            self.external_build_project_id = project_id
        return self.external_build_project_id


class Deployment(Base):
    """One build-and-run attempt of a repository at a commit."""
    __tablename__ = "deployments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_name = Column(String(255), nullable=False)
    commit_hash = Column(String(64), nullable=False)

    # Object storage key of the staged source (e.g. builds/101/source.zip)
    storage_object_key = Column(String(500), nullable=True)
    external_build_id = Column(String(255), nullable=True)

    status = Column(String(32), nullable=False, default=DeploymentStatus.PENDING.value, index=True)
    fail_reason = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    repository = relationship("SourceRepository", back_populates="deployments", lazy="joined")

    def __init__(self, **kwargs):
        kwargs.setdefault("status", DeploymentStatus.PENDING.value)
        kwargs.setdefault("started_at", _utcnow())
        super().__init__(**kwargs)

    @property
    def deployment_status(self) -> DeploymentStatus:
        return DeploymentStatus(self.status)

    def _require(self, *allowed: DeploymentStatus) -> None:
        current = self.deployment_status
        if current not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise InvalidStateTransitionError(
                f"Deployment {self.id} is {current.value}, expected one of: {expected}"
            )

    def start_upload(self) -> None:
        self._require(DeploymentStatus.PENDING)
        self.status = DeploymentStatus.UPLOADING_SOURCE.value

    def mark_uploaded(self, storage_object_key: str) -> None:
        self._require(DeploymentStatus.UPLOADING_SOURCE)
        if self.storage_object_key:
            raise InvalidStateTransitionError(f"Deployment {self.id} already has a staged source")
        self.storage_object_key = storage_object_key
        self.status = DeploymentStatus.BUILDING.value

    def mark_building(self, external_build_id: str) -> None:
        # Status is already BUILDING after the upload
        self._require(DeploymentStatus.BUILDING)
        if self.external_build_id:
            raise InvalidStateTransitionError(f"Deployment {self.id} already has a build")
        self.external_build_id = external_build_id

    def start_deploying(self) -> None:
        self._require(DeploymentStatus.BUILDING)
        self.status = DeploymentStatus.DEPLOYING.value

    def complete_success(self) -> None:
        self._require(DeploymentStatus.DEPLOYING)
        self.status = DeploymentStatus.SUCCESS.value
        self.finished_at = _utcnow()

    def fail(self, reason: str) -> None:
        if self.deployment_status.is_terminal:
            raise InvalidStateTransitionError(
                f"Deployment {self.id} is already {self.status}"
            )
        self.status = DeploymentStatus.FAILED.value
        self.fail_reason = reason or "Unknown error"
        self.finished_at = _utcnow()


class DeploymentConfig(Base):
    """Desired runtime shape for a repository's workload."""
    __tablename__ = "deployment_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, unique=True)
    min_replicas = Column(Integer, nullable=False, default=1)
    max_replicas = Column(Integer, nullable=False, default=1)
    env_vars = Column(JSON, nullable=False, default=dict)  # {"NAME": "value"}
    container_port = Column(Integer, nullable=False, default=DEFAULT_CONTAINER_PORT)
    domain_url = Column(String(500), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def resolved_container_port(self) -> int:
        if not self.container_port or self.container_port <= 0:
            return DEFAULT_CONTAINER_PORT
        return self.container_port

    def update_config(self, min_replicas: int, max_replicas: int, env_vars: dict,
                      container_port: int, domain_url: str) -> None:
        self.min_replicas = min_replicas
        self.max_replicas = max_replicas
        self.env_vars = dict(env_vars or {})
        self.container_port = container_port
        self.domain_url = domain_url
