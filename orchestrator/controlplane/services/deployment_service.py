"""
Deployment operations used by the API layer.

create_deployment persists a PENDING deployment and hands the pipeline to
the background task manager, so the caller returns before any source is
staged. Scale and restart act on the running workload directly.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import DeploymentNotFoundError, RepositoryNotFoundError
from ..models import Deployment, DeploymentConfig, SourceRepository
from ..schemas import DeploymentStatusResponse
from .infra.factory import ProviderFactory, get_provider_factory
from .kubernetes.reconciler import KubernetesReconciler
from .pipeline import PipelineOrchestrator, get_pipeline_orchestrator
from .task_manager import PipelineTaskManager, get_task_manager

logger = logging.getLogger(__name__)


class DeploymentService:
    """Creates deployments and operates on their running workloads."""

    def __init__(
        self,
        pipeline: Optional[PipelineOrchestrator] = None,
        task_manager: Optional[PipelineTaskManager] = None,
        provider_factory: Optional[ProviderFactory] = None,
        reconciler: Optional[KubernetesReconciler] = None,
    ):
        self._pipeline = pipeline
        self.task_manager = task_manager or get_task_manager()
        self.provider_factory = provider_factory or get_provider_factory()
        self._reconciler = reconciler

    @property
    def pipeline(self) -> PipelineOrchestrator:
        if self._pipeline is None:
            self._pipeline = get_pipeline_orchestrator()
        return self._pipeline

    @property
    def reconciler(self) -> KubernetesReconciler:
        if self._reconciler is None:
            self._reconciler = self.pipeline.reconciler
        return self._reconciler

    async def create_deployment(
        self,
        db: AsyncSession,
        repository_id: int,
        branch_name: str,
        commit_hash: str
    ) -> Deployment:
        """
        Persist a PENDING deployment and start its pipeline in the background.

        The vendor's provider is resolved first, so an unsupported vendor
        fails before anything is persisted or any network call is made.

        Raises:
            RepositoryNotFoundError: Unknown repository
            ConfigurationError: Unknown or unsupported cloud vendor
        """
        repository = await db.get(SourceRepository, repository_id)
        if repository is None:
            raise RepositoryNotFoundError(f"Repository {repository_id} not found")

        self.provider_factory.get_provider(repository.cloud_vendor)

        deployment = Deployment(
            repository_id=repository.id,
            branch_name=branch_name,
            commit_hash=commit_hash,
        )
        db.add(deployment)
        await db.commit()
        await db.refresh(deployment)

        logger.info(
            f"[PIPELINE] Deployment {deployment.id} created for "
            f"{repository.owner}/{repository.repo_name}@{branch_name} ({commit_hash[:7]})"
        )

        self.task_manager.start_background_task(deployment.id, self.pipeline.run, deployment.id)
        return deployment

    async def get_deployment(self, db: AsyncSession, deployment_id: int) -> Deployment:
        deployment = await db.get(Deployment, deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def list_deployments(self, db: AsyncSession, repository_id: int) -> List[Deployment]:
        """List a repository's deployments, newest first."""
        if await db.get(SourceRepository, repository_id) is None:
            raise RepositoryNotFoundError(f"Repository {repository_id} not found")

        result = await db.execute(
            select(Deployment)
            .where(Deployment.repository_id == repository_id)
            .order_by(Deployment.id.desc())
        )
        return list(result.scalars().unique().all())

    async def get_status(self, db: AsyncSession, deployment_id: int) -> DeploymentStatusResponse:
        deployment = await self.get_deployment(db, deployment_id)
        return DeploymentStatusResponse(
            deployment_id=deployment.id,
            status=deployment.deployment_status,
            fail_reason=deployment.fail_reason,
        )

    async def scale(self, db: AsyncSession, deployment_id: int, replicas: int) -> None:
        """
        Set the replica count of the deployment's workload.

        Raises:
            DeploymentNotFoundError: Unknown deployment
            DeployError: The cluster rejected the change
        """
        if replicas < 0:
            raise ValueError("replicas must be >= 0")

        deployment = await self.get_deployment(db, deployment_id)
        repository = deployment.repository

        await self.reconciler.scale(repository.app_name, replicas)
        provider = self.provider_factory.get_provider(repository.cloud_vendor)
        await provider.scale_service(repository.app_name, replicas)

        logger.info(f"[K8S] Deployment {deployment_id} ({repository.app_name}) scaled to {replicas}")

    async def restart(self, db: AsyncSession, deployment_id: int) -> int:
        """
        Restart the workload by scaling to zero and back.

        The target is the configured minimum replica count, at least 1.

        Returns:
            The replica count the workload was restored to
        """
        deployment = await self.get_deployment(db, deployment_id)
        repository = deployment.repository

        result = await db.execute(
            select(DeploymentConfig).where(DeploymentConfig.repository_id == repository.id)
        )
        config = result.scalar_one_or_none()
        target = max(config.min_replicas if config else 1, 1)

        await self.reconciler.scale(repository.app_name, 0)
        await self.reconciler.scale(repository.app_name, target)

        logger.info(f"[K8S] Deployment {deployment_id} ({repository.app_name}) restarted with {target} replicas")
        return target


_deployment_service: Optional[DeploymentService] = None


def get_deployment_service() -> DeploymentService:
    """Get the global deployment service (FastAPI dependency)."""
    global _deployment_service
    if _deployment_service is None:
        _deployment_service = DeploymentService()
    return _deployment_service
