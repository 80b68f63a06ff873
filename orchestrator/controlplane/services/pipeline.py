"""
Deployment pipeline.

Drives one deployment from PENDING to SUCCESS (or FAILED):

1. UPLOADING_SOURCE: issue an installation token and stage the source archive
2. BUILDING: submit the build and record its id
3. poll the build with exponential backoff until it finishes or times out
4. DEPLOYING: reconcile the Kubernetes resources for the built image
5. SUCCESS

Every stage commits its own transaction before the next one starts, so the
progress of earlier stages survives a later failure. Any error ends the run:
the deployment is reloaded, marked FAILED with the error message and
committed. A cancelled run (application shutdown) is marked FAILED the
same way before the cancellation propagates. Errors during that
bookkeeping are logged and swallowed so the worker never crashes.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import get_settings
from ..database import AsyncSessionLocal
from ..enums import DeploymentStatus
from ..exceptions import (
    BuildFailedError,
    BuildTimeoutError,
    ConfigNotFoundError,
    ControlPlaneError,
    DeploymentNotFoundError,
    InvalidStateTransitionError,
)
from ..models import Deployment, DeploymentConfig, SourceRepository
from ..schemas import BuildResult, BuildStatusResult, PipelineResult
from .github.token_cache import InstallationTokenCache, get_token_cache
from .infra.base import CloudInfraProvider
from .infra.factory import ProviderFactory, get_provider_factory
from .kubernetes.reconciler import KubernetesReconciler

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class PipelineOrchestrator:
    """Runs the build-and-deploy pipeline for one deployment at a time per id."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        token_cache: Optional[InstallationTokenCache] = None,
        provider_factory: Optional[ProviderFactory] = None,
        reconciler: Optional[KubernetesReconciler] = None,
        poll_initial_interval_ms: Optional[int] = None,
        poll_max_interval_ms: Optional[int] = None,
        build_timeout_ms: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.token_cache = token_cache or get_token_cache()
        self.provider_factory = provider_factory or get_provider_factory()
        self.reconciler = reconciler or KubernetesReconciler()
        if poll_initial_interval_ms is None:
            poll_initial_interval_ms = settings.pipeline_poll_initial_interval_ms
        if poll_max_interval_ms is None:
            poll_max_interval_ms = settings.pipeline_poll_max_interval_ms
        if build_timeout_ms is None:
            build_timeout_ms = settings.pipeline_build_timeout_ms
        self.poll_initial_interval_ms = poll_initial_interval_ms
        self.poll_max_interval_ms = poll_max_interval_ms
        self.build_timeout_ms = build_timeout_ms
        self._sleep = sleep

        # Deployment ids with a run in progress in this process
        self._active: Set[int] = set()

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def run(self, deployment_id: int) -> PipelineResult:
        """
        Run the pipeline for a deployment.

        Only a PENDING deployment starts a run, and only one run per id is
        active in this process. A duplicate start is logged and ignored.

        Returns:
            PipelineResult describing how the run ended
        """
        if deployment_id in self._active:
            logger.warning(f"[PIPELINE] Deployment {deployment_id} already has a running pipeline, ignoring")
            return self._ignored(deployment_id, None, "Pipeline is already running for this deployment")

        self._active.add(deployment_id)
        try:
            return await self._run(deployment_id)
        finally:
            self._active.discard(deployment_id)

    async def _run(self, deployment_id: int) -> PipelineResult:
        current = await self._current_status(deployment_id)
        if current is None:
            logger.error(f"[PIPELINE] Deployment {deployment_id} not found")
            error = DeploymentNotFoundError(f"Deployment {deployment_id} not found")
            return PipelineResult(
                deployment_id=deployment_id,
                success=False,
                status=None,
                error_code=error.code,
                error=error.message,
            )
        if current != DeploymentStatus.PENDING:
            logger.warning(f"[PIPELINE] Deployment {deployment_id} is {current.value}, not starting a run")
            return self._ignored(deployment_id, current, f"Deployment is {current.value}, expected PENDING")

        logger.info(f"[PIPELINE] Started deployment {deployment_id}")

        try:
            provider, storage_key = await self._upload_stage(deployment_id)
            build = await self._build_trigger_stage(deployment_id, provider, storage_key)
            status = await self._poll_build(deployment_id, provider, build)
            image_uri = status.image_uri or build.image_uri
            await self._deploy_stage(deployment_id, image_uri)
            await self._mark_success(deployment_id)
        except asyncio.CancelledError:
            logger.warning(f"[PIPELINE] Deployment {deployment_id} cancelled during shutdown")
            await asyncio.shield(self._mark_failed(deployment_id, "Pipeline cancelled during shutdown"))
            raise
        except Exception as e:
            logger.error(f"[PIPELINE] Deployment {deployment_id} failed: {e}", exc_info=True)
            await self._mark_failed(deployment_id, str(e))
            return PipelineResult(
                deployment_id=deployment_id,
                success=False,
                status=DeploymentStatus.FAILED,
                error_code=e.code if isinstance(e, ControlPlaneError) else ControlPlaneError.code,
                error=str(e) or type(e).__name__,
            )

        logger.info(f"[PIPELINE] ✅ Deployment {deployment_id} succeeded: {image_uri}")
        return PipelineResult(
            deployment_id=deployment_id,
            success=True,
            status=DeploymentStatus.SUCCESS,
            image_uri=image_uri,
        )

    @staticmethod
    def _ignored(deployment_id: int, status: Optional[DeploymentStatus], message: str) -> PipelineResult:
        return PipelineResult(
            deployment_id=deployment_id,
            success=False,
            status=status,
            error_code=InvalidStateTransitionError.code,
            error=message,
        )

    # =========================================================================
    # STAGES
    # =========================================================================

    async def _load(self, db: AsyncSession, deployment_id: int) -> Deployment:
        deployment = await db.get(Deployment, deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def _current_status(self, deployment_id: int) -> Optional[DeploymentStatus]:
        async with self.session_factory() as db:
            deployment = await db.get(Deployment, deployment_id)
            return deployment.deployment_status if deployment else None

    async def _upload_stage(self, deployment_id: int):
        async with self.session_factory() as db:
            deployment = await self._load(db, deployment_id)
            deployment.start_upload()
            await db.commit()

            repository = deployment.repository
            provider = self.provider_factory.get_provider(repository.cloud_vendor)

            credential = await self.token_cache.get_installation_token(repository.owner, repository.repo_name)
            storage_key = await provider.upload_source_to_storage(credential, deployment)

            deployment.mark_uploaded(storage_key)
            await db.commit()

        logger.info(f"[PIPELINE] Deployment {deployment_id} source staged at {storage_key}")
        return provider, storage_key

    async def _build_trigger_stage(
        self,
        deployment_id: int,
        provider: CloudInfraProvider,
        storage_key: str
    ) -> BuildResult:
        async with self.session_factory() as db:
            deployment = await self._load(db, deployment_id)
            # Row lock so concurrent first builds agree on one build project id
            await db.get(
                SourceRepository,
                deployment.repository_id,
                with_for_update=True,
                populate_existing=True,
            )

            build = await provider.trigger_build(storage_key, deployment)
            deployment.mark_building(build.external_build_id)
            await db.commit()

        logger.info(f"[PIPELINE] Deployment {deployment_id} build {build.external_build_id} submitted")
        return build

    async def _poll_build(
        self,
        deployment_id: int,
        provider: CloudInfraProvider,
        build: BuildResult
    ) -> BuildStatusResult:
        """
        Poll the build until it finishes.

        Sleeps first, then checks. Intervals double from the initial interval
        up to the cap; elapsed time is the sum of the nominal intervals, and
        no further check starts once it reaches the timeout.

        Raises:
            BuildFailedError: The build finished unsuccessfully
            BuildTimeoutError: Elapsed time reached the timeout first
        """
        interval = self.poll_initial_interval_ms
        elapsed = 0
        polls = 0

        while elapsed < self.build_timeout_ms:
            await self._sleep(interval / 1000)
            elapsed += interval
            interval = min(interval * 2, self.poll_max_interval_ms)

            status = await provider.get_build_status(build.tracking_handle, build.external_build_id)
            polls += 1
            logger.debug(
                f"[PIPELINE] Deployment {deployment_id} poll #{polls} "
                f"(elapsed={elapsed}ms): {status.message}"
            )

            if status.completed:
                if status.succeeded:
                    return status
                raise BuildFailedError(f"Build failed: {status.message}")

        raise BuildTimeoutError(f"Build timed out after {elapsed}ms ({polls} status checks)")

    async def _deploy_stage(self, deployment_id: int, image_uri: str) -> None:
        async with self.session_factory() as db:
            deployment = await self._load(db, deployment_id)
            deployment.start_deploying()
            await db.commit()

            repository = deployment.repository
            result = await db.execute(
                select(DeploymentConfig).where(DeploymentConfig.repository_id == repository.id)
            )
            config = result.scalar_one_or_none()
            if config is None:
                raise ConfigNotFoundError(
                    f"Deployment config not found for repository {repository.owner}/{repository.repo_name}"
                )

            await self.reconciler.deploy(repository.app_name, image_uri, config, repository.id)

    async def _mark_success(self, deployment_id: int) -> None:
        async with self.session_factory() as db:
            deployment = await self._load(db, deployment_id)
            deployment.complete_success()
            await db.commit()

    async def _mark_failed(self, deployment_id: int, reason: str) -> None:
        try:
            async with self.session_factory() as db:
                deployment = await self._load(db, deployment_id)
                deployment.fail(reason)
                await db.commit()
        except Exception as e:
            logger.error(
                f"[PIPELINE] Could not mark deployment {deployment_id} as failed: {e}",
                exc_info=True
            )


_orchestrator: Optional[PipelineOrchestrator] = None


def get_pipeline_orchestrator() -> PipelineOrchestrator:
    """Get the global pipeline orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator()
    return _orchestrator
