"""
Integration tests for the deployment pipeline.

The pipeline runs against a real SQLite database; the vendor provider,
token cache and reconciler are fakes, and sleeping is recorded instead of
performed.
"""

import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import load_deployment, seed_deployment, seed_repository
from controlplane.enums import CloudVendor, DeploymentStatus
from controlplane.exceptions import GitHubAppNotInstalledError, SourceUploadError
from controlplane.models import Deployment
from controlplane.schemas import BuildResult, BuildStatusResult
from controlplane.services.infra.base import CloudInfraProvider
from controlplane.services.infra.factory import ProviderFactory
from controlplane.services.pipeline import PipelineOrchestrator
from controlplane.services.task_manager import PipelineTaskManager, TaskStatus

REGISTRY = "registry.example.com"


class FakeProvider(CloudInfraProvider):
    """Scripted provider: returns the given build statuses in order."""

    vendor = CloudVendor.NCP

    def __init__(self, statuses: Optional[List[BuildStatusResult]] = None, upload_error: Exception = None):
        self.statuses = list(statuses or [])
        self.upload_error = upload_error
        self.status_calls = 0
        self.triggered = []
        self.on_upload = None
        self.on_status = None

    async def upload_source_to_storage(self, credential, deployment):
        if self.on_upload:
            await self.on_upload(deployment)
        if self.upload_error:
            raise self.upload_error
        return f"builds/{deployment.id}/source.zip"

    async def ensure_build_project(self, repository):
        return f"build-project-{repository.app_name}"

    async def trigger_build(self, storage_key, deployment):
        repository = deployment.repository
        if not repository.external_build_project_id:
            repository.assign_build_project_id(await self.ensure_build_project(repository))
        self.triggered.append(storage_key)
        return BuildResult(
            external_build_id=f"build-{deployment.id}-{deployment.commit_hash[:7]}",
            tracking_handle="builds",
            image_uri=f"{REGISTRY}/{repository.app_name}:latest",
        )

    async def get_build_status(self, tracking_handle, build_id):
        self.status_calls += 1
        if self.on_status:
            await self.on_status()
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def scale_service(self, resource_name, replicas):
        pass


SUCCESS = BuildStatusResult(completed=True, succeeded=True, message="Build succeeded")
RUNNING = BuildStatusResult.running()


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def token_cache():
    cache = MagicMock()
    cache.get_installation_token = AsyncMock(return_value="ghs_token")
    return cache


@pytest.fixture
def reconciler():
    mock = MagicMock()
    mock.deploy = AsyncMock()
    return mock


@pytest.fixture
def sleep():
    return RecordingSleep()


def make_orchestrator(session_factory, provider, token_cache, reconciler, sleep, build_timeout_ms=1_800_000):
    return PipelineOrchestrator(
        session_factory=session_factory,
        token_cache=token_cache,
        provider_factory=ProviderFactory(providers={CloudVendor.NCP: provider}),
        reconciler=reconciler,
        poll_initial_interval_ms=10_000,
        poll_max_interval_ms=60_000,
        build_timeout_ms=build_timeout_ms,
        sleep=sleep,
    )


@pytest.mark.integration
class TestPipelineSuccess:
    """Test the happy path of PipelineOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_success_on_second_poll(self, session_factory, token_cache, reconciler, sleep):
        """Test that the pipeline reaches SUCCESS and deploys the built image."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([RUNNING, SUCCESS])
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.success
        assert result.status == DeploymentStatus.SUCCESS
        assert result.image_uri == f"{REGISTRY}/owner-repo:latest"
        assert sleep.calls == [10.0, 20.0]
        assert provider.status_calls == 2

        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.status == DeploymentStatus.SUCCESS.value
        assert deployment.storage_object_key == f"builds/{deployment_id}/source.zip"
        assert deployment.external_build_id == f"build-{deployment_id}-abc123d"
        assert deployment.finished_at is not None
        assert deployment.fail_reason is None
        assert deployment.repository.external_build_project_id == "build-project-owner-repo"

        token_cache.get_installation_token.assert_awaited_once_with("owner", "repo")
        app_name, image_uri, config, repo_id = reconciler.deploy.await_args.args
        assert app_name == "owner-repo"
        assert image_uri == f"{REGISTRY}/owner-repo:latest"
        assert config.container_port == 8080
        assert repo_id == repository_id

    @pytest.mark.asyncio
    async def test_status_image_overrides_build_result(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        built = BuildStatusResult(completed=True, succeeded=True, image_uri=f"{REGISTRY}/owner-repo@sha256:abc")
        orchestrator = make_orchestrator(session_factory, FakeProvider([built]), token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.image_uri == f"{REGISTRY}/owner-repo@sha256:abc"
        assert sleep.calls == [10.0]

    @pytest.mark.asyncio
    async def test_statuses_only_move_forward(self, session_factory, token_cache, reconciler, sleep):
        """Test that every observed status is at or after the previous one."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        observed = []

        async def record(*args):
            deployment = await load_deployment(session_factory, deployment_id)
            observed.append(deployment.deployment_status)

        provider = FakeProvider([RUNNING, SUCCESS])
        provider.on_upload = record
        provider.on_status = record
        reconciler.deploy.side_effect = record
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        await record()
        await orchestrator.run(deployment_id)
        await record()

        assert observed == [
            DeploymentStatus.PENDING,
            DeploymentStatus.UPLOADING_SOURCE,
            DeploymentStatus.BUILDING,
            DeploymentStatus.BUILDING,
            DeploymentStatus.DEPLOYING,
            DeploymentStatus.SUCCESS,
        ]
        ranks = [status.rank for status in observed]
        assert ranks == sorted(ranks)

    @pytest.mark.asyncio
    async def test_build_project_reused_by_second_deployment(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        first = await seed_deployment(session_factory, repository_id, commit_hash="1111111aaaa")
        second = await seed_deployment(session_factory, repository_id, commit_hash="2222222bbbb")
        provider = FakeProvider([SUCCESS])
        provider.ensure_build_project = AsyncMock(return_value="build-project-owner-repo")
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        assert (await orchestrator.run(first)).success
        assert (await orchestrator.run(second)).success

        provider.ensure_build_project.assert_awaited_once()


@pytest.mark.integration
class TestPipelineFailures:
    """Test that every failure ends in a FAILED deployment."""

    @pytest.mark.asyncio
    async def test_timeout_after_two_polls(self, session_factory, token_cache, reconciler, sleep):
        """Test that a 30s timeout allows status checks at 10s and 30s only."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([RUNNING])
        orchestrator = make_orchestrator(
            session_factory, provider, token_cache, reconciler, sleep, build_timeout_ms=30_000
        )

        result = await orchestrator.run(deployment_id)

        assert not result.success
        assert result.status == DeploymentStatus.FAILED
        assert result.error_code == "INFRA_003"
        assert provider.status_calls == 2
        assert sleep.calls == [10.0, 20.0]
        reconciler.deploy.assert_not_awaited()

        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.status == DeploymentStatus.FAILED.value
        assert "timed out" in deployment.fail_reason
        assert deployment.finished_at is not None

    @pytest.mark.asyncio
    async def test_intervals_are_capped(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([RUNNING] * 4 + [SUCCESS])
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        await orchestrator.run(deployment_id)

        assert sleep.calls == [10.0, 20.0, 40.0, 60.0, 60.0]

    @pytest.mark.asyncio
    async def test_zero_timeout_is_honoured(self, session_factory, token_cache, reconciler, sleep):
        """Test that an explicit zero timeout is used rather than the default."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([SUCCESS])
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep, build_timeout_ms=0)

        result = await orchestrator.run(deployment_id)

        assert orchestrator.build_timeout_ms == 0
        assert result.error_code == "INFRA_003"
        assert provider.status_calls == 0
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_build_failure(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        failed = BuildStatusResult.failed("ImagePullBackOff: Back-off pulling image")
        orchestrator = make_orchestrator(session_factory, FakeProvider([RUNNING, failed]), token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "INFRA_004"
        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.status == DeploymentStatus.FAILED.value
        assert deployment.fail_reason == "Build failed: ImagePullBackOff: Back-off pulling image"
        assert deployment.external_build_id is not None
        reconciler.deploy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_config(self, session_factory, token_cache, reconciler, sleep):
        """Test that a repository without config fails in the deploy stage."""
        repository_id = await seed_repository(session_factory, with_config=False)
        deployment_id = await seed_deployment(session_factory, repository_id)
        orchestrator = make_orchestrator(session_factory, FakeProvider([SUCCESS]), token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "DEPLOY_002"
        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.status == DeploymentStatus.FAILED.value
        assert "config not found" in deployment.fail_reason
        assert deployment.storage_object_key is not None
        reconciler.deploy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credential_failure(self, session_factory, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        token_cache = MagicMock()
        token_cache.get_installation_token = AsyncMock(side_effect=GitHubAppNotInstalledError("owner", "repo"))
        provider = FakeProvider([SUCCESS])
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "GH_001"
        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.status == DeploymentStatus.FAILED.value
        assert "not installed" in deployment.fail_reason
        assert deployment.storage_object_key is None
        assert provider.triggered == []

    @pytest.mark.asyncio
    async def test_upload_failure(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([SUCCESS], upload_error=SourceUploadError("HTTP 404"))
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "INFRA_001"
        assert (await load_deployment(session_factory, deployment_id)).fail_reason == "HTTP 404"

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_generic_code(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        reconciler.deploy.side_effect = RuntimeError("boom")
        orchestrator = make_orchestrator(session_factory, FakeProvider([SUCCESS]), token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "COMMON_004"
        assert (await load_deployment(session_factory, deployment_id)).fail_reason == "boom"

    @pytest.mark.asyncio
    async def test_unknown_vendor_fails_run(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory, cloud_vendor="GCP")
        deployment_id = await seed_deployment(session_factory, repository_id)
        orchestrator = make_orchestrator(session_factory, FakeProvider([SUCCESS]), token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert result.error_code == "INFRA_007"
        token_cache.get_installation_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_does_not_raise(self, session_factory, token_cache, reconciler, sleep):
        """Test that a deployment deleted mid-run still yields a result."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)

        async def delete_deployment(deployment):
            async with session_factory() as db:
                await db.delete(await db.get(Deployment, deployment_id))
                await db.commit()

        provider = FakeProvider([SUCCESS], upload_error=SourceUploadError("HTTP 500"))
        provider.on_upload = delete_deployment
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        result = await orchestrator.run(deployment_id)

        assert not result.success
        assert result.error_code == "INFRA_001"
        assert await load_deployment(session_factory, deployment_id) is None


@pytest.mark.integration
class TestPipelineRunGuard:
    """Test that only PENDING deployments start and runs never overlap."""

    @pytest.mark.asyncio
    async def test_unknown_deployment(self, session_factory, token_cache, reconciler, sleep):
        orchestrator = make_orchestrator(session_factory, FakeProvider([SUCCESS]), token_cache, reconciler, sleep)

        result = await orchestrator.run(9999)

        assert not result.success
        assert result.status is None
        assert result.error_code == "DEPLOY_001"

    @pytest.mark.asyncio
    async def test_finished_deployment_is_not_rerun(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        provider = FakeProvider([SUCCESS])
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)
        await orchestrator.run(deployment_id)

        result = await orchestrator.run(deployment_id)

        assert not result.success
        assert result.status == DeploymentStatus.SUCCESS
        assert result.error_code == "DEPLOY_003"
        assert len(provider.triggered) == 1
        assert (await load_deployment(session_factory, deployment_id)).status == DeploymentStatus.SUCCESS.value

    @pytest.mark.asyncio
    async def test_duplicate_start_is_ignored(self, session_factory, token_cache, reconciler, sleep):
        """Test that a second run for an active deployment leaves the first alone."""
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        release = asyncio.Event()
        uploading = asyncio.Event()

        async def hold(deployment):
            uploading.set()
            await release.wait()

        provider = FakeProvider([SUCCESS])
        provider.on_upload = hold
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)

        first = asyncio.create_task(orchestrator.run(deployment_id))
        await uploading.wait()

        duplicate = await orchestrator.run(deployment_id)
        release.set()
        result = await first

        assert not duplicate.success
        assert duplicate.error_code == "DEPLOY_003"
        assert result.success
        assert len(provider.triggered) == 1
        assert (await load_deployment(session_factory, deployment_id)).status == DeploymentStatus.SUCCESS.value


@pytest.mark.integration
class TestPipelineShutdown:
    """Test that cancelling a running pipeline still ends the deployment."""

    @pytest.mark.asyncio
    async def test_shutdown_marks_in_flight_deployment_failed(self, session_factory, token_cache, reconciler, sleep):
        repository_id = await seed_repository(session_factory)
        deployment_id = await seed_deployment(session_factory, repository_id)
        polling = asyncio.Event()

        async def hang():
            polling.set()
            await asyncio.Event().wait()

        provider = FakeProvider([RUNNING])
        provider.on_status = hang
        orchestrator = make_orchestrator(session_factory, provider, token_cache, reconciler, sleep)
        manager = PipelineTaskManager(max_concurrency=1)

        task = manager.start_background_task(deployment_id, orchestrator.run, deployment_id)
        await polling.wait()
        await manager.shutdown()

        assert task.status == TaskStatus.CANCELLED
        deployment = await load_deployment(session_factory, deployment_id)
        assert deployment.deployment_status == DeploymentStatus.FAILED
        assert deployment.fail_reason == "Pipeline cancelled during shutdown"
        assert deployment.finished_at is not None
        reconciler.deploy.assert_not_awaited()
