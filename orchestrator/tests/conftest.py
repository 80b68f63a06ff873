"""
Test configuration and fixtures for pytest.

Fixtures include: a file-backed SQLite database per test, seeded
repositories/configs, and small builders for Deployment objects.
"""

import sys
import os
from pathlib import Path
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

# Add the orchestrator directory to sys.path
orchestrator_dir = Path(__file__).parent.parent
sys.path.insert(0, str(orchestrator_dir))


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # CRITICAL: Set test environment variables BEFORE any controlplane imports
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["GITHUB_APP_ID"] = "12345"
    os.environ["GITHUB_API_BASE"] = "https://api.github.test"
    os.environ["S3_BUCKET_NAME"] = "test-builds"
    os.environ["S3_ENDPOINT_URL"] = "https://storage.example.com"
    os.environ["S3_REGION"] = "test-region"
    os.environ["REGISTRY_ENDPOINT"] = "registry.example.com"
    os.environ["K8S_NAMESPACE"] = "apps"
    os.environ["K8S_BUILD_NAMESPACE"] = "builds"

    # Import and clear settings cache after env vars are set
    from controlplane.config import get_settings
    get_settings.cache_clear()

    # Register custom markers
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "kubernetes: mark test as exercising Kubernetes manifests or API calls")


@pytest.fixture
def settings():
    from controlplane.config import get_settings
    return get_settings()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Async session factory bound to a fresh SQLite database file."""
    from controlplane.database import Base
    from controlplane import models  # noqa: F401  (registers tables)

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def seed_repository(
    session_factory,
    owner: str = "owner",
    repo_name: str = "repo",
    cloud_vendor: str = "NCP",
    with_config: bool = True,
    min_replicas: int = 1,
    domain_url: str = "repo.klepaas.io",
):
    """Insert a repository (and optionally its config); returns the repository id."""
    from controlplane.models import SourceRepository, DeploymentConfig

    async with session_factory() as session:
        repository = SourceRepository(
            owner=owner,
            repo_name=repo_name,
            git_url=f"https://github.com/{owner}/{repo_name}.git",
            cloud_vendor=cloud_vendor,
        )
        session.add(repository)
        await session.flush()

        if with_config:
            session.add(DeploymentConfig(
                repository_id=repository.id,
                min_replicas=min_replicas,
                max_replicas=max(min_replicas, 1),
                env_vars={"APP_ENV": "test"},
                container_port=8080,
                domain_url=domain_url,
            ))
        await session.commit()
        return repository.id


async def seed_deployment(session_factory, repository_id: int, commit_hash: str = "abc123def4567890"):
    """Insert a PENDING deployment; returns its id."""
    from controlplane.models import Deployment

    async with session_factory() as session:
        deployment = Deployment(
            repository_id=repository_id,
            branch_name="main",
            commit_hash=commit_hash,
        )
        session.add(deployment)
        await session.commit()
        return deployment.id


async def load_deployment(session_factory, deployment_id: int):
    from controlplane.models import Deployment

    async with session_factory() as session:
        return await session.get(Deployment, deployment_id)


@pytest.fixture
def make_deployment():
    """Build a transient Deployment with its repository attached."""
    from controlplane.models import Deployment, SourceRepository

    def _make(deployment_id=101, commit_hash="abc1234def5678", owner="owner", repo_name="repo",
              repository_id=1, build_project_id=None):
        repository = SourceRepository(
            id=repository_id,
            owner=owner,
            repo_name=repo_name,
            git_url=f"https://github.com/{owner}/{repo_name}.git",
            cloud_vendor="NCP",
            external_build_project_id=build_project_id,
        )
        return Deployment(
            id=deployment_id,
            repository_id=repository_id,
            repository=repository,
            branch_name="main",
            commit_hash=commit_hash,
        )

    return _make
