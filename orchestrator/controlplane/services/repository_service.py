"""
Source repository registration and deployment config management.
"""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..enums import CloudVendor
from ..exceptions import ConfigNotFoundError, RepositoryAlreadyExistsError, RepositoryNotFoundError
from ..models import DEFAULT_CONTAINER_PORT, DeploymentConfig, SourceRepository
from ..schemas import CreateRepositoryRequest, UpdateDeploymentConfigRequest

logger = logging.getLogger(__name__)


async def create_repository(db: AsyncSession, request: CreateRepositoryRequest) -> SourceRepository:
    """
    Register a repository together with its default deployment config.

    The default config runs one replica on port 8080 behind
    {repo_name}.{app_domain}.

    Raises:
        RepositoryAlreadyExistsError: owner/repo_name is already registered
    """
    existing = await db.execute(
        select(SourceRepository).where(
            SourceRepository.owner == request.owner,
            SourceRepository.repo_name == request.repo_name,
        )
    )
    if existing.scalars().first() is not None:
        raise RepositoryAlreadyExistsError(f"Repository {request.owner}/{request.repo_name} is already registered")

    vendor = CloudVendor.from_string(request.cloud_vendor)
    repository = SourceRepository(
        owner=request.owner,
        repo_name=request.repo_name,
        git_url=request.git_url,
        cloud_vendor=vendor.value,
    )
    db.add(repository)
    await db.flush()

    db.add(DeploymentConfig(
        repository_id=repository.id,
        min_replicas=1,
        max_replicas=1,
        env_vars={},
        container_port=DEFAULT_CONTAINER_PORT,
        domain_url=f"{request.repo_name}.{get_settings().app_domain}".lower(),
    ))
    await db.commit()
    await db.refresh(repository)

    logger.info(f"Repository registered: {repository.owner}/{repository.repo_name} (id={repository.id})")
    return repository


async def list_repositories(db: AsyncSession) -> List[SourceRepository]:
    result = await db.execute(select(SourceRepository).order_by(SourceRepository.id))
    return list(result.scalars().all())


async def get_repository(db: AsyncSession, repository_id: int) -> SourceRepository:
    repository = await db.get(SourceRepository, repository_id)
    if repository is None:
        raise RepositoryNotFoundError(f"Repository {repository_id} not found")
    return repository


async def delete_repository(db: AsyncSession, repository_id: int) -> None:
    """Delete a repository, its config and its deployment history."""
    repository = await get_repository(db, repository_id)

    config = await _find_config(db, repository_id)
    if config is not None:
        await db.delete(config)

    await db.delete(repository)
    await db.commit()
    logger.info(f"Repository deleted: id={repository_id}")


async def _find_config(db: AsyncSession, repository_id: int):
    result = await db.execute(
        select(DeploymentConfig).where(DeploymentConfig.repository_id == repository_id)
    )
    return result.scalar_one_or_none()


async def get_deployment_config(db: AsyncSession, repository_id: int) -> DeploymentConfig:
    """
    Raises:
        RepositoryNotFoundError: Unknown repository
        ConfigNotFoundError: Repository has no config
    """
    await get_repository(db, repository_id)
    config = await _find_config(db, repository_id)
    if config is None:
        raise ConfigNotFoundError(f"Deployment config not found for repository {repository_id}")
    return config


async def update_deployment_config(
    db: AsyncSession,
    repository_id: int,
    request: UpdateDeploymentConfigRequest
) -> DeploymentConfig:
    config = await get_deployment_config(db, repository_id)
    config.update_config(
        min_replicas=request.min_replicas,
        max_replicas=request.max_replicas,
        env_vars=request.env_vars,
        container_port=request.container_port,
        domain_url=request.domain_url,
    )
    await db.commit()
    await db.refresh(config)

    logger.info(f"DeploymentConfig updated: repository_id={repository_id}")
    return config
