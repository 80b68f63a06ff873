"""
Repositories API Router.

Registers source repositories and manages their deployment configs.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import (
    CreateRepositoryRequest,
    DeploymentConfigResponse,
    RepositoryResponse,
    UpdateDeploymentConfigRequest,
)
from ..services import repository_service

router = APIRouter(prefix="/api/repositories", tags=["repositories"])


@router.post("", response_model=RepositoryResponse, status_code=status.HTTP_201_CREATED)
async def create_repository(
    request: CreateRepositoryRequest,
    db: AsyncSession = Depends(get_db)
):
    repository = await repository_service.create_repository(db, request)
    return RepositoryResponse.model_validate(repository)


@router.get("", response_model=List[RepositoryResponse])
async def list_repositories(db: AsyncSession = Depends(get_db)):
    repositories = await repository_service.list_repositories(db)
    return [RepositoryResponse.model_validate(r) for r in repositories]


@router.get("/{repository_id}", response_model=RepositoryResponse)
async def get_repository(repository_id: int, db: AsyncSession = Depends(get_db)):
    repository = await repository_service.get_repository(db, repository_id)
    return RepositoryResponse.model_validate(repository)


@router.delete("/{repository_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_repository(repository_id: int, db: AsyncSession = Depends(get_db)):
    await repository_service.delete_repository(db, repository_id)


@router.get("/{repository_id}/config", response_model=DeploymentConfigResponse)
async def get_deployment_config(repository_id: int, db: AsyncSession = Depends(get_db)):
    config = await repository_service.get_deployment_config(db, repository_id)
    return DeploymentConfigResponse.model_validate(config)


@router.put("/{repository_id}/config", response_model=DeploymentConfigResponse)
async def update_deployment_config(
    repository_id: int,
    request: UpdateDeploymentConfigRequest,
    db: AsyncSession = Depends(get_db)
):
    config = await repository_service.update_deployment_config(db, repository_id, request)
    return DeploymentConfigResponse.model_validate(config)
