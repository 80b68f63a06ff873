"""
Deployments API Router.

Starts build-and-deploy pipelines and operates on the resulting workloads.
Control plane errors propagate to the application's exception handler,
which maps them onto HTTP status codes.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import (
    CreateDeploymentRequest,
    DeploymentResponse,
    DeploymentStatusResponse,
    ScaleRequest,
)
from ..services.deployment_service import DeploymentService, get_deployment_service

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@router.post("", response_model=DeploymentResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_deployment(
    request: CreateDeploymentRequest,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    """
    Create a deployment and start its pipeline.

    Returns as soon as the PENDING deployment is stored; poll
    GET /api/deployments/{id}/status for progress.
    """
    deployment = await service.create_deployment(
        db, request.repository_id, request.branch_name, request.commit_hash
    )
    return DeploymentResponse.model_validate(deployment)


@router.get("/repository/{repository_id}", response_model=List[DeploymentResponse])
async def list_deployments(
    repository_id: int,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    deployments = await service.list_deployments(db, repository_id)
    return [DeploymentResponse.model_validate(d) for d in deployments]


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(
    deployment_id: int,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    deployment = await service.get_deployment(db, deployment_id)
    return DeploymentResponse.model_validate(deployment)


@router.get("/{deployment_id}/status", response_model=DeploymentStatusResponse)
async def get_deployment_status(
    deployment_id: int,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    return await service.get_status(db, deployment_id)


@router.post("/{deployment_id}/scale")
async def scale_deployment(
    deployment_id: int,
    request: ScaleRequest,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    await service.scale(db, deployment_id, request.replicas)
    return {"deployment_id": deployment_id, "replicas": request.replicas}


@router.post("/{deployment_id}/restart")
async def restart_deployment(
    deployment_id: int,
    db: AsyncSession = Depends(get_db),
    service: DeploymentService = Depends(get_deployment_service)
):
    replicas = await service.restart(db, deployment_id)
    return {"deployment_id": deployment_id, "replicas": replicas}
