"""
Naver Cloud Platform provider.

Source is staged in NCP Object Storage (S3-compatible) and built in-cluster
on NKS by a Kaniko Job that pushes to NCP Container Registry.

- Build project: a per-repository ConfigMap in the build namespace that
  records the image name and registry. Its name is the repository's
  external_build_project_id.
- Build id: the Job name. Tracking handle: the build namespace.
"""

import logging
import re
import zipfile
from typing import List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from ...config import get_settings
from ...enums import CloudVendor
from ...exceptions import BuildFailedError, BuildTriggerError, SourceUploadError
from ...models import Deployment, SourceRepository
from ...schemas import BuildResult, BuildStatusResult
from ..build.archive import strip_top_level_directory
from ..build.job_builder import BuildJobBuilder, image_annotation_key
from ..github.app_client import GitHubAppClient
from ..kubernetes.client import KubernetesClient, get_k8s_client
from ..storage import ObjectStorage, build_source_key
from .base import CloudInfraProvider

logger = logging.getLogger(__name__)

# Waiting reasons after which the build container will never start
PERMANENT_WAITING_REASONS = {
    "ImagePullBackOff",
    "ErrImagePull",
    "CreateContainerConfigError",
    "InvalidImageName",
}


def build_project_name(repository: SourceRepository) -> str:
    name = f"build-project-{repository.app_name}"
    return re.sub(r"[^a-z0-9-]", "-", name.lower()).strip("-")[:63]


def image_uri_for(registry_endpoint: str, repository: SourceRepository) -> str:
    """Destination image: {registry}/{owner}-{repo}:latest"""
    return f"{registry_endpoint}/{repository.app_name}:latest"


class NcpInfraProvider(CloudInfraProvider):
    """NCP Object Storage + in-cluster Kaniko builds on NKS."""

    vendor = CloudVendor.NCP

    def __init__(
        self,
        github_client: Optional[GitHubAppClient] = None,
        storage: Optional[ObjectStorage] = None,
        k8s_client: Optional[KubernetesClient] = None,
        job_builder: Optional[BuildJobBuilder] = None,
    ):
        # Clients are created on first use so resolving a provider never
        # touches the network
        self.settings = get_settings()
        self._github = github_client
        self._storage = storage
        self._k8s = k8s_client
        self.job_builder = job_builder or BuildJobBuilder()
        self.build_namespace = self.job_builder.namespace

    @property
    def github(self) -> GitHubAppClient:
        if self._github is None:
            self._github = GitHubAppClient()
        return self._github

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = ObjectStorage()
        return self._storage

    @property
    def k8s(self) -> KubernetesClient:
        if self._k8s is None:
            self._k8s = get_k8s_client()
        return self._k8s

    # =========================================================================
    # SOURCE STAGING
    # =========================================================================

    async def upload_source_to_storage(self, credential: str, deployment: Deployment) -> str:
        repository = deployment.repository
        key = build_source_key(deployment.id)

        archive = await self.github.download_zipball(
            repository.owner, repository.repo_name, deployment.commit_hash, credential
        )

        try:
            repackaged = strip_top_level_directory(archive)
        except zipfile.BadZipFile as e:
            raise SourceUploadError(
                f"Source archive for {repository.owner}/{repository.repo_name} is not a zip file"
            ) from e

        logger.info(
            f"[BUILD] Repackaged source for deployment {deployment.id}: "
            f"{len(archive)} -> {len(repackaged)} bytes"
        )

        await self.storage.upload_bytes(
            key,
            repackaged,
            metadata={
                "deployment-id": str(deployment.id),
                "commit-sha": deployment.commit_hash,
            },
        )
        return key

    # =========================================================================
    # BUILDS
    # =========================================================================

    async def ensure_build_project(self, repository: SourceRepository) -> str:
        name = build_project_name(repository)
        config_map = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=self.build_namespace,
                labels={
                    "managed-by": self.settings.product_name,
                    "repository-id": str(repository.id),
                },
            ),
            data={
                "repository": f"{repository.owner}/{repository.repo_name}",
                "image": repository.app_name,
                "registry": self.settings.registry_endpoint,
            },
        )

        try:
            created = await self.k8s.create_config_map_if_not_exists(config_map, self.build_namespace)
        except Exception as e:
            raise BuildTriggerError(f"Failed to create build project {name}: {e}") from e

        if created:
            logger.info(f"[BUILD] Created build project {name} for {repository.owner}/{repository.repo_name}")
        return name

    async def trigger_build(self, storage_key: str, deployment: Deployment) -> BuildResult:
        repository = deployment.repository

        if not repository.external_build_project_id:
            project_id = await self.ensure_build_project(repository)
            repository.assign_build_project_id(project_id)

        image_uri = image_uri_for(self.settings.registry_endpoint, repository)
        job = self.job_builder.build(deployment, storage_key, image_uri)

        try:
            await self.k8s.create_job(job, self.build_namespace)
        except Exception as e:
            logger.error(f"[BUILD] Job creation failed for deployment {deployment.id}: {e}", exc_info=True)
            raise BuildTriggerError(f"Failed to create build job {job.metadata.name}: {e}") from e

        logger.info(f"[BUILD] Job {job.metadata.name} submitted for deployment {deployment.id} -> {image_uri}")
        return BuildResult(
            external_build_id=job.metadata.name,
            tracking_handle=self.build_namespace,
            image_uri=image_uri,
        )

    async def get_build_status(self, tracking_handle: str, build_id: str) -> BuildStatusResult:
        namespace = tracking_handle

        try:
            job = await self.k8s.read_job(build_id, namespace)
            if job is None:
                return BuildStatusResult.failed(f"Build job {build_id} not found in {namespace}")

            image_uri = (job.metadata.annotations or {}).get(
                image_annotation_key(self.settings.product_name)
            )
            status = job.status or client.V1JobStatus()

            if status.succeeded and status.succeeded > 0:
                return BuildStatusResult(
                    completed=True, succeeded=True, image_uri=image_uri, message="Build succeeded"
                )

            if status.failed and status.failed > 0:
                return BuildStatusResult.failed(self._job_failure_message(job), image_uri=image_uri)

            # The Job only counts pods whose containers ran, so look for
            # pods that will never get that far
            pods = await self.k8s.list_job_pods(build_id, namespace)
            reason = await self._detect_pod_failure(pods, namespace)
        except ApiException as e:
            logger.error(f"[BUILD] Status check failed for {build_id}: {e}", exc_info=True)
            raise BuildFailedError(f"Failed to read status of build job {build_id}: {e.reason}") from e

        if reason:
            logger.warning(f"[BUILD] Early failure detected for {build_id}: {reason}")
            return BuildStatusResult.failed(reason, image_uri=image_uri)

        logger.debug(f"[BUILD] Job {build_id} still running (active={status.active})")
        return BuildStatusResult.running()

    @staticmethod
    def _job_failure_message(job: client.V1Job) -> str:
        for condition in (job.status.conditions or []):
            if condition.type == "Failed" and condition.status == "True":
                detail = condition.message or condition.reason
                if detail:
                    return f"Build job failed: {detail}"
        return "Build job failed"

    async def _detect_pod_failure(self, pods: List[client.V1Pod], namespace: str) -> Optional[str]:
        """
        Check the build pods for failures the Job has not reported yet.

        Checks run in a fixed order and the first match wins.
        """
        for pod in pods:
            pod_status = pod.status
            if pod_status and pod_status.phase == "Failed":
                return f"Build pod failed: {pod_status.reason or pod_status.message or 'unknown reason'}"

        for pod in pods:
            pod_name = pod.metadata.name
            for cs in (pod.status.init_container_statuses if pod.status else None) or []:
                terminated = cs.state.terminated if cs.state else None
                if terminated and terminated.exit_code:
                    return (
                        f"Init container '{cs.name}' failed (exit code {terminated.exit_code}): "
                        f"kubectl logs {pod_name} -c {cs.name} -n {namespace}"
                    )

        for pod in pods:
            for cs in (pod.status.container_statuses if pod.status else None) or []:
                waiting = cs.state.waiting if cs.state else None
                if waiting and waiting.reason in PERMANENT_WAITING_REASONS:
                    if waiting.message:
                        return f"{waiting.reason}: {waiting.message}"
                    return waiting.reason

        for pod in pods:
            for condition in (pod.status.conditions if pod.status else None) or []:
                if (condition.type == "PodScheduled" and condition.status == "False"
                        and condition.reason == "Unschedulable"):
                    return f"Build pod unschedulable: {condition.message}"

        for pod in pods:
            pod_name = pod.metadata.name
            events = await self.k8s.list_pod_events(pod_name, namespace)
            for event in events:
                if event.reason == "FailedMount":
                    return (
                        f"FailedMount: {event.message or 'volume could not be mounted'} "
                        f"(kubectl describe pod {pod_name} -n {namespace})"
                    )

        return None

    async def scale_service(self, resource_name: str, replicas: int) -> None:
        # Workload scaling is owned by the Kubernetes reconciler
        logger.info(f"[BUILD] Scale requested via NCP: resource={resource_name}, replicas={replicas}")
