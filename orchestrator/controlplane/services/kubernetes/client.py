"""
Kubernetes Client for build jobs and application workloads

Thin async facade over the official kubernetes client. Every blocking API
call is pushed to a worker thread with asyncio.to_thread. Write methods are
upserts: create, and on 409 Conflict replace the existing object.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
import logging
import asyncio
from typing import List, Optional

from ...config import get_settings

logger = logging.getLogger(__name__)


class KubernetesClient:
    """
    Manages Kubernetes resources for build jobs and deployed applications.
    """

    def __init__(self):
        """Initialize Kubernetes client with in-cluster or kubeconfig."""
        self.settings = get_settings()

        try:
            # Try in-cluster config first (for production)
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            try:
                # Fall back to kubeconfig (for development)
                config.load_kube_config()
                logger.info("Loaded kubeconfig for development")
            except config.ConfigException as e:
                logger.error(f"Failed to load Kubernetes config: {e}")
                raise RuntimeError("Cannot load Kubernetes configuration") from e

        # Initialize API clients
        self.apps_v1 = client.AppsV1Api()
        self.core_v1 = client.CoreV1Api()
        self.networking_v1 = client.NetworkingV1Api()
        self.batch_v1 = client.BatchV1Api()

        self.namespace = self.settings.k8s_namespace
        self.build_namespace = self.settings.k8s_build_namespace

        logger.info(f"Kubernetes client initialized - Workloads: {self.namespace}, Builds: {self.build_namespace}")

    # =========================================================================
    # APPLICATION RESOURCES
    # =========================================================================

    async def _upsert(self, kind: str, create, read, replace, body, namespace: str) -> None:
        """
        Create an object, or replace it wholesale when it already exists.

        The live object ends up equal to the manifest: fields the manifest no
        longer sets, such as removed env vars, are dropped from the cluster.

        Args:
            kind: Resource kind, for logging
            create: create_namespaced_* API method
            read: read_namespaced_* API method
            replace: replace_namespaced_* API method
            body: Manifest to apply
            namespace: Target namespace
        """
        name = body.metadata.name
        try:
            await asyncio.to_thread(create, namespace=namespace, body=body)
            logger.info(f"[K8S] ✅ Created {kind}: {namespace}/{name}")
            return
        except ApiException as e:
            if e.status != 409:
                raise

        existing = await asyncio.to_thread(read, name=name, namespace=namespace)
        body.metadata.resource_version = existing.metadata.resource_version
        await asyncio.to_thread(replace, name=name, namespace=namespace, body=body)
        logger.info(f"[K8S] ✅ Replaced existing {kind}: {namespace}/{name}")

    async def create_deployment(self, deployment: client.V1Deployment, namespace: str) -> None:
        await self._upsert(
            "deployment",
            self.apps_v1.create_namespaced_deployment,
            self.apps_v1.read_namespaced_deployment,
            self.apps_v1.replace_namespaced_deployment,
            deployment,
            namespace,
        )

    async def create_service(self, service: client.V1Service, namespace: str) -> None:
        await self._upsert(
            "service",
            self.core_v1.create_namespaced_service,
            self.core_v1.read_namespaced_service,
            self.core_v1.replace_namespaced_service,
            service,
            namespace,
        )

    async def create_ingress(self, ingress: client.V1Ingress, namespace: str) -> None:
        await self._upsert(
            "ingress",
            self.networking_v1.create_namespaced_ingress,
            self.networking_v1.read_namespaced_ingress,
            self.networking_v1.replace_namespaced_ingress,
            ingress,
            namespace,
        )

    async def scale_deployment(self, name: str, namespace: str, replicas: int) -> None:
        """Set the replica count through the scale subresource."""
        await asyncio.to_thread(
            self.apps_v1.patch_namespaced_deployment_scale,
            name=name,
            namespace=namespace,
            body={"spec": {"replicas": replicas}}
        )
        logger.info(f"[K8S] {namespace}/{name} scaled to {replicas} replicas")

    # =========================================================================
    # CONFIGMAPS
    # =========================================================================

    async def create_config_map_if_not_exists(
        self,
        config_map: client.V1ConfigMap,
        namespace: str
    ) -> bool:
        """
        Create a ConfigMap unless one with the same name exists.

        Returns:
            True if created, False if it already existed
        """
        name = config_map.metadata.name
        try:
            await asyncio.to_thread(
                self.core_v1.create_namespaced_config_map,
                namespace=namespace,
                body=config_map
            )
            logger.info(f"[K8S] ✅ Created configmap: {name}")
            return True
        except ApiException as e:
            if e.status == 409:
                logger.debug(f"[K8S] ConfigMap {name} already exists")
                return False
            raise

    # =========================================================================
    # BUILD JOBS
    # =========================================================================

    async def create_job(self, job: client.V1Job, namespace: str) -> client.V1Job:
        """Submit a Job."""
        created = await asyncio.to_thread(
            self.batch_v1.create_namespaced_job,
            namespace=namespace,
            body=job
        )
        logger.info(f"[K8S] ✅ Created job: {job.metadata.name}")
        return created

    async def read_job(self, name: str, namespace: str) -> Optional[client.V1Job]:
        """Read a Job, or None if it does not exist."""
        try:
            return await asyncio.to_thread(
                self.batch_v1.read_namespaced_job,
                name=name,
                namespace=namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def list_job_pods(self, job_name: str, namespace: str) -> List[client.V1Pod]:
        """List the pods the Job controller created for a Job."""
        pods = await asyncio.to_thread(
            self.core_v1.list_namespaced_pod,
            namespace=namespace,
            label_selector=f"job-name={job_name}"
        )
        return list(pods.items or [])

    async def list_pod_events(self, pod_name: str, namespace: str) -> List[client.CoreV1Event]:
        """List events whose involved object is the given pod."""
        events = await asyncio.to_thread(
            self.core_v1.list_namespaced_event,
            namespace=namespace,
            field_selector=f"involvedObject.name={pod_name}"
        )
        return list(events.items or [])


# Global instance - lazily initialized
_k8s_client_instance: Optional[KubernetesClient] = None


def get_k8s_client() -> KubernetesClient:
    """Get or create the global Kubernetes client instance."""
    global _k8s_client_instance
    if _k8s_client_instance is None:
        _k8s_client_instance = KubernetesClient()
    return _k8s_client_instance
