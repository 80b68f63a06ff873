"""
Kubernetes reconciler for built applications.

Converges the cluster onto the desired shape of one application: a
Deployment running the built image, a ClusterIP Service in front of it and,
when the repository has a domain, an Ingress. Every write is an upsert, so
deploying the same arguments twice leaves the same resource set behind.
"""

import logging
from typing import Optional

from ...config import get_settings
from ...exceptions import DeployError
from ...models import DeploymentConfig
from .client import KubernetesClient, get_k8s_client
from .manifests import (
    get_standard_labels,
    create_app_deployment_manifest,
    create_service_manifest,
    create_ingress_manifest,
)

logger = logging.getLogger(__name__)


class KubernetesReconciler:
    """Applies Deployment/Service/Ingress for an application and scales it."""

    def __init__(self, k8s_client: Optional[KubernetesClient] = None, namespace: Optional[str] = None):
        self.settings = get_settings()
        self._k8s = k8s_client
        self.namespace = namespace or self.settings.k8s_namespace

    @property
    def k8s(self) -> KubernetesClient:
        if self._k8s is None:
            self._k8s = get_k8s_client()
        return self._k8s

    async def deploy(
        self,
        app_name: str,
        image_uri: str,
        config: DeploymentConfig,
        repository_id: int
    ) -> None:
        """
        Upsert the application's Deployment, Service and (optional) Ingress.

        Raises:
            DeployError: If any cluster call fails
        """
        labels = get_standard_labels(app_name, repository_id, self.settings.product_name)
        port = config.resolved_container_port

        try:
            deployment = create_app_deployment_manifest(
                namespace=self.namespace,
                app_name=app_name,
                image=image_uri,
                port=port,
                replicas=config.min_replicas,
                env_vars=config.env_vars,
                labels=labels,
                image_pull_secret=self.settings.k8s_image_pull_secret or None,
            )
            await self.k8s.create_deployment(deployment, self.namespace)

            service = create_service_manifest(self.namespace, app_name, port, labels)
            await self.k8s.create_service(service, self.namespace)

            if config.domain_url and config.domain_url.strip():
                ingress = create_ingress_manifest(
                    namespace=self.namespace,
                    app_name=app_name,
                    host=config.domain_url.strip(),
                    labels=labels,
                    ingress_class=self.settings.k8s_ingress_class,
                )
                await self.k8s.create_ingress(ingress, self.namespace)

        except Exception as e:
            logger.error(f"[K8S] Deploy failed for {app_name}: {e}", exc_info=True)
            raise DeployError(f"Kubernetes deploy failed for {app_name}: {e}") from e

        logger.info(f"[K8S] Deployed {app_name} ({image_uri}) to namespace {self.namespace}")

    async def scale(self, app_name: str, replicas: int) -> None:
        """
        Set the application's replica count.

        Raises:
            DeployError: If the scale call fails
        """
        try:
            await self.k8s.scale_deployment(app_name, self.namespace, replicas)
        except Exception as e:
            logger.error(f"[K8S] Scale failed for {app_name}: {e}", exc_info=True)
            raise DeployError(f"Failed to scale {app_name} to {replicas}: {e}") from e
