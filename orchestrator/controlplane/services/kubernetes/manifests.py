"""
Kubernetes manifest helpers for deployed applications.

All resources of an application share the app name as their object name
and the `name=<app>` label as their selector, so re-applying them converges
on one Deployment, one Service and at most one Ingress.
"""

from kubernetes import client
from typing import Dict, Optional

SERVICE_PORT = 80


def get_standard_labels(
    app_name: str,
    repository_id: int,
    managed_by: str
) -> Dict[str, str]:
    """
    Get standard labels for application resources.

    Args:
        app_name: Application name (owner-repo)
        repository_id: Source repository id
        managed_by: Product marker

    Returns:
        Dict of labels
    """
    return {
        "name": app_name,
        "managed-by": managed_by,
        "repository-id": str(repository_id),
    }


def get_selector_labels(app_name: str) -> Dict[str, str]:
    return {"name": app_name}


def create_app_deployment_manifest(
    namespace: str,
    app_name: str,
    image: str,
    port: int,
    replicas: int,
    env_vars: Dict[str, str],
    labels: Dict[str, str],
    image_pull_secret: Optional[str] = None
) -> client.V1Deployment:
    """
    Create the workload Deployment manifest.

    Args:
        namespace: Kubernetes namespace
        app_name: Application name, used as object and container name
        image: Image URI produced by the build
        port: Container port
        replicas: Desired replica count
        env_vars: Environment variables injected into the container
        labels: Standard labels
        image_pull_secret: Optional image pull secret

    Returns:
        V1Deployment manifest
    """
    container = client.V1Container(
        name=app_name,
        image=image,
        image_pull_policy="Always",  # tag is always :latest
        ports=[
            client.V1ContainerPort(container_port=port, name="http")
        ],
        env=[
            client.V1EnvVar(name=key, value=str(value))
            for key, value in sorted((env_vars or {}).items())
        ],
    )

    pod_spec = client.V1PodSpec(containers=[container])
    if image_pull_secret:
        pod_spec.image_pull_secrets = [
            client.V1LocalObjectReference(name=image_pull_secret)
        ]

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(
            name=app_name,
            namespace=namespace,
            labels=labels
        ),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(
                match_labels=get_selector_labels(app_name)
            ),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=pod_spec
            )
        )
    )


def create_service_manifest(
    namespace: str,
    app_name: str,
    port: int,
    labels: Dict[str, str]
) -> client.V1Service:
    """
    Create the ClusterIP Service manifest (port 80 -> container port).
    """
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=app_name,
            namespace=namespace,
            labels=labels
        ),
        spec=client.V1ServiceSpec(
            selector=get_selector_labels(app_name),
            ports=[
                client.V1ServicePort(
                    port=SERVICE_PORT,
                    target_port=port,
                    protocol="TCP"
                )
            ],
            type="ClusterIP"
        )
    )


def create_ingress_manifest(
    namespace: str,
    app_name: str,
    host: str,
    labels: Dict[str, str],
    ingress_class: str = "nginx"
) -> client.V1Ingress:
    """
    Create the Ingress manifest routing host "/" to the app's Service.

    Args:
        namespace: Kubernetes namespace
        app_name: Application name (also the Service name)
        host: Public host name
        labels: Standard labels
        ingress_class: Ingress class name

    Returns:
        V1Ingress manifest
    """
    ingress_spec = client.V1IngressSpec(
        ingress_class_name=ingress_class,
        rules=[
            client.V1IngressRule(
                host=host,
                http=client.V1HTTPIngressRuleValue(
                    paths=[
                        client.V1HTTPIngressPath(
                            path="/",
                            path_type="Prefix",
                            backend=client.V1IngressBackend(
                                service=client.V1IngressServiceBackend(
                                    name=app_name,
                                    port=client.V1ServiceBackendPort(
                                        number=SERVICE_PORT
                                    )
                                )
                            )
                        )
                    ]
                )
            )
        ]
    )

    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=app_name,
            namespace=namespace,
            labels=labels
        ),
        spec=ingress_spec
    )
