"""
Build Job manifest construction.

A build is a one-shot Kubernetes Job with two steps sharing an emptyDir
workspace:

1. source-fetch (init container): copies the staged archive out of object
   storage and extracts it into /workspace.
2. image-build (Kaniko): builds from the local directory context and pushes
   the image to the registry.

The build step never fetches its context over the network, so object store
endpoint quirks only ever affect the fetch step.
"""

import logging
import re
from typing import Dict, Optional

from kubernetes import client

from ...config import get_settings
from ...models import Deployment

logger = logging.getLogger(__name__)

WORKSPACE_VOLUME = "workspace"
WORKSPACE_PATH = "/workspace"
DOCKER_CONFIG_VOLUME = "docker-config"
DOCKER_CONFIG_PATH = "/kaniko/.docker"

SOURCE_FETCH_CONTAINER = "source-fetch"
IMAGE_BUILD_CONTAINER = "image-build"


def short_sha(commit_hash: str) -> str:
    return (commit_hash or "")[:7]


def build_job_name(deployment_id: int, commit_hash: str) -> str:
    """Job name in DNS-1123 form: build-{deploymentId}-{commit7}."""
    name = f"build-{deployment_id}-{short_sha(commit_hash)}".lower()
    name = re.sub(r"[^a-z0-9-]", "-", name).strip("-")
    return name[:63]


def image_annotation_key(product_name: str) -> str:
    return f"{product_name}.io/image-uri"


def generate_source_fetch_script(
    bucket: str,
    storage_key: str,
    endpoint_url: str,
    region: str,
    target_dir: str = WORKSPACE_PATH
) -> str:
    """
    Generate the shell script that downloads and extracts the staged source.

    Args:
        bucket: Object storage bucket
        storage_key: Key of the staged archive
        endpoint_url: S3-compatible endpoint (empty for AWS)
        region: Storage region
        target_dir: Directory to extract into

    Returns:
        Shell script as string
    """
    endpoint_arg = f'--endpoint-url="{endpoint_url}"' if endpoint_url else ""

    return f'''#!/bin/sh
set -e

echo "[FETCH] Downloading s3://{bucket}/{storage_key}"
export AWS_DEFAULT_REGION="{region}"

aws s3 cp s3://{bucket}/{storage_key} /tmp/source.zip {endpoint_arg}

mkdir -p {target_dir}
if command -v unzip >/dev/null 2>&1; then
    unzip -q -o /tmp/source.zip -d {target_dir}
else
    python3 -c "import zipfile; zipfile.ZipFile('/tmp/source.zip').extractall('{target_dir}')"
fi
rm -f /tmp/source.zip

if [ ! -f {target_dir}/Dockerfile ]; then
    echo "[FETCH] ERROR: Dockerfile not found at the archive root"
    exit 2
fi

echo "[FETCH] Source ready in {target_dir}"
'''


class BuildJobBuilder:
    """Builds the V1Job that turns a staged source archive into an image."""

    def __init__(self, namespace: Optional[str] = None):
        self.settings = get_settings()
        self.namespace = namespace or self.settings.k8s_build_namespace

    def labels(self, deployment: Deployment) -> Dict[str, str]:
        return {
            "managed-by": self.settings.product_name,
            "deployment-id": str(deployment.id),
            "commit-sha": short_sha(deployment.commit_hash),
        }

    def _source_fetch_container(self, storage_key: str) -> client.V1Container:
        script = generate_source_fetch_script(
            bucket=self.settings.s3_bucket_name,
            storage_key=storage_key,
            endpoint_url=self.settings.s3_endpoint_url,
            region=self.settings.s3_region,
        )
        return client.V1Container(
            name=SOURCE_FETCH_CONTAINER,
            image=self.settings.build_fetch_image,
            command=["/bin/sh", "-c"],
            args=[script],
            env_from=[
                client.V1EnvFromSource(
                    secret_ref=client.V1SecretEnvSource(
                        name=self.settings.k8s_storage_credentials_secret
                    )
                )
            ],
            volume_mounts=[
                client.V1VolumeMount(name=WORKSPACE_VOLUME, mount_path=WORKSPACE_PATH)
            ],
        )

    def _image_build_container(self, image_uri: str) -> client.V1Container:
        return client.V1Container(
            name=IMAGE_BUILD_CONTAINER,
            image=self.settings.build_kaniko_image,
            args=[
                f"--context=dir://{WORKSPACE_PATH}",
                f"--dockerfile={WORKSPACE_PATH}/Dockerfile",
                f"--destination={image_uri}",
                "--compressed-caching=false",
                "--snapshot-mode=redo",
            ],
            volume_mounts=[
                client.V1VolumeMount(name=WORKSPACE_VOLUME, mount_path=WORKSPACE_PATH),
                client.V1VolumeMount(name=DOCKER_CONFIG_VOLUME, mount_path=DOCKER_CONFIG_PATH),
            ],
        )

    def build(self, deployment: Deployment, storage_key: str, image_uri: str) -> client.V1Job:
        """
        Create the build Job manifest for a deployment.

        Args:
            deployment: Deployment being built
            storage_key: Object storage key of the staged source
            image_uri: Registry destination for the built image

        Returns:
            V1Job manifest
        """
        job_name = build_job_name(deployment.id, deployment.commit_hash)
        labels = self.labels(deployment)

        volumes = [
            client.V1Volume(
                name=WORKSPACE_VOLUME,
                empty_dir=client.V1EmptyDirVolumeSource()
            ),
            client.V1Volume(
                name=DOCKER_CONFIG_VOLUME,
                secret=client.V1SecretVolumeSource(
                    secret_name=self.settings.k8s_registry_push_secret,
                    items=[client.V1KeyToPath(key=".dockerconfigjson", path="config.json")]
                )
            ),
        ]

        pod_template = client.V1PodTemplateSpec(
            metadata=client.V1ObjectMeta(labels=labels),
            spec=client.V1PodSpec(
                restart_policy="Never",
                init_containers=[self._source_fetch_container(storage_key)],
                containers=[self._image_build_container(image_uri)],
                volumes=volumes,
            )
        )

        job = client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=client.V1ObjectMeta(
                name=job_name,
                namespace=self.namespace,
                labels=labels,
                annotations={image_annotation_key(self.settings.product_name): image_uri},
            ),
            spec=client.V1JobSpec(
                backoff_limit=0,
                ttl_seconds_after_finished=self.settings.build_job_ttl_seconds,
                template=pod_template,
            )
        )

        logger.debug(f"[BUILD] Prepared job {job_name} for deployment {deployment.id} -> {image_uri}")
        return job
