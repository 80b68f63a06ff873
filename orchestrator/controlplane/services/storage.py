"""
Object storage for staged build sources.

Sources are staged in S3-compatible object storage (NCP Object Storage, AWS
S3, MinIO) so the in-cluster build job has a stable input.

Architecture:
- Path structure: s3://bucket/builds/{deployment_id}/source.zip
- One object per deployment, written once before the build is triggered
- The build job's source-fetch step reads the same key with the aws cli

Supported Providers:
- NCP Object Storage: S3_ENDPOINT_URL=https://kr.object.ncloudstorage.com, S3_REGION=kr-standard
- AWS S3: Leave S3_ENDPOINT_URL empty, set S3_REGION to your bucket's region
"""

import asyncio
import logging
from typing import Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import get_settings
from ..exceptions import SourceUploadError

logger = logging.getLogger(__name__)

# Retry configuration for S3 operations
S3_RETRY_CONFIG = Config(
    retries={
        'max_attempts': 3,
        'mode': 'adaptive'
    },
    connect_timeout=10,
    read_timeout=120,
)

BUILDS_PREFIX = "builds"


def build_source_key(deployment_id: int) -> str:
    """
    Object key of a deployment's staged source.

    Format: builds/{deployment_id}/source.zip
    """
    return f"{BUILDS_PREFIX}/{deployment_id}/source.zip"


class ObjectStorage:
    """Uploads staged source archives to S3-compatible object storage."""

    def __init__(self, s3_client=None):
        settings = get_settings()
        self.bucket_name = settings.s3_bucket_name

        if s3_client is not None:
            self.s3_client = s3_client
            return

        client_kwargs = {
            'region_name': settings.s3_region,
            'config': S3_RETRY_CONFIG
        }

        # Explicit credentials if provided, otherwise the default boto3 chain
        if settings.s3_access_key_id and settings.s3_secret_access_key:
            client_kwargs['aws_access_key_id'] = settings.s3_access_key_id
            client_kwargs['aws_secret_access_key'] = settings.s3_secret_access_key

        if settings.s3_endpoint_url:
            client_kwargs['endpoint_url'] = settings.s3_endpoint_url

        self.s3_client = boto3.client('s3', **client_kwargs)

        logger.info(f"[S3] Initialized object storage for bucket: {self.bucket_name}")
        logger.info(f"[S3] Endpoint: {settings.s3_endpoint_url or '(AWS default)'}, Region: {settings.s3_region}")

    async def upload_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/zip",
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Upload an in-memory object.

        Args:
            key: Object key
            data: Object content
            content_type: MIME type stored with the object
            metadata: Optional user metadata

        Returns:
            The object key

        Raises:
            SourceUploadError: If the upload fails
        """
        size_mb = len(data) / (1024 * 1024)
        logger.info(f"[S3] Uploading {key} ({size_mb:.2f} MB)")

        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[S3] ❌ Upload failed for {key}: {e}", exc_info=True)
            raise SourceUploadError(f"Failed to upload source to s3://{self.bucket_name}/{key}: {e}") from e

        logger.info(f"[S3] ✅ Uploaded s3://{self.bucket_name}/{key}")
        return key
