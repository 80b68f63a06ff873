from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    # Database - PostgreSQL in production, SQLite for tests
    database_url: str = "sqlite+aiosqlite:///./controlplane.db"

    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    # Product marker used in resource labels (managed-by=<product>)
    product_name: str = "klepaas"

    # Application domain (no protocol, just domain)
    # Used for the default ingress host of newly registered repositories
    app_domain: str = "klepaas.io"

    # ==========================================================================
    # GitHub App Configuration (installation tokens for source download)
    # ==========================================================================
    github_api_base: str = "https://api.github.com"
    github_app_id: str = ""
    # PEM content takes precedence over the key path
    github_app_private_key: str = ""
    github_app_private_key_path: str = "/app/keys/github_app.pem"
    github_request_timeout: float = 30.0

    # ==========================================================================
    # Object Storage Configuration (S3-compatible, NCP Object Storage)
    # ==========================================================================
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_bucket_name: str = "klepaas-builds"
    s3_endpoint_url: str = "https://kr.object.ncloudstorage.com"  # Empty for AWS S3
    s3_region: str = "kr-standard"

    # Container registry the build job pushes to
    # Image URI format: {registry_endpoint}/{owner}-{repo}:latest
    registry_endpoint: str = "klepaas.kr.ncr.ntruss.com"

    # ==========================================================================
    # Pipeline Settings
    # ==========================================================================
    pipeline_poll_initial_interval_ms: int = 10_000
    pipeline_poll_max_interval_ms: int = 60_000
    pipeline_build_timeout_ms: int = 1_800_000
    # Max pipelines running at once; polling runs for up to the build timeout
    pipeline_max_concurrency: int = 16
    # Finished task records older than this are dropped from the task manager
    pipeline_task_retention_hours: int = 24

    # ==========================================================================
    # Kubernetes Settings
    # ==========================================================================
    k8s_namespace: str = "default"  # Namespace for user workloads
    k8s_build_namespace: str = "klepaas-builds"  # Namespace for build jobs
    k8s_image_pull_secret: str = "ncr-pull-secret"  # Empty string to skip
    k8s_registry_push_secret: str = "ncr-push-secret"  # docker config JSON for Kaniko
    k8s_storage_credentials_secret: str = "s3-credentials"  # AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY
    k8s_ingress_class: str = "nginx"

    # ==========================================================================
    # Build Job Settings
    # ==========================================================================
    build_kaniko_image: str = "gcr.io/kaniko-project/executor:v1.23.2"
    build_fetch_image: str = "amazon/aws-cli:latest"
    build_job_ttl_seconds: int = 3600  # Finished jobs are garbage-collected after 1 hour

    class Config:
        # For Docker Compose: environment variables are passed directly
        # For native development: looks for .env in parent directory (project root)
        env_file = "../.env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False  # Allow lowercase env vars to match uppercase field names

@lru_cache()
def get_settings():
    return Settings()
