"""
Base cloud infrastructure provider interface.

Each supported vendor implements this contract once. The pipeline only ever
talks to a provider through these methods, so adding a vendor means adding
one subclass and one entry in the provider factory.
"""

from abc import ABC, abstractmethod

from ...enums import CloudVendor
from ...models import Deployment, SourceRepository
from ...schemas import BuildResult, BuildStatusResult


class CloudInfraProvider(ABC):
    """
    Abstract base class for cloud infrastructure providers.

    Implementations stage source code, run builds and report build progress
    on one vendor's infrastructure.
    """

    vendor: CloudVendor

    @abstractmethod
    async def upload_source_to_storage(self, credential: str, deployment: Deployment) -> str:
        """
        Stage the deployment's source archive in object storage.

        Args:
            credential: Installation token for the source host
            deployment: Deployment being built (repository loaded)

        Returns:
            Object storage key of the staged archive

        Raises:
            SourceUploadError: On any download, repackaging or upload failure
        """
        pass

    @abstractmethod
    async def ensure_build_project(self, repository: SourceRepository) -> str:
        """
        Get or create the vendor build project for a repository.

        Returns:
            The build project identifier

        Raises:
            BuildTriggerError: If the project cannot be created
        """
        pass

    @abstractmethod
    async def trigger_build(self, storage_key: str, deployment: Deployment) -> BuildResult:
        """
        Submit a build of the staged source.

        The repository's build project id is assigned here on first use
        (compare-and-set), and the caller persists it.

        Raises:
            BuildTriggerError: If the build cannot be submitted
        """
        pass

    @abstractmethod
    async def get_build_status(self, tracking_handle: str, build_id: str) -> BuildStatusResult:
        """
        Report the current state of a build.

        Args:
            tracking_handle: Opaque handle returned by trigger_build
            build_id: External build id returned by trigger_build

        Returns:
            BuildStatusResult; completed=False while the build is running
        """
        pass

    @abstractmethod
    async def scale_service(self, resource_name: str, replicas: int) -> None:
        """Vendor-specific scale hook."""
        pass
