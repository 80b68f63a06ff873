"""
Deployment status and cloud vendor enumerations.
"""

from enum import Enum

from .exceptions import ConfigurationError


class DeploymentStatus(str, Enum):
    """
    Lifecycle of a single build-and-run attempt.

    Forward order is PENDING -> UPLOADING_SOURCE -> BUILDING -> DEPLOYING -> SUCCESS.
    FAILED is reachable from any non-terminal state. CANCELED is reserved for
    operator action and is never entered by the pipeline.
    """

    PENDING = "PENDING"
    UPLOADING_SOURCE = "UPLOADING_SOURCE"
    BUILDING = "BUILDING"
    DEPLOYING = "DEPLOYING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELED)

    @property
    def rank(self) -> int:
        """Position along the forward walk (terminal failure states rank last)."""
        return _FORWARD_ORDER.index(self) if self in _FORWARD_ORDER else len(_FORWARD_ORDER)

    def __str__(self) -> str:
        return self.value


_FORWARD_ORDER = [
    DeploymentStatus.PENDING,
    DeploymentStatus.UPLOADING_SOURCE,
    DeploymentStatus.BUILDING,
    DeploymentStatus.DEPLOYING,
    DeploymentStatus.SUCCESS,
]


class CloudVendor(str, Enum):
    """
    Infrastructure backends a repository can be built and run on.

    Attributes:
        NCP: Naver Cloud Platform (Object Storage + in-cluster build on NKS)
        AWS: Amazon Web Services
        ON_PREMISE: Self-hosted Kubernetes
    """

    NCP = "NCP"
    AWS = "AWS"
    ON_PREMISE = "ON_PREMISE"

    @classmethod
    def from_string(cls, value: str) -> "CloudVendor":
        """
        Convert a string to a CloudVendor.

        Raises:
            ConfigurationError: If value is not a known vendor tag
        """
        value_upper = (value or "").upper().strip()
        for vendor in cls:
            if vendor.value == value_upper:
                return vendor
        valid = ", ".join([v.value for v in cls])
        raise ConfigurationError(
            f"Unknown cloud vendor: '{value}'. Valid vendors: {valid}"
        )

    def __str__(self) -> str:
        return self.value
