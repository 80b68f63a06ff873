"""
Kubernetes access for build jobs and application workloads.

Components:
- KubernetesClient: async upserts over the official client
- manifests: Deployment/Service/Ingress builders for applications
- KubernetesReconciler: converges an application onto its desired shape
"""

from .client import KubernetesClient, get_k8s_client
from .reconciler import KubernetesReconciler

__all__ = ["KubernetesClient", "get_k8s_client", "KubernetesReconciler"]
