"""Kubernetes integration: API client, configuration, errors, and resource models."""

from pipeline_controller.integrations.kubernetes.client import KubernetesClient
from pipeline_controller.integrations.kubernetes.config import KubernetesConfig
from pipeline_controller.integrations.kubernetes.exceptions import (
    ConcurrentUpdateConflict,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

__all__ = [
    "ConcurrentUpdateConflict",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConfig",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
]
