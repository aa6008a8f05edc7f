"""Kubernetes API client wrapper.

Wraps the official kubernetes Python client with per-cluster API clients,
lazy API group initialization, retry logic, and consistent error translation.
Each instance owns its own ``ApiClient`` so clients for the management
cluster and for remote clusters can coexist in one process.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pipeline_controller.integrations.kubernetes.config import KubernetesConfig
from pipeline_controller.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, CoreV1Api, CustomObjectsApi

logger = structlog.get_logger()


class KubernetesClient:
    """Kubernetes API client bound to a single cluster.

    Wraps the official kubernetes Python client with:
    - kubeconfig, in-cluster, or in-memory kubeconfig loading
    - Lazy API group initialization
    - Automatic retry with tenacity for transient errors
    - Consistent error translation to custom exceptions
    - Context manager support

    Example:
        ```python
        from pipeline_controller.integrations.kubernetes import KubernetesClient

        with KubernetesClient(KubernetesConfig()) as client:
            client.core_v1.read_namespaced_secret("creds", "default")
        ```
    """

    def __init__(
        self,
        config: KubernetesConfig | None = None,
        *,
        api_client: ApiClient | None = None,
        name: str = "local",
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection settings. Defaults are used when omitted.
            api_client: A preconfigured ``ApiClient``; skips config loading.
            name: Name used in logs to tell clusters apart.
        """
        self._config = config or KubernetesConfig()
        self._retries = self._config.retry_attempts
        self.name = name

        self._core_v1: CoreV1Api | None = None
        self._custom_objects: CustomObjectsApi | None = None

        self._api_client = api_client if api_client is not None else self._load_config()

        logger.debug("kubernetes_client_initialized", cluster=name)

    @classmethod
    def from_kubeconfig_dict(
        cls,
        kubeconfig: dict[str, Any],
        *,
        name: str,
        config: KubernetesConfig | None = None,
    ) -> KubernetesClient:
        """Build a client for a remote cluster from a parsed kubeconfig.

        Raises:
            KubernetesConnectionError: If the kubeconfig cannot be loaded.
        """
        from kubernetes import config as k8s_config
        from kubernetes.config import ConfigException

        try:
            api_client = k8s_config.new_client_from_config_dict(kubeconfig)
        except (ConfigException, KeyError, TypeError) as e:
            raise KubernetesConnectionError(
                message=f"Invalid kubeconfig for cluster {name}: {e}",
                original_error=e,
            ) from e
        return cls(config, api_client=api_client, name=name)

    def _load_config(self) -> ApiClient:
        """Load configuration from kubeconfig, falling back to in-cluster."""
        from kubernetes import client as k8s_client
        from kubernetes import config as k8s_config
        from kubernetes.config import ConfigException

        try:
            api_client = k8s_config.new_client_from_config(
                config_file=self._config.kubeconfig,
                context=self._config.context,
            )
            logger.debug(
                "loaded_kubeconfig",
                context=self._config.context,
                kubeconfig=self._config.kubeconfig,
            )
            return api_client
        except ConfigException:
            try:
                configuration = k8s_client.Configuration()
                k8s_config.load_incluster_config(client_configuration=configuration)
                logger.debug("loaded_incluster_config")
                return k8s_client.ApiClient(configuration)
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

    # =========================================================================
    # Lazy API Group Accessors
    # =========================================================================

    @property
    def api_client(self) -> ApiClient:
        """Underlying ``ApiClient`` (used by watches)."""
        return self._api_client

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance (secrets, events)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self._api_client)
        return self._core_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance (pipelines, applications, clusters)."""
        if self._custom_objects is None:
            from kubernetes.client import CustomObjectsApi

            self._custom_objects = CustomObjectsApi(self._api_client)
        return self._custom_objects

    @property
    def timeout(self) -> int:
        """Get the configured request timeout in seconds."""
        return self._config.timeout

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes ApiException to a custom exception.

        Args:
            e: The original ApiException.
            resource_type: Type of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException
        from urllib3.exceptions import HTTPError, MaxRetryError
        from urllib3.exceptions import TimeoutError as TransportTimeoutError

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, TransportTimeoutError) or (
            isinstance(e, MaxRetryError) and isinstance(e.reason, TransportTimeoutError)
        ):
            return KubernetesTimeoutError(message=f"Kubernetes API request timed out: {e}")

        if isinstance(e, HTTPError):
            return KubernetesConnectionError(
                message=f"Kubernetes API unreachable: {e}",
                original_error=e,
            )

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        status = e.status

        if status in (401, 403):
            return KubernetesAuthError(
                message=e.reason or "Authentication/authorization failed",
                status_code=status,
                reason=e.reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            return KubernetesValidationError(
                message=e.reason or "Validation failed",
                status_code=status,
            )

        return KubernetesError(
            message=e.reason or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    # =========================================================================
    # Retry Decorator
    # =========================================================================

    def make_retry_decorator(self) -> Any:
        """Create a retry decorator for transient connection errors and timeouts.

        Returns:
            A tenacity retry decorator configured with exponential backoff.
        """
        return retry(
            retry=retry_if_exception_type((KubernetesConnectionError, KubernetesTimeoutError)),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            reraise=True,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release resources."""
        self._core_v1 = None
        self._custom_objects = None
        self._api_client.close()
        logger.debug("kubernetes_client_closed", cluster=self.name)

    def __enter__(self) -> KubernetesClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()
