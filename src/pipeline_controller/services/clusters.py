"""Resolution of target cluster references to control-plane clients.

Targets without a cluster reference live on the management cluster. Targets
with one name a GitopsCluster whose ``spec.secretRef`` Secret holds a
kubeconfig; a client is built from it and cached until the kubeconfig changes.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Callable
from typing import Any

import structlog
import yaml

from pipeline_controller.integrations.kubernetes.client import KubernetesClient
from pipeline_controller.integrations.kubernetes.config import KubernetesConfig
from pipeline_controller.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    DEFAULT_CLUSTER_KIND,
    CrossNamespaceClusterReference,
)
from pipeline_controller.integrations.kubernetes.models.resources import (
    GITOPS_CLUSTER_KIND,
    KUBECONFIG_SECRET_KEYS,
    SECRET_KIND,
    GitopsCluster,
    SecretData,
)
from pipeline_controller.services.controlplane import ControlPlane, KubernetesControlPlane
from pipeline_controller.services.pipeline.exceptions import (
    ClusterError,
    ClusterNotFoundError,
    ClusterNotReadyError,
)

logger = structlog.get_logger()

ControlPlaneFactory = Callable[[dict[str, Any], str], ControlPlane]
"""Builds a control plane from ``(parsed kubeconfig, cluster name)``."""


def kubernetes_control_plane_factory(config: KubernetesConfig | None = None) -> ControlPlaneFactory:
    def _factory(kubeconfig: dict[str, Any], name: str) -> ControlPlane:
        client = KubernetesClient.from_kubeconfig_dict(kubeconfig, name=name, config=config)
        return KubernetesControlPlane(client)

    return _factory


class ClusterResolver:
    """Turns a target's cluster reference into the control plane to read from.

    Example:
        ```python
        resolver = ClusterResolver(local)
        control_plane = resolver.resolve(target.cluster_ref, pipeline.namespace)
        ```
    """

    def __init__(
        self,
        local: ControlPlane,
        factory: ControlPlaneFactory | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            local: Control plane of the management cluster.
            factory: Builds clients for remote clusters.
        """
        self._local = local
        self._factory = factory or kubernetes_control_plane_factory()
        self._cache: dict[str, tuple[str, ControlPlane]] = {}
        self._lock = threading.Lock()

    @property
    def local(self) -> ControlPlane:
        return self._local

    def resolve(
        self,
        ref: CrossNamespaceClusterReference | None,
        pipeline_namespace: str,
    ) -> ControlPlane:
        """Control plane for a target.

        Raises:
            ClusterNotFoundError: If the cluster object does not exist.
            ClusterNotReadyError: If it exists but is not ready or has no
                usable kubeconfig.
            ClusterError: If the cluster or its Secret cannot be read.
        """
        if ref is None:
            return self._local

        namespace = ref.namespace or pipeline_namespace
        if ref.kind != DEFAULT_CLUSTER_KIND:
            raise ClusterNotFoundError(f'unsupported cluster kind "{ref.kind}"')

        try:
            obj = self._local.get(GITOPS_CLUSTER_KIND, namespace, ref.name)
        except KubernetesNotFoundError as e:
            raise ClusterNotFoundError(f"failed to get cluster: {e}") from e
        except KubernetesError as e:
            raise ClusterError(f"failed to get cluster: {e}") from e

        cluster = GitopsCluster.from_k8s_object(obj)
        if not cluster.ready:
            raise ClusterNotReadyError(f'cluster "{ref.name}" is not ready')
        if not cluster.secret_ref_name:
            raise ClusterNotReadyError(f'cluster "{ref.name}" has no kubeconfig Secret')

        kubeconfig = self._read_kubeconfig(namespace, ref.name, cluster.secret_ref_name)
        return self._client_for(f"{namespace}/{ref.name}", kubeconfig)

    def _read_kubeconfig(self, namespace: str, cluster: str, secret_name: str) -> bytes:
        try:
            obj = self._local.get(SECRET_KIND, namespace, secret_name)
            secret = SecretData.from_k8s_object(obj)
        except (KubernetesError, ValueError) as e:
            raise ClusterError(f'failed to read kubeconfig for cluster "{cluster}": {e}') from e

        for key in KUBECONFIG_SECRET_KEYS:
            if secret.data.get(key):
                return secret.data[key]
        raise ClusterNotReadyError(
            f'kubeconfig Secret "{secret_name}" for cluster "{cluster}" '
            f"has none of the keys {', '.join(KUBECONFIG_SECRET_KEYS)}"
        )

    def _client_for(self, key: str, kubeconfig: bytes) -> ControlPlane:
        digest = hashlib.sha256(kubeconfig).hexdigest()
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached[0] == digest:
                return cached[1]

            try:
                parsed = yaml.safe_load(kubeconfig)
            except yaml.YAMLError as e:
                raise ClusterError(f'invalid kubeconfig for cluster "{key}": {e}') from e
            if not isinstance(parsed, dict):
                raise ClusterError(f'invalid kubeconfig for cluster "{key}": not a mapping')

            try:
                control_plane = self._factory(parsed, key)
            except KubernetesError as e:
                raise ClusterError(str(e)) from e

            if cached is not None:
                _close(cached[1])
            self._cache[key] = (digest, control_plane)
            logger.debug("cluster_client_created", cluster=key, replaced=cached is not None)
            return control_plane

    def close(self) -> None:
        """Release every cached remote client."""
        with self._lock:
            for _, control_plane in self._cache.values():
                _close(control_plane)
            self._cache.clear()


def _close(control_plane: ControlPlane) -> None:
    if isinstance(control_plane, KubernetesControlPlane):
        control_plane.client.close()
