"""Control-plane access for the controller.

The reconciler only needs a narrow contract from the store holding pipelines
and the objects they reference: fetch by name, conditional status update and
event recording. ``ControlPlane`` states that contract and
``KubernetesControlPlane`` implements it over the Kubernetes API. Watching is
left to the operator runtime.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from pipeline_controller.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
)
from pipeline_controller.integrations.kubernetes.models.base import ResourceKind

if TYPE_CHECKING:
    from pipeline_controller.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


@dataclass(frozen=True)
class ObjectRef:
    """Identifies an object that events are recorded against."""

    kind: ResourceKind
    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class ControlPlane(Protocol):
    """Narrow contract the controller needs from its resource store."""

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        """Fetch an object.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
        """
        ...

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource, conditioned on ``metadata.resourceVersion``.

        Raises:
            KubernetesConflictError: If the object changed since it was read.
        """
        ...

    def record_event(self, ref: ObjectRef, event_type: str, reason: str, message: str) -> None:
        """Record a human-readable event against an object. Never raises."""
        ...


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class KubernetesControlPlane:
    """``ControlPlane`` backed by the Kubernetes API.

    Custom resources go through ``CustomObjectsApi`` and come back as plain
    dicts; Secrets are read through ``CoreV1Api`` and serialized to the same
    dict shape so callers never see SDK model classes.
    """

    def __init__(self, client: KubernetesClient, component: str = "pipeline-controller") -> None:
        self._client = client
        self._component = component
        self._retry = client.make_retry_decorator()
        self._log = logger.bind(cluster=client.name)

    @property
    def client(self) -> KubernetesClient:
        return self._client

    def _translate(
        self,
        e: Exception,
        kind: ResourceKind,
        name: str | None,
        ns: str | None,
    ) -> KubernetesError:
        return self._client.translate_api_exception(
            e, resource_type=kind.display_name, resource_name=name, namespace=ns
        )

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        self._log.debug("getting_object", kind=kind.kind, namespace=namespace, name=name)

        if not name:
            # The API would answer with a list; report it the way a lookup would.
            raise KubernetesNotFoundError(
                resource_type=kind.display_name, resource_name=name, namespace=namespace
            )

        @self._retry
        def _get() -> dict[str, Any]:
            try:
                if not kind.group and kind.plural == "secrets":
                    secret = self._client.core_v1.read_namespaced_secret(
                        name, namespace, _request_timeout=self._client.timeout
                    )
                    result: dict[str, Any] = self._client.api_client.sanitize_for_serialization(
                        secret
                    )
                    return result
                obj: dict[str, Any] = self._client.custom_objects.get_namespaced_custom_object(
                    kind.group,
                    kind.version,
                    namespace,
                    kind.plural,
                    name,
                    _request_timeout=self._client.timeout,
                )
                return obj
            except Exception as e:
                raise self._translate(e, kind, name, namespace) from e

        return _get()

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        metadata: dict[str, Any] = obj.get("metadata") or {}
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")
        self._log.debug(
            "updating_status",
            kind=kind.kind,
            namespace=namespace,
            name=name,
            resource_version=metadata.get("resourceVersion"),
        )
        # Not retried: a conflict must go back to a fresh read.
        try:
            result: dict[str, Any] = (
                self._client.custom_objects.replace_namespaced_custom_object_status(
                    kind.group,
                    kind.version,
                    namespace,
                    kind.plural,
                    name,
                    obj,
                    _request_timeout=self._client.timeout,
                )
            )
        except Exception as e:
            raise self._translate(e, kind, name, namespace) from e
        return result

    def record_event(self, ref: ObjectRef, event_type: str, reason: str, message: str) -> None:
        # Events for the same object, reason and message share a name, so
        # repeats bump a counter instead of piling up.
        digest = hashlib.sha256(
            f"{ref.kind.kind}/{ref.namespace}/{ref.name}/{event_type}/{reason}/{message}".encode()
        ).hexdigest()[:16]
        event_name = f"{ref.name}.{digest}"
        now = _now()
        try:
            existing = self._client.core_v1.read_namespaced_event(event_name, ref.namespace)
            self._client.core_v1.patch_namespaced_event(
                event_name,
                ref.namespace,
                {"count": (existing.count or 1) + 1, "lastTimestamp": now},
            )
            return
        except Exception as e:
            error = self._client.translate_api_exception(e)
            if not isinstance(error, KubernetesNotFoundError):
                self._log.warning("event_update_failed", reason=reason, error=str(error))
                return

        body: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"name": event_name, "namespace": ref.namespace},
            "involvedObject": {
                "apiVersion": ref.kind.api_version,
                "kind": ref.kind.kind,
                "name": ref.name,
                "namespace": ref.namespace,
            },
            "type": event_type,
            "reason": reason,
            "message": message,
            "source": {"component": self._component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            self._client.core_v1.create_namespaced_event(ref.namespace, body)
        except Exception as e:
            self._log.warning(
                "event_create_failed",
                reason=reason,
                error=str(self._client.translate_api_exception(e)),
            )
