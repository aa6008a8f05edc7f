"""Models for the objects a pipeline reads: applications, clusters, secrets.

All three are read-only from the controller's point of view, so only the
fields the controller needs are mapped.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pipeline_controller.integrations.kubernetes.models.base import (
    Condition,
    ResourceKind,
    is_condition_true,
    parse_conditions,
)

GITOPS_CLUSTER_KIND = ResourceKind(
    group="gitops.weave.works", version="v1alpha1", kind="GitopsCluster", plural="gitopsclusters"
)
SECRET_KIND = ResourceKind(group="", version="v1", kind="Secret", plural="secrets")

READY_CONDITION = "Ready"

# Keys a GitopsCluster kubeconfig secret may store the kubeconfig under
KUBECONFIG_SECRET_KEYS = ("value", "value.yaml")


class _ResourceModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="Resource name")
    namespace: str | None = Field(default=None, description="Resource namespace")


class AppStatus(_ResourceModel):
    """Readiness and revision of a deployed application object.

    Any kind exposing a ``Ready`` condition and ``status.lastAppliedRevision``
    (HelmRelease, Kustomization) satisfies this contract.
    """

    ready: bool = False
    last_applied_revision: str = ""
    conditions: list[Condition] = Field(default_factory=list)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> AppStatus:
        metadata: dict[str, Any] = obj.get("metadata") or {}
        status: dict[str, Any] = obj.get("status") or {}
        conditions = parse_conditions(status)
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            ready=is_condition_true(conditions, READY_CONDITION),
            last_applied_revision=status.get("lastAppliedRevision") or "",
            conditions=conditions,
        )


class GitopsCluster(_ResourceModel):
    """Connection object for a remote cluster."""

    secret_ref_name: str | None = None
    ready: bool = False

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> GitopsCluster:
        metadata: dict[str, Any] = obj.get("metadata") or {}
        spec: dict[str, Any] = obj.get("spec") or {}
        status: dict[str, Any] = obj.get("status") or {}
        secret_ref: dict[str, Any] = spec.get("secretRef") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            secret_ref_name=secret_ref.get("name"),
            ready=is_condition_true(parse_conditions(status), READY_CONDITION),
        )


class SecretData(_ResourceModel):
    """Decoded key/value contents of a Secret."""

    data: dict[str, bytes] = Field(default_factory=dict)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> SecretData:
        """Create from a Secret dict, decoding base64 ``data`` values.

        Raises:
            ValueError: If a data value is not valid base64.
        """
        metadata: dict[str, Any] = obj.get("metadata") or {}
        decoded: dict[str, bytes] = {}
        for key, value in (obj.get("data") or {}).items():
            try:
                decoded[key] = base64.b64decode(value or "", validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"key {key!r} is not valid base64") from e
        for key, value in (obj.get("stringData") or {}).items():
            decoded[key] = str(value).encode()
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            data=decoded,
        )

    def get_str(self, key: str) -> str:
        """Value of ``key`` as text, empty when absent."""
        return self.data.get(key, b"").decode().strip()
