"""Pipeline resource models.

Pipelines are custom resources read through ``CustomObjectsApi`` as raw
dicts. ``from_k8s_object`` classmethods map the camelCase wire format onto
these models; ``to_k8s_object`` methods map status back.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pipeline_controller.integrations.kubernetes.models.base import (
    Condition,
    ResourceKind,
    parse_conditions,
)

API_GROUP = "pipelines.weave.works"
API_VERSION = "v1alpha1"

PIPELINE_KIND = ResourceKind(
    group=API_GROUP, version=API_VERSION, kind="Pipeline", plural="pipelines"
)

# Base branch used by the pull-request strategy when none is configured
DEFAULT_BRANCH = "main"

DEFAULT_CLUSTER_KIND = "GitopsCluster"


class _SpecModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class LocalAppReference(_SpecModel):
    """Reference to the application object deployed in every target."""

    api_version: str = Field(description="apiVersion of the application kind")
    kind: str = Field(description="Application kind, e.g. HelmRelease")
    name: str = Field(description="Name of the application object in each target")

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind.from_api_version(self.api_version, self.kind)


class LocalObjectReference(_SpecModel):
    """Reference to an object in the pipeline's namespace."""

    name: str = ""


class CrossNamespaceClusterReference(_SpecModel):
    """Reference to a remote cluster's connection object."""

    kind: str = DEFAULT_CLUSTER_KIND
    name: str
    namespace: str | None = None


class Target(_SpecModel):
    """A single deployment location within an environment."""

    namespace: str
    cluster_ref: CrossNamespaceClusterReference | None = None


class Environment(_SpecModel):
    """A named stage holding one or more targets."""

    name: str
    targets: list[Target] = Field(min_length=1)


class NotificationPromotion(_SpecModel):
    """Promote by sending a notification; carries no settings."""


class PullRequestPromotion(_SpecModel):
    """Promote by opening a pull request against a git repository."""

    url: str = ""
    branch: str = DEFAULT_BRANCH
    secret_ref: LocalObjectReference = LocalObjectReference()


class Promotion(_SpecModel):
    """Promotion settings: at most one strategy variant may be set."""

    manual: bool = False
    notification: NotificationPromotion | None = None
    pull_request: PullRequestPromotion | None = None

    @model_validator(mode="after")
    def check_single_strategy(self) -> Promotion:
        """Reject specs that configure more than one strategy."""
        configured = [v for v in (self.notification, self.pull_request) if v is not None]
        if len(configured) > 1:
            raise ValueError("only one promotion strategy may be configured")
        return self

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Promotion:
        """Create from ``spec.promotion``.

        Strategy variants are accepted nested under ``strategy`` or inline.
        """
        strategy: dict[str, Any] = {**obj, **(obj.get("strategy") or {})}
        notification = strategy.get("notification")
        pull_request = strategy.get("pull-request", strategy.get("pullRequest"))

        pr: PullRequestPromotion | None = None
        if pull_request is not None:
            secret_ref: dict[str, Any] = pull_request.get("secretRef") or {}
            pr = PullRequestPromotion(
                url=pull_request.get("url", ""),
                branch=pull_request.get("branch") or DEFAULT_BRANCH,
                secret_ref=LocalObjectReference(name=secret_ref.get("name", "")),
            )
        return cls(
            manual=bool(obj.get("manual", False)),
            notification=NotificationPromotion() if notification is not None else None,
            pull_request=pr,
        )


class PipelineSpec(_SpecModel):
    """Desired state of a pipeline."""

    app_ref: LocalAppReference
    environments: list[Environment] = Field(min_length=1)
    promotion: Promotion | None = None

    @field_validator("environments")
    @classmethod
    def validate_unique_names(cls, v: list[Environment]) -> list[Environment]:
        """Environment names must be unique within a pipeline."""
        seen: set[str] = set()
        for env in v:
            if env.name in seen:
                raise ValueError(f"duplicate environment name: {env.name}")
            seen.add(env.name)
        return v

    @classmethod
    def from_k8s_object(cls, spec: dict[str, Any]) -> PipelineSpec:
        """Create from the ``spec`` dict of a Pipeline object."""
        app_ref: dict[str, Any] = spec.get("appRef") or {}
        environments = []
        for env in spec.get("environments") or []:
            targets = []
            for t in env.get("targets") or []:
                cluster_ref: dict[str, Any] | None = t.get("clusterRef")
                targets.append(
                    Target(
                        namespace=t.get("namespace", ""),
                        cluster_ref=CrossNamespaceClusterReference(
                            kind=cluster_ref.get("kind") or DEFAULT_CLUSTER_KIND,
                            name=cluster_ref.get("name", ""),
                            namespace=cluster_ref.get("namespace"),
                        )
                        if cluster_ref
                        else None,
                    )
                )
            environments.append(Environment(name=env.get("name", ""), targets=targets))

        promotion: dict[str, Any] | None = spec.get("promotion")
        return cls(
            app_ref=LocalAppReference(
                api_version=app_ref.get("apiVersion", ""),
                kind=app_ref.get("kind", ""),
                name=app_ref.get("name", ""),
            ),
            environments=environments,
            promotion=Promotion.from_k8s_object(promotion) if promotion is not None else None,
        )


class TargetStatus(BaseModel):
    """Observed state of one target."""

    ready: bool = False
    revision: str = ""
    error: str = ""

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> TargetStatus:
        return cls(
            ready=bool(obj.get("ready", False)),
            revision=obj.get("revision") or "",
            error=obj.get("error") or "",
        )

    def to_k8s_object(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ready": self.ready, "revision": self.revision}
        if self.error:
            out["error"] = self.error
        return out


class EnvironmentStatus(BaseModel):
    """Observed state of an environment, one entry per spec target."""

    targets: list[TargetStatus] = Field(default_factory=list)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> EnvironmentStatus:
        return cls(targets=[TargetStatus.from_k8s_object(t) for t in obj.get("targets") or []])

    def to_k8s_object(self) -> dict[str, Any]:
        return {"targets": [t.to_k8s_object() for t in self.targets]}


class PipelineStatus(BaseModel):
    """Observed state of a pipeline."""

    observed_generation: int | None = None
    environments: dict[str, EnvironmentStatus] = Field(default_factory=dict)
    conditions: list[Condition] = Field(default_factory=list)

    @classmethod
    def from_k8s_object(cls, status: dict[str, Any]) -> PipelineStatus:
        environments: dict[str, Any] = status.get("environments") or {}
        return cls(
            observed_generation=status.get("observedGeneration"),
            environments={
                name: EnvironmentStatus.from_k8s_object(env) for name, env in environments.items()
            },
            conditions=parse_conditions(status),
        )

    def to_k8s_object(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "environments": {
                name: env.to_k8s_object() for name, env in self.environments.items()
            },
            "conditions": [c.to_k8s_object() for c in self.conditions],
        }
        if self.observed_generation is not None:
            out["observedGeneration"] = self.observed_generation
        return out


class Pipeline(BaseModel):
    """A Pipeline custom resource."""

    name: str
    namespace: str
    resource_version: str | None = None
    generation: int | None = None
    spec: PipelineSpec
    status: PipelineStatus = Field(default_factory=PipelineStatus)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Pipeline:
        """Create from a Pipeline CRD dict.

        Raises:
            pydantic.ValidationError: If the spec is malformed.
        """
        metadata: dict[str, Any] = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            resource_version=metadata.get("resourceVersion"),
            generation=metadata.get("generation"),
            spec=PipelineSpec.from_k8s_object(obj.get("spec") or {}),
            status=PipelineStatus.from_k8s_object(obj.get("status") or {}),
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def status_update_body(self, status: PipelineStatus) -> dict[str, Any]:
        """Body for a status subresource update conditioned on the read version."""
        return status_update_body(self.name, self.namespace, self.resource_version, status)


def status_update_body(
    name: str,
    namespace: str,
    resource_version: str | None,
    status: PipelineStatus,
) -> dict[str, Any]:
    """Build a Pipeline status update body."""
    metadata: dict[str, Any] = {"name": name, "namespace": namespace}
    if resource_version is not None:
        metadata["resourceVersion"] = resource_version
    return {
        "apiVersion": PIPELINE_KIND.api_version,
        "kind": PIPELINE_KIND.kind,
        "metadata": metadata,
        "status": status.to_k8s_object(),
    }
