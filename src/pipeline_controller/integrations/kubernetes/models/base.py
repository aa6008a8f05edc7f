"""Shared resource models: API coordinates and status conditions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ResourceKind:
    """API coordinates of a resource kind."""

    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @property
    def display_name(self) -> str:
        """Name used in API-style error messages.

        Core kinds use the plural (``secrets``), custom kinds use
        ``Kind.group`` (``GitopsCluster.gitops.weave.works``).
        """
        if not self.group:
            return self.plural
        return f"{self.kind}.{self.group}"

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> ResourceKind:
        """Build coordinates from an ``apiVersion``/``kind`` pair.

        The plural is derived as the lowercased kind plus ``s``, which holds
        for the Flux application kinds (``helmreleases``, ``kustomizations``).
        """
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind, plural=f"{kind.lower()}s")


class Condition(BaseModel):
    """Status condition from ``.status.conditions[]``."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(description="Condition type (Ready, PromotionPending, ...)")
    status: str = Field(default=CONDITION_UNKNOWN, description="True, False or Unknown")
    reason: str = Field(default="", description="Machine-readable reason")
    message: str = Field(default="", description="Human-readable message")
    last_transition_time: str | None = Field(default=None, description="Last transition timestamp")
    observed_generation: int | None = Field(default=None, description="Generation observed")

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> Condition:
        """Create from a condition dict."""
        return cls(
            type=obj.get("type", ""),
            status=obj.get("status", CONDITION_UNKNOWN),
            reason=obj.get("reason", ""),
            message=obj.get("message") or "",
            last_transition_time=obj.get("lastTransitionTime"),
            observed_generation=obj.get("observedGeneration"),
        )

    def to_k8s_object(self) -> dict[str, Any]:
        """Serialize to the API wire format."""
        out: dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }
        if self.last_transition_time:
            out["lastTransitionTime"] = self.last_transition_time
        if self.observed_generation is not None:
            out["observedGeneration"] = self.observed_generation
        return out


def parse_conditions(status: dict[str, Any]) -> list[Condition]:
    """Parse ``.status.conditions`` into a list of Condition."""
    raw: list[dict[str, Any]] = status.get("conditions") or []
    return [Condition.from_k8s_object(c) for c in raw]


def is_condition_true(conditions: list[Condition], condition_type: str) -> bool:
    """Whether the condition of the given type is present and True."""
    for c in conditions:
        if c.type == condition_type:
            return c.status == CONDITION_TRUE
    return False
