"""Resource models for pipelines and the objects they reference."""

from pipeline_controller.integrations.kubernetes.models.base import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    Condition,
    ResourceKind,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    DEFAULT_BRANCH,
    PIPELINE_KIND,
    CrossNamespaceClusterReference,
    Environment,
    EnvironmentStatus,
    LocalAppReference,
    LocalObjectReference,
    NotificationPromotion,
    Pipeline,
    PipelineSpec,
    PipelineStatus,
    Promotion,
    PullRequestPromotion,
    Target,
    TargetStatus,
)
from pipeline_controller.integrations.kubernetes.models.resources import (
    GITOPS_CLUSTER_KIND,
    SECRET_KIND,
    AppStatus,
    GitopsCluster,
    SecretData,
)

__all__ = [
    "CONDITION_FALSE",
    "CONDITION_TRUE",
    "CONDITION_UNKNOWN",
    "DEFAULT_BRANCH",
    "GITOPS_CLUSTER_KIND",
    "PIPELINE_KIND",
    "SECRET_KIND",
    "AppStatus",
    "Condition",
    "CrossNamespaceClusterReference",
    "Environment",
    "EnvironmentStatus",
    "GitopsCluster",
    "LocalAppReference",
    "LocalObjectReference",
    "NotificationPromotion",
    "Pipeline",
    "PipelineSpec",
    "PipelineStatus",
    "Promotion",
    "PullRequestPromotion",
    "ResourceKind",
    "SecretData",
    "Target",
    "TargetStatus",
]
