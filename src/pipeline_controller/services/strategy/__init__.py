"""Promotion strategies and the registry the reconciler selects them from."""

from pipeline_controller.services.strategy.base import (
    Promotion,
    PromotionResult,
    Strategy,
    StrategyRegistry,
)
from pipeline_controller.services.strategy.exceptions import (
    CloneError,
    CredentialsFetchError,
    ManifestUpdateError,
    MissingTokenError,
    PromotionError,
    PullRequestAPIError,
    PushError,
    SpecIsNilError,
    StrategyNotFoundError,
)
from pipeline_controller.services.strategy.githubpr import GitHubPR

__all__ = [
    "CloneError",
    "CredentialsFetchError",
    "GitHubPR",
    "ManifestUpdateError",
    "MissingTokenError",
    "Promotion",
    "PromotionError",
    "PromotionResult",
    "PullRequestAPIError",
    "PushError",
    "SpecIsNilError",
    "Strategy",
    "StrategyNotFoundError",
    "StrategyRegistry",
]
