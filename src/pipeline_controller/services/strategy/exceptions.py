"""Promotion strategy errors.

Messages are reported verbatim in conditions and events, so each wrapper
prefixes the step that failed and keeps the underlying cause.
"""

from __future__ import annotations

from pipeline_controller.services.pipeline.exceptions import PipelineError, SpecError


class StrategyNotFoundError(SpecError):
    """No registered strategy claims the pipeline's promotion spec."""

    def __init__(self, message: str = "no promotion strategy found for the pipeline") -> None:
        super().__init__(message)


class SpecIsNilError(SpecError):
    """The strategy was invoked without the promotion variant it needs."""

    def __init__(self, message: str = "PullRequest spec is nil") -> None:
        super().__init__(message)


class PromotionError(PipelineError):
    """Base for failures while carrying out a promotion."""


class CredentialsFetchError(PromotionError):
    """The credential Secret is missing or unreadable."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"failed to fetch credentials: {cause}")


class CloneError(PromotionError):
    """Transport setup or cloning failed (auth, TLS, repository not found)."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"failed to clone repo: {cause}")


class ManifestUpdateError(PromotionError):
    """No manifest in the repository could be updated for the promotion."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"failed to update manifests: {cause}")


class PushError(PromotionError):
    """Committing or pushing the promotion branch failed."""

    def __init__(self, cause: str) -> None:
        super().__init__(f"failed to push promotion branch: {cause}")


class MissingTokenError(PromotionError):
    """The credential Secret carries no API token."""

    def __init__(self) -> None:
        super().__init__("failed to create PR: GitHub token is empty")


class PullRequestAPIError(PromotionError):
    """Listing or creating the pull request failed.

    Attributes:
        status_code: HTTP status of the failed call, if any.
    """

    def __init__(self, cause: str, status_code: int | None = None) -> None:
        super().__init__(f"failed to create PR: {cause}")
        self.status_code = status_code
