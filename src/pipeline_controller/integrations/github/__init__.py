"""GitHub integration: pull request REST client, configuration and errors."""

from pipeline_controller.integrations.github.client import (
    GitHubClient,
    GitHubClientFactory,
    PullRequest,
    RepositoryCoordinates,
    default_client_factory,
    parse_repository_url,
)
from pipeline_controller.integrations.github.config import GitHubConfig
from pipeline_controller.integrations.github.exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubCancelledError,
    GitHubConnectionError,
    GitHubNotFoundError,
    GitHubValidationError,
)

__all__ = [
    "GitHubAPIError",
    "GitHubAuthError",
    "GitHubCancelledError",
    "GitHubClient",
    "GitHubClientFactory",
    "GitHubConfig",
    "GitHubConnectionError",
    "GitHubNotFoundError",
    "GitHubValidationError",
    "PullRequest",
    "RepositoryCoordinates",
    "default_client_factory",
    "parse_repository_url",
]
