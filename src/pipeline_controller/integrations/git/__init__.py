"""Git working-copy operations."""

from pipeline_controller.integrations.git.exceptions import (
    GitCloneError,
    GitCommitError,
    GitInterruptedError,
    GitOperationError,
    GitPushError,
)
from pipeline_controller.integrations.git.repository import (
    CommitAuthor,
    GitCredentials,
    GitRepository,
    auth_environment,
)

__all__ = [
    "CommitAuthor",
    "GitCloneError",
    "GitCommitError",
    "GitCredentials",
    "GitInterruptedError",
    "GitOperationError",
    "GitPushError",
    "GitRepository",
    "auth_environment",
]
