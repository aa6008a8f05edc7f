"""Git operation exceptions."""

from __future__ import annotations


class GitOperationError(Exception):
    """A git command failed.

    Attributes:
        message: Human-readable error message, usually git's own stderr.
        command: The git subcommand that failed (clone, commit, push).
    """

    def __init__(self, message: str, command: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.command = command

    def __str__(self) -> str:
        return self.message


class GitCloneError(GitOperationError):
    """Cloning failed: auth, TLS, transport or missing repository/branch."""


class GitPushError(GitOperationError):
    """Pushing the promotion branch failed."""


class GitCommitError(GitOperationError):
    """Staging or committing the working copy failed."""


class GitInterruptedError(GitOperationError):
    """A git command was killed because it was cancelled or ran out of time."""
