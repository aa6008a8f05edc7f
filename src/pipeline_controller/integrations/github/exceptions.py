"""GitHub REST API exceptions."""

from __future__ import annotations

from typing import Any


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code (if applicable).
        response_body: Parsed response body (if available).
        endpoint: The API endpoint that was called.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.endpoint = endpoint

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.endpoint:
            parts.append(f"[endpoint: {self.endpoint}]")
        return " ".join(parts)


class GitHubConnectionError(GitHubAPIError):
    """The API could not be reached (network error or timeout)."""

    def __init__(
        self,
        message: str = "Failed to connect to GitHub API",
        endpoint: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message=message, endpoint=endpoint)
        self.original_error = original_error


class GitHubAuthError(GitHubAPIError):
    """The token was rejected (401) or lacks permission (403)."""


class GitHubNotFoundError(GitHubAPIError):
    """The repository or endpoint does not exist, or is hidden from the token."""


class GitHubValidationError(GitHubAPIError):
    """The request was rejected as invalid (422).

    Attributes:
        errors: The ``errors`` array of the response, when present.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        response_body: dict[str, Any] | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=422,
            response_body=response_body,
            endpoint=endpoint,
        )
        self.errors = errors or []


class GitHubCancelledError(GitHubAPIError):
    """The caller cancelled the request before it could be retried."""
