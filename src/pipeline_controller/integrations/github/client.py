"""GitHub REST API client for pull requests."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast
from urllib.parse import urlsplit

import httpx
import structlog
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from pipeline_controller import __version__
from pipeline_controller.integrations.github.config import GitHubConfig
from pipeline_controller.integrations.github.exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    GitHubCancelledError,
    GitHubConnectionError,
    GitHubNotFoundError,
    GitHubValidationError,
)

logger = structlog.get_logger()

PUBLIC_GITHUB_HOSTS = ("github.com", "www.github.com")
PUBLIC_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"

# Seconds between cancellation checks while waiting to retry
CANCEL_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class RepositoryCoordinates:
    """Host, owner and repository name parsed from a clone URL."""

    host: str
    owner: str
    repo: str

    @property
    def api_url(self) -> str:
        """REST API base for the host: public GitHub or an Enterprise server."""
        if self.host.lower() in PUBLIC_GITHUB_HOSTS:
            return PUBLIC_API_URL
        return f"https://{self.host}/api/v3"


def _cancellable_sleep(cancelled: Callable[[], bool]) -> Callable[[float], None]:
    def _sleep(seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not cancelled():
            left = deadline - time.monotonic()
            if left <= 0:
                return
            time.sleep(min(left, CANCEL_POLL_INTERVAL))

    return _sleep


def parse_repository_url(url: str) -> RepositoryCoordinates:
    """Parse ``https://<host>/<owner>/<repo>[.git]``.

    Raises:
        ValueError: If the scheme is not HTTPS or the path has no owner/repo.
    """
    parts = urlsplit(url)
    if parts.scheme != "https":
        raise ValueError("unsupported URL scheme, only HTTPS supported")
    segments = [s for s in parts.path.split("/") if s]
    if not parts.hostname or len(segments) < 2:
        raise ValueError(f"URL {url!r} does not name an owner and repository")
    owner, repo = segments[-2], segments[-1].removesuffix(".git")
    host = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"
    return RepositoryCoordinates(host=host, owner=owner, repo=repo)


class PullRequest(BaseModel):
    """The fields of a pull request the controller uses."""

    number: int
    html_url: str
    state: str = "open"
    title: str = ""
    head_ref: str = ""
    base_ref: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PullRequest:
        return cls(
            number=data.get("number", 0),
            html_url=data.get("html_url", ""),
            state=data.get("state", "open"),
            title=data.get("title", ""),
            head_ref=(data.get("head") or {}).get("ref", ""),
            base_ref=(data.get("base") or {}).get("ref", ""),
        )


class GitHubClient:
    """HTTP client for the GitHub pull requests API.

    Example:
        ```python
        with GitHubClient(token, "https://api.github.com") as client:
            client.list_pull_requests("org", "repo", head="org:promotion-branch")
        ```
    """

    def __init__(self, token: str, base_url: str, config: GitHubConfig | None = None) -> None:
        """Initialize the client.

        Args:
            token: Token sent as a bearer credential.
            base_url: REST API base, e.g. ``https://api.github.com``.
            config: Timeout, TLS and retry settings.
        """
        self.config = config or GitHubConfig()
        self.base_url = base_url.rstrip("/")
        self._retries = self.config.retries
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.config.timeout),
            verify=self.config.verify_ssl,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "User-Agent": f"pipeline-controller/{__version__}",
                "X-GitHub-Api-Version": API_VERSION,
            },
        )
        logger.debug("github_client_initialized", base_url=self.base_url)

    def _make_retry_decorator(self, cancelled: Callable[[], bool] | None = None) -> Any:
        """Retry connection errors; with ``cancelled``, stop retrying once it is true."""
        options: dict[str, Any] = {"stop": stop_after_attempt(self._retries)}
        if cancelled is not None:
            options["stop"] = stop_any(options["stop"], lambda _: cancelled())
            options["sleep"] = _cancellable_sleep(cancelled)
        return retry(
            retry=retry_if_exception_type(GitHubConnectionError),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
            **options,
        )

    def _handle_response(self, response: httpx.Response, endpoint: str) -> Any:
        """Parse the response body or raise the matching exception.

        Raises:
            GitHubAuthError: On 401/403.
            GitHubNotFoundError: On 404.
            GitHubValidationError: On 422.
            GitHubAPIError: For other error statuses.
        """
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"raw": response.text}

        if response.is_success:
            return body

        status = response.status_code
        error_body = body if isinstance(body, dict) else {"raw": body}
        message = error_body.get("message", f"GitHub API error: {status}")

        if status in (401, 403):
            raise GitHubAuthError(
                message=message, status_code=status, response_body=error_body, endpoint=endpoint
            )
        if status == 404:
            raise GitHubNotFoundError(
                message=message, status_code=status, response_body=error_body, endpoint=endpoint
            )
        if status == 422:
            raise GitHubValidationError(
                message=message,
                errors=error_body.get("errors"),
                response_body=error_body,
                endpoint=endpoint,
            )
        raise GitHubAPIError(
            message=message, status_code=status, response_body=error_body, endpoint=endpoint
        )

    def _request(
        self,
        method: str,
        endpoint: str,
        cancelled: Callable[[], bool] | None = None,
        **kwargs: Any,
    ) -> Any:
        url = f"/{endpoint.lstrip('/')}"
        log = logger.bind(method=method, endpoint=url)
        if cancelled is not None and cancelled():
            raise GitHubCancelledError(message="GitHub API request cancelled", endpoint=url)
        try:
            log.debug("github_api_request")
            response = self._client.request(method, url, **kwargs)
            log.debug("github_api_response", status=response.status_code)
            return self._handle_response(response, url)
        except httpx.TransportError as e:
            log.warning("github_connection_error", error=str(e))
            raise GitHubConnectionError(
                message=f"Failed to reach GitHub API: {e}",
                endpoint=url,
                original_error=e,
            ) from e

    def list_pull_requests(
        self,
        owner: str,
        repo: str,
        *,
        head: str | None = None,
        base: str | None = None,
        state: str = "open",
        timeout: float | None = None,
        cancelled: Callable[[], bool] | None = None,
    ) -> list[PullRequest]:
        """List pull requests, optionally filtered by ``owner:branch`` head."""
        params: dict[str, str] = {"state": state}
        if head:
            params["head"] = head
        if base:
            params["base"] = base
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        result = self._make_retry_decorator(cancelled)(self._request)(
            "GET", f"repos/{owner}/{repo}/pulls", cancelled, **kwargs
        )
        return [PullRequest.from_api(item) for item in cast(list[dict[str, Any]], result)]

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str = "",
        timeout: float | None = None,
        cancelled: Callable[[], bool] | None = None,
    ) -> PullRequest:
        """Open a pull request from ``head`` into ``base``."""
        kwargs: dict[str, Any] = {
            "json": {"title": title, "head": head, "base": base, "body": body}
        }
        if timeout is not None:
            kwargs["timeout"] = timeout
        result = self._make_retry_decorator(cancelled)(self._request)(
            "POST", f"repos/{owner}/{repo}/pulls", cancelled, **kwargs
        )
        return PullRequest.from_api(cast(dict[str, Any], result))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


GitHubClientFactory = Callable[[str, str], GitHubClient]
"""Builds a client from ``(token, api_url)``; swapped out in tests."""


def default_client_factory(config: GitHubConfig | None = None) -> GitHubClientFactory:
    """Factory producing real clients that share ``config``."""

    def _factory(token: str, api_url: str) -> GitHubClient:
        return GitHubClient(token, api_url, config)

    return _factory
