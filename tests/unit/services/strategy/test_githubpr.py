"""Unit tests for the GitHub pull-request promotion strategy."""

from __future__ import annotations

import base64
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from pipeline_controller.integrations.git import (
    GitCloneError,
    GitCredentials,
    GitInterruptedError,
    GitPushError,
)
from pipeline_controller.integrations.github import (
    GitHubCancelledError,
    GitHubValidationError,
    PullRequest,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    Promotion as PromotionSpec,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    LocalObjectReference,
    PullRequestPromotion,
)
from pipeline_controller.integrations.kubernetes.models.resources import SECRET_KIND
from pipeline_controller.services.pipeline.context import ReconcileContext
from pipeline_controller.services.pipeline.exceptions import ReconcileCancelledError
from pipeline_controller.services.strategy import (
    CloneError,
    CredentialsFetchError,
    MissingTokenError,
    Promotion,
    PullRequestAPIError,
    PushError,
    SpecIsNilError,
)
from pipeline_controller.services.strategy.githubpr import (
    DEFAULT_AUTHOR,
    GitHubPR,
    commit_message,
    promotion_branch,
)
from tests.fakes import InMemoryControlPlane

MARKER = '# {"$promotion": "flux-system:podinfo:prod"}'
REPO_URL = "https://github.com/example/fleet"
PR_URL = "https://github.com/example/fleet/pull/7"
REQUEST = Promotion(
    pipeline_namespace="flux-system",
    pipeline_name="podinfo",
    environment="prod",
    version="2.0.0",
    source_environment="dev",
)
BRANCH = "promotion-flux-system-podinfo-prod-2.0.0"


def _spec(url: str = REPO_URL) -> PromotionSpec:
    return PromotionSpec(
        pull_request=PullRequestPromotion(
            url=url, branch="main", secret_ref=LocalObjectReference(name="repo-credentials")
        )
    )


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _add_secret(control_plane: InMemoryControlPlane, *, token: str = "ghp_token") -> None:
    data = {"username": _b64("bot"), "password": _b64("secret")}
    if token:
        data["token"] = _b64(token)
    control_plane.add(
        SECRET_KIND,
        {"metadata": {"name": "repo-credentials", "namespace": "flux-system"}, "data": data},
    )


@pytest.fixture
def checkout(tmp_path: Path) -> Path:
    """Working tree of the cloned repository with one marked manifest."""
    root = tmp_path / "checkout"
    root.mkdir()
    (root / "release.yaml").write_text(f"version: 1.0.0 {MARKER}\n")
    return root


@pytest.fixture
def repo(checkout: Path) -> MagicMock:
    """Cloned repository mock rooted at the checkout."""
    mock = MagicMock()
    mock.__enter__.return_value = mock
    mock.working_dir = checkout
    mock.head_timestamp = 1700000000
    return mock


@pytest.fixture
def git_repository(repo: MagicMock) -> Generator[MagicMock]:
    """Patch GitRepository so clone returns the repository mock."""
    with patch("pipeline_controller.services.strategy.githubpr.GitRepository") as mock:
        mock.clone.return_value = repo
        yield mock


@pytest.fixture
def client() -> MagicMock:
    """GitHub client mock with no open pull requests."""
    mock = MagicMock()
    mock.__enter__.return_value = mock
    mock.list_pull_requests.return_value = []
    mock.create_pull_request.return_value = PullRequest(number=7, html_url=PR_URL)
    return mock


@pytest.fixture
def client_factory(client: MagicMock) -> MagicMock:
    """Factory returning the client mock."""
    return MagicMock(return_value=client)


@pytest.fixture
def strategy(
    control_plane: InMemoryControlPlane, client_factory: MagicMock, tmp_path: Path
) -> GitHubPR:
    """Strategy with a secret in place and mocked collaborators."""
    _add_secret(control_plane)
    return GitHubPR(control_plane, client_factory, workdir=tmp_path)


@pytest.fixture
def ctx() -> ReconcileContext:
    """Reconcile context with a generous deadline."""
    return ReconcileContext(timeout=60)


@pytest.mark.unit
class TestNaming:
    """Tests for branch names and commit messages."""

    def test_branch_name(self) -> None:
        """Branches are named after the promotion."""
        assert promotion_branch(REQUEST) == BRANCH

    def test_branch_name_sanitized(self) -> None:
        """Characters invalid in ref names are replaced."""
        request = Promotion("flux-system", "podinfo", "prod", "sha256:abc..")
        assert promotion_branch(request) == "promotion-flux-system-podinfo-prod-sha256-abc"

    def test_branch_name_lock_suffix(self) -> None:
        """A .lock suffix is dropped."""
        request = Promotion("ns", "p", "prod", "1.0.lock")
        assert promotion_branch(request) == "promotion-ns-p-prod-1.0"

    def test_commit_message(self) -> None:
        """Commit messages name the pipeline, environment and revision."""
        assert commit_message(REQUEST) == "Promote podinfo to prod: 2.0.0"


@pytest.mark.unit
class TestGitHubPR:
    """Tests for GitHubPR.promote."""

    def test_handles_pull_request_specs(self, strategy: GitHubPR) -> None:
        """Only specs with a pull-request variant are claimed."""
        assert strategy.handles(_spec())
        assert not strategy.handles(PromotionSpec(manual=True))

    def test_creates_pull_request(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        checkout: Path,
        client: MagicMock,
        client_factory: MagicMock,
    ) -> None:
        """A full promotion updates, pushes and opens a pull request."""
        result = strategy.promote(ctx, _spec(), REQUEST)

        assert result.location == PR_URL
        assert (checkout / "release.yaml").read_text() == f"version: 2.0.0 {MARKER}\n"

        clone_kwargs = git_repository.clone.call_args.kwargs
        assert git_repository.clone.call_args.args[0] == REPO_URL
        assert clone_kwargs["branch"] == "main"
        assert clone_kwargs["credentials"] == GitCredentials(username="bot", password="secret")

        repo.commit_all.assert_called_once_with(
            "Promote podinfo to prod: 2.0.0", author=DEFAULT_AUTHOR, timestamp=1700000000
        )
        assert repo.push.call_args.args == (BRANCH,)
        assert repo.push.call_args.kwargs["force"] is True

        client_factory.assert_called_once_with("ghp_token", "https://api.github.com")
        assert client.list_pull_requests.call_args.kwargs["head"] == f"example:{BRANCH}"
        create_kwargs = client.create_pull_request.call_args.kwargs
        assert client.create_pull_request.call_args.args == ("example", "fleet")
        assert create_kwargs["head"] == BRANCH
        assert create_kwargs["base"] == "main"
        assert create_kwargs["title"] == "Promote podinfo to prod: 2.0.0"

    def test_reuses_open_pull_request(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        client: MagicMock,
    ) -> None:
        """An open pull request for the branch is reused."""
        existing = "https://github.com/example/fleet/pull/3"
        client.list_pull_requests.return_value = [PullRequest(number=3, html_url=existing)]

        result = strategy.promote(ctx, _spec(), REQUEST)

        assert result.location == existing
        client.create_pull_request.assert_not_called()

    def test_no_change_needed(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        checkout: Path,
        client_factory: MagicMock,
    ) -> None:
        """Manifests already at the revision need no branch or pull request."""
        (checkout / "release.yaml").write_text(f"version: 2.0.0 {MARKER}\n")

        result = strategy.promote(ctx, _spec(), REQUEST)

        assert result.location == REPO_URL
        repo.push.assert_not_called()
        client_factory.assert_not_called()

    def test_api_url_override(
        self,
        control_plane: InMemoryControlPlane,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        client_factory: MagicMock,
        tmp_path: Path,
    ) -> None:
        """A configured API base wins over the one derived from the host."""
        _add_secret(control_plane)
        strategy = GitHubPR(
            control_plane,
            client_factory,
            api_url="https://ghe.example.com/api/v3",
            workdir=tmp_path,
        )
        strategy.promote(ctx, _spec(), REQUEST)
        assert client_factory.call_args.args[1] == "https://ghe.example.com/api/v3"

    def test_spec_is_nil(self, strategy: GitHubPR, ctx: ReconcileContext) -> None:
        """A spec without the pull-request variant is rejected."""
        with pytest.raises(SpecIsNilError, match="PullRequest spec is nil"):
            strategy.promote(ctx, PromotionSpec(manual=True), REQUEST)

    def test_missing_secret(
        self,
        control_plane: InMemoryControlPlane,
        client_factory: MagicMock,
        ctx: ReconcileContext,
    ) -> None:
        """A missing credential Secret fails before cloning."""
        strategy = GitHubPR(control_plane, client_factory)
        with pytest.raises(CredentialsFetchError) as exc_info:
            strategy.promote(ctx, _spec(), REQUEST)
        assert str(exc_info.value) == (
            'failed to fetch credentials: failed to fetch Secret: '
            'secrets "repo-credentials" not found'
        )

    def test_non_https_url(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """Only HTTPS remotes are supported."""
        with pytest.raises(CloneError, match="unsupported URL scheme, only HTTPS supported"):
            strategy.promote(ctx, _spec("ssh://git@github.com/example/fleet"), REQUEST)
        git_repository.clone.assert_not_called()

    def test_empty_url(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """An empty URL has no transport."""
        with pytest.raises(CloneError, match="no transport type set"):
            strategy.promote(ctx, _spec(""), REQUEST)

    def test_clone_failure(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """git failures while cloning surface as CloneError."""
        git_repository.clone.side_effect = GitCloneError("Authentication failed", "clone")
        with pytest.raises(CloneError) as exc_info:
            strategy.promote(ctx, _spec(), REQUEST)
        assert str(exc_info.value) == (
            "failed to clone repo: failed cloning repository: Authentication failed"
        )

    def test_push_failure(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
    ) -> None:
        """A rejected push surfaces as PushError."""
        repo.push.side_effect = GitPushError("permission denied", "push")
        with pytest.raises(PushError, match="permission denied"):
            strategy.promote(ctx, _spec(), REQUEST)

    @pytest.fixture
    def tokenless(
        self, control_plane: InMemoryControlPlane, client_factory: MagicMock, tmp_path: Path
    ) -> GitHubPR:
        """Strategy whose Secret carries git credentials but no API token."""
        _add_secret(control_plane, token="")
        return GitHubPR(control_plane, client_factory, workdir=tmp_path)

    def test_missing_token(
        self,
        tokenless: GitHubPR,
        client_factory: MagicMock,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        checkout: Path,
    ) -> None:
        """An empty token fails right after cloning, before anything is pushed."""
        with pytest.raises(MissingTokenError):
            tokenless.promote(ctx, _spec(), REQUEST)

        git_repository.clone.assert_called_once()
        repo.commit_all.assert_not_called()
        repo.push.assert_not_called()
        client_factory.assert_not_called()
        assert (checkout / "release.yaml").read_text() == f"version: 1.0.0 {MARKER}\n"

    def test_missing_token_when_already_at_revision(
        self,
        tokenless: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        checkout: Path,
    ) -> None:
        """Manifests already at the revision do not hide a missing token."""
        (checkout / "release.yaml").write_text(f"version: 2.0.0 {MARKER}\n")

        with pytest.raises(MissingTokenError):
            tokenless.promote(ctx, _spec(), REQUEST)
        repo.push.assert_not_called()

    def test_missing_token_without_marker(
        self,
        tokenless: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        checkout: Path,
    ) -> None:
        """A repository with no marker for the environment still needs a token."""
        (checkout / "release.yaml").write_text("version: 1.0.0\n")

        with pytest.raises(MissingTokenError):
            tokenless.promote(ctx, _spec(), REQUEST)
        repo.push.assert_not_called()

    def test_empty_secret_ref(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """A spec without a secret name is reported as a missing Secret."""
        spec = PromotionSpec(pull_request=PullRequestPromotion())

        with pytest.raises(CredentialsFetchError) as exc_info:
            strategy.promote(ctx, spec, REQUEST)

        assert str(exc_info.value) == (
            'failed to fetch credentials: failed to fetch Secret: secrets "" not found'
        )
        git_repository.clone.assert_not_called()

    def test_api_failure(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        client: MagicMock,
    ) -> None:
        """API errors surface as PullRequestAPIError with the status."""
        client.create_pull_request.side_effect = GitHubValidationError("Validation Failed")
        with pytest.raises(PullRequestAPIError) as exc_info:
            strategy.promote(ctx, _spec(), REQUEST)
        assert exc_info.value.status_code == 422
        assert "Validation Failed" in str(exc_info.value)

    def test_unparseable_repository_url(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """A URL without owner and repository cannot be mapped to the API."""
        with pytest.raises(PullRequestAPIError, match="failed parsing GitHub URL"):
            strategy.promote(ctx, _spec("https://github.com/example"), REQUEST)

    def test_cancelled_before_clone(
        self, strategy: GitHubPR, git_repository: MagicMock
    ) -> None:
        """A cancelled context stops before any git work."""
        ctx = ReconcileContext(timeout=60)
        ctx.cancel("controller stopping")
        with pytest.raises(ReconcileCancelledError, match="controller stopping"):
            strategy.promote(ctx, _spec(), REQUEST)
        git_repository.clone.assert_not_called()

    def test_cancelled_during_clone(
        self, strategy: GitHubPR, ctx: ReconcileContext, git_repository: MagicMock
    ) -> None:
        """Cancelling while the clone runs kills it and reports the cancellation."""

        def _clone(*args: Any, cancelled: Callable[[], bool], **kwargs: Any) -> MagicMock:
            assert cancelled() is False
            ctx.cancel("pipeline deleted")
            assert cancelled() is True
            raise GitInterruptedError("git clone cancelled", "clone")

        git_repository.clone.side_effect = _clone

        with pytest.raises(ReconcileCancelledError, match="pipeline deleted"):
            strategy.promote(ctx, _spec(), REQUEST)

    def test_cancelled_during_push(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        repo: MagicMock,
        client_factory: MagicMock,
    ) -> None:
        """Cancelling while the push runs stops before the GitHub API is called."""

        def _push(branch: str, *, cancelled: Callable[[], bool], **kwargs: Any) -> None:
            ctx.cancel("controller stopping")
            assert cancelled() is True
            raise GitInterruptedError("git push cancelled", "push")

        repo.push.side_effect = _push

        with pytest.raises(ReconcileCancelledError, match="controller stopping"):
            strategy.promote(ctx, _spec(), REQUEST)
        client_factory.assert_not_called()

    def test_cancelled_during_api_call(
        self,
        strategy: GitHubPR,
        ctx: ReconcileContext,
        git_repository: MagicMock,
        client: MagicMock,
    ) -> None:
        """API calls see the cancellation and it is reported as such."""

        def _list(*args: Any, cancelled: Callable[[], bool], **kwargs: Any) -> list[PullRequest]:
            ctx.cancel("pipeline deleted")
            assert cancelled() is True
            raise GitHubCancelledError("GitHub API request cancelled")

        client.list_pull_requests.side_effect = _list

        with pytest.raises(ReconcileCancelledError, match="pipeline deleted"):
            strategy.promote(ctx, _spec(), REQUEST)
        client.create_pull_request.assert_not_called()
