"""Pull-request promotion strategy for GitHub repositories.

Promoting a revision into an environment means: clone the repository the
environment syncs from, set every value marked for that environment to the
revision, push the change to a branch named after the promotion and open (or
reuse) a pull request for it. The branch name and the commit are both
deterministic, so repeating a promotion converges on the same branch and the
same pull request.
"""

from __future__ import annotations

import re
import tempfile
from pathlib import Path
from urllib.parse import urlsplit

import structlog

from pipeline_controller.integrations.git import (
    CommitAuthor,
    GitCloneError,
    GitCredentials,
    GitInterruptedError,
    GitOperationError,
    GitRepository,
)
from pipeline_controller.integrations.github import (
    GitHubAPIError,
    GitHubClientFactory,
    default_client_factory,
    parse_repository_url,
)
from pipeline_controller.integrations.kubernetes.exceptions import KubernetesError
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    Promotion as PromotionSpec,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import PullRequestPromotion
from pipeline_controller.integrations.kubernetes.models.resources import SECRET_KIND, SecretData
from pipeline_controller.services.controlplane import ControlPlane
from pipeline_controller.services.pipeline.context import ReconcileContext
from pipeline_controller.services.strategy.base import Promotion, PromotionResult, Strategy
from pipeline_controller.services.strategy.exceptions import (
    CloneError,
    CredentialsFetchError,
    MissingTokenError,
    PullRequestAPIError,
    PushError,
    SpecIsNilError,
)
from pipeline_controller.services.strategy.manifests import promotion_setter, update_manifests

logger = structlog.get_logger()

# Keys read from the credentials Secret
TOKEN_KEY = "token"
USERNAME_KEY = "username"
PASSWORD_KEY = "password"
CA_FILE_KEY = "caFile"

DEFAULT_AUTHOR = CommitAuthor(name="Pipeline Controller", email="pipeline-controller@noreply.local")

_UNSAFE_BRANCH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def promotion_branch(request: Promotion) -> str:
    """Branch holding the change for ``request``, valid as a git ref name."""
    raw = (
        f"promotion-{request.pipeline_namespace}-{request.pipeline_name}"
        f"-{request.environment}-{request.version}"
    )
    name = _UNSAFE_BRANCH_CHARS.sub("-", raw)
    name = re.sub(r"\.{2,}", ".", name)
    name = name.strip(".-")
    return name.removesuffix(".lock")


def commit_message(request: Promotion) -> str:
    return f"Promote {request.pipeline_name} to {request.environment}: {request.version}"


class GitHubPR(Strategy):
    """Promote by opening a pull request against a GitHub repository.

    Example:
        ```python
        strategy = GitHubPR(control_plane)
        result = strategy.promote(ctx, pipeline.spec.promotion, request)
        print(result.location)  # pull request URL
        ```
    """

    name = "pull-request"

    def __init__(
        self,
        control_plane: ControlPlane,
        client_factory: GitHubClientFactory | None = None,
        *,
        api_url: str | None = None,
        workdir: Path | None = None,
        author: CommitAuthor = DEFAULT_AUTHOR,
    ) -> None:
        """Initialize the strategy.

        Args:
            control_plane: Where credential Secrets are read from.
            client_factory: Builds GitHub clients from ``(token, api_url)``.
            api_url: API base overriding the one derived from the repository host.
            workdir: Parent directory for temporary clones.
            author: Author and committer of promotion commits.
        """
        self._control_plane = control_plane
        self._client_factory = client_factory or default_client_factory()
        self._api_url = api_url
        self._workdir = workdir
        self._author = author
        self._log = logger.bind(strategy=self.name)

    def handles(self, promotion: PromotionSpec) -> bool:
        return promotion.pull_request is not None

    def promote(
        self,
        ctx: ReconcileContext,
        promotion: PromotionSpec,
        request: Promotion,
    ) -> PromotionResult:
        spec = promotion.pull_request if promotion is not None else None
        if spec is None:
            raise SpecIsNilError()

        log = self._log.bind(
            pipeline=f"{request.pipeline_namespace}/{request.pipeline_name}",
            environment=request.environment,
            revision=request.version,
        )

        ctx.check()
        credentials, token = self._fetch_credentials(
            request.pipeline_namespace, spec.secret_ref.name
        )
        self._check_transport(spec.url)

        with tempfile.TemporaryDirectory(prefix="promotion-", dir=self._workdir) as tmp:
            scratch = Path(tmp)
            ctx.check()
            with self._clone(ctx, spec, credentials, scratch) as repo:
                if not token:
                    raise MissingTokenError()
                ctx.check()
                setter = promotion_setter(
                    request.pipeline_namespace, request.pipeline_name, request.environment
                )
                changed = update_manifests(repo.working_dir, setter, request.version)
                if not changed:
                    log.info("manifests_already_at_revision")
                    return PromotionResult(location=spec.url)

                branch = promotion_branch(request)
                ctx.check()
                self._push(ctx, repo, branch, commit_message(request))
                log.debug("promotion_branch_pushed", branch=branch, files=len(changed))

        ctx.check()
        return self._open_pull_request(ctx, spec, token, branch, request)

    def _fetch_credentials(self, namespace: str, name: str) -> tuple[GitCredentials, str]:
        """Read git credentials and the API token from the Secret.

        Raises:
            CredentialsFetchError: If the Secret is missing or malformed.
        """
        try:
            obj = self._control_plane.get(SECRET_KIND, namespace, name)
        except KubernetesError as e:
            raise CredentialsFetchError(f"failed to fetch Secret: {e}") from e
        try:
            secret = SecretData.from_k8s_object(obj)
        except ValueError as e:
            raise CredentialsFetchError(f"failed to parse Secret: {e}") from e

        credentials = GitCredentials(
            username=secret.get_str(USERNAME_KEY),
            password=secret.get_str(PASSWORD_KEY),
            ca_data=secret.data.get(CA_FILE_KEY, b""),
        )
        return credentials, secret.get_str(TOKEN_KEY)

    @staticmethod
    def _check_transport(url: str) -> None:
        """Only HTTPS remotes are supported.

        Raises:
            CloneError: For an empty URL or any other scheme.
        """
        prefix = f'failed configuring auth opts for repo URL "{url}"'
        if not url:
            raise CloneError(f"{prefix}: no transport type set")
        if urlsplit(url).scheme != "https":
            raise CloneError(f"{prefix}: unsupported URL scheme, only HTTPS supported")

    def _clone(
        self,
        ctx: ReconcileContext,
        spec: PullRequestPromotion,
        credentials: GitCredentials,
        scratch: Path,
    ) -> GitRepository:
        try:
            return GitRepository.clone(
                spec.url,
                scratch / "repo",
                branch=spec.branch,
                credentials=credentials,
                scratch_dir=scratch,
                timeout=ctx.remaining(),
                cancelled=lambda: ctx.cancelled,
            )
        except GitInterruptedError as e:
            ctx.check()
            raise CloneError(f"failed cloning repository: {e}") from e
        except GitCloneError as e:
            raise CloneError(f"failed cloning repository: {e}") from e

    def _push(self, ctx: ReconcileContext, repo: GitRepository, branch: str, message: str) -> None:
        try:
            # Base commit time keeps retries producing the same commit id
            repo.commit_all(message, author=self._author, timestamp=repo.head_timestamp)
            repo.push(
                branch, force=True, timeout=ctx.remaining(), cancelled=lambda: ctx.cancelled
            )
        except GitInterruptedError as e:
            ctx.check()
            raise PushError(str(e)) from e
        except GitOperationError as e:
            raise PushError(str(e)) from e

    def _open_pull_request(
        self,
        ctx: ReconcileContext,
        spec: PullRequestPromotion,
        token: str,
        branch: str,
        request: Promotion,
    ) -> PromotionResult:
        """Reuse the open pull request for ``branch`` or create one.

        Raises:
            PullRequestAPIError: If the URL cannot be mapped to a repository
                or the API call fails.
        """
        try:
            repository = parse_repository_url(spec.url)
        except ValueError as e:
            raise PullRequestAPIError(f"failed parsing GitHub URL: {e}") from e

        log = self._log.bind(owner=repository.owner, repo=repository.repo, branch=branch)
        client = self._client_factory(token, self._api_url or repository.api_url)
        try:
            with client:
                existing = client.list_pull_requests(
                    repository.owner,
                    repository.repo,
                    head=f"{repository.owner}:{branch}",
                    state="open",
                    timeout=ctx.remaining(),
                    cancelled=lambda: ctx.cancelled,
                )
                if existing:
                    log.info("pull_request_reused", url=existing[0].html_url)
                    return PromotionResult(location=existing[0].html_url)

                ctx.check()
                pr = client.create_pull_request(
                    repository.owner,
                    repository.repo,
                    title=commit_message(request),
                    head=branch,
                    base=spec.branch,
                    body=(
                        f"Promote revision {request.version} of pipeline "
                        f"{request.pipeline_namespace}/{request.pipeline_name} "
                        f"from {request.source_environment or 'the previous environment'} "
                        f"to {request.environment}."
                    ),
                    timeout=ctx.remaining(),
                    cancelled=lambda: ctx.cancelled,
                )
        except GitHubAPIError as e:
            ctx.check()
            raise PullRequestAPIError(str(e), status_code=e.status_code) from e

        log.info("pull_request_created", url=pr.html_url, number=pr.number)
        return PromotionResult(location=pr.html_url)
