"""Shallow git working copies driven through GitPython.

Credentials never touch the remote URL or the on-disk git config: basic auth
is sent as an ``http.extraHeader`` and a custom CA as ``http.sslCAInfo``, both
passed through ``GIT_CONFIG_*`` environment variables for the lifetime of the
working copy. Terminal prompts are disabled so a missing credential fails fast
instead of hanging a worker, and network commands are killed as soon as the
caller cancels them.
"""

from __future__ import annotations

import base64
import re
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import git
import structlog
from git.exc import CommandError

from pipeline_controller.integrations.git.exceptions import (
    GitCloneError,
    GitCommitError,
    GitInterruptedError,
    GitPushError,
)

logger = structlog.get_logger()

DEFAULT_REMOTE = "origin"
CA_FILE_NAME = "ca.pem"

# Seconds between cancellation checks while a git command runs
POLL_INTERVAL = 0.1

_STDERR_PATTERN = re.compile(r"stderr: '(.*)'", re.DOTALL)


@dataclass(frozen=True)
class GitCredentials:
    """HTTPS credentials for a remote."""

    username: str = ""
    password: str = ""
    ca_data: bytes = b""

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.username or self.password)


@dataclass(frozen=True)
class CommitAuthor:
    name: str
    email: str


def command_stderr(error: CommandError) -> str:
    """git's own error output from a failed command, without GitPython's framing."""
    raw = error.stderr or ""
    match = _STDERR_PATTERN.search(raw)
    text = (match.group(1) if match else raw).strip()
    return text or str(error).strip()


def auth_environment(credentials: GitCredentials, scratch_dir: Path) -> dict[str, str]:
    """Environment for git commands talking to an authenticated remote.

    Args:
        credentials: Basic auth and CA bundle; empty values mean anonymous
            access and the system trust store.
        scratch_dir: Directory the CA bundle is written to. Must outlive
            every command run with the returned environment.
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    config: list[tuple[str, str]] = []

    if credentials.has_basic_auth:
        token = base64.b64encode(
            f"{credentials.username}:{credentials.password}".encode()
        ).decode()
        config.append(("http.extraHeader", f"Authorization: Basic {token}"))

    if credentials.ca_data:
        ca_path = scratch_dir / CA_FILE_NAME
        ca_path.write_bytes(credentials.ca_data)
        config.append(("http.sslCAInfo", str(ca_path)))

    env["GIT_CONFIG_COUNT"] = str(len(config))
    for i, (key, value) in enumerate(config):
        env[f"GIT_CONFIG_KEY_{i}"] = key
        env[f"GIT_CONFIG_VALUE_{i}"] = value
    return env


def wait_interruptible(
    process: git.Git.AutoInterrupt,
    command: str,
    *,
    cancelled: Callable[[], bool] | None = None,
    timeout: float | None = None,
) -> None:
    """Wait for a git process started with ``as_process=True``.

    The process is killed as soon as ``cancelled`` returns True or
    ``timeout`` seconds have passed.

    Raises:
        GitCommandError: If git exits non-zero.
        GitInterruptedError: If the process was killed.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        try:
            process.proc.wait(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancelled is not None and cancelled():
            reason = "cancelled"
        elif deadline is not None and time.monotonic() >= deadline:
            reason = f"timed out after {timeout:g}s"
        else:
            continue
        process.proc.kill()
        process.proc.wait()
        logger.debug("git_command_killed", command=command, reason=reason)
        raise GitInterruptedError(f"git {command} {reason}", command=command)
    process.wait()


class GitRepository:
    """A working copy cloned for a single promotion.

    Example:
        ```python
        repo = GitRepository.clone(url, workdir / "repo", branch="main",
                                   credentials=creds, scratch_dir=workdir)
        with repo:
            ...edit files under repo.working_dir...
            repo.commit_all("Promote", author=CommitAuthor("bot", "bot@example.com"))
            repo.push("promotion-branch")
        ```
    """

    def __init__(self, repo: git.Repo, env: dict[str, str] | None = None) -> None:
        self._repo = repo
        self._env = dict(env or {})
        if self._env:
            self._repo.git.update_environment(**self._env)

    @classmethod
    def clone(
        cls,
        url: str,
        path: Path,
        *,
        branch: str,
        credentials: GitCredentials | None = None,
        scratch_dir: Path | None = None,
        timeout: float | None = None,
        cancelled: Callable[[], bool] | None = None,
    ) -> GitRepository:
        """Shallow-clone a single branch.

        Raises:
            GitCloneError: If git fails (auth, TLS, transport, missing
                repository or branch).
            GitInterruptedError: If ``cancelled`` turned true or ``timeout``
                passed before the clone finished.
        """
        env = auth_environment(credentials or GitCredentials(), scratch_dir or path.parent)
        log = logger.bind(url=url, branch=branch)
        log.debug("cloning_repository")
        try:
            process = git.Git().clone(
                url,
                str(path),
                branch=branch,
                depth=1,
                single_branch=True,
                env=env,
                as_process=True,
            )
            wait_interruptible(process, "clone", cancelled=cancelled, timeout=timeout)
        except CommandError as e:
            log.debug("clone_failed", error=command_stderr(e))
            raise GitCloneError(command_stderr(e), command="clone") from e
        return cls(git.Repo(path), env)

    @property
    def working_dir(self) -> Path:
        return Path(str(self._repo.working_tree_dir))

    @property
    def head_sha(self) -> str:
        return str(self._repo.head.commit.hexsha)

    @property
    def head_timestamp(self) -> int:
        """Committer timestamp of HEAD in seconds since the epoch."""
        return int(self._repo.head.commit.committed_date)

    def commit_all(
        self,
        message: str,
        *,
        author: CommitAuthor,
        timestamp: int | None = None,
    ) -> str | None:
        """Stage every change and commit it.

        ``author`` is used as both author and committer. With ``timestamp``
        the commit dates are pinned, so committing the same tree on the same
        parent twice yields the same commit id.

        Returns:
            The new commit id, or None when there was nothing to commit.

        Raises:
            GitCommitError: If staging or committing fails.
        """
        env = {
            "GIT_AUTHOR_NAME": author.name,
            "GIT_AUTHOR_EMAIL": author.email,
            "GIT_COMMITTER_NAME": author.name,
            "GIT_COMMITTER_EMAIL": author.email,
        }
        if timestamp is not None:
            env["GIT_AUTHOR_DATE"] = f"{timestamp} +0000"
            env["GIT_COMMITTER_DATE"] = f"{timestamp} +0000"

        try:
            self._repo.git.add(A=True)
            if not self._repo.is_dirty(index=True, working_tree=False, untracked_files=False):
                return None
            self._repo.git.commit("--no-verify", "--no-gpg-sign", m=message, env=env)
        except CommandError as e:
            raise GitCommitError(command_stderr(e), command="commit") from e
        return self.head_sha

    def push(
        self,
        branch: str,
        *,
        force: bool = True,
        timeout: float | None = None,
        cancelled: Callable[[], bool] | None = None,
    ) -> None:
        """Push HEAD to ``branch`` on the origin remote.

        Raises:
            GitPushError: If the remote rejects the push or git fails.
            GitInterruptedError: If cancelled or timed out mid-push.
        """
        args: list[str] = ["--force"] if force else []
        logger.debug("pushing_branch", branch=branch, force=force)
        try:
            process = self._repo.git.push(
                *args, DEFAULT_REMOTE, f"HEAD:refs/heads/{branch}", as_process=True
            )
            wait_interruptible(process, "push", cancelled=cancelled, timeout=timeout)
        except CommandError as e:
            raise GitPushError(command_stderr(e), command="push") from e

    def close(self) -> None:
        self._repo.close()

    def __enter__(self) -> GitRepository:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
