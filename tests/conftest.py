"""Shared pytest fixtures for pipeline_controller tests."""

from __future__ import annotations

import os
import shutil
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from pipeline_controller.services.clusters import ClusterResolver
from pipeline_controller.services.pipeline.reconciler import PipelineReconciler
from pipeline_controller.services.strategy.base import StrategyRegistry
from tests.fakes import FakeStrategy, InMemoryControlPlane


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset environment variables for each test."""
    for key in list(os.environ.keys()):
        if key.startswith("PIPELINE_CONTROLLER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def control_plane() -> InMemoryControlPlane:
    """Empty in-memory management cluster."""
    return InMemoryControlPlane()


@pytest.fixture
def strategy() -> FakeStrategy:
    """Strategy that records promotions instead of performing them."""
    return FakeStrategy()


@pytest.fixture
def reconciler(control_plane: InMemoryControlPlane, strategy: FakeStrategy) -> PipelineReconciler:
    """Reconciler wired to the in-memory control plane and the fake strategy."""
    return PipelineReconciler(
        control_plane, StrategyRegistry([strategy]), ClusterResolver(control_plane)
    )


@pytest.fixture
def git_binary() -> Generator[str]:
    """Path of the git executable; skips the test when git is missing."""
    path = shutil.which("git")
    if path is None:
        pytest.skip("git executable not available")
    yield path


@pytest.fixture
def git_identity(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, Any]:
    """Isolate git from the user's global configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    return {"home": home}
