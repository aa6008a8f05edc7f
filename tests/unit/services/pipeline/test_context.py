"""Unit tests for ReconcileContext and pipeline exceptions."""

from __future__ import annotations

import threading

import pytest

from pipeline_controller.services.pipeline.context import ReconcileContext
from pipeline_controller.services.pipeline.exceptions import (
    AppFetchError,
    ClusterNotFoundError,
    ClusterNotReadyError,
    ObservationError,
    PipelineError,
    ReconcileCancelledError,
    ReconcileTimeoutError,
)


@pytest.mark.unit
class TestReconcileContext:
    """Tests for ReconcileContext."""

    def test_background_never_expires(self) -> None:
        """A background context has no deadline."""
        ctx = ReconcileContext.background()
        ctx.check()
        assert not ctx.expired()
        assert ctx.remaining(default=42.0) == 42.0

    def test_expired_deadline(self) -> None:
        """check raises once the deadline passed."""
        ctx = ReconcileContext(timeout=0)
        assert ctx.expired()
        assert ctx.remaining() == 0.0
        with pytest.raises(ReconcileTimeoutError):
            ctx.check()

    def test_cancel(self) -> None:
        """check raises with the cancellation reason."""
        ctx = ReconcileContext(timeout=60)
        ctx.cancel("controller stopping")
        assert ctx.cancelled
        with pytest.raises(ReconcileCancelledError, match="controller stopping"):
            ctx.check()

    def test_remaining_bounded_by_timeout(self) -> None:
        """remaining never exceeds the timeout."""
        assert ReconcileContext(timeout=30).remaining() <= 30

    def test_outer_stop_flag_cancels(self) -> None:
        """Setting the outer flag cancels the pass."""
        stopped = threading.Event()
        ctx = ReconcileContext(timeout=60, stopped=stopped)
        assert not ctx.cancelled

        stopped.set()

        assert ctx.cancelled
        with pytest.raises(ReconcileCancelledError, match="operator stopped handling"):
            ctx.check()

    def test_wait_cancelled(self) -> None:
        """wait_cancelled returns as soon as the pass is cancelled."""
        stopped = threading.Event()
        ctx = ReconcileContext(stopped=stopped)
        assert ctx.wait_cancelled(0.01) is False

        threading.Timer(0.05, stopped.set).start()

        assert ctx.wait_cancelled(5.0) is True
        assert ReconcileContext().wait_cancelled(0) is False


@pytest.mark.unit
class TestPipelineExceptions:
    """Tests for the pipeline exception hierarchy."""

    def test_event_reasons(self) -> None:
        """Cluster failures and app failures map to distinct event reasons."""
        assert AppFetchError("x").event_reason == "GetAppError"
        assert ClusterNotFoundError("x").event_reason == "GetClusterError"
        assert ClusterNotReadyError("x").event_reason == "GetClusterError"

    def test_hierarchy_and_message(self) -> None:
        """Every observation error is a PipelineError rendering its message."""
        error = ClusterNotFoundError("failed to get cluster")
        assert isinstance(error, ObservationError)
        assert isinstance(error, PipelineError)
        assert str(error) == "failed to get cluster"
        assert error.message == "failed to get cluster"
