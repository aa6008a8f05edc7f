"""Errors raised while observing and reconciling pipelines."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for reconciliation errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ObservationError(PipelineError):
    """A single target could not be read. Partial and non-fatal to the pass.

    Attributes:
        event_reason: Reason token used for the event recorded against the pipeline.
    """

    event_reason = "GetAppError"


class ClusterError(ObservationError):
    """The target's cluster could not be turned into a client."""

    event_reason = "GetClusterError"


class ClusterNotFoundError(ClusterError):
    """The cluster reference does not resolve to a cluster object."""


class ClusterNotReadyError(ClusterError):
    """The cluster object exists but is not usable yet."""


class AppFetchError(ObservationError):
    """The application object could not be read from its target."""


class SpecError(PipelineError):
    """The pipeline spec cannot be acted upon as written."""


class ReconcileTimeoutError(PipelineError):
    """The reconciliation deadline passed before the pass finished."""


class ReconcileCancelledError(PipelineError):
    """The reconciliation was cancelled (pipeline deleted or shutdown)."""
