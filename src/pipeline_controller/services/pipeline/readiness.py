"""Readiness and promotion-decision model.

Pure functions from (pipeline spec, freshly observed targets) to
(environment statuses, promotion decision, condition set). Nothing here does
I/O, so every combination of target states can be checked directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from itertools import pairwise

from pipeline_controller.integrations.kubernetes.models.base import Condition
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    Environment,
    EnvironmentStatus,
    TargetStatus,
)
from pipeline_controller.integrations.kubernetes.models.resources import AppStatus
from pipeline_controller.services.pipeline import conditions as cond


@dataclass(frozen=True)
class TargetObservation:
    """What one pass saw for one target: the application, or why not."""

    app: AppStatus | None = None
    error: str = ""

    @property
    def readable(self) -> bool:
        return self.app is not None and not self.error


class DecisionKind(StrEnum):
    NONE = "none"
    WAITING = "waiting"
    PROMOTE = "promote"


@dataclass(frozen=True)
class PromotionDecision:
    """Outcome of walking the environments for the first unresolved gap."""

    kind: DecisionKind
    source: str | None = None
    destination: str | None = None
    revision: str | None = None
    message: str = ""


NO_PROMOTION = PromotionDecision(kind=DecisionKind.NONE)


@dataclass(frozen=True)
class PromotionOutcome:
    """Result of acting on a PROMOTE decision, as far as conditions care."""

    reason: str
    message: str


def target_status_from_app(app: AppStatus) -> TargetStatus:
    return TargetStatus(ready=app.ready, revision=app.last_applied_revision)


def target_status(observation: TargetObservation, previous: TargetStatus | None) -> TargetStatus:
    """Status of one target from this pass's observation.

    An unreadable target is not ready and keeps its last observed revision.
    """
    if observation.app is not None and not observation.error:
        return target_status_from_app(observation.app)
    return TargetStatus(
        ready=False,
        revision=previous.revision if previous is not None else "",
        error=observation.error,
    )


def environment_statuses(
    environments: list[Environment],
    observations: dict[str, list[TargetObservation]],
    previous: dict[str, EnvironmentStatus],
) -> dict[str, EnvironmentStatus]:
    """Build the status map, one TargetStatus per spec target in spec order.

    Previous revisions are only carried over when the previous status has the
    same shape as the spec, since target positions are the only identity.
    """
    result: dict[str, EnvironmentStatus] = {}
    for env in environments:
        observed = observations.get(env.name, [])
        before = previous.get(env.name)
        same_shape = before is not None and len(before.targets) == len(env.targets)
        targets = []
        for i in range(len(env.targets)):
            observation = (
                observed[i] if i < len(observed) else TargetObservation(error="not observed")
            )
            prior = before.targets[i] if before is not None and same_shape else None
            targets.append(target_status(observation, prior))
        result[env.name] = EnvironmentStatus(targets=targets)
    return result


def environment_revision(status: EnvironmentStatus | None) -> str | None:
    """The revision shared by every target, or None when they disagree."""
    if status is None or not status.targets:
        return None
    revisions = {t.revision for t in status.targets}
    if len(revisions) != 1:
        return None
    return revisions.pop()


def environment_ready(status: EnvironmentStatus | None) -> bool:
    """All targets ready and on the same non-empty revision."""
    if status is None or not status.targets:
        return False
    return all(t.ready for t in status.targets) and bool(environment_revision(status))


def environment_ready_at(status: EnvironmentStatus | None, revision: str) -> bool:
    return environment_ready(status) and environment_revision(status) == revision


def decide_promotion(
    environments: list[Environment],
    statuses: dict[str, EnvironmentStatus],
) -> PromotionDecision:
    """Find the first environment hop that needs work.

    The head revision is the common revision of the first environment, only
    defined while that environment is ready. Walking forward, the first
    environment not ready at the head revision is either already rolling it
    out (some target reports it: WAITING) or still needs it (PROMOTE from its
    predecessor). Later environments are never considered past that point.
    """
    if len(environments) < 2:
        return NO_PROMOTION

    head = environments[0]
    head_status = statuses.get(head.name)
    if not environment_ready(head_status):
        return PromotionDecision(
            kind=DecisionKind.WAITING,
            destination=head.name,
            message=f"Waiting for all targets in environment {head.name} to be ready",
        )

    revision = environment_revision(head_status)
    if not revision:
        return NO_PROMOTION

    for previous, current in pairwise(environments):
        current_status = statuses.get(current.name)
        if environment_ready_at(current_status, revision):
            continue
        if current_status is not None and any(
            t.revision == revision for t in current_status.targets
        ):
            return PromotionDecision(
                kind=DecisionKind.WAITING,
                source=previous.name,
                destination=current.name,
                revision=revision,
                message=(
                    f"Waiting for all targets in environment {current.name} "
                    f"to be ready at revision {revision}"
                ),
            )
        return PromotionDecision(
            kind=DecisionKind.PROMOTE,
            source=previous.name,
            destination=current.name,
            revision=revision,
            message=(
                f"Promotion of revision {revision} from {previous.name} "
                f"to {current.name} is due"
            ),
        )

    return NO_PROMOTION


def compute_conditions(
    *,
    unreadable: list[str],
    decision: PromotionDecision,
    outcome: PromotionOutcome | None = None,
    generation: int | None = None,
) -> list[Condition]:
    """The complete condition set for one pass.

    Args:
        unreadable: Messages for targets that could not be read this pass.
        decision: Promotion decision (ignored while any target is unreadable).
        outcome: What happened when a PROMOTE decision was acted upon.
        generation: Pipeline generation the conditions describe.
    """
    if unreadable:
        return [
            cond.new_condition(
                cond.READY_CONDITION,
                False,
                cond.TARGET_NOT_READABLE_REASON,
                "; ".join(unreadable),
                generation,
            )
        ]

    result = [
        cond.new_condition(
            cond.READY_CONDITION,
            True,
            cond.RECONCILIATION_SUCCEEDED_REASON,
            "All targets are readable",
            generation,
        )
    ]

    if decision.kind == DecisionKind.WAITING:
        result.append(
            cond.new_condition(
                cond.PROMOTION_PENDING_CONDITION,
                True,
                cond.ENVIRONMENT_NOT_READY_REASON,
                decision.message,
                generation,
            )
        )
    elif decision.kind == DecisionKind.PROMOTE and outcome is not None:
        result.append(
            cond.new_condition(
                cond.PROMOTION_PENDING_CONDITION,
                True,
                outcome.reason,
                outcome.message,
                generation,
            )
        )
    return result
