"""Pipeline condition types, reasons, and list helpers."""

from __future__ import annotations

from datetime import UTC, datetime

from pipeline_controller.integrations.kubernetes.models.base import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    Condition,
)

READY_CONDITION = "Ready"
PROMOTION_PENDING_CONDITION = "PromotionPending"

# Ready reasons
RECONCILIATION_SUCCEEDED_REASON = "ReconciliationSucceeded"
TARGET_NOT_READABLE_REASON = "TargetNotReadable"
INVALID_SPEC_REASON = "InvalidSpec"

# PromotionPending reasons
ENVIRONMENT_NOT_READY_REASON = "EnvironmentNotReady"
PROMOTION_IN_PROGRESS_REASON = "PromotionInProgress"
PROMOTION_FAILED_REASON = "PromotionFailed"
STRATEGY_NOT_FOUND_REASON = "StrategyNotFound"
WAITING_FOR_MANUAL_PROMOTION_REASON = "WaitingForManualPromotion"

# Event reasons not covered by the condition reasons
UPDATED_EVENT_REASON = "Updated"
PROMOTED_EVENT_REASON = "Promoted"
SET_STATUS_FAILED_EVENT_REASON = "SetStatusFailed"


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_condition(
    condition_type: str,
    status: bool,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> Condition:
    return Condition(
        type=condition_type,
        status=CONDITION_TRUE if status else CONDITION_FALSE,
        reason=reason,
        message=message,
        observed_generation=observed_generation,
    )


def find_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    for c in conditions:
        if c.type == condition_type:
            return c
    return None


def set_condition(conditions: list[Condition], new: Condition) -> list[Condition]:
    """Return ``conditions`` with ``new`` set.

    ``last_transition_time`` moves only when the status changes.
    """
    existing = find_condition(conditions, new.type)
    if existing is not None and existing.status == new.status and existing.last_transition_time:
        transition = existing.last_transition_time
    else:
        transition = new.last_transition_time or _now()
    updated = new.model_copy(update={"last_transition_time": transition})
    result = [c for c in conditions if c.type != new.type]
    result.append(updated)
    return result


def remove_condition(conditions: list[Condition], condition_type: str) -> list[Condition]:
    return [c for c in conditions if c.type != condition_type]


def merge_conditions(previous: list[Condition], computed: list[Condition]) -> list[Condition]:
    """Replace the previous condition set with a freshly computed one.

    Conditions absent from ``computed`` are dropped; the ones present keep
    their transition time when their status did not change.
    """
    result: list[Condition] = []
    for condition in computed:
        before = find_condition(previous, condition.type)
        merged = set_condition([before] if before else [], condition)[-1]
        result = [*remove_condition(result, condition.type), merged]
    return result
