"""Level-triggered reconciliation of a single pipeline.

Every pass starts from scratch: fetch the pipeline, observe every target,
derive environment readiness and the next promotion from those observations
alone, act on at most one promotion, and write the complete status back with
a single conditional update. Nothing is carried between passes except what
the previous status recorded, so a pass may be repeated or interleaved with
changes at any point and still converge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import ValidationError

from pipeline_controller.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesNotFoundError,
)
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    PIPELINE_KIND,
    LocalAppReference,
    Pipeline,
    PipelineStatus,
    Target,
    status_update_body,
)
from pipeline_controller.integrations.kubernetes.models.resources import AppStatus
from pipeline_controller.services.clusters import ClusterResolver
from pipeline_controller.services.controlplane import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    ControlPlane,
    ObjectRef,
)
from pipeline_controller.services.pipeline import conditions as cond
from pipeline_controller.services.pipeline import readiness
from pipeline_controller.services.pipeline.context import ReconcileContext
from pipeline_controller.services.pipeline.exceptions import (
    AppFetchError,
    ObservationError,
    SpecError,
)
from pipeline_controller.services.pipeline.readiness import (
    DecisionKind,
    PromotionDecision,
    PromotionOutcome,
    TargetObservation,
)
from pipeline_controller.services.strategy.base import Promotion, StrategyRegistry
from pipeline_controller.services.strategy.exceptions import (
    PromotionError,
    StrategyNotFoundError,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ReconcileResult:
    """What the controller should do with the key after a pass."""

    requeue_after: float | None = None


def split_key(key: str) -> tuple[str, str]:
    """Split a ``namespace/name`` key.

    Raises:
        ValueError: If the key is not of that form.
    """
    namespace, sep, name = key.partition("/")
    if not sep or not namespace or not name:
        raise ValueError(f"invalid pipeline key {key!r}, expected namespace/name")
    return namespace, name


def _validation_message(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


class PipelineReconciler:
    """Brings one pipeline's status and promotions in line with observations.

    Example:
        ```python
        reconciler = PipelineReconciler(control_plane, registry, ClusterResolver(control_plane))
        reconciler.reconcile("flux-system/podinfo", ReconcileContext(timeout=120))
        ```
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        registry: StrategyRegistry,
        clusters: ClusterResolver | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            control_plane: Management cluster holding pipelines.
            registry: Strategies promotions are dispatched to.
            clusters: Resolves target cluster references; defaults to reading
                every target from ``control_plane``.
        """
        self._control_plane = control_plane
        self._registry = registry
        self._clusters = clusters or ClusterResolver(control_plane)
        self._log = logger.bind(component="reconciler")

    def reconcile(self, key: str, ctx: ReconcileContext | None = None) -> ReconcileResult:
        """Run one pass for the pipeline ``key``.

        Raises:
            ConcurrentUpdateConflict: If the pipeline changed since it was read.
            ReconcileTimeoutError: If ``ctx`` expired mid-pass.
            ReconcileCancelledError: If ``ctx`` was cancelled mid-pass.
            KubernetesError: If the pipeline cannot be read or written.
        """
        ctx = ctx or ReconcileContext.background()
        namespace, name = split_key(key)
        log = self._log.bind(pipeline=key)

        try:
            obj = self._control_plane.get(PIPELINE_KIND, namespace, name)
        except KubernetesNotFoundError:
            log.debug("pipeline_not_found")
            return ReconcileResult()

        ref = ObjectRef(kind=PIPELINE_KIND, namespace=namespace, name=name)
        try:
            pipeline = Pipeline.from_k8s_object(obj)
        except ValidationError as e:
            self._report_invalid_spec(ctx, obj, ref, SpecError(_validation_message(e)))
            return ReconcileResult()

        ctx.check()
        observations, unreadable = self._observe(ctx, pipeline, ref)
        environments = readiness.environment_statuses(
            pipeline.spec.environments, observations, pipeline.status.environments
        )

        # Incomplete observations cannot justify a promotion.
        if unreadable:
            decision = readiness.NO_PROMOTION
        else:
            decision = readiness.decide_promotion(pipeline.spec.environments, environments)

        outcome = None
        if decision.kind == DecisionKind.PROMOTE:
            outcome = self._promote(ctx, pipeline, ref, decision)
        elif decision.kind == DecisionKind.WAITING:
            log.debug("promotion_waiting", destination=decision.destination)

        computed = readiness.compute_conditions(
            unreadable=unreadable,
            decision=decision,
            outcome=outcome,
            generation=pipeline.generation,
        )
        status = PipelineStatus(
            observed_generation=pipeline.generation,
            environments=environments,
            conditions=cond.merge_conditions(pipeline.status.conditions, computed),
        )

        ctx.check()
        written = self._write_status(ref, pipeline.resource_version, pipeline.status, status)
        if written and not unreadable:
            self._control_plane.record_event(
                ref, EVENT_TYPE_NORMAL, cond.UPDATED_EVENT_REASON, "Updated pipeline"
            )
        log.debug(
            "pipeline_reconciled",
            unreadable=len(unreadable),
            decision=decision.kind.value,
            status_written=written,
        )
        return ReconcileResult()

    def _observe(
        self,
        ctx: ReconcileContext,
        pipeline: Pipeline,
        ref: ObjectRef,
    ) -> tuple[dict[str, list[TargetObservation]], list[str]]:
        """Read every target; failures are recorded per target, never raised."""
        observations: dict[str, list[TargetObservation]] = {}
        unreadable: list[str] = []
        for env in pipeline.spec.environments:
            observed = []
            for i, target in enumerate(env.targets):
                ctx.check()
                try:
                    app = self._fetch_app(pipeline, target)
                    observed.append(TargetObservation(app=app))
                except ObservationError as e:
                    self._log.info(
                        "target_unreadable",
                        pipeline=pipeline.key,
                        environment=env.name,
                        target=i,
                        error=str(e),
                    )
                    self._control_plane.record_event(
                        ref, EVENT_TYPE_WARNING, e.event_reason, str(e)
                    )
                    observed.append(TargetObservation(error=str(e)))
                    unreadable.append(f"environment {env.name} target {i}: {e}")
            observations[env.name] = observed
        return observations, unreadable

    def _fetch_app(self, pipeline: Pipeline, target: Target) -> AppStatus:
        """Read the application from the target's cluster.

        Raises:
            ClusterError: If the cluster cannot be resolved.
            AppFetchError: If the application cannot be read.
        """
        control_plane = self._clusters.resolve(target.cluster_ref, pipeline.namespace)
        app_ref: LocalAppReference = pipeline.spec.app_ref
        try:
            obj = control_plane.get(app_ref.resource_kind, target.namespace, app_ref.name)
        except KubernetesError as e:
            raise AppFetchError(f"failed to get application: {e}") from e
        return AppStatus.from_k8s_object(obj)

    def _promote(
        self,
        ctx: ReconcileContext,
        pipeline: Pipeline,
        ref: ObjectRef,
        decision: PromotionDecision,
    ) -> PromotionOutcome:
        """Act on a PROMOTE decision and report how it went."""
        revision = decision.revision or ""
        destination = decision.destination or ""
        log = self._log.bind(
            pipeline=pipeline.key,
            source=decision.source,
            destination=destination,
            revision=revision,
        )

        promotion = pipeline.spec.promotion
        if promotion is None or promotion.manual:
            log.debug("promotion_left_to_user")
            return PromotionOutcome(
                reason=cond.WAITING_FOR_MANUAL_PROMOTION_REASON,
                message=(
                    f"Revision {revision} is ready to be promoted from "
                    f"{decision.source} to {destination}"
                ),
            )

        request = Promotion(
            pipeline_namespace=pipeline.namespace,
            pipeline_name=pipeline.name,
            environment=destination,
            source_environment=decision.source or "",
            version=revision,
        )

        try:
            strategy = self._registry.get(promotion)
        except StrategyNotFoundError as e:
            log.warning("strategy_not_found")
            self._control_plane.record_event(
                ref, EVENT_TYPE_WARNING, cond.STRATEGY_NOT_FOUND_REASON, str(e)
            )
            return PromotionOutcome(reason=cond.STRATEGY_NOT_FOUND_REASON, message=str(e))

        log.info("promoting", strategy=strategy.name or type(strategy).__name__)
        try:
            result = strategy.promote(ctx, promotion, request)
        except (PromotionError, SpecError) as e:
            log.warning("promotion_failed", error=str(e))
            self._control_plane.record_event(
                ref, EVENT_TYPE_WARNING, cond.PROMOTION_FAILED_REASON, str(e)
            )
            return PromotionOutcome(reason=cond.PROMOTION_FAILED_REASON, message=str(e))

        message = f"Promoted revision {revision} to environment {destination}"
        if result.location:
            message = f"{message}: {result.location}"
        log.info("promoted", location=result.location)
        self._control_plane.record_event(
            ref, EVENT_TYPE_NORMAL, cond.PROMOTED_EVENT_REASON, message
        )
        return PromotionOutcome(reason=cond.PROMOTION_IN_PROGRESS_REASON, message=message)

    def _write_status(
        self,
        ref: ObjectRef,
        resource_version: str | None,
        previous: PipelineStatus,
        status: PipelineStatus,
    ) -> bool:
        """Conditionally replace the status; skipped when nothing changed.

        Returns:
            Whether an update was sent.

        Raises:
            ConcurrentUpdateConflict: If ``resource_version`` is stale.
            KubernetesError: If the write fails for another reason.
        """
        if status.to_k8s_object() == previous.to_k8s_object():
            self._log.debug("status_unchanged", pipeline=ref.key)
            return False

        body = status_update_body(ref.name, ref.namespace, resource_version, status)
        try:
            self._control_plane.update_status(PIPELINE_KIND, body)
        except KubernetesConflictError:
            raise
        except KubernetesError as e:
            self._control_plane.record_event(
                ref, EVENT_TYPE_WARNING, cond.SET_STATUS_FAILED_EVENT_REASON, str(e)
            )
            raise
        return True

    def _report_invalid_spec(
        self,
        ctx: ReconcileContext,
        obj: dict[str, Any],
        ref: ObjectRef,
        error: SpecError,
    ) -> None:
        metadata: dict[str, Any] = obj.get("metadata") or {}
        generation = metadata.get("generation")
        try:
            previous = PipelineStatus.from_k8s_object(obj.get("status") or {})
        except ValidationError:
            previous = PipelineStatus()

        self._log.warning("invalid_pipeline_spec", pipeline=ref.key, error=str(error))
        self._control_plane.record_event(
            ref, EVENT_TYPE_WARNING, cond.INVALID_SPEC_REASON, str(error)
        )
        computed = [
            cond.new_condition(
                cond.READY_CONDITION, False, cond.INVALID_SPEC_REASON, str(error), generation
            )
        ]
        status = PipelineStatus(
            observed_generation=generation,
            environments=previous.environments,
            conditions=cond.merge_conditions(previous.conditions, computed),
        )
        ctx.check()
        self._write_status(ref, metadata.get("resourceVersion"), previous, status)
