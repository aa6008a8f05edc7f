"""kopf handlers driving the reconciler.

kopf owns the watches, the per-object handler workers, retry scheduling and
shutdown. This module maps its causes onto ``PipelineReconciler``:

- Pipeline create, resume and spec updates reconcile the pipeline.
- Changes to a referenced application or GitopsCluster reconcile every
  pipeline that references it, found through a kopf index.
- A timer resyncs each pipeline periodically, which also covers
  applications on remote clusters that are never watched.
- Deleting a pipeline or stopping the operator cancels the running pass.

Triggers for a pipeline that is already being reconciled are coalesced into
one more pass after the running one, so a key is never reconciled twice at
once.
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Iterable, Mapping
from typing import Any

import kopf
import structlog
from pydantic import ValidationError

from pipeline_controller.integrations.kubernetes.client import KubernetesClient
from pipeline_controller.integrations.kubernetes.exceptions import KubernetesConflictError
from pipeline_controller.integrations.kubernetes.models.base import ResourceKind
from pipeline_controller.integrations.kubernetes.models.pipeline import (
    API_GROUP,
    DEFAULT_CLUSTER_KIND,
    PIPELINE_KIND,
    PipelineSpec,
)
from pipeline_controller.integrations.kubernetes.models.resources import GITOPS_CLUSTER_KIND
from pipeline_controller.services.pipeline.context import ReconcileContext, StopFlag
from pipeline_controller.services.pipeline.exceptions import (
    ReconcileCancelledError,
    ReconcileTimeoutError,
)
from pipeline_controller.services.pipeline.reconciler import PipelineReconciler

logger = structlog.get_logger()

DEFAULT_WORKERS = 2
DEFAULT_RESYNC_PERIOD = 300.0
DEFAULT_RECONCILE_TIMEOUT = 120.0

# Retry backoff bounds, in seconds
BACKOFF_BASE_DELAY = 1.0
BACKOFF_MAX_DELAY = 300.0

# Immediate reruns after a status write conflict before handing back to kopf
CONFLICT_RERUNS = 3

REFERENCE_INDEX = "pipeline_refs"

Reference = tuple[str, str, str]
"""``(kind display name, namespace, name)`` of an object a pipeline watches."""


def backoff_delay(retry: int) -> float:
    """Delay before retry number ``retry + 1`` of a failed pass."""
    return float(min(BACKOFF_BASE_DELAY * (2**retry), BACKOFF_MAX_DELAY))


def pipeline_references(namespace: str, spec: PipelineSpec) -> set[Reference]:
    """Objects on the management cluster whose changes affect the pipeline.

    Applications of local targets and the GitopsClusters of remote targets;
    applications on remote clusters are left to the resync timer.
    """
    refs: set[Reference] = set()
    app_kind = spec.app_ref.resource_kind
    for env in spec.environments:
        for target in env.targets:
            cluster = target.cluster_ref
            if cluster is None:
                refs.add((app_kind.display_name, target.namespace, spec.app_ref.name))
            elif cluster.kind == DEFAULT_CLUSTER_KIND:
                refs.add(
                    (
                        GITOPS_CLUSTER_KIND.display_name,
                        cluster.namespace or namespace,
                        cluster.name,
                    )
                )
    return refs


def connection_info(configuration: Any) -> kopf.ConnectionInfo:
    """kopf credentials from a ``kubernetes.client.Configuration``."""
    header = configuration.get_api_key_with_prefix("authorization")
    scheme: str | None = None
    token: str | None = None
    if header:
        prefix, _, token = header.rpartition(" ")
        scheme = prefix or None
    return kopf.ConnectionInfo(
        server=configuration.host,
        ca_path=configuration.ssl_ca_cert,
        insecure=not configuration.verify_ssl,
        username=configuration.username or None,
        password=configuration.password or None,
        scheme=scheme,
        token=token,
        certificate_path=configuration.cert_file,
        private_key_path=configuration.key_file,
    )


class PipelineController:
    """Runs ``PipelineReconciler`` under kopf.

    Example:
        ```python
        controller = PipelineController(reconciler, client=client, workers=4)
        controller.run()  # blocks until SIGTERM/SIGINT or stop()
        ```
    """

    def __init__(
        self,
        reconciler: PipelineReconciler,
        *,
        workers: int = DEFAULT_WORKERS,
        resync_period: float = DEFAULT_RESYNC_PERIOD,
        reconcile_timeout: float | None = DEFAULT_RECONCILE_TIMEOUT,
        app_kinds: Iterable[ResourceKind] = (),
        namespace: str | None = None,
        client: KubernetesClient | None = None,
    ) -> None:
        """Initialize the controller and register its handlers.

        Args:
            reconciler: Runs one pass per key.
            workers: Handler threads kopf runs synchronous handlers on.
            resync_period: Seconds between timer-driven passes of each pipeline.
            reconcile_timeout: Deadline of a single pass; None for no deadline.
            app_kinds: Application kinds to watch for changes.
            namespace: Only reconcile pipelines in this namespace.
            client: Management cluster client kopf logs in with; kopf's own
                kubernetes-client login is used when omitted.
        """
        self._reconciler = reconciler
        self._workers = workers
        self._resync_period = resync_period
        self._reconcile_timeout = reconcile_timeout
        self._app_kinds = list(app_kinds)
        self._namespace = namespace
        self._client = client

        self._lock = threading.Lock()
        self._running: set[str] = set()
        self._pending: set[str] = set()
        self._contexts: dict[str, ReconcileContext] = {}
        self._stop_flag = threading.Event()
        self._log = logger.bind(component="controller")

        self.registry = kopf.OperatorRegistry()
        self._register()

    def _register(self) -> None:
        registry = self.registry
        pipelines = (PIPELINE_KIND.group, PIPELINE_KIND.version, PIPELINE_KIND.plural)

        kopf.on.startup(registry=registry)(self.configure)
        kopf.on.cleanup(registry=registry)(self.cleanup)
        kopf.on.login(registry=registry)(self.login)

        kopf.index(*pipelines, id=REFERENCE_INDEX, when=self.in_scope, registry=registry)(
            self.index_references
        )
        kopf.on.create(*pipelines, when=self.in_scope, registry=registry)(self.on_pipeline_changed)
        kopf.on.resume(*pipelines, when=self.in_scope, registry=registry)(self.on_pipeline_changed)
        kopf.on.update(*pipelines, field="spec", when=self.in_scope, registry=registry)(
            self.on_pipeline_changed
        )
        kopf.on.event(*pipelines, when=self.in_scope, registry=registry)(self.on_pipeline_event)
        kopf.timer(
            *pipelines,
            interval=self._resync_period,
            initial_delay=self._resync_period,
            when=self.in_scope,
            registry=registry,
        )(self.on_resync)

        for kind in [GITOPS_CLUSTER_KIND, *self._app_kinds]:
            kopf.on.event(
                kind.group,
                kind.version,
                kind.plural,
                id=f"{kind.plural}-changed",
                registry=registry,
            )(functools.partial(self.on_referenced_event, kind))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def configure(self, settings: kopf.OperatorSettings, **_: Any) -> None:
        settings.execution.max_workers = self._workers
        settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=API_GROUP)
        settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
            prefix=API_GROUP,
            key="last-handled-configuration",
        )
        # The reconciler records its own events.
        settings.posting.enabled = False

    def cleanup(self, **_: Any) -> None:
        self._cancel_all("controller stopping")
        self._log.info("controller_stopped")

    def login(self, **kwargs: Any) -> kopf.ConnectionInfo | None:
        if self._client is None:
            return kopf.login_via_client(**kwargs)
        return connection_info(self._client.api_client.configuration)

    def run(self) -> None:
        """Run the operator until a signal arrives or ``stop`` is called."""
        self._log.info(
            "controller_starting",
            workers=self._workers,
            resync_period=self._resync_period,
            namespace=self._namespace,
            app_kinds=[k.display_name for k in self._app_kinds],
        )
        kopf.run(
            registry=self.registry,
            clusterwide=True,
            standalone=True,
            stop_flag=self._stop_flag,
        )

    def stop(self) -> None:
        """Ask kopf to exit and cancel in-flight passes."""
        self._stop_flag.set()
        self._cancel_all("controller stopping")

    @property
    def stopped(self) -> bool:
        return self._stop_flag.is_set()

    # =========================================================================
    # Handlers
    # =========================================================================

    def in_scope(self, namespace: str | None = None, **_: Any) -> bool:
        return self._namespace is None or namespace == self._namespace

    def index_references(
        self, namespace: str, name: str, spec: Mapping[str, Any], **_: Any
    ) -> dict[Reference, str]:
        """Index entries mapping each referenced object to this pipeline's key."""
        try:
            parsed = PipelineSpec.from_k8s_object(dict(spec))
        except ValidationError:
            # The reconciler reports the invalid spec; nothing to index.
            return {}
        key = f"{namespace}/{name}"
        return {ref: key for ref in pipeline_references(namespace, parsed)}

    def on_pipeline_changed(self, namespace: str, name: str, retry: int = 0, **_: Any) -> None:
        self.reconcile(f"{namespace}/{name}", retry=retry)

    def on_resync(
        self,
        namespace: str,
        name: str,
        retry: int = 0,
        stopped: StopFlag | None = None,
        **_: Any,
    ) -> None:
        self.reconcile(f"{namespace}/{name}", retry=retry, stopped=stopped)

    def on_pipeline_event(
        self, event: Mapping[str, Any], namespace: str, name: str, **_: Any
    ) -> None:
        if event.get("type") == "DELETED":
            key = f"{namespace}/{name}"
            self.cancel(key, "pipeline deleted")
            self._log.debug("pipeline_deleted", pipeline=key)

    def on_referenced_event(
        self,
        kind: ResourceKind,
        event: Mapping[str, Any],
        namespace: str | None,
        name: str,
        **kwargs: Any,
    ) -> None:
        """Reconcile the pipelines referencing a changed application or cluster."""
        # The initial listing is covered by the pipelines' resume handlers.
        if event.get("type") is None:
            return
        index = kwargs[REFERENCE_INDEX]
        keys = sorted(set(index.get((kind.display_name, namespace or "", name), [])))
        for key in keys:
            try:
                self.reconcile(key)
            except kopf.TemporaryError as e:
                # Event handlers are not retried; the resync timer picks it up.
                self._log.warning(
                    "triggered_reconcile_failed", pipeline=key, kind=kind.kind, error=str(e)
                )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile(self, key: str, *, retry: int = 0, stopped: StopFlag | None = None) -> bool:
        """Reconcile ``key`` unless a pass for it is already running.

        A trigger arriving while the key is being reconciled is remembered and
        served by one more pass once the running one finishes.

        Returns:
            False if the trigger was handed to the running pass.

        Raises:
            kopf.TemporaryError: If the pass failed and should be retried.
        """
        with self._lock:
            if key in self._running:
                self._pending.add(key)
                return False
            self._running.add(key)
        try:
            while True:
                self._pass(key, retry=retry, stopped=stopped)
                with self._lock:
                    if key not in self._pending:
                        self._running.discard(key)
                        return True
                    self._pending.discard(key)
        except BaseException:
            with self._lock:
                self._running.discard(key)
                self._pending.discard(key)
            raise

    def _pass(self, key: str, *, retry: int, stopped: StopFlag | None) -> None:
        log = self._log.bind(pipeline=key)
        for attempt in range(CONFLICT_RERUNS + 1):
            ctx = ReconcileContext(timeout=self._reconcile_timeout, stopped=stopped)
            with self._lock:
                self._contexts[key] = ctx
            try:
                result = self._reconciler.reconcile(key, ctx)
            except KubernetesConflictError:
                log.debug("status_update_conflict", attempt=attempt)
                continue
            except ReconcileCancelledError as e:
                log.debug("reconcile_cancelled", reason=str(e))
                return
            except ReconcileTimeoutError as e:
                delay = backoff_delay(retry)
                log.warning("reconcile_timed_out", error=str(e), retry_in=delay)
                raise kopf.TemporaryError(str(e), delay=delay) from e
            except Exception as e:
                delay = backoff_delay(retry)
                log.error("reconcile_failed", error=str(e), retry_in=delay, exc_info=True)
                raise kopf.TemporaryError(str(e), delay=delay) from e
            finally:
                with self._lock:
                    if self._contexts.get(key) is ctx:
                        del self._contexts[key]
            if result.requeue_after is not None:
                raise kopf.TemporaryError("requeue requested", delay=result.requeue_after)
            return
        raise kopf.TemporaryError("status update conflict", delay=BACKOFF_BASE_DELAY)

    def cancel(self, key: str, reason: str) -> None:
        """Cancel the running pass of ``key``, if any."""
        with self._lock:
            ctx = self._contexts.get(key)
        if ctx is not None:
            ctx.cancel(reason)

    def _cancel_all(self, reason: str) -> None:
        with self._lock:
            contexts = list(self._contexts.values())
        for ctx in contexts:
            ctx.cancel(reason)
