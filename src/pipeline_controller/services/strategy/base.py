"""Promotion strategy interface and registry.

A strategy carries a revision from one environment into the next, e.g. by
opening a pull request against the repository the next environment syncs
from. The reconciler asks the registry for the first strategy that claims
the pipeline's promotion spec and hands it a ``Promotion`` request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from pipeline_controller.integrations.kubernetes.models.pipeline import (
    Promotion as PromotionSpec,
)
from pipeline_controller.services.pipeline.context import ReconcileContext
from pipeline_controller.services.strategy.exceptions import StrategyNotFoundError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Promotion:
    """One promotion to carry out.

    Attributes:
        pipeline_namespace: Namespace of the pipeline (and its credentials).
        pipeline_name: Name of the pipeline.
        environment: Destination environment.
        source_environment: Environment the revision was observed ready in.
        version: Revision to promote.
    """

    pipeline_namespace: str
    pipeline_name: str
    environment: str
    version: str
    source_environment: str = ""


@dataclass(frozen=True)
class PromotionResult:
    """Where the promotion can be followed, e.g. a pull request URL."""

    location: str = ""


class Strategy(ABC):
    """A way of carrying out promotions."""

    name: str = ""

    @abstractmethod
    def handles(self, promotion: PromotionSpec) -> bool:
        """Whether this strategy is responsible for ``promotion``."""

    @abstractmethod
    def promote(
        self,
        ctx: ReconcileContext,
        promotion: PromotionSpec,
        request: Promotion,
    ) -> PromotionResult:
        """Carry out ``request``.

        Implementations must be idempotent: the same request may arrive again
        on every pass until the destination reports the revision.

        Raises:
            PromotionError: If any step fails.
            SpecError: If ``promotion`` lacks the settings the strategy needs.
        """


class StrategyRegistry:
    """Ordered set of strategies, built once at startup.

    Example:
        >>> registry = StrategyRegistry()
        >>> registry.register(GitHubPR(control_plane))
        >>> registry.get(pipeline.spec.promotion)
    """

    def __init__(self, strategies: list[Strategy] | None = None) -> None:
        self._strategies: list[Strategy] = []
        for strategy in strategies or []:
            self.register(strategy)

    def register(self, strategy: Strategy) -> None:
        self._strategies.append(strategy)
        logger.debug("strategy_registered", strategy=strategy.name or type(strategy).__name__)

    def get(self, promotion: PromotionSpec) -> Strategy:
        """First registered strategy that handles ``promotion``.

        Raises:
            StrategyNotFoundError: If none does.
        """
        for strategy in self._strategies:
            if strategy.handles(promotion):
                return strategy
        raise StrategyNotFoundError()

    def __len__(self) -> int:
        return len(self._strategies)
