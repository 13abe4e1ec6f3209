"""
Layout service: a named registry of layout strategies with single-flight
execution.

At most one layout runs at a time.  Starting a new run stops the one in
flight; the superseded caller receives ``LayoutCancelledError`` instead
of a stale result.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional, Protocol

from eea_layout.layout_engine import (
    ForceDirectedLayout,
    ForceLayoutConfig,
    HierarchicalLayout,
    HierarchicalLayoutConfig,
)
from eea_layout.models import Edge, EdgePath, LayoutNode, LayoutResult
from eea_layout.routing import (
    EdgePathCalculator,
    PathOptions,
    RoutingAlgorithm,
    route_edges,
)
from eea_layout.validation import (
    UnknownStrategyError,
    ValidationError,
    validate_non_empty_string,
)

logger = logging.getLogger(__name__)


class LayoutStrategy(Protocol):
    """Anything the service can run."""

    async def execute(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> LayoutResult: ...

    def stop(self) -> None: ...

    def is_running(self) -> bool: ...


class LayoutCancelledError(Exception):
    """Raised to the caller of a layout run that was stopped or superseded."""

    def __init__(self, strategy_name: str) -> None:
        self.strategy_name = strategy_name
        super().__init__(f"Layout '{strategy_name}' was cancelled before it finished.")


class LayoutService:
    """Registry of layout strategies; runs at most one at a time."""

    def __init__(self, calculator: Optional[EdgePathCalculator] = None) -> None:
        self._strategies: dict[str, LayoutStrategy] = {}
        self._calculator = calculator or EdgePathCalculator()
        self._current: Optional[str] = None
        self._running = False
        # Bumped on every start and stop; a run whose generation is stale
        # has been superseded.
        self._generation = 0

    # -- registry -------------------------------------------------------------

    def register_strategy(self, name: str, strategy: LayoutStrategy) -> None:
        """Register *strategy* under *name*, replacing any previous entry."""
        name = validate_non_empty_string(name, "name")
        if name in self._strategies:
            if self._running and self._current == name:
                self.stop_current_layout()
            logger.debug("Replacing layout strategy '%s'", name)
        self._strategies[name] = strategy

    def unregister_strategy(self, name: str) -> None:
        if name not in self._strategies:
            raise UnknownStrategyError(name, self.strategy_names())
        if self._running and self._current == name:
            self.stop_current_layout()
        del self._strategies[name]

    def get_strategy(self, name: str) -> LayoutStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise UnknownStrategyError(name, self.strategy_names()) from None

    def strategy_names(self) -> list[str]:
        return list(self._strategies)

    # -- execution ------------------------------------------------------------

    async def apply_layout(
        self,
        strategy_name: str,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> LayoutResult:
        """Run the named strategy and return its result.

        Raises:
            UnknownStrategyError: *strategy_name* is not registered.
            LayoutCancelledError: another run started, or
                ``stop_current_layout`` was called, before this one finished.
        """
        strategy = self.get_strategy(strategy_name)
        if self._running:
            self.stop_current_layout()

        self._generation += 1
        generation = self._generation
        self._current = strategy_name
        self._running = True
        logger.debug(
            "Applying layout '%s' to %d nodes, %d edges",
            strategy_name, len(nodes), len(edges),
        )

        try:
            result = await strategy.execute(nodes, edges)
        finally:
            if generation == self._generation:
                self._running = False
                self._current = None

        if generation != self._generation:
            logger.info("Layout '%s' was superseded; discarding its result", strategy_name)
            raise LayoutCancelledError(strategy_name)
        return result

    def stop_current_layout(self) -> bool:
        """Stop the run in flight.  Returns False when nothing was running."""
        if not self._running or self._current is None:
            return False
        strategy = self._strategies.get(self._current)
        if strategy is not None:
            strategy.stop()
        logger.debug("Stopped layout '%s'", self._current)
        self._generation += 1
        self._running = False
        self._current = None
        return True

    def is_layout_running(self) -> bool:
        return self._running

    @property
    def current_strategy(self) -> Optional[str]:
        return self._current

    # -- routing --------------------------------------------------------------

    def route_edges(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
        options: Optional[PathOptions] = None,
    ) -> tuple[EdgePath, ...]:
        """Re-route *edges* over the nodes' current positions.

        Every node must already be placed.  Defaults to A* routing.
        """
        unplaced = [n.id for n in nodes if not n.has_position]
        if unplaced:
            raise ValidationError(
                f"Cannot route edges: node(s) without a position: {', '.join(unplaced)}."
            )
        opts = options or PathOptions(routing_algorithm=RoutingAlgorithm.ASTAR)
        positions = {n.id: (n.x, n.y) for n in nodes}
        return route_edges(nodes, positions, edges, opts, self._calculator)


def create_default_service(
    hierarchical_config: Optional[HierarchicalLayoutConfig] = None,
    force_config: Optional[ForceLayoutConfig] = None,
) -> LayoutService:
    """A service with ``"hierarchical"`` and ``"force"`` registered."""
    service = LayoutService()
    service.register_strategy("hierarchical", HierarchicalLayout(hierarchical_config))
    service.register_strategy("force", ForceDirectedLayout(force_config))
    return service
