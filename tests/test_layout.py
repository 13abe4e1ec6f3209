"""Tests for the layout service registry and single-flight execution."""

import asyncio

import pytest

from eea_layout.layout import (
    LayoutCancelledError,
    LayoutService,
    create_default_service,
)
from eea_layout.layout_engine import (
    ForceDirectedLayout,
    ForceLayoutConfig,
    HierarchicalLayout,
)
from eea_layout.models import Edge, LayoutNode, Position
from eea_layout.routing import PathOptions
from eea_layout.validation import UnknownStrategyError, ValidationError


class _RecordingStrategy:
    """Wraps a strategy and counts stop() calls."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.stop_calls = 0
        self.execute_calls = 0

    async def execute(self, nodes, edges):
        self.execute_calls += 1
        return await self.inner.execute(nodes, edges)

    def stop(self) -> None:
        self.stop_calls += 1
        self.inner.stop()

    def is_running(self) -> bool:
        return self.inner.is_running()


def _graph() -> tuple[list[LayoutNode], list[Edge]]:
    nodes = [
        LayoutNode("dc", 120, 60, "domainController"),
        LayoutNode("ecu1", 100, 40, "ecu"),
        LayoutNode("ecu2", 100, 40, "ecu"),
    ]
    edges = [Edge("e1", "dc", "ecu1"), Edge("e2", "dc", "ecu2")]
    return nodes, edges


def _slow_force() -> ForceDirectedLayout:
    return ForceDirectedLayout(ForceLayoutConfig(seed=1, iterations=500, alpha_min=0))


# ===================================================================
# Registry
# ===================================================================

class TestRegistry:
    def test_default_service(self) -> None:
        service = create_default_service()
        assert service.strategy_names() == ["hierarchical", "force"]
        assert isinstance(service.get_strategy("force"), ForceDirectedLayout)

    def test_register_and_unregister(self) -> None:
        service = LayoutService()
        service.register_strategy("h", HierarchicalLayout())
        assert service.strategy_names() == ["h"]
        service.unregister_strategy("h")
        assert service.strategy_names() == []

    def test_register_replaces(self) -> None:
        """Registering an existing name swaps in the new instance."""
        service = LayoutService()
        first, second = HierarchicalLayout(), HierarchicalLayout()
        service.register_strategy("h", first)
        service.register_strategy("h", second)
        assert service.get_strategy("h") is second

    def test_register_requires_name(self) -> None:
        with pytest.raises(ValidationError):
            LayoutService().register_strategy("  ", HierarchicalLayout())

    def test_unknown_strategy(self) -> None:
        """The error carries the missing name and what is available."""
        service = create_default_service()
        with pytest.raises(UnknownStrategyError) as info:
            service.get_strategy("radial")
        assert info.value.name == "radial"
        assert set(info.value.available) == {"hierarchical", "force"}

    def test_unregister_unknown(self) -> None:
        with pytest.raises(UnknownStrategyError):
            LayoutService().unregister_strategy("nope")


# ===================================================================
# Execution
# ===================================================================

class TestApplyLayout:
    @pytest.mark.asyncio
    async def test_apply_returns_result(self) -> None:
        service = create_default_service()
        nodes, edges = _graph()
        result = await service.apply_layout("hierarchical", nodes, edges)
        assert [p.id for p in result.node_positions] == ["dc", "ecu1", "ecu2"]
        assert not service.is_layout_running()

    @pytest.mark.asyncio
    async def test_apply_unknown_strategy(self) -> None:
        service = create_default_service()
        with pytest.raises(UnknownStrategyError):
            await service.apply_layout("radial", *_graph())
        assert not service.is_layout_running()

    @pytest.mark.asyncio
    async def test_sequential_calls_do_not_stop(self) -> None:
        """A finished run leaves nothing for the next call to stop."""
        service = LayoutService()
        spy = _RecordingStrategy(HierarchicalLayout())
        service.register_strategy("h", spy)
        await service.apply_layout("h", *_graph())
        await service.apply_layout("h", *_graph())
        assert spy.execute_calls == 2
        assert spy.stop_calls == 0

    @pytest.mark.asyncio
    async def test_new_run_supersedes_running_one(self) -> None:
        """Starting hierarchical stops the running force layout."""
        service = LayoutService()
        force = _RecordingStrategy(_slow_force())
        service.register_strategy("force", force)
        service.register_strategy("hierarchical", HierarchicalLayout())
        nodes, edges = _graph()

        first = asyncio.create_task(service.apply_layout("force", nodes, edges))
        await asyncio.sleep(0)
        assert service.is_layout_running()
        assert service.current_strategy == "force"

        second = await service.apply_layout("hierarchical", nodes, edges)
        assert force.stop_calls == 1
        assert len(second.node_positions) == 3

        with pytest.raises(LayoutCancelledError):
            await first
        assert not service.is_layout_running()

    @pytest.mark.asyncio
    async def test_same_strategy_supersedes_itself(self) -> None:
        """Only the newer run of the same instance completes."""
        service = LayoutService()
        force = _RecordingStrategy(_slow_force())
        service.register_strategy("force", force)
        nodes, edges = _graph()

        first = asyncio.create_task(service.apply_layout("force", nodes, edges))
        await asyncio.sleep(0)
        second = asyncio.create_task(service.apply_layout("force", nodes, edges))

        with pytest.raises(LayoutCancelledError):
            await first
        result = await second
        assert len(result.node_positions) == 3
        assert force.stop_calls == 1
        assert force.inner.last_step_count == 500

    @pytest.mark.asyncio
    async def test_stop_current_layout(self) -> None:
        service = LayoutService()
        service.register_strategy("force", _slow_force())
        task = asyncio.create_task(service.apply_layout("force", *_graph()))
        await asyncio.sleep(0)

        assert service.stop_current_layout() is True
        assert not service.is_layout_running()
        with pytest.raises(LayoutCancelledError):
            await task

    def test_stop_when_idle(self) -> None:
        assert create_default_service().stop_current_layout() is False

    @pytest.mark.asyncio
    async def test_unregister_running_strategy_stops_it(self) -> None:
        """Removing a busy strategy stops its run first."""
        service = LayoutService()
        force = _RecordingStrategy(_slow_force())
        service.register_strategy("force", force)
        task = asyncio.create_task(service.apply_layout("force", *_graph()))
        await asyncio.sleep(0)

        service.unregister_strategy("force")
        assert force.stop_calls == 1
        with pytest.raises(LayoutCancelledError):
            await task


# ===================================================================
# Routing
# ===================================================================

class TestServiceRouting:
    def _placed(self) -> list[LayoutNode]:
        return [
            LayoutNode("a", 40, 20, x=0, y=0),
            LayoutNode("b", 40, 20, x=300, y=0),
            LayoutNode("c", 40, 20, x=140, y=-10),
        ]

    def test_default_is_astar_around_nodes(self) -> None:
        """Without options, edges detour around the node in between."""
        paths = create_default_service().route_edges(self._placed(), [Edge("e", "a", "b")])
        path = paths[0].path
        assert path[0] == Position(20, 10)
        assert path[-1] == Position(320, 10)
        assert len(path) > 2

    def test_explicit_options(self) -> None:
        paths = create_default_service().route_edges(
            self._placed(), [Edge("e", "a", "b")], PathOptions(routing_algorithm="direct"),
        )
        assert len(paths[0].path) == 2

    def test_missing_endpoint_skipped(self) -> None:
        paths = create_default_service().route_edges(
            self._placed(), [Edge("e", "a", "zzz")],
        )
        assert paths == ()

    def test_unplaced_nodes_rejected(self) -> None:
        nodes = self._placed() + [LayoutNode("d", 10, 10)]
        with pytest.raises(ValidationError, match="without a position"):
            create_default_service().route_edges(nodes, [])
