"""Tests for the MCP server tools (layout + route)."""

import json

import pytest

from eea_layout.server import (
    _configure,
    _service,
    layout,
    route,
)


def setup_function() -> None:
    """Reset both strategies to their default settings."""
    _service.stop_current_layout()
    _configure("hierarchical", {})
    _configure("force", {})


NODES = [
    {"id": "dc", "width": 120, "height": 60, "type": "domainController"},
    {"id": "gw", "width": 100, "height": 40, "type": "gateway"},
    {"id": "ecu", "width": 100, "height": 40, "type": "ecu"},
    {"id": "can", "width": 300, "height": 20, "type": "bus"},
]
EDGES = [
    {"id": "e1", "source_id": "dc", "target_id": "gw", "protocol": "ethernet"},
    {"id": "e2", "sourceId": "gw", "targetId": "ecu", "protocol": "can"},
    {"id": "e3", "source_id": "ecu", "target_id": "can"},
]


# ===================================================================
# layout tool
# ===================================================================

class TestLayoutTool:
    @pytest.mark.asyncio
    async def test_apply_hierarchical(self) -> None:
        """Nodes come back in input order, stacked top to bottom by type."""
        data = json.loads(await layout(action="apply", nodes=NODES, edges=EDGES))
        assert [p["id"] for p in data["nodePositions"]] == ["dc", "gw", "ecu", "can"]
        assert [p["id"] for p in data["edgePaths"]] == ["e1", "e2", "e3"]
        ys = [p["y"] for p in data["nodePositions"]]
        assert ys == sorted(ys)

    @pytest.mark.asyncio
    async def test_apply_force(self) -> None:
        """A seeded force run keeps every node inside the padded canvas."""
        await layout(action="configure", strategy="force", options={"seed": 3})
        data = json.loads(await layout(action="apply", strategy="force", nodes=NODES, edges=EDGES))
        assert len(data["nodePositions"]) == 4
        for p in data["nodePositions"]:
            assert 50 <= p["x"] <= 750
            assert 50 <= p["y"] <= 550

    @pytest.mark.asyncio
    async def test_apply_unknown_strategy(self) -> None:
        """The error names the strategy that was not found."""
        result = await layout(action="apply", strategy="radial", nodes=NODES, edges=EDGES)
        assert result.startswith("Error:")
        assert "radial" in result

    @pytest.mark.asyncio
    async def test_apply_invalid_node(self) -> None:
        result = await layout(action="apply", nodes=[{"id": "x", "width": -1, "height": 5}])
        assert result.startswith("Error:")

    @pytest.mark.asyncio
    async def test_apply_duplicate_ids(self) -> None:
        """Two nodes sharing an id are rejected before layout starts."""
        nodes = [NODES[0], dict(NODES[0])]
        result = await layout(action="apply", nodes=nodes)
        assert result.startswith("Error:")
        assert "Duplicate" in result

    @pytest.mark.asyncio
    async def test_unknown_action(self) -> None:
        """An unknown action lists the valid ones."""
        result = await layout(action="explode")
        assert result.startswith("Error:")
        assert "apply" in result

    @pytest.mark.asyncio
    async def test_configure_direction(self) -> None:
        """Direction is case-insensitive and LR spreads layers along x."""
        result = await layout(action="configure", strategy="hierarchical", options={"direction": "lr"})
        assert result.startswith("Configured")
        data = json.loads(await layout(action="apply", nodes=NODES, edges=EDGES))
        xs = [p["x"] for p in data["nodePositions"]]
        assert xs == sorted(xs)

    @pytest.mark.asyncio
    async def test_configure_unknown_option(self) -> None:
        """Typos in option names are reported, not silently ignored."""
        result = await layout(action="configure", strategy="force", options={"temperature": 3})
        assert result.startswith("Error:")
        assert "temperature" in result

    @pytest.mark.asyncio
    async def test_configure_invalid_value(self) -> None:
        result = await layout(action="configure", strategy="force", options={"width": 0})
        assert result.startswith("Error:")

    @pytest.mark.asyncio
    async def test_configure_unknown_strategy(self) -> None:
        result = await layout(action="configure", strategy="radial", options={})
        assert result.startswith("Error:")

    @pytest.mark.asyncio
    async def test_list(self) -> None:
        """Both default strategies are listed with their settings."""
        data = json.loads(await layout(action="list"))
        names = [s["name"] for s in data]
        assert names == ["hierarchical", "force"]
        assert data[1]["config"]["iterations"] == 300
        assert not any(s["running"] for s in data)

    @pytest.mark.asyncio
    async def test_stop_when_idle(self) -> None:
        assert await layout(action="stop") == "No layout is running."

    @pytest.mark.asyncio
    async def test_reroute(self) -> None:
        """Reroute anchors paths at the centres of the given boxes."""
        nodes = [
            {"id": "a", "width": 40, "height": 20, "x": 0, "y": 0},
            {"id": "b", "width": 40, "height": 20, "x": 300, "y": 0},
        ]
        edges = [{"id": "e", "source_id": "a", "target_id": "b"}]
        data = json.loads(await layout(
            action="reroute", nodes=nodes, edges=edges, routing_algorithm="orthogonal",
        ))
        assert data["edgePaths"][0]["path"] == [
            {"x": 20, "y": 10}, {"x": 20, "y": 10}, {"x": 320, "y": 10},
        ]

    @pytest.mark.asyncio
    async def test_reroute_requires_positions(self) -> None:
        """Nodes without x/y cannot be rerouted."""
        result = await layout(action="reroute", nodes=NODES, edges=EDGES)
        assert result.startswith("Error:")


# ===================================================================
# route tool
# ===================================================================

class TestRouteTool:
    def test_direct(self) -> None:
        points = json.loads(route(source={"x": 0, "y": 0}, target={"x": 10, "y": 5}))
        assert points == [{"x": 0, "y": 0}, {"x": 10, "y": 5}]

    def test_curved(self) -> None:
        """N curve segments give N + 1 points."""
        points = json.loads(route(
            source={"x": 0, "y": 0}, target={"x": 100, "y": 50},
            routing_algorithm="curved", curve_segments=4,
        ))
        assert len(points) == 5

    def test_astar_around_obstacle(self) -> None:
        """A wall between the endpoints forces a detour."""
        points = json.loads(route(
            source={"x": 0, "y": 0}, target={"x": 240, "y": 0},
            obstacles=[{"x": 100, "y": -50, "width": 40, "height": 100}],
            routing_algorithm="astar",
        ))
        assert len(points) > 2
        assert points[0] == {"x": 0, "y": 0}
        assert points[-1] == {"x": 240, "y": 0}

    def test_bad_algorithm(self) -> None:
        result = route(source={"x": 0, "y": 0}, target={"x": 1, "y": 1}, routing_algorithm="warp")
        assert result.startswith("Error:")

    def test_bad_grid_size(self) -> None:
        """A zero cell size is a validation error, not a crash."""
        result = route(
            source={"x": 0, "y": 0}, target={"x": 1, "y": 1},
            routing_algorithm="astar", grid_size=0,
        )
        assert result.startswith("Error:")

    def test_missing_coordinate(self) -> None:
        result = route(source={"x": 0}, target={"x": 1, "y": 1})
        assert result.startswith("Error:")
        assert "source" in result

    def test_astar_subnormal_grid_size(self) -> None:
        """A cell size too small to count cells falls back to a straight line."""
        points = json.loads(route(
            source={"x": 0, "y": 0}, target={"x": 100, "y": 0},
            routing_algorithm="astar", grid_size=5e-324,
        ))
        assert points == [{"x": 0, "y": 0}, {"x": 100, "y": 0}]
