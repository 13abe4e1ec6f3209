"""
EEA Layout MCP Server — automatic layout and edge routing for E/E
architecture topologies via Model Context Protocol.

Exposes 2 tools:
  1. layout — strategies: apply, configure, list, stop, reroute
  2. route  — a single path between two points, optionally around obstacles

Graphs are passed in as JSON node / edge lists and results come back as
JSON.  Nothing is stored between calls except the strategy registry and
its configuration.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from eea_layout.layout import (
    LayoutCancelledError,
    create_default_service,
)
from eea_layout.layout_engine import (
    ForceDirectedLayout,
    ForceLayoutConfig,
    HierarchicalLayout,
    HierarchicalLayoutConfig,
)
from eea_layout.models import Edge, LayoutNode, Position, Rectangle
from eea_layout.routing import EdgePathCalculator, PathOptions
from eea_layout.validation import (
    ValidationError,
    validate_action,
    validate_dict,
    validate_edge_dict,
    validate_list,
    validate_node_dict,
    validate_point_dict,
    validate_rect_dict,
    _LAYOUT_ACTIONS,
)

# ---------------------------------------------------------------------------
# Logging: keep FastMCP's per-request INFO lines off stderr.
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("eea-layout-mcp")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "eea-layout-mcp",
    instructions=(
        "Layout and edge routing for E/E architecture topologies.\n\n"
        "1. layout(action, ...) — apply, configure, list, stop, reroute.\n"
        "   apply:     run a strategy ('hierarchical' or 'force') on nodes/edges.\n"
        "   configure: replace a strategy's settings (options dict).\n"
        "   reroute:   recompute edge paths for already placed nodes.\n"
        "2. route(source, target, ...) — one path between two points.\n\n"
        "Nodes are {id, width, height, type?, x?, y?, fixed?}; x/y is the\n"
        "top-left corner.  Types: domainController, gateway, ecu, sensor,\n"
        "actuator, bus.  Edges are {id, source_id, target_id, protocol?}.\n"
        "Edges are anchored at node centres.\n"
    ),
)

# Registered strategies and the config class each one is rebuilt from.
_service = create_default_service()
_CONFIGURABLE: dict[str, tuple[type, type]] = {
    "hierarchical": (HierarchicalLayout, HierarchicalLayoutConfig),
    "force": (ForceDirectedLayout, ForceLayoutConfig),
}
_configs: dict[str, Any] = {
    "hierarchical": HierarchicalLayoutConfig(),
    "force": ForceLayoutConfig(),
}


# ===================================================================
# RESOURCES
# ===================================================================

@mcp.resource("eea-layout://strategies")
def strategy_catalog() -> str:
    """Return the registered layout strategies and their settings."""
    return _list_strategies()


# ===================================================================
# TOOL 1: layout
# ===================================================================

@mcp.tool()
async def layout(
    action: str,
    strategy: str = "hierarchical",
    nodes: list[dict[str, Any]] | None = None,
    edges: list[dict[str, Any]] | None = None,
    options: dict[str, Any] | None = None,
    routing_algorithm: str = "astar",
    grid_size: float = 10,
) -> str:
    """Layout strategies and edge re-routing.

    Actions:
      apply     — Place nodes and route edges. Params: strategy, nodes, edges.
                  Returns {"nodePositions": [...], "edgePaths": [...]}.
      configure — Replace a strategy's settings. Params: strategy, options.
                  Unspecified options fall back to defaults.
      list      — List registered strategies with their settings.
      stop      — Stop the layout currently running.
      reroute   — Recompute edge paths for placed nodes. Params: nodes (each
                  with x, y), edges, routing_algorithm, grid_size.

    Args:
        action: One of: apply, configure, list, stop, reroute.
        strategy: Registered strategy name (apply, configure).
        nodes: Node dicts {id, width, height, type?, x?, y?, fixed?}.
        edges: Edge dicts {id, source_id, target_id, protocol?}.
        options: Settings for configure, e.g. {"direction": "LR"}.
        routing_algorithm: direct, orthogonal, curved or astar (reroute only).
        grid_size: A* cell size (reroute only).

    Returns:
        JSON on success, or a string starting with "Error:".
    """
    try:
        action = validate_action(action, "layout", _LAYOUT_ACTIONS)
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "list":
        return _list_strategies()

    if action == "stop":
        current = _service.current_strategy
        if _service.stop_current_layout():
            return f"Stopped layout '{current}'."
        return "No layout is running."

    if action == "configure":
        try:
            _configure(strategy, options or {})
        except ValidationError as exc:
            return f"Error: {exc.message}"
        return f"Configured '{strategy}': {json.dumps(_config_dict(strategy))}"

    try:
        node_objs, edge_objs = _parse_graph(nodes, edges)
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "apply":
        try:
            result = await _service.apply_layout(strategy, node_objs, edge_objs)
        except ValidationError as exc:
            return f"Error: {exc.message}"
        except LayoutCancelledError:
            return f"Error: layout '{strategy}' was superseded by a newer request."
        logger.info(
            "Applied '%s' to %d nodes / %d edges", strategy, len(node_objs), len(edge_objs),
        )
        return json.dumps(result.to_dict())

    # reroute
    try:
        opts = PathOptions(routing_algorithm=routing_algorithm, grid_size=grid_size)
        paths = _service.route_edges(node_objs, edge_objs, opts)
    except ValidationError as exc:
        return f"Error: {exc.message}"
    return json.dumps({
        "edgePaths": [
            {"id": ep.id, "path": [p.to_dict() for p in ep.path]} for ep in paths
        ],
    })


# ===================================================================
# TOOL 2: route
# ===================================================================

@mcp.tool()
def route(
    source: dict[str, float],
    target: dict[str, float],
    obstacles: list[dict[str, float]] | None = None,
    routing_algorithm: str = "direct",
    grid_size: float = 10,
    avoid_obstacles: bool = True,
    curve_segments: int = 10,
) -> str:
    """Compute one path between two points.

    Args:
        source: Start point {x, y}.
        target: End point {x, y}.
        obstacles: Rectangles {x, y, width, height} to avoid (astar only).
        routing_algorithm: direct, orthogonal, curved or astar.
        grid_size: A* cell size.
        avoid_obstacles: When false, astar ignores obstacles.
        curve_segments: Number of Bézier segments for curved.

    Returns:
        JSON list of {x, y} points, or a string starting with "Error:".
    """
    try:
        sx, sy = validate_point_dict(source, "source")
        tx, ty = validate_point_dict(target, "target")
        rects = [
            Rectangle(*validate_rect_dict(r, i))
            for i, r in enumerate(validate_list(obstacles or [], "obstacles"))
        ]
        opts = PathOptions(
            routing_algorithm=routing_algorithm,
            grid_size=grid_size,
            avoid_obstacles=avoid_obstacles,
            curve_segments=curve_segments,
        )
    except ValidationError as exc:
        return f"Error: {exc.message}"

    path = EdgePathCalculator().calculate_path(Position(sx, sy), Position(tx, ty), rects, opts)
    return json.dumps([p.to_dict() for p in path])


# ===================================================================
# Helpers
# ===================================================================

def _parse_graph(
    nodes: list[dict[str, Any]] | None,
    edges: list[dict[str, Any]] | None,
) -> tuple[list[LayoutNode], list[Edge]]:
    node_dicts = validate_list(nodes or [], "nodes")
    edge_dicts = validate_list(edges or [], "edges")
    for i, v in enumerate(node_dicts):
        validate_node_dict(v, i)
    for i, e in enumerate(edge_dicts):
        validate_edge_dict(e, i)
    return (
        [LayoutNode.from_dict(v) for v in node_dicts],
        [Edge.from_dict(e) for e in edge_dicts],
    )


def _configure(strategy: str, options: dict[str, Any]) -> None:
    """Rebuild *strategy* from a fresh config and re-register it."""
    if strategy not in _CONFIGURABLE:
        choices = ", ".join(sorted(_CONFIGURABLE))
        raise ValidationError(
            f"Strategy '{strategy}' is not configurable. Configurable strategies: {choices}."
        )
    validate_dict(options, "options")
    layout_cls, config_cls = _CONFIGURABLE[strategy]
    known = {f.name for f in dataclasses.fields(config_cls)}
    unknown = sorted(set(options) - known)
    if unknown:
        raise ValidationError(
            f"Unknown option(s) for '{strategy}': {', '.join(unknown)}. "
            f"Valid options: {', '.join(sorted(known))}."
        )
    config = config_cls(**options)
    _configs[strategy] = config
    _service.register_strategy(strategy, layout_cls(config))
    logger.info("Reconfigured layout strategy '%s'", strategy)


def _config_dict(strategy: str) -> dict[str, Any] | None:
    config = _configs.get(strategy)
    return dataclasses.asdict(config) if config is not None else None


def _list_strategies() -> str:
    return json.dumps([
        {
            "name": name,
            "running": _service.current_strategy == name,
            "config": _config_dict(name),
        }
        for name in _service.strategy_names()
    ], indent=2)


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
