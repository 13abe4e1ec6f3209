"""
Edge path calculation between two anchor points.

Strategies:
- direct      — straight segment
- orthogonal  — one right-angle bend at (source.x, target.y)
- curved      — sampled cubic Bézier with horizontal tangents
- astar       — grid search around obstacle rectangles, with collinear
                waypoints removed afterwards

``EdgePathCalculator.calculate_path`` never raises: when a strategy
cannot produce a route it falls back to the direct two-point path.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from eea_layout.models import (
    Edge,
    EdgePath,
    LayoutNode,
    Path,
    Position,
    Rectangle,
    node_anchor,
    node_bounds,
)
from eea_layout.validation import (
    ConfigurationError,
    validate_bool,
    validate_count,
    validate_grid_size,
    validate_non_negative_number,
    validate_routing_algorithm,
)

logger = logging.getLogger(__name__)

_COLLINEAR_EPS = 1e-6

# 4-directional moves: right, left, down, up
_NEIGHBORS: tuple[tuple[int, int], ...] = ((1, 0), (-1, 0), (0, 1), (0, -1))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class RoutingAlgorithm(Enum):
    DIRECT = "direct"
    ORTHOGONAL = "orthogonal"
    CURVED = "curved"
    ASTAR = "astar"


@dataclass
class PathOptions:
    """Options for a single ``calculate_path`` call."""
    routing_algorithm: RoutingAlgorithm | str = RoutingAlgorithm.DIRECT
    grid_size: float = 10           # A* cell size
    avoid_obstacles: bool = True    # False: A* searches an empty grid
    curve_segments: int = 10        # Bézier segments for the curved strategy
    grid_margin: float = 100        # Grid extension around the endpoints
    max_grid_cells: int = 1_000_000

    def __post_init__(self) -> None:
        algo = self.routing_algorithm
        if isinstance(algo, RoutingAlgorithm):
            algo = algo.value
        self.routing_algorithm = RoutingAlgorithm(validate_routing_algorithm(algo))
        self.grid_size = validate_grid_size(self.grid_size)
        validate_bool(self.avoid_obstacles, "avoid_obstacles", error=ConfigurationError)
        validate_count(self.curve_segments, "curve_segments", min_val=1)
        self.grid_margin = validate_non_negative_number(self.grid_margin, "grid_margin")
        validate_count(self.max_grid_cells, "max_grid_cells", min_val=1)


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

class EdgePathCalculator:
    """Computes a path between two points for a given routing strategy."""

    def calculate_path(
        self,
        source: Position,
        target: Position,
        obstacles: Sequence[Rectangle] = (),
        options: Optional[PathOptions] = None,
    ) -> Path:
        opts = options or PathOptions()
        algo = opts.routing_algorithm

        if algo is RoutingAlgorithm.ORTHOGONAL:
            # Obstacles are not consulted: the bend is always (source.x, target.y).
            return self._orthogonal_path(source, target)
        if algo is RoutingAlgorithm.CURVED:
            return self._curved_path(source, target, opts.curve_segments)
        if algo is RoutingAlgorithm.ASTAR:
            active = list(obstacles) if opts.avoid_obstacles else []
            return self._astar_path(source, target, active, opts)
        return self._direct_path(source, target)

    # -- direct / orthogonal / curved ---------------------------------------

    @staticmethod
    def _direct_path(source: Position, target: Position) -> Path:
        return (source, target)

    @staticmethod
    def _orthogonal_path(source: Position, target: Position) -> Path:
        return (source, Position(source.x, target.y), target)

    @staticmethod
    def _curved_path(source: Position, target: Position, segments: int) -> Path:
        dx = target.x - source.x
        control1 = Position(source.x + dx / 3, source.y)
        control2 = Position(source.x + 2 * dx / 3, target.y)

        points = [source]
        for i in range(1, segments):
            points.append(bezier_point(source, control1, control2, target, i / segments))
        points.append(target)
        return tuple(points)

    # -- A* -----------------------------------------------------------------

    def _astar_path(
        self,
        source: Position,
        target: Position,
        obstacles: list[Rectangle],
        opts: PathOptions,
    ) -> Path:
        direct = self._direct_path(source, target)
        if not all(math.isfinite(v) for v in (source.x, source.y, target.x, target.y)):
            return direct

        # Cell counts as floats first: a huge span or a tiny cell overflows to inf.
        cols = (abs(target.x - source.x) + 2 * opts.grid_margin) / opts.grid_size
        rows = (abs(target.y - source.y) + 2 * opts.grid_margin) / opts.grid_size
        if not (math.isfinite(cols) and math.isfinite(rows)) or cols * rows > opts.max_grid_cells:
            logger.warning(
                "A* grid of %.3gx%.3g cells exceeds limit %d; using direct path",
                cols, rows, opts.max_grid_cells,
            )
            return direct

        grid = _OccupancyGrid(source, target, opts.grid_size, opts.grid_margin)
        if grid.cols * grid.rows > opts.max_grid_cells:
            return direct
        for obs in obstacles:
            grid.block(obs, padding=opts.grid_size)

        start = grid.cell_of(source)
        goal = grid.cell_of(target)
        if start == goal:
            return direct
        if grid.is_blocked(start) or grid.is_blocked(goal):
            logger.debug("A* endpoint cell is blocked; using direct path")
            return direct

        cells = _grid_search(grid, start, goal)
        if cells is None:
            logger.debug("A* found no route from %s to %s; using direct path", start, goal)
            return direct

        return smooth_path([source, *(grid.center(c) for c in cells), target])


# ---------------------------------------------------------------------------
# Occupancy grid + search
# ---------------------------------------------------------------------------

class _OccupancyGrid:
    """Rectangular grid of square cells covering both endpoints plus a margin."""

    def __init__(
        self,
        source: Position,
        target: Position,
        cell_size: float,
        margin: float,
    ) -> None:
        self.cell_size = cell_size
        self.min_x = min(source.x, target.x) - margin
        self.min_y = min(source.y, target.y) - margin
        max_x = max(source.x, target.x) + margin
        max_y = max(source.y, target.y) + margin
        self.cols = max(1, math.ceil((max_x - self.min_x) / cell_size))
        self.rows = max(1, math.ceil((max_y - self.min_y) / cell_size))
        self._blocked: set[tuple[int, int]] = set()

    def block(self, rect: Rectangle, padding: float) -> None:
        """Mark every cell overlapping *rect* expanded by *padding*."""
        s = self.cell_size
        r = rect.expanded(padding)
        edges = (
            (r.x - self.min_x) / s,
            (r.y - self.min_y) / s,
            (r.right - self.min_x) / s,
            (r.bottom - self.min_y) / s,
        )
        if any(math.isnan(e) for e in edges):
            return
        # Clip to the grid before rounding so far-away obstacles stay finite.
        left, top, right, bottom = (
            min(max(e, 0.0), float(limit))
            for e, limit in zip(edges, (self.cols, self.rows, self.cols, self.rows))
        )
        for row in range(math.floor(top), math.ceil(bottom)):
            for col in range(math.floor(left), math.ceil(right)):
                self._blocked.add((col, row))

    def cell_of(self, p: Position) -> tuple[int, int]:
        col = math.floor((p.x - self.min_x) / self.cell_size)
        row = math.floor((p.y - self.min_y) / self.cell_size)
        return (
            min(max(col, 0), self.cols - 1),
            min(max(row, 0), self.rows - 1),
        )

    def center(self, cell: tuple[int, int]) -> Position:
        col, row = cell
        return Position(
            self.min_x + (col + 0.5) * self.cell_size,
            self.min_y + (row + 0.5) * self.cell_size,
        )

    def is_blocked(self, cell: tuple[int, int]) -> bool:
        return cell in self._blocked

    def is_free(self, cell: tuple[int, int]) -> bool:
        col, row = cell
        return (
            0 <= col < self.cols
            and 0 <= row < self.rows
            and cell not in self._blocked
        )


def _grid_search(
    grid: _OccupancyGrid,
    start: tuple[int, int],
    goal: tuple[int, int],
) -> Optional[list[tuple[int, int]]]:
    """A* over free cells with unit step cost and a Manhattan heuristic.

    Frontier entries are ordered by f-score, then by insertion order, so
    equal-cost candidates are expanded first-in first-out.
    """
    def _h(cell: tuple[int, int]) -> int:
        return abs(cell[0] - goal[0]) + abs(cell[1] - goal[1])

    counter = itertools.count()
    open_set: list[tuple[int, int, tuple[int, int]]] = []
    heapq.heappush(open_set, (_h(start), next(counter), start))
    came_from: dict[tuple[int, int], Optional[tuple[int, int]]] = {start: None}
    g_score: dict[tuple[int, int], int] = {start: 0}
    closed: set[tuple[int, int]] = set()

    while open_set:
        _, _, current = heapq.heappop(open_set)
        if current == goal:
            path: list[tuple[int, int]] = []
            node: Optional[tuple[int, int]] = current
            while node is not None:
                path.append(node)
                node = came_from[node]
            path.reverse()
            return path
        if current in closed:
            continue
        closed.add(current)

        for dc, dr in _NEIGHBORS:
            neighbor = (current[0] + dc, current[1] + dr)
            if neighbor in closed or not grid.is_free(neighbor):
                continue
            tent_g = g_score[current] + 1
            if tent_g < g_score.get(neighbor, math.inf):
                g_score[neighbor] = tent_g
                came_from[neighbor] = current
                heapq.heappush(open_set, (tent_g + _h(neighbor), next(counter), neighbor))

    return None


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def bezier_point(
    p0: Position,
    p1: Position,
    p2: Position,
    p3: Position,
    t: float,
) -> Position:
    """Evaluate a cubic Bézier curve at parameter *t* in [0, 1]."""
    u = 1 - t
    b0 = u * u * u
    b1 = 3 * u * u * t
    b2 = 3 * u * t * t
    b3 = t * t * t
    return Position(
        b0 * p0.x + b1 * p1.x + b2 * p2.x + b3 * p3.x,
        b0 * p0.y + b1 * p1.y + b2 * p2.y + b3 * p3.y,
    )


def smooth_path(points: Sequence[Position]) -> Path:
    """Remove duplicate and collinear intermediate points from a path.

    Both endpoints are always kept.  A point is dropped when the path
    continues through it in the same direction.
    """
    if len(points) <= 2:
        return tuple(points)

    result: list[Position] = [points[0]]
    for i in range(1, len(points) - 1):
        prev = result[-1]
        cur = points[i]
        nxt = points[i + 1]
        if cur == prev:
            continue
        dx1, dy1 = cur.x - prev.x, cur.y - prev.y
        dx2, dy2 = nxt.x - cur.x, nxt.y - cur.y
        cross = dx1 * dy2 - dy1 * dx2
        dot = dx1 * dx2 + dy1 * dy2
        if abs(cross) <= _COLLINEAR_EPS and dot >= 0:
            continue
        result.append(cur)

    if len(result) > 1 and result[-1] == points[-1]:
        result.pop()
    result.append(points[-1])
    return tuple(result)


# ---------------------------------------------------------------------------
# Routing every edge of a placed graph
# ---------------------------------------------------------------------------

def route_edges(
    nodes: Sequence[LayoutNode],
    positions: dict[str, tuple[float, float]],
    edges: Iterable[Edge],
    options: PathOptions,
    calculator: Optional[EdgePathCalculator] = None,
) -> tuple[EdgePath, ...]:
    """Route each edge between node centres, other nodes acting as obstacles.

    Edges whose source or target is not among *nodes* are skipped.

    Args:
        nodes: Nodes of the graph (sizes are read from here).
        positions: Top-left corner per node id.
        edges: Edges to route, in output order.
        options: Routing strategy and parameters.
        calculator: Calculator instance to reuse.

    Returns:
        One ``EdgePath`` per routable edge.
    """
    calc = calculator or EdgePathCalculator()
    by_id = {n.id: n for n in nodes}
    rects = {n.id: node_bounds(n, *positions[n.id]) for n in nodes}

    paths: list[EdgePath] = []
    for edge in edges:
        src = by_id.get(edge.source_id)
        tgt = by_id.get(edge.target_id)
        if src is None or tgt is None:
            logger.debug("Skipping edge %s: missing endpoint", edge.id)
            continue
        obstacles = [
            r for nid, r in rects.items() if nid != src.id and nid != tgt.id
        ]
        path = calc.calculate_path(
            node_anchor(src, *positions[src.id]),
            node_anchor(tgt, *positions[tgt.id]),
            obstacles,
            options,
        )
        paths.append(EdgePath(edge.id, path))
    return tuple(paths)
