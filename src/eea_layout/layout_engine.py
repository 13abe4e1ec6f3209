"""
Layout strategies for E/E architecture topologies.

Two strategies share the ``execute`` / ``stop`` / ``is_running`` shape:

- ``HierarchicalLayout`` — layered placement.  Layers come from a fixed
  priority table keyed on node type (controller above gateway above ECU
  above sensors/actuators above buses); untyped nodes are ranked by
  longest path from the controllers.  Layers are ordered, packed and
  stacked in one synchronous pass and edges are routed orthogonally.
- ``ForceDirectedLayout`` — physical simulation with inverse-square
  repulsion, spring links and centring gravity, cooled by ``alpha``.
  The loop yields to the event loop after every step and checks its
  cancellation token there.  Edges are routed as Bézier curves.

Neither strategy mutates its input; both return a fresh ``LayoutResult``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections import Counter, defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from eea_layout.models import (
    Edge,
    LayoutNode,
    LayoutResult,
    NodePosition,
    NodeType,
)
from eea_layout.routing import (
    EdgePathCalculator,
    PathOptions,
    RoutingAlgorithm,
    route_edges,
)
from eea_layout.validation import (
    ConfigurationError,
    ValidationError,
    validate_bool,
    validate_count,
    validate_direction,
    validate_fraction,
    validate_non_negative_number,
    validate_number,
    validate_positive_number,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

class CancellationToken:
    """Cooperative cancellation flag checked once per simulation step."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _check_nodes(nodes: Sequence[LayoutNode]) -> None:
    """Reject duplicate ids, degenerate sizes and non-finite coordinates."""
    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            raise ValidationError(f"Duplicate node id '{node.id}'.")
        seen.add(node.id)
        for name, value in (("width", node.width), ("height", node.height)):
            if not math.isfinite(value) or value <= 0:
                raise ValidationError(
                    f"Node '{node.id}': '{name}' must be a finite number > 0, got {value}."
                )
        for name, value in (("x", node.x), ("y", node.y)):
            if value is not None and not math.isfinite(value):
                raise ValidationError(
                    f"Node '{node.id}': '{name}' must be finite, got {value}."
                )


# ---------------------------------------------------------------------------
# Hierarchical layout
# ---------------------------------------------------------------------------

LAYER_PRIORITY: dict[str, int] = {
    NodeType.DOMAIN_CONTROLLER.value: 0,
    "controller": 0,
    NodeType.GATEWAY.value: 1,
    NodeType.ECU.value: 2,
    NodeType.SENSOR.value: 3,
    NodeType.ACTUATOR.value: 3,
    NodeType.BUS.value: 4,
}

# Layer for untyped nodes that no controller reaches
_DEFAULT_LAYER = 2


@dataclass
class HierarchicalLayoutConfig:
    """Configuration for the layered layout."""
    direction: str = "TB"           # TB, BT, LR or RL
    layer_distance: float = 100     # Gap between consecutive layers
    node_distance: float = 50       # Gap between nodes in the same layer
    improve_ranking: bool = True    # Pull untyped nodes toward their neighbours
    minimize_crossings: bool = True
    padding: float = 50
    keep_empty_layers: bool = False  # Reserve a band for missing layer indices
    max_refinement_passes: int = 10

    def __post_init__(self) -> None:
        self.direction = validate_direction(self.direction)
        self.layer_distance = validate_non_negative_number(self.layer_distance, "layer_distance")
        self.node_distance = validate_non_negative_number(self.node_distance, "node_distance")
        self.padding = validate_non_negative_number(self.padding, "padding")
        validate_bool(self.improve_ranking, "improve_ranking", error=ConfigurationError)
        validate_bool(self.minimize_crossings, "minimize_crossings", error=ConfigurationError)
        validate_bool(self.keep_empty_layers, "keep_empty_layers", error=ConfigurationError)
        validate_count(self.max_refinement_passes, "max_refinement_passes")


@dataclass
class _Layer:
    """One rank of the hierarchical layout, alive for a single execute()."""
    index: int
    nodes: list[LayoutNode] = field(default_factory=list)
    y: float = 0        # Offset along the stacking axis
    height: float = 0   # Extent along the stacking axis


class HierarchicalLayout:
    """Layered layout driven by node type."""

    def __init__(
        self,
        config: Optional[HierarchicalLayoutConfig] = None,
        calculator: Optional[EdgePathCalculator] = None,
    ) -> None:
        self.config = config or HierarchicalLayoutConfig()
        self._calculator = calculator or EdgePathCalculator()
        self._running = False

    async def execute(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> LayoutResult:
        # Runs to completion without suspending.
        self._running = True
        try:
            return self.compute(nodes, edges)
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def compute(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> LayoutResult:
        """Synchronous body of ``execute``.

        Steps:
        1. Layer assignment (type table, longest path for untyped nodes)
        2. Layer refinement for untyped nodes
        3. Per-layer ordering by incident-edge count
        4. Coordinate assignment (pack, centre, stack)
        5. Orthogonal edge routing
        """
        node_list = list(nodes)
        edge_list = list(edges)
        _check_nodes(node_list)

        ids = {n.id for n in node_list}
        valid_edges = [
            e for e in edge_list if e.source_id in ids and e.target_id in ids
        ]

        layer_of = self.assign_layers(node_list, valid_edges)
        layers = self._build_layers(node_list, layer_of)
        if self.config.minimize_crossings:
            _order_by_degree(layers, valid_edges)
        positions = self._assign_coordinates(layers)

        logger.debug(
            "Hierarchical layout: %d nodes in %d layers, %d edges",
            len(node_list), len(layers), len(valid_edges),
        )

        edge_paths = route_edges(
            node_list, positions, edge_list,
            PathOptions(routing_algorithm=RoutingAlgorithm.ORTHOGONAL),
            self._calculator,
        )
        return LayoutResult(
            node_positions=tuple(
                NodePosition(n.id, *positions[n.id]) for n in node_list
            ),
            edge_paths=edge_paths,
        )

    # -- layers ---------------------------------------------------------------

    def assign_layers(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> dict[str, int]:
        """Map node id → layer index.

        *edges* must only reference ids present in *nodes*.
        """
        layer_of: dict[str, int] = {}
        untyped: list[str] = []
        for node in nodes:
            if node.type in LAYER_PRIORITY:
                layer_of[node.id] = LAYER_PRIORITY[node.type]
            else:
                untyped.append(node.id)

        if untyped:
            roots = [nid for nid, layer in layer_of.items() if layer == 0]
            ranks = _longest_path_ranks([n.id for n in nodes], edges, roots)
            for nid in untyped:
                layer_of[nid] = ranks.get(nid, _DEFAULT_LAYER)
            if self.config.improve_ranking:
                _refine_layers(untyped, edges, layer_of, self.config.max_refinement_passes)

        return layer_of

    def _build_layers(
        self,
        nodes: Sequence[LayoutNode],
        layer_of: dict[str, int],
    ) -> list[_Layer]:
        by_index: dict[int, _Layer] = {}
        for node in nodes:
            idx = layer_of[node.id]
            if idx not in by_index:
                by_index[idx] = _Layer(index=idx)
            by_index[idx].nodes.append(node)

        if self.config.keep_empty_layers and by_index:
            for idx in range(min(by_index), max(by_index) + 1):
                by_index.setdefault(idx, _Layer(index=idx))

        return [by_index[idx] for idx in sorted(by_index)]

    # -- coordinates ----------------------------------------------------------

    def _assign_coordinates(self, layers: list[_Layer]) -> dict[str, tuple[float, float]]:
        """Pack nodes within each layer, centre layers, then stack them.

        For TB/BT, layers are rows and nodes run left to right.  For
        LR/RL the roles of x and y are swapped.
        """
        cfg = self.config
        horizontal = cfg.direction in ("TB", "BT")

        def breadth(n: LayoutNode) -> float:
            return n.width if horizontal else n.height

        def depth(n: LayoutNode) -> float:
            return n.height if horizontal else n.width

        def layer_breadth(layer: _Layer) -> float:
            if not layer.nodes:
                return 0.0
            total = sum(breadth(n) for n in layer.nodes)
            return total + (len(layer.nodes) - 1) * cfg.node_distance

        max_breadth = max((layer_breadth(layer) for layer in layers), default=0.0)

        along: dict[str, float] = {}
        for layer in layers:
            cursor = cfg.padding + (max_breadth - layer_breadth(layer)) / 2
            for node in layer.nodes:
                along[node.id] = cursor
                cursor += breadth(node) + cfg.node_distance
            layer.height = max((depth(n) for n in layer.nodes), default=0.0)

        ordered = layers if cfg.direction in ("TB", "LR") else list(reversed(layers))
        across: dict[str, float] = {}
        offset = cfg.padding
        for layer in ordered:
            layer.y = offset
            for node in layer.nodes:
                across[node.id] = layer.y + (layer.height - depth(node)) / 2
            offset += layer.height + cfg.layer_distance

        if horizontal:
            return {nid: (along[nid], across[nid]) for nid in along}
        return {nid: (across[nid], along[nid]) for nid in along}


def _find_back_edges(
    all_nodes: list[str],
    adj: dict[str, list[str]],
) -> set[tuple[str, str]]:
    """Find back-edges in a directed graph using iterative DFS."""
    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {n: WHITE for n in all_nodes}
    back_edges: set[tuple[str, str]] = set()

    for start in all_nodes:
        if color[start] != WHITE:
            continue
        color[start] = GRAY
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            u, idx = stack[-1]
            neighbors = adj.get(u, [])
            if idx < len(neighbors):
                stack[-1] = (u, idx + 1)
                v = neighbors[idx]
                if color[v] == GRAY:
                    back_edges.add((u, v))
                elif color[v] == WHITE:
                    color[v] = GRAY
                    stack.append((v, 0))
            else:
                color[u] = BLACK
                stack.pop()

    return back_edges


def _longest_path_ranks(
    all_nodes: list[str],
    edges: Sequence[Edge],
    roots: list[str],
) -> dict[str, int]:
    """Longest-path distance from *roots* to every node they reach.

    Back-edges are dropped first so the remaining graph is acyclic;
    ranks are then relaxed in topological order.
    """
    if not roots:
        return {}

    adj: dict[str, list[str]] = defaultdict(list)
    for e in edges:
        if e.source_id != e.target_id:
            adj[e.source_id].append(e.target_id)
    back_edges = _find_back_edges(all_nodes, adj)

    dag: dict[str, list[str]] = defaultdict(list)
    indegree: dict[str, int] = {n: 0 for n in all_nodes}
    for src in all_nodes:
        for tgt in adj.get(src, []):
            if (src, tgt) not in back_edges:
                dag[src].append(tgt)
                indegree[tgt] += 1

    ranks: dict[str, int] = {r: 0 for r in roots}
    queue = deque(n for n in all_nodes if indegree[n] == 0)
    while queue:
        node = queue.popleft()
        for child in dag.get(node, []):
            if node in ranks and ranks.get(child, -1) < ranks[node] + 1:
                ranks[child] = ranks[node] + 1
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)
    return ranks


def _refine_layers(
    movable: list[str],
    edges: Sequence[Edge],
    layer_of: dict[str, int],
    max_passes: int,
) -> None:
    """Move untyped nodes toward their neighbours' majority layer.

    A node only moves when that strictly reduces the number of its edges
    spanning more than one layer, so every move lowers the global count
    and the loop also stops after *max_passes* sweeps.
    """
    neighbors: dict[str, list[str]] = defaultdict(list)
    for e in edges:
        if e.source_id != e.target_id:
            neighbors[e.source_id].append(e.target_id)
            neighbors[e.target_id].append(e.source_id)

    def _long_edges(nid: str, layer: int) -> int:
        return sum(1 for m in neighbors[nid] if abs(layer - layer_of[m]) > 1)

    for sweep in range(max_passes):
        moved = False
        for nid in movable:
            adjacent = neighbors.get(nid)
            if not adjacent:
                continue
            current = layer_of[nid]
            counts = Counter(layer_of[m] for m in adjacent)
            majority = max(counts, key=lambda lv: (counts[lv], -abs(lv - current), -lv))
            if majority == current:
                continue

            step = 1 if majority > current else -1
            best, best_cost = current, _long_edges(nid, current)
            for layer in range(current + step, majority + step, step):
                cost = _long_edges(nid, layer)
                if cost < best_cost:
                    best, best_cost = layer, cost
            if best != current:
                layer_of[nid] = best
                moved = True
        if not moved:
            logger.debug("Layer refinement settled after %d pass(es)", sweep + 1)
            break


def _order_by_degree(layers: list[_Layer], edges: Sequence[Edge]) -> None:
    """Sort each layer by descending incident-edge count, stable on input order."""
    degree: Counter[str] = Counter()
    for e in edges:
        degree[e.source_id] += 1
        if e.target_id != e.source_id:
            degree[e.target_id] += 1
    for layer in layers:
        layer.nodes.sort(key=lambda n: -degree[n.id])


# ---------------------------------------------------------------------------
# Force-directed layout
# ---------------------------------------------------------------------------

@dataclass
class ForceLayoutConfig:
    """Configuration for the force-directed simulation."""
    width: float = 800              # Canvas width
    height: float = 600             # Canvas height
    iterations: int = 300           # Upper bound on simulation steps
    repulsion_strength: float = 1000  # Positive repels, negative attracts
    attraction_strength: float = 0.7  # Spring constant of each link
    link_distance: float = 100      # Spring rest length
    gravity: float = 0.1            # Pull toward the canvas centre
    alpha: float = 1.0              # Initial temperature
    alpha_decay: float = 0.0228
    alpha_min: float = 0.001        # Convergence threshold
    velocity_decay: float = 0.4     # Fraction of velocity kept per step
    padding: float = 50
    seed: Optional[int] = None      # Seed for initial placement

    def __post_init__(self) -> None:
        self.width = validate_positive_number(self.width, "width")
        self.height = validate_positive_number(self.height, "height")
        validate_count(self.iterations, "iterations")
        self.repulsion_strength = validate_number(
            self.repulsion_strength, "repulsion_strength", error=ConfigurationError,
        )
        self.attraction_strength = validate_non_negative_number(
            self.attraction_strength, "attraction_strength",
        )
        self.link_distance = validate_non_negative_number(self.link_distance, "link_distance")
        self.gravity = validate_non_negative_number(self.gravity, "gravity")
        self.alpha = validate_non_negative_number(self.alpha, "alpha")
        self.alpha_decay = validate_fraction(self.alpha_decay, "alpha_decay")
        self.alpha_min = validate_non_negative_number(self.alpha_min, "alpha_min")
        self.velocity_decay = validate_fraction(self.velocity_decay, "velocity_decay")
        self.padding = validate_non_negative_number(self.padding, "padding")
        if 2 * self.padding > min(self.width, self.height):
            raise ConfigurationError(
                f"'padding' {self.padding} leaves no room on a "
                f"{self.width}x{self.height} canvas."
            )
        if self.seed is not None:
            validate_count(self.seed, "seed")


@dataclass
class _ForceNode:
    """Simulation particle at its top-left corner; ``fx``/``fy`` pin a fixed node.

    Forces act on the centre, ``half_w``/``half_h`` away from the corner.
    """
    id: str
    x: float
    y: float
    half_w: float = 0.0
    half_h: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    fx: Optional[float] = None
    fy: Optional[float] = None

    @property
    def fixed(self) -> bool:
        return self.fx is not None

    @property
    def cx(self) -> float:
        return self.x + self.half_w

    @property
    def cy(self) -> float:
        return self.y + self.half_h


@dataclass
class _ForceLink:
    source: _ForceNode
    target: _ForceNode
    distance: float
    strength: float


class ForceDirectedLayout:
    """Force-directed layout run as a cooperative asyncio task."""

    def __init__(
        self,
        config: Optional[ForceLayoutConfig] = None,
        calculator: Optional[EdgePathCalculator] = None,
    ) -> None:
        self.config = config or ForceLayoutConfig()
        self._calculator = calculator or EdgePathCalculator()
        self._token: Optional[CancellationToken] = None
        self.last_step_count = 0

    async def execute(
        self,
        nodes: Sequence[LayoutNode],
        edges: Sequence[Edge],
    ) -> LayoutResult:
        node_list = list(nodes)
        edge_list = list(edges)
        _check_nodes(node_list)

        token = CancellationToken()
        self._token = token
        try:
            rng = random.Random(self.config.seed)
            particles, links = self._initialize(node_list, edge_list, rng)
            steps = await self._run_simulation(particles, links, token, rng)
            self.last_step_count = steps
            logger.debug(
                "Force layout: %d nodes, %d links, %d step(s)%s",
                len(particles), len(links), steps,
                " (cancelled)" if token.cancelled else "",
            )

            positions = {p.id: (p.x, p.y) for p in particles}
            edge_paths = route_edges(
                node_list, positions, edge_list,
                PathOptions(routing_algorithm=RoutingAlgorithm.CURVED),
                self._calculator,
            )
            return LayoutResult(
                node_positions=tuple(NodePosition(p.id, p.x, p.y) for p in particles),
                edge_paths=edge_paths,
            )
        finally:
            if self._token is token:
                self._token = None

    def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()

    def is_running(self) -> bool:
        return self._token is not None

    # -- simulation -------------------------------------------------------------

    def _initialize(
        self,
        nodes: list[LayoutNode],
        edges: list[Edge],
        rng: random.Random,
    ) -> tuple[list[_ForceNode], list[_ForceLink]]:
        cfg = self.config
        particles: list[_ForceNode] = []
        for node in nodes:
            if node.has_position:
                x, y = float(node.x), float(node.y)
            else:
                x = rng.uniform(cfg.padding, cfg.width - cfg.padding)
                y = rng.uniform(cfg.padding, cfg.height - cfg.padding)
            half_w, half_h = node.width / 2, node.height / 2
            if node.fixed:
                particles.append(_ForceNode(node.id, x, y, half_w, half_h, fx=x, fy=y))
            else:
                x, y = self._clamp(x, y)
                particles.append(_ForceNode(node.id, x, y, half_w, half_h))

        by_id = {p.id: p for p in particles}
        links = [
            _ForceLink(
                source=by_id[e.source_id],
                target=by_id[e.target_id],
                distance=cfg.link_distance,
                strength=cfg.attraction_strength,
            )
            for e in edges
            if e.source_id in by_id and e.target_id in by_id
            and e.source_id != e.target_id
        ]
        return particles, links

    async def _run_simulation(
        self,
        particles: list[_ForceNode],
        links: list[_ForceLink],
        token: CancellationToken,
        rng: random.Random,
    ) -> int:
        cfg = self.config
        alpha = cfg.alpha
        steps = 0
        for _ in range(cfg.iterations):
            if token.cancelled or alpha < cfg.alpha_min:
                break
            self._step(particles, links, alpha, rng)
            alpha *= 1 - cfg.alpha_decay
            steps += 1
            await asyncio.sleep(0)
        return steps

    def _step(
        self,
        particles: list[_ForceNode],
        links: list[_ForceLink],
        alpha: float,
        rng: random.Random,
    ) -> None:
        self._apply_repulsion(particles, alpha, rng)
        self._apply_springs(links, alpha)
        self._apply_gravity(particles, alpha)
        self._integrate(particles)

    def _apply_repulsion(
        self,
        particles: list[_ForceNode],
        alpha: float,
        rng: random.Random,
    ) -> None:
        strength = self.config.repulsion_strength
        if strength == 0:
            return
        # O(n^2) over unordered pairs
        for i, a in enumerate(particles):
            for b in particles[i + 1:]:
                dx = b.cx - a.cx
                dy = b.cy - a.cy
                dist = math.hypot(dx, dy)
                if dist > 0:
                    ux, uy = dx / dist, dy / dist
                else:
                    angle = rng.uniform(0, 2 * math.pi)
                    ux, uy = math.cos(angle), math.sin(angle)
                d = max(dist, 1.0)
                force = strength * alpha / (d * d)
                fx, fy = ux * force, uy * force
                if not a.fixed:
                    a.vx -= fx
                    a.vy -= fy
                if not b.fixed:
                    b.vx += fx
                    b.vy += fy

    @staticmethod
    def _apply_springs(links: list[_ForceLink], alpha: float) -> None:
        for link in links:
            s, t = link.source, link.target
            dx = t.cx - s.cx
            dy = t.cy - s.cy
            dist = math.hypot(dx, dy)
            if dist == 0:
                continue
            force = (dist - link.distance) * link.strength * alpha
            fx, fy = dx / dist * force, dy / dist * force
            if not s.fixed:
                s.vx += fx
                s.vy += fy
            if not t.fixed:
                t.vx -= fx
                t.vy -= fy

    def _apply_gravity(self, particles: list[_ForceNode], alpha: float) -> None:
        cx = self.config.width / 2
        cy = self.config.height / 2
        g = self.config.gravity
        for p in particles:
            if not p.fixed:
                p.vx += (cx - p.cx) * g * alpha
                p.vy += (cy - p.cy) * g * alpha

    def _integrate(self, particles: list[_ForceNode]) -> None:
        decay = self.config.velocity_decay
        for p in particles:
            if p.fixed:
                p.vx = p.vy = 0.0
                continue
            p.x, p.y = self._clamp(p.x + p.vx, p.y + p.vy)
            p.vx *= decay
            p.vy *= decay

    def _clamp(self, x: float, y: float) -> tuple[float, float]:
        cfg = self.config
        return (
            min(max(x, cfg.padding), cfg.width - cfg.padding),
            min(max(y, cfg.padding), cfg.height - cfg.padding),
        )
