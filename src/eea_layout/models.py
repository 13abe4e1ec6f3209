"""
Value types shared by the layout and routing engines.

Every type here is an immutable snapshot.  Layout strategies read
``LayoutNode`` / ``Edge`` records supplied by the topology model and
produce fresh ``LayoutResult`` records; nothing in this package writes
back into a caller's node objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NodeType(Enum):
    """Semantic node types of an E/E architecture topology."""
    DOMAIN_CONTROLLER = "domainController"
    GATEWAY = "gateway"
    ECU = "ecu"
    SENSOR = "sensor"
    ACTUATOR = "actuator"
    BUS = "bus"


class Protocol(Enum):
    """Connection protocols carried by edges."""
    CAN = "can"
    LIN = "lin"
    FLEXRAY = "flexray"
    ETHERNET = "ethernet"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Position:
    """A 2-D coordinate."""
    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


# A path is an ordered sequence of at least two positions.
Path = tuple[Position, ...]


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned rectangle, used as a routing obstacle."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def cx(self) -> float:
        return self.x + self.width / 2

    @property
    def cy(self) -> float:
        return self.y + self.height / 2

    @property
    def center(self) -> Position:
        return Position(self.cx, self.cy)

    def expanded(self, margin: float) -> Rectangle:
        return Rectangle(
            self.x - margin, self.y - margin,
            self.width + 2 * margin, self.height + 2 * margin,
        )


# ---------------------------------------------------------------------------
# Graph input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LayoutNode:
    """A node as seen by the layout engine.

    ``x`` / ``y`` are the top-left corner and may be ``None`` when the
    node has never been placed.  ``level`` is informational; the
    hierarchical layout derives its own layers.
    """
    id: str
    width: float
    height: float
    type: str = NodeType.ECU.value
    x: Optional[float] = None
    y: Optional[float] = None
    group: Optional[str] = None
    level: Optional[int] = None
    fixed: bool = False

    @property
    def has_position(self) -> bool:
        return self.x is not None and self.y is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LayoutNode:
        return cls(
            id=str(data["id"]),
            width=float(data["width"]),
            height=float(data["height"]),
            type=str(data.get("type", NodeType.ECU.value)),
            x=float(data["x"]) if data.get("x") is not None else None,
            y=float(data["y"]) if data.get("y") is not None else None,
            group=data.get("group"),
            level=data.get("level"),
            fixed=bool(data.get("fixed", False)),
        )


@dataclass(frozen=True)
class Edge:
    """A directed connection between two nodes."""
    id: str
    source_id: str
    target_id: str
    protocol: Protocol = Protocol.CUSTOM

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        source = data.get("source_id", data.get("sourceId"))
        target = data.get("target_id", data.get("targetId"))
        return cls(
            id=str(data["id"]),
            source_id=str(source),
            target_id=str(target),
            protocol=Protocol(str(data.get("protocol", Protocol.CUSTOM.value)).lower()),
        )


# ---------------------------------------------------------------------------
# Layout output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NodePosition:
    id: str
    x: float
    y: float


@dataclass(frozen=True)
class EdgePath:
    id: str
    path: Path


@dataclass(frozen=True)
class LayoutResult:
    """Immutable snapshot produced by one ``execute`` call."""
    node_positions: tuple[NodePosition, ...] = field(default_factory=tuple)
    edge_paths: tuple[EdgePath, ...] = field(default_factory=tuple)

    def position_of(self, node_id: str) -> Optional[NodePosition]:
        for pos in self.node_positions:
            if pos.id == node_id:
                return pos
        return None

    def path_of(self, edge_id: str) -> Optional[Path]:
        for ep in self.edge_paths:
            if ep.id == edge_id:
                return ep.path
        return None

    def bounds(self, nodes: list[LayoutNode]) -> Optional[Rectangle]:
        """Bounding rectangle of all placed nodes (sizes taken from *nodes*)."""
        sizes = {n.id: (n.width, n.height) for n in nodes}
        placed = [p for p in self.node_positions if p.id in sizes]
        if not placed:
            return None
        min_x = min(p.x for p in placed)
        min_y = min(p.y for p in placed)
        max_x = max(p.x + sizes[p.id][0] for p in placed)
        max_y = max(p.y + sizes[p.id][1] for p in placed)
        return Rectangle(min_x, min_y, max_x - min_x, max_y - min_y)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodePositions": [
                {"id": p.id, "x": p.x, "y": p.y} for p in self.node_positions
            ],
            "edgePaths": [
                {"id": ep.id, "path": [pt.to_dict() for pt in ep.path]}
                for ep in self.edge_paths
            ],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def node_bounds(node: LayoutNode, x: float, y: float) -> Rectangle:
    """Rectangle of *node* when placed with its top-left corner at (x, y)."""
    return Rectangle(x, y, node.width, node.height)


def node_anchor(node: LayoutNode, x: float, y: float) -> Position:
    """Edge anchor (centre) of *node* placed at (x, y)."""
    return node_bounds(node, x, y).center
