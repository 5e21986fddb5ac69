"""
Spatial layout index: presentation-only positions and container sizes.

The index is keyed by node id and is never authoritative for identity or
invariants; entries may be missing (e.g. after a restore introduced new
node ids) and are then filled by grid placement.

Rectangle math is kept as plain module functions so it can be tested
without any rendering surface.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from modelgraph.constants import (
    CHILD_GRID_COLUMNS,
    CHILD_OFFSET_X,
    CHILD_OFFSET_Y,
    CHILD_STEP_X,
    CHILD_STEP_Y,
    COMPONENT_HEIGHT,
    COMPONENT_WIDTH,
    CONTAINER_HEIGHT,
    CONTAINER_WIDTH,
    GRID_COLUMNS,
    GRID_ORIGIN_X,
    GRID_ORIGIN_Y,
    GRID_STEP_X,
    GRID_STEP_Y,
)
from modelgraph.models import Node, NodeCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def offset(self, dx: float, dy: float) -> "Position":
        return Position(self.x + dx, self.y + dy)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"width": self.width, "height": self.height}


COMPONENT_SIZE = Size(COMPONENT_WIDTH, COMPONENT_HEIGHT)
DEFAULT_CONTAINER_SIZE = Size(CONTAINER_WIDTH, CONTAINER_HEIGHT)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle; (x, y) is the top-left corner."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def at(cls, position: Position, size: Size) -> "Rect":
        return cls(position.x, position.y, size.width, size.height)

    @property
    def left(self) -> float:
        return self.x

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y

    @property
    def bottom(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class ContainmentCandidate:
    container_id: str
    overlap_area: float


def rects_touch(a: Rect, b: Rect) -> bool:
    """True if the rectangles overlap or share an edge (closed intervals on both axes)."""
    return (
        a.left <= b.right and a.right >= b.left
        and a.top <= b.bottom and a.bottom >= b.top
    )


def overlap_area(a: Rect, b: Rect) -> float:
    """Area of the intersection; zero when the rectangles merely touch."""
    width = max(0.0, min(a.right, b.right) - max(a.left, b.left))
    height = max(0.0, min(a.bottom, b.bottom) - max(a.top, b.top))
    return width * height


def _finite(*values: Any) -> bool:
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in values
    )


@dataclass
class LayoutState:
    """Serializable layout: node positions plus container sizes."""
    node_positions: Dict[str, Position] = field(default_factory=dict)
    container_sizes: Dict[str, Size] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodePositions": {nid: p.to_dict() for nid, p in self.node_positions.items()},
            "containerSizes": {nid: s.to_dict() for nid, s in self.container_sizes.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "LayoutState":
        """
        Build a layout state from untrusted JSON.

        Entries with missing or non-finite numbers are dropped; sizes are
        rounded and clamped to at least 1.
        """
        state = cls()
        if not isinstance(data, dict):
            return state
        positions = data.get("nodePositions")
        if isinstance(positions, dict):
            for node_id, raw in positions.items():
                if isinstance(raw, dict) and _finite(raw.get("x"), raw.get("y")):
                    state.node_positions[str(node_id)] = Position(float(raw["x"]), float(raw["y"]))
        sizes = data.get("containerSizes")
        if isinstance(sizes, dict):
            for node_id, raw in sizes.items():
                if isinstance(raw, dict) and _finite(raw.get("width"), raw.get("height")):
                    state.container_sizes[str(node_id)] = Size(
                        max(1, round(raw["width"])), max(1, round(raw["height"]))
                    )
        return state


class SpatialLayoutIndex:
    """Position/size bookkeeping and containment queries for the canvas."""

    def __init__(self, state: Optional[LayoutState] = None):
        self._positions: Dict[str, Position] = {}
        self._sizes: Dict[str, Size] = {}
        if state is not None:
            self.adopt_state(state)

    # --- Bookkeeping ---

    def place(self, node_id: str, position: Position) -> None:
        self._positions[node_id] = position

    def resize(self, container_id: str, size: Size) -> None:
        if size.width < 1 or size.height < 1:
            raise ValueError(f"Container size must be at least 1x1, got {size.width}x{size.height}")
        self._sizes[container_id] = size

    def forget(self, node_id: str) -> None:
        self._positions.pop(node_id, None)
        self._sizes.pop(node_id, None)

    def position_of(self, node_id: str) -> Optional[Position]:
        return self._positions.get(node_id)

    def has_position(self, node_id: str) -> bool:
        return node_id in self._positions

    def size_of(self, node_id: str, category: NodeCategory = NodeCategory.CONTAINER) -> Size:
        """Components have a fixed size; containers their stored or default size."""
        if category is NodeCategory.COMPONENT:
            return COMPONENT_SIZE
        return self._sizes.get(node_id, DEFAULT_CONTAINER_SIZE)

    def rect_of(self, node_id: str, category: NodeCategory) -> Optional[Rect]:
        """Bounding box of a placed node, or None if it has no position yet."""
        position = self._positions.get(node_id)
        if position is None:
            return None
        return Rect.at(position, self.size_of(node_id, category))

    # --- Containment ---

    def find_containing_containers(
        self, position: Position, size: Size, candidates: Iterable[str]
    ) -> List[ContainmentCandidate]:
        """
        Return every candidate container whose rectangle touches the given box.

        Sorted by overlap area descending; equal areas are ordered by
        container id so repeated runs agree.
        """
        box = Rect.at(position, size)
        found: List[ContainmentCandidate] = []
        for container_id in candidates:
            rect = self.rect_of(container_id, NodeCategory.CONTAINER)
            if rect is None or not rects_touch(box, rect):
                continue
            found.append(ContainmentCandidate(container_id, overlap_area(box, rect)))
        found.sort(key=lambda c: (-c.overlap_area, c.container_id))
        return found

    def resolve_drop_parent(
        self, position: Position, size: Size, candidates: Iterable[str]
    ) -> Optional[str]:
        """The container with the largest positive overlap, or None for root."""
        for candidate in self.find_containing_containers(position, size, candidates):
            if candidate.overlap_area > 0:
                return candidate.container_id
        return None

    # --- Initial placement ---

    def ensure_placement(self, nodes: Sequence[Node]) -> List[str]:
        """
        Give every unpositioned node a grid position; returns the ids placed.

        Roots go on a 4-column grid, children on a 3-column sub-grid offset
        from their container's top-left corner. Nodes that already have a
        position are never moved, but still occupy their grid slot so the
        result does not depend on which nodes happened to be cached.
        """
        by_id = {node.id: node for node in nodes}
        placed: List[str] = []
        root_slot = 0
        child_slots: Dict[str, int] = {}

        for node in _parents_first(nodes, by_id):
            if node.is_container and node.id not in self._sizes:
                self._sizes[node.id] = DEFAULT_CONTAINER_SIZE

            parent_id = node.parent_node_id if node.parent_node_id in by_id else None
            if parent_id is None:
                slot = root_slot
                root_slot += 1
            else:
                slot = child_slots.get(parent_id, 0)
                child_slots[parent_id] = slot + 1

            if node.id in self._positions:
                continue

            parent_position = self._positions.get(parent_id) if parent_id else None
            if parent_position is None:
                position = Position(
                    GRID_ORIGIN_X + (slot % GRID_COLUMNS) * GRID_STEP_X,
                    GRID_ORIGIN_Y + (slot // GRID_COLUMNS) * GRID_STEP_Y,
                )
            else:
                position = Position(
                    parent_position.x + CHILD_OFFSET_X + (slot % CHILD_GRID_COLUMNS) * CHILD_STEP_X,
                    parent_position.y + CHILD_OFFSET_Y + (slot // CHILD_GRID_COLUMNS) * CHILD_STEP_Y,
                )
            self._positions[node.id] = position
            placed.append(node.id)

        if placed:
            logger.debug(f"Placed {len(placed)} node(s) on the layout grid")
        return placed

    # --- Whole-state exchange ---

    def export_state(self) -> LayoutState:
        return LayoutState(dict(self._positions), dict(self._sizes))

    def adopt_state(self, state: LayoutState) -> None:
        """Replace every position and size with the given state."""
        self._positions = dict(state.node_positions)
        self._sizes = dict(state.container_sizes)


def _parents_first(nodes: Sequence[Node], by_id: Dict[str, Node]) -> List[Node]:
    """Order nodes by hierarchy depth, keeping input order within a depth."""
    depths: Dict[str, int] = {}
    for node in nodes:
        depth = 0
        seen = {node.id}
        current = by_id.get(node.parent_node_id) if node.parent_node_id else None
        while current is not None and current.id not in seen:
            depth += 1
            seen.add(current.id)
            current = by_id.get(current.parent_node_id) if current.parent_node_id else None
        depths[node.id] = depth
    return sorted(nodes, key=lambda n: depths[n.id])
