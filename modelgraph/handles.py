"""
Connection handle resolution.

Every node exposes the same 12 anchors: 3 per side at 20/50/80% along the
side. An edge is routed between the closest pair of anchors on its two
endpoints; the search is exhaustive and deterministic.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from modelgraph.constants import (
    DEFAULT_SOURCE_HANDLE,
    DEFAULT_TARGET_HANDLE,
    HANDLE_RATIOS,
    HANDLE_SIDES,
)
from modelgraph.layout import Rect, SpatialLayoutIndex
from modelgraph.models import Edge, NodeCategory

logger = logging.getLogger(__name__)

# Enumeration order doubles as the tie-break order
HANDLE_IDS: Tuple[str, ...] = tuple(
    f"{side}-{round(ratio * 100)}" for side in HANDLE_SIDES for ratio in HANDLE_RATIOS
)
_HANDLE_SET = frozenset(HANDLE_IDS)


@dataclass(frozen=True)
class HandleResolution:
    source_handle_id: str
    target_handle_id: str


def is_valid_handle(handle_id: Optional[str]) -> bool:
    return handle_id in _HANDLE_SET


def anchor_point(rect: Rect, handle_id: str) -> Tuple[float, float]:
    """Absolute canvas coordinates of an anchor on the given rectangle."""
    if not is_valid_handle(handle_id):
        raise ValueError(f"Unknown handle id: {handle_id}")
    side, pct = handle_id.split("-")
    ratio = int(pct) / 100
    if side == "top":
        return rect.left + rect.width * ratio, rect.top
    if side == "bottom":
        return rect.left + rect.width * ratio, rect.bottom
    if side == "left":
        return rect.left, rect.top + rect.height * ratio
    return rect.right, rect.top + rect.height * ratio


def resolve_rects(source: Rect, target: Rect) -> HandleResolution:
    """Closest anchor pair by squared distance; the first pair found wins ties."""
    best: Optional[Tuple[str, str]] = None
    best_distance = float("inf")
    source_points = [(h, anchor_point(source, h)) for h in HANDLE_IDS]
    target_points = [(h, anchor_point(target, h)) for h in HANDLE_IDS]
    for source_handle, (sx, sy) in source_points:
        for target_handle, (tx, ty) in target_points:
            distance = (sx - tx) ** 2 + (sy - ty) ** 2
            if distance < best_distance:
                best_distance = distance
                best = (source_handle, target_handle)
    return HandleResolution(*best)


class HandleResolver:
    """
    Resolves anchors for edges using the live layout index.

    Args:
        layout: Layout index providing positions and container sizes
        category_lookup: Callable returning a node's category, or None if unknown
    """

    def __init__(
        self,
        layout: SpatialLayoutIndex,
        category_lookup: Callable[[str], Optional[NodeCategory]],
    ):
        self.layout = layout
        self._category_lookup = category_lookup

    def _rect(self, node_id: str) -> Optional[Rect]:
        category = self._category_lookup(node_id)
        if category is None:
            return None
        return self.layout.rect_of(node_id, category)

    def resolve(self, source_node_id: str, target_node_id: str) -> HandleResolution:
        """
        Pick the closest handle pair between two nodes.

        Falls back to right-50 -> left-50 when either node has no geometry yet.
        """
        source_rect = self._rect(source_node_id)
        target_rect = self._rect(target_node_id)
        if source_rect is None or target_rect is None:
            return HandleResolution(DEFAULT_SOURCE_HANDLE, DEFAULT_TARGET_HANDLE)
        return resolve_rects(source_rect, target_rect)

    def repair(self, edge: Edge) -> Optional[HandleResolution]:
        """
        Replace invalid stored handles on an edge.

        Returns the corrected pair, or None if both handles were already valid.
        Only the invalid side is replaced.
        """
        source_ok = is_valid_handle(edge.source_handle_id)
        target_ok = is_valid_handle(edge.target_handle_id)
        if source_ok and target_ok:
            return None
        resolved = self.resolve(edge.source_node_id, edge.target_node_id)
        return HandleResolution(
            edge.source_handle_id if source_ok else resolved.source_handle_id,
            edge.target_handle_id if target_ok else resolved.target_handle_id,
        )
