"""
Tests for connection handle resolution and repair.
"""

import pytest

from modelgraph.handles import HANDLE_IDS, HandleResolution, HandleResolver, anchor_point, is_valid_handle, resolve_rects
from modelgraph.layout import Position, Rect, Size, SpatialLayoutIndex
from modelgraph.models import Edge, NodeCategory


class TestAnchors:
    """Handle ids and anchor geometry."""

    def test_twelve_handles(self):
        assert len(HANDLE_IDS) == 12
        assert HANDLE_IDS[0] == "top-20"
        assert HANDLE_IDS[-1] == "left-80"
        assert "right-50" in HANDLE_IDS

    def test_validity(self):
        assert is_valid_handle("bottom-80")
        assert not is_valid_handle("bottom-90")
        assert not is_valid_handle(None)
        assert not is_valid_handle("")

    def test_anchor_points(self):
        rect = Rect(0, 0, 100, 50)
        assert anchor_point(rect, "top-20") == (20, 0)
        assert anchor_point(rect, "right-50") == (100, 25)
        assert anchor_point(rect, "bottom-80") == (80, 50)
        assert anchor_point(rect, "left-20") == (0, 10)

    def test_unknown_handle_raises(self):
        with pytest.raises(ValueError):
            anchor_point(Rect(0, 0, 10, 10), "middle-50")


class TestResolveRects:
    """Closest anchor pair search."""

    def test_horizontal_neighbours(self):
        source = Rect(0, 0, 170, 56)
        target = Rect(400, 0, 170, 56)
        # right-20/left-20, right-50/left-50 and right-80/left-80 tie; enumeration order wins
        assert resolve_rects(source, target) == HandleResolution("right-20", "left-20")

    def test_target_below(self):
        source = Rect(0, 0, 170, 56)
        target = Rect(0, 300, 170, 56)
        resolution = resolve_rects(source, target)
        assert resolution.source_handle_id.startswith("bottom-")
        assert resolution.target_handle_id.startswith("top-")

    def test_target_to_the_left(self):
        resolution = resolve_rects(Rect(500, 0, 170, 56), Rect(0, 0, 170, 56))
        assert resolution.source_handle_id.startswith("left-")
        assert resolution.target_handle_id.startswith("right-")

    def test_deterministic(self):
        source, target = Rect(13, 7, 170, 56), Rect(211, 390, 420, 280)
        results = {resolve_rects(source, target) for _ in range(5)}
        assert len(results) == 1


class TestHandleResolver:
    """Resolution against the live layout index."""

    @pytest.fixture
    def resolver(self):
        layout = SpatialLayoutIndex()
        layout.place("a", Position(0, 0))
        layout.place("b", Position(400, 0))
        categories = {"a": NodeCategory.COMPONENT, "b": NodeCategory.COMPONENT, "c": NodeCategory.COMPONENT}
        return HandleResolver(layout, categories.get)

    def test_resolve_uses_geometry(self, resolver):
        assert resolver.resolve("a", "b") == HandleResolution("right-20", "left-20")

    def test_missing_geometry_falls_back(self, resolver):
        # "c" is known but has no position, "x" is unknown
        assert resolver.resolve("a", "c") == HandleResolution("right-50", "left-50")
        assert resolver.resolve("x", "b") == HandleResolution("right-50", "left-50")

    def test_repair_valid_edge_is_noop(self, resolver):
        edge = Edge(id="e", source_node_id="a", target_node_id="b",
                    source_handle_id="top-50", target_handle_id="bottom-50")
        assert resolver.repair(edge) is None

    def test_repair_replaces_only_invalid_side(self, resolver):
        edge = Edge(id="e", source_node_id="a", target_node_id="b",
                    source_handle_id="top-50", target_handle_id="bogus")
        assert resolver.repair(edge) == HandleResolution("top-50", "left-20")

    def test_repair_missing_handles(self, resolver):
        edge = Edge(id="e", source_node_id="a", target_node_id="b")
        assert resolver.repair(edge) == HandleResolution("right-20", "left-20")

    def test_container_size_is_used(self):
        layout = SpatialLayoutIndex()
        layout.place("big", Position(0, 0))
        layout.resize("big", Size(1000, 100))
        layout.place("small", Position(1200, 0))
        categories = {"big": NodeCategory.CONTAINER, "small": NodeCategory.COMPONENT}
        resolution = HandleResolver(layout, categories.get).resolve("big", "small")
        assert resolution.source_handle_id.startswith("right-")
