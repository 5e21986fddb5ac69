"""
Tests for the spatial layout index: rectangle math, containment and grid placement.
"""

import math

import pytest

from modelgraph.layout import (
    COMPONENT_SIZE,
    DEFAULT_CONTAINER_SIZE,
    LayoutState,
    Position,
    Rect,
    Size,
    SpatialLayoutIndex,
    overlap_area,
    rects_touch,
)
from modelgraph.models import Node, NodeCategory


class TestRectangleMath:
    """Closed-interval touch test and overlap area."""

    def test_shared_edge_touches_without_area(self):
        a = Rect(0, 0, 10, 10)
        b = Rect(10, 0, 10, 10)
        assert rects_touch(a, b)
        assert overlap_area(a, b) == 0

    def test_separated_rects_do_not_touch(self):
        assert not rects_touch(Rect(0, 0, 10, 10), Rect(11, 0, 10, 10))
        assert not rects_touch(Rect(0, 0, 10, 10), Rect(0, 10.5, 10, 10))

    def test_overlap_area(self):
        assert overlap_area(Rect(0, 0, 10, 10), Rect(5, 5, 10, 10)) == 25

    def test_contained_rect_overlap_is_its_area(self):
        assert overlap_area(Rect(0, 0, 100, 100), Rect(10, 10, 20, 30)) == 600


class TestContainment:
    """Drop-parent resolution over candidate containers."""

    @pytest.fixture
    def layout(self):
        layout = SpatialLayoutIndex()
        layout.place("left", Position(0, 0))
        layout.resize("left", Size(200, 200))
        layout.place("right", Position(300, 0))
        layout.resize("right", Size(200, 200))
        return layout

    def test_zero_overlap_resolves_to_root(self, layout):
        parent = layout.resolve_drop_parent(Position(1000, 1000), COMPONENT_SIZE, ["left", "right"])
        assert parent is None

    def test_touching_candidate_is_listed_but_not_chosen(self, layout):
        # Component's right edge sits exactly on the left container's left edge
        position = Position(-COMPONENT_SIZE.width, 50)
        candidates = layout.find_containing_containers(position, COMPONENT_SIZE, ["left", "right"])
        assert [c.container_id for c in candidates] == ["left"]
        assert candidates[0].overlap_area == 0
        assert layout.resolve_drop_parent(position, COMPONENT_SIZE, ["left", "right"]) is None

    def test_larger_overlap_wins(self, layout):
        # Straddles the gap, mostly over "right"
        position = Position(180, 50)
        candidates = layout.find_containing_containers(position, COMPONENT_SIZE, ["left", "right"])
        assert candidates[0].container_id == "right"
        assert candidates[0].overlap_area > candidates[1].overlap_area
        assert layout.resolve_drop_parent(position, COMPONENT_SIZE, ["left", "right"]) == "right"

    def test_equal_overlap_ties_break_by_container_id(self):
        layout = SpatialLayoutIndex()
        for container_id in ("b", "a", "c"):
            layout.place(container_id, Position(0, 0))
        for _ in range(3):
            parent = layout.resolve_drop_parent(Position(10, 10), COMPONENT_SIZE, ["c", "b", "a"])
            assert parent == "a"

    def test_unpositioned_candidates_are_ignored(self, layout):
        parent = layout.resolve_drop_parent(Position(10, 10), COMPONENT_SIZE, ["ghost", "left"])
        assert parent == "left"


class TestPlacement:
    """Sticky grid placement."""

    def test_root_grid(self):
        layout = SpatialLayoutIndex()
        nodes = [Node(id=f"n{i}", name=f"N{i}") for i in range(6)]
        placed = layout.ensure_placement(nodes)

        assert placed == [n.id for n in nodes]
        assert layout.position_of("n0") == Position(120, 80)
        assert layout.position_of("n1") == Position(340, 80)
        assert layout.position_of("n3") == Position(780, 80)
        assert layout.position_of("n4") == Position(120, 240)
        assert layout.position_of("n5") == Position(340, 240)

    def test_children_use_sub_grid_of_parent(self):
        layout = SpatialLayoutIndex()
        nodes = [
            Node(id="child-1", name="C1", parent_node_id="plant"),
            Node(id="plant", name="Plant", category=NodeCategory.CONTAINER),
            Node(id="child-2", name="C2", parent_node_id="plant"),
        ]
        layout.ensure_placement(nodes)

        assert layout.position_of("plant") == Position(120, 80)
        assert layout.position_of("child-1") == Position(144, 128)
        assert layout.position_of("child-2") == Position(334, 128)
        assert layout.size_of("plant") == DEFAULT_CONTAINER_SIZE

    def test_positioned_nodes_never_move(self):
        layout = SpatialLayoutIndex()
        nodes = [Node(id="a", name="A"), Node(id="b", name="B")]
        layout.place("a", Position(5, 5))

        assert layout.ensure_placement(nodes) == ["b"]
        assert layout.position_of("a") == Position(5, 5)
        assert layout.ensure_placement(nodes) == []

    def test_components_have_fixed_size(self):
        layout = SpatialLayoutIndex()
        layout.place("x", Position(0, 0))
        layout.resize("x", Size(999, 999))
        assert layout.size_of("x", NodeCategory.COMPONENT) == COMPONENT_SIZE
        assert layout.rect_of("x", NodeCategory.COMPONENT) == Rect(0, 0, COMPONENT_SIZE.width, COMPONENT_SIZE.height)

    def test_rect_of_unplaced_node_is_none(self):
        assert SpatialLayoutIndex().rect_of("missing", NodeCategory.CONTAINER) is None

    def test_resize_rejects_empty_size(self):
        with pytest.raises(ValueError):
            SpatialLayoutIndex().resize("x", Size(0, 10))


class TestLayoutState:
    """Export/adopt and sanitizing of untrusted layout data."""

    def test_round_trip_through_dict(self):
        layout = SpatialLayoutIndex()
        layout.place("a", Position(1.5, 2))
        layout.resize("a", Size(300, 200))
        state = LayoutState.from_dict(layout.export_state().to_dict())

        other = SpatialLayoutIndex(state)
        assert other.position_of("a") == Position(1.5, 2)
        assert other.size_of("a") == Size(300, 200)

    def test_malformed_entries_are_dropped(self):
        state = LayoutState.from_dict({
            "nodePositions": {
                "ok": {"x": 10, "y": 20},
                "inf": {"x": math.inf, "y": 0},
                "text": {"x": "1", "y": 2},
                "flag": {"x": True, "y": 2},
                "bare": 5,
            },
            "containerSizes": {
                "rounded": {"width": 10.4, "height": 0.2},
                "nan": {"width": math.nan, "height": 10},
            },
        })
        assert state.node_positions == {"ok": Position(10, 20)}
        assert state.container_sizes == {"rounded": Size(10, 1)}

    def test_non_dict_is_empty_state(self):
        state = LayoutState.from_dict(["not", "a", "layout"])
        assert state.node_positions == {} and state.container_sizes == {}

    def test_adopt_replaces_wholesale(self):
        layout = SpatialLayoutIndex()
        layout.place("old", Position(0, 0))
        layout.adopt_state(LayoutState({"new": Position(1, 1)}, {}))
        assert layout.position_of("old") is None
        assert layout.position_of("new") == Position(1, 1)
