"""
Edit Actions Module for model editing

Executes user-level graph mutations through the GraphModelStore and
registers each one with the HistoryManager as an undoable action.

Redo recreates entities under their original ids so that later history
entries which reference those ids stay valid.
"""

import logging
from typing import Any, Callable, Dict, Optional

from modelgraph.history import HistoryAction, HistoryManager
from modelgraph.layout import COMPONENT_SIZE, Position, Size
from modelgraph.hierarchy import descendants
from modelgraph.models import (
    ComponentDataLink,
    DataObject,
    Edge,
    EdgeDataFlow,
    EdgeDirection,
    Node,
)
from modelgraph.store import ConnectResult, GraphModelStore, MappingResult

logger = logging.getLogger(__name__)


class EditActions:
    """
    Handles execution of editing actions.

    Each method applies its change once, then records the reversible
    action. Validation errors surface before anything is recorded.
    """

    def __init__(self, store: GraphModelStore, history: HistoryManager):
        self.store = store
        self.history = history

    def _record(self, label: str, undo: Callable[[], None], redo: Callable[[], None]) -> None:
        self.history.perform(HistoryAction(label, undo, redo))

    # --- Nodes ---

    def add_node(self, name: str, category: Any, parent_node_id: Optional[str] = None,
                 position: Optional[Position] = None, size: Optional[Size] = None,
                 description: str = "", notes: str = "") -> Node:
        """
        Create a container or component.

        Args:
            name: Node name
            category: NodeCategory or its tag
            parent_node_id: Optional parent container
            position: Canvas position; grid placement when omitted
            size: Container size (ignored for components)

        Returns:
            Created Node
        """
        node = self.store.create_node(name, category, parent_node_id, description, notes,
                                      position=position, size=size)
        geometry: Dict[str, Any] = {}

        def undo():
            geometry["position"] = self.store.layout.position_of(node.id)
            geometry["size"] = self.store.layout.size_of(node.id) if node.is_container else None
            self.store.delete_node(node.id)

        def redo():
            self.store.create_node(node.name, node.category, node.parent_node_id, node.description,
                                   node.notes, node_id=node.id, position=geometry.get("position"),
                                   size=geometry.get("size"))

        label = "Add component" if node.is_component else "Add container"
        self._record(label, undo, redo)
        return node

    def update_node(self, node_id: str, **patch: Any) -> Node:
        before = self.store.get_node(node_id)
        previous = {key: getattr(before, key) for key in patch}
        node = self.store.update_node(node_id, **patch)
        label = "Move node" if set(patch) == {"parent_node_id"} else "Edit node"
        self._record(
            label,
            lambda: self.store.update_node(node_id, **previous),
            lambda: self.store.update_node(node_id, **patch),
        )
        return node

    def delete_node(self, node_id: str) -> None:
        """Delete a single node; undo puts back its interfaces and data links too."""
        record = self.store.delete_node(node_id)
        state = {"record": record}

        def undo():
            self.store.reinstate_node(state["record"])

        def redo():
            state["record"] = self.store.delete_node(node_id)

        self._record("Delete node", undo, redo)

    def drop_node(self, node_id: str, position: Position) -> bool:
        """
        Finish a drag: move the node and recompute containment.

        Containers drag their descendants along and never change parent.
        A component is assigned to the user container it overlaps most,
        or to root. Only a parent change is recorded in history.

        Returns:
            True if the parent changed
        """
        node = self.store.get_node(node_id)
        layout = self.store.layout
        old_position = layout.position_of(node_id)

        if node.is_container:
            layout.place(node_id, position)
            if old_position is not None:
                dx, dy = position.x - old_position.x, position.y - old_position.y
                for child_id in descendants(self.store.nodes.values(), node_id):
                    child_position = layout.position_of(child_id)
                    if child_position is not None:
                        layout.place(child_id, child_position.offset(dx, dy))
            return False

        new_parent = layout.resolve_drop_parent(
            position, COMPONENT_SIZE, self.store.containment_candidates(node_id)
        )
        layout.place(node_id, position)
        old_parent = node.parent_node_id
        if new_parent == old_parent:
            return False

        self.store.update_node(node_id, parent_node_id=new_parent)

        def undo():
            self.store.update_node(node_id, parent_node_id=old_parent)
            if old_position is not None:
                layout.place(node_id, old_position)

        def redo():
            self.store.update_node(node_id, parent_node_id=new_parent)
            layout.place(node_id, position)

        self._record("Move node", undo, redo)
        return True

    def resize_container(self, container_id: str, size: Size) -> None:
        """Presentation only; not part of the undo history."""
        node = self.store.get_node(container_id)
        if not node.is_container:
            raise ValueError(f"'{node.name}' is not a container")
        self.store.layout.resize(container_id, size)

    # --- Interfaces ---

    def connect(self, source_node_id: str, target_node_id: str,
                direction: Any = EdgeDirection.A_TO_B) -> ConnectResult:
        """Direct connect: interface plus generated data object and flow, undone as one step."""
        result = self.store.connect_nodes(source_node_id, target_node_id, direction)
        edge, data_object = result.edge, result.data_object

        def undo():
            self.store.delete_edge(edge.id)
            if data_object.id in self.store.data_objects:
                self.store.delete_data_object(data_object.id)

        def redo():
            self.store.connect_nodes(source_node_id, target_node_id, edge.direction, edge_id=edge.id,
                                     data_object_id=data_object.id, data_object_name=data_object.name)

        self._record("Connect", undo, redo)
        return result

    def create_edge(self, source_node_id: str, target_node_id: str,
                    direction: Any = EdgeDirection.A_TO_B, **fields: Any) -> Edge:
        edge = self.store.create_edge(source_node_id, target_node_id, direction, **fields)

        def redo():
            self.store.create_edge(edge.source_node_id, edge.target_node_id, edge.direction,
                                   edge.source_handle_id, edge.target_handle_id, edge.name,
                                   edge.protocol, edge.description, edge.notes, edge_id=edge.id)

        self._record("Add interface", lambda: self.store.delete_edge(edge.id), redo)
        return edge

    def update_edge(self, edge_id: str, **patch: Any) -> Edge:
        before = self.store.get_edge(edge_id)
        # Endpoint changes re-route handles; restore those too
        keys = set(patch)
        if keys & {"source_node_id", "target_node_id"}:
            keys |= {"source_handle_id", "target_handle_id"}
        previous = {key: getattr(before, key) for key in keys}
        edge = self.store.update_edge(edge_id, **patch)
        applied = {key: getattr(edge, key) for key in keys}
        self._record(
            "Edit interface",
            lambda: self.store.update_edge(edge_id, **previous),
            lambda: self.store.update_edge(edge_id, **applied),
        )
        return edge

    def delete_edge(self, edge_id: str) -> None:
        record = self.store.delete_edge(edge_id)
        self._record(
            "Delete interface",
            lambda: self.store.reinstate_edge(record),
            lambda: self.store.delete_edge(edge_id),
        )

    # --- Data objects ---

    def create_data_object(self, name: str, data_class: Any = "Other", **fields: Any) -> DataObject:
        data_object = self.store.create_data_object(name, data_class, **fields)
        d = data_object

        def redo():
            self.store.create_data_object(d.name, d.data_class, d.description, d.confidentiality,
                                          d.integrity, d.availability, d.tags, data_object_id=d.id)

        self._record("Add data object", lambda: self.store.delete_data_object(d.id), redo)
        return data_object

    def update_data_object(self, data_object_id: str, **patch: Any) -> DataObject:
        before = self.store.get_data_object(data_object_id)
        previous = {key: getattr(before, key) for key in patch}
        data_object = self.store.update_data_object(data_object_id, **patch)
        # Store the name actually applied (it may have been suffixed)
        applied = {key: getattr(data_object, key) for key in patch}
        self._record(
            "Edit data object",
            lambda: self.store.update_data_object(data_object_id, **previous),
            lambda: self.store.update_data_object(data_object_id, **applied),
        )
        return data_object

    def delete_data_object(self, data_object_id: str) -> None:
        state = {"record": self.store.delete_data_object(data_object_id)}

        def undo():
            self.store.reinstate_data_object(state["record"])

        def redo():
            state["record"] = self.store.delete_data_object(data_object_id)

        self._record("Delete data object", undo, redo)

    # --- Data mappings ---

    def assign_component_data(self, node_id: str, data_object_id: str, role: Any = "Stores",
                              notes: Optional[str] = None) -> ComponentDataLink:
        previous = self.store.component_data.get((node_id, data_object_id))
        link = self.store.assign_component_data(node_id, data_object_id, role, notes)

        def undo():
            if previous is None:
                self.store.remove_component_data(node_id, data_object_id)
            else:
                self.store.assign_component_data(node_id, data_object_id, previous.role, previous.notes)

        self._record(
            "Assign data", undo,
            lambda: self.store.assign_component_data(node_id, data_object_id, link.role, link.notes),
        )
        return link

    def remove_component_data(self, node_id: str, data_object_id: str) -> None:
        link = self.store.remove_component_data(node_id, data_object_id)
        self._record(
            "Remove data",
            lambda: self.store.assign_component_data(node_id, data_object_id, link.role, link.notes),
            lambda: self.store.remove_component_data(node_id, data_object_id),
        )

    def assign_edge_data_flow(self, edge_id: str, data_object_id: str, direction: Any = "SourceToTarget",
                              notes: Optional[str] = None) -> EdgeDataFlow:
        previous = self.store.edge_data_flows.get((edge_id, data_object_id))
        flow = self.store.assign_edge_data_flow(edge_id, data_object_id, direction, notes)

        def undo():
            if previous is None:
                self.store.remove_edge_data_flow(edge_id, data_object_id)
            else:
                self.store.assign_edge_data_flow(edge_id, data_object_id, previous.direction, previous.notes)

        self._record(
            "Assign data flow", undo,
            lambda: self.store.assign_edge_data_flow(edge_id, data_object_id, flow.direction, flow.notes),
        )
        return flow

    def remove_edge_data_flow(self, edge_id: str, data_object_id: str) -> None:
        flow = self.store.remove_edge_data_flow(edge_id, data_object_id)
        self._record(
            "Remove data flow",
            lambda: self.store.assign_edge_data_flow(edge_id, data_object_id, flow.direction, flow.notes),
            lambda: self.store.remove_edge_data_flow(edge_id, data_object_id),
        )

    def map_data_flow(self, node_id: str, data_object_id: str, intent: Any,
                      peer_node_id: str) -> MappingResult:
        """Save-mapping path (Receives / SendsTo / FetchesFrom) as one undoable step."""
        state = {"result": self.store.map_data_flow(node_id, data_object_id, intent, peer_node_id)}
        first = state["result"]

        def undo():
            self.store.unmap_data_flow(state["result"])

        def redo():
            edge_id = first.edge.id if first.edge_created else None
            state["result"] = self.store.map_data_flow(node_id, data_object_id, intent, peer_node_id,
                                                       edge_id=edge_id)

        self._record("Map data flow", undo, redo)
        return first
