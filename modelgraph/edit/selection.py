"""
Selection Controller - selected node/edge ids and selection-scoped bulk operations.

Click semantics:
- plain click replaces the selection with the clicked element
- additive (ctrl/cmd/shift) click toggles the element in the selection
- background click clears everything
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from modelgraph.constants import COPY_NAME_SUFFIX, GLOBAL_CONTAINER_NAME, PASTE_OFFSET_X, PASTE_OFFSET_Y
from modelgraph.errors import ModelGraphError, PersistenceError, SelectionError
from modelgraph.hierarchy import ancestors, order_by_selection_depth
from modelgraph.history import HistoryAction, HistoryManager
from modelgraph.layout import Position, Size
from modelgraph.models import Edge, Node
from modelgraph.store import GraphModelStore

logger = logging.getLogger(__name__)


@dataclass
class DeleteSelectedResult:
    deleted_node_ids: List[str] = field(default_factory=list)
    deleted_edge_ids: List[str] = field(default_factory=list)
    skipped_node_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class CopySelectedResult:
    node_id_map: Dict[str, str] = field(default_factory=dict)
    edge_id_map: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def created_node_ids(self) -> List[str]:
        return list(self.node_id_map.values())

    @property
    def created_edge_ids(self) -> List[str]:
        return list(self.edge_id_map.values())


class SelectionController:
    """Tracks the selection and runs delete-selected / copy-selected."""

    def __init__(self, store: GraphModelStore, history: HistoryManager):
        self.store = store
        self.history = history
        # dicts as insertion-ordered sets
        self._nodes: Dict[str, None] = {}
        self._edges: Dict[str, None] = {}

    # --- State ---

    @property
    def selected_node_ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def selected_edge_ids(self) -> List[str]:
        return list(self._edges)

    @property
    def is_empty(self) -> bool:
        return not self._nodes and not self._edges

    def click_node(self, node_id: str, additive: bool = False) -> None:
        if not additive:
            self._nodes = {node_id: None}
            self._edges = {}
        elif node_id in self._nodes:
            del self._nodes[node_id]
        else:
            self._nodes[node_id] = None

    def click_edge(self, edge_id: str, additive: bool = False) -> None:
        if not additive:
            self._edges = {edge_id: None}
            self._nodes = {}
        elif edge_id in self._edges:
            del self._edges[edge_id]
        else:
            self._edges[edge_id] = None

    def click_background(self) -> None:
        self.clear()

    def select(self, node_ids: Iterable[str] = (), edge_ids: Iterable[str] = ()) -> None:
        self._nodes = dict.fromkeys(node_ids)
        self._edges = dict.fromkeys(edge_ids)

    def clear(self) -> None:
        self._nodes = {}
        self._edges = {}

    def prune(self) -> None:
        """Drop ids that no longer exist after a refresh."""
        self._nodes = {n: None for n in self._nodes if n in self.store.nodes}
        self._edges = {e: None for e in self._edges if e in self.store.edges}

    # --- Delete ---

    def delete_selected(self, confirm: Optional[Callable[[str], bool]] = None) -> Optional[DeleteSelectedResult]:
        """
        Delete the selected nodes and interfaces.

        The Global container is skipped with a warning. Interfaces attached
        to a node being deleted are left to that node's cascade. Deletion is
        irreversible, so the undo history is cleared afterwards.

        Args:
            confirm: Optional callback receiving a summary; returning False cancels

        Returns:
            DeleteSelectedResult, or None if the confirmation was declined
        """
        self.prune()
        if self.is_empty:
            raise SelectionError("Nothing is selected")

        result = DeleteSelectedResult()
        node_ids = []
        for node_id in self._nodes:
            if self.store.is_global(node_id):
                result.skipped_node_ids.append(node_id)
                result.warnings.append(f"The {GLOBAL_CONTAINER_NAME} container cannot be deleted and was skipped.")
            else:
                node_ids.append(node_id)
        doomed = set(node_ids)
        edge_ids = [
            edge_id for edge_id in self._edges
            if not (set(self.store.edges[edge_id].endpoints) & doomed)
        ]
        if not node_ids and not edge_ids:
            return result

        if confirm is not None:
            message = f"Delete {len(node_ids)} node(s) and {len(edge_ids)} interface(s)? This cannot be undone."
            if not confirm(message):
                logger.info("Delete selected cancelled")
                return None

        # Deepest first so children are not promoted just to be deleted
        parents = self.store.parent_map()
        node_ids.sort(key=lambda n: len(ancestors(parents, n)), reverse=True)

        try:
            for edge_id in edge_ids:
                self.store.delete_edge(edge_id)
                result.deleted_edge_ids.append(edge_id)
            for node_id in node_ids:
                self.store.delete_node(node_id)
                result.deleted_node_ids.append(node_id)
        finally:
            if result.deleted_edge_ids or result.deleted_node_ids:
                # Recorded actions may reference what is now gone
                self.history.clear()
            self.prune()
        self.clear()
        logger.info(f"Deleted {len(result.deleted_node_ids)} node(s), {len(result.deleted_edge_ids)} interface(s)")
        return result

    # --- Copy ---

    def copy_selected(self) -> CopySelectedResult:
        """
        Clone the selected nodes (and their internal interfaces) as one "Paste" action.

        Parents are cloned before children; a clone whose original parent
        was also copied attaches to the parent's clone. Interfaces are copied
        when explicitly selected, or all internal ones when more than one
        node is selected.
        """
        self.prune()
        if not self._nodes:
            if self._edges:
                raise SelectionError("To copy interfaces, also select their connected nodes")
            raise SelectionError("Nothing is selected")
        if any(self.store.is_global(n) for n in self._nodes):
            raise SelectionError(f"The {GLOBAL_CONTAINER_NAME} container cannot be copied")

        selected = list(self._nodes)
        selected_set = set(selected)
        order = order_by_selection_depth(self.store.parent_map(), selected)
        layout = self.store.layout
        result = CopySelectedResult()

        node_specs: List[Tuple[Node, Optional[Position], Optional[Size]]] = []
        edge_specs: List[Edge] = []
        try:
            for old_id in order:
                original = self.store.nodes[old_id]
                parent_id = result.node_id_map.get(original.parent_node_id, original.parent_node_id)
                old_position = layout.position_of(old_id)
                position = old_position.offset(PASTE_OFFSET_X, PASTE_OFFSET_Y) if old_position else None
                size = layout.size_of(old_id) if original.is_container else None
                clone = self.store.create_node(
                    f"{original.name}{COPY_NAME_SUFFIX}", original.category, parent_id,
                    original.description, original.notes, position=position, size=size,
                )
                result.node_id_map[old_id] = clone.id
                node_specs.append((replace(clone), position, size))

            copy_all_internal = len(selected) > 1
            for edge in list(self.store.edges.values()):
                explicitly = edge.id in self._edges
                internal = edge.source_node_id in selected_set and edge.target_node_id in selected_set
                if not internal:
                    if explicitly:
                        result.warnings.append(
                            f"Interface '{edge.name or edge.id}' was not copied: both of its nodes must be selected."
                        )
                    continue
                if not (explicitly or copy_all_internal):
                    continue
                source = result.node_id_map.get(edge.source_node_id)
                target = result.node_id_map.get(edge.target_node_id)
                if source is None or target is None:
                    result.warnings.append(
                        f"Interface '{edge.name or edge.id}' was skipped: its endpoints could not be mapped."
                    )
                    continue
                clone_edge = self.store.create_edge(
                    source, target, edge.direction, edge.source_handle_id, edge.target_handle_id,
                    edge.name, edge.protocol, edge.description, edge.notes,
                )
                result.edge_id_map[edge.id] = clone_edge.id
                edge_specs.append(replace(clone_edge))
        except PersistenceError as e:
            logger.error(f"Copy failed after {len(node_specs)} node(s); removing partial copy: {e}")
            self._remove_copies(node_specs, edge_specs)
            raise

        for warning in result.warnings:
            logger.warning(warning)

        self.history.perform(HistoryAction(
            "Paste",
            lambda: self._remove_copies(node_specs, edge_specs, strict=True),
            lambda: self._recreate_copies(node_specs, edge_specs),
        ))
        self.select(result.created_node_ids, result.created_edge_ids)
        return result

    def _remove_copies(self, node_specs: List[Tuple[Node, Optional[Position], Optional[Size]]],
                       edge_specs: List[Edge], strict: bool = False) -> None:
        """Delete pasted entities, children before parents."""
        for edge in reversed(edge_specs):
            self._remove(lambda: self.store.delete_edge(edge.id), strict, edge.id in self.store.edges)
        for node, _, _ in reversed(node_specs):
            self._remove(lambda: self.store.delete_node(node.id), strict, node.id in self.store.nodes)

    def _remove(self, delete: Callable[[], object], strict: bool, exists: bool) -> None:
        if not exists:
            return
        if strict:
            delete()
            return
        try:
            delete()
        except ModelGraphError as e:
            logger.error(f"Could not remove partial copy: {e}")

    def _recreate_copies(self, node_specs: List[Tuple[Node, Optional[Position], Optional[Size]]],
                         edge_specs: List[Edge]) -> None:
        for node, position, size in node_specs:
            self.store.create_node(node.name, node.category, node.parent_node_id, node.description,
                                   node.notes, node_id=node.id, position=position, size=size)
        for edge in edge_specs:
            self.store.create_edge(edge.source_node_id, edge.target_node_id, edge.direction,
                                   edge.source_handle_id, edge.target_handle_id, edge.name,
                                   edge.protocol, edge.description, edge.notes, edge_id=edge.id)
