"""
GraphEditor - composition root for one open project.

Wires the store, layout index, history, edit actions, selection and
snapshot service together. Every piece of state is an explicit instance,
so several editors (or tests) can run side by side.

Failed gestures keep their message in `last_error` until dismissed; the
exception is still raised to the caller.
"""

import logging
from typing import Any, Callable, Optional, TypeVar

from modelgraph.edit import CopySelectedResult, DeleteSelectedResult, EditActions, SelectionController
from modelgraph.errors import DuplicateEdgeError, ModelGraphError
from modelgraph.history import HistoryManager
from modelgraph.layout import Position, Size, SpatialLayoutIndex
from modelgraph.layout_cache import LayoutCache
from modelgraph.models import EdgeDirection, Node
from modelgraph.snapshots import RestoreResult, SnapshotSummary, SnapshotService
from modelgraph.storage.factory import create_backend
from modelgraph.storage.protocol import ModelBackend
from modelgraph.store import ConnectResult, GraphModelStore, MappingResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GraphEditor:
    """
    Editing session for a project.

    Args:
        project_id: Project identifier (also keys the layout cache)
        backend: Persistence collaborator
        layout_cache: Optional client-local layout cache
        max_history: Optional cap on the undo stack
    """

    def __init__(self, project_id: str, backend: ModelBackend,
                 layout_cache: Optional[LayoutCache] = None, max_history: Optional[int] = None):
        self.project_id = project_id
        self.backend = backend
        self.layout_cache = layout_cache

        cached = layout_cache.load(project_id) if layout_cache else None
        self.layout = SpatialLayoutIndex(cached)
        self.store = GraphModelStore(backend, self.layout)
        self.history = HistoryManager(on_refresh=self._after_history, max_depth=max_history)
        self.actions = EditActions(self.store, self.history)
        self.selection = SelectionController(self.store, self.history)
        self.snapshots = SnapshotService(backend, self.store, layout_cache, project_id)
        self.last_error: Optional[str] = None

    @classmethod
    def from_config(cls, project_id: str, backend_type: Optional[str] = None,
                    layout_cache: Optional[LayoutCache] = None) -> "GraphEditor":
        """Build an editor with the configured backend and the default layout cache."""
        backend = create_backend(project_id, backend_type=backend_type)
        return cls(project_id, backend, layout_cache or LayoutCache())

    # --- Session ---

    def open(self) -> "GraphEditor":
        """Load the model and make sure the Global container exists."""
        self._run("Open project", self.store.refresh)
        self._run("Create Global container", self.store.ensure_global_container)
        return self

    def reload(self) -> None:
        """Refetch everything; the in-memory history does not survive a reload."""
        self._run("Reload", self.store.refresh)
        self.history.clear()
        self.selection.prune()

    @property
    def warning(self) -> Optional[str]:
        return self.store.warning

    def dismiss_error(self) -> None:
        self.last_error = None

    def save_layout(self) -> None:
        if self.layout_cache is not None:
            self.layout_cache.save(self.project_id, self.layout.export_state())

    def _after_history(self) -> None:
        self.selection.prune()
        self.save_layout()

    def _run(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            result = fn(*args, **kwargs)
        except ModelGraphError as e:
            self.last_error = str(e)
            logger.warning(f"{operation} failed: {e}")
            raise
        self.save_layout()
        return result

    # --- Gestures ---

    def add_node(self, name: str, category: Any, parent_node_id: Optional[str] = None,
                 position: Optional[Position] = None, size: Optional[Size] = None) -> Node:
        return self._run("Add node", self.actions.add_node, name, category, parent_node_id,
                         position=position, size=size)

    def update_node(self, node_id: str, **patch: Any) -> Node:
        return self._run("Edit node", self.actions.update_node, node_id, **patch)

    def drop_node(self, node_id: str, position: Position) -> bool:
        return self._run("Move node", self.actions.drop_node, node_id, position)

    def resize_container(self, container_id: str, size: Size) -> None:
        self.actions.resize_container(container_id, size)
        self.save_layout()

    def connect(self, source_node_id: str, target_node_id: str,
                direction: Any = EdgeDirection.A_TO_B) -> ConnectResult:
        """
        Direct-connect gesture.

        An existing interface for the same direction is selected instead
        and the DuplicateEdgeError is re-raised for the caller to report.
        """
        try:
            return self._run("Connect", self.actions.connect, source_node_id, target_node_id, direction)
        except DuplicateEdgeError as e:
            self.selection.click_edge(e.existing_edge_id)
            raise

    def map_data_flow(self, node_id: str, data_object_id: str, intent: Any,
                      peer_node_id: str) -> MappingResult:
        return self._run("Map data flow", self.actions.map_data_flow, node_id, data_object_id,
                         intent, peer_node_id)

    def delete_selected(self, confirm: Optional[Callable[[str], bool]] = None) -> Optional[DeleteSelectedResult]:
        return self._run("Delete selection", self.selection.delete_selected, confirm)

    def copy_selected(self) -> CopySelectedResult:
        return self._run("Copy selection", self.selection.copy_selected)

    def undo(self) -> bool:
        return self._run("Undo", self.history.undo)

    def redo(self) -> bool:
        return self._run("Redo", self.history.redo)

    # --- Snapshots ---

    def save_snapshot(self, title: str) -> SnapshotSummary:
        return self._run("Save snapshot", self.snapshots.save, title)

    def restore_snapshot(self, snapshot_id: str) -> RestoreResult:
        """Restore a snapshot; selection and history start over afterwards."""
        result = self._run("Restore snapshot", self.snapshots.restore, snapshot_id)
        self.selection.clear()
        self.history.clear()
        return result
