"""
ModelBackend Protocol Definition.

This module defines the persistence contract that every storage backend
implements. InMemoryBackend, FileBackend and HttpBackend all conform to it.

Rows are plain dicts with camelCase keys and literal enum tags, exactly as
they travel over the HTTP API. Backends are naive: they do not cascade
deletes. Cascades are the engine's responsibility.
"""

from typing import Any, Dict, List, Protocol, runtime_checkable


@runtime_checkable
class ModelBackend(Protocol):
    """
    Abstract protocol for model persistence.

    Every failing call raises PersistenceError (with a status code where
    the backend has one). Create calls honor an explicit "id" key so that
    redo can recreate an entity under its original id.
    """

    # --- Backend Information ---

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier ('memory', 'file' or 'http')."""
        ...

    # --- Nodes ---

    def list_nodes(self) -> List[Dict[str, Any]]:
        """
        Load all nodes of the project.

        Returns:
            List of node dicts with keys id, name, category, description,
            notes, parentNodeId
        """
        ...

    def create_node(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a node.

        Args:
            data: Node fields; "id" is optional

        Returns:
            The stored node dict
        """
        ...

    def update_node(self, node_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update to a node and return the stored row."""
        ...

    def delete_node(self, node_id: str) -> None:
        ...

    # --- Edges ---

    def list_edges(self) -> List[Dict[str, Any]]:
        ...

    def create_edge(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update_edge(self, edge_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def delete_edge(self, edge_id: str) -> None:
        ...

    # --- Data objects ---

    def list_data_objects(self) -> List[Dict[str, Any]]:
        ...

    def create_data_object(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update_data_object(self, data_object_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def delete_data_object(self, data_object_id: str) -> None:
        ...

    # --- Component-data links (keyed by nodeId + dataObjectId) ---

    def list_component_data(self) -> List[Dict[str, Any]]:
        ...

    def upsert_component_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create the link or overwrite role/notes of the existing one."""
        ...

    def delete_component_data(self, node_id: str, data_object_id: str) -> None:
        ...

    # --- Edge data flows (keyed by edgeId + dataObjectId) ---

    def list_edge_data_flows(self) -> List[Dict[str, Any]]:
        ...

    def upsert_edge_data_flow(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create the flow or overwrite direction/notes of the existing one."""
        ...

    def delete_edge_data_flow(self, edge_id: str, data_object_id: str) -> None:
        ...

    # --- Savepoints ---

    def list_savepoints(self) -> List[Dict[str, Any]]:
        """
        List savepoints, newest first.

        Returns:
            List of dicts with id, title, createdAt
        """
        ...

    def create_savepoint(self, title: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store a named snapshot.

        Args:
            title: Savepoint title (1-120 characters after trimming)
            snapshot: Full model payload as produced by SnapshotService.capture()

        Returns:
            Dict with id, title, createdAt
        """
        ...

    def delete_savepoint(self, savepoint_id: str) -> None:
        ...

    def restore_savepoint(self, savepoint_id: str) -> Dict[str, Any]:
        """
        Replace the whole model with a savepoint's entities, atomically.

        Returns:
            Dict with:
            - restored: {nodes, dataObjects, edges, componentData, edgeDataFlows} counts
            - state: {nodePositions, containerSizes}
            - warning: Optional[str]
        """
        ...
