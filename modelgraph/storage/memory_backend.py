"""
In-memory Storage Backend.

Implements the ModelBackend protocol with plain dicts. Used by tests and
offline sessions, and as the base for FileBackend, which only swaps the
table load/store hooks for JSON files.

Like the remote API it validates references on create, but it never
cascades deletes.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from modelgraph.constants import MAX_SNAPSHOT_CHARS, MAX_SNAPSHOT_TITLE_LENGTH
from modelgraph.errors import PersistenceError
from modelgraph.models import ComponentDataLink, DataObject, Edge, EdgeDataFlow, Node
from modelgraph.storage.restore import normalize_snapshot

logger = logging.getLogger(__name__)

ENTITY_TABLES = ("nodes", "edges", "data_objects", "savepoints")
LINK_TABLES = ("component_data", "edge_data_flows")

_ENTITY_TYPES = {"nodes": Node, "edges": Edge, "data_objects": DataObject}
_LINK_TYPES = {"component_data": ComponentDataLink, "edge_data_flows": EdgeDataFlow}
_LABELS = {
    "nodes": "Node",
    "edges": "Interface",
    "data_objects": "Data object",
    "savepoints": "Snapshot",
    "component_data": "Component-data link",
    "edge_data_flows": "Data-flow mapping",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryBackend:
    """
    Dict-backed storage backend.

    Tables:
    - nodes / edges / data_objects / savepoints: id -> row
    - component_data / edge_data_flows: (a, b) -> row
    """

    def __init__(self):
        self._tables: Dict[str, Dict[Any, Dict[str, Any]]] = {
            name: {} for name in ENTITY_TABLES + LINK_TABLES
        }

    # --- Backend Information ---

    @property
    def backend_type(self) -> str:
        return "memory"

    # --- Table hooks (overridden by FileBackend) ---

    def _load(self, table: str) -> Dict[Any, Dict[str, Any]]:
        return self._tables[table]

    def _store(self, table: str, rows: Dict[Any, Dict[str, Any]]) -> None:
        self._tables[table] = rows

    # --- Generic entity helpers ---

    def _list(self, table: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._load(table).values()]

    def _create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._load(table)
        entity_id = str(data.get("id") or uuid.uuid4())
        if entity_id in rows:
            raise PersistenceError(f"{_LABELS[table]} {entity_id} already exists", status_code=409)
        row = _ENTITY_TYPES[table].from_dict({**data, "id": entity_id}).to_dict()
        rows[entity_id] = row
        self._store(table, rows)
        return dict(row)

    def _update(self, table: str, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        rows = self._load(table)
        if entity_id not in rows:
            raise PersistenceError(f"{_LABELS[table]} not found", status_code=404)
        merged = {**rows[entity_id], **patch, "id": entity_id}
        row = _ENTITY_TYPES[table].from_dict(merged).to_dict()
        rows[entity_id] = row
        self._store(table, rows)
        return dict(row)

    def _delete(self, table: str, key: Any) -> None:
        rows = self._load(table)
        if key not in rows:
            raise PersistenceError(f"{_LABELS[table]} not found", status_code=404)
        del rows[key]
        self._store(table, rows)

    def _upsert_link(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        link = _LINK_TYPES[table].from_dict(data)
        rows = self._load(table)
        rows[link.key] = link.to_dict()
        self._store(table, rows)
        return link.to_dict()

    def _require(self, table: str, entity_id: Any, message: str) -> None:
        if entity_id not in self._load(table):
            raise PersistenceError(message, status_code=400)

    # --- Nodes ---

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self._list("nodes")

    def _require_container(self, parent_id: str) -> None:
        self._require("nodes", parent_id, "Parent node not found")
        if not Node.from_dict(self._load("nodes")[parent_id]).is_container:
            raise PersistenceError("Parent node must be a container", status_code=400)

    def create_node(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("parentNodeId"):
            self._require_container(data["parentNodeId"])
        return self._create("nodes", data)

    def update_node(self, node_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        if patch.get("parentNodeId"):
            self._require_container(patch["parentNodeId"])
        return self._update("nodes", node_id, patch)

    def delete_node(self, node_id: str) -> None:
        self._delete("nodes", node_id)

    # --- Edges ---

    def list_edges(self) -> List[Dict[str, Any]]:
        return self._list("edges")

    def create_edge(self, data: Dict[str, Any]) -> Dict[str, Any]:
        source, target = data.get("sourceNodeId"), data.get("targetNodeId")
        if source == target:
            raise PersistenceError("Source and target must be different nodes", status_code=400)
        nodes = self._load("nodes")
        if source not in nodes or target not in nodes:
            raise PersistenceError("Invalid source or target node", status_code=400)
        return self._create("edges", data)

    def update_edge(self, edge_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("edges", edge_id, patch)

    def delete_edge(self, edge_id: str) -> None:
        self._delete("edges", edge_id)

    # --- Data objects ---

    def list_data_objects(self) -> List[Dict[str, Any]]:
        return self._list("data_objects")

    def create_data_object(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._create("data_objects", data)

    def update_data_object(self, data_object_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._update("data_objects", data_object_id, patch)

    def delete_data_object(self, data_object_id: str) -> None:
        self._delete("data_objects", data_object_id)

    # --- Links ---

    def list_component_data(self) -> List[Dict[str, Any]]:
        return self._list("component_data")

    def upsert_component_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("nodeId") not in self._load("nodes") or data.get("dataObjectId") not in self._load("data_objects"):
            raise PersistenceError("Node or data object not in project", status_code=400)
        return self._upsert_link("component_data", data)

    def delete_component_data(self, node_id: str, data_object_id: str) -> None:
        self._delete("component_data", (node_id, data_object_id))

    def list_edge_data_flows(self) -> List[Dict[str, Any]]:
        return self._list("edge_data_flows")

    def upsert_edge_data_flow(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("edgeId") not in self._load("edges") or data.get("dataObjectId") not in self._load("data_objects"):
            raise PersistenceError("Interface or data object not in project", status_code=400)
        return self._upsert_link("edge_data_flows", data)

    def delete_edge_data_flow(self, edge_id: str, data_object_id: str) -> None:
        self._delete("edge_data_flows", (edge_id, data_object_id))

    # --- Savepoints ---

    def list_savepoints(self) -> List[Dict[str, Any]]:
        rows = sorted(self._load("savepoints").values(), key=lambda r: r["createdAt"], reverse=True)
        return [{"id": r["id"], "title": r["title"], "createdAt": r["createdAt"]} for r in rows]

    def create_savepoint(self, title: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        title = (title or "").strip()
        if not title or len(title) > MAX_SNAPSHOT_TITLE_LENGTH:
            raise PersistenceError("Invalid input: title must be 1-120 characters", status_code=400)
        model_json = json.dumps(snapshot, ensure_ascii=False)
        if len(model_json) > MAX_SNAPSHOT_CHARS:
            raise PersistenceError("Snapshot is too large", status_code=413)
        rows = self._load("savepoints")
        savepoint = {"id": str(uuid.uuid4()), "title": title, "createdAt": _now(), "modelJson": model_json}
        rows[savepoint["id"]] = savepoint
        self._store("savepoints", rows)
        return {k: savepoint[k] for k in ("id", "title", "createdAt")}

    def delete_savepoint(self, savepoint_id: str) -> None:
        self._delete("savepoints", savepoint_id)

    def restore_savepoint(self, savepoint_id: str) -> Dict[str, Any]:
        """Swap every entity table for the savepoint's normalized rows."""
        savepoint = self._load("savepoints").get(savepoint_id)
        if savepoint is None:
            raise PersistenceError("Snapshot not found", status_code=404)
        # Normalizing first keeps the live tables untouched on a bad snapshot
        restored = normalize_snapshot(savepoint["modelJson"])
        self._replace_model(restored.nodes, restored.edges, restored.data_objects,
                            restored.component_data, restored.edge_data_flows)
        logger.info(f"Restored savepoint '{savepoint['title']}' ({savepoint_id})")
        return {
            "savepoint": {k: savepoint[k] for k in ("id", "title", "createdAt")},
            **restored.to_response(),
        }

    def _replace_model(self, nodes, edges, data_objects, component_data, edge_data_flows) -> None:
        tables: Dict[str, Dict[Any, Dict[str, Any]]] = {
            "nodes": {row["id"]: row for row in nodes},
            "edges": {row["id"]: row for row in edges},
            "data_objects": {row["id"]: row for row in data_objects},
            "component_data": {(r["nodeId"], r["dataObjectId"]): r for r in component_data},
            "edge_data_flows": {(r["edgeId"], r["dataObjectId"]): r for r in edge_data_flows},
        }
        for name, rows in tables.items():
            self._store(name, rows)
