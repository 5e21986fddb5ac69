"""
Snapshot normalization for local savepoint restore.

Turns an untrusted snapshot payload into rows that satisfy the model
invariants: ids are preserved where possible, enums are normalized,
ratings are clamped, data-object names are made unique, dangling or
duplicate references are skipped and reported, and the layout is
sanitized. The remote API applies the same rules server-side.
"""

import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from modelgraph.constants import DEFAULT_RATING, RATING_MAX, RATING_MIN
from modelgraph.errors import SnapshotFormatError
from modelgraph.hierarchy import break_cycles
from modelgraph.layout import LayoutState
from modelgraph.models import (
    ComponentDataRole,
    DataClass,
    EdgeDirection,
    FlowDirection,
    NodeCategory,
)

logger = logging.getLogger(__name__)

COLLECTION_KEYS = ("nodes", "edges", "dataObjects", "componentData", "edgeDataFlows")


@dataclass
class RestoredModel:
    """Normalized rows ready to replace the live model."""
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    edges: List[Dict[str, Any]] = field(default_factory=list)
    data_objects: List[Dict[str, Any]] = field(default_factory=list)
    component_data: List[Dict[str, Any]] = field(default_factory=list)
    edge_data_flows: List[Dict[str, Any]] = field(default_factory=list)
    layout: LayoutState = field(default_factory=LayoutState)
    warning: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """Shape returned by ModelBackend.restore_savepoint."""
        return {
            "restored": {
                "nodes": len(self.nodes),
                "dataObjects": len(self.data_objects),
                "edges": len(self.edges),
                "componentData": len(self.component_data),
                "edgeDataFlows": len(self.edge_data_flows),
            },
            "state": self.layout.to_dict(),
            "warning": self.warning,
        }


def clamp_rating(value: Any) -> int:
    """Round into 1..10; anything non-numeric or non-finite becomes the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_RATING
    return max(RATING_MIN, min(RATING_MAX, round(value)))


def _optional_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _raw_id(row: Dict[str, Any]) -> str:
    value = row.get("id")
    return value.strip() if isinstance(value, str) else ""


def _claim_id(raw_id: str, used: Set[str]) -> str:
    restored = raw_id if raw_id and raw_id not in used else str(uuid.uuid4())
    used.add(restored)
    return restored


def _parse(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise SnapshotFormatError("Snapshot data is corrupted (invalid JSON)") from e
    if not isinstance(payload, dict):
        raise SnapshotFormatError("Invalid snapshot format: expected an object")
    for key in COLLECTION_KEYS:
        rows = payload.get(key, [])
        if rows is None:
            rows = []
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise SnapshotFormatError(f"Invalid snapshot format: '{key}' must be a list of objects")
    return payload


def _require_text(row: Dict[str, Any], key: str, collection: str) -> str:
    value = row.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SnapshotFormatError(f"Invalid snapshot format: {collection} entry without '{key}'")
    return value


def normalize_snapshot(payload: Any) -> RestoredModel:
    """
    Normalize a snapshot payload (dict or JSON text) for restore.

    Raises:
        SnapshotFormatError: Invalid JSON or a payload of the wrong shape
    """
    data = _parse(payload)
    result = RestoredModel()

    # Nodes: ids preserved, parents assigned after every id is known
    node_id_map: Dict[str, str] = {}
    used_node_ids: Set[str] = set()
    pending_parents: List[Tuple[Dict[str, Any], Any]] = []
    for row in data.get("nodes") or []:
        name = _require_text(row, "name", "node").strip()
        raw = _raw_id(row)
        node_id = _claim_id(raw, used_node_ids)
        if raw:
            node_id_map[raw] = node_id
        node = {
            "id": node_id,
            "name": name,
            "category": NodeCategory.normalize(row.get("category")).value,
            "description": _optional_text(row.get("description")),
            "notes": _optional_text(row.get("notes")),
            "parentNodeId": None,
        }
        result.nodes.append(node)
        pending_parents.append((node, row.get("parentNodeId")))

    parents: Dict[str, Optional[str]] = {}
    for node, raw_parent in pending_parents:
        mapped = node_id_map.get(raw_parent) if isinstance(raw_parent, str) else None
        parents[node["id"]] = mapped if mapped and mapped != node["id"] else None
    break_cycles(parents)
    for node in result.nodes:
        node["parentNodeId"] = parents[node["id"]]

    # Data objects: names unique case-insensitively
    data_object_id_map: Dict[str, str] = {}
    used_data_object_ids: Set[str] = set()
    used_names: Set[str] = set()
    for row in data.get("dataObjects") or []:
        name = _require_text(row, "name", "data object").strip()
        if name.lower() in used_names:
            suffix = 2
            while f"{name.lower()} ({suffix})" in used_names:
                suffix += 1
            name = f"{name} ({suffix})"
        used_names.add(name.lower())
        raw = _raw_id(row)
        data_object_id = _claim_id(raw, used_data_object_ids)
        if raw:
            data_object_id_map[raw] = data_object_id
        result.data_objects.append({
            "id": data_object_id,
            "name": name,
            "dataClass": DataClass.normalize(row.get("dataClass")).value,
            "description": _optional_text(row.get("description")),
            "confidentiality": clamp_rating(row.get("confidentiality")),
            "integrity": clamp_rating(row.get("integrity")),
            "availability": clamp_rating(row.get("availability")),
            "tags": _optional_text(row.get("tags")),
        })

    # Edges: both endpoints must resolve, no self-loops, one per ordered pair
    edge_id_map: Dict[str, str] = {}
    used_edge_ids: Set[str] = set()
    used_pairs: Set[Tuple[str, str]] = set()
    skipped_edges = 0
    for row in data.get("edges") or []:
        source = node_id_map.get(row.get("sourceNodeId")) if isinstance(row.get("sourceNodeId"), str) else None
        target = node_id_map.get(row.get("targetNodeId")) if isinstance(row.get("targetNodeId"), str) else None
        if not source or not target or source == target or (source, target) in used_pairs:
            skipped_edges += 1
            continue
        used_pairs.add((source, target))
        raw = _raw_id(row)
        edge_id = _claim_id(raw, used_edge_ids)
        if raw:
            edge_id_map[raw] = edge_id
        result.edges.append({
            "id": edge_id,
            "sourceNodeId": source,
            "targetNodeId": target,
            "sourceHandleId": row.get("sourceHandleId") or None,
            "targetHandleId": row.get("targetHandleId") or None,
            "direction": EdgeDirection.normalize(row.get("direction")).value,
            "name": _optional_text(row.get("name")),
            "protocol": _optional_text(row.get("protocol")),
            "description": _optional_text(row.get("description")),
            "notes": _optional_text(row.get("notes")),
        })

    skipped_links = 0
    used_link_keys: Set[Tuple[str, str]] = set()
    for row in data.get("componentData") or []:
        node_id = node_id_map.get(row.get("nodeId")) if isinstance(row.get("nodeId"), str) else None
        data_object_id = (
            data_object_id_map.get(row.get("dataObjectId")) if isinstance(row.get("dataObjectId"), str) else None
        )
        if not node_id or not data_object_id or (node_id, data_object_id) in used_link_keys:
            skipped_links += 1
            continue
        used_link_keys.add((node_id, data_object_id))
        result.component_data.append({
            "nodeId": node_id,
            "dataObjectId": data_object_id,
            "role": ComponentDataRole.normalize(row.get("role")).value,
            "notes": _optional_text(row.get("notes")),
        })

    skipped_flows = 0
    used_flow_keys: Set[Tuple[str, str]] = set()
    for row in data.get("edgeDataFlows") or []:
        edge_id = edge_id_map.get(row.get("edgeId")) if isinstance(row.get("edgeId"), str) else None
        data_object_id = (
            data_object_id_map.get(row.get("dataObjectId")) if isinstance(row.get("dataObjectId"), str) else None
        )
        if not edge_id or not data_object_id or (edge_id, data_object_id) in used_flow_keys:
            skipped_flows += 1
            continue
        used_flow_keys.add((edge_id, data_object_id))
        result.edge_data_flows.append({
            "edgeId": edge_id,
            "dataObjectId": data_object_id,
            "direction": FlowDirection.normalize(row.get("direction")).value,
            "notes": _optional_text(row.get("notes")),
        })

    # Layout: only entries for restored nodes, mapped through the id table
    raw_layout = LayoutState.from_dict({
        "nodePositions": data.get("nodePositions"),
        "containerSizes": data.get("containerSizes"),
    })
    restored_ids = {node["id"] for node in result.nodes}
    for raw_id, position in raw_layout.node_positions.items():
        mapped = node_id_map.get(raw_id)
        if mapped in restored_ids:
            result.layout.node_positions[mapped] = position
    for raw_id, size in raw_layout.container_sizes.items():
        mapped = node_id_map.get(raw_id)
        if mapped in restored_ids:
            result.layout.container_sizes[mapped] = size

    warning_parts = []
    if skipped_edges:
        warning_parts.append(f"{skipped_edges} interface(s) were skipped due to invalid or duplicate references.")
    if skipped_links:
        warning_parts.append(f"{skipped_links} component-data mapping(s) were skipped.")
    if skipped_flows:
        warning_parts.append(f"{skipped_flows} data-flow mapping(s) were skipped.")
    result.warning = " ".join(warning_parts) or None
    if result.warning:
        logger.warning(f"Snapshot restore: {result.warning}")
    return result
