"""
Named checkpoints (savepoints) of the whole model plus its layout.

A snapshot payload is the full entity set in wire format together with
node positions and container sizes. Restore is atomic on the backend; on
success the store is refetched and the snapshot layout replaces the local
one wholesale.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from modelgraph.constants import MAX_SNAPSHOT_CHARS, MAX_SNAPSHOT_TITLE_LENGTH, SNAPSHOT_VERSION
from modelgraph.errors import PersistenceError, ValidationError
from modelgraph.layout import LayoutState
from modelgraph.layout_cache import LayoutCache
from modelgraph.storage.protocol import ModelBackend
from modelgraph.store import GraphModelStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotSummary:
    id: str
    title: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotSummary":
        return cls(id=str(data["id"]), title=str(data.get("title", "")), created_at=str(data.get("createdAt", "")))


@dataclass
class RestoreResult:
    node_count: int
    edge_count: int
    data_object_count: int
    component_data_count: int
    edge_flow_count: int
    layout_state: LayoutState
    warning: Optional[str] = None


class SnapshotService:
    """
    Save, list, restore and delete snapshots for one project.

    Args:
        backend: Persistence collaborator
        store: Model store whose state is captured and refreshed
        layout_cache: Optional client-local cache overwritten on restore
        project_id: Key for the layout cache
    """

    def __init__(self, backend: ModelBackend, store: GraphModelStore,
                 layout_cache: Optional[LayoutCache] = None, project_id: Optional[str] = None):
        self.backend = backend
        self.store = store
        self.layout_cache = layout_cache
        self.project_id = project_id

    def capture(self) -> Dict[str, Any]:
        """Full snapshot payload of the current model and layout."""
        return {
            "version": SNAPSHOT_VERSION,
            "capturedAt": datetime.now(timezone.utc).isoformat(),
            **self.store.snapshot_entities(),
            **self.store.layout.export_state().to_dict(),
        }

    def save(self, title: str) -> SnapshotSummary:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Snapshot title is required")
        if len(title) > MAX_SNAPSHOT_TITLE_LENGTH:
            raise ValidationError(f"Snapshot title must be at most {MAX_SNAPSHOT_TITLE_LENGTH} characters")
        payload = self.capture()
        if len(json.dumps(payload, ensure_ascii=False)) > MAX_SNAPSHOT_CHARS:
            raise ValidationError("Snapshot is too large")
        summary = SnapshotSummary.from_dict(self.backend.create_savepoint(title, payload))
        logger.info(f"Saved snapshot '{summary.title}' ({summary.id})")
        return summary

    def list(self) -> List[SnapshotSummary]:
        return [SnapshotSummary.from_dict(row) for row in self.backend.list_savepoints()]

    def delete(self, snapshot_id: str) -> None:
        self.backend.delete_savepoint(snapshot_id)

    def restore(self, snapshot_id: str) -> RestoreResult:
        """
        Replace the live model with a snapshot.

        Returns:
            RestoreResult with restored counts, the adopted layout and any warning

        Raises:
            SnapshotFormatError: The stored snapshot is corrupted
            PersistenceError: The backend failed; the prior model is kept
        """
        response = self.backend.restore_savepoint(snapshot_id)
        if not isinstance(response, dict) or not isinstance(response.get("restored"), dict):
            raise PersistenceError("Unexpected restore response")
        counts = response["restored"]
        layout_state = LayoutState.from_dict(response.get("state"))

        self.store.layout.adopt_state(layout_state)
        self.store.refresh()
        # Grid placement may have filled nodes missing from the snapshot layout
        layout_state = self.store.layout.export_state()
        if self.layout_cache is not None and self.project_id:
            self.layout_cache.save(self.project_id, layout_state)

        warning = " ".join(w for w in (response.get("warning"), self.store.warning) if w) or None
        result = RestoreResult(
            node_count=int(counts.get("nodes", 0)),
            edge_count=int(counts.get("edges", 0)),
            data_object_count=int(counts.get("dataObjects", 0)),
            component_data_count=int(counts.get("componentData", 0)),
            edge_flow_count=int(counts.get("edgeDataFlows", 0)),
            layout_state=layout_state,
            warning=warning,
        )
        logger.info(f"Restored snapshot {snapshot_id}: {result.node_count} node(s), {result.edge_count} interface(s)")
        return result
