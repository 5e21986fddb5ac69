"""
File-based Storage Backend.

Persists a project as JSON files so it can be versioned or shared by
copying the folder. Validation and restore semantics are inherited from
InMemoryBackend; only the table hooks touch the disk.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Union

from modelgraph.errors import PersistenceError
from modelgraph.storage.memory_backend import ENTITY_TABLES, InMemoryBackend

logger = logging.getLogger(__name__)

_LINK_FILES = {
    "component_data": ("component_data.json", ("nodeId", "dataObjectId")),
    "edge_data_flows": ("edge_data_flows.json", ("edgeId", "dataObjectId")),
}

# Entity ids are used verbatim as file names
SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")


def check_entity_id(entity_id: Any) -> None:
    """Reject an id that would not stay a plain file name inside its table folder."""
    if not isinstance(entity_id, str) or not SAFE_ID_PATTERN.match(entity_id):
        raise PersistenceError(f"Invalid id '{entity_id}'", status_code=400)


class FileBackend(InMemoryBackend):
    """
    Local file storage backend.

    Structure:
    - {project}/nodes/{id}.json: Node files
    - {project}/edges/{id}.json: Interface files
    - {project}/data_objects/{id}.json: Data object files
    - {project}/savepoints/{id}.json: Savepoints (title, createdAt, modelJson)
    - {project}/component_data.json: Component-data links
    - {project}/edge_data_flows.json: Data-flow mappings
    """

    def __init__(self, project_path: Union[str, Path]):
        """
        Initialize FileBackend for a project.

        Args:
            project_path: Path to the project folder (created if missing)
        """
        super().__init__()
        self.project_path = Path(project_path)
        for table in ENTITY_TABLES:
            (self.project_path / table).mkdir(parents=True, exist_ok=True)

    # --- Backend Information ---

    @property
    def backend_type(self) -> str:
        return "file"

    # --- Id checks ---

    def _create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("id"):
            check_entity_id(data["id"])
        return super()._create(table, data)

    def _replace_model(self, nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]],
                       data_objects: List[Dict[str, Any]], component_data, edge_data_flows) -> None:
        # Checked up front so a bad snapshot leaves every file untouched
        for row in list(nodes) + list(edges) + list(data_objects):
            check_entity_id(row["id"])
        super()._replace_model(nodes, edges, data_objects, component_data, edge_data_flows)

    # --- Table hooks ---

    def _load(self, table: str) -> Dict[Any, Dict[str, Any]]:
        if table in _LINK_FILES:
            return self._load_links(table)
        rows: Dict[Any, Dict[str, Any]] = {}
        for entity_file in sorted(self._table_dir(table).glob("*.json")):
            try:
                with open(entity_file, "r", encoding="utf-8") as f:
                    row = json.load(f)
                rows[row.get("id", entity_file.stem)] = row
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to load {table} file {entity_file}: {e}")
        return rows

    def _store(self, table: str, rows: Dict[Any, Dict[str, Any]]) -> None:
        if table in _LINK_FILES:
            self._write_json(self.project_path / _LINK_FILES[table][0], list(rows.values()))
            return
        table_dir = self._table_dir(table)
        for entity_id, row in rows.items():
            self._write_json(table_dir / f"{entity_id}.json", row)
        # Remove files of deleted entities
        for entity_file in table_dir.glob("*.json"):
            if entity_file.stem not in rows:
                entity_file.unlink()

    # --- Internals ---

    def _table_dir(self, table: str) -> Path:
        return self.project_path / table

    def _load_links(self, table: str) -> Dict[Any, Dict[str, Any]]:
        filename, key_fields = _LINK_FILES[table]
        path = self.project_path / filename
        if not path.exists():
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load {path}: {e}")
            return {}
        if not isinstance(data, list):
            logger.warning(f"Ignoring {path}: expected a list")
            return {}
        rows: Dict[Any, Dict[str, Any]] = {}
        for row in data:
            if isinstance(row, dict) and all(k in row for k in key_fields):
                rows[tuple(row[k] for k in key_fields)] = row
        return rows

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
