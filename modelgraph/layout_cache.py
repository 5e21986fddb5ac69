"""
Client-local layout cache.

Positions and container sizes are presentation state and are not part of
the backend contract. They are kept per project in db/layout/<project>.json;
a missing or malformed file simply means grid placement.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from modelgraph.layout import LayoutState
from modelgraph.paths import get_layout_dir, safe_project_dirname

logger = logging.getLogger(__name__)


class LayoutCache:
    """Load/save LayoutState as one JSON file per project."""

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None):
        self.cache_dir = Path(cache_dir) if cache_dir else get_layout_dir()

    def path_for(self, project_id: str) -> Path:
        return self.cache_dir / f"{safe_project_dirname(project_id)}.json"

    def load(self, project_id: str) -> Optional[LayoutState]:
        """Cached layout for the project, or None if absent or unreadable."""
        path = self.path_for(project_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable layout cache {path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed layout cache {path}")
            return None
        return LayoutState.from_dict(data)

    def save(self, project_id: str, state: LayoutState) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with open(self.path_for(project_id), "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
