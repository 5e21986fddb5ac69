"""
Path utilities for modelgraph.

All local data (db/projects, db/layout, config.json) lives under one data
directory:
- MODELGRAPH_HOME when set
- otherwise the current working directory
"""

import os
import re
from pathlib import Path


def get_app_dir() -> Path:
    """Get the data directory holding db/ and config.json."""
    home = os.environ.get("MODELGRAPH_HOME", "").strip()
    if home:
        return Path(home).expanduser()
    return Path.cwd()


def get_db_dir() -> Path:
    """Get the database directory (db/) containing all projects."""
    return get_app_dir() / "db"


def get_projects_dir() -> Path:
    """Folder holding one sub-folder per project for the file backend."""
    return get_db_dir() / "projects"


def get_layout_dir() -> Path:
    """Folder holding the client-local layout cache."""
    return get_db_dir() / "layout"


def get_config_path() -> Path:
    """Get the path to the config file (stores backend settings, etc.)."""
    return get_app_dir() / "config.json"


def safe_project_dirname(project_id: str) -> str:
    """Turn a project id into a file-system safe folder/file name."""
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", project_id.strip()).strip("._")
    return cleaned or "default"
