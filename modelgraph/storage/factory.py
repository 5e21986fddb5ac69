"""
Backend Factory for modelgraph.

Creates the appropriate storage backend based on configuration.
"""

import logging
from pathlib import Path
from typing import Optional, Union, TYPE_CHECKING

from modelgraph import config
from modelgraph.paths import get_projects_dir, safe_project_dirname
from modelgraph.storage.file_backend import FileBackend
from modelgraph.storage.http_backend import HttpBackend
from modelgraph.storage.memory_backend import InMemoryBackend

if TYPE_CHECKING:
    from modelgraph.storage.protocol import ModelBackend

logger = logging.getLogger(__name__)


def create_backend(
    project_id: str,
    backend_type: Optional[str] = None,
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    projects_dir: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = None,
) -> "ModelBackend":
    """
    Create a storage backend instance for a project.

    Args:
        project_id: Project identifier
        backend_type: 'memory', 'file' or 'http'; defaults to the configured type
        base_url: Model API root for the http backend (defaults to config)
        token: Bearer token for the http backend (defaults to config)
        projects_dir: Parent folder for file projects (defaults to db/projects)
        timeout: Request timeout for the http backend (defaults to config)

    Returns:
        ModelBackend instance
    """
    backend_type = (backend_type or config.get_backend_type()).lower()

    if backend_type == "memory":
        return InMemoryBackend()

    if backend_type == "http":
        url = base_url or config.get_api_base_url()
        if not url:
            raise ValueError("The http backend requires an API URL (MODELGRAPH_API_URL)")
        logger.info(f"Using http backend at {url} for project {project_id}")
        return HttpBackend(
            base_url=url,
            project_id=project_id,
            token=token or config.get_api_token(),
            timeout=timeout or config.get_request_timeout(),
        )

    if backend_type != "file":
        raise ValueError(f"Unknown storage backend: {backend_type}")

    root = Path(projects_dir) if projects_dir else get_projects_dir()
    return FileBackend(root / safe_project_dirname(project_id))
