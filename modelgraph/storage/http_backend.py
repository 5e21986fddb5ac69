"""
HTTP Storage Backend.

Implements the ModelBackend protocol against the model API:
/api/projects/{projectId}/nodes, edges, data-objects, component-data,
edge-data-flows, savepoints and savepoints/{id}/restore.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from modelgraph.errors import PersistenceError, SnapshotFormatError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class HttpBackend:
    """
    Remote storage backend speaking JSON over HTTP.

    The server enforces its own referential checks; errors come back as
    {"error": "..."} bodies and are raised as PersistenceError.
    """

    def __init__(self, base_url: str, project_id: str, token: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        """
        Initialize HttpBackend for a project.

        Args:
            base_url: Server root, e.g. "https://ot-model.example.com"
            project_id: Project identifier used in every path
            token: Optional bearer token
            timeout: Per-request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if token:
            self._session.headers.update({"Authorization": f"Bearer {token}"})

    # --- Backend Information ---

    @property
    def backend_type(self) -> str:
        return "http"

    # --- Transport ---

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/projects/{self.project_id}/{path}"

    def _request(self, method: str, path: str, json_body: Any = None) -> Any:
        url = self._url(path)
        try:
            response = self._session.request(method, url, json=json_body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise PersistenceError(f"Request failed: {e}") from e

        if not response.ok:
            message = f"Request failed with status {response.status_code}"
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                pass
            logger.warning(f"{method} {url} -> {response.status_code}: {message}")
            raise PersistenceError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise PersistenceError(f"Invalid JSON response from {url}") from e

    def _list(self, path: str) -> List[Dict[str, Any]]:
        data = self._request("GET", path)
        if not isinstance(data, list):
            raise PersistenceError(f"Expected a list from {path}")
        return data

    # --- Nodes ---

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self._list("nodes")

    def create_node(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "nodes", data)

    def update_node(self, node_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"nodes/{node_id}", patch)

    def delete_node(self, node_id: str) -> None:
        self._request("DELETE", f"nodes/{node_id}")

    # --- Edges ---

    def list_edges(self) -> List[Dict[str, Any]]:
        return self._list("edges")

    def create_edge(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "edges", data)

    def update_edge(self, edge_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"edges/{edge_id}", patch)

    def delete_edge(self, edge_id: str) -> None:
        self._request("DELETE", f"edges/{edge_id}")

    # --- Data objects ---

    def list_data_objects(self) -> List[Dict[str, Any]]:
        return self._list("data-objects")

    def create_data_object(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "data-objects", data)

    def update_data_object(self, data_object_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"data-objects/{data_object_id}", patch)

    def delete_data_object(self, data_object_id: str) -> None:
        self._request("DELETE", f"data-objects/{data_object_id}")

    # --- Links (composite key travels in the DELETE body) ---

    def list_component_data(self) -> List[Dict[str, Any]]:
        return self._list("component-data")

    def upsert_component_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "component-data", data)

    def delete_component_data(self, node_id: str, data_object_id: str) -> None:
        self._request("DELETE", "component-data", {"nodeId": node_id, "dataObjectId": data_object_id})

    def list_edge_data_flows(self) -> List[Dict[str, Any]]:
        return self._list("edge-data-flows")

    def upsert_edge_data_flow(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "edge-data-flows", data)

    def delete_edge_data_flow(self, edge_id: str, data_object_id: str) -> None:
        self._request("DELETE", "edge-data-flows", {"edgeId": edge_id, "dataObjectId": data_object_id})

    # --- Savepoints ---

    def list_savepoints(self) -> List[Dict[str, Any]]:
        return self._list("savepoints")

    def create_savepoint(self, title: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "savepoints", {"title": title, "snapshot": snapshot})

    def delete_savepoint(self, savepoint_id: str) -> None:
        self._request("DELETE", f"savepoints/{savepoint_id}")

    def restore_savepoint(self, savepoint_id: str) -> Dict[str, Any]:
        try:
            return self._request("POST", f"savepoints/{savepoint_id}/restore")
        except PersistenceError as e:
            # 422 means the stored snapshot itself is unusable
            if e.status_code == 422:
                raise SnapshotFormatError(str(e)) from e
            raise
