"""
GraphModelStore - canonical model state and invariant-enforcing mutations.

The store owns the five entity collections. Every mutation validates
against local state first, then calls the backend, then refetches every
collection and replaces local state wholesale (last writer wins).

Compound operations (direct connect, data-flow mapping, cascading deletes)
are sequences of independent backend calls; when a later step fails the
steps already committed are compensated and the error is re-raised.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Type, TypeVar

import networkx as nx

from modelgraph.constants import (
    AUTO_FLOW_NAME_TEMPLATE,
    DEFAULT_RATING,
    GLOBAL_CONTAINER_NAME,
    RATING_MAX,
    RATING_MIN,
)
from modelgraph.errors import (
    BusyError,
    DuplicateEdgeError,
    HierarchyCycleError,
    ModelGraphError,
    NotFoundError,
    PersistenceError,
    ProtectedNodeError,
    ValidationError,
)
from modelgraph.handles import HandleResolver, is_valid_handle
from modelgraph.hierarchy import descendants, parent_map, would_create_cycle
from modelgraph.layout import Position, Size, SpatialLayoutIndex
from modelgraph.models import (
    ComponentDataLink,
    ComponentDataRole,
    DataClass,
    DataObject,
    Edge,
    EdgeDataFlow,
    EdgeDirection,
    FlowDirection,
    MappingIntent,
    Node,
    NodeCategory,
)
from modelgraph.storage.protocol import ModelBackend

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

NODE_PATCH_KEYS = {"name": "name", "description": "description", "notes": "notes",
                   "parent_node_id": "parentNodeId"}
EDGE_PATCH_KEYS = {"source_node_id": "sourceNodeId", "target_node_id": "targetNodeId",
                   "source_handle_id": "sourceHandleId", "target_handle_id": "targetHandleId",
                   "direction": "direction", "name": "name", "protocol": "protocol",
                   "description": "description", "notes": "notes"}
DATA_OBJECT_PATCH_KEYS = {"name": "name", "data_class": "dataClass", "description": "description",
                          "confidentiality": "confidentiality", "integrity": "integrity",
                          "availability": "availability", "tags": "tags"}


# --- Result records ---

@dataclass
class NodeDeletion:
    """Everything removed by delete_node; enough to put it back."""
    node: Node
    edges: List[Edge] = field(default_factory=list)
    edge_flows: List[EdgeDataFlow] = field(default_factory=list)
    links: List[ComponentDataLink] = field(default_factory=list)
    promoted_child_ids: List[str] = field(default_factory=list)
    position: Optional[Position] = None
    size: Optional[Size] = None


@dataclass
class EdgeDeletion:
    edge: Edge
    flows: List[EdgeDataFlow] = field(default_factory=list)


@dataclass
class DataObjectDeletion:
    data_object: DataObject
    links: List[ComponentDataLink] = field(default_factory=list)
    flows: List[EdgeDataFlow] = field(default_factory=list)
    pruned_edges: List[Edge] = field(default_factory=list)


@dataclass
class ConnectResult:
    edge: Edge
    data_object: DataObject
    flow: EdgeDataFlow


@dataclass
class MappingResult:
    edge: Edge
    flow: EdgeDataFlow
    link: ComponentDataLink
    edge_created: bool
    previous_flow: Optional[EdgeDataFlow] = None
    previous_link: Optional[ComponentDataLink] = None


def _coerce(enum_type: Type[E], value: Any, label: str) -> E:
    """Accept an enum member or its literal tag; anything else is a validation error."""
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Unknown {label} '{value}' (expected one of: {allowed})") from None


def _required_name(value: Any, label: str = "Name") -> str:
    name = "" if value is None else str(value).strip()
    if not name:
        raise ValidationError(f"{label} is required")
    return name


def _is_global_name(name: str) -> bool:
    return name.strip().lower() == GLOBAL_CONTAINER_NAME.lower()


def _rating(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer between {RATING_MIN} and {RATING_MAX}")
    if not RATING_MIN <= value <= RATING_MAX:
        raise ValidationError(f"{label} must be between {RATING_MIN} and {RATING_MAX}, got {value}")
    return value


class GraphModelStore:
    """
    Canonical entity state for one project.

    Args:
        backend: Persistence collaborator implementing ModelBackend
        layout: Layout index shared with the editor (a fresh one if omitted)
    """

    def __init__(self, backend: ModelBackend, layout: Optional[SpatialLayoutIndex] = None):
        self.backend = backend
        self.layout = layout if layout is not None else SpatialLayoutIndex()
        self.handles = HandleResolver(self.layout, self._category_of)

        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Edge] = {}
        self.data_objects: Dict[str, DataObject] = {}
        self.component_data: Dict[Tuple[str, str], ComponentDataLink] = {}
        self.edge_data_flows: Dict[Tuple[str, str], EdgeDataFlow] = {}

        # Non-blocking notice about auxiliary collections that failed to load
        self.warning: Optional[str] = None
        self.repaired_edge_ids: List[str] = []
        self._busy: Set[str] = set()
        # Id of the protected Global container; stays pinned across refreshes
        self._global_id: Optional[str] = None

    # --- Loading ---

    def refresh(self) -> None:
        """
        Refetch every collection and replace local state.

        Nodes and edges are required; a failure there raises and keeps the
        previous state. Auxiliary collections degrade to `warning`.
        """
        try:
            node_rows = self.backend.list_nodes()
            edge_rows = self.backend.list_edges()
            nodes = {n.id: n for n in (Node.from_dict(row) for row in node_rows)}
            edges = {e.id: e for e in (Edge.from_dict(row) for row in edge_rows)}
        except PersistenceError as e:
            logger.error(f"Failed to load nodes/interfaces: {e}")
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Malformed node/interface data: {e}")
            raise PersistenceError(f"Malformed model data: {e}") from e

        warnings: List[str] = []
        data_objects = self._load_auxiliary(
            "Data objects", self.backend.list_data_objects, DataObject.from_dict,
            lambda d: d.id, self.data_objects, warnings,
        )
        component_data = self._load_auxiliary(
            "Component-data mappings", self.backend.list_component_data, ComponentDataLink.from_dict,
            lambda link: link.key, self.component_data, warnings,
        )
        edge_data_flows = self._load_auxiliary(
            "Data-flow mappings", self.backend.list_edge_data_flows, EdgeDataFlow.from_dict,
            lambda flow: flow.key, self.edge_data_flows, warnings,
        )

        self.nodes = nodes
        self.edges = edges
        self.data_objects = data_objects
        self.component_data = component_data
        self.edge_data_flows = edge_data_flows
        self.warning = " ".join(warnings) or None
        self._global_id = self._resolve_global_id()

        self.layout.ensure_placement(list(self.nodes.values()))
        self._repair_handles()

    def _load_auxiliary(self, label: str, fetch: Callable[[], List[Dict[str, Any]]],
                        parse: Callable[[Dict[str, Any]], Any], key: Callable[[Any], Any],
                        previous: Dict, warnings: List[str]) -> Dict:
        try:
            return {key(item): item for item in (parse(row) for row in fetch())}
        except (PersistenceError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"{label} could not be loaded: {e}")
            warnings.append(f"{label} could not be loaded; showing the last known state.")
            return previous

    def _repair_handles(self) -> None:
        """Fix stale handle ids in memory; the stored rows are left alone."""
        repaired = []
        for edge in self.edges.values():
            resolution = self.handles.repair(edge)
            if resolution is not None:
                edge.source_handle_id = resolution.source_handle_id
                edge.target_handle_id = resolution.target_handle_id
                repaired.append(edge.id)
        if repaired:
            logger.info(f"Repaired handles on {len(repaired)} interface(s)")
        self.repaired_edge_ids = repaired

    def _after_failure(self, operation: str, error: Exception) -> None:
        logger.error(f"{operation} failed: {error}")
        try:
            self.refresh()
        except PersistenceError as refresh_error:
            logger.warning(f"Refresh after failed {operation} also failed: {refresh_error}")

    def _compensate(self, operation: str, steps: List[Callable[[], None]]) -> None:
        """Undo committed steps of a compound operation, newest first."""
        for step in reversed(steps):
            try:
                step()
            except ModelGraphError as e:
                logger.error(f"Rollback step of {operation} failed: {e}")

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        if operation in self._busy:
            raise BusyError(f"{operation} is already in progress")
        self._busy.add(operation)
        try:
            yield
        finally:
            self._busy.discard(operation)

    def is_busy(self, operation: str) -> bool:
        return operation in self._busy

    # --- Queries ---

    def _category_of(self, node_id: str) -> Optional[NodeCategory]:
        node = self.nodes.get(node_id)
        return node.category if node else None

    def get_node(self, node_id: str) -> Node:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise NotFoundError(f"Node {node_id} not found") from None

    def get_edge(self, edge_id: str) -> Edge:
        try:
            return self.edges[edge_id]
        except KeyError:
            raise NotFoundError(f"Interface {edge_id} not found") from None

    def get_data_object(self, data_object_id: str) -> DataObject:
        try:
            return self.data_objects[data_object_id]
        except KeyError:
            raise NotFoundError(f"Data object {data_object_id} not found") from None

    def _resolve_global_id(self) -> Optional[str]:
        """
        Pick the protected container after a refresh.

        The previously pinned container keeps the role while it is still a
        root container named Global; otherwise the candidate with the
        lowest id wins, independent of backend row order.
        """
        candidates = sorted(
            n.id for n in self.nodes.values()
            if n.is_container and n.parent_node_id is None and _is_global_name(n.name)
        )
        if self._global_id in candidates:
            return self._global_id
        if len(candidates) > 1:
            logger.warning(f"Found {len(candidates)} {GLOBAL_CONTAINER_NAME} containers; protecting {candidates[0]}")
        return candidates[0] if candidates else None

    @property
    def global_container(self) -> Optional[Node]:
        """The protected root container, if the project has one."""
        if self._global_id is None:
            return None
        return self.nodes.get(self._global_id)

    def is_global(self, node_id: str) -> bool:
        protected = self.global_container
        return protected is not None and protected.id == node_id

    def containers(self, include_global: bool = False) -> List[Node]:
        return [
            n for n in self.nodes.values()
            if n.is_container and (include_global or not self.is_global(n.id))
        ]

    def children_of(self, node_id: Optional[str]) -> List[Node]:
        return [n for n in self.nodes.values() if n.parent_node_id == node_id]

    def edges_of(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges.values() if e.touches(node_id)]

    def find_edge(self, source_node_id: str, target_node_id: str) -> Optional[Edge]:
        """The interface for this exact ordered pair, if any."""
        for edge in self.edges.values():
            if edge.source_node_id == source_node_id and edge.target_node_id == target_node_id:
                return edge
        return None

    def flows_for_edge(self, edge_id: str) -> List[EdgeDataFlow]:
        return [f for f in self.edge_data_flows.values() if f.edge_id == edge_id]

    def flows_for_data_object(self, data_object_id: str) -> List[EdgeDataFlow]:
        return [f for f in self.edge_data_flows.values() if f.data_object_id == data_object_id]

    def links_for_node(self, node_id: str) -> List[ComponentDataLink]:
        return [link for link in self.component_data.values() if link.node_id == node_id]

    def links_for_data_object(self, data_object_id: str) -> List[ComponentDataLink]:
        return [link for link in self.component_data.values() if link.data_object_id == data_object_id]

    def parent_map(self) -> Dict[str, Optional[str]]:
        return parent_map(self.nodes.values())

    def containment_candidates(self, node_id: str) -> List[str]:
        """Containers a node may be dropped into: never Global, itself or its descendants."""
        excluded = descendants(self.nodes.values(), node_id) | {node_id}
        return [c.id for c in self.containers() if c.id not in excluded]

    def to_networkx(self) -> nx.MultiDiGraph:
        """
        Read-only graph view for consumers such as report exporters.

        Nodes carry name/category/parent; edges are keyed by interface id
        and carry the names of the data objects flowing over them.
        """
        graph = nx.MultiDiGraph()
        for node in self.nodes.values():
            graph.add_node(node.id, name=node.name, category=node.category.value,
                           parent=node.parent_node_id)
        for edge in self.edges.values():
            flows = [
                self.data_objects[f.data_object_id].name
                for f in self.flows_for_edge(edge.id) if f.data_object_id in self.data_objects
            ]
            graph.add_edge(edge.source_node_id, edge.target_node_id, key=edge.id,
                           name=edge.name, direction=edge.direction.value,
                           protocol=edge.protocol, data_objects=flows)
        return graph

    def snapshot_entities(self) -> Dict[str, List[Dict[str, Any]]]:
        """All entity rows in wire format."""
        return {
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "edges": [e.to_dict() for e in self.edges.values()],
            "dataObjects": [d.to_dict() for d in self.data_objects.values()],
            "componentData": [link.to_dict() for link in self.component_data.values()],
            "edgeDataFlows": [f.to_dict() for f in self.edge_data_flows.values()],
        }

    # --- Nodes ---

    def _check_parent(self, parent_node_id: str) -> Node:
        parent = self.get_node(parent_node_id)
        if not parent.is_container:
            raise ValidationError("Parent node must be a container")
        return parent

    def create_node(self, name: str, category: Any, parent_node_id: Optional[str] = None,
                    description: str = "", notes: str = "", node_id: Optional[str] = None,
                    position: Optional[Position] = None, size: Optional[Size] = None) -> Node:
        """
        Create a container or component.

        Args:
            name: Display name (required)
            category: NodeCategory or its tag
            parent_node_id: Optional parent container
            description: Free text
            notes: Free text
            node_id: Explicit id (used when recreating a node on redo)
            position: Initial canvas position; grid placement when omitted
            size: Initial size, containers only

        Returns:
            The created Node
        """
        with self._guard("create_node"):
            name = _required_name(name)
            category = _coerce(NodeCategory, category, "category")
            if parent_node_id is not None:
                self._check_parent(parent_node_id)
            if node_id is not None and node_id in self.nodes:
                raise ValidationError(f"Node {node_id} already exists")
            if _is_global_name(name) and self.global_container is not None:
                raise ProtectedNodeError(f"The name '{GLOBAL_CONTAINER_NAME}' is reserved for the protected container")

            data: Dict[str, Any] = {
                "name": name,
                "category": category.value,
                "description": description or "",
                "notes": notes or "",
                "parentNodeId": parent_node_id,
            }
            if node_id is not None:
                data["id"] = node_id
            row = self.backend.create_node(data)
            new_id = str(row["id"])

            if position is not None:
                self.layout.place(new_id, position)
            if size is not None and category is NodeCategory.CONTAINER:
                self.layout.resize(new_id, size)
            self.refresh()
            logger.info(f"Created {category.value.lower()} '{name}' ({new_id})")
            return self.get_node(new_id)

    def update_node(self, node_id: str, **patch: Any) -> Node:
        """
        Update name, description, notes or parent_node_id of a node.

        Raises:
            ProtectedNodeError: Renaming or reparenting the Global container
            HierarchyCycleError: The new parent is the node itself or a descendant
        """
        unknown = set(patch) - set(NODE_PATCH_KEYS)
        if unknown:
            raise ValidationError(f"Unknown node field(s): {', '.join(sorted(unknown))}")
        node = self.get_node(node_id)
        protected = self.is_global(node_id)

        if "name" in patch:
            patch["name"] = _required_name(patch["name"])
            if protected and patch["name"] != node.name:
                raise ProtectedNodeError(f"The {GLOBAL_CONTAINER_NAME} container cannot be renamed")
            if (not protected and patch["name"] != node.name and _is_global_name(patch["name"])
                    and self.global_container is not None):
                raise ProtectedNodeError(f"The name '{GLOBAL_CONTAINER_NAME}' is reserved for the protected container")
        if "parent_node_id" in patch:
            new_parent = patch["parent_node_id"] or None
            patch["parent_node_id"] = new_parent
            if protected and new_parent != node.parent_node_id:
                raise ProtectedNodeError(f"The {GLOBAL_CONTAINER_NAME} container cannot be moved")
            if new_parent is not None and new_parent != node.parent_node_id:
                if new_parent == node_id:
                    raise HierarchyCycleError("A node cannot be its own parent")
                self._check_parent(new_parent)
                if would_create_cycle(self.parent_map(), node_id, new_parent):
                    raise HierarchyCycleError(
                        f"Moving '{node.name}' under '{self.nodes[new_parent].name}' would create a cycle"
                    )

        changes = {NODE_PATCH_KEYS[k]: v for k, v in patch.items()}
        if not changes:
            return node
        self.backend.update_node(node_id, changes)
        self.refresh()
        return self.get_node(node_id)

    def delete_node(self, node_id: str) -> NodeDeletion:
        """
        Delete a node with its interfaces, their flows and its data links.

        Children are promoted to root rather than deleted.
        """
        node = self.get_node(node_id)
        if self.is_global(node_id):
            raise ProtectedNodeError(f"The {GLOBAL_CONTAINER_NAME} container cannot be deleted")

        edges = self.edges_of(node_id)
        edge_ids = {e.id for e in edges}
        record = NodeDeletion(
            node=replace(node),
            edges=[replace(e) for e in edges],
            edge_flows=[replace(f) for f in self.edge_data_flows.values() if f.edge_id in edge_ids],
            links=[replace(link) for link in self.links_for_node(node_id)],
            promoted_child_ids=[c.id for c in self.children_of(node_id)],
            position=self.layout.position_of(node_id),
            size=self.layout.size_of(node_id) if node.is_container else None,
        )

        try:
            for child_id in record.promoted_child_ids:
                self.backend.update_node(child_id, {"parentNodeId": None})
            for flow in record.edge_flows:
                self.backend.delete_edge_data_flow(flow.edge_id, flow.data_object_id)
            for edge in record.edges:
                self.backend.delete_edge(edge.id)
            for link in record.links:
                self.backend.delete_component_data(link.node_id, link.data_object_id)
            self.backend.delete_node(node_id)
        except PersistenceError as e:
            self._after_failure(f"Deleting node '{node.name}'", e)
            raise

        self.layout.forget(node_id)
        self.refresh()
        logger.info(
            f"Deleted node '{node.name}' with {len(record.edges)} interface(s), "
            f"{len(record.links)} data link(s); promoted {len(record.promoted_child_ids)} child(ren)"
        )
        return record

    def reinstate_node(self, record: NodeDeletion) -> Node:
        """Put back a deleted node with its ids, children, interfaces and links."""
        node = record.node
        parent_id = node.parent_node_id if node.parent_node_id in self.nodes else None
        restored = self.create_node(node.name, node.category, parent_id, node.description,
                                    node.notes, node_id=node.id, position=record.position,
                                    size=record.size)
        for child_id in record.promoted_child_ids:
            child = self.nodes.get(child_id)
            if child is not None and child.parent_node_id is None:
                self.backend.update_node(child_id, {"parentNodeId": node.id})
        for edge in record.edges:
            if (edge.source_node_id in self.nodes and edge.target_node_id in self.nodes
                    and self.find_edge(edge.source_node_id, edge.target_node_id) is None):
                self.backend.create_edge(edge.to_dict())
        self.refresh()
        for flow in record.edge_flows:
            if flow.edge_id in self.edges and flow.data_object_id in self.data_objects:
                self.backend.upsert_edge_data_flow(flow.to_dict())
        for link in record.links:
            if link.data_object_id in self.data_objects:
                self.backend.upsert_component_data(link.to_dict())
        self.refresh()
        return self.get_node(restored.id)

    def ensure_global_container(self) -> Node:
        """Create the protected Global container if the project has none."""
        existing = self.global_container
        if existing is not None:
            return existing
        logger.info(f"Creating the {GLOBAL_CONTAINER_NAME} container")
        return self.create_node(GLOBAL_CONTAINER_NAME, NodeCategory.CONTAINER)

    # --- Edges ---

    def _check_endpoints(self, source_node_id: str, target_node_id: str,
                         ignore_edge_id: Optional[str] = None) -> None:
        self.get_node(source_node_id)
        self.get_node(target_node_id)
        if source_node_id == target_node_id:
            raise ValidationError("Source and target must be different nodes")
        existing = self.find_edge(source_node_id, target_node_id)
        if existing is not None and existing.id != ignore_edge_id:
            raise DuplicateEdgeError(existing.id)

    def create_edge(self, source_node_id: str, target_node_id: str,
                    direction: Any = EdgeDirection.A_TO_B,
                    source_handle_id: Optional[str] = None, target_handle_id: Optional[str] = None,
                    name: str = "", protocol: str = "", description: str = "", notes: str = "",
                    edge_id: Optional[str] = None) -> Edge:
        """
        Create an interface between two nodes.

        Missing or invalid handles are resolved from the current geometry.

        Raises:
            DuplicateEdgeError: An interface already exists for this ordered pair
        """
        self._check_endpoints(source_node_id, target_node_id)
        direction = _coerce(EdgeDirection, direction, "direction")
        if edge_id is not None and edge_id in self.edges:
            raise ValidationError(f"Interface {edge_id} already exists")

        if not (is_valid_handle(source_handle_id) and is_valid_handle(target_handle_id)):
            resolved = self.handles.resolve(source_node_id, target_node_id)
            if not is_valid_handle(source_handle_id):
                source_handle_id = resolved.source_handle_id
            if not is_valid_handle(target_handle_id):
                target_handle_id = resolved.target_handle_id

        data: Dict[str, Any] = {
            "sourceNodeId": source_node_id,
            "targetNodeId": target_node_id,
            "sourceHandleId": source_handle_id,
            "targetHandleId": target_handle_id,
            "direction": direction.value,
            "name": name or "",
            "protocol": protocol or "",
            "description": description or "",
            "notes": notes or "",
        }
        if edge_id is not None:
            data["id"] = edge_id
        row = self.backend.create_edge(data)
        self.refresh()
        return self.get_edge(str(row["id"]))

    def connect_nodes(self, source_node_id: str, target_node_id: str,
                      direction: Any = EdgeDirection.A_TO_B, edge_id: Optional[str] = None,
                      data_object_id: Optional[str] = None,
                      data_object_name: Optional[str] = None) -> ConnectResult:
        """
        Direct-connect gesture: interface + generated data object + flow.

        All-or-nothing: a failure after the interface exists removes what
        was already created.
        """
        edge = self.create_edge(source_node_id, target_node_id, direction, edge_id=edge_id)
        rollback: List[Callable[[], None]] = [lambda: self.backend.delete_edge(edge.id)]
        try:
            base_name = data_object_name or AUTO_FLOW_NAME_TEMPLATE.format(
                source=self.nodes[source_node_id].name, target=self.nodes[target_node_id].name
            )
            data_object = self.create_data_object(base_name, DataClass.OTHER, data_object_id=data_object_id)
            rollback.append(lambda: self.backend.delete_data_object(data_object.id))
            flow = self.assign_edge_data_flow(edge.id, data_object.id, FlowDirection.SOURCE_TO_TARGET)
        except ModelGraphError as e:
            self._compensate("connect", rollback)
            self._after_failure("Connecting nodes", e)
            raise
        logger.info(f"Connected {source_node_id} -> {target_node_id} carrying '{data_object.name}'")
        return ConnectResult(edge=self.get_edge(edge.id), data_object=data_object, flow=flow)

    def update_edge(self, edge_id: str, **patch: Any) -> Edge:
        """Update interface fields; endpoint changes are re-validated and re-routed."""
        unknown = set(patch) - set(EDGE_PATCH_KEYS)
        if unknown:
            raise ValidationError(f"Unknown interface field(s): {', '.join(sorted(unknown))}")
        edge = self.get_edge(edge_id)
        if "direction" in patch:
            patch["direction"] = _coerce(EdgeDirection, patch["direction"], "direction").value
        for key in ("source_handle_id", "target_handle_id"):
            if patch.get(key) is not None and not is_valid_handle(patch[key]):
                raise ValidationError(f"Unknown handle id: {patch[key]}")

        source = patch.get("source_node_id", edge.source_node_id)
        target = patch.get("target_node_id", edge.target_node_id)
        if (source, target) != edge.endpoints:
            self._check_endpoints(source, target, ignore_edge_id=edge_id)
            resolved = self.handles.resolve(source, target)
            patch.setdefault("source_handle_id", resolved.source_handle_id)
            patch.setdefault("target_handle_id", resolved.target_handle_id)

        changes = {EDGE_PATCH_KEYS[k]: v for k, v in patch.items()}
        if not changes:
            return edge
        self.backend.update_edge(edge_id, changes)
        self.refresh()
        return self.get_edge(edge_id)

    def delete_edge(self, edge_id: str) -> EdgeDeletion:
        """Delete an interface and the data flows it carries."""
        edge = self.get_edge(edge_id)
        record = EdgeDeletion(edge=replace(edge), flows=[replace(f) for f in self.flows_for_edge(edge_id)])
        try:
            for flow in record.flows:
                self.backend.delete_edge_data_flow(flow.edge_id, flow.data_object_id)
            self.backend.delete_edge(edge_id)
        except PersistenceError as e:
            self._after_failure("Deleting interface", e)
            raise
        self.refresh()
        return record

    def reinstate_edge(self, record: EdgeDeletion) -> Edge:
        edge = record.edge
        restored = self.create_edge(
            edge.source_node_id, edge.target_node_id, edge.direction,
            edge.source_handle_id, edge.target_handle_id, edge.name, edge.protocol,
            edge.description, edge.notes, edge_id=edge.id,
        )
        for flow in record.flows:
            if flow.data_object_id in self.data_objects:
                self.backend.upsert_edge_data_flow(flow.to_dict())
        if record.flows:
            self.refresh()
        return restored

    # --- Data objects ---

    def unique_data_object_name(self, base: str, exclude_id: Optional[str] = None) -> str:
        """`base`, or `base (2)`, `base (3)`, ... compared case-insensitively."""
        taken = {d.name.lower() for d in self.data_objects.values() if d.id != exclude_id}
        if base.lower() not in taken:
            return base
        suffix = 2
        while f"{base} ({suffix})".lower() in taken:
            suffix += 1
        return f"{base} ({suffix})"

    def create_data_object(self, name: str, data_class: Any = DataClass.OTHER, description: str = "",
                           confidentiality: int = DEFAULT_RATING, integrity: int = DEFAULT_RATING,
                           availability: int = DEFAULT_RATING, tags: str = "",
                           data_object_id: Optional[str] = None) -> DataObject:
        name = self.unique_data_object_name(_required_name(name))
        data: Dict[str, Any] = {
            "name": name,
            "dataClass": _coerce(DataClass, data_class, "data class").value,
            "description": description or "",
            "confidentiality": _rating(confidentiality, "Confidentiality"),
            "integrity": _rating(integrity, "Integrity"),
            "availability": _rating(availability, "Availability"),
            "tags": tags or "",
        }
        if data_object_id is not None:
            if data_object_id in self.data_objects:
                raise ValidationError(f"Data object {data_object_id} already exists")
            data["id"] = data_object_id
        row = self.backend.create_data_object(data)
        self.refresh()
        return self.get_data_object(str(row["id"]))

    def update_data_object(self, data_object_id: str, **patch: Any) -> DataObject:
        unknown = set(patch) - set(DATA_OBJECT_PATCH_KEYS)
        if unknown:
            raise ValidationError(f"Unknown data object field(s): {', '.join(sorted(unknown))}")
        data_object = self.get_data_object(data_object_id)
        if "name" in patch:
            patch["name"] = self.unique_data_object_name(_required_name(patch["name"]), exclude_id=data_object_id)
        if "data_class" in patch:
            patch["data_class"] = _coerce(DataClass, patch["data_class"], "data class").value
        for key in ("confidentiality", "integrity", "availability"):
            if key in patch:
                patch[key] = _rating(patch[key], key.capitalize())

        changes = {DATA_OBJECT_PATCH_KEYS[k]: v for k, v in patch.items()}
        if not changes:
            return data_object
        self.backend.update_data_object(data_object_id, changes)
        self.refresh()
        return self.get_data_object(data_object_id)

    def delete_data_object(self, data_object_id: str) -> DataObjectDeletion:
        """
        Delete a data object with its links and flows.

        An interface whose only flow is this object exists just to carry it
        and is deleted as well.
        """
        data_object = self.get_data_object(data_object_id)
        flows = self.flows_for_data_object(data_object_id)
        pruned = [
            self.edges[f.edge_id] for f in flows
            if f.edge_id in self.edges and len(self.flows_for_edge(f.edge_id)) == 1
        ]
        record = DataObjectDeletion(
            data_object=replace(data_object),
            links=[replace(link) for link in self.links_for_data_object(data_object_id)],
            flows=[replace(f) for f in flows],
            pruned_edges=[replace(e) for e in pruned],
        )
        try:
            for flow in record.flows:
                self.backend.delete_edge_data_flow(flow.edge_id, flow.data_object_id)
            for edge in record.pruned_edges:
                self.backend.delete_edge(edge.id)
            for link in record.links:
                self.backend.delete_component_data(link.node_id, link.data_object_id)
            self.backend.delete_data_object(data_object_id)
        except PersistenceError as e:
            self._after_failure(f"Deleting data object '{data_object.name}'", e)
            raise
        self.refresh()
        if record.pruned_edges:
            logger.info(f"Pruned {len(record.pruned_edges)} interface(s) that only carried '{data_object.name}'")
        return record

    def reinstate_data_object(self, record: DataObjectDeletion) -> DataObject:
        d = record.data_object
        self.backend.create_data_object(d.to_dict())
        for edge in record.pruned_edges:
            if (edge.source_node_id in self.nodes and edge.target_node_id in self.nodes
                    and self.find_edge(edge.source_node_id, edge.target_node_id) is None):
                self.backend.create_edge(edge.to_dict())
        self.refresh()
        for flow in record.flows:
            if flow.edge_id in self.edges:
                self.backend.upsert_edge_data_flow(flow.to_dict())
        for link in record.links:
            if link.node_id in self.nodes:
                self.backend.upsert_component_data(link.to_dict())
        self.refresh()
        return self.get_data_object(d.id)

    # --- Component-data links and data flows ---

    def assign_component_data(self, node_id: str, data_object_id: str,
                              role: Any = ComponentDataRole.STORES,
                              notes: Optional[str] = None) -> ComponentDataLink:
        """Create or overwrite the (node, data object) link; notes=None keeps existing notes."""
        self.get_node(node_id)
        self.get_data_object(data_object_id)
        role = _coerce(ComponentDataRole, role, "role")
        existing = self.component_data.get((node_id, data_object_id))
        if notes is None:
            notes = existing.notes if existing else ""
        link = ComponentDataLink(node_id, data_object_id, role, notes)
        self.backend.upsert_component_data(link.to_dict())
        self.refresh()
        return self.component_data.get(link.key, link)

    def remove_component_data(self, node_id: str, data_object_id: str) -> ComponentDataLink:
        link = self.component_data.get((node_id, data_object_id))
        if link is None:
            raise NotFoundError("Component-data link not found")
        self.backend.delete_component_data(node_id, data_object_id)
        self.refresh()
        return link

    def assign_edge_data_flow(self, edge_id: str, data_object_id: str,
                              direction: Any = FlowDirection.SOURCE_TO_TARGET,
                              notes: Optional[str] = None) -> EdgeDataFlow:
        """Create or overwrite the (interface, data object) flow; notes=None keeps existing notes."""
        self.get_edge(edge_id)
        self.get_data_object(data_object_id)
        direction = _coerce(FlowDirection, direction, "flow direction")
        existing = self.edge_data_flows.get((edge_id, data_object_id))
        if notes is None:
            notes = existing.notes if existing else ""
        flow = EdgeDataFlow(edge_id, data_object_id, direction, notes)
        self.backend.upsert_edge_data_flow(flow.to_dict())
        self.refresh()
        return self.edge_data_flows.get(flow.key, flow)

    def remove_edge_data_flow(self, edge_id: str, data_object_id: str) -> EdgeDataFlow:
        flow = self.edge_data_flows.get((edge_id, data_object_id))
        if flow is None:
            raise NotFoundError("Data-flow mapping not found")
        self.backend.delete_edge_data_flow(edge_id, data_object_id)
        self.refresh()
        return flow

    def resolve_or_create_edge_for_flow(self, a: str, b: str,
                                        edge_id: Optional[str] = None) -> Tuple[Edge, FlowDirection, bool]:
        """
        Find the interface that carries data from `a` to `b`.

        Returns:
            (edge, flow direction on that edge, whether the edge was created)
        """
        forward = self.find_edge(a, b)
        if forward is not None:
            return forward, FlowDirection.SOURCE_TO_TARGET, False
        backward = self.find_edge(b, a)
        if backward is not None:
            return backward, FlowDirection.TARGET_TO_SOURCE, False
        return self.create_edge(a, b, edge_id=edge_id), FlowDirection.SOURCE_TO_TARGET, True

    def map_data_flow(self, node_id: str, data_object_id: str, intent: Any,
                      peer_node_id: str, edge_id: Optional[str] = None) -> MappingResult:
        """
        Map a data object between two components.

        Receives / FetchesFrom: data travels peer -> node.
        SendsTo: data travels node -> peer.
        The interface between the two is reused in either orientation or
        created; the receiving component gets a Receives link. A flow that
        already runs the other way becomes Bidirectional.
        """
        intent = _coerce(MappingIntent, intent, "mapping intent")
        self.get_node(node_id)
        self.get_node(peer_node_id)
        self.get_data_object(data_object_id)
        if node_id == peer_node_id:
            raise ValidationError("A data flow needs two different components")

        if intent is MappingIntent.SENDS_TO:
            sender, receiver = node_id, peer_node_id
        else:
            sender, receiver = peer_node_id, node_id

        previous_link = self.component_data.get((receiver, data_object_id))
        previous_link = replace(previous_link) if previous_link else None

        edge, direction, created = self.resolve_or_create_edge_for_flow(sender, receiver, edge_id=edge_id)
        previous_flow = self.edge_data_flows.get((edge.id, data_object_id))
        previous_flow = replace(previous_flow) if previous_flow else None

        rollback: List[Callable[[], None]] = []
        if created:
            rollback.append(lambda: self.backend.delete_edge(edge.id))
        try:
            if previous_flow is not None and previous_flow.direction is not direction:
                direction = FlowDirection.BIDIRECTIONAL
            flow = self.assign_edge_data_flow(edge.id, data_object_id, direction)
            if previous_flow is not None:
                rollback.append(lambda: self.backend.upsert_edge_data_flow(previous_flow.to_dict()))
            else:
                rollback.append(lambda: self.backend.delete_edge_data_flow(edge.id, data_object_id))
            link = self.assign_component_data(receiver, data_object_id, ComponentDataRole.RECEIVES)
        except ModelGraphError as e:
            self._compensate("map data flow", rollback)
            self._after_failure("Mapping data flow", e)
            raise

        return MappingResult(edge=self.get_edge(edge.id), flow=flow, link=link, edge_created=created,
                             previous_flow=previous_flow, previous_link=previous_link)

    def unmap_data_flow(self, result: MappingResult) -> None:
        """Reverse a map_data_flow call, restoring whatever it overwrote."""
        edge_id, data_object_id = result.flow.edge_id, result.flow.data_object_id
        receiver = result.link.node_id
        if result.previous_link is not None:
            self.backend.upsert_component_data(result.previous_link.to_dict())
        elif (receiver, data_object_id) in self.component_data:
            self.backend.delete_component_data(receiver, data_object_id)
        if result.edge_created:
            if (edge_id, data_object_id) in self.edge_data_flows:
                self.backend.delete_edge_data_flow(edge_id, data_object_id)
            if edge_id in self.edges:
                for flow in self.flows_for_edge(edge_id):
                    if flow.data_object_id != data_object_id:
                        self.backend.delete_edge_data_flow(edge_id, flow.data_object_id)
                self.backend.delete_edge(edge_id)
        elif result.previous_flow is not None:
            self.backend.upsert_edge_data_flow(result.previous_flow.to_dict())
        elif (edge_id, data_object_id) in self.edge_data_flows:
            self.backend.delete_edge_data_flow(edge_id, data_object_id)
        self.refresh()
