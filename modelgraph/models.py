"""
Entity model for the OT model graph.

Entities mirror the persistence contract: the backend speaks camelCase JSON
with literal enum tags, the engine uses snake_case attributes. Every entity
has a `to_dict()` / `from_dict()` pair for that conversion.

Loading is lenient (legacy or partial rows are normalized with defaults);
the store is responsible for strict validation of user input.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class NodeCategory(str, Enum):
    CONTAINER = "Container"
    COMPONENT = "Component"

    @classmethod
    def normalize(cls, raw: Any) -> "NodeCategory":
        """Map stored categories onto the two node kinds ('System' was the old container tag)."""
        value = str(raw or "").strip().lower()
        if value in ("container", "system"):
            return cls.CONTAINER
        return cls.COMPONENT


class EdgeDirection(str, Enum):
    A_TO_B = "A_TO_B"
    B_TO_A = "B_TO_A"
    BIDIRECTIONAL = "BIDIRECTIONAL"

    @classmethod
    def normalize(cls, raw: Any) -> "EdgeDirection":
        value = str(raw or "").strip().upper()
        if value == "B_TO_A":
            return cls.B_TO_A
        if value == "BIDIRECTIONAL":
            return cls.BIDIRECTIONAL
        return cls.A_TO_B


class DataClass(str, Enum):
    CREDENTIALS = "Credentials"
    PERSONAL_DATA = "PersonalData"
    SAFETY_RELEVANT = "SafetyRelevant"
    PRODUCTION_DATA = "ProductionData"
    TELEMETRY = "Telemetry"
    LOGS = "Logs"
    INTELLECTUAL_PROPERTY = "IntellectualProperty"
    CONFIGURATION = "Configuration"
    OTHER = "Other"

    @classmethod
    def normalize(cls, raw: Any) -> "DataClass":
        value = str(raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == value:
                return member
        return cls.OTHER


class ComponentDataRole(str, Enum):
    STORES = "Stores"
    PROCESSES = "Processes"
    GENERATES = "Generates"
    RECEIVES = "Receives"

    @classmethod
    def normalize(cls, raw: Any) -> "ComponentDataRole":
        value = str(raw or "").strip().lower()
        for member in cls:
            if member.value.lower() == value:
                return member
        return cls.STORES


class FlowDirection(str, Enum):
    SOURCE_TO_TARGET = "SourceToTarget"
    TARGET_TO_SOURCE = "TargetToSource"
    BIDIRECTIONAL = "Bidirectional"

    @classmethod
    def normalize(cls, raw: Any) -> "FlowDirection":
        value = str(raw or "").strip().lower()
        if value == "targettosource":
            return cls.TARGET_TO_SOURCE
        if value == "bidirectional":
            return cls.BIDIRECTIONAL
        return cls.SOURCE_TO_TARGET


class MappingIntent(str, Enum):
    """How a component relates to data exchanged with a peer component."""
    RECEIVES = "Receives"
    SENDS_TO = "SendsTo"
    FETCHES_FROM = "FetchesFrom"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class Node:
    """A container or a component. Position and size live in the layout index."""
    id: str
    name: str
    category: NodeCategory = NodeCategory.COMPONENT
    description: str = ""
    notes: str = ""
    parent_node_id: Optional[str] = None

    @property
    def is_container(self) -> bool:
        return self.category is NodeCategory.CONTAINER

    @property
    def is_component(self) -> bool:
        return self.category is NodeCategory.COMPONENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "description": self.description,
            "notes": self.notes,
            "parentNodeId": self.parent_node_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        return cls(
            id=str(data["id"]),
            name=_text(data.get("name")),
            category=NodeCategory.normalize(data.get("category")),
            description=_text(data.get("description")),
            notes=_text(data.get("notes")),
            parent_node_id=data.get("parentNodeId") or None,
        )


@dataclass
class Edge:
    """An interface between two nodes."""
    id: str
    source_node_id: str
    target_node_id: str
    source_handle_id: Optional[str] = None
    target_handle_id: Optional[str] = None
    direction: EdgeDirection = EdgeDirection.A_TO_B
    name: str = ""
    protocol: str = ""
    description: str = ""
    notes: str = ""

    @property
    def endpoints(self) -> Tuple[str, str]:
        return (self.source_node_id, self.target_node_id)

    def touches(self, node_id: str) -> bool:
        return node_id in (self.source_node_id, self.target_node_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "targetNodeId": self.target_node_id,
            "sourceHandleId": self.source_handle_id,
            "targetHandleId": self.target_handle_id,
            "direction": self.direction.value,
            "name": self.name,
            "protocol": self.protocol,
            "description": self.description,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        return cls(
            id=str(data["id"]),
            source_node_id=str(data["sourceNodeId"]),
            target_node_id=str(data["targetNodeId"]),
            source_handle_id=data.get("sourceHandleId") or None,
            target_handle_id=data.get("targetHandleId") or None,
            direction=EdgeDirection.normalize(data.get("direction")),
            name=_text(data.get("name")),
            protocol=_text(data.get("protocol")),
            description=_text(data.get("description")),
            notes=_text(data.get("notes")),
        )


@dataclass
class DataObject:
    """A class of data with its confidentiality/integrity/availability ratings."""
    id: str
    name: str
    data_class: DataClass = DataClass.OTHER
    description: str = ""
    confidentiality: int = 5
    integrity: int = 5
    availability: int = 5
    tags: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dataClass": self.data_class.value,
            "description": self.description,
            "confidentiality": self.confidentiality,
            "integrity": self.integrity,
            "availability": self.availability,
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataObject":
        return cls(
            id=str(data["id"]),
            name=_text(data.get("name")),
            data_class=DataClass.normalize(data.get("dataClass")),
            description=_text(data.get("description")),
            confidentiality=int(data.get("confidentiality") or 5),
            integrity=int(data.get("integrity") or 5),
            availability=int(data.get("availability") or 5),
            tags=_text(data.get("tags")),
        )


@dataclass
class ComponentDataLink:
    """'This component <role>s this data.' Unique per (node, data object)."""
    node_id: str
    data_object_id: str
    role: ComponentDataRole = ComponentDataRole.STORES
    notes: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.node_id, self.data_object_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "dataObjectId": self.data_object_id,
            "role": self.role.value,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentDataLink":
        return cls(
            node_id=str(data["nodeId"]),
            data_object_id=str(data["dataObjectId"]),
            role=ComponentDataRole.normalize(data.get("role")),
            notes=_text(data.get("notes")),
        )


@dataclass
class EdgeDataFlow:
    """Which data travels over which interface, and which way. Unique per (edge, data object)."""
    edge_id: str
    data_object_id: str
    direction: FlowDirection = FlowDirection.SOURCE_TO_TARGET
    notes: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.edge_id, self.data_object_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "edgeId": self.edge_id,
            "dataObjectId": self.data_object_id,
            "direction": self.direction.value,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EdgeDataFlow":
        return cls(
            edge_id=str(data["edgeId"]),
            data_object_id=str(data["dataObjectId"]),
            direction=FlowDirection.normalize(data.get("direction")),
            notes=_text(data.get("notes")),
        )
