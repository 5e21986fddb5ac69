"""
modelgraph - interactive model-graph engine for OT component and data-flow models.

Typical use:
    from modelgraph import GraphEditor
    editor = GraphEditor.from_config("plant-a").open()
"""

from modelgraph.editor import GraphEditor
from modelgraph.store import GraphModelStore
from modelgraph.history import HistoryAction, HistoryManager
from modelgraph.layout import LayoutState, Position, Rect, Size, SpatialLayoutIndex
from modelgraph.handles import HandleResolver
from modelgraph.snapshots import SnapshotService

__version__ = "0.3.0"

__all__ = [
    'GraphEditor',
    'GraphModelStore',
    'HistoryAction',
    'HistoryManager',
    'HandleResolver',
    'LayoutState',
    'Position',
    'Rect',
    'Size',
    'SpatialLayoutIndex',
    'SnapshotService',
]
