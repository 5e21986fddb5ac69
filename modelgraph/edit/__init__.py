"""
Editing layer for the model graph.

This package provides the user-facing mutation surface:
- EditActions: every model mutation as an undoable history action
- SelectionController: selection state plus delete-selected / copy-selected

Usage:
    from modelgraph.edit import EditActions, SelectionController
"""

from modelgraph.edit.actions import EditActions
from modelgraph.edit.selection import CopySelectedResult, DeleteSelectedResult, SelectionController

__all__ = [
    'EditActions',
    'SelectionController',
    'CopySelectedResult',
    'DeleteSelectedResult',
]
