"""
Linear undo/redo history.

Every mutating user action is applied once, then registered here as a
HistoryAction with paired undo/redo closures. Performing a new action
clears the redo stack. Only one undo/redo may run at a time.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from modelgraph.errors import HistoryReplayError

logger = logging.getLogger(__name__)


@dataclass
class HistoryAction:
    """A reversible unit of work."""
    label: str
    undo: Callable[[], None]
    redo: Callable[[], None]


class HistoryManager:
    """
    Two-stack undo/redo manager.

    Args:
        on_refresh: Called after every successful undo/redo (e.g. a model refetch)
        max_depth: Optional cap on each stack; the oldest entries are dropped
    """

    def __init__(self, on_refresh: Optional[Callable[[], None]] = None, max_depth: Optional[int] = None):
        if max_depth is not None and max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self._undo_stack: List[HistoryAction] = []
        self._redo_stack: List[HistoryAction] = []
        self._on_refresh = on_refresh
        self._max_depth = max_depth
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack) and not self._busy

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack) and not self._busy

    @property
    def undo_label(self) -> Optional[str]:
        return self._undo_stack[-1].label if self._undo_stack else None

    @property
    def redo_label(self) -> Optional[str]:
        return self._redo_stack[-1].label if self._redo_stack else None

    @property
    def undo_labels(self) -> List[str]:
        """Labels from most recent to oldest."""
        return [a.label for a in reversed(self._undo_stack)]

    @property
    def redo_labels(self) -> List[str]:
        return [a.label for a in reversed(self._redo_stack)]

    def perform(self, action: HistoryAction) -> None:
        """Register an action that has already been applied."""
        self._undo_stack.append(action)
        self._redo_stack.clear()
        self._trim(self._undo_stack)
        logger.debug(f"History: recorded '{action.label}'")

    def undo(self) -> bool:
        """
        Undo the most recent action.

        Returns:
            False if there was nothing to undo or a history operation is in flight

        Raises:
            HistoryReplayError: The undo closure failed; both stacks are unchanged
        """
        return self._replay(self._undo_stack, self._redo_stack, "undo")

    def redo(self) -> bool:
        """Mirror of undo() using the redo closures."""
        return self._replay(self._redo_stack, self._undo_stack, "redo")

    def _replay(self, source: List[HistoryAction], target: List[HistoryAction], kind: str) -> bool:
        if not source or self._busy:
            return False
        self._busy = True
        try:
            action = source[-1]
            try:
                getattr(action, kind)()
            except Exception as e:
                logger.error(f"History: {kind} of '{action.label}' failed: {e}")
                raise HistoryReplayError(f"Could not {kind} '{action.label}': {e}") from e
            source.pop()
            target.append(action)
            self._trim(target)
            logger.info(f"History: {kind} '{action.label}'")
            self._notify_refresh(kind)
            return True
        finally:
            self._busy = False

    def _trim(self, stack: List[HistoryAction]) -> None:
        if self._max_depth is not None and len(stack) > self._max_depth:
            del stack[:len(stack) - self._max_depth]

    def _notify_refresh(self, kind: str) -> None:
        """The stacks have already moved; a failing callback is logged, not re-raised."""
        if self._on_refresh is None:
            return
        try:
            self._on_refresh()
        except Exception as e:
            logger.error(f"History: refresh after {kind} failed: {e}")

    def clear(self) -> None:
        self._undo_stack.clear()
        self._redo_stack.clear()
