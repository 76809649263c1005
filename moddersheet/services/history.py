"""Linear undo/redo history of full row-collection snapshots."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Optional

Rows = List[Dict[str, Any]]


class History:
    """Ordered snapshots plus a cursor.

    ``0 <= index < len(self)`` holds whenever the history is non-empty.
    Pushing after an undo drops the redo tail; once ``limit`` snapshots are
    stored the oldest one is dropped.
    """

    def __init__(self, limit: int = 100):
        self.limit = max(1, int(limit))
        self._snapshots: List[Rows] = []
        self._dropped = 0
        self.index = -1

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def position(self) -> int:
        """Cursor counted from the last reset, unaffected by the depth cap."""
        return self._dropped + self.index

    def reset(self, rows: Rows) -> None:
        self._snapshots = [copy.deepcopy(rows)]
        self._dropped = 0
        self.index = 0

    def push(self, rows: Rows) -> None:
        del self._snapshots[self.index + 1:]
        self._snapshots.append(copy.deepcopy(rows))
        if len(self._snapshots) > self.limit:
            drop = len(self._snapshots) - self.limit
            del self._snapshots[:drop]
            self._dropped += drop
        self.index = len(self._snapshots) - 1

    @property
    def can_undo(self) -> bool:
        return self.index > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self.index < len(self._snapshots) - 1

    def undo(self) -> Optional[Rows]:
        if not self.can_undo:
            return None
        self.index -= 1
        return copy.deepcopy(self._snapshots[self.index])

    def redo(self) -> Optional[Rows]:
        if not self.can_redo:
            return None
        self.index += 1
        return copy.deepcopy(self._snapshots[self.index])

    def rename_id(self, old_id: str, new_id: str) -> None:
        """Rewrite a row id in every snapshot (temporary id replaced after insert)."""
        for snap in self._snapshots:
            for row in snap:
                if row.get("id") == old_id:
                    row["id"] = new_id

    def drop_ids(self, ids: Iterable[str]) -> None:
        """Remove rows from every snapshot.

        Used once rows are gone from the store, so no undo or redo step can
        bring them back. Neighbouring snapshots that become equal are merged.
        """
        drop = set(ids)
        kept: List[Rows] = []
        index = 0
        for i, snap in enumerate(self._snapshots):
            rows = [r for r in snap if r.get("id") not in drop]
            if not kept or kept[-1] != rows:
                kept.append(rows)
            if i == self.index:
                index = len(kept) - 1
        self._snapshots = kept
        self.index = index if kept else -1

    def current(self) -> Optional[Rows]:
        if self.index < 0:
            return None
        return copy.deepcopy(self._snapshots[self.index])
