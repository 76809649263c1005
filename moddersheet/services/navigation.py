"""Keyboard navigation for the grid: a current-cell pointer and edit mode.

States are BROWSING (a current cell, no open input) and EDITING (one cell has
an open input with a draft value). Keys are only handled while the grid holds
focus.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Tuple

BROWSING = "browsing"
EDITING = "editing"

MOVE_KEYS = {"ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight", "Tab"}


class NavigationHost(Protocol):
    has_changes: bool

    def view_ids(self) -> List[str]: ...

    def visible_column_keys(self) -> List[str]: ...

    def cell_value(self, row_id: str, col: str) -> Any: ...

    def can_edit(self, col: str) -> bool: ...

    def commit_edit(self, row_id: str, col: str, value: Any) -> bool: ...

    def save(self) -> Any: ...

    def undo(self) -> Any: ...

    def redo(self) -> Any: ...


class Navigator:
    def __init__(self):
        self.mode = BROWSING
        self.current: Optional[Tuple[str, str]] = None
        self.draft: Any = None
        self.focused = False

    def reset(self) -> None:
        self.mode = BROWSING
        self.current = None
        self.draft = None

    def focus(self) -> None:
        self.focused = True

    def blur(self) -> None:
        self.focused = False

    def set_current(self, row_id: str, col: str) -> None:
        if self.mode == EDITING and self.current != (row_id, col):
            self.cancel()
        self.current = (row_id, col)

    def cancel(self) -> None:
        self.mode = BROWSING
        self.draft = None

    def move(self, key: str, shift: bool, view_ids: List[str], cols: List[str]) -> bool:
        if not view_ids or not cols:
            return False
        cur = self.current
        if cur is None or cur[0] not in view_ids or cur[1] not in cols:
            self.current = (view_ids[0], cols[0])
            return True
        r = view_ids.index(cur[0])
        c = cols.index(cur[1])
        if key == "ArrowUp":
            r = max(0, r - 1)
        elif key == "ArrowDown":
            r = min(len(view_ids) - 1, r + 1)
        elif key == "ArrowLeft" or (key == "Tab" and shift):
            if c > 0:
                c -= 1
            elif r > 0:
                r -= 1
                c = len(cols) - 1
        elif key in ("ArrowRight", "Tab"):
            if c < len(cols) - 1:
                c += 1
            elif r < len(view_ids) - 1:
                r += 1
                c = 0
        self.current = (view_ids[r], cols[c])
        return True

    def handle_key(
        self,
        host: NavigationHost,
        key: str,
        *,
        ctrl: bool = False,
        shift: bool = False,
        meta: bool = False,
        value: Any = None,
    ) -> Optional[str]:
        """Apply one key press. Returns the action taken or ``None``.

        ``value`` carries the text of the open input when EDITING.
        """
        if not self.focused:
            return None
        if value is not None and self.mode == EDITING:
            self.draft = value

        if ctrl or meta:
            k = key.lower()
            if k == "s":
                if self.mode == EDITING:
                    self._commit(host)
                if not host.has_changes:
                    return None
                host.save()
                return "save"
            if self.mode == EDITING:
                # Undo/redo inside an open input belongs to the input itself
                return None
            if k == "z":
                if shift:
                    host.redo()
                    return "redo"
                host.undo()
                return "undo"
            if k == "y":
                host.redo()
                return "redo"
            if k == "f":
                return "focus_search"
            return None

        if self.mode == EDITING:
            if key == "Escape":
                self.cancel()
                return "cancel"
            if key == "Enter":
                self._commit(host)
                return "commit"
            if key == "Tab":
                self._commit(host)
                self.move(key, shift, host.view_ids(), host.visible_column_keys())
                return "commit"
            return None

        if key == "Enter":
            view_ids = host.view_ids()
            cols = host.visible_column_keys()
            if self.current is None or self.current[0] not in view_ids or self.current[1] not in cols:
                if not self.move(key, shift, view_ids, cols):
                    return None
            row_id, col = self.current
            if not host.can_edit(col):
                return None
            self.mode = EDITING
            self.draft = host.cell_value(row_id, col)
            return "edit"
        if key in MOVE_KEYS:
            if self.move(key, shift, host.view_ids(), host.visible_column_keys()):
                return "move"
        return None

    def _commit(self, host: NavigationHost) -> None:
        if self.current is not None:
            row_id, col = self.current
            host.commit_edit(row_id, col, self.draft)
        self.cancel()
