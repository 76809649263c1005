from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Set, Tuple

Cell = Tuple[str, str]


class Selection:
    """Cell and row selection keyed by stable row id.

    View positions are only computed on demand from the ids of the current
    filtered and sorted view.
    """

    def __init__(self):
        self.cells: Set[Cell] = set()
        self.anchor: Optional[Cell] = None
        self.rows: Set[str] = set()

    def clear(self) -> None:
        self.cells.clear()
        self.anchor = None
        self.rows.clear()

    def select(self, row_id: str, col: str) -> None:
        self.anchor = (row_id, col)
        self.cells = {(row_id, col)}

    def extend(
        self,
        view_ids: Sequence[str],
        visible_cols: Sequence[str],
        row_id: str,
        col: str,
    ) -> None:
        """Select the rectangle between the anchor and ``(row_id, col)``."""
        anchor = self.anchor
        if (
            anchor is None
            or anchor[0] not in view_ids
            or anchor[1] not in visible_cols
            or row_id not in view_ids
            or col not in visible_cols
        ):
            self.select(row_id, col)
            return
        r0, r1 = sorted((view_ids.index(anchor[0]), view_ids.index(row_id)))
        c0, c1 = sorted((visible_cols.index(anchor[1]), visible_cols.index(col)))
        self.cells = {
            (view_ids[r], visible_cols[c])
            for r in range(r0, r1 + 1)
            for c in range(c0, c1 + 1)
        }

    def toggle_row(self, row_id: str) -> None:
        if row_id in self.rows:
            self.rows.discard(row_id)
        else:
            self.rows.add(row_id)

    def select_all_rows(self, view_ids: Sequence[str]) -> None:
        if view_ids and all(rid in self.rows for rid in view_ids):
            self.rows.clear()
        else:
            self.rows = set(view_ids)

    def prune(self, existing_ids: Iterable[str]) -> None:
        keep = set(existing_ids)
        self.rows &= keep
        self.cells = {c for c in self.cells if c[0] in keep}
        if self.anchor and self.anchor[0] not in keep:
            self.anchor = None

    def rename(self, old_id: str, new_id: str) -> None:
        if old_id in self.rows:
            self.rows.discard(old_id)
            self.rows.add(new_id)
        self.cells = {((new_id if r == old_id else r), c) for r, c in self.cells}
        if self.anchor and self.anchor[0] == old_id:
            self.anchor = (new_id, self.anchor[1])

    def row_indices(self, view_ids: Sequence[str]) -> List[int]:
        return [i for i, rid in enumerate(view_ids) if rid in self.rows]

    def cells_in_view(self, view_ids: Sequence[str], visible_cols: Sequence[str]) -> List[Tuple[int, str]]:
        pos = {rid: i for i, rid in enumerate(view_ids)}
        out = [
            (pos[rid], col)
            for rid, col in self.cells
            if rid in pos and col in visible_cols
        ]
        out.sort(key=lambda rc: (rc[0], visible_cols.index(rc[1])))
        return out
