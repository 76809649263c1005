"""In-memory grid editor over one table's rows.

The editor owns a working copy of the rows, a linear undo/redo history of
snapshots, a selection keyed by row id and a keyboard navigation state. Nothing
reaches the row store until :meth:`GridEditor.save` (or a confirmed
:meth:`GridEditor.bulk_delete`).
"""

from __future__ import annotations

import copy
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from moddersheet import config as app_config
from moddersheet.errors import CellValidationError, RowStoreError, WorkbookError
from moddersheet.schema import ColumnDescriptor, columns_for, get_schema, option_value
from moddersheet.services import workbook
from moddersheet.services.history import History
from moddersheet.services.navigation import Navigator
from moddersheet.services.selection import Selection
from moddersheet.services.translit import matches, search_variants
from moddersheet.ui import texts
from moddersheet.utils import cell_text, now_iso, parse_datetime, to_float

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

TEMP_PREFIXES = ("temp_", "import_")

_TRUE_INPUTS = {"true", "1", "ha", "yes", "on"}
_FALSE_INPUTS = {"false", "0", "yo'q", "no", "off", ""}


def new_temp_id(prefix: str = "temp") -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def is_temp_id(row_id: Any) -> bool:
    return str(row_id).startswith(TEMP_PREFIXES)


def _sort_key(value: Any) -> Tuple[int, Any]:
    if isinstance(value, bool):
        return (0, float(value))
    if isinstance(value, (int, float)):
        return (0, float(value))
    if isinstance(value, (list, tuple)):
        return (0, float(len(value)))
    return (1, str(value).casefold())


class GridEditor:
    def __init__(
        self,
        table: str,
        row_store,
        blob_store=None,
        *,
        categories: Optional[Sequence[Row]] = None,
        history_limit: Optional[int] = None,
        strict: Optional[bool] = None,
        batch_save: Optional[bool] = None,
    ):
        self.schema = get_schema(table)
        self.table = table
        self.store = row_store
        self.blobs = blob_store
        self.categories: List[Row] = list(categories or [])
        self.columns: List[ColumnDescriptor] = columns_for(table, self.categories)
        self.rows: List[Row] = []
        self.history = History(history_limit or app_config.HISTORY_LIMIT)
        self.selection = Selection()
        self.nav = Navigator()
        self.hidden: Set[str] = set()
        self.query = ""
        self.sort_column: Optional[str] = None
        self.sort_desc = False
        self.has_changes = False
        self.cell_errors: Dict[Tuple[str, str], CellValidationError] = {}
        self.strict = app_config.STRICT_CELL_VALIDATION if strict is None else strict
        self.batch_save = app_config.SAVE_BATCH if batch_save is None else batch_save
        self.history.reset(self.rows)
        # history position matching the store contents, None once unreachable
        self._saved_position: Optional[int] = self.history.position

    # ----- loading -----

    def load(self, rows: Sequence[Row], columns: Optional[Sequence[ColumnDescriptor]] = None) -> None:
        """Replace the working copy and start a fresh history."""
        if columns is not None:
            keys = [c.key for c in columns]
            if len(keys) != len(set(keys)):
                raise ValueError("Column keys must be unique")
            self.columns = list(columns)
        self.rows = [dict(copy.deepcopy(r), id=str(r["id"])) for r in rows]
        self.history.reset(self.rows)
        self._saved_position = self.history.position
        self.selection.clear()
        self.nav.reset()
        self.cell_errors.clear()
        self.has_changes = False

    def reload(self) -> None:
        """Fetch rows (and category options) from the row store."""
        try:
            if any(c.option_source == "categories" for c in self.schema.columns):
                self.categories = self.store.fetch("categories")
                self.columns = columns_for(self.table, self.categories)
            rows = self.store.fetch(self.schema.source, dict(self.schema.filters) or None)
        except RowStoreError:
            logger.exception("Failed to load rows for %s", self.table)
            raise
        if self.schema.derive is not None:
            for row in rows:
                row.update(self.schema.derive(row))
        self.load(rows)
        logger.info("Loaded %d rows into %s editor", len(rows), self.table)

    # ----- view -----

    def column(self, key: str) -> Optional[ColumnDescriptor]:
        for c in self.columns:
            if c.key == key:
                return c
        return None

    def visible_columns(self) -> List[ColumnDescriptor]:
        return [c for c in self.columns if c.key not in self.hidden]

    def visible_column_keys(self) -> List[str]:
        return [c.key for c in self.visible_columns()]

    def search(self, query: str) -> List[Row]:
        self.query = query or ""
        return self.view()

    def sort(self, column_key: str) -> List[Row]:
        if self.sort_column == column_key:
            self.sort_desc = not self.sort_desc
        else:
            self.sort_column = column_key
            self.sort_desc = False
        return self.view()

    def clear_sort(self) -> None:
        self.sort_column = None
        self.sort_desc = False

    def view(self) -> List[Row]:
        """Working-copy rows after search filtering and sorting."""
        rows = self.rows
        if self.query:
            variants = search_variants(self.query)
            rows = [
                r for r in rows
                if any(matches(cell_text(v), variants) for v in r.values())
            ]
        else:
            rows = list(rows)
        if self.sort_column:
            key = self.sort_column
            present = [r for r in rows if r.get(key) is not None and r.get(key) != ""]
            missing = [r for r in rows if r.get(key) is None or r.get(key) == ""]
            present.sort(key=lambda r: _sort_key(r.get(key)), reverse=self.sort_desc)
            rows = present + missing
        return rows

    def view_ids(self) -> List[str]:
        return [r["id"] for r in self.view()]

    def _id_at(self, row_index: int) -> str:
        ids = self.view_ids()
        if not 0 <= row_index < len(ids):
            raise IndexError(f"Row {row_index} is outside the current view")
        return ids[row_index]

    def _index_of(self, row_id: str) -> int:
        for i, r in enumerate(self.rows):
            if r["id"] == row_id:
                return i
        raise KeyError(row_id)

    def cell_value(self, row_id: str, col: str) -> Any:
        return self.rows[self._index_of(row_id)].get(col)

    # ----- mutations -----

    def _commit(self) -> None:
        if self._saved_position is not None and self._saved_position > self.history.position:
            # the saved snapshot sits in the redo tail that this push discards
            self._saved_position = None
        self.history.push(self.rows)
        self.has_changes = True
        self._prune(self.rows)

    def _prune(self, rows: List[Row]) -> None:
        ids = [r["id"] for r in rows]
        self.selection.prune(ids)
        keep = set(ids)
        self.cell_errors = {k: v for k, v in self.cell_errors.items() if k[0] in keep}

    def _restore(self, rows: List[Row]) -> None:
        self.rows = rows
        self.has_changes = self.history.position != self._saved_position
        ids = [r["id"] for r in rows]
        self.selection.prune(ids)
        if self.nav.current and self.nav.current[0] not in set(ids):
            self.nav.reset()

    def undo(self) -> bool:
        rows = self.history.undo()
        if rows is None:
            return False
        self._restore(rows)
        return True

    def redo(self) -> bool:
        rows = self.history.redo()
        if rows is None:
            return False
        self._restore(rows)
        return True

    def can_edit(self, col: str) -> bool:
        column = self.column(col)
        return column is not None and not column.readonly and column.type != "image"

    def edit_cell(self, row_index: int, column_key: str, raw_value: Any) -> bool:
        """Convert and write one cell of the row shown at ``row_index``.

        Returns False when the value was rejected; the reason is kept in
        ``cell_errors`` under ``(row_id, column_key)``.
        """
        return self.commit_edit(self._id_at(row_index), column_key, raw_value)

    def commit_edit(self, row_id: str, column_key: str, raw_value: Any) -> bool:
        column = self.column(column_key)
        if column is None:
            raise KeyError(column_key)
        try:
            if column.readonly:
                raise CellValidationError(row_id, column_key, texts.READONLY_COLUMN)
            value = self._convert(row_id, column, raw_value)
        except CellValidationError as err:
            self.cell_errors[(row_id, column_key)] = err
            return False
        self.cell_errors.pop((row_id, column_key), None)
        idx = self._index_of(row_id)
        if column_key in self.rows[idx] and self.rows[idx][column_key] == value:
            return True
        self.rows[idx] = self._with_derived({**self.rows[idx], column_key: value})
        self._commit()
        return True

    def _convert(self, row_id: str, column: ColumnDescriptor, raw: Any) -> Any:
        key = column.key
        if column.type == "number":
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                return raw
            if raw is None or str(raw).strip() == "":
                return 0
            num = to_float(raw)
            if num is None:
                if self.strict:
                    raise CellValidationError(row_id, key, texts.NOT_A_NUMBER)
                return 0
            return int(num) if num.is_integer() else num
        if column.type == "boolean":
            if isinstance(raw, bool):
                return raw
            s = str(raw if raw is not None else "").strip().lower()
            if s in _TRUE_INPUTS:
                return True
            if s in _FALSE_INPUTS or not self.strict:
                return False
            raise CellValidationError(row_id, key, texts.UNKNOWN_OPTION)
        if column.type == "select":
            if raw is None or str(raw).strip() == "":
                return None
            if not column.options:
                return raw
            val = option_value(column, raw)
            if val is None:
                if self.strict:
                    raise CellValidationError(row_id, key, texts.UNKNOWN_OPTION)
                return raw
            return val
        if column.type == "image":
            return self._convert_images(row_id, key, raw)
        if column.type == "datetime":
            if raw is None or str(raw).strip() == "":
                return None
            parsed = parse_datetime(raw)
            if parsed is None:
                if self.strict:
                    raise CellValidationError(row_id, key, texts.UNKNOWN_OPTION)
                return str(raw)
            return parsed.isoformat()
        return "" if raw is None else str(raw)

    def _convert_images(self, row_id: str, key: str, raw: Any) -> List[str]:
        # Strings are kept as existing URLs; anything else is a new upload
        items = list(raw) if isinstance(raw, (list, tuple)) else [raw]
        urls = [x for x in items if isinstance(x, str)]
        uploads = [x for x in items if not isinstance(x, str)]
        if uploads:
            if self.blobs is None:
                raise CellValidationError(row_id, key, texts.UPLOAD_FAILED)
            uploaded = self.blobs.upload_images(uploads)
            if uploaded is None:
                raise CellValidationError(row_id, key, texts.UPLOAD_FAILED)
            urls.extend(uploaded)
        return urls

    def _blank_row(self, prefix: str) -> Row:
        now = now_iso()
        row: Row = {"id": new_temp_id(prefix), "created_at": now, "updated_at": now}
        for col in self.columns:
            if col.key in row:
                continue
            if col.type == "boolean":
                row[col.key] = False
            elif col.type == "number":
                row[col.key] = 0
            elif col.type == "image":
                row[col.key] = []
            elif col.type in ("select", "datetime"):
                row[col.key] = None
            else:
                row[col.key] = ""
        row.update(copy.deepcopy(self.schema.filters))
        row.update(copy.deepcopy(self.schema.defaults))
        return row

    def _with_derived(self, row: Row) -> Row:
        if self.schema.derive is not None:
            row.update(self.schema.derive(row))
        return row

    def add_row(self) -> str:
        """Append a pending row with a temporary id; returns that id."""
        row = self._with_derived(self._blank_row("temp"))
        self.rows.append(row)
        self._commit()
        return row["id"]

    def delete_row(self, row_index: int) -> None:
        row_id = self._id_at(row_index)
        self.rows = [r for r in self.rows if r["id"] != row_id]
        self._commit()

    def duplicate_rows(self, selected_row_indices: Optional[Sequence[int]] = None) -> int:
        ids = self._resolve_ids(selected_row_indices)
        if not ids:
            return 0
        now = now_iso()
        for row_id in ids:
            src = self.rows[self._index_of(row_id)]
            clone = copy.deepcopy(src)
            clone.update({"id": new_temp_id("temp"), "created_at": now, "updated_at": now})
            self.rows.append(clone)
        self._commit()
        return len(ids)

    def replace(self, find: str, replacement: str) -> int:
        """Case-insensitive literal replace in every text field. Returns changed cells."""
        if not find:
            return 0
        rx = re.compile(re.escape(find), re.IGNORECASE)
        changed = 0
        new_rows: List[Row] = []
        for row in self.rows:
            new_row = dict(row)
            for key, value in row.items():
                if key == "id" or not isinstance(value, str):
                    continue
                replaced = rx.sub(lambda _m: replacement, value)
                if replaced != value:
                    new_row[key] = replaced
                    changed += 1
            new_rows.append(new_row)
        if changed:
            self.rows = new_rows
            self._commit()
        return changed

    # ----- selection -----

    def _resolve_ids(self, selected_row_indices: Optional[Sequence[int]]) -> List[str]:
        view_ids = self.view_ids()
        if selected_row_indices is None:
            return [rid for rid in view_ids if rid in self.selection.rows]
        return [view_ids[i] for i in selected_row_indices if 0 <= i < len(view_ids)]

    def select_cell(self, row_index: int, column_key: str, extend: bool = False) -> None:
        view_ids = self.view_ids()
        row_id = self._id_at(row_index)
        if extend:
            self.selection.extend(view_ids, self.visible_column_keys(), row_id, column_key)
        else:
            self.selection.select(row_id, column_key)
        self.nav.set_current(row_id, column_key)

    def toggle_row(self, row_index: int) -> None:
        self.selection.toggle_row(self._id_at(row_index))

    def select_all_rows(self) -> None:
        self.selection.select_all_rows(self.view_ids())

    def clear_selection(self) -> None:
        self.selection.clear()

    def selected_row_indices(self) -> List[int]:
        return self.selection.row_indices(self.view_ids())

    def bulk_delete(self, selected_row_indices: Optional[Sequence[int]] = None) -> Tuple[bool, str]:
        """Delete rows from the store and the working copy.

        Without explicit indices the checked rows of the current view are used.
        Unsaved rows are only dropped locally.
        """
        ids = self._resolve_ids(selected_row_indices)
        if not ids:
            return False, texts.DELETE_NOTHING
        persisted = [rid for rid in ids if not is_temp_id(rid)]
        if persisted:
            try:
                self.store.delete(self.schema.source, persisted)
            except Exception:
                logger.exception("Failed to delete %d rows from %s", len(persisted), self.table)
                return False, texts.DELETE_FAILED
        drop = set(ids)
        self.rows = [r for r in self.rows if r["id"] not in drop]
        # a store delete is final: undo and redo must not resurrect these rows
        self.history.drop_ids(drop)
        self._saved_position = None if self.has_changes else self.history.position
        self._prune(self.rows)
        if self.nav.current and self.nav.current[0] in drop:
            self.nav.reset()
        logger.info("Deleted %d rows from %s", len(ids), self.table)
        return True, texts.deleted(len(ids))

    # ----- columns -----

    def toggle_column(self, key: str) -> None:
        if self.column(key) is None:
            raise KeyError(key)
        if key in self.hidden:
            self.hidden.discard(key)
        else:
            self.hidden.add(key)

    def show_all_columns(self) -> None:
        self.hidden.clear()

    # ----- persistence -----

    def _replace_id(self, old_id: str, new_id: str) -> None:
        for row in self.rows:
            if row["id"] == old_id:
                row["id"] = new_id
        self.history.rename_id(old_id, new_id)
        self.selection.rename(old_id, new_id)
        if self.nav.current and self.nav.current[0] == old_id:
            self.nav.current = (new_id, self.nav.current[1])
        for key in [k for k in self.cell_errors if k[0] == old_id]:
            self.cell_errors[(new_id, key[1])] = self.cell_errors.pop(key)

    def save(self) -> Dict[str, Any]:
        """Write every working-copy row to the row store.

        Persisted rows are upserted in one batch when the store supports it,
        otherwise one by one, stopping at the first failure. Pending rows are
        inserted and receive their permanent ids.
        """
        stats: Dict[str, Any] = {"updated": 0, "inserted": 0, "errors": []}
        writable = [c.key for c in self.columns if not c.readonly]
        now = now_iso()
        source = self.schema.source
        updates: List[Row] = []
        inserts: List[Tuple[str, Row]] = []
        for row in self.rows:
            payload = {k: copy.deepcopy(row[k]) for k in writable if k in row}
            payload["updated_at"] = now
            if is_temp_id(row["id"]):
                payload.update(copy.deepcopy(self.schema.filters))
                payload["created_at"] = row.get("created_at") or now
                inserts.append((row["id"], payload))
            else:
                payload["id"] = row["id"]
                updates.append(payload)
        try:
            if updates and self.batch_save and self.store.supports_batch:
                self.store.upsert_many(source, updates)
                stats["updated"] = len(updates)
            else:
                for payload in updates:
                    data = dict(payload)
                    row_id = data.pop("id")
                    self.store.update(source, row_id, data)
                    stats["updated"] += 1
            for temp_id, payload in inserts:
                stored = self.store.insert(source, payload)
                self._replace_id(temp_id, str(stored["id"]))
                stats["inserted"] += 1
        except Exception as e:
            logger.exception(
                "Failed to save %s rows (updated=%d, inserted=%d)",
                self.table, stats["updated"], stats["inserted"],
            )
            stats["errors"].append(str(e))
            stats["message"] = texts.SAVE_FAILED
            return stats
        for row in self.rows:
            row["updated_at"] = now
        self.has_changes = False
        self._saved_position = self.history.position
        stats["message"] = texts.SAVE_OK
        logger.info(
            "Saved %s: %d updated, %d inserted",
            self.table, stats["updated"], stats["inserted"],
        )
        return stats

    # ----- workbook -----

    def _export_source(self, selected_only: bool) -> List[Row]:
        rows = self.view()
        if not selected_only:
            return rows
        chosen = set(self.selection.rows)
        if not chosen:
            chosen = {rid for rid, _ in self.selection.cells}
        return [r for r in rows if r["id"] in chosen]

    def export_rows(self, selected_only: bool = False) -> bytes:
        rows = self._export_source(selected_only)
        try:
            return workbook.export_workbook(rows, self.visible_columns(), self.table)
        except Exception as e:
            logger.exception("Failed to export %s", self.table)
            raise WorkbookError(texts.EXPORT_FAILED) from e

    def export_msht(self, selected_only: bool = False) -> str:
        return workbook.export_msht(self._export_source(selected_only), self.visible_columns(), self.table)

    def import_rows(self, source: Any) -> Dict[str, Any]:
        """Append workbook rows (first sheet) as pending inserts."""
        report: Dict[str, Any] = {"imported": 0, "warnings": [], "errors": []}
        try:
            records = workbook.read_workbook(source)
        except WorkbookError as e:
            logger.exception("Failed to read workbook for %s", self.table)
            report["errors"].append(str(e))
            report["message"] = texts.IMPORT_FAILED
            return report
        defaults = {**self.schema.filters, **self.schema.defaults}
        parsed, warnings = workbook.rows_from_records(records, self.visible_columns(), defaults)
        for values in parsed:
            row = self._blank_row("import")
            row.update(values)
            self.rows.append(self._with_derived(row))
        if parsed:
            self._commit()
        report["imported"] = len(parsed)
        report["warnings"] = warnings
        report["message"] = texts.imported(len(parsed))
        if warnings:
            logger.warning("Import into %s finished with %d warnings", self.table, len(warnings))
        return report

    # ----- keyboard -----

    def focus(self) -> None:
        self.nav.focus()

    def blur(self) -> None:
        self.nav.blur()

    def handle_key(
        self,
        key: str,
        *,
        ctrl: bool = False,
        shift: bool = False,
        meta: bool = False,
        value: Any = None,
    ) -> Optional[str]:
        return self.nav.handle_key(self, key, ctrl=ctrl, shift=shift, meta=meta, value=value)

    # ----- state -----

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready state of the editor for the admin surface."""
        view = self.view()
        view_ids = [r["id"] for r in view]
        pos = {rid: i for i, rid in enumerate(view_ids)}
        visible = self.visible_column_keys()
        current = None
        if self.nav.current and self.nav.current[0] in pos:
            current = {"row": pos[self.nav.current[0]], "column": self.nav.current[1]}
        return {
            "table": self.table,
            "columns": [
                {
                    "key": c.key,
                    "label": c.label,
                    "type": c.type,
                    "options": [{"value": v, "label": lbl} for v, lbl in c.options],
                    "sticky": c.sticky,
                    "readonly": c.readonly,
                    "hidden": c.key in self.hidden,
                }
                for c in self.columns
            ],
            "rows": view,
            "total": len(self.rows),
            "query": self.query,
            "sort": {"column": self.sort_column, "direction": "desc" if self.sort_desc else "asc"},
            "selection": {
                "cells": [{"row": r, "column": c} for r, c in self.selection.cells_in_view(view_ids, visible)],
                "rows": self.selection.row_indices(view_ids),
            },
            "current": current,
            "mode": self.nav.mode,
            "draft": self.nav.draft,
            "has_changes": self.has_changes,
            "can_undo": self.history.can_undo,
            "can_redo": self.history.can_redo,
            "errors": [
                {"row": pos.get(rid), "row_id": rid, "column": col, "message": err.message}
                for (rid, col), err in self.cell_errors.items()
            ],
        }
