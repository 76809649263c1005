"""Row store backends the grid editor persists into.

All backends speak the same small protocol: fetch rows of a table, update one
row by id, insert a row, delete a list of ids, and (when ``supports_batch``)
upsert many rows in a single call.
"""

from __future__ import annotations

import copy
import json
import sqlite3
import uuid
from typing import Any, Dict, List, Optional, Sequence

from moddersheet import config as app_config
from moddersheet import db as app_db
from moddersheet.errors import RowStoreError


Row = Dict[str, Any]


class RowStore:
    supports_batch = False

    def fetch(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Row]:
        raise NotImplementedError

    def update(self, table: str, row_id: str, data: Row) -> None:
        raise NotImplementedError

    def insert(self, table: str, data: Row) -> Row:
        raise NotImplementedError

    def delete(self, table: str, ids: Sequence[str]) -> None:
        raise NotImplementedError

    def upsert_many(self, table: str, rows: Sequence[Row]) -> None:
        for row in rows:
            data = dict(row)
            row_id = data.pop("id")
            self.update(table, row_id, data)


class MemoryRowStore(RowStore):
    """Dict-backed store. Records every call in ``calls``."""

    supports_batch = True

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        self.tables: Dict[str, Dict[str, Row]] = {}
        self.calls: List[tuple] = []
        for name, rows in (tables or {}).items():
            self.tables[name] = {str(r["id"]): copy.deepcopy(r) for r in rows}

    def _table(self, table: str) -> Dict[str, Row]:
        return self.tables.setdefault(table, {})

    def fetch(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Row]:
        self.calls.append(("fetch", table))
        rows = [copy.deepcopy(r) for r in self._table(table).values()]
        for key, val in (filters or {}).items():
            rows = [r for r in rows if r.get(key) == val]
        return rows

    def update(self, table: str, row_id: str, data: Row) -> None:
        self.calls.append(("update", table, row_id))
        rows = self._table(table)
        if row_id not in rows:
            raise RowStoreError(table, "row not found", row_id=row_id)
        rows[row_id].update(copy.deepcopy(data))

    def insert(self, table: str, data: Row) -> Row:
        self.calls.append(("insert", table))
        row = copy.deepcopy(data)
        row["id"] = str(row.get("id") or uuid.uuid4())
        self._table(table)[row["id"]] = row
        return copy.deepcopy(row)

    def delete(self, table: str, ids: Sequence[str]) -> None:
        self.calls.append(("delete", table, tuple(ids)))
        rows = self._table(table)
        for rid in ids:
            rows.pop(str(rid), None)

    def upsert_many(self, table: str, rows: Sequence[Row]) -> None:
        self.calls.append(("upsert_many", table, len(rows)))
        stored = self._table(table)
        for row in rows:
            rid = str(row["id"])
            stored.setdefault(rid, {"id": rid}).update(copy.deepcopy(row))


class SqliteRowStore(RowStore):
    supports_batch = True

    def __init__(self, path: Optional[str] = None):
        self.path = str(path or app_config.DB_PATH)
        app_db.init_db(self.path)

    def _columns(self, conn: sqlite3.Connection, table: str) -> List[str]:
        escaped = table.replace("'", "''")
        info = conn.execute(f"PRAGMA table_info('{escaped}')").fetchall()
        if not info:
            raise RowStoreError(table, "no such table")
        return [row[1] for row in info]

    @staticmethod
    def _encode(key: str, value: Any) -> Any:
        if key in app_db.JSON_COLS:
            return json.dumps(list(value or []), ensure_ascii=False)
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    @staticmethod
    def _decode(row: sqlite3.Row) -> Row:
        out: Row = {}
        for key in row.keys():
            value = row[key]
            if key in app_db.JSON_COLS:
                try:
                    value = json.loads(value) if value else []
                except ValueError:
                    value = []
            elif key in app_db.BOOL_COLS and value is not None:
                value = bool(value)
            out[key] = value
        return out

    def _prepare(self, conn: sqlite3.Connection, table: str, data: Row) -> Row:
        cols = set(self._columns(conn, table))
        return {k: self._encode(k, v) for k, v in data.items() if k in cols}

    def fetch(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Row]:
        conn = app_db.db(self.path)
        try:
            cols = set(self._columns(conn, table))
            where = []
            params: List[Any] = []
            for key, val in (filters or {}).items():
                if key not in cols:
                    raise RowStoreError(table, f"unknown filter column {key}")
                where.append(f"{key}=?")
                params.append(self._encode(key, val))
            sql = f"SELECT * FROM {table}"
            if where:
                sql += " WHERE " + " AND ".join(where)
            sql += " ORDER BY created_at, rowid"
            rows = conn.execute(sql, params).fetchall()
            return [self._decode(r) for r in rows]
        except sqlite3.Error as e:
            raise RowStoreError(table, str(e)) from e
        finally:
            conn.close()

    def update(self, table: str, row_id: str, data: Row) -> None:
        conn = app_db.db(self.path)
        try:
            values = self._prepare(conn, table, data)
            values.pop("id", None)
            if not values:
                return
            set_sql = ", ".join(f"{k}=?" for k in values)
            with conn:
                cur = conn.execute(
                    f"UPDATE {table} SET {set_sql} WHERE id=?",
                    (*values.values(), row_id),
                )
            if cur.rowcount == 0:
                raise RowStoreError(table, "row not found", row_id=row_id)
        except sqlite3.Error as e:
            raise RowStoreError(table, str(e), row_id=row_id) from e
        finally:
            conn.close()

    def insert(self, table: str, data: Row) -> Row:
        conn = app_db.db(self.path)
        try:
            values = self._prepare(conn, table, data)
            values["id"] = str(values.get("id") or uuid.uuid4())
            names = ", ".join(values)
            placeholders = ",".join(["?"] * len(values))
            with conn:
                conn.execute(
                    f"INSERT INTO {table} ({names}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
            row = conn.execute(f"SELECT * FROM {table} WHERE id=?", (values["id"],)).fetchone()
            return self._decode(row)
        except sqlite3.Error as e:
            raise RowStoreError(table, str(e)) from e
        finally:
            conn.close()

    def delete(self, table: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        conn = app_db.db(self.path)
        try:
            placeholders = ",".join(["?"] * len(ids))
            with conn:
                conn.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", tuple(ids))
        except sqlite3.Error as e:
            raise RowStoreError(table, str(e)) from e
        finally:
            conn.close()

    def upsert_many(self, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        conn = app_db.db(self.path)
        try:
            with conn:
                for row in rows:
                    values = self._prepare(conn, table, row)
                    names = ", ".join(values)
                    placeholders = ",".join(["?"] * len(values))
                    updates = ", ".join(f"{k}=excluded.{k}" for k in values if k != "id")
                    conn.execute(
                        f"""
                        INSERT INTO {table} ({names}) VALUES ({placeholders})
                        ON CONFLICT(id) DO UPDATE SET {updates}
                        """,
                        tuple(values.values()),
                    )
        except sqlite3.Error as e:
            raise RowStoreError(table, str(e)) from e
        finally:
            conn.close()


class SupabaseRowStore(RowStore):
    """Rows kept in hosted Postgres, reached through supabase-py."""

    supports_batch = True
    page_size = 1000

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None, client=None):
        if client is None:
            url = url or app_config.SUPABASE_URL
            key = key or app_config.SUPABASE_KEY
            if not url or not key:
                raise ValueError(
                    "Supabase credentials required. Set SUPABASE_URL and SUPABASE_KEY "
                    "in config.json or the environment."
                )
            from supabase import create_client

            client = create_client(url, key)
        self.client = client

    def fetch(self, table: str, filters: Optional[Dict[str, Any]] = None) -> List[Row]:
        out: List[Row] = []
        offset = 0
        try:
            while True:
                query = self.client.table(table).select("*")
                for col, val in (filters or {}).items():
                    query = query.eq(col, val)
                result = query.order("created_at").range(offset, offset + self.page_size - 1).execute()
                batch = result.data or []
                out.extend(batch)
                if len(batch) < self.page_size:
                    break
                offset += self.page_size
        except Exception as e:
            raise RowStoreError(table, str(e)) from e
        return out

    def update(self, table: str, row_id: str, data: Row) -> None:
        try:
            self.client.table(table).update(data).eq("id", row_id).execute()
        except Exception as e:
            raise RowStoreError(table, str(e), row_id=row_id) from e

    def insert(self, table: str, data: Row) -> Row:
        payload = {k: v for k, v in data.items() if k != "id"}
        try:
            result = self.client.table(table).insert(payload).execute()
        except Exception as e:
            raise RowStoreError(table, str(e)) from e
        if not result.data:
            raise RowStoreError(table, "insert returned no row")
        return result.data[0]

    def delete(self, table: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        try:
            self.client.table(table).delete().in_("id", list(ids)).execute()
        except Exception as e:
            raise RowStoreError(table, str(e)) from e

    def upsert_many(self, table: str, rows: Sequence[Row]) -> None:
        if not rows:
            return
        try:
            self.client.table(table).upsert(list(rows)).execute()
        except Exception as e:
            raise RowStoreError(table, str(e)) from e


def create_row_store(kind: Optional[str] = None) -> RowStore:
    kind = (kind or app_config.ROW_STORE).lower()
    if kind == "supabase":
        return SupabaseRowStore()
    if kind == "memory":
        return MemoryRowStore()
    if kind == "sqlite":
        return SqliteRowStore()
    raise ValueError(f"Unknown ROW_STORE: {kind}")
