from __future__ import annotations

import io
import logging
import os
import secrets
import time
from pathlib import Path
from typing import Any, Dict, Optional

from flask import (
    Flask,
    abort,
    jsonify,
    request,
    send_file,
    send_from_directory,
)

from moddersheet import config as app_config
from moddersheet.editor import GridEditor
from moddersheet.errors import SheetError, UnknownTableError, WorkbookError
from moddersheet.schema import table_names
from moddersheet.services.photos import create_blob_store
from moddersheet.services.rowstore import create_row_store
from moddersheet.ui import texts

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
WORKBOOK_EXTS = {".xls", ".xlsx", ".xlsm"}


def _flag(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val or "").strip().lower() in ("1", "true", "yes", "on")


def _media_target(base: Path, subpath: str) -> Optional[Path]:
    """Resolve ``subpath`` under ``base``; None when it escapes the directory."""
    base = base.resolve()
    target = (base / subpath).resolve()
    if not target.is_relative_to(base):
        return None
    return target


def create_app(row_store=None, blob_store=None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.getenv("ADMIN_SECRET_KEY", "dev-local-admin")
    app.config.setdefault("MAX_CONTENT_LENGTH", 20 * 1024 * 1024)  # 20 MB uploads limit

    store = row_store if row_store is not None else create_row_store()
    blobs = blob_store if blob_store is not None else create_blob_store()
    app.extensions["moddersheet.row_store"] = store

    SESSION_TTL = app_config.SESSION_TTL
    sessions: Dict[str, Dict[str, Any]] = {}
    app.extensions["moddersheet.sessions"] = sessions

    def _purge_sessions() -> None:
        now = time.time()
        for token, data in list(sessions.items()):
            if now - data.get("touched_at", now) > SESSION_TTL:
                sessions.pop(token, None)
                if data["editor"].has_changes:
                    logger.warning("Discarded %s session %s with unsaved changes", data["editor"].table, token)

    def _sheet_error(message: str, status: int = 400, **extra):
        payload: Dict[str, Any] = {"success": False, "message": message}
        if extra:
            payload.update(extra)
        return jsonify(payload), status

    def _state(editor: GridEditor, **extra):
        payload: Dict[str, Any] = {"success": True, "state": editor.snapshot()}
        if extra:
            payload.update(extra)
        return jsonify(payload)

    def _editor(token: str) -> Optional[GridEditor]:
        _purge_sessions()
        data = sessions.get(token)
        if data is None:
            return None
        data["touched_at"] = time.time()
        return data["editor"]

    def _payload() -> Dict[str, Any]:
        return request.get_json(silent=True) or {}

    @app.errorhandler(SheetError)
    def handle_sheet_error(exc: SheetError):
        logger.warning("Sheet request failed: %s", exc)
        status = 404 if isinstance(exc, UnknownTableError) else 400
        return _sheet_error(str(exc), status=status)

    @app.get("/api/sheet/tables")
    def sheet_tables():
        return jsonify({"success": True, "tables": table_names()})

    @app.post("/api/sheet/<table>/open")
    def sheet_open(table: str):
        _purge_sessions()
        editor = GridEditor(table, store, blobs)
        try:
            editor.reload()
        except SheetError as exc:
            return _sheet_error(str(exc), status=502)
        token = secrets.token_urlsafe(16)
        sessions[token] = {"editor": editor, "created_at": time.time(), "touched_at": time.time()}
        return _state(editor, token=token)

    @app.get("/api/sheet/<token>")
    def sheet_state(token: str):
        editor = _editor(token)
        if editor is None:
            return _sheet_error(texts.SESSION_NOT_FOUND, status=404)
        return _state(editor)

    @app.post("/api/sheet/<token>/<action>")
    def sheet_action(token: str, action: str):
        editor = _editor(token)
        if editor is None:
            return _sheet_error(texts.SESSION_NOT_FOUND, status=404)
        payload = _payload()
        try:
            return _dispatch(editor, token, action, payload)
        except (IndexError, KeyError) as exc:
            return _sheet_error(f"Noto'g'ri so'rov: {exc}")

    def _dispatch(editor: GridEditor, token: str, action: str, payload: Dict[str, Any]):
        if action == "search":
            editor.search(str(payload.get("query") or ""))
        elif action == "sort":
            column = payload.get("column")
            if column:
                editor.sort(str(column))
            else:
                editor.clear_sort()
        elif action == "edit":
            ok = editor.edit_cell(int(payload["row"]), str(payload["column"]), payload.get("value"))
            if not ok:
                err = editor.cell_errors.get((editor.view_ids()[int(payload["row"])], str(payload["column"])))
                return _sheet_error(err.message if err else texts.SAVE_FAILED, state=editor.snapshot())
        elif action == "undo":
            editor.undo()
        elif action == "redo":
            editor.redo()
        elif action == "select":
            editor.select_cell(int(payload["row"]), str(payload["column"]), extend=_flag(payload.get("extend")))
        elif action == "select-row":
            editor.toggle_row(int(payload["row"]))
        elif action == "select-all":
            editor.select_all_rows()
        elif action == "clear-selection":
            editor.clear_selection()
        elif action == "delete":
            rows = payload.get("rows")
            indices = [int(r) for r in rows] if rows is not None else None
            if not _flag(payload.get("confirm")):
                count = len(indices) if indices is not None else len(editor.selected_row_indices())
                if not count:
                    return _sheet_error(texts.DELETE_NOTHING)
                return _sheet_error(texts.confirm_delete(count), status=409, needs_confirmation=True)
            ok, message = editor.bulk_delete(indices)
            if not ok:
                return _sheet_error(message, status=502 if message == texts.DELETE_FAILED else 400)
            return _state(editor, message=message)
        elif action == "delete-row":
            editor.delete_row(int(payload["row"]))
        elif action == "duplicate":
            rows = payload.get("rows")
            count = editor.duplicate_rows([int(r) for r in rows] if rows is not None else None)
            return _state(editor, duplicated=count)
        elif action == "add":
            row_id = editor.add_row()
            return _state(editor, row_id=row_id)
        elif action == "replace":
            count = editor.replace(str(payload.get("find") or ""), str(payload.get("replace") or ""))
            return _state(editor, replaced=count)
        elif action == "columns":
            if _flag(payload.get("show_all")):
                editor.show_all_columns()
            else:
                editor.toggle_column(str(payload["column"]))
        elif action == "save":
            stats = editor.save()
            if stats["errors"]:
                return _sheet_error(stats["message"], status=502, stats=stats, state=editor.snapshot())
            return _state(editor, stats=stats, message=stats["message"])
        elif action == "key":
            if "focused" in payload:
                if _flag(payload.get("focused")):
                    editor.focus()
                else:
                    editor.blur()
            result = editor.handle_key(
                str(payload.get("key") or ""),
                ctrl=_flag(payload.get("ctrl")),
                shift=_flag(payload.get("shift")),
                meta=_flag(payload.get("meta")),
                value=payload.get("value"),
            )
            return _state(editor, action=result)
        elif action == "reload":
            try:
                editor.reload()
            except SheetError as exc:
                return _sheet_error(str(exc), status=502)
        elif action == "upload":
            return _upload(editor)
        elif action == "import":
            return _import(editor)
        elif action == "close":
            sessions.pop(token, None)
            return jsonify({"success": True, "discarded_changes": editor.has_changes})
        else:
            abort(404)
        return _state(editor)

    def _upload(editor: GridEditor):
        files = [f for f in request.files.getlist("images") if f and f.filename]
        if not files:
            return _sheet_error(texts.UPLOAD_FAILED)
        try:
            row = int(request.form["row"])
            column = request.form["column"]
        except (KeyError, ValueError):
            return _sheet_error("Noto'g'ri so'rov")
        row_id = editor.view_ids()[row]
        keep = [] if _flag(request.form.get("replace")) else list(editor.cell_value(row_id, column) or [])
        if not editor.edit_cell(row, column, keep + files):
            err = editor.cell_errors.get((row_id, column))
            return _sheet_error(err.message if err else texts.UPLOAD_FAILED, status=502, state=editor.snapshot())
        return _state(editor)

    def _import(editor: GridEditor):
        file = request.files.get("file")
        if file is None or not file.filename:
            return _sheet_error(texts.IMPORT_UNREADABLE)
        if Path(file.filename).suffix.lower() not in WORKBOOK_EXTS:
            return _sheet_error("Faqat Excel fayllar (.xls/.xlsx) qo'llab-quvvatlanadi")
        report = editor.import_rows(io.BytesIO(file.read()))
        if report["errors"]:
            return _sheet_error(report["message"], report=report)
        return _state(editor, report=report, message=report["message"])

    @app.get("/api/sheet/<token>/export")
    def sheet_export(token: str):
        editor = _editor(token)
        if editor is None:
            return _sheet_error(texts.SESSION_NOT_FOUND, status=404)
        try:
            data = editor.export_rows(selected_only=_flag(request.args.get("selected")))
        except WorkbookError as exc:
            return _sheet_error(str(exc), status=500)
        filename = f"{editor.table}_{time.strftime('%Y-%m-%d')}.xlsx"
        return send_file(io.BytesIO(data), mimetype=XLSX_MIME, as_attachment=True, download_name=filename)

    @app.get("/api/sheet/<token>/export.msht")
    def sheet_export_msht(token: str):
        editor = _editor(token)
        if editor is None:
            return _sheet_error(texts.SESSION_NOT_FOUND, status=404)
        text = editor.export_msht(selected_only=_flag(request.args.get("selected")))
        filename = f"{editor.table}_{time.strftime('%Y-%m-%d')}.msht"
        return send_file(
            io.BytesIO(text.encode("utf-8")),
            mimetype="text/plain",
            as_attachment=True,
            download_name=filename,
        )

    # Local media (uploaded product photos)
    @app.route("/media/<path:subpath>")
    def serve_media(subpath: str):
        base = app_config.PHOTOS_DIR.parent.resolve()
        target = _media_target(base, subpath)
        if target is None:
            abort(403)
        if not target.exists():
            abort(404)
        return send_from_directory(str(base), subpath)

    return app
