#!/usr/bin/env python3
"""Headless export/import of admin tables through the grid editor."""

from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from moddersheet import config as app_config
from moddersheet.editor import GridEditor
from moddersheet.errors import SheetError
from moddersheet.services.rowstore import create_row_store

logger = logging.getLogger("sheet_tool")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export admin tables to Excel or import Excel workbooks into them",
    )
    parser.add_argument(
        "--store",
        help="Row store backend (default: ROW_STORE setting)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    exp = sub.add_parser("export", help="Write a table to an .xlsx workbook")
    exp.add_argument("table")
    exp.add_argument(
        "--selected-ids",
        nargs="+",
        help="Only export rows with these ids",
    )
    exp.add_argument(
        "--output",
        type=Path,
        help="Target file (default: EXPORT_DIR/<table>_<date>.xlsx)",
    )

    imp = sub.add_parser("import", help="Append workbook rows to a table and save")
    imp.add_argument("table")
    imp.add_argument("file", type=Path)
    imp.add_argument(
        "--dry-run",
        action="store_true",
        help="Parse and report without saving",
    )

    msht = sub.add_parser("msht", help="Write a table as an MSHT archive")
    msht.add_argument("table")
    msht.add_argument("--output", type=Path)
    return parser.parse_args(argv)


def _default_output(table: str, suffix: str) -> Path:
    return app_config.EXPORT_DIR / f"{table}_{dt.date.today().isoformat()}{suffix}"


def _open(table: str, store_kind: Optional[str]) -> GridEditor:
    editor = GridEditor(table, create_row_store(store_kind))
    editor.reload()
    return editor


def cmd_export(args: argparse.Namespace) -> int:
    editor = _open(args.table, args.store)
    selected = bool(args.selected_ids)
    if selected:
        wanted = {str(x) for x in args.selected_ids}
        for idx, row_id in enumerate(editor.view_ids()):
            if row_id in wanted:
                editor.toggle_row(idx)
    data = editor.export_rows(selected_only=selected)
    target = args.output or _default_output(args.table, ".xlsx")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    print(target)
    return 0


def cmd_msht(args: argparse.Namespace) -> int:
    editor = _open(args.table, args.store)
    target = args.output or _default_output(args.table, ".msht")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(editor.export_msht(), encoding="utf-8")
    print(target)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    if not args.file.exists():
        raise FileNotFoundError(args.file)
    editor = _open(args.table, args.store)
    report = editor.import_rows(args.file)
    for warning in report["warnings"]:
        print(f"! {warning}")
    if report["errors"]:
        for err in report["errors"]:
            print(f"x {err}", file=sys.stderr)
        return 1
    print(report["message"])
    if args.dry_run or not report["imported"]:
        return 0
    stats = editor.save()
    print(stats["message"])
    return 1 if stats["errors"] else 0


COMMANDS = {"export": cmd_export, "import": cmd_import, "msht": cmd_msht}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, app_config.LOG_LEVEL, logging.INFO))
    try:
        return COMMANDS[args.command](args)
    except SheetError as exc:
        logger.error("%s", exc)
        print(exc, file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
