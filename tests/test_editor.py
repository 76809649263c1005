import copy
import io

import pytest
from openpyxl import load_workbook

from moddersheet.editor import GridEditor, is_temp_id
from moddersheet.errors import RowStoreError
from moddersheet.services.rowstore import MemoryRowStore, SqliteRowStore
from moddersheet.ui import texts

CATEGORIES = [{"id": "c1", "name_uz": "Mebel"}, {"id": "c2", "name_uz": "Qurilish"}]


def _product(pid, name, price, **extra):
    row = {
        "id": pid,
        "name_uz": name,
        "price": price,
        "unit": "dona",
        "stock_quantity": 3,
        "category_id": "c1",
        "product_type": "sale",
        "is_available": True,
        "is_featured": False,
        "is_popular": False,
        "has_delivery": False,
        "delivery_price": 0,
        "minimum_order": 1,
        "view_count": 7,
        "average_rating": 4.5,
        "images": [],
        "created_at": "2024-01-01T00:00:00",
    }
    row.update(extra)
    return row


def _editor(rows=None, store_cls=MemoryRowStore, **kw):
    if rows is None:
        rows = [_product("1", "Shkaf oq", 100), _product("2", "Мих", 50)]
    store = store_cls({"products": rows, "categories": CATEGORIES})
    editor = GridEditor("products", store, **kw)
    editor.reload()
    return editor, store


class _FailingDeleteStore(MemoryRowStore):
    def delete(self, table, ids):
        raise RowStoreError(table, "network down")


class _FailingUpdateStore(MemoryRowStore):
    supports_batch = False

    def update(self, table, row_id, data):
        if row_id == "2":
            self.calls.append(("update", table, row_id))
            raise RowStoreError(table, "conflict", row_id=row_id)
        super().update(table, row_id, data)


class _Blobs:
    def __init__(self, urls=None):
        self.urls = urls
        self.received = []

    def upload_images(self, files):
        self.received.append(list(files))
        return self.urls


def test_reload_resolves_category_options():
    editor, store = _editor()
    col = editor.column("category_id")
    assert col.options == (("c1", "Mebel"), ("c2", "Qurilish"))
    assert ("fetch", "categories") in store.calls
    assert editor.has_changes is False
    assert editor.history.can_undo is False


def test_sort_toggles_direction():
    editor, _ = _editor()
    editor.sort("price")
    assert editor.view_ids() == ["2", "1"]
    editor.sort("price")
    assert editor.view_ids() == ["1", "2"]
    editor.clear_sort()
    assert editor.view_ids() == ["1", "2"]


def test_sort_is_stable_and_puts_empty_last():
    rows = [
        _product("a", "A", 10),
        _product("b", "B", 5),
        _product("c", "C", 10),
        _product("d", "D", None),
        _product("e", "E", 5),
    ]
    editor, _ = _editor(rows)
    editor.sort("price")
    assert editor.view_ids() == ["b", "e", "a", "c", "d"]
    editor.sort("price")
    assert editor.view_ids() == ["a", "c", "b", "e", "d"]


def test_search_matches_across_scripts():
    editor, _ = _editor()
    assert [r["id"] for r in editor.search("шкаф")] == ["1"]
    assert [r["id"] for r in editor.search("mix")] == ["2"]
    assert [r["id"] for r in editor.search("")] == ["1", "2"]


def test_edit_then_undo_restores_exact_rows():
    editor, _ = _editor()
    before = copy.deepcopy(editor.rows)

    assert editor.edit_cell(0, "price", "120,5") is True
    after = copy.deepcopy(editor.rows)
    assert editor.rows[0]["price"] == 120.5
    assert editor.has_changes

    assert editor.undo() is True
    assert editor.rows == before
    assert editor.redo() is True
    assert editor.rows == after
    assert editor.redo() is False


def test_edit_addresses_row_in_current_view():
    editor, _ = _editor()
    editor.sort("price")
    editor.edit_cell(0, "name_uz", "Mix")
    assert editor.cell_value("2", "name_uz") == "Mix"
    assert editor.cell_value("1", "name_uz") == "Shkaf oq"


def test_cell_conversions():
    editor, _ = _editor()
    assert editor.edit_cell(0, "is_featured", "Ha")
    assert editor.rows[0]["is_featured"] is True
    assert editor.edit_cell(0, "product_type", "Ijara")
    assert editor.rows[0]["product_type"] == "rental"
    assert editor.edit_cell(0, "category_id", "c2")
    assert editor.rows[0]["category_id"] == "c2"
    assert editor.edit_cell(0, "stock_quantity", "")
    assert editor.rows[0]["stock_quantity"] == 0


def test_strict_mode_rejects_bad_input():
    editor, _ = _editor()
    assert editor.edit_cell(0, "price", "abc") is False
    err = editor.cell_errors[("1", "price")]
    assert err.message == texts.NOT_A_NUMBER
    assert editor.rows[0]["price"] == 100
    assert editor.history.can_undo is False

    assert editor.edit_cell(0, "unit", "tonna") is False
    assert editor.edit_cell(0, "view_count", 1) is False
    assert editor.cell_errors[("1", "view_count")].message == texts.READONLY_COLUMN

    assert editor.edit_cell(0, "price", "90")
    assert ("1", "price") not in editor.cell_errors


def test_lenient_mode_coerces_like_a_form():
    editor, _ = _editor(strict=False)
    assert editor.edit_cell(0, "price", "abc") is True
    assert editor.rows[0]["price"] == 0
    assert editor.edit_cell(0, "is_featured", "maybe") is True
    assert editor.rows[0]["is_featured"] is False


def test_image_upload_replaces_cell_with_urls():
    blobs = _Blobs(["/media/photos/x.jpg"])
    editor, _ = _editor()
    editor.blobs = blobs

    upload = ("x.png", b"...")
    assert editor.edit_cell(0, "images", ["/media/photos/old.jpg", upload])
    assert editor.rows[0]["images"] == ["/media/photos/old.jpg", "/media/photos/x.jpg"]
    assert blobs.received == [[upload]]


def test_image_upload_failure_leaves_cell():
    editor, _ = _editor()
    editor.blobs = _Blobs(None)
    assert editor.edit_cell(0, "images", [("x.png", b"...")]) is False
    assert editor.rows[0]["images"] == []
    assert editor.cell_errors[("1", "images")].message == texts.UPLOAD_FAILED


def test_add_row_then_undo():
    editor, _ = _editor()
    count = len(editor.rows)
    row_id = editor.add_row()

    assert is_temp_id(row_id)
    new = editor.rows[-1]
    assert new["unit"] == "dona"
    assert new["is_available"] is True
    assert new["images"] == []
    assert new["created_at"]

    editor.undo()
    assert len(editor.rows) == count


def test_history_limit_caps_undo_depth():
    editor, _ = _editor(history_limit=3)
    for price in range(1, 6):
        editor.edit_cell(0, "price", price)
    assert len(editor.history) == 3
    assert editor.undo() and editor.undo()
    assert editor.undo() is False
    assert editor.rows[0]["price"] == 3


def test_selection_survives_sorting():
    editor, _ = _editor()
    editor.toggle_row(0)
    editor.sort("price")
    assert editor.selected_row_indices() == [1]
    editor.select_all_rows()
    assert editor.selected_row_indices() == [0, 1]
    editor.select_all_rows()
    assert editor.selected_row_indices() == []


def test_bulk_delete_removes_from_store_and_copy():
    editor, store = _editor()
    editor.toggle_row(0)
    ok, message = editor.bulk_delete()

    assert ok is True
    assert message == texts.deleted(1)
    assert ("delete", "products", ("1",)) in store.calls
    assert [r["id"] for r in editor.rows] == ["2"]
    assert "1" not in store.tables["products"]
    assert editor.has_changes is False
    assert editor.undo() is False


def test_bulk_delete_failure_keeps_rows(caplog):
    editor, _ = _editor(store_cls=_FailingDeleteStore)
    with caplog.at_level("ERROR"):
        ok, message = editor.bulk_delete([0, 1])
    assert (ok, message) == (False, texts.DELETE_FAILED)
    assert len(editor.rows) == 2
    assert "Failed to delete 2 rows from products" in caplog.text


def test_bulk_delete_of_unsaved_rows_skips_store():
    editor, store = _editor()
    assert editor.bulk_delete() == (False, texts.DELETE_NOTHING)
    editor.add_row()
    ok, _ = editor.bulk_delete([2])
    assert ok
    assert not any(call[0] == "delete" for call in store.calls)


@pytest.mark.parametrize("batch_save", [True, False])
def test_undo_after_bulk_delete_keeps_rows_deleted(tmp_path, batch_save):
    store = SqliteRowStore(str(tmp_path / "sheet.sqlite3"))
    a = store.insert("products", {"name_uz": "A", "price": 1})
    b = store.insert("products", {"name_uz": "B", "price": 2})
    editor = GridEditor("products", store, batch_save=batch_save)
    editor.reload()

    assert editor.edit_cell(editor.view_ids().index(b["id"]), "price", 5)
    ok, _ = editor.bulk_delete([editor.view_ids().index(a["id"])])
    assert ok

    assert editor.undo() is True
    assert [(r["id"], r["price"]) for r in editor.rows] == [(b["id"], 2)]
    assert editor.undo() is False
    assert editor.redo() is True
    assert editor.has_changes is True

    stats = editor.save()
    assert stats["errors"] == []
    assert stats["updated"] == 1
    assert [(r["id"], r["price"]) for r in store.fetch("products")] == [(b["id"], 5)]


def test_delete_row_is_local_until_save():
    editor, store = _editor()
    editor.delete_row(0)
    assert [r["id"] for r in editor.rows] == ["2"]
    assert "1" in store.tables["products"]
    editor.undo()
    assert [r["id"] for r in editor.rows] == ["1", "2"]


def test_duplicate_and_replace():
    editor, _ = _editor()
    editor.toggle_row(0)
    assert editor.duplicate_rows() == 1
    copy_row = editor.rows[-1]
    assert is_temp_id(copy_row["id"])
    assert copy_row["name_uz"] == "Shkaf oq"

    assert editor.replace("SHKAF", "Javon") == 2
    assert editor.rows[0]["name_uz"] == "Javon oq"
    assert editor.replace("nothing-here", "x") == 0
    editor.undo()
    assert editor.rows[0]["name_uz"] == "Shkaf oq"


def test_column_visibility():
    editor, _ = _editor()
    editor.toggle_column("price")
    assert "price" not in editor.visible_column_keys()
    editor.show_all_columns()
    assert "price" in editor.visible_column_keys()
    with pytest.raises(KeyError):
        editor.toggle_column("nope")


def test_save_batches_updates_and_inserts_new_rows():
    editor, store = _editor()
    editor.edit_cell(0, "price", 130)
    new_id = editor.add_row()
    editor.edit_cell(2, "name_uz", "Eshik")

    stats = editor.save()

    assert stats["updated"] == 2 and stats["inserted"] == 1 and stats["errors"] == []
    assert stats["message"] == texts.SAVE_OK
    assert ("upsert_many", "products", 2) in store.calls
    assert editor.has_changes is False
    assert not any(is_temp_id(r["id"]) for r in editor.rows)
    assert new_id not in store.tables["products"]

    stored = store.tables["products"]
    assert stored["1"]["price"] == 130
    assert stored["1"]["view_count"] == 7
    assert stored["1"]["updated_at"]
    inserted = stored[editor.rows[2]["id"]]
    assert inserted["name_uz"] == "Eshik"
    assert "view_count" not in inserted

    # undo/redo after save never brings back the temporary id
    editor.redo()
    editor.undo()
    editor.redo()
    assert not any(is_temp_id(r["id"]) for r in editor.rows)


def test_sequential_save_stops_at_first_failure(caplog):
    editor, store = _editor(store_cls=_FailingUpdateStore)
    editor.edit_cell(0, "price", 1)
    editor.add_row()

    with caplog.at_level("ERROR"):
        stats = editor.save()

    assert stats["updated"] == 1
    assert stats["inserted"] == 0
    assert stats["errors"]
    assert stats["message"] == texts.SAVE_FAILED
    assert editor.has_changes is True
    assert [c[0] for c in store.calls if c[0] != "fetch"] == ["update", "update"]
    assert "Failed to save products rows" in caplog.text


def test_keyboard_editing_and_shortcuts():
    editor, store = _editor()
    editor.focus()
    editor.select_cell(0, "price")

    assert editor.handle_key("Enter") == "edit"
    assert editor.handle_key("Enter", value="77") == "commit"
    assert editor.rows[0]["price"] == 77
    assert editor.handle_key("z", ctrl=True) == "undo"
    assert editor.rows[0]["price"] == 100
    assert editor.handle_key("y", ctrl=True) == "redo"

    assert editor.handle_key("s", ctrl=True) == "save"
    assert editor.has_changes is False
    assert editor.handle_key("s", ctrl=True) is None

    editor.blur()
    assert editor.handle_key("ArrowDown") is None


def test_undo_back_to_saved_state_clears_changes():
    editor, store = _editor()
    editor.edit_cell(0, "price", 120)
    editor.undo()
    assert editor.has_changes is False
    editor.focus()
    assert editor.handle_key("s", ctrl=True) is None
    assert not any(c[0] == "upsert_many" for c in store.calls)

    editor.redo()
    assert editor.has_changes is True
    editor.save()
    editor.undo()
    assert editor.has_changes is True
    editor.redo()
    assert editor.has_changes is False

    # a new edit after undo discards the saved snapshot from the redo tail
    editor.undo()
    editor.edit_cell(0, "price", 130)
    editor.undo()
    assert editor.has_changes is True


def test_export_selected_rows_only():
    rows = [_product(str(i), f"P{i}", i * 10) for i in range(1, 6)]
    editor, _ = _editor(rows, categories=CATEGORIES)
    editor.toggle_row(1)
    editor.toggle_row(3)

    ws = load_workbook(io.BytesIO(editor.export_rows(selected_only=True))).active
    assert ws.max_row == 3
    assert [ws.cell(row=r, column=2).value for r in (2, 3)] == ["P2", "P4"]

    ws = load_workbook(io.BytesIO(editor.export_rows())).active
    assert ws.max_row == 6


def test_import_of_export_reproduces_rows():
    editor, _ = _editor([
        _product("1", "Shkaf oq", 100),
        _product("2", "Мих", 50, unit="kg", product_type="rental"),
        _product("3", "Eshik", 70, category_id=None),
    ])
    data = editor.export_rows()
    originals = copy.deepcopy(editor.rows)

    report = editor.import_rows(io.BytesIO(data))

    assert report["imported"] == 3
    assert report["errors"] == []
    assert len(editor.rows) == 6
    skip = {"images", "view_count", "average_rating"}
    for original, imported in zip(originals, editor.rows[3:]):
        assert imported["id"].startswith("import_")
        for col in editor.visible_columns():
            if col.key in skip:
                continue
            assert imported[col.key] == original[col.key], col.key

    editor.undo()
    assert len(editor.rows) == 3


def test_import_keeps_root_categories_without_parent():
    categories = [
        {"id": "c1", "name_uz": "Mebel", "name_ru": "Мебель", "parent_id": None, "level": 1},
        {"id": "c2", "name_uz": "Stollar", "name_ru": "Столы", "parent_id": "c1", "level": 2},
    ]
    editor = GridEditor("categories", MemoryRowStore({"categories": categories}))
    editor.reload()

    report = editor.import_rows(io.BytesIO(editor.export_rows()))

    assert report["imported"] == 2
    assert [r["parent_id"] for r in editor.rows[2:]] == [None, "c1"]
    assert [r["level"] for r in editor.rows[2:]] == [1, 2]


def test_import_unreadable_file_reports_error():
    editor, _ = _editor()
    report = editor.import_rows(b"nope")
    assert report["imported"] == 0
    assert report["errors"]
    assert report["message"] == texts.IMPORT_FAILED
    assert len(editor.rows) == 2


def test_debtors_view_filters_and_derives():
    orders = [
        {"id": "o1", "order_number": "A-1", "is_borrowed": True, "is_payed": False,
         "borrowed_updated_at": "2000-01-01T00:00:00", "borrowed_period": 10, "created_at": "2000-01-01"},
        {"id": "o2", "order_number": "A-2", "is_borrowed": False, "is_payed": False, "created_at": "2000-01-02"},
    ]
    store = MemoryRowStore({"orders": orders})
    editor = GridEditor("debtors", store)
    editor.reload()

    assert editor.view_ids() == ["o1"]
    assert editor.rows[0]["is_overdue"] is True
    assert editor.edit_cell(0, "borrowed_period", 100000)
    assert editor.rows[0]["is_overdue"] is False

    row_id = editor.add_row()
    new = editor.rows[-1]
    assert new["id"] == row_id
    assert new["is_borrowed"] is True and new["is_payed"] is False

    editor.save()
    stored = [r for r in store.tables["orders"].values() if r.get("order_number") == ""]
    assert stored and stored[0]["is_borrowed"] is True
    assert "days_remaining" not in stored[0]


def test_snapshot_is_view_positioned():
    editor, _ = _editor()
    editor.sort("price")
    editor.select_cell(1, "name_uz")
    editor.edit_cell(0, "price", "x")
    state = editor.snapshot()

    assert [r["id"] for r in state["rows"]] == ["2", "1"]
    assert state["selection"]["cells"] == [{"row": 1, "column": "name_uz"}]
    assert state["current"] == {"row": 1, "column": "name_uz"}
    assert state["errors"][0]["row"] == 0
    assert state["sort"] == {"column": "price", "direction": "asc"}
    assert state["can_undo"] is False
