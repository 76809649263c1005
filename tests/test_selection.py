from moddersheet.services.selection import Selection

VIEW = ["a", "b", "c", "d"]
COLS = ["name", "price", "unit"]


def test_extend_selects_rectangle_from_anchor():
    sel = Selection()
    sel.select("b", "price")
    sel.extend(VIEW, COLS, "d", "unit")

    assert sel.cells == {
        ("b", "price"), ("b", "unit"),
        ("c", "price"), ("c", "unit"),
        ("d", "price"), ("d", "unit"),
    }
    assert sel.anchor == ("b", "price")


def test_extend_without_anchor_selects_single_cell():
    sel = Selection()
    sel.extend(VIEW, COLS, "c", "name")
    assert sel.cells == {("c", "name")}
    assert sel.anchor == ("c", "name")


def test_select_all_rows_toggles():
    sel = Selection()
    sel.select_all_rows(VIEW)
    assert sel.rows == set(VIEW)
    sel.select_all_rows(VIEW)
    assert sel.rows == set()


def test_row_indices_follow_view_order():
    sel = Selection()
    sel.toggle_row("a")
    sel.toggle_row("c")

    assert sel.row_indices(VIEW) == [0, 2]
    assert sel.row_indices(["c", "b", "a"]) == [0, 2]
    assert sel.row_indices(["b"]) == []


def test_prune_and_rename():
    sel = Selection()
    sel.select("temp_1", "name")
    sel.toggle_row("temp_1")
    sel.toggle_row("b")
    sel.rename("temp_1", "42")

    assert sel.rows == {"42", "b"}
    assert sel.cells == {("42", "name")}

    sel.prune(["b"])
    assert sel.rows == {"b"}
    assert sel.cells == set()
    assert sel.anchor is None


def test_cells_in_view_sorted_by_position():
    sel = Selection()
    sel.select("a", "name")
    sel.extend(VIEW, COLS, "b", "price")

    assert sel.cells_in_view(["b", "a"], COLS) == [
        (0, "name"), (0, "price"), (1, "name"), (1, "price"),
    ]
    assert sel.cells_in_view(["a"], ["price"]) == [(0, "price")]
