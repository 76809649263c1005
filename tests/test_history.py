from moddersheet.services.history import History


def test_undo_redo_walks_snapshots():
    h = History(limit=10)
    h.reset([{"id": "1", "v": 0}])
    h.push([{"id": "1", "v": 1}])
    h.push([{"id": "1", "v": 2}])

    assert h.undo() == [{"id": "1", "v": 1}]
    assert h.undo() == [{"id": "1", "v": 0}]
    assert h.undo() is None
    assert h.redo() == [{"id": "1", "v": 1}]


def test_push_after_undo_drops_redo_tail():
    h = History()
    h.reset([])
    h.push([{"id": "a"}])
    h.push([{"id": "b"}])
    h.undo()
    h.push([{"id": "c"}])

    assert not h.can_redo
    assert len(h) == 3
    assert h.current() == [{"id": "c"}]


def test_limit_drops_oldest_snapshot():
    h = History(limit=3)
    h.reset([{"v": 0}])
    for v in range(1, 6):
        h.push([{"v": v}])

    assert len(h) == 3
    assert h.index == 2
    assert h.position == 5
    assert h.undo() == [{"v": 4}]
    assert h.undo() == [{"v": 3}]
    assert h.undo() is None


def test_snapshots_are_isolated_from_caller():
    rows = [{"id": "1", "images": ["a"]}]
    h = History()
    h.reset(rows)
    rows[0]["images"].append("b")
    h.push(rows)

    restored = h.undo()
    assert restored == [{"id": "1", "images": ["a"]}]
    restored[0]["images"].append("zzz")
    assert h.current() == [{"id": "1", "images": ["a"]}]


def test_rename_id_rewrites_all_snapshots():
    h = History()
    h.reset([{"id": "temp_1"}])
    h.push([{"id": "temp_1"}, {"id": "2"}])
    h.rename_id("temp_1", "uuid-1")

    assert h.current() == [{"id": "uuid-1"}, {"id": "2"}]
    assert h.undo() == [{"id": "uuid-1"}]


def test_drop_ids_removes_rows_and_merges_equal_steps():
    h = History()
    h.reset([{"id": "a", "v": 0}, {"id": "b", "v": 0}])
    h.push([{"id": "a", "v": 1}, {"id": "b", "v": 0}])
    h.push([{"id": "a", "v": 1}, {"id": "b", "v": 1}])
    h.drop_ids(["a"])

    assert len(h) == 2
    assert h.current() == [{"id": "b", "v": 1}]
    assert h.undo() == [{"id": "b", "v": 0}]
    assert h.undo() is None
