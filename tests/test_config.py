import importlib
import json
import sys

import pytest


def _reload_config(tmp_path, monkeypatch, payload):
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps(payload), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(cfg))
    monkeypatch.chdir(tmp_path)
    sys.modules.pop("moddersheet.config", None)
    return importlib.import_module("moddersheet.config")


@pytest.fixture(autouse=True)
def _restore_config():
    import moddersheet

    original = sys.modules.get("moddersheet.config")
    yield
    if original is not None:
        sys.modules["moddersheet.config"] = original
        moddersheet.config = original


def test_config_json_and_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("HISTORY_LIMIT", "25")
    monkeypatch.delenv("ROW_STORE", raising=False)
    config = _reload_config(tmp_path, monkeypatch, {"ROW_STORE": "Memory", "HISTORY_LIMIT": 10, "SAVE_BATCH": "no"})

    assert config.ROW_STORE == "memory"
    assert config.HISTORY_LIMIT == 25
    assert config.SAVE_BATCH is False
    assert config.STRICT_CELL_VALIDATION is True
    assert (tmp_path / "data").is_dir()


def test_invalid_integer_is_reported(tmp_path, monkeypatch):
    monkeypatch.delenv("SESSION_TTL", raising=False)
    with pytest.raises(RuntimeError, match="SESSION_TTL"):
        _reload_config(tmp_path, monkeypatch, {"SESSION_TTL": "half an hour"})
