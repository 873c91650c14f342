"""Tests for the chainlab command line."""

import json
from pathlib import Path
from unittest.mock import patch

from chainlab.cli import main
from chainlab.server.config import reset_settings


def test_register_then_show(tmp_path: Path, capsys) -> None:
    assert main(["register", "alice", "--store-path", str(tmp_path)]) == 0
    registered = json.loads(capsys.readouterr().out)
    assert registered["owner_id"] == "alice"
    assert (tmp_path / "alice.json").exists()

    assert main(["show", "alice", "--store-path", str(tmp_path)]) == 0
    handle = json.loads(capsys.readouterr().out)
    assert handle["lifecycle_state"] == "unprovisioned"
    assert handle["runtime_instance_id"] is None


def test_register_twice_fails(tmp_path: Path, capsys) -> None:
    main(["register", "alice", "--store-path", str(tmp_path)])
    capsys.readouterr()

    assert main(["register", "alice", "--store-path", str(tmp_path)]) == 1
    assert "already exists" in capsys.readouterr().err


def test_show_unknown_owner(tmp_path: Path, capsys) -> None:
    assert main(["show", "nobody", "--store-path", str(tmp_path)]) == 1
    assert "Owner not found" in capsys.readouterr().err


def test_serve_uses_settings(monkeypatch) -> None:
    monkeypatch.setenv("CHAINLAB_PORT", "9123")
    reset_settings()
    try:
        with patch("uvicorn.run") as run:
            assert main(["serve", "--host", "127.0.0.1"]) == 0
    finally:
        reset_settings()

    run.assert_called_once_with(
        "chainlab.server:app", host="127.0.0.1", port=9123, reload=False
    )
