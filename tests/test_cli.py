import json

import pytest

from crosstool.cli.commands import client_commands
from crosstool.main import main


def test_help_lists_commands(capsys):
    assert main(["help"]) == 0
    out = capsys.readouterr().out
    for name in ("analyze", "format", "home", "server", "client"):
        assert name in out


def test_analyze_prints_json(tmp_path, capsys):
    src = tmp_path / "sample.js"
    src.write_text("function f(){}\nclass C{}\nconst x=1;", encoding="utf-8")
    assert main(["analyze", str(src)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["fileName"] == "sample.js"
    assert data["functions"] == ["f"]


def test_analyze_missing_file_exits_1(tmp_path, capsys):
    assert main(["analyze", str(tmp_path / "missing.js")]) == 1
    assert "Error:" in capsys.readouterr().err


def test_analyze_without_path_exits_1(capsys):
    assert main(["analyze"]) == 1
    assert "File path is required" in capsys.readouterr().err


def test_format_rewrites_file(tmp_path, capsys):
    src = tmp_path / "f.js"
    src.write_text("{\nx;\n}", encoding="utf-8")
    assert main(["format", str(src)]) == 0
    assert src.read_text(encoding="utf-8") == "{\n  x;\n}"
    assert "has been formatted" in capsys.readouterr().err

    assert main(["format", str(src)]) == 0
    assert "already properly formatted" in capsys.readouterr().err


def test_home_flow(capsys):
    assert main(["home"]) == 0
    assert "Database status: Not initialized" in capsys.readouterr().out

    assert main(["home", "--init"]) == 0
    assert main(["home", "--add", "Fresh"]) == 0
    assert "Item added successfully with ID: 4" in capsys.readouterr().out

    assert main(["home", "--update", "4", "Renamed"]) == 0
    assert main(["home", "--remove", "1"]) == 0
    capsys.readouterr()

    assert main(["home", "--list"]) == 0
    out = capsys.readouterr().out
    assert "ID | Name | Created At" in out
    assert "4 | Renamed |" in out
    assert "Test Item 1" not in out

    assert main(["home", "--clear"]) == 0
    assert "Cleared 3 items from the database" in capsys.readouterr().out

    assert main(["home"]) == 0
    assert "Database status: Initialized" in capsys.readouterr().out


def test_home_rejects_bad_id(capsys):
    assert main(["home", "--remove", "abc"]) == 1
    assert "Item ID must be an integer" in capsys.readouterr().err


def test_client_command_uses_supervised_client(monkeypatch, capsys):
    seen = {}

    class _Client:
        @classmethod
        def from_settings(cls, cfg):
            seen["port"] = cfg.PORT
            return cls()

        def add_item(self, name):
            from crosstool.core.models import MutationResult
            seen["name"] = name
            return MutationResult(message="Item added successfully with ID: 1", changes=1, id=1)

        def shutdown(self, stop_server=False):
            seen["shutdown"] = stop_server

    monkeypatch.setattr(client_commands, "CrossToolClient", _Client)
    assert main(["client", "--port", "9300", "add", "Thing"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["id"] == 1
    assert seen == {"port": 9300, "name": "Thing", "shutdown": False}


def test_client_connection_failure_exits_1(monkeypatch, capsys):
    from crosstool.core.errors import LaunchError

    class _Client:
        @classmethod
        def from_settings(cls, cfg):
            return cls()

        def list_items(self):
            raise LaunchError("Server could not be started", hint="run crosstool server")

        def shutdown(self, stop_server=False):
            pass

    monkeypatch.setattr(client_commands, "CrossToolClient", _Client)
    assert main(["client", "list"]) == 1
    err = capsys.readouterr().err
    assert "Error: Server could not be started" in err
    assert "Hint: run crosstool server" in err


def test_unknown_command_exits_1(capsys):
    assert main(["explode"]) == 1
    err = capsys.readouterr().err
    assert "Error: Unknown command 'explode'" in err
    assert "Available commands:" in err
    assert "  analyze" in err


def test_usage_error_exits_1(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["home", "--init", "--list"])
    assert exc.value.code == 1
    assert "Error:" in capsys.readouterr().err


def test_client_duplicate_prints_result(monkeypatch, capsys):
    seen = {}

    class _Client:
        @classmethod
        def from_settings(cls, cfg):
            return cls()

        def duplicate_item(self, item_id):
            from crosstool.core.models import MutationResult
            seen["id"] = item_id
            return MutationResult(message="Item added successfully with ID: 5", changes=1, id=5)

        def shutdown(self, stop_server=False):
            pass

    monkeypatch.setattr(client_commands, "CrossToolClient", _Client)
    assert main(["client", "duplicate", "2"]) == 0
    assert json.loads(capsys.readouterr().out)["id"] == 5
    assert seen == {"id": "2"}
