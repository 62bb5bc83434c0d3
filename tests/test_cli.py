"""
ResoCtrl -- CLI tests

Commands run against a FakeMixer by patching resoctrl._client. Numbers on the
command line are 1-based; the wire paths checked here are what the mixer sees.

Run with: pytest tests/test_cli.py -v
"""

import os
import sys
from unittest.mock import patch

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import resoctrl
from core.models import ConnectionSettings
from core.settings import load_settings, save_settings


@pytest.fixture
def cli(mixer):
    """Run resoctrl.main with every request going to the FakeMixer."""
    def run_cli(*argv):
        with patch("resoctrl._client", side_effect=lambda: httpx.AsyncClient(transport=mixer.transport())):
            resoctrl.main(list(argv))
    return run_cli


def test_status(cli, capsys):
    cli("status")
    out = capsys.readouterr().out
    assert "Composition: Test (127.0.0.1:8080)" in out
    assert "Layers: 2  Columns: 3" in out
    assert "[1] L1" in out
    assert " 3. C3" in out


def test_status_shows_playing_clip(cli, mixer, capsys):
    mixer.composition["layers"][1]["clips"][0]["connected"]["value"] = "Connected"
    cli("status")
    out = capsys.readouterr().out
    assert "▶  1. C1" in out


def test_status_unreachable_exits(cli, mixer, capsys):
    mixer.unreachable = True
    with pytest.raises(SystemExit) as exc:
        cli("status")
    assert exc.value.code == 1
    assert "Error: Cannot reach mixer" in capsys.readouterr().err


def test_trigger_is_one_based(cli, mixer, capsys):
    cli("trigger", "1", "3")
    assert mixer.paths("POST") == ["/composition/layers/1/clips/3/connect"]
    assert "Trigger layer 1 clip 3: sent to 127.0.0.1:8080" in capsys.readouterr().out


def test_clear(cli, mixer):
    cli("clear", "2")
    assert mixer.paths("POST") == ["/composition/layers/2/clear"]


def test_opacity(cli, mixer, capsys):
    cli("opacity", "1", "0.5")
    method, path, _, body = mixer.requests[-1]
    assert (method, path, body) == ("PUT", "/composition/layers/1/video/opacity", {"value": 0.5})
    assert "Opacity layer 1 = 0.50" in capsys.readouterr().out


def test_column(cli, mixer):
    cli("column", "2")
    assert mixer.paths("POST") == ["/composition/columns/2/connect"]


def test_rejected_command_exits(cli, capsys):
    with pytest.raises(SystemExit) as exc:
        cli("clear", "9")
    assert exc.value.code == 1
    assert "Error: Clear layer 9 failed" in capsys.readouterr().err


@pytest.mark.parametrize("argv", [
    ("trigger", "0", "1"),
    ("clear", "-1"),
    ("opacity", "1", "1.5"),
    ("opacity", "1", "nan"),
    ("column", "abc"),
])
def test_bad_arguments_rejected(cli, mixer, argv):
    with pytest.raises(SystemExit) as exc:
        cli(*argv)
    assert exc.value.code == 2
    assert mixer.requests == []


def test_host_override_not_saved(cli, capsys):
    cli("--host", "10.0.0.5", "--port", "9000", "trigger", "1", "1")
    assert "sent to 10.0.0.5:9000" in capsys.readouterr().out
    assert load_settings() == ConnectionSettings()


def test_uses_saved_settings(cli, capsys):
    save_settings(ConnectionSettings(host="stage.local", port=8090))
    cli("column", "1")
    assert "sent to stage.local:8090" in capsys.readouterr().out


def test_settings_show(cli, capsys):
    cli("settings")
    assert "Mixer: 127.0.0.1:8080" in capsys.readouterr().out


def test_settings_save(cli, capsys):
    cli("--host", "192.168.1.20", "settings")
    assert "Saved 192.168.1.20:8080" in capsys.readouterr().out
    assert load_settings() == ConnectionSettings(host="192.168.1.20", port=8080)


def test_settings_invalid_port(cli, capsys):
    with pytest.raises(SystemExit) as exc:
        cli("--port", "70000", "settings")
    assert exc.value.code == 1
    assert load_settings() == ConnectionSettings()


def test_no_command_prints_help(cli, capsys):
    cli()
    assert "usage: resoctrl" in capsys.readouterr().out


def test_ui_starts_server(cli):
    with patch("server.start") as start:
        cli("ui", "--ui-port", "9999")
    start.assert_called_once_with(port=9999)


@pytest.mark.parametrize("argv", [
    ("--port", "0", "status"),
    ("--host", "", "trigger", "1", "1"),
    ("--port", "0", "settings"),
])
def test_falsy_overrides_rejected(cli, mixer, capsys, argv):
    with pytest.raises(SystemExit) as exc:
        cli(*argv)
    assert exc.value.code == 1
    assert "Error:" in capsys.readouterr().err
    assert mixer.requests == []
    assert load_settings() == ConnectionSettings()
