from __future__ import annotations

import json

import pytest

from ftprecon import cli
from ftprecon.constants import MARKER_FILENAME
from ftprecon.errors import TransportError
from ftprecon.listing import EntryKind

from .conftest import SERVER, FakeTransport

COMMON = ["--server", SERVER, "--root", "pub", "--json"]


@pytest.fixture
def fake(monkeypatch):
    transport = FakeTransport()
    monkeypatch.setattr(cli, "make_transport", lambda settings: transport)
    return transport


def run(capsys, *argv: str):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


def test_mkdir_then_ls(fake, capsys):
    code, payload = run(capsys, "mkdir", *COMMON, "albums/2024")
    assert code == 0
    assert payload == {"path": "albums/2024", "created": ["albums", "albums/2024"]}

    code, payload = run(capsys, "ls", *COMMON, "albums")
    assert code == 0
    assert [d["name"] for d in payload["directories"]] == ["2024"]
    assert payload["directories"][0]["kind"] == "directory"
    assert payload["files"] == []
    assert not fake.connected


def test_ls_hidden_and_unparsed(fake, capsys):
    fake.add_file("pub/.htaccess")
    fake.add_file("pub/index.html", b"<html>")
    fake.extra_lines["pub"] = ["lrwxrwxrwx 1 u g 4 Aug 25 21:46 link -> index.html"]

    _, payload = run(capsys, "ls", *COMMON)
    assert [f["name"] for f in payload["files"]] == ["index.html"]
    assert payload["files"][0]["size"] == 6
    assert len(payload["unparsed"]) == 1

    _, payload = run(capsys, "ls", *COMMON, "--all")
    assert [f["name"] for f in payload["files"]] == [".htaccess", "index.html"]


def test_ls_with_calibration_reports_local_time(fake, capsys):
    fake.add_file("pub/a.jpg")
    _, payload = run(capsys, "ls", *COMMON, "--calibrate")
    assert "local_timestamp" in payload["files"][0]


def test_put_and_same(fake, capsys, tmp_path):
    local = tmp_path / "a.jpg"
    local.write_bytes(b"12345")

    code, payload = run(capsys, "put", *COMMON, str(local), "x/a.jpg")
    assert code == 0
    assert payload["put"] is True
    assert fake.files["pub/x/a.jpg"] == b"12345"

    code, _ = run(capsys, "put", *COMMON, str(local), "x/a.jpg")
    assert code == 1

    code, _ = run(capsys, "put", *COMMON, "--overwrite", str(local), "x/a.jpg")
    assert code == 0

    code, payload = run(capsys, "same", *COMMON, str(local), "x/a.jpg")
    assert code == 0
    assert payload["same"] is True

    local.write_bytes(b"123")
    code, payload = run(capsys, "same", *COMMON, str(local), "x/a.jpg")
    assert code == 1
    assert payload["same"] is False


def test_missing_local_file_is_reported(fake, capsys, tmp_path):
    fake.add_file("pub/a.jpg")
    missing = str(tmp_path / "nope.jpg")

    code, payload = run(capsys, "same", *COMMON, missing, "a.jpg")
    assert code == 1
    assert payload["same"] is None

    code, payload = run(capsys, "put", *COMMON, missing, "b.jpg")
    assert code == 1
    assert payload is None
    assert "pub/b.jpg" not in fake.files


def test_exists_exit_codes(fake, capsys):
    fake.add_file("pub/a.jpg")
    code, payload = run(capsys, "exists", *COMMON, "a.jpg")
    assert code == 0
    assert payload["state"] == "present"
    assert payload["kind"] == "file"

    code, payload = run(capsys, "exists", *COMMON, "b.jpg")
    assert code == 1
    assert payload["state"] == "absent"


def test_exists_indeterminate(fake, capsys):
    # The first answer is for the root check on connect.
    fake.script.extend([EntryKind.DIRECTORY, TransportError("exists", "pub/c.jpg", "timed out")])
    code, payload = run(capsys, "exists", *COMMON, "c.jpg")
    assert code == 2
    assert payload["state"] == "indeterminate"
    assert "timed out" in payload["reason"]


def test_rmtree_refuses_root(fake, capsys):
    code, payload = run(capsys, "rmtree", *COMMON, "/")
    assert code == 1
    assert payload is None
    assert "pub" in fake.dirs


def test_rmtree(fake, capsys):
    fake.add_dir("pub/old")
    fake.add_file("pub/old/a.jpg")
    code, payload = run(capsys, "rmtree", *COMMON, "old")
    assert code == 0
    assert payload == {"path": "old", "files": ["old/a.jpg"], "directories": ["old"]}


def test_calibrate(fake, capsys):
    code, payload = run(capsys, "calibrate", *COMMON)
    assert code == 0
    assert payload["server"] == SERVER
    assert payload["degraded"] is False

    fake.hidden_names.add(MARKER_FILENAME)
    code, payload = run(capsys, "calibrate", *COMMON, "--degrade-on-failure")
    assert code == 0
    assert payload["offset_s"] == 0
    assert payload["degraded"] is True

    code, payload = run(capsys, "calibrate", *COMMON)
    assert code == 1
    assert payload is None


def test_missing_server_is_an_error(capsys):
    code, payload = run(capsys, "ls")
    assert code == 1
    assert payload is None


def test_config_file_and_overrides(fake, capsys, tmp_path):
    config = tmp_path / "ftp.json"
    config.write_text(json.dumps({"server": SERVER, "root": "elsewhere", "retry": {"attempts": 1, "delay_s": 0}}))
    fake.add_dir("pub/a")

    code, payload = run(capsys, "exists", "--config", str(config), "--root", "pub", "--json", "a")
    assert code == 0
    assert payload["kind"] == "directory"
