import re

import pytest
from typer.testing import CliRunner

from conftest import BASE_URL
from notesync.cli import main as cli
from notesync.core import runtime
from notesync.core.notes import NotesService

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(cli.console, "width", 200)


@pytest.fixture
def offline_cli(isolated_env):
    return isolated_env


@pytest.fixture
def online_cli(isolated_env, monkeypatch, remote):
    monkeypatch.setenv("NOTESYNC_REMOTE__BASE_URL", BASE_URL)
    monkeypatch.setenv("NOTESYNC_SYNC__AUTO_SYNC", "false")
    monkeypatch.setattr(
        cli, "open_runtime", lambda config: runtime.open_runtime(config, transport=remote.transport)
    )
    return remote


def invoke(*args, **kwargs):
    return runner.invoke(cli.app, list(args), **kwargs)


def created_id(output: str) -> str:
    return re.search(r"(temp_\w+)", output).group(1)


def test_version():
    result = invoke("version")
    assert result.exit_code == 0
    assert "Version" in result.output


def test_config_init_writes_file(offline_cli):
    result = invoke("config", "--init")
    assert result.exit_code == 0
    assert (offline_cli / "config.toml").exists()


def test_notes_lifecycle_without_remote(offline_cli):
    added = invoke("notes", "add", "Shopping", "--body", "milk")
    assert added.exit_code == 0, added.output
    note_id = created_id(added.output)

    listed = invoke("notes", "list")
    assert "Shopping" in listed.output

    assert invoke("notes", "edit", note_id, "--body", "eggs").exit_code == 0
    shown = invoke("notes", "show", note_id)
    assert "eggs" in shown.output

    assert invoke("notes", "list", "--search", "nothing-like-this").output.count("No notes found") == 1

    assert invoke("notes", "delete", note_id, "--yes").exit_code == 0
    assert "No notes yet" in invoke("notes", "list").output


def test_missing_note_exits_with_error(offline_cli):
    result = invoke("notes", "show", "temp_missing")
    assert result.exit_code == 1
    assert "Note not found" in result.output


def test_sync_requires_remote(offline_cli):
    result = invoke("sync", "run")
    assert result.exit_code == 1
    assert "not configured" in result.output


def test_sync_run_pushes_and_pulls(online_cli):
    online_cli.seed("srv-remote", title="From elsewhere")
    assert invoke("notes", "add", "Local draft").exit_code == 0

    result = invoke("sync", "run")
    assert result.exit_code == 0, result.output
    assert {n["title"] for n in online_cli.notes.values()} == {"From elsewhere", "Local draft"}

    listed = invoke("notes", "list")
    assert "From elsewhere" in listed.output
    assert "Synced" in listed.output


def test_sync_run_reports_unreachable_remote(online_cli):
    online_cli.offline = True
    result = invoke("sync", "run")
    assert result.exit_code == 1
    assert "Unable to connect" in result.output


def test_sync_status_and_reset(online_cli):
    invoke("notes", "add", "Pending")

    status = invoke("sync", "status")
    assert status.exit_code == 0, status.output
    assert "Pending Changes" in status.output
    assert "Never" in status.output

    assert invoke("sync", "reset", "--yes").exit_code == 0
    assert "No notes yet" in invoke("notes", "list").output


def test_unrelated_key_error_is_not_reported_as_missing_note(offline_cli, monkeypatch):
    async def broken_list(self, query=""):
        raise KeyError("updatedAt")

    monkeypatch.setattr(NotesService, "list_notes", broken_list)
    result = invoke("notes", "list")

    assert result.exit_code == 1
    assert "Failed to list notes" in result.output
    assert "Note not found" not in result.output
