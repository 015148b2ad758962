import asyncio
import json
import uuid

import pytest
from typer.testing import CliRunner

from exhibits.cli import exhibits_admin

from conftest import make_exhibit, make_tree

runner = CliRunner()


@pytest.fixture
def cli(monkeypatch, orchestrator, session_factory):
    monkeypatch.setattr(exhibits_admin, "build_orchestrator", lambda **kwargs: orchestrator)
    monkeypatch.setattr(exhibits_admin, "SessionLocal", session_factory)
    return exhibits_admin.app


def _invoke(cli, *args):
    result = runner.invoke(cli, list(args))
    return result, json.loads(result.stdout)


def test_publish_and_suppress_commands(cli, store, search_index):
    tree = asyncio.run(make_tree(store))
    exhibit_id = str(tree["exhibit"].id)

    result, body = _invoke(cli, "publish", exhibit_id, "--user", "ada")
    assert result.exit_code == 0
    assert body["status"] == "ok"
    assert exhibit_id in search_index.documents

    result, body = _invoke(cli, "suppress", exhibit_id)
    assert result.exit_code == 0
    assert search_index.documents == {}

    result, body = _invoke(cli, "state", exhibit_id)
    assert body["data"]["state"] == "suppressed"


def test_failure_status_exits_non_zero(cli):
    result, body = _invoke(cli, "publish", str(uuid.uuid4()))
    assert result.exit_code == 1
    assert body["status"] == "not_found"


def test_malformed_uuid_is_rejected_before_running(cli):
    result = runner.invoke(cli, ["preview", "not-a-uuid"])
    assert result.exit_code != 0
    assert "must be a UUID" in result.output


def test_lock_commands(cli, store):
    exhibit = asyncio.run(make_exhibit(store))
    exhibit_id = str(exhibit.id)

    result, body = _invoke(cli, "lock", "exhibit", exhibit_id, "--user", "ada")
    assert body["data"]["state"] == "acquired"
    result, body = _invoke(cli, "lock", "exhibit", exhibit_id, "--user", "grace")
    assert result.exit_code == 1
    assert body["status"] == "locked"
    result, body = _invoke(cli, "unlock", "exhibit", exhibit_id, "--user", "grace", "--force")
    assert result.exit_code == 0


def test_delete_trash_and_purge_commands(cli, store):
    tree = asyncio.run(make_tree(store))
    exhibit_id = str(tree["exhibit"].id)

    result, body = _invoke(cli, "delete", exhibit_id, "--yes", "--user", "ada")
    assert body["status"] == "ok"
    result, body = _invoke(cli, "trash", "--kind", "exhibit")
    assert [entry["uuid"] for entry in body["data"]["exhibit"]] == [exhibit_id]
    result, body = _invoke(cli, "purge-trash", "--yes")
    assert body["data"]["removed"]["exhibit"] == 1

    result = runner.invoke(cli, ["audit", exhibit_id])
    entries = json.loads(result.stdout)
    assert [entry["action"] for entry in entries] == ["deleted"]
    assert entries[0]["user_id"] == "ada"


def test_purge_prompts_for_confirmation(cli, store):
    tree = asyncio.run(make_tree(store))
    result = runner.invoke(cli, ["purge", "heading", str(tree["heading"].id)], input="n\n")
    assert result.exit_code != 0
    assert asyncio.run(store.find("heading", tree["heading"].id)).text == "Introduction"
