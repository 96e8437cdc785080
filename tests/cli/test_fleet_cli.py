"""Tests for the ``botfleet`` CLI commands."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from botfleet import __version__
from botfleet.cli import utils as cli_utils
from botfleet.cli.app import app
from botfleet.fleet import build_fleet
from botfleet.supervisor import StubSupervisor

runner = CliRunner()


# ── Helpers ──────────────────────────────────────────────────────────────


@pytest.fixture
def db(tmp_path) -> str:
    return str(tmp_path / "fleet.db")


@pytest.fixture
def cli_stub(monkeypatch) -> StubSupervisor:
    """Every CLI invocation in the test shares one in-memory supervisor."""
    stub = StubSupervisor(timeout=2.0)
    monkeypatch.setattr(
        cli_utils, "build_fleet", lambda settings: build_fleet(settings, supervisor=stub)
    )
    return stub


def invoke(*args: str):
    return runner.invoke(app, list(args))


def invoke_json(*args: str):
    result = invoke(*args, "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


# ── Root ─────────────────────────────────────────────────────────────────


class TestRoot:
    def test_version(self):
        result = invoke("--version")
        assert result.exit_code == 0
        assert f"botfleet {__version__}" in result.output

    def test_help(self):
        result = invoke("--help")
        assert result.exit_code == 0
        assert "worker" in result.output
        assert "entitlement" in result.output


# ── db ───────────────────────────────────────────────────────────────────


class TestDb:
    def test_init(self, db):
        result = invoke("db", "init", "--database", db)
        assert result.exit_code == 0
        assert "fleet_workers" in result.output

    def test_tables(self, db):
        counts = invoke_json("db", "tables", "--database", db)
        assert counts["fleet_workers"] == 0
        assert set(counts) == {
            "fleet_entitlements",
            "fleet_seen_events",
            "fleet_worker_settings",
            "fleet_workers",
        }


# ── worker ───────────────────────────────────────────────────────────────


class TestWorker:
    def test_create_and_list(self, db, cli_stub):
        created = invoke_json("worker", "create", "u1", "--name", "support", "--database", db)
        assert created["tenant_id"] == "u1"
        assert created["name"] == "support"
        assert created["observed_state"] == "stopped"

        listed = invoke_json("worker", "list", "--database", db)
        assert [w["id"] for w in listed] == [created["id"]]

    def test_create_over_quota(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        result = invoke("worker", "create", "u1", "--database", db)
        assert result.exit_code == 1
        assert "Plan limit reached (1/1)" in result.output

    def test_start_requires_credential(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        result = invoke("worker", "start", "1", "--database", db)
        assert result.exit_code == 1
        assert "no credential" in result.output
        assert cli_stub.start_count == 0

    def test_token_start_stop(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        token = invoke_json("worker", "token", "1", "--token", "secret", "--database", db)
        assert token["has_credential"] is True

        started = invoke_json("worker", "start", "1", "--database", db)
        assert started["observed_state"] == "running"
        assert cli_stub.running[started["handle"]].env["BOT_TOKEN"] == "secret"

        stopped = invoke_json("worker", "stop", "1", "--database", db)
        assert stopped["observed_state"] == "stopped"
        assert cli_stub.running == {}

    def test_settings(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        updated = invoke_json(
            "worker", "settings", "1", "--prefix", "!", "--disable", "logs", "--database", db
        )
        assert updated["prefix"] == "!"
        assert updated["features"]["logs"] is False

        shown = invoke_json("worker", "show", "1", "--database", db)
        assert shown["settings"]["prefix"] == "!"

    def test_unknown_worker(self, db, cli_stub):
        result = invoke("worker", "show", "99", "--database", db)
        assert result.exit_code == 1
        assert "Worker not found: 99" in result.output

    def test_unknown_worker_json_error(self, db, cli_stub):
        result = invoke("worker", "stop", "99", "--database", db, "--json")
        assert result.exit_code == 1
        error = json.loads(result.stdout)
        assert error["error_type"] == "NotFoundError"
        assert error["category"] == "NOT_FOUND"

    def test_delete(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        result = invoke("worker", "delete", "1", "--yes", "--database", db)
        assert result.exit_code == 0
        assert "Deleted" in result.output
        assert invoke_json("worker", "list", "--database", db) == []

    def test_metrics_and_logs(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        invoke("worker", "token", "1", "--token", "t", "--database", db)
        assert "stopped" in invoke("worker", "metrics", "1", "--database", db).output

        invoke("worker", "start", "1", "--database", db)
        metrics = invoke_json("worker", "metrics", "1", "--database", db)
        assert metrics["status"] == "running"

        result = invoke("worker", "logs", "1", "--tail", "5", "--database", db)
        assert result.exit_code == 0
        assert "started" in result.output


# ── entitlement / billing ────────────────────────────────────────────────


class TestEntitlement:
    def test_show_without_record(self, db, cli_stub):
        result = invoke("entitlement", "show", "u1", "--database", db)
        assert result.exit_code == 0
        assert "No entitlement recorded" in result.output

    def test_set_applies_transition(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        invoke("worker", "token", "1", "--token", "t", "--database", db)

        data = invoke_json("entitlement", "set", "u1", "active", "--database", db)
        assert data["entitlement"]["quota"] == 5
        assert data["report"]["started"] == [1]

        history = invoke_json("entitlement", "show", "u1", "--history", "--database", db)
        assert [e["status"] for e in history] == ["active"]

    def test_set_without_apply(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        invoke("worker", "token", "1", "--token", "t", "--database", db)
        data = invoke_json("entitlement", "set", "u1", "active", "--no-apply", "--database", db)
        assert data["report"] is None
        assert cli_stub.start_count == 0

    def test_invalid_status(self, db, cli_stub):
        result = invoke("entitlement", "set", "u1", "gold", "--database", db)
        assert result.exit_code == 2


class TestBilling:
    def test_event_from_file(self, db, cli_stub, tmp_path):
        payload = tmp_path / "event.json"
        payload.write_text(json.dumps({
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {"customer": "cus_1", "metadata": {"tenant_id": "u1"}}},
        }))

        outcome = invoke_json("billing", "event", str(payload), "--database", db)
        assert outcome["tenant_id"] == "u1"
        assert outcome["status"] == "active"

        again = invoke_json("billing", "event", str(payload), "--database", db)
        assert again["duplicate"] is True

        events = invoke_json("billing", "events", "--database", db)
        assert [e["event_id"] for e in events] == ["evt_1"]

    def test_event_needs_id_and_type(self, db, cli_stub, tmp_path):
        payload = tmp_path / "event.json"
        payload.write_text(json.dumps({"type": "invoice.paid"}))
        result = invoke("billing", "event", str(payload), "--tenant", "u1", "--database", db)
        assert result.exit_code == 2

    def test_event_needs_tenant(self, db, cli_stub, tmp_path):
        payload = tmp_path / "event.json"
        payload.write_text(json.dumps({"id": "evt_1", "type": "invoice.paid"}))
        result = invoke("billing", "event", str(payload), "--database", db)
        assert result.exit_code == 2
        assert "--tenant" in result.output


# ── fleet-wide ───────────────────────────────────────────────────────────


class TestFleetCommands:
    def test_health(self, db, cli_stub):
        health = invoke_json("health", "--database", db)
        assert health["healthy"] is True
        assert health["backend"] == "stub"

    def test_unhealthy_exits_non_zero(self, db, cli_stub):
        cli_stub.fail_health = True
        assert invoke("health", "--database", db).exit_code == 1

    def test_reconcile(self, db, cli_stub):
        invoke("worker", "create", "u1", "--database", db)
        invoke("worker", "token", "1", "--token", "t", "--database", db)
        invoke("worker", "start", "1", "--database", db)
        cli_stub.running.clear()

        report = invoke_json("reconcile", "--database", db)
        assert report["started"] == [1]
