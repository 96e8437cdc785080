"""
Shared pytest fixtures for botfleet tests.

This module provides:
- A fresh SQLite-backed fleet per test, wired to the in-memory StubSupervisor
- Shortcuts to the individual components of that fleet
- A factory for workers that are ready to start (credential set)
- Logging reset between tests

Usage:
    def test_something(fleet, stub, ready_worker):
        worker = ready_worker("u1")
        ...
"""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
import structlog

from botfleet.core.models import Worker
from botfleet.core.settings import FleetSettings
from botfleet.fleet import Fleet, build_fleet
from botfleet.supervisor import StubSupervisor


# =============================================================================
# Settings & fleet
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> FleetSettings:
    """Settings pointing every path into the test's temporary directory."""
    return FleetSettings(
        database_url=f"sqlite:///{tmp_path / 'fleet.db'}",
        log_dir=tmp_path / "logs",
        commands_dir=tmp_path,
        free_max_workers=1,
        paid_max_workers=5,
        supervisor_timeout=2.0,
    )


@pytest.fixture
def stub() -> StubSupervisor:
    return StubSupervisor(timeout=2.0)


@pytest.fixture
def fleet(settings, stub) -> Iterator[Fleet]:
    fleet = build_fleet(settings, supervisor=stub)
    yield fleet
    fleet.engine.dispose()


@pytest.fixture
def entitlements(fleet):
    return fleet.entitlements


@pytest.fixture
def registry(fleet):
    return fleet.registry


@pytest.fixture
def controller(fleet):
    return fleet.controller


@pytest.fixture
def ready_worker(fleet) -> Callable[..., Worker]:
    """Factory: create a worker for a tenant and give it a credential."""

    def _make(tenant_id: str = "u1", name: str | None = None, token: str = "tok") -> Worker:
        worker = fleet.create_worker(tenant_id, name)
        return fleet.set_credential(worker.id, token)

    return _make


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """Undo any ``configure_logging`` a test (or the CLI) performed."""
    yield
    structlog.reset_defaults()
