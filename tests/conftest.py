# tests/conftest.py

from __future__ import annotations

from datetime import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskwatch.cli.bootstrap import create_initial_state
from taskwatch.core.state import AppState
from taskwatch.tasks.identity import IdentityRegistry
from taskwatch.tasks.task_service import TaskService
from taskwatch.tasks.task_store import TaskStore

from .fakes import TZ, FakeClock, RecordingOutbox, local


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskwatch-test",
        timezone=TZ,
        console_enabled=False,
        matrix_enabled=False,
        matrix_rooms=[],
        # Paths (tmp per test run)
        data_dir=tmp_path,
        matrix_store_path=tmp_path / "matrix_store",
        tasks_path=tmp_path / "tasks.json",
        identities_path=tmp_path / "identities.json",
        # Scheduling
        reminder_interval_seconds=60,
        catch_up_minutes=60,
        default_deadline_time=time(18, 0),
        daily_report_time=time(18, 0),
        # Delivery
        rate_limit_max_retries=5,
        rate_limit_default_retry_seconds=5,
    )


@pytest.fixture()
def clock() -> FakeClock:
    # Monday morning, local time.
    return FakeClock(local(10, 9))


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_path)


@pytest.fixture()
def identities(settings: SimpleNamespace) -> IdentityRegistry:
    return IdentityRegistry(settings.identities_path)


@pytest.fixture()
def outbox() -> RecordingOutbox:
    return RecordingOutbox()


@pytest.fixture()
def service(store, identities, outbox, settings, clock) -> TaskService:
    return TaskService(store, identities, outbox, settings, clock=clock)


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    """Fully wired AppState; the dispatcher stays unbound so notices pile up in its backlog."""
    return create_initial_state(settings=settings, clock=clock)
