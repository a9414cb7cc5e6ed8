"""Pytest configuration, compatibility helpers and shared fixtures.

This project includes async tests marked with ``@pytest.mark.asyncio``.
Some environments run unit tests without ``pytest-asyncio`` installed, which
would otherwise make those tests fail at collection/runtime.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

import pytest

from academy_guard.db.memory import InMemoryAuditLog, InMemoryStore
from academy_guard.saas.context import JWTManager
from academy_guard.saas.events import InMemoryNotificationQueue
from academy_guard.saas.plans import PlanCatalog
from academy_guard.services import Services, build_services


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "asyncio: mark test as asyncio-compatible")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``@pytest.mark.asyncio`` tests without external plugins.

    If pytest-asyncio (or another async plugin) is installed, this hook may be
    bypassed by that plugin depending on hook ordering. In plugin-less
    environments, this fallback executes coroutine tests on a fresh loop.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True


# ── Shared fixtures ──────────────────────────────────────────────

JWT_SECRET = "test-secret"


@pytest.fixture()
def catalog() -> PlanCatalog:
    return PlanCatalog.default()


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def audit() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture()
def notifications() -> InMemoryNotificationQueue:
    return InMemoryNotificationQueue()


@pytest.fixture()
def jwt() -> JWTManager:
    return JWTManager(secret=JWT_SECRET, expiry_hours=1)


@pytest.fixture()
def services(
    catalog: PlanCatalog,
    store: InMemoryStore,
    audit: InMemoryAuditLog,
    notifications: InMemoryNotificationQueue,
    jwt: JWTManager,
) -> Services:
    return build_services(
        catalog=catalog,
        directory=store,
        resources=store,
        audit=audit,
        notifications=notifications,
        jwt=jwt,
    )
