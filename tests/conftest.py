# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from pgsample.core.shutdown import ShutdownSignal, shutdown_signal
from tests.fixtures.memory_db import MemoryDatabase, employees_chain, users_and_posts

settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("nightly", max_examples=1000, deadline=None)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target],
)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "ci"))


@pytest.fixture(autouse=True)
def _reset_shutdown_signal() -> Iterator[None]:
    """The process-wide signal must never leak a triggered state between tests."""
    shutdown_signal.reset()
    yield
    shutdown_signal.reset()


@pytest.fixture
def shutdown() -> ShutdownSignal:
    """A private signal, so tests can trigger it without touching the global one."""
    return ShutdownSignal()


@pytest.fixture
def memory_db() -> MemoryDatabase:
    return MemoryDatabase()


@pytest.fixture
def blog_db() -> MemoryDatabase:
    db, _, _ = users_and_posts()
    return db


@pytest.fixture
def employees_db() -> MemoryDatabase:
    db, _ = employees_chain(6)
    return db
