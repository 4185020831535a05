# tests/conftest.py
"""Shared test fixtures and helpers.

Engines built here never sleep and never rate limit: pacing is verified
through recorded sleep calls and the workbook call log instead.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from casebook.core.config import CasebookSettings, RateLimitSettings
from casebook.engine import CasebookEngine

# Fixed "now" for every engine built by the fixtures below
FIXED_NOW = datetime(2025, 3, 14, 9, 30, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock whose ``sleep`` moves time forward."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_settings(**overrides: Any) -> CasebookSettings:
    """Settings with rate limiting disabled; sections can be overridden by name."""
    values: dict[str, Any] = {"rate_limit": RateLimitSettings(enabled=False)}
    values.update(overrides)
    return CasebookSettings(**values)


def make_engine(settings_obj: CasebookSettings | None = None, **kwargs: Any) -> CasebookEngine:
    """Engine with provisioned tables, no-op sleep and a fixed clock."""
    kwargs.setdefault("sleep", lambda seconds: None)
    kwargs.setdefault("now", lambda: FIXED_NOW)
    engine = CasebookEngine(settings_obj or make_settings(), **kwargs)
    engine.provision_tables()
    return engine


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def settings_factory() -> Callable[..., CasebookSettings]:
    return make_settings


@pytest.fixture
def engine_factory() -> Iterator[Callable[..., CasebookEngine]]:
    """Build engines with ``make_engine``; every engine built is shut down afterwards."""
    built: list[CasebookEngine] = []

    def factory(settings_obj: CasebookSettings | None = None, **kwargs: Any) -> CasebookEngine:
        instance = make_engine(settings_obj, **kwargs)
        built.append(instance)
        return instance

    yield factory
    for instance in built:
        instance.shutdown()


@pytest.fixture
def engine(engine_factory: Callable[..., CasebookEngine]) -> CasebookEngine:
    """In-memory engine with all six tables provisioned."""
    return engine_factory()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
