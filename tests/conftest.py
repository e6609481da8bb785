# tests/conftest.py
"""Shared test fixtures and helpers.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from faultline.client import Client
from tests.helpers import FakeClock

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Timing varies on shared runners
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


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_client(clock: FakeClock) -> Iterator[Callable[..., Client]]:
    """Build clients with test-friendly defaults; all are closed at teardown.

    Defaults: 2 workers, no retries, no real sleeping, timers not started,
    fake clock. Any ClientSettings field can be overridden.
    """
    clients: list[Client] = []

    def _make(**options: Any) -> Client:
        options.setdefault("pool_size", 2)
        options.setdefault("request_retries", [])
        client = Client(
            clock=options.pop("clock", clock),
            sleep=options.pop("sleep", lambda _seconds: None),
            sampler=options.pop("sampler", lambda: 0.0),
            start_timers=options.pop("start_timers", False),
            **options,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()

