"""tests/conftest.py

Shared fixtures: a manually advanced wall clock.
"""

import pytest


class ManualClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0.0, *, minutes: float = 0.0) -> None:
        self.now += seconds + minutes * 60.0


@pytest.fixture
def clock():
    return ManualClock()
