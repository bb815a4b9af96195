"""Shared pytest configuration for the Giglet test suite.

Ensures the project root is on sys.path so test files can import
source modules (api, gigs, reputation, etc.) directly, and provides
helpers for building an isolated service container per test.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to sys.path so `import gigs`, `from api import create_app`, etc. work
PROJECT_ROOT = str(Path(__file__).resolve().parent.parent)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("GIGLET_ENV", "test")
os.environ.setdefault("GIGLET_API_TOKEN", "")


class FakeClock:
    """Settable clock for services that take clock=."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    from config import Settings

    return Settings(env="test", db_path=str(tmp_path / "giglet_test.db"))


@pytest.fixture
def svc(settings, clock):
    from services import build_services

    return build_services(settings, clock=clock)
