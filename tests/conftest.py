"""
Pytest configuration and fixtures
"""

import os

# Set test environment variables before importing the app
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENABLE_METRICS"] = "true"
os.environ["HANDSHAKE_DELAY"] = "0"
os.environ["POLL_INTERVAL"] = "60"
os.environ["RANDOM_SEED"] = "1234"
os.environ["DEFAULT_DRIVER"] = "Chemistry"
os.environ["GEMINI_API_KEY"] = ""

from typing import Generator, Iterable

import pytest
from fastapi.testclient import TestClient

# Import after env vars are set
from services.api.main import app
from services.hal.drivers.base import ConnectionConfig


class ScriptedRandom:
    """
    Deterministic RandomSource

    random() pops scripted values (then repeats `default`), uniform() returns
    the point at `fraction` of the interval, integers() returns low + offset
    capped below high.
    """

    def __init__(
        self,
        randoms: Iterable[float] = (),
        default: float = 0.5,
        fraction: float = 0.5,
        integer_offset: int = 0,
    ):
        self.randoms = list(randoms)
        self.default = default
        self.fraction = fraction
        self.integer_offset = integer_offset
        self.calls = {"random": 0, "uniform": 0, "integers": 0}

    def random(self) -> float:
        self.calls["random"] += 1
        if self.randoms:
            return self.randoms.pop(0)
        return self.default

    def uniform(self, low: float, high: float) -> float:
        self.calls["uniform"] += 1
        return low + self.fraction * (high - low)

    def integers(self, low: int, high: int) -> int:
        self.calls["integers"] += 1
        return min(low + self.integer_offset, high - 1)


@pytest.fixture
def scripted_rng():
    """Factory for ScriptedRandom sources"""
    return ScriptedRandom


@pytest.fixture
def fast_config() -> ConnectionConfig:
    """Driver config with no handshake latency"""
    return ConnectionConfig(handshake_delay=0, seed=42)


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client (runs the app lifespan)"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def no_fault_rng(scripted_rng) -> ScriptedRandom:
    """Random source whose fault draw never fires (0.5 > every error probability)"""
    return scripted_rng(default=0.5)
