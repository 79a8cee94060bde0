"""
Telemetry Simulation Engine

Shared physics/statistics for the simulated analyzers. Every driver runs the
same per-tick update (temperature drift, reagent depletion, fault injection,
throughput) with its own DriverProfile; only the parameters differ.

Randomness is injected through RandomSource so tests can script exact draws.
numpy's Generator satisfies the protocol and is the default.
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional, Protocol, TypeVar

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from .base import (
    CommandResult,
    InstrumentState,
    InstrumentStatus,
    QCDataPoint,
)
from services.hal.exceptions import CommandRejectedError, DriverConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESET_ERROR = "RESET_ERROR"


class RandomSource(Protocol):
    """Subset of numpy.random.Generator used by the simulators"""

    def random(self) -> float:
        ...

    def uniform(self, low: float, high: float) -> float:
        ...

    def integers(self, low: int, high: int) -> int:
        ...


def create_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Random source for a driver (seeded for reproducible runs)"""
    return np.random.default_rng(seed)


def clamp(value: float, lo: Optional[float] = None, hi: Optional[float] = None) -> float:
    """Clamp value to [lo, hi]; a None bound leaves that side open"""
    if lo is not None and value < lo:
        return lo
    if hi is not None and value > hi:
        return hi
    return value


class DriverProfile(BaseModel):
    """Physical and statistical parameters of one simulated analyzer"""
    model_config = ConfigDict(frozen=True)

    # Reaction disk temperature
    nominal_temp: float = 37.0
    temp_jitter: float = Field(..., ge=0, description="Full width of the per-tick drift draw")
    temp_min: Optional[float] = None
    temp_max: Optional[float] = None

    # Consumables and faults
    reagent_rate: float = Field(..., ge=0, description="Percent consumed per tick while running")
    error_probability: float = Field(..., ge=0, le=1)
    fault_message: str

    # Tests per hour while running: nominal + integers(0, jitter)
    throughput_nominal: int = Field(..., ge=0)
    throughput_jitter: int = Field(0, ge=0)

    # QC series
    qc_mean: float
    qc_sd: float = Field(..., gt=0)
    qc_points: int = Field(20, ge=1)
    qc_shift_from: Optional[int] = None  # first batch carrying the late shift
    qc_shift_sd: float = 0.0

    initial_sample_count: int = Field(0, ge=0)


class TelemetryModel:
    """
    Mutable state of one simulated instrument

    All mutation and every draw from the random source happen under the
    instance lock, so concurrent readers never observe a half-applied tick.
    Internal values keep full precision; snapshots are rounded.
    """

    def __init__(self, profile: DriverProfile, rng: Optional[RandomSource] = None):
        self.profile = profile
        self.rng = rng if rng is not None else create_rng()
        self._lock = threading.Lock()

        self._status = InstrumentStatus.RUNNING
        self._temp = profile.nominal_temp
        self._reagent = 100.0
        self._sample_count = profile.initial_sample_count
        self._last_error: Optional[str] = None
        self._throughput = profile.throughput_nominal + profile.throughput_jitter // 2

    # ============ Telemetry ============

    def tick(self) -> InstrumentState:
        """Advance the model by one poll interval and return the new snapshot"""
        profile = self.profile

        with self._lock:
            half_width = profile.temp_jitter / 2
            drift = float(self.rng.uniform(-half_width, half_width))
            self._temp = clamp(self._temp + drift, profile.temp_min, profile.temp_max)

            if self._status == InstrumentStatus.RUNNING:
                self._reagent = max(0.0, self._reagent - profile.reagent_rate)

                if float(self.rng.random()) < profile.error_probability:
                    self._status = InstrumentStatus.ERROR
                    self._last_error = profile.fault_message
                    logger.warning(f"Fault injected: {profile.fault_message}")

            if self._status == InstrumentStatus.RUNNING:
                self._throughput = self._draw_throughput()
            else:
                self._throughput = 0

            return self._snapshot()

    def snapshot(self) -> InstrumentState:
        """Current state without advancing the model"""
        with self._lock:
            return self._snapshot()

    def has_error(self) -> bool:
        with self._lock:
            return self._last_error is not None

    def _draw_throughput(self) -> int:
        jitter = self.profile.throughput_jitter
        if jitter <= 0:
            return self.profile.throughput_nominal
        return self.profile.throughput_nominal + int(self.rng.integers(0, jitter))

    def _snapshot(self) -> InstrumentState:
        running = self._status == InstrumentStatus.RUNNING
        return InstrumentState(
            status=self._status,
            reaction_temp=round(self._temp, 2),
            reagent_vol=round(self._reagent, 1),
            sample_count=self._sample_count,
            last_error=self._last_error,
            throughput=self._throughput if running else 0,
        )

    # ============ State Machine ============

    def reset_error(self) -> bool:
        """
        Clear an active fault (Error -> Idle)

        Returns:
            True if a fault was cleared, False if there was nothing to clear
        """
        with self._lock:
            if self._status != InstrumentStatus.ERROR:
                return False

            cleared = self._last_error
            self._status = InstrumentStatus.IDLE
            self._last_error = None
            self._throughput = 0

        logger.info(f"Fault cleared: {cleared}")
        return True

    def force_error(self, message: Optional[str] = None) -> None:
        """Put the instrument into Error with the profile's fault (or a given message)"""
        with self._lock:
            self._status = InstrumentStatus.ERROR
            self._last_error = message or self.profile.fault_message
            self._throughput = 0

    # ============ Sampling ============

    def qc_series(self) -> List[QCDataPoint]:
        """Fresh QC series: mean + U(-sd, sd), plus the late shift where configured"""
        profile = self.profile
        mean, sd = profile.qc_mean, profile.qc_sd

        points = []
        with self._lock:
            for batch in range(1, profile.qc_points + 1):
                value = mean + float(self.rng.uniform(-sd, sd))
                if profile.qc_shift_from is not None and batch >= profile.qc_shift_from:
                    value += profile.qc_shift_sd * sd
                points.append(QCDataPoint(batch=batch, value=value, mean=mean, sd=sd))

        return points

    def draw(self, generator: Callable[[RandomSource], T]) -> T:
        """Run a sampling function against the random source under the lock"""
        with self._lock:
            return generator(self.rng)


# ============ Shared Driver Helpers ============

async def simulate_handshake(delay: float, timeout: float, driver_id: str) -> None:
    """
    Simulated link latency, bounded by timeout

    Raises:
        DriverConnectionError: If the handshake does not finish within timeout
    """
    try:
        await asyncio.wait_for(asyncio.sleep(delay), timeout=timeout)
    except asyncio.TimeoutError:
        raise DriverConnectionError(
            driver_id, f"handshake timed out after {timeout}s"
        ) from None


def apply_command(
    model: TelemetryModel,
    driver_id: str,
    command: str,
    reset_message: str,
    reject_unknown: bool = False,
) -> CommandResult:
    """
    Command dispatch shared by the simulated drivers

    RESET_ERROR always succeeds, whether or not a fault was active.
    Unknown commands are acknowledged unless reject_unknown is set.
    """
    if command == RESET_ERROR:
        cleared = model.reset_error()
        logger.info(f"{driver_id}: {RESET_ERROR} (fault cleared={cleared})")
        return CommandResult(success=True, message=reset_message)

    if reject_unknown:
        logger.warning(f"{driver_id}: rejected unknown command {command}")
        raise CommandRejectedError(driver_id, command)

    logger.info(f"{driver_id}: command {command} acknowledged (no-op)")
    return CommandResult(success=True, message=f"Command {command} received.")
