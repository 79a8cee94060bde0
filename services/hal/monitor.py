"""
Instrument Monitor - Poll Orchestrator

Keeps a single "current instrument" view live: on a fixed cadence it pulls
telemetry and the reaction curve from the active driver and publishes a
snapshot to subscribers (WebSocket clients, the API, the demo script).

Lifecycle: connect on activation, disconnect on deactivation. Switching the
active driver awaits the old driver's disconnect before the new handshake.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field

from services.hal.drivers.base import (
    BaseInstrumentDriver,
    CommandResult,
    DriverMetadata,
    InstrumentState,
    InstrumentStatus,
    QCDataPoint,
    ReactionCurvePoint,
)
from services.hal.exceptions import DriverConnectionError
from services.hal.registry import DriverRegistry

logger = logging.getLogger(__name__)

# Prometheus metrics
poll_duration_seconds = Histogram(
    "ivd_poll_duration_seconds",
    "Time spent in one telemetry + curve poll",
    ["driver"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)

polls_total = Counter(
    "ivd_polls_total",
    "Total telemetry polls",
    ["driver", "status"]  # success, error
)

instrument_faults_total = Counter(
    "ivd_instrument_faults_total",
    "Instrument fault transitions observed by the monitor",
    ["driver", "code"]
)

snapshots_dropped_total = Counter(
    "ivd_snapshots_dropped_total",
    "Snapshots dropped because a subscriber queue was full"
)


class MonitorSnapshot(BaseModel):
    """One published poll result"""
    driver_name: str
    driver: DriverMetadata
    state: InstrumentState
    reaction_curve: List[ReactionCurvePoint]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def fault_code(last_error: Optional[str]) -> str:
    """'E-304: Vertical Motor Step Loss' -> 'E-304'"""
    if not last_error:
        return "unknown"
    return last_error.split(":", 1)[0].strip()


class InstrumentMonitor:
    """
    Polls the active driver and republishes its state

    Example:
        monitor = InstrumentMonitor(create_default_registry(), "Chemistry", poll_interval=2.0)
        await monitor.start()

        queue = monitor.subscribe()
        snapshot = await queue.get()

        await monitor.switch_driver("Lifotronic")
        await monitor.stop()
    """

    def __init__(
        self,
        registry: DriverRegistry,
        driver_name: str,
        poll_interval: float = 2.0,
        connect_timeout: Optional[float] = None,
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")

        registry.get(driver_name)  # fail fast on unknown key

        self.registry = registry
        self.driver_name = driver_name
        self.poll_interval = poll_interval
        self.connect_timeout = connect_timeout

        self.latest: Optional[MonitorSnapshot] = None
        self.qc_data: List[QCDataPoint] = []

        self._task: Optional[asyncio.Task] = None
        self._subscribers: Set[asyncio.Queue] = set()
        self._switch_lock = asyncio.Lock()

        logger.info(
            f"InstrumentMonitor initialized: driver={driver_name}, "
            f"poll_interval={poll_interval}s"
        )

    @property
    def driver(self) -> BaseInstrumentDriver:
        return self.registry.get(self.driver_name)

    def is_running(self) -> bool:
        """Check if the poll loop is active"""
        return self._task is not None and not self._task.done()

    # ============ Lifecycle ============

    async def start(self) -> None:
        """
        Connect the active driver, load its QC series and start polling

        Raises:
            DriverConnectionError: If the handshake fails or times out
        """
        if self.is_running():
            return

        driver = self.driver
        await driver.connect(timeout=self.connect_timeout)
        logger.info(
            f"Connected to {driver.metadata.manufacturer} {driver.metadata.model} "
            f"({self.driver_name})"
        )

        await self.refresh_qc()
        await self.poll_once()

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop polling and disconnect the active driver"""
        await self._cancel_loop()
        await self.driver.disconnect()
        logger.info(f"Monitor stopped ({self.driver_name})")

    async def switch_driver(self, name: str) -> None:
        """
        Make another registered driver the active one

        Raises:
            KeyError: If name is not registered (nothing is torn down)
            DriverConnectionError: If the new driver fails to connect; the
                previous driver is reconnected and polled again first
        """
        self.registry.get(name)

        async with self._switch_lock:
            if name == self.driver_name and self.is_running():
                return

            previous = self.driver_name
            was_running = self.is_running()
            await self._activate(name)

            logger.info(f"Switching driver: {previous} -> {name}")
            try:
                await self.start()
            except DriverConnectionError as e:
                logger.error(
                    f"Switch to {name} failed ({e}); restoring {previous}",
                    extra={"driver": name}
                )
                await self._activate(previous)
                if was_running:
                    await self.start()
                raise

    async def _activate(self, name: str) -> None:
        """Stop polling, release the current driver and point at another one"""
        await self._cancel_loop()
        await self.driver.disconnect()

        self.driver_name = name
        self.latest = None
        self.qc_data = []

    async def _cancel_loop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        """Poll on a fixed cadence until cancelled"""
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                # Skip this tick; the next one may succeed
                logger.error(
                    f"Poll failed for {self.driver_name}: {e}",
                    exc_info=True,
                    extra={"driver": self.driver_name}
                )

    # ============ Polling ============

    async def poll_once(self) -> MonitorSnapshot:
        """Pull one telemetry tick and one reaction curve, then publish"""
        name = self.driver_name
        driver = self.driver

        try:
            with poll_duration_seconds.labels(driver=name).time():
                state = await driver.get_telemetry()
                curve = await driver.get_reaction_curve()
        except Exception:
            polls_total.labels(driver=name, status="error").inc()
            raise

        polls_total.labels(driver=name, status="success").inc()

        previous = self.latest.state if self.latest and self.latest.driver_name == name else None
        if state.status == InstrumentStatus.ERROR and (
            previous is None or previous.status != InstrumentStatus.ERROR
        ):
            instrument_faults_total.labels(driver=name, code=fault_code(state.last_error)).inc()
            logger.error(
                f"{driver.metadata.model} fault: {state.last_error}",
                extra={"driver": name}
            )

        snapshot = MonitorSnapshot(
            driver_name=name,
            driver=driver.metadata,
            state=state,
            reaction_curve=curve,
        )
        self.latest = snapshot
        self._publish(snapshot)

        return snapshot

    async def refresh_qc(self, test_id: Optional[str] = None) -> List[QCDataPoint]:
        """Fetch a fresh QC series from the active driver"""
        self.qc_data = await self.driver.get_qc_data(test_id)
        return self.qc_data

    async def execute_command(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None
    ) -> CommandResult:
        """
        Forward a command to the active driver, then refresh telemetry at once

        Raises:
            CommandRejectedError: If the driver refuses the command
        """
        result = await self.driver.execute_command(command, params)
        await self.poll_once()
        return result

    # ============ Subscribers ============

    def subscribe(self, max_queue: int = 10) -> asyncio.Queue:
        """
        Register a subscriber queue

        The latest snapshot (if any) is delivered immediately. When the queue
        is full the oldest snapshot is dropped in favour of the newest.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._subscribers.add(queue)

        if self.latest is not None:
            queue.put_nowait(self.latest)

        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _publish(self, snapshot: MonitorSnapshot) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                    snapshots_dropped_total.inc()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(snapshot)
