"""
Integration Test: The Poll Loop

End-to-end run of the monitoring pipeline with the real handshake latencies:
Registry -> InstrumentMonitor -> Driver -> subscriber queue

Test Scenario:
1. Build the default registry and start the monitor on Chemistry
2. Collect live snapshots from a subscriber queue
3. Force an E-304 fault and see it arrive, with the aberrant curve
4. Send RESET_ERROR and see Idle arrive immediately
5. Switch through every analyzer and back
6. Stop and verify cleanup

Success Criteria:
- Handshakes complete within the configured timeout
- Every snapshot satisfies the telemetry invariants
- The reset is visible without waiting for the next tick
- Only the active driver is ever connected
"""

import asyncio

import pytest

from services.hal.drivers.base import ConnectionConfig, InstrumentStatus
from services.hal.monitor import InstrumentMonitor, MonitorSnapshot
from services.hal.registry import create_default_registry

POLL_INTERVAL = 0.05


def assert_valid(snapshot: MonitorSnapshot):
    state = snapshot.state
    assert (state.last_error is not None) == (state.status == InstrumentStatus.ERROR)
    if state.status != InstrumentStatus.RUNNING:
        assert state.throughput == 0
    assert len(snapshot.reaction_curve) == 60


async def collect(queue: asyncio.Queue, count: int):
    return [await asyncio.wait_for(queue.get(), timeout=5.0) for _ in range(count)]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_poll_loop():
    registry = create_default_registry(ConnectionConfig(seed=2024, timeout=2.0))
    monitor = InstrumentMonitor(registry, "Chemistry", poll_interval=POLL_INTERVAL)
    queue = monitor.subscribe(max_queue=100)

    await monitor.start()
    try:
        # Step 2: live snapshots
        snapshots = await collect(queue, 5)
        for snapshot in snapshots:
            assert snapshot.driver_name == "Chemistry"
            assert_valid(snapshot)
            assert 36.7 <= snapshot.state.reaction_temp <= 37.3

        # Step 3: fault
        monitor.driver.model.force_error()
        while True:
            snapshot = await asyncio.wait_for(queue.get(), timeout=5.0)
            if snapshot.state.status == InstrumentStatus.ERROR:
                break

        assert snapshot.state.last_error == "E-304: Vertical Motor Step Loss"
        assert max(p.od for p in snapshot.reaction_curve) <= 1.2

        # Step 4: reset is published by the command itself
        result = await monitor.execute_command("RESET_ERROR")
        assert result.success is True
        assert monitor.latest.state.status == InstrumentStatus.IDLE

        # Step 5: switch through every analyzer
        for name in ["Immunoassay", "Lifotronic", "Chemistry"]:
            await monitor.switch_driver(name)

            connected = [key for key, driver in registry.items() if driver.is_connected()]
            assert connected == [name]

            snapshot = monitor.latest
            assert snapshot.driver_name == name
            assert_valid(snapshot)

        # Chemistry resumes its own session
        assert monitor.latest.state.status == InstrumentStatus.IDLE
    finally:
        await monitor.stop()
        monitor.unsubscribe(queue)

    # Step 6: cleanup
    assert not monitor.is_running()
    assert not any(driver.is_connected() for _, driver in registry.items())
