#!/usr/bin/env python3
"""
Demo script for the simulated analyzers
"""

import sys
import json
import asyncio
import httpx
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.hal.drivers.base import ConnectionConfig
from services.hal.drivers.simulation import RESET_ERROR
from services.hal.monitor import InstrumentMonitor
from services.hal.qc import control_limits, summarize_qc
from services.hal.registry import create_default_registry

API_URL = "http://localhost:8080"
TICKS = 10


def print_state(label: str, state) -> None:
    print(
        f"  {label:>8}: {state.status.value:<8} "
        f"T={state.reaction_temp:.2f}°C  reagent={state.reagent_vol:.1f}%  "
        f"{state.throughput} T/H  error={state.last_error or '-'}"
    )


async def run_local_simulation(seed: int = 42):
    """Tick every simulated analyzer locally, then force and clear a fault"""
    print("\n=== Running Local Simulation ===")

    registry = create_default_registry(ConnectionConfig(seed=seed, handshake_delay=0.05))
    monitor = InstrumentMonitor(registry, "Chemistry", poll_interval=60)

    for name in registry.list_drivers():
        await monitor.switch_driver(name)
        driver = monitor.driver
        print(f"\n{name}: {driver.metadata.manufacturer} {driver.metadata.model}")

        for i in range(TICKS):
            snapshot = await monitor.poll_once()
            if i % 3 == 0:
                print_state(f"tick {i}", snapshot.state)

        limits = control_limits(monitor.qc_data)
        print(f"  QC: {summarize_qc(monitor.qc_data)}")
        print(f"  QC limits: ±2SD [{limits.lower_2sd:g}, {limits.upper_2sd:g}]")

        peak = max(monitor.latest.reaction_curve, key=lambda p: p.od)
        print(f"  Curve peak: t={peak.time}, od={peak.od}")

    # Fault injection on the active driver, then operator reset
    driver = monitor.driver
    driver.model.force_error()
    snapshot = await monitor.poll_once()
    print_state("fault", snapshot.state)

    result = await monitor.execute_command(RESET_ERROR)
    print(f"  {RESET_ERROR}: {result.message}")
    print_state("reset", monitor.latest.state)

    await monitor.stop()


async def test_api():
    """Exercise the running API"""
    print("\n=== Testing API Endpoints ===")

    async with httpx.AsyncClient(base_url=API_URL) as client:
        response = await client.get("/health")
        if response.status_code == 200:
            print("✓ API is healthy")
        else:
            print("✗ API health check failed")
            return

        response = await client.post("/drivers/active", json={"driver_name": "Lifotronic"})
        response.raise_for_status()
        print(f"Active driver: {response.json()['metadata']['model']}")

        response = await client.get("/telemetry")
        print(json.dumps(response.json()["state"], indent=2))

        response = await client.post("/commands", json={"command": RESET_ERROR})
        print(f"{RESET_ERROR}: {response.json()['message']}")

        response = await client.post("/reports", json={"report_type": "Daily Status Report"})
        print(response.json()["content"])


def main():
    """Main demo function"""
    print("=" * 50)
    print("IVD Instrument Simulation Demo")
    print("=" * 50)

    asyncio.run(run_local_simulation())

    # Test API if available
    try:
        response = httpx.get(f"{API_URL}/health", timeout=2.0)
        if response.status_code == 200:
            print("\nAPI is running - testing endpoints...")
            asyncio.run(test_api())
        else:
            print("\nAPI returned non-200 status")
    except (httpx.ConnectError, httpx.TimeoutException):
        print("\nAPI not available - run 'python -m services.api.main' to start it")

    print("\n" + "=" * 50)
    print("Demo completed!")
    print("=" * 50)


if __name__ == "__main__":
    main()
