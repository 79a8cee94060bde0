"""
Test the shared telemetry simulation engine
"""

import asyncio

import numpy as np
import pytest

from services.hal.drivers.base import InstrumentStatus
from services.hal.drivers.simulation import (
    RESET_ERROR,
    DriverProfile,
    TelemetryModel,
    apply_command,
    clamp,
    create_rng,
    simulate_handshake,
)
from services.hal.exceptions import CommandRejectedError, DriverConnectionError

PROFILE = DriverProfile(
    temp_jitter=0.2,
    temp_min=36.9,
    temp_max=37.1,
    reagent_rate=0.5,
    error_probability=0.1,
    fault_message="E-001: Test Fault",
    throughput_nominal=100,
    throughput_jitter=10,
    qc_mean=10.0,
    qc_sd=1.0,
    qc_points=5,
    qc_shift_from=4,
    qc_shift_sd=2.0,
    initial_sample_count=7,
)


def test_clamp():
    assert clamp(5.0, 0.0, 10.0) == 5.0
    assert clamp(-1.0, 0.0, 10.0) == 0.0
    assert clamp(11.0, 0.0, 10.0) == 10.0

    # Open bounds
    assert clamp(-100.0, None, 10.0) == -100.0
    assert clamp(100.0, 0.0, None) == 100.0
    assert clamp(42.0) == 42.0


def test_create_rng_is_reproducible():
    a = create_rng(7)
    b = create_rng(7)
    assert [a.uniform(0, 1) for _ in range(5)] == [b.uniform(0, 1) for _ in range(5)]
    assert isinstance(create_rng(), np.random.Generator)


def test_initial_state():
    model = TelemetryModel(PROFILE)
    state = model.snapshot()

    assert state.status == InstrumentStatus.RUNNING
    assert state.reaction_temp == 37.0
    assert state.reagent_vol == 100.0
    assert state.sample_count == 7
    assert state.last_error is None
    assert state.throughput == 105


def test_tick_running(scripted_rng):
    """Drift, depletion and throughput applied while running"""
    rng = scripted_rng(default=0.9, fraction=1.0, integer_offset=3)
    model = TelemetryModel(PROFILE, rng)

    state = model.tick()

    # +0.1 drift (upper end of U(-0.1, 0.1))
    assert state.reaction_temp == 37.1
    assert state.reagent_vol == 99.5
    assert state.status == InstrumentStatus.RUNNING
    assert state.throughput == 103
    assert rng.calls == {"random": 1, "uniform": 1, "integers": 1}


def test_tick_clamps_temperature(scripted_rng):
    rng = scripted_rng(default=0.9, fraction=1.0)
    model = TelemetryModel(PROFILE, rng)

    for _ in range(10):
        state = model.tick()
        assert 36.9 <= state.reaction_temp <= 37.1

    rng.fraction = 0.0
    for _ in range(10):
        state = model.tick()
    assert state.reaction_temp == 36.9


def test_tick_reagent_floor(scripted_rng):
    model = TelemetryModel(PROFILE, scripted_rng(default=0.9))

    for _ in range(250):
        state = model.tick()

    assert state.reagent_vol == 0.0


def test_tick_injects_fault(scripted_rng):
    """A draw below the error probability puts the instrument into Error"""
    rng = scripted_rng(randoms=[0.05])
    model = TelemetryModel(PROFILE, rng)

    state = model.tick()

    assert state.status == InstrumentStatus.ERROR
    assert state.last_error == "E-001: Test Fault"
    assert state.throughput == 0
    assert model.has_error()


def test_error_state_is_frozen(scripted_rng):
    """While in Error: no fault draws, no depletion, throughput 0, temperature still drifts"""
    rng = scripted_rng(randoms=[0.05], fraction=1.0)
    model = TelemetryModel(PROFILE, rng)
    faulted = model.tick()

    random_calls = rng.calls["random"]
    for _ in range(5):
        state = model.tick()

    assert rng.calls["random"] == random_calls
    assert rng.calls["uniform"] == 6
    assert state.reagent_vol == faulted.reagent_vol
    assert state.throughput == 0
    assert state.last_error == faulted.last_error


def test_reset_error(scripted_rng):
    model = TelemetryModel(PROFILE, scripted_rng(randoms=[0.05]))
    model.tick()

    assert model.reset_error() is True
    state = model.snapshot()
    assert state.status == InstrumentStatus.IDLE
    assert state.last_error is None
    assert state.throughput == 0

    # Nothing left to clear
    assert model.reset_error() is False
    assert model.snapshot() == state


def test_idle_does_not_deplete(scripted_rng):
    rng = scripted_rng(randoms=[0.05])
    model = TelemetryModel(PROFILE, rng)
    model.tick()
    model.reset_error()
    before = model.snapshot()

    for _ in range(20):
        state = model.tick()

    assert state.status == InstrumentStatus.IDLE
    assert state.reagent_vol == before.reagent_vol
    assert state.throughput == 0


def test_force_error():
    model = TelemetryModel(PROFILE)

    model.force_error()
    assert model.snapshot().last_error == "E-001: Test Fault"

    model.force_error("E-999: Custom")
    state = model.snapshot()
    assert state.status == InstrumentStatus.ERROR
    assert state.last_error == "E-999: Custom"


def test_snapshot_is_a_copy():
    model = TelemetryModel(PROFILE)
    state = model.snapshot()
    state.reagent_vol = 0.0

    assert model.snapshot().reagent_vol == 100.0


def test_slow_depletion_is_not_lost_to_rounding(scripted_rng):
    """Internal state keeps full precision; only snapshots are rounded"""
    profile = PROFILE.model_copy(update={"reagent_rate": 0.02, "error_probability": 0.0})
    model = TelemetryModel(profile, scripted_rng())

    for _ in range(50):
        state = model.tick()

    assert state.reagent_vol == 99.0


def test_qc_series(scripted_rng):
    model = TelemetryModel(PROFILE, scripted_rng(fraction=1.0))

    points = model.qc_series()

    assert [p.batch for p in points] == [1, 2, 3, 4, 5]
    assert all(p.mean == 10.0 and p.sd == 1.0 for p in points)
    # mean + sd, plus 2 SD from batch 4
    assert [p.value for p in points] == [11.0, 11.0, 11.0, 13.0, 13.0]


def test_qc_series_does_not_touch_telemetry():
    model = TelemetryModel(PROFILE, create_rng(3))
    before = model.snapshot()

    model.qc_series()

    assert model.snapshot() == before


def test_draw_runs_against_model_rng(scripted_rng):
    rng = scripted_rng(fraction=0.25)
    model = TelemetryModel(PROFILE, rng)

    assert model.draw(lambda r: r.uniform(0, 4)) == 1.0
    assert rng.calls["uniform"] == 1


@pytest.mark.asyncio
async def test_simulate_handshake_timeout():
    await simulate_handshake(0, 1.0, "x-1")

    with pytest.raises(DriverConnectionError) as exc_info:
        await simulate_handshake(0.5, 0.01, "x-1")

    assert isinstance(exc_info.value, ConnectionError)
    assert exc_info.value.driver_id == "x-1"
    assert "timed out" in str(exc_info.value)


@pytest.mark.asyncio
async def test_simulate_handshake_is_cancellable():
    task = asyncio.create_task(simulate_handshake(10, 30, "x-1"))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_apply_command():
    model = TelemetryModel(PROFILE)
    model.force_error()

    result = apply_command(model, "x-1", RESET_ERROR, reset_message="Cleared.")
    assert result.success is True
    assert result.message == "Cleared."
    assert model.snapshot().status == InstrumentStatus.IDLE

    # Reset with nothing to clear still succeeds
    assert apply_command(model, "x-1", RESET_ERROR, reset_message="Cleared.").success

    result = apply_command(model, "x-1", "PRIME_PROBE", reset_message="Cleared.")
    assert result.success is True
    assert result.message == "Command PRIME_PROBE received."


def test_apply_command_strict():
    model = TelemetryModel(PROFILE)

    with pytest.raises(CommandRejectedError) as exc_info:
        apply_command(model, "x-1", "PRIME_PROBE", reset_message="Cleared.", reject_unknown=True)
    assert exc_info.value.command == "PRIME_PROBE"

    # Case-sensitive: reset_error is not RESET_ERROR
    with pytest.raises(CommandRejectedError):
        apply_command(model, "x-1", "reset_error", reset_message="Cleared.", reject_unknown=True)
