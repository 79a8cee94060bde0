"""
Lifotronic ECL Analyzer Driver (Electro-chemiluminescence)

Simulates a Lifotronic ECL9000: 300 T/H, robust temperature control and a
sharp voltage-induced light spike followed by a decay tail.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from .base import (
    BaseInstrumentDriver,
    CommandResult,
    ConnectionConfig,
    DriverMetadata,
    InstrumentState,
    InstrumentType,
    QCDataPoint,
    ReactionCurvePoint,
)
from .simulation import (
    DriverProfile,
    RandomSource,
    TelemetryModel,
    apply_command,
    create_rng,
    simulate_handshake,
)

logger = logging.getLogger(__name__)

ECL_PROFILE = DriverProfile(
    temp_jitter=0.10,
    reagent_rate=0.04,
    error_probability=0.001,
    fault_message="E-808: High Voltage Output Abnormal",
    throughput_nominal=300,
    qc_mean=1200.0,
    qc_sd=25.0,
    initial_sample_count=2100,
)

SPIKE_PEAK = 15
SPIKE_WIDTH = 2.5
SPIKE_AMPLITUDE = 500000
TAIL_AMPLITUDE = 10000
TAIL_DECAY = 0.1
SIGNAL_SCALE = 200000


def ecl_signal(t: int) -> float:
    """Normalised ECL emission at cycle t"""
    spike = SPIKE_AMPLITUDE * math.exp(-0.5 * ((t - SPIKE_PEAK) / SPIKE_WIDTH) ** 2)
    tail = TAIL_AMPLITUDE * math.exp(-TAIL_DECAY * (t - SPIKE_PEAK)) if t > SPIKE_PEAK else 0.0
    return (spike + tail) / SIGNAL_SCALE


class LifotronicECLDriver(BaseInstrumentDriver):
    """
    Simulated electro-chemiluminescence immunoassay analyzer

    Talks to the instrument over a serial interface; the spike is triggered by
    the electrode voltage, so high-voltage faults (E-808) are its failure mode.
    """

    metadata = DriverMetadata(
        id="ecl-9000-cn",
        manufacturer="Lifotronic",
        model="ECL9000",
        version="2.0.1",
        type=InstrumentType.IMMUNOASSAY,
    )

    handshake_delay = 0.6  # serial

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        rng: Optional[RandomSource] = None,
        profile: DriverProfile = ECL_PROFILE,
    ):
        super().__init__(config)
        self.model = TelemetryModel(profile, rng if rng is not None else create_rng(self.config.seed))

    async def connect(self, timeout: Optional[float] = None) -> bool:
        logger.info(f"Connecting to {self.metadata.manufacturer} {self.metadata.model} serial interface...")
        delay = self.config.handshake_delay
        await simulate_handshake(
            self.handshake_delay if delay is None else delay,
            self.config.timeout if timeout is None else timeout,
            self.metadata.id,
        )
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_info(self) -> Dict[str, Any]:
        info = self.metadata.model_dump(mode="json")
        info["connected"] = self._connected
        info["status"] = self.model.snapshot().status.value
        info["analyte"] = "TSH"
        return info

    async def get_telemetry(self) -> InstrumentState:
        return self.model.tick()

    async def get_qc_data(self, test_id: Optional[str] = None) -> List[QCDataPoint]:
        return self.model.qc_series()

    async def get_reaction_curve(self, sample_id: Optional[str] = None) -> List[ReactionCurvePoint]:
        return [
            ReactionCurvePoint(time=t, od=round(ecl_signal(t), 4))
            for t in range(1, 61)
        ]

    async def execute_command(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None
    ) -> CommandResult:
        return apply_command(
            self.model,
            self.metadata.id,
            command,
            reset_message="HV Module Reset.",
            reject_unknown=self.config.reject_unknown_commands,
        )
