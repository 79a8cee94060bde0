"""
Immunoassay Analyzer Driver (Chemiluminescence)

Simulates a Beckman Access 2 / Siemens Centaur class analyzer: lower
throughput, tighter temperature control and a flash-type light signal.
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

IMMUNOASSAY_PROFILE = DriverProfile(
    temp_jitter=0.05,
    reagent_rate=0.02,
    error_probability=0.002,
    fault_message="E-501: Cuvette Transport Jam",
    throughput_nominal=100,
    qc_mean=5.2,  # TSH
    qc_sd=0.4,
    initial_sample_count=450,
)

FLASH_PEAK = 30
FLASH_WIDTH = 5.0
FLASH_AMPLITUDE = 200000  # RLU
RLU_SCALE = 100000  # RLU -> chart OD range


def flash_curve() -> List[ReactionCurvePoint]:
    """Gaussian chemiluminescent flash, normalised to the OD chart range"""
    points = []
    for t in range(1, 61):
        rlu = FLASH_AMPLITUDE * math.exp(-0.5 * ((t - FLASH_PEAK) / FLASH_WIDTH) ** 2)
        points.append(ReactionCurvePoint(time=t, od=round(rlu / RLU_SCALE, 4)))
    return points


class ImmunoassayDriver(BaseInstrumentDriver):
    """Simulated chemiluminescence immunoassay analyzer (100 T/H)"""

    metadata = DriverMetadata(
        id="ia-002",
        manufacturer="Beckman",
        model="Access 2 Pro",
        version="1.0.4",
        type=InstrumentType.IMMUNOASSAY,
    )

    handshake_delay = 0.8

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        rng: Optional[RandomSource] = None,
        profile: DriverProfile = IMMUNOASSAY_PROFILE,
    ):
        super().__init__(config)
        self.model = TelemetryModel(profile, rng if rng is not None else create_rng(self.config.seed))

    async def connect(self, timeout: Optional[float] = None) -> bool:
        delay = self.config.handshake_delay
        await simulate_handshake(
            self.handshake_delay if delay is None else delay,
            self.config.timeout if timeout is None else timeout,
            self.metadata.id,
        )
        self._connected = True
        logger.info(f"{self.metadata.manufacturer} {self.metadata.model} connected")
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
        # Immunoassay controls run at a higher CV than chemistry
        return self.model.qc_series()

    async def get_reaction_curve(self, sample_id: Optional[str] = None) -> List[ReactionCurvePoint]:
        return flash_curve()

    async def execute_command(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None
    ) -> CommandResult:
        return apply_command(
            self.model,
            self.metadata.id,
            command,
            reset_message="Transport cleared.",
            reject_unknown=self.config.reject_unknown_commands,
        )
