"""
Clinical Chemistry Analyzer Driver

Simulates a high-speed photometric chemistry analyzer (Mindray BS-Series /
Roche cobas c-series class). Generates colorimetric reaction curves (OD) and
ALT-like QC with a late positive shift for exercising shift detection.
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

CHEMISTRY_PROFILE = DriverProfile(
    temp_jitter=0.15,  # stable PID loop
    temp_min=36.7,
    temp_max=37.3,
    reagent_rate=0.08,  # high throughput, fast consumption
    error_probability=0.005,
    fault_message="E-304: Vertical Motor Step Loss",
    throughput_nominal=780,
    throughput_jitter=40,
    qc_mean=45.0,
    qc_sd=1.5,
    qc_shift_from=16,
    qc_shift_sd=1.0,
    initial_sample_count=1240,
)

CURVE_POINTS = 60


def smooth_kinetics(rng: RandomSource) -> List[ReactionCurvePoint]:
    """Saturating absorbance rise with sub-milli-OD noise"""
    return [
        ReactionCurvePoint(
            time=t,
            od=round(1.8 * (1 - math.exp(-0.08 * t)) + float(rng.uniform(0, 0.005)), 4),
        )
        for t in range(1, CURVE_POINTS + 1)
    ]


def aberrant_kinetics(rng: RandomSource) -> List[ReactionCurvePoint]:
    """Noisy, lower-plateau curve shown while a fault is active (hook-effect like)"""
    return [
        ReactionCurvePoint(
            time=t,
            od=round((1 - math.exp(-0.1 * t)) + float(rng.uniform(0, 0.2)), 4),
        )
        for t in range(1, CURVE_POINTS + 1)
    ]


class ChemistryAnalyzerDriver(BaseInstrumentDriver):
    """
    Simulated clinical chemistry analyzer

    Telemetry:
    - Reaction disk held at 37.0 C, clamped to [36.7, 37.3]
    - 0.08 %/tick reagent consumption while running
    - 0.5 % chance per running tick of E-304 motor step loss
    - 780-819 tests/hour while running
    """

    metadata = DriverMetadata(
        id="chem-001",
        manufacturer="Mindray",
        model="BS-2000M",
        version="3.1.2",
        type=InstrumentType.CHEMISTRY,
    )

    handshake_delay = 0.5  # TCP/IP

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        rng: Optional[RandomSource] = None,
        profile: DriverProfile = CHEMISTRY_PROFILE,
    ):
        super().__init__(config)
        self.model = TelemetryModel(profile, rng if rng is not None else create_rng(self.config.seed))

    async def connect(self, timeout: Optional[float] = None) -> bool:
        logger.info(f"Connecting to {self.metadata.model} via TCP/IP...")
        delay = self.config.handshake_delay
        await simulate_handshake(
            self.handshake_delay if delay is None else delay,
            self.config.timeout if timeout is None else timeout,
            self.metadata.id,
        )
        self._connected = True
        logger.info(f"{self.metadata.model} connected")
        return True

    async def disconnect(self) -> None:
        logger.info(f"Disconnecting from {self.metadata.model}...")
        self._connected = False

    async def get_info(self) -> Dict[str, Any]:
        info = self.metadata.model_dump(mode="json")
        info["connected"] = self._connected
        info["status"] = self.model.snapshot().status.value
        info["analyte"] = "ALT"
        return info

    async def get_telemetry(self) -> InstrumentState:
        return self.model.tick()

    async def get_qc_data(self, test_id: Optional[str] = None) -> List[QCDataPoint]:
        """ALT/AST-like control with tight CV and a late +1 SD shift on batches 16-20"""
        return self.model.qc_series()

    async def get_reaction_curve(self, sample_id: Optional[str] = None) -> List[ReactionCurvePoint]:
        # Curve shape follows the error state at the time of the call
        if self.model.has_error():
            return self.model.draw(aberrant_kinetics)
        return self.model.draw(smooth_kinetics)

    async def execute_command(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None
    ) -> CommandResult:
        return apply_command(
            self.model,
            self.metadata.id,
            command,
            reset_message="Error cleared. System Idle.",
            reject_unknown=self.config.reject_unknown_commands,
        )
