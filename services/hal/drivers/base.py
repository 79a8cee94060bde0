"""
Base Instrument Driver Interface

Abstract base class for all IVD instrument drivers with strict typing.
Ensures consistent interface across simulated analyzers and future
hardware adapters.

Telemetry models are plain data: they are produced by drivers and consumed
by the monitor, the API and the assistance layer.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator
import logging

logger = logging.getLogger(__name__)


class InstrumentStatus(str, Enum):
    """Instrument operational mode"""
    IDLE = "Idle"
    RUNNING = "Running"
    MAINTENANCE = "Maintenance"
    ERROR = "Error"


class InstrumentType(str, Enum):
    """Analyzer families a driver can represent"""
    CHEMISTRY = "Chemistry"
    IMMUNOASSAY = "Immunoassay"
    HEMATOLOGY = "Hematology"
    MOLECULAR = "Molecular"


class ConnectionConfig(BaseModel):
    """Driver construction options (vendor-agnostic)"""
    timeout: float = Field(5.0, gt=0, description="Connect timeout (s)")
    handshake_delay: Optional[float] = Field(
        None, ge=0, description="Override simulated handshake latency (s)"
    )

    # Simulation-specific
    seed: Optional[int] = None  # For reproducible testing
    reject_unknown_commands: bool = False


class InstrumentState(BaseModel):
    """Telemetry snapshot of one instrument"""
    model_config = ConfigDict(populate_by_name=True)

    status: InstrumentStatus
    reaction_temp: float = Field(..., alias="reactionTemp", description="Reaction temperature (C)")
    reagent_vol: float = Field(..., alias="reagentVol", ge=0, description="Reagent remaining (%)")
    sample_count: int = Field(..., alias="sampleCount", ge=0)
    last_error: Optional[str] = Field(None, alias="lastError")
    throughput: int = Field(0, ge=0, description="Tests per hour")

    @model_validator(mode="after")
    def check_error_consistency(self):
        """A fault message is present exactly when the instrument is in Error"""
        has_error = self.last_error is not None
        if has_error != (self.status == InstrumentStatus.ERROR):
            raise ValueError("last_error must be set if and only if status is Error")
        return self


class QCDataPoint(BaseModel):
    """Single control measurement in a QC series"""
    model_config = ConfigDict(frozen=True)

    batch: int = Field(..., ge=1)
    value: float
    mean: float
    sd: float = Field(..., gt=0)


class ReactionCurvePoint(BaseModel):
    """Single point of a kinetic/signal curve (OD or normalised RLU)"""
    model_config = ConfigDict(frozen=True)

    time: int = Field(..., ge=1, description="Cycle index")
    od: float


class DriverMetadata(BaseModel):
    """Driver identity, fixed at construction"""
    model_config = ConfigDict(frozen=True)

    id: str
    manufacturer: str
    model: str
    version: str
    type: InstrumentType


class CommandResult(BaseModel):
    """Outcome of executeCommand"""
    success: bool
    message: str


class BaseInstrumentDriver(ABC):
    """
    Abstract interface for all IVD instrument drivers

    All drivers must implement this interface to ensure:
    - Consistent API across vendors
    - Telemetry snapshots that callers cannot mutate
    - Interchangeability behind the registry

    Example:
        class CobasDriver(BaseInstrumentDriver):
            async def connect(self, timeout=None):
                # Roche-specific handshake
                ...

            async def get_telemetry(self):
                # Poll the instrument controller
                ...
    """

    metadata: DriverMetadata

    def __init__(self, config: Optional[ConnectionConfig] = None):
        self.config = config or ConnectionConfig()
        self._connected = False

    # ============ Connection Management ============

    @abstractmethod
    async def connect(self, timeout: Optional[float] = None) -> bool:
        """
        Establish connection to instrument

        Args:
            timeout: Maximum wait in seconds (defaults to config.timeout)

        Returns:
            True once the handshake completed

        Raises:
            DriverConnectionError: If the handshake fails or times out
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection gracefully (never raises)"""
        pass

    @abstractmethod
    async def get_info(self) -> Dict[str, Any]:
        """
        Get instrument metadata

        Returns:
            Dict with keys: id, manufacturer, model, version, type, connected, status
        """
        pass

    # ============ Telemetry ============

    @abstractmethod
    async def get_telemetry(self) -> InstrumentState:
        """
        Advance the instrument model by one tick and return the new state

        Safe to call repeatedly on a fixed cadence.
        """
        pass

    @abstractmethod
    async def get_qc_data(self, test_id: Optional[str] = None) -> List[QCDataPoint]:
        """
        Produce a fresh QC series around the analyte's mean/SD

        Does not mutate telemetry state.
        """
        pass

    @abstractmethod
    async def get_reaction_curve(self, sample_id: Optional[str] = None) -> List[ReactionCurvePoint]:
        """
        Produce a fresh reaction/signal curve for one simulated sample

        Shape may depend on the current error state.
        """
        pass

    # ============ Commands ============

    @abstractmethod
    async def execute_command(
        self,
        command: str,
        params: Optional[Dict[str, Any]] = None
    ) -> CommandResult:
        """
        Apply a named command to the instrument

        RESET_ERROR clears an active fault (Error -> Idle).

        Raises:
            CommandRejectedError: If the driver is configured to refuse unknown commands
        """
        pass

    def is_connected(self) -> bool:
        """Check if a handshake has completed and not been released"""
        return self._connected
