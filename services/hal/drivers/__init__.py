"""
HAL Instrument Drivers

Pluggable simulators for IVD analyzers sharing one driver contract
"""

from .base import (
    BaseInstrumentDriver,
    CommandResult,
    ConnectionConfig,
    DriverMetadata,
    InstrumentState,
    InstrumentStatus,
    InstrumentType,
    QCDataPoint,
    ReactionCurvePoint,
)
from .simulation import DriverProfile, RandomSource, TelemetryModel, create_rng
from .chemistry import ChemistryAnalyzerDriver
from .immunoassay import ImmunoassayDriver
from .ecl import LifotronicECLDriver

__all__ = [
    "BaseInstrumentDriver",
    "CommandResult",
    "ConnectionConfig",
    "DriverMetadata",
    "InstrumentState",
    "InstrumentStatus",
    "InstrumentType",
    "QCDataPoint",
    "ReactionCurvePoint",
    "DriverProfile",
    "RandomSource",
    "TelemetryModel",
    "create_rng",
    "ChemistryAnalyzerDriver",
    "ImmunoassayDriver",
    "LifotronicECLDriver",
]
