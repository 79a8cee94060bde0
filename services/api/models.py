"""
Request/response models for the instrument service API
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from services.hal.drivers.base import (
    DriverMetadata,
    InstrumentState,
    QCDataPoint,
    ReactionCurvePoint,
)
from services.hal.qc import ControlLimits
from services.api.assistance import DEFAULT_REPORT_TYPE


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    active_driver: str
    driver_connected: bool
    polling: bool
    assistance_online: bool
    timestamp: datetime


class DriverInfo(BaseModel):
    name: str
    metadata: DriverMetadata
    connected: bool
    active: bool


class DriverListResponse(BaseModel):
    active_driver: str
    drivers: List[DriverInfo]


class SelectDriverRequest(BaseModel):
    """Request to switch the active driver"""
    driver_name: str = Field(..., min_length=1, description="Registry key (Chemistry, Immunoassay, Lifotronic)")


class TelemetryResponse(BaseModel):
    driver_name: str
    driver: DriverMetadata
    state: InstrumentState
    timestamp: datetime


class QCResponse(BaseModel):
    driver_name: str
    points: List[QCDataPoint]
    limits: ControlLimits
    summary: str


class ReactionCurveResponse(BaseModel):
    driver_name: str
    points: List[ReactionCurvePoint]
    timestamp: datetime


class CommandRequest(BaseModel):
    """Instrument command"""
    command: str = Field(..., min_length=1, max_length=64)
    params: Optional[Dict[str, Any]] = None

    @field_validator("command")
    @classmethod
    def strip_command(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Command must not be blank")
        return v


class CommandResponse(BaseModel):
    success: bool
    message: str
    state: InstrumentState


class AssistRequest(BaseModel):
    """Free-text question for the assistant"""
    query: str = Field(..., min_length=1, max_length=4000)


class AssistResponse(BaseModel):
    text: str
    online: bool


class ReportRequest(BaseModel):
    report_type: str = Field(DEFAULT_REPORT_TYPE, min_length=1, max_length=100)


class ReportResponse(BaseModel):
    report_type: str
    content: str
    online: bool
    generated_at: datetime
