"""
IVD Instrument Service

FastAPI backend for the instrument dashboard. Owns the driver registry and
the poll orchestrator, and exposes telemetry, QC, reaction curves, commands
and the AI assistant to the browser UI.

Architecture:
- Registry holds one long-lived simulated driver per analyzer
- InstrumentMonitor polls the active driver every POLL_INTERVAL seconds
- REST endpoints read the latest snapshot; /ws/telemetry streams them
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from services.api.assistance import AssistanceService
from services.api.clients.gemini import GeminiClient
from services.api.config import settings
from services.api.exceptions import (
    DriverNotFoundException,
    MonitorNotReadyException,
    register_exception_handlers,
)
from services.api.logging_config import get_logger, setup_logging
from services.api.metrics import record_command, record_driver_switch, setup_metrics
from services.api.middleware import setup_middleware
from services.api.models import (
    AssistRequest,
    AssistResponse,
    CommandRequest,
    CommandResponse,
    DriverInfo,
    DriverListResponse,
    HealthResponse,
    QCResponse,
    ReactionCurveResponse,
    ReportRequest,
    ReportResponse,
    SelectDriverRequest,
    TelemetryResponse,
)
from services.api.routers import websocket_router
from services.hal.drivers.base import ConnectionConfig
from services.hal.drivers.simulation import RESET_ERROR
from services.hal.exceptions import CommandRejectedError, DriverConnectionError
from services.hal.monitor import InstrumentMonitor, MonitorSnapshot
from services.hal.qc import control_limits, summarize_qc
from services.hal.registry import DriverRegistry, create_default_registry

# Configure logging
setup_logging()
logger = get_logger(__name__)


def build_connection_config() -> ConnectionConfig:
    return ConnectionConfig(
        timeout=settings.connect_timeout,
        handshake_delay=settings.handshake_delay,
        seed=settings.random_seed,
        reject_unknown_commands=settings.reject_unknown_commands,
    )


# ============ Lifespan Management ============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the registry and monitor, connect the default driver, clean up on exit"""
    logger.info("Starting IVD instrument service...")

    registry = create_default_registry(build_connection_config())
    monitor = InstrumentMonitor(
        registry,
        settings.default_driver,
        poll_interval=settings.poll_interval,
        connect_timeout=settings.connect_timeout,
    )

    gemini: Optional[GeminiClient] = None
    if settings.assistance_enabled:
        gemini = GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.assistance_timeout,
            max_retries=settings.assistance_max_retries,
        )
        gemini.open()
    else:
        logger.warning("GEMINI_API_KEY not set - assistant runs in offline mode")

    app.state.registry = registry
    app.state.monitor = monitor
    app.state.assistance = AssistanceService(gemini)

    try:
        await monitor.start()
        record_driver_switch(monitor.driver_name, monitor.driver.metadata.model)
    except DriverConnectionError as e:
        # Keep serving; /health reports degraded until a driver is selected again
        logger.error(f"Failed to connect default driver: {e}")

    yield

    logger.info("Shutting down IVD instrument service...")
    await monitor.stop()
    if gemini:
        await gemini.aclose()
    logger.info("IVD instrument service stopped")


# ============ FastAPI App ============

app = FastAPI(
    title="IVD Instrument Service",
    description="Simulated IVD analyzer telemetry, QC and assistance API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.environment != "production" else None,
    redoc_url="/api/redoc" if settings.environment != "production" else None,
)

# Setup all middleware (CORS, request IDs, security headers)
setup_middleware(app)

# Setup Prometheus metrics (after middleware, before exception handlers)
instrumentator = setup_metrics(app)

# Expose /metrics endpoint for Prometheus scraping
@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

# Register exception handlers
register_exception_handlers(app)

# Include WebSocket router
app.include_router(websocket_router)


# ============ Dependencies ============

def get_registry(request: Request) -> DriverRegistry:
    return request.app.state.registry


def get_monitor(request: Request) -> InstrumentMonitor:
    return request.app.state.monitor


def get_assistance(request: Request) -> AssistanceService:
    return request.app.state.assistance


def latest_snapshot(monitor: InstrumentMonitor = Depends(get_monitor)) -> MonitorSnapshot:
    if monitor.latest is None:
        raise MonitorNotReadyException()
    return monitor.latest


def driver_info(registry: DriverRegistry, name: str, active_name: str) -> DriverInfo:
    driver = registry.get(name)
    return DriverInfo(
        name=name,
        metadata=driver.metadata,
        connected=driver.is_connected(),
        active=name == active_name,
    )


# ============ Endpoints ============

@app.get("/health", response_model=HealthResponse)
async def health_check(
    monitor: InstrumentMonitor = Depends(get_monitor),
    assistance: AssistanceService = Depends(get_assistance),
):
    """Health check endpoint"""
    polling = monitor.is_running()
    return HealthResponse(
        status="healthy" if polling else "degraded",
        active_driver=monitor.driver_name,
        driver_connected=monitor.driver.is_connected(),
        polling=polling,
        assistance_online=assistance.online,
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/drivers", response_model=DriverListResponse)
async def list_drivers(
    registry: DriverRegistry = Depends(get_registry),
    monitor: InstrumentMonitor = Depends(get_monitor),
):
    """List registered drivers and which one is active"""
    return DriverListResponse(
        active_driver=monitor.driver_name,
        drivers=[
            driver_info(registry, name, monitor.driver_name)
            for name in registry.list_drivers()
        ],
    )


@app.get("/drivers/active", response_model=DriverInfo)
async def get_active_driver(
    registry: DriverRegistry = Depends(get_registry),
    monitor: InstrumentMonitor = Depends(get_monitor),
):
    return driver_info(registry, monitor.driver_name, monitor.driver_name)


@app.post("/drivers/active", response_model=DriverInfo)
async def select_driver(
    request: SelectDriverRequest,
    registry: DriverRegistry = Depends(get_registry),
    monitor: InstrumentMonitor = Depends(get_monitor),
):
    """
    Switch the active instrument

    Example:
        POST /drivers/active
        {"driver_name": "Lifotronic"}
    """
    if request.driver_name not in registry:
        raise DriverNotFoundException(request.driver_name, registry.list_drivers())

    await monitor.switch_driver(request.driver_name)
    record_driver_switch(monitor.driver_name, monitor.driver.metadata.model)

    logger.info(f"Active driver: {monitor.driver_name}")
    return driver_info(registry, monitor.driver_name, monitor.driver_name)


@app.get("/telemetry", response_model=TelemetryResponse)
async def get_telemetry(snapshot: MonitorSnapshot = Depends(latest_snapshot)):
    """Latest polled instrument state"""
    return TelemetryResponse(
        driver_name=snapshot.driver_name,
        driver=snapshot.driver,
        state=snapshot.state,
        timestamp=snapshot.timestamp,
    )


@app.get("/reaction-curve", response_model=ReactionCurveResponse)
async def get_reaction_curve(snapshot: MonitorSnapshot = Depends(latest_snapshot)):
    """Reaction curve from the latest poll"""
    return ReactionCurveResponse(
        driver_name=snapshot.driver_name,
        points=snapshot.reaction_curve,
        timestamp=snapshot.timestamp,
    )


def qc_response(monitor: InstrumentMonitor) -> QCResponse:
    points = monitor.qc_data
    return QCResponse(
        driver_name=monitor.driver_name,
        points=points,
        limits=control_limits(points),
        summary=summarize_qc(points),
    )


@app.get("/qc", response_model=QCResponse)
async def get_qc(monitor: InstrumentMonitor = Depends(get_monitor)):
    """QC series loaded when the driver was activated, with control limits"""
    if not monitor.qc_data:
        await monitor.refresh_qc()
    return qc_response(monitor)


@app.post("/qc/refresh", response_model=QCResponse)
async def refresh_qc(monitor: InstrumentMonitor = Depends(get_monitor)):
    """Draw a fresh QC series from the active driver"""
    await monitor.refresh_qc()
    return qc_response(monitor)


@app.post("/commands", response_model=CommandResponse)
async def execute_command(
    request: CommandRequest,
    monitor: InstrumentMonitor = Depends(get_monitor),
):
    """
    Send a command to the active instrument

    Example:
        POST /commands
        {"command": "RESET_ERROR"}
    """
    label = request.command if request.command == RESET_ERROR else "other"

    try:
        result = await monitor.execute_command(request.command, request.params)
    except CommandRejectedError:
        record_command(monitor.driver_name, label, accepted=False)
        raise

    record_command(monitor.driver_name, label, accepted=True)
    return CommandResponse(
        success=result.success,
        message=result.message,
        state=monitor.latest.state,
    )


@app.post("/assist", response_model=AssistResponse)
async def assist(
    request: AssistRequest,
    snapshot: MonitorSnapshot = Depends(latest_snapshot),
    assistance: AssistanceService = Depends(get_assistance),
):
    """Troubleshooting answer grounded in the current telemetry"""
    text = await assistance.generate_assistance(request.query, snapshot.state)
    return AssistResponse(text=text, online=assistance.online)


@app.post("/reports", response_model=ReportResponse)
async def generate_report(
    request: ReportRequest,
    snapshot: MonitorSnapshot = Depends(latest_snapshot),
    monitor: InstrumentMonitor = Depends(get_monitor),
    assistance: AssistanceService = Depends(get_assistance),
):
    """
    Generate a Markdown report for the active instrument

    Report types: Daily Status Report, Monthly QC Summary, Calibration
    Certificate, Maintenance Log, Error History Audit, Reagent Usage Report.
    """
    content = await assistance.generate_report(
        snapshot.state,
        summarize_qc(monitor.qc_data),
        request.report_type,
    )
    return ReportResponse(
        report_type=request.report_type,
        content=content,
        online=assistance.online,
        generated_at=datetime.now(timezone.utc),
    )


# ============ Main Entry Point ============

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
