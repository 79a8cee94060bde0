"""
Prometheus metrics configuration for the IVD instrument service
Provides observability for API performance, commands and the assistant
"""

from prometheus_client import Counter, Gauge, Info
from prometheus_fastapi_instrumentator import Instrumentator, metrics
from fastapi import FastAPI
import logging

logger = logging.getLogger(__name__)

# Custom metrics for the instrument domain

ivd_commands_total = Counter(
    "ivd_commands_total",
    "Total instrument commands executed",
    ["driver", "command", "outcome"]  # accepted, rejected
)

ivd_driver_switches_total = Counter(
    "ivd_driver_switches_total",
    "Total active-driver switches",
    ["driver"]
)

ivd_websocket_connections = Gauge(
    "ivd_websocket_connections",
    "Number of active telemetry WebSocket connections"
)

ivd_websocket_messages_total = Counter(
    "ivd_websocket_messages_total",
    "Total telemetry snapshots sent over WebSocket"
)

ivd_active_driver = Info(
    "ivd_active_driver",
    "Currently active instrument driver"
)

ivd_info = Info(
    "ivd_app",
    "IVD instrument service information"
)


def setup_metrics(app: FastAPI) -> Instrumentator:
    """
    Setup Prometheus metrics for FastAPI application

    Args:
        app: FastAPI application instance

    Returns:
        Configured Instrumentator instance
    """

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health"],
        env_var_name="ENABLE_METRICS",
        inprogress_name="ivd_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.latency(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
            metric_name="ivd_request_duration_seconds",
            metric_doc="HTTP request latency",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )
    )

    instrumentator.add(
        metrics.requests(
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
            metric_name="ivd_http_requests_total",
            metric_doc="Total HTTP requests",
        )
    )

    ivd_info.info({
        "version": "0.1.0",
        "platform": "ivd_instrument_simulation",
    })

    instrumentator.instrument(app)

    logger.info("Prometheus metrics configured successfully")

    return instrumentator


# Helper functions for updating custom metrics

def record_command(driver: str, command: str, accepted: bool):
    """Record an instrument command"""
    outcome = "accepted" if accepted else "rejected"
    ivd_commands_total.labels(driver=driver, command=command, outcome=outcome).inc()


def record_driver_switch(driver_name: str, model: str):
    """Record a change of active driver"""
    ivd_driver_switches_total.labels(driver=driver_name).inc()
    ivd_active_driver.info({"name": driver_name, "model": model})
