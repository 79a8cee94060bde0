"""
Assistance layer

Builds prompts from instrument telemetry and QC summaries and hands them to a
text-generation client. The client is optional: without one (no API key) or
when it fails, callers get a fixed offline message instead of an error.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Protocol

from prometheus_client import Counter

from services.hal.drivers.base import InstrumentState
from services.hal.exceptions import AssistanceUnavailableError

logger = logging.getLogger(__name__)

assistance_requests_total = Counter(
    "ivd_assistance_requests_total",
    "Assistance requests by kind and outcome",
    ["kind", "outcome"]  # chat/report | generated, offline, unavailable
)

DEFAULT_REPORT_TYPE = "Daily Status Report"

OFFLINE_ASSISTANCE_MESSAGE = (
    "API Key not configured. Using offline simulation mode: Based on the current "
    "instrument state, please check the reagents and ensure the reaction disk "
    "temperature is within 37.0°C ± 0.3°C. (This is a mock response)"
)

UNAVAILABLE_ASSISTANCE_MESSAGE = (
    "Error communicating with IVD-Copilot cloud service. Please check network connection."
)

UNAVAILABLE_REPORT_MESSAGE = "Error generating report. Please check network."

GENERAL_REPORT_FOCUS = (
    "Provide a general executive summary of the system's operational health, "
    "throughput efficiency, and immediate attention items."
)

REPORT_FOCUS: Dict[str, str] = {
    "Daily Status Report": GENERAL_REPORT_FOCUS,
    "Monthly QC Summary": (
        "Focus on statistical analysis, Westgard rule violations, Levey-Jennings trends, "
        "and Coefficient of Variation (CV%) for the last 30 days. Simulate realistic "
        "statistical data."
    ),
    "Calibration Certificate": (
        "Generate a formal calibration certificate. Include Slope, Intercept, and "
        "R-Squared values for key analytes (ALT, AST, TSH). Certify that the instrument "
        "meets linearity requirements."
    ),
    "Maintenance Log": (
        "List recent maintenance activities such as 'Photometer Lamp check', "
        "'Needle Wash', 'Reaction Cuvette cleaning'. Confirm schedule adherence."
    ),
    "Error History Audit": (
        "Analyze the recent error logs. If 'lastError' is present, provide a detailed "
        "root cause analysis and prevention strategy. If none, confirm error-free operation."
    ),
    "Reagent Usage Report": (
        "Detail reagent consumption rates, remaining onboard volume, and predicted days "
        "until replenishment is needed for high-volume tests."
    ),
}

REPORT_TYPES = list(REPORT_FOCUS)


class AssistanceClient(Protocol):
    """Anything that turns a prompt into text (GeminiClient, test fakes)"""

    async def generate(self, prompt: str, temperature: float = 0.2) -> str:
        ...


def offline_report(state: InstrumentState, report_type: str) -> str:
    return (
        f"# Offline Mode Report: {report_type}\n\n"
        f"API Key is missing. Cannot generate AI report.\n\n"
        f"Current Status: {state.status.value}"
    )


def build_assistance_prompt(query: str, state: InstrumentState) -> str:
    """System context with live telemetry followed by the user's question"""
    return f"""
You are IVD-Copilot, an expert AI assistant for high-end In-Vitro Diagnostic instruments.

CURRENT INSTRUMENT TELEMETRY:
- Status: {state.status.value}
- Reaction Temperature: {state.reaction_temp:.2f}°C (Target: 37.0°C)
- Reagent Remaining: {state.reagent_vol}%
- Throughput: {state.throughput} T/H
- Active Error: {state.last_error or "None"}

YOUR ROLE:
1. Analyze technical issues based on the provided telemetry.
2. Suggest troubleshooting steps for errors (e.g., E-304 Motor Step Loss, Temperature drift).
3. Interpret QC (Quality Control) trends using Westgard rules concepts.
4. Be professional, concise, and safety-oriented.

If the user asks about an error, reference standard maintenance procedures (check belts, sensors, voltage).

User Query: {query}
""".strip()


def build_report_prompt(
    state: InstrumentState,
    qc_summary: str,
    report_type: str = DEFAULT_REPORT_TYPE,
    generated_at: Optional[datetime] = None
) -> str:
    """Report prompt; unknown report types fall back to the general summary focus"""
    focus = REPORT_FOCUS.get(report_type, GENERAL_REPORT_FOCUS)
    timestamp = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")

    return f"""
Generate a professional "{report_type}" for a Clinical Diagnostic Analyzer.

DATA SOURCE:
- Timestamp: {timestamp}
- Instrument Status: {state.status.value}
- Reaction Temperature: {state.reaction_temp:.2f}°C
- Reagent Level: {state.reagent_vol}%
- Throughput: {state.throughput} T/H
- Current Error: {state.last_error or "None"}
- QC Summary: {qc_summary}

REPORT GUIDELINES:
- Focus: {focus}
- Format: Use Markdown. Include professional headers, bullet points, and mock data tables where appropriate.
- Title: "IVD-Copilot | {report_type}"
- Tone: Formal, Technical, Clinical Engineering style.
""".strip()


class AssistanceService:
    """
    Chat and report generation with offline fallbacks

    Never raises to the caller and never returns an empty string.
    """

    def __init__(self, client: Optional[AssistanceClient] = None):
        self.client = client

    @property
    def online(self) -> bool:
        return self.client is not None

    async def generate_assistance(self, query: str, state: InstrumentState) -> str:
        if self.client is None:
            assistance_requests_total.labels(kind="chat", outcome="offline").inc()
            return OFFLINE_ASSISTANCE_MESSAGE

        try:
            text = await self.client.generate(build_assistance_prompt(query, state), temperature=0.2)
        except AssistanceUnavailableError as e:
            logger.error(f"Assistance unavailable: {e}")
            assistance_requests_total.labels(kind="chat", outcome="unavailable").inc()
            return UNAVAILABLE_ASSISTANCE_MESSAGE

        assistance_requests_total.labels(kind="chat", outcome="generated").inc()
        return text or "No response generated."

    async def generate_report(
        self,
        state: InstrumentState,
        qc_summary: Optional[str] = None,
        report_type: str = DEFAULT_REPORT_TYPE
    ) -> str:
        if self.client is None:
            assistance_requests_total.labels(kind="report", outcome="offline").inc()
            return offline_report(state, report_type)

        prompt = build_report_prompt(state, qc_summary or "No QC data available", report_type)
        try:
            text = await self.client.generate(prompt, temperature=0.3)
        except AssistanceUnavailableError as e:
            logger.error(f"Report generation unavailable: {e}")
            assistance_requests_total.labels(kind="report", outcome="unavailable").inc()
            return UNAVAILABLE_REPORT_MESSAGE

        assistance_requests_total.labels(kind="report", outcome="generated").inc()
        return text or "Report generation failed."
