"""
Test the assistance layer and its offline fallbacks
"""

from datetime import datetime

import pytest

from services.api.assistance import (
    DEFAULT_REPORT_TYPE,
    GENERAL_REPORT_FOCUS,
    OFFLINE_ASSISTANCE_MESSAGE,
    REPORT_FOCUS,
    REPORT_TYPES,
    UNAVAILABLE_ASSISTANCE_MESSAGE,
    UNAVAILABLE_REPORT_MESSAGE,
    AssistanceService,
    build_assistance_prompt,
    build_report_prompt,
)
from services.hal.drivers.base import InstrumentState, InstrumentStatus
from services.hal.exceptions import AssistanceUnavailableError


class FakeClient:
    """Records prompts and returns a canned answer"""

    def __init__(self, answer="Check the cuvette wash station."):
        self.answer = answer
        self.prompts = []

    async def generate(self, prompt, temperature=0.2):
        self.prompts.append((prompt, temperature))
        return self.answer


class FailingClient:
    async def generate(self, prompt, temperature=0.2):
        raise AssistanceUnavailableError("network unreachable")


@pytest.fixture
def faulted_state() -> InstrumentState:
    return InstrumentState(
        status=InstrumentStatus.ERROR,
        reaction_temp=37.123,
        reagent_vol=64.2,
        sample_count=1240,
        last_error="E-304: Vertical Motor Step Loss",
        throughput=0,
    )


def test_report_types():
    assert DEFAULT_REPORT_TYPE == "Daily Status Report"
    assert len(REPORT_TYPES) == 6
    assert "Reagent Usage Report" in REPORT_TYPES


def test_assistance_prompt(faulted_state):
    prompt = build_assistance_prompt("Why did the motor stop?", faulted_state)

    assert "Status: Error" in prompt
    assert "37.12°C" in prompt
    assert "Reagent Remaining: 64.2%" in prompt
    assert "Active Error: E-304: Vertical Motor Step Loss" in prompt
    assert prompt.endswith("User Query: Why did the motor stop?")


def test_report_prompt(faulted_state):
    prompt = build_report_prompt(
        faulted_state,
        "Latest Batch: 20, Value: 46.40 (Mean: 45, SD: 1.5)",
        "Monthly QC Summary",
        generated_at=datetime(2024, 5, 1, 8, 30),
    )

    assert '"Monthly QC Summary"' in prompt
    assert "Timestamp: 2024-05-01 08:30:00" in prompt
    assert "QC Summary: Latest Batch: 20" in prompt
    assert REPORT_FOCUS["Monthly QC Summary"] in prompt
    assert 'Title: "IVD-Copilot | Monthly QC Summary"' in prompt


def test_report_prompt_unknown_type_uses_general_focus(faulted_state):
    prompt = build_report_prompt(faulted_state, "No QC data available", "Shift Handover")

    assert GENERAL_REPORT_FOCUS in prompt


@pytest.mark.asyncio
async def test_offline_assistance(faulted_state):
    service = AssistanceService()

    assert service.online is False
    assert await service.generate_assistance("Help", faulted_state) == OFFLINE_ASSISTANCE_MESSAGE


@pytest.mark.asyncio
async def test_offline_report(faulted_state):
    service = AssistanceService()

    report = await service.generate_report(faulted_state, report_type="Maintenance Log")

    assert report.startswith("# Offline Mode Report: Maintenance Log")
    assert "Current Status: Error" in report


@pytest.mark.asyncio
async def test_online_assistance(faulted_state):
    client = FakeClient()
    service = AssistanceService(client)

    text = await service.generate_assistance("What now?", faulted_state)

    assert text == "Check the cuvette wash station."
    prompt, temperature = client.prompts[0]
    assert "What now?" in prompt
    assert temperature == 0.2


@pytest.mark.asyncio
async def test_online_report(faulted_state):
    client = FakeClient("# IVD-Copilot | Daily Status Report")
    service = AssistanceService(client)

    report = await service.generate_report(faulted_state)

    assert report == "# IVD-Copilot | Daily Status Report"
    prompt, temperature = client.prompts[0]
    assert "QC Summary: No QC data available" in prompt
    assert temperature == 0.3


@pytest.mark.asyncio
async def test_unavailable_client_falls_back(faulted_state):
    service = AssistanceService(FailingClient())

    assert await service.generate_assistance("Help", faulted_state) == UNAVAILABLE_ASSISTANCE_MESSAGE
    assert await service.generate_report(faulted_state) == UNAVAILABLE_REPORT_MESSAGE


@pytest.mark.asyncio
async def test_never_returns_empty_text(faulted_state):
    service = AssistanceService(FakeClient(answer=""))

    assert await service.generate_assistance("Help", faulted_state) == "No response generated."
    assert await service.generate_report(faulted_state) == "Report generation failed."
