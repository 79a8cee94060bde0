"""
QC series helpers

Levey-Jennings control limits and the one-line summary handed to the
report generator.
"""

from typing import Sequence

from pydantic import BaseModel

from services.hal.drivers.base import QCDataPoint


class ControlLimits(BaseModel):
    """Mean with +/-2SD (warning) and +/-3SD (action) limits"""
    mean: float
    sd: float
    lower_2sd: float
    upper_2sd: float
    lower_3sd: float
    upper_3sd: float


def control_limits(points: Sequence[QCDataPoint]) -> ControlLimits:
    """
    Control limits of a QC series

    Every point of a series carries the same target mean/SD; the first
    point's values are used.

    Raises:
        ValueError: If the series is empty
    """
    if not points:
        raise ValueError("QC series is empty")

    mean, sd = points[0].mean, points[0].sd
    return ControlLimits(
        mean=mean,
        sd=sd,
        lower_2sd=mean - 2 * sd,
        upper_2sd=mean + 2 * sd,
        lower_3sd=mean - 3 * sd,
        upper_3sd=mean + 3 * sd,
    )


def summarize_qc(points: Sequence[QCDataPoint]) -> str:
    """Short summary of the latest batch (kept brief to save prompt tokens)"""
    if not points:
        return "No QC data available"

    last = points[-1]
    return (
        f"Latest Batch: {last.batch}, Value: {last.value:.2f} "
        f"(Mean: {last.mean:g}, SD: {last.sd:g})"
    )
