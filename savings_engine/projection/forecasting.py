"""
Income Forecasting

Pure functions over income history: cadence detection, the moving-average
forecast basis, date advancement and the projection loop itself.

DESIGN DECISION: Nothing here touches a store or reads the time. "Now" is
always passed in, so the same inputs always give the same projection.
"""

import calendar
import math
from datetime import datetime, timedelta
from typing import Optional, Sequence

from savings_engine.models.plan import IncomeTransaction
from savings_engine.models.projection import (
    IncomeFrequency,
    IncomePattern,
    ProjectionPoint,
)

SECONDS_PER_DAY = 24 * 60 * 60

# (low, high) mean gap in days, inclusive
CADENCE_RANGES = (
    (IncomeFrequency.WEEKLY, 6, 8),
    (IncomeFrequency.BIWEEKLY, 13, 16),
    (IncomeFrequency.MONTHLY, 28, 32),
)
MAX_GAP_VARIATION = 0.3


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end is earlier)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def mean_and_stddev(values: Sequence[float]) -> tuple[float, float]:
    """Arithmetic mean and population standard deviation."""
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return mean, math.sqrt(variance)


def detect_income_frequency(transactions: Sequence[IncomeTransaction]) -> IncomePattern:
    """
    Classify the cadence of income events.

    Gaps are whole days between consecutive events (oldest first). A cadence
    is only recognized when the gaps are consistent: standard deviation
    under 30% of the mean. The rounded mean gap is returned either way.
    """
    if len(transactions) < 2:
        return IncomePattern(frequency=IncomeFrequency.IRREGULAR, average_days_between=30)

    ordered = sorted(transactions, key=lambda tx: tx.date)
    gaps = [
        round(days_between(earlier.date, later.date))
        for earlier, later in zip(ordered, ordered[1:])
    ]
    mean, stddev = mean_and_stddev(gaps)

    frequency = IncomeFrequency.IRREGULAR
    if stddev < mean * MAX_GAP_VARIATION:
        for candidate, low, high in CADENCE_RANGES:
            if low <= mean <= high:
                frequency = candidate
                break

    return IncomePattern(frequency=frequency, average_days_between=round(mean))


def moving_average(transactions: Sequence[IncomeTransaction], periods: int = 3) -> float:
    """Mean amount of the `periods` most recent income events; 0 if none."""
    if not transactions:
        return 0.0
    recent = sorted(transactions, key=lambda tx: tx.date, reverse=True)[:periods]
    return sum(tx.in_amount for tx in recent) / len(recent)


def add_months(value: datetime, months: int) -> datetime:
    """Same day N calendar months later, clamped to the last day of short months."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_income_date(value: datetime, pattern: IncomePattern) -> datetime:
    """Date of the income event following `value` under the detected cadence."""
    if pattern.frequency == IncomeFrequency.WEEKLY:
        return value + timedelta(days=7)
    if pattern.frequency == IncomeFrequency.BIWEEKLY:
        return value + timedelta(days=14)
    if pattern.frequency == IncomeFrequency.MONTHLY:
        return add_months(value, 1)
    return value + timedelta(days=pattern.average_days_between)


def project(
    start_total: float,
    start_date: datetime,
    horizon: datetime,
    percentage: float,
    income_per_event: float,
    pattern: IncomePattern,
    target_amount: Optional[float] = None,
    max_steps: int = 12,
) -> tuple[list[ProjectionPoint], Optional[datetime]]:
    """
    Simulate future income events and the plan's running total.

    Steps until max_steps events have been generated or the running date
    reaches the horizon. The achievement date is the first event whose
    running total meets the target; later events never move it.

    Returns:
        (projection points, goal achievement date or None)
    """
    points: list[ProjectionPoint] = []
    total = start_total
    current = start_date
    achieved_at = None

    for _ in range(max_steps):
        if current >= horizon:
            break
        current = next_income_date(current, pattern)
        allocation = income_per_event * percentage / 100
        total += allocation
        points.append(ProjectionPoint(
            date=current,
            projected_income=income_per_event,
            projected_allocation=allocation,
            cumulative_total=total,
        ))
        if achieved_at is None and target_amount and total >= target_amount:
            achieved_at = current

    return points, achieved_at
