# tests/test_countdown.py

from __future__ import annotations

import asyncio

import pytest

from kanban_sync.reminders.countdown import CountdownTicker, compute_countdown
from kanban_sync.tasks.task_models import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE

NOW = 1_000_000_000_000


def test_countdown_labels() -> None:
    assert compute_countdown(NOW, NOW).label == "Vencida"
    assert compute_countdown(NOW - 1, NOW).overdue
    assert compute_countdown(NOW + 2 * MS_PER_DAY + 3 * MS_PER_HOUR + 59_000, NOW).label == "2d 3h"
    assert compute_countdown(NOW + MS_PER_HOUR + 2 * MS_PER_MINUTE + 3_999, NOW).label == "01:02:03"


def test_countdown_components() -> None:
    cd = compute_countdown(NOW + MS_PER_DAY + 5 * MS_PER_MINUTE, NOW)

    assert (cd.days, cd.hours, cd.minutes, cd.seconds) == (1, 0, 5, 0)
    assert not cd.overdue


@pytest.mark.asyncio
async def test_ticker_runs_until_stopped() -> None:
    ticks = []
    ticker = CountdownTicker(NOW + 10_000, ticks.append, interval_seconds=0.01, clock=lambda: NOW)

    ticker.start()
    await asyncio.sleep(0.05)
    await ticker.stop()
    seen = len(ticks)
    await asyncio.sleep(0.03)

    assert seen >= 2
    assert len(ticks) == seen
    assert not ticker.running
    assert ticks[0].label == "00:00:10"
