"""Rally-peak / pullback state machine used to anchor dip measurements.

The tracker follows the running high (``candidate_peak``). Once price draws
down from it by at least ``pullback_pct`` the machine enters a pullback and
follows the pullback low; a close that reclaims ``reclaim_pct`` above that
low commits the candidate as the new ``anchor_peak`` and the search resumes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Protocol


class TrackerPhase(str, Enum):
    SEEKING_PEAK = "SEEKING_PEAK"
    IN_PULLBACK = "IN_PULLBACK"


class PriceBar(Protocol):
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class TrackerState:
    phase: TrackerPhase = TrackerPhase.SEEKING_PEAK
    candidate_peak: Optional[float] = None
    pullback_low: Optional[float] = None
    anchor_peak: Optional[float] = None

    @property
    def reference_peak(self) -> Optional[float]:
        """Last committed anchor, or the running high before any full cycle."""
        return self.anchor_peak if self.anchor_peak is not None else self.candidate_peak


def step(state: TrackerState, bar: PriceBar, pullback_pct: float, reclaim_pct: float) -> TrackerState:
    """Advance the tracker by one bar and return the new state."""
    high, low, close = float(bar.high), float(bar.low), float(bar.close)

    candidate = state.candidate_peak
    if candidate is None or high > candidate:
        candidate = high
    state = replace(state, candidate_peak=candidate)
    if candidate <= 0:
        return state

    if state.phase is TrackerPhase.SEEKING_PEAK:
        drawdown = (candidate - low) / candidate
        if drawdown >= pullback_pct:
            return replace(state, phase=TrackerPhase.IN_PULLBACK, pullback_low=low)
        return state

    pullback_low = low if state.pullback_low is None else min(state.pullback_low, low)
    if pullback_low <= 0:
        return replace(state, pullback_low=pullback_low)
    reclaim = (close - pullback_low) / pullback_low
    if reclaim >= reclaim_pct:
        return TrackerState(
            phase=TrackerPhase.SEEKING_PEAK,
            candidate_peak=candidate,
            pullback_low=None,
            anchor_peak=candidate,
        )
    return replace(state, pullback_low=pullback_low)


class PeakPullbackTracker:
    """Stateful convenience wrapper around :func:`step`."""

    def __init__(self, pullback_pct: float, reclaim_pct: float):
        self.pullback_pct = float(pullback_pct)
        self.reclaim_pct = float(reclaim_pct)
        self.state = TrackerState()

    def on_bar(self, bar: PriceBar) -> Optional[float]:
        self.state = step(self.state, bar, self.pullback_pct, self.reclaim_pct)
        return self.anchor_peak()

    def anchor_peak(self) -> Optional[float]:
        return self.state.reference_peak


def scan(bars: Iterable[PriceBar], pullback_pct: float, reclaim_pct: float) -> TrackerState:
    """Run a fresh tracker over ``bars`` and return the final state."""
    state = TrackerState()
    for bar in bars:
        state = step(state, bar, pullback_pct, reclaim_pct)
    return state
