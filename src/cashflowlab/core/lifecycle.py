"""
Lifecycle phase lookup.

Phases are sorted by start age once; the active phase for a month is found by
binary search over the start ages.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

import numpy as np

from .errors import NoActivePhaseAtStart
from .specs import LifecyclePhase
from .utils import age_in_years, month_when_age_reached, months_between


@dataclass(frozen=True)
class GlidePosition:
    """Where month ``t`` sits relative to the upcoming phase transition."""

    active: LifecyclePhase
    next: LifecyclePhase | None
    months_into: int
    glidepath_months: int


class PhaseSchedule:
    """
    Sorted arena of lifecycle phases for one household.

    Example:
        ```python
        schedule = PhaseSchedule(phases, date(1990, 5, 17))
        phase = schedule.active_phase(np.datetime64("2026-01"))
        ```
    """

    def __init__(self, phases: Iterable[LifecyclePhase], date_of_birth: date):
        self.phases: tuple[LifecyclePhase, ...] = tuple(
            sorted(phases, key=lambda p: (p.start_age, p.id))
        )
        self.date_of_birth = date_of_birth
        self._start_ages = [p.start_age for p in self.phases]

    def __len__(self) -> int:
        return len(self.phases)

    def index_for_age(self, age: int) -> int | None:
        i = bisect_right(self._start_ages, age) - 1
        return i if i >= 0 else None

    def age_at(self, t: np.datetime64) -> int:
        return age_in_years(self.date_of_birth, t)

    def active_index(self, t: np.datetime64) -> int:
        age = self.age_at(t)
        i = self.index_for_age(age)
        if i is None:
            earliest = self._start_ages[0] if self._start_ages else None
            raise NoActivePhaseAtStart(age, earliest)
        return i

    def active_phase(self, t: np.datetime64) -> LifecyclePhase:
        return self.phases[self.active_index(t)]

    def next_phase(self, t: np.datetime64) -> LifecyclePhase | None:
        i = self.active_index(t) + 1
        return self.phases[i] if i < len(self.phases) else None

    def phase_start_month(self, phase: LifecyclePhase) -> np.datetime64:
        return month_when_age_reached(self.date_of_birth, phase.start_age)

    def glide_position(self, t: np.datetime64) -> GlidePosition:
        """
        Glide-path position for month ``t``.

        The glide path belongs to the upcoming phase: it spans the
        ``glidepath_months`` months before that phase starts. ``months_into``
        counts from the beginning of that window and may be negative (not yet
        gliding); callers clamp the resulting fraction.
        """
        i = self.active_index(t)
        active = self.phases[i]
        if i + 1 >= len(self.phases):
            return GlidePosition(active, None, 0, 0)
        upcoming = self.phases[i + 1]
        length = upcoming.glidepath_months
        months_until = months_between(t, self.phase_start_month(upcoming))
        return GlidePosition(active, upcoming, length - months_until, length)
