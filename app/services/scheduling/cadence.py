"""
Cadence Scheduler — decides when an agent's next content job should fire.

Posts are spread across the agent's active hours with jittered,
non-uniform spacing. A rhythm profile (early bird, night owl, bursty,
balanced) picks the active window and may pull runs toward the profile's
peak hours. Any candidate that lands outside the window snaps forward to
the start of the next window.

This module is pure: it reads agent attributes and returns a timestamp.
Persisting the result is the caller's job. All randomness comes from the
injected random.Random so results are reproducible from a seed.
"""
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


class RunOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class RhythmProfile(str, Enum):
    EARLY_BIRD = "early_bird"
    NIGHT_OWL = "night_owl"
    BURSTY = "bursty"
    BALANCED = "balanced"


@dataclass(frozen=True)
class ActiveWindow:
    """Local-time posting window. end_hour may exceed 24 to run past midnight."""
    start_hour: int
    end_hour: int
    peak: Optional[Tuple[int, int]] = None

    @property
    def hours(self) -> int:
        return self.end_hour - self.start_hour


# Trait thresholds for deriving a profile when none is set
EARLY_BIRD_THRESHOLD = 0.65
NIGHT_OWL_THRESHOLD = 0.65
SPORADIC_THRESHOLD = 0.7

# Base jitter is ±30% of the interval; chaotic agents get up to +10% more
BASE_JITTER = 0.3
CHAOS_JITTER = 0.1

# Probability of moving a run onto an upcoming peak slot when one is near
PEAK_BIAS = 0.35

BURST_MIN_MINUTES = 15
BURST_MAX_MINUTES = 45

DEFAULT_TRAIT = 0.5

PROFILE_WINDOWS = {
    RhythmProfile.EARLY_BIRD: ActiveWindow(6, 21, peak=(6, 10)),
    RhythmProfile.NIGHT_OWL: ActiveWindow(11, 26, peak=(21, 26)),
    RhythmProfile.BALANCED: ActiveWindow(8, 23),
}


def _trait(traits: Optional[dict], name: str) -> float:
    if not traits:
        return DEFAULT_TRAIT
    try:
        value = float(traits.get(name, DEFAULT_TRAIT))
    except (TypeError, ValueError):
        return DEFAULT_TRAIT
    return min(1.0, max(0.0, value))


def derive_profile(traits: Optional[dict]) -> RhythmProfile:
    """Map personality traits to a rhythm profile."""
    if not traits:
        return RhythmProfile.BALANCED

    formality = _trait(traits, "formality")
    chaos = _trait(traits, "chaos")
    optimism = _trait(traits, "optimism")
    pacing = _trait(traits, "pacing")

    early_bird = formality * 0.4 + optimism * 0.3 + (1 - chaos) * 0.3
    night_owl = (1 - formality) * 0.4 + chaos * 0.35 + (1 - optimism) * 0.25
    sporadic = chaos * 0.6 + pacing * 0.4

    if early_bird > EARLY_BIRD_THRESHOLD:
        return RhythmProfile.EARLY_BIRD
    if night_owl > NIGHT_OWL_THRESHOLD:
        return RhythmProfile.NIGHT_OWL
    if sporadic > SPORADIC_THRESHOLD:
        return RhythmProfile.BURSTY
    return RhythmProfile.BALANCED


def resolve_profile(agent) -> RhythmProfile:
    raw = getattr(agent, "rhythm_profile", None)
    if raw:
        try:
            return RhythmProfile(raw)
        except ValueError:
            logger.warning("Unknown rhythm profile %r on agent %s, deriving from traits",
                           raw, getattr(agent, "id", "?"))
    return derive_profile(getattr(agent, "traits", None))


def active_window(agent) -> ActiveWindow:
    """The agent's posting window: explicit hours win over the profile's."""
    start = getattr(agent, "active_start_hour", None)
    end = getattr(agent, "active_end_hour", None)
    if start is not None and end is not None:
        if end <= start:
            end += 24
        if 0 <= start < 24 and end - start <= 24:
            return ActiveWindow(start, end)
        logger.warning("Ignoring invalid active window %s-%s on agent %s",
                       start, end, getattr(agent, "id", "?"))

    profile = resolve_profile(agent)
    if profile == RhythmProfile.BURSTY:
        # Tight 10-hour window whose centre drifts later with chaos
        centre = 12 + round(_trait(getattr(agent, "traits", None), "chaos") * 6)
        return ActiveWindow(centre - 5, centre + 5)
    return PROFILE_WINDOWS[profile]


def _agent_tz(agent):
    name = getattr(agent, "timezone", None) or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r on agent %s, using UTC", name, getattr(agent, "id", "?"))
        return ZoneInfo("UTC")


class CadenceScheduler:
    """Computes next-run timestamps (naive UTC) for agents."""

    def __init__(self, rng: Optional[random.Random] = None, retry_minutes: int = 30):
        self.rng = rng or random.Random()
        self.retry_minutes = retry_minutes

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def next_run_at(self, agent, outcome=RunOutcome.SUCCESS, now: Optional[datetime] = None) -> datetime:
        """
        Next time the agent's content job should fire.

        On failure: a short fixed retry horizon. On success: the next
        personality-biased slot, always inside the active window and
        strictly after ``now``.
        """
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        if RunOutcome(outcome) == RunOutcome.FAILURE:
            return now + timedelta(minutes=self.retry_minutes)
        return self._next_success_slot(agent, now)

    def next_cycle_at(self, agent, now: Optional[datetime] = None) -> datetime:
        """Autonomous agents re-run their decide loop after a fixed cooldown."""
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        cooldown = getattr(agent, "cycle_cooldown_minutes", None) or 60
        return now + timedelta(minutes=max(1, cooldown))

    def effective_posts_per_day(self, agent) -> int:
        """
        Personality-adjusted posts per day. Chaotic, fast-paced agents may
        post up to two more; very calm ones occasionally one fewer.
        """
        base = max(1, int(getattr(agent, "posting_frequency", None) or 1))
        traits = getattr(agent, "traits", None)
        if not traits:
            return base

        chaos = _trait(traits, "chaos")
        pacing = _trait(traits, "pacing")
        if chaos > 0.7 and pacing > 0.6:
            return base + self.rng.randint(0, 2)
        if chaos < 0.2 and pacing < 0.3 and self.rng.random() < 0.3:
            return max(1, base - 1)
        return base

    def burst_delay_minutes(self, agent) -> Optional[int]:
        """Occasionally chaotic agents follow up quickly. None = no burst."""
        traits = getattr(agent, "traits", None)
        if traits:
            chance = max(
                0.0,
                _trait(traits, "chaos") * 0.4
                + _trait(traits, "pacing") * 0.3
                + _trait(traits, "creativity") * 0.3
                - 0.4,
            ) * 0.3
        elif resolve_profile(agent) == RhythmProfile.BURSTY:
            chance = 0.1
        else:
            return None

        if self.rng.random() >= chance:
            return None
        return self.rng.randint(BURST_MIN_MINUTES, BURST_MAX_MINUTES)

    def in_window(self, agent, when: datetime) -> bool:
        """True if the naive-UTC ``when`` falls inside the agent's active window."""
        return self._in_window(active_window(agent), _agent_tz(agent), when)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_success_slot(self, agent, now: datetime) -> datetime:
        window = active_window(agent)
        tz = _agent_tz(agent)
        traits = getattr(agent, "traits", None)

        posts = self.effective_posts_per_day(agent)
        interval_hours = window.hours / posts

        burst = self.burst_delay_minutes(agent)
        if burst is not None:
            candidate = now + timedelta(minutes=burst)
        else:
            jitter_mult = BASE_JITTER + (_trait(traits, "chaos") * CHAOS_JITTER if traits else 0.0)
            jitter = interval_hours * jitter_mult * (self.rng.random() * 2 - 1)
            candidate = now + timedelta(hours=interval_hours + jitter)
            candidate = self._bias_toward_peak(window, tz, now, candidate, interval_hours)

        if not self._in_window(window, tz, candidate):
            candidate = self._snap_forward(window, tz, candidate)

        if candidate <= now:
            candidate = self._snap_forward(window, tz, now)
        return candidate

    def _bias_toward_peak(self, window, tz, now, candidate, interval_hours):
        """With some probability, move the run onto a nearby upcoming peak slot."""
        if not window.peak:
            return candidate
        peak = ActiveWindow(window.peak[0], window.peak[1])
        if self._in_window(peak, tz, candidate):
            return candidate
        if self.rng.random() >= PEAK_BIAS:
            return candidate

        peak_start = self._next_start(peak, tz, now)
        earliest = now + timedelta(hours=interval_hours * 0.5)
        latest = now + timedelta(hours=interval_hours * 1.5)
        if not (earliest <= peak_start <= latest):
            return candidate
        return peak_start + timedelta(minutes=self._offset_minutes(peak))

    def _snap_forward(self, window, tz, when):
        start = self._next_start(window, tz, when)
        return start + timedelta(minutes=self._offset_minutes(window))

    def _offset_minutes(self, window) -> int:
        # Land somewhere in the first hour, never past the window's end
        return self.rng.randint(0, max(0, min(59, window.hours * 60 - 1)))

    @staticmethod
    def _bounds(window, tz, day: date):
        """Window instance opening on local ``day``, as naive-UTC (start, end)."""
        midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
        start = (midnight + timedelta(hours=window.start_hour)).astimezone(timezone.utc)
        end = (midnight + timedelta(hours=window.end_hour)).astimezone(timezone.utc)
        return start.replace(tzinfo=None), end.replace(tzinfo=None)

    @staticmethod
    def _local_date(tz, when: datetime) -> date:
        return when.replace(tzinfo=timezone.utc).astimezone(tz).date()

    def _in_window(self, window, tz, when: datetime) -> bool:
        today = self._local_date(tz, when)
        # A window opening yesterday can still be open if it runs past midnight
        for day in (today - timedelta(days=1), today):
            start, end = self._bounds(window, tz, day)
            if start <= when < end:
                return True
        return False

    def _next_start(self, window, tz, when: datetime) -> datetime:
        today = self._local_date(tz, when)
        for offset in range(0, 3):
            start, _ = self._bounds(window, tz, today + timedelta(days=offset))
            if start > when:
                return start
        # Unreachable for windows that open every day
        raise RuntimeError("No upcoming window start found")
