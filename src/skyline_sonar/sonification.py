"""
Building-to-sound mapping and run scheduling.

``build_events`` is a pure mapping from a filtered building sequence to a
timeline of trigger instructions. ``SonificationScheduler`` owns the single
live run and fires its events through an ``AudioSink`` as the driver clock
advances. Starting a new run cancels the previous one before anything from
the new run can fire (last run wins).
"""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Protocol, Sequence

from .models import FilteredBuilding, SonificationEvent, Timbre


logger = logging.getLogger(__name__)


# Checked in order; the first matching group wins.
TIMBRE_MARKERS: tuple[tuple[Timbre, tuple[str, ...]], ...] = (
    (Timbre.PERCUSSIVE, ("industrial", "factory", "warehouse", "工場", "倉庫")),
    (Timbre.SYNTH, ("office", "commercial", "事務所", "商業")),
    (Timbre.FM, ("residential", "house", "apartments", "住宅")),
)

DISCRETE_TIMBRES = frozenset({Timbre.PERCUSSIVE})

MAJOR_TRIAD_SEMITONES = (0, 4, 7)


@dataclass
class SonificationConfig:
    base_pitch_hz: float = 100.0
    height_to_pitch_scale: float = 2.0
    base_duration_sec: float = 1.0
    duration_height_divisor: float = 100.0
    # fixed note length for discrete timbres (an eighth note at 120 bpm)
    discrete_duration_sec: float = 0.25
    inter_event_gap_ms: int = 100
    chord: bool = False
    strum_offset_sec: float = 0.1
    # None skips buildings without a height
    fallback_height_m: Optional[float] = None


def classify_timbre(usage_tag: Optional[str]) -> Timbre:
    if not usage_tag:
        return Timbre.DEFAULT
    tag = str(usage_tag).casefold()
    for timbre, markers in TIMBRE_MARKERS:
        if any(marker in tag for marker in markers):
            return timbre
    return Timbre.DEFAULT


def semitone_shift(pitch_hz: float, semitones: int) -> float:
    return pitch_hz * 2.0 ** (semitones / 12.0)


def build_events(
    filtered: Sequence[FilteredBuilding],
    config: SonificationConfig | None = None,
) -> list[SonificationEvent]:
    """Lay out one event (or one strummed triad) per building on a single timeline."""
    cfg = config or SonificationConfig()
    strum_ms = int(round(cfg.strum_offset_sec * 1000))
    events: list[SonificationEvent] = []
    cursor_ms = 0

    for item in filtered:
        building = item.building
        height = building.height_m if building.height_m is not None else cfg.fallback_height_m
        if height is None:
            logger.debug("Skipping building %s without height", building.id)
            continue

        timbre = classify_timbre(building.usage_tag)
        pitch = cfg.base_pitch_hz + height * cfg.height_to_pitch_scale
        if timbre in DISCRETE_TIMBRES:
            duration = cfg.discrete_duration_sec
        else:
            duration = cfg.base_duration_sec + height / cfg.duration_height_divisor

        voices = MAJOR_TRIAD_SEMITONES if cfg.chord else (0,)
        for index, semitones in enumerate(voices):
            events.append(
                SonificationEvent(
                    pitch_hz=semitone_shift(pitch, semitones),
                    duration_sec=duration,
                    timbre=timbre,
                    offset_ms=cursor_ms + index * strum_ms,
                    building_id=building.id,
                )
            )
        last_voice_ms = (len(voices) - 1) * strum_ms
        cursor_ms += last_voice_ms + math.ceil(round(duration * 1000, 6)) + cfg.inter_event_gap_ms

    return events


class AudioSink(Protocol):
    def trigger(self, event: SonificationEvent) -> None:
        ...


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class ScheduledRun:
    run_id: int
    events: tuple[SonificationEvent, ...]
    started_at: float
    token: CancellationToken = field(default_factory=CancellationToken)
    fired: int = 0

    @property
    def pending(self) -> tuple[SonificationEvent, ...]:
        if self.token.cancelled:
            return ()
        return self.events[self.fired:]

    @property
    def done(self) -> bool:
        return self.token.cancelled or self.fired >= len(self.events)

    @property
    def duration_sec(self) -> float:
        if not self.events:
            return 0.0
        return max(e.offset_ms / 1000.0 + e.duration_sec for e in self.events)

    def fire_at(self, event: SonificationEvent) -> float:
        return self.started_at + event.offset_ms / 1000.0


class SonificationScheduler:
    """Own the single live ``ScheduledRun`` and fire it against a clock.

    ``poll`` is the timer driver: the caller invokes it from its event loop
    and every event whose fire time has passed is delivered, in order.
    """

    def __init__(
        self,
        sink: AudioSink,
        config: SonificationConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.config = config or SonificationConfig()
        self.clock = clock
        self._live: Optional[ScheduledRun] = None
        self._ids = itertools.count(1)

    @property
    def live_run(self) -> Optional[ScheduledRun]:
        return self._live

    @property
    def is_idle(self) -> bool:
        return self._live is None or self._live.done

    def schedule(self, filtered: Iterable[FilteredBuilding]) -> ScheduledRun:
        events = build_events(list(filtered), self.config)
        self.cancel()
        run = ScheduledRun(run_id=next(self._ids), events=tuple(events), started_at=self.clock())
        self._live = run
        logger.info(
            "Scheduled run %s with %s events (%.2f s)",
            run.run_id,
            len(run.events),
            run.duration_sec,
        )
        return run

    def cancel(self) -> None:
        run = self._live
        if run is None:
            return
        if not run.done:
            logger.info(
                "Cancelling run %s with %s unfired events",
                run.run_id,
                len(run.events) - run.fired,
            )
        run.token.cancel()
        self._live = None

    def next_fire_time(self) -> Optional[float]:
        run = self._live
        if run is None or run.done:
            return None
        return run.fire_at(run.events[run.fired])

    def poll(self, now: float | None = None) -> int:
        """Fire every due event of the live run; return how many fired."""
        run = self._live
        if run is None:
            return 0
        now = self.clock() if now is None else now
        fired = 0
        while run.fired < len(run.events):
            event = run.events[run.fired]
            if run.fire_at(event) > now:
                break
            if run.token.cancelled:
                break
            run.fired += 1
            try:
                self.sink.trigger(event)
            except Exception:
                logger.exception("Audio sink failed on event at %s ms", event.offset_ms)
                continue
            fired += 1
        if run.done and self._live is run:
            logger.debug("Run %s finished", run.run_id)
            self._live = None
        return fired
