import logging
import math

import pytest

from skyline_sonar.audio_output import RecordingSink
from skyline_sonar.models import Building, FilteredBuilding, Timbre
from skyline_sonar.sonification import (
    SonificationConfig,
    SonificationScheduler,
    build_events,
    classify_timbre,
)


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def filtered(bid: str, height: float | None, usage: str | None = None) -> FilteredBuilding:
    return FilteredBuilding(
        building=Building(id=bid, footprint=((35.0, 139.0),), height_m=height, usage_tag=usage),
        distance_km=0.1,
        bearing_deg=0.0,
    )


class TestClassifyTimbre:
    def test_known_markers(self):
        assert classify_timbre("office") is Timbre.SYNTH
        assert classify_timbre("Industrial Park") is Timbre.PERCUSSIVE
        assert classify_timbre("warehouse") is Timbre.PERCUSSIVE
        assert classify_timbre("residential") is Timbre.FM
        assert classify_timbre("工場") is Timbre.PERCUSSIVE

    def test_unknown_and_missing_tags_fall_back_to_default(self):
        assert classify_timbre(None) is Timbre.DEFAULT
        assert classify_timbre("") is Timbre.DEFAULT
        assert classify_timbre("cathedral") is Timbre.DEFAULT


class TestBuildEvents:
    def test_single_office_building(self):
        events = build_events([filtered("tower", 50.0, "office")])
        assert len(events) == 1
        event = events[0]
        assert event.pitch_hz == 200.0
        assert event.duration_sec == 1.5
        assert event.timbre is Timbre.SYNTH
        assert event.offset_ms == 0
        assert event.building_id == "tower"

    def test_offsets_never_overlap(self):
        heights = [12.0, 250.0, 33.3, 80.0, 5.5]
        events = build_events([filtered(f"b{i}", h) for i, h in enumerate(heights)])

        assert len(events) == len(heights)
        for current, following in zip(events, events[1:]):
            assert following.offset_ms > current.offset_ms
            assert following.offset_ms >= current.offset_ms + current.duration_sec * 1000

    def test_gap_is_inserted_between_events(self):
        events = build_events([filtered("a", 100.0), filtered("b", 100.0)])
        # 2 s note plus the default 100 ms gap
        assert events[1].offset_ms == 2100

    def test_buildings_without_height_are_skipped(self):
        events = build_events([filtered("a", None), filtered("b", 10.0), filtered("c", None)])
        assert [e.building_id for e in events] == ["b"]
        assert events[0].offset_ms == 0

    def test_fallback_height_replaces_skip(self):
        config = SonificationConfig(fallback_height_m=50.0)
        events = build_events([filtered("a", None)], config)
        assert events[0].pitch_hz == 200.0

    def test_percussive_timbre_uses_fixed_duration(self):
        events = build_events([filtered("plant", 120.0, "industrial")])
        assert events[0].timbre is Timbre.PERCUSSIVE
        assert events[0].duration_sec == 0.25
        assert events[0].pitch_hz == 340.0

    def test_chord_mode_emits_strummed_triad(self):
        config = SonificationConfig(chord=True)
        events = build_events([filtered("a", 50.0), filtered("b", 50.0)], config)

        assert len(events) == 6
        first = events[:3]
        assert [e.offset_ms for e in first] == [0, 100, 200]
        assert first[1].pitch_hz == pytest.approx(200.0 * 2 ** (4 / 12))
        assert first[2].pitch_hz == pytest.approx(200.0 * 2 ** (7 / 12))
        # next building starts after the last voice has finished
        assert events[3].offset_ms == 200 + 1500 + 100

    def test_same_input_gives_same_events(self):
        items = [filtered("a", 20.0, "office"), filtered("b", 40.0, "house")]
        assert build_events(items) == build_events(items)


class TestScheduler:
    def test_events_fire_when_due(self):
        clock = FakeClock()
        sink = RecordingSink()
        scheduler = SonificationScheduler(sink, clock=clock)

        run = scheduler.schedule([filtered("a", 50.0), filtered("b", 100.0)])

        assert scheduler.poll(clock.now) == 1
        assert [e.building_id for e in sink.events] == ["a"]
        assert scheduler.poll(clock.now + 1.0) == 0
        assert scheduler.poll(clock.now + 5.0) == 1
        assert [e.building_id for e in sink.events] == ["a", "b"]
        assert run.done
        assert scheduler.is_idle
        assert scheduler.live_run is None

    def test_next_fire_time(self):
        clock = FakeClock(10.0)
        scheduler = SonificationScheduler(RecordingSink(), clock=clock)
        assert scheduler.next_fire_time() is None

        scheduler.schedule([filtered("a", 50.0), filtered("b", 50.0)])
        assert scheduler.next_fire_time() == 10.0
        scheduler.poll(10.0)
        assert scheduler.next_fire_time() == pytest.approx(11.6)

    def test_new_run_cancels_unfired_events_of_previous_run(self):
        clock = FakeClock()
        sink = RecordingSink()
        scheduler = SonificationScheduler(sink, clock=clock)

        first = scheduler.schedule([filtered(f"old{i}", 50.0) for i in range(3)])
        scheduler.poll(clock.now)
        assert [e.building_id for e in sink.events] == ["old0"]

        clock.now += 0.5
        second = scheduler.schedule([filtered("new0", 10.0), filtered("new1", 10.0)])

        assert first.token.cancelled
        assert first.pending == ()
        scheduler.poll(clock.now + 60.0)

        assert [e.building_id for e in sink.events] == ["old0", "new0", "new1"]
        assert first.fired == 1
        assert second.done

    def test_cancelled_token_blocks_firing(self):
        clock = FakeClock()
        sink = RecordingSink()
        scheduler = SonificationScheduler(sink, clock=clock)

        run = scheduler.schedule([filtered("a", 10.0)])
        run.token.cancel()

        assert scheduler.poll(clock.now + 10.0) == 0
        assert sink.events == []

    def test_cancel_releases_live_run(self):
        scheduler = SonificationScheduler(RecordingSink(), clock=FakeClock())
        run = scheduler.schedule([filtered("a", 10.0)])
        scheduler.cancel()
        assert run.token.cancelled
        assert scheduler.live_run is None
        assert scheduler.poll() == 0

    def test_empty_schedule(self):
        scheduler = SonificationScheduler(RecordingSink(), clock=FakeClock())
        run = scheduler.schedule([])
        assert run.events == ()
        assert run.done
        assert run.duration_sec == 0.0

    def test_sink_failure_is_logged_and_run_continues(self, caplog):
        class BrokenSink:
            def __init__(self):
                self.calls = 0

            def trigger(self, event):
                self.calls += 1
                raise RuntimeError("device gone")

        clock = FakeClock()
        sink = BrokenSink()
        scheduler = SonificationScheduler(sink, clock=clock)
        run = scheduler.schedule([filtered("a", 10.0), filtered("b", 10.0)])

        with caplog.at_level(logging.ERROR, logger="skyline_sonar.sonification"):
            fired = scheduler.poll(clock.now + 60.0)

        assert fired == 0
        assert sink.calls == 2
        assert run.fired == 2
        assert "Audio sink failed" in caplog.text

    def test_run_duration(self):
        scheduler = SonificationScheduler(RecordingSink(), clock=FakeClock())
        run = scheduler.schedule([filtered("a", 50.0), filtered("b", 100.0)])
        assert math.isclose(run.duration_sec, 1.6 + 2.0)
