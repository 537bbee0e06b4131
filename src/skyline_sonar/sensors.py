"""
Push-based sensor sources.

A source delivers raw position/heading mappings and capability errors to
whoever subscribed through ``on_position``, ``on_heading`` and ``on_error``.
Platform acquisition lives behind this interface; the tracker never talks to
a device directly.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

from .errors import CapabilityUnavailable


logger = logging.getLogger(__name__)

SampleCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[CapabilityUnavailable], None]

# (kind, payload) where kind is "position", "heading", "error" or "wait"
SensorRecord = tuple[str, dict[str, Any]]


class SensorSource:
    def __init__(self) -> None:
        self._position_callbacks: list[SampleCallback] = []
        self._heading_callbacks: list[SampleCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    def on_position(self, callback: SampleCallback) -> None:
        self._position_callbacks.append(callback)

    def on_heading(self, callback: SampleCallback) -> None:
        self._heading_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def emit(self, kind: str, payload: dict[str, Any]) -> None:
        if kind == "position":
            for cb in self._position_callbacks:
                cb(payload)
        elif kind == "heading":
            for cb in self._heading_callbacks:
                cb(payload)
        elif kind == "error":
            error = CapabilityUnavailable(
                str(payload.get("capability", "position")),
                str(payload.get("reason", "")),
            )
            for cb in self._error_callbacks:
                cb(error)
        else:
            logger.debug("Ignoring sensor record of kind %r", kind)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class IterableSensorSource(SensorSource):
    """Deliver records from an iterable on a background thread.

    ``("wait", {"seconds": s})`` records pause delivery, which lets a replay
    reproduce the pacing of the original recording.
    """

    def __init__(self, records: Iterable[SensorRecord]) -> None:
        super().__init__()
        self._records = records
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread is not None:
            logger.debug("Sensor source already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, daemon=True)
        self._thread.start()
        logger.info("Sensor source thread started")

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=1.5)
        self._thread = None
        logger.info("Sensor source stopped")

    def run_sync(self) -> None:
        """Deliver every record on the calling thread, ignoring waits."""
        for kind, payload in self._records:
            if kind != "wait":
                self.emit(kind, payload)

    def _worker(self) -> None:
        for kind, payload in self._records:
            if self._stop_event.is_set():
                break
            if kind == "wait":
                if self._stop_event.wait(float(payload.get("seconds", 0.0))):
                    break
                continue
            self.emit(kind, payload)
        logger.debug("Sensor source exhausted")


def read_replay(path: str | Path, realtime: bool = True) -> Iterator[SensorRecord]:
    """Read a JSON-lines sensor recording.

    Each line is an object with a ``kind`` field (``position``, ``heading`` or
    ``error``); the remaining fields are the raw sample. When ``realtime`` is
    set, gaps between consecutive ``timestamp`` values become wait records.
    """
    previous_ts: Optional[float] = None
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable replay line %s", line_no)
                continue
            if not isinstance(record, dict):
                continue
            kind = str(record.pop("kind", "position"))
            ts = record.get("timestamp")
            if realtime and isinstance(ts, (int, float)):
                if previous_ts is not None and ts > previous_ts:
                    yield "wait", {"seconds": ts - previous_ts}
                previous_ts = float(ts)
            yield kind, record


class ReplaySensorSource(IterableSensorSource):
    def __init__(self, path: str | Path, realtime: bool = True) -> None:
        super().__init__(read_replay(path, realtime=realtime))
        self.path = Path(path)


def wall_clock_records(records: Iterable[SensorRecord]) -> Iterator[SensorRecord]:
    """Stamp records lacking a timestamp with the current time."""
    for kind, payload in records:
        if kind in ("position", "heading") and "timestamp" not in payload:
            payload = {**payload, "timestamp": time.time()}
        yield kind, payload
