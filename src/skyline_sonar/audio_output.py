from __future__ import annotations

import logging
import threading
from typing import Any, Optional, TYPE_CHECKING

import numpy as np

from .models import SonificationEvent, Timbre

try:
    import soundcard as sc
except Exception:  # pragma: no cover - optional dependency; also fails without an audio server
    sc = None

if TYPE_CHECKING:  # pragma: no cover - typing only
    from soundcard import Player
else:
    Player = Any


logger = logging.getLogger(__name__)


def render_tone(event: SonificationEvent, samplerate: int = 48_000, amplitude: float = 0.3) -> np.ndarray:
    """Render a mono float32 waveform for one trigger instruction."""
    n_samples = max(1, int(event.duration_sec * samplerate))
    t = np.arange(n_samples, dtype=np.float64) / samplerate
    phase = 2 * np.pi * event.pitch_hz * t

    if event.timbre is Timbre.PERCUSSIVE:
        wave = np.sin(phase) * np.exp(-t * 18.0)
    elif event.timbre is Timbre.SYNTH:
        # band-limited sawtooth from the first few harmonics
        wave = sum(np.sin(phase * k) / k for k in range(1, 6)) * (2 / np.pi)
    elif event.timbre is Timbre.FM:
        wave = np.sin(phase + 2.0 * np.sin(phase * 2.0))
    else:
        wave = np.sin(phase)

    peak = float(np.max(np.abs(wave)))
    if peak > 1.0:
        wave = wave / peak

    # short linear attack and release to avoid clicks
    ramp = min(n_samples // 2, int(0.01 * samplerate))
    if ramp > 0:
        envelope = np.ones(n_samples)
        envelope[:ramp] = np.linspace(0.0, 1.0, ramp)
        envelope[-ramp:] = np.linspace(1.0, 0.0, ramp)
        wave = wave * envelope
    return (amplitude * wave).astype(np.float32)


class LoggingSink:
    """Audio sink that only logs trigger instructions."""

    def trigger(self, event: SonificationEvent) -> None:
        logger.info(
            "Trigger %s: %.1f Hz for %.2f s (%s) at +%s ms",
            event.building_id or "?",
            event.pitch_hz,
            event.duration_sec,
            event.timbre.value,
            event.offset_ms,
        )


class RecordingSink:
    """Audio sink that keeps every trigger it receives."""

    def __init__(self) -> None:
        self.events: list[SonificationEvent] = []

    def trigger(self, event: SonificationEvent) -> None:
        self.events.append(event)


class VoiceMixer:
    """Sum overlapping voices into fixed-size output blocks.

    Each added waveform starts at the next block boundary and keeps sounding
    across later blocks until it runs out, regardless of what else is added.
    """

    def __init__(self, block_size: int, max_voices: int = 32) -> None:
        self.block_size = block_size
        self.max_voices = max_voices
        self._voices: list[tuple[np.ndarray, int]] = []
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._voices)

    def add(self, wave: np.ndarray) -> bool:
        with self._lock:
            if len(self._voices) >= self.max_voices:
                return False
            self._voices.append((wave, 0))
            return True

    def clear(self) -> None:
        with self._lock:
            self._voices.clear()

    def mix(self) -> np.ndarray:
        block = np.zeros(self.block_size, dtype=np.float32)
        with self._lock:
            remaining = []
            for wave, position in self._voices:
                chunk = wave[position:position + self.block_size]
                block[:len(chunk)] += chunk
                position += len(chunk)
                if position < len(wave):
                    remaining.append((wave, position))
            self._voices = remaining
        np.clip(block, -1.0, 1.0, out=block)
        return block


class SoundcardSink:
    """Play trigger instructions on the default speaker.

    ``trigger`` never blocks: waveforms are rendered on the caller's thread and
    handed to a ``VoiceMixer``; the playback worker streams mixed blocks to the
    speaker, so voices that overlap in time are heard together.
    """

    def __init__(
        self,
        samplerate: int = 48_000,
        block_sec: float = 0.02,
        max_voices: int = 32,
        speaker: Any = None,
    ) -> None:
        self.samplerate = samplerate
        self.mixer = VoiceMixer(max(1, int(samplerate * block_sec)), max_voices)
        self._speaker = speaker
        self._lock = threading.Lock()
        self._player: Optional[Player] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def __enter__(self) -> "SoundcardSink":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.stop()

    def start(self) -> None:
        if self._thread is not None:
            logger.debug("SoundcardSink.start called but thread already running")
            return
        speaker = self._speaker
        if speaker is None:
            if sc is None:
                raise RuntimeError(
                    "soundcard package is required for audio playback. Install it with 'pip install soundcard' or run with --no-audio."
                )
            speaker = sc.default_speaker()
            if speaker is None:
                raise RuntimeError("No default speaker found for audio playback.")
        logger.info("Selected speaker '%s' for playback", speaker.name)

        self._player = speaker.player(samplerate=self.samplerate, channels=1)
        self._player.__enter__()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._playback_worker, daemon=True)
        self._thread.start()
        logger.info(
            "Playback thread started (samplerate=%s, block=%s samples)",
            self.samplerate,
            self.mixer.block_size,
        )

    def stop(self) -> None:
        with self._lock:
            if self._thread is None:
                logger.debug("SoundcardSink.stop called but no thread running")
                return
            assert self._stop_event is not None
            self._stop_event.set()
            self._thread.join(timeout=1.5)
            self._thread = None
            self._stop_event = None
            if self._player is not None:
                self._player.__exit__(None, None, None)
                self._player = None
            self.mixer.clear()
            logger.info("Playback stopped and voices cleared")

    def trigger(self, event: SonificationEvent) -> None:
        if self._thread is None:
            logger.debug("Playback not started; dropping trigger at %s ms", event.offset_ms)
            return
        wave = render_tone(event, self.samplerate)
        if not self.mixer.add(wave):
            logger.warning("Too many active voices; dropping trigger at %s ms", event.offset_ms)

    def _playback_worker(self) -> None:
        assert self._player is not None
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            # play() blocks for one block length, which paces the loop
            block = self.mixer.mix()
            try:
                self._player.play(block)
            except Exception as exc:  # pragma: no cover - hardware failure
                logger.exception("Player error while playing tone: %s", exc)
                break
        logger.debug("Playback thread exiting")
