from __future__ import annotations

import argparse
import logging
import queue
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional

from .audio_output import LoggingSink, SoundcardSink
from .config import CONFIG_FILE, ConfigManager
from .dataset import load_buildings
from .errors import CapabilityUnavailable, DatasetUnavailable
from .models import BuildingSet, Command, FilteredBuilding, FilterPolicy, Pose, RenderState
from .pose_tracker import PoseTracker, TrackerConfig
from .sensors import IterableSensorSource, ReplaySensorSource, SensorSource, wall_clock_records
from .simulation import offline_sensor_stream, synthetic_buildings
from .sonification import AudioSink, ScheduledRun, SonificationConfig, SonificationScheduler
from .spatial_filter import SpatialFilter


logger = logging.getLogger(__name__)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("", "0", "false", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class PipelineConfig:
    dataset: Optional[str] = None
    policy: FilterPolicy = field(default_factory=FilterPolicy)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    sonification: SonificationConfig = field(default_factory=SonificationConfig)
    state_queue_size: int = 8
    tick_interval_s: float = 0.02

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        defaults = SonificationConfig()
        return cls(
            dataset=data.get("dataset"),
            policy=FilterPolicy(
                radius_km=float(data.get("radius_km", 2.0)),
                directional=_flag(data.get("directional", False)),
                cone_half_width_deg=float(data.get("cone_half_width_deg", 45.0)),
            ),
            tracker=TrackerConfig(
                position_threshold_deg=float(data.get("position_threshold_deg", 0.0001)),
                heading_threshold_deg=float(data.get("heading_threshold_deg", 1.0)),
            ),
            sonification=SonificationConfig(
                base_pitch_hz=float(data.get("base_pitch_hz", defaults.base_pitch_hz)),
                height_to_pitch_scale=float(data.get("height_to_pitch_scale", defaults.height_to_pitch_scale)),
                base_duration_sec=float(data.get("base_duration_sec", defaults.base_duration_sec)),
                duration_height_divisor=float(data.get("duration_height_divisor", defaults.duration_height_divisor)),
                inter_event_gap_ms=int(data.get("inter_event_gap_ms", defaults.inter_event_gap_ms)),
                chord=_flag(data.get("chord", defaults.chord)),
                fallback_height_m=_optional_float(data.get("fallback_height_m")),
            ),
        )


class PipelineCoordinator:
    """Sequence pose tracking, spatial filtering and sonification.

    All pipeline state lives here: the current pose, the filtered set it
    produced, and the policy in force. Sensor callbacks may come from any
    thread; they are queued and handled by a single processing loop.
    """

    def __init__(
        self,
        buildings: Optional[BuildingSet],
        config: PipelineConfig | None = None,
        sink: AudioSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        dataset_error: Optional[str] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.buildings = buildings
        self.dataset_error = dataset_error
        self.policy = self.config.policy
        self.tracker = PoseTracker(self.config.tracker)
        self.filter = SpatialFilter()
        self.scheduler = SonificationScheduler(sink or LoggingSink(), self.config.sonification, clock=clock)
        self.filtered: list[FilteredBuilding] = []
        self.state_queue: "queue.Queue[RenderState]" = queue.Queue(maxsize=self.config.state_queue_size)
        self.command_queue: "queue.Queue[Command]" = queue.Queue()
        self._inbox: "queue.Queue[tuple[str, Any]]" = queue.Queue()
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._hud_thread = None
        self._source: Optional[SensorSource] = None
        self.tracker.subscribe(self.on_pose)

    @classmethod
    def from_dataset(
        cls,
        path: str,
        config: PipelineConfig | None = None,
        sink: AudioSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "PipelineCoordinator":
        try:
            buildings = load_buildings(path)
        except DatasetUnavailable as exc:
            logger.error("Dataset unavailable: %s", exc)
            return cls(None, config, sink, clock, dataset_error=str(exc))
        return cls(buildings, config, sink, clock)

    @property
    def pose(self) -> Optional[Pose]:
        return self.tracker.pose

    # -- sensor callbacks -------------------------------------------------

    def ingest_position(self, raw: Mapping[str, Any]) -> Optional[Pose]:
        return self.tracker.ingest_position(raw)

    def ingest_heading(self, raw: Mapping[str, Any]) -> Optional[Pose]:
        return self.tracker.ingest_heading(raw)

    def report_error(self, error: CapabilityUnavailable) -> None:
        self.tracker.report_error(error.capability, error.reason)
        self._publish_state()

    # -- pipeline steps ---------------------------------------------------

    def on_pose(self, pose: Pose) -> None:
        if self.buildings is None:
            self.filtered = []
        else:
            self.filtered = self.filter.apply(pose, self.buildings, self.policy)
        self._publish_state()

    def set_policy(self, policy: FilterPolicy) -> None:
        self.policy = policy
        logger.info(
            "Filter policy set (radius=%.2f km, directional=%s, cone=%.0f)",
            policy.radius_km,
            policy.directional,
            policy.cone_half_width_deg,
        )
        pose = self.pose
        if pose is not None:
            self.on_pose(pose)

    def trigger_sonification(self) -> Optional[ScheduledRun]:
        if self.buildings is None:
            logger.warning("Sonification requested without a dataset; ignoring")
            return None
        return self.scheduler.schedule(self.filtered)

    def tick(self, now: float | None = None) -> int:
        return self.scheduler.poll(now)

    def render_state(self) -> RenderState:
        return RenderState(
            pose=self.pose,
            filtered=list(self.filtered),
            policy=self.policy,
            capabilities={k: replace(v) for k, v in self.tracker.capabilities.items()},
            error=self.dataset_error,
        )

    def _publish_state(self) -> None:
        state = self.render_state()
        logger.debug("Publishing render state with %s buildings", len(state.filtered))
        try:
            self.state_queue.put_nowait(state)
        except queue.Full:
            try:
                _ = self.state_queue.get_nowait()
            except queue.Empty:
                pass
            self.state_queue.put_nowait(state)
            logger.debug("State queue full; dropped oldest render state")

    # -- runtime ----------------------------------------------------------

    def attach(self, source: SensorSource) -> None:
        source.on_position(lambda raw: self._inbox.put(("position", raw)))
        source.on_heading(lambda raw: self._inbox.put(("heading", raw)))
        source.on_error(lambda err: self._inbox.put(("error", err)))
        self._source = source

    def handle_command(self, command: Command | str) -> None:
        if command == Command.TRIGGER:
            self.trigger_sonification()
        elif command == Command.TOGGLE_DIRECTIONAL:
            self.set_policy(replace(self.policy, directional=not self.policy.directional))
        else:
            logger.debug("Ignoring unknown command %r", command)

    def drain(self) -> int:
        """Handle every queued sensor record and command on the calling thread."""
        handled = 0
        while True:
            try:
                kind, payload = self._inbox.get_nowait()
            except queue.Empty:
                break
            if kind == "position":
                self.ingest_position(payload)
            elif kind == "heading":
                self.ingest_heading(payload)
            else:
                self.report_error(payload)
            handled += 1
        while True:
            try:
                command = self.command_queue.get_nowait()
            except queue.Empty:
                break
            self.handle_command(command)
            handled += 1
        return handled

    def start(self, source: SensorSource, use_hud: bool = True) -> None:
        logger.info("Starting pipeline (use_hud=%s)", use_hud)
        self._running.set()
        if use_hud:
            from .hud import HudLoop

            self._hud_thread = HudLoop(self.state_queue, self.command_queue)
            self._hud_thread.start()
        self.attach(source)
        self._thread = threading.Thread(target=self._processing_loop, daemon=True)
        self._thread.start()
        source.start()
        logger.debug("Processing thread started")

    @property
    def running(self) -> bool:
        if self._hud_thread is not None and self._hud_thread.closed:
            return False
        return self._running.is_set()

    def stop(self) -> None:
        logger.info("Stopping pipeline")
        self._running.clear()
        if self._source is not None:
            self._source.stop()
        if self._hud_thread is not None:
            self._hud_thread.stop()
        self.scheduler.cancel()

    def join(self) -> None:
        for thread in (self._thread, self._hud_thread):
            if thread is not None:
                logger.debug("Joining thread %s", thread.name)
                thread.join(timeout=2.0)
        logger.info("Pipeline threads joined")
        self._thread = None
        self._hud_thread = None

    def _processing_loop(self) -> None:
        interval = self.config.tick_interval_s
        while self._running.is_set():
            self.drain()
            self.tick()
            time.sleep(interval)


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), None)
    invalid = False
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
        invalid = True
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    if invalid:
        logging.getLogger(__name__).warning("Invalid log level '%s'; defaulting to INFO", level)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sonify the buildings around you")
    parser.add_argument("--config", default=str(CONFIG_FILE), help="JSON config file")
    parser.add_argument("--dataset", help="GeoJSON FeatureCollection of building footprints")
    parser.add_argument("--replay", help="JSON-lines sensor recording to replay")
    parser.add_argument("--mock", action="store_true", help="Use a synthetic walk and synthetic buildings")
    parser.add_argument("--radius-km", type=float, help="Selection radius in kilometres")
    parser.add_argument("--directional", action="store_true", help="Only keep buildings inside the heading cone")
    parser.add_argument("--cone-deg", type=float, help="Half-width of the heading cone in degrees")
    parser.add_argument("--chord", action="store_true", help="Play a strummed triad per building")
    parser.add_argument("--no-audio", action="store_true", help="Log trigger instructions instead of playing them")
    parser.add_argument("--no-hud", action="store_true", help="Run without the radar window")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging verbosity (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_dict(ConfigManager.load(args.config))
    if args.dataset:
        config.dataset = args.dataset
    policy = config.policy
    if args.radius_km is not None:
        policy = replace(policy, radius_km=args.radius_km)
    if args.directional:
        policy = replace(policy, directional=True)
    if args.cone_deg is not None:
        policy = replace(policy, cone_half_width_deg=args.cone_deg)
    config.policy = policy
    if args.chord:
        config.sonification.chord = True
    return config


def run_pipeline(args: argparse.Namespace) -> None:
    if not logging.getLogger().hasHandlers():
        configure_logging("INFO")
    config = build_config(args)

    sink: AudioSink
    if args.no_audio:
        sink = LoggingSink()
    else:
        sink = SoundcardSink()
        try:
            sink.start()
        except RuntimeError as exc:
            logger.warning("%s Falling back to logged triggers.", exc)
            sink = LoggingSink()

    if args.mock:
        pipeline = PipelineCoordinator(synthetic_buildings(seed=7), config, sink)
        source: SensorSource = IterableSensorSource(wall_clock_records(offline_sensor_stream(duration_s=600.0)))
    else:
        pipeline = PipelineCoordinator.from_dataset(config.dataset or "", config, sink)
        if args.replay:
            source = ReplaySensorSource(args.replay)
        else:
            # no platform sensor backend ships with the desktop build
            source = SensorSource()
            source.on_error(pipeline.report_error)
            source.emit("error", {"capability": "position", "reason": "no sensor backend; use --replay or --mock"})

    try:
        pipeline.start(source, use_hud=not args.no_hud)
        while pipeline.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("Stopping pipeline...")
    finally:
        pipeline.stop()
        pipeline.join()
        if isinstance(sink, SoundcardSink):
            sink.stop()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    run_pipeline(args)


if __name__ == "__main__":
    main()
