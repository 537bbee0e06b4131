import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.json")

DEFAULT_CONFIG = {
    "dataset": "data/building.geojson",
    "radius_km": 2.0,
    "directional": False,
    "cone_half_width_deg": 45.0,
    "position_threshold_deg": 0.0001,
    "heading_threshold_deg": 1.0,
    "base_pitch_hz": 100.0,
    "height_to_pitch_scale": 2.0,
    "base_duration_sec": 1.0,
    "duration_height_divisor": 100.0,
    "inter_event_gap_ms": 100,
    "chord": False,
    "fallback_height_m": None,
}

class ConfigManager:
    @staticmethod
    def load(path: Path = CONFIG_FILE) -> dict[str, Any]:
        path = Path(path)
        if not path.exists():
            return DEFAULT_CONFIG.copy()

        try:
            with open(path, "r") as f:
                data = json.load(f)
                # Merge with defaults to ensure all keys exist
                config = DEFAULT_CONFIG.copy()
                config.update({k: v for k, v in data.items() if k in DEFAULT_CONFIG})
                unknown = sorted(set(data) - set(DEFAULT_CONFIG))
                if unknown:
                    logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
                return config
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            return DEFAULT_CONFIG.copy()

    @staticmethod
    def save(data: dict[str, Any], path: Path = CONFIG_FILE) -> None:
        try:
            with open(path, "w") as f:
                json.dump(data, f, indent=4)
            logger.info("Configuration saved")
        except Exception as e:
            logger.error(f"Failed to save config: {e}")
