"""
Calibration Configuration Module
================================
Sweep parameters and station settings for the power calibration.
Station settings load from environment variables and JSON config files.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, asdict, field, fields

LOGGER = logging.getLogger(__name__)


@dataclass
class SweepConfiguration:
    """Parameters of one calibration sweep"""
    laser_wavelength_nm: float
    num_steps: int = 11
    sample_reps: int = 1
    settling_time: float = 0.1
    beam_index: int = 1
    first_percent: float = 0.0
    zero_settle_time: float = 0.5
    read_timeout_s: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.num_steps, bool) or int(self.num_steps) != self.num_steps or self.num_steps < 2:
            raise ValueError(f"num_steps must be an integer >= 2, got {self.num_steps}")
        if isinstance(self.sample_reps, bool) or int(self.sample_reps) != self.sample_reps or self.sample_reps < 1:
            raise ValueError(f"sample_reps must be an integer >= 1, got {self.sample_reps}")
        if int(self.beam_index) != self.beam_index or self.beam_index < 1:
            raise ValueError(f"beam_index must be an integer >= 1, got {self.beam_index}")
        if self.settling_time < 0:
            raise ValueError("settling_time cannot be negative")
        if self.zero_settle_time < 0:
            raise ValueError("zero_settle_time cannot be negative")
        if self.laser_wavelength_nm <= 0:
            raise ValueError("laser_wavelength_nm must be positive")
        if not 0 <= self.first_percent < 100:
            raise ValueError("first_percent must be in [0, 100)")
        if self.read_timeout_s is not None and self.read_timeout_s <= 0:
            raise ValueError("read_timeout_s must be positive")

        self.num_steps = int(self.num_steps)
        self.sample_reps = int(self.sample_reps)
        self.beam_index = int(self.beam_index)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SweepConfiguration":
        """Create configuration from dictionary, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            LOGGER.warning(f"Ignoring unknown sweep settings: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StationSettings:
    """Instruments and limits of one calibration station"""
    name: str = "microscope"
    meter_resource: Optional[str] = None
    laser_resources: List[str] = field(default_factory=list)
    current_window_ma: Tuple[float, float] = (0.0, 100.0)
    power_limits_w: Tuple[float, float] = (0.0, 0.1)
    output_dir: Optional[str] = None

    def __post_init__(self):
        self.current_window_ma = tuple(self.current_window_ma)
        self.power_limits_w = tuple(self.power_limits_w)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StationSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["current_window_ma"] = list(self.current_window_ma)
        data["power_limits_w"] = list(self.power_limits_w)
        return data


class CalibrationConfigManager:
    """Manages station and sweep configuration with fallback options"""

    DEFAULT_CONFIG_PATHS = [
        Path.home() / ".powercal" / "powercal_config.json",
        Path("config") / "powercal_config.json",
        Path("powercal_config.json"),
    ]

    DEFAULT_SWEEP_SETTINGS = {
        "num_steps": 11,
        "sample_reps": 1,
        "settling_time": 0.1,
        "beam_index": 1,
        "first_percent": 0.0,
        "zero_settle_time": 0.5,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager

        Args:
            config_path: Optional specific config file path
        """
        self.config_path = Path(config_path) if config_path else None
        self.loaded_from: Optional[Path] = None
        self.station = StationSettings()
        self.sweep_settings = self.DEFAULT_SWEEP_SETTINGS.copy()
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration from file, then apply environment overrides"""
        candidates = [self.config_path] if self.config_path else []
        candidates += self.DEFAULT_CONFIG_PATHS

        for path in candidates:
            if path.exists():
                if self._load_file(path):
                    self.loaded_from = path
                    LOGGER.info(f"Loaded calibration configuration from {path}")
                    break
        else:
            if self.config_path and not self.config_path.exists():
                LOGGER.error(f"Config file not found: {self.config_path}")
            LOGGER.info("No calibration config file found, using defaults")

        self._apply_env_overrides()

    def _load_file(self, filepath: Path) -> bool:
        """
        Load station and sweep sections

        Expected structure:
        {
            "station": {
                "name": "...",
                "meter_resource": "USB0::0x1313::0x8072::P2000001::INSTR",
                "laser_resources": ["USB0::0x1313::0x804F::M01093719::0::INSTR"],
                ...
            },
            "sweep": {
                "num_steps": 21,
                "sample_reps": 4,
                ...
            }
        }
        """
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
            self.station = StationSettings.from_dict(data.get("station", {}))
            self.sweep_settings.update(data.get("sweep", {}))
            return True
        except (OSError, ValueError, TypeError) as e:
            LOGGER.error(f"Failed to load config from {filepath}: {str(e)}")
            return False

    def _apply_env_overrides(self):
        """
        Environment variables take precedence over files:
        - POWERCAL_METER_RESOURCE: VISA resource of the power meter
        - POWERCAL_LASER_RESOURCES: comma separated VISA resources, beam 1 first
        """
        meter = os.environ.get("POWERCAL_METER_RESOURCE")
        lasers = os.environ.get("POWERCAL_LASER_RESOURCES")

        if meter:
            self.station.meter_resource = meter
            LOGGER.info("Power meter resource taken from POWERCAL_METER_RESOURCE")
        if lasers:
            self.station.laser_resources = [r.strip() for r in lasers.split(",") if r.strip()]
            LOGGER.info("Laser resources taken from POWERCAL_LASER_RESOURCES")

    def get_station(self) -> StationSettings:
        return self.station

    def get_sweep_settings(self) -> Dict[str, Any]:
        return self.sweep_settings.copy()

    def build_sweep_configuration(self, laser_wavelength_nm: float, **overrides) -> SweepConfiguration:
        """Build a sweep configuration from file defaults plus explicit overrides"""
        settings = self.get_sweep_settings()
        settings.update({k: v for k, v in overrides.items() if v is not None})
        settings["laser_wavelength_nm"] = laser_wavelength_nm
        return SweepConfiguration.from_dict(settings)

    def update_sweep_settings(self, **kwargs):
        self.sweep_settings.update(kwargs)

    def save_configuration(self, filepath: Optional[Path] = None) -> Path:
        """
        Save current configuration to file

        Args:
            filepath: Path to save to (defaults to first default path)
        """
        filepath = Path(filepath) if filepath else self.DEFAULT_CONFIG_PATHS[0]
        filepath.parent.mkdir(parents=True, exist_ok=True)

        config = {
            "station": self.station.to_dict(),
            "sweep": self.sweep_settings
        }

        with open(filepath, 'w') as f:
            json.dump(config, f, indent=2)

        LOGGER.info(f"Saved configuration to {filepath}")
        return filepath

    @staticmethod
    def create_example_config(filepath: Optional[Path] = None) -> Path:
        """Create an example configuration file"""
        filepath = Path(filepath) if filepath else Path("powercal_config.example.json")

        example = {
            "station": {
                "name": "rig1",
                "meter_resource": "USB0::0x1313::0x8072::P2000001::INSTR",
                "laser_resources": ["USB0::0x1313::0x804F::M01093719::0::INSTR"],
                "current_window_ma": [130.0, 1480.0],
                "power_limits_w": [0.0, 0.5],
                "output_dir": "calibration_data"
            },
            "sweep": {
                "num_steps": 21,
                "sample_reps": 4,
                "settling_time": 0.1,
                "beam_index": 1,
                "first_percent": 0.0,
                "zero_settle_time": 0.5
            }
        }

        with open(filepath, 'w') as f:
            json.dump(example, f, indent=2)

        LOGGER.info(f"Created example configuration at {filepath}")
        return filepath
