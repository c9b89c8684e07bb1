"""
Simulated beam and power meter for dry runs without hardware.

The simulated meter reads whatever the simulated beam emits, scaled by a gain
and shifted by an offset, with optional Gaussian noise.
"""

import logging
import random
from typing import List, Optional

from .clamp import apply_clamped

LOGGER = logging.getLogger(__name__)


class SimulatedBeamController:
    """Beams with a linear fraction-to-watts lookup"""

    def __init__(self, max_power_w: float = 0.1, num_beams: int = 1):
        self.power_limits_w: List[List[float]] = [[0.0, max_power_w] for _ in range(num_beams)]
        self.fractions: List[float] = [0.0] * num_beams
        self.pointed = False
        self.park_count = 0

    def _check(self, beam_index: int):
        if not 1 <= beam_index <= len(self.fractions):
            raise ValueError(f"beam_index {beam_index} out of range 1..{len(self.fractions)}")

    def number_of_beams(self) -> int:
        return len(self.fractions)

    def set_laser_power_fraction(self, fraction: float, beam_index: int = 1) -> None:
        self._check(beam_index)
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Power fraction must be in [0, 1], got {fraction}")
        self.fractions[beam_index - 1] = fraction
        LOGGER.debug(f"[SIM] Beam {beam_index} power fraction {fraction:.3f}")

    def power_fraction_to_watts(self, fraction: float, beam_index: int = 1) -> float:
        self._check(beam_index)
        low, high = self.power_limits_w[beam_index - 1]
        return low + fraction * (high - low)

    def set_beam_power_limits(self, min_watts: float, max_watts: float, beam_index: int = 1) -> None:
        self._check(beam_index)
        self.power_limits_w[beam_index - 1] = [min_watts, max_watts]

    def emitted_watts(self) -> float:
        """Power currently leaving the objective"""
        if not self.pointed:
            return 0.0
        return sum(self.power_fraction_to_watts(f, i + 1) for i, f in enumerate(self.fractions))

    def point_beam(self, beam_index: int = 1) -> None:
        self._check(beam_index)
        self.pointed = True

    def park_beam(self) -> None:
        self.pointed = False
        self.park_count += 1
        LOGGER.info("[SIM] Beam parked")


class SimulatedPowerMeter:
    """Meter reading gain * emitted + offset (+ noise), in watts"""

    def __init__(self, beam: SimulatedBeamController, gain: float = 1.0, offset_w: float = 0.0,
                 noise_w: float = 0.0, wavelength_limits=(400.0, 1100.0), seed: Optional[int] = None):
        self.beam = beam
        self.gain = gain
        self.offset_w = offset_w
        self.noise_w = noise_w
        self.wavelength_limits = wavelength_limits
        self.wavelength_nm: Optional[float] = None
        self.dark_offset_w = 0.0
        self.is_connected = False
        self._rng = random.Random(seed)

    def connect(self) -> None:
        self.is_connected = True
        LOGGER.info("[SIM] Power meter connected")

    def disconnect(self) -> None:
        self.is_connected = False

    def set_wavelength(self, wavelength_nm: float) -> float:
        self.wavelength_nm = apply_clamped("Wavelength (nm)", wavelength_nm, *self.wavelength_limits, logger=LOGGER)
        return self.wavelength_nm

    def read_power(self) -> float:
        noise = self._rng.gauss(0.0, self.noise_w) if self.noise_w else 0.0
        return self.gain * self.beam.emitted_watts() + self.offset_w - self.dark_offset_w + noise

    def dark_adjust(self) -> bool:
        """Zero against the reading with the beam dark"""
        self.dark_offset_w = self.offset_w
        LOGGER.info("[SIM] Dark adjustment complete")
        return True

    def read_temperature(self) -> float:
        return 22.0
