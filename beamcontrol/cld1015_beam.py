"""
Thorlabs CLD1015 Laser Diode Controller as a Beam Controller

Exposes a CLD101x compact laser diode controller through the beam
controller contract: power is commanded as a fraction, mapped linearly onto a
drive-current window, and the controller keeps its own fraction-to-watts
lookup that a calibration can rewrite.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pyvisa
from pyvisa import errors as visa_errors

from powercal.errors import DeviceConnectionError, DeviceError

LOGGER = logging.getLogger(__name__)


class CLD1015Beam:
    """
    Driver for a Thorlabs CLD1015 laser diode controller driving one beam.

    Fraction 0 maps to the lower end of the current window (typically the
    lasing threshold), fraction 1 to the upper end.
    """

    def __init__(self, resource_name: str = "USB0::0x1313::0x804F::M01093719::0::INSTR",
                 current_window_ma: Tuple[float, float] = (0.0, 100.0),
                 power_limits_w: Tuple[float, float] = (0.0, 0.1),
                 resource_manager: Optional[pyvisa.ResourceManager] = None):
        """
        Initialize CLD1015 beam settings.

        Args:
            resource_name: VISA resource identifier for the CLD1015 controller
            current_window_ma: (min, max) drive current for fraction 0 and 1
            power_limits_w: (min, max) power expected at fraction 0 and 1
            resource_manager: Shared ResourceManager (a private one is created otherwise)
        """
        if current_window_ma[0] < 0 or current_window_ma[1] <= current_window_ma[0]:
            raise ValueError(f"Invalid current window: {current_window_ma}")

        self.resource_name = resource_name
        self.resource_manager = resource_manager
        self.current_window_ma = tuple(current_window_ma)
        self.power_lut = np.array([[0.0, power_limits_w[0]], [1.0, power_limits_w[1]]])
        self.instrument = None
        self.is_connected = False
        self.power_fraction = 0.0

    def connect(self) -> None:
        """
        Establish connection to the CLD1015 controller.

        Raises:
            DeviceConnectionError: The controller could not be opened
        """
        try:
            rm = self.resource_manager or pyvisa.ResourceManager()
            self.instrument = rm.open_resource(self.resource_name)

            self.instrument.timeout = 5000
            self.instrument.write_termination = '\n'
            self.instrument.read_termination = '\n'

            idn = self.instrument.query("*IDN?")
            self.instrument.write("*CLS")
            # Current mode, the fraction maps onto drive current
            self.instrument.write("SOUR:FUNC:MODE CURR")
        except (visa_errors.Error, OSError, ValueError) as e:
            self.instrument = None
            self.is_connected = False
            LOGGER.error(f"Failed to connect to CLD1015: {e}")
            raise DeviceConnectionError(f"Failed to connect to CLD1015 {self.resource_name}: {e}",
                                        operation="connect") from e

        self.is_connected = True
        LOGGER.info(f"Connected to CLD1015: {idn.strip()}")

    def disconnect(self) -> None:
        """Close connection to the CLD1015 controller."""
        if self.instrument:
            try:
                # Laser off before letting go of the controller
                self.park_beam()
                self.instrument.close()
                LOGGER.info("Disconnected from CLD1015")
            except (DeviceError, visa_errors.Error) as e:
                LOGGER.error(f"Error during disconnect: {e}")
            finally:
                self.instrument = None
                self.is_connected = False

    def _check_connection(self) -> None:
        if not self.is_connected or not self.instrument:
            raise DeviceConnectionError("CLD1015 not connected. Call connect() first.")

    def _write(self, command: str, operation: str) -> None:
        self._check_connection()
        try:
            self.instrument.write(command)
        except visa_errors.Error as e:
            raise DeviceError(f"CLD1015 {operation} failed: {e}", operation=operation) from e

    def fraction_to_current_ma(self, fraction: float) -> float:
        low, high = self.current_window_ma
        return low + fraction * (high - low)

    def set_power_fraction(self, fraction: float) -> None:
        """
        Set laser power as a fraction of the current window.

        Args:
            fraction: Power fraction in [0, 1]
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Power fraction must be in [0, 1], got {fraction}")

        current_ma = self.fraction_to_current_ma(fraction)
        self._write(f"SOUR:CURR:LEV:IMM:AMPL {current_ma / 1000.0:.6f}", "set_power_fraction")
        self.power_fraction = fraction
        LOGGER.info(f"Set power fraction to {fraction:.3f} ({current_ma:.3f} mA)")

    def power_fraction_to_watts(self, fraction: float) -> float:
        """Expected power at a fraction, from the lookup table"""
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Power fraction must be in [0, 1], got {fraction}")
        return float(np.interp(fraction, self.power_lut[:, 0], self.power_lut[:, 1]))

    def set_power_limits(self, min_watts: float, max_watts: float) -> None:
        """Rewrite the power column of the lookup table"""
        if max_watts <= min_watts:
            raise ValueError(f"Maximum power {max_watts} W must exceed minimum {min_watts} W")
        self.power_lut[:, 1] = [min_watts, max_watts]
        LOGGER.info(f"Power lookup set to {min_watts:.4f} - {max_watts:.4f} W")

    def set_output(self, enabled: bool) -> None:
        state = "ON" if enabled else "OFF"
        self._write(f"OUTP:STAT {state}", "set_output")
        LOGGER.info(f"LD output {'enabled' if enabled else 'disabled'}")

    def point_beam(self) -> None:
        self.set_output(True)

    def park_beam(self) -> None:
        """Current to zero and output off"""
        self._write("SOUR:CURR:LEV:IMM:AMPL 0", "park_beam")
        self._write("OUTP:STAT OFF", "park_beam")
        self.power_fraction = 0.0
        LOGGER.warning("Beam parked - LD output disabled")

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()


class LaserBank:
    """
    Several laser controllers addressed as 1-based beams.

    Implements the beam controller contract used by the sweep recorder.
    """

    def __init__(self, beams: Sequence[CLD1015Beam]):
        if not beams:
            raise ValueError("LaserBank needs at least one beam")
        self.beams: List[CLD1015Beam] = list(beams)

    @property
    def is_connected(self) -> bool:
        return all(beam.is_connected for beam in self.beams)

    def _beam(self, beam_index: int) -> CLD1015Beam:
        if not 1 <= beam_index <= len(self.beams):
            raise ValueError(f"beam_index {beam_index} out of range 1..{len(self.beams)}")
        return self.beams[beam_index - 1]

    def connect(self) -> None:
        for beam in self.beams:
            beam.connect()

    def disconnect(self) -> None:
        for beam in self.beams:
            beam.disconnect()

    def number_of_beams(self) -> int:
        return len(self.beams)

    def set_laser_power_fraction(self, fraction: float, beam_index: int = 1) -> None:
        self._beam(beam_index).set_power_fraction(fraction)

    def power_fraction_to_watts(self, fraction: float, beam_index: int = 1) -> float:
        return self._beam(beam_index).power_fraction_to_watts(fraction)

    def set_beam_power_limits(self, min_watts: float, max_watts: float, beam_index: int = 1) -> None:
        self._beam(beam_index).set_power_limits(min_watts, max_watts)

    def point_beam(self, beam_index: int = 1) -> None:
        """Output on for the selected beam only"""
        self._beam(beam_index).point_beam()

    def park_beam(self) -> None:
        """Park every beam, then report the first failure"""
        errors = []
        for beam in self.beams:
            try:
                beam.park_beam()
            except DeviceError as e:
                LOGGER.error(f"Failed to park {beam.resource_name}: {e}")
                errors.append(e)
        if errors:
            raise errors[0]
