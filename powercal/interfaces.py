"""
Device and sink contracts used by the sweep recorder.

Concrete drivers do not inherit from these; any object with the same
methods can be passed in.
"""

from pathlib import Path
from typing import Protocol, Union, runtime_checkable


@runtime_checkable
class PowerMeterDevice(Protocol):
    """Power meter capability set"""

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def set_wavelength(self, wavelength_nm: float) -> float:
        """Set calibration wavelength, returns the wavelength actually applied"""
        ...

    def read_power(self) -> float:
        """Read power in watts"""
        ...


@runtime_checkable
class BeamController(Protocol):
    """Laser beam power actuator. Beam indices are 1-based."""

    def set_laser_power_fraction(self, fraction: float, beam_index: int = 1) -> None: ...

    def power_fraction_to_watts(self, fraction: float, beam_index: int = 1) -> float: ...

    def set_beam_power_limits(self, min_watts: float, max_watts: float, beam_index: int = 1) -> None: ...

    def park_beam(self) -> None: ...

    def point_beam(self, beam_index: int = 1) -> None: ...

    def number_of_beams(self) -> int: ...


@runtime_checkable
class ResultSink(Protocol):
    """Destination for a finished sweep"""

    def save(self, result, destination_path: Union[str, Path], file_name_stem: str) -> Path: ...

    def export_to_caller(self, result) -> None: ...
