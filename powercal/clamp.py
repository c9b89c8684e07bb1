"""
Range clamping shared by every device setter.

A requested value inside ``[minimum, maximum]`` is applied as-is; outside it
is forced to the nearest bound and reported as an ``OutOfRangeClamped``
warning. Setters never fail only because a value was out of range.
"""

import logging
import warnings
from typing import Optional, Tuple

LOGGER = logging.getLogger(__name__)


class OutOfRangeClamped(UserWarning):
    """Warning event describing a clamped device setting"""

    def __init__(self, setting: str, requested: float, applied: float,
                 minimum: float, maximum: float):
        self.setting = setting
        self.requested = requested
        self.applied = applied
        self.minimum = minimum
        self.maximum = maximum
        bound = "minimum" if applied == minimum else "maximum"
        super().__init__(
            f"{setting} {requested:g} exceeds {bound}, forced to {applied:g} "
            f"(valid range {minimum:g} to {maximum:g})"
        )


def clamp_to_range(value: float, minimum: float, maximum: float) -> Tuple[float, bool]:
    """
    Clamp value into [minimum, maximum].

    Returns:
        Tuple of (applied value, whether it was clamped)
    """
    if minimum > maximum:
        raise ValueError(f"Invalid range: minimum {minimum} > maximum {maximum}")
    if value < minimum:
        return minimum, True
    if value > maximum:
        return maximum, True
    return value, False


def apply_clamped(setting: str, value: float, minimum: float, maximum: float,
                  logger: Optional[logging.Logger] = None) -> float:
    """Clamp value and report the clamp as a warning event. Returns the applied value."""
    applied, was_clamped = clamp_to_range(value, minimum, maximum)
    if was_clamped:
        event = OutOfRangeClamped(setting, value, applied, minimum, maximum)
        (logger or LOGGER).warning(str(event))
        warnings.warn(event, stacklevel=3)
    return applied
