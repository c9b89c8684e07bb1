"""
Power Calibration Errors
========================
Exception taxonomy shared by the drivers, the sweep recorder and the fit.
"""

from typing import List, Optional


class PowerCalError(Exception):
    """Base class for all calibration errors"""


class DeviceError(PowerCalError):
    """
    A power meter or beam controller call failed.

    ``result`` is set when the failure came after all readings were taken
    (parking the beam after a completed sweep).
    """

    def __init__(self, message: str, operation: Optional[str] = None, result=None):
        super().__init__(message)
        self.operation = operation
        self.result = result


class DeviceConnectionError(DeviceError):
    """Device not reachable. Fatal, raised before any sweep starts."""


class DeviceTimeoutError(DeviceError):
    """A device read did not answer in time. Retryable once per reading."""


class DegenerateFitError(PowerCalError):
    """Fit input has no variance in the predicted power"""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class PartialSweepError(PowerCalError):
    """
    Sweep aborted mid-flight.

    Carries the rows completed before the failure so the data can still be
    inspected. ``partial_row`` holds the readings already taken on the
    interrupted step (may be empty).
    """

    def __init__(
        self,
        message: str,
        result,
        step_index: int,
        operation: Optional[str] = None,
        partial_row: Optional[List[float]] = None
    ):
        super().__init__(message)
        self.result = result
        self.step_index = step_index
        self.operation = operation
        self.partial_row = list(partial_row or [])

    @property
    def completed_steps(self) -> int:
        return self.result.num_steps if self.result is not None else 0


class SweepCancelled(PowerCalError):
    """Cancellation was requested between steps"""
