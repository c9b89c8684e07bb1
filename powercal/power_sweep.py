"""
Laser Power Calibration Sweep
=============================

Drives a beam through evenly spaced power fractions, reads the power meter
at each setpoint and fits observed against predicted power.

Measurement sequence:
- Set the meter's calibration wavelength
- Zero and point the beam, wait briefly
- At each step: set fraction, settle, take repeated readings, query the
  controller's own prediction
- Park the beam (always, also on failure or cancellation)
- Fit observed vs predicted power
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)

from .calibration_fit import fit
from .errors import (
    DegenerateFitError,
    DeviceConnectionError,
    DeviceError,
    DeviceTimeoutError,
    PartialSweepError,
    SweepCancelled,
)
from .interfaces import BeamController, PowerMeterDevice
from .sweep_config import SweepConfiguration
from .sweep_result import SweepResult

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Checked at the top of every sweep step"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class StepUpdate:
    """Progress of one completed step, published to live displays"""
    step_index: int
    num_steps: int
    commanded_percent: float
    readings_mw: List[float]
    mean_observed_mw: float
    predicted_mw: float


def commanded_percent_sequence(num_steps: int, first_percent: float = 0.0) -> np.ndarray:
    """num_steps evenly spaced percents from first_percent to 100 inclusive"""
    if num_steps < 2:
        raise ValueError("num_steps must be >= 2")
    return np.linspace(first_percent, 100.0, num_steps)


@retry(
    stop=stop_after_attempt(2),
    retry=retry_if_exception_type(DeviceTimeoutError),
    before_sleep=before_sleep_log(LOGGER, logging.WARNING),
    reraise=True
)
def _read_power_mw(power_meter) -> float:
    """One meter reading in mW; a timeout is retried once"""
    watts = power_meter.read_power()
    if watts is None or not math.isfinite(watts):
        raise DeviceError(f"Power meter returned an invalid reading: {watts}", operation="read_power")
    return watts * 1000.0


class SweepRecorder:
    """
    Runs calibration sweeps.

    The recorder owns the meter and beam controller for the duration of a
    sweep. The last finished result stays available through ``result``.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self._sleep = sleep
        self.result: Optional[SweepResult] = None

    def has_result(self) -> bool:
        return self.result is not None

    def run_sweep(
        self,
        config: SweepConfiguration,
        beam_controller: BeamController,
        power_meter: PowerMeterDevice,
        cancel_token: Optional[CancellationToken] = None,
        on_step: Optional[Callable[[StepUpdate], None]] = None
    ) -> SweepResult:
        """
        Run one calibration sweep.

        Args:
            config: Sweep parameters
            beam_controller: Connected beam controller
            power_meter: Connected power meter
            cancel_token: Optional token, checked before each step
            on_step: Optional callback receiving a StepUpdate after each step

        Returns:
            SweepResult with the fit attached

        Raises:
            DeviceConnectionError: a device is not connected
            DeviceError: the meter rejected the wavelength, or the beam could
                not be parked after a completed sweep (``result`` carries the data)
            PartialSweepError: the sweep was aborted after it started
            DegenerateFitError: the readings could not be fitted (``result``
                carries the data)
        """
        self._check_connected(beam_controller, power_meter, config.beam_index)

        if config.read_timeout_s is not None and hasattr(power_meter, "set_timeout"):
            power_meter.set_timeout(config.read_timeout_s * 1000.0)

        applied_wavelength = self._set_wavelength(power_meter, config.laser_wavelength_nm)
        sensor_info = self._query_sensor_info(power_meter)

        percents = commanded_percent_sequence(config.num_steps, config.first_percent)
        observed = np.full((config.num_steps, config.sample_reps), np.nan)
        predicted = np.full(config.num_steps, np.nan)
        completed = 0

        LOGGER.info(
            f"Starting power sweep on beam {config.beam_index}: {config.num_steps} steps "
            f"({percents[0]:g}% to 100%), {config.sample_reps} reading(s) per step, "
            f"{applied_wavelength:g} nm"
        )
        start_time = time.monotonic()

        step_index = 0
        operation = "zero_beam"
        row: List[float] = []
        try:
            try:
                beam_controller.set_laser_power_fraction(0.0, config.beam_index)
                operation = "point_beam"
                beam_controller.point_beam(config.beam_index)
                self._sleep(config.zero_settle_time)

                for step_index, percent in enumerate(percents):
                    operation = "cancel"
                    row = []
                    if cancel_token is not None and cancel_token.is_cancelled:
                        raise SweepCancelled(f"Sweep cancelled before step {step_index + 1}")

                    fraction = percent / 100.0
                    operation = "set_laser_power_fraction"
                    beam_controller.set_laser_power_fraction(fraction, config.beam_index)
                    self._sleep(config.settling_time)

                    operation = "read_power"
                    for _ in range(config.sample_reps):
                        row.append(_read_power_mw(power_meter))

                    operation = "power_fraction_to_watts"
                    predicted_mw = beam_controller.power_fraction_to_watts(fraction, config.beam_index) * 1000.0

                    observed[step_index, :] = row
                    predicted[step_index] = predicted_mw
                    completed = step_index + 1
                    row = []

                    operation = "publish"
                    self._publish(on_step, StepUpdate(
                        step_index=step_index,
                        num_steps=config.num_steps,
                        commanded_percent=float(percent),
                        readings_mw=observed[step_index, :].tolist(),
                        mean_observed_mw=float(observed[step_index, :].mean()),
                        predicted_mw=float(predicted_mw),
                    ))

                operation = "read_temperature"
                temperature = self._query_temperature(power_meter)
            except Exception as e:
                partial = SweepResult(
                    commanded_percent=percents[:completed].copy(),
                    observed_power_mw=observed[:completed].copy(),
                    predicted_power_mw=predicted[:completed].copy(),
                    wavelength_nm=applied_wavelength,
                    requested_wavelength_nm=config.laser_wavelength_nm,
                    beam_index=config.beam_index,
                    sensor_info=sensor_info,
                )
                partial.freeze()
                LOGGER.error(
                    f"Sweep aborted at step {step_index + 1}/{config.num_steps} during {operation}: {e} "
                    f"({completed} complete step(s) kept)"
                )
                raise PartialSweepError(
                    f"Sweep aborted at step {step_index + 1} during {operation}: {e}",
                    result=partial,
                    step_index=step_index,
                    operation=operation,
                    partial_row=row
                ) from e
        except BaseException:
            self._park(beam_controller, config.beam_index, strict=False)
            raise

        result = SweepResult(
            commanded_percent=percents,
            observed_power_mw=observed,
            predicted_power_mw=predicted,
            wavelength_nm=applied_wavelength,
            requested_wavelength_nm=config.laser_wavelength_nm,
            beam_index=config.beam_index,
            sensor_info=sensor_info,
            meter_temperature_c=temperature,
        )
        result.freeze()

        try:
            self._park(beam_controller, config.beam_index, strict=True)
        except DeviceError as e:
            e.result = result
            raise

        try:
            result.attach_fit(fit(result))
        except DegenerateFitError as e:
            LOGGER.error(f"Fit failed, readings kept on the error: {e}")
            e.result = result
            raise

        LOGGER.info(f"Power sweep complete in {time.monotonic() - start_time:.1f} s")
        self.result = result
        return result

    def _check_connected(self, beam_controller, power_meter, beam_index: int):
        if not getattr(power_meter, "is_connected", True):
            raise DeviceConnectionError("Power meter not connected. Call connect() first.", operation="connect")
        if not getattr(beam_controller, "is_connected", True):
            raise DeviceConnectionError("Beam controller not connected. Call connect() first.", operation="connect")

        try:
            n_beams = beam_controller.number_of_beams()
        except Exception as e:
            raise DeviceConnectionError(f"Beam controller not responding: {e}", operation="number_of_beams") from e
        if beam_index > n_beams:
            raise ValueError(f"beam_index {beam_index} exceeds the {n_beams} available beam(s)")

    def _set_wavelength(self, power_meter, wavelength_nm: float) -> float:
        try:
            applied = power_meter.set_wavelength(wavelength_nm)
        except DeviceError:
            raise
        except Exception as e:
            raise DeviceError(f"Power meter rejected wavelength {wavelength_nm:g} nm: {e}",
                              operation="set_wavelength") from e

        if applied is None:
            applied = wavelength_nm
        if applied != wavelength_nm:
            LOGGER.warning(f"Power meter wavelength clamped to {applied:g} nm (requested {wavelength_nm:g} nm)")
        return float(applied)

    def _query_sensor_info(self, power_meter) -> dict:
        if not hasattr(power_meter, "sensor_info"):
            return {}
        try:
            return dict(power_meter.sensor_info())
        except Exception as e:
            LOGGER.warning(f"Sensor info query failed: {e}")
            return {}

    def _query_temperature(self, power_meter) -> Optional[float]:
        if not hasattr(power_meter, "read_temperature"):
            return None
        try:
            return float(power_meter.read_temperature())
        except Exception as e:
            LOGGER.warning(f"Temperature measurement failed: {e}")
            return None

    def _publish(self, on_step, update: StepUpdate):
        LOGGER.info(
            f"Step {update.step_index + 1}/{update.num_steps}: {update.commanded_percent:.1f}% -> "
            f"{update.mean_observed_mw:.3f} mW observed, {update.predicted_mw:.3f} mW predicted"
        )
        if on_step is not None:
            on_step(update)

    def _park(self, beam_controller, beam_index: int, strict: bool):
        """Zero and park the beam. Errors are only raised when no other error is in flight."""
        try:
            beam_controller.set_laser_power_fraction(0.0, beam_index)
        except Exception as e:
            LOGGER.error(f"Failed to zero beam {beam_index}: {e}")
        try:
            beam_controller.park_beam()
            LOGGER.info("Beam parked")
        except Exception as e:
            LOGGER.error(f"Failed to park beam: {e}")
            if strict:
                raise DeviceError(f"Failed to park beam: {e}", operation="park_beam") from e
