"""
Least-squares fit of observed vs predicted power, and the calibration push.
"""

import logging
from typing import Sequence

import numpy as np

from .errors import DegenerateFitError
from .sweep_result import FittedLine, SweepResult

LOGGER = logging.getLogger(__name__)


def fit(result: SweepResult) -> FittedLine:
    """
    Fit observed = intercept + slope * predicted over every raw reading.

    All num_steps * sample_reps points are used, each reading paired with the
    predicted power of its step. Solved with an SVD-based least squares.

    Raises:
        DegenerateFitError: fewer than two steps, non-finite input or no
            variance in the predicted power
    """
    if result.num_steps < 2 or result.sample_reps < 1:
        raise DegenerateFitError(
            f"Need at least 2 steps with readings to fit, got {result.observed_power_mw.shape}"
        )

    predicted = np.repeat(result.predicted_power_mw, result.sample_reps)
    observed = result.observed_power_mw.ravel()

    if not (np.all(np.isfinite(predicted)) and np.all(np.isfinite(observed))):
        raise DegenerateFitError("Fit input contains NaN or infinite values")
    if np.ptp(predicted) == 0:
        raise DegenerateFitError(
            f"All predicted values are equal ({predicted[0]:g} mW), fit is undefined"
        )

    design = np.column_stack([np.ones_like(predicted), predicted])
    (intercept, slope), _, rank, _ = np.linalg.lstsq(design, observed, rcond=None)
    if rank < 2:
        raise DegenerateFitError("Predicted power has no usable variance")

    intercept = float(intercept)
    slope = float(slope)
    first, last = result.predicted_power_mw[0], result.predicted_power_mw[-1]
    line = FittedLine(
        intercept=intercept,
        slope=slope,
        fitted_min_mw=float(intercept + slope * first),
        fitted_max_mw=float(intercept + slope * last),
    )
    LOGGER.info(
        f"Fit: observed = {intercept:.4f} mW + {slope:.4f} * predicted "
        f"(fitted range {line.fitted_min_mw:.3f} - {line.fitted_max_mw:.3f} mW)"
    )
    return line


def push_calibration(beam_controller, fitted_min_and_max: Sequence[float], beam_index: int = 1):
    """
    Reset the beam's power limits from a fit.

    Rounds the fitted min/max to the nearest mW and sends them in watts. This
    rewrites the controller's fraction-to-watts lookup, so it is only ever
    called explicitly.

    Returns:
        Tuple of (min_watts, max_watts) sent to the controller
    """
    if len(fitted_min_and_max) != 2:
        raise ValueError("fitted_min_and_max must contain exactly two values")

    min_mw, max_mw = (float(np.round(v)) for v in fitted_min_and_max)
    if not (np.isfinite(min_mw) and np.isfinite(max_mw)):
        raise ValueError("Fitted power limits must be finite")
    if max_mw <= min_mw:
        raise ValueError(f"Fitted maximum {max_mw:g} mW must exceed minimum {min_mw:g} mW")
    if min_mw < 0:
        LOGGER.warning(f"Fitted minimum {min_mw:g} mW is negative, clamped to 0 mW")
        min_mw = 0.0
        if max_mw <= min_mw:
            raise ValueError(f"Fitted maximum {max_mw:g} mW must be positive")

    min_w, max_w = min_mw / 1000.0, max_mw / 1000.0
    beam_controller.set_beam_power_limits(min_w, max_w, beam_index)
    LOGGER.warning(f"Beam {beam_index} power limits set to {min_w:.3f} - {max_w:.3f} W from fit")
    return min_w, max_w
