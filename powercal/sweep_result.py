"""
Sweep result containers and their persisted record form.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

LOGGER = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
RECORD_VERSION = 1


@dataclass(frozen=True)
class FittedLine:
    """observed_mw = intercept + slope * predicted_mw"""
    intercept: float
    slope: float
    fitted_min_mw: float
    fitted_max_mw: float

    def evaluate(self, predicted_mw):
        return self.intercept + self.slope * np.asarray(predicted_mw, dtype=float)

    @property
    def fitted_min_and_max(self) -> Tuple[float, float]:
        return self.fitted_min_mw, self.fitted_max_mw


@dataclass
class SweepResult:
    """
    Measurements of one calibration sweep.

    ``observed_power_mw`` has one row per commanded step and one column per
    repetition. Once the sweep loop completes the arrays are frozen and only
    the fit may be attached, exactly once.
    """
    commanded_percent: np.ndarray
    observed_power_mw: np.ndarray
    predicted_power_mw: np.ndarray
    wavelength_nm: float
    beam_index: int
    requested_wavelength_nm: Optional[float] = None
    timestamp: str = field(default_factory=lambda: datetime.now().strftime(TIMESTAMP_FORMAT))
    sensor_info: Dict[str, Any] = field(default_factory=dict)
    meter_temperature_c: Optional[float] = None
    fitted_line: Optional[FittedLine] = None

    def __post_init__(self):
        self.commanded_percent = np.asarray(self.commanded_percent, dtype=float)
        self.observed_power_mw = np.asarray(self.observed_power_mw, dtype=float)
        self.predicted_power_mw = np.asarray(self.predicted_power_mw, dtype=float)
        if self.requested_wavelength_nm is None:
            self.requested_wavelength_nm = self.wavelength_nm

        if self.observed_power_mw.ndim != 2:
            raise ValueError("observed_power_mw must be a 2D array (steps x repetitions)")
        n_steps = self.observed_power_mw.shape[0]
        if self.commanded_percent.shape != (n_steps,) or self.predicted_power_mw.shape != (n_steps,):
            raise ValueError(
                f"Inconsistent step count: observed {self.observed_power_mw.shape}, "
                f"commanded {self.commanded_percent.shape}, predicted {self.predicted_power_mw.shape}"
            )

    @property
    def num_steps(self) -> int:
        return self.observed_power_mw.shape[0]

    @property
    def sample_reps(self) -> int:
        return self.observed_power_mw.shape[1]

    @property
    def mean_observed_power_mw(self) -> np.ndarray:
        if self.num_steps == 0:
            return np.empty(0)
        return self.observed_power_mw.mean(axis=1)

    @property
    def is_frozen(self) -> bool:
        return not self.observed_power_mw.flags.writeable

    def freeze(self):
        """Make the measurement arrays read-only"""
        for arr in (self.commanded_percent, self.observed_power_mw, self.predicted_power_mw):
            arr.setflags(write=False)

    def attach_fit(self, line: FittedLine):
        if self.fitted_line is not None:
            raise RuntimeError("Fit already attached to this sweep result")
        self.fitted_line = line

    def to_dataframe(self) -> pd.DataFrame:
        """One row per reading (long format)"""
        steps, reps = np.meshgrid(np.arange(self.num_steps), np.arange(self.sample_reps), indexing="ij")
        steps = steps.ravel()
        return pd.DataFrame({
            'step': steps + 1,
            'repetition': reps.ravel() + 1,
            'commanded_percent': self.commanded_percent[steps],
            'predicted_power_mw': self.predicted_power_mw[steps],
            'observed_power_mw': self.observed_power_mw.ravel(),
        })

    def summary(self) -> Dict[str, Any]:
        """Summary statistics for reporting"""
        means = self.mean_observed_power_mw
        summary = {
            'steps': self.num_steps,
            'repetitions': self.sample_reps,
            'wavelength_nm': self.wavelength_nm,
            'beam_index': self.beam_index,
            'observed_range_mw': (float(means.min()), float(means.max())) if means.size else None,
            'predicted_range_mw': (float(self.predicted_power_mw.min()), float(self.predicted_power_mw.max()))
            if self.num_steps else None,
            'max_std_mw': float(self.observed_power_mw.std(axis=1).max()) if self.num_steps else None,
        }
        if self.fitted_line is not None:
            summary['slope'] = self.fitted_line.slope
            summary['intercept_mw'] = self.fitted_line.intercept
            summary['fitted_min_max_mw'] = self.fitted_line.fitted_min_and_max
        return summary

    def to_record(self) -> Dict[str, Any]:
        """Plain dictionary suitable for JSON"""
        record = {
            'record_version': RECORD_VERSION,
            'timestamp': self.timestamp,
            'wavelength_nm': self.wavelength_nm,
            'requested_wavelength_nm': self.requested_wavelength_nm,
            'beam_index': self.beam_index,
            'commanded_percent': self.commanded_percent.tolist(),
            'observed_power_mw': self.observed_power_mw.tolist(),
            'predicted_power_mw': self.predicted_power_mw.tolist(),
            'sensor_info': dict(self.sensor_info),
            'meter_temperature_c': self.meter_temperature_c,
            'fit': None,
        }
        if self.fitted_line is not None:
            record['fit'] = {
                'intercept_mw': self.fitted_line.intercept,
                'slope': self.fitted_line.slope,
                'fitted_min_max_mw': list(self.fitted_line.fitted_min_and_max),
            }
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SweepResult":
        version = record.get('record_version', RECORD_VERSION)
        if version != RECORD_VERSION:
            raise ValueError(f"Unsupported sweep record version: {version}")

        observed = np.asarray(record['observed_power_mw'], dtype=float)
        if observed.size == 0:
            observed = observed.reshape(0, 0)

        result = cls(
            commanded_percent=record['commanded_percent'],
            observed_power_mw=observed,
            predicted_power_mw=record['predicted_power_mw'],
            wavelength_nm=record['wavelength_nm'],
            requested_wavelength_nm=record.get('requested_wavelength_nm'),
            beam_index=record['beam_index'],
            timestamp=record['timestamp'],
            sensor_info=record.get('sensor_info') or {},
            meter_temperature_c=record.get('meter_temperature_c'),
        )
        fit = record.get('fit')
        if fit:
            fitted_min, fitted_max = fit['fitted_min_max_mw']
            result.attach_fit(FittedLine(
                intercept=fit['intercept_mw'],
                slope=fit['slope'],
                fitted_min_mw=fitted_min,
                fitted_max_mw=fitted_max
            ))
        result.freeze()
        return result
