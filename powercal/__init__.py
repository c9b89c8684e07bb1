"""
Laser Power Calibration
=======================

Sweeps a beam's power fraction, reads the power meter at each step and fits
observed against predicted power for calibrating the beam controller.
"""

from .calibration_fit import fit, push_calibration
from .clamp import OutOfRangeClamped, apply_clamped, clamp_to_range
from .errors import (
    DegenerateFitError,
    DeviceConnectionError,
    DeviceError,
    DeviceTimeoutError,
    PartialSweepError,
    PowerCalError,
    SweepCancelled,
)
from .interfaces import BeamController, PowerMeterDevice, ResultSink
from .power_sweep import CancellationToken, StepUpdate, SweepRecorder, commanded_percent_sequence
from .result_sink import FileResultSink, load_result
from .sweep_config import CalibrationConfigManager, StationSettings, SweepConfiguration
from .sweep_result import FittedLine, SweepResult

__all__ = [
    'SweepRecorder',
    'SweepConfiguration',
    'SweepResult',
    'FittedLine',
    'StepUpdate',
    'CancellationToken',
    'commanded_percent_sequence',
    'fit',
    'push_calibration',
    'clamp_to_range',
    'apply_clamped',
    'OutOfRangeClamped',
    'FileResultSink',
    'load_result',
    'CalibrationConfigManager',
    'StationSettings',
    'PowerMeterDevice',
    'BeamController',
    'ResultSink',
    'PowerCalError',
    'DeviceError',
    'DeviceConnectionError',
    'DeviceTimeoutError',
    'PartialSweepError',
    'DegenerateFitError',
    'SweepCancelled',
]
