#!/usr/bin/env python3
"""
Automated Laser Power Calibration Script

Measures the true power at the sample plane over a range of commanded power
fractions and compares it with the power the beam controller predicts.

Measurement sequence:
- Connect the power meter and laser controller(s)
- Sweep the commanded power fraction, reading the meter at each step
- Fit observed vs predicted power
- Optionally zero the power meter with the beam parked
- Save the record (JSON) and raw readings (CSV)
- Optionally push the fitted power limits back to the controller
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from powercal import (
    CalibrationConfigManager,
    DegenerateFitError,
    DeviceError,
    FileResultSink,
    PartialSweepError,
    PowerCalError,
    SweepRecorder,
    push_calibration,
)
from powercal.device_registry import DeviceRegistry
from powercal.simulation import SimulatedBeamController, SimulatedPowerMeter

LOGGER = logging.getLogger("laser_power_calibration")


class LaserPowerCalibration:
    """
    Laser power calibration run: instruments, sweep, save, optional push.
    """

    def __init__(self, config_manager: CalibrationConfigManager, simulate: bool = False,
                 zero_meter: bool = False):
        self.config_manager = config_manager
        self.station = config_manager.get_station()
        self.simulate = simulate
        self.zero_meter = zero_meter
        self.registry: Optional[DeviceRegistry] = None
        self.power_meter = None
        self.beam_controller = None
        self.recorder = SweepRecorder()

    def initialize_instruments(self) -> None:
        """Connect power meter and beam controller"""
        if self.simulate:
            LOGGER.info("Simulation mode - no hardware is used")
            self.beam_controller = SimulatedBeamController(max_power_w=self.station.power_limits_w[1])
            self.power_meter = SimulatedPowerMeter(self.beam_controller, gain=0.95, offset_w=0.0005,
                                                   noise_w=0.0002)
            self.power_meter.connect()
        else:
            self._open_hardware()

        if self.zero_meter:
            self.zero_power_meter()

    def _open_hardware(self) -> None:
        self.registry = DeviceRegistry()
        self.power_meter = self.registry.open_power_meter(self.station.meter_resource)
        self.power_meter.set_auto_range(True)

        self.beam_controller = self.registry.open_laser_bank(
            self.station.laser_resources,
            current_window_ma=self.station.current_window_ma,
            power_limits_w=self.station.power_limits_w
        )
        LOGGER.info(f"Beam controller ready with {self.beam_controller.number_of_beams()} beam(s)")

    def zero_power_meter(self) -> None:
        """Dark-adjust the meter with every beam parked"""
        self.beam_controller.park_beam()
        LOGGER.info("Zeroing power meter with the beam parked")
        if self.power_meter.dark_adjust() and hasattr(self.power_meter, "get_dark_offset"):
            self.power_meter.get_dark_offset()

    def run(self, config, output_dir: Path, push: bool = False) -> bool:
        """Run the sweep, save the data and optionally push the calibration"""
        try:
            result = self.recorder.run_sweep(config, self.beam_controller, self.power_meter)
        except (PartialSweepError, DegenerateFitError, DeviceError) as e:
            LOGGER.error(f"Sweep failed: {e}")
            if e.result is not None and e.result.num_steps:
                self._save(e.result, output_dir, suffix="_PARTIAL")
            return False

        for key, value in result.summary().items():
            LOGGER.info(f"  {key}: {value}")

        self._save(result, output_dir)

        if push:
            push_calibration(self.beam_controller, result.fitted_line.fitted_min_and_max, config.beam_index)
        else:
            LOGGER.info("Calibration not pushed (use --push-calibration to apply the fit)")
        return True

    def _save(self, result, output_dir: Path, suffix: str = "") -> Path:
        sink = FileResultSink(settings_file=self.config_manager.loaded_from)
        stem = (f"{self.station.name}_power_calib_{result.wavelength_nm:.0f}nm__"
                f"{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}{suffix}")
        return sink.save(result, output_dir, stem)

    def cleanup(self) -> None:
        """Clean shutdown of all instruments"""
        if self.registry is not None:
            self.registry.close()
            LOGGER.info("Instruments disconnected")
        elif self.power_meter is not None:
            self.power_meter.disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Measure laser power at the objective and calibrate")
    parser.add_argument("--wavelength", "-w", type=float, required=True,
                        help="Excitation wavelength of the laser in nm")
    parser.add_argument("--steps", type=int, help="Number of power steps (>= 2)")
    parser.add_argument("--reps", type=int, help="Readings per step")
    parser.add_argument("--settle", type=float, help="Settling time after each step in seconds")
    parser.add_argument("--beam", type=int, help="Beam index (1-based)")
    parser.add_argument("--first-percent", type=float, help="First commanded percent (default 0)")
    parser.add_argument("--output-dir", type=Path, help="Directory for saved data")
    parser.add_argument("--config", type=Path, help="Station config JSON")
    parser.add_argument("--simulate", action="store_true", help="Run against simulated devices")
    parser.add_argument("--zero-meter", action="store_true",
                        help="Dark-adjust the power meter with the beam parked before the sweep (PM400)")
    parser.add_argument("--push-calibration", action="store_true",
                        help="Apply the fitted power limits to the beam controller")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main calibration function"""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config_manager = CalibrationConfigManager(args.config)
    station = config_manager.get_station()
    output_dir = args.output_dir or Path(station.output_dir or "calibration_data")

    try:
        config = config_manager.build_sweep_configuration(
            args.wavelength,
            num_steps=args.steps,
            sample_reps=args.reps,
            settling_time=args.settle,
            beam_index=args.beam,
            first_percent=args.first_percent,
        )
    except ValueError as e:
        LOGGER.error(f"Invalid sweep configuration: {e}")
        return 2

    calibration = LaserPowerCalibration(config_manager, simulate=args.simulate, zero_meter=args.zero_meter)
    try:
        calibration.initialize_instruments()
        ok = calibration.run(config, output_dir, push=args.push_calibration)
    except KeyboardInterrupt:
        LOGGER.warning("Calibration interrupted by user")
        return 130
    except (PowerCalError, ValueError) as e:
        LOGGER.error(f"Calibration failed: {e}")
        return 1
    finally:
        calibration.cleanup()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
