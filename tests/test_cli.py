"""
Smoke tests for the command-line entry point in simulation mode.

Run from repo root: pytest tests/test_cli.py -v
"""

import json

import pytest

import laser_power_calibration
from powercal.errors import DeviceError
from powercal.sweep_config import CalibrationConfigManager


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("POWERCAL_METER_RESOURCE", raising=False)
    monkeypatch.delenv("POWERCAL_LASER_RESOURCES", raising=False)
    monkeypatch.setattr(CalibrationConfigManager, "DEFAULT_CONFIG_PATHS", [tmp_path / "powercal_config.json"])
    monkeypatch.setattr(CalibrationConfigManager, "DEFAULT_SWEEP_SETTINGS",
                        dict(CalibrationConfigManager.DEFAULT_SWEEP_SETTINGS, zero_settle_time=0.0))
    return tmp_path


def test_simulated_run_saves_data(workdir):
    code = laser_power_calibration.main([
        "--wavelength", "920", "--steps", "5", "--reps", "2", "--settle", "0",
        "--simulate", "--output-dir", str(workdir / "out"),
    ])

    assert code == 0
    records = list((workdir / "out").glob("*.json"))
    assert len(records) == 1
    assert records[0].name.startswith("microscope_power_calib_920nm__")
    data = json.loads(records[0].read_text())
    assert len(data["observed_power_mw"]) == 5
    assert data["fit"]["slope"] == pytest.approx(0.95, abs=0.05)


def test_invalid_configuration_exit_code(workdir):
    assert laser_power_calibration.main(["--wavelength", "920", "--steps", "1", "--simulate"]) == 2


def make_calibration(workdir, **kwargs):
    config_manager = CalibrationConfigManager()
    calibration = laser_power_calibration.LaserPowerCalibration(config_manager, simulate=True, **kwargs)
    calibration.initialize_instruments()
    config = config_manager.build_sweep_configuration(920, num_steps=5, sample_reps=2, settling_time=0)
    return calibration, config


def test_push_calibration_rewrites_beam_limits(workdir):
    calibration, config = make_calibration(workdir)

    assert calibration.run(config, workdir / "out", push=True)

    min_w, max_w = calibration.beam_controller.power_limits_w[0]
    assert 0.0 <= min_w <= 0.002
    assert max_w == pytest.approx(0.0955, abs=0.002)


def test_without_push_limits_unchanged(workdir):
    calibration, config = make_calibration(workdir)

    assert calibration.run(config, workdir / "out", push=False)

    assert calibration.beam_controller.power_limits_w[0] == [0.0, 0.1]


def test_push_calibration_flag_exit_code(workdir):
    code = laser_power_calibration.main([
        "--wavelength", "920", "--steps", "5", "--settle", "0",
        "--simulate", "--push-calibration", "--output-dir", str(workdir / "out"),
    ])
    assert code == 0


def test_aborted_sweep_saves_partial_data(workdir):
    calibration, config = make_calibration(workdir)
    meter = calibration.power_meter
    read_power = meter.read_power
    reads = []

    def failing_read():
        reads.append(1)
        if len(reads) > 5:
            raise DeviceError("sensor unplugged", operation="read_power")
        return read_power()

    meter.read_power = failing_read

    assert not calibration.run(config, workdir / "out")

    records = list((workdir / "out").glob("*_PARTIAL.json"))
    assert len(records) == 1
    data = json.loads(records[0].read_text())
    assert len(data["observed_power_mw"]) == 2
    assert calibration.beam_controller.park_count == 1


def test_zero_meter_parks_then_dark_adjusts(workdir):
    calibration, config = make_calibration(workdir, zero_meter=True)

    assert calibration.beam_controller.park_count == 1
    assert calibration.power_meter.dark_offset_w == pytest.approx(0.0005)
    assert calibration.run(config, workdir / "out")
