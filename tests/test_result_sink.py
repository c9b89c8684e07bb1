"""
Tests for sweep result persistence.

Run from repo root: pytest tests/test_result_sink.py -v
"""

import numpy as np
import pandas as pd
import pytest

from powercal.calibration_fit import fit
from powercal.result_sink import FileResultSink, load_result
from powercal.sweep_result import SweepResult


@pytest.fixture
def result():
    predicted = np.array([0.0, 33.3333333333, 66.6666666667, 100.0])
    observed = np.column_stack([1.02 * predicted + 0.7, 1.01 * predicted + 0.9])
    res = SweepResult(
        commanded_percent=np.linspace(0, 100, 4),
        observed_power_mw=observed,
        predicted_power_mw=predicted,
        wavelength_nm=1100.0,
        requested_wavelength_nm=1300.0,
        beam_index=2,
        timestamp="2025-03-04_10-11-12",
        sensor_info={"name": "S120C", "serial": "190101"},
        meter_temperature_c=23.5,
    )
    res.freeze()
    res.attach_fit(fit(res))
    return res


def test_saved_record_round_trips(tmp_path, result):
    path = FileResultSink().save(result, tmp_path / "out", "rig1_power_calib_1100nm")
    loaded = load_result(path)

    np.testing.assert_array_equal(loaded.observed_power_mw, result.observed_power_mw)
    np.testing.assert_array_equal(loaded.predicted_power_mw, result.predicted_power_mw)
    np.testing.assert_array_equal(loaded.commanded_percent, result.commanded_percent)
    assert loaded.wavelength_nm == 1100.0
    assert loaded.requested_wavelength_nm == 1300.0
    assert loaded.beam_index == 2
    assert loaded.timestamp == "2025-03-04_10-11-12"
    assert loaded.sensor_info == {"name": "S120C", "serial": "190101"}
    assert loaded.meter_temperature_c == 23.5
    assert loaded.fitted_line == result.fitted_line
    assert loaded.is_frozen


def test_csv_has_one_row_per_reading(tmp_path, result):
    FileResultSink().save(result, tmp_path, "sweep")
    df = pd.read_csv(tmp_path / "sweep.csv")

    assert len(df) == 8
    assert list(df.columns) == ['step', 'repetition', 'commanded_percent',
                                'predicted_power_mw', 'observed_power_mw']
    assert df.loc[df.step == 4, 'observed_power_mw'].tolist() == pytest.approx([102.7, 101.9])


def test_settings_file_copied(tmp_path, result):
    settings = tmp_path / "powercal_config.json"
    settings.write_text("{}")
    FileResultSink(settings_file=settings).save(result, tmp_path / "data", "sweep")

    assert (tmp_path / "data" / "powercal_config.json").exists()


def test_export_to_caller(result):
    namespace = {}
    FileResultSink(namespace=namespace).export_to_caller(result)
    assert namespace["power_measurements"] is result


def test_partial_result_without_fit(tmp_path):
    partial = SweepResult(
        commanded_percent=[0.0, 50.0],
        observed_power_mw=[[0.1], [50.2]],
        predicted_power_mw=[0.0, 50.0],
        wavelength_nm=920,
        beam_index=1,
    )
    loaded = load_result(FileResultSink().save(partial, tmp_path, "partial"))

    assert loaded.fitted_line is None
    assert loaded.num_steps == 2


def test_unknown_record_version_rejected(result):
    record = result.to_record()
    record["record_version"] = 99
    with pytest.raises(ValueError):
        SweepResult.from_record(record)
