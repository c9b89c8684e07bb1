"""
Unit tests for the clamp-and-warn policy shared by device setters.

Run from repo root: pytest tests/test_clamp.py -v
"""

import logging
import warnings

import pytest

from powercal.clamp import OutOfRangeClamped, apply_clamped, clamp_to_range


class TestClampToRange:

    def test_in_range_unchanged(self):
        assert clamp_to_range(920, 400, 1100) == (920, False)

    def test_bounds_are_in_range(self):
        assert clamp_to_range(400, 400, 1100) == (400, False)
        assert clamp_to_range(1100, 400, 1100) == (1100, False)

    def test_below_minimum(self):
        assert clamp_to_range(300, 400, 1100) == (400, True)

    def test_above_maximum(self):
        assert clamp_to_range(1300, 400, 1100) == (1100, True)

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            clamp_to_range(1, 5, 2)


class TestApplyClamped:

    def test_no_warning_in_range(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert apply_clamped("Wavelength (nm)", 800, 400, 1100) == 800

    def test_clamp_emits_structured_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            with pytest.warns(OutOfRangeClamped) as record:
                applied = apply_clamped("Wavelength (nm)", 1300, 400, 1100)

        assert applied == 1100
        event = record[0].message
        assert event.setting == "Wavelength (nm)"
        assert event.requested == 1300
        assert event.applied == 1100
        assert (event.minimum, event.maximum) == (400, 1100)
        assert "maximum" in caplog.text

    def test_clamp_to_minimum_message(self):
        with pytest.warns(OutOfRangeClamped, match="minimum"):
            assert apply_clamped("Display brightness", -0.5, 0.0, 1.0) == 0.0
