"""
Tests for the caller-owned device registry.

Run from repo root: pytest tests/test_device_registry.py -v
"""

import pytest

from conftest import LASER_RESOURCE, METER_RESOURCE
from powercal.device_registry import DeviceRegistry
from powercal.errors import DeviceConnectionError


class CountingResourceManager:
    def __init__(self, rm):
        self.rm = rm
        self.list_calls = 0

    def list_resources(self):
        self.list_calls += 1
        return self.rm.list_resources()

    def open_resource(self, name):
        return self.rm.open_resource(name)

    def close(self):
        self.rm.close()


def test_resource_list_cached(resource_manager):
    rm = CountingResourceManager(resource_manager)
    registry = DeviceRegistry(rm)

    registry.list_resources()
    registry.find_power_meters()
    assert rm.list_calls == 1

    registry.list_resources(refresh=True)
    assert rm.list_calls == 2


def test_meters_and_lasers_told_apart(resource_manager):
    registry = DeviceRegistry(resource_manager)
    assert registry.find_power_meters() == [METER_RESOURCE]
    assert registry.find_laser_controllers() == [LASER_RESOURCE]


def test_open_and_close_everything(resource_manager, meter_instrument, laser_instrument):
    with DeviceRegistry(resource_manager) as registry:
        meter = registry.open_power_meter()
        bank = registry.open_laser_bank([], current_window_ma=(0.0, 100.0), power_limits_w=(0.0, 0.1))
        assert meter.is_connected
        assert bank.number_of_beams() == 1

    assert meter_instrument.closed
    assert laser_instrument.closed
    assert "OUTP:STAT OFF" in laser_instrument.writes
    assert resource_manager.closed


def test_no_meter_found():
    from conftest import FakeResourceManager

    registry = DeviceRegistry(FakeResourceManager({}))
    with pytest.raises(DeviceConnectionError):
        registry.open_power_meter()
