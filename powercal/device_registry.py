"""
Caller-owned registry of VISA devices.

Create one per process, pass it to whatever opens instruments, close it at
shutdown. The resource list is enumerated once and cached.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import pyvisa
from pyvisa import errors as visa_errors

from beamcontrol.cld1015_beam import CLD1015Beam, LaserBank
from powermeter.thorlabs_pm import ThorlabsPowerMeter

from .errors import DeviceConnectionError

LOGGER = logging.getLogger(__name__)

THORLABS_VENDOR_ID = "0x1313"
CLD101X_PRODUCT_ID = "0x804F"


class DeviceRegistry:
    """Owns the VISA ResourceManager and every device opened through it"""

    def __init__(self, resource_manager: Optional[pyvisa.ResourceManager] = None):
        self._resource_manager = resource_manager
        self._resources: Optional[List[str]] = None
        self._devices: list = []

    @property
    def resource_manager(self) -> pyvisa.ResourceManager:
        if self._resource_manager is None:
            try:
                self._resource_manager = pyvisa.ResourceManager()
            except (visa_errors.Error, OSError, ValueError) as e:
                raise DeviceConnectionError(f"No VISA backend available: {e}") from e
        return self._resource_manager

    def list_resources(self, refresh: bool = False) -> List[str]:
        """VISA resources, enumerated once unless refresh is requested"""
        if self._resources is None or refresh:
            self._resources = list(self.resource_manager.list_resources())
            LOGGER.info(f"Found {len(self._resources)} VISA resource(s)")
        else:
            LOGGER.info("Reusing list of previously found VISA resources")
        return list(self._resources)

    def find_power_meters(self) -> List[str]:
        """Thorlabs USB resources that are not CLD101x laser controllers"""
        return [r for r in self.list_resources()
                if THORLABS_VENDOR_ID in r and CLD101X_PRODUCT_ID not in r]

    def find_laser_controllers(self) -> List[str]:
        return [r for r in self.list_resources() if CLD101X_PRODUCT_ID in r]

    def open_power_meter(self, resource_name: Optional[str] = None) -> ThorlabsPowerMeter:
        """
        Connect to a power meter.

        Args:
            resource_name: VISA resource, defaults to the first meter found
        """
        if resource_name is None:
            meters = self.find_power_meters()
            if not meters:
                raise DeviceConnectionError("No power meter devices found")
            resource_name = meters[0]

        meter = ThorlabsPowerMeter(resource_name, resource_manager=self.resource_manager)
        meter.connect()
        self._devices.append(meter)
        return meter

    def open_laser_bank(self, resource_names: Sequence[str],
                        current_window_ma: Tuple[float, float],
                        power_limits_w: Tuple[float, float]) -> LaserBank:
        """Connect to one or more CLD1015 controllers, beam 1 first"""
        if not resource_names:
            resource_names = self.find_laser_controllers()
        if not resource_names:
            raise DeviceConnectionError("No laser controller devices found")

        bank = LaserBank([
            CLD1015Beam(name, current_window_ma=current_window_ma, power_limits_w=power_limits_w,
                        resource_manager=self.resource_manager)
            for name in resource_names
        ])
        self._devices.append(bank)
        bank.connect()
        return bank

    def close(self) -> None:
        """Disconnect every device, then release the ResourceManager"""
        for device in reversed(self._devices):
            try:
                device.disconnect()
            except Exception as e:
                LOGGER.warning(f"Cleanup error for {device!r}: {e}")
        self._devices.clear()

        if self._resource_manager is not None:
            try:
                self._resource_manager.close()
            except visa_errors.Error as e:
                LOGGER.warning(f"Failed to close VISA resource manager: {e}")
            self._resource_manager = None
        self._resources = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
