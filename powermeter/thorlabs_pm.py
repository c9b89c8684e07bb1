"""
Thorlabs PM100 Power Meter Driver

This module provides a Python interface for Thorlabs PM100-family optical
power meters (PM100D, PM100A, PM100USB, PM200, PM400) via VISA/SCPI.

Every range-limited setter clamps out-of-range requests to the device limits
and reports the clamp as a warning instead of failing.
"""

import logging
import time
from typing import Dict, Optional, Tuple

import pyvisa
from pyvisa import errors as visa_errors
from pyvisa.constants import StatusCode

from powercal.clamp import apply_clamped
from powercal.errors import DeviceConnectionError, DeviceError, DeviceTimeoutError

LOGGER = logging.getLogger(__name__)

# Each averaging count is one ~3 ms sample on PM100 meters
SAMPLE_PERIOD_S = 0.003
AVERAGE_COUNT_LIMITS = (1, 10000)
TIMEOUT_LIMITS_MS = (1.0, 60000.0)
BRIGHTNESS_LIMITS = (0.0, 1.0)
ATTENUATION_MODELS = ('PM100A', 'PM100D', 'PM100USB', 'PM200', 'PM400')
VOLTAGE_MODELS = ('PM100A', 'PM100D', 'PM100USB', 'PM160T', 'PM200', 'PM400')
DARK_ADJUST_MODELS = ('PM400',)

SENSOR_TYPES = {
    0x00: ('No sensor', {0x00: 'No sensor'}),
    0x01: ('Photodiode sensor', {
        0x01: 'Photodiode adapter',
        0x02: 'Photodiode sensor',
        0x03: 'Photodiode sensor with integrated filter identified by position',
        0x12: 'Photodiode sensor with temperature sensor',
    }),
    0x02: ('Thermopile sensor', {
        0x01: 'Thermopile adapter',
        0x02: 'Thermopile sensor',
        0x12: 'Thermopile sensor with temperature sensor',
    }),
    0x03: ('Pyroelectric sensor', {
        0x01: 'Pyroelectric adapter',
        0x02: 'Pyroelectric sensor',
        0x12: 'Pyroelectric sensor with temperature sensor',
    }),
}

SENSOR_FLAGS = {
    0x0001: 'Power sensor',
    0x0002: 'Energy sensor',
    0x0010: 'Responsivity settable',
    0x0020: 'Wavelength settable',
    0x0040: 'Time constant settable',
    0x0100: 'With temperature sensor',
}


def decode_sensor_flags(flags: int) -> list:
    """Names of the flag bits set in a sensor flag word"""
    return [name for bit, name in SENSOR_FLAGS.items() if flags & bit]


def decode_sensor_type(sensor_type: int, subtype: int) -> Tuple[str, str]:
    type_name, subtypes = SENSOR_TYPES.get(sensor_type, ('Unknown sensor', {}))
    return type_name, subtypes.get(subtype, 'Unknown sensor')


class ThorlabsPowerMeter:
    """
    Driver for Thorlabs PM100-family power meters via VISA.

    Power is read in watts. The calibration wavelength limits of the attached
    sensor are read on connect and used to clamp set_wavelength.
    """

    def __init__(self, resource_name: str, resource_manager: Optional[pyvisa.ResourceManager] = None,
                 timeout_ms: float = 5000):
        """
        Initialize power meter connection settings.

        Args:
            resource_name: VISA resource identifier of the meter
            resource_manager: Shared ResourceManager (a private one is created otherwise)
            timeout_ms: Communication timeout used for every query
        """
        self.resource_name = resource_name
        self.resource_manager = resource_manager
        self.timeout_ms = timeout_ms
        self.instrument = None
        self.is_connected = False
        self.identity: Dict[str, str] = {}
        self.wavelength_limits: Tuple[float, float] = (0.0, 0.0)
        self.current_wavelength: Optional[float] = None
        self.last_power_w: Optional[float] = None
        self.last_temperature_c: Optional[float] = None
        self.last_voltage_v: Optional[float] = None
        self.dark_offset_v: Optional[float] = None

    def connect(self) -> None:
        """
        Open the VISA session and read identity and wavelength limits.

        Raises:
            DeviceConnectionError: The meter could not be opened or did not answer
        """
        try:
            rm = self.resource_manager or pyvisa.ResourceManager()
            self.instrument = rm.open_resource(self.resource_name)
            self.instrument.timeout = self.timeout_ms
            self.instrument.write_termination = '\n'
            self.instrument.read_termination = '\n'

            idn = self.instrument.query("*IDN?").strip()
            self.is_connected = True
            self.identity = self._parse_identity(idn)
            self.wavelength_limits = self.get_wavelength_limits()
        except (visa_errors.Error, DeviceError, OSError, ValueError) as e:
            self._abandon_session()
            LOGGER.error(f"Failed to connect to power meter {self.resource_name}: {e}")
            raise DeviceConnectionError(f"Failed to connect to power meter {self.resource_name}: {e}",
                                        operation="connect") from e

        LOGGER.info(f"Connected to power meter: {idn}")

    def _abandon_session(self) -> None:
        """Close a half-opened session after a failed connect"""
        if self.instrument is not None:
            try:
                self.instrument.close()
            except visa_errors.Error as e:
                LOGGER.error(f"Error closing power meter session: {e}")
        self.instrument = None
        self.is_connected = False
        self.identity = {}

    def disconnect(self) -> None:
        """Close the VISA session"""
        if self.instrument:
            try:
                self.instrument.close()
                LOGGER.info(f"Disconnected from power meter {self.resource_name}")
            except visa_errors.Error as e:
                LOGGER.error(f"Error during disconnect: {e}")
            finally:
                self.instrument = None
                self.is_connected = False

    def _check_connection(self) -> None:
        if not self.is_connected or not self.instrument:
            raise DeviceConnectionError("Power meter not connected. Call connect() first.")

    def _query(self, command: str, operation: str) -> str:
        self._check_connection()
        try:
            return self.instrument.query(command).strip()
        except visa_errors.VisaIOError as e:
            if e.error_code == StatusCode.error_timeout:
                raise DeviceTimeoutError(f"{operation} timed out ({command})", operation=operation) from e
            raise DeviceError(f"{operation} failed ({command}): {e}", operation=operation) from e

    def _query_float(self, command: str, operation: str) -> float:
        response = self._query(command, operation)
        try:
            return float(response)
        except ValueError as e:
            raise DeviceError(f"{operation} returned non-numeric response: {response!r}",
                              operation=operation) from e

    def _write(self, command: str, operation: str) -> None:
        self._check_connection()
        try:
            self.instrument.write(command)
        except visa_errors.VisaIOError as e:
            if e.error_code == StatusCode.error_timeout:
                raise DeviceTimeoutError(f"{operation} timed out ({command})", operation=operation) from e
            raise DeviceError(f"{operation} failed ({command}): {e}", operation=operation) from e

    @staticmethod
    def _parse_identity(idn: str) -> Dict[str, str]:
        parts = [p.strip() for p in idn.split(',')]
        parts += [''] * (4 - len(parts))
        return {
            'manufacturer': parts[0],
            'model': parts[1],
            'serial': parts[2],
            'firmware': parts[3],
        }

    @property
    def model_name(self) -> str:
        return self.identity.get('model', '')

    def get_identity(self) -> str:
        return self._query("*IDN?", "get_identity")

    def sensor_info(self) -> Dict[str, object]:
        """
        Read and decode the attached sensor head description.

        Returns:
            dict: name, serial, calibration message, type, subtype and flags
        """
        response = self._query("SYST:SENS:IDN?", "sensor_info")
        parts = [p.strip() for p in response.split(',')]
        if len(parts) < 6:
            raise DeviceError(f"Unexpected sensor info response: {response!r}", operation="sensor_info")

        try:
            sensor_type, subtype, flags = int(parts[3]), int(parts[4]), int(parts[5])
        except ValueError as e:
            raise DeviceError(f"Unexpected sensor info response: {response!r}", operation="sensor_info") from e

        type_name, subtype_name = decode_sensor_type(sensor_type, subtype)
        if type_name == 'Unknown sensor' or subtype_name == 'Unknown sensor':
            LOGGER.warning(f"Unknown sensor type {sensor_type:#04x}/{subtype:#04x}")

        return {
            'name': parts[0],
            'serial': parts[1],
            'calibration_message': parts[2],
            'type': type_name,
            'subtype': subtype_name,
            'flags': decode_sensor_flags(flags),
        }

    def get_wavelength_limits(self) -> Tuple[float, float]:
        """Read the sensor's valid calibration wavelength range in nm"""
        minimum = self._query_float("SENS:CORR:WAV? MIN", "get_wavelength_limits")
        maximum = self._query_float("SENS:CORR:WAV? MAX", "get_wavelength_limits")
        return minimum, maximum

    def get_wavelength(self) -> float:
        self.current_wavelength = self._query_float("SENS:CORR:WAV?", "get_wavelength")
        return self.current_wavelength

    def set_wavelength(self, wavelength_nm: float) -> float:
        """
        Set the calibration wavelength.

        Args:
            wavelength_nm: Wavelength in nm, clamped to the sensor limits

        Returns:
            float: Wavelength actually applied
        """
        self._check_connection()
        applied = apply_clamped("Wavelength (nm)", wavelength_nm, *self.wavelength_limits, logger=LOGGER)
        self._write(f"SENS:CORR:WAV {applied:g}", "set_wavelength")
        self.current_wavelength = applied
        LOGGER.info(f"Set wavelength to {applied:.4f} nm")
        return applied

    def set_average_time(self, average_time_s: float) -> float:
        """
        Set the averaging time. Converted to a sample count on the meter.

        Returns:
            float: Averaging time actually applied in seconds
        """
        self._check_connection()
        if average_time_s > 0.5:
            LOGGER.warning("Setting averaging time to a value over 0.5 s; this might cause VISA timeouts")

        count = apply_clamped("Average count", round(average_time_s / SAMPLE_PERIOD_S),
                              *AVERAGE_COUNT_LIMITS, logger=LOGGER)
        self._write(f"SENS:AVER:COUN {int(count)}", "set_average_time")
        applied = int(count) * SAMPLE_PERIOD_S
        LOGGER.info(f"Set integration time to {applied:.3f} s")
        return applied

    def set_timeout(self, timeout_ms: float) -> float:
        """Set the VISA communication timeout, used as the per-read timeout"""
        self._check_connection()
        applied = apply_clamped("Timeout (ms)", timeout_ms, *TIMEOUT_LIMITS_MS, logger=LOGGER)
        self.instrument.timeout = applied
        self.timeout_ms = applied
        LOGGER.info(f"Set timeout value to {applied:.4f} ms")
        return applied

    def set_auto_range(self, enabled: bool) -> None:
        state = "ON" if enabled else "OFF"
        self._write(f"SENS:POW:RANG:AUTO {state}", "set_auto_range")
        LOGGER.info(f"Power auto range {'enabled' if enabled else 'disabled'}")

    def is_auto_range_enabled(self) -> bool:
        response = self._query("SENS:POW:RANG:AUTO?", "is_auto_range_enabled")
        return response == "1" or response.upper() == "ON"

    def set_power_range(self, range_w: float) -> float:
        """Set the upper power range in watts (disables auto range on the meter)"""
        minimum = self._query_float("SENS:POW:RANG:UPP? MIN", "set_power_range")
        maximum = self._query_float("SENS:POW:RANG:UPP? MAX", "set_power_range")
        applied = apply_clamped("Power range (W)", range_w, minimum, maximum, logger=LOGGER)
        self._write(f"SENS:POW:RANG:UPP {applied:g}", "set_power_range")
        LOGGER.info(f"Set range to {applied:.4f} W")
        return applied

    def set_attenuation(self, attenuation_db: float) -> Optional[float]:
        """
        Set the input attenuation in dB.

        Returns:
            Attenuation applied, or None when the model does not support it
        """
        self._check_connection()
        if self.model_name not in ATTENUATION_MODELS:
            LOGGER.warning(f"Attenuation is not supported on {self.model_name or 'this meter'}")
            return None

        minimum = self._query_float("SENS:CORR:LOSS:INP:MAGN? MIN", "set_attenuation")
        maximum = self._query_float("SENS:CORR:LOSS:INP:MAGN? MAX", "set_attenuation")
        applied = apply_clamped("Attenuation (dB)", attenuation_db, minimum, maximum, logger=LOGGER)
        self._write(f"SENS:CORR:LOSS:INP:MAGN {applied:g}", "set_attenuation")
        LOGGER.info(f"Set attenuation to {applied:.4f} dB, {10 ** (applied / 20):.4f}x")
        return applied

    def set_display_brightness(self, brightness: float) -> float:
        """Set display brightness as a fraction 0-1"""
        self._check_connection()
        applied = apply_clamped("Display brightness", brightness, *BRIGHTNESS_LIMITS, logger=LOGGER)
        self._write(f"DISP:BRIG {applied:g}", "set_display_brightness")
        LOGGER.info(f"Set display brightness to {applied * 100:.0f}%")
        return applied

    def read_power(self) -> float:
        """
        Measure optical power.

        Returns:
            float: Power in watts

        Raises:
            DeviceTimeoutError: The meter did not answer within the timeout
        """
        self.last_power_w = self._query_float("MEAS:POW?", "read_power")
        return self.last_power_w

    def read_temperature(self) -> float:
        """Sensor head temperature in Celsius (sensors with a thermistor only)"""
        self.last_temperature_c = self._query_float("MEAS:TEMP?", "read_temperature")
        return self.last_temperature_c

    def read_voltage(self) -> Optional[float]:
        """
        Voltage behind the current power reading.

        Returns:
            Voltage in volts, or None when the model does not support it
        """
        self._check_connection()
        if self.model_name not in VOLTAGE_MODELS:
            LOGGER.warning(f"Voltage readings are not supported on {self.model_name or 'this meter'}")
            return None

        self.last_voltage_v = self._query_float("MEAS:VOLT?", "read_voltage")
        return self.last_voltage_v

    def dark_adjust(self, timeout_s: float = 30.0, poll_interval_s: float = 0.1,
                    sleep=time.sleep) -> bool:
        """
        Zero the meter against the current dark level (PM400 only).

        Cover the sensor first. Blocks until the meter reports the zero
        measurement finished.

        Returns:
            True when the zero was taken, False when the model does not support it

        Raises:
            DeviceTimeoutError: The zero measurement did not finish within timeout_s
        """
        self._check_connection()
        if self.model_name not in DARK_ADJUST_MODELS:
            LOGGER.warning(f"Dark adjustment is not supported on {self.model_name or 'this meter'}")
            return False

        self._write("SENS:CORR:COLL:ZERO:INIT", "dark_adjust")
        deadline = time.monotonic() + timeout_s
        while self._query("SENS:CORR:COLL:ZERO:STAT?", "dark_adjust") not in ("0", "OFF"):
            if time.monotonic() > deadline:
                self._write("SENS:CORR:COLL:ZERO:ABOR", "dark_adjust")
                raise DeviceTimeoutError(f"Dark adjustment did not finish within {timeout_s:g} s",
                                         operation="dark_adjust")
            sleep(poll_interval_s)

        LOGGER.info("Dark adjustment complete")
        return True

    def get_dark_offset(self) -> Optional[float]:
        """Dark offset from the last zero, in volts (PM400 only)"""
        self._check_connection()
        if self.model_name not in DARK_ADJUST_MODELS:
            LOGGER.warning(f"Dark offset is not supported on {self.model_name or 'this meter'}")
            return None

        self.dark_offset_v = self._query_float("SENS:CORR:COLL:ZERO:MAGN?", "get_dark_offset")
        LOGGER.info(f"Dark offset {self.dark_offset_v:g} V")
        return self.dark_offset_v

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
