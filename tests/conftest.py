"""
Shared fixtures: fake VISA instruments that answer SCPI queries from a table.
"""

import sys
from pathlib import Path

# Ensure project root on path
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from pyvisa import errors as visa_errors
from pyvisa.constants import StatusCode


class FakeInstrument:
    """Records writes, answers queries from ``responses`` (str or exception)"""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.writes = []
        self.queries = []
        self.closed = False
        self.timeout = None
        self.write_termination = None
        self.read_termination = None

    def write(self, command):
        self.writes.append(command)

    def query(self, command):
        self.queries.append(command)
        response = self.responses[command]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def close(self):
        self.closed = True


class FakeResourceManager:
    def __init__(self, instruments):
        self.instruments = instruments
        self.opened = []
        self.closed = False

    def list_resources(self):
        return tuple(self.instruments)

    def open_resource(self, name):
        if name not in self.instruments:
            raise visa_errors.VisaIOError(StatusCode.error_resource_not_found)
        self.opened.append(name)
        return self.instruments[name]

    def close(self):
        self.closed = True


METER_RESOURCE = "USB0::0x1313::0x8072::P2000001::INSTR"
LASER_RESOURCE = "USB0::0x1313::0x804F::M01093719::0::INSTR"


@pytest.fixture
def meter_instrument():
    return FakeInstrument({
        "*IDN?": "Thorlabs,PM100USB,P2000001,1.7.0\n",
        "SENS:CORR:WAV? MIN": "400\n",
        "SENS:CORR:WAV? MAX": "1100\n",
        "SENS:CORR:WAV?": "920\n",
        "SYST:SENS:IDN?": "S120C,190101,01-Jan-2024,1,18,289\n",
        "MEAS:POW?": "0.0125\n",
        "MEAS:TEMP?": "23.5\n",
        "SENS:CORR:LOSS:INP:MAGN? MIN": "-60\n",
        "SENS:CORR:LOSS:INP:MAGN? MAX": "60\n",
        "SENS:POW:RANG:UPP? MIN": "0.000001\n",
        "SENS:POW:RANG:UPP? MAX": "0.05\n",
    })


@pytest.fixture
def laser_instrument():
    return FakeInstrument({"*IDN?": "Thorlabs,CLD1015,M01093719,3.1.0\n"})


@pytest.fixture
def resource_manager(meter_instrument, laser_instrument):
    return FakeResourceManager({
        METER_RESOURCE: meter_instrument,
        LASER_RESOURCE: laser_instrument,
    })


def timeout_error():
    return visa_errors.VisaIOError(StatusCode.error_timeout)
