"""
Concrete devices and sinks satisfy the duck-typed contracts.

Run from repo root: pytest tests/test_interfaces.py -v
"""

from beamcontrol.cld1015_beam import CLD1015Beam, LaserBank
from powercal.interfaces import BeamController, PowerMeterDevice, ResultSink
from powercal.result_sink import FileResultSink
from powercal.simulation import SimulatedBeamController, SimulatedPowerMeter
from powermeter.thorlabs_pm import ThorlabsPowerMeter


def test_power_meters():
    assert isinstance(ThorlabsPowerMeter("USB0::X::INSTR"), PowerMeterDevice)
    assert isinstance(SimulatedPowerMeter(SimulatedBeamController()), PowerMeterDevice)


def test_beam_controllers():
    assert isinstance(LaserBank([CLD1015Beam("USB0::X::INSTR")]), BeamController)
    assert isinstance(SimulatedBeamController(), BeamController)
    # A single CLD1015 has no beam index, only the bank does
    assert not isinstance(CLD1015Beam("USB0::X::INSTR"), BeamController)


def test_result_sink():
    assert isinstance(FileResultSink(), ResultSink)
