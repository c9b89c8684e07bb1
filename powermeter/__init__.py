"""
Power meter drivers.
"""

from .thorlabs_pm import ThorlabsPowerMeter

__all__ = ['ThorlabsPowerMeter']
