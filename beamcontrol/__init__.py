"""
Beam controllers built on Thorlabs CLD101x laser diode controllers.
"""

from .cld1015_beam import CLD1015Beam, LaserBank

__all__ = ['CLD1015Beam', 'LaserBank']
