"""
skvna computes the systematic error terms of vector network analyzers,
implemented in Python.
"""

__version__ = '0.1.0'
## Import all  module names for coherent reference of name-space


from . import (
    calibration,
    constants,
    mathFunctions,
)
from .calibration.calibration import *
from .calibration.calkit import *
from .calibration.errors import *
from .calibration.forward import *
from .calibration.layout import *
from .calibration.parameter import *
from .calibration.standard import *
from .constants import *
from .mathFunctions import *
