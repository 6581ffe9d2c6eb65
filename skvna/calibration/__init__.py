"""
.. module:: skvna.calibration
========================================
calibration (:mod:`skvna.calibration`)
========================================


This Package computes the error terms of a vector network analyzer from
measurements of calibration standards.  Most functionality is in the
:mod:`calibration` module.

.. automodule:: skvna.calibration.calibration
.. automodule:: skvna.calibration.layout
.. automodule:: skvna.calibration.parameter
.. automodule:: skvna.calibration.standard
.. automodule:: skvna.calibration.calkit
.. automodule:: skvna.calibration.forward
.. automodule:: skvna.calibration.solver
.. automodule:: skvna.calibration.errors

"""

from . import (calibration, calkit, equations, errors, forward, layout,
               parameter, solver, standard)
from .calibration import *
from .calkit import *
from .errors import *
from .forward import *
from .layout import *
from .parameter import *
from .standard import *
