"""
.. currentmodule:: skvna.constants

========================================
constants (:mod:`skvna.constants`)
========================================

This module contains numerical constants and the default solver settings
used by the calibration package.

.. data:: ALMOST_ZERO

    Very tiny but not zero value used in singularity checks.

.. data:: PHI_INV

    Inverse of the golden ratio.

.. data:: PHI_INV2

    Inverse of the golden ratio squared.

.. data:: ET_TOLERANCE

    Default error term convergence tolerance.

.. data:: P_TOLERANCE

    Default unknown parameter convergence tolerance.

.. data:: ITERATION_LIMIT

    Default maximum number of solver iterations per frequency.

.. data:: PVALUE_LIMIT

    Default significance level below which a solution is rejected.

.. data:: BACKTRACK_LIMIT

    Maximum number of step halvings in the backtracking line search.

"""
from __future__ import annotations

from numbers import Number
from typing import Sequence, Union

import numpy as np

ALMOST_ZERO = 1e-12
"""
Very tiny but not zero value to handle mathematical singularities.
"""

RANK_RTOL = 1e-12
"""
Relative threshold on singular values below which a matrix is considered
rank deficient.
"""

PHI_INV = 0.61803398874989484820
"""
Inverse of the golden ratio, maximum norm of a parameter correction
relative to the norm of the parameters.
"""

PHI_INV2 = 0.38196601125010515180
"""
Inverse of the golden ratio squared.
"""

ET_TOLERANCE = 1e-6
"""
Default RMS change in the error terms below which the solver stops.
"""

P_TOLERANCE = 1e-6
"""
Default RMS change in the unknown parameters below which the solver stops.
"""

ITERATION_LIMIT = 30
"""
Default maximum number of iterations of the solver per frequency.
"""

PVALUE_LIMIT = 0.001
"""
Default significance level below which the solution of a frequency is
rejected. Only used when a measurement error model is given.
"""

BACKTRACK_LIMIT = 6
"""
Maximum number of times a parameter correction is halved before the
solver accepts the best solution found.
"""

Z0_DEFAULT = 50.0
"""
Default reference impedance attached to a calibration.
"""

NumberLike = Union[Number, Sequence[Number], np.ndarray]
