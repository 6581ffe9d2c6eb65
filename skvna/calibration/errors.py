"""
.. module:: skvna.calibration.errors

========================================
errors (:mod:`skvna.calibration.errors`)
========================================

Exceptions raised by the calibration engine.

.. autosummary::
   :toctree: generated/

   CalibrationError
   UsageError
   DomainError
   ConvergenceError
   StatisticalRejection
   ResourceError

"""


class CalibrationError(Exception):
    """
    Base class of all calibration errors.

    Errors scoped to a single frequency of a solve carry the frequency
    index and the frequency in Hz.
    """
    def __init__(self, message: str, findex: int = None, frequency: float = None):
        super().__init__(message)
        self.message = message
        self.findex = findex
        self.frequency = frequency

    def __str__(self):
        if self.frequency is None:
            return self.message
        return f'{self.message} (at {self.frequency:g} Hz)'

    def at(self, findex: int, frequency: float) -> 'CalibrationError':
        """
        Attach the frequency the error occurred at and return self.
        """
        self.findex = findex
        self.frequency = frequency
        return self


class UsageError(CalibrationError, ValueError):
    """
    Bad topology, shape, port map, handle or argument.
    """
    pass


class DomainError(CalibrationError, ArithmeticError):
    """
    Singular or under-determined system, or a degenerate standard.
    """
    pass


class ConvergenceError(CalibrationError, RuntimeError):
    """
    Iteration limit exceeded without meeting both tolerances.
    """
    pass


class StatisticalRejection(CalibrationError):
    """
    Goodness of fit p-value below the configured limit.
    """
    def __init__(self, message: str, pvalue: float = None, **kwargs):
        super().__init__(message, **kwargs)
        self.pvalue = pvalue


class ResourceError(CalibrationError, MemoryError):
    """
    Allocation or other resource exhaustion.
    """
    pass
