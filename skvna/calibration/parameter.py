"""
.. module:: skvna.calibration.parameter

==============================================
parameter (:mod:`skvna.calibration.parameter`)
==============================================

Parameters of calibration standards.

A parameter is a scalar reflection or transmission coefficient that may
be known (constant or per-frequency), unknown (solved by the calibration)
or correlated with another parameter within a given standard deviation.
Parameters live in a :class:`ParameterTable` and are referred to by
:class:`Handle`.  A handle carries the generation of the slot it was
issued for so that a handle to a deleted parameter is never mistaken
for a newer parameter reusing the slot.

Every table contains the predefined parameters :data:`MATCH` (0),
:data:`OPEN` (1) and :data:`SHORT` (-1).  :data:`ZERO` and :data:`ONE`
are aliases of :data:`MATCH` and :data:`OPEN`.

.. autosummary::
   :toctree: generated/

   Handle
   ParameterType
   Parameter
   ParameterTable

"""
from __future__ import annotations

from enum import Enum
from numbers import Number
from typing import NamedTuple

import numpy as np

from .errors import UsageError


class Handle(NamedTuple):
    """
    Reference to a parameter in a :class:`ParameterTable`.
    """
    index: int
    generation: int


MATCH = Handle(0, 0)
OPEN = Handle(1, 0)
SHORT = Handle(2, 0)
ZERO = MATCH
ONE = OPEN

_PREDEFINED = {MATCH: 0.0, OPEN: 1.0, SHORT: -1.0}


class ParameterType(Enum):
    """
    Kind of parameter.
    """
    SCALAR = 'scalar'
    VECTOR = 'vector'
    UNKNOWN = 'unknown'
    CORRELATED = 'correlated'
    CALKIT = 'calkit'


def _frequency_index(frequency: np.ndarray, f: float):
    hits = np.flatnonzero(np.isclose(frequency, f, rtol=1e-9, atol=0.0))
    if len(hits) == 0:
        return None
    return int(hits[0])


class Parameter:
    """
    A single parameter record.

    Only :class:`ParameterTable` creates these.
    """
    def __init__(self, kind: ParameterType, value=None, frequency=None,
                 values=None, other: Handle = None, sigma=None,
                 sigma_frequency=None, owns_other: bool = False,
                 calkit=None, row: int = 0, column: int = 0,
                 z0: complex = None):
        self.kind = kind
        self.value = value
        self.frequency = frequency
        self.values = values
        self.other = other
        self.sigma = sigma
        self.sigma_frequency = sigma_frequency
        # other was created implicitly from a number and dies with us
        self.owns_other = owns_other
        self.calkit = calkit
        self.row = row
        self.column = column
        self.z0 = z0
        # estimate for all frequencies, set by ParameterTable.set
        self.estimate = None
        # per-frequency estimates, set by the solver
        self.solved_frequency = None
        self.solved_values = None

    def __repr__(self):
        return f'Parameter({self.kind.value})'

    @property
    def is_unknown(self) -> bool:
        return self.kind in (ParameterType.UNKNOWN, ParameterType.CORRELATED)

    def solved_value(self, f: float):
        if self.solved_frequency is None:
            return None
        findex = _frequency_index(self.solved_frequency, f)
        if findex is None:
            return None
        return self.solved_values[findex]


class ParameterTable:
    """
    Arena of calibration parameters.

    Parameters
    ----------
    seed : int, optional
        seed of the random generator used to draw the perturbations of
        correlated parameters

    Examples
    --------
    >>> table = ParameterTable()
    >>> gamma = table.make_unknown(-1.0)
    >>> table.resolve(gamma, 1e9)
    (-1+0j)
    """
    def __init__(self, seed: int = None):
        self._slots = []
        self._generations = []
        self._free = []
        self.rng = np.random.default_rng(seed)
        for value in _PREDEFINED.values():
            self._allocate(Parameter(ParameterType.SCALAR,
                                     value=complex(value)))

    def __len__(self):
        return sum(1 for p in self._slots if p is not None)

    def __contains__(self, handle):
        return self._lookup(handle) is not None

    def _allocate(self, parameter: Parameter) -> Handle:
        if self._free:
            index = self._free.pop()
            self._slots[index] = parameter
        else:
            index = len(self._slots)
            self._slots.append(parameter)
            self._generations.append(0)
        return Handle(index, self._generations[index])

    def _lookup(self, handle):
        if not isinstance(handle, tuple) or len(handle) != 2:
            return None
        index, generation = handle
        if not 0 <= index < len(self._slots):
            return None
        if self._generations[index] != generation:
            return None
        return self._slots[index]

    def get(self, handle: Handle) -> Parameter:
        """
        Return the parameter record for a handle.

        Raises
        ------
        UsageError
            if the handle is invalid or refers to a deleted parameter
        """
        parameter = self._lookup(handle)
        if parameter is None:
            raise UsageError(f'invalid or deleted parameter handle: {handle!r}')
        return parameter

    def _check_reference(self, other):
        # returns the handle and whether a scalar was created for it
        if isinstance(other, Number):
            return self.make_scalar(other), True
        if not isinstance(other, Handle):
            raise UsageError(f'expected a number or a parameter handle, '
                             f'got {other!r}')
        self.get(other)
        return other, False

    def _release(self, index: int):
        self._slots[index] = None
        self._generations[index] += 1
        self._free.append(index)

    def make_scalar(self, value: complex) -> Handle:
        """
        Create a known parameter with a frequency independent value.
        """
        if not isinstance(value, Number) or not np.isfinite(value):
            raise UsageError(f'invalid scalar parameter value: {value!r}')
        return self._allocate(Parameter(ParameterType.SCALAR,
                                        value=complex(value)))

    def make_vector(self, frequency, values) -> Handle:
        """
        Create a known parameter with one value per frequency.

        Parameters
        ----------
        frequency : array_like
            frequencies in Hz at which the parameter is defined
        values : array_like
            complex values, one per frequency

        Notes
        -----
        No interpolation is done: the parameter can only be resolved at
        the given frequencies.
        """
        frequency = np.asarray(frequency, dtype=float).ravel()
        values = np.asarray(values, dtype=complex).ravel()
        if len(frequency) < 1 or frequency.shape != values.shape:
            raise UsageError('frequency and values must be non-empty '
                             'vectors of the same length')
        if np.any(frequency < 0) or np.any(np.diff(frequency) <= 0):
            raise UsageError('frequencies must be non-negative and '
                             'strictly increasing')
        return self._allocate(Parameter(ParameterType.VECTOR,
                                        frequency=frequency, values=values))

    def make_unknown(self, initial_guess) -> Handle:
        """
        Create a parameter solved by the calibration.

        Parameters
        ----------
        initial_guess : complex or :class:`Handle`
            starting estimate; a handle is resolved at each frequency
        """
        other, owned = self._check_reference(initial_guess)
        return self._allocate(Parameter(ParameterType.UNKNOWN, other=other,
                                        owns_other=owned))

    def make_correlated(self, other, sigma, sigma_frequency=None) -> Handle:
        """
        Create a parameter correlated with another.

        The parameter's value is that of `other` plus an independent
        complex Gaussian perturbation of standard deviation `sigma`.  The
        calibration estimates its actual value.

        Parameters
        ----------
        other : :class:`Handle` or complex
            the parameter this one is correlated with
        sigma : float or array_like
            standard deviation, scalar or one per frequency in
            `sigma_frequency`
        sigma_frequency : array_like, optional
            frequencies of a per-frequency sigma
        """
        if sigma_frequency is None:
            if not isinstance(sigma, Number) or not sigma > 0:
                raise UsageError('sigma must be a positive number')
            sigma = float(sigma)
        else:
            sigma_frequency = np.asarray(sigma_frequency, dtype=float).ravel()
            sigma = np.asarray(sigma, dtype=float).ravel()
            if sigma.shape != sigma_frequency.shape or len(sigma) < 1:
                raise UsageError('sigma and sigma_frequency must be '
                                 'vectors of the same length')
            if np.any(sigma <= 0):
                raise UsageError('sigma must be positive')
        other, owned = self._check_reference(other)
        return self._allocate(Parameter(ParameterType.CORRELATED, other=other,
                                        sigma=sigma,
                                        sigma_frequency=sigma_frequency,
                                        owns_other=owned))

    def make_calkit(self, standard, z0: complex, row: int = 0,
                    column: int = 0) -> Handle:
        """
        Create a known parameter from a calibration kit standard model.

        The parameter's value at each frequency is cell (`row`, `column`)
        of the standard's S matrix evaluated against reference impedance
        `z0`.

        Parameters
        ----------
        standard : :class:`~skvna.calibration.calkit.CalkitStandard`
        z0 : complex
            reference impedance of the VNA ports in ohms
        row, column : int, optional
            cell of a two-port standard

        See Also
        --------
        make_calkit_matrix
        """
        ports = standard.ports
        if not (0 <= row < ports and 0 <= column < ports):
            raise UsageError(f'cell ({row}, {column}) is outside the '
                             f'{ports}x{ports} calkit standard')
        z0 = complex(z0)
        if not np.isfinite(z0) or z0.real <= 0:
            raise UsageError(f'reference impedance must have a positive '
                             f'real part, got {z0!r}')
        return self._allocate(Parameter(ParameterType.CALKIT,
                                        calkit=standard, row=row,
                                        column=column, z0=z0))

    def make_calkit_matrix(self, standard, z0: complex) -> list:
        """
        Create the parameter matrix of a calibration kit standard.

        Returns
        -------
        handles : list of list of :class:`Handle`
            1x1 for reflect standards, 2x2 for a through
        """
        ports = standard.ports
        return [[self.make_calkit(standard, z0, row, column)
                 for column in range(ports)] for row in range(ports)]

    def delete(self, handle: Handle):
        """
        Delete a parameter and invalidate its handle.

        Raises
        ------
        UsageError
            for the predefined parameters, for stale handles and for
            parameters other parameters are defined in terms of

        Notes
        -----
        A scalar created implicitly when an unknown or correlated
        parameter was made from a number is deleted along with it.
        """
        parameter = self.get(handle)
        if handle in _PREDEFINED:
            raise UsageError('predefined parameters cannot be deleted')
        for p in self._slots:
            if p is not None and p.other == handle:
                raise UsageError(f'parameter {handle!r} is still in use')
        self._release(handle[0])
        if parameter.owns_other:
            self._release(parameter.other[0])

    def is_unknown(self, handle: Handle) -> bool:
        """
        True if the parameter is unknown or correlated.
        """
        return self.get(handle).is_unknown

    def correlate(self, handle: Handle) -> Handle:
        """
        The parameter a correlated parameter is correlated with.
        """
        parameter = self.get(handle)
        if parameter.kind != ParameterType.CORRELATED:
            raise UsageError(f'parameter {handle!r} is not correlated')
        return parameter.other

    def sigma(self, handle: Handle, f: float) -> float:
        """
        Standard deviation of a correlated parameter at frequency `f`.
        """
        parameter = self.get(handle)
        if parameter.kind != ParameterType.CORRELATED:
            raise UsageError(f'parameter {handle!r} is not correlated')
        if parameter.sigma_frequency is None:
            return parameter.sigma
        findex = _frequency_index(parameter.sigma_frequency, f)
        if findex is None:
            raise UsageError(f'correlated parameter sigma not defined '
                             f'at {f:g} Hz')
        return float(parameter.sigma[findex])

    def estimate(self, handle: Handle, f: float) -> complex:
        """
        Current value of a parameter at frequency `f` without any random
        perturbation.

        For unknown and correlated parameters this is the solved value
        if the last calibration solved it at `f`, otherwise the value set
        with :func:`set`, otherwise the value of the initial guess (or of
        the parameter a correlated parameter refers to).
        """
        parameter = self.get(handle)
        kind = parameter.kind
        if kind == ParameterType.SCALAR:
            return parameter.value
        if kind == ParameterType.VECTOR:
            findex = _frequency_index(parameter.frequency, f)
            if findex is None:
                raise UsageError(f'parameter {handle!r} is not defined '
                                 f'at {f:g} Hz')
            return complex(parameter.values[findex])
        if kind == ParameterType.CALKIT:
            s = parameter.calkit.evaluate(f, parameter.z0)
            return complex(s[parameter.row, parameter.column])
        value = parameter.solved_value(f)
        if value is not None:
            return complex(value)
        if parameter.estimate is not None:
            return parameter.estimate
        return self.estimate(parameter.other, f)

    def resolve(self, handle: Handle, f: float) -> complex:
        """
        Value of a parameter at frequency `f`.

        Known parameters return their value, unknown parameters their
        current estimate.  A correlated parameter that has not been
        solved at `f` returns the current value of the parameter it is
        correlated with plus a fresh complex Gaussian perturbation of
        its standard deviation, drawn on every call.

        Raises
        ------
        UsageError
            for invalid handles or frequencies a vector parameter is not
            defined at
        """
        parameter = self.get(handle)
        if (parameter.kind == ParameterType.CORRELATED and
                parameter.estimate is None and
                parameter.solved_value(f) is None):
            sigma = self.sigma(handle, f)
            noise = self.rng.normal(scale=sigma / np.sqrt(2.0), size=2)
            return self.resolve(parameter.other, f) + complex(*noise)
        return self.estimate(handle, f)

    def set(self, handle: Handle, value: complex, f: float = None):
        """
        Set the current estimate of an unknown or correlated parameter.

        Parameters
        ----------
        handle : :class:`Handle`
        value : complex
        f : float, optional
            frequency the estimate applies to; when omitted, the estimate
            applies to all frequencies and per-frequency values are
            discarded
        """
        parameter = self.get(handle)
        if not parameter.is_unknown:
            raise UsageError(f'parameter {handle!r} is not unknown')
        if f is None:
            parameter.estimate = complex(value)
            parameter.solved_frequency = None
            parameter.solved_values = None
            return
        if parameter.solved_frequency is None:
            parameter.solved_frequency = np.array([f], dtype=float)
            parameter.solved_values = np.array([value], dtype=complex)
            return
        findex = _frequency_index(parameter.solved_frequency, f)
        if findex is None:
            order = np.argsort(np.append(parameter.solved_frequency, f))
            parameter.solved_frequency = np.append(
                parameter.solved_frequency, f)[order]
            parameter.solved_values = np.append(
                parameter.solved_values, value)[order]
        else:
            parameter.solved_values[findex] = value

    def set_solved(self, handle: Handle, frequency, values):
        """
        Store the per-frequency solution of an unknown or correlated
        parameter, replacing any earlier solution.
        """
        parameter = self.get(handle)
        if not parameter.is_unknown:
            raise UsageError(f'parameter {handle!r} is not unknown')
        parameter.solved_frequency = np.array(frequency, dtype=float)
        parameter.solved_values = np.array(values, dtype=complex)

    def get_value_vector(self, handle: Handle, frequency) -> np.ndarray:
        """
        Current values of a parameter at each of the given frequencies.
        """
        return np.array([self.estimate(handle, f) for f in frequency],
                        dtype=complex)
