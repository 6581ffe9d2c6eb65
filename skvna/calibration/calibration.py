"""
.. module:: skvna.calibration.calibration

==================================================
calibration (:mod:`skvna.calibration.calibration`)
==================================================

Calibration sessions: collect measurements of standards and solve for
the error terms of the VNA.

A :class:`CalibrationSession` is created for an error term topology,
the number of receiving (`m_rows`) and driving (`m_columns`) VNA ports
and the measurement frequencies.  Measurements of standards are added
with the ``add_*`` methods, then :func:`CalibrationSession.solve`
computes the error terms at each frequency and returns a
:class:`CalibrationResult`.

Example
-------
A two-port SOLT calibration with ideal standards::

    cal = CalibrationSession('T8', 2, 2, frequency=[1e9])
    cal.add_single_reflect(m_short, SHORT, 1)
    cal.add_single_reflect(m_open, OPEN, 1)
    cal.add_single_reflect(m_load, MATCH, 1)
    cal.add_through(m_thru, 1, 2)
    result = cal.solve()

Unknown standards are described with parameters from the session's
:class:`ParameterTable`, e.g. a reflect of unknown value near -1::

    r = cal.parameters.make_unknown(-0.95)
    cal.add_double_reflect(m_reflect, r, r, 1, 2)

Sessions and results
--------------------
.. autosummary::
   :toctree: generated/

   Observation
   CalibrationSession
   CalibrationResult

"""
from __future__ import annotations

import logging
from numbers import Real

import numpy as np

from ..constants import (ET_TOLERANCE, ITERATION_LIMIT, P_TOLERANCE,
                         PVALUE_LIMIT, Z0_DEFAULT)
from ..mathFunctions import checked_solve
from .calkit import CalkitStandard
from .equations import FrequencySystem
from .errors import (CalibrationError, DomainError, ResourceError,
                     StatisticalRejection, UsageError)
from .forward import measure, to_e_terms, ue14_to_e12
from .layout import ErrorTermLayout, Topology, get_layout
from .parameter import ONE, ZERO, ParameterTable
from .solver import solve_frequency
from .standard import MappedStandard, Standard

logger = logging.getLogger(__name__)


class Observation:
    """
    Measurement of one standard at all frequencies of a session.

    Attributes
    ----------
    standard : :class:`MappedStandard`
    m : npy.ndarray
        frequencies x m_rows x m_columns measured matrix, zero where not
        measured
    m_given : npy.ndarray
        m_rows x m_columns mask of the measured cells
    """
    def __init__(self, standard: MappedStandard, m: np.ndarray,
                 m_given: np.ndarray):
        self.standard = standard
        self.m = m
        self.m_given = m_given
        self.m_row_given = m_given.any(axis=1)
        self.m_column_given = m_given.any(axis=0)

    def __repr__(self):
        return f'Observation({self.standard.standard!r})'


def _positive(name, value):
    if isinstance(value, bool) or not isinstance(value, Real) or \
            not value > 0:
        raise UsageError(f'{name} must be a positive number')
    return float(value)


class CalibrationSession:
    """
    Collects measured standards and solves for the error terms.

    Parameters
    ----------
    topology : :class:`Topology` or str
        error term topology, one of ``'T8'``, ``'U8'``, ``'TE10'``,
        ``'UE10'``, ``'T16'``, ``'U16'``, ``'UE14'``, ``'E12'``
    m_rows : int
        number of VNA ports that detect signal
    m_columns : int
        number of VNA ports that drive signal
    frequency : array_like
        measurement frequencies in Hz, strictly increasing
    parameters : :class:`ParameterTable`, optional
        table the parameters of the standards live in; a new table is
        created when omitted
    z0 : complex, optional
        reference impedance of the VNA ports; calibration kit parameters
        made with :func:`make_calkit_parameter` are evaluated against it

    Raises
    ------
    UsageError
        for invalid topologies, shapes and frequency vectors

    See Also
    --------
    CalibrationResult
    """
    def __init__(self, topology, m_rows: int, m_columns: int, frequency,
                 parameters: ParameterTable = None, z0: complex = Z0_DEFAULT):
        self.layout = get_layout(Topology.from_value(topology), m_rows,
                                 m_columns)
        frequency = np.atleast_1d(np.asarray(frequency, dtype=float))
        if frequency.ndim != 1 or len(frequency) < 1:
            raise UsageError('frequency must be a non-empty vector')
        if np.any(frequency < 0) or np.any(np.diff(frequency) <= 0):
            raise UsageError('frequencies must be non-negative and '
                             'strictly increasing')
        self.frequency = frequency
        self.parameters = ParameterTable() if parameters is None \
            else parameters
        z0 = complex(z0)
        if not np.isfinite(z0) or z0.real <= 0:
            raise UsageError(f'reference impedance must have a positive '
                             f'real part, got {z0!r}')
        self.z0 = z0
        self.observations = []
        self._et_tolerance = ET_TOLERANCE
        self._p_tolerance = P_TOLERANCE
        self._iteration_limit = ITERATION_LIMIT
        self._pvalue_limit = PVALUE_LIMIT
        self.noise = None
        self.tracking = None

    def __repr__(self):
        return (f'CalibrationSession({self.topology.value}, '
                f'{self.m_rows}x{self.m_columns}, '
                f'{len(self.frequency)} frequencies, '
                f'{len(self.observations)} standards)')

    @property
    def topology(self) -> Topology:
        return self.layout.topology

    @property
    def m_rows(self) -> int:
        return self.layout.m_rows

    @property
    def m_columns(self) -> int:
        return self.layout.m_columns

    @property
    def et_tolerance(self) -> float:
        """
        RMS change of the error terms at which iteration stops.
        """
        return self._et_tolerance

    @et_tolerance.setter
    def et_tolerance(self, value):
        self._et_tolerance = _positive('et_tolerance', value)

    @property
    def p_tolerance(self) -> float:
        """
        RMS change of the unknown parameters at which iteration stops.
        """
        return self._p_tolerance

    @p_tolerance.setter
    def p_tolerance(self, value):
        self._p_tolerance = _positive('p_tolerance', value)

    @property
    def iteration_limit(self) -> int:
        """
        Maximum number of iterations per frequency.
        """
        return self._iteration_limit

    @iteration_limit.setter
    def iteration_limit(self, value):
        if isinstance(value, bool) or not isinstance(value, Real) or \
                int(value) != value or value < 1:
            raise UsageError('iteration_limit must be an integer >= 1')
        self._iteration_limit = int(value)

    @property
    def pvalue_limit(self) -> float:
        """
        Goodness of fit p-value below which a frequency is rejected.
        Only applied when a measurement error model is set.
        """
        return self._pvalue_limit

    @pvalue_limit.setter
    def pvalue_limit(self, value):
        if isinstance(value, bool) or not isinstance(value, Real) or \
                not 0 < value < 1:
            raise UsageError('pvalue_limit must be in (0, 1)')
        self._pvalue_limit = float(value)

    def _per_frequency(self, name, value):
        value = np.asarray(value, dtype=float)
        if value.ndim == 0:
            value = np.full(len(self.frequency), float(value))
        if value.shape != self.frequency.shape:
            raise UsageError(f'{name} must be a scalar or have one value '
                             f'per frequency')
        if np.any(value < 0) or not np.all(np.isfinite(value)):
            raise UsageError(f'{name} must be non-negative')
        return value

    def set_m_error(self, noise, tracking=None):
        """
        Set the measurement error model.

        The measured value m of a cell is assumed to deviate from the
        true value by complex Gaussian error of standard deviation
        ``sqrt(noise**2 + tracking**2 * abs(m)**2)``.  Residuals are
        weighted accordingly and the goodness of fit is tested against
        :attr:`pvalue_limit`.

        Parameters
        ----------
        noise : float or array_like
            additive noise, scalar or per frequency
        tracking : float or array_like, optional
            multiplicative noise, scalar or per frequency
        """
        noise = self._per_frequency('noise', noise)
        if np.any(noise == 0):
            raise UsageError('noise must be positive')
        self.noise = noise
        self.tracking = None if tracking is None else \
            self._per_frequency('tracking', tracking)

    def clear_m_error(self):
        """
        Remove the measurement error model.
        """
        self.noise = None
        self.tracking = None

    def make_calkit_parameter(self, standard: CalkitStandard):
        """
        Create a parameter from a one-port calibration kit standard.

        Parameters
        ----------
        standard : :class:`CalkitStandard`
            short, open or load model

        Returns
        -------
        handle : :class:`Handle`
            parameter evaluating the model against :attr:`z0`

        Examples
        --------
        >>> cal = CalibrationSession('T8', 2, 2, frequency=[1e9])
        >>> short = cal.make_calkit_parameter(CalkitStandard('short'))
        >>> cal.parameters.estimate(short, 1e9)
        (-1+0j)
        """
        if standard.ports != 1:
            raise UsageError(f'{standard!r} has {standard.ports} ports; use '
                             f'make_calkit_parameter_matrix')
        return self.parameters.make_calkit(standard, self.z0)

    def make_calkit_parameter_matrix(self, standard: CalkitStandard) -> list:
        """
        Create the parameter matrix of a calibration kit standard,
        evaluated against :attr:`z0`.

        The result can be passed as the S matrix of
        :func:`add_mapped_matrix` or :func:`add_line`.
        """
        return self.parameters.make_calkit_matrix(standard, self.z0)

    def _check_handles(self, standard: Standard):
        for h in standard.handles:
            self.parameters.get(h)

    def _measurement(self, mapped: MappedStandard, m, a):
        layout = self.layout
        n_freq = len(self.frequency)
        m = np.asarray(m, dtype=complex)
        if m.ndim == 2:
            m = m[np.newaxis]
        if m.ndim != 3 or m.shape[0] != n_freq:
            raise UsageError(f'measured matrix must be frequencies x rows x '
                             f'columns with {n_freq} frequencies')
        b_rows, b_columns = m.shape[1:]
        if a is not None:
            m = self._apply_a(m, a)

        standard = mapped.standard
        if layout.topology == Topology.T16:
            min_rows, min_columns = standard.s_rows, layout.m_columns
        elif layout.topology == Topology.U16:
            min_rows, min_columns = layout.m_rows, standard.s_columns
        else:
            min_rows = min_columns = standard.s_ports
        min_rows = min(min_rows, layout.m_rows)
        min_columns = min(min_columns, layout.m_columns)
        if b_rows not in (min_rows, layout.m_rows):
            raise UsageError(f'measured matrix must have {min_rows} or '
                             f'{layout.m_rows} rows, got {b_rows}')
        if b_columns not in (min_columns, layout.m_columns):
            raise UsageError(f'measured matrix must have {min_columns} or '
                             f'{layout.m_columns} columns, got {b_columns}')

        # a matrix smaller than the calibration's is placed at the
        # standard's ports in ascending order
        ports = mapped.measurement_ports()
        rows = list(range(b_rows)) if b_rows == layout.m_rows else \
            ports[:b_rows]
        columns = list(range(b_columns)) if b_columns == layout.m_columns \
            else ports[:b_columns]
        for name, index, limit in (('row', rows, layout.m_rows),
                                   ('column', columns, layout.m_columns)):
            for port in index:
                if port >= limit:
                    raise UsageError(f'port {port + 1} has no measurement '
                                     f'{name}; give the full measured matrix')
        full = np.zeros((n_freq, layout.m_rows, layout.m_columns),
                        dtype=complex)
        full[:, np.array(rows)[:, np.newaxis], np.array(columns)] = m
        m_given = np.zeros((layout.m_rows, layout.m_columns), dtype=bool)
        m_given[np.array(rows)[:, np.newaxis], np.array(columns)] = True
        if not np.all(np.isfinite(full)):
            raise UsageError('measured matrix contains non-finite values')
        return full, m_given

    def _apply_a(self, b, a):
        """
        Measured matrix from reflected (b) and incident (a) waves.
        """
        n_freq, _, b_columns = b.shape
        a = np.asarray(a, dtype=complex)
        if self.topology.per_column:
            if a.size != n_freq * b_columns:
                raise UsageError(f'a must be a row vector of {b_columns} '
                                 f'entries per frequency')
            a = a.reshape(n_freq, 1, b_columns)
            if np.any(a == 0):
                raise DomainError('a matrix has a zero entry')
            return b / a
        if a.size != n_freq * b_columns ** 2:
            raise UsageError(f'a must be a {b_columns}x{b_columns} matrix '
                             f'per frequency')
        a = a.reshape(n_freq, b_columns, b_columns)
        m = np.empty_like(b)
        for findex in range(n_freq):
            try:
                # M = B A^-1  <=>  A^T M^T = B^T
                m[findex] = checked_solve(a[findex].T, b[findex].T).T
            except np.linalg.LinAlgError as err:
                raise DomainError(f'a matrix is singular at '
                                  f'{self.frequency[findex]:g} Hz') \
                    from err
        return m

    def add_mapped_matrix(self, m, s, port_map=None, a=None):
        """
        Add the measurement of a general standard.

        Parameters
        ----------
        m : array_like
            measured matrix, frequencies x rows x columns, or rows x
            columns for a single frequency.  It either covers all VNA
            ports or only the ports of the standard, in ascending port
            order.  With `a`, these are the reflected waves.
        s : sequence
            S matrix of the standard as rows of parameter handles
        port_map : sequence of int, optional
            1-based VNA port of each port of the standard
        a : array_like, optional
            incident waves; the measured matrix is ``m @ inv(a)``, or for
            UE14 and E12 each column of `m` divided by the corresponding
            entry of the row vector `a`

        Returns
        -------
        observation : :class:`Observation`
        """
        return self._add(Standard(s, port_map=port_map), m, a)

    def add_single_reflect(self, m, s11, port: int, a=None):
        """
        Add the measurement of a one-port standard.

        Parameters
        ----------
        m : array_like
            measured matrix
        s11 : :class:`Handle`
            reflection coefficient of the standard
        port : int
            1-based VNA port the standard is attached to
        """
        return self._add(Standard([s11], port_map=[port], diagonal=True,
                                  name='reflect'), m, a)

    def add_double_reflect(self, m, s11, s22, port1: int, port2: int,
                           a=None):
        """
        Add the measurement of a pair of one-port standards measured at
        the same time.
        """
        return self._add(Standard([s11, s22], port_map=[port1, port2],
                                  diagonal=True, name='double reflect'),
                         m, a)

    def add_through(self, m, port1: int, port2: int, a=None):
        """
        Add the measurement of a perfect through between two ports.
        """
        return self._add(Standard([[ZERO, ONE], [ONE, ZERO]],
                                  port_map=[port1, port2], name='through'),
                         m, a)

    def add_line(self, m, s, port1: int, port2: int, a=None):
        """
        Add the measurement of a two-port standard given by a 2x2 matrix
        of parameter handles.
        """
        standard = Standard(s, port_map=[port1, port2], name='line')
        if (standard.s_rows, standard.s_columns) != (2, 2):
            raise UsageError('line S matrix must be 2x2')
        return self._add(standard, m, a)

    def _add(self, standard: Standard, m, a):
        self._check_handles(standard)
        mapped = standard.map(self.layout)
        full, m_given = self._measurement(mapped, m, a)
        observation = Observation(mapped, full, m_given)
        self.observations.append(observation)
        logger.info(f'added {standard!r} to {self.topology.value} '
                    f'calibration')
        return observation

    def solve(self, fail_fast: bool = True) -> 'CalibrationResult':
        """
        Solve for the error terms at every frequency.

        Unknown and correlated parameters are estimated along with the
        error terms; their per-frequency values are stored in the
        parameter table.

        Parameters
        ----------
        fail_fast : bool, optional
            raise the first error encountered.  When False, frequencies
            that fail hold NaN error terms and their errors are collected
            in :attr:`CalibrationResult.errors`.

        Returns
        -------
        result : :class:`CalibrationResult`

        Raises
        ------
        DomainError
            if the standards do not determine the error terms
        ConvergenceError
            if the solution does not converge within
            :attr:`iteration_limit` iterations
        StatisticalRejection
            if the goodness of fit p-value is below :attr:`pvalue_limit`
        ResourceError
            if memory is exhausted
        """
        if not self.observations:
            raise UsageError('no standards have been added')
        layout = self.layout
        solve_layout = layout.solve_layout
        n_freq = len(self.frequency)
        error_terms = np.full((n_freq, layout.error_terms), np.nan,
                              dtype=complex)
        ok = np.zeros(n_freq, dtype=bool)
        errors = {}
        pvalues = np.full(n_freq, np.nan)
        iterations = np.zeros(n_freq, dtype=int)
        solved = {}

        for findex, f in enumerate(self.frequency):
            try:
                try:
                    system = FrequencySystem(
                        solve_layout, self.observations, self.parameters,
                        findex, f,
                        None if self.noise is None else self.noise[findex],
                        None if self.tracking is None
                        else self.tracking[findex])
                    solution = solve_frequency(system, self.et_tolerance,
                                               self.p_tolerance,
                                               self.iteration_limit)
                except MemoryError as err:
                    raise ResourceError(f'out of memory: {err}') from err
                if solution.pvalue < self.pvalue_limit:
                    raise StatisticalRejection(
                        f'goodness of fit p-value {solution.pvalue:.3g} is '
                        f'below the limit of {self.pvalue_limit:g}',
                        pvalue=solution.pvalue)
            except CalibrationError as err:
                err.at(findex, f)
                if fail_fast:
                    raise
                logger.info(f'{self.topology.value}: frequency {f:g} Hz '
                            f'failed: {err.message}')
                errors[findex] = err
                continue

            e = solution.e
            if layout.topology == Topology.E12:
                e = ue14_to_e12(solve_layout, e)
            error_terms[findex] = e
            ok[findex] = True
            pvalues[findex] = solution.pvalue
            iterations[findex] = solution.iterations
            for h, value in zip(system.unknowns, solution.p):
                solved.setdefault(h, np.full(n_freq, np.nan,
                                             dtype=complex))[findex] = value
            logger.info(f'{self.topology.value}: solved {f:g} Hz in '
                        f'{solution.iterations} iterations')

        parameters = {}
        for h, values in solved.items():
            mask = ~np.isnan(values)
            self.parameters.set_solved(h, self.frequency[mask], values[mask])
            parameters[h] = values
        return CalibrationResult(layout, self.frequency, error_terms, ok,
                                 errors, pvalues, iterations, parameters,
                                 self.z0)


class CalibrationResult:
    """
    Error terms of a solved calibration.

    Attributes
    ----------
    layout : :class:`ErrorTermLayout`
    frequency : npy.ndarray
        frequencies in Hz
    error_terms : npy.ndarray
        frequencies x error_terms complex array, NaN at failed
        frequencies
    ok : npy.ndarray
        True for the frequencies that were solved
    errors : dict
        :class:`CalibrationError` of each failed frequency index
    pvalues : npy.ndarray
        goodness of fit of each frequency, NaN when not computed
    iterations : npy.ndarray
        iterations used at each frequency
    parameters : dict
        solved values of each unknown and correlated :class:`Handle`,
        one per frequency
    z0 : complex
        reference impedance
    """
    def __init__(self, layout: ErrorTermLayout, frequency, error_terms, ok,
                 errors, pvalues, iterations, parameters, z0=Z0_DEFAULT):
        self.layout = layout
        self.frequency = frequency
        self.error_terms = error_terms
        self.ok = ok
        self.errors = errors
        self.pvalues = pvalues
        self.iterations = iterations
        self.parameters = parameters
        self.z0 = z0

    def __repr__(self):
        return (f'CalibrationResult({self.topology.value}, '
                f'{self.layout.m_rows}x{self.layout.m_columns}, '
                f'{int(self.ok.sum())}/{len(self.ok)} frequencies solved)')

    @property
    def topology(self) -> Topology:
        return self.layout.topology

    def get_terms(self, name: str, column: int = None) -> np.ndarray:
        """
        Values of one group of error terms at every frequency.

        Parameters
        ----------
        name : str
            group name, e.g. ``'ts'`` or ``'el'``
        column : int, optional
            0-based measurement column, for the UE14 and E12 groups

        Returns
        -------
        terms : npy.ndarray
            frequencies x group size
        """
        return self.error_terms[:, self.layout.group(name, column).slice]

    def _terms_at(self, findex: int) -> np.ndarray:
        if not self.ok[findex]:
            raise self.errors[findex]
        return self.error_terms[findex]

    def to_e_terms(self, findex: int) -> dict:
        """
        Error terms at one frequency as El, Er, Em, Et matrices.

        See Also
        --------
        skvna.calibration.forward.to_e_terms
        """
        return to_e_terms(self.layout, self._terms_at(findex))

    def predict(self, findex: int, s) -> np.ndarray:
        """
        Measurement of a device with S matrix `s` predicted by the error
        terms at one frequency.
        """
        return measure(self.layout, self._terms_at(findex), s)

    def raise_for_errors(self):
        """
        Raise the error of the first failed frequency, if any.
        """
        if self.errors:
            raise self.errors[min(self.errors)]
