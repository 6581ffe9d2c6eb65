"""
.. module:: skvna.calibration.equations

==============================================
equations (:mod:`skvna.calibration.equations`)
==============================================

Assembly of the linear system relating the error terms to the measured
standards at one frequency.

For fixed S parameters, each topology's measurement relation is linear
in the error terms.  T topologies use the residual::

    R = (Ts S + Ti - M Tx S - M Tm) V,   V = (Tx S + Tm)^-1

and U topologies::

    R = V (Um M + Ui - S Ux M - S Us),   V = (Um - S Ux)^-1

With V taken from the previous estimate of the error terms, R is the
difference between predicted and measured values in the units of the
measurement, which makes the measurement error model applicable to it.
Without an error model, V is the identity.  UE14 forms one such system
per measurement column with diagonal Um and Ux.

Every equation is one cell of R.  The coefficient of error term
``X[r, c]`` in cell ``R[i, j]`` factors into ``left[i, r] * right[c, j]``
for matrices that depend only on the topology group, M, S and V, which
is how the coefficient matrix is built here.

.. autosummary::
   :toctree: generated/

   FrequencySystem

"""
from __future__ import annotations

import numpy as np

from ..mathFunctions import cabs2, checked_inv
from .errors import DomainError
from .layout import ErrorTermLayout, Topology
from .parameter import ParameterTable, ParameterType


class FrequencySystem:
    """
    The calibration equations of all observations at one frequency.

    Parameters
    ----------
    layout : :class:`ErrorTermLayout`
        layout of the system actually solved (UE14 for E12)
    observations : list of :class:`Observation`
    table : :class:`ParameterTable`
    findex : int
        frequency index into the observations' measurements
    frequency : float
        frequency in Hz
    noise, tracking : float, optional
        standard deviations of the additive and multiplicative
        measurement error at this frequency; without `noise`, rows are
        not weighted and V is the identity

    Raises
    ------
    DomainError
        if a leakage term is not isolated by any standard

    Attributes
    ----------
    unknowns : list of :class:`Handle`
        unknown and correlated parameters, in parameter vector order
    correlations : list of tuple
        ``(index, other_index, other, sigma)`` per correlated parameter;
        `other_index` is None when the correlate is known
    n_equations : int
        number of (complex) equations
    """
    def __init__(self, layout: ErrorTermLayout, observations: list,
                 table: ParameterTable, findex: int, frequency: float,
                 noise: float = None, tracking: float = None):
        self.layout = layout
        self.topology = layout.topology
        self.observations = observations
        self.table = table
        self.findex = findex
        self.frequency = frequency
        self.noise = noise
        self.tracking = 0.0 if tracking is None else tracking
        self.has_error_model = noise is not None

        unity = layout.unity_vector()[:layout.el_offset]
        self.x_index = np.flatnonzero(~unity)
        self.unity_index = np.flatnonzero(unity)
        self._column = np.full(layout.error_terms, -1, dtype=int)
        self._column[self.x_index] = np.arange(len(self.x_index))

        self._find_unknowns()
        self._resolve_known()
        self._estimate_leakage()
        self._find_equations()

    @property
    def x_length(self) -> int:
        return len(self.x_index)

    @property
    def p_length(self) -> int:
        return len(self.unknowns)

    def _find_unknowns(self):
        table, f = self.table, self.frequency
        unknowns = []
        for obs in self.observations:
            for _, _, h in obs.standard.given_cells():
                if table.is_unknown(h) and h not in unknowns:
                    unknowns.append(h)
        # a correlated parameter may refer to an unknown that no
        # standard uses directly
        k = 0
        while k < len(unknowns):
            parameter = table.get(unknowns[k])
            if (parameter.kind == ParameterType.CORRELATED and
                    table.is_unknown(parameter.other) and
                    parameter.other not in unknowns):
                unknowns.append(parameter.other)
            k += 1
        self.unknowns = unknowns
        self.unknown_index = {h: k for k, h in enumerate(unknowns)}

        self.correlations = []
        for k, h in enumerate(unknowns):
            if table.get(h).kind == ParameterType.CORRELATED:
                other = table.correlate(h)
                self.correlations.append((k, self.unknown_index.get(other),
                                          other, table.sigma(h, f)))

    def _resolve_known(self):
        ports = self.layout.ports
        self._known_s = []
        self._unknown_cells = []
        for obs in self.observations:
            s = np.zeros((ports, ports), dtype=complex)
            cells = []
            for i, j, h in obs.standard.given_cells():
                k = self.unknown_index.get(h)
                if k is None:
                    s[i, j] = self.table.estimate(h, self.frequency)
                else:
                    cells.append((i, j, k))
            self._known_s.append(s)
            self._unknown_cells.append(cells)

    def _estimate_leakage(self):
        layout = self.layout
        self.raw = [obs.m[self.findex] for obs in self.observations]
        self.leakage = np.zeros((layout.m_rows, layout.m_columns),
                                dtype=complex)
        self.leakage_samples = []
        if layout.el_terms:
            for r, c in layout.leakage_cells:
                samples = np.array([
                    raw[r, c]
                    for obs, raw in zip(self.observations, self.raw)
                    if obs.m_given[r, c] and not obs.standard.reachable[r, c]
                ], dtype=complex)
                if len(samples) == 0:
                    raise DomainError(
                        f'leakage term system is singular: no standard '
                        f'isolates port {c + 1} from port {r + 1}')
                self.leakage[r, c] = samples.mean()
                self.leakage_samples.append(samples)
        self.measured = [np.where(obs.m_given, raw - self.leakage, 0.0)
                         for obs, raw in zip(self.observations, self.raw)]

    def _find_equations(self):
        layout = self.layout
        self.blocks = []
        row = 0
        for o, obs in enumerate(self.observations):
            cells = obs.standard.equation_cells()
            if layout.topology.is_t:
                cells = [(i, j) for i, j in cells if obs.m_row_given[i]]
            else:
                cells = [(i, j) for i, j in cells if obs.m_column_given[j]]
            for system in range(layout.systems):
                if layout.topology.per_column:
                    chosen = [(i, j) for i, j in cells if j == system]
                else:
                    chosen = cells
                if not chosen:
                    continue
                ii = np.array([i for i, _ in chosen], dtype=int)
                jj = np.array([j for _, j in chosen], dtype=int)
                rows = np.arange(row, row + len(chosen))
                self.blocks.append((o, system, ii, jj, rows))
                row += len(chosen)
        self.n_equations = row

        self.weights = np.ones(row)
        if self.has_error_model:
            for o, _, ii, jj, rows in self.blocks:
                m = self.raw[o][ii, jj]
                self.weights[rows] = 1.0 / np.sqrt(
                    self.noise ** 2 + self.tracking ** 2 * cabs2(m))

    def initial_p(self) -> np.ndarray:
        """
        Starting parameter vector from the table's current estimates.
        """
        return np.array([self.table.estimate(h, self.frequency)
                         for h in self.unknowns], dtype=complex)

    def initial_e(self) -> np.ndarray:
        """
        Error terms of a perfect VNA: the identity relation, no leakage.
        """
        layout = self.layout
        e = np.zeros(layout.error_terms, dtype=complex)
        for g in layout.groups:
            if g.name in ('ts', 'tm', 'um', 'us'):
                e[g.slice] = (g.rows == g.cols) if g.column is None else 1.0
        return e

    def correlate_value(self, other) -> complex:
        return self.table.estimate(other, self.frequency)

    def s_matrix(self, o: int, p: np.ndarray) -> np.ndarray:
        """
        S matrix of observation `o` with unknown parameters set from `p`
        and undetermined cells zero.
        """
        s = self._known_s[o].copy()
        for i, j, k in self._unknown_cells[o]:
            s[i, j] = p[k]
        return s

    def error_terms(self, x: np.ndarray) -> np.ndarray:
        """
        Full error term vector from the solution of the linear system.
        """
        layout = self.layout
        e = np.zeros(layout.error_terms, dtype=complex)
        e[self.x_index] = x
        e[self.unity_index] = 1.0
        if layout.el_terms:
            e[layout.group('el').slice] = [self.leakage[r, c] for r, c in
                                           layout.leakage_cells]
        return e

    def v_matrices(self, e: np.ndarray, p: np.ndarray) -> list:
        """
        The V matrices of each observation and system.

        Raises
        ------
        DomainError
            if the relation is singular for some standard
        """
        layout = self.layout
        ports = layout.ports
        identity = np.eye(ports, dtype=complex)
        if not self.has_error_model:
            return [[identity] * layout.systems for _ in self.observations]
        blocks = layout.blocks(e)
        result = []
        for o, obs in enumerate(self.observations):
            # undetermined cells would bias a full 16-term V
            if layout.topology.is_full and obs.standard.has_unknown_cells:
                result.append([identity] * layout.systems)
                continue
            s = self.s_matrix(o, p)
            try:
                if layout.topology.is_t:
                    v = [checked_inv(blocks['tx'] @ s + blocks['tm'])]
                elif layout.topology == Topology.UE14:
                    v = [checked_inv(np.diag(column['um']) -
                                     s * column['ux'][np.newaxis, :])
                         for column in blocks]
                else:
                    v = [checked_inv(blocks['um'] - s @ blocks['ux'])]
            except np.linalg.LinAlgError as err:
                raise DomainError(f'standard {o + 1}: singular relation '
                                  f'between error terms and S parameters '
                                  f'({err})') from err
            result.append(v)
        return result

    def _factors(self, o: int, system: int, s: np.ndarray, v: np.ndarray):
        m = self.measured[o]
        layout = self.layout
        if layout.topology.is_t:
            sv = s @ v
            ident = np.eye(layout.m_rows)
            return {'ts': (ident, sv), 'ti': (ident, v),
                    'tx': (-m, sv), 'tm': (-m, v)}
        vs = v @ s
        if layout.topology == Topology.UE14:
            ident = np.ones((1, layout.m_columns))
        else:
            ident = np.eye(layout.m_columns)
        return {'um': (v, m), 'ui': (v, ident),
                'ux': (-vs, m), 'us': (-vs, ident)}

    def assemble(self, p: np.ndarray, v: list):
        """
        Weighted coefficient matrix and right hand side.

        Returns
        -------
        A : npy.ndarray
            n_equations x x_length
        b : npy.ndarray
            n_equations
        """
        layout = self.layout
        A = np.zeros((self.n_equations, self.x_length), dtype=complex)
        b = np.zeros(self.n_equations, dtype=complex)
        s_cache = {}
        for o, system, ii, jj, rows in self.blocks:
            if o not in s_cache:
                s_cache[o] = self.s_matrix(o, p)
            factors = self._factors(o, system, s_cache[o], v[o][system])
            for g in layout.system_groups(system):
                left, right = factors[g.name]
                coef = (left[ii[:, np.newaxis], g.rows[np.newaxis, :]] *
                        right[g.cols[np.newaxis, :], jj[:, np.newaxis]])
                terms = g.offset + np.arange(g.size)
                columns = self._column[terms]
                fixed = columns < 0
                if np.any(fixed):
                    # the unity term moves to the right hand side
                    b[rows] -= coef[:, fixed].sum(axis=1)
                A[rows[:, np.newaxis], columns[np.newaxis, ~fixed]] = \
                    coef[:, ~fixed]
        w = self.weights
        return A * w[:, np.newaxis], b * w

    def derivative(self, e: np.ndarray, p: np.ndarray, v: list) -> np.ndarray:
        """
        Weighted derivative of the residuals with respect to the unknown
        parameters, with V held fixed.

        Returns
        -------
        dR : npy.ndarray
            n_equations x p_length
        """
        layout = self.layout
        dR = np.zeros((self.n_equations, self.p_length), dtype=complex)
        if not self.unknowns:
            return dR
        blocks = layout.blocks(e)
        for o, system, ii, jj, rows in self.blocks:
            cells = self._unknown_cells[o]
            if not cells:
                continue
            m = self.measured[o]
            vm = v[o][system]
            if layout.topology.is_t:
                left = blocks['ts'] - m @ blocks['tx']
                right = vm
            elif layout.topology == Topology.UE14:
                column = blocks[system]
                left = -vm
                right = np.zeros((layout.ports, layout.m_columns),
                                 dtype=complex)
                right[:, system] = column['ux'] * m[:, system]
                right[system, system] += column['us']
            else:
                left = -vm
                right = blocks['ux'] @ m + blocks['us']
            for a, c, k in cells:
                dR[rows, k] += left[ii, a] * right[c, jj]
        return dR * self.weights[:, np.newaxis]

    def correlation_rows(self, p: np.ndarray):
        """
        Extra rows tying each correlated parameter to its correlate.

        Returns
        -------
        J : npy.ndarray
            n_correlated x p_length
        k : npy.ndarray
            current scaled deviations from the correlates
        """
        J = np.zeros((len(self.correlations), self.p_length), dtype=complex)
        k = np.zeros(len(self.correlations), dtype=complex)
        for row, (index, other_index, other, sigma) in \
                enumerate(self.correlations):
            J[row, index] = 1.0 / sigma
            if other_index is None:
                k[row] = (p[index] - self.correlate_value(other)) / sigma
            else:
                J[row, other_index] = -1.0 / sigma
                k[row] = (p[index] - p[other_index]) / sigma
        return J, k

    def leakage_chi2(self):
        """
        Goodness-of-fit contribution of the leakage samples.

        Returns
        -------
        chi2 : float
        df : int
        """
        chi2 = 0.0
        df = 0
        for samples in self.leakage_samples:
            n = len(samples)
            if n < 2:
                continue
            mean = samples.mean()
            weight = 1.0 / (self.noise ** 2 + self.tracking ** 2 * cabs2(mean))
            chi2 += 2.0 * float(np.sum(cabs2(samples - mean))) * weight
            df += 2 * (n - 1)
        return chi2, df
