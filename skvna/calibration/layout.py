"""
.. module:: skvna.calibration.layout

========================================
layout (:mod:`skvna.calibration.layout`)
========================================

Error term topologies and the layout of the error term vector.

Each topology relates the measured matrix M of an m_rows x m_columns
VNA to the actual S parameters of the device in a different way.  The
layout gives, for a topology and measurement shape, the named groups of
error terms, their position in the error term vector and which term is
fixed at one.

T topologies (m_rows <= m_columns) use the relation::

    Ts S + Ti = M (Tx S + Tm)

U topologies (m_rows >= m_columns) use::

    Um M + Ui = S (Ux M + Us)

and E12 uses::

    M = El + Er S (I - Em S)^-1 Et

Topologies
----------
.. autosummary::
   :toctree: generated/

   Topology
   TermGroup
   ErrorTermLayout
   get_layout

"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

import numpy as np

from .errors import UsageError


class Topology(Enum):
    """
    Error term topology.
    """
    T8 = 'T8'
    U8 = 'U8'
    TE10 = 'TE10'
    UE10 = 'UE10'
    T16 = 'T16'
    U16 = 'U16'
    UE14 = 'UE14'
    E12 = 'E12'

    @classmethod
    def from_value(cls, value) -> 'Topology':
        """
        Look up a topology by member or case-insensitive name.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                pass
        raise UsageError(f'invalid error term topology: {value!r}')

    @property
    def is_t(self) -> bool:
        """True for the T-parameter topologies."""
        return self in (Topology.T8, Topology.TE10, Topology.T16)

    @property
    def is_u(self) -> bool:
        """True for the U-parameter topologies, including E12."""
        return not self.is_t

    @property
    def has_leakage(self) -> bool:
        """True if off-diagonal leakage terms are modeled explicitly."""
        return self in (Topology.TE10, Topology.UE10, Topology.UE14,
                        Topology.E12)

    @property
    def per_column(self) -> bool:
        """True if each measurement column is an independent system."""
        return self in (Topology.UE14, Topology.E12)

    @property
    def is_full(self) -> bool:
        """True for the 16-term topologies with complete sub-matrices."""
        return self in (Topology.T16, Topology.U16)


class TermGroup:
    """
    A named group of error terms.

    The terms of a group are the non-zero cells of one sub-matrix of the
    error model.  For the per-column topologies, `column` names the
    measurement column the group belongs to.
    """
    def __init__(self, name: str, offset: int, shape: tuple,
                 rows, cols, column: int = None):
        self.name = name
        self.offset = offset
        self.shape = shape
        self.rows = np.asarray(rows, dtype=int)
        self.cols = np.asarray(cols, dtype=int)
        self.column = column

    def __repr__(self):
        column = '' if self.column is None else f', column={self.column}'
        return (f'TermGroup({self.name!r}, offset={self.offset}, '
                f'size={self.size}{column})')

    @property
    def size(self) -> int:
        """
        Number of terms in the group.
        """
        return len(self.rows)

    @property
    def slice(self) -> slice:
        """
        Slice of the group in the error term vector.
        """
        return slice(self.offset, self.offset + self.size)

    def to_matrix(self, e: np.ndarray) -> np.ndarray:
        """
        Place the group's terms from error term vector `e` into its
        sub-matrix.
        """
        mat = np.zeros(self.shape, dtype=complex)
        mat[self.rows, self.cols] = e[self.slice]
        return mat


def _diagonal(n_rows, n_cols):
    n = min(n_rows, n_cols)
    return np.arange(n), np.arange(n)


def _full(n_rows, n_cols):
    rows, cols = np.divmod(np.arange(n_rows * n_cols), n_cols)
    return rows, cols


class ErrorTermLayout:
    """
    Layout of the error term vector for a topology and measurement shape.

    Parameters
    ----------
    topology : :class:`Topology` or str
        error term topology
    m_rows : int
        number of VNA ports that detect signal
    m_columns : int
        number of VNA ports that generate signal

    Raises
    ------
    UsageError
        if the shape is invalid for the topology

    Examples
    --------
    >>> layout = ErrorTermLayout('T8', 2, 2)
    >>> layout.error_terms
    8
    >>> layout.group('tm').offset
    6
    """
    def __init__(self, topology, m_rows: int, m_columns: int):
        topology = Topology.from_value(topology)
        if int(m_rows) != m_rows or int(m_columns) != m_columns:
            raise UsageError('m_rows and m_columns must be integers')
        m_rows, m_columns = int(m_rows), int(m_columns)
        if m_rows < 1 or m_columns < 1:
            raise UsageError('calibration matrix must be at least 1x1')
        if topology.is_t and m_rows > m_columns:
            raise UsageError(
                f'{topology.value}: U parameters must be used when '
                f'm_rows > m_columns')
        if topology.is_u and m_rows < m_columns:
            raise UsageError(
                f'{topology.value}: T parameters must be used when '
                f'm_rows < m_columns')

        self.topology = topology
        self.m_rows = m_rows
        self.m_columns = m_columns
        self.ports = max(m_rows, m_columns)
        self.s_rows = self.ports
        self.s_columns = self.ports
        self.diagonals = min(m_rows, m_columns)
        self.groups = []
        self.system_terms = 0
        self.el_offset = 0
        self.el_terms = 0
        self._build()

    def __repr__(self):
        return (f'ErrorTermLayout({self.topology.value}, {self.m_rows}x'
                f'{self.m_columns}, error_terms={self.error_terms})')

    def __eq__(self, other):
        return (isinstance(other, ErrorTermLayout) and
                (self.topology, self.m_rows, self.m_columns) ==
                (other.topology, other.m_rows, other.m_columns))

    def __hash__(self):
        return hash((self.topology, self.m_rows, self.m_columns))

    def _add(self, name, shape, cells, column=None):
        offset = sum(g.size for g in self.groups)
        group = TermGroup(name, offset, shape, *cells, column=column)
        self.groups.append(group)
        return group

    def _build(self):
        topology = self.topology
        mr, mc = self.m_rows, self.m_columns
        sr, sc = self.s_rows, self.s_columns

        if topology.is_t:
            cells = _full if topology.is_full else _diagonal
            self._add('ts', (mr, sr), cells(mr, sr))
            self._add('ti', (mr, sc), cells(mr, sc))
            self._add('tx', (mc, sr), cells(mc, sr))
            self._add('tm', (mc, sc), cells(mc, sc))
        elif topology in (Topology.U8, Topology.UE10, Topology.U16):
            cells = _full if topology.is_full else _diagonal
            self._add('um', (sr, mr), cells(sr, mr))
            self._add('ui', (sr, mc), cells(sr, mc))
            self._add('ux', (sc, mr), cells(sc, mr))
            self._add('us', (sc, mc), cells(sc, mc))
        elif topology == Topology.UE14:
            for column in range(mc):
                self._add('um', (sr, mr), _diagonal(sr, mr), column)
                self._add('ui', (sr, 1), ([column], [0]), column)
                self._add('ux', (sc, mr), _diagonal(sc, mr), column)
                self._add('us', (sc, 1), ([column], [0]), column)
        else:
            for column in range(mc):
                self._add('el', (mr, 1), (np.arange(mr), np.zeros(mr)), column)
                self._add('er', (mr, 1), (np.arange(mr), np.zeros(mr)), column)
                self._add('em', (mr, 1), (np.arange(mr), np.zeros(mr)), column)
        self.system_terms = sum(g.size for g in self.groups) // self.systems

        self.el_offset = sum(g.size for g in self.groups)
        if topology in (Topology.TE10, Topology.UE10, Topology.UE14):
            rows, cols = _full(mr, mc)
            off = rows != cols
            self._add('el', (mr, mc), (rows[off], cols[off]))
            self.el_terms = int(np.count_nonzero(off))

    @property
    def error_terms(self) -> int:
        """
        Total number of error terms.
        """
        return sum(g.size for g in self.groups)

    @property
    def systems(self) -> int:
        """
        Number of independent linear systems: one per measurement column
        for UE14 and E12, otherwise one.
        """
        return self.m_columns if self.topology.per_column else 1

    @property
    def leakage_cells(self) -> list:
        """
        Off-diagonal measurement cells in row-major order.  In the leakage
        topologies, the n-th cell corresponds to the n-th El term.
        """
        return [(r, c) for r in range(self.m_rows)
                for c in range(self.m_columns) if r != c]

    @property
    def solve_layout(self) -> 'ErrorTermLayout':
        """
        Layout of the system actually solved: E12 is solved through its
        UE14 form and converted afterward.
        """
        if self.topology == Topology.E12:
            return get_layout(Topology.UE14, self.m_rows, self.m_columns)
        return self

    @property
    def x_length(self) -> int:
        """
        Number of unknown error terms in the linear system, excluding
        the unity terms and the leakage terms.
        """
        return self.systems * (self.system_terms - 1)

    def group(self, name: str, column: int = None) -> TermGroup:
        """
        Find a term group by name (and measurement column for UE14/E12).

        Raises
        ------
        UsageError
            if no such group exists in this layout
        """
        for g in self.groups:
            if g.name == name and g.column == column:
                return g
        raise UsageError(f'{self.topology.value}: no error term group '
                         f'{name!r}' +
                         ('' if column is None else f' in column {column}'))

    def system_groups(self, system: int) -> list:
        """
        Groups of the given system, excluding leakage.
        """
        if self.topology.per_column:
            return [g for g in self.groups if g.column == system]
        return [g for g in self.groups if g.name != 'el']

    def system_offset(self, system: int) -> int:
        """
        Index of the first error term of a system.
        """
        return system * self.system_terms

    def unity_index(self, system: int = 0):
        """
        Index, within the system's terms, of the term fixed at one, or
        None for E12.
        """
        topology = self.topology
        if topology.is_t:
            return self.group('tm').offset
        if topology == Topology.UE14:
            return system
        if topology == Topology.E12:
            return None
        return 0

    def unity_vector(self) -> np.ndarray:
        """
        Boolean mask of the error terms fixed at one.
        """
        mask = np.zeros(self.error_terms, dtype=bool)
        for system in range(self.systems):
            index = self.unity_index(system)
            if index is not None:
                mask[self.system_offset(system) + index] = True
        return mask

    @property
    def term_names(self) -> list:
        """
        Names of the error terms in vector order, e.g. ``'ts11'`` or,
        for the per-column topologies, ``'c1_um22'``.
        """
        names = []
        for g in self.groups:
            prefix = '' if g.column is None else f'c{g.column + 1}_'
            for r, c in zip(g.rows, g.cols):
                if g.column is not None and g.name in ('el', 'er', 'em'):
                    names.append(f'{prefix}{g.name}{r + 1}')
                elif g.column is not None:
                    names.append(f'{prefix}{g.name}{r + 1}{r + 1}'
                                 if g.name in ('um', 'ux') else
                                 f'{prefix}{g.name}11')
                else:
                    names.append(f'{g.name}{r + 1}{c + 1}')
        return names

    def blocks(self, e: np.ndarray):
        """
        Unpack an error term vector into its sub-matrices.

        Parameters
        ----------
        e : npy.ndarray
            error term vector of length :attr:`error_terms`

        Returns
        -------
        blocks : dict or list of dict
            For the T and U topologies, a dict of sub-matrices keyed by
            group name, with ``'el'`` the m_rows x m_columns leakage
            matrix (zero when not modeled).  For UE14 and E12, a list with
            one dict of column vectors per measurement column, and for
            UE14 the shared leakage matrix under key ``'el'`` of each.
        """
        e = np.asarray(e, dtype=complex)
        if e.shape != (self.error_terms,):
            raise UsageError(f'error term vector must have length '
                             f'{self.error_terms}')
        el = np.zeros((self.m_rows, self.m_columns), dtype=complex)
        if self.el_terms:
            el = self.group('el').to_matrix(e)
        if not self.topology.per_column:
            result = {g.name: g.to_matrix(e) for g in self.system_groups(0)}
            result['el'] = el
            return result
        columns = []
        for column in range(self.m_columns):
            d = {}
            for g in self.system_groups(column):
                values = e[g.slice]
                d[g.name] = values[0] if g.name in ('ui', 'us') else values
            if self.topology == Topology.UE14:
                d['el'] = el
            columns.append(d)
        return columns


@lru_cache(maxsize=None)
def get_layout(topology, m_rows: int, m_columns: int) -> ErrorTermLayout:
    """
    Cached :class:`ErrorTermLayout` for a topology and shape.

    Layouts are immutable so one instance may be shared.
    """
    return ErrorTermLayout(Topology.from_value(topology), m_rows, m_columns)
