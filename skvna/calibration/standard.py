"""
.. module:: skvna.calibration.standard

============================================
standard (:mod:`skvna.calibration.standard`)
============================================

Calibration standards and their mapping onto the VNA ports.

A standard is a (possibly rectangular or diagonal-only) matrix of
parameter handles together with a map from the standard's ports to VNA
ports.  Mapping it onto a calibration expands it to the full square S
matrix of the calibration, where every cell is one of:

* ``GIVEN``: taken from the standard
* ``ZERO``: couples a port of the standard with a port not attached to it
* ``UNKNOWN``: not determined by the standard, e.g. between two ports
  not attached to it

For example, a 3x2 standard on ports 2, 3, 4 of a 5-port calibration
expands to::

    ?   0   0   0   ?
    0   s11 s12 ?   0
    0   s21 s22 ?   0
    0   s31 s32 ?   0
    ?   0   0   0   ?

.. autosummary::
   :toctree: generated/

   CellKind
   Standard
   MappedStandard

"""
from __future__ import annotations

from enum import IntEnum
from typing import Callable

import numpy as np

from ..mathFunctions import floyd_warshall
from .errors import UsageError
from .layout import ErrorTermLayout
from .parameter import ZERO, Handle, ParameterTable


class CellKind(IntEnum):
    """
    Classification of a cell of the expanded S matrix.
    """
    GIVEN = 0
    ZERO = 1
    UNKNOWN = 2


def _as_handle(value, where):
    if isinstance(value, Handle):
        return value
    raise UsageError(f'{where}: S matrix entries must be parameter handles, '
                     f'got {value!r}')


class Standard:
    """
    A calibration standard.

    Parameters
    ----------
    s : sequence
        matrix (list of rows) of parameter handles, or for a standard
        that only defines reflections, a vector of handles
    port_map : sequence of int, optional
        1-based VNA port of each port of the standard; required when the
        standard is smaller than the calibration
    diagonal : bool, optional
        True if `s` is a vector of reflection parameters.  The
        transmission between the ports of such a standard is zero.
    name : str, optional

    Examples
    --------
    A through between VNA ports 1 and 2:

    >>> thru = Standard([[ZERO, ONE], [ONE, ZERO]], port_map=[1, 2])
    """
    def __init__(self, s, port_map=None, diagonal: bool = False,
                 name: str = None):
        self.name = name
        self.diagonal = diagonal
        if diagonal:
            handles = [_as_handle(h, 'standard') for h in s]
            if len(handles) < 1:
                raise UsageError('standard must have at least one port')
            self.s = np.empty((len(handles),), dtype=object)
            for i, h in enumerate(handles):
                self.s[i] = h
            self.s_rows = self.s_columns = len(handles)
        else:
            rows = [list(r) for r in s]
            if len(rows) < 1 or len(rows[0]) < 1 or \
                    any(len(r) != len(rows[0]) for r in rows):
                raise UsageError('S matrix must be a non-empty rectangular '
                                 'matrix')
            self.s_rows, self.s_columns = len(rows), len(rows[0])
            self.s = np.empty((self.s_rows, self.s_columns), dtype=object)
            for i, r in enumerate(rows):
                for j, h in enumerate(r):
                    self.s[i, j] = _as_handle(h, 'standard')
        self.port_map = None if port_map is None else \
            [int(p) for p in port_map]

    def __repr__(self):
        name = '' if self.name is None else f'{self.name!r}, '
        return (f'Standard({name}{self.s_rows}x{self.s_columns}, '
                f'port_map={self.port_map})')

    @property
    def s_ports(self) -> int:
        """
        Number of ports of the standard.
        """
        return max(self.s_rows, self.s_columns)

    @property
    def handles(self) -> list:
        """
        The distinct parameter handles the standard refers to.
        """
        seen = []
        for h in self.s.ravel():
            if h not in seen:
                seen.append(h)
        return seen

    def map(self, layout: ErrorTermLayout) -> 'MappedStandard':
        """
        Expand the standard onto a calibration.

        Raises
        ------
        UsageError
            if the standard's shape or port map do not fit the layout
        """
        return MappedStandard(self, layout)


class MappedStandard:
    """
    A standard expanded to the full S matrix of a calibration.

    Attributes
    ----------
    cells : npy.ndarray
        ports x ports object array of handles, None where not GIVEN
    kind : npy.ndarray
        ports x ports array of :class:`CellKind`
    port_connected : npy.ndarray
        which VNA ports the standard is attached to
    s_row_given, s_column_given : npy.ndarray
        which rows and columns of the full matrix the standard defines
    reachable : npy.ndarray
        True for port pairs with a possible signal path through the
        standard (transitive closure of the non-zero cells)
    """
    def __init__(self, standard: Standard, layout: ErrorTermLayout):
        self.standard = standard
        self.layout = layout
        ports = layout.ports
        s_rows, s_columns = standard.s_rows, standard.s_columns
        port_map = standard.port_map

        if s_rows > layout.s_rows or s_columns > layout.s_columns:
            raise UsageError(f'S matrix of {s_rows}x{s_columns} exceeds the '
                             f'calibration\'s {ports} ports')
        # In T parameters, entire S columns must be known; in U
        # parameters, entire S rows.
        if layout.topology.is_t and s_rows < s_columns and \
                s_rows != layout.s_rows:
            raise UsageError(f's_rows cannot be less than '
                             f'{min(s_columns, layout.s_rows)}')
        if layout.topology.is_u and s_rows > s_columns and \
                s_columns != layout.s_columns:
            raise UsageError(f's_columns cannot be less than '
                             f'{min(s_rows, layout.s_columns)}')
        if port_map is None and (s_rows != ports or s_columns != ports):
            raise UsageError('port map is required when the given S matrix '
                             'is smaller than that of the calibration')

        self.port_connected = np.zeros(ports, dtype=bool)
        if port_map is None:
            port_map = list(range(1, ports + 1))
            self.port_connected[:] = True
        else:
            if len(port_map) != standard.s_ports:
                raise UsageError(f'port map must have {standard.s_ports} '
                                 f'entries')
            for port in port_map:
                if port < 1 or port > ports:
                    raise UsageError(f'{port}: invalid port index')
                if self.port_connected[port - 1]:
                    raise UsageError(f'port {port} appears more than once '
                                     f'in port map')
                self.port_connected[port - 1] = True
        self.port_map = list(port_map)

        self.cells = np.full((ports, ports), None, dtype=object)
        self.kind = np.full((ports, ports), CellKind.UNKNOWN, dtype=int)
        self.s_row_given = np.zeros(ports, dtype=bool)
        self.s_column_given = np.zeros(ports, dtype=bool)
        index = [p - 1 for p in port_map]
        if standard.diagonal:
            for k in range(standard.s_rows):
                p = index[k]
                self.cells[p, p] = standard.s[k]
                self.kind[p, p] = CellKind.GIVEN
            for i in index:
                for j in index:
                    if i != j:
                        self.kind[i, j] = CellKind.ZERO
            self.s_row_given[index] = True
            self.s_column_given[index] = True
        else:
            for r in range(s_rows):
                for c in range(s_columns):
                    self.cells[index[r], index[c]] = standard.s[r, c]
                    self.kind[index[r], index[c]] = CellKind.GIVEN
            self.s_row_given[index[:s_rows]] = True
            self.s_column_given[index[:s_columns]] = True

        # no external connections between ports attached to the standard
        # and ports that are not
        coupling = np.logical_xor.outer(self.port_connected,
                                        self.port_connected)
        self.kind[coupling] = CellKind.ZERO

        # known-zero handles count as zero for reachability
        nonzero = self.kind != CellKind.ZERO
        for i, j in zip(*np.nonzero(self.kind == CellKind.GIVEN)):
            if self.cells[i, j] == ZERO:
                nonzero[i, j] = False
        self.nonzero = nonzero
        self.reachable = floyd_warshall(nonzero)

    def __repr__(self):
        return f'MappedStandard({self.standard!r})'

    @property
    def has_unknown_cells(self) -> bool:
        """
        True if some cell of the full S matrix is not determined.
        """
        return bool(np.any(self.kind == CellKind.UNKNOWN))

    def given_cells(self):
        """
        Iterate over ``(row, column, handle)`` of the GIVEN cells.
        """
        for i, j in zip(*np.nonzero(self.kind == CellKind.GIVEN)):
            yield int(i), int(j), self.cells[i, j]

    def s_matrix(self, table: ParameterTable, f: float,
                 filler: Callable = None, value: Callable = None) -> np.ndarray:
        """
        Numeric full S matrix at frequency `f`.

        Parameters
        ----------
        table : :class:`ParameterTable`
        f : float
            frequency in Hz
        filler : callable, optional
            called with no arguments to produce the value of each UNKNOWN
            cell; UNKNOWN cells are zero when omitted
        value : callable, optional
            called as ``value(handle, f)`` for each GIVEN cell; defaults
            to :func:`ParameterTable.resolve`

        Returns
        -------
        s : npy.ndarray
            ports x ports complex matrix
        """
        if value is None:
            value = table.resolve
        ports = self.layout.ports
        s = np.zeros((ports, ports), dtype=complex)
        cache = {}
        for i, j, h in self.given_cells():
            if h not in cache:
                cache[h] = value(h, f)
            s[i, j] = cache[h]
        if filler is not None:
            for i, j in zip(*np.nonzero(self.kind == CellKind.UNKNOWN)):
                s[i, j] = filler()
        return s

    def measurement_ports(self) -> list:
        """
        0-based VNA ports in ascending order, used to place a measured
        matrix smaller than the calibration.
        """
        return sorted(p - 1 for p in self.port_map)

    def equation_cells(self) -> list:
        """
        ``(row, column)`` of the linear equations this standard yields,
        before measurement availability is considered.

        In T topologies the row is a measurement row and the column an S
        column; in U topologies the row is an S row and the column a
        measurement column.  Off-diagonal equations between ports with
        no signal path are dropped except in T16 and U16, which model
        leakage inside the linear system.
        """
        layout = self.layout
        cells = []
        if layout.topology.is_t:
            rows = range(layout.m_rows)
            columns = np.flatnonzero(self.s_column_given)
        else:
            rows = np.flatnonzero(self.s_row_given)
            columns = range(layout.m_columns)
        for i in rows:
            for j in columns:
                if (not layout.topology.is_full and i != j and
                        not self.reachable[i, j]):
                    continue
                cells.append((int(i), int(j)))
        return cells
