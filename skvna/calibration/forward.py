"""
.. module:: skvna.calibration.forward

==========================================
forward (:mod:`skvna.calibration.forward`)
==========================================

Forward measurement model: predict the raw measurement a VNA with given
error terms reports for a device with known S parameters, and convert
error terms between topologies.

.. autosummary::
   :toctree: generated/

   measure
   ue14_to_e12
   to_e_terms

"""
from __future__ import annotations

import numpy as npy

from ..mathFunctions import checked_solve
from .errors import DomainError, UsageError
from .layout import ErrorTermLayout, Topology, get_layout


def _solve(A, B, what):
    try:
        return checked_solve(A, B)
    except npy.linalg.LinAlgError as err:
        raise DomainError(f'{what}: singular system, degenerate standard '
                          f'for this error model ({err})') from err


def _check(layout: ErrorTermLayout, e, s):
    e = npy.asarray(e, dtype=complex)
    s = npy.asarray(s, dtype=complex)
    if e.shape != (layout.error_terms,):
        raise UsageError(f'error term vector must have length '
                         f'{layout.error_terms}, got {e.shape}')
    if s.shape != (layout.s_rows, layout.s_columns):
        raise UsageError(f'S matrix must be {layout.s_rows}x'
                         f'{layout.s_columns}, got {s.shape}')
    if not npy.all(npy.isfinite(e)) or not npy.all(npy.isfinite(s)):
        raise DomainError('error terms and S parameters must be finite')
    return e, s


def measure(layout: ErrorTermLayout, e, s) -> npy.ndarray:
    """
    Measurement predicted by the error model.

    Parameters
    ----------
    layout : :class:`ErrorTermLayout`
        topology and shape of the error terms
    e : array_like
        error term vector
    s : array_like
        full, square S matrix of the device

    Returns
    -------
    m : npy.ndarray
        m_rows x m_columns measured matrix

    Raises
    ------
    DomainError
        if the system is singular for this device

    Notes
    -----
    T topologies:

    .. math::

        M = (T_s S + T_i)(T_x S + T_m)^{-1}

    U topologies:

    .. math::

        M = (U_m - S U_x)^{-1} (S U_s - U_i)

    UE14 solves the U relation separately for each measurement column
    with diagonal :math:`U_m, U_x` and scalar :math:`u_i, u_s`, and E12
    evaluates, per column j,

    .. math::

        M_j = E_{l,j} + E_{r,j} S (I - E_{m,j} S)^{-1} e_j

    Leakage terms of TE10, UE10 and UE14 are added to the off-diagonal
    cells.

    Examples
    --------
    >>> layout = get_layout('T8', 2, 2)
    >>> e = npy.ones(layout.error_terms)
    >>> measure(layout, e, npy.zeros((2, 2)))
    array([[1.+0.j, 0.+0.j],
           [0.+0.j, 1.+0.j]])
    """
    e, s = _check(layout, e, s)
    topology = layout.topology
    blocks = layout.blocks(e)

    if topology.is_t:
        A = blocks['tx'] @ s + blocks['tm']
        B = blocks['ts'] @ s + blocks['ti']
        # M A = B  <=>  A^T M^T = B^T
        m = _solve(A.T, B.T, topology.value).T
        return m + blocks['el']

    if topology in (Topology.U8, Topology.UE10, Topology.U16):
        A = blocks['um'] - s @ blocks['ux']
        B = s @ blocks['us'] - blocks['ui']
        return _solve(A, B, topology.value) + blocks['el']

    m = npy.empty((layout.m_rows, layout.m_columns), dtype=complex)
    ports = layout.ports
    if topology == Topology.UE14:
        for j, column in enumerate(blocks):
            A = npy.diag(column['um']) - s * column['ux'][npy.newaxis, :]
            B = s[:, j] * column['us']
            B[j] -= column['ui']
            m[:, j] = _solve(A, B, f'{topology.value} column {j + 1}')
        return m + column['el']

    # E12
    for j, column in enumerate(blocks):
        A = npy.eye(ports, dtype=complex) - column['em'][:, npy.newaxis] * s
        t = _solve(A, npy.eye(ports, dtype=complex)[:, j],
                   f'{topology.value} column {j + 1}')
        m[:, j] = column['el'] + column['er'] * (s @ t)
    return m


def ue14_to_e12(layout: ErrorTermLayout, e) -> npy.ndarray:
    """
    Convert UE14 error terms to E12.

    Parameters
    ----------
    layout : :class:`ErrorTermLayout`
        a UE14 layout
    e : array_like
        UE14 error term vector

    Returns
    -------
    e12 : npy.ndarray
        error term vector in the E12 layout of the same shape

    Notes
    -----
    For column j, with the UE14 terms normalized so that the measurement
    relation becomes the E12 closed form,

    .. math::

        e_{l,jj} = -u_i / u_{m,j}, \\quad
        e_r = (u_s - u_i u_{x,j} / u_{m,j}) / u_m, \\quad
        e_m = u_x / u_m

    and the off-diagonal :math:`e_l` are the UE14 leakage terms.
    """
    if layout.topology != Topology.UE14:
        raise UsageError(f'expected a UE14 layout, got '
                         f'{layout.topology.value}')
    e = npy.asarray(e, dtype=complex)
    target = get_layout(Topology.E12, layout.m_rows, layout.m_columns)
    result = npy.empty(target.error_terms, dtype=complex)
    for j, column in enumerate(layout.blocks(e)):
        um, ux = column['um'], column['ux']
        ui, us = column['ui'], column['us']
        if npy.any(um == 0):
            raise DomainError(f'UE14 column {j + 1}: um term is zero')
        el = column['el'][:, j].copy()
        el[j] = -ui / um[j]
        n = us - ui * ux[j] / um[j]
        result[target.group('el', j).slice] = el
        result[target.group('er', j).slice] = n / um
        result[target.group('em', j).slice] = ux / um
    return result


def to_e_terms(layout: ErrorTermLayout, e) -> dict:
    """
    Express error terms in the classic E-term form.

    .. math::

        M = E_l + E_r S (I - E_m S)^{-1} E_t

    Parameters
    ----------
    layout : :class:`ErrorTermLayout`
    e : array_like
        error term vector of the layout

    Returns
    -------
    terms : dict
        ``'el'``, ``'er'``, ``'em'`` and ``'et'`` matrices.  For T and U
        topologies these are the full blocks of the relation above.  For
        UE14 and E12, where each measurement column has its own diagonal
        error model, column j of each m_rows x m_columns matrix holds the
        terms of measurement column j and ``'et'`` is all ones.
    """
    e = npy.asarray(e, dtype=complex)
    topology = layout.topology
    if topology == Topology.UE14:
        return to_e_terms(get_layout(Topology.E12, layout.m_rows,
                                     layout.m_columns),
                          ue14_to_e12(layout, e))
    blocks = layout.blocks(e)
    if topology == Topology.E12:
        shape = (layout.m_rows, layout.m_columns)
        terms = {name: npy.empty(shape, dtype=complex)
                 for name in ('el', 'er', 'em')}
        for j, column in enumerate(blocks):
            for name in terms:
                terms[name][:, j] = column[name]
        terms['et'] = npy.ones(shape, dtype=complex)
        return terms

    if topology.is_t:
        tm_inv = _solve(blocks['tm'], npy.eye(layout.m_columns,
                                              dtype=complex), topology.value)
        return {
            'el': blocks['ti'] @ tm_inv + blocks['el'],
            'er': blocks['ts'] - blocks['ti'] @ tm_inv @ blocks['tx'],
            'em': -tm_inv @ blocks['tx'],
            'et': tm_inv,
        }
    um_inv = _solve(blocks['um'], npy.eye(layout.m_rows, dtype=complex),
                    topology.value)
    return {
        'el': -um_inv @ blocks['ui'] + blocks['el'],
        'er': um_inv,
        'em': blocks['ux'] @ um_inv,
        'et': blocks['us'] - blocks['ux'] @ um_inv @ blocks['ui'],
    }
