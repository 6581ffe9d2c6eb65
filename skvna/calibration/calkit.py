"""
.. module:: skvna.calibration.calkit

========================================
calkit (:mod:`skvna.calibration.calkit`)
========================================

Models of coaxial calibration kit standards.

Kit standards are described the way instrument vendors publish them: a
lossy offset transmission line of given delay, loss and characteristic
impedance, terminated by a frequency dependent inductance (short), a
frequency dependent capacitance (open) or a fixed impedance (load).  A
through is the offset line alone.

The offset line follows Keysight application note 1287-11 when
`traditional` is set, and the revised model of application note
5989-4840 otherwise [#]_.

References
----------
.. [#] Keysight Technologies, "Specifying Calibration Standards and
   Kits for Keysight Vector Network Analyzers", 5989-4840EN.

.. autosummary::
   :toctree: generated/

   CalkitType
   CalkitStandard

"""
from __future__ import annotations

from enum import Enum

import numpy as npy

from ..constants import Z0_DEFAULT
from .errors import UsageError


class CalkitType(Enum):
    """
    Kind of calibration kit standard.
    """
    SHORT = 'short'
    OPEN = 'open'
    LOAD = 'load'
    THROUGH = 'through'


def _polynomial(coefficients, f):
    c0, c1, c2, c3 = coefficients
    return c0 + f * (c1 + f * (c2 + f * c3))


def _reflection(zi: complex, z0: complex) -> complex:
    # power wave reflection coefficient
    return (zi - npy.conj(z0)) / (zi + z0)


class CalkitStandard:
    """
    A calibration kit standard.

    Parameters
    ----------
    kind : :class:`CalkitType` or str
        ``'short'``, ``'open'``, ``'load'`` or ``'through'``
    offset_delay : float
        one-way delay of the offset line in seconds
    offset_loss : float
        loss of the offset line in ohms per second at 1 GHz
    offset_z0 : float
        characteristic impedance of the lossless offset line in ohms
    l_coefficients : sequence of 4 floats, optional
        L0..L3 of the short's inductance ``L0 + L1 f + L2 f**2 + L3 f**3``
        in henries
    c_coefficients : sequence of 4 floats, optional
        C0..C3 of the open's capacitance in farads
    zl : complex, optional
        terminating impedance of the load in ohms
    traditional : bool, optional
        use the offset line model of application note 1287-11

    Examples
    --------
    An ideal short:

    >>> CalkitStandard('short').evaluate(1e9, 50.0)
    array([[-1.+0.j]])
    """
    def __init__(self, kind, offset_delay: float = 0.0,
                 offset_loss: float = 0.0, offset_z0: float = Z0_DEFAULT,
                 l_coefficients=(0.0, 0.0, 0.0, 0.0),
                 c_coefficients=(0.0, 0.0, 0.0, 0.0),
                 zl: complex = Z0_DEFAULT, traditional: bool = False):
        if not isinstance(kind, CalkitType):
            try:
                kind = CalkitType(str(kind).lower())
            except ValueError:
                raise UsageError(f'invalid calkit standard type: '
                                 f'{kind!r}') from None
        self.kind = kind
        self.offset_delay = float(offset_delay)
        self.offset_loss = float(offset_loss)
        self.offset_z0 = float(offset_z0)
        if self.offset_z0 <= 0:
            raise UsageError('offset_z0 must be positive')
        if self.offset_delay < 0 or self.offset_loss < 0:
            raise UsageError('offset_delay and offset_loss must be '
                             'non-negative')
        self.l_coefficients = tuple(float(c) for c in l_coefficients)
        self.c_coefficients = tuple(float(c) for c in c_coefficients)
        if len(self.l_coefficients) != 4 or len(self.c_coefficients) != 4:
            raise UsageError('l_coefficients and c_coefficients must have '
                             'four entries')
        self.zl = complex(zl)
        self.traditional = traditional

    def __repr__(self):
        return f'CalkitStandard({self.kind.value!r})'

    @property
    def ports(self) -> int:
        """
        Number of ports of the standard.
        """
        return 2 if self.kind == CalkitType.THROUGH else 1

    def offset_line(self, f: float):
        """
        Propagation and characteristic impedance of the offset line.

        Parameters
        ----------
        f : float
            frequency in Hz

        Returns
        -------
        gl : complex
            propagation constant times length
        zc : complex
            characteristic impedance in ohms
        """
        delay, loss, z0 = self.offset_delay, self.offset_loss, self.offset_z0
        if self.traditional:
            w = 2.0 * npy.pi * f
            f_ratio = npy.sqrt(f / 1e9)
            alpha_l = loss * delay * f_ratio / (2.0 * z0)
            beta_l = w * delay + alpha_l
            zc = z0 + ((1 - 1j) * loss * f_ratio / (2.0 * w) if f else 0.0)
            return complex(alpha_l, beta_l), complex(zc)
        if f:
            temp = npy.sqrt(1.0 + (1 - 1j) * loss /
                            (2.0 * npy.pi * npy.sqrt(1e9 * f) * z0))
        else:
            temp = 1.0 + 0j
        return complex(2j * npy.pi * f * delay * temp), complex(z0 * temp)

    def _terminated(self, f, zl=None, yl=None):
        # input impedance of the offset line terminated by zl, or by an
        # admittance yl
        gl, zc = self.offset_line(f)
        ht = npy.tanh(gl)
        if yl is None:
            return zc * (zl + zc * ht) / (zc + zl * ht)
        denominator = zc * yl + ht
        if denominator == 0:
            return None
        return zc * (1.0 + zc * yl * ht) / denominator

    def evaluate(self, f: float, z0: complex = Z0_DEFAULT) -> npy.ndarray:
        """
        S parameters of the standard at one frequency.

        Parameters
        ----------
        f : float
            frequency in Hz
        z0 : complex
            reference impedance of the VNA ports

        Returns
        -------
        s : npy.ndarray
            1x1, or 2x2 for a through
        """
        kind = self.kind
        if kind == CalkitType.SHORT:
            inductance = _polynomial(self.l_coefficients, f)
            zi = self._terminated(f, zl=2j * npy.pi * f * inductance)
            return npy.array([[_reflection(zi, z0)]])
        if kind == CalkitType.OPEN:
            if f == 0:
                return npy.array([[1.0 + 0j]])
            capacitance = _polynomial(self.c_coefficients, f)
            zi = self._terminated(f, yl=2j * npy.pi * f * capacitance)
            if zi is None:
                return npy.array([[1.0 + 0j]])
            return npy.array([[_reflection(zi, z0)]])
        if kind == CalkitType.LOAD:
            zi = self._terminated(f, zl=self.zl)
            return npy.array([[_reflection(zi, z0)]])

        gl, zc = self.offset_line(f)
        z1 = z2 = complex(z0)
        p = npy.exp(-gl)
        pp = 1.0 + p * p
        mp = 1.0 - p * p
        rt = npy.sqrt(abs(z1.real / z2.real))
        d = pp * (z1 + z2) * zc + mp * (z1 * z2 + zc * zc)
        c = 4.0 * p * zc / d
        return npy.array([
            [((pp * z2 + mp * zc) * zc - (mp * z2 + pp * zc) * npy.conj(z1))
             / d, c * z1.real / rt],
            [c * z2.real * rt,
             ((pp * z1 + mp * zc) * zc - (mp * z1 + pp * zc) * npy.conj(z2))
             / d],
        ])
