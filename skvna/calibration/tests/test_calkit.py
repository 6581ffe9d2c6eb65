import unittest

import numpy as np
import pytest
from numpy.testing import assert_allclose

from skvna.calibration import (CalibrationSession, CalkitStandard,
                               CalkitType, ParameterTable, ParameterType,
                               UsageError)

F = 1e9
W = 2 * np.pi * F


class CalkitModelTest(unittest.TestCase):
    """
    Kit standards against values worked out by hand.
    """
    def test_ideal_standards(self):
        assert_allclose(CalkitStandard('short').evaluate(F), [[-1]])
        assert_allclose(CalkitStandard('open').evaluate(F), [[1]])
        assert_allclose(CalkitStandard('load').evaluate(F), [[0]],
                        atol=1e-15)
        assert_allclose(CalkitStandard('through').evaluate(F),
                        [[0, 1], [1, 0]], atol=1e-15)

    def test_short_inductance(self):
        # L0 = 1 nH: Zl = j 2 pi ohm at 1 GHz
        short = CalkitStandard(CalkitType.SHORT,
                               l_coefficients=(1e-9, 0, 0, 0))
        zl = 1j * W * 1e-9
        assert_allclose(short.evaluate(F)[0, 0], (zl - 50) / (zl + 50))

    def test_short_inductance_polynomial(self):
        # L = L0 + L1 f at 2 GHz
        short = CalkitStandard('short', l_coefficients=(1e-12, 1e-21, 0, 0))
        f = 2e9
        zl = 1j * 2 * np.pi * f * (1e-12 + 1e-21 * f)
        assert_allclose(short.evaluate(f)[0, 0], (zl - 50) / (zl + 50))

    def test_open_capacitance(self):
        open_ = CalkitStandard('open', c_coefficients=(50e-15, 0, 0, 0))
        x = W * 50e-15 * 50
        assert_allclose(open_.evaluate(F)[0, 0], (1 - 1j * x) / (1 + 1j * x))
        # an open is an open at DC whatever its capacitance
        assert_allclose(open_.evaluate(0.0), [[1]])

    def test_offset_delay(self):
        # lossless offset: the short rotates by twice the delay
        delay = 30e-12
        short = CalkitStandard('short', offset_delay=delay)
        assert_allclose(short.evaluate(F)[0, 0],
                        -np.exp(-2j * W * delay))
        thru = CalkitStandard('through', offset_delay=delay).evaluate(F)
        assert_allclose(thru, [[0, np.exp(-1j * W * delay)],
                               [np.exp(-1j * W * delay), 0]], atol=1e-12)

    def test_load_reference_impedance(self):
        load = CalkitStandard('load', zl=50.0)
        assert_allclose(load.evaluate(F, z0=75.0), [[-0.2]])
        assert_allclose(CalkitStandard('load', zl=100).evaluate(F),
                        [[1 / 3]])

    def test_through_reference_impedance(self):
        # a zero length through is matched in any reference impedance
        thru = CalkitStandard('through').evaluate(F, z0=75.0)
        assert_allclose(thru, [[0, 1], [1, 0]], atol=1e-12)
        # a 50 ohm line of 90 degrees between 75 ohm ports
        quarter = 1 / (4 * F)
        thru = CalkitStandard('through', offset_delay=quarter) \
            .evaluate(F, z0=75.0)
        zi = 50 ** 2 / 75
        assert_allclose(thru[0, 0], (zi - 75) / (zi + 75), atol=1e-12)
        assert_allclose(thru[0, 1], thru[1, 0])

    def test_loss(self):
        for traditional in (False, True):
            short = CalkitStandard('short', offset_delay=30e-12,
                                   offset_loss=2.2e9,
                                   traditional=traditional)
            thru = CalkitStandard('through', offset_delay=30e-12,
                                  offset_loss=2.2e9, traditional=traditional)
            self.assertLess(abs(short.evaluate(F)[0, 0]), 1)
            s = thru.evaluate(F)
            self.assertLess(abs(s[1, 0]), 1)
            assert_allclose(s[0, 1], s[1, 0])
            # no loss at DC
            assert_allclose(short.evaluate(0.0), [[-1]])

    def test_traditional_matches_revised_when_lossless(self):
        kwargs = dict(offset_delay=25e-12, l_coefficients=(2e-12, 0, 0, 0))
        assert_allclose(
            CalkitStandard('short', traditional=True, **kwargs).evaluate(F),
            CalkitStandard('short', **kwargs).evaluate(F))

    def test_invalid(self):
        with self.assertRaises(UsageError):
            CalkitStandard('sliding load')
        with self.assertRaises(UsageError):
            CalkitStandard('short', offset_z0=0)
        with self.assertRaises(UsageError):
            CalkitStandard('short', offset_delay=-1e-12)
        with self.assertRaises(UsageError):
            CalkitStandard('open', c_coefficients=(1e-15,))

    def test_ports(self):
        self.assertEqual(CalkitStandard('OPEN').ports, 1)
        self.assertEqual(CalkitStandard('through').ports, 2)


class CalkitParameterTest(unittest.TestCase):
    def setUp(self):
        self.table = ParameterTable()

    def test_parameter_follows_frequency(self):
        delay = 30e-12
        h = self.table.make_calkit(CalkitStandard('short',
                                                  offset_delay=delay), 50.0)
        self.assertEqual(self.table.get(h).kind, ParameterType.CALKIT)
        self.assertFalse(self.table.is_unknown(h))
        frequency = [1e9, 2e9]
        assert_allclose(self.table.get_value_vector(h, frequency),
                        -np.exp(-4j * np.pi * np.array(frequency) * delay))
        with self.assertRaises(UsageError):
            self.table.set(h, 0.5)

    def test_matrix(self):
        handles = self.table.make_calkit_matrix(CalkitStandard('through'),
                                                50.0)
        self.assertEqual(len(handles), 2)
        values = [[self.table.estimate(h, F) for h in row] for row in handles]
        assert_allclose(values, [[0, 1], [1, 0]], atol=1e-15)
        for row in handles:
            for h in row:
                self.table.delete(h)
        self.assertEqual(len(self.table), 3)

    def test_invalid(self):
        with self.assertRaises(UsageError):
            self.table.make_calkit(CalkitStandard('short'), 50.0, row=1)
        with self.assertRaises(UsageError):
            self.table.make_calkit(CalkitStandard('short'), -50.0)


def test_session_reference_impedance():
    cal = CalibrationSession('T8', 2, 2, [1e9], z0=75.0)
    load = cal.make_calkit_parameter(CalkitStandard('load', zl=50.0))
    assert cal.parameters.estimate(load, 1e9) == pytest.approx(-0.2)
    with pytest.raises(UsageError):
        cal.make_calkit_parameter(CalkitStandard('through'))
    with pytest.raises(UsageError):
        CalibrationSession('T8', 2, 2, [1e9], z0=0.0)


def test_solt_with_kit_models(synth):
    # SOLT with a realistic kit: offset short and open, lossy through
    frequency = np.linspace(1e9, 3e9, 3)
    cal = CalibrationSession('T8', 2, 2, frequency)
    e = synth.error_term_array(cal.layout, len(frequency))
    short = cal.make_calkit_parameter(CalkitStandard(
        'short', offset_delay=31.8e-12, offset_loss=2.36e9,
        l_coefficients=(2.08e-12, -1.1e-22, 1.3e-32, -1.4e-43)))
    open_ = cal.make_calkit_parameter(CalkitStandard(
        'open', offset_delay=29.2e-12, offset_loss=2.2e9,
        c_coefficients=(49.4e-15, -310e-27, 23.2e-36, -0.16e-45)))
    load = cal.make_calkit_parameter(CalkitStandard('load'))
    thru = cal.make_calkit_parameter_matrix(CalkitStandard(
        'through', offset_delay=100e-12, offset_loss=2.2e9))
    for gamma in (short, open_, load):
        m = synth.measure(cal, e, [gamma], port_map=[1], diagonal=True)
        cal.add_single_reflect(m, gamma, 1)
    cal.add_line(synth.measure(cal, e, thru, port_map=[1, 2]), thru, 1, 2)
    result = cal.solve()
    assert result.ok.all()
    assert_allclose(result.error_terms, e, atol=1e-6)


if __name__ == "__main__":
    unittest.main()
