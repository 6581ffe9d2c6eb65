import unittest

import numpy as npy
import pytest
from numpy.testing import assert_almost_equal, assert_array_equal

import skvna as vna


class TestMatrixHelpers(unittest.TestCase):
    """
    Test the linear algebra helpers
    """

    def test_cabs2(self):
        """
        Test squared magnitude with:
            25 = |3 + 4j|^2
        """
        assert_almost_equal(vna.cabs2(3 + 4j), 25.0)
        assert_array_equal(vna.cabs2([1j, -2, 0]), [1, 4, 0])

    def test_get_Hermitian_transpose(self):
        a = npy.array([[1 + 1j, 2], [3j, 4]])
        assert_array_equal(vna.get_Hermitian_transpose(a),
                           [[1 - 1j, -3j], [2, 4]])

    def test_is_square(self):
        self.assertTrue(vna.is_square(npy.eye(3)))
        self.assertFalse(vna.is_square(npy.ones((2, 3))))
        self.assertFalse(vna.is_square(npy.ones(3)))

    def test_rank(self):
        self.assertEqual(vna.rank(npy.eye(3)), 3)
        self.assertEqual(vna.rank(npy.zeros((3, 2))), 0)
        self.assertEqual(vna.rank(npy.empty((0, 2))), 0)
        a = npy.array([[1, 2], [2, 4], [3, 6]], dtype=complex)
        self.assertEqual(vna.rank(a), 1)
        # below the relative tolerance
        self.assertEqual(vna.rank(npy.diag([1.0, 1e-14])), 1)

    def test_checked_solve(self):
        a = npy.array([[2, 1j], [0, 1]])
        b = npy.array([1, 1j])
        x = vna.checked_solve(a, b)
        assert_almost_equal(a @ x, b)
        with self.assertRaises(npy.linalg.LinAlgError):
            vna.checked_solve(npy.ones((2, 2)), b)
        with self.assertRaises(npy.linalg.LinAlgError):
            vna.checked_solve(npy.array([[npy.nan, 0], [0, 1]]), b)
        with self.assertRaises(npy.linalg.LinAlgError):
            vna.checked_solve(npy.ones((2, 3)), b)

    def test_checked_inv(self):
        a = npy.array([[1, 2j], [3, 4]])
        assert_almost_equal(vna.checked_inv(a) @ a, npy.eye(2))

    def test_qr_solve(self):
        a = npy.array([[1, 0], [0, 1], [1, 1]], dtype=complex)
        b = npy.array([1, 2, 3], dtype=complex)
        # consistent system: exact solution
        assert_almost_equal(vna.qr_solve(a, b), [1, 2])
        with self.assertRaises(npy.linalg.LinAlgError):
            vna.qr_solve(npy.ones((3, 2)), b)


def test_qr_solve_least_squares(rng):
    a = rng.normal(size=(8, 3)) + 1j * rng.normal(size=(8, 3))
    b = rng.normal(size=8) + 1j * rng.normal(size=8)
    expected = npy.linalg.lstsq(a, b, rcond=None)[0]
    assert_almost_equal(vna.qr_solve(a, b), expected)


@pytest.mark.parametrize('adjacency, expected', [
    ([[1, 0], [0, 1]], [[1, 0], [0, 1]]),
    ([[0, 1, 0], [0, 0, 1], [0, 0, 0]],
     [[0, 1, 1], [0, 0, 1], [0, 0, 0]]),
    ([[0, 1, 0], [1, 0, 1], [0, 1, 0]],
     [[1, 1, 1], [1, 1, 1], [1, 1, 1]]),
])
def test_floyd_warshall(adjacency, expected):
    closure = vna.floyd_warshall(npy.array(adjacency, dtype=bool))
    assert closure.dtype == bool
    assert_array_equal(closure, npy.array(expected, dtype=bool))
