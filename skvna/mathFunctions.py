"""
mathFunctions (:mod:`skvna.mathFunctions`)
=============================================


Small complex linear-algebra helpers shared by the calibration modules.

Matrix Helpers
--------------
.. autosummary::
        :toctree: generated/

        cabs2
        get_Hermitian_transpose
        is_square
        rank
        checked_solve
        checked_inv
        qr_solve
        floyd_warshall

"""
import numpy as npy
from scipy import linalg

from .constants import ALMOST_ZERO, NumberLike, RANK_RTOL


def cabs2(z: NumberLike):
    """
    Return the squared magnitude of a complex number or array.

    Parameters
    ----------
    z : number or array_like

    Returns
    -------
    mag2 : ndarray or scalar
    """
    z = npy.asarray(z)
    return z.real ** 2 + z.imag ** 2


def get_Hermitian_transpose(mat: npy.ndarray) -> npy.ndarray:
    """
    Returns the conjugate transpose of mat.

    Parameters
    ----------
    mat : npy.ndarray
        Matrix to compute the conjugate transpose of

    Returns
    -------
    mat : npy.ndarray

    """
    return mat.transpose().conjugate()


def is_square(mat: npy.ndarray) -> bool:
    """
    Tests whether mat is a square matrix.

    Parameters
    ----------
    mat : npy.ndarray
        Matrix to test for being square

    Returns
    -------
    res : boolean
    """
    return mat.ndim == 2 and mat.shape[0] == mat.shape[1]


def rank(mat: npy.ndarray, rtol: float = RANK_RTOL) -> int:
    """
    Numerical rank of a matrix from its singular values.

    Parameters
    ----------
    mat : npy.ndarray
    rtol : float
        singular values below `rtol` times the largest one are
        treated as zero

    Returns
    -------
    rank : int
    """
    if mat.size == 0:
        return 0
    s = npy.linalg.svd(mat, compute_uv=False)
    if s[0] == 0.0 or not npy.isfinite(s[0]):
        return 0
    return int(npy.count_nonzero(s > rtol * s[0]))


def checked_solve(A: npy.ndarray, B: npy.ndarray) -> npy.ndarray:
    """
    Solve A x = B with LU decomposition, refusing singular systems.

    Parameters
    ----------
    A : npy.ndarray
        square coefficient matrix
    B : npy.ndarray
        right hand side, vector or matrix

    Returns
    -------
    x : npy.ndarray

    Raises
    ------
    numpy.linalg.LinAlgError
        if A is not square, is singular or contains non-finite values
    """
    A = npy.asarray(A)
    if not is_square(A):
        raise npy.linalg.LinAlgError('matrix must be square')
    if not npy.all(npy.isfinite(A)):
        raise npy.linalg.LinAlgError('matrix contains non-finite values')
    lu, piv = linalg.lu_factor(A, check_finite=False)
    d = npy.abs(npy.diag(lu))
    if d.size == 0 or npy.min(d) <= ALMOST_ZERO * max(npy.max(d), 1.0):
        raise npy.linalg.LinAlgError('singular matrix')
    return linalg.lu_solve((lu, piv), B, check_finite=False)


def checked_inv(A: npy.ndarray) -> npy.ndarray:
    """
    Inverse of a square matrix, refusing singular matrices.

    See Also
    --------
    checked_solve
    """
    return checked_solve(A, npy.eye(A.shape[0], dtype=complex))


def qr_solve(A: npy.ndarray, b: npy.ndarray) -> npy.ndarray:
    """
    Least squares solution of an over-determined system using QR.

    Parameters
    ----------
    A : npy.ndarray
        m x n coefficient matrix with m >= n and full column rank
    b : npy.ndarray
        right hand side of length m

    Returns
    -------
    x : npy.ndarray

    Raises
    ------
    numpy.linalg.LinAlgError
        if A is rank deficient
    """
    if rank(A) < A.shape[1]:
        raise npy.linalg.LinAlgError('rank deficient matrix')
    q, r = linalg.qr(A, mode='economic', check_finite=False)
    return linalg.solve_triangular(r, get_Hermitian_transpose(q) @ b)


def floyd_warshall(adjacency: npy.ndarray) -> npy.ndarray:
    """
    Transitive closure of a boolean adjacency matrix.

    Parameters
    ----------
    adjacency : npy.ndarray
        square boolean matrix, True where a direct path exists

    Returns
    -------
    closure : npy.ndarray
        True where any path exists

    References
    ----------
    https://en.wikipedia.org/wiki/Floyd%E2%80%93Warshall_algorithm
    """
    closure = npy.array(adjacency, dtype=bool)
    for k in range(min(closure.shape)):
        closure |= npy.outer(closure[:, k], closure[k, :])
    return closure
