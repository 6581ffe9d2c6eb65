"""
.. module:: skvna.calibration.solver

========================================
solver (:mod:`skvna.calibration.solver`)
========================================

Joint estimation of the error terms and the unknown parameters of the
standards at one frequency.

The error terms enter the calibration equations linearly while the
unknown parameters do not, so the problem is separable.  It is solved
by variable projection [#]_: for given parameters, the error terms are
the weighted least squares solution of the linear system and the
parameters are refined by Gauss-Newton steps on the projected residual,
using Kaufman's approximation of its Jacobian.

With a measurement error model, residuals are weighted by the inverse
of their expected standard deviation and the sum of their squares is
chi-square distributed, giving a p-value for the goodness of fit.

References
----------
.. [#] G. H. Golub, R. J. LeVeque, "Extensions and uses of the variable
   projection algorithm for solving nonlinear least squares problems",
   Proceedings of the 1979 Army Numerical Analysis and Computers
   Conference, 1979.

.. autosummary::
   :toctree: generated/

   FrequencySolution
   solve_frequency
   goodness_of_fit

"""
from __future__ import annotations

import logging
import warnings

import numpy as np
from scipy import linalg
from scipy.stats import chi2 as chi2_distribution

from ..constants import (BACKTRACK_LIMIT, ET_TOLERANCE, ITERATION_LIMIT,
                         P_TOLERANCE, PHI_INV, PHI_INV2)
from ..mathFunctions import (cabs2, checked_solve, get_Hermitian_transpose,
                             qr_solve, rank)
from .equations import FrequencySystem
from .errors import ConvergenceError, DomainError

logger = logging.getLogger(__name__)


class FrequencySolution:
    """
    Solution of the calibration at one frequency.

    Attributes
    ----------
    e : npy.ndarray
        error term vector of the solved layout
    p : npy.ndarray
        values of the unknown parameters, in the order of
        :attr:`FrequencySystem.unknowns`
    iterations : int
    chi2 : float
        weighted sum of squared residuals, NaN without error model
    df : int
        degrees of freedom of `chi2`
    pvalue : float
        probability of a fit at least this bad, NaN when not computed
    """
    def __init__(self, e, p, iterations, chi2=np.nan, df=0, pvalue=np.nan):
        self.e = e
        self.p = p
        self.iterations = iterations
        self.chi2 = chi2
        self.df = df
        self.pvalue = pvalue

    def __repr__(self):
        return (f'FrequencySolution(iterations={self.iterations}, '
                f'pvalue={self.pvalue:.4g})')


def _project(A, b, x_length):
    """
    Least squares error terms and the basis of the residual space.
    """
    if rank(A) < x_length:
        raise DomainError('not enough standards: the error term system is '
                          'rank deficient')
    q, r = linalg.qr(A, mode='full', check_finite=False)
    q1 = q[:, :x_length]
    q2 = q[:, x_length:]
    x = linalg.solve_triangular(r[:x_length, :],
                                get_Hermitian_transpose(q1) @ b)
    return x, q2


def _step(J, k):
    try:
        if J.shape[0] == J.shape[1]:
            return checked_solve(J, k)
        return qr_solve(J, k)
    except np.linalg.LinAlgError as err:
        raise DomainError(f'unknown parameters cannot be determined from '
                          f'these standards ({err})') from err


def goodness_of_fit(chi2: float, df: int) -> float:
    """
    p-value of a chi-square statistic.

    Parameters
    ----------
    chi2 : float
        weighted sum of squared residuals
    df : int
        degrees of freedom

    Returns
    -------
    pvalue : float
        probability that a correctly specified model gives a statistic
        at least `chi2`, NaN if `df` < 1

    Examples
    --------
    >>> round(goodness_of_fit(2.0, 2), 4)
    0.3679
    """
    if df < 1:
        return np.nan
    return float(chi2_distribution.sf(chi2, df))


def solve_frequency(system: FrequencySystem,
                    et_tolerance: float = ET_TOLERANCE,
                    p_tolerance: float = P_TOLERANCE,
                    iteration_limit: int = ITERATION_LIMIT
                    ) -> FrequencySolution:
    """
    Solve the calibration equations of one frequency.

    Parameters
    ----------
    system : :class:`FrequencySystem`
    et_tolerance : float
        RMS change of the error terms below which they are converged
    p_tolerance : float
        RMS change of the unknown parameters below which they are
        converged
    iteration_limit : int
        maximum number of iterations

    Returns
    -------
    solution : :class:`FrequencySolution`

    Raises
    ------
    DomainError
        if the standards do not determine the error terms and unknown
        parameters
    ConvergenceError
        if the iteration limit is reached before both tolerances are met
    """
    x_length, p_length = system.x_length, system.p_length
    n_correlated = len(system.correlations)
    if system.n_equations + n_correlated < x_length + p_length:
        raise DomainError(
            f'not enough standards: {system.n_equations} equations for '
            f'{x_length} error terms and {p_length} unknown parameters')

    p = system.initial_p()
    e = system.initial_e()
    v = system.v_matrices(e, p)
    iterations = 1
    if p_length or system.has_error_model:
        e, p, v, iterations = _iterate(system, p, v, et_tolerance,
                                       p_tolerance, iteration_limit)

    # final evaluation at the solution
    A, b = system.assemble(p, v)
    x, _ = _project(A, b, x_length)
    e = system.error_terms(x)
    if not system.has_error_model:
        return FrequencySolution(e, p, iterations)

    chi2 = 2.0 * float(np.sum(cabs2(A @ x - b)))
    df = 2 * (system.n_equations + n_correlated - x_length - p_length)
    if n_correlated:
        _, kc = system.correlation_rows(p)
        chi2 += 2.0 * float(np.sum(cabs2(kc)))
    leakage_chi2, leakage_df = system.leakage_chi2()
    chi2 += leakage_chi2
    df += leakage_df
    return FrequencySolution(e, p, iterations, chi2, df,
                             goodness_of_fit(chi2, df))


def _iterate(system, p, v, et_tolerance, p_tolerance, iteration_limit):
    x_length = system.x_length
    best_x = best_p = best_d = best_v = None
    best_d2 = np.inf
    previous_x = None
    backtracks = 0
    for iteration in range(1, iteration_limit + 1):
        A, b = system.assemble(p, v)
        x, q2 = _project(A, b, x_length)
        e = system.error_terms(x)

        if not system.p_length:
            # only V depends on the error terms
            dx2 = np.inf if previous_x is None else \
                float(np.mean(cabs2(x - previous_x)))
            logger.debug(f'iteration {iteration}: |dx|^2 {dx2:.3g}')
            if dx2 <= et_tolerance ** 2:
                return e, p, v, iteration
            previous_x = x
            v = system.v_matrices(e, p)
            continue

        q2h = get_Hermitian_transpose(q2)
        J = -q2h @ system.derivative(e, p, v)
        k = q2h @ b
        Jc, kc = system.correlation_rows(p)
        d = _step(np.vstack([J, Jc]), np.concatenate([k, kc]))
        d2 = float(np.sum(cabs2(d)))
        logger.debug(f'iteration {iteration}: |d|^2 {d2:.3g}')

        if best_x is not None and \
                d2 / len(d) <= p_tolerance ** 2 and \
                float(np.mean(cabs2(x - best_x))) <= et_tolerance ** 2:
            p = p - d
            return e, p, v, iteration

        if d2 < best_d2:
            best_d2 = d2
            limit = max(float(np.sum(cabs2(p))), 1.0)
            if d2 > limit * PHI_INV2:
                d = d * np.sqrt(limit / d2) * PHI_INV
            best_x, best_p, best_d, best_v = x, p, d, v
            p = p - d
            backtracks = 0
            v = system.v_matrices(e, p)
            continue

        backtracks += 1
        if backtracks > BACKTRACK_LIMIT:
            warnings.warn(
                f'parameter refinement at {system.frequency:g} Hz stopped '
                f'making progress; using the best estimate found',
                RuntimeWarning, stacklevel=2)
            return system.error_terms(best_x), best_p, best_v, iteration
        best_d = best_d / 2.0
        p = best_p - best_d
        v = best_v

    raise ConvergenceError(f'solution did not converge in '
                           f'{iteration_limit} iterations')
