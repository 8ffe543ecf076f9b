r"""Bound-constrained derivative-free minimization with a BOBYQA-style trust region."""

import warnings
from typing import Callable, List, NamedTuple, Sequence, Tuple
import numpy as np
from scipy.optimize import minimize
from sklearn.exceptions import ConvergenceWarning


class OptimizerBudgetWarning(ConvergenceWarning):
    """Warning issued when the trust-region search runs out of function evaluations."""

    pass


class BobyqaResult(NamedTuple):
    """Outcome of a trust-region search.

    Attributes
    ----------
    x : ndarray of shape (n_params,)
        Best point evaluated during the whole run.
    fun : float
        Objective value at ``x``.
    nfev : int
        Number of objective evaluations.
    rho : float
        Final trust-region resolution.
    converged : bool
        True if the resolution reached ``rho_end`` before the budget ran out.
    """

    x: np.ndarray
    fun: float
    nfev: int
    rho: float
    converged: bool


def _reduce_rho(rho: float, rho_end: float) -> float:
    # Powell's schedule: large cuts far from rho_end, geometric close to it
    ratio = rho / rho_end
    if ratio <= 16.0:
        return rho_end
    if ratio <= 250.0:
        return float(np.sqrt(ratio) * rho_end)
    return 0.1 * rho


class _TrustRegionSearch:
    """Evaluation history and local quadratic models of one bobyqa call."""

    def __init__(self, objective, lower, upper, max_iter, verbose):
        self.objective = objective
        self.lower = lower
        self.upper = upper
        self.max_iter = max_iter
        self.verbose = verbose
        self.points: List[np.ndarray] = []
        self.values: List[float] = []
        self.best_index = 0

    @property
    def nfev(self) -> int:
        return len(self.values)

    @property
    def exhausted(self) -> bool:
        return self.nfev >= self.max_iter

    def evaluate(self, x: np.ndarray) -> float:
        x = np.clip(x, self.lower, self.upper)
        value = float(self.objective(x.copy()))
        if not np.isfinite(value):
            value = np.inf
        self.points.append(x)
        self.values.append(value)
        if value < self.values[self.best_index]:
            self.best_index = self.nfev - 1
        if self.verbose:
            print(
                f"Evaluation {self.nfev}: f={value:.6g} at x={np.array2string(x, precision=6)}"
            )
        return value

    def _seen(self, x: np.ndarray) -> bool:
        return any(np.array_equal(x, point) for point in self.points)

    def sample_stencil(self, center: np.ndarray, rho: float) -> None:
        """Evaluate the 2n coordinate points at distance rho around ``center``.

        A point that would leave the box is replaced by one at distance 2 rho
        on the opposite side.
        """
        for i in range(center.size):
            for sign in (1.0, -1.0):
                if self.exhausted:
                    return
                target = center[i] + sign * rho
                if target < self.lower[i]:
                    target = min(center[i] + 2.0 * rho, self.upper[i])
                elif target > self.upper[i]:
                    target = max(center[i] - 2.0 * rho, self.lower[i])
                x = center.copy()
                x[i] = target
                if not self._seen(x):
                    self.evaluate(x)

    def model(self, center_index: int) -> Tuple[np.ndarray, np.ndarray]:
        r"""Fit :math:`m(d) = f_c + g^T d + \frac{1}{2} d^T H d` around a sampled point.

        The model interpolates the centre and is fitted by least squares to
        the nearest other sampled points: a full Hessian once there are
        enough of them, a diagonal Hessian with at least 2n points, otherwise
        a linear model.
        """
        center = self.points[center_index]
        f_center = self.values[center_index]
        n = center.size
        n_full = n + n * (n + 1) // 2

        others = [
            i
            for i, value in enumerate(self.values)
            if i != center_index and np.isfinite(value)
        ]
        g = np.zeros(n)
        H = np.zeros((n, n))
        if not others:
            return g, H

        D = np.array([self.points[i] - center for i in others])
        distance = np.max(np.abs(D), axis=1)
        keep = np.argsort(distance, kind="stable")[:n_full]
        keep = keep[distance[keep] > 0]
        if keep.size == 0:
            return g, H
        D = D[keep]
        b = np.array([self.values[others[i]] for i in keep]) - f_center

        # fit in scaled coordinates so linear and quadratic columns are comparable
        scale = float(np.max(np.abs(D)))
        U = D / scale
        iu = np.triu_indices(n, k=1)
        if keep.size >= n_full:
            A = np.hstack([U, 0.5 * U**2, U[:, iu[0]] * U[:, iu[1]]])
        elif keep.size >= 2 * n:
            A = np.hstack([U, 0.5 * U**2])
        else:
            A = U
        coef = np.linalg.lstsq(A, b, rcond=None)[0]

        g = coef[:n] / scale
        if A.shape[1] > n:
            H[np.diag_indices(n)] = coef[n : 2 * n] / scale**2
        if A.shape[1] > 2 * n:
            H[iu] = coef[2 * n :] / scale**2
            H[(iu[1], iu[0])] = H[iu]
        return g, H

    def solve_subproblem(
        self, g: np.ndarray, H: np.ndarray, center: np.ndarray, delta: float
    ) -> Tuple[np.ndarray, float]:
        """Minimize the model over the box ``|d|_inf <= delta`` intersected with the bounds."""
        lo = np.maximum(self.lower - center, -delta)
        hi = np.minimum(self.upper - center, delta)
        bounds = list(zip(lo, hi))

        def model_value(d):
            return g @ d + 0.5 * d @ H @ d

        def model_grad(d):
            return g + H @ d

        starts = [np.zeros_like(center)]
        g_norm = np.max(np.abs(g))
        if g_norm > 0:
            starts.append(np.clip(-g / g_norm * delta, lo, hi))

        best_step, best_value = starts[0], 0.0
        for start in starts:
            result = minimize(
                model_value, start, jac=model_grad, method="L-BFGS-B", bounds=bounds
            )
            step = np.clip(result.x, lo, hi)
            value = float(model_value(step))
            if value < best_value:
                best_step, best_value = step, value
        return best_step, best_value


def bobyqa(
    objective: Callable[[np.ndarray], float],
    x0: Sequence[float],
    lower: Sequence[float],
    upper: Sequence[float],
    rho_begin: float = 0.49,
    rho_end: float = 1e-6,
    max_iter: int = 1000,
    verbose: bool = False,
) -> BobyqaResult:
    r"""Minimize a black-box function subject to bound constraints.

    The search uses function values only. Around the best point found so far
    it fits a quadratic model to previously sampled points, minimizes that
    model inside the trust region and the bounds, evaluates the objective at
    the proposed point and adapts the trust-region radius to the agreement
    between predicted and actual reduction.

    Parameters
    ----------
    objective : callable
        Function ``f(x) -> float`` to minimize. Non-finite values are treated
        as :math:`+\infty`.
    x0 : array-like of shape (n_params,)
        Starting point. Clamped into the bounds.
    lower : array-like of shape (n_params,)
        Lower bounds.
    upper : array-like of shape (n_params,)
        Upper bounds. ``upper - lower`` must be at least ``2 * rho_begin``.
    rho_begin : float, default=0.49
        Initial trust-region radius.
    rho_end : float, default=1e-6
        Final trust-region radius; the search stops once it is reached.
    max_iter : int, default=1000
        Maximum number of objective evaluations.
    verbose : bool, default=False
        If True, prints every evaluation.

    Returns
    -------
    BobyqaResult
        The best point over the whole run, so ``fun <= objective(x0)``.

    Raises
    ------
    ValueError
        If the bounds or radii are inconsistent.

    Warns
    -----
    OptimizerBudgetWarning
        If ``max_iter`` evaluations were used before the radius reached
        ``rho_end``.

    Notes
    -----
    The radius bookkeeping follows Powell's BOBYQA: a step radius
    :math:`\Delta` and a resolution :math:`\rho \le \Delta`. :math:`\Delta` is
    halved after poor steps (ratio of actual to predicted reduction below 0.1)
    and enlarged after good ones (ratio above 0.7). When no step of length at
    least :math:`\rho / 2` is worthwhile, the points around the best point are
    re-sampled at distance :math:`\rho`; if the model still finds no progress,
    :math:`\rho` is reduced. The trust region is the infinity-norm box.
    """
    x0 = np.atleast_1d(np.asarray(x0, dtype=np.float64))
    lower = np.atleast_1d(np.asarray(lower, dtype=np.float64))
    upper = np.atleast_1d(np.asarray(upper, dtype=np.float64))
    if x0.ndim != 1 or lower.shape != x0.shape or upper.shape != x0.shape:
        raise ValueError("x0, lower and upper must be vectors of the same length")
    if x0.size == 0:
        raise ValueError("x0 must contain at least one parameter")
    if not (np.all(np.isfinite(lower)) and np.all(np.isfinite(upper))):
        raise ValueError("lower and upper must be finite")
    if not np.all(np.isfinite(x0)):
        raise ValueError("x0 must be finite")
    if not 0 < rho_end <= rho_begin:
        raise ValueError("rho_end and rho_begin must satisfy 0 < rho_end <= rho_begin")
    if np.any(upper - lower < 2.0 * rho_begin):
        raise ValueError("upper - lower must be at least 2 * rho_begin in every dimension")
    if isinstance(max_iter, bool) or not isinstance(max_iter, (int, np.integer)):
        raise ValueError("max_iter must be an integer")
    if max_iter <= 0:
        raise ValueError("max_iter must be positive")

    search = _TrustRegionSearch(objective, lower, upper, max_iter, verbose)
    rho = delta = float(rho_begin)
    converged = False

    search.evaluate(np.clip(x0, lower, upper))
    search.sample_stencil(search.points[0], rho)
    validated = (0, rho)

    while not search.exhausted:
        c = search.best_index
        center, f_center = search.points[c], search.values[c]
        g, H = search.model(c)
        step, model_change = search.solve_subproblem(g, H, center, delta)
        step_norm = float(np.max(np.abs(step)))
        predicted = -model_change

        if step_norm < 0.5 * rho or predicted <= 0.0:
            if validated != (c, rho):
                search.sample_stencil(center, rho)
                validated = (c, rho)
                continue
            if rho <= rho_end:
                converged = True
                break
            delta = max(0.5 * rho, _reduce_rho(rho, rho_end))
            rho = _reduce_rho(rho, rho_end)
            continue

        f_new = search.evaluate(center + step)
        ratio = (f_center - f_new) / predicted
        if ratio <= 0.1:
            delta = 0.5 * delta
        elif ratio <= 0.7:
            delta = max(0.5 * delta, step_norm)
        else:
            delta = max(0.5 * delta, 2.0 * step_norm)
        if delta <= 1.5 * rho:
            delta = rho

        if ratio <= 0.1 and search.best_index == c and delta == rho:
            if validated != (c, rho):
                if not search.exhausted:
                    search.sample_stencil(center, rho)
                    validated = (c, rho)
                continue
            if rho <= rho_end:
                converged = True
                break
            delta = max(0.5 * rho, _reduce_rho(rho, rho_end))
            rho = _reduce_rho(rho, rho_end)

    if not converged:
        warnings.warn(
            f"Trust-region search used all {max_iter} function evaluations before "
            f"the radius reached rho_end={rho_end} (rho={rho:.3g}). "
            "Returning the best point found.",
            OptimizerBudgetWarning,
        )

    best = search.best_index
    return BobyqaResult(
        search.points[best].copy(), search.values[best], search.nfev, rho, converged
    )
