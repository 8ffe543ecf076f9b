r"""Edgenet: graph-penalized linear regression fitted by cyclic coordinate descent."""

import warnings
from typing import NamedTuple, Optional, Union
import numpy as np
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils.validation import check_array, check_is_fitted
from .family import Family, get_family
from .model_data import ConvergenceConfig, GraphPenalizedModelData
from .shrinkage import Shrinkage


class EdgenetConvergenceWarning(ConvergenceWarning):
    """Warning issued when coordinate descent exhausts its sweep budget."""

    pass


class EdgenetFit(NamedTuple):
    r"""Result of one coordinate-descent fit.

    Attributes
    ----------
    coefficients : ndarray of shape (n_features, n_responses)
        Coefficient matrix :math:`B`.
    intercept : ndarray of shape (n_responses,)
        Intercept vector :math:`\mu`.
    n_iter : int
        Number of completed sweeps.
    converged : bool
        False if ``max_iter`` sweeps were used without reaching the threshold.
    """

    coefficients: np.ndarray
    intercept: np.ndarray
    n_iter: int
    converged: bool


def soft_threshold(value: float, threshold: float) -> float:
    r"""Soft-thresholding operator :math:`\mathrm{sign}(x) \max(|x| - t, 0)`."""
    if value > threshold:
        return value - threshold
    if value < -threshold:
        return value + threshold
    return 0.0


def edgenet_fit(
    data: GraphPenalizedModelData,
    shrinkage: Shrinkage,
    config: Optional[ConvergenceConfig] = None,
    alpha: float = 1.0,
    fit_intercept: bool = True,
) -> EdgenetFit:
    r"""Fit an Edgenet model by cyclic coordinate descent.

    Minimizes

    .. math::
        D(B, \mu) + \lambda \alpha \|B\|_1 + \lambda (1 - \alpha) \|B\|_F^2
        + \psi_x \mathrm{tr}(B^T L_X B) + \psi_y \mathrm{tr}(B L_Y B^T)

    where :math:`D` is the residual sum of squares (Gaussian) or twice the
    negative log-likelihood (binomial), and :math:`L_X`, :math:`L_Y` are the
    Laplacians of the prior graphs.

    Parameters
    ----------
    data : GraphPenalizedModelData
        Design, response, prior graphs and cross-products.
    shrinkage : Shrinkage or tuple of float
        The penalty triple :math:`(\lambda, \psi_x, \psi_y)`.
    config : ConvergenceConfig, optional
        Sweep budget and threshold. Defaults to ``ConvergenceConfig()``.
    alpha : float, default=1.0
        Elastic-net mixing between the L1 (``alpha=1``) and squared L2 parts
        of the :math:`\lambda` penalty.
    fit_intercept : bool, default=True
        Whether to estimate an unpenalized intercept per response.

    Returns
    -------
    EdgenetFit
        Freshly allocated coefficients and intercepts with convergence info.

    Warns
    -----
    EdgenetConvergenceWarning
        If ``max_iter`` sweeps were used without convergence. The last
        coefficients are returned all the same.

    Notes
    -----
    One sweep visits every covariate and, for each, every response. The
    coordinate update is

    .. math::
        B_{jk} \leftarrow \frac{S(s_{jk}, \lambda\alpha/2)}
        {X_j^T W_k X_j + \psi_x L_{X,jj} + \psi_y L_{Y,kk} + \lambda(1 - \alpha)}

    with :math:`S` the soft-threshold and :math:`s_{jk}` the partial-residual
    score minus the graph pull of the neighbouring coefficients. Covariates with
    a numerically zero :math:`X_j^T X_j` are left at zero.
    """
    shrinkage = Shrinkage(*shrinkage).validate()
    config = (config if config is not None else ConvergenceConfig()).validate()
    if not 0.0 <= alpha <= 1.0:
        raise ValueError("alpha must be between 0 and 1")

    family = data.family
    n_features, n_responses = data.n_features, data.n_responses
    coefficients = np.zeros((n_features, n_responses))
    if fit_intercept:
        intercept = np.array(family.initial_intercept(data.Y), dtype=np.float64)
    else:
        intercept = np.zeros(n_responses)

    lam, psi_gx, psi_gy = shrinkage
    l1 = 0.5 * lam * alpha
    l2 = lam * (1.0 - alpha)
    L_X, L_Y = data.L_X, data.L_Y
    lx_diag = np.diag(L_X)
    ly_diag = np.diag(L_Y)

    txx_diag = np.diag(data.txx)
    eps = np.finfo(np.float64).eps
    degenerate = txx_diag <= eps * max(float(txx_diag.max()), 1.0)

    n_iter = 0
    converged = False
    for sweep in range(config.max_iter):
        previous = coefficients.copy()
        state = family.begin_sweep(data, coefficients, intercept)
        for j in range(n_features):
            if degenerate[j]:
                continue
            for k in range(n_responses):
                b_jk = coefficients[j, k]
                score = family.coordinate_score(
                    data, state, coefficients, intercept, j, k
                )
                if psi_gx != 0.0:
                    score -= psi_gx * (L_X[j] @ coefficients[:, k] - lx_diag[j] * b_jk)
                if psi_gy != 0.0:
                    score -= psi_gy * (coefficients[j] @ L_Y[:, k] - ly_diag[k] * b_jk)
                denominator = (
                    state.gram_diag[j, k]
                    + psi_gx * lx_diag[j]
                    + psi_gy * ly_diag[k]
                    + l2
                )
                if denominator <= 0.0:
                    continue
                updated = soft_threshold(score, l1) / denominator
                family.commit(data, state, j, k, updated - b_jk)
                coefficients[j, k] = updated
        if fit_intercept:
            family.update_intercept(data, state, coefficients, intercept)
        n_iter = sweep + 1

        change = np.max(
            np.abs(coefficients - previous) / np.maximum(np.abs(previous), 1.0)
        )
        if change < config.thresh:
            converged = True
            break

    if not converged:
        warnings.warn(
            f"Coordinate descent did not converge after {n_iter} sweeps "
            f"(thresh={config.thresh}). Returning the last coefficients.",
            EdgenetConvergenceWarning,
        )

    return EdgenetFit(coefficients, intercept, n_iter, converged)


class Edgenet(RegressorMixin, BaseEstimator):
    r"""Linear regression with LASSO and graph-Laplacian penalties.

    Edgenet fits a (multi-response) linear model whose coefficients are
    shrunk towards zero and towards the coefficients of their neighbours in
    prior graphs over the covariates and over the responses.

    The optimization problem is:

    .. math::
        \min_{B, \mu} \|Y - 1\mu^T - XB\|_F^2 + \lambda \|B\|_1
        + \psi_x \mathrm{tr}(B^T L_X B) + \psi_y \mathrm{tr}(B L_Y B^T)

    where :math:`L_X = D_X - G_X` and :math:`L_Y = D_Y - G_Y` are the graph
    Laplacians of the prior graphs. For the binomial family the squared error
    is replaced by twice the negative log-likelihood of a logistic model.

    Parameters
    ----------
    lam : float, default=1.0
        LASSO penalty :math:`\lambda`.
    psi_gx : float, default=1.0
        Weight :math:`\psi_x` of the covariate graph penalty.
    psi_gy : float, default=1.0
        Weight :math:`\psi_y` of the response graph penalty.
    G_X : ndarray of shape (n_features, n_features), optional
        Symmetric non-negative prior graph over the covariates.
        If None, no covariate structure is assumed.
    G_Y : ndarray of shape (n_responses, n_responses), optional
        Symmetric non-negative prior graph over the responses.
        If None, no response structure is assumed.
    family : {'gaussian', 'binomial'}, default='gaussian'
        Distribution family of the response.
    alpha : float, default=1.0
        Elastic-net mixing of the :math:`\lambda` penalty; 1 is pure LASSO.
    max_iter : int, default=10000
        Maximum number of coordinate-descent sweeps.
    thresh : float, default=1e-5
        Convergence threshold on the relative coefficient change per sweep.
        This is a step tolerance, not an accuracy bound: on correlated
        designs the coefficients can still be further than ``thresh`` from
        the exact minimizer when the sweeps stop.
    fit_intercept : bool, default=True
        Whether to estimate an intercept per response.

    Attributes
    ----------
    coef_ : ndarray of shape (n_features, n_responses)
        Coefficient matrix :math:`B`.
    intercept_ : ndarray of shape (n_responses,)
        Intercept vector :math:`\mu`.
    n_iter_ : int
        Number of sweeps performed.
    converged_ : bool
        Whether coordinate descent converged.
    n_features_in_ : int
        Number of features seen during fit.

    Examples
    --------
    >>> import numpy as np
    >>> from pynetreg.src.edgenet import Edgenet
    >>> rng = np.random.RandomState(0)
    >>> X = rng.randn(50, 3)
    >>> y = X @ np.array([1.0, 1.0, 0.0]) + 0.1 * rng.randn(50)
    >>> G_X = np.array([[0, 1, 0], [1, 0, 0], [0, 0, 0]])
    >>> reg = Edgenet(lam=1.0, psi_gx=1.0, psi_gy=0.0, G_X=G_X).fit(X, y)
    >>> reg.coef_.shape
    (3, 1)
    """

    def __init__(
        self,
        lam: float = 1.0,
        psi_gx: float = 1.0,
        psi_gy: float = 1.0,
        G_X: Optional[np.ndarray] = None,
        G_Y: Optional[np.ndarray] = None,
        family: Union[str, Family] = "gaussian",
        alpha: float = 1.0,
        max_iter: int = 10000,
        thresh: float = 1e-5,
        fit_intercept: bool = True,
    ):
        self.lam = lam
        self.psi_gx = psi_gx
        self.psi_gy = psi_gy
        self.G_X = G_X
        self.G_Y = G_Y
        self.family = family
        self.alpha = alpha
        self.max_iter = max_iter
        self.thresh = thresh
        self.fit_intercept = fit_intercept

    def _validate_params(self) -> None:
        """Validate parameters.

        Raises
        ------
        ValueError
            If any parameter is invalid.
        """
        Shrinkage(self.lam, self.psi_gx, self.psi_gy).validate()
        ConvergenceConfig(self.max_iter, self.thresh).validate()
        get_family(self.family)
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be between 0 and 1")

    def fit(self, X: np.ndarray, y: np.ndarray) -> "Edgenet":
        """Fit the Edgenet model.

        Parameters
        ----------
        X : ndarray of shape (n_samples, n_features)
            Training data.
        y : ndarray of shape (n_samples,) or (n_samples, n_responses)
            Target values. Binary (0/1) for the binomial family.

        Returns
        -------
        self : object
            Returns self.
        """
        self._validate_params()
        data = GraphPenalizedModelData(X, y, self.G_X, self.G_Y, self.family)
        result = edgenet_fit(
            data,
            Shrinkage(self.lam, self.psi_gx, self.psi_gy),
            ConvergenceConfig(self.max_iter, self.thresh),
            alpha=self.alpha,
            fit_intercept=self.fit_intercept,
        )

        self.coef_ = result.coefficients
        self.intercept_ = result.intercept
        self.n_iter_ = result.n_iter
        self.converged_ = result.converged
        self.n_features_in_ = data.n_features
        self._single_response = np.ndim(y) == 1
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the mean response.

        Parameters
        ----------
        X : ndarray of shape (n_samples, n_features)
            Samples.

        Returns
        -------
        y_pred : ndarray of shape (n_samples,) or (n_samples, n_responses)
            Predicted means; probabilities for the binomial family. One-dimensional
            if the model was fitted on a one-dimensional target.
        """
        check_is_fitted(self, ["coef_", "intercept_"])
        X = check_array(X, accept_sparse=False, dtype=np.float64)

        if X.shape[1] != self.n_features_in_:
            raise ValueError(
                f"X has {X.shape[1]} features, but Edgenet is expecting "
                f"{self.n_features_in_} features as input"
            )

        y_pred = get_family(self.family).inverse_link(X @ self.coef_ + self.intercept_)
        if self._single_response:
            return y_pred.ravel()
        return y_pred
