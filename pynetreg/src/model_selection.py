r"""Selection of the Edgenet shrinkage parameters by cross-validated trust-region search."""

from typing import NamedTuple, Optional, Union
import numpy as np
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.utils.validation import check_is_fitted
from .bobyqa import bobyqa
from .cv_loss import CrossValidatedLoss
from .edgenet import Edgenet
from .family import Family, get_family
from .model_data import ConvergenceConfig, GraphPenalizedCVData
from .shrinkage import FREE, PARAMETER_NAMES, Shrinkage, as_fixed_or_free

# Search box and radii of the trust-region search, per (lam, psi_gx, psi_gy).
DEFAULT_START = (0.0, 0.0, 0.0)
DEFAULT_LOWER = (0.0, 0.0, 0.0)
DEFAULT_UPPER = (100.0, 10000.0, 10000.0)
DEFAULT_RHO_BEGIN = 0.49
DEFAULT_RHO_END = 1e-6
DEFAULT_MAX_EVALUATIONS = 1000


class ModelSelectionResult(NamedTuple):
    """Outcome of :func:`select_shrinkage`.

    Attributes
    ----------
    shrinkage : Shrinkage
        Selected triple; fixed parameters carry their fixed value.
    fold_ids : ndarray of shape (n_samples,)
        Fold assignment used for cross-validation.
    loss : float
        Cross-validated loss at ``shrinkage``.
    nfev : int
        Number of loss evaluations.
    converged : bool
        Whether the search reached its final radius within the budget.
    n_unconverged_fits : int
        Number of fold fits, over all evaluations, that used up their sweep
        budget without converging.
    """

    shrinkage: Shrinkage
    fold_ids: np.ndarray
    loss: float
    nfev: int
    converged: bool
    n_unconverged_fits: int


def select_shrinkage(
    X,
    Y,
    G_X: Optional[np.ndarray] = None,
    G_Y: Optional[np.ndarray] = None,
    psi_gx: Optional[float] = FREE,
    psi_gy: Optional[float] = FREE,
    n_folds: int = 10,
    fold_ids: Optional[np.ndarray] = None,
    family: Union[str, Family] = "gaussian",
    max_iter: int = 10000,
    thresh: float = 1e-5,
    alpha: float = 1.0,
    fit_intercept: bool = True,
    start=DEFAULT_START,
    lower=DEFAULT_LOWER,
    upper=DEFAULT_UPPER,
    rho_begin: float = DEFAULT_RHO_BEGIN,
    rho_end: float = DEFAULT_RHO_END,
    max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
    shuffle: bool = True,
    random_state=None,
    n_jobs: Optional[int] = None,
    verbose: bool = False,
) -> ModelSelectionResult:
    r"""Select :math:`(\lambda, \psi_x, \psi_y)` by minimizing the cross-validated loss.

    :math:`\lambda` is always searched. Each graph weight is searched when it
    is ``FREE`` (-1) or None, and held at the given value otherwise. The
    search runs only over the free parameters.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Design matrix.
    Y : array-like of shape (n_samples,) or (n_samples, n_responses)
        Responses.
    G_X : ndarray of shape (n_features, n_features), optional
        Prior graph over the covariates.
    G_Y : ndarray of shape (n_responses, n_responses), optional
        Prior graph over the responses.
    psi_gx : float, default=-1
        Fixed covariate graph weight, or -1 to select it.
    psi_gy : float, default=-1
        Fixed response graph weight, or -1 to select it.
    n_folds : int, default=10
        Number of folds generated when ``fold_ids`` is None.
    fold_ids : array-like of shape (n_samples,), optional
        Fold assignment with values in ``1..k``. Used verbatim when given.
    family : {'gaussian', 'binomial'}, default='gaussian'
        Distribution family of the response.
    max_iter : int, default=10000
        Coordinate-descent sweeps per fold fit.
    thresh : float, default=1e-5
        Coordinate-descent step tolerance on the relative coefficient change
        per sweep; see :class:`Edgenet`.
    alpha : float, default=1.0
        Elastic-net mixing of the :math:`\lambda` penalty.
    fit_intercept : bool, default=True
        Whether fold fits estimate intercepts.
    start, lower, upper : sequence of 3 floats
        Starting point and bounds of the search for ``(lam, psi_gx, psi_gy)``.
        Entries of fixed parameters are ignored.
    rho_begin : float, default=0.49
        Initial trust-region radius.
    rho_end : float, default=1e-6
        Final trust-region radius.
    max_evaluations : int, default=1000
        Budget of cross-validated loss evaluations.
    shuffle : bool, default=True
        Whether generated folds are shuffled.
    random_state : int, RandomState instance or None, default=None
        Controls the shuffling of generated folds.
    n_jobs : int, default=None
        Number of threads used for the fold fits of one evaluation.
    verbose : bool, default=False
        If True, prints every loss evaluation.

    Returns
    -------
    ModelSelectionResult

    Raises
    ------
    InvalidDimensionsError
        If shapes or the supplied fold ids are inconsistent.
    InvalidGraphError
        If a prior graph is not a symmetric non-negative matrix.
    ValueError
        If a scalar parameter is invalid.
    """
    config = ConvergenceConfig(max_iter, thresh).validate()
    cv_data = GraphPenalizedCVData(
        X,
        Y,
        G_X,
        G_Y,
        family,
        n_folds=n_folds,
        fold_ids=fold_ids,
        shuffle=shuffle,
        random_state=random_state,
    )
    loss = CrossValidatedLoss(
        cv_data,
        lam=None,
        psi_gx=psi_gx,
        psi_gy=psi_gy,
        config=config,
        alpha=alpha,
        fit_intercept=fit_intercept,
        n_jobs=n_jobs,
    )

    free = [PARAMETER_NAMES.index(name) for name in loss.free_parameters]
    if verbose:
        print(
            f"Selecting {', '.join(loss.free_parameters)} over {cv_data.n_folds} folds "
            f"of {cv_data.n_samples} samples"
        )
    result = bobyqa(
        loss,
        np.asarray(start, dtype=np.float64)[free],
        np.asarray(lower, dtype=np.float64)[free],
        np.asarray(upper, dtype=np.float64)[free],
        rho_begin=rho_begin,
        rho_end=rho_end,
        max_iter=max_evaluations,
        verbose=verbose,
    )
    shrinkage = loss.shrinkage(result.x)
    if verbose:
        print(
            f"Selected lam={shrinkage.lam:.6g}, psi_gx={shrinkage.psi_gx:.6g}, "
            f"psi_gy={shrinkage.psi_gy:.6g} with loss {result.fun:.6g}"
        )
        if loss.n_unconverged_fits_:
            print(
                f"{loss.n_unconverged_fits_} fold fits did not converge "
                f"within max_iter={config.max_iter}"
            )
    return ModelSelectionResult(
        shrinkage,
        cv_data.fold_ids.copy(),
        result.fun,
        result.nfev,
        result.converged,
        loss.n_unconverged_fits_,
    )


class CVEdgenet(RegressorMixin, BaseEstimator):
    r"""Edgenet with shrinkage parameters selected by cross-validation.

    Runs :func:`select_shrinkage` on the training data and refits an
    :class:`Edgenet` with the selected triple on all of it.

    Parameters
    ----------
    G_X : ndarray of shape (n_features, n_features), optional
        Prior graph over the covariates.
    G_Y : ndarray of shape (n_responses, n_responses), optional
        Prior graph over the responses.
    psi_gx : float, default=-1
        Fixed covariate graph weight, or -1 to select it.
    psi_gy : float, default=-1
        Fixed response graph weight, or -1 to select it.
    n_folds : int, default=10
        Number of folds generated when ``fold_ids`` is None.
    fold_ids : array-like of shape (n_samples,), optional
        Fold assignment used verbatim.
    family : {'gaussian', 'binomial'}, default='gaussian'
        Distribution family of the response.
    alpha : float, default=1.0
        Elastic-net mixing of the :math:`\lambda` penalty.
    max_iter : int, default=10000
        Coordinate-descent sweeps per fit.
    thresh : float, default=1e-5
        Coordinate-descent step tolerance on the relative coefficient change
        per sweep; see :class:`Edgenet`.
    fit_intercept : bool, default=True
        Whether to estimate intercepts.
    start : sequence of 3 floats, default=(0, 0, 0)
        Starting point of the search for ``(lam, psi_gx, psi_gy)``.
    lower : sequence of 3 floats, default=(0, 0, 0)
        Lower bounds of the search.
    upper : sequence of 3 floats, default=(100, 10000, 10000)
        Upper bounds of the search.
    rho_begin : float, default=0.49
        Initial trust-region radius of the search.
    rho_end : float, default=1e-6
        Final trust-region radius of the search.
    max_evaluations : int, default=1000
        Budget of cross-validated loss evaluations.
    shuffle : bool, default=True
        Whether generated folds are shuffled.
    random_state : int, RandomState instance or None, default=None
        Controls the shuffling of generated folds.
    n_jobs : int, default=None
        Number of threads used for fold fits.
    verbose : bool, default=False
        If True, prints the progress of the search.

    Attributes
    ----------
    lam_, psi_gx_, psi_gy_ : float
        Selected shrinkage parameters.
    fold_ids_ : ndarray of shape (n_samples,)
        Fold assignment used.
    cv_loss_ : float
        Cross-validated loss at the selected parameters.
    n_unconverged_fits_ : int
        Number of fold fits during the search that did not converge.
    estimator_ : Edgenet
        Model refitted on all training data.
    coef_ : ndarray of shape (n_features, n_responses)
        Coefficients of ``estimator_``.
    intercept_ : ndarray of shape (n_responses,)
        Intercepts of ``estimator_``.
    n_features_in_ : int
        Number of features seen during fit.
    """

    def __init__(
        self,
        G_X: Optional[np.ndarray] = None,
        G_Y: Optional[np.ndarray] = None,
        psi_gx: Optional[float] = FREE,
        psi_gy: Optional[float] = FREE,
        n_folds: int = 10,
        fold_ids: Optional[np.ndarray] = None,
        family: Union[str, Family] = "gaussian",
        alpha: float = 1.0,
        max_iter: int = 10000,
        thresh: float = 1e-5,
        fit_intercept: bool = True,
        start=DEFAULT_START,
        lower=DEFAULT_LOWER,
        upper=DEFAULT_UPPER,
        rho_begin: float = DEFAULT_RHO_BEGIN,
        rho_end: float = DEFAULT_RHO_END,
        max_evaluations: int = DEFAULT_MAX_EVALUATIONS,
        shuffle: bool = True,
        random_state=None,
        n_jobs: Optional[int] = None,
        verbose: bool = False,
    ):
        self.G_X = G_X
        self.G_Y = G_Y
        self.psi_gx = psi_gx
        self.psi_gy = psi_gy
        self.n_folds = n_folds
        self.fold_ids = fold_ids
        self.family = family
        self.alpha = alpha
        self.max_iter = max_iter
        self.thresh = thresh
        self.fit_intercept = fit_intercept
        self.start = start
        self.lower = lower
        self.upper = upper
        self.rho_begin = rho_begin
        self.rho_end = rho_end
        self.max_evaluations = max_evaluations
        self.shuffle = shuffle
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.verbose = verbose

    def _validate_params(self) -> None:
        """Validate parameters.

        Raises
        ------
        ValueError
            If any parameter is invalid.
        """
        as_fixed_or_free(self.psi_gx, "psi_gx")
        as_fixed_or_free(self.psi_gy, "psi_gy")
        ConvergenceConfig(self.max_iter, self.thresh).validate()
        get_family(self.family)
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be between 0 and 1")
        if isinstance(self.max_evaluations, bool) or not isinstance(
            self.max_evaluations, (int, np.integer)
        ):
            raise ValueError("max_evaluations must be an integer")
        if self.max_evaluations <= 0:
            raise ValueError("max_evaluations must be positive")

    def fit(self, X, y) -> "CVEdgenet":
        """Select the shrinkage parameters and fit the final model.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training data.
        y : array-like of shape (n_samples,) or (n_samples, n_responses)
            Target values.

        Returns
        -------
        self : object
            Returns self.
        """
        self._validate_params()
        selection = select_shrinkage(
            X,
            y,
            G_X=self.G_X,
            G_Y=self.G_Y,
            psi_gx=self.psi_gx,
            psi_gy=self.psi_gy,
            n_folds=self.n_folds,
            fold_ids=self.fold_ids,
            family=self.family,
            max_iter=self.max_iter,
            thresh=self.thresh,
            alpha=self.alpha,
            fit_intercept=self.fit_intercept,
            start=self.start,
            lower=self.lower,
            upper=self.upper,
            rho_begin=self.rho_begin,
            rho_end=self.rho_end,
            max_evaluations=self.max_evaluations,
            shuffle=self.shuffle,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
            verbose=self.verbose,
        )
        self.lam_, self.psi_gx_, self.psi_gy_ = selection.shrinkage
        self.fold_ids_ = selection.fold_ids
        self.cv_loss_ = selection.loss
        self.n_unconverged_fits_ = selection.n_unconverged_fits

        self.estimator_ = Edgenet(
            lam=self.lam_,
            psi_gx=self.psi_gx_,
            psi_gy=self.psi_gy_,
            G_X=self.G_X,
            G_Y=self.G_Y,
            family=self.family,
            alpha=self.alpha,
            max_iter=self.max_iter,
            thresh=self.thresh,
            fit_intercept=self.fit_intercept,
        ).fit(X, y)
        self.coef_ = self.estimator_.coef_
        self.intercept_ = self.estimator_.intercept_
        self.n_features_in_ = self.estimator_.n_features_in_
        return self

    def predict(self, X) -> np.ndarray:
        """Predict with the refitted model.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Samples.

        Returns
        -------
        y_pred : ndarray of shape (n_samples,) or (n_samples, n_responses)
            Predicted means; probabilities for the binomial family.
        """
        check_is_fitted(self, "estimator_")
        return self.estimator_.predict(X)
