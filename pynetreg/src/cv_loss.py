"""Cross-validated prediction loss of Edgenet as a function of its shrinkage parameters."""

from typing import List, Optional, Sequence
import numpy as np
from joblib import Parallel, delayed
from .edgenet import EdgenetFit, edgenet_fit
from .model_data import ConvergenceConfig, GraphPenalizedCVData, GraphPenalizedModelData
from .shrinkage import PARAMETER_NAMES, Shrinkage, as_fixed_or_free


class CrossValidatedLoss:
    r"""Objective minimized during model selection.

    For a trial triple :math:`(\lambda, \psi_x, \psi_y)` the model is refitted
    on the training part of every fold and scored on the held-out part. The
    loss is the mean over folds of the family loss (mean squared error for the
    Gaussian family, mean negative log-likelihood for the binomial family).

    Parameters
    ----------
    cv_data : GraphPenalizedCVData
        Data with its fold assignment. Never modified.
    lam : float or None, default=None
        Fixed value of :math:`\lambda`, or None (or -1) to search it.
    psi_gx : float or None, default=None
        Fixed value of :math:`\psi_x`, or None (or -1) to search it.
    psi_gy : float or None, default=None
        Fixed value of :math:`\psi_y`, or None (or -1) to search it.
    config : ConvergenceConfig, optional
        Coordinate-descent settings for the fold fits.
    alpha : float, default=1.0
        Elastic-net mixing passed to every fold fit.
    fit_intercept : bool, default=True
        Whether fold fits estimate intercepts.
    n_jobs : int, default=None
        Number of threads for the fold fits. None runs them sequentially.

    Attributes
    ----------
    free_parameters : tuple of str
        Names of the searched parameters, in the order expected by ``__call__``.
    n_evaluations_ : int
        Number of evaluated triples.
    n_unconverged_fits_ : int
        Number of fold fits that exhausted ``config.max_iter``.
    """

    def __init__(
        self,
        cv_data: GraphPenalizedCVData,
        lam: Optional[float] = None,
        psi_gx: Optional[float] = None,
        psi_gy: Optional[float] = None,
        config: Optional[ConvergenceConfig] = None,
        alpha: float = 1.0,
        fit_intercept: bool = True,
        n_jobs: Optional[int] = None,
    ):
        self.cv_data = cv_data
        self.fixed = {
            name: as_fixed_or_free(value, name)
            for name, value in zip(PARAMETER_NAMES, (lam, psi_gx, psi_gy))
        }
        self.free_parameters = tuple(
            name for name in PARAMETER_NAMES if self.fixed[name] is None
        )
        self.config = (config if config is not None else ConvergenceConfig()).validate()
        self.alpha = alpha
        self.fit_intercept = fit_intercept
        self.n_jobs = n_jobs
        self.n_evaluations_ = 0
        self.n_unconverged_fits_ = 0

    def shrinkage(self, free_point: Sequence[float]) -> Shrinkage:
        """Combine a point over the free parameters with the fixed ones.

        Parameters
        ----------
        free_point : sequence of float
            Values of ``free_parameters``, in that order.

        Returns
        -------
        Shrinkage
        """
        free_point = np.atleast_1d(np.asarray(free_point, dtype=np.float64))
        if free_point.shape != (len(self.free_parameters),):
            raise ValueError(
                f"Expected {len(self.free_parameters)} free parameter values "
                f"{self.free_parameters}, got {free_point.shape}"
            )
        values = dict(self.fixed)
        values.update(zip(self.free_parameters, free_point.tolist()))
        return Shrinkage(**values)

    def _fit_fold(
        self, train: GraphPenalizedModelData, shrinkage: Shrinkage
    ) -> EdgenetFit:
        return edgenet_fit(
            train,
            shrinkage,
            self.config,
            alpha=self.alpha,
            fit_intercept=self.fit_intercept,
        )

    def fold_losses(self, shrinkage: Shrinkage) -> np.ndarray:
        """Held-out loss of every fold for a full shrinkage triple.

        Fixed parameters override the corresponding entries of ``shrinkage``.

        Parameters
        ----------
        shrinkage : Shrinkage or tuple of float
            Trial triple.

        Returns
        -------
        ndarray of shape (n_folds,)
        """
        shrinkage = Shrinkage(*shrinkage)
        shrinkage = Shrinkage(
            *(
                self.fixed[name] if self.fixed[name] is not None else value
                for name, value in zip(PARAMETER_NAMES, shrinkage)
            )
        ).validate()

        folds = self.cv_data.folds
        if self.n_jobs is None:
            fits: List[EdgenetFit] = [
                self._fit_fold(train, shrinkage) for train, _ in folds
            ]
        else:
            # fold fits share only read-only arrays
            fits = Parallel(n_jobs=self.n_jobs, prefer="threads")(
                delayed(self._fit_fold)(train, shrinkage) for train, _ in folds
            )

        family = self.cv_data.family
        losses = np.empty(len(folds))
        for i, ((_, test_index), fit) in enumerate(zip(folds, fits)):
            if not fit.converged:
                self.n_unconverged_fits_ += 1
            X_test = self.cv_data.X[test_index]
            Y_test = self.cv_data.Y[test_index]
            eta = X_test @ fit.coefficients + fit.intercept
            losses[i] = family.loss(Y_test, eta)
        self.n_evaluations_ += 1
        return losses

    def evaluate(self, shrinkage: Shrinkage) -> float:
        """Mean held-out loss for a full shrinkage triple.

        Parameters
        ----------
        shrinkage : Shrinkage or tuple of float
            Trial triple. Fixed parameters override its entries.

        Returns
        -------
        float
            The cross-validated loss; lower is better.
        """
        return float(np.mean(self.fold_losses(shrinkage)))

    def __call__(self, free_point: Sequence[float]) -> float:
        """Mean held-out loss at a point over the free parameters."""
        return self.evaluate(self.shrinkage(free_point))
