"""Response distribution families for graph-penalized regression."""

from enum import Enum
from typing import NamedTuple, Optional, Union
import numpy as np
from scipy.special import expit, logit

_MIN_WEIGHT = 1e-5
_PROB_CLIP = 1e-10


class Family(Enum):
    """Distribution family of the response matrix."""

    GAUSSIAN = "gaussian"
    BINOMIAL = "binomial"


class SweepState(NamedTuple):
    r"""Working quantities of one coordinate-descent sweep.

    Attributes
    ----------
    weights : ndarray of shape (n_samples, n_responses) or None
        IRLS weights. None for the Gaussian family, where every sample has
        unit weight and the precomputed cross-products are used instead.
    residuals : ndarray of shape (n_samples, n_responses) or None
        Working residuals :math:`z - \eta`. None for the Gaussian family.
    gram_diag : ndarray of shape (n_features, n_responses)
        Weighted squared column norms :math:`X_j^T W_k X_j`.
    """

    weights: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    gram_diag: np.ndarray


class GaussianFamily:
    r"""Gaussian response with identity link.

    The data term is the residual sum of squares
    :math:`\|Y - 1\mu^T - XB\|_F^2`. Coordinate scores are read off the
    cross-products :math:`X^T X` and :math:`X^T Y`, so a sweep never touches the
    design matrix.
    """

    family = Family.GAUSSIAN

    def validate_response(self, Y: np.ndarray) -> None:
        """Gaussian responses only need to be finite, which is checked upstream."""
        return None

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        return Y.mean(axis=0)

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return eta

    def begin_sweep(self, data, coefficients, intercept) -> SweepState:
        gram_diag = np.repeat(np.diag(data.txx)[:, None], data.n_responses, axis=1)
        return SweepState(None, None, gram_diag)

    def coordinate_score(self, data, state, coefficients, intercept, j, k) -> float:
        # X_j^T (y_k - mu_k - X B_k) + X_j^T X_j B_jk
        return (
            data.txy[j, k]
            - data.x_sums[j] * intercept[k]
            - data.txx[j] @ coefficients[:, k]
            + data.txx[j, j] * coefficients[j, k]
        )

    def commit(self, data, state, j, k, delta) -> None:
        return None

    def update_intercept(self, data, state, coefficients, intercept) -> None:
        intercept[:] = (data.y_sums - data.x_sums @ coefficients) / data.n_samples

    def loss(self, Y: np.ndarray, eta: np.ndarray) -> float:
        """Mean squared prediction error."""
        return float(np.mean((Y - eta) ** 2))


class BinomialFamily:
    r"""Binomial response with logit link.

    The data term is twice the negative log-likelihood. Each sweep replaces it
    by its quadratic (IRLS) approximation around the current linear predictor
    :math:`\eta = 1\mu^T + XB`, with weights :math:`w = p(1 - p)` and working
    residuals :math:`(y - p) / w`, so the coordinate update keeps the form of a
    weighted least-squares step.
    """

    family = Family.BINOMIAL

    def validate_response(self, Y: np.ndarray) -> None:
        if not np.all((Y == 0.0) | (Y == 1.0)):
            raise ValueError("Binomial family requires a response with values in {0, 1}")

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        mean = np.clip(Y.mean(axis=0), _PROB_CLIP, 1.0 - _PROB_CLIP)
        return logit(mean)

    def inverse_link(self, eta: np.ndarray) -> np.ndarray:
        return expit(eta)

    def begin_sweep(self, data, coefficients, intercept) -> SweepState:
        eta = data.X @ coefficients + intercept
        prob = expit(eta)
        weights = np.maximum(prob * (1.0 - prob), _MIN_WEIGHT)
        residuals = (data.Y - prob) / weights
        gram_diag = (data.X**2).T @ weights
        return SweepState(weights, residuals, gram_diag)

    def coordinate_score(self, data, state, coefficients, intercept, j, k) -> float:
        x_j = data.X[:, j]
        w_k = state.weights[:, k]
        return x_j @ (w_k * state.residuals[:, k]) + state.gram_diag[j, k] * coefficients[j, k]

    def commit(self, data, state, j, k, delta) -> None:
        if delta != 0.0:
            state.residuals[:, k] -= delta * data.X[:, j]

    def update_intercept(self, data, state, coefficients, intercept) -> None:
        w_sum = state.weights.sum(axis=0)
        step = np.sum(state.weights * state.residuals, axis=0) / w_sum
        state.residuals[:] -= step
        intercept += step

    def loss(self, Y: np.ndarray, eta: np.ndarray) -> float:
        """Mean negative log-likelihood."""
        # log(1 + exp(eta)) - y * eta, computed stably
        return float(np.mean(np.logaddexp(0.0, eta) - Y * eta))


_FAMILIES = {
    Family.GAUSSIAN: GaussianFamily(),
    Family.BINOMIAL: BinomialFamily(),
}


def get_family(family: Union[str, Family]) -> Union[GaussianFamily, BinomialFamily]:
    """Return the strategy object for a family tag.

    Parameters
    ----------
    family : {'gaussian', 'binomial'} or Family
        Family tag, case-insensitive.

    Returns
    -------
    GaussianFamily or BinomialFamily
        The shared, stateless strategy instance.

    Raises
    ------
    ValueError
        If the tag is not a known family.
    """
    if isinstance(family, Family):
        return _FAMILIES[family]
    if not isinstance(family, str):
        raise ValueError(
            f"family must be one of ['gaussian', 'binomial'], got {family!r}"
        )
    try:
        return _FAMILIES[Family(family.lower())]
    except ValueError:
        raise ValueError(
            f"family must be one of ['gaussian', 'binomial'], got {family!r}"
        ) from None
