"""Tests for the Edgenet coordinate-descent engine and estimator."""

import pytest
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal
from scipy.optimize import minimize
from scipy.special import expit
from sklearn.base import clone
from sklearn.datasets import make_regression
from sklearn.exceptions import NotFittedError
from sklearn.model_selection import cross_val_score
from ..src.edgenet import (
    Edgenet,
    EdgenetConvergenceWarning,
    edgenet_fit,
    soft_threshold,
)
from ..src.model_data import ConvergenceConfig, GraphPenalizedModelData
from ..src.shrinkage import Shrinkage

TIGHT = ConvergenceConfig(max_iter=100000, thresh=1e-12)


@pytest.fixture
def sample_data():
    """Generate sample regression data."""
    X, y = make_regression(
        n_samples=100, n_features=10, n_informative=5, noise=1.0, random_state=42
    )
    return X, y


@pytest.fixture
def pair_graph():
    """Graph with a single edge between the first two covariates."""
    G_X = np.zeros((3, 3))
    G_X[0, 1] = G_X[1, 0] = 1.0
    return G_X


@pytest.fixture
def binomial_data():
    """Binary responses from a logistic model with two inactive covariates."""
    rng = np.random.RandomState(10)
    X = rng.randn(200, 4)
    prob = expit(0.5 + X @ np.array([1.5, -1.0, 0.0, 0.0]))
    y = (rng.uniform(size=200) < prob).astype(float)
    return X, y


def test_soft_threshold():
    """Test the soft-thresholding operator."""
    assert soft_threshold(3.0, 1.0) == 2.0
    assert soft_threshold(-3.0, 1.0) == -2.0
    assert soft_threshold(0.5, 1.0) == 0.0
    assert soft_threshold(-1.0, 1.0) == 0.0


class TestEdgenetFit:
    """Test the coordinate-descent engine."""

    def test_zero_iterations(self, sample_data):
        """Test that a zero sweep budget returns finite starting values."""
        X, y = sample_data
        data = GraphPenalizedModelData(X, y)
        with pytest.warns(EdgenetConvergenceWarning):
            fit = edgenet_fit(data, Shrinkage(1.0, 1.0, 1.0), ConvergenceConfig(max_iter=0))
        assert fit.n_iter == 0
        assert not fit.converged
        assert_array_equal(fit.coefficients, np.zeros((10, 1)))
        assert_allclose(fit.intercept, [y.mean()])

    @pytest.mark.parametrize("max_iter", [1, 2, 5])
    def test_finite_after_any_sweep_count(self, sample_data, max_iter):
        """Test that coefficients stay finite after few sweeps."""
        X, y = sample_data
        data = GraphPenalizedModelData(X, y, np.ones((10, 10)))
        with pytest.warns(EdgenetConvergenceWarning):
            fit = edgenet_fit(
                data, Shrinkage(0.5, 2.0, 0.0), ConvergenceConfig(max_iter, 1e-30)
            )
        assert fit.n_iter == max_iter
        assert np.all(np.isfinite(fit.coefficients))
        assert np.all(np.isfinite(fit.intercept))

    def test_large_lambda_gives_zeros(self, sample_data):
        """Test that a large enough LASSO penalty removes every covariate."""
        X, y = sample_data
        lam = 2.0 * np.max(np.abs(X.T @ (y - y.mean()))) + 1.0
        fit = edgenet_fit(GraphPenalizedModelData(X, y), Shrinkage(lam, 0.0, 0.0))
        assert fit.converged
        assert_array_equal(fit.coefficients, np.zeros((10, 1)))
        assert_allclose(fit.intercept, [y.mean()])

    def test_lambda_induces_sparsity(self, sample_data):
        """Test that a moderate penalty zeroes the uninformative covariates."""
        X, y = sample_data
        fit = edgenet_fit(GraphPenalizedModelData(X, y), Shrinkage(50.0, 0.0, 0.0))
        n_zero = np.sum(fit.coefficients == 0.0)
        assert 0 < n_zero < 10

    def test_least_squares_without_intercept(self):
        """Test that zero penalties give TXX^-1 TXY."""
        rng = np.random.RandomState(0)
        X = rng.randn(50, 4)
        Y = X @ rng.randn(4, 2) + 0.1 * rng.randn(50, 2)
        fit = edgenet_fit(
            GraphPenalizedModelData(X, Y),
            Shrinkage(0.0, 0.0, 0.0),
            TIGHT,
            fit_intercept=False,
        )
        assert fit.converged
        assert_allclose(fit.intercept, np.zeros(2))
        assert_allclose(fit.coefficients, np.linalg.solve(X.T @ X, X.T @ Y), atol=1e-6)

    def test_identity_graphs_match_closed_form(self):
        """Test n=100, p=10, q=1 with identity graphs against least squares."""
        rng = np.random.RandomState(1)
        X = rng.randn(100, 10)
        y = 2.0 + X @ rng.randn(10) + 0.5 * rng.randn(100)
        data = GraphPenalizedModelData(X, y, np.eye(10), np.eye(1))
        fit = edgenet_fit(data, Shrinkage(0.0, 1.0, 1.0), TIGHT)

        design = np.column_stack([np.ones(100), X])
        expected = np.linalg.lstsq(design, y, rcond=None)[0]
        assert_allclose(fit.intercept, expected[:1], atol=1e-6)
        assert_allclose(fit.coefficients.ravel(), expected[1:], atol=1e-6)

    def test_ridge_closed_form(self):
        """Test the squared L2 part of the penalty against the ridge solution."""
        rng = np.random.RandomState(2)
        X = rng.randn(60, 5)
        y = X @ rng.randn(5) + 0.2 * rng.randn(60)
        fit = edgenet_fit(
            GraphPenalizedModelData(X, y),
            Shrinkage(3.0, 0.0, 0.0),
            TIGHT,
            alpha=0.0,
            fit_intercept=False,
        )
        expected = np.linalg.solve(X.T @ X + 3.0 * np.eye(5), X.T @ y)
        assert_allclose(fit.coefficients.ravel(), expected, atol=1e-6)

    def test_graph_penalty_closed_form(self, pair_graph):
        """Test the covariate graph penalty against (X^T X + psi L_X)^-1 X^T y."""
        rng = np.random.RandomState(3)
        X = rng.randn(40, 3)
        y = X @ np.array([2.0, -1.0, 0.5]) + 0.1 * rng.randn(40)
        data = GraphPenalizedModelData(X, y, pair_graph)
        fit = edgenet_fit(data, Shrinkage(0.0, 5.0, 0.0), TIGHT, fit_intercept=False)
        expected = np.linalg.solve(X.T @ X + 5.0 * data.L_X, X.T @ y)
        assert_allclose(fit.coefficients.ravel(), expected, atol=1e-6)

    def test_covariate_graph_pulls_neighbours_together(self, pair_graph):
        """Test that a strong covariate graph equalizes linked coefficients."""
        rng = np.random.RandomState(4)
        X = rng.randn(100, 3)
        y = X @ np.array([3.0, 0.0, 1.0]) + 0.1 * rng.randn(100)
        free = edgenet_fit(GraphPenalizedModelData(X, y), Shrinkage(0.0, 0.0, 0.0))
        tied = edgenet_fit(
            GraphPenalizedModelData(X, y, pair_graph), Shrinkage(0.0, 1000.0, 0.0)
        )
        assert abs(free.coefficients[0, 0] - free.coefficients[1, 0]) > 2.0
        assert abs(tied.coefficients[0, 0] - tied.coefficients[1, 0]) < 0.5

    def test_response_graph_pulls_columns_together(self):
        """Test that a strong response graph equalizes linked responses."""
        rng = np.random.RandomState(5)
        X = rng.randn(100, 2)
        Y = np.column_stack([2.0 * X[:, 0], -2.0 * X[:, 0]]) + 0.1 * rng.randn(100, 2)
        G_Y = np.array([[0.0, 1.0], [1.0, 0.0]])
        free = edgenet_fit(GraphPenalizedModelData(X, Y), Shrinkage(0.0, 0.0, 0.0))
        tied = edgenet_fit(
            GraphPenalizedModelData(X, Y, None, G_Y), Shrinkage(0.0, 0.0, 1000.0)
        )
        assert abs(free.coefficients[0, 0] - free.coefficients[0, 1]) > 3.0
        assert abs(tied.coefficients[0, 0] - tied.coefficients[0, 1]) < 0.5

    def test_empty_graph_matches_zero_psi(self, sample_data):
        """Test that an all-zero adjacency has no effect for any psi."""
        X, y = sample_data
        Y = np.column_stack([y, -y])
        empty = GraphPenalizedModelData(X, Y, np.zeros((10, 10)), np.zeros((2, 2)))
        reference = edgenet_fit(empty, Shrinkage(5.0, 0.0, 0.0))
        for psi in (0.1, 10.0, 1000.0):
            fit = edgenet_fit(empty, Shrinkage(5.0, psi, psi))
            assert_allclose(fit.coefficients, reference.coefficients)
            assert_allclose(fit.intercept, reference.intercept)

    def test_degenerate_column_stays_zero(self, sample_data):
        """Test that a constant-zero covariate gets a zero coefficient."""
        X, y = sample_data
        X = X.copy()
        X[:, 3] = 0.0
        fit = edgenet_fit(GraphPenalizedModelData(X, y), Shrinkage(0.0, 0.0, 0.0))
        assert fit.coefficients[3, 0] == 0.0
        assert np.all(np.isfinite(fit.coefficients))

    def test_returns_fresh_arrays(self, sample_data):
        """Test that repeated fits do not share state."""
        X, y = sample_data
        data = GraphPenalizedModelData(X, y)
        first = edgenet_fit(data, Shrinkage(1.0, 0.0, 0.0))
        second = edgenet_fit(data, Shrinkage(1.0, 0.0, 0.0))
        assert first.coefficients is not second.coefficients
        assert_array_equal(first.coefficients, second.coefficients)

    def test_binomial(self):
        """Test that the binomial family recovers the sign pattern."""
        rng = np.random.RandomState(6)
        X = rng.randn(300, 3)
        prob = 1.0 / (1.0 + np.exp(-(X @ np.array([2.0, -2.0, 0.0]))))
        y = (rng.uniform(size=300) < prob).astype(float)
        fit = edgenet_fit(
            GraphPenalizedModelData(X, y, family="binomial"),
            Shrinkage(1.0, 0.0, 0.0),
            ConvergenceConfig(1000, 1e-6),
        )
        assert np.all(np.isfinite(fit.coefficients))
        assert fit.coefficients[0, 0] > 0.5
        assert fit.coefficients[1, 0] < -0.5

    def test_binomial_unpenalized_matches_maximum_likelihood(self, binomial_data):
        """Test lambda = psi = 0 against a direct logistic likelihood fit."""
        X, y = binomial_data
        fit = edgenet_fit(
            GraphPenalizedModelData(X, y, family="binomial"),
            Shrinkage(0.0, 0.0, 0.0),
            TIGHT,
        )
        assert fit.converged

        design = np.column_stack([np.ones(X.shape[0]), X])

        def negative_log_likelihood(beta):
            eta = design @ beta
            return np.sum(np.logaddexp(0.0, eta) - y * eta)

        def gradient(beta):
            return design.T @ (expit(design @ beta) - y)

        reference = minimize(
            negative_log_likelihood,
            np.zeros(design.shape[1]),
            jac=gradient,
            method="BFGS",
            options={"gtol": 1e-10},
        )
        assert_allclose(fit.intercept, reference.x[:1], atol=1e-4)
        assert_allclose(fit.coefficients.ravel(), reference.x[1:], atol=1e-4)

    def test_binomial_lasso_optimality(self, binomial_data):
        """Test the subgradient conditions of the penalized binomial fit."""
        X, y = binomial_data
        lam = 10.0
        fit = edgenet_fit(
            GraphPenalizedModelData(X, y, family="binomial"),
            Shrinkage(lam, 0.0, 0.0),
            TIGHT,
        )
        coefficients = fit.coefficients.ravel()
        prob = expit(fit.intercept[0] + X @ coefficients)
        # gradient of twice the negative log-likelihood
        gradient = 2.0 * X.T @ (prob - y)

        assert np.sum(prob - y) == pytest.approx(0.0, abs=1e-4)
        assert np.any(coefficients != 0.0)
        for j, b_j in enumerate(coefficients):
            if b_j == 0.0:
                assert abs(gradient[j]) <= lam + 1e-6
            else:
                assert gradient[j] == pytest.approx(-lam * np.sign(b_j), abs=1e-4)

    def test_binomial_covariate_graph(self, pair_graph):
        """Test that a strong covariate graph ties binomial coefficients together."""
        rng = np.random.RandomState(8)
        X = rng.randn(300, 3)
        prob = expit(X @ np.array([2.0, 0.0, -1.0]))
        y = (rng.uniform(size=300) < prob).astype(float)
        config = ConvergenceConfig(10000, 1e-8)
        free = edgenet_fit(
            GraphPenalizedModelData(X, y, family="binomial"),
            Shrinkage(0.0, 0.0, 0.0),
            config,
        )
        tied = edgenet_fit(
            GraphPenalizedModelData(X, y, pair_graph, family="binomial"),
            Shrinkage(0.0, 1000.0, 0.0),
            config,
        )
        assert abs(free.coefficients[0, 0] - free.coefficients[1, 0]) > 1.0
        assert abs(tied.coefficients[0, 0] - tied.coefficients[1, 0]) < 0.3
        assert tied.coefficients[2, 0] < 0.0

    def test_thresh_is_step_tolerance(self):
        """Test that a tighter threshold moves closer to the exact solution."""
        rng = np.random.RandomState(9)
        base = rng.randn(100, 1)
        X = base + 0.2 * rng.randn(100, 4)
        y = X @ np.array([1.0, -1.0, 2.0, 0.5]) + 0.1 * rng.randn(100)
        data = GraphPenalizedModelData(X, y)
        exact = np.linalg.solve(X.T @ X, X.T @ y)

        loose = edgenet_fit(
            data, Shrinkage(0.0, 0.0, 0.0), ConvergenceConfig(100000, 1e-3),
            fit_intercept=False,
        )
        tight = edgenet_fit(data, Shrinkage(0.0, 0.0, 0.0), TIGHT, fit_intercept=False)
        assert tight.converged
        loose_error = np.max(np.abs(loose.coefficients.ravel() - exact))
        tight_error = np.max(np.abs(tight.coefficients.ravel() - exact))
        assert tight_error < 1e-6
        assert tight_error < loose_error

    @pytest.mark.parametrize(
        "shrinkage, alpha, message",
        [
            (Shrinkage(-1.0, 0.0, 0.0), 1.0, "lam must be non-negative"),
            (Shrinkage(0.0, np.inf, 0.0), 1.0, "psi_gx must be non-negative"),
            (Shrinkage(0.0, 0.0, 0.0), 1.5, "alpha must be between 0 and 1"),
        ],
    )
    def test_invalid_arguments(self, sample_data, shrinkage, alpha, message):
        """Test that invalid penalties are rejected."""
        X, y = sample_data
        with pytest.raises(ValueError, match=message):
            edgenet_fit(GraphPenalizedModelData(X, y), shrinkage, alpha=alpha)


class TestEdgenet:
    """Test the Edgenet estimator."""

    def test_init(self):
        """Test initialization."""
        model = Edgenet()
        assert model.lam == 1.0
        assert model.psi_gx == 1.0
        assert model.psi_gy == 1.0
        assert model.G_X is None
        assert model.family == "gaussian"

    def test_fit_predict_vector_target(self, sample_data):
        """Test fitting and predicting with a one-dimensional target."""
        X, y = sample_data
        model = Edgenet(lam=0.1).fit(X, y)
        assert model.coef_.shape == (10, 1)
        assert model.intercept_.shape == (1,)
        assert model.n_features_in_ == 10
        assert model.converged_
        y_pred = model.predict(X)
        assert y_pred.shape == (100,)
        assert model.score(X, y) > 0.9

    def test_fit_predict_matrix_target(self, sample_data):
        """Test fitting and predicting with several responses."""
        X, y = sample_data
        Y = np.column_stack([y, 0.5 * y])
        G_Y = np.array([[0.0, 1.0], [1.0, 0.0]])
        model = Edgenet(lam=0.1, psi_gy=0.5, G_Y=G_Y).fit(X, Y)
        assert model.coef_.shape == (10, 2)
        assert model.predict(X).shape == (100, 2)

    def test_predict_matches_coefficients(self, sample_data):
        """Test that predictions are X B + mu."""
        X, y = sample_data
        model = Edgenet(lam=1.0, psi_gx=0.0, psi_gy=0.0).fit(X, y)
        assert_allclose(model.predict(X), (X @ model.coef_ + model.intercept_).ravel())

    def test_binomial_predicts_probabilities(self):
        """Test that binomial predictions are probabilities."""
        rng = np.random.RandomState(7)
        X = rng.randn(80, 2)
        y = (X[:, 0] + 0.3 * rng.randn(80) > 0).astype(float)
        model = Edgenet(lam=1.0, family="binomial", max_iter=1000).fit(X, y)
        prob = model.predict(X)
        assert np.all((prob >= 0.0) & (prob <= 1.0))
        assert np.mean((prob > 0.5) == (y == 1.0)) > 0.8

    def test_predict_before_fit(self, sample_data):
        """Test that predicting before fitting raises."""
        X, _ = sample_data
        with pytest.raises(NotFittedError):
            Edgenet().predict(X)

    def test_predict_wrong_features(self, sample_data):
        """Test that predictions need the training number of features."""
        X, y = sample_data
        model = Edgenet().fit(X, y)
        with pytest.raises(ValueError, match="expecting 10 features"):
            model.predict(X[:, :5])

    @pytest.mark.parametrize(
        "params, message",
        [
            ({"lam": -1.0}, "lam must be non-negative"),
            ({"psi_gy": -0.5}, "psi_gy must be non-negative"),
            ({"thresh": 0.0}, "thresh must be positive"),
            ({"max_iter": -3}, "max_iter must be non-negative"),
            ({"family": "poisson"}, "family must be one of"),
            ({"alpha": -0.1}, "alpha must be between 0 and 1"),
        ],
    )
    def test_validate_params(self, sample_data, params, message):
        """Test parameter validation."""
        X, y = sample_data
        with pytest.raises(ValueError, match=message):
            Edgenet(**params).fit(X, y)

    def test_clone_and_params(self, pair_graph):
        """Test scikit-learn parameter handling."""
        model = Edgenet(lam=2.0, psi_gx=3.0, G_X=pair_graph)
        cloned = clone(model)
        assert cloned.get_params()["lam"] == 2.0
        assert_array_equal(cloned.G_X, pair_graph)
        cloned.set_params(lam=0.5)
        assert cloned.lam == 0.5
        assert model.lam == 2.0

    def test_cross_val_score(self, sample_data):
        """Test use inside scikit-learn cross-validation."""
        X, y = sample_data
        scores = cross_val_score(Edgenet(lam=0.1), X, y, cv=3)
        assert scores.shape == (3,)
        assert np.all(np.isfinite(scores))
