"""Data containers for graph-penalized linear models."""

from typing import NamedTuple, Optional, Union, List, Tuple
import numpy as np
from sklearn.model_selection import KFold
from sklearn.utils import check_random_state
from sklearn.utils.validation import check_array
from .family import Family, get_family


class NetRegError(Exception):
    """Base exception class for graph-penalized regression errors."""

    pass


class InvalidDimensionsError(NetRegError, ValueError):
    """Exception raised when matrix or vector dimensions are incompatible."""

    pass


class InvalidGraphError(NetRegError, ValueError):
    """Exception raised when a prior graph is not a valid weighted adjacency matrix."""

    pass


class ConvergenceConfig(NamedTuple):
    """Stopping rule of the coordinate-descent engine.

    Attributes
    ----------
    max_iter : int
        Maximum number of full sweeps. Zero returns the starting values.
    thresh : float
        Convergence is declared once the largest relative coefficient change
        of a sweep drops below this value. Slowly converging problems can
        stop further than ``thresh`` from the exact minimizer.
    """

    max_iter: int = 10000
    thresh: float = 1e-5

    def validate(self) -> "ConvergenceConfig":
        """Check the configuration and return it.

        Raises
        ------
        ValueError
            If max_iter is negative or not an integer, or thresh is not positive.
        """
        if isinstance(self.max_iter, bool) or not isinstance(
            self.max_iter, (int, np.integer)
        ):
            raise ValueError("max_iter must be an integer")
        if self.max_iter < 0:
            raise ValueError("max_iter must be non-negative")
        if not np.isfinite(self.thresh) or self.thresh <= 0:
            raise ValueError("thresh must be positive")
        return self


def laplacian(adjacency: np.ndarray) -> np.ndarray:
    r"""Compute the combinatorial graph Laplacian :math:`L = D - A`.

    Parameters
    ----------
    adjacency : ndarray of shape (m, m)
        Symmetric non-negative weighted adjacency matrix.

    Returns
    -------
    ndarray of shape (m, m)
        The Laplacian. Self loops cancel out, so the diagonal of ``adjacency``
        has no influence.
    """
    return np.diag(adjacency.sum(axis=1)) - adjacency


def check_graph(graph: Optional[np.ndarray], size: int, name: str) -> np.ndarray:
    """Validate a prior graph and return it as a float array.

    Parameters
    ----------
    graph : array-like of shape (size, size) or None
        Weighted adjacency matrix. None stands for a graph without edges.
    size : int
        Expected number of nodes.
    name : str
        Name used in error messages.

    Returns
    -------
    ndarray of shape (size, size)

    Raises
    ------
    InvalidDimensionsError
        If the graph is not a (size, size) matrix.
    InvalidGraphError
        If the graph has NaN, infinite or negative weights, or is not symmetric.
    """
    if graph is None:
        return np.zeros((size, size))
    graph = np.asarray(graph, dtype=np.float64)
    if graph.ndim != 2 or graph.shape != (size, size):
        raise InvalidDimensionsError(
            f"{name} must have shape ({size}, {size}), got {graph.shape}"
        )
    if not np.all(np.isfinite(graph)):
        raise InvalidGraphError(f"NaN or Inf detected in {name}.")
    if np.any(graph < 0):
        raise InvalidGraphError(f"Negative weights detected in {name}.")
    if not np.allclose(graph, graph.T):
        raise InvalidGraphError(f"{name} must be symmetric.")
    return graph


def check_design_response(X, Y) -> Tuple[np.ndarray, np.ndarray]:
    """Validate the design and response matrices.

    A one-dimensional response is treated as a single response column.

    Raises
    ------
    InvalidDimensionsError
        If X or Y is not two-dimensional or their sample counts differ.
    ValueError
        If X or Y contains NaN or Inf.
    """
    X = np.asarray(X)
    Y = np.asarray(Y)
    if X.ndim != 2:
        raise InvalidDimensionsError(f"X must be a 2D array, got {X.ndim}D")
    if Y.ndim == 1:
        Y = Y.reshape(-1, 1)
    if Y.ndim != 2:
        raise InvalidDimensionsError(f"Y must be a 1D or 2D array, got {Y.ndim}D")
    if X.shape[0] != Y.shape[0]:
        raise InvalidDimensionsError(
            f"X has {X.shape[0]} samples but Y has {Y.shape[0]}"
        )
    X = check_array(X, dtype=np.float64)
    Y = check_array(Y, dtype=np.float64)
    return X, Y


def _freeze(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


class GraphPenalizedModelData:
    r"""Inputs and precomputed cross-products of one graph-penalized model.

    The container is immutable: all arrays are stored read-only, so one
    instance can be shared by concurrently running fits. Coefficients and
    intercepts are not stored here but returned by each fit.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Design matrix.
    Y : array-like of shape (n_samples,) or (n_samples, n_responses)
        Response matrix.
    G_X : array-like of shape (n_features, n_features), optional
        Prior graph over the covariates. None means no prior structure.
    G_Y : array-like of shape (n_responses, n_responses), optional
        Prior graph over the responses. None means no prior structure.
    family : {'gaussian', 'binomial'} or Family, default='gaussian'
        Distribution family of the response.

    Attributes
    ----------
    X, Y : ndarray
        Validated design and response matrices.
    L_X : ndarray of shape (n_features, n_features)
        Laplacian of ``G_X``.
    L_Y : ndarray of shape (n_responses, n_responses)
        Laplacian of ``G_Y``.
    txx : ndarray of shape (n_features, n_features)
        :math:`X^T X`.
    txy : ndarray of shape (n_features, n_responses)
        :math:`X^T Y`.
    x_sums : ndarray of shape (n_features,)
        Column sums of X.
    y_sums : ndarray of shape (n_responses,)
        Column sums of Y.
    family : GaussianFamily or BinomialFamily
        Family strategy.
    """

    def __init__(
        self,
        X,
        Y,
        G_X: Optional[np.ndarray] = None,
        G_Y: Optional[np.ndarray] = None,
        family: Union[str, Family] = "gaussian",
    ):
        X, Y = check_design_response(X, Y)
        family = get_family(family)
        family.validate_response(Y)
        G_X = check_graph(G_X, X.shape[1], "G_X")
        G_Y = check_graph(G_Y, Y.shape[1], "G_Y")
        self._set_arrays(X, Y, laplacian(G_X), laplacian(G_Y), family)

    @classmethod
    def _from_validated(cls, X, Y, L_X, L_Y, family) -> "GraphPenalizedModelData":
        data = cls.__new__(cls)
        data._set_arrays(X, Y, L_X, L_Y, family)
        return data

    def _set_arrays(self, X, Y, L_X, L_Y, family) -> None:
        # private copies; the caller's arrays must stay writeable
        self.X = _freeze(np.array(X, dtype=np.float64, order="C"))
        self.Y = _freeze(np.array(Y, dtype=np.float64, order="C"))
        self.L_X = _freeze(L_X)
        self.L_Y = _freeze(L_Y)
        self.family = family
        self.txx = _freeze(self.X.T @ self.X)
        self.txy = _freeze(self.X.T @ self.Y)
        self.x_sums = _freeze(self.X.sum(axis=0))
        self.y_sums = _freeze(self.Y.sum(axis=0))

    @property
    def n_samples(self) -> int:
        return self.X.shape[0]

    @property
    def n_features(self) -> int:
        return self.X.shape[1]

    @property
    def n_responses(self) -> int:
        return self.Y.shape[1]

    def subset(self, rows: np.ndarray) -> "GraphPenalizedModelData":
        """Build a container for a subset of the samples.

        The Laplacians are shared with this container; the cross-products are
        recomputed for the selected rows.

        Parameters
        ----------
        rows : ndarray of int
            Indices of the samples to keep.
        """
        return GraphPenalizedModelData._from_validated(
            self.X[rows], self.Y[rows], self.L_X, self.L_Y, self.family
        )


def make_folds(
    n_samples: int,
    n_folds: int,
    shuffle: bool = True,
    random_state=None,
) -> np.ndarray:
    r"""Assign samples to cross-validation folds.

    Parameters
    ----------
    n_samples : int
        Number of samples.
    n_folds : int
        Number of folds, :math:`2 \le k \le n`.
    shuffle : bool, default=True
        Whether samples are shuffled before being split into contiguous groups.
    random_state : int, RandomState instance or None, default=None
        Controls the shuffling.

    Returns
    -------
    ndarray of shape (n_samples,)
        Fold ids in ``1..n_folds``. Group sizes differ by at most one.

    Raises
    ------
    ValueError
        If n_folds is smaller than 2.
    InvalidDimensionsError
        If n_folds exceeds the number of samples.
    """
    if isinstance(n_folds, bool) or not isinstance(n_folds, (int, np.integer)):
        raise ValueError("n_folds must be an integer")
    if n_folds < 2:
        raise ValueError("n_folds must be at least 2")
    if n_folds > n_samples:
        raise InvalidDimensionsError(
            f"n_folds ({n_folds}) cannot exceed the number of samples ({n_samples})"
        )
    splitter = KFold(
        n_splits=n_folds,
        shuffle=shuffle,
        random_state=check_random_state(random_state) if shuffle else None,
    )
    fold_ids = np.zeros(n_samples, dtype=int)
    for fold, (_, test_index) in enumerate(splitter.split(np.empty((n_samples, 1)))):
        fold_ids[test_index] = fold + 1
    return fold_ids


def check_fold_ids(fold_ids, n_samples: int) -> np.ndarray:
    r"""Validate a caller-supplied fold assignment.

    Parameters
    ----------
    fold_ids : array-like of shape (n_samples,)
        Fold id of every sample.
    n_samples : int
        Number of samples.

    Returns
    -------
    ndarray of shape (n_samples,)
        The fold ids as integers, values unchanged.

    Raises
    ------
    InvalidDimensionsError
        If the vector has the wrong length, non-integer values, or its values
        do not cover ``1..k`` without gaps for some :math:`k \ge 2`.
    """
    fold_ids = np.asarray(fold_ids)
    if fold_ids.ndim != 1 or fold_ids.shape[0] != n_samples:
        raise InvalidDimensionsError(
            f"fold_ids must be a vector of length {n_samples}, got shape {fold_ids.shape}"
        )
    if not np.issubdtype(fold_ids.dtype, np.number) or not np.all(
        np.isfinite(fold_ids)
    ):
        raise InvalidDimensionsError("fold_ids must contain integer fold numbers")
    as_int = fold_ids.astype(int)
    if not np.array_equal(as_int, fold_ids):
        raise InvalidDimensionsError("fold_ids must contain integer fold numbers")
    unique = np.unique(as_int)
    if unique.size < 2 or not np.array_equal(unique, np.arange(1, unique.size + 1)):
        raise InvalidDimensionsError(
            "fold_ids must cover 1..k without gaps for at least two folds, "
            f"got {unique.tolist()}"
        )
    return as_int


class GraphPenalizedCVData(GraphPenalizedModelData):
    """Model data together with a k-fold partition of its samples.

    Cross-products of every training split are computed once here and reused
    by every trial point of the hyperparameter search.

    Parameters
    ----------
    X, Y, G_X, G_Y, family
        As in :class:`GraphPenalizedModelData`.
    n_folds : int, default=10
        Number of folds to generate when ``fold_ids`` is None.
    fold_ids : array-like of shape (n_samples,), optional
        Fold assignment with values in ``1..k``. Used verbatim when given.
    shuffle : bool, default=True
        Whether generated folds are shuffled.
    random_state : int, RandomState instance or None, default=None
        Controls the shuffling of generated folds.

    Attributes
    ----------
    fold_ids : ndarray of shape (n_samples,)
        The fold assignment in use.
    n_folds : int
        Number of folds.
    folds : list of (GraphPenalizedModelData, ndarray)
        Training container and held-out row indices of every fold.
    """

    def __init__(
        self,
        X,
        Y,
        G_X: Optional[np.ndarray] = None,
        G_Y: Optional[np.ndarray] = None,
        family: Union[str, Family] = "gaussian",
        n_folds: int = 10,
        fold_ids: Optional[np.ndarray] = None,
        shuffle: bool = True,
        random_state=None,
    ):
        super().__init__(X, Y, G_X, G_Y, family)
        if fold_ids is None:
            fold_ids = make_folds(self.n_samples, n_folds, shuffle, random_state)
        else:
            fold_ids = check_fold_ids(fold_ids, self.n_samples)
        self.fold_ids = _freeze(fold_ids)
        self.n_folds = int(fold_ids.max())
        self.folds: List[Tuple[GraphPenalizedModelData, np.ndarray]] = []
        for fold in range(1, self.n_folds + 1):
            test_index = np.flatnonzero(fold_ids == fold)
            train_index = np.flatnonzero(fold_ids != fold)
            self.folds.append((self.subset(train_index), test_index))
