"""
Custom Transformer Example
========================

This example shows how to create custom scikit-learn compatible
transformers using pyNetReg components.
"""

import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.utils.validation import check_array, check_is_fitted


class EdgenetFeatureSelector(BaseEstimator, TransformerMixin):
    """Custom transformer that keeps the covariates selected by Edgenet.

    A covariate is kept when its row of the Edgenet coefficient matrix is
    non-zero for at least one response.
    """

    def __init__(self, lam=1.0, psi_gx=1.0, G_X=None, threshold=1e-8):
        self.lam = lam
        self.psi_gx = psi_gx
        self.G_X = G_X
        self.threshold = threshold

    def fit(self, X, y):
        """Fit the transformer by identifying the selected covariates."""
        X = check_array(X)

        from pynetreg.src.edgenet import Edgenet

        self.edgenet_ = Edgenet(
            lam=self.lam, psi_gx=self.psi_gx, psi_gy=0.0, G_X=self.G_X
        ).fit(X, y)
        self.support_ = np.max(np.abs(self.edgenet_.coef_), axis=1) > self.threshold
        return self

    def transform(self, X):
        """Transform X by keeping the selected covariates."""
        check_is_fitted(self)
        X = check_array(X)
        return X[:, self.support_]


# Example usage
if __name__ == "__main__":
    from sklearn.datasets import make_regression
    from sklearn.linear_model import LinearRegression
    from sklearn.pipeline import Pipeline
    from sklearn.preprocessing import StandardScaler

    # Generate sample data
    X, y = make_regression(n_samples=100, n_features=20, n_informative=5, random_state=42)

    # Chain graph over the covariates
    G_X = np.eye(20, k=1) + np.eye(20, k=-1)

    # Create pipeline with custom transformer
    pipeline = Pipeline([
        ('scaler', StandardScaler()),
        ('selector', EdgenetFeatureSelector(lam=50.0, psi_gx=1.0, G_X=G_X)),
        ('ols', LinearRegression()),
    ])
    pipeline.fit(X, y)

    print("Original feature shape:", X.shape)
    print("Selected features:", np.flatnonzero(pipeline.named_steps['selector'].support_))
    print(f"Training R^2: {pipeline.score(X, y):.3f}")
