"""
Example of using pyNetReg with scikit-learn Pipeline
==================================================

This example demonstrates how to use the Edgenet estimator within
scikit-learn's Pipeline and cross-validation framework.
"""

import numpy as np
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.model_selection import cross_val_score
from sklearn.datasets import make_regression

# Import pyNetReg components
from pynetreg.src.edgenet import Edgenet

# Generate sample regression data
X, y = make_regression(n_samples=100, n_features=20, n_informative=6, random_state=42)

# Prior graph over the covariates: consecutive features are linked in pairs
G_X = np.zeros((20, 20))
for j in range(0, 20, 2):
    G_X[j, j + 1] = G_X[j + 1, j] = 1.0

# Create a pipeline with standardization and Edgenet
pipeline = Pipeline([
    ('scaler', StandardScaler()),
    ('edgenet', Edgenet(lam=1.0, psi_gx=1.0, psi_gy=0.0, G_X=G_X))
])

# Perform cross-validation
cv_scores = cross_val_score(pipeline, X, y, cv=5)
print(f"Cross-validation scores: {cv_scores}")
print(f"Mean CV score: {cv_scores.mean():.3f} (+/- {cv_scores.std() * 2:.3f})")

# Example of parameter tuning with GridSearchCV
if __name__ == "__main__":
    from sklearn.model_selection import GridSearchCV

    # Define parameter grid
    param_grid = {
        'edgenet__lam': np.logspace(-2, 2, 5),
        'edgenet__psi_gx': [0.0, 1.0, 10.0],
    }

    # Create grid search
    grid_search = GridSearchCV(pipeline, param_grid, cv=5)
    grid_search.fit(X, y)

    print("\nGrid Search Results:")
    print(f"Best parameters: {grid_search.best_params_}")
    print(f"Best cross-validation score: {grid_search.best_score_:.3f}")
