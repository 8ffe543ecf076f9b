"""Graph-regularized linear regression with cross-validated shrinkage selection."""

__version__ = "0.1.0"
