"""Shrinkage parameters and the free/fixed convention used during model selection."""

from typing import NamedTuple, Optional
import numpy as np

# Interface value meaning "select this parameter by cross-validation".
FREE = -1

PARAMETER_NAMES = ("lam", "psi_gx", "psi_gy")


class Shrinkage(NamedTuple):
    r"""The penalty triple of an Edgenet model.

    Attributes
    ----------
    lam : float
        LASSO penalty :math:`\lambda`.
    psi_gx : float
        Weight :math:`\psi_{x}` of the covariate graph penalty.
    psi_gy : float
        Weight :math:`\psi_{y}` of the response graph penalty.
    """

    lam: float
    psi_gx: float
    psi_gy: float

    def validate(self) -> "Shrinkage":
        """Check that all penalties are finite and non-negative and return them as floats."""
        values = []
        for name, value in zip(PARAMETER_NAMES, self):
            if isinstance(value, bool) or not isinstance(
                value, (int, float, np.integer, np.floating)
            ):
                raise ValueError(f"{name} must be a number")
            if not np.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be non-negative")
            values.append(float(value))
        return Shrinkage(*values)


def as_fixed_or_free(value, name: str) -> Optional[float]:
    """Translate an interface value into the internal free/fixed state.

    Parameters
    ----------
    value : float or None
        ``FREE`` (-1) or None to search the parameter, otherwise its fixed
        non-negative value.
    name : str
        Parameter name used in error messages.

    Returns
    -------
    float or None
        None when the parameter is free, the fixed value otherwise.

    Raises
    ------
    ValueError
        If the value is neither the sentinel nor a finite non-negative number.
    """
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(
        value, (int, float, np.integer, np.floating)
    ):
        raise ValueError(f"{name} must be a number, None or {FREE}")
    if value == FREE:
        return None
    if not np.isfinite(value) or value < 0:
        raise ValueError(
            f"{name} must be non-negative, or {FREE} to select it by cross-validation"
        )
    return float(value)
