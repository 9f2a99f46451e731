"""
Simulation configuration and intercept calibration.

A ``SimulationConfig`` fixes every parameter of the structural model for one
grid cell. It is validated when constructed so that a malformed configuration
fails before any replication runs.
"""
from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field

import numpy as np
from numpy.polynomial.hermite_e import hermegauss
from scipy.optimize import brentq
from scipy.special import expit

from ._exceptions import ConfigurationError

DEFAULT_N              = 2000
DEFAULT_P              = 10
DEFAULT_RHO            = 0.5
DEFAULT_SIGMA          = 1.0
DEFAULT_TAU            = 1.0
DEFAULT_TARGET_TREATED = 100.0
DEFAULT_SLOPE          = 1.0 / 3.0
DEFAULT_SEED           = 20200101
DEFAULT_KS             = (1, 2, 3, 4, 5)
DEFAULT_RHOS           = tuple(round(0.1 * i, 1) for i in range(11))

_QUADRATURE_NODES = 80
_INTERCEPT_BRACKET = (-60.0, 60.0)


def calibrate_intercept(
    n: int,
    target_treated: float = DEFAULT_TARGET_TREATED,
    slope: float = DEFAULT_SLOPE,
    nu: float = 0.0,
) -> float:
    """
    Solve for the propensity intercept c giving ``target_treated`` expected
    treated units among ``n``.

    The true logit is ``slope * X1 - c + nu * U`` with X1, U independent
    standard normals, so it is normal with sd ``sqrt(slope**2 + nu**2)``.
    The expected treated fraction is computed by Gauss-Hermite quadrature and
    c by Brent's method: no sampling is involved, so the result is fully
    deterministic.

    Raises
    ------
    ``ConfigurationError``
        If ``target_treated`` is not strictly between 0 and ``n``.
    """
    if n <= 0:
        raise ConfigurationError(f"Sample size n must be positive, got {n}.")
    if not 0 < target_treated < n:
        raise ConfigurationError(
            f"Expected treated count {target_treated} is impossible for n={n}: "
            f"it must lie strictly between 0 and n."
        )

    scale = math.sqrt(slope ** 2 + nu ** 2)
    nodes, weights = hermegauss(_QUADRATURE_NODES)
    weights = weights / weights.sum()

    def excess(c: float) -> float:
        return n * float(np.sum(weights * expit(scale * nodes - c))) - target_treated

    lo, hi = _INTERCEPT_BRACKET
    return float(brentq(excess, lo, hi, xtol=1e-12))


def expected_treated(n: int, intercept: float, slope: float = DEFAULT_SLOPE, nu: float = 0.0) -> float:
    """Expected number of treated units for a given intercept."""
    scale = math.sqrt(slope ** 2 + nu ** 2)
    nodes, weights = hermegauss(_QUADRATURE_NODES)
    weights = weights / weights.sum()
    return n * float(np.sum(weights * expit(scale * nodes - intercept)))


@dataclass(frozen=True)
class SimulationConfig:
    """
    Parameters of the structural model for one grid cell.

    Parameters
    ----------
    n : int
        Sample size.
    p : int
        Covariate dimension (at least 2: prognosis loads on X1 and X2).
    rho : float
        Propensity-prognosis correlation knob in [0, 1].
    k : int
        Number of controls matched to each treated unit.
    sigma : float
        Outcome noise standard deviation.
    tau : float
        True treatment effect.
    target_treated : float
        Expected number of treated units used to calibrate the intercept.
    intercept : float or None
        Propensity intercept c. Calibrated from ``target_treated`` when omitted.
    propensity_slope : float
        Coefficient on X1 in the true propensity logit.
    nu : float
        Weight of an unobserved confounder on both the propensity logit and
        the prognostic score. Zero gives the model without hidden bias.

    Attributes
    ----------
    calibrated : bool
        True when the intercept was calibrated from ``target_treated``
        rather than given.
    """

    n: int = DEFAULT_N
    p: int = DEFAULT_P
    rho: float = DEFAULT_RHO
    k: int = 1
    sigma: float = DEFAULT_SIGMA
    tau: float = DEFAULT_TAU
    target_treated: float = DEFAULT_TARGET_TREATED
    intercept: float | None = None
    propensity_slope: float = DEFAULT_SLOPE
    nu: float = 0.0
    calibrated: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.n <= 0:
            raise ConfigurationError(f"Sample size n must be positive, got {self.n}.")
        if self.p < 2:
            raise ConfigurationError(f"Covariate dimension p must be at least 2, got {self.p}.")
        if self.k < 1:
            raise ConfigurationError(f"Match ratio k must be at least 1, got {self.k}.")
        if not 0.0 <= self.rho <= 1.0:
            raise ConfigurationError(f"rho must lie in [0, 1], got {self.rho}.")
        if self.sigma < 0:
            raise ConfigurationError(f"Noise scale sigma must be non-negative, got {self.sigma}.")
        if self.intercept is None:
            c = calibrate_intercept(self.n, self.target_treated, self.propensity_slope, self.nu)
            object.__setattr__(self, "intercept", c)
            object.__setattr__(self, "calibrated", True)
        elif not math.isfinite(self.intercept):
            raise ConfigurationError(f"Intercept must be finite, got {self.intercept}.")

    @property
    def expected_treated(self) -> float:
        """Expected treated count implied by the (possibly calibrated) intercept."""
        return expected_treated(self.n, self.intercept, self.propensity_slope, self.nu)

    def replace(self, **changes) -> SimulationConfig:
        """
        Return a copy with some fields changed.

        A calibrated intercept is recalibrated for the new fields, since it
        depends on n, the target, the slope and nu. An intercept given at
        construction is kept unless ``intercept`` is among the changes.
        """
        if self.calibrated:
            changes.setdefault("intercept", None)
        return dataclasses.replace(self, **changes)
