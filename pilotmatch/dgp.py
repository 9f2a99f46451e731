"""
Structural data-generating process.

Units have standard normal covariates, a logistic treatment assignment driven
by X1, and an outcome whose prognostic part mixes X1 and X2 according to rho::

    phi = slope * X1 - c + nu * U
    T   ~ Bernoulli(expit(phi))
    psi = rho * X1 + sqrt(1 - rho^2) * X2 + nu * U
    Y   = tau * T + psi + eps,   eps ~ N(0, sigma^2)

U is an unobserved confounder, absent from the covariates handed to the
estimators. The true scores ``phi`` and ``psi`` are kept on the dataset for
diagnostics only.
"""
from __future__ import annotations

import numpy as np
import pandas as pd
from scipy.special import expit

from .config import SimulationConfig


class Dataset:
    """
    An immutable simulated sample.

    Every unit keeps the id it was generated with, so subsets taken for the
    pilot design still refer to the same units. Array properties return
    copies.
    """

    def __init__(
        self,
        ids: np.ndarray,
        covariates: np.ndarray,
        treatment: np.ndarray,
        outcome: np.ndarray,
        true_propensity: np.ndarray,
        true_prognosis: np.ndarray,
        config: SimulationConfig | None = None,
    ) -> None:
        n = len(ids)
        if covariates.ndim != 2 or covariates.shape[0] != n:
            raise ValueError(
                f"Covariate matrix must have one row per unit: got shape "
                f"{covariates.shape} for {n} units."
            )
        for label, arr in [
            ("treatment", treatment),
            ("outcome", outcome),
            ("true_propensity", true_propensity),
            ("true_prognosis", true_prognosis),
        ]:
            if arr.shape != (n,):
                raise ValueError(f"'{label}' must have shape ({n},), got {arr.shape}.")
        if not set(np.unique(treatment)) <= {0, 1}:
            raise ValueError("Treatment indicator must be binary (0/1).")

        self._ids = np.array(ids, dtype=np.int64, copy=True)
        self._x = np.array(covariates, dtype=float, copy=True)
        self._t = np.array(treatment, dtype=np.int8, copy=True)
        self._y = np.array(outcome, dtype=float, copy=True)
        self._phi = np.array(true_propensity, dtype=float, copy=True)
        self._psi = np.array(true_prognosis, dtype=float, copy=True)
        self._config = config
        self._position = {int(uid): i for i, uid in enumerate(self._ids)}
        if len(self._position) != n:
            raise ValueError("Unit ids must be unique.")

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> SimulationConfig | None:
        """Configuration the sample was generated from, if any."""
        return self._config

    @property
    def ids(self) -> np.ndarray:
        return self._ids.copy()

    @property
    def covariates(self) -> np.ndarray:
        """Observed covariate matrix, shape (n, p)."""
        return self._x.copy()

    @property
    def treatment(self) -> np.ndarray:
        return self._t.copy()

    @property
    def outcome(self) -> np.ndarray:
        return self._y.copy()

    @property
    def true_propensity(self) -> np.ndarray:
        """True propensity logit phi. Diagnostics only."""
        return self._phi.copy()

    @property
    def true_prognosis(self) -> np.ndarray:
        """True prognostic score psi. Diagnostics only."""
        return self._psi.copy()

    @property
    def p(self) -> int:
        return self._x.shape[1]

    @property
    def treated_ids(self) -> np.ndarray:
        return self._ids[self._t == 1]

    @property
    def control_ids(self) -> np.ndarray:
        return self._ids[self._t == 0]

    @property
    def n_treated(self) -> int:
        return int(np.sum(self._t == 1))

    @property
    def n_control(self) -> int:
        return int(np.sum(self._t == 0))

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, uid) -> bool:
        return int(uid) in self._position

    def positions(self, ids) -> np.ndarray:
        """Row positions of the given unit ids. Raises ``KeyError`` for unknown ids."""
        return np.array([self._position[int(u)] for u in np.asarray(ids).ravel()], dtype=np.int64)

    def outcome_of(self, ids) -> np.ndarray:
        """Outcomes for the given unit ids, preserving the shape of ``ids``."""
        ids = np.asarray(ids)
        return self._y[self.positions(ids)].reshape(ids.shape)

    def propensity_of(self, ids) -> np.ndarray:
        ids = np.asarray(ids)
        return self._phi[self.positions(ids)].reshape(ids.shape)

    def prognosis_of(self, ids) -> np.ndarray:
        ids = np.asarray(ids)
        return self._psi[self.positions(ids)].reshape(ids.shape)

    # ── Derived datasets ──────────────────────────────────────────────────────

    def subset(self, ids) -> Dataset:
        """New dataset holding only the given units, in the order given."""
        pos = self.positions(ids)
        return Dataset(
            ids=self._ids[pos],
            covariates=self._x[pos],
            treatment=self._t[pos],
            outcome=self._y[pos],
            true_propensity=self._phi[pos],
            true_prognosis=self._psi[pos],
            config=self._config,
        )

    def drop(self, ids) -> Dataset:
        """New dataset without the given units. Original order is preserved."""
        removed = set(int(u) for u in np.asarray(ids).ravel())
        unknown = removed - set(self._position)
        if unknown:
            raise KeyError(f"Unknown unit ids: {sorted(unknown)[:5]}")
        keep = [int(u) for u in self._ids if int(u) not in removed]
        return self.subset(keep)

    def controls(self) -> Dataset:
        return self.subset(self.control_ids)

    def covariate_names(self) -> list[str]:
        return [f"x{j + 1}" for j in range(self.p)]

    def to_frame(self, include_truth: bool = False) -> pd.DataFrame:
        """
        Return the sample as a DataFrame with columns ``x1..xp, t, y``, indexed
        by unit id. ``include_truth`` adds the latent ``phi`` and ``psi``.
        """
        frame = pd.DataFrame(self._x, columns=self.covariate_names(), index=self._ids)
        frame.index.name = "id"
        frame["t"] = self._t.astype(int)
        frame["y"] = self._y
        if include_truth:
            frame["phi"] = self._phi
            frame["psi"] = self._psi
        return frame

    def __repr__(self) -> str:
        return f"Dataset(n={len(self)}, p={self.p}, treated={self.n_treated}, control={self.n_control})"


def generate_data(config: SimulationConfig, rng: np.random.Generator) -> Dataset:
    """
    Draw one dataset from the structural model.

    Draws happen in a fixed order (X, U, V, eps) so that the same seed and
    configuration reproduce the same dataset bit for bit. Treatment uses an
    inverse-CDF Bernoulli draw ``T = 1{V < expit(phi)}``: two configurations
    sharing a seed share their uniforms, which couples runs that differ only
    in their propensity parameters.
    """
    n, p = config.n, config.p

    x   = rng.normal(size=(n, p))
    u   = rng.normal(size=n)
    v   = rng.uniform(size=n)
    eps = rng.normal(scale=config.sigma, size=n)

    phi = config.propensity_slope * x[:, 0] - config.intercept + config.nu * u
    t   = (v < expit(phi)).astype(np.int8)
    psi = config.rho * x[:, 0] + np.sqrt(1.0 - config.rho ** 2) * x[:, 1] + config.nu * u
    y   = config.tau * t + psi + eps

    return Dataset(
        ids=np.arange(n),
        covariates=x,
        treatment=t,
        outcome=y,
        true_propensity=phi,
        true_prognosis=psi,
        config=config,
    )
