"""
Replication harness.

Runs independent replications of generate → match → estimate for every
requested method, one grid cell at a time. Every method in a replication
sees the same dataset. Recoverable failures (``MatchingError``) are recorded
as rows with a null estimate and gamma, and the sweep carries on.

Randomness is derived from the grid coordinates: the dataset of replication r
in cell (rho, k) is drawn from a generator seeded with (seed, rho, k, r), and
each method gets its own generator keyed by its name. Cells can therefore run
in separate processes, in any order, and still reproduce one another.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd
from tqdm import tqdm

from ._exceptions import ConfigurationError, MatchingError
from .config import (
    DEFAULT_KS, DEFAULT_N, DEFAULT_P, DEFAULT_RHOS, DEFAULT_SEED, DEFAULT_SIGMA,
    DEFAULT_TARGET_TREATED, DEFAULT_TAU, SimulationConfig,
)
from .dgp import generate_data
from .estimators import METHODS, ORACLE_METHODS, make_estimator

logger = logging.getLogger(__name__)

RESULT_COLUMNS     = ["method", "k", "rho", "estimate", "gamma", "replication", "n_treated", "n_matched", "error"]
DIAGNOSTIC_COLUMNS = ["propensity_distance", "prognostic_distance"]

_KNOWN_METHODS = METHODS + ORACLE_METHODS


def _rho_code(rho: float) -> int:
    return int(round(rho * 1000))


def replication_rng(seed: int, rho: float, k: int, replication: int, stream: int = 0) -> np.random.Generator:
    """
    Independent generator for one replication of one grid cell.

    ``stream`` 0 is the data stream; methods use ``1 + their index`` among the
    known methods, so adding a method to a run never changes another
    method's draws.
    """
    if seed < 0:
        raise ConfigurationError(f"Seed must be non-negative, got {seed}.")
    return np.random.default_rng([seed, _rho_code(rho), k, replication, stream])


def _validate_methods(methods) -> tuple[str, ...]:
    methods = tuple(methods)
    if not methods:
        raise ConfigurationError("At least one method is required.")
    unknown = [m for m in methods if m not in _KNOWN_METHODS]
    if unknown:
        raise ConfigurationError(
            f"Unknown method(s) {unknown}. Choose from {list(_KNOWN_METHODS)}."
        )
    if len(set(methods)) != len(methods):
        raise ConfigurationError(f"Duplicate methods in {list(methods)}.")
    return methods


def run_replication(
    config: SimulationConfig,
    replication: int,
    methods=METHODS,
    seed: int = DEFAULT_SEED,
    diagnostics: bool = False,
    estimator_options: dict | None = None,
) -> list[dict]:
    """
    One replication: generate a dataset and run every method on it.

    Returns one row per method. A method that raises ``MatchingError`` gets a
    row with null ``estimate`` and ``gamma`` and the exception class in
    ``error``; other exceptions propagate.

    ``estimator_options`` maps a method name to extra keyword arguments for
    its estimator, e.g. ``{"prognostic": {"caliper": 0.5}}``.
    """
    estimator_options = estimator_options or {}
    dataset = generate_data(config, replication_rng(seed, config.rho, config.k, replication))

    rows = []
    for method in methods:
        row = {
            "method": method,
            "k": config.k,
            "rho": config.rho,
            "replication": replication,
            "n_treated": dataset.n_treated,
        }
        estimator = make_estimator(method, k=config.k, **estimator_options.get(method, {}))
        method_rng = replication_rng(
            seed, config.rho, config.k, replication, stream=1 + _KNOWN_METHODS.index(method)
        )
        try:
            result = estimator.fit(dataset, rng=method_rng)
        except MatchingError as exc:
            logger.debug(
                "Replication %d (rho=%s, k=%d) %s failed: %s: %s",
                replication, config.rho, config.k, method, type(exc).__name__, exc,
            )
            row.update(estimate=np.nan, gamma=np.nan, n_matched=0, error=type(exc).__name__)
            if diagnostics:
                row.update({c: np.nan for c in DIAGNOSTIC_COLUMNS})
        else:
            row.update(result.to_row(diagnostics=diagnostics))
            row["error"] = None
        rows.append(row)
    return rows


def _to_table(rows: list[dict], diagnostics: bool) -> pd.DataFrame:
    columns = RESULT_COLUMNS + (DIAGNOSTIC_COLUMNS if diagnostics else [])
    table = pd.DataFrame(rows, columns=columns)
    return table.astype({"k": int, "replication": int, "n_treated": int, "n_matched": int})


def _log_failures(rho: float, k: int, n_failed: int, n_rows: int) -> None:
    if n_failed:
        logger.warning("Cell rho=%s k=%d: %d of %d method runs failed", rho, k, n_failed, n_rows)
    else:
        logger.info("Cell rho=%s k=%d: all %d method runs succeeded", rho, k, n_rows)


# ── Results ────────────────────────────────────────────────────────────────────

class SimulationResult:
    """
    The result table of one or more grid cells.

    ``table`` returns a copy, so reporting code can reshape it freely without
    touching the harness's data. ``failures`` counts failed method runs per
    (rho, k) cell.
    """

    def __init__(
        self,
        table: pd.DataFrame,
        failures: dict[tuple[float, int], int],
        tau: float = DEFAULT_TAU,
    ) -> None:
        self._table = table.reset_index(drop=True)
        self._failures = dict(failures)
        self._tau = tau

    @classmethod
    def concat(cls, results: list[SimulationResult]) -> SimulationResult:
        if not results:
            raise ValueError("Nothing to concatenate.")
        taus = {r.tau for r in results}
        if len(taus) > 1:
            raise ValueError(f"Cannot combine results with different true effects: {sorted(taus)}")
        failures: dict[tuple[float, int], int] = {}
        for r in results:
            for cell, n in r.failures.items():
                failures[cell] = failures.get(cell, 0) + n
        table = pd.concat([r._table for r in results], ignore_index=True)
        return cls(table, failures, tau=results[0].tau)

    @classmethod
    def from_csv(cls, path, tau: float = DEFAULT_TAU) -> SimulationResult:
        """Load a result file written by ``to_csv()``. Failure counts are rebuilt from the ``error`` column."""
        table = pd.read_csv(path)
        missing = [c for c in ["method", "k", "rho", "estimate", "gamma"] if c not in table.columns]
        if missing:
            raise ValueError(f"Result file {path} is missing columns {missing}.")
        failures: dict[tuple[float, int], int] = {}
        if "error" in table.columns:
            failed = table["error"].notna()
        else:
            failed = table["estimate"].isna()
        for (rho, k), group in table.groupby(["rho", "k"]):
            failures[(float(rho), int(k))] = int(failed[group.index].sum())
        return cls(table, failures, tau=tau)

    @property
    def table(self) -> pd.DataFrame:
        """One row per (method, replication), as a fresh DataFrame."""
        return self._table.copy()

    @property
    def failures(self) -> dict[tuple[float, int], int]:
        return dict(self._failures)

    @property
    def n_failures(self) -> int:
        return sum(self._failures.values())

    @property
    def tau(self) -> float:
        return self._tau

    def to_csv(self, path) -> Path:
        """Write the table as CSV. Nulls are written as empty fields."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._table.to_csv(path, index=False, na_rep="")
        return path

    def summary(self) -> pd.DataFrame:
        """
        Aggregate by (method, k, rho): replications, failures, mean estimate,
        Monte Carlo bias, SD and RMSE against the true effect, and the mean
        and median sensitivity value.
        """
        tau = self._tau
        df = self._table.copy()
        df["failed"] = df["estimate"].isna()
        df["sq_err"] = (df["estimate"] - tau) ** 2
        agg = df.groupby(["method", "k", "rho"]).agg(
            n_reps=("replication", "count"),
            n_failed=("failed", "sum"),
            mean_estimate=("estimate", "mean"),
            mc_sd=("estimate", "std"),
            mse=("sq_err", "mean"),
            mean_gamma=("gamma", "mean"),
            median_gamma=("gamma", "median"),
        ).reset_index()
        agg["bias"] = agg["mean_estimate"] - tau
        agg["rmse"] = np.sqrt(agg.pop("mse"))
        agg["n_failed"] = agg["n_failed"].astype(int)
        return agg[[
            "method", "k", "rho", "n_reps", "n_failed",
            "mean_estimate", "bias", "mc_sd", "rmse", "mean_gamma", "median_gamma",
        ]]

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"SimulationResult(rows={len(self)}, failures={self.n_failures})"


# ── Entry points ───────────────────────────────────────────────────────────────

def simulate(
    config: SimulationConfig,
    n_reps: int,
    methods=METHODS,
    seed: int = DEFAULT_SEED,
    diagnostics: bool = False,
    progress: bool = False,
    estimator_options: dict | None = None,
) -> SimulationResult:
    """
    Run ``n_reps`` replications of one grid cell (one ``config``).

    Raises
    ------
    ``ConfigurationError``
        For an unknown method, a non-positive ``n_reps`` or a negative seed,
        before any replication runs.
    """
    methods = _validate_methods(methods)
    if n_reps <= 0:
        raise ConfigurationError(f"Number of replications must be positive, got {n_reps}.")
    if seed < 0:
        raise ConfigurationError(f"Seed must be non-negative, got {seed}.")

    rows: list[dict] = []
    desc = f"rho={config.rho} k={config.k}"
    for rep in tqdm(range(n_reps), desc=desc, disable=not progress):
        rows.extend(run_replication(
            config, rep, methods=methods, seed=seed,
            diagnostics=diagnostics, estimator_options=estimator_options,
        ))

    table = _to_table(rows, diagnostics)
    n_failed = int(table["error"].notna().sum())
    _log_failures(config.rho, config.k, n_failed, len(table))
    return SimulationResult(table, {(config.rho, config.k): n_failed}, tau=config.tau)


@dataclass(frozen=True)
class GridSpec:
    """
    A grid of cells: the cross product of ``rhos`` and ``ks`` with every
    other model parameter held fixed.
    """

    rhos: tuple[float, ...] = DEFAULT_RHOS
    ks: tuple[int, ...] = DEFAULT_KS
    n: int = DEFAULT_N
    p: int = DEFAULT_P
    sigma: float = DEFAULT_SIGMA
    tau: float = DEFAULT_TAU
    target_treated: float = DEFAULT_TARGET_TREATED
    nu: float = 0.0
    _configs: tuple[SimulationConfig, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rhos", tuple(float(r) for r in self.rhos))
        object.__setattr__(self, "ks", tuple(int(k) for k in self.ks))
        if not self.rhos or not self.ks:
            raise ConfigurationError("Grid needs at least one rho and one k.")
        # Building every cell up front validates the whole grid before any run.
        configs = tuple(
            SimulationConfig(
                n=self.n, p=self.p, rho=rho, k=k, sigma=self.sigma, tau=self.tau,
                target_treated=self.target_treated, nu=self.nu,
            )
            for rho in self.rhos
            for k in self.ks
        )
        object.__setattr__(self, "_configs", configs)

    def configs(self) -> list[SimulationConfig]:
        """One configuration per cell, rho-major."""
        return list(self._configs)

    def __len__(self) -> int:
        return len(self._configs)


def run_grid(
    grid: GridSpec,
    n_reps: int,
    methods=METHODS,
    seed: int = DEFAULT_SEED,
    diagnostics: bool = False,
    progress: bool = False,
    estimator_options: dict | None = None,
) -> SimulationResult:
    """Run every cell of ``grid`` in turn and combine the result tables."""
    methods = _validate_methods(methods)
    results = [
        simulate(
            config, n_reps, methods=methods, seed=seed, diagnostics=diagnostics,
            progress=progress, estimator_options=estimator_options,
        )
        for config in grid.configs()
    ]
    combined = SimulationResult.concat(results)
    logger.info("Grid of %d cells finished: %d failed method runs", len(grid), combined.n_failures)
    return combined


def cell_filename(rho: float, k: int) -> str:
    return f"sim_rho{rho:.1f}_k{k}.csv"


def run_cell_to_file(
    config: SimulationConfig,
    n_reps: int,
    output_dir,
    methods=METHODS,
    seed: int = DEFAULT_SEED,
    diagnostics: bool = False,
    progress: bool = False,
    skip_existing: bool = False,
    estimator_options: dict | None = None,
) -> Path | None:
    """
    Run one grid cell and write its result file into ``output_dir``.

    With ``skip_existing``, a cell whose file already exists is not rerun and
    ``None`` is returned, which lets an interrupted sweep resume.
    """
    path = Path(output_dir) / cell_filename(config.rho, config.k)
    if skip_existing and path.exists():
        logger.info("Skipping rho=%s k=%d: %s exists", config.rho, config.k, path)
        return None
    result = simulate(
        config, n_reps, methods=methods, seed=seed, diagnostics=diagnostics,
        progress=progress, estimator_options=estimator_options,
    )
    result.to_csv(path)
    logger.info("Wrote %d rows to %s", len(result), path)
    return path
