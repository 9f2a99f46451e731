from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .._exceptions import DegenerateSample
from ..dgp import Dataset
from ..distances import DistanceSpec, match_dataset
from ..matching import Matching
from ..sensitivity import DEFAULT_ALPHA, sensitivity_bound, sensitivity_value

_DEFAULT_SEED = 42


@dataclass(frozen=True)
class Assumption:
    """
    A modelling assumption behind a matching estimator, with a flag saying
    whether it can be checked in the data.
    """

    name: str
    testable: bool

    def fmt_tag(self) -> str:
        """Fixed-width bracketed testability label for summary output."""
        return "[  testable  ]" if self.testable else "[ untestable ]"


COMMON_ASSUMPTIONS: list[Assumption] = [
    Assumption("Conditional independence: no unobserved confounders given the matching variables", testable=False),
    Assumption("Common support: enough comparable controls for every treated unit", testable=True),
    Assumption("Stable Unit Treatment Value Assumption (SUTVA)", testable=False),
]


# ── Helpers ────────────────────────────────────────────────────────────────────

def matched_outcomes(matching: Matching, dataset: Dataset) -> tuple[np.ndarray, np.ndarray]:
    """Treated outcomes, shape (n_sets,), and control outcomes, shape (n_sets, k)."""
    return dataset.outcome_of(matching.treated_ids), dataset.outcome_of(matching.control_ids)


def att_estimate(matching: Matching, dataset: Dataset) -> float:
    """
    ATT: mean over matched sets of the treated outcome minus the mean of its
    k control outcomes.
    """
    if matching.n_sets == 0:
        raise DegenerateSample("Cannot estimate the ATT from an empty matching.")
    treated, controls = matched_outcomes(matching, dataset)
    return float(np.mean(treated - controls.mean(axis=1)))


def _mean_gap(treated: np.ndarray, controls: np.ndarray) -> float:
    return float(np.mean(np.abs(treated - controls.mean(axis=1))))


# ── Result ─────────────────────────────────────────────────────────────────────

class MatchingResult:
    """
    The result of one matching estimator applied to one dataset.

    Holds the ATT estimate, the naive difference in means for comparison, the
    sensitivity value Gamma and the matching itself. The true-score gaps
    (``propensity_distance``, ``prognostic_distance``) are computed from the
    generator's latent scores and are for diagnostics only.
    """

    def __init__(
        self,
        method: str,
        matching: Matching,
        dataset: Dataset,
        analysis: Dataset,
        alpha: float,
        assumptions: list[Assumption],
    ) -> None:
        self._method = method
        self._matching = matching
        self._dataset = dataset
        self._analysis = analysis
        self._alpha = alpha
        self._assumptions = assumptions

        self._att = att_estimate(matching, analysis)
        treated, controls = matched_outcomes(matching, analysis)
        self._gamma = sensitivity_value(treated, controls, alpha=alpha)
        self._pvalue = sensitivity_bound(treated, controls, gamma=1.0)

        t_ids, c_ids = matching.treated_ids, matching.control_ids
        self._ps_gap = _mean_gap(analysis.propensity_of(t_ids), analysis.propensity_of(c_ids))
        self._pg_gap = _mean_gap(analysis.prognosis_of(t_ids), analysis.prognosis_of(c_ids))

    @property
    def method(self) -> str:
        return self._method

    @property
    def effect(self) -> float:
        """ATT: average treatment effect on the treated."""
        return self._att

    @property
    def unadjusted_effect(self) -> float:
        """Naive mean difference Y|T=1 minus Y|T=0 on the full dataset, no matching."""
        y, t = self._dataset.outcome, self._dataset.treatment
        return float(y[t == 1].mean() - y[t == 0].mean())

    @property
    def gamma(self) -> float:
        """Sensitivity value: largest hidden bias Gamma the result withstands at level alpha."""
        return self._gamma

    @property
    def pvalue(self) -> float:
        """One-sided randomization p-value (Gamma = 1) of the M-statistic."""
        return self._pvalue

    @property
    def alpha(self) -> float:
        return self._alpha

    @property
    def matching(self) -> Matching:
        return self._matching

    @property
    def k(self) -> int:
        return self._matching.k

    @property
    def n_treated(self) -> int:
        """Treated units in the generated dataset."""
        return self._dataset.n_treated

    @property
    def n_matched(self) -> int:
        """Number of matched sets."""
        return self._matching.n_sets

    @property
    def analysis_size(self) -> int:
        """Units available to the final match (smaller than the dataset when a pilot was drawn)."""
        return len(self._analysis)

    @property
    def propensity_distance(self) -> float:
        """Mean absolute gap in true propensity logit between treated units and their controls."""
        return self._ps_gap

    @property
    def prognostic_distance(self) -> float:
        """Mean absolute gap in true prognostic score between treated units and their controls."""
        return self._pg_gap

    @property
    def assumptions(self) -> list[Assumption]:
        return list(self._assumptions)

    def to_row(self, diagnostics: bool = False) -> dict:
        """One result-table row (without the replication and configuration columns)."""
        row = {
            "method":    self._method,
            "k":         self.k,
            "estimate":  self._att,
            "gamma":     self._gamma,
            "n_treated": self.n_treated,
            "n_matched": self.n_matched,
        }
        if diagnostics:
            row["propensity_distance"] = self._ps_gap
            row["prognostic_distance"] = self._pg_gap
        return row

    def summary(self) -> str:
        lines = [
            "",
            f"Matching estimate: {self._method} (1:{self.k})",
            f"  Estimand: ATT (average treatment effect on the treated)",
            "─" * 54,
            f"  ATT estimate         : {self.effect:>10.4f}",
            f"  Unadjusted estimate  : {self.unadjusted_effect:>10.4f}  (naive mean difference)",
            f"  p-value (Gamma = 1)  : {self.pvalue:>10.4f}",
            f"  Sensitivity Gamma    : {self.gamma:>10.4f}  (alpha = {self._alpha})",
            "",
            f"  Matched sets         : {self.n_matched:>10d}  of {self.n_treated} treated",
            f"  Analysis sample      : {self.analysis_size:>10d}  of {len(self._dataset)} units",
            f"  Total distance       : {self._matching.total_distance:>10.4f}",
            "",
            "  Assumptions",
            "  " + "┄" * 48,
        ]
        for a in self._assumptions:
            lines.append(f"  {a.fmt_tag()}  {a.name}")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


# ── Estimator base ─────────────────────────────────────────────────────────────

class MatchingEstimator:
    """
    Base class for the matching estimators.

    Subclasses implement ``_prepare()``, returning the analysis sample and the
    distance specification to match it on. ``fit()`` then runs the optimal
    1:k match and builds the result.
    """

    method: str = ""
    assumptions: list[Assumption] = COMMON_ASSUMPTIONS

    def __init__(self, k: int = 1, alpha: float = DEFAULT_ALPHA) -> None:
        if k < 1:
            raise ValueError(f"Match ratio k must be at least 1, got {k}.")
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must lie in (0, 1), got {alpha}.")
        self._k = k
        self._alpha = alpha

    @property
    def k(self) -> int:
        return self._k

    def _prepare(
        self,
        dataset: Dataset,
        rng: np.random.Generator,
    ) -> tuple[Dataset, DistanceSpec]:
        raise NotImplementedError

    def fit(self, dataset: Dataset, rng: np.random.Generator | None = None) -> MatchingResult:
        """
        Match the dataset and estimate the ATT and its sensitivity value.

        Parameters
        ----------
        dataset : Dataset
            One simulated sample.
        rng : np.random.Generator, optional
            Random source for any sampling the method does. Defaults to a
            generator with a fixed seed.

        Raises
        ------
        ``DegenerateSample``
            No treated or no control units, or fewer than 2 matched sets.
        ``InfeasibleMatch``
            Too few controls for the match ratio.
        ``ModelFitFailure``
            A working model could not be fitted.
        """
        if dataset.n_treated == 0 or dataset.n_control == 0:
            raise DegenerateSample(
                f"Dataset has {dataset.n_treated} treated and {dataset.n_control} "
                f"control units; both groups are required."
            )
        if rng is None:
            rng = np.random.default_rng(_DEFAULT_SEED)

        analysis, spec = self._prepare(dataset, rng)
        matching = match_dataset(analysis, spec, k=self._k)
        return MatchingResult(
            method=self.method,
            matching=matching,
            dataset=dataset,
            analysis=analysis,
            alpha=self._alpha,
            assumptions=list(self.assumptions),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(k={self._k})"

