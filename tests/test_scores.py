import warnings
from types import SimpleNamespace

import numpy as np
import pytest
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from pilotmatch import (
    Dataset, DegenerateSample, ModelFitFailure, PilotSplit, SimulationConfig,
    fit_prognostic, fit_propensity, generate_data, pilot_split,
)
from pilotmatch.scores import _fit


def make_dataset(seed=0, **kwargs):
    return generate_data(SimulationConfig(**kwargs), np.random.default_rng(seed))


def dataset_from_arrays(x, t, y):
    n = len(t)
    return Dataset(
        ids=np.arange(n),
        covariates=np.asarray(x, dtype=float),
        treatment=np.asarray(t),
        outcome=np.asarray(y, dtype=float),
        true_propensity=np.zeros(n),
        true_prognosis=np.zeros(n),
    )


class TestPropensityModel:
    """One large-sample fit shared by the class."""

    @classmethod
    def setup_class(cls):
        cls.config = SimulationConfig(n=20_000, p=4, target_treated=5_000)
        cls.data = generate_data(cls.config, np.random.default_rng(1))
        cls.score = fit_propensity(cls.data)

    def test_recovers_slope(self):
        assert abs(self.score.params["x1"] - 1 / 3) < 0.1

    def test_recovers_intercept(self):
        assert abs(self.score.params["Intercept"] + self.config.intercept) < 0.15

    def test_irrelevant_covariates_near_zero(self):
        assert abs(self.score.params["x3"]) < 0.1

    def test_predicts_logit_scale(self):
        pred = self.score.predict(self.data)
        assert pred.shape == (len(self.data),)
        assert np.corrcoef(pred, self.data.true_propensity)[0, 1] > 0.9

    def test_predicts_unseen_units(self):
        half = self.data.subset(self.data.ids[:10_000])
        score = fit_propensity(half)
        assert score.predict(self.data).shape == (len(self.data),)

    def test_kind(self):
        assert self.score.kind == "propensity"


class TestPropensityFailures:
    def test_only_controls_is_degenerate(self):
        data = make_dataset(seed=0, n=200, intercept=60.0)
        with pytest.raises(DegenerateSample):
            fit_propensity(data)

    def test_rank_deficient_design(self):
        rng = np.random.default_rng(0)
        x1 = rng.normal(size=300)
        x = np.column_stack([x1, x1])
        t = (rng.uniform(size=300) < 0.3).astype(int)
        with pytest.raises(ModelFitFailure, match="rank"):
            fit_propensity(dataset_from_arrays(x, t, rng.normal(size=300)))

    def test_perfect_separation(self):
        rng = np.random.default_rng(0)
        x = rng.normal(size=(300, 2))
        t = (x[:, 0] > 0).astype(int)
        with pytest.raises(ModelFitFailure):
            fit_propensity(dataset_from_arrays(x, t, rng.normal(size=300)))


class TestFitWarnings:
    def test_other_warnings_are_reissued(self):
        def fit_with_overflow():
            warnings.warn("overflow encountered in exp", RuntimeWarning)
            return SimpleNamespace(params=np.array([0.5, 1.0]))

        with pytest.warns(RuntimeWarning, match="overflow"):
            result = _fit(fit_with_overflow, "Propensity")
        assert np.allclose(result.params, [0.5, 1.0])

    def test_model_warning_becomes_fit_failure(self):
        def fit_not_converged():
            warnings.warn("Maximum Likelihood optimization failed to converge", ConvergenceWarning)
            return SimpleNamespace(params=np.array([0.5]))

        with pytest.raises(ModelFitFailure, match="converge"):
            _fit(fit_not_converged, "Propensity")


class TestPrognosticModel:
    @classmethod
    def setup_class(cls):
        cls.data = make_dataset(seed=2, rho=0.6)
        cls.score = fit_prognostic(cls.data.controls())

    def test_recovers_prognostic_coefficients(self):
        assert abs(self.score.params["x1"] - 0.6) < 0.1
        assert abs(self.score.params["x2"] - 0.8) < 0.1

    def test_predicts_treated_units(self):
        pred = self.score.predict(self.data)
        assert np.corrcoef(pred, self.data.true_prognosis)[0, 1] > 0.95

    def test_refuses_treated_units(self):
        with pytest.raises(ValueError, match="control units only"):
            fit_prognostic(self.data)

    def test_too_few_controls(self):
        few = self.data.subset(self.data.control_ids[:8])
        with pytest.raises(ModelFitFailure, match="at least"):
            fit_prognostic(few)

    def test_dimension_mismatch_on_predict(self):
        other = make_dataset(seed=3, p=3)
        with pytest.raises(ValueError, match="covariates"):
            self.score.predict(other)


class TestPilotSplit:
    @classmethod
    def setup_class(cls):
        cls.data = make_dataset(seed=5)
        cls.split = pilot_split(cls.data, np.random.default_rng(9))

    def test_returns_pilot_split(self):
        assert isinstance(self.split, PilotSplit)

    def test_one_pilot_control_per_treated_unit(self):
        assert len(self.split.pilot) == self.data.n_treated
        assert self.split.pilot.n_treated == 0

    def test_pilot_and_analysis_partition_the_sample(self):
        pilot, analysis = set(self.split.pilot.ids), set(self.split.analysis.ids)
        assert not pilot & analysis
        assert pilot | analysis == set(self.data.ids)

    def test_analysis_keeps_every_treated_unit(self):
        assert self.split.analysis.n_treated == self.data.n_treated

    def test_same_rng_seed_gives_same_pilot(self):
        again = pilot_split(self.data, np.random.default_rng(9))
        assert np.array_equal(again.pilot_ids, self.split.pilot_ids)

    def test_pilot_infeasible_without_enough_controls(self):
        from pilotmatch import InfeasibleMatch
        data = make_dataset(seed=0, n=300, target_treated=150)
        with pytest.raises(InfeasibleMatch):
            pilot_split(data, np.random.default_rng(0))

    def test_ratio_below_one_raises(self):
        with pytest.raises(ValueError, match="ratio"):
            pilot_split(self.data, np.random.default_rng(0), ratio=0)
