import numpy as np
import pytest

from pilotmatch import (
    ConfigurationError, DegenerateSample, InfeasibleMatch, MahalanobisMatching, MatchingResult,
    OracleMatching, PrognosticMatching, PropensityScoreMatching, SimulationConfig,
    att_estimate, generate_data, make_estimator,
)

TRUE_TAU = 1.0


def make_dataset(seed=0, **kwargs):
    return generate_data(SimulationConfig(**kwargs), np.random.default_rng(seed))


class TestEndToEnd:
    """N=2000, p=10, rho=0.5, k=3: every method matches every treated unit to 3 controls."""

    @classmethod
    def setup_class(cls):
        cls.data = make_dataset(seed=2024, n=2000, p=10, rho=0.5, k=3, sigma=1.0, tau=TRUE_TAU)
        cls.results = {
            "propensity":  PropensityScoreMatching(k=3).fit(cls.data, rng=np.random.default_rng(1)),
            "mahalanobis": MahalanobisMatching(k=3).fit(cls.data, rng=np.random.default_rng(1)),
            "prognostic":  PrognosticMatching(k=3).fit(cls.data, rng=np.random.default_rng(1)),
        }

    @pytest.mark.parametrize("method", ["propensity", "mahalanobis", "prognostic"])
    def test_returns_matching_result(self, method):
        assert isinstance(self.results[method], MatchingResult)
        assert self.results[method].method == method

    @pytest.mark.parametrize("method", ["propensity", "mahalanobis", "prognostic"])
    def test_three_distinct_controls_per_treated_unit(self, method):
        matching = self.results[method].matching
        assert matching.n_sets == self.data.n_treated
        controls = matching.control_ids
        assert controls.size == 3 * self.data.n_treated
        assert len(np.unique(controls)) == controls.size
        assert set(controls.ravel()) <= set(self.data.control_ids)

    @pytest.mark.parametrize("method", ["propensity", "mahalanobis", "prognostic"])
    def test_finite_estimate_and_gamma(self, method):
        result = self.results[method]
        assert np.isfinite(result.effect)
        assert np.isfinite(result.gamma)
        assert result.gamma >= 1.0

    @pytest.mark.parametrize("method", ["propensity", "mahalanobis", "prognostic"])
    def test_estimate_near_true_effect(self, method):
        assert abs(self.results[method].effect - TRUE_TAU) < 0.6

    def test_prognostic_excludes_pilot_controls(self):
        result = self.results["prognostic"]
        assert result.analysis_size == len(self.data) - self.data.n_treated

    def test_effect_matches_att_estimate(self):
        result = self.results["mahalanobis"]
        assert result.effect == pytest.approx(att_estimate(result.matching, self.data))

    def test_to_row(self):
        row = self.results["propensity"].to_row(diagnostics=True)
        for col in ["method", "k", "estimate", "gamma", "propensity_distance", "prognostic_distance"]:
            assert col in row
        assert row["k"] == 3

    def test_summary(self):
        summary = self.results["prognostic"].summary()
        assert "ATT" in summary
        assert "prognostic" in summary
        assert repr(self.results["prognostic"]) == summary

    def test_assumptions_listed(self):
        names = [a.name for a in self.results["propensity"].assumptions]
        assert any("Propensity model" in n for n in names)


class TestDeterminism:
    def test_refit_gives_same_matching(self):
        data = make_dataset(seed=7, n=800, target_treated=40)
        a = PrognosticMatching(k=2).fit(data, rng=np.random.default_rng(3))
        b = PrognosticMatching(k=2).fit(data, rng=np.random.default_rng(3))
        assert a.matching.as_dict() == b.matching.as_dict()
        assert a.effect == b.effect


class TestEstimatorFailures:
    def test_too_many_treated_is_infeasible(self):
        data = make_dataset(seed=0, n=2000, target_treated=400)
        with pytest.raises(InfeasibleMatch):
            MahalanobisMatching(k=5).fit(data)

    def test_no_treated_is_degenerate(self):
        data = make_dataset(seed=0, n=200, intercept=60.0)
        for estimator in [PropensityScoreMatching(), MahalanobisMatching(), PrognosticMatching()]:
            with pytest.raises(DegenerateSample):
                estimator.fit(data)

    def test_k_below_one_raises(self):
        with pytest.raises(ValueError, match="ratio"):
            MahalanobisMatching(k=0)

    def test_unknown_method_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown method"):
            make_estimator("nearest")

    def test_unknown_oracle_score_raises(self):
        with pytest.raises(ValueError, match="oracle score"):
            OracleMatching(score="outcome")


class TestMakeEstimator:
    @pytest.mark.parametrize("method,cls", [
        ("propensity", PropensityScoreMatching),
        ("mahalanobis", MahalanobisMatching),
        ("prognostic", PrognosticMatching),
        ("oracle_joint", OracleMatching),
    ])
    def test_builds_named_estimator(self, method, cls):
        estimator = make_estimator(method, k=2)
        assert isinstance(estimator, cls)
        assert estimator.k == 2

    def test_passes_options(self):
        estimator = make_estimator("prognostic", k=1, caliper=0.5)
        assert "caliper=0.5" in repr(estimator)


class TestOracleUnbiased:
    """With rho = 0 and oracle propensity matching, the ATT estimate is unbiased."""

    def test_mean_estimate_close_to_tau(self):
        config = SimulationConfig(n=2000, p=10, rho=0.0, k=1, tau=TRUE_TAU)
        rng = np.random.default_rng(99)
        estimator = OracleMatching(k=1, score="propensity")
        estimates = [estimator.fit(generate_data(config, rng)).effect for _ in range(300)]
        assert abs(np.mean(estimates) - TRUE_TAU) < 0.05

    def test_oracle_prognostic_balances_prognosis(self):
        data = make_dataset(seed=3, rho=0.5)
        oracle = OracleMatching(k=1, score="prognostic").fit(data)
        mahal = MahalanobisMatching(k=1).fit(data)
        assert oracle.prognostic_distance < mahal.prognostic_distance


class TestHiddenBias:
    """A stronger unobserved confounder pushes both the estimate and Gamma upwards."""

    NUS = (0.0, 0.5, 1.0, 1.5)

    @classmethod
    def setup_class(cls):
        from pilotmatch import simulate
        base = SimulationConfig(n=2000, p=10, rho=0.5, k=1)
        cls.tables = [
            simulate(base.replace(nu=nu), n_reps=10, methods=["mahalanobis"], seed=8).table
            for nu in cls.NUS
        ]

    def test_estimate_grows_with_confounder_weight(self):
        means = [t["estimate"].mean() for t in self.tables]
        assert means[-1] > means[0]

    def test_gamma_non_decreasing_in_confounder_weight(self):
        means = [t["gamma"].mean() for t in self.tables]
        assert all(b >= a for a, b in zip(means, means[1:]))
        assert means[-1] > means[0]


class TestPrognosticPropensityFit:
    def test_propensity_fitted_on_every_unit(self, monkeypatch):
        import pilotmatch.estimators.prognostic as prognostic

        fitted_sizes = []
        original = prognostic.fit_propensity

        def recording_fit(dataset):
            score = original(dataset)
            fitted_sizes.append(int(score.statsmodels_result.nobs))
            return score

        monkeypatch.setattr(prognostic, "fit_propensity", recording_fit)
        data = make_dataset(seed=12)
        result = PrognosticMatching(k=1).fit(data, rng=np.random.default_rng(0))
        assert fitted_sizes == [len(data)]
        assert result.analysis_size < len(data)
