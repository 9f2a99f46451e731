import numpy as np
import pandas as pd
import pytest

from pilotmatch import Dataset, SimulationConfig, generate_data


def make_dataset(seed=0, **kwargs):
    config = SimulationConfig(**kwargs)
    return generate_data(config, np.random.default_rng(seed))


class TestReproducibility:
    def test_same_seed_gives_identical_dataset(self):
        a = make_dataset(seed=3)
        b = make_dataset(seed=3)
        assert np.array_equal(a.covariates, b.covariates)
        assert np.array_equal(a.treatment, b.treatment)
        assert np.array_equal(a.outcome, b.outcome)

    def test_different_seeds_differ(self):
        a = make_dataset(seed=3)
        b = make_dataset(seed=4)
        assert not np.array_equal(a.outcome, b.outcome)

    def test_nu_shares_covariates_for_same_seed(self):
        a = make_dataset(seed=5, nu=0.0)
        b = make_dataset(seed=5, nu=1.0)
        assert np.array_equal(a.covariates, b.covariates)


class TestStructuralModel:
    @classmethod
    def setup_class(cls):
        cls.config = SimulationConfig(rho=0.6, sigma=0.0, tau=2.0)
        cls.data = generate_data(cls.config, np.random.default_rng(1))

    def test_shapes(self):
        assert self.data.covariates.shape == (2000, 10)
        assert len(self.data) == 2000

    def test_treatment_is_binary(self):
        assert set(np.unique(self.data.treatment)) <= {0, 1}

    def test_prognostic_score_formula(self):
        x = self.data.covariates
        expected = 0.6 * x[:, 0] + np.sqrt(1 - 0.6 ** 2) * x[:, 1]
        assert np.allclose(self.data.true_prognosis, expected)

    def test_propensity_formula(self):
        x = self.data.covariates
        expected = x[:, 0] / 3 - self.config.intercept
        assert np.allclose(self.data.true_propensity, expected)

    def test_noiseless_outcome(self):
        expected = 2.0 * self.data.treatment + self.data.true_prognosis
        assert np.allclose(self.data.outcome, expected)

    def test_treated_have_higher_x1(self):
        x1 = self.data.covariates[:, 0]
        t = self.data.treatment
        assert x1[t == 1].mean() > x1[t == 0].mean()


class TestNoiseScale:
    def test_residual_sd_matches_sigma(self):
        data = make_dataset(seed=2, sigma=2.0, n=20_000)
        resid = data.outcome - data.treatment - data.true_prognosis
        assert abs(resid.std() - 2.0) < 0.05


class TestDatasetImmutability:
    @classmethod
    def setup_class(cls):
        cls.data = make_dataset(seed=8)

    def test_accessors_return_copies(self):
        y = self.data.outcome
        first = y[0]
        y[:] = 0
        assert self.data.outcome[0] == first

    def test_subset_keeps_ids(self):
        sub = self.data.subset([5, 2, 9])
        assert list(sub.ids) == [5, 2, 9]
        assert sub.outcome_of([2])[0] == self.data.outcome[2]

    def test_drop_removes_units(self):
        dropped = self.data.drop([0, 1, 2])
        assert len(dropped) == len(self.data) - 3
        assert 0 not in dropped
        assert 3 in dropped

    def test_drop_unknown_id_raises(self):
        with pytest.raises(KeyError):
            self.data.drop([10_000_000])

    def test_outcome_of_preserves_shape(self):
        ids = np.array([[0, 1], [2, 3]])
        assert self.data.outcome_of(ids).shape == (2, 2)

    def test_to_frame(self):
        frame = self.data.to_frame()
        assert isinstance(frame, pd.DataFrame)
        assert list(frame.columns) == [f"x{j}" for j in range(1, 11)] + ["t", "y"]
        assert "phi" in self.data.to_frame(include_truth=True).columns

    def test_group_ids_partition_units(self):
        treated, control = self.data.treated_ids, self.data.control_ids
        assert len(treated) + len(control) == len(self.data)
        assert not set(treated) & set(control)

    def test_caller_arrays_are_copied(self):
        x = np.zeros((4, 2))
        y = np.ones(4)
        data = Dataset(
            ids=np.arange(4), covariates=x, treatment=np.array([1, 0, 0, 0]), outcome=y,
            true_propensity=np.zeros(4), true_prognosis=np.zeros(4),
        )
        x[:] = 5.0
        y[:] = 5.0
        assert np.all(data.covariates == 0.0)
        assert np.all(data.outcome == 1.0)


class TestDatasetValidation:
    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError, match="outcome"):
            Dataset(
                ids=np.arange(3),
                covariates=np.zeros((3, 2)),
                treatment=np.array([0, 1, 0]),
                outcome=np.zeros(4),
                true_propensity=np.zeros(3),
                true_prognosis=np.zeros(3),
            )

    def test_non_binary_treatment_raises(self):
        with pytest.raises(ValueError, match="binary"):
            Dataset(
                ids=np.arange(3),
                covariates=np.zeros((3, 2)),
                treatment=np.array([0, 2, 0]),
                outcome=np.zeros(3),
                true_propensity=np.zeros(3),
                true_prognosis=np.zeros(3),
            )

    def test_zero_treated_dataset_is_generated(self):
        # An extreme intercept is valid configuration; the realized sample is just empty of treated units.
        data = make_dataset(seed=0, n=200, intercept=60.0)
        assert data.n_treated == 0
