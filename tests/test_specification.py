"""
Tests for the declarative model specifications.
"""

from dataclasses import replace

import pytest

from bayesian_streamflow.config import MeanRevertingPriors, NoisePriors, RainfallPriors
from bayesian_streamflow.exceptions import ModelSpecError
from bayesian_streamflow.specification import (
    CovariateTerm,
    ModelSpec,
    PriorSpec,
    mean_reverting_spec,
    rainfall_spec,
    random_walk_spec,
)


def _noise():
    return (
        PriorSpec("tau_obs", "gamma", {"shape": 1.0, "rate": 1.0}),
        PriorSpec("tau_proc", "gamma", {"shape": 1.0, "rate": 1.0}),
    )


def _spec(**overrides):
    fields = dict(
        name="test",
        dynamics="random_walk",
        observation_precision="tau_obs",
        process_precision="tau_proc",
        priors=_noise(),
    )
    fields.update(overrides)
    return ModelSpec(**fields)


class TestFactories:
    """The three model variants."""

    def test_random_walk(self):
        spec = random_walk_spec()

        assert spec.dynamics == "random_walk"
        assert spec.covariates == ()
        assert spec.global_parameter_names() == ["tau_obs", "tau_proc"]

    def test_rainfall_substitutes_zero(self):
        spec = rainfall_spec()

        assert spec.dynamics == "random_walk"
        assert spec.covariates == (CovariateTerm("rain_lag", "beta_rain", missing="zero"),)
        assert spec.global_parameter_names() == ["tau_obs", "tau_proc", "beta_rain"]

    def test_mean_reverting_imputes(self):
        spec = mean_reverting_spec(observed_rain_mean=2.0)

        assert spec.dynamics == "mean_reverting"
        rain = spec.covariates[0]
        assert rain.column == "rain_lag"
        assert rain.missing == "impute"
        assert spec.imputation_prior_names() == ["rain_lag_missing"]
        assert "rain_lag_missing" not in spec.global_parameter_names()
        assert set(spec.global_parameter_names()) == {
            "tau_obs", "tau_proc", "baseline", "decay", "beta_rain", "beta_sin", "beta_cos"
        }

    def test_mean_reverting_decay_bounds(self):
        decay = mean_reverting_spec(observed_rain_mean=1.0).prior("decay")

        assert decay.distribution == "uniform"
        assert decay.support() == (0.0, 1.0)

    def test_imputation_rate_from_observed_mean(self):
        spec = mean_reverting_spec(MeanRevertingPriors(rain_impute_shape=2.0), observed_rain_mean=4.0)

        assert spec.prior("rain_lag_missing").hyperparameters == {"shape": 2.0, "rate": 0.5}

    def test_explicit_imputation_rate(self):
        spec = mean_reverting_spec(MeanRevertingPriors(rain_impute_rate=3.0))

        assert spec.prior("rain_lag_missing").hyperparameters["rate"] == 3.0

    def test_imputation_rate_needs_rain_mean(self):
        with pytest.raises(ModelSpecError, match="rain_impute_rate"):
            mean_reverting_spec(MeanRevertingPriors())

    def test_priors_come_from_config(self):
        noise = NoisePriors(obs_shape=3.0, obs_rate=0.5, init_mean=2.0, init_precision=0.1)
        spec = rainfall_spec(RainfallPriors(noise=noise, rain_precision=4.0))

        assert spec.prior("tau_obs").hyperparameters == {"shape": 3.0, "rate": 0.5}
        assert spec.prior("beta_rain").hyperparameters == {"mean": 0.0, "precision": 4.0}
        assert spec.initial_mean == 2.0
        assert spec.initial_precision == 0.1


class TestValidation:
    """Malformed specifications raise ModelSpecError."""

    def test_valid_minimal(self):
        assert _spec().validate().name == "test"

    def test_unknown_distribution(self):
        spec = _spec(priors=(PriorSpec("tau_obs", "lognormal", {"mu": 0, "sigma": 1}), _noise()[1]))
        with pytest.raises(ModelSpecError, match="unknown distribution"):
            spec.validate()

    def test_missing_hyperparameter(self):
        spec = _spec(priors=(PriorSpec("tau_obs", "gamma", {"shape": 1.0}), _noise()[1]))
        with pytest.raises(ModelSpecError, match="needs hyperparameters"):
            spec.validate()

    def test_non_positive_gamma(self):
        spec = _spec(priors=(PriorSpec("tau_obs", "gamma", {"shape": 0.0, "rate": 1.0}), _noise()[1]))
        with pytest.raises(ModelSpecError, match="positive shape"):
            spec.validate()

    def test_unknown_dynamics(self):
        with pytest.raises(ModelSpecError, match="unknown dynamics"):
            _spec(dynamics="ar2").validate()

    def test_undeclared_reference(self):
        with pytest.raises(ModelSpecError, match="undeclared prior"):
            _spec(process_precision="tau_missing").validate()

    def test_shared_precision(self):
        spec = _spec(priors=_noise()[:1], process_precision="tau_obs")
        with pytest.raises(ModelSpecError, match="separate priors"):
            spec.validate()

    def test_precision_prior_must_be_positive(self):
        priors = (PriorSpec("tau_obs", "normal", {"mean": 0.0, "precision": 1.0}), _noise()[1])
        with pytest.raises(ModelSpecError, match="non-negative prior"):
            _spec(priors=priors).validate()

    def test_duplicate_prior(self):
        with pytest.raises(ModelSpecError, match="more than once"):
            _spec(priors=_noise() + (_noise()[0],)).validate()

    def test_reserved_state_name(self):
        priors = _noise() + (PriorSpec("state", "normal", {"mean": 0.0, "precision": 1.0}),)
        with pytest.raises(ModelSpecError, match="reserved"):
            _spec(priors=priors).validate()

    def test_unused_prior(self):
        priors = _noise() + (PriorSpec("beta_x", "normal", {"mean": 0.0, "precision": 1.0}),)
        with pytest.raises(ModelSpecError, match="unused"):
            _spec(priors=priors).validate()

    def test_mean_reverting_needs_decay(self):
        priors = _noise() + (PriorSpec("baseline", "normal", {"mean": 0.0, "precision": 1.0}),)
        spec = _spec(dynamics="mean_reverting", priors=priors, baseline="baseline")
        with pytest.raises(ModelSpecError, match="is missing its decay"):
            spec.validate()

    @pytest.mark.parametrize("decay", [
        PriorSpec("decay", "normal", {"mean": 0.9, "precision": 100.0}),
        PriorSpec("decay", "uniform", {"lower": 0.0, "upper": 1.2}),
        PriorSpec("decay", "uniform", {"lower": -0.5, "upper": 1.0}),
        PriorSpec("decay", "gamma", {"shape": 1.0, "rate": 1.0}),
    ])
    def test_decay_must_be_bounded(self, decay):
        """A decay prior that can leave [0, 1] is rejected."""
        priors = _noise() + (PriorSpec("baseline", "normal", {"mean": 0.0, "precision": 1.0}), decay)
        spec = _spec(dynamics="mean_reverting", priors=priors, baseline="baseline", decay="decay")
        with pytest.raises(ModelSpecError, match=r"bounded to \[0, 1\]"):
            spec.validate()

    def test_beta_decay_allowed(self):
        priors = _noise() + (
            PriorSpec("baseline", "normal", {"mean": 0.0, "precision": 1.0}),
            PriorSpec("decay", "beta", {"alpha": 2.0, "beta": 2.0}),
        )
        spec = _spec(dynamics="mean_reverting", priors=priors, baseline="baseline", decay="decay")

        assert spec.validate() is spec

    def test_decay_on_random_walk(self):
        base = mean_reverting_spec(observed_rain_mean=1.0)
        with pytest.raises(ModelSpecError, match="only apply to mean_reverting"):
            replace(base, dynamics="random_walk").validate()

    def test_impute_needs_prior(self):
        priors = _noise() + (PriorSpec("beta_rain", "normal", {"mean": 0.0, "precision": 1.0}),)
        spec = _spec(priors=priors,
                     covariates=(CovariateTerm("rain_lag", "beta_rain", missing="impute"),))
        with pytest.raises(ModelSpecError, match="is missing its imputation prior"):
            spec.validate()

    def test_unknown_missing_policy(self):
        priors = _noise() + (PriorSpec("beta_rain", "normal", {"mean": 0.0, "precision": 1.0}),)
        spec = _spec(priors=priors,
                     covariates=(CovariateTerm("rain_lag", "beta_rain", missing="interpolate"),))
        with pytest.raises(ModelSpecError, match="unknown missing policy"):
            spec.validate()

    def test_coefficient_reused(self):
        priors = _noise() + (PriorSpec("beta", "normal", {"mean": 0.0, "precision": 1.0}),)
        spec = _spec(priors=priors, covariates=(
            CovariateTerm("season_sin", "beta"),
            CovariateTerm("season_cos", "beta"),
        ))
        with pytest.raises(ModelSpecError, match="more than one role"):
            spec.validate()

    def test_initial_precision(self):
        with pytest.raises(ModelSpecError, match="initial_precision"):
            _spec(initial_precision=0.0).validate()
