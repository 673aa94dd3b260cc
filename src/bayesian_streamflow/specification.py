"""
Declarative specifications of the streamflow state-space models.

A ``ModelSpec`` describes a model as data: the priors it declares, how the
latent log-flow state evolves, and which covariates enter the state
equation. ``bayesian_streamflow.model.build_model`` turns a spec into a
PyMC model. All Normal and Gamma priors are written in terms of precision.

The three variants used in the analysis are produced by
``random_walk_spec``, ``rainfall_spec`` and ``mean_reverting_spec``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import MeanRevertingPriors, RainfallPriors, RandomWalkPriors
from .exceptions import ModelSpecError

# distribution name -> required hyperparameters
DISTRIBUTIONS = {
    "gamma": ("shape", "rate"),
    "normal": ("mean", "precision"),
    "uniform": ("lower", "upper"),
    "beta": ("alpha", "beta"),
}

DYNAMICS = ("random_walk", "mean_reverting")

MISSING_POLICIES = ("forbid", "zero", "impute")

STATE_NAME = "state"


@dataclass(frozen=True)
class PriorSpec:
    """A named random variable with a fixed-hyperparameter prior."""

    name: str
    distribution: str
    hyperparameters: Dict[str, float] = field(default_factory=dict)

    def validate(self):
        if not self.name or not self.name.isidentifier():
            raise ModelSpecError(f"Invalid prior name {self.name!r}")
        if self.distribution not in DISTRIBUTIONS:
            raise ModelSpecError(
                f"Prior '{self.name}' uses unknown distribution '{self.distribution}'. "
                f"Known distributions: {sorted(DISTRIBUTIONS)}"
            )
        required = set(DISTRIBUTIONS[self.distribution])
        given = set(self.hyperparameters)
        if given != required:
            raise ModelSpecError(
                f"Prior '{self.name}' ({self.distribution}) needs hyperparameters "
                f"{sorted(required)}, got {sorted(given)}"
            )
        values = {k: float(v) for k, v in self.hyperparameters.items()}
        if not all(np.isfinite(v) for v in values.values()):
            raise ModelSpecError(f"Prior '{self.name}' has non-finite hyperparameters")

        if self.distribution == "gamma" and (values["shape"] <= 0 or values["rate"] <= 0):
            raise ModelSpecError(f"Gamma prior '{self.name}' needs positive shape and rate")
        if self.distribution == "normal" and values["precision"] <= 0:
            raise ModelSpecError(f"Normal prior '{self.name}' needs positive precision")
        if self.distribution == "uniform" and values["lower"] >= values["upper"]:
            raise ModelSpecError(f"Uniform prior '{self.name}' needs lower < upper")
        if self.distribution == "beta" and (values["alpha"] <= 0 or values["beta"] <= 0):
            raise ModelSpecError(f"Beta prior '{self.name}' needs positive alpha and beta")

    def support(self) -> Tuple[float, float]:
        """Closed interval containing every value the prior can take."""
        p = self.hyperparameters
        if self.distribution == "gamma":
            return 0.0, np.inf
        if self.distribution == "uniform":
            return float(p["lower"]), float(p["upper"])
        if self.distribution == "beta":
            return 0.0, 1.0
        return -np.inf, np.inf


@dataclass(frozen=True)
class CovariateTerm:
    """
    A linear covariate term ``coefficient * series[column][t]`` in the state
    equation.

    ``missing`` says what happens to NaN covariate values after the first
    step: ``"forbid"`` rejects them, ``"zero"`` substitutes 0 and
    ``"impute"`` samples them under ``imputation_prior``.
    """

    column: str
    coefficient: str
    missing: str = "forbid"
    imputation_prior: Optional[str] = None


@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative description of one state-space model.

    Observation layer: ``log_flow[t] ~ Normal(state[t], observation_precision)``.
    Initial state: ``state[0] ~ Normal(initial_mean, initial_precision)``.
    State layer, with ``x`` the sum of covariate terms at step t:

    * ``random_walk``: ``state[t] ~ Normal(state[t-1] + x, process_precision)``
    * ``mean_reverting``: ``state[t] ~ Normal(baseline + decay * (state[t-1]
      - baseline) + x, process_precision)``
    """

    name: str
    dynamics: str
    observation_precision: str
    process_precision: str
    priors: Tuple[PriorSpec, ...]
    initial_mean: float = 0.0
    initial_precision: float = 0.01
    covariates: Tuple[CovariateTerm, ...] = ()
    baseline: Optional[str] = None
    decay: Optional[str] = None

    def prior(self, name) -> PriorSpec:
        for prior in self.priors:
            if prior.name == name:
                return prior
        raise ModelSpecError(f"Model '{self.name}' does not declare a prior named '{name}'")

    def prior_names(self) -> List[str]:
        return [prior.name for prior in self.priors]

    def imputation_prior_names(self) -> List[str]:
        return [term.imputation_prior for term in self.covariates if term.missing == "impute"]

    def global_parameter_names(self) -> List[str]:
        """Scalar parameters, in declaration order, excluding imputation priors."""
        imputed = set(self.imputation_prior_names())
        return [name for name in self.prior_names() if name not in imputed]

    def validate(self):
        """Raise ModelSpecError if the specification is not a usable model."""
        if not self.name:
            raise ModelSpecError("Model name must not be empty")
        if self.dynamics not in DYNAMICS:
            raise ModelSpecError(
                f"Model '{self.name}': unknown dynamics '{self.dynamics}', expected one of {DYNAMICS}"
            )
        if not self.priors:
            raise ModelSpecError(f"Model '{self.name}' declares no priors")

        for prior in self.priors:
            prior.validate()
        names = self.prior_names()
        if len(set(names)) != len(names):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ModelSpecError(f"Model '{self.name}' declares {duplicates} more than once")
        if STATE_NAME in names:
            raise ModelSpecError(f"'{STATE_NAME}' is reserved for the latent state")

        if not np.isfinite(self.initial_mean):
            raise ModelSpecError(f"Model '{self.name}': initial_mean must be finite")
        if not np.isfinite(self.initial_precision) or self.initial_precision <= 0:
            raise ModelSpecError(f"Model '{self.name}': initial_precision must be positive")

        for role in ("observation_precision", "process_precision"):
            prior = self._require(role, getattr(self, role))
            if prior.support()[0] < 0:
                raise ModelSpecError(
                    f"Model '{self.name}': {role} '{prior.name}' must have a non-negative prior"
                )
        if self.observation_precision == self.process_precision:
            raise ModelSpecError(
                f"Model '{self.name}': observation and process precision must be separate priors"
            )

        if self.dynamics == "mean_reverting":
            self._require("baseline", self.baseline)
            decay = self._require("decay", self.decay)
            lower, upper = decay.support()
            if lower < 0 or upper > 1:
                raise ModelSpecError(
                    f"Model '{self.name}': decay prior '{decay.name}' must be bounded to [0, 1], "
                    f"has support [{lower}, {upper}]"
                )
        elif self.baseline is not None or self.decay is not None:
            raise ModelSpecError(
                f"Model '{self.name}': baseline and decay only apply to mean_reverting dynamics"
            )

        columns = [term.column for term in self.covariates]
        if len(set(columns)) != len(columns):
            raise ModelSpecError(f"Model '{self.name}' uses a covariate column twice")
        roles = {self.observation_precision, self.process_precision, self.baseline, self.decay}
        used = set(roles)
        for term in self.covariates:
            if term.missing not in MISSING_POLICIES:
                raise ModelSpecError(
                    f"Covariate '{term.column}': unknown missing policy '{term.missing}'"
                )
            coefficient = self._require(f"coefficient of '{term.column}'", term.coefficient)
            if coefficient.name in used:
                raise ModelSpecError(f"Prior '{coefficient.name}' is used for more than one role")
            used.add(coefficient.name)
            if term.missing == "impute":
                imputation = self._require(f"imputation prior of '{term.column}'",
                                           term.imputation_prior)
                if imputation.name in used:
                    raise ModelSpecError(f"Prior '{imputation.name}' is used for more than one role")
                used.add(imputation.name)
            elif term.imputation_prior is not None:
                raise ModelSpecError(
                    f"Covariate '{term.column}' has an imputation prior but missing='{term.missing}'"
                )

        unused = [name for name in names if name not in used]
        if unused:
            raise ModelSpecError(f"Model '{self.name}' declares unused priors {unused}")
        return self

    def _require(self, role, name) -> PriorSpec:
        if name is None:
            raise ModelSpecError(f"Model '{self.name}' is missing its {role}")
        if name not in self.prior_names():
            raise ModelSpecError(f"Model '{self.name}': {role} refers to undeclared prior '{name}'")
        return self.prior(name)


def _noise_priors(noise):
    return (
        PriorSpec("tau_obs", "gamma", {"shape": noise.obs_shape, "rate": noise.obs_rate}),
        PriorSpec("tau_proc", "gamma", {"shape": noise.proc_shape, "rate": noise.proc_rate}),
    )


def random_walk_spec(priors: Optional[RandomWalkPriors] = None) -> ModelSpec:
    """Model A: log flow follows a random walk with no covariates."""
    priors = priors or RandomWalkPriors()
    return ModelSpec(
        name="random_walk",
        dynamics="random_walk",
        observation_precision="tau_obs",
        process_precision="tau_proc",
        priors=_noise_priors(priors.noise),
        initial_mean=priors.noise.init_mean,
        initial_precision=priors.noise.init_precision,
    ).validate()


def rainfall_spec(priors: Optional[RainfallPriors] = None) -> ModelSpec:
    """Model B: random walk driven by the previous day's rainfall.

    Missing rainfall is replaced by zero rather than imputed.
    """
    priors = priors or RainfallPriors()
    return ModelSpec(
        name="rainfall",
        dynamics="random_walk",
        observation_precision="tau_obs",
        process_precision="tau_proc",
        priors=_noise_priors(priors.noise) + (
            PriorSpec("beta_rain", "normal", {"mean": 0.0, "precision": priors.rain_precision}),
        ),
        initial_mean=priors.noise.init_mean,
        initial_precision=priors.noise.init_precision,
        covariates=(CovariateTerm("rain_lag", "beta_rain", missing="zero"),),
    ).validate()


def mean_reverting_spec(priors: Optional[MeanRevertingPriors] = None,
                        observed_rain_mean: Optional[float] = None) -> ModelSpec:
    """
    Model C: mean-reverting state with rainfall and seasonal terms, and
    missing rainfall imputed jointly with the other unknowns.

    Parameters:
    -----------
    priors : MeanRevertingPriors, optional
        Hyperparameters. Defaults to ``MeanRevertingPriors()``.
    observed_rain_mean : float, optional
        Mean of the recorded rainfall. Used to set the Gamma rate of the
        imputation prior when ``priors.rain_impute_rate`` is None.
    """
    priors = priors or MeanRevertingPriors()
    rate = priors.rain_impute_rate
    if rate is None:
        if observed_rain_mean is None or not np.isfinite(observed_rain_mean) or observed_rain_mean <= 0:
            raise ModelSpecError(
                "rain_impute_rate is not set and no positive observed rainfall mean was given"
            )
        rate = priors.rain_impute_shape / observed_rain_mean

    return ModelSpec(
        name="mean_reverting",
        dynamics="mean_reverting",
        observation_precision="tau_obs",
        process_precision="tau_proc",
        priors=_noise_priors(priors.noise) + (
            PriorSpec("baseline", "normal",
                      {"mean": priors.baseline_mean, "precision": priors.baseline_precision}),
            PriorSpec("decay", "uniform",
                      {"lower": priors.decay_lower, "upper": priors.decay_upper}),
            PriorSpec("beta_rain", "normal", {"mean": 0.0, "precision": priors.rain_precision}),
            PriorSpec("beta_sin", "normal", {"mean": 0.0, "precision": priors.seasonal_precision}),
            PriorSpec("beta_cos", "normal", {"mean": 0.0, "precision": priors.seasonal_precision}),
            PriorSpec("rain_lag_missing", "gamma",
                      {"shape": priors.rain_impute_shape, "rate": rate}),
        ),
        initial_mean=priors.noise.init_mean,
        initial_precision=priors.noise.init_precision,
        covariates=(
            CovariateTerm("rain_lag", "beta_rain", missing="impute",
                          imputation_prior="rain_lag_missing"),
            CovariateTerm("season_sin", "beta_sin"),
            CovariateTerm("season_cos", "beta_cos"),
        ),
        baseline="baseline",
        decay="decay",
    ).validate()
