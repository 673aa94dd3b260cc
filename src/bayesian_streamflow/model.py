import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt

from .exceptions import EmptySeriesError, ModelSpecError
from .specification import STATE_NAME, ModelSpec

logger = logging.getLogger(__name__)


def _make_prior(prior, **kwargs):
    """Create the PyMC random variable for a PriorSpec inside the active model."""
    p = prior.hyperparameters
    if prior.distribution == "gamma":
        return pm.Gamma(prior.name, alpha=p["shape"], beta=p["rate"], **kwargs)
    if prior.distribution == "normal":
        return pm.Normal(prior.name, mu=p["mean"], tau=p["precision"], **kwargs)
    if prior.distribution == "uniform":
        return pm.Uniform(prior.name, lower=p["lower"], upper=p["upper"], **kwargs)
    if prior.distribution == "beta":
        return pm.Beta(prior.name, alpha=p["alpha"], beta=p["beta"], **kwargs)
    raise ModelSpecError(f"Unknown distribution '{prior.distribution}' for '{prior.name}'")


def _initial_state(log_flow):
    """Start the chains at the observed log flow, interpolated across gaps."""
    filled = pd.Series(log_flow).interpolate(limit_direction="both")
    return filled.to_numpy(dtype=float)


@dataclass
class StreamflowModel:
    """
    A compiled PyMC model together with what is needed to read its draws.

    The same handle can be sampled any number of times, e.g. a short run on
    the global parameters followed by a long run including the state.
    """

    spec: ModelSpec
    model: pm.Model
    dates: pd.DatetimeIndex
    missing_covariates: Dict[str, np.ndarray] = field(default_factory=dict)
    n_observed: int = 0

    @property
    def name(self):
        return self.spec.name

    def global_parameter_names(self) -> List[str]:
        return self.spec.global_parameter_names()

    def imputed_variable_names(self) -> List[str]:
        return [
            term.imputation_prior
            for term in self.spec.covariates
            if term.missing == "impute" and len(self.missing_covariates.get(term.column, ()))
        ]

    def forecast_variable_names(self) -> List[str]:
        """Globals, the latent state, and any imputed covariate values."""
        return self.global_parameter_names() + [STATE_NAME] + self.imputed_variable_names()


def build_model(spec, series):
    """
    Build a PyMC state-space model from a declarative specification.

    Parameters:
    -----------
    spec : ModelSpec
        Model description; validated before use
    series : pandas.DataFrame
        Output of ``add_covariates`` (optionally masked by ``mask_holdout``).
        Must contain ``log_flow`` and every covariate column the model uses.

    Returns:
    --------
    StreamflowModel
        Handle wrapping the ``pm.Model``

    Notes:
    ------
    The latent state is a ``Flat`` vector whose density comes from two
    potentials: the initial-condition prior on ``state[0]`` and the Normal
    transition density of ``state[1:]`` given ``state[:-1]``. Missing
    ``log_flow`` values, including masked holdout days, contribute no
    observation term, so the state there is a forecast.
    """
    spec.validate()
    if "log_flow" not in series.columns:
        raise ModelSpecError("Series has no 'log_flow' column; run add_covariates first")
    n_steps = len(series)
    if n_steps < 2:
        raise EmptySeriesError(f"Need at least 2 time steps, got {n_steps}")

    log_flow = series["log_flow"].to_numpy(dtype=float)
    observed = np.flatnonzero(np.isfinite(log_flow))
    if observed.size == 0:
        raise EmptySeriesError("Series has no positive streamflow observations")

    imputation_names = set(spec.imputation_prior_names())
    dates = pd.DatetimeIndex(series.index)
    missing_covariates = {}

    with pm.Model(coords={"date": dates}) as model:
        variables = {
            prior.name: _make_prior(prior)
            for prior in spec.priors
            if prior.name not in imputation_names
        }

        # covariate contribution to the state mean at steps 1..n-1
        drift = pt.zeros(n_steps - 1)
        for term in spec.covariates:
            if term.column not in series.columns:
                raise ModelSpecError(
                    f"Model '{spec.name}' needs covariate column '{term.column}', "
                    f"series has {list(series.columns)}"
                )
            values = series[term.column].to_numpy(dtype=float)[1:]
            missing = np.flatnonzero(~np.isfinite(values))

            if missing.size and term.missing == "forbid":
                raise ModelSpecError(
                    f"Covariate '{term.column}' has {missing.size} missing values "
                    f"and model '{spec.name}' does not allow them"
                )
            covariate = pt.as_tensor_variable(np.nan_to_num(values, nan=0.0))
            if missing.size and term.missing == "zero":
                logger.info("%s: %d missing '%s' values set to zero",
                            spec.name, missing.size, term.column)
            elif missing.size and term.missing == "impute":
                dim = f"{term.column}_missing_date"
                model.add_coord(dim, dates[1:][missing])
                imputed = _make_prior(spec.prior(term.imputation_prior), dims=dim)
                covariate = pt.set_subtensor(covariate[missing], imputed)
                missing_covariates[term.column] = missing + 1
                logger.info("%s: imputing %d missing '%s' values",
                            spec.name, missing.size, term.column)
            drift = drift + variables[term.coefficient] * covariate

        state = pm.Flat(STATE_NAME, dims="date", initval=_initial_state(log_flow))
        previous = state[:-1]
        if spec.dynamics == "random_walk":
            state_mean = previous + drift
        else:
            baseline = variables[spec.baseline]
            decay = variables[spec.decay]
            state_mean = baseline + decay * (previous - baseline) + drift

        pm.Potential(
            "initial_state",
            pm.logp(pm.Normal.dist(mu=spec.initial_mean, tau=spec.initial_precision), state[0]),
        )
        pm.Potential(
            "state_transition",
            pm.logp(
                pm.Normal.dist(mu=state_mean, tau=variables[spec.process_precision]),
                state[1:],
            ).sum(),
        )
        pm.Normal(
            "log_flow",
            mu=state[observed],
            tau=variables[spec.observation_precision],
            observed=log_flow[observed],
        )

    logger.info("Built model '%s': %d steps, %d observed", spec.name, n_steps, observed.size)
    return StreamflowModel(
        spec=spec,
        model=model,
        dates=dates,
        missing_covariates=missing_covariates,
        n_observed=int(observed.size),
    )


@dataclass
class FitResult:
    """
    Posterior draws from one sampling run, one named field per quantity.

    Every array is shaped ``(chain, draw, ...)``. Fields for variables that
    were not requested in the run are None (or empty for the dicts).
    ``trace`` keeps the full ArviZ InferenceData for diagnostics.
    """

    model_name: str
    trace: az.InferenceData
    dates: pd.DatetimeIndex
    global_names: List[str] = field(default_factory=list)
    observation_precision: Optional[np.ndarray] = None
    process_precision: Optional[np.ndarray] = None
    baseline: Optional[np.ndarray] = None
    decay: Optional[np.ndarray] = None
    coefficients: Dict[str, np.ndarray] = field(default_factory=dict)
    state: Optional[np.ndarray] = None
    imputed: Dict[str, np.ndarray] = field(default_factory=dict)
    imputed_dates: Dict[str, pd.DatetimeIndex] = field(default_factory=dict)
    burn_in: int = 0

    @classmethod
    def from_trace(cls, handle, trace):
        spec = handle.spec
        posterior = trace.posterior

        def draws(name):
            if name is None or name not in posterior:
                return None
            return posterior[name].values

        coefficients = {
            term.column: draws(term.coefficient)
            for term in spec.covariates
            if term.coefficient in posterior
        }
        imputed = {}
        imputed_dates = {}
        for term in spec.covariates:
            if term.missing == "impute" and term.imputation_prior in posterior:
                imputed[term.column] = draws(term.imputation_prior)
                imputed_dates[term.column] = handle.dates[handle.missing_covariates[term.column]]

        return cls(
            model_name=spec.name,
            trace=trace,
            dates=handle.dates,
            global_names=[name for name in spec.global_parameter_names() if name in posterior],
            observation_precision=draws(spec.observation_precision),
            process_precision=draws(spec.process_precision),
            baseline=draws(spec.baseline),
            decay=draws(spec.decay),
            coefficients=coefficients,
            state=draws(STATE_NAME),
            imputed=imputed,
            imputed_dates=imputed_dates,
        )

    @property
    def n_chains(self):
        return self.trace.posterior.sizes["chain"]

    @property
    def n_draws(self):
        return self.trace.posterior.sizes["draw"]

    def discard_burn_in(self, n):
        """Return a copy without the first ``n`` draws of every chain."""
        if n < 0 or n >= self.n_draws:
            raise ValueError(f"burn-in must be between 0 and {self.n_draws - 1}, got {n}")

        def cut(values):
            return None if values is None else values[:, n:]

        return FitResult(
            model_name=self.model_name,
            trace=self.trace.isel(draw=slice(n, None)),
            dates=self.dates,
            global_names=list(self.global_names),
            observation_precision=cut(self.observation_precision),
            process_precision=cut(self.process_precision),
            baseline=cut(self.baseline),
            decay=cut(self.decay),
            coefficients={k: cut(v) for k, v in self.coefficients.items()},
            state=cut(self.state),
            imputed={k: cut(v) for k, v in self.imputed.items()},
            imputed_dates=dict(self.imputed_dates),
            burn_in=self.burn_in + n,
        )


def sample_model(handle, draws=1000, tune=1000, chains=3, var_names=None, random_seed=None,
                 **kwargs):
    """Sample from a compiled model and return its draws as a FitResult.

    Parameters:
    -----------
    handle : StreamflowModel
        Output of ``build_model``; may be sampled repeatedly
    draws : int, default=1000
        Iterations kept per chain
    tune : int, default=1000
        NUTS adaptation iterations, discarded by PyMC
    chains : int, default=3
        Number of independent chains
    var_names : list of str, optional
        Variables to store. Defaults to ``handle.forecast_variable_names()``.
        Pass ``handle.global_parameter_names()`` for a quick convergence run.
    random_seed : int, optional
        Seed for a reproducible run
    **kwargs
        Forwarded to ``pm.sample`` (e.g. ``target_accept``, ``cores``)
    """
    if var_names is None:
        var_names = handle.forecast_variable_names()
    var_names = list(var_names)
    unknown = [name for name in var_names if name not in handle.model.named_vars]
    if unknown:
        raise ModelSpecError(f"Model '{handle.name}' has no variables named {unknown}")

    kwargs.setdefault("progressbar", True)
    logger.info("Sampling '%s': %d chains x %d draws (tune=%d), storing %s",
                handle.name, chains, draws, tune, var_names)
    with handle.model:
        trace = pm.sample(
            draws=draws,
            tune=tune,
            chains=chains,
            random_seed=random_seed,
            var_names=var_names,
            return_inferencedata=True,
            **kwargs
        )
    return FitResult.from_trace(handle, trace)
