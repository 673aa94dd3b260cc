import matplotlib

matplotlib.use("Agg")

import arviz as az
import numpy as np
import pandas as pd
import pytest

from bayesian_streamflow.data import add_covariates
from bayesian_streamflow.model import FitResult


def simulate_series(n_days=100, decay=0.9, beta_rain=0.5, baseline=1.0, proc_sd=0.1,
                    obs_sd=0.1, missing_fraction=0.05, seed=0):
    """Daily flow/rain series generated from the mean-reverting model."""
    rng = np.random.default_rng(seed)
    rain = rng.exponential(1.0, n_days) * (rng.random(n_days) < 0.4)

    state = np.empty(n_days)
    state[0] = baseline
    for t in range(1, n_days):
        state[t] = (baseline + decay * (state[t - 1] - baseline)
                    + beta_rain * rain[t - 1] + rng.normal(0, proc_sd))
    flow = np.exp(state + rng.normal(0, obs_sd, n_days))

    recorded = rain.copy()
    n_missing = int(round(missing_fraction * n_days))
    if n_missing:
        recorded[rng.choice(n_days, size=n_missing, replace=False)] = np.nan

    index = pd.date_range("2020-01-01", periods=n_days, freq="D", name="date")
    return pd.DataFrame({"flow": flow, "rain": recorded}, index=index)


def make_fit(handle, n_chains=2, n_draws=50, seed=0, include_state=True, diverging=None):
    """FitResult with random draws for every variable of a built model."""
    rng = np.random.default_rng(seed)
    spec = handle.spec
    posterior = {}
    for name in spec.global_parameter_names():
        prior = spec.prior(name)
        if prior.distribution == "gamma":
            posterior[name] = rng.gamma(2.0, 1.0, (n_chains, n_draws))
        elif prior.distribution == "uniform":
            posterior[name] = rng.uniform(0.0, 1.0, (n_chains, n_draws))
        else:
            posterior[name] = rng.normal(0.0, 1.0, (n_chains, n_draws))
    dims = {}
    coords = {"date": handle.dates}
    if include_state:
        posterior["state"] = rng.normal(1.0, 0.1, (n_chains, n_draws, len(handle.dates)))
        dims["state"] = ["date"]
        for name in handle.imputed_variable_names():
            term = next(t for t in spec.covariates if t.imputation_prior == name)
            n_missing = len(handle.missing_covariates[term.column])
            posterior[name] = rng.gamma(1.0, 1.0, (n_chains, n_draws, n_missing))
            dims[name] = [f"{term.column}_missing_date"]
            coords[f"{term.column}_missing_date"] = handle.dates[handle.missing_covariates[term.column]]
    if diverging is None:
        diverging = np.zeros((n_chains, n_draws), dtype=bool)
    trace = az.from_dict(posterior=posterior, sample_stats={"diverging": diverging},
                         coords=coords, dims=dims)
    return FitResult.from_trace(handle, trace)


@pytest.fixture
def raw_frame():
    """Raw observation table as it would come out of a CSV."""
    dates = pd.date_range("2019-12-25", periods=20, freq="D")
    rng = np.random.default_rng(42)
    return pd.DataFrame({
        "date": dates.strftime("%Y-%m-%d"),
        "flow": rng.gamma(2.0, 1.5, len(dates)),
        "rain": rng.exponential(2.0, len(dates)),
    })


@pytest.fixture
def synthetic_series():
    return add_covariates(simulate_series())
