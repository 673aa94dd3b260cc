"""
Analysis functions for Bayesian streamflow model results.
"""

import logging
import warnings
from dataclasses import dataclass

import arviz as az
import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import SamplerDivergenceError

logger = logging.getLogger(__name__)

DEFAULT_QUANTILES = (0.025, 0.5, 0.975)


def lag_correlation(series, max_lag=7):
    """
    Correlation between log streamflow and rainfall lagged by 0..max_lag days.

    Parameters:
    -----------
    series : pandas.DataFrame
        Series with ``log_flow`` and ``rain`` columns (see ``add_covariates``)
    max_lag : int, default=7
        Largest lag in days

    Returns:
    --------
    pandas.DataFrame
        One row per lag with Pearson ``r``, ``p_value`` and pair count ``n``.
        Lags with fewer than three complete pairs get NaN.
    """
    rows = []
    for lag in range(max_lag + 1):
        pairs = pd.concat([series["log_flow"], series["rain"].shift(lag)], axis=1).dropna()
        if len(pairs) < 3 or pairs.iloc[:, 0].nunique() < 2 or pairs.iloc[:, 1].nunique() < 2:
            r, p_value = np.nan, np.nan
        else:
            r, p_value = stats.pearsonr(pairs.iloc[:, 0], pairs.iloc[:, 1])
        rows.append({"lag": lag, "r": float(r), "p_value": float(p_value), "n": len(pairs)})
    return pd.DataFrame(rows).set_index("lag")


def print_convergence_diagnostics(fit, param_names=None):
    """
    Print convergence diagnostics for the MCMC sampling.

    Parameters:
    -----------
    fit : FitResult
        Draws from ``sample_model``
    param_names : list, optional
        Parameters to check. If None, uses the model's global parameters.
    """
    if param_names is None:
        param_names = fit.global_names

    print(f"Convergence diagnostics for '{fit.model_name}'")
    print("R-hat values (should be < 1.01 for good convergence):")
    print(az.rhat(fit.trace, var_names=param_names))
    print("\nEffective sample size:")
    print(az.ess(fit.trace, var_names=param_names))


def check_sampling_quality(fit, rhat_threshold=1.01, divergence_threshold=0.01):
    """Check sampling quality and print diagnostics.

    Problems are reported, never raised: a ``SamplerDivergenceError``
    warning is emitted so the run continues and the trace plots can be
    inspected.

    Parameters:
    -----------
    fit : FitResult
        Draws from ``sample_model``
    rhat_threshold : float, default=1.01
        Largest acceptable R-hat for any global parameter
    divergence_threshold : float, default=0.01
        Largest acceptable fraction of divergent transitions

    Returns:
    --------
    dict : Sampling diagnostics
    """
    diverging = fit.trace.sample_stats.diverging
    n_divergences = int(diverging.sum().item())
    n_samples = int(diverging.size)
    divergence_rate = n_divergences / n_samples if n_samples else 0.0

    rhat_values = {}
    if fit.global_names and fit.n_chains > 1:
        rhat = az.rhat(fit.trace, var_names=fit.global_names)
        rhat_values = {name: float(np.max(rhat[name].values)) for name in fit.global_names}
    high_rhat = {name: value for name, value in rhat_values.items() if value > rhat_threshold}

    print(f"SAMPLING QUALITY DIAGNOSTICS: {fit.model_name}")
    print("=" * 40)
    print(f"Chains: {fit.n_chains}, draws per chain: {fit.n_draws}")
    print(f"Divergences: {n_divergences} ({divergence_rate:.1%})")
    for name, value in rhat_values.items():
        print(f"R-hat {name}: {value:.3f}")

    quality_issues = []
    if divergence_rate > divergence_threshold:
        quality_issues.append(f"High divergence rate: {divergence_rate:.1%}")
    for name, value in high_rhat.items():
        quality_issues.append(f"R-hat for {name} is {value:.3f} (> {rhat_threshold})")

    if quality_issues:
        print("\nSAMPLING ISSUES DETECTED:")
        for issue in quality_issues:
            print(f"  - {issue}")
        print("\nRECOMMENDATIONS:")
        print("  - Inspect the trace plots before trusting the forecast")
        print("  - Increase tune and draws")
        if divergence_rate > divergence_threshold:
            print("  - Increase target_accept (try 0.95)")
        warnings.warn(
            f"Model '{fit.model_name}': " + "; ".join(quality_issues),
            SamplerDivergenceError,
            stacklevel=2,
        )
    else:
        print("\nSampling quality looks good.")

    return {
        'n_divergences': n_divergences,
        'divergence_rate': divergence_rate,
        'rhat': rhat_values,
        'quality_issues': quality_issues
    }


def summarize_parameters(fit, hdi_prob=0.95):
    """ArviZ summary table of the global parameters."""
    return az.summary(fit.trace, var_names=fit.global_names, hdi_prob=hdi_prob)


def credible_band(log_draws, quantiles=DEFAULT_QUANTILES):
    """
    Per-step quantiles of exponentiated draws.

    ``log_draws`` is shaped ``(..., n_steps)``; all leading axes (chains and
    draws) are pooled. Draws are exponentiated before the quantiles are
    taken, so the band lives on the natural flow scale.

    Returns:
    --------
    np.ndarray
        Shape ``(len(quantiles), n_steps)``
    """
    log_draws = np.asarray(log_draws, dtype=float)
    if log_draws.ndim < 2:
        raise ValueError("log_draws needs at least one sample axis and one time axis")
    natural = np.exp(log_draws).reshape(-1, log_draws.shape[-1])
    return np.quantile(natural, quantiles, axis=0)


@dataclass
class ForecastBand:
    """Lower/median/upper flow on the natural scale, one value per date."""

    dates: pd.DatetimeIndex
    lower: np.ndarray
    median: np.ndarray
    upper: np.ndarray
    quantiles: tuple = DEFAULT_QUANTILES
    model_name: str = ""

    def to_frame(self):
        return pd.DataFrame(
            {"lower": self.lower, "median": self.median, "upper": self.upper},
            index=pd.Index(self.dates, name="date"),
        )


def compute_forecast_band(fit, burn_in=0, quantiles=DEFAULT_QUANTILES):
    """
    Credible band of streamflow from posterior draws of the latent state.

    Parameters:
    -----------
    fit : FitResult
        Draws including the ``state`` variable
    burn_in : int, default=0
        Leading draws of every chain to drop first
    quantiles : tuple of float
        (lower, median, upper) quantiles

    Returns:
    --------
    ForecastBand
    """
    if fit.state is None:
        raise ValueError(
            f"Fit of '{fit.model_name}' has no state draws; sample with the state variable"
        )
    kept = fit.discard_burn_in(burn_in) if burn_in else fit
    lower, median, upper = credible_band(kept.state, quantiles)
    logger.info("Forecast band for '%s' from %d chains x %d draws",
                fit.model_name, kept.n_chains, kept.n_draws)
    return ForecastBand(
        dates=fit.dates,
        lower=lower,
        median=median,
        upper=upper,
        quantiles=tuple(quantiles),
        model_name=fit.model_name,
    )


def holdout_coverage(band, split):
    """
    How many held-out observations fall inside the credible band.

    Returns:
    --------
    dict : counts and fraction inside the band, and the mean absolute
        error of the median over the held-out observations
    """
    if not band.dates.equals(split.dates):
        raise ValueError("Forecast band and holdout split cover different dates")
    truth = split.reference["flow"].to_numpy(dtype=float)
    held = split.holdout_mask & np.isfinite(truth)
    n_holdout = int(held.sum())
    inside = (truth[held] >= band.lower[held]) & (truth[held] <= band.upper[held])
    return {
        'n_holdout': n_holdout,
        'n_inside': int(inside.sum()),
        'coverage': float(inside.mean()) if n_holdout else np.nan,
        'median_abs_error': float(np.mean(np.abs(band.median[held] - truth[held]))) if n_holdout else np.nan,
    }


def print_model_summary(fit, band=None, split=None):
    """
    Print posterior summaries of the global parameters and, when a band and
    split are given, the holdout forecast skill.
    """
    print("=" * 60)
    print(f"MODEL SUMMARY: {fit.model_name}")
    print("=" * 60)
    print(summarize_parameters(fit).to_string())

    for column, draws in fit.imputed.items():
        means = draws.mean(axis=(0, 1))
        print(f"\nImputed {column}: {len(means)} values, posterior means "
              f"{np.min(means):.2f} to {np.max(means):.2f}")

    if band is not None and split is not None:
        scores = holdout_coverage(band, split)
        print("\nHOLDOUT FORECAST")
        print(f"Held-out observations: {scores['n_holdout']}")
        if scores['n_holdout']:
            level = band.quantiles[-1] - band.quantiles[0]
            print(f"Inside {level:.0%} band: {scores['n_inside']} ({scores['coverage']:.1%})")
            print(f"Mean absolute error of median: {scores['median_abs_error']:.3f}")
