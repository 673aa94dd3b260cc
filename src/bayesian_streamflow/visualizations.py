"""
Visualization functions for Bayesian streamflow analysis.
"""

import logging
from pathlib import Path

import arviz as az
import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

logger = logging.getLogger(__name__)


def _finish(fig, output_path=None, dpi=150, tight=True):
    """Save the figure when a path is given, otherwise show it."""
    if tight:
        fig.tight_layout()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi)
        plt.close(fig)
        logger.info("Saved %s", output_path)
    else:
        plt.show()
    return fig


def _format_date_axis(ax):
    locator = mdates.AutoDateLocator()
    ax.xaxis.set_major_locator(locator)
    ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(locator))


def plot_observations(series, output_path=None, figsize=(14, 10)):
    """
    Plot the raw series and the rainfall/streamflow relationship.

    Top: streamflow (log axis). Middle: daily rainfall. Bottom: log
    streamflow against the previous day's rainfall with a regression line.

    Parameters:
    -----------
    series : pandas.DataFrame
        Output of ``add_covariates``
    output_path : str or Path, optional
        Where to save the image. If None, the figure is shown.
    figsize : tuple, optional
        Figure size (width, height)
    """
    fig, (ax1, ax2, ax3) = plt.subplots(3, 1, figsize=figsize)

    ax1.plot(series.index, series["flow"], color="tab:blue", linewidth=1)
    if (series["flow"] > 0).any():
        ax1.set_yscale("log")
    ax1.set_ylabel("Streamflow")
    ax1.set_title("Daily streamflow")
    ax1.grid(True, alpha=0.3)
    _format_date_axis(ax1)

    ax2.bar(series.index, series["rain"], width=1.0, color="tab:green")
    ax2.set_ylabel("Rainfall")
    ax2.set_title("Daily rainfall")
    ax2.grid(True, alpha=0.3)
    _format_date_axis(ax2)

    pairs = series[["rain_lag", "log_flow"]].dropna()
    sns.regplot(data=pairs, x="rain_lag", y="log_flow", ax=ax3,
                scatter_kws={"alpha": 0.4, "s": 15}, line_kws={"color": "tab:red"})
    ax3.set_xlabel("Previous day's rainfall")
    ax3.set_ylabel("log(streamflow)")
    ax3.set_title("Streamflow response to rainfall")
    ax3.grid(True, alpha=0.3)

    return _finish(fig, output_path)


def plot_lag_correlation(correlations, output_path=None, figsize=(8, 5)):
    """Bar chart of the output of ``lag_correlation``."""
    fig, ax = plt.subplots(figsize=figsize)
    frame = correlations.reset_index()
    sns.barplot(data=frame, x="lag", y="r", color="tab:blue", ax=ax)
    ax.axhline(0, color="black", linewidth=0.8)
    ax.set_xlabel("Rainfall lag (days)")
    ax.set_ylabel("Pearson r with log(streamflow)")
    ax.set_title("Lagged rainfall correlation")
    ax.grid(True, axis="y", alpha=0.3)
    return _finish(fig, output_path)


def plot_trace(fit, var_names=None, output_path=None, figsize=(15, 8)):
    """
    Plot MCMC trace plots to check convergence.

    One line per chain for every global parameter, with marginal densities
    on the left.

    Parameters:
    -----------
    fit : FitResult
        Draws from ``sample_model``
    var_names : list, optional
        Parameters to plot. If None, uses the model's global parameters.
    output_path : str or Path, optional
        Where to save the image. If None, the figure is shown.
    figsize : tuple, optional
        Figure size (width, height)
    """
    if var_names is None:
        var_names = fit.global_names

    axes = az.plot_trace(fit.trace, var_names=var_names, figsize=figsize, compact=False,
                         legend=True)
    fig = np.asarray(axes).ravel()[0].figure
    fig.suptitle(f"Trace plots: {fit.model_name}")
    return _finish(fig, output_path, tight=False)


def plot_forecast(band, split, output_path=None, start=None, figsize=(14, 6)):
    """
    Plot the posterior streamflow band with fitted and held-out observations.

    Parameters:
    -----------
    band : ForecastBand
        Output of ``compute_forecast_band``
    split : HoldoutSplit
        Fitting and reference series the band was computed for
    output_path : str or Path, optional
        Where to save the image. If None, the figure is shown.
    start : str or Timestamp, optional
        First date to show; defaults to the whole series
    figsize : tuple, optional
        Figure size (width, height)
    """
    dates = band.dates
    window = np.ones(len(dates), dtype=bool) if start is None else np.asarray(dates >= start)
    truth = split.reference["flow"].to_numpy(dtype=float)
    held = split.holdout_mask

    lower_q, _, upper_q = band.quantiles
    level = int(round((upper_q - lower_q) * 100))

    fig, ax = plt.subplots(figsize=figsize)
    ax.fill_between(dates[window], band.lower[window], band.upper[window], alpha=0.3,
                    color="tab:blue", label=f"{level}% credible interval")
    ax.plot(dates[window], band.median[window], color="tab:blue", linewidth=1.5,
            label="Posterior median")

    fitted = window & ~held & np.isfinite(truth)
    holdout = window & held & np.isfinite(truth)
    ax.scatter(dates[fitted], truth[fitted], marker="o", s=14, color="black",
               label="Observed (fitted)")
    ax.scatter(dates[holdout], truth[holdout], marker="x", s=30, color="tab:red",
               label="Observed (held out)")
    ax.axvline(split.cutoff, color="grey", linestyle="--", linewidth=1, label="Holdout cutoff")

    ax.set_ylabel("Streamflow")
    title = "Streamflow forecast"
    if band.model_name:
        title += f": {band.model_name}"
    ax.set_title(title)
    ax.legend()
    ax.grid(True, alpha=0.3)
    _format_date_axis(ax)

    return _finish(fig, output_path)
