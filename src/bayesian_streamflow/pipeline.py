"""
The three-model streamflow analysis as one linear run.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from . import analysis
from . import visualizations
from .data import add_covariates, load_data, mask_holdout
from .model import build_model, sample_model
from .specification import mean_reverting_spec, rainfall_spec, random_walk_spec

logger = logging.getLogger(__name__)


@dataclass
class ModelRun:
    """Everything produced for one model variant."""

    handle: object
    diagnostic_fit: object
    forecast_fit: object
    quality: dict
    band: object
    coverage: dict


def fit_and_forecast(spec, split, sampler, output_dir=None):
    """
    Fit one model specification and render its diagnostics and forecast.

    A short run on the global parameters feeds the trace plot and sampling
    checks; a longer run on the same compiled model adds the latent state
    (and any imputed covariates) for the forecast band.
    """
    output_dir = Path(output_dir) if output_dir is not None else None
    handle = build_model(spec, split.fit)
    sample_kwargs = dict(
        chains=sampler.chains,
        tune=sampler.tune,
        target_accept=sampler.target_accept,
        cores=sampler.cores,
    )

    diagnostic_fit = sample_model(
        handle,
        draws=sampler.diagnostic_draws,
        var_names=handle.global_parameter_names(),
        random_seed=sampler.random_seed,
        **sample_kwargs
    )
    visualizations.plot_trace(
        diagnostic_fit,
        output_path=output_dir / f"{spec.name}_trace.png" if output_dir else None,
    )
    quality = analysis.check_sampling_quality(diagnostic_fit)

    # the long run must not replay the diagnostic chains
    forecast_seed = None if sampler.random_seed is None else sampler.random_seed + 1

    forecast_fit = sample_model(
        handle,
        draws=sampler.forecast_draws,
        var_names=handle.forecast_variable_names(),
        random_seed=forecast_seed,
        **sample_kwargs
    )
    band = analysis.compute_forecast_band(forecast_fit, burn_in=sampler.burn_in,
                                          quantiles=sampler.quantiles)
    visualizations.plot_forecast(
        band,
        split,
        output_path=output_dir / f"{spec.name}_forecast.png" if output_dir else None,
    )
    analysis.print_model_summary(forecast_fit.discard_burn_in(sampler.burn_in), band, split)

    return ModelRun(
        handle=handle,
        diagnostic_fit=diagnostic_fit,
        forecast_fit=forecast_fit,
        quality=quality,
        band=band,
        coverage=analysis.holdout_coverage(band, split),
    )


def model_specs(config, series):
    """The three model variants, each from its own prior block."""
    observed_rain = series["rain"].dropna()
    rain_mean = float(observed_rain.mean()) if len(observed_rain) else None
    return [
        random_walk_spec(config.random_walk),
        rainfall_spec(config.rainfall),
        mean_reverting_spec(config.mean_reverting, observed_rain_mean=rain_mean),
    ]


def run_analysis(config):
    """
    Load, explore, split, then fit and forecast every model variant.

    Returns:
    --------
    dict : model name -> ModelRun
    """
    data_config = config.data
    series = load_data(
        data_config.path,
        date_column=data_config.date_column,
        flow_column=data_config.flow_column,
        rain_column=data_config.rain_column,
        rain_start=data_config.rain_start,
        end=data_config.end,
    )
    series = add_covariates(series)

    output_dir = Path(config.output_dir)
    visualizations.plot_observations(series, output_path=output_dir / "observations.png")
    correlations = analysis.lag_correlation(series)
    print("Correlation of log streamflow with lagged rainfall:")
    print(correlations.to_string())
    visualizations.plot_lag_correlation(correlations, output_path=output_dir / "lag_correlation.png")

    split = mask_holdout(series, config.holdout_cutoff)

    runs = {}
    for spec in model_specs(config, series):
        logger.info("Fitting model '%s'", spec.name)
        runs[spec.name] = fit_and_forecast(spec, split, config.sampler, output_dir=output_dir)
    return runs
