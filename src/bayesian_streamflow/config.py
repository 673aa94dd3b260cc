"""
Configuration for the streamflow analysis.

Every constant the analysis depends on lives here: data columns and date
windows, sampler settings, and the prior hyperparameters for each model
variant. Each model variant owns its own prior block so nothing is shared
implicitly between the three fits.

Example:
    >>> config = AnalysisConfig(
    ...     data=DataConfig(path="data/streamflow.csv", rain_start="2015-10-01"),
    ...     holdout_cutoff="2019-09-20",
    ... )
    >>> config.sampler.chains
    3
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd

DateLike = Union[str, pd.Timestamp, None]


def _to_timestamp(value: DateLike) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    return pd.Timestamp(value).normalize()


def _check_positive(**values):
    for name, value in values.items():
        if not np.isfinite(value) or value <= 0:
            raise ValueError(f"{name} must be positive, got {value}")


@dataclass
class DataConfig:
    """
    Where the observations live and which part of them to use.

    Attributes:
        path: CSV file with one row per day.
        date_column, flow_column, rain_column: Column names in the file.
        rain_start: First date with rainfall instrumentation. Earlier rows
            are discarded. None keeps everything.
        end: Optional last date to keep.
    """

    path: Union[str, Path]
    date_column: str = "date"
    flow_column: str = "flow"
    rain_column: str = "rain"
    rain_start: DateLike = None
    end: DateLike = None

    def __post_init__(self):
        self.rain_start = _to_timestamp(self.rain_start)
        self.end = _to_timestamp(self.end)
        if self.rain_start is not None and self.end is not None and self.end <= self.rain_start:
            raise ValueError("end must be after rain_start")
        names = [self.date_column, self.flow_column, self.rain_column]
        if len(set(names)) != len(names):
            raise ValueError(f"column names must be distinct, got {names}")


@dataclass
class SamplerConfig:
    """
    MCMC settings shared by all model fits.

    Attributes:
        chains: Number of independent chains.
        tune: NUTS adaptation iterations, dropped by PyMC before returning.
        diagnostic_draws: Iterations in the short run used for trace plots.
        forecast_draws: Iterations in the long run used for forecasting.
        burn_in: Retained iterations discarded before computing the
            forecast band.
        quantiles: (lower, median, upper) quantiles of the credible band.
        random_seed: Seed passed to the sampler. None for an unseeded run.
        target_accept: NUTS target acceptance rate.
        cores: Worker processes for chains. None lets PyMC decide.
    """

    chains: int = 3
    tune: int = 1000
    diagnostic_draws: int = 2000
    forecast_draws: int = 5000
    burn_in: int = 1000
    quantiles: Tuple[float, float, float] = (0.025, 0.5, 0.975)
    random_seed: Optional[int] = 42
    target_accept: float = 0.9
    cores: Optional[int] = None

    def __post_init__(self):
        if self.chains < 1:
            raise ValueError("chains must be at least 1")
        if self.tune < 0:
            raise ValueError("tune must be non-negative")
        if self.diagnostic_draws < 1 or self.forecast_draws < 1:
            raise ValueError("draw counts must be at least 1")
        if not 0 <= self.burn_in < self.forecast_draws:
            raise ValueError("burn_in must be non-negative and smaller than forecast_draws")
        self.quantiles = tuple(float(q) for q in self.quantiles)
        if len(self.quantiles) != 3:
            raise ValueError("quantiles must be (lower, median, upper)")
        lower, median, upper = self.quantiles
        if not 0.0 < lower < median < upper < 1.0:
            raise ValueError(f"quantiles must be increasing inside (0, 1), got {self.quantiles}")
        if not 0.0 < self.target_accept < 1.0:
            raise ValueError("target_accept must be between 0 and 1")


@dataclass
class NoisePriors:
    """
    Priors common to every variant: the two noise precisions and the
    initial state. Precisions get Gamma(shape, rate) priors.
    """

    obs_shape: float = 2.0
    obs_rate: float = 0.1
    proc_shape: float = 2.0
    proc_rate: float = 0.1
    init_mean: float = 0.0
    init_precision: float = 0.01

    def __post_init__(self):
        _check_positive(
            obs_shape=self.obs_shape,
            obs_rate=self.obs_rate,
            proc_shape=self.proc_shape,
            proc_rate=self.proc_rate,
            init_precision=self.init_precision,
        )
        if not np.isfinite(self.init_mean):
            raise ValueError("init_mean must be finite")


@dataclass
class RandomWalkPriors:
    """Model A: random walk without covariates."""

    noise: NoisePriors = field(default_factory=NoisePriors)


@dataclass
class RainfallPriors:
    """Model B: random walk plus lagged rainfall (missing rainfall set to zero)."""

    noise: NoisePriors = field(default_factory=NoisePriors)
    rain_precision: float = 0.01

    def __post_init__(self):
        _check_positive(rain_precision=self.rain_precision)


@dataclass
class MeanRevertingPriors:
    """
    Model C: mean-reverting state with rainfall, seasonality and imputation.

    Attributes:
        baseline_mean, baseline_precision: Normal prior on the long-run level.
        decay_lower, decay_upper: Uniform prior bounds on the decay
            coefficient. Must lie inside [0, 1].
        rain_precision: Normal(0, precision) prior on the rainfall coefficient.
        seasonal_precision: Normal(0, precision) prior on the sin/cos
            coefficients.
        rain_impute_shape, rain_impute_rate: Gamma prior on missing lagged
            rainfall values. A rate of None sets the prior mean to the mean
            of the observed rainfall.
    """

    noise: NoisePriors = field(default_factory=NoisePriors)
    baseline_mean: float = 0.0
    baseline_precision: float = 0.01
    decay_lower: float = 0.0
    decay_upper: float = 1.0
    rain_precision: float = 0.01
    seasonal_precision: float = 0.01
    rain_impute_shape: float = 1.0
    rain_impute_rate: Optional[float] = None

    def __post_init__(self):
        _check_positive(
            baseline_precision=self.baseline_precision,
            rain_precision=self.rain_precision,
            seasonal_precision=self.seasonal_precision,
            rain_impute_shape=self.rain_impute_shape,
        )
        if self.rain_impute_rate is not None:
            _check_positive(rain_impute_rate=self.rain_impute_rate)
        if not 0.0 <= self.decay_lower < self.decay_upper <= 1.0:
            raise ValueError("decay bounds must satisfy 0 <= lower < upper <= 1")


@dataclass
class AnalysisConfig:
    """Everything a full run of the three-model analysis needs."""

    data: DataConfig
    holdout_cutoff: DateLike
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    random_walk: RandomWalkPriors = field(default_factory=RandomWalkPriors)
    rainfall: RainfallPriors = field(default_factory=RainfallPriors)
    mean_reverting: MeanRevertingPriors = field(default_factory=MeanRevertingPriors)
    output_dir: Union[str, Path] = "figures"

    def __post_init__(self):
        self.holdout_cutoff = _to_timestamp(self.holdout_cutoff)
        if self.holdout_cutoff is None:
            raise ValueError("holdout_cutoff is required")
        if self.data.rain_start is not None and self.holdout_cutoff <= self.data.rain_start:
            raise ValueError("holdout_cutoff must be after rain_start")
        self.output_dir = Path(self.output_dir)
