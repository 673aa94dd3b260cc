"""
Bayesian state-space models of daily streamflow with rainfall covariates.
"""

from .config import (
    AnalysisConfig,
    DataConfig,
    MeanRevertingPriors,
    NoisePriors,
    RainfallPriors,
    RandomWalkPriors,
    SamplerConfig,
)
from .data import HoldoutSplit, add_covariates, load_data, mask_holdout, prepare_series
from .exceptions import (
    DataFormatError,
    EmptySeriesError,
    ModelSpecError,
    SamplerDivergenceError,
    StreamflowError,
)
from .model import FitResult, StreamflowModel, build_model, sample_model
from .specification import (
    CovariateTerm,
    ModelSpec,
    PriorSpec,
    mean_reverting_spec,
    rainfall_spec,
    random_walk_spec,
)

__all__ = [
    "AnalysisConfig",
    "DataConfig",
    "MeanRevertingPriors",
    "NoisePriors",
    "RainfallPriors",
    "RandomWalkPriors",
    "SamplerConfig",
    "HoldoutSplit",
    "add_covariates",
    "load_data",
    "mask_holdout",
    "prepare_series",
    "DataFormatError",
    "EmptySeriesError",
    "ModelSpecError",
    "SamplerDivergenceError",
    "StreamflowError",
    "FitResult",
    "StreamflowModel",
    "build_model",
    "sample_model",
    "CovariateTerm",
    "ModelSpec",
    "PriorSpec",
    "mean_reverting_spec",
    "rainfall_spec",
    "random_walk_spec",
]
