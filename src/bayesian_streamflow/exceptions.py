"""
Exception types raised by the streamflow analysis.
"""


class StreamflowError(ValueError):
    """Base class for errors raised by bayesian_streamflow."""


class DataFormatError(StreamflowError):
    """The input table is missing required columns or holds invalid values."""


class EmptySeriesError(StreamflowError):
    """Too few usable rows remain after filtering to fit a model."""


class ModelSpecError(StreamflowError):
    """A model specification is malformed or does not match the data."""


class SamplerDivergenceError(UserWarning):
    """
    Chains failed to mix or NUTS reported divergences.

    Emitted through ``warnings.warn`` so the run continues and the trace
    plots can be judged by a human.
    """
