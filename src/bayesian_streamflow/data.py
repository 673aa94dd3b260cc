"""
Loading, covariate derivation and holdout masking for daily streamflow data.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .exceptions import DataFormatError, EmptySeriesError

logger = logging.getLogger(__name__)

SERIES_COLUMNS = ["flow", "rain"]
COVARIATE_COLUMNS = ["rain_lag", "season_sin", "season_cos"]
DAYS_PER_YEAR = 365


def load_data(filepath, date_column="date", flow_column="flow", rain_column="rain",
              rain_start=None, end=None):
    """Load a daily streamflow/rainfall CSV and return the calibration series."""
    df = pd.read_csv(filepath)
    logger.info("Read %d rows from %s", len(df), filepath)
    return prepare_series(df, date_column=date_column, flow_column=flow_column,
                          rain_column=rain_column, rain_start=rain_start, end=end)


def prepare_series(df, date_column="date", flow_column="flow", rain_column="rain",
                   rain_start=None, end=None):
    """
    Turn a raw observation table into a regular daily series.

    Parameters:
    -----------
    df : pandas.DataFrame
        Raw table with one row per observed date
    date_column, flow_column, rain_column : str
        Names of the date, streamflow and rainfall columns in ``df``
    rain_start : str or Timestamp, optional
        Rows before this date are dropped (rainfall was not recorded yet)
    end : str or Timestamp, optional
        Rows after this date are dropped

    Returns:
    --------
    pandas.DataFrame
        Columns ``flow`` and ``rain`` on a complete daily ``DatetimeIndex``
        named ``date``. Dates absent from the input appear as NaN rows.

    Raises:
    -------
    DataFormatError
        If a column is missing or dates are unparseable. Also if a retained
        row (after the ``rain_start``/``end`` filter) repeats a date or holds
        a negative or non-numeric value.
    EmptySeriesError
        If fewer than two streamflow observations remain after filtering.
    """
    columns = {date_column: "date", flow_column: "flow", rain_column: "rain"}
    missing = [name for name in columns if name not in df.columns]
    if missing:
        raise DataFormatError(
            f"Missing required columns {missing}. Available columns: {list(df.columns)}"
        )

    out = df[list(columns)].rename(columns=columns)

    try:
        out["date"] = pd.to_datetime(out["date"]).dt.normalize()
    except (ValueError, TypeError) as e:
        raise DataFormatError(f"Could not parse dates in column '{date_column}'") from e
    if out["date"].isna().any():
        raise DataFormatError(f"Column '{date_column}' contains empty dates")

    out = out.sort_values("date")
    if rain_start is not None:
        out = out[out["date"] >= pd.Timestamp(rain_start)]
    if end is not None:
        out = out[out["date"] <= pd.Timestamp(end)]
    out = out.copy()

    for name, source in (("flow", flow_column), ("rain", rain_column)):
        try:
            out[name] = pd.to_numeric(out[name]).astype(float)
        except (ValueError, TypeError) as e:
            raise DataFormatError(f"Column '{source}' contains non-numeric values") from e
        if (out[name] < 0).any():
            raise DataFormatError(f"Column '{source}' contains negative values")

    duplicated = out["date"].duplicated()
    if duplicated.any():
        repeats = out.loc[duplicated, "date"].dt.strftime("%Y-%m-%d").unique()[:5]
        raise DataFormatError(f"Dates occur more than once: {', '.join(repeats)}")

    n_flow = int(out["flow"].notna().sum())
    if n_flow < 2:
        raise EmptySeriesError(
            f"Need at least 2 streamflow observations after filtering, found {n_flow}"
        )

    series = out.set_index("date").asfreq("D")
    n_inserted = len(series) - len(out)
    if n_inserted:
        logger.info("Inserted %d missing calendar days as empty rows", n_inserted)
    logger.info("Series spans %s to %s (%d days)",
                series.index[0].date(), series.index[-1].date(), len(series))
    return series


def add_covariates(series):
    """
    Add lagged rainfall, seasonal sinusoids and log streamflow.

    ``rain_lag`` at step t is the rainfall recorded at step t-1, NaN at the
    first step. ``season_sin``/``season_cos`` use 2*pi*day_of_year/365.
    ``log_flow`` is NaN where streamflow is missing or zero.
    """
    if not isinstance(series.index, pd.DatetimeIndex):
        raise DataFormatError("Series must be indexed by date")
    missing = [c for c in SERIES_COLUMNS if c not in series.columns]
    if missing:
        raise DataFormatError(f"Series is missing columns {missing}")

    out = series.copy()
    out["rain_lag"] = out["rain"].shift(1)

    angle = 2 * np.pi * out.index.dayofyear.values / DAYS_PER_YEAR
    out["season_sin"] = np.sin(angle)
    out["season_cos"] = np.cos(angle)

    n_zero = int((out["flow"] == 0).sum())
    if n_zero:
        logger.warning("%d zero streamflow values treated as missing on the log scale", n_zero)
    out["log_flow"] = np.log(out["flow"].where(out["flow"] > 0))
    return out


@dataclass
class HoldoutSplit:
    """
    A fitting series with streamflow hidden from the cutoff on, and the
    untouched reference series it was derived from. Both share one index.
    """

    fit: pd.DataFrame
    reference: pd.DataFrame
    cutoff: pd.Timestamp

    @property
    def holdout_mask(self):
        """Boolean array, True at dates on or after the cutoff."""
        return np.asarray(self.reference.index >= self.cutoff)

    @property
    def dates(self):
        return self.reference.index


def mask_holdout(series, cutoff):
    """
    Hide streamflow on and after ``cutoff`` from the fitting series.

    The masked values are kept as NaN so the fitting series keeps one row
    per date; the true values stay available in ``HoldoutSplit.reference``.
    """
    cutoff = pd.Timestamp(cutoff).normalize()
    reference = series.copy()
    fit = series.copy()

    holdout = np.asarray(fit.index >= cutoff)
    flow_columns = [c for c in ("flow", "log_flow") if c in fit.columns]
    fit.loc[holdout, flow_columns] = np.nan

    n_train = int(fit["flow"].notna().sum())
    if n_train < 2:
        raise EmptySeriesError(
            f"Need at least 2 streamflow observations before {cutoff.date()}, found {n_train}"
        )
    n_held = int(reference.loc[holdout, "flow"].notna().sum())
    logger.info("Holdout from %s: %d days masked, %d observations held out",
                cutoff.date(), int(holdout.sum()), n_held)
    return HoldoutSplit(fit=fit, reference=reference, cutoff=cutoff)
