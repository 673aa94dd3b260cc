"""
Tests for the end-to-end analysis run.
"""

from unittest.mock import patch

import pytest

from bayesian_streamflow.config import AnalysisConfig, DataConfig, SamplerConfig
from bayesian_streamflow.data import mask_holdout
from bayesian_streamflow.pipeline import fit_and_forecast, model_specs, run_analysis
from bayesian_streamflow.specification import rainfall_spec

from conftest import make_fit, simulate_series


def _fake_sampler(draws=60):
    """Stand-in for sample_model returning random draws of the requested variables."""
    calls = []

    def sample(handle, **kwargs):
        calls.append(kwargs)
        include_state = "state" in kwargs["var_names"]
        return make_fit(handle, n_chains=kwargs["chains"], n_draws=kwargs["draws"],
                        include_state=include_state)

    return sample, calls


class TestFitAndForecast:

    @patch('builtins.print')
    def test_two_phase_sampling(self, mock_print, synthetic_series, tmp_path):
        """Short globals-only run first, then a state run on the same model."""
        split = mask_holdout(synthetic_series, synthetic_series.index[-10])
        sampler = SamplerConfig(chains=2, diagnostic_draws=40, forecast_draws=80, burn_in=20)
        sample, calls = _fake_sampler()

        with patch('bayesian_streamflow.pipeline.sample_model', side_effect=sample) as mock_sample:
            run = fit_and_forecast(rainfall_spec(), split, sampler, output_dir=tmp_path)

        assert len(calls) == 2
        first, second = calls
        assert first["var_names"] == ["tau_obs", "tau_proc", "beta_rain"]
        assert first["draws"] == 40
        assert "state" in second["var_names"]
        assert second["draws"] == 80
        assert mock_sample.call_args_list[0][0][0] is mock_sample.call_args_list[1][0][0]
        assert first["random_seed"] == sampler.random_seed
        assert second["random_seed"] == sampler.random_seed + 1

        assert run.diagnostic_fit.state is None
        assert run.forecast_fit.state.shape == (2, 80, len(synthetic_series))
        assert run.coverage['n_holdout'] == 10
        assert (tmp_path / "rainfall_trace.png").exists()
        assert (tmp_path / "rainfall_forecast.png").exists()

    @patch('builtins.print')
    def test_unseeded_runs_stay_unseeded(self, mock_print, synthetic_series):
        split = mask_holdout(synthetic_series, synthetic_series.index[-10])
        sampler = SamplerConfig(chains=2, diagnostic_draws=40, forecast_draws=80, burn_in=20,
                                random_seed=None)
        sample, calls = _fake_sampler()

        with patch('bayesian_streamflow.pipeline.sample_model', side_effect=sample), \
                patch('bayesian_streamflow.visualizations.plt.show'):
            fit_and_forecast(rainfall_spec(), split, sampler)

        assert [call["random_seed"] for call in calls] == [None, None]


class TestRunAnalysis:

    def test_model_specs(self, synthetic_series):
        config = AnalysisConfig(data=DataConfig(path="unused.csv"), holdout_cutoff="2020-03-31")
        specs = model_specs(config, synthetic_series)

        assert [spec.name for spec in specs] == ["random_walk", "rainfall", "mean_reverting"]
        rate = specs[2].prior("rain_lag_missing").hyperparameters["rate"]
        assert rate == pytest.approx(1.0 / synthetic_series["rain"].mean())

    @patch('builtins.print')
    def test_run_analysis(self, mock_print, tmp_path):
        series = simulate_series(n_days=60, seed=8)
        frame = series.reset_index()
        frame["date"] = frame["date"].dt.strftime("%Y-%m-%d")
        path = tmp_path / "observations.csv"
        frame.to_csv(path, index=False)

        config = AnalysisConfig(
            data=DataConfig(path=path, rain_start="2020-01-05"),
            holdout_cutoff="2020-02-20",
            sampler=SamplerConfig(chains=2, diagnostic_draws=30, forecast_draws=50, burn_in=10),
            output_dir=tmp_path / "figures",
        )
        sample, calls = _fake_sampler()
        with patch('bayesian_streamflow.pipeline.sample_model', side_effect=sample):
            runs = run_analysis(config)

        assert list(runs) == ["random_walk", "rainfall", "mean_reverting"]
        assert len(calls) == 6
        for name, run in runs.items():
            assert run.band.dates[0].strftime("%Y-%m-%d") == "2020-01-05"
            assert (tmp_path / "figures" / f"{name}_forecast.png").exists()
        assert (tmp_path / "figures" / "observations.png").exists()
        assert (tmp_path / "figures" / "lag_correlation.png").exists()
