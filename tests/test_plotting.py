"""
Smoke tests for the plotting helpers
"""

import pytest
import numpy as np
import pandas as pd
import arviz as az
import matplotlib.pyplot as plt

from envhealth_bayes import plotting


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture
def fitted_frame():
    t = np.tile(np.arange(10), 2)
    fitted = 50 + 5 * np.sin(t / 2)
    return pd.DataFrame({
        'region': ['A'] * 10 + ['B'] * 10,
        'time_idx': t,
        'crude_rate': fitted / 10,
        'observed': fitted + 1.0,
        'fitted': fitted,
        'fitted_lower': fitted - 3,
        'fitted_upper': fitted + 3,
        'pearson_residual': np.linspace(-1, 1, 20),
    })


def test_observed_series(fitted_frame, tmp_path):
    path = tmp_path / 'observed.png'
    fig, ax = plotting.plot_observed_series(fitted_frame, save_path=str(path))
    assert path.exists()
    assert ax.get_xlabel() == 'Week'


def test_fitted_filters_group(fitted_frame):
    fig, ax = plotting.plot_fitted(fitted_frame, group='region', group_value='B')
    assert ax.get_title().endswith(': B')
    assert len(ax.collections[-1].get_offsets()) == 10


def test_residual_panels(fitted_frame):
    fig, axes = plotting.plot_residuals(fitted_frame)
    assert len(axes) == 3


@pytest.mark.parametrize("relative_risk, ref", [(True, 1.0), (False, 0.0)])
def test_time_effect(relative_risk, ref):
    effect = np.linspace(-0.1, 0.1, 12)
    summary = pd.DataFrame({
        'effect': effect, 'lower': effect - 0.05, 'upper': effect + 0.05,
        'relative_risk': np.exp(effect), 'rr_lower': np.exp(effect - 0.05),
        'rr_upper': np.exp(effect + 0.05),
    }, index=[f"2015-W{w:02d}" for w in range(1, 13)])
    fig, ax = plotting.plot_time_effect(summary, relative_risk=relative_risk)
    assert ax.lines[-1].get_ydata()[0] == ref


def test_trace_and_posterior(tmp_path):
    rng = np.random.default_rng(0)
    trace = az.from_dict(posterior={'alpha': rng.normal(size=(2, 100)),
                                    'beta': rng.normal(size=(2, 100))})
    plotting.plot_trace(trace, var_names=['alpha'], save_path=str(tmp_path / 'trace.png'))
    fig, axes = plotting.plot_posterior_densities(trace)
    assert (tmp_path / 'trace.png').exists()
    assert axes.size == 2


def test_ensemble_plots():
    frame = pd.DataFrame({
        'location_id': ['L1', 'L2', 'L3'], 'lon': [0.0, 1.0, 2.0], 'lat': [50.0, 51.0, 52.0],
        'year': 2016, 'mean': [10.0, 11.0, 12.0], 'sd': [1.0, 1.0, 1.0],
        'lower': [8.0, 9.0, 10.0], 'upper': [12.0, 13.0, 14.0], 'observed': [10.5, 10.0, 12.5],
    })
    fig, ax = plotting.plot_ensemble_map(frame, value='sd')
    assert ax.get_title() == 'Ensemble sd'

    long = pd.DataFrame({'model': ['a', 'a', 'b', 'b'], 'weight': [0.2, 0.4, 0.8, 0.6]})
    fig, ax = plotting.plot_ensemble_weights(long)
    assert ax.get_ylim() == (0, 1)

    fig, ax = plotting.plot_prediction_vs_observed(frame)
    assert ax.get_xlabel() == 'Observed'
