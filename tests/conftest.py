"""
Pytest configuration and fixtures for reproducible testing.

This file provides centralized test configuration including:
- Random seed management for reproducibility
- A non-interactive matplotlib backend
- Small synthetic workshop tables and hand-built posterior traces
"""
import matplotlib
matplotlib.use('Agg')

import pytest
import numpy as np
import pandas as pd
import arviz as az

from envhealth_bayes.datasets import create_sample_mortality_data, create_sample_ensemble_data


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: runs the MCMC sampler")


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Set the global NumPy seed once per test session."""
    np.random.seed(42)
    yield


@pytest.fixture(scope="function")
def reset_seeds():
    """Reset the global NumPy seed before a test that needs fresh random state."""
    np.random.seed(42)
    yield


@pytest.fixture
def mortality_frame():
    """Two regions, two years, six weeks each, with a known temperature pattern."""
    rng = np.random.default_rng(0)
    rows = []
    for region, population in (('North', 100_000), ('South', 200_000)):
        for year in (2015, 2016):
            for week in range(1, 7):
                temperature = 5.0 + week + (1.0 if year == 2016 else -1.0)
                rows.append({
                    'year': year,
                    'week': week,
                    'region': region,
                    'population': population,
                    'deaths': int(rng.poisson(population * 2e-4)),
                    'temperature': temperature,
                })
    return pd.DataFrame(rows)


@pytest.fixture
def mortality_data_dir(tmp_path):
    create_sample_mortality_data(str(tmp_path), n_years=1, regions=('North', 'South'))
    return tmp_path


@pytest.fixture
def ensemble_data_dir(tmp_path):
    create_sample_ensemble_data(str(tmp_path), n_locations=25)
    return tmp_path


@pytest.fixture
def poisson_trace():
    """Posterior for 5 observations with mu known up to small noise."""
    rng = np.random.default_rng(1)
    mu_true = np.array([10.0, 20.0, 30.0, 40.0, 50.0])
    mu = mu_true + rng.normal(0.0, 0.5, size=(2, 200, 5))
    beta = rng.normal(0.05, 0.01, size=(2, 200))
    alpha = rng.normal(-8.0, 0.1, size=(2, 200))
    trace = az.from_dict(
        posterior={'mu': mu, 'beta_temperature': beta, 'alpha': alpha},
        dims={'mu': ['obs']},
        coords={'obs': np.arange(5)},
    )
    return trace, mu_true
