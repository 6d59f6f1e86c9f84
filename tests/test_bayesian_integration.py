"""
Integration tests that run the PyMC sampler on small workshop models.

Tests:
1. PosteriorSampler - mortality models recover a known temperature effect
2. Thinning, posterior predictive draws and log-likelihood for comparison
3. fit_with_reruns - extra attempts when diagnostics are poor
4. Static ensemble - global weights favour the accurate model
"""

import pytest
import numpy as np
import pandas as pd

from envhealth_bayes.datasets import create_sample_mortality_data
from envhealth_bayes.transforms import prepare_mortality_data
from envhealth_bayes.models import build_mortality_model
from envhealth_bayes.bayesian import BayesianConfig, PosteriorSampler, compare_models
from envhealth_bayes.fitted import (fitted_values, predictive_coverage, predictive_intervals,
                                    relative_risk)
from envhealth_bayes.ensemble import fit_static_ensemble
from envhealth_bayes.workflow import fit_with_reruns


def tiny_config(**kwargs):
    settings = dict(n_chains=2, n_draws=300, n_tune=300, progressbar=False,
                    min_ess=50.0, rhat_threshold=1.05, random_seed=1)
    settings.update(kwargs)
    return BayesianConfig(**settings)


@pytest.fixture(scope="module")
def workshop_data(tmp_path_factory):
    out = tmp_path_factory.mktemp('mortality')
    path = create_sample_mortality_data(str(out), n_years=2, regions=('North', 'South'),
                                        temperature_effect=0.05)
    return prepare_mortality_data(pd.read_csv(path))


# ═══════════════════════════════════════════════════════════════
# Mortality models
# ═══════════════════════════════════════════════════════════════

@pytest.mark.slow
class TestMortalitySampling:

    def test_temperature_effect_recovered(self, workshop_data):
        bundle = build_mortality_model(workshop_data, 'temperature')
        sampler = PosteriorSampler(tiny_config())
        trace = sampler.sample(bundle)

        assert set(trace.posterior.data_vars) == {'alpha', 'beta_temperature', 'mu'}
        assert trace.posterior.sizes['chain'] == 2
        assert trace.posterior.sizes['draw'] == 300
        assert sampler.report is not None
        assert 'mu' not in sampler.report.table.index

        rr = relative_risk(trace)
        assert rr['median'] == pytest.approx(np.exp(0.05), abs=0.03)
        assert rr['prob_increase'] > 0.95

        fitted = fitted_values(trace, bundle.observed)
        assert len(fitted) == workshop_data.n_obs
        assert abs(fitted['residual'].sum()) < 0.05 * workshop_data.deaths.sum()

    def test_thinning(self, workshop_data):
        bundle = build_mortality_model(workshop_data, 'baseline')
        trace = PosteriorSampler(tiny_config(thin=3, check_convergence=False)).sample(bundle)
        assert trace.posterior.sizes['draw'] == 100

    def test_posterior_predictive(self, workshop_data):
        bundle = build_mortality_model(workshop_data, 'rw1_region')
        sampler = PosteriorSampler(tiny_config())
        trace = sampler.sample(bundle)
        sampler.posterior_predictive()

        assert 'posterior_predictive' in trace.groups()
        assert trace.posterior['time_effect'].shape[-1] == workshop_data.n_times
        coverage = predictive_coverage(trace, 'deaths', bundle.observed)
        assert 0.5 < coverage <= 1.0

    @pytest.mark.parametrize("level", ['rw1', 'rw1_region'])
    def test_predictive_draws_use_posterior_random_effects(self, workshop_data, level):
        bundle = build_mortality_model(workshop_data, level)
        sampler = PosteriorSampler(tiny_config(check_convergence=False))
        trace = sampler.sample(bundle)
        sampler.posterior_predictive()

        assert 'time_innovation' in trace.posterior
        if level == 'rw1_region':
            assert 'region_raw' in trace.posterior

        mu_mean = trace.posterior['mu'].mean(dim=('chain', 'draw')).values
        intervals = predictive_intervals(trace, 'deaths', bundle.observed)
        rel_err = np.abs(intervals['ppd_mean'].values - mu_mean) / mu_mean
        assert np.median(rel_err) < 0.03

        # Poisson noise around the posterior mean, not prior-drawn walks
        width = (intervals['ppd_upper'] - intervals['ppd_lower']).values
        assert np.median(width / (4.0 * np.sqrt(mu_mean))) < 1.5

    def test_log_likelihood_and_comparison(self, workshop_data):
        config = tiny_config(compute_log_likelihood=True)
        traces = {}
        for level in ('baseline', 'temperature'):
            bundle = build_mortality_model(workshop_data, level)
            traces[level] = PosteriorSampler(config).sample(bundle)
            assert 'log_likelihood' in traces[level].groups()

        comparison = compare_models(traces)
        assert comparison.index[0] == 'temperature'


@pytest.mark.slow
class TestFitWithReruns:

    def test_reruns_with_more_draws(self, workshop_data):
        bundle = build_mortality_model(workshop_data, 'baseline')
        config = tiny_config(n_draws=50, n_tune=50, min_ess=1e6)
        with pytest.warns(UserWarning, match="convergence problems"):
            sampler, trace, report = fit_with_reruns(bundle, config, max_reruns=1)

        assert sampler.config.n_draws == 100
        assert trace.posterior.sizes['draw'] == 100
        assert not report.converged

    def test_no_rerun_when_converged(self, workshop_data):
        bundle = build_mortality_model(workshop_data, 'baseline')
        sampler, trace, report = fit_with_reruns(bundle, tiny_config(), max_reruns=2)
        assert report.converged
        assert sampler.config.n_draws == 300


# ═══════════════════════════════════════════════════════════════
# Static ensemble
# ═══════════════════════════════════════════════════════════════

@pytest.mark.slow
def test_static_ensemble_weights_accurate_model():
    rng = np.random.default_rng(3)
    n = 80
    truth = rng.normal(12.0, 3.0, size=n)
    rows_pred, rows_mon = [], []
    for i in range(n):
        for model, sd in (('good', 0.2), ('poor', 3.0)):
            rows_pred.append({'location_id': f"L{i}", 'lon': 0.0, 'lat': float(i), 'year': 2016,
                              'model': model, 'prediction': truth[i] + rng.normal(0.0, sd)})
        rows_mon.append({'location_id': f"L{i}", 'lon': 0.0, 'lat': float(i), 'year': 2016,
                         'observed': truth[i] + rng.normal(0.0, 0.2)})

    bundle, trace = fit_static_ensemble(pd.DataFrame(rows_pred), pd.DataFrame(rows_mon),
                                        tiny_config())
    weights = trace.posterior['weights'].mean(dim=('chain', 'draw'))
    assert list(weights.coords['model'].values) == ['good', 'poor']
    assert float(weights.sel(model='good')) > 0.8
