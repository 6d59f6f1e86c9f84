"""
Tests for the end-to-end lab workflows
"""

import pytest

from envhealth_bayes.bayesian import BayesianConfig
from envhealth_bayes.datasets import create_sample_mortality_data
from envhealth_bayes.workflow import WorkshopConfig, run_ensemble_lab, run_mortality_lab


class TestWorkshopConfig:

    def test_defaults(self):
        config = WorkshopConfig()
        assert config.model_levels == ['baseline', 'temperature', 'rw1', 'rw1_region']
        assert isinstance(config.mcmc, BayesianConfig)

    def test_save_load_nested(self, tmp_path):
        config = WorkshopConfig(data_dir='in', model_levels=['baseline'],
                                mcmc=BayesianConfig(n_chains=2, thin=2))
        path = tmp_path / 'workshop.json'
        config.save(str(path))

        loaded = WorkshopConfig.load(str(path))
        assert loaded == config
        assert loaded.mcmc.thin == 2

    def test_unknown_level_raises(self):
        with pytest.raises(ValueError, match="Unknown model level"):
            WorkshopConfig(model_levels=['baseline', 'car'])


class TestEnsembleLab:

    def test_runs_without_static_fit(self, ensemble_data_dir, tmp_path):
        config = WorkshopConfig(data_dir=str(ensemble_data_dir),
                                output_dir=str(tmp_path / 'out'),
                                fit_static_ensemble=False)
        out = run_ensemble_lab(config)

        assert out['static'] is None
        assert out['evaluation']['metrics']['n'] == 25
        assert len(out['weight_summary']) == 3
        assert (tmp_path / 'out' / 'ensemble_weights.png').exists()
        assert (tmp_path / 'out' / 'ensemble_map_sd.png').exists()

    def test_missing_results_raise(self, ensemble_data_dir):
        (ensemble_data_dir / 'ensemble_results.csv').unlink()
        config = WorkshopConfig(data_dir=str(ensemble_data_dir), save_figures=False)
        with pytest.raises(FileNotFoundError, match="ensemble_results.csv"):
            run_ensemble_lab(config)

    @pytest.mark.slow
    def test_static_baseline(self, ensemble_data_dir):
        config = WorkshopConfig(data_dir=str(ensemble_data_dir), save_figures=False,
                                mcmc=BayesianConfig(n_chains=2, n_draws=200, n_tune=200,
                                                    progressbar=False))
        out = run_ensemble_lab(config)
        static = out['static']
        assert static['results'].model_names == sorted(static['results'].model_names)
        assert static['evaluation']['metrics']['n'] == 25


@pytest.mark.slow
class TestMortalityLab:

    def test_two_levels(self, tmp_path):
        create_sample_mortality_data(str(tmp_path), n_years=2, regions=('North', 'South'))
        config = WorkshopConfig(
            data_dir=str(tmp_path),
            output_dir=str(tmp_path / 'out'),
            model_levels=['baseline', 'rw1'],
            max_reruns=0,
            mcmc=BayesianConfig(n_chains=2, n_draws=200, n_tune=200, progressbar=False,
                                compute_log_likelihood=True, min_ess=10, rhat_threshold=1.1),
        )
        out = run_mortality_lab(config)

        assert list(out['models']) == ['baseline', 'rw1']
        rw1 = out['models']['rw1']
        assert 'relative_risk' in rw1
        assert len(rw1['time_effect']) == out['data'].n_times
        assert 0.0 < rw1['ppd_coverage'] <= 1.0
        assert 'relative_risk' not in out['models']['baseline']
        assert set(out['comparison'].index) == {'baseline', 'rw1'}
        assert (tmp_path / 'out' / 'rw1_time_effect.png').exists()
