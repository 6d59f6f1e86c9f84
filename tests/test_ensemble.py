"""
Tests for reading and evaluating precomputed ensemble outputs
"""

import pytest
import numpy as np
import pandas as pd
import arviz as az

from envhealth_bayes.datasets import WorkshopDataLoader, DEFAULT_MODEL_NAMES
from envhealth_bayes.transforms import pivot_predictions_wide, join_one_to_one
from envhealth_bayes.ensemble import (
    check_weights, EnsembleResults, combine_predictions, dominant_model, weight_summary,
    add_ppd_interval, evaluate_against_observations, evaluate_individual_models,
    prepare_static_ensemble, static_ensemble_predict,
)


def results_frame(weights, mean=None, sd=None):
    weights = np.asarray(weights, dtype=float)
    n = len(weights)
    frame = pd.DataFrame({
        'location_id': [f"L{i}" for i in range(n)],
        'lon': np.zeros(n),
        'lat': np.arange(n, dtype=float),
        'year': 2016,
        'mean': mean if mean is not None else np.full(n, 10.0),
        'sd': sd if sd is not None else np.ones(n),
    })
    for k, name in enumerate(['a', 'b']):
        frame[f"w_{name}"] = weights[:, k]
    return frame


@pytest.fixture
def ensemble_inputs(ensemble_data_dir):
    return WorkshopDataLoader(str(ensemble_data_dir)).load_ensemble_inputs()


class TestWeights:

    def test_valid_weights_unchanged(self):
        frame = results_frame([[0.3, 0.7], [1.0, 0.0]])
        assert check_weights(frame) is frame

    def test_small_deviation_renormalised(self):
        frame = results_frame([[0.3, 0.6], [0.5, 0.5]])
        with pytest.warns(UserWarning, match="Renormalising"):
            fixed = check_weights(frame)
        np.testing.assert_allclose(fixed[['w_a', 'w_b']].sum(axis=1), 1.0)
        assert fixed.loc[0, 'w_a'] == pytest.approx(1 / 3)
        assert frame.loc[0, 'w_a'] == 0.3

    def test_strict_mode_raises(self):
        with pytest.raises(ValueError, match="do not sum to 1"):
            check_weights(results_frame([[0.3, 0.6]]), normalize=False)

    def test_within_tolerance_accepted(self):
        check_weights(results_frame([[0.5, 0.5005]]), tol=1e-3, normalize=False)

    @pytest.mark.parametrize("weights, match", [
        ([[-0.1, 1.1]], "non-negative"),
        ([[np.nan, 1.0]], "missing"),
        ([[0.0, 0.0]], "do not sum"),
    ])
    def test_invalid_weights_raise(self, weights, match):
        with pytest.raises(ValueError, match=match):
            check_weights(results_frame(weights))

    def test_no_weight_columns_raise(self):
        with pytest.raises(ValueError, match="No weight columns"):
            check_weights(results_frame([[0.5, 0.5]]).drop(columns=['w_a', 'w_b']))


class TestEnsembleResults:

    def test_from_frame(self):
        results = EnsembleResults.from_frame(results_frame([[0.2, 0.8], [0.6, 0.4]]))
        assert results.model_names == ['a', 'b']
        assert list(results.weights.columns) == ['a', 'b']

        long = results.weights_long()
        assert len(long) == 4
        assert set(long['model']) == {'a', 'b'}

    def test_missing_columns_raise(self):
        with pytest.raises(ValueError, match="sd"):
            EnsembleResults.from_frame(results_frame([[0.5, 0.5]]).drop(columns='sd'))

    def test_dominant_model_and_summary(self):
        results = EnsembleResults.from_frame(results_frame([[0.2, 0.8], [0.6, 0.4], [0.1, 0.9]]))
        assert list(dominant_model(results)) == ['b', 'a', 'b']

        summary = weight_summary(results)
        assert summary.loc['b', 'dominant_share'] == pytest.approx(2 / 3)
        assert summary.loc['a', 'max'] == pytest.approx(0.6)
        assert summary['mean'].sum() == pytest.approx(1.0)

    def test_ppd_interval(self):
        results = EnsembleResults.from_frame(results_frame([[0.5, 0.5]], sd=[2.0]))
        frame = add_ppd_interval(results, credible_interval=0.95)
        assert frame.loc[0, 'lower'] == pytest.approx(10.0 - 1.959964 * 2.0, rel=1e-5)
        assert frame.loc[0, 'upper'] == pytest.approx(10.0 + 1.959964 * 2.0, rel=1e-5)


class TestSampleEnsemble:
    """Synthetic inputs and outputs are mutually consistent."""

    def test_weighted_combination_matches_mean(self, ensemble_inputs):
        results = EnsembleResults.from_frame(ensemble_inputs['results'])
        wide = pivot_predictions_wide(ensemble_inputs['predictions'])
        joined = join_one_to_one(wide, results.frame, keys=['location_id', 'year'],
                                 suffixes=('', '_result'))
        weights = joined[[f"w_{m}" for m in results.model_names]]
        weights.columns = results.model_names
        combined = combine_predictions(joined, weights, results.model_names)
        np.testing.assert_allclose(combined, joined['mean'], atol=1e-3)

    def test_evaluation_metrics(self, ensemble_inputs):
        results = EnsembleResults.from_frame(ensemble_inputs['results'])
        evaluation = evaluate_against_observations(results, ensemble_inputs['monitors'], verbose=False)
        metrics = evaluation['metrics']

        assert metrics['n'] == 25
        assert metrics['rmse'] >= metrics['mae'] >= 0
        assert 0.0 <= metrics['coverage'] <= 1.0
        assert {'error', 'standardised_error', 'covered'} <= set(evaluation['table'].columns)

    def test_evaluation_exact(self):
        results = EnsembleResults.from_frame(
            results_frame([[0.5, 0.5], [0.5, 0.5]], mean=[10.0, 12.0], sd=[1.0, 1.0]))
        monitors = results.frame[['location_id', 'lon', 'lat', 'year']].assign(observed=[11.0, 12.0])
        metrics = evaluate_against_observations(results, monitors, verbose=False)['metrics']

        assert metrics['bias'] == pytest.approx(-0.5)
        assert metrics['mae'] == pytest.approx(0.5)
        assert metrics['rmse'] == pytest.approx(np.sqrt(0.5))
        assert metrics['coverage'] == 1.0

    def test_unmatched_monitor_raises(self, ensemble_inputs):
        results = EnsembleResults.from_frame(ensemble_inputs['results'])
        monitors = ensemble_inputs['monitors'].iloc[1:]
        with pytest.raises(ValueError, match="1:1"):
            evaluate_against_observations(results, monitors, verbose=False)

    def test_individual_models(self, ensemble_inputs):
        table = evaluate_individual_models(ensemble_inputs['predictions'],
                                           ensemble_inputs['monitors'])
        assert sorted(table.index) == sorted(DEFAULT_MODEL_NAMES)
        assert list(table.columns) == ['rmse', 'mae', 'bias']


class TestStaticEnsemble:

    def test_prepare_orders_models(self, ensemble_inputs):
        bundle = prepare_static_ensemble(ensemble_inputs['predictions'], ensemble_inputs['monitors'])
        assert list(bundle.model.coords['model']) == sorted(DEFAULT_MODEL_NAMES)
        assert len(bundle.observed) == 25

    def test_predict_from_posterior(self):
        s = (2, 100)
        trace = az.from_dict(posterior={
            'weights': np.broadcast_to([0.25, 0.75], s + (2,)).copy(),
            'bias': np.full(s, 1.0),
            'sigma': np.full(s, 0.5),
        }, dims={'weights': ['model']}, coords={'model': ['a', 'b']})
        wide = pd.DataFrame({'location_id': ['L1', 'L2'], 'lon': [0.0, 1.0], 'lat': [50.0, 51.0],
                             'year': [2016, 2016], 'a': [4.0, 8.0], 'b': [8.0, 4.0]})

        results = static_ensemble_predict(trace, wide, ['a', 'b'])
        np.testing.assert_allclose(results.frame['mean'], [1.0 + 7.0, 1.0 + 5.0])
        np.testing.assert_allclose(results.frame['sd'], [0.5, 0.5])
        np.testing.assert_allclose(results.weights.iloc[0], [0.25, 0.75])

    def test_predict_requires_parameters(self):
        trace = az.from_dict(posterior={'bias': np.zeros((1, 10))})
        with pytest.raises(ValueError, match="weights"):
            static_ensemble_predict(trace, pd.DataFrame(), ['a'])
