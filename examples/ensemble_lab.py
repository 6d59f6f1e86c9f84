"""
EnvHealth Bayes — Lab 2: Bayesian Ensemble of Air-Pollution Models
==================================================================
The spatially varying ensemble is fitted elsewhere; here we read its inputs
(per-model predictions, monitor observations) and outputs (predictive mean,
sd and model weights per location) and ask what it learned.

Usage: python ensemble_lab.py [data_dir]
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from envhealth_bayes.datasets import WorkshopDataLoader, create_sample_ensemble_data
from envhealth_bayes.transforms import pivot_predictions_wide, join_one_to_one
from envhealth_bayes.bayesian import BayesianConfig
from envhealth_bayes.ensemble import (EnsembleResults, combine_predictions,
                                      evaluate_against_observations,
                                      evaluate_individual_models, fit_static_ensemble,
                                      static_ensemble_predict, weight_summary)
from envhealth_bayes import plotting


def main(data_dir: str = 'data'):
    print("=" * 70)
    print("Lab 2: Bayesian Ensemble")
    print("=" * 70)

    loader = WorkshopDataLoader(data_dir)
    if not (Path(data_dir) / 'ensemble_results.csv').exists():
        create_sample_ensemble_data(data_dir)
    inputs = loader.load_ensemble_inputs()
    predictions, monitors = inputs['predictions'], inputs['monitors']
    results = EnsembleResults.from_frame(inputs['results'])

    # Where does each model get the weight?
    print(weight_summary(results).round(3).to_string())
    for model in results.model_names:
        fig, _ = plotting.plot_ensemble_map(results.frame, value=f"w_{model}",
                                            cmap='magma', save_path=f"lab2_weight_{model}.png")
        plt.close(fig)

    # The weighted point combination reproduces the ensemble mean
    wide = pivot_predictions_wide(predictions)
    joined = join_one_to_one(wide, results.frame, keys=['location_id', 'year'],
                             suffixes=('', '_result'))
    joined['weighted_mean'] = combine_predictions(
        joined, joined[[f"w_{m}" for m in results.model_names]].set_axis(results.model_names, axis=1),
        results.model_names)
    print(f"Max |weighted mean - ensemble mean|: "
          f"{(joined['weighted_mean'] - joined['mean']).abs().max():.4f}")

    # Individual models vs the ensemble at the monitors
    print(evaluate_individual_models(predictions, monitors).round(3).to_string())
    evaluation = evaluate_against_observations(results, monitors)
    fig, _ = plotting.plot_prediction_vs_observed(evaluation['table'],
                                                  save_path='lab2_vs_monitors.png')
    plt.close(fig)

    # A single set of weights for all locations, for contrast
    config = BayesianConfig(n_chains=2, n_draws=1000, n_tune=1000)
    bundle, trace = fit_static_ensemble(predictions, monitors, config)
    fitted_order = list(trace.posterior['weights'].coords['model'].values)
    static = static_ensemble_predict(trace, wide, fitted_order)
    print("Global weights:", static.weights.iloc[0].round(3).to_dict())
    evaluate_against_observations(static, monitors)

    print("\n✓ Lab 2 complete")


if __name__ == '__main__':
    main(sys.argv[1] if len(sys.argv) > 1 else 'data')
