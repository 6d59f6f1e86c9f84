"""
EnvHealth Bayes — Lab 1: Mortality and Temperature
==================================================
Fits a sequence of Bayesian models to weekly deaths, adding one component at
a time and checking what each addition buys.

Workflow:
1. Load weekly deaths, population and temperature by region
2. Look at crude rates and the temperature anomaly
3. Fit the baseline and temperature models; read the convergence report
4. Add a first-order random walk over weeks (and region intercepts)
5. Compare fitted values, residual autocorrelation and LOO

Usage: python mortality_temperature_lab.py [data_dir]
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from envhealth_bayes.datasets import WorkshopDataLoader, create_sample_mortality_data
from envhealth_bayes.transforms import prepare_mortality_data, aggregate_by_region
from envhealth_bayes.models import build_mortality_model
from envhealth_bayes.bayesian import BayesianConfig, PosteriorSampler, compare_models
from envhealth_bayes.fitted import (fitted_values, relative_risk,
                                    residual_autocorrelation, time_effect_summary)
from envhealth_bayes import plotting


def main(data_dir: str = 'data'):
    print("=" * 70)
    print("Lab 1: Mortality and Temperature")
    print("=" * 70)

    # Step 1: Data
    loader = WorkshopDataLoader(data_dir)
    if not (Path(data_dir) / 'mortality.csv').exists():
        create_sample_mortality_data(data_dir)
    df = loader.load_mortality_csv()
    print(aggregate_by_region(df).to_string(index=False))

    # Step 2: Arrays for the models
    data = prepare_mortality_data(df)

    # niter counts burn-in: 2000 iterations, 1000 discarded
    config = BayesianConfig.from_iterations(2000, 1000, n_chains=2,
                                            compute_log_likelihood=True)

    traces = {}
    for level in ['baseline', 'temperature', 'rw1']:
        print(f"\n--- Model: {level} ---")
        bundle = build_mortality_model(data, level=level)
        sampler = PosteriorSampler(config)
        trace = sampler.sample(bundle)
        traces[level] = trace

        scalars = [v for v in bundle.var_names if v not in ('mu', 'time_effect')]
        print(sampler.summarize_posterior(var_names=scalars).round(4).to_string())

        fitted = fitted_values(trace, bundle.observed, frame=data.frame[['region', 'time_idx']])
        acf = residual_autocorrelation(fitted.groupby('time_idx')['residual'].sum().values)
        print(f"Residual lag-1 autocorrelation: {acf.iloc[0]:.3f}")

        if level != 'baseline':
            rr = relative_risk(trace)
            print(f"Rate ratio per °C of anomaly: {rr['median']:.4f} "
                  f"[{rr['lower']:.4f}, {rr['upper']:.4f}], P(RR > 1) = {rr['prob_increase']:.2f}")

        fig, _ = plotting.plot_fitted(fitted, group='region', group_value=data.region_labels[0],
                                      save_path=f"lab1_{level}_fitted.png")
        plt.close(fig)

    # Step 4: The random walk
    fig, _ = plotting.plot_time_effect(time_effect_summary(traces['rw1']),
                                       save_path='lab1_rw1_time_effect.png')
    plt.close(fig)

    # Step 5: Which model predicts best?
    compare_models(traces)

    print("\n✓ Lab 1 complete")


if __name__ == '__main__':
    main(sys.argv[1] if len(sys.argv) > 1 else 'data')
