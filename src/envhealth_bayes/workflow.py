"""
Complete lab workflows: data -> model -> MCMC -> diagnostics -> fit -> plots

Lab 1 fits a sequence of increasingly complex Bayesian models of weekly
mortality and temperature. Lab 2 walks through the inputs and outputs of a
Bayesian ensemble of air-pollution models and fits a global-weight baseline.
"""
import dataclasses
import json
import sys
import tempfile
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import pandas as pd
from tqdm import tqdm

from .datasets import (WorkshopDataLoader, create_sample_mortality_data,
                       create_sample_ensemble_data)
from .transforms import (prepare_mortality_data, aggregate_weekly, aggregate_by_region,
                         pivot_predictions_wide, crude_rate)
from .models import MORTALITY_MODELS, ModelBundle, build_mortality_model
from .bayesian import (BayesianConfig, PosteriorSampler,
                       compare_models, summarize_posterior, suggest_rerun_config)
from .fitted import (fitted_values, predictive_coverage, relative_risk,
                     residual_autocorrelation, time_effect_summary)
from .ensemble import (EnsembleResults, evaluate_against_observations,
                       evaluate_individual_models, fit_static_ensemble,
                       static_ensemble_predict, weight_summary, add_ppd_interval)
from . import plotting


@dataclass
class WorkshopConfig:
    """Settings shared by both labs."""
    data_dir: str = 'data'
    output_dir: str = 'outputs'
    mortality_file: str = 'mortality.csv'
    predictions_file: str = 'predictions.csv'
    monitors_file: str = 'monitors.csv'
    ensemble_results_file: str = 'ensemble_results.csv'

    model_levels: List[str] = field(default_factory=lambda: list(MORTALITY_MODELS))
    likelihood: str = 'poisson'
    max_reruns: int = 1                # Extra attempts with doubled iterations
    posterior_predictive: bool = True
    fit_static_ensemble: bool = True
    save_figures: bool = True

    mcmc: BayesianConfig = field(default_factory=BayesianConfig)

    def __post_init__(self):
        if isinstance(self.mcmc, dict):
            self.mcmc = BayesianConfig(**self.mcmc)
        unknown = [lvl for lvl in self.model_levels if lvl not in MORTALITY_MODELS]
        if unknown:
            raise ValueError(f"Unknown model level(s) {unknown}. Choose from {list(MORTALITY_MODELS)}")

    def save(self, filepath: str):
        with open(filepath, 'w') as f:
            json.dump(dataclasses.asdict(self), f, indent=2)
        print(f"[Workflow] Config saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'WorkshopConfig':
        with open(filepath, 'r') as f:
            return cls(**json.load(f))


def fit_with_reruns(bundle: ModelBundle, config: BayesianConfig, max_reruns: int = 1):
    """Sample, and while diagnostics look poor rerun with doubled iterations.

    Returns:
        (sampler, trace, report) from the last attempt
    """
    sampler = PosteriorSampler(config)
    trace = sampler.sample(bundle)
    report = sampler.report or sampler.check_convergence(
        var_names=[v for v in bundle.var_names if v != 'mu'])

    attempt = 0
    while not report.converged and attempt < max_reruns:
        attempt += 1
        config = suggest_rerun_config(config)
        print(f"\n[Workflow] Rerun {attempt}/{max_reruns} for '{bundle.name}': "
              f"{config.n_draws} draws, {config.n_tune} burn-in")
        sampler = PosteriorSampler(config)
        trace = sampler.sample(bundle)
        report = sampler.report or sampler.check_convergence(
            var_names=[v for v in bundle.var_names if v != 'mu'])

    if not report.converged:
        warnings.warn(f"'{bundle.name}' still shows convergence problems: {report.flagged}")
    return sampler, trace, report


def _figure_path(config: WorkshopConfig, name: str) -> Optional[str]:
    if not config.save_figures:
        return None
    out = Path(config.output_dir)
    out.mkdir(parents=True, exist_ok=True)
    return str(out / f"{name}.png")


def _close(fig_ax):
    plt.close(fig_ax[0])


def run_mortality_lab(config: Optional[WorkshopConfig] = None,
                      mortality: Optional[pd.DataFrame] = None) -> Dict:
    """Lab 1: weekly mortality and temperature.

    Args:
        config: Workshop settings
        mortality: Frame to use instead of reading config.mortality_file

    Returns:
        dict with 'data', 'weekly', 'regional', 'models' (per level: bundle,
        trace, report, summary, fitted, residual_acf and, where present,
        relative_risk, time_effect, ppd_coverage) and 'comparison'
    """
    config = config or WorkshopConfig()
    print("\n" + "="*70)
    print("LAB 1: Bayesian models of weekly mortality and temperature")
    print("="*70)

    # Step 1: Load
    print("\n[1/5] Loading data...")
    if mortality is None:
        mortality = WorkshopDataLoader(config.data_dir).load_mortality_csv(config.mortality_file)

    # Step 2: Reshape
    print("\n[2/5] Aggregating and coding...")
    data = prepare_mortality_data(mortality)
    weekly = aggregate_weekly(mortality)
    regional = aggregate_by_region(mortality)
    observed = data.frame.assign(crude_rate=crude_rate(data.frame))
    _close(plotting.plot_observed_series(observed, save_path=_figure_path(config, 'observed_rates')))

    # Steps 3-4: Models and sampling
    print(f"\n[3/5] Fitting {len(config.model_levels)} models...")
    id_cols = ['region', 'year', 'week', 'time_idx', 'population', 'temperature_anomaly']
    results = {}
    for level in tqdm(config.model_levels, desc='Models', disable=not config.mcmc.progressbar):
        bundle = build_mortality_model(data, level, likelihood=config.likelihood)
        sampler, trace, report = fit_with_reruns(bundle, config.mcmc, config.max_reruns)

        scalars = [v for v in bundle.var_names
                   if v not in ('mu', 'time_effect', 'region_effect')]
        entry = {
            'bundle': bundle,
            'trace': trace,
            'report': report,
            'summary': summarize_posterior(trace, var_names=scalars,
                                           credible_interval=config.mcmc.credible_interval),
            'fitted': fitted_values(trace, bundle.observed,
                                    credible_interval=config.mcmc.credible_interval,
                                    frame=data.frame[id_cols]),
        }
        by_week = entry['fitted'].groupby('time_idx')['residual'].sum()
        entry['residual_acf'] = residual_autocorrelation(by_week.values)

        if 'beta_temperature' in trace.posterior:
            entry['relative_risk'] = relative_risk(
                trace, credible_interval=config.mcmc.credible_interval)
        if 'time_effect' in trace.posterior:
            entry['time_effect'] = time_effect_summary(
                trace, credible_interval=config.mcmc.credible_interval)
            _close(plotting.plot_time_effect(
                entry['time_effect'], save_path=_figure_path(config, f"{bundle.name}_time_effect")))
        if config.posterior_predictive:
            sampler.posterior_predictive(bundle, trace)
            entry['ppd_coverage'] = predictive_coverage(
                trace, bundle.observed_name, bundle.observed,
                credible_interval=config.mcmc.credible_interval)

        _close(plotting.plot_trace(trace, var_names=scalars,
                                   save_path=_figure_path(config, f"{bundle.name}_trace")))
        _close(plotting.plot_fitted(entry['fitted'], group='region',
                                    group_value=data.region_labels[0],
                                    save_path=_figure_path(config, f"{bundle.name}_fitted")))
        _close(plotting.plot_residuals(entry['fitted'],
                                       save_path=_figure_path(config, f"{bundle.name}_residuals")))
        results[bundle.name] = entry

    # Step 5: Compare and report
    print("\n[4/5] Comparing models...")
    comparison = None
    if config.mcmc.compute_log_likelihood and len(results) > 1:
        comparison = compare_models({name: r['trace'] for name, r in results.items()})
    else:
        print("  Skipped (needs compute_log_likelihood=True and at least two models)")

    print("\n[5/5] Report")
    print("="*70)
    print(f"{'Model':<18} {'Converged':>10} {'RR per °C':>12} {'95% CrI':>20} {'Lag-1 ACF':>10}")
    print("-"*70)
    for name, r in results.items():
        rr = r.get('relative_risk')
        rr_txt = f"{rr['median']:.4f}" if rr else '-'
        ci_txt = f"[{rr['lower']:.4f}, {rr['upper']:.4f}]" if rr else '-'
        acf1 = r['residual_acf'].iloc[0] if len(r['residual_acf']) else float('nan')
        print(f"{name:<18} {str(r['report'].converged):>10} {rr_txt:>12} {ci_txt:>20} {acf1:>10.3f}")
    print("="*70)

    return {
        'data': data,
        'weekly': weekly,
        'regional': regional,
        'models': results,
        'comparison': comparison,
    }


def run_ensemble_lab(config: Optional[WorkshopConfig] = None) -> Dict:
    """Lab 2: inputs and outputs of a Bayesian ensemble of pollutant models.

    Returns:
        dict with 'results', 'weight_summary', 'individual', 'evaluation' and,
        when fitted, 'static' (bundle, trace, results, evaluation)
    """
    config = config or WorkshopConfig()
    print("\n" + "="*70)
    print("LAB 2: Bayesian ensemble of air-pollution prediction models")
    print("="*70)

    print("\n[1/4] Loading inputs and precomputed outputs...")
    loader = WorkshopDataLoader(config.data_dir)
    inputs = loader.load_ensemble_inputs(config.predictions_file, config.monitors_file,
                                         config.ensemble_results_file)
    if inputs['results'] is None:
        raise FileNotFoundError(
            f"Ensemble results not found: {Path(config.data_dir) / config.ensemble_results_file}"
        )
    predictions, monitors = inputs['predictions'], inputs['monitors']
    results = EnsembleResults.from_frame(inputs['results'])

    print("\n[2/4] Ensemble weights...")
    weights = weight_summary(results)
    print(weights.round(3).to_string())
    _close(plotting.plot_ensemble_weights(results.weights_long(),
                                          save_path=_figure_path(config, 'ensemble_weights')))
    for value in ['mean', 'sd'] + [f"w_{m}" for m in results.model_names]:
        _close(plotting.plot_ensemble_map(results.frame, value=value,
                                          save_path=_figure_path(config, f"ensemble_map_{value}")))

    print("\n[3/4] Evaluation against monitors...")
    individual = evaluate_individual_models(predictions, monitors)
    print(individual.round(3).to_string())
    evaluation = evaluate_against_observations(results, monitors,
                                               credible_interval=config.mcmc.credible_interval)
    _close(plotting.plot_prediction_vs_observed(
        evaluation['table'], save_path=_figure_path(config, 'ensemble_vs_monitors')))

    out = {
        'results': results,
        'weight_summary': weights,
        'individual': individual,
        'evaluation': evaluation,
        'static': None,
    }

    print("\n[4/4] Global-weight baseline...")
    if config.fit_static_ensemble:
        bundle, trace = fit_static_ensemble(predictions, monitors, config.mcmc)
        model_names = list(trace.posterior['weights'].coords['model'].values)
        static_results = static_ensemble_predict(trace, pivot_predictions_wide(predictions),
                                                 model_names)
        static_eval = evaluate_against_observations(
            static_results, monitors, credible_interval=config.mcmc.credible_interval)
        out['static'] = {
            'bundle': bundle,
            'trace': trace,
            'results': static_results,
            'evaluation': static_eval,
            'interval_frame': add_ppd_interval(static_results, config.mcmc.credible_interval),
        }
        print(f"  Spatially varying RMSE {evaluation['metrics']['rmse']:.3f} vs "
              f"global-weight RMSE {static_eval['metrics']['rmse']:.3f} (in-sample)")
    else:
        print("  Skipped")

    return out


def demo_workshop(output_dir: Optional[str] = None) -> Dict:
    """Run both labs on freshly generated sample data with demo settings."""
    work_dir = Path(output_dir or tempfile.mkdtemp(prefix='envhealth_bayes_'))
    data_dir = work_dir / 'data'
    create_sample_mortality_data(str(data_dir), n_years=2)
    create_sample_ensemble_data(str(data_dir), n_locations=40)

    config = WorkshopConfig(
        data_dir=str(data_dir),
        output_dir=str(work_dir / 'outputs'),
        model_levels=['baseline', 'temperature', 'rw1'],
        mcmc=BayesianConfig(n_chains=2, n_draws=500, n_tune=500,
                            compute_log_likelihood=True),
    )
    mortality = run_mortality_lab(config)
    ensemble = run_ensemble_lab(config)

    print(f"\n✓ Workshop demo complete! Figures in {config.output_dir}")
    print("Note: demo uses reduced settings (2 chains × 500 draws).")
    return {'config': config, 'mortality': mortality, 'ensemble': ensemble}


if __name__ == '__main__':
    demo_workshop(sys.argv[1] if len(sys.argv) > 1 else None)
