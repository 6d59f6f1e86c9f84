"""
EnvHealth Bayes — Ensemble Lab Utilities
========================================
Reads and interrogates the output of a Bayesian ensemble of air-pollution
prediction models.

The ensemble itself (weights that vary smoothly over space and time, with a
posterior predictive mean and standard deviation at every location) is fitted
by an external code base; this module works with its precomputed results:

    location_id, lon, lat, year, mean, sd, w_<model_1>, ..., w_<model_K>

and with the inputs it was fitted to (per-model predictions and monitor
observations). A global-weight Bayesian model average is provided as a
baseline that can be fitted in the lab.

Usage:
    loader = WorkshopDataLoader('data')
    results = EnsembleResults.from_frame(loader.load_ensemble_results_csv())
    metrics = evaluate_against_observations(results, loader.load_monitors_csv())
"""

import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import arviz as az
import scipy.stats as st

from .datasets import WEIGHT_PREFIX, ENSEMBLE_RESULT_COLUMNS, require_columns, weight_columns
from .transforms import join_one_to_one, pivot_predictions_wide
from .models import build_static_ensemble_model, ModelBundle
from .bayesian import BayesianConfig, PosteriorSampler

KEYS = ['location_id', 'year']


def check_weights(frame: pd.DataFrame, tol: float = 1e-3, normalize: bool = True) -> pd.DataFrame:
    """Check ensemble weights are non-negative and sum to one per row.

    Args:
        frame: Ensemble results with ``w_<model>`` columns
        tol: Allowed deviation of the row sum from 1
        normalize: Rescale rows outside tolerance (with a warning) instead of raising

    Returns:
        Frame (a copy when rescaled)
    """
    cols = weight_columns(frame)
    if not cols:
        raise ValueError(f"No weight columns ('{WEIGHT_PREFIX}<model>') found")
    weights = frame[cols].to_numpy(dtype=np.float64)
    if np.isnan(weights).any():
        raise ValueError("Ensemble weights contain missing values")
    if (weights < 0).any():
        raise ValueError("Ensemble weights must be non-negative")

    sums = weights.sum(axis=1)
    bad = np.abs(sums - 1.0) > tol
    if bad.any():
        if not normalize or (sums[bad] == 0).any():
            raise ValueError(
                f"Ensemble weights do not sum to 1 in {int(bad.sum())} rows "
                f"(range {sums.min():.4f} - {sums.max():.4f})"
            )
        warnings.warn(f"Renormalising ensemble weights in {int(bad.sum())} rows")
        frame = frame.copy()
        frame[cols] = weights / sums[:, None]
    return frame


@dataclass
class EnsembleResults:
    """Precomputed ensemble output: predictive mean/sd and per-model weights."""
    frame: pd.DataFrame
    model_names: List[str]

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, tol: float = 1e-3,
                   normalize: bool = True) -> 'EnsembleResults':
        require_columns(frame, ENSEMBLE_RESULT_COLUMNS, source='ensemble results')
        frame = check_weights(frame, tol=tol, normalize=normalize)
        names = [c[len(WEIGHT_PREFIX):] for c in weight_columns(frame)]
        return cls(frame=frame.reset_index(drop=True), model_names=names)

    @property
    def weights(self) -> pd.DataFrame:
        """[locations, models] weights, columns named by model."""
        w = self.frame[[f"{WEIGHT_PREFIX}{m}" for m in self.model_names]].copy()
        w.columns = self.model_names
        return w

    def weights_long(self) -> pd.DataFrame:
        """One row per location, year and model."""
        id_vars = ['location_id', 'lon', 'lat', 'year']
        long = self.frame[id_vars].join(self.weights).melt(
            id_vars=id_vars, var_name='model', value_name='weight')
        return long.sort_values(id_vars + ['model']).reset_index(drop=True)


def combine_predictions(predictions_wide: pd.DataFrame,
                        weights: pd.DataFrame,
                        model_names: Sequence[str]) -> pd.Series:
    """Weighted point ensemble: sum_k w_k * prediction_k row by row.

    Both frames must share row order (e.g. after a 1:1 join).
    """
    missing = [m for m in model_names if m not in predictions_wide.columns]
    if missing:
        raise ValueError(f"Predictions missing for models {missing}")
    if len(predictions_wide) != len(weights):
        raise ValueError(f"Row count mismatch: {len(predictions_wide)} predictions vs "
                         f"{len(weights)} weight rows")
    preds = predictions_wide[list(model_names)].to_numpy(dtype=np.float64)
    w = weights[list(model_names)].to_numpy(dtype=np.float64)
    return pd.Series((preds * w).sum(axis=1), index=predictions_wide.index, name='weighted_mean')


def dominant_model(results: EnsembleResults) -> pd.Series:
    """Model with the largest weight at each location."""
    return results.weights.idxmax(axis=1).rename('dominant_model')


def weight_summary(results: EnsembleResults) -> pd.DataFrame:
    """Mean, sd, min, max of each model's weight and how often it dominates."""
    w = results.weights
    summary = pd.DataFrame({
        'mean': w.mean(),
        'sd': w.std(),
        'min': w.min(),
        'max': w.max(),
    })
    counts = dominant_model(results).value_counts()
    summary['dominant_share'] = counts.reindex(summary.index).fillna(0) / len(w)
    summary.index.name = 'model'
    return summary


def add_ppd_interval(results: EnsembleResults, credible_interval: float = 0.95) -> pd.DataFrame:
    """Normal-approximation predictive interval mean ± z·sd."""
    z = st.norm.ppf(0.5 + credible_interval / 2)
    frame = results.frame.copy()
    frame['lower'] = frame['mean'] - z * frame['sd']
    frame['upper'] = frame['mean'] + z * frame['sd']
    return frame


def evaluate_against_observations(results: EnsembleResults,
                                  monitors: pd.DataFrame,
                                  credible_interval: float = 0.95,
                                  verbose: bool = True) -> Dict:
    """Compare ensemble predictions with monitor observations.

    Returns:
        dict with 'metrics' (rmse, mae, bias, r2, coverage, mean_sd, n) and
        'table' (per-location errors and standardised errors)
    """
    require_columns(monitors, KEYS + ['observed'], source='monitors')
    frame = add_ppd_interval(results, credible_interval)
    joined = join_one_to_one(frame, monitors[KEYS + ['observed']], keys=KEYS)

    err = joined['mean'] - joined['observed']
    joined['error'] = err
    joined['standardised_error'] = err / joined['sd'].where(joined['sd'] > 0)
    joined['covered'] = (joined['observed'] >= joined['lower']) & (joined['observed'] <= joined['upper'])

    ss_res = float((err ** 2).sum())
    ss_tot = float(((joined['observed'] - joined['observed'].mean()) ** 2).sum())
    metrics = {
        'n': int(len(joined)),
        'rmse': float(np.sqrt((err ** 2).mean())),
        'mae': float(err.abs().mean()),
        'bias': float(err.mean()),
        'r2': 1.0 - ss_res / ss_tot if ss_tot > 0 else np.nan,
        'coverage': float(joined['covered'].mean()),
        'mean_sd': float(joined['sd'].mean()),
    }

    if verbose:
        print(f"[Ensemble] Evaluation against {metrics['n']} monitors:")
        print(f"  RMSE {metrics['rmse']:.3f}  MAE {metrics['mae']:.3f}  "
              f"Bias {metrics['bias']:+.3f}  R² {metrics['r2']:.3f}")
        print(f"  {credible_interval:.0%} interval coverage: {metrics['coverage']:.1%} "
              f"(mean sd {metrics['mean_sd']:.3f})")

    return {'metrics': metrics, 'table': joined}


def evaluate_individual_models(predictions: pd.DataFrame, monitors: pd.DataFrame) -> pd.DataFrame:
    """RMSE, MAE and bias of each input model at the monitors."""
    wide = pivot_predictions_wide(predictions)
    joined = join_one_to_one(wide, monitors[KEYS + ['observed']], keys=KEYS)
    model_names = sorted(predictions['model'].unique())
    rows = {}
    for name in model_names:
        err = joined[name] - joined['observed']
        rows[name] = {
            'rmse': float(np.sqrt((err ** 2).mean())),
            'mae': float(err.abs().mean()),
            'bias': float(err.mean()),
        }
    table = pd.DataFrame.from_dict(rows, orient='index')
    table.index.name = 'model'
    return table


# ═══════════════════════════════════════════════════════════════
# Static ensemble baseline
# ═══════════════════════════════════════════════════════════════

def prepare_static_ensemble(predictions: pd.DataFrame, monitors: pd.DataFrame) -> ModelBundle:
    """Join predictions to monitors (1:1) and build the global-weight model."""
    wide = pivot_predictions_wide(predictions)
    joined = join_one_to_one(wide, monitors[KEYS + ['observed']], keys=KEYS)
    model_names = sorted(predictions['model'].unique())
    return build_static_ensemble_model(
        joined[model_names].to_numpy(dtype=np.float64),
        joined['observed'].to_numpy(dtype=np.float64),
        model_names,
    )


def fit_static_ensemble(predictions: pd.DataFrame,
                        monitors: pd.DataFrame,
                        config: Optional[BayesianConfig] = None):
    """Build and sample the global-weight ensemble.

    Returns:
        (ModelBundle, InferenceData)
    """
    bundle = prepare_static_ensemble(predictions, monitors)
    sampler = PosteriorSampler(config)
    trace = sampler.sample(bundle)
    return bundle, trace


def static_ensemble_predict(trace: az.InferenceData,
                            predictions_wide: pd.DataFrame,
                            model_names: Sequence[str]) -> EnsembleResults:
    """Posterior predictive mean and sd of the global-weight ensemble at new locations.

    For each posterior draw s: mu_s = bias_s + P · w_s. The predictive variance
    adds the mean observation noise to the spread of mu across draws.
    """
    post = trace.posterior
    for var in ('weights', 'bias', 'sigma'):
        if var not in post:
            raise ValueError(f"'{var}' not recorded in posterior")
    weights = post['weights'].values.reshape(-1, len(model_names))   # [S, K]
    bias = post['bias'].values.reshape(-1)                             # [S]
    sigma = post['sigma'].values.reshape(-1)                           # [S]

    preds = predictions_wide[list(model_names)].to_numpy(dtype=np.float64)   # [N, K]
    mu = bias[:, None] + weights @ preds.T                                    # [S, N]

    frame = predictions_wide[['location_id', 'lon', 'lat', 'year']].copy().reset_index(drop=True)
    frame['mean'] = mu.mean(axis=0)
    frame['sd'] = np.sqrt(mu.var(axis=0) + np.mean(sigma ** 2))
    mean_weights = weights.mean(axis=0)
    mean_weights = mean_weights / mean_weights.sum()
    for k, name in enumerate(model_names):
        frame[f"{WEIGHT_PREFIX}{name}"] = mean_weights[k]
    return EnsembleResults(frame=frame, model_names=list(model_names))
