"""
Fitted values, residuals and predictive checks computed from posterior draws.
"""
import numpy as np
import pandas as pd
import arviz as az
from typing import Optional, Sequence


def _flat_draws(trace: az.InferenceData, var_name: str, group: str = 'posterior') -> np.ndarray:
    """[chain * draw, ...] array of one variable's draws."""
    if group not in trace.groups():
        raise ValueError(f"Trace has no '{group}' group")
    dataset = getattr(trace, group)
    if var_name not in dataset:
        raise ValueError(f"'{var_name}' not recorded in {group}; add it to var_names when sampling")
    values = dataset[var_name].values
    return values.reshape((-1,) + values.shape[2:])


def _bounds(credible_interval: float):
    tail = (1.0 - credible_interval) / 2.0
    return tail, 1.0 - tail


def fitted_values(trace: az.InferenceData,
                  observed: np.ndarray,
                  var_name: str = 'mu',
                  credible_interval: float = 0.95,
                  frame: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """Posterior fitted means and residuals, one row per observation.

    Pearson residuals use the Poisson variance (mu), or the negative binomial
    variance mu + mu^2 / dispersion when a ``dispersion`` parameter was recorded.

    Args:
        trace: InferenceData with ``var_name`` in the posterior
        observed: [N] observed outcomes
        var_name: Deterministic holding the expected outcome
        credible_interval: Width of the equal-tailed band
        frame: Optional source frame whose columns are prepended

    Returns:
        DataFrame with observed, fitted, fitted_median, fitted_lower,
        fitted_upper, residual, pearson_residual
    """
    observed = np.asarray(observed, dtype=np.float64)
    draws = _flat_draws(trace, var_name)
    if draws.shape[1:] != observed.shape:
        raise ValueError(f"'{var_name}' has shape {draws.shape[1:]}, observed has {observed.shape}")

    lo, hi = _bounds(credible_interval)
    fitted = draws.mean(axis=0)
    lower, median, upper = np.quantile(draws, [lo, 0.5, hi], axis=0)

    variance = fitted.copy()
    if 'dispersion' in trace.posterior:
        dispersion = float(trace.posterior['dispersion'].mean())
        variance = fitted + fitted ** 2 / dispersion

    out = pd.DataFrame({
        'observed': observed,
        'fitted': fitted,
        'fitted_median': median,
        'fitted_lower': lower,
        'fitted_upper': upper,
    })
    out['residual'] = out['observed'] - out['fitted']
    out['pearson_residual'] = out['residual'] / np.sqrt(np.maximum(variance, 1e-12))

    if frame is not None:
        if len(frame) != len(out):
            raise ValueError(f"Frame has {len(frame)} rows, expected {len(out)}")
        out = pd.concat([frame.reset_index(drop=True), out], axis=1)
    return out


def predictive_intervals(trace: az.InferenceData,
                         observed_name: str,
                         observed: np.ndarray,
                         credible_interval: float = 0.95) -> pd.DataFrame:
    """Posterior predictive bounds per observation and whether each observation falls inside."""
    observed = np.asarray(observed, dtype=np.float64)
    draws = _flat_draws(trace, observed_name, group='posterior_predictive')
    lo, hi = _bounds(credible_interval)
    lower, upper = np.quantile(draws, [lo, hi], axis=0)
    return pd.DataFrame({
        'observed': observed,
        'ppd_mean': draws.mean(axis=0),
        'ppd_lower': lower,
        'ppd_upper': upper,
        'covered': (observed >= lower) & (observed <= upper),
    })


def predictive_coverage(trace: az.InferenceData,
                        observed_name: str,
                        observed: np.ndarray,
                        credible_interval: float = 0.95) -> float:
    """Fraction of observations inside their posterior predictive interval."""
    intervals = predictive_intervals(trace, observed_name, observed, credible_interval)
    return float(intervals['covered'].mean())


def time_effect_summary(trace: az.InferenceData,
                        var_name: str = 'time_effect',
                        credible_interval: float = 0.95) -> pd.DataFrame:
    """Random-walk time effect per time label, on the log and relative-risk scales."""
    draws = _flat_draws(trace, var_name)
    labels = trace.posterior[var_name].coords[trace.posterior[var_name].dims[-1]].values
    lo, hi = _bounds(credible_interval)
    lower, upper = np.quantile(draws, [lo, hi], axis=0)
    rr = np.exp(draws)
    rr_lower, rr_upper = np.quantile(rr, [lo, hi], axis=0)
    return pd.DataFrame({
        'effect': draws.mean(axis=0),
        'lower': lower,
        'upper': upper,
        'relative_risk': rr.mean(axis=0),
        'rr_lower': rr_lower,
        'rr_upper': rr_upper,
    }, index=pd.Index(labels, name='time'))


def relative_risk(trace: az.InferenceData,
                  var_name: str = 'beta_temperature',
                  scale: float = 1.0,
                  credible_interval: float = 0.95) -> dict:
    """Posterior summary of exp(beta * scale), e.g. the mortality rate ratio per degree.

    Returns:
        dict with mean, median, lower, upper, percent_change and
        prob_increase (posterior probability the ratio exceeds 1)
    """
    beta = _flat_draws(trace, var_name)
    rr = np.exp(beta * scale)
    lo, hi = _bounds(credible_interval)
    lower, median, upper = np.quantile(rr, [lo, 0.5, hi])
    return {
        'mean': float(rr.mean()),
        'median': float(median),
        'lower': float(lower),
        'upper': float(upper),
        'percent_change': float((median - 1.0) * 100.0),
        'prob_increase': float((rr > 1.0).mean()),
    }


def residual_autocorrelation(residuals: Sequence[float], max_lag: int = 10) -> pd.Series:
    """Autocorrelation of a residual series at lags 1..max_lag.

    Strong positive values at short lags suggest an unmodelled smooth time effect.
    """
    x = np.asarray(residuals, dtype=np.float64)
    max_lag = min(max_lag, len(x) - 1)
    if max_lag < 1 or np.ptp(x) == 0.0:
        return pd.Series(dtype=np.float64, name='acf')
    acf = az.autocorr(x)[1:max_lag + 1]
    return pd.Series(acf, index=pd.RangeIndex(1, max_lag + 1, name='lag'), name='acf')
