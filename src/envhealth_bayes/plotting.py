"""
Plotting helpers for the labs. Every function returns ``(fig, ax)`` and
saves to ``save_path`` when one is given.
"""
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
import arviz as az

custom_params = {"axes.spines.right": False, "axes.spines.top": False}
sns.set_theme(style="ticks", rc=custom_params)


def save_figure(fig, save_path: Optional[str]):
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"[Plot] Saved {save_path}")


def plot_observed_series(df: pd.DataFrame, value_col: str = 'crude_rate',
                         time_col: str = 'time_idx', hue: Optional[str] = 'region',
                         title: str = 'Observed weekly mortality',
                         save_path: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(8, 3))
    sns.lineplot(data=df, x=time_col, y=value_col, hue=hue, ax=ax, linewidth=1)
    ax.set_xlabel('Week')
    ax.set_ylabel(value_col.replace('_', ' ').capitalize())
    ax.set_title(title)
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax


def plot_fitted(fitted: pd.DataFrame, x: str = 'time_idx',
                group: Optional[str] = None, group_value=None,
                title: str = 'Observed and fitted deaths',
                save_path: Optional[str] = None):
    """Observed points with the posterior fitted mean and credible band."""
    data = fitted
    if group is not None and group_value is not None:
        data = fitted[fitted[group] == group_value]
        title = f"{title}: {group_value}"
    data = data.sort_values(x)

    fig, ax = plt.subplots(figsize=(8, 3))
    ax.fill_between(data[x], data['fitted_lower'], data['fitted_upper'],
                    color='C0', alpha=0.3, label='Credible interval')
    ax.plot(data[x], data['fitted'], color='C0', label='Fitted mean')
    ax.scatter(data[x], data['observed'], s=8, color='black', label='Observed', zorder=3)
    ax.set_xlabel('Week')
    ax.set_ylabel('Deaths')
    ax.set_title(title)
    ax.legend(loc='center left', bbox_to_anchor=(1, .5))
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax


def plot_residuals(fitted: pd.DataFrame, x: str = 'time_idx',
                   residual_col: str = 'pearson_residual',
                   title: str = 'Residual checks',
                   save_path: Optional[str] = None):
    """Residuals against fitted values, against time, and their distribution."""
    fig, axes = plt.subplots(1, 3, figsize=(11, 3))

    ax = axes[0]
    ax.scatter(fitted['fitted'], fitted[residual_col], s=8, alpha=.6)
    ax.axhline(0, color='black', linestyle=':')
    ax.set_xlabel('Fitted')
    ax.set_ylabel(residual_col.replace('_', ' ').capitalize())

    ax = axes[1]
    if x in fitted.columns:
        ax.scatter(fitted[x], fitted[residual_col], s=8, alpha=.6)
    ax.axhline(0, color='black', linestyle=':')
    ax.set_xlabel('Week')

    ax = axes[2]
    sns.histplot(fitted[residual_col], element='step', stat='density', ax=ax)
    ax.set_xlabel(residual_col.replace('_', ' ').capitalize())

    plt.suptitle(title)
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, axes


def plot_time_effect(summary: pd.DataFrame, relative_risk: bool = True,
                     title: str = 'Random walk time effect',
                     save_path: Optional[str] = None):
    """Posterior mean and band of the RW1 effect (relative-risk scale by default)."""
    if relative_risk:
        mean, lower, upper, ylabel, ref = 'relative_risk', 'rr_lower', 'rr_upper', 'Relative risk', 1.0
    else:
        mean, lower, upper, ylabel, ref = 'effect', 'lower', 'upper', 'Log effect', 0.0
    t = np.arange(len(summary))

    fig, ax = plt.subplots(figsize=(8, 3))
    ax.fill_between(t, summary[lower], summary[upper], color='C1', alpha=0.3)
    ax.plot(t, summary[mean], color='C1')
    ax.axhline(ref, color='black', linestyle=':')
    step = max(len(t) // 8, 1)
    ax.set_xticks(t[::step])
    ax.set_xticklabels(summary.index[::step], rotation=45, ha='right')
    ax.set_ylabel(ylabel)
    ax.set_title(title)
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax


def plot_trace(trace: az.InferenceData, var_names: Optional[Sequence[str]] = None,
               save_path: Optional[str] = None):
    """ArviZ trace plot: per-chain densities (left) and draws over iterations (right)."""
    axes = az.plot_trace(trace, var_names=var_names, compact=True)
    fig = axes.ravel()[0].figure
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, axes


def plot_posterior_densities(trace: az.InferenceData,
                             var_names: Optional[Sequence[str]] = None,
                             credible_interval: float = 0.95,
                             save_path: Optional[str] = None):
    axes = az.plot_posterior(trace, var_names=var_names, hdi_prob=credible_interval)
    axes = np.atleast_1d(axes)
    fig = axes.ravel()[0].figure
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, axes


def plot_ensemble_map(frame: pd.DataFrame, value: str = 'mean',
                      title: Optional[str] = None, cmap: str = 'viridis',
                      save_path: Optional[str] = None):
    """Locations coloured by an ensemble output (mean, sd or a weight column)."""
    fig, ax = plt.subplots(figsize=(5, 5))
    points = ax.scatter(frame['lon'], frame['lat'], c=frame[value], cmap=cmap, s=30)
    fig.colorbar(points, ax=ax, label=value)
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')
    ax.set_title(title or f"Ensemble {value}")
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax


def plot_ensemble_weights(weights_long: pd.DataFrame,
                          title: str = 'Ensemble weights by model',
                          save_path: Optional[str] = None):
    """Distribution of each model's weight across locations."""
    fig, ax = plt.subplots(figsize=(6, 3))
    sns.boxplot(data=weights_long, x='model', y='weight', ax=ax)
    ax.set_ylim(0, 1)
    ax.set_xlabel('')
    ax.set_ylabel('Weight')
    ax.set_title(title)
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax


def plot_prediction_vs_observed(table: pd.DataFrame,
                                title: str = 'Ensemble prediction vs monitors',
                                save_path: Optional[str] = None):
    """Observed vs predicted mean with predictive interval bars and the 1:1 line."""
    fig, ax = plt.subplots(figsize=(4.5, 4.5))
    yerr = None
    if {'lower', 'upper'}.issubset(table.columns):
        yerr = np.vstack([table['mean'] - table['lower'], table['upper'] - table['mean']])
    ax.errorbar(table['observed'], table['mean'], yerr=yerr, fmt='o', ms=3,
                alpha=.6, elinewidth=.8)
    lims = [min(table['observed'].min(), table['mean'].min()),
            max(table['observed'].max(), table['mean'].max())]
    ax.plot(lims, lims, color='black', linestyle=':', label='1:1')
    ax.set_xlabel('Observed')
    ax.set_ylabel('Predicted mean')
    ax.set_title(title)
    ax.legend()
    fig.tight_layout()
    save_figure(fig, save_path)
    return fig, ax
