"""
EnvHealth Bayes — MCMC Sampling and Diagnostics
================================================
Thin layer over PyMC and ArviZ used by every lab.

Key Features:
- One configuration object for chains, draws, burn-in, thinning and seed
- Sampling with explicit initial values and a list of parameters to record
- Posterior summaries with credible intervals
- Convergence diagnostics (split-chain R-hat, bulk/tail effective sample size,
  divergences) with a rerun recommendation
- Information-criterion model comparison (LOO / WAIC)

Mathematical Framework:
    Bayes' Theorem: P(θ|D) ∝ P(D|θ) × P(θ)

    MCMC draws a dependent sequence θ(1), θ(2), ... whose distribution
    approaches P(θ|D). Several chains started from dispersed points should
    agree once they have mixed; R-hat ≈ 1 is the check.

Usage:
    from envhealth_bayes.models import build_mortality_model
    from envhealth_bayes.bayesian import PosteriorSampler, BayesianConfig

    bundle = build_mortality_model(data, level='temperature')
    sampler = PosteriorSampler(BayesianConfig.from_iterations(3000, 1000))
    trace = sampler.sample(bundle)
    summary = sampler.summarize_posterior(var_names=['alpha', 'beta_temperature'])
"""

import dataclasses
import json
import warnings
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import pymc as pm
import arviz as az
import matplotlib.pyplot as plt

from .models import ModelBundle
from . import plotting


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class BayesianConfig:
    """Configuration for MCMC inference."""
    n_chains: int = 4              # Number of independent chains
    n_draws: int = 1000            # Samples kept per chain (post-burn-in)
    n_tune: int = 1000             # Burn-in / tuning steps per chain
    thin: int = 1                  # Keep every thin-th draw
    target_accept: float = 0.9     # Target acceptance rate (NUTS)
    sampler: str = 'NUTS'          # Sampler: 'NUTS', 'Metropolis', 'Slice'
    random_seed: Optional[int] = 42

    # Computational
    cores: int = 1                 # Chains run one after another by default
    progressbar: bool = True

    # Diagnostics
    check_convergence: bool = True
    rhat_threshold: float = 1.01   # R-hat convergence threshold
    min_ess: float = 400.0         # Minimum bulk/tail effective sample size
    credible_interval: float = 0.95

    # Model comparison needs pointwise log-likelihood
    compute_log_likelihood: bool = False

    def __post_init__(self):
        if self.n_draws < 1:
            raise ValueError(f"n_draws must be positive, got {self.n_draws}")
        if self.n_tune < 0:
            raise ValueError(f"n_tune must be non-negative, got {self.n_tune}")
        if self.n_chains < 1:
            raise ValueError(f"n_chains must be positive, got {self.n_chains}")
        if self.thin < 1:
            raise ValueError(f"thin must be >= 1, got {self.thin}")
        if not 0.0 < self.credible_interval < 1.0:
            raise ValueError(f"credible_interval must be in (0, 1), got {self.credible_interval}")
        if self.sampler not in ('NUTS', 'Metropolis', 'Slice'):
            raise ValueError(f"Unknown sampler: {self.sampler}")

    @classmethod
    def from_iterations(cls, niter: int, nburnin: int, **kwargs) -> 'BayesianConfig':
        """Build a config from total iterations per chain and burn-in length.

        ``niter`` counts burn-in, so ``niter=3000, nburnin=1000`` keeps 2000
        draws per chain.
        """
        if nburnin < 0:
            raise ValueError(f"nburnin must be non-negative, got {nburnin}")
        if niter <= nburnin:
            raise ValueError(f"niter ({niter}) must exceed nburnin ({nburnin})")
        return cls(n_draws=niter - nburnin, n_tune=nburnin, **kwargs)

    @property
    def total_iterations(self) -> int:
        return self.n_draws + self.n_tune

    @property
    def kept_draws(self) -> int:
        """Draws kept across all chains after thinning."""
        return self.n_chains * len(range(0, self.n_draws, self.thin))

    def to_dict(self) -> Dict:
        return dataclasses.asdict(self)

    def save(self, filepath: str):
        """Save configuration as JSON."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        print(f"[MCMC] Config saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'BayesianConfig':
        """Load configuration saved with :meth:`save`."""
        with open(filepath, 'r') as f:
            return cls(**json.load(f))


def suggest_rerun_config(config: BayesianConfig, factor: int = 2) -> BayesianConfig:
    """Same settings with ``factor`` times more draws and burn-in."""
    return dataclasses.replace(config,
                               n_draws=config.n_draws * factor,
                               n_tune=config.n_tune * factor)


# ═══════════════════════════════════════════════════════════════
# Diagnostics
# ═══════════════════════════════════════════════════════════════

@dataclass
class ConvergenceReport:
    """Per-parameter convergence diagnostics for one trace."""
    table: pd.DataFrame            # index: parameter; max_rhat, min_ess_bulk, min_ess_tail, ok
    n_divergences: int
    rhat_threshold: float
    min_ess: float

    @property
    def flagged(self) -> List[str]:
        return list(self.table.index[~self.table['ok']])

    @property
    def converged(self) -> bool:
        return not self.flagged and self.n_divergences == 0

    def recommendation(self) -> str:
        if self.converged:
            return "Chains look mixed; posterior summaries can be used."
        parts = []
        if self.flagged:
            parts.append(f"poor diagnostics for {self.flagged}")
        if self.n_divergences:
            parts.append(f"{self.n_divergences} divergent transitions")
        return ("Rerun with more iterations (longer burn-in and more draws)"
                f" or a higher target_accept: {'; '.join(parts)}.")

    def show(self):
        print("\n[MCMC] Convergence Diagnostics:")
        print(f"  R-hat (target < {self.rhat_threshold}), ESS (target > {self.min_ess:.0f}):")
        for var, row in self.table.iterrows():
            status = "✓" if row['ok'] else "✗ WARNING"
            rhat = 'n/a' if np.isnan(row['max_rhat']) else f"{row['max_rhat']:.4f}"
            print(f"    {var:<20} R-hat {rhat:>7}  ESS bulk {row['min_ess_bulk']:>7.0f}  "
                  f"tail {row['min_ess_tail']:>7.0f}  {status}")
        if self.n_divergences:
            print(f"  ⚠ Divergent transitions: {self.n_divergences}")
        print(f"  {self.recommendation()}")


def _posterior_vars(trace: az.InferenceData, var_names: Optional[Sequence[str]]) -> List[str]:
    if var_names is None:
        return list(trace.posterior.data_vars)
    missing = [v for v in var_names if v not in trace.posterior]
    if missing:
        raise ValueError(f"Parameters not in posterior: {missing}")
    return list(var_names)


def check_convergence(trace: az.InferenceData,
                      var_names: Optional[Sequence[str]] = None,
                      rhat_threshold: float = 1.01,
                      min_ess: float = 400.0,
                      verbose: bool = True) -> ConvergenceReport:
    """R-hat, bulk/tail ESS and divergence count for recorded parameters.

    Vector-valued parameters are reduced to their worst element. With a
    single chain R-hat cannot be computed and only ESS is judged.
    """
    var_names = _posterior_vars(trace, var_names)
    n_chains = trace.posterior.sizes['chain']

    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        rhat = az.rhat(trace, var_names=var_names) if n_chains > 1 else None
        ess_bulk = az.ess(trace, var_names=var_names, method='bulk')
        ess_tail = az.ess(trace, var_names=var_names, method='tail')

    if rhat is None:
        warnings.warn("R-hat needs at least 2 chains; judging convergence on ESS only")

    rows = {}
    for var in var_names:
        max_rhat = float(np.nanmax(rhat[var].values)) if rhat is not None else np.nan
        bulk = float(np.nanmin(ess_bulk[var].values))
        tail = float(np.nanmin(ess_tail[var].values))
        rhat_ok = np.isnan(max_rhat) or max_rhat <= rhat_threshold
        rows[var] = {
            'max_rhat': max_rhat,
            'min_ess_bulk': bulk,
            'min_ess_tail': tail,
            'ok': bool(rhat_ok and bulk >= min_ess and tail >= min_ess),
        }
    table = pd.DataFrame.from_dict(rows, orient='index')

    n_div = 0
    if 'sample_stats' in trace.groups() and 'diverging' in trace.sample_stats:
        n_div = int(trace.sample_stats['diverging'].values.sum())

    report = ConvergenceReport(table=table, n_divergences=n_div,
                               rhat_threshold=rhat_threshold, min_ess=min_ess)
    if verbose:
        report.show()
    return report


def hdi_column_names(credible_interval: float):
    """Column names ArviZ gives the HDI bounds for ``credible_interval``."""
    tail = 100 * (1 - credible_interval) / 2
    return f"hdi_{tail:g}%", f"hdi_{100 - tail:g}%"


def summarize_posterior(trace: az.InferenceData,
                        var_names: Optional[Sequence[str]] = None,
                        credible_interval: float = 0.95) -> pd.DataFrame:
    """Posterior mean, sd, median, HDI bounds, R-hat and ESS per parameter element.

    Returns:
        DataFrame indexed like ``az.summary`` (``time_effect[2015-W01]`` etc.)
        with columns mean, sd, median, ci_lower, ci_upper, r_hat, ess_bulk, ess_tail
    """
    var_names = _posterior_vars(trace, var_names)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        az_summary = az.summary(trace, var_names=var_names, hdi_prob=credible_interval)
        medians = az.summary(trace, var_names=var_names, stat_funcs={'median': np.median},
                             extend=False)
    lower_col, upper_col = hdi_column_names(credible_interval)

    summary = pd.DataFrame({
        'mean': az_summary['mean'],
        'sd': az_summary['sd'],
        'median': medians['median'],
        'ci_lower': az_summary[lower_col],
        'ci_upper': az_summary[upper_col],
        'r_hat': az_summary['r_hat'] if 'r_hat' in az_summary.columns else np.nan,
        'ess_bulk': az_summary['ess_bulk'] if 'ess_bulk' in az_summary.columns else np.nan,
        'ess_tail': az_summary['ess_tail'] if 'ess_tail' in az_summary.columns else np.nan,
    })
    return summary


def compare_models(traces: Dict[str, az.InferenceData], ic: str = 'loo') -> pd.DataFrame:
    """Rank fitted models by expected log predictive density (ArviZ compare)."""
    if len(traces) < 2:
        raise ValueError("Model comparison needs at least two traces")
    missing = [name for name, tr in traces.items() if 'log_likelihood' not in tr.groups()]
    if missing:
        raise ValueError(
            f"No log-likelihood stored for {missing}; sample with compute_log_likelihood=True"
        )
    comparison = az.compare(traces, ic=ic)
    print(f"\n[MCMC] Model comparison ({ic.upper()}):")
    for name, row in comparison.iterrows():
        print(f"  {name:<20} rank {int(row['rank'])}  elpd {row[f'elpd_{ic}']:10.1f}  "
              f"weight {row['weight']:.3f}")
    return comparison


# ═══════════════════════════════════════════════════════════════
# Sampler — Main Class
# ═══════════════════════════════════════════════════════════════

class PosteriorSampler:
    """Run PyMC's MCMC on a model bundle and keep the resulting trace.

    Recommended Workflow:
    1. Sample with modest settings
    2. Read the convergence report
    3. If flagged, rerun with :func:`suggest_rerun_config`
    """

    def __init__(self, config: Optional[BayesianConfig] = None):
        """
        Args:
            config: MCMC configuration
        """
        self.config = config or BayesianConfig()

        # Populated after sampling
        self.bundle = None
        self.trace = None
        self.report = None

        print(f"[MCMC] Sampler: {self.config.sampler}, Chains: {self.config.n_chains}, "
              f"Draws: {self.config.n_draws}, Burn-in: {self.config.n_tune}")

    def _step(self):
        # Steps must be created inside the model context
        if self.config.sampler == 'NUTS':
            return pm.NUTS(target_accept=self.config.target_accept)
        elif self.config.sampler == 'Metropolis':
            return pm.Metropolis()
        return pm.Slice()

    def sample(self,
               bundle: Union[ModelBundle, pm.Model],
               initvals: Optional[Dict[str, np.ndarray]] = None,
               var_names: Optional[Sequence[str]] = None) -> az.InferenceData:
        """Draw posterior samples.

        Args:
            bundle: ModelBundle (its initvals/var_names are the defaults) or a bare pm.Model
            initvals: Starting values keyed by parameter name
            var_names: Parameters to record (default: bundle.var_names, or everything)

        Returns:
            arviz.InferenceData with posterior, sample_stats and observed data
        """
        if isinstance(bundle, ModelBundle):
            model = bundle.model
            initvals = initvals if initvals is not None else bundle.initvals
            var_names = var_names if var_names is not None else bundle.var_names
            self.bundle = bundle
        else:
            model = bundle
            self.bundle = None

        cfg = self.config
        idata_kwargs = None
        diagnosed = None
        if var_names is not None:
            diagnosed = [v for v in var_names if v != 'mu']
            var_names = list(var_names)
            # free parameters are always recorded; posterior predictive and
            # log-likelihood are evaluated from them
            var_names += [rv.name for rv in model.free_RVs if rv.name not in var_names]
        if cfg.compute_log_likelihood:
            idata_kwargs = {'log_likelihood': True}

        with model:
            print(f"[MCMC] Starting sampling...")
            print(f"  Chains: {cfg.n_chains}")
            print(f"  Draws per chain: {cfg.n_draws}")
            print(f"  Burn-in steps: {cfg.n_tune}")

            trace = pm.sample(
                draws=cfg.n_draws,
                tune=cfg.n_tune,
                chains=cfg.n_chains,
                cores=cfg.cores,
                step=self._step(),
                initvals=initvals,
                var_names=var_names,
                random_seed=cfg.random_seed,
                progressbar=cfg.progressbar,
                idata_kwargs=idata_kwargs,
                return_inferencedata=True,
            )

        if cfg.thin > 1:
            trace = trace.sel(draw=slice(None, None, cfg.thin))
            print(f"[MCMC] Thinned to every {cfg.thin}th draw "
                  f"({trace.posterior.sizes['draw']} per chain)")

        self.trace = trace

        if cfg.check_convergence:
            self.report = check_convergence(
                trace,
                var_names=diagnosed or [v for v in trace.posterior.data_vars if v != 'mu'],
                rhat_threshold=cfg.rhat_threshold,
                min_ess=cfg.min_ess,
            )

        print("[MCMC] Sampling complete!")
        return trace

    def _require_trace(self, trace: Optional[az.InferenceData]) -> az.InferenceData:
        trace = trace if trace is not None else self.trace
        if trace is None:
            raise RuntimeError("No trace available. Run sample() first.")
        return trace

    def posterior_predictive(self,
                             bundle: Optional[ModelBundle] = None,
                             trace: Optional[az.InferenceData] = None) -> az.InferenceData:
        """Draw from the posterior predictive distribution and add it to the trace."""
        trace = self._require_trace(trace)
        bundle = bundle or self.bundle
        if bundle is None:
            raise ValueError("A ModelBundle is needed for posterior predictive sampling")
        missing = [rv.name for rv in bundle.model.free_RVs if rv.name not in trace.posterior]
        if missing:
            raise ValueError(
                f"Free parameters {missing} are not in the posterior; predictive draws "
                "would take them from the prior. Resample recording every free parameter."
            )

        with bundle.model:
            pm.sample_posterior_predictive(
                trace,
                var_names=[bundle.observed_name],
                random_seed=self.config.random_seed,
                progressbar=self.config.progressbar,
                extend_inferencedata=True,
            )
        print(f"[MCMC] Posterior predictive draws added for '{bundle.observed_name}'")
        return trace

    def summarize_posterior(self,
                            trace: Optional[az.InferenceData] = None,
                            var_names: Optional[Sequence[str]] = None,
                            credible_interval: Optional[float] = None) -> pd.DataFrame:
        """See :func:`summarize_posterior`; defaults to the stored trace and config interval."""
        trace = self._require_trace(trace)
        ci = credible_interval or self.config.credible_interval
        return summarize_posterior(trace, var_names=var_names, credible_interval=ci)

    def check_convergence(self,
                          trace: Optional[az.InferenceData] = None,
                          var_names: Optional[Sequence[str]] = None) -> ConvergenceReport:
        trace = self._require_trace(trace)
        self.report = check_convergence(trace, var_names=var_names,
                                        rhat_threshold=self.config.rhat_threshold,
                                        min_ess=self.config.min_ess)
        return self.report

    def plot_posterior(self,
                       trace: Optional[az.InferenceData] = None,
                       var_names: Optional[Sequence[str]] = None,
                       save_path: Optional[str] = None):
        """Trace plots (chains over iterations) and posterior densities."""
        trace = self._require_trace(trace)

        fig, _ = plotting.plot_trace(trace, var_names=var_names,
                                     save_path=f"{save_path}_trace.png" if save_path else None)
        plt.close(fig)

        fig, _ = plotting.plot_posterior_densities(
            trace, var_names=var_names, credible_interval=self.config.credible_interval,
            save_path=f"{save_path}_posterior.png" if save_path else None)
        plt.close(fig)

    def save_trace(self, filepath: str):
        """Save MCMC trace to NetCDF."""
        if self.trace is None:
            raise RuntimeError("No trace to save")
        az.to_netcdf(self.trace, filepath)
        print(f"[MCMC] Trace saved to {filepath}")

    @staticmethod
    def load_trace(filepath: str) -> az.InferenceData:
        """Load saved MCMC trace."""
        trace = az.from_netcdf(filepath)
        print(f"[MCMC] Trace loaded from {filepath}")
        return trace
