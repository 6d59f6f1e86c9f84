"""
Model specification blocks for the workshop labs.

Each builder returns a :class:`ModelBundle`: the PyMC model (priors and
likelihood with the data attached as constants), the initial values, and the
list of parameters to record while sampling.

Mortality models (log link, population offset), in increasing complexity:

    baseline      log mu_i = log(pop_i) + alpha
    temperature   ... + beta * anomaly_i
    rw1           ... + gamma[t_i],   gamma_t = gamma_{t-1} + sigma_time * z_t
    rw1_region    ... + u[r_i],       u_r ~ Normal(0, sigma_region)

    deaths_i ~ Poisson(mu_i)   or   NegativeBinomial(mu_i, dispersion)

The random walk is written non-centred (standard-normal innovations scaled by
sigma_time) and centred afterwards so it sums to zero and stays identifiable
next to the intercept.
"""
import numpy as np
import pymc as pm
import pytensor.tensor as pt
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .transforms import MortalityData


# ═══════════════════════════════════════════════════════════════
# Priors
# ═══════════════════════════════════════════════════════════════

@dataclass
class PriorSpec:
    """Specification for a single parameter prior distribution."""
    name: str
    distribution: str  # 'normal', 'halfnormal', 'exponential', 'uniform', 'gamma', 'beta', 'halfcauchy'
    params: Dict  # Distribution parameters (e.g., {'mu': 0, 'sigma': 10})
    bounds: Optional[Tuple[float, float]] = None  # Truncation (normal only)


VALID_DISTRIBUTIONS = ('normal', 'halfnormal', 'exponential', 'uniform',
                       'gamma', 'beta', 'halfcauchy')


def get_default_priors() -> Dict[str, PriorSpec]:
    """Weakly informative defaults for the mortality models.

    The intercept is on the log weekly-rate scale, so a wide Normal centred
    at zero leaves it to the data; the remaining scales are on the log scale
    too and are kept modest.
    """
    priors = [
        PriorSpec('alpha', 'normal', {'mu': 0.0, 'sigma': 10.0}),
        PriorSpec('beta_temperature', 'normal', {'mu': 0.0, 'sigma': 1.0}),
        PriorSpec('sigma_time', 'halfnormal', {'sigma': 0.5}),
        PriorSpec('sigma_region', 'halfnormal', {'sigma': 1.0}),
        PriorSpec('dispersion', 'gamma', {'alpha': 2.0, 'beta': 0.1}),
    ]
    return {p.name: p for p in priors}


def make_prior(spec: PriorSpec, dims: Optional[str] = None):
    """Create the PyMC random variable described by ``spec`` (inside a model context)."""
    name, p = spec.name, spec.params

    if spec.distribution == 'normal':
        if spec.bounds:
            lower, upper = spec.bounds
            return pm.TruncatedNormal(name, mu=p['mu'], sigma=p['sigma'],
                                      lower=lower, upper=upper, dims=dims)
        return pm.Normal(name, mu=p['mu'], sigma=p['sigma'], dims=dims)

    elif spec.distribution == 'halfnormal':
        return pm.HalfNormal(name, sigma=p['sigma'], dims=dims)

    elif spec.distribution == 'exponential':
        return pm.Exponential(name, lam=p['lam'], dims=dims)

    elif spec.distribution == 'uniform':
        return pm.Uniform(name, lower=p['lower'], upper=p['upper'], dims=dims)

    elif spec.distribution == 'gamma':
        return pm.Gamma(name, alpha=p['alpha'], beta=p['beta'], dims=dims)

    elif spec.distribution == 'beta':
        return pm.Beta(name, alpha=p['alpha'], beta=p['beta'], dims=dims)

    elif spec.distribution == 'halfcauchy':
        return pm.HalfCauchy(name, beta=p['beta'], dims=dims)

    raise ValueError(f"Unknown distribution: {spec.distribution}")


def _merge_priors(priors: Optional[Dict[str, PriorSpec]],
                  defaults: Dict[str, PriorSpec]) -> Dict[str, PriorSpec]:
    merged = dict(defaults)
    for key, spec in (priors or {}).items():
        if spec.distribution not in VALID_DISTRIBUTIONS:
            raise ValueError(f"Unknown distribution for '{key}': {spec.distribution}")
        merged[key] = spec
    return merged


# ═══════════════════════════════════════════════════════════════
# Model bundle and registry
# ═══════════════════════════════════════════════════════════════

@dataclass
class ModelBundle:
    """A model ready for sampling: model, inits and parameters to record."""
    name: str
    model: pm.Model
    var_names: List[str]
    initvals: Dict[str, np.ndarray]
    observed_name: str
    observed: np.ndarray
    description: str = ''


@dataclass
class MortalityModelSpec:
    """Which components a mortality model level includes."""
    name: str
    description: str
    temperature: bool = False
    time_rw1: bool = False
    region_effect: bool = False


MORTALITY_MODELS = {
    'baseline': MortalityModelSpec(
        name='baseline',
        description='Constant weekly mortality rate with population offset',
    ),
    'temperature': MortalityModelSpec(
        name='temperature',
        description='Log-linear temperature anomaly effect',
        temperature=True,
    ),
    'rw1': MortalityModelSpec(
        name='rw1',
        description='Temperature effect + first-order random walk over weeks',
        temperature=True,
        time_rw1=True,
    ),
    'rw1_region': MortalityModelSpec(
        name='rw1_region',
        description='Temperature + RW1 time effect + exchangeable region intercepts',
        temperature=True,
        time_rw1=True,
        region_effect=True,
    ),
}

LIKELIHOODS = ('poisson', 'negative_binomial')


def default_initvals(data: MortalityData, spec: MortalityModelSpec,
                     likelihood: str = 'poisson') -> Dict[str, np.ndarray]:
    """Data-driven starting values: the pooled log crude rate for alpha, zeros elsewhere."""
    pooled_rate = max(data.deaths.sum(), 1) / data.population.sum()
    inits = {'alpha': np.array(np.log(pooled_rate))}
    if spec.temperature:
        inits['beta_temperature'] = np.array(0.0)
    if spec.time_rw1:
        inits['sigma_time'] = np.array(0.1)
        inits['time_innovation'] = np.zeros(data.n_times - 1)
    if spec.region_effect:
        inits['sigma_region'] = np.array(0.1)
        inits['region_raw'] = np.zeros(data.n_regions)
    if likelihood == 'negative_binomial':
        inits['dispersion'] = np.array(20.0)
    return inits


def build_mortality_model(data: MortalityData,
                          level: str = 'temperature',
                          likelihood: str = 'poisson',
                          priors: Optional[Dict[str, PriorSpec]] = None) -> ModelBundle:
    """Build one of the :data:`MORTALITY_MODELS` levels for ``data``.

    Args:
        data: Output of :func:`prepare_mortality_data`
        level: Key of MORTALITY_MODELS
        likelihood: 'poisson' or 'negative_binomial'
        priors: Overrides for the default priors, keyed by parameter name

    Returns:
        ModelBundle with var_names covering every scalar parameter, the
        structured effects and the fitted mean ``mu``
    """
    if level not in MORTALITY_MODELS:
        raise ValueError(f"Unknown model level '{level}'. Choose from {list(MORTALITY_MODELS)}")
    if likelihood not in LIKELIHOODS:
        raise ValueError(f"Unknown likelihood '{likelihood}'. Choose from {list(LIKELIHOODS)}")

    spec = MORTALITY_MODELS[level]
    if spec.time_rw1 and data.n_times < 2:
        raise ValueError("A random walk time effect needs at least 2 time points")
    prior = _merge_priors(priors, get_default_priors())

    coords = {
        'obs': np.arange(data.n_obs),
        'time': data.time_labels,
        'region': data.region_labels,
    }
    if spec.time_rw1:
        coords['time_step'] = data.time_labels[1:]

    var_names = ['alpha']

    with pm.Model(coords=coords) as model:
        log_pop = pm.Data('log_population', np.log(data.population), dims='obs')

        alpha = make_prior(prior['alpha'])
        eta = alpha + log_pop

        if spec.temperature:
            anomaly = pm.Data('temperature_anomaly', data.anomaly, dims='obs')
            beta = make_prior(prior['beta_temperature'])
            eta = eta + beta * anomaly
            var_names.append('beta_temperature')

        if spec.time_rw1:
            time_idx = pm.Data('time_idx', data.time_idx, dims='obs')
            sigma_time = make_prior(prior['sigma_time'])
            z = pm.Normal('time_innovation', mu=0.0, sigma=1.0, dims='time_step')
            walk = pt.concatenate([pt.zeros(1), pt.cumsum(z)]) * sigma_time
            time_effect = pm.Deterministic('time_effect', walk - pt.mean(walk), dims='time')
            eta = eta + time_effect[time_idx]
            var_names += ['sigma_time', 'time_effect']

        if spec.region_effect:
            region_idx = pm.Data('region_idx', data.region_idx, dims='obs')
            sigma_region = make_prior(prior['sigma_region'])
            region_raw = pm.Normal('region_raw', mu=0.0, sigma=1.0, dims='region')
            region_effect = pm.Deterministic('region_effect', region_raw * sigma_region,
                                             dims='region')
            eta = eta + region_effect[region_idx]
            var_names += ['sigma_region', 'region_effect']

        mu = pm.Deterministic('mu', pt.exp(eta), dims='obs')

        if likelihood == 'poisson':
            pm.Poisson('deaths', mu=mu, observed=data.deaths, dims='obs')
        else:
            dispersion = make_prior(prior['dispersion'])
            pm.NegativeBinomial('deaths', mu=mu, alpha=dispersion,
                                observed=data.deaths, dims='obs')
            var_names.append('dispersion')

    var_names.append('mu')

    name = level if likelihood == 'poisson' else f"{level}_nb"
    print(f"[Model] Built '{name}': {spec.description} ({likelihood} likelihood)")
    print(f"  Free parameters: {[rv.name for rv in model.free_RVs]}")

    return ModelBundle(
        name=name,
        model=model,
        var_names=var_names,
        initvals=default_initvals(data, spec, likelihood),
        observed_name='deaths',
        observed=data.deaths,
        description=spec.description,
    )


def build_mortality_models(data: MortalityData,
                           levels: Optional[Sequence[str]] = None,
                           likelihood: str = 'poisson',
                           priors: Optional[Dict[str, PriorSpec]] = None) -> Dict[str, ModelBundle]:
    """Build several levels at once, in order of increasing complexity."""
    levels = list(levels) if levels is not None else list(MORTALITY_MODELS)
    return {level: build_mortality_model(data, level, likelihood, priors) for level in levels}


# ═══════════════════════════════════════════════════════════════
# Static (global-weight) ensemble
# ═══════════════════════════════════════════════════════════════

def build_static_ensemble_model(predictions: np.ndarray,
                                observed: np.ndarray,
                                model_names: Sequence[str]) -> ModelBundle:
    """Bayesian model averaging with one set of weights for all locations.

    observed_i ~ Normal(bias + sum_k w_k * prediction_ik, sigma)
    w ~ Dirichlet(1, ..., 1)

    Prior scales for bias and sigma follow the spread of the observations.

    Args:
        predictions: [N, K] model predictions at the monitor locations
        observed: [N] monitor observations
        model_names: K model names
    """
    predictions = np.asarray(predictions, dtype=np.float64)
    observed = np.asarray(observed, dtype=np.float64)
    if predictions.ndim != 2:
        raise ValueError(f"Predictions must be 2D [locations, models], got shape {predictions.shape}")
    n_obs, n_models = predictions.shape
    if len(observed) != n_obs:
        raise ValueError(f"Predictions and observations length mismatch: {n_obs} vs {len(observed)}")
    if len(model_names) != n_models:
        raise ValueError(f"Expected {n_models} model names, got {len(model_names)}")

    obs_sd = float(np.std(observed)) or 1.0
    coords = {'obs': np.arange(n_obs), 'model': list(model_names)}

    with pm.Model(coords=coords) as model:
        preds = pm.Data('predictions', predictions, dims=('obs', 'model'))
        weights = pm.Dirichlet('weights', a=np.ones(n_models), dims='model')
        bias = pm.Normal('bias', mu=0.0, sigma=obs_sd)
        sigma = pm.HalfNormal('sigma', sigma=obs_sd)
        mu = pm.Deterministic('mu', bias + pt.dot(preds, weights), dims='obs')
        pm.Normal('observed', mu=mu, sigma=sigma, observed=observed, dims='obs')

    print(f"[Model] Built 'static_ensemble': {n_models} models, {n_obs} monitors")

    return ModelBundle(
        name='static_ensemble',
        model=model,
        var_names=['weights', 'bias', 'sigma', 'mu'],
        initvals={
            'weights': np.full(n_models, 1.0 / n_models),
            'bias': np.array(0.0),
            'sigma': np.array(obs_sd),
        },
        observed_name='observed',
        observed=observed,
        description='Global Dirichlet-weighted model average',
    )
