"""
EnvHealth Bayes - Bayesian modelling workshop toolkit for environmental health

Lab 1 fits increasingly complex PyMC models of weekly mortality and
temperature; Lab 2 explores the outputs of a Bayesian ensemble of
air-pollution prediction models.
"""

__version__ = "0.1.0"

# Data loading
from .datasets import (
    WorkshopDataLoader,
    create_sample_mortality_data,
    create_sample_ensemble_data,
)

# Reshaping
from .transforms import (
    MortalityData,
    prepare_mortality_data,
    aggregate_weekly,
    aggregate_by_region,
    join_one_to_one,
    pivot_predictions_wide,
)

# Model specification and inference
from .models import (
    PriorSpec,
    ModelBundle,
    MORTALITY_MODELS,
    get_default_priors,
    build_mortality_model,
    build_static_ensemble_model,
)
from .bayesian import (
    BayesianConfig,
    PosteriorSampler,
    check_convergence,
    summarize_posterior,
    compare_models,
)

# Posterior processing
from .fitted import fitted_values, relative_risk, time_effect_summary
from .ensemble import EnsembleResults, evaluate_against_observations

# Labs
from .workflow import WorkshopConfig, run_mortality_lab, run_ensemble_lab

__all__ = [
    "WorkshopDataLoader",
    "create_sample_mortality_data",
    "create_sample_ensemble_data",
    "MortalityData",
    "prepare_mortality_data",
    "aggregate_weekly",
    "aggregate_by_region",
    "join_one_to_one",
    "pivot_predictions_wide",
    "PriorSpec",
    "ModelBundle",
    "MORTALITY_MODELS",
    "get_default_priors",
    "build_mortality_model",
    "build_static_ensemble_model",
    "BayesianConfig",
    "PosteriorSampler",
    "check_convergence",
    "summarize_posterior",
    "compare_models",
    "fitted_values",
    "relative_risk",
    "time_effect_summary",
    "EnsembleResults",
    "evaluate_against_observations",
    "WorkshopConfig",
    "run_mortality_lab",
    "run_ensemble_lab",
]
