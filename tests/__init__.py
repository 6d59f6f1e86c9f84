"""
EnvHealth Bayes — Test Suite
============================

Test modules:
- test_datasets.py: Loading, validation and sample data
- test_transforms.py: Aggregation, 1:1 joins, pivots
- test_models.py: Priors and model building blocks
- test_bayesian.py: MCMC configuration, diagnostics and summaries
- test_bayesian_integration.py: Sampling runs (marked slow)
- test_fitted.py, test_ensemble.py, test_plotting.py, test_workflow.py

Skip sampling runs with: pytest -m "not slow"
"""

__version__ = '0.1.0'
