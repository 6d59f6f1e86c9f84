"""
Manual Verification Script for EnvHealth Bayes
Run this before the workshop to check the stack imports and a tiny model samples.

Usage: python verify_installation.py
"""
import tempfile

print("=" * 70)
print("EnvHealth Bayes - Manual Verification")
print("=" * 70)
print()

# Test 1: Imports
print("[1/5] Testing imports...")
try:
    import pymc as pm
    import arviz as az
    import envhealth_bayes

    print(f"   ✓ Imports working!")
    print(f"   - envhealth_bayes {envhealth_bayes.__version__}, PyMC {pm.__version__}, ArviZ {az.__version__}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

work_dir = tempfile.mkdtemp(prefix='envhealth_bayes_verify_')

# Test 2: Sample data
print("[2/5] Testing sample data and loader...")
try:
    from envhealth_bayes import (WorkshopDataLoader, create_sample_mortality_data,
                                 create_sample_ensemble_data)

    create_sample_mortality_data(work_dir, n_years=1, regions=('North', 'South'))
    create_sample_ensemble_data(work_dir, n_locations=20)
    loader = WorkshopDataLoader(work_dir)
    mortality = loader.load_mortality_csv()

    print(f"   ✓ Data loader working!")
    print(f"   - Mortality rows: {len(mortality)}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 3: Model building
print("[3/5] Testing model specification...")
try:
    from envhealth_bayes import prepare_mortality_data, build_mortality_model

    data = prepare_mortality_data(mortality)
    bundle = build_mortality_model(data, level='temperature')

    print(f"   ✓ Model builder working!")
    print(f"   - Recorded parameters: {bundle.var_names}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 4: Sampling
print("[4/5] Testing MCMC (tiny run)...")
try:
    from envhealth_bayes import BayesianConfig, PosteriorSampler

    config = BayesianConfig(n_chains=2, n_draws=100, n_tune=100,
                            progressbar=False, check_convergence=False)
    sampler = PosteriorSampler(config)
    trace = sampler.sample(bundle)
    summary = sampler.summarize_posterior(var_names=['alpha', 'beta_temperature'])

    print(f"   ✓ Sampling working!")
    print(f"   - beta_temperature mean: {summary.loc['beta_temperature', 'mean']:.4f}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 5: Ensemble outputs
print("[5/5] Testing ensemble results...")
try:
    from envhealth_bayes import EnsembleResults, evaluate_against_observations

    results = EnsembleResults.from_frame(loader.load_ensemble_results_csv())
    evaluation = evaluate_against_observations(results, loader.load_monitors_csv(), verbose=False)

    print(f"   ✓ Ensemble utilities working!")
    print(f"   - Models: {results.model_names}, RMSE {evaluation['metrics']['rmse']:.3f}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Summary
print("=" * 70)
print("Verification Complete!")
print("=" * 70)
print()
print("Next Steps:")
print("1. Run full test suite: pytest tests/ -v")
print("2. Create workshop data: python scripts/create_sample_data.py data")
print("3. Work through examples/mortality_temperature_lab.py")
print("=" * 70)
