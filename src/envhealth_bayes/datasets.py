"""
Workshop data loading utilities.

Supports the four comma-separated tables used by the labs:

Weekly mortality (one row per region and week):
    year,week,region,population,deaths,temperature
    2015,1,North,1204311,301,3.82
    2015,1,South,983120,236,6.15
    ...

(``temperature_anomaly`` may be supplied instead of ``temperature``.)

Model predictions (long format, one row per location, year and model):
    location_id,lon,lat,year,model,prediction
    L001,-0.12,51.50,2016,satellite,11.4
    ...

Monitoring observations (ground truth):
    location_id,lon,lat,year,observed
    L001,-0.12,51.50,2016,10.9
    ...

Precomputed Bayesian ensemble results:
    location_id,lon,lat,year,mean,sd,w_satellite,w_cmaq,w_landuse
    L001,-0.12,51.50,2016,11.1,0.8,0.41,0.35,0.24
    ...
"""
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import warnings


MORTALITY_COLUMNS = ('year', 'week', 'region', 'population', 'deaths')
PREDICTION_COLUMNS = ('location_id', 'lon', 'lat', 'year', 'model', 'prediction')
MONITOR_COLUMNS = ('location_id', 'lon', 'lat', 'year', 'observed')
ENSEMBLE_RESULT_COLUMNS = ('location_id', 'lon', 'lat', 'year', 'mean', 'sd')
WEIGHT_PREFIX = 'w_'

DEFAULT_MODEL_NAMES = ('satellite', 'cmaq', 'landuse')


def require_columns(df: pd.DataFrame, columns: Sequence[str], source: str = 'table'):
    """Raise ValueError if any of ``columns`` is absent from ``df``."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required column(s) {missing} in {source}")


class WorkshopDataLoader:
    """Load and validate the workshop's tabular datasets."""

    def __init__(self, data_dir: str = 'data'):
        """
        Args:
            data_dir: Directory containing the workshop CSV files
        """
        self.data_dir = Path(data_dir)
        if not self.data_dir.exists():
            warnings.warn(f"Data directory does not exist: {self.data_dir}")

    def _resolve(self, filename: str) -> Path:
        return self.data_dir / filename if not Path(filename).is_absolute() else Path(filename)

    def _read_csv(self, filename: str, kind: str) -> pd.DataFrame:
        filepath = self._resolve(filename)
        if not filepath.exists():
            raise FileNotFoundError(f"{kind} file not found: {filepath}")
        return pd.read_csv(filepath)

    def load_mortality_csv(self, filename: str = 'mortality.csv') -> pd.DataFrame:
        """Load weekly mortality counts.

        Args:
            filename: CSV filename relative to data_dir, or absolute path.

        Returns:
            DataFrame sorted by region, year and week with integer ``deaths``.
        """
        df = self._read_csv(filename, 'Mortality')
        require_columns(df, MORTALITY_COLUMNS, source=filename)
        if 'temperature' not in df.columns and 'temperature_anomaly' not in df.columns:
            raise ValueError(
                f"{filename} needs a 'temperature' or 'temperature_anomaly' column"
            )

        if df['deaths'].isna().any():
            raise ValueError(f"Missing death counts in {filename}")
        deaths = df['deaths'].to_numpy(dtype=np.float64)
        if (deaths < 0).any() or not np.allclose(deaths, np.round(deaths)):
            raise ValueError(f"Death counts must be non-negative integers in {filename}")
        if (df['population'] <= 0).any():
            raise ValueError(f"Population must be positive in {filename}")

        df['deaths'] = deaths.round().astype(np.int64)
        df['region'] = df['region'].astype(str)
        df = df.sort_values(['region', 'year', 'week']).reset_index(drop=True)

        n_regions = df['region'].nunique()
        n_weeks = df[['year', 'week']].drop_duplicates().shape[0]
        print(f"[Data] Loaded mortality: {len(df)} rows, {n_regions} regions, {n_weeks} weeks")
        print(f"  Years: {df['year'].min()} - {df['year'].max()}  |  "
              f"Total deaths: {df['deaths'].sum():,}")

        return df

    def load_predictions_csv(self, filename: str = 'predictions.csv') -> pd.DataFrame:
        """Load per-location pollutant predictions from several models (long format)."""
        df = self._read_csv(filename, 'Predictions')
        require_columns(df, PREDICTION_COLUMNS, source=filename)
        df['location_id'] = df['location_id'].astype(str)
        df['model'] = df['model'].astype(str)
        df = df.sort_values(['location_id', 'year', 'model']).reset_index(drop=True)

        models = sorted(df['model'].unique())
        print(f"[Data] Loaded predictions: {df['location_id'].nunique()} locations, "
              f"{len(models)} models {models}")
        return df

    def load_monitors_csv(self, filename: str = 'monitors.csv') -> pd.DataFrame:
        """Load ground-truth monitoring observations."""
        df = self._read_csv(filename, 'Monitor')
        require_columns(df, MONITOR_COLUMNS, source=filename)
        df['location_id'] = df['location_id'].astype(str)
        df = df.sort_values(['location_id', 'year']).reset_index(drop=True)

        print(f"[Data] Loaded monitors: {len(df)} observations at "
              f"{df['location_id'].nunique()} locations")
        print(f"  Observed range: {df['observed'].min():.2f} - {df['observed'].max():.2f}")
        return df

    def load_ensemble_results_csv(self, filename: str = 'ensemble_results.csv') -> pd.DataFrame:
        """Load precomputed ensemble output (mean, sd and per-model weights)."""
        df = self._read_csv(filename, 'Ensemble results')
        require_columns(df, ENSEMBLE_RESULT_COLUMNS, source=filename)
        weight_cols = [c for c in df.columns if c.startswith(WEIGHT_PREFIX)]
        if not weight_cols:
            raise ValueError(f"No weight columns ('{WEIGHT_PREFIX}<model>') found in {filename}")
        if (df['sd'] < 0).any():
            raise ValueError(f"Negative predictive sd in {filename}")
        df['location_id'] = df['location_id'].astype(str)
        df = df.sort_values(['location_id', 'year']).reset_index(drop=True)

        print(f"[Data] Loaded ensemble results: {len(df)} rows, "
              f"{len(weight_cols)} model weights")
        return df

    def load_ensemble_inputs(self,
                             predictions_file: str = 'predictions.csv',
                             monitors_file: str = 'monitors.csv',
                             results_file: Optional[str] = 'ensemble_results.csv') -> Dict:
        """Load everything the ensemble lab needs.

        Returns:
            dict with 'predictions', 'monitors' and 'results' (None if the
            results file is absent)
        """
        data = {
            'predictions': self.load_predictions_csv(predictions_file),
            'monitors': self.load_monitors_csv(monitors_file),
            'results': None,
        }
        if results_file is not None and self._resolve(results_file).exists():
            data['results'] = self.load_ensemble_results_csv(results_file)
        elif results_file is not None:
            print(f"⚠ Ensemble results not found: {results_file}")
        return data


def create_sample_mortality_data(output_dir: str = 'data',
                                 filename: str = 'mortality.csv',
                                 n_years: int = 3,
                                 regions: Sequence[str] = ('North', 'Midlands', 'South'),
                                 temperature_effect: float = 0.02,
                                 seed: int = 42) -> Path:
    """Create a synthetic weekly mortality file.

    Deaths are Poisson with log rate = baseline + seasonal smooth trend
    + temperature_effect * |anomaly| contribution, so a temperature model
    and a random-walk time effect both have something to find.

    Args:
        output_dir: Output directory
        filename: Output CSV name
        n_years: Number of years of 52 weeks
        regions: Region names
        temperature_effect: Log-rate change per degree of anomaly
        seed: RNG seed

    Returns:
        Path of the written CSV
    """
    rng = np.random.default_rng(seed)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    weeks = np.arange(1, 53)
    rows = []
    for r, region in enumerate(regions):
        population = int(rng.integers(400_000, 1_500_000))
        climate_offset = 2.0 * r
        region_log_rate = np.log(2.0e-4) + rng.normal(0.0, 0.1)
        for year_i in range(n_years):
            year = 2015 + year_i
            seasonal_temp = 10.0 + climate_offset - 7.0 * np.cos(2 * np.pi * (weeks - 4) / 52)
            temperature = seasonal_temp + rng.normal(0.0, 2.0, size=weeks.size)
            anomaly = temperature - seasonal_temp
            trend = 0.15 * np.cos(2 * np.pi * weeks / 52) - 0.02 * year_i
            log_rate = region_log_rate + trend + temperature_effect * anomaly
            deaths = rng.poisson(population * np.exp(log_rate))
            for w, t, d in zip(weeks, temperature, deaths):
                rows.append({
                    'year': year,
                    'week': int(w),
                    'region': region,
                    'population': population,
                    'deaths': int(d),
                    'temperature': round(float(t), 3),
                })

    df = pd.DataFrame(rows)
    filepath = output_path / filename
    df.to_csv(filepath, index=False)
    print(f"[Data] Sample mortality written: {filepath} ({len(df)} rows)")
    return filepath


def create_sample_ensemble_data(output_dir: str = 'data',
                                n_locations: int = 60,
                                years: Sequence[int] = (2016,),
                                model_names: Sequence[str] = DEFAULT_MODEL_NAMES,
                                seed: int = 42) -> Dict[str, Path]:
    """Create synthetic ensemble inputs and precomputed ensemble outputs.

    A smooth "true" concentration surface is sampled at random monitor
    locations. Each model is a biased, noisy view of it whose accuracy varies
    across space, so the precomputed weights vary smoothly with location.

    Returns:
        dict mapping 'predictions', 'monitors', 'results' to written paths
    """
    rng = np.random.default_rng(seed)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    n_models = len(model_names)
    lon = rng.uniform(-3.0, 1.5, size=n_locations)
    lat = rng.uniform(50.5, 55.0, size=n_locations)
    location_ids = [f"L{i + 1:03d}" for i in range(n_locations)]

    # Spatially varying accuracy -> softmax weights over models
    centres = np.column_stack([
        np.linspace(lon.min(), lon.max(), n_models),
        np.linspace(lat.max(), lat.min(), n_models),
    ])
    dist = np.sqrt((lon[:, None] - centres[None, :, 0]) ** 2 +
                   (lat[:, None] - centres[None, :, 1]) ** 2)
    logits = -dist
    weights = np.exp(logits) / np.exp(logits).sum(axis=1, keepdims=True)
    noise_sd = 0.5 + 2.0 * (1.0 - weights)

    prediction_rows, monitor_rows, result_rows = [], [], []
    for y_i, year in enumerate(years):
        truth = 12.0 + 3.0 * np.sin(lon) + 2.0 * np.cos(lat - 52.0) - 0.3 * y_i
        preds = np.empty((n_locations, n_models))
        for k, name in enumerate(model_names):
            bias = rng.normal(0.0, 0.5)
            preds[:, k] = truth + bias + rng.normal(0.0, noise_sd[:, k])
            for i in range(n_locations):
                prediction_rows.append({
                    'location_id': location_ids[i], 'lon': lon[i], 'lat': lat[i],
                    'year': year, 'model': name, 'prediction': round(float(preds[i, k]), 4),
                })

        observed = truth + rng.normal(0.0, 0.4, size=n_locations)
        ens_mean = (weights * preds).sum(axis=1)
        ens_sd = np.sqrt((weights * noise_sd ** 2).sum(axis=1) / n_models + 0.4 ** 2)
        for i in range(n_locations):
            monitor_rows.append({
                'location_id': location_ids[i], 'lon': lon[i], 'lat': lat[i],
                'year': year, 'observed': round(float(observed[i]), 4),
            })
            row = {
                'location_id': location_ids[i], 'lon': lon[i], 'lat': lat[i],
                'year': year, 'mean': round(float(ens_mean[i]), 4),
                'sd': round(float(ens_sd[i]), 4),
            }
            for k, name in enumerate(model_names):
                row[f"{WEIGHT_PREFIX}{name}"] = float(weights[i, k])
            result_rows.append(row)

    paths = {
        'predictions': output_path / 'predictions.csv',
        'monitors': output_path / 'monitors.csv',
        'results': output_path / 'ensemble_results.csv',
    }
    pd.DataFrame(prediction_rows).to_csv(paths['predictions'], index=False)
    pd.DataFrame(monitor_rows).to_csv(paths['monitors'], index=False)
    pd.DataFrame(result_rows).to_csv(paths['results'], index=False)

    print(f"[Data] Sample ensemble data written to {output_path} "
          f"({n_locations} locations, {n_models} models)")
    return paths


def weight_columns(df: pd.DataFrame) -> List[str]:
    """Names of the ``w_<model>`` columns in an ensemble results frame."""
    return [c for c in df.columns if c.startswith(WEIGHT_PREFIX)]
