"""
Reshaping helpers for the workshop tables: anomalies, aggregation,
index coding, one-to-one joins and long/wide pivots.
"""
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .datasets import require_columns, PREDICTION_COLUMNS


@dataclass
class MortalityData:
    """Arrays handed to the mortality model builders."""
    deaths: np.ndarray            # [N] int counts
    population: np.ndarray        # [N] person-weeks at risk
    anomaly: np.ndarray           # [N] temperature anomaly (deg C)
    time_idx: np.ndarray          # [N] 0-based week index
    region_idx: np.ndarray        # [N] 0-based region index
    time_labels: List[str]
    region_labels: List[str]
    frame: pd.DataFrame

    @property
    def n_obs(self) -> int:
        return len(self.deaths)

    @property
    def n_times(self) -> int:
        return len(self.time_labels)

    @property
    def n_regions(self) -> int:
        return len(self.region_labels)


def temperature_anomaly(df: pd.DataFrame,
                        by: Sequence[str] = ('region', 'week'),
                        temperature_col: str = 'temperature') -> pd.Series:
    """Temperature minus its climatology (mean over years within ``by`` groups)."""
    require_columns(df, list(by) + [temperature_col])
    climatology = df.groupby(list(by))[temperature_col].transform('mean')
    return (df[temperature_col] - climatology).rename('temperature_anomaly')


def ensure_anomaly(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy with a ``temperature_anomaly`` column (computed if absent)."""
    out = df.copy()
    if 'temperature_anomaly' not in out.columns:
        out['temperature_anomaly'] = temperature_anomaly(out)
    return out


def add_time_index(df: pd.DataFrame) -> Tuple[pd.DataFrame, List[str]]:
    """Add a dense 0-based ``time_idx`` ordered by (year, week).

    Returns:
        (frame with time_idx, list of 'YYYY-Www' labels)
    """
    out = df.copy()
    periods = out[['year', 'week']].drop_duplicates().sort_values(['year', 'week'])
    labels = [f"{int(y)}-W{int(w):02d}" for y, w in zip(periods['year'], periods['week'])]
    periods = periods.assign(time_idx=np.arange(len(periods)))
    out = out.merge(periods, on=['year', 'week'], how='left')
    return out, labels


def add_region_index(df: pd.DataFrame) -> Tuple[pd.DataFrame, List[str]]:
    """Add a 0-based ``region_idx`` (regions in sorted order)."""
    out = df.copy()
    labels = sorted(out['region'].astype(str).unique())
    out['region_idx'] = out['region'].astype(str).map({r: i for i, r in enumerate(labels)})
    return out, labels


def crude_rate(df: pd.DataFrame, per: float = 100_000,
               deaths_col: str = 'deaths', population_col: str = 'population') -> pd.Series:
    """Deaths per ``per`` population."""
    return (df[deaths_col] / df[population_col] * per).rename('crude_rate')


def aggregate_weekly(df: pd.DataFrame) -> pd.DataFrame:
    """Sum deaths and population over regions for each (year, week).

    The temperature anomaly is averaged with population weights.
    """
    frame = ensure_anomaly(df)
    frame['_weighted_anomaly'] = frame['temperature_anomaly'] * frame['population']
    weekly = (frame.groupby(['year', 'week'], as_index=False)
              .agg(deaths=('deaths', 'sum'),
                   population=('population', 'sum'),
                   _weighted_anomaly=('_weighted_anomaly', 'sum')))
    weekly['temperature_anomaly'] = weekly.pop('_weighted_anomaly') / weekly['population']
    weekly['region'] = 'All'
    weekly['crude_rate'] = crude_rate(weekly)
    print(f"[Transform] Aggregated {len(frame)} rows to {len(weekly)} weeks")
    return weekly


def aggregate_by_region(df: pd.DataFrame) -> pd.DataFrame:
    """Totals per region: deaths, person-weeks, weeks observed and crude rate."""
    summary = (df.groupby('region', as_index=False)
               .agg(deaths=('deaths', 'sum'),
                    population=('population', 'sum'),
                    n_weeks=('deaths', 'size')))
    summary['crude_rate'] = crude_rate(summary)
    return summary


def _duplicated_keys(df: pd.DataFrame, keys: List[str]) -> List[tuple]:
    dup = df[df.duplicated(keys, keep=False)][keys].drop_duplicates()
    return [tuple(r) for r in dup.itertuples(index=False)]


def check_one_to_one(left: pd.DataFrame, right: pd.DataFrame, keys: Sequence[str]):
    """Raise ValueError unless every key appears exactly once on both sides."""
    keys = list(keys)
    require_columns(left, keys, source='left table')
    require_columns(right, keys, source='right table')

    for side, frame in (('left', left), ('right', right)):
        dups = _duplicated_keys(frame, keys)
        if dups:
            raise ValueError(
                f"Duplicate keys {keys} in {side} table ({len(dups)} keys), e.g. {dups[:5]}"
            )

    left_keys = set(map(tuple, left[keys].itertuples(index=False)))
    right_keys = set(map(tuple, right[keys].itertuples(index=False)))
    only_left = sorted(left_keys - right_keys)
    only_right = sorted(right_keys - left_keys)
    if only_left or only_right:
        raise ValueError(
            f"Tables do not correspond 1:1 on {keys}: "
            f"{len(only_left)} keys only in left (e.g. {only_left[:5]}), "
            f"{len(only_right)} keys only in right (e.g. {only_right[:5]})"
        )


def join_one_to_one(left: pd.DataFrame, right: pd.DataFrame,
                    keys: Sequence[str],
                    suffixes: Tuple[str, str] = ('', '_right')) -> pd.DataFrame:
    """Inner join after checking the 1:1 row correspondence."""
    check_one_to_one(left, right, keys)
    return left.merge(right, on=list(keys), how='inner', suffixes=suffixes,
                      validate='one_to_one')


def pivot_predictions_wide(df: pd.DataFrame) -> pd.DataFrame:
    """Long predictions -> one column per model.

    Returns:
        frame with location_id, lon, lat, year and one column per model
    """
    require_columns(df, PREDICTION_COLUMNS, source='predictions')
    dups = _duplicated_keys(df, ['location_id', 'year', 'model'])
    if dups:
        raise ValueError(f"Duplicate (location_id, year, model) rows, e.g. {dups[:5]}")
    wide = (df.pivot_table(index=['location_id', 'lon', 'lat', 'year'],
                           columns='model', values='prediction', aggfunc='first')
            .reset_index())
    wide.columns.name = None
    return wide


def melt_predictions_long(wide: pd.DataFrame,
                          model_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Inverse of :func:`pivot_predictions_wide`."""
    id_vars = ['location_id', 'lon', 'lat', 'year']
    require_columns(wide, id_vars, source='wide predictions')
    if model_names is None:
        model_names = [c for c in wide.columns if c not in id_vars]
    long = wide.melt(id_vars=id_vars, value_vars=list(model_names),
                     var_name='model', value_name='prediction')
    return long.sort_values(['location_id', 'year', 'model']).reset_index(drop=True)


def prepare_mortality_data(df: pd.DataFrame) -> MortalityData:
    """Code a mortality table into the arrays used by the model builders."""
    frame = ensure_anomaly(df)
    frame, time_labels = add_time_index(frame)
    frame, region_labels = add_region_index(frame)
    frame = frame.sort_values(['region_idx', 'time_idx']).reset_index(drop=True)

    dups = _duplicated_keys(frame, ['region', 'year', 'week'])
    if dups:
        raise ValueError(f"More than one row per (region, year, week), e.g. {dups[:5]}")

    data = MortalityData(
        deaths=frame['deaths'].to_numpy(dtype=np.int64),
        population=frame['population'].to_numpy(dtype=np.float64),
        anomaly=frame['temperature_anomaly'].to_numpy(dtype=np.float64),
        time_idx=frame['time_idx'].to_numpy(dtype=np.int64),
        region_idx=frame['region_idx'].to_numpy(dtype=np.int64),
        time_labels=time_labels,
        region_labels=region_labels,
        frame=frame,
    )
    print(f"[Transform] Prepared {data.n_obs} observations: "
          f"{data.n_times} weeks x {data.n_regions} regions")
    return data
