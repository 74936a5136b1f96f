# =========================
# Field-trial dataset loading
# =========================

import os
import numpy as np
import pandas as pd
from typing import List, Optional

from yieldtune.config import ModelConfig
from yieldtune.exceptions import SchemaError


# -------- Helpers
def _clean_text(x):
    if pd.isna(x): return None
    return (str(x).strip()
            .replace("\n", " ").replace("\r", " ")
            .replace("’", "'").replace("‘", "'")
            .replace("–", "-").replace("—", "-").replace("\t", " "))


def _normalize_cols(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.columns = [str(c).strip() for c in out.columns]
    return out


def _read_table(filepath: str) -> pd.DataFrame:
    ext = os.path.splitext(filepath)[1].lower()
    if ext in ('.xlsx', '.xls'):
        return pd.read_excel(filepath)
    return pd.read_csv(filepath)


def coerce_schema(df: pd.DataFrame, config: ModelConfig) -> pd.DataFrame:
    """Check the configured columns exist and give them categorical / float dtypes."""
    required = [config.target_col] + list(config.cat_cols) + list(config.numeric_cols)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(f"Missing required columns: {missing}. Available: {list(df.columns)}")

    out = df.copy()
    for col in config.cat_cols:
        vals = out[col].map(_clean_text)
        out[col] = vals.astype('category')
    for col in list(config.numeric_cols) + [config.target_col]:
        out[col] = pd.to_numeric(out[col], errors='coerce').astype('float64')
    return out


def load_observations(filepath: str, config: Optional[ModelConfig] = None, verbose: bool = True) -> pd.DataFrame:
    config = config or ModelConfig()
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Input not found: {filepath}")

    df = _normalize_cols(_read_table(filepath))
    if verbose:
        print(f"✅ Loaded data: {df.shape[0]} rows × {df.shape[1]} columns")

    df = coerce_schema(df, config)

    n_before = len(df)
    df = df.dropna(subset=[config.target_col]).reset_index(drop=True)
    if verbose and len(df) < n_before:
        print(f"🧹 Dropped {n_before - len(df)} rows without a target value.")
    return df


# -------- Synthetic field trials
VARIETIES: List[str] = ['Arnold', 'Bernstein', 'Claudius', 'Diadem', 'Eroica', 'Fabius', 'Genius', 'Hybery']
SOWING_DATES: List[str] = ['early', 'normal', 'late']


def make_synthetic_trials(n_rows: int = 240, seed: int = 42, years=(2017, 2018, 2019, 2020, 2021),
                          n_blocks: int = 4) -> pd.DataFrame:
    """
    Builds a field-trial table with the default schema: variety / sowing-date /
    year / block factors, seasonal weather aggregates and a yield (dt/ha) that
    responds to temperature, water supply and genotype.
    """
    rng = np.random.default_rng(seed)

    variety = rng.choice(VARIETIES, size=n_rows)
    sowing = rng.choice(SOWING_DATES, size=n_rows, p=[0.3, 0.45, 0.25])
    year = rng.choice(list(years), size=n_rows)
    block = rng.integers(1, n_blocks + 1, size=n_rows)

    year_effect = {y: rng.normal(0, 1.2) for y in years}
    tmean = np.array([15.0 + year_effect[y] for y in year]) + rng.normal(0, 1.0, n_rows)
    tmean = tmean + np.select([sowing == 'early', sowing == 'late'], [-0.8, 0.9], 0.0)
    dtr = rng.uniform(9, 11, n_rows)
    tmax = tmean + dtr / 2
    tmin = tmean - dtr / 2
    season_days = np.select([sowing == 'early', sowing == 'late'], [280, 230], 255)
    gdd = np.maximum(0, tmean - 5) * season_days
    precip = rng.gamma(shape=9.0, scale=45.0, size=n_rows)
    radiation = rng.normal(3200, 250, n_rows) + 40 * (tmean - 15)
    et0 = 0.0023 * (tmean + 17.8) * np.sqrt(np.maximum(dtr, 0)) * radiation / 2.45 * 1.3

    genotype = {v: rng.normal(0, 4) for v in VARIETIES}
    water = np.minimum(precip, 1.15 * et0) / et0
    yield_ = (
        70
        + np.array([genotype[v] for v in variety])
        - 1.6 * (tmean - 15) ** 2
        + 18 * water
        + 0.004 * (radiation - 3200)
        + np.select([sowing == 'early', sowing == 'late'], [2.5, -4.0], 0.0)
        + rng.normal(0, 3.0, n_rows)
    )

    return pd.DataFrame({
        'variety': variety,
        'sowing_date': sowing,
        'year': year.astype(str),
        'block': block.astype(str),
        'tmean': tmean.round(2),
        'tmax': tmax.round(2),
        'tmin': tmin.round(2),
        'gdd': gdd.round(1),
        'precip': precip.round(1),
        'radiation': radiation.round(1),
        'et0': et0.round(1),
        'yield': yield_.round(2),
    })
