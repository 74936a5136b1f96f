"""
Shared fixtures for the YieldTune test suite.

Run: pytest tests/ -v
"""

import numpy as np
import pandas as pd
import pytest

from yieldtune.config import ModelConfig, RecipeConfig, TuningConfig, SelectionConfig, ExplainConfig
from yieldtune.dataset import make_synthetic_trials


def make_linear_trials(n_rows=200, seed=7, noise=2.0):
    """yield = 3*temp - 2*precip + noise, with the categorical keys a trial table carries."""
    rng = np.random.default_rng(seed)
    temp = rng.normal(15, 3, n_rows)
    precip = rng.normal(50, 10, n_rows)
    return pd.DataFrame({
        'variety': rng.choice(['A', 'B', 'C'], size=n_rows),
        'year': rng.choice(['2019', '2020', '2021'], size=n_rows),
        'block': rng.choice(['1', '2', '3', '4'], size=n_rows),
        'temp': temp,
        'precip': precip,
        'yield': 3 * temp - 2 * precip + rng.normal(0, noise, n_rows),
    })


@pytest.fixture
def trials():
    return make_synthetic_trials(n_rows=200, seed=1)


@pytest.fixture
def linear_trials():
    return make_linear_trials()


@pytest.fixture
def fast_tuning():
    return TuningConfig(cv_folds=3, grid_type='latin_hypercube', grid_size=5, racing=False, n_jobs=1, burn_in=2)


@pytest.fixture
def linear_config(fast_tuning):
    return ModelConfig(
        target_col='yield',
        model_name='linear_reg',
        cat_cols=['variety', 'year', 'block'],
        numeric_cols=['temp', 'precip'],
        random_state=123,
        verbose=False,
        save_plots=False,
        recipe=RecipeConfig(),
        tuning=fast_tuning,
        selection=SelectionConfig(),
        explain=ExplainConfig(n_simulations=4, background_size=30, max_rows=20),
    )
