import os
import pickle

import numpy as np
import pandas as pd

from yieldtune.config import ModelConfig, RecipeConfig, TuningConfig, SelectionConfig, ExplainConfig
from yieldtune.dataset import _normalize_cols


def load_artifacts(path: str) -> dict:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Missing artifacts file: {path}")
    with open(path, 'rb') as f:
        return pickle.load(f)


def _config_from_dict(cfg: dict) -> ModelConfig:
    cfg = dict(cfg)
    cfg['recipe'] = RecipeConfig(**cfg['recipe'])
    cfg['tuning'] = TuningConfig(**cfg['tuning'])
    cfg['selection'] = SelectionConfig(**cfg['selection'])
    cfg['explain'] = ExplainConfig(**cfg['explain'])
    return ModelConfig(**cfg)


def predict_crop_yield(df_raw: pd.DataFrame, artifacts_path: str) -> pd.DataFrame:
    """
    Predicts yield for new field-trial rows with the exported recipe and model.
    Unseen categorical levels follow the recipe's policy (error or bucket).
    """
    artifacts = load_artifacts(artifacts_path)
    config = _config_from_dict(artifacts['config'])
    recipe = artifacts['recipe']
    model = artifacts['model']

    df = _normalize_cols(df_raw)
    missing = [c for c in recipe.params['input_columns'] if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns for prediction: {missing}")
    for col in config.numeric_cols:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors='coerce')

    X = recipe.apply(df)
    preds = model.predict(X)

    out = pd.DataFrame({'predicted_yield': np.asarray(preds, dtype=float)}, index=df.index)
    if config.target_col in df.columns:
        out['observed_yield'] = pd.to_numeric(df[config.target_col], errors='coerce')
    return out
