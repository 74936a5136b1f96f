# =========================
# Shapley-style attributions (Monte Carlo permutation estimator)
# =========================

import os
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from dataclasses import dataclass
from typing import List, Optional

from joblib import Parallel, delayed

# SHAP for interpretability
import shap

from yieldtune.config import ExplainConfig
from yieldtune.models import FittedModel


def _explain_chunk(model: FittedModel, background: pd.DataFrame, X: pd.DataFrame,
                   n_simulations: int, seed: int):
    masker = shap.maskers.Independent(background, max_samples=len(background))
    explainer = shap.PermutationExplainer(model.predict, masker, seed=seed)
    max_evals = n_simulations * (2 * X.shape[1] + 1)
    expl = explainer(X, max_evals=max_evals, silent=True)
    return np.asarray(expl.values, dtype=float), np.asarray(expl.base_values, dtype=float).reshape(-1)


@dataclass
class Attribution:
    values: np.ndarray  # (n_obs, n_features)
    base_values: np.ndarray  # (n_obs,)
    data: pd.DataFrame  # explained predictors, index = row ids

    @property
    def feature_names(self) -> List[str]:
        return list(self.data.columns)

    def reconstructed(self) -> np.ndarray:
        """Baseline plus the sum of attributions, per observation."""
        return self.base_values + self.values.sum(axis=1)

    def importance(self) -> pd.DataFrame:
        imp = pd.DataFrame({
            'feature': self.feature_names,
            'mean_abs_shap': np.abs(self.values).mean(axis=0),
        })
        return imp.sort_values(['mean_abs_shap', 'feature'], ascending=[False, True]).reset_index(drop=True)

    def per_observation(self) -> pd.DataFrame:
        n, m = self.values.shape
        return pd.DataFrame({
            'row_id': np.repeat(self.data.index.to_numpy(), m),
            'feature': np.tile(self.feature_names, n),
            'shap_value': self.values.reshape(-1),
            'feature_value': self.data.to_numpy(dtype=float).reshape(-1),
        })

    def decomposition(self, i: int = 0) -> pd.DataFrame:
        """Contribution breakdown for the i-th explained observation, largest |contribution| first."""
        out = pd.DataFrame({
            'feature': self.feature_names,
            'feature_value': self.data.iloc[i].to_numpy(dtype=float),
            'contribution': self.values[i],
        })
        out = out.reindex(out['contribution'].abs().sort_values(ascending=False, kind='mergesort').index)
        out = out.reset_index(drop=True)
        out.attrs['baseline'] = float(self.base_values[i])
        out.attrs['prediction'] = float(self.base_values[i] + self.values[i].sum())
        out.attrs['row_id'] = self.data.index[i]
        return out

    def to_explanation(self) -> shap.Explanation:
        return shap.Explanation(values=self.values, base_values=self.base_values,
                                data=self.data.to_numpy(dtype=float), feature_names=self.feature_names)

    def save_plots(self, figures_path: str, observation: int = 0, max_display: int = 15) -> List[str]:
        os.makedirs(figures_path, exist_ok=True)
        expl = self.to_explanation()
        saved = []

        plt.figure(figsize=(10, 6))
        shap.plots.bar(expl, max_display=max_display, show=False)
        plt.title('SHAP Feature Importance')
        plt.tight_layout()
        saved.append(f'{figures_path}/07a_shap_importance.svg')
        plt.savefig(saved[-1], bbox_inches='tight')
        plt.close('all')

        plt.figure(figsize=(12, 7))
        shap.plots.beeswarm(expl, max_display=max_display, show=False)
        plt.title('SHAP Summary (per observation)')
        plt.tight_layout()
        saved.append(f'{figures_path}/07b_shap_beeswarm.svg')
        plt.savefig(saved[-1], bbox_inches='tight')
        plt.close('all')

        plt.figure(figsize=(10, 6))
        shap.plots.waterfall(expl[observation], max_display=max_display, show=False)
        plt.tight_layout()
        saved.append(f'{figures_path}/07c_shap_waterfall.svg')
        plt.savefig(saved[-1], bbox_inches='tight')
        plt.close('all')

        shap.plots.force(float(self.base_values[observation]), self.values[observation],
                         features=np.round(self.data.iloc[observation].to_numpy(dtype=float), 2),
                         feature_names=self.feature_names, matplotlib=True, show=False)
        saved.append(f'{figures_path}/07d_shap_force.svg')
        plt.savefig(saved[-1], bbox_inches='tight')
        plt.close('all')
        return saved


class Explainer:
    """Read-only projection of a fitted model's predictions onto its input features."""

    def __init__(self, model: FittedModel, background: pd.DataFrame, config: Optional[ExplainConfig] = None,
                 seed: int = 0):
        self.model = model
        self.config = config or ExplainConfig()
        self.seed = seed
        n_bg = min(self.config.background_size, len(background))
        self.background = background[model.feature_names].sample(n=n_bg, random_state=seed)

    def explain(self, X: pd.DataFrame) -> Attribution:
        cfg = self.config
        X = X[self.model.feature_names]
        if cfg.max_rows is not None:
            X = X.iloc[:cfg.max_rows]

        size = max(1, cfg.chunk_size)
        chunks = [X.iloc[i:i + size] for i in range(0, len(X), size)]
        parts = Parallel(n_jobs=cfg.n_jobs)(
            delayed(_explain_chunk)(self.model, self.background, chunk, cfg.n_simulations, self.seed + k)
            for k, chunk in enumerate(chunks)
        )
        values = np.vstack([p[0] for p in parts])
        base = np.concatenate([p[1] for p in parts])
        return Attribution(values=values, base_values=base, data=X.copy())
