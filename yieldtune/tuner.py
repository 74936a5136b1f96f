# =========================
# Cross-validated hyperparameter search
# =========================

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from joblib import Parallel, delayed
from scipy import stats
from scipy.stats import qmc
from sklearn.metrics import mean_squared_error, r2_score
from sklearn.model_selection import ParameterGrid

from yieldtune.config import TuningConfig
from yieldtune.exceptions import TuningError
from yieldtune.models import ModelFamily, ParamRange, Space
from yieldtune.recipe import FeatureRecipe
from yieldtune.splitter import fold_plan

METRICS = ('rmse', 'rsq')


def score_predictions(y_true, y_pred) -> Dict[str, float]:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'rsq': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
    }


# ----------------------------------
# Search space → candidate configs
# ----------------------------------
def build_grid(space: Space, grid_type: str = 'latin_hypercube', size: int = 20,
               levels: int = 3, seed: Optional[int] = None) -> List[Dict[str, Any]]:
    if not space:
        return [{}]

    if grid_type == 'grid':
        grid = {k: (v.levels(levels) if isinstance(v, ParamRange) else list(v)) for k, v in space.items()}
        return [dict(p) for p in ParameterGrid(grid)]

    names = list(space)
    sampler = qmc.LatinHypercube(d=len(names), seed=seed)
    unit = sampler.random(n=max(1, int(size)))
    configs: List[Dict[str, Any]] = []
    for row in unit:
        cfg = {}
        for name, u in zip(names, row):
            dim = space[name]
            if isinstance(dim, ParamRange):
                cfg[name] = dim.from_unit(u)
            else:
                cfg[name] = dim[min(int(u * len(dim)), len(dim) - 1)]
        if cfg not in configs:
            configs.append(cfg)
    return configs


# ----------------------------------
# One (fold, config) evaluation, run in a worker
# ----------------------------------
def _fit_and_score(family: ModelFamily, recipe: FeatureRecipe, train: pd.DataFrame,
                   analysis_idx: np.ndarray, assessment_idx: np.ndarray,
                   fold: int, config_id: int, params: Dict[str, Any], seed: int,
                   vocabulary: Optional[Dict[str, List[str]]] = None) -> Dict[str, Any]:
    row = {'config_id': config_id, 'fold': fold, 'rmse': np.nan, 'rsq': np.nan,
           'status': 'ok', 'error': None,
           'n_analysis': len(analysis_idx), 'n_assessment': len(assessment_idx)}
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            analysis = train.iloc[analysis_idx]
            assessment = train.iloc[assessment_idx]
            rec = recipe.clone().fit(analysis, vocabulary=vocabulary)
            X_a, y_a = rec.split_xy(analysis)
            X_v, y_v = rec.split_xy(assessment)
            model = family.fit(X_a, y_a, params, seed=seed)
            scores = score_predictions(y_v, model.predict(X_v))
        if not np.isfinite(scores['rmse']):
            raise ValueError("non-finite predictions")
        row.update(scores)
    except Exception as e:
        row['status'] = 'failed'
        row['error'] = f"{type(e).__name__}: {e}"
    return row


@dataclass
class TuningResults:
    family: str
    configs: List[Dict[str, Any]]
    metrics: pd.DataFrame  # one row per (fold, config)
    n_folds: int
    eliminated: Dict[int, int] = field(default_factory=dict)  # config_id -> number of folds seen when dropped

    def param_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.configs)
        df.insert(0, 'config_id', range(len(self.configs)))
        return df

    def summarize(self) -> pd.DataFrame:
        """Per config and metric: mean over folds, number of scored folds, standard error."""
        rows = []
        for cid, grp in self.metrics.groupby('config_id', sort=True):
            n_failed = int((grp['status'] == 'failed').sum())
            for metric in METRICS:
                vals = grp[metric].dropna().to_numpy(dtype=float)
                n = len(vals)
                se = float(np.std(vals, ddof=1) / np.sqrt(n)) if n > 1 else np.nan
                rows.append({
                    'config_id': int(cid),
                    'metric': metric,
                    'mean': float(vals.mean()) if n else np.nan,
                    'n': n,
                    'std_err': se,
                    'n_failed': n_failed,
                    'eliminated': int(cid) in self.eliminated,
                    'complete': n == self.n_folds and n_failed == 0 and int(cid) not in self.eliminated,
                })
        summary = pd.DataFrame(rows)
        if summary.empty:
            return summary
        return summary.merge(self.param_frame(), on='config_id', how='left')

    def n_failed(self) -> int:
        return int((self.metrics['status'] == 'failed').sum())


class Tuner:
    """
    k-fold search over a model family's space. With ``racing`` the configs are
    scored on ``burn_in`` folds first; afterwards, each remaining fold is only
    run for configs that a one-sided paired t-test does not find worse than
    the current leader, so every survivor has been scored on the same folds.

    Fold recipes take their categorical levels from the whole Train split, so
    a level that only occurs in one assessment part does not fail the fold.
    """

    def __init__(self, family: ModelFamily, recipe: FeatureRecipe, config: Optional[TuningConfig] = None,
                 seed: int = 0, verbose: bool = True, strata_bins: int = 4):
        self.family = family
        self.recipe = recipe
        self.config = config or TuningConfig()
        self.seed = seed
        self.verbose = verbose
        self.strata_bins = strata_bins

    def _log(self, msg: str):
        if self.verbose:
            print(msg)

    def _run(self, train, folds, tasks: List[Tuple[int, int]], configs, vocabulary) -> List[Dict[str, Any]]:
        jobs = (
            delayed(_fit_and_score)(self.family, self.recipe, train, folds[f][0], folds[f][1],
                                    f, cid, configs[cid], self.seed, vocabulary)
            for f, cid in tasks
        )
        return Parallel(n_jobs=self.config.n_jobs)(jobs)

    def _race(self, metrics: pd.DataFrame, survivors: List[int]) -> List[int]:
        wide = metrics[metrics['config_id'].isin(survivors)].pivot(index='fold', columns='config_id', values='rmse')
        # a config with a failed fold cannot be compared on equal terms
        scored = [c for c in survivors if c in wide.columns and wide[c].notna().all()]
        if not scored:
            return []
        leader = min(scored, key=lambda c: (wide[c].mean(), c))
        keep = [leader]
        for c in scored:
            if c == leader:
                continue
            diff = wide[c] - wide[leader]
            if np.allclose(diff, 0.0):
                keep.append(c)
                continue
            p = stats.ttest_rel(wide[c], wide[leader], alternative='greater').pvalue
            if np.isnan(p) or p >= self.config.alpha:
                keep.append(c)
        return sorted(keep)

    def tune(self, train: pd.DataFrame) -> TuningResults:
        cfg = self.config
        configs = build_grid(self.family.space, cfg.grid_type, cfg.grid_size, cfg.grid_levels, seed=self.seed)
        if not configs:
            raise TuningError(f"Search space for '{self.family.name}' produced no configurations")

        folds = fold_plan(train[self.recipe.target_col], n_folds=cfg.cv_folds, seed=self.seed, bins=self.strata_bins)
        vocabulary = self.recipe.learn_vocabulary(train)
        ids = list(range(len(configs)))
        self._log(f"  Tuning {self.family.name}: {len(configs)} configurations × {len(folds)} folds"
                  f"{' (racing)' if cfg.racing else ''}")

        eliminated: Dict[int, int] = {}
        if not cfg.racing or len(configs) == 1:
            rows = self._run(train, folds, [(f, c) for f in range(len(folds)) for c in ids], configs, vocabulary)
        else:
            burn_in = cfg.burn_in
            rows = self._run(train, folds, [(f, c) for f in range(burn_in) for c in ids], configs, vocabulary)
            survivors = ids
            for f in range(burn_in, len(folds)):
                keep = self._race(pd.DataFrame(rows), survivors)
                for c in survivors:
                    if c not in keep:
                        eliminated[c] = f
                survivors = keep
                self._log(f"  Racing: fold {f + 1}/{len(folds)} — {len(survivors)}/{len(configs)} configurations remain")
                if not survivors:
                    break
                rows += self._run(train, folds, [(f, c) for c in survivors], configs, vocabulary)

        metrics = pd.DataFrame(rows).sort_values(['config_id', 'fold']).reset_index(drop=True)
        results = TuningResults(self.family.name, configs, metrics, len(folds), eliminated)

        n_failed = results.n_failed()
        if n_failed == len(metrics):
            first_err = metrics['error'].dropna().iloc[0] if metrics['error'].notna().any() else 'unknown'
            raise TuningError(f"All {len(metrics)} fold fits failed for '{self.family.name}'. First error: {first_err}")
        if n_failed:
            self._log(f"  ⚠️ {n_failed} fold fits failed and are excluded from selection")
        return results
