# =========================
# Candidate hyperparameter selection
# =========================

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from yieldtune.config import SelectionConfig
from yieldtune.exceptions import EmptyCandidateSetError
from yieldtune.models import ModelFamily
from yieldtune.recipe import FeatureRecipe
from yieldtune.tuner import TuningResults, score_predictions

# metric -> True when larger is better
MAXIMIZE = {'rmse': False, 'rsq': True}
RULE_ORDER = {'best': 0, 'pct_loss': 1, 'one_std_err': 2}
_SUMMARY_COLS = {'config_id', 'metric', 'mean', 'n', 'std_err', 'n_failed', 'eliminated', 'complete'}


@dataclass
class Candidate:
    config_id: int
    params: Dict[str, Any]
    sources: List[str] = field(default_factory=list)  # e.g. ["best_rmse", "one_std_err_rsq"]
    cv_metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def priority(self) -> int:
        return min(RULE_ORDER[s.rsplit('_', 1)[0]] for s in self.sources)


@dataclass
class SelectionResult:
    comparison: pd.DataFrame
    winner: Candidate
    candidates: List[Candidate]


def _row_params(row: pd.Series) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in _SUMMARY_COLS}


def _eligible(summary: pd.DataFrame, metric: str) -> pd.DataFrame:
    df = summary[summary['metric'] == metric]
    if 'complete' in df.columns:
        df = df[df['complete'].astype(bool)]
    return df[df['mean'].notna()]


def _best_value(df: pd.DataFrame, metric: str) -> float:
    return float(df['mean'].max() if MAXIMIZE[metric] else df['mean'].min())


def _order(df: pd.DataFrame, metric: str, family: ModelFamily, by_complexity: bool) -> pd.DataFrame:
    out = df.copy()
    out['_cx'] = [family.complexity_key(_row_params(r)) for _, r in out.iterrows()]
    out['_perf'] = -out['mean'] if MAXIMIZE[metric] else out['mean']
    keys = ['_cx', '_perf', 'config_id'] if by_complexity else ['_perf', '_cx', 'config_id']
    return out.sort_values(keys, kind='mergesort')


# ----------------------------------
# Selection rules (each returns a config_id or None)
# ----------------------------------
def select_best(summary: pd.DataFrame, metric: str, family: ModelFamily) -> Optional[int]:
    df = _eligible(summary, metric)
    if df.empty:
        return None
    return int(_order(df, metric, family, by_complexity=False).iloc[0]['config_id'])


def select_by_pct_loss(summary: pd.DataFrame, metric: str, family: ModelFamily, limit: float = 2.0) -> Optional[int]:
    """Simplest config whose loss relative to the best mean is within ``limit`` percent."""
    df = _eligible(summary, metric)
    if df.empty:
        return None
    best = _best_value(df, metric)
    gap = (best - df['mean']) if MAXIMIZE[metric] else (df['mean'] - best)
    if best == 0:
        within = df[gap <= 0]
    else:
        within = df[gap / abs(best) * 100 <= limit + 1e-12]
    return int(_order(within, metric, family, by_complexity=True).iloc[0]['config_id'])


def select_by_one_std_err(summary: pd.DataFrame, metric: str, family: ModelFamily) -> Optional[int]:
    """Simplest config whose mean is within one standard error of the best config."""
    df = _eligible(summary, metric)
    if df.empty:
        return None
    best_row = _order(df, metric, family, by_complexity=False).iloc[0]
    se = float(best_row['std_err']) if pd.notna(best_row['std_err']) else 0.0
    if MAXIMIZE[metric]:
        within = df[df['mean'] >= best_row['mean'] - se]
    else:
        within = df[df['mean'] <= best_row['mean'] + se]
    return int(_order(within, metric, family, by_complexity=True).iloc[0]['config_id'])


RULES = {
    'best': lambda s, m, fam, cfg: select_best(s, m, fam),
    'pct_loss': lambda s, m, fam, cfg: select_by_pct_loss(s, m, fam, cfg.pct_loss_limit),
    'one_std_err': lambda s, m, fam, cfg: select_by_one_std_err(s, m, fam),
}


class CandidateSelector:
    """
    Collects candidates from every (rule, metric) pair, refits each distinct
    one on Train and ranks them by Test RMSE. Ties go to the rule with the
    highest priority (best, pct_loss, one_std_err), then to the simpler
    model, then to the lower config id.
    """

    def __init__(self, family: ModelFamily, recipe: FeatureRecipe, config: Optional[SelectionConfig] = None,
                 seed: int = 0, verbose: bool = True):
        self.family = family
        self.recipe = recipe
        self.config = config or SelectionConfig()
        self.seed = seed
        self.verbose = verbose

    def candidates(self, results: TuningResults) -> List[Candidate]:
        summary = results.summarize()
        by_id: Dict[int, Candidate] = {}
        if not summary.empty:
            for metric in self.config.metrics:
                for rule in self.config.rules:
                    cid = RULES[rule](summary, metric, self.family, self.config)
                    if cid is None:
                        continue
                    if cid not in by_id:
                        cv = summary[summary['config_id'] == cid].set_index('metric')['mean'].to_dict()
                        by_id[cid] = Candidate(cid, dict(results.configs[cid]), [], {k: float(v) for k, v in cv.items()})
                    by_id[cid].sources.append(f"{rule}_{metric}")

        if not by_id:
            raise EmptyCandidateSetError(
                f"No complete configuration to choose from for '{results.family}' "
                f"({results.n_failed()} failed fold fits, {len(results.eliminated)} eliminated)"
            )
        return [by_id[c] for c in sorted(by_id)]

    def _refit_score(self, cand: Candidate, train: pd.DataFrame, test: pd.DataFrame) -> Dict[str, Any]:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('ignore')
                rec = self.recipe.clone().fit(train)
                X_tr, y_tr = rec.split_xy(train)
                X_te, y_te = rec.split_xy(test)
                model = self.family.fit(X_tr, y_tr, cand.params, seed=self.seed)
                scores = score_predictions(y_te, model.predict(X_te))
            return {'test_rmse': scores['rmse'], 'test_rsq': scores['rsq'], 'status': 'ok'}
        except Exception as e:
            if self.verbose:
                print(f"  ⚠️ Refit failed for config {cand.config_id}: {e}")
            return {'test_rmse': np.nan, 'test_rsq': np.nan, 'status': 'failed'}

    def compare(self, candidates: List[Candidate], train: pd.DataFrame, test: pd.DataFrame) -> pd.DataFrame:
        if not candidates:
            raise EmptyCandidateSetError("Cannot compare an empty candidate set")
        rows = []
        for cand in candidates:
            row = {
                'config_id': cand.config_id,
                'sources': ', '.join(cand.sources),
                **{f"cv_{k}": v for k, v in cand.cv_metrics.items()},
                **cand.params,
                **self._refit_score(cand, train, test),
                '_priority': cand.priority,
                '_cx': self.family.complexity_key(cand.params),
            }
            rows.append(row)
        comp = pd.DataFrame(rows)
        comp['_failed'] = comp['status'] != 'ok'
        comp = comp.sort_values(['_failed', 'test_rmse', '_priority', '_cx', 'config_id'], kind='mergesort')
        comp = comp.drop(columns=['_failed', '_priority', '_cx']).reset_index(drop=True)
        comp.insert(0, 'rank', range(1, len(comp) + 1))
        return comp

    def select(self, results: TuningResults, train: pd.DataFrame, test: pd.DataFrame) -> SelectionResult:
        cands = self.candidates(results)
        if self.verbose:
            print(f"  {len(cands)} distinct candidates from {len(self.config.rules)} rules × {len(self.config.metrics)} metrics")
        comp = self.compare(cands, train, test)
        ok = comp[comp['status'] == 'ok']
        if ok.empty:
            raise EmptyCandidateSetError("Every candidate failed to refit on the training split")
        winner_id = int(ok.iloc[0]['config_id'])
        winner = next(c for c in cands if c.config_id == winner_id)
        return SelectionResult(comp, winner, cands)
