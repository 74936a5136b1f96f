# =========================
# Final fit and held-out evaluation
# =========================

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Any, Dict

from scipy import stats
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from yieldtune.models import FittedModel, ModelFamily
from yieldtune.recipe import FeatureRecipe


def regression_metrics(y_true, y_pred) -> Dict[str, float]:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if len(y_true) > 1 and np.std(y_true) > 0 and np.std(y_pred) > 0:
        r = float(stats.pearsonr(y_true, y_pred)[0])
    else:
        r = float('nan')
    return {
        'RMSE': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'MAE': float(mean_absolute_error(y_true, y_pred)),
        'R2': float(r2_score(y_true, y_pred)),
        'Pearson_r': r,
        'Pred_SD': float(np.std(y_pred, ddof=1)) if len(y_pred) > 1 else float('nan'),
        'Obs_SD': float(np.std(y_true, ddof=1)) if len(y_true) > 1 else float('nan'),
    }


class PredictionSet:
    """(row id, observed, predicted) for the held-out rows, in Test order."""

    def __init__(self, row_ids, observed, predicted):
        frame = pd.DataFrame({
            'row_id': list(row_ids),
            'observed': np.asarray(observed, dtype=float),
            'predicted': np.asarray(predicted, dtype=float),
        })
        self._frame = frame

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def observed(self) -> np.ndarray:
        return self._frame['observed'].to_numpy(copy=True)

    @property
    def predicted(self) -> np.ndarray:
        return self._frame['predicted'].to_numpy(copy=True)

    @property
    def residuals(self) -> np.ndarray:
        return self.predicted - self.observed

    def __len__(self):
        return len(self._frame)


@dataclass
class EvaluationResult:
    model: FittedModel
    recipe: FeatureRecipe
    predictions: PredictionSet
    test_metrics: Dict[str, float]
    train_metrics: Dict[str, float]

    def overfit_gap(self) -> float:
        """Test RMSE minus Train RMSE; informational only."""
        return self.test_metrics['RMSE'] - self.train_metrics['RMSE']


class FinalFitEvaluator:
    def __init__(self, family: ModelFamily, recipe: FeatureRecipe, seed: int = 0):
        self.family = family
        self.recipe = recipe
        self.seed = seed

    def evaluate(self, params: Dict[str, Any], train: pd.DataFrame, test: pd.DataFrame) -> EvaluationResult:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            rec = self.recipe.clone().fit(train)
            X_tr, y_tr = rec.split_xy(train)
            X_te, y_te = rec.split_xy(test)
            model = self.family.fit(X_tr, y_tr, params, seed=self.seed)
            pred_te = model.predict(X_te)
            pred_tr = model.predict(X_tr)

        return EvaluationResult(
            model=model,
            recipe=rec,
            predictions=PredictionSet(test.index, y_te, pred_te),
            test_metrics=regression_metrics(y_te, pred_te),
            train_metrics=regression_metrics(y_tr, pred_tr),
        )
