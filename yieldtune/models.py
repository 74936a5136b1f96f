# =========================
# Model families (one per regression algorithm)
# =========================

import inspect
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sklearn.linear_model import ElasticNet, Ridge, Lasso
from sklearn.cross_decomposition import PLSRegression
from sklearn.neighbors import KNeighborsRegressor
from sklearn.svm import SVR
from sklearn.tree import DecisionTreeRegressor
from sklearn.ensemble import (
    RandomForestRegressor, ExtraTreesRegressor, BaggingRegressor,
    GradientBoostingRegressor, HistGradientBoostingRegressor, AdaBoostRegressor,
)
from sklearn.neural_network import MLPRegressor

# Tree-based models
import lightgbm as lgb


@dataclass(frozen=True)
class ParamRange:
    """Continuous or integer range; sampled on a log scale when ``log`` is set."""
    low: float
    high: float
    log: bool = False
    integer: bool = False

    def from_unit(self, u: float):
        u = float(np.clip(u, 0.0, 1.0))
        if self.log:
            v = float(np.exp(np.log(self.low) + u * (np.log(self.high) - np.log(self.low))))
        else:
            v = self.low + u * (self.high - self.low)
        if self.integer:
            return int(np.clip(round(v), self.low, self.high))
        return v

    def levels(self, n: int) -> list:
        if n <= 1:
            return [self.from_unit(0.5)]
        vals = [self.from_unit(u) for u in np.linspace(0.0, 1.0, n)]
        # integer ranges can collapse to the same level
        out = []
        for v in vals:
            if v not in out:
                out.append(v)
        return out


Space = Dict[str, Union[ParamRange, list]]


@dataclass
class FittedModel:
    """A trained estimator plus the parameter set and column order it was trained with."""
    family: str
    params: Dict[str, Any]
    estimator: Any
    feature_names: List[str]

    def predict(self, X) -> np.ndarray:
        if isinstance(X, pd.DataFrame):
            X = X[self.feature_names]
        else:
            X = pd.DataFrame(np.asarray(X, dtype=float).reshape(-1, len(self.feature_names)),
                             columns=self.feature_names)
        return np.asarray(self.estimator.predict(X), dtype=float).ravel()


@dataclass
class ModelFamily:
    name: str
    estimator: Callable[..., Any]
    space: Space
    complexity: List[Tuple[str, bool]]  # (param, ascending); earlier in the sort order = simpler
    fixed: Dict[str, Any] = field(default_factory=dict)
    needs_scaling: bool = False
    description: str = ''

    def with_fixed(self, overrides: Dict[str, Any]) -> "ModelFamily":
        """Copy of the family with some parameters pinned and removed from the search space."""
        if not overrides:
            return self
        space = {k: v for k, v in self.space.items() if k not in overrides}
        return ModelFamily(self.name, self.estimator, space, self.complexity,
                           {**self.fixed, **overrides}, self.needs_scaling, self.description)

    def build(self, params: Dict[str, Any], seed: Optional[int] = None):
        kwargs = {**self.fixed, **params}
        if seed is not None and 'random_state' in inspect.signature(self.estimator).parameters:
            kwargs.setdefault('random_state', seed)
        return self.estimator(**kwargs)

    def fit(self, X: pd.DataFrame, y, params: Dict[str, Any], seed: Optional[int] = None) -> FittedModel:
        est = self.build(params, seed)
        est.fit(X, np.asarray(y, dtype=float))
        return FittedModel(self.name, dict(params), est, list(X.columns))

    def complexity_key(self, params: Dict[str, Any]) -> tuple:
        """Sort key where smaller means a simpler (more regularised) model."""
        key = []
        for pname, ascending in self.complexity:
            v = params.get(pname, self.fixed.get(pname))
            choices = self.space.get(pname)
            if isinstance(choices, list) and not isinstance(v, (int, float)) and v in choices:
                v = choices.index(v)
            elif isinstance(v, tuple):
                v = sum(v)
            elif v is None:
                v = np.inf
            v = float(v)
            key.append(v if ascending else -v)
        return tuple(key)


# ======================
# Registry
# ======================
_N_TREES = ParamRange(50, 1000, integer=True)
_LEARN_RATE = ParamRange(1e-3, 0.3, log=True)

FAMILIES: Dict[str, ModelFamily] = {f.name: f for f in [
    ModelFamily(
        'linear_reg', ElasticNet,
        space={'alpha': ParamRange(1e-4, 10.0, log=True), 'l1_ratio': ParamRange(0.05, 1.0)},
        complexity=[('alpha', False), ('l1_ratio', False)],
        fixed={'max_iter': 10000},
        needs_scaling=True,
        description='Penalised linear regression (elastic net)',
    ),
    ModelFamily(
        'ridge', Ridge,
        space={'alpha': ParamRange(1e-3, 1e3, log=True)},
        complexity=[('alpha', False)],
        needs_scaling=True,
    ),
    ModelFamily(
        'lasso', Lasso,
        space={'alpha': ParamRange(1e-4, 10.0, log=True)},
        complexity=[('alpha', False)],
        fixed={'max_iter': 10000},
        needs_scaling=True,
    ),
    ModelFamily(
        'pls', PLSRegression,
        space={'n_components': ParamRange(1, 8, integer=True)},
        complexity=[('n_components', True)],
        fixed={'scale': False},
        needs_scaling=True,
        description='Partial least squares',
    ),
    ModelFamily(
        'knn', KNeighborsRegressor,
        space={'n_neighbors': ParamRange(2, 30, integer=True), 'weights': ['uniform', 'distance']},
        complexity=[('n_neighbors', False), ('weights', True)],
        needs_scaling=True,
    ),
    ModelFamily(
        'svm_linear', SVR,
        space={'C': ParamRange(1e-2, 1e2, log=True), 'epsilon': ParamRange(1e-2, 1.0, log=True)},
        complexity=[('C', True)],
        fixed={'kernel': 'linear'},
        needs_scaling=True,
    ),
    ModelFamily(
        'svm_rbf', SVR,
        space={'C': ParamRange(1e-2, 1e3, log=True), 'gamma': ParamRange(1e-4, 1.0, log=True)},
        complexity=[('C', True), ('gamma', True)],
        fixed={'kernel': 'rbf', 'epsilon': 0.1},
        needs_scaling=True,
    ),
    ModelFamily(
        'svm_poly', SVR,
        space={'degree': [1, 2, 3], 'C': ParamRange(1e-2, 1e2, log=True), 'coef0': ParamRange(0.0, 1.0)},
        complexity=[('degree', True), ('C', True)],
        fixed={'kernel': 'poly', 'gamma': 'scale'},
        needs_scaling=True,
    ),
    ModelFamily(
        'decision_tree', DecisionTreeRegressor,
        space={'max_depth': ParamRange(1, 15, integer=True), 'min_samples_leaf': ParamRange(2, 40, integer=True)},
        complexity=[('max_depth', True), ('min_samples_leaf', False)],
    ),
    ModelFamily(
        'random_forest', RandomForestRegressor,
        space={'n_estimators': _N_TREES, 'max_features': ParamRange(0.2, 1.0),
               'min_samples_leaf': ParamRange(1, 20, integer=True)},
        complexity=[('n_estimators', True), ('min_samples_leaf', False)],
        fixed={'n_jobs': 1},
    ),
    ModelFamily(
        'extra_trees', ExtraTreesRegressor,
        space={'n_estimators': _N_TREES, 'max_features': ParamRange(0.2, 1.0),
               'min_samples_leaf': ParamRange(1, 20, integer=True)},
        complexity=[('n_estimators', True), ('min_samples_leaf', False)],
        fixed={'n_jobs': 1},
    ),
    ModelFamily(
        'bagged_trees', BaggingRegressor,
        space={'n_estimators': ParamRange(10, 200, integer=True), 'max_samples': ParamRange(0.5, 1.0)},
        complexity=[('n_estimators', True), ('max_samples', True)],
        fixed={'n_jobs': 1},
    ),
    ModelFamily(
        'gradient_boosting', GradientBoostingRegressor,
        space={'n_estimators': ParamRange(50, 500, integer=True), 'learning_rate': _LEARN_RATE,
               'max_depth': ParamRange(1, 8, integer=True)},
        complexity=[('n_estimators', True), ('max_depth', True)],
    ),
    ModelFamily(
        'hist_gradient_boosting', HistGradientBoostingRegressor,
        space={'max_iter': ParamRange(50, 500, integer=True), 'learning_rate': _LEARN_RATE,
               'max_leaf_nodes': ParamRange(4, 63, integer=True), 'min_samples_leaf': ParamRange(5, 40, integer=True)},
        complexity=[('max_iter', True), ('max_leaf_nodes', True)],
    ),
    ModelFamily(
        'lightgbm', lgb.LGBMRegressor,
        space={'n_estimators': _N_TREES, 'learning_rate': _LEARN_RATE,
               'num_leaves': ParamRange(4, 63, integer=True), 'min_child_samples': ParamRange(5, 40, integer=True)},
        complexity=[('n_estimators', True), ('num_leaves', True)],
        fixed={'verbose': -1, 'n_jobs': 1},
        description='LightGBM gradient boosting',
    ),
    ModelFamily(
        'adaboost', AdaBoostRegressor,
        space={'n_estimators': ParamRange(25, 500, integer=True), 'learning_rate': ParamRange(1e-2, 2.0, log=True),
               'loss': ['linear', 'square', 'exponential']},
        complexity=[('n_estimators', True), ('learning_rate', True)],
    ),
    ModelFamily(
        'mlp', MLPRegressor,
        space={'hidden_layer_sizes': [(8,), (16,), (32,), (64,), (32, 16)],
               'alpha': ParamRange(1e-5, 1e-1, log=True),
               'learning_rate_init': ParamRange(1e-4, 1e-2, log=True)},
        complexity=[('hidden_layer_sizes', True), ('alpha', False)],
        fixed={'max_iter': 2000},
        needs_scaling=True,
        description='Single/two hidden-layer perceptron',
    ),
]}


def available_models() -> List[str]:
    return sorted(FAMILIES)


def get_family(name: str, fixed: Optional[Dict[str, Any]] = None) -> ModelFamily:
    if name not in FAMILIES:
        raise KeyError(f"Unknown model family '{name}'. Available: {available_models()}")
    return FAMILIES[name].with_fixed(fixed or {})
