# =========================
# FeatureRecipe: fit on Train, apply to Train and Test
# =========================

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple, Any

from sklearn.impute import SimpleImputer
from sklearn.preprocessing import StandardScaler

from yieldtune.config import RecipeConfig
from yieldtune.exceptions import RecipeNotFittedError, SchemaError, UnseenCategoryError


class FeatureRecipe:
    """
    Declarative preprocessing for the yield models.

    Steps (in order): remove identifier columns, median-impute numeric
    predictors, one-hot encode categoricals (first level is the reference),
    drop zero-variance columns, drop numeric columns correlated above a
    threshold, optionally standardise numeric predictors. Every parameter is
    learned in ``fit`` from Train rows only; ``apply`` never looks at the
    statistics of the rows it transforms.

    The fitted imputer and scaler are kept in ``params`` (as the
    preprocessors dict of the modeller) and only ``transform`` is called on
    new rows.
    """

    def __init__(self, config: Optional[RecipeConfig] = None, target_col: str = 'yield',
                 cat_cols: Optional[List[str]] = None):
        self.config = config or RecipeConfig()
        self.target_col = target_col
        self.cat_cols = list(cat_cols) if cat_cols is not None else []
        self.params: Dict[str, Any] = {}
        self.fitted = False

    def _columns(self, df: pd.DataFrame) -> Tuple[List[str], List[str], List[str], List[str]]:
        removed = [c for c in self.config.remove_cols if c in df.columns and c != self.target_col]
        predictors = [c for c in df.columns if c != self.target_col and c not in removed]
        cat_cols = [c for c in predictors
                    if c in self.cat_cols or not pd.api.types.is_numeric_dtype(df[c])]
        num_cols = [c for c in predictors if c not in cat_cols]
        return removed, predictors, cat_cols, num_cols

    def learn_vocabulary(self, df: pd.DataFrame) -> Dict[str, List[str]]:
        """Sorted levels per categorical predictor (plus the reserved level under the bucket policy)."""
        _, _, cat_cols, _ = self._columns(df)
        vocab: Dict[str, List[str]] = {}
        for col in cat_cols:
            levels = sorted(df[col].dropna().astype(str).unique().tolist())
            if self.config.unseen_policy == 'bucket':
                levels.append(self.config.unseen_label)
            vocab[col] = levels
        return vocab

    # ----------------------------------
    # Fit (Train only)
    # ----------------------------------
    def fit(self, train: pd.DataFrame, vocabulary: Optional[Dict[str, List[str]]] = None) -> "FeatureRecipe":
        """
        Learns every step from ``train``. ``vocabulary`` lets a fold recipe
        reuse the levels known on the whole Train split; level names are not
        statistics, so the imputer, scaler and filters stay fold-local.
        """
        cfg = self.config
        removed, predictors, cat_cols, num_cols = self._columns(train)

        imputer = None
        if cfg.impute_median and num_cols:
            imputer = SimpleImputer(strategy='median', keep_empty_features=True)
            imputer.fit(train[num_cols].astype('float64'))

        learned = self.learn_vocabulary(train)
        vocab = {c: list(vocabulary[c]) if vocabulary and c in vocabulary else learned[c] for c in cat_cols}

        self.params = {
            'removed_columns': removed,
            'input_columns': predictors,
            'cat_columns': cat_cols,
            'numeric_columns': num_cols,
            'imputer': imputer,
            'vocabulary': vocab,
            'dropped_zero_variance': [],
            'dropped_correlated': [],
            'scaler': None,
            'scaled_columns': [],
            'output_columns': [],
        }

        design = self._encode(train, self.params)
        protected = [self._dummy_name(c, cfg.unseen_label) for c in cat_cols] if cfg.unseen_policy == 'bucket' else []

        # Near-zero variance (here: exactly constant on Train)
        if cfg.drop_zero_variance:
            nunique = design.nunique(dropna=True)
            zv = [c for c in design.columns if nunique[c] <= 1 and c not in protected]
            self.params['dropped_zero_variance'] = zv
            design = design.drop(columns=zv)

        # High-correlation pruning among numeric predictors
        if cfg.corr_threshold is not None:
            numeric_left = [c for c in num_cols if c in design.columns]
            dropped = self._correlated_columns(design[numeric_left], cfg.corr_threshold)
            self.params['dropped_correlated'] = dropped
            design = design.drop(columns=dropped)

        if cfg.normalize:
            scaled = [c for c in num_cols if c in design.columns]
            if scaled:
                self.params['scaler'] = StandardScaler().fit(design[scaled])
                self.params['scaled_columns'] = scaled

        self.params['output_columns'] = list(design.columns)
        self.fitted = True
        return self

    @staticmethod
    def _correlated_columns(df: pd.DataFrame, threshold: float) -> List[str]:
        if df.shape[1] < 2:
            return []
        corr = df.corr().abs().fillna(0.0)
        mean_corr = (corr.sum() - 1.0) / (len(corr.columns) - 1)

        pairs = []
        for i in range(len(corr.columns)):
            for j in range(i + 1, len(corr.columns)):
                if corr.iloc[i, j] >= threshold:
                    pairs.append((corr.iloc[i, j], corr.columns[i], corr.columns[j]))
        pairs.sort(key=lambda p: -p[0])

        to_drop: List[str] = []
        for _, c1, c2 in pairs:
            if c1 in to_drop or c2 in to_drop:
                continue
            # keep the column that is less redundant with everything else
            to_drop.append(c2 if mean_corr[c2] >= mean_corr[c1] else c1)
        return [c for c in df.columns if c in to_drop]

    # ----------------------------------
    # Apply (pure given fitted params)
    # ----------------------------------
    @staticmethod
    def _dummy_name(col: str, level: str) -> str:
        return f"{col}_{level}"

    def _encode(self, df: pd.DataFrame, params: Dict[str, Any]) -> pd.DataFrame:
        missing = [c for c in params['input_columns'] if c not in df.columns]
        if missing:
            raise SchemaError(f"Rows to transform are missing columns: {missing}")

        pieces = []
        num_cols = params['numeric_columns']
        num = df[num_cols].astype('float64')
        if params['imputer'] is not None:
            num = pd.DataFrame(params['imputer'].transform(num), columns=num_cols, index=df.index)
        pieces.append(num)

        for col in params['cat_columns']:
            levels = params['vocabulary'][col]
            values = df[col].astype(object).map(lambda v: None if pd.isna(v) else str(v))
            unseen = set(values.dropna().unique()) - set(levels)
            if unseen:
                if self.config.unseen_policy == 'error':
                    raise UnseenCategoryError(col, unseen)
                values = values.map(lambda v: self.config.unseen_label if v in unseen else v)
            cat = pd.Categorical(values, categories=levels)
            dummies = pd.get_dummies(cat, prefix=col, prefix_sep='_', dtype='float64')
            dummies.index = df.index
            # first level is the reference
            pieces.append(dummies.iloc[:, 1:])

        return pd.concat(pieces, axis=1)

    def apply(self, rows: pd.DataFrame) -> pd.DataFrame:
        """Transforms rows into the model matrix (target column is not returned)."""
        if not self.fitted:
            raise RecipeNotFittedError("FeatureRecipe.apply() called before fit()")
        design = self._encode(rows, self.params)
        design = design[self.params['output_columns']].copy()
        scaled = self.params['scaled_columns']
        if scaled:
            design[scaled] = self.params['scaler'].transform(design[scaled])
        return design

    def fit_apply(self, train: pd.DataFrame) -> pd.DataFrame:
        return self.fit(train).apply(train)

    def split_xy(self, rows: pd.DataFrame) -> Tuple[pd.DataFrame, np.ndarray]:
        return self.apply(rows), rows[self.target_col].to_numpy(dtype=float)

    def clone(self) -> "FeatureRecipe":
        return FeatureRecipe(self.config, self.target_col, self.cat_cols)

    def summary(self) -> Dict[str, Any]:
        if not self.fitted:
            raise RecipeNotFittedError("FeatureRecipe.summary() called before fit()")
        return {
            'removed': list(self.params['removed_columns']),
            'zero_variance': list(self.params['dropped_zero_variance']),
            'correlated': list(self.params['dropped_correlated']),
            'n_features': len(self.params['output_columns']),
        }
