# =========================
# Train/test split and fold plans
# =========================

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sklearn.model_selection import train_test_split, KFold, StratifiedKFold

from yieldtune.exceptions import SplitError


@dataclass
class DataSplit:
    train_idx: np.ndarray  # positional indices into the source frame
    test_idx: np.ndarray
    train: pd.DataFrame
    test: pd.DataFrame
    stratified: bool

    def __repr__(self):
        return f"DataSplit(train={len(self.train_idx)}, test={len(self.test_idx)}, stratified={self.stratified})"


def make_strata(y, bins: int = 4, min_per_bin: int = 2) -> Optional[np.ndarray]:
    """Quantile bins of a continuous target; None when the target cannot be binned usefully."""
    y = pd.Series(np.asarray(y, dtype=float))
    if bins < 2 or y.nunique() < 2:
        return None
    strata = pd.qcut(y, q=bins, labels=False, duplicates='drop')
    counts = strata.value_counts()
    if len(counts) < 2 or counts.min() < min_per_bin:
        return None
    return strata.to_numpy()


def stratified_split(df: pd.DataFrame, target_col: str, train_fraction: float = 0.7,
                     seed: int = 0, bins: int = 4, verbose: bool = False) -> DataSplit:
    if not 0.0 < train_fraction < 1.0:
        raise SplitError(f"train_fraction must be in (0, 1) (got {train_fraction})")
    n = len(df)
    n_train = int(np.floor(n * train_fraction))
    n_test = n - n_train
    if n_train == 0 or n_test == 0:
        raise SplitError(f"train_fraction={train_fraction} on {n} rows leaves an empty subset "
                         f"(train={n_train}, test={n_test})")

    strata = make_strata(df[target_col], bins=bins)
    if strata is not None and len(np.unique(strata)) > min(n_train, n_test):
        strata = None
    if strata is None and verbose:
        print("⚠️ Target could not be binned into strata; using a simple random split.")

    positions = np.arange(n)
    train_idx, test_idx = train_test_split(
        positions, train_size=n_train, test_size=n_test,
        random_state=seed, shuffle=True, stratify=strata
    )
    train_idx, test_idx = np.sort(train_idx), np.sort(test_idx)

    return DataSplit(
        train_idx=train_idx,
        test_idx=test_idx,
        train=df.iloc[train_idx].copy(),
        test=df.iloc[test_idx].copy(),
        stratified=strata is not None,
    )


def fold_plan(y, n_folds: int = 5, seed: int = 0, bins: int = 4) -> List[Tuple[np.ndarray, np.ndarray]]:
    """k-fold (analysis, assessment) position pairs, stratified on the binned target when possible."""
    y = np.asarray(y, dtype=float)
    if n_folds < 2 or n_folds > len(y):
        raise SplitError(f"Cannot build {n_folds} folds from {len(y)} rows")

    strata = make_strata(y, bins=bins, min_per_bin=n_folds)
    if strata is not None:
        cv = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
        splits = cv.split(np.zeros(len(y)), strata)
    else:
        cv = KFold(n_splits=n_folds, shuffle=True, random_state=seed)
        splits = cv.split(np.zeros(len(y)))
    return [(np.asarray(a), np.asarray(b)) for a, b in splits]
