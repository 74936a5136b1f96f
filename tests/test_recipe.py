import numpy as np
import pandas as pd
import pytest
from sklearn.impute import SimpleImputer
from sklearn.preprocessing import StandardScaler

from yieldtune.config import RecipeConfig
from yieldtune.exceptions import RecipeNotFittedError, UnseenCategoryError, SchemaError
from yieldtune.recipe import FeatureRecipe

CATS = ['variety', 'sowing_date', 'year', 'block']


def _recipe(**kw):
    return FeatureRecipe(RecipeConfig(**kw), target_col='yield', cat_cols=CATS)


def _learned_state(rec):
    p = rec.params
    return {
        'vocabulary': p['vocabulary'],
        'output_columns': p['output_columns'],
        'dropped': (p['dropped_zero_variance'], p['dropped_correlated']),
        'medians': p['imputer'].statistics_.tolist(),
        'means': p['scaler'].mean_.tolist() if p['scaler'] is not None else None,
        'scales': p['scaler'].scale_.tolist() if p['scaler'] is not None else None,
    }


class TestFeatureRecipe:

    def test_identifiers_removed_and_categoricals_encoded(self, trials):
        X = _recipe().fit_apply(trials)
        assert 'yield' not in X.columns
        assert not any(c.startswith('year') or c.startswith('block') for c in X.columns)
        dummies = [c for c in X.columns if c.startswith('variety_')]
        # first level is the reference
        assert len(dummies) == trials['variety'].nunique() - 1
        assert set(np.unique(X[dummies].to_numpy())) <= {0.0, 1.0}

    def test_apply_is_idempotent(self, trials):
        rec = _recipe(normalize=True).fit(trials)
        pd.testing.assert_frame_equal(rec.apply(trials), rec.apply(trials))

    def test_fit_ignores_test_rows(self, trials):
        train, test = trials.iloc[:150], trials.iloc[150:].copy()
        rec = _recipe(normalize=True).fit(train)
        before = _learned_state(rec)

        test['tmean'] = test['tmean'] * 100
        test['variety'] = 'Arnold'
        rec.apply(test)

        assert _learned_state(rec) == before
        refit = _recipe(normalize=True).fit(train)
        assert _learned_state(refit) == before

    def test_test_rows_use_train_statistics(self, trials):
        train, test = trials.iloc[:150], trials.iloc[150:]
        rec = _recipe(normalize=True, corr_threshold=None).fit(train)
        X_tr, X_te = rec.apply(train), rec.apply(test)
        assert abs(X_tr['tmean'].mean()) < 1e-9
        expected = (test['tmean'] - train['tmean'].mean()) / train['tmean'].std(ddof=0)
        np.testing.assert_allclose(X_te['tmean'].to_numpy(), expected.to_numpy())
        assert isinstance(rec.params['scaler'], StandardScaler)
        assert isinstance(rec.params['imputer'], SimpleImputer)

    def test_shared_vocabulary_keeps_fold_local_statistics(self, trials):
        full = _recipe(normalize=True).fit(trials)
        vocab = full.params['vocabulary']
        part = trials.iloc[:120]
        rest = trials.iloc[120:].copy()
        rest.loc[rest.index[0], 'variety'] = 'Rare'

        fold = _recipe(normalize=True).fit(part, vocabulary={**vocab, 'variety': vocab['variety'] + ['Rare']})
        X = fold.apply(rest)
        assert len(X) == len(rest)
        np.testing.assert_allclose(fold.params['imputer'].statistics_,
                                   part[fold.params['numeric_columns']].median().to_numpy())
        with pytest.raises(UnseenCategoryError):
            _recipe(normalize=True).fit(part).apply(rest)

    def test_unseen_level_raises_by_default(self, trials):
        rec = _recipe().fit(trials)
        new = trials.head(3).copy()
        new['variety'] = ['Arnold', 'Zeppelin', 'Arnold']
        with pytest.raises(UnseenCategoryError) as exc:
            rec.apply(new)
        assert exc.value.column == 'variety'
        assert exc.value.levels == ['Zeppelin']

    def test_unseen_level_bucket(self, trials):
        rec = _recipe(unseen_policy='bucket').fit(trials)
        X = rec.apply(trials)
        assert 'variety___unseen__' in X.columns
        assert (X['variety___unseen__'] == 0).all()

        new = trials.head(2).copy()
        new['variety'] = ['Zeppelin', 'Arnold']
        X_new = rec.apply(new)
        assert X_new['variety___unseen__'].tolist() == [1.0, 0.0]

    def test_zero_variance_column_dropped(self, trials):
        df = trials.assign(site='Bonn', const=4.2)
        rec = _recipe().fit(df)
        assert 'const' in rec.params['dropped_zero_variance']
        assert 'const' not in rec.apply(df).columns

    def test_correlated_column_dropped(self, trials):
        rec = _recipe(corr_threshold=0.9).fit(trials)
        # tmax and tmin are both derived from tmean
        dropped = rec.params['dropped_correlated']
        assert dropped
        kept = rec.params['output_columns']
        assert not set(dropped) & set(kept)
        assert _recipe(corr_threshold=None).fit(trials).params['dropped_correlated'] == []

    def test_missing_numeric_imputed_with_train_median(self, trials):
        rec = _recipe(corr_threshold=None).fit(trials)
        row = trials.head(1).copy()
        row['precip'] = np.nan
        assert rec.apply(row)['precip'].iloc[0] == pytest.approx(trials['precip'].median())

    def test_apply_before_fit(self, trials):
        with pytest.raises(RecipeNotFittedError):
            _recipe().apply(trials)

    def test_missing_input_column(self, trials):
        rec = _recipe().fit(trials)
        with pytest.raises(SchemaError):
            rec.apply(trials.drop(columns=['radiation']))

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            RecipeConfig(unseen_policy='ignore')
