import numpy as np
import pytest

from yieldtune.config import RecipeConfig, TuningConfig
from yieldtune.exceptions import TuningError
from yieldtune.models import ModelFamily, ParamRange, get_family
from yieldtune.recipe import FeatureRecipe
from yieldtune.tuner import Tuner, build_grid, score_predictions
from sklearn.linear_model import Ridge


def _linear_recipe():
    return FeatureRecipe(RecipeConfig(normalize=True), target_col='yield', cat_cols=['variety', 'year', 'block'])


def _ridge_family(alphas):
    return ModelFamily('ridge_fixed', Ridge, space={'alpha': list(alphas)}, complexity=[('alpha', False)])


class TestBuildGrid:

    def test_exhaustive_grid(self):
        space = {'a': ParamRange(0.0, 1.0), 'b': ['x', 'y']}
        grid = build_grid(space, 'grid', levels=3)
        assert len(grid) == 6
        assert {g['a'] for g in grid} == {0.0, 0.5, 1.0}

    def test_latin_hypercube_is_seeded_and_in_range(self):
        space = get_family('lightgbm').space
        a = build_grid(space, 'latin_hypercube', size=12, seed=4)
        b = build_grid(space, 'latin_hypercube', size=12, seed=4)
        assert a == b
        assert 1 < len(a) <= 12
        for cfg in a:
            assert 50 <= cfg['n_estimators'] <= 1000
            assert isinstance(cfg['num_leaves'], int)
            assert 1e-3 <= cfg['learning_rate'] <= 0.3

    def test_empty_space_gives_one_config(self):
        assert build_grid({}, 'grid') == [{}]


class TestTuner:

    def test_every_fold_and_config_is_scored(self, linear_trials):
        cfg = TuningConfig(cv_folds=4, grid_type='grid', racing=False, n_jobs=1)
        res = Tuner(_ridge_family([0.01, 1.0, 100.0]), _linear_recipe(), cfg, seed=1, verbose=False).tune(linear_trials)
        assert len(res.metrics) == 3 * 4
        assert (res.metrics['status'] == 'ok').all()
        summary = res.summarize()
        assert set(summary['metric']) == {'rmse', 'rsq'}
        assert summary['complete'].all()
        assert (summary.loc[summary['metric'] == 'rmse', 'n'] == 4).all()

    def test_parallel_matches_serial(self, linear_trials):
        fam = _ridge_family([0.1, 10.0])
        serial = Tuner(fam, _linear_recipe(), TuningConfig(cv_folds=3, grid_type='grid', racing=False, n_jobs=1), seed=2,
                       verbose=False).tune(linear_trials)
        parallel = Tuner(fam, _linear_recipe(), TuningConfig(cv_folds=3, grid_type='grid', racing=False, n_jobs=2), seed=2,
                         verbose=False).tune(linear_trials)
        np.testing.assert_allclose(serial.metrics['rmse'], parallel.metrics['rmse'])

    def test_failed_fits_are_recorded_not_raised(self, linear_trials):
        cfg = TuningConfig(cv_folds=3, grid_type='grid', racing=False, n_jobs=1)
        res = Tuner(_ridge_family([1.0, -5.0]), _linear_recipe(), cfg, seed=1, verbose=False).tune(linear_trials)
        failed = res.metrics[res.metrics['config_id'] == 1]
        assert (failed['status'] == 'failed').all()
        assert failed['rmse'].isna().all()
        assert failed['error'].notna().all()
        summary = res.summarize()
        assert not summary.loc[summary['config_id'] == 1, 'complete'].any()
        assert summary.loc[summary['config_id'] == 0, 'complete'].all()

    def test_all_failures_raise(self, linear_trials):
        cfg = TuningConfig(cv_folds=3, grid_type='grid', racing=False, n_jobs=1)
        with pytest.raises(TuningError, match="All"):
            Tuner(_ridge_family([-1.0, -2.0]), _linear_recipe(), cfg, seed=1, verbose=False).tune(linear_trials)

    def test_racing_drops_bad_configs_on_shared_folds(self, linear_trials):
        cfg = TuningConfig(cv_folds=6, grid_type='grid', racing=True, burn_in=3, alpha=0.05, n_jobs=1)
        fam = _ridge_family([0.01, 0.1, 1e6, 1e7])
        res = Tuner(fam, _linear_recipe(), cfg, seed=3, verbose=False).tune(linear_trials)

        assert 2 in res.eliminated and 3 in res.eliminated
        folds_by_config = res.metrics.groupby('config_id')['fold'].apply(lambda s: sorted(s))
        survivors = [c for c in range(4) if c not in res.eliminated]
        assert survivors
        for c in survivors:
            assert folds_by_config[c] == list(range(6))
        for c, stage in res.eliminated.items():
            assert folds_by_config[c] == list(range(stage))

        summary = res.summarize()
        assert set(summary.loc[summary['complete'], 'config_id']) == set(survivors)

    def test_score_predictions(self):
        s = score_predictions([1.0, 2.0, 3.0], [1.0, 2.0, 3.0])
        assert s['rmse'] == 0.0
        assert s['rsq'] == 1.0

    def test_singleton_level_does_not_fail_its_fold(self, linear_trials):
        df = linear_trials.copy()
        df.loc[df.index[17], 'variety'] = 'Rare'
        cfg = TuningConfig(cv_folds=5, grid_type='grid', racing=False, n_jobs=1)
        res = Tuner(_ridge_family([0.1, 1.0, 10.0, 100.0]), _linear_recipe(), cfg, seed=1, verbose=False).tune(df)

        assert (res.metrics['status'] == 'ok').all()
        assert res.summarize()['complete'].all()

    def test_singleton_level_survives_racing(self, linear_trials):
        df = linear_trials.copy()
        df.loc[df.index[17], 'variety'] = 'Rare'
        cfg = TuningConfig(cv_folds=5, grid_type='grid', racing=True, burn_in=3, n_jobs=1)
        res = Tuner(_ridge_family([0.1, 1.0]), _linear_recipe(), cfg, seed=1, verbose=False).tune(df)
        assert res.n_failed() == 0
        assert len(res.eliminated) < 2

    def test_bucket_policy_through_folds(self, linear_trials):
        df = linear_trials.copy()
        df.loc[df.index[17], 'variety'] = 'Rare'
        recipe = FeatureRecipe(RecipeConfig(normalize=True, unseen_policy='bucket'), target_col='yield',
                               cat_cols=['variety', 'year', 'block'])
        cfg = TuningConfig(cv_folds=4, grid_type='grid', racing=False, n_jobs=1)
        res = Tuner(_ridge_family([0.1, 1.0]), recipe, cfg, seed=1, verbose=False).tune(df)
        assert (res.metrics['status'] == 'ok').all()


class TestTuningConfig:

    def test_burn_in_outside_fold_range(self):
        with pytest.raises(ValueError, match="burn_in"):
            TuningConfig(cv_folds=3, burn_in=5)
        with pytest.raises(ValueError, match="burn_in"):
            TuningConfig(cv_folds=5, burn_in=1)

    def test_burn_in_is_kept_as_given(self):
        assert TuningConfig(cv_folds=6, burn_in=4).burn_in == 4
