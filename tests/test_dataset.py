import pandas as pd
import pytest

from yieldtune.config import ModelConfig
from yieldtune.dataset import load_observations, coerce_schema, make_synthetic_trials
from yieldtune.exceptions import SchemaError


class TestLoadObservations:

    def test_csv_round_trip_coerces_categoricals(self, tmp_path, trials):
        path = tmp_path / "trials.csv"
        trials.to_csv(path, index=False)

        df = load_observations(str(path), ModelConfig(), verbose=False)

        assert len(df) == len(trials)
        for col in ['variety', 'sowing_date', 'year', 'block']:
            assert isinstance(df[col].dtype, pd.CategoricalDtype)
        # years are read back as integers and become text levels
        assert set(df['year'].cat.categories) == set(trials['year'].unique())
        assert df['yield'].dtype == 'float64'

    def test_headers_are_stripped(self, tmp_path, trials):
        path = tmp_path / "trials.csv"
        trials.rename(columns={'yield': ' yield '}).to_csv(path, index=False)
        df = load_observations(str(path), verbose=False)
        assert 'yield' in df.columns

    def test_rows_without_target_are_dropped(self, tmp_path, trials):
        trials.loc[:4, 'yield'] = None
        path = tmp_path / "trials.csv"
        trials.to_csv(path, index=False)
        df = load_observations(str(path), verbose=False)
        assert len(df) == len(trials) - 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_observations(str(tmp_path / "nope.csv"))

    def test_missing_column_is_a_schema_error(self, trials):
        with pytest.raises(SchemaError, match="precip"):
            coerce_schema(trials.drop(columns=['precip']), ModelConfig())


class TestSyntheticTrials:

    def test_schema_and_determinism(self):
        a = make_synthetic_trials(50, seed=3)
        b = make_synthetic_trials(50, seed=3)
        pd.testing.assert_frame_equal(a, b)
        cfg = ModelConfig()
        assert set(cfg.cat_cols + cfg.numeric_cols + [cfg.target_col]) <= set(a.columns)

    def test_weather_is_plausible(self):
        df = make_synthetic_trials(300, seed=0)
        assert (df['tmax'] > df['tmin']).all()
        assert (df['precip'] > 0).all()
        assert df['yield'].std() > 1.0
