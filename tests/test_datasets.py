"""
datasets.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import datasets
from causal_tutorials.exceptions import InvalidInputError


GENERATORS = [
    (datasets.make_experiment_data, {'n': 200}),
    (datasets.make_regression_data, {'n': 200}),
    (datasets.make_mediation_data, {'n': 200}),
    (datasets.make_iv_data, {'n': 200}),
    (datasets.make_panel_data, {'n_units': 20}),
    (datasets.make_observational_data, {'n': 200}),
    (datasets.make_synthetic_control_data, {'n_units': 6}),
    (datasets.make_did_data, {'n_units': 20}),
    (datasets.make_staggered_did_data, {'n_units': 20}),
    (datasets.make_rdd_data, {'n': 200}),
]


class TestGenerators:
    """データ生成関数のテスト"""

    @pytest.mark.parametrize("generator,kwargs", GENERATORS)
    def test_true_effects_attached(self, generator, kwargs):
        """真の効果が attrs に格納される"""
        df = generator(random_state=0, **kwargs)

        assert isinstance(df, pd.DataFrame)
        assert df.attrs['true_effects']
        assert 'dataset' in df.attrs
        assert not df.isna().any().any()

    @pytest.mark.parametrize("generator,kwargs", GENERATORS)
    def test_reproducible(self, generator, kwargs):
        """同じシードなら同じデータ"""
        a = generator(random_state=7, **kwargs)
        b = generator(random_state=7, **kwargs)

        pd.testing.assert_frame_equal(a, b)

    def test_experiment_is_balanced_within_blocks(self):
        """ブロック内で処置群と対照群がほぼ半々"""
        df = datasets.make_experiment_data(n=400, random_state=0)

        shares = df.groupby('block')['treatment'].mean()

        assert shares.between(0.4, 0.6).all()

    def test_mediation_effects_decompose(self):
        """総効果 = 直接効果 + 間接効果"""
        effects = datasets.make_mediation_data(n=10, a=0.4, b=0.5, c_prime=0.2, random_state=0).attrs['true_effects']

        assert effects['total'] == pytest.approx(effects['direct'] + effects['indirect'])

    def test_sharp_and_fuzzy_rdd(self):
        """sharp では処置は閾値で決まり、fuzzy では決まらない"""
        sharp = datasets.make_rdd_data(n=500, random_state=0)
        fuzzy = datasets.make_rdd_data(n=500, fuzzy=True, random_state=0)

        assert (sharp['d'] == sharp['above']).all()
        assert not (fuzzy['d'] == fuzzy['above']).all()
        assert fuzzy.attrs['dataset'] == 'rdd_fuzzy'

    def test_staggered_never_treated_share(self):
        """未処置個体の割合"""
        df = datasets.make_staggered_did_data(n_units=100, never_treated_share=0.3, random_state=0)

        first = df.groupby('unit')['first_treated'].first()

        assert (first == 0).sum() == 30
        assert set(first[first > 0]) <= {4, 6, 8}

    def test_invalid_arguments(self):
        """範囲外の引数はエラー"""
        with pytest.raises(InvalidInputError):
            datasets.make_did_data(n_periods=4, treatment_period=4)
        with pytest.raises(InvalidInputError):
            datasets.make_synthetic_control_data(n_periods=10, treatment_time=1)
        with pytest.raises(InvalidInputError):
            datasets.make_staggered_did_data(n_periods=5, cohorts=(2, 6))
        with pytest.raises(InvalidInputError):
            datasets.make_experiment_data(n=0)


class TestLoadDataset:
    """load_dataset のテスト"""

    def test_local_csv(self, tmp_path):
        """ローカルの CSV を読み込む"""
        path = tmp_path / "data.csv"
        pd.DataFrame({'y': [1.0, 2.0], 'd': [0, 1]}).to_csv(path, index=False)

        df = datasets.load_dataset(path)

        assert list(df.columns) == ['y', 'd']
        assert len(df) == 2

    def test_missing_file(self, tmp_path):
        """存在しないファイルはエラー"""
        with pytest.raises(FileNotFoundError):
            datasets.load_dataset(tmp_path / "missing.csv")

    def test_empty_file(self, tmp_path):
        """空のファイルはエラー"""
        path = tmp_path / "empty.csv"
        path.write_text("")

        with pytest.raises(InvalidInputError, match="empty"):
            datasets.load_dataset(path)
