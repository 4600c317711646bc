"""
panel_data.py のテスト
"""

import pytest
import numpy as np
import pandas as pd
import statsmodels.api as sm

from causal_tutorials.panel_data import (
    within_transform,
    fit_panel_model,
    hausman_test,
    compare_panel_models,
)
from causal_tutorials.exceptions import InvalidInputError


class TestWithinTransform:
    """within_transform のテスト"""

    def test_entity_means_zero(self, panel_data):
        """変換後の個体平均は0"""
        transformed = within_transform(panel_data, ['x', 'y'], 'unit')

        means = transformed.groupby('unit')[['x', 'y']].mean()
        np.testing.assert_allclose(means.values, 0.0, atol=1e-10)

    def test_matches_fixed_effects(self, panel_data):
        """変換後のOLSは固定効果推定量と一致"""
        transformed = within_transform(panel_data, ['x', 'z', 'y'], 'unit')
        ols = sm.OLS(transformed['y'], transformed[['x', 'z']]).fit()
        fe = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="fe")

        assert ols.params['x'] == pytest.approx(fe['params']['x'], rel=1e-6)


class TestFitPanelModel:
    """fit_panel_model のテスト"""

    def test_fixed_effects_consistent(self, panel_data):
        """固定効果は真の β = 1.5 に近い"""
        result = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="twfe")

        assert result['params']['x'] == pytest.approx(1.5, abs=0.1)
        assert result['n_entities'] == 150
        assert result['model_type'] == "twfe"

    def test_pooled_biased(self, panel_data):
        """個体効果と x が相関するのでプーリングOLSは上方にバイアス"""
        pooled = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="pooled")

        assert pooled['params']['x'] > 1.8

    def test_first_difference(self, panel_data):
        """一階差分は定数項を持たず、1期分の観測を失う"""
        result = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="fd")

        assert 'const' not in result['params'].index
        assert result['nobs'] == 150 * 4
        assert result['params']['x'] == pytest.approx(1.5, abs=0.15)

    def test_coefficient_table(self, panel_data):
        """係数表の列"""
        result = fit_panel_model(panel_data, 'y', ['x'], 'unit', 'time', model="fe")

        assert {'Variable', 'Coefficient', 'SE', 'P_Value', 'CI_Lower', 'CI_Upper', 'Significance'} \
            <= set(result['coefficient_table'].columns)

    def test_unknown_model(self, panel_data):
        """未知のモデルはエラー"""
        with pytest.raises(ValueError):
            fit_panel_model(panel_data, 'y', ['x'], 'unit', 'time', model="gmm")

    def test_duplicated_panel(self, panel_data):
        """(個体, 時点) の重複はエラー"""
        duplicated = pd.concat([panel_data, panel_data.iloc[:1]])

        with pytest.raises(InvalidInputError, match="duplicated"):
            fit_panel_model(duplicated, 'y', ['x'], 'unit', 'time')


class TestHausmanTest:
    """hausman_test のテスト"""

    def test_rejects_random_effects(self, panel_data):
        """個体効果が x と相関するので帰無仮説は棄却"""
        fe = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="fe", cov_type="unadjusted")
        re = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="re", cov_type="unadjusted")

        result = hausman_test(fe, re)

        assert result['df'] == 2
        assert result['p_value'] < 0.05
        assert "固定効果" in result['recommendation']

    def test_alpha_threshold(self, panel_data):
        """推奨は指定した有意水準で決まる"""
        fe = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="fe", cov_type="unadjusted")
        re = fit_panel_model(panel_data, 'y', ['x', 'z'], 'unit', 'time', model="re", cov_type="unadjusted")

        strict = hausman_test(fe, re, alpha=0.0)
        loose = hausman_test(fe, re, alpha=1.0)

        assert strict['p_value'] == loose['p_value']
        assert "変量効果" in strict['recommendation']
        assert "固定効果" in loose['recommendation']


class TestComparePanelModels:
    """compare_panel_models のテスト"""

    def test_all_models(self, panel_data):
        """5つのモデルを1表に"""
        table = compare_panel_models(panel_data, 'y', ['x', 'z'], 'unit', 'time')

        assert table['Model'].tolist() == ["pooled", "fe", "twfe", "re", "fd"]
        assert 'x' in table.columns
        assert 'x_SE' in table.columns
