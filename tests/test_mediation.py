"""
mediation.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import mediation
from causal_tutorials.exceptions import InvalidInputError, InsufficientDataError


class TestBaronKenny:
    """baron_kenny のテスト"""

    def test_paths_near_truth(self, mediation_data):
        """経路係数は真の値に近い"""
        paths = mediation.baron_kenny(mediation_data, 'treatment', 'mediator', 'outcome', covariates=['x'])

        assert paths['a'] == pytest.approx(0.5, abs=0.15)
        assert paths['b'] == pytest.approx(0.8, abs=0.1)
        assert paths['c_prime'] == pytest.approx(0.3, abs=0.2)
        assert paths['n_observations'] == len(mediation_data)

    def test_decomposition_identity(self, mediation_data):
        """線形モデルでは c = c' + a × b"""
        paths = mediation.baron_kenny(mediation_data, 'treatment', 'mediator', 'outcome', covariates=['x'])

        assert paths['c'] == pytest.approx(paths['c_prime'] + paths['a'] * paths['b'], abs=1e-8)

    def test_missing_column(self, mediation_data):
        """存在しない列はエラー"""
        with pytest.raises(InvalidInputError):
            mediation.baron_kenny(mediation_data, 'treatment', 'unknown', 'outcome')

    def test_too_few_rows(self):
        """完全なデータ行が少なすぎるとエラー"""
        df = pd.DataFrame({'t': [0, 1, 0], 'm': [1.0, 2.0, 3.0], 'y': [1.0, np.nan, 2.0]})

        with pytest.raises(InsufficientDataError):
            mediation.baron_kenny(df, 't', 'm', 'y')


class TestSobelTest:
    """sobel_test のテスト"""

    def test_formula(self):
        """SE(ab) = sqrt(b² SE_a² + a² SE_b²)"""
        result = mediation.sobel_test(a=0.5, se_a=0.1, b=0.8, se_b=0.2)

        assert result['indirect_effect'] == pytest.approx(0.4)
        assert result['se'] == pytest.approx(np.sqrt(0.64 * 0.01 + 0.25 * 0.04))
        assert result['p_value'] < 0.05

    def test_zero_se(self):
        """SE が0なら検定統計量は NaN"""
        result = mediation.sobel_test(a=0.0, se_a=0.0, b=0.0, se_b=0.0)

        assert np.isnan(result['z_statistic'])


class TestBootstrapIndirectEffect:
    """bootstrap_indirect_effect のテスト"""

    def test_ci_covers_truth(self, mediation_data):
        """ブートストラップCIは真の間接効果 0.4 を含む"""
        result = mediation.bootstrap_indirect_effect(
            mediation_data, 'treatment', 'mediator', 'outcome', covariates=['x'],
            n_bootstrap=200, ci_level=0.99, random_state=0
        )

        assert result['ci_lower'] < 0.4 < result['ci_upper']
        assert result['n_bootstrap'] == 200
        assert len(result['bootstrap_distribution']) == 200

    def test_reproducible(self, mediation_data):
        """同じシードなら同じ区間"""
        kwargs = dict(n_bootstrap=50, random_state=3)
        a = mediation.bootstrap_indirect_effect(mediation_data, 'treatment', 'mediator', 'outcome', **kwargs)
        b = mediation.bootstrap_indirect_effect(mediation_data, 'treatment', 'mediator', 'outcome', **kwargs)

        assert a['ci_lower'] == b['ci_lower']
        assert a['ci_upper'] == b['ci_upper']

    def test_invalid_ci_level(self, mediation_data):
        """ci_level は (0, 1)"""
        with pytest.raises(InvalidInputError):
            mediation.bootstrap_indirect_effect(
                mediation_data, 'treatment', 'mediator', 'outcome', n_bootstrap=10, ci_level=1.0
            )


class TestMediationAnalysis:
    """mediation_analysis のテスト"""

    def test_summary(self, mediation_data):
        """総合結果と解釈"""
        result = mediation.mediation_analysis(
            mediation_data, 'treatment', 'mediator', 'outcome', covariates=['x'],
            n_bootstrap=200, random_state=0
        )

        assert result['total_effect'] == pytest.approx(result['direct_effect'] + result['indirect_effect'])
        assert 0 < result['proportion_mediated'] < 1
        assert "✅" in result['interpretation']
        assert {'paths', 'sobel', 'bootstrap'} <= set(result)

    def test_no_mediation(self):
        """媒介がなければ CI は0を含む"""
        rng = np.random.default_rng(1)
        n = 400
        t = rng.binomial(1, 0.5, n)
        m = rng.normal(0, 1, n)
        y = 1.0 * t + rng.normal(0, 1, n)
        df = pd.DataFrame({'t': t, 'm': m, 'y': y})

        result = mediation.mediation_analysis(df, 't', 'm', 'y', n_bootstrap=200, random_state=0)

        assert "⚠️" in result['interpretation']
