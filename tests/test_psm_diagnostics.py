"""
psm_diagnostics.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import psm_diagnostics


class TestCalculateSMD:
    """calculate_smd のテスト"""

    def test_continuous_formula(self):
        """連続変数: 平均差 / sqrt((var_t + var_c) / 2)"""
        treated = np.array([2.0, 4.0, 6.0])
        control = np.array([1.0, 2.0, 3.0])

        smd = psm_diagnostics.calculate_smd(treated, control)

        expected = (4.0 - 2.0) / np.sqrt((4.0 + 1.0) / 2)
        assert smd == pytest.approx(expected)

    def test_binary_formula(self):
        """二値変数: 比率の差 / sqrt((p_t(1-p_t) + p_c(1-p_c)) / 2)"""
        treated = np.array([1, 1, 1, 0])
        control = np.array([1, 0, 0, 0])

        smd = psm_diagnostics.calculate_smd(treated, control, continuous=False)

        expected = 0.5 / np.sqrt((0.75 * 0.25 + 0.25 * 0.75) / 2)
        assert smd == pytest.approx(expected)

    def test_weights_balance(self):
        """重みで対照群の平均を処置群に合わせると SMD は0"""
        treated = np.array([1.0, 3.0])
        control = np.array([0.0, 4.0])

        smd = psm_diagnostics.calculate_smd(
            treated, control, weights_treated=np.ones(2), weights_control=np.array([1.0, 1.0])
        )

        assert smd == pytest.approx(0.0)

    def test_empty(self):
        """空の群は NaN"""
        assert np.isnan(psm_diagnostics.calculate_smd(np.array([]), np.array([1.0])))

    def test_constant(self):
        """分散0なら0"""
        assert psm_diagnostics.calculate_smd(np.ones(5), np.ones(5)) == 0.0

    def test_sign(self, sample_propensity_scores):
        """処置群の方が大きければ正"""
        ps_treated, ps_control = sample_propensity_scores

        assert psm_diagnostics.calculate_smd(ps_treated, ps_control) > 1.0


class TestEvaluateBalance:
    """evaluate_balance のテスト"""

    @pytest.mark.parametrize("smd, label", [
        (0.05, "Excellent"),
        (-0.15, "Good"),
        (0.25, "Acceptable"),
        (0.5, "Poor"),
        (np.nan, "Undefined"),
    ])
    def test_levels(self, smd, label):
        """|SMD| の閾値による評価"""
        assert psm_diagnostics.evaluate_balance(smd) == label


class TestCovariateBalanceTable:
    """covariate_balance_table のテスト"""

    def test_improvement(self):
        """マッチング後に SMD が改善する"""
        np.random.seed(42)
        before = pd.DataFrame({
            'treatment': np.repeat([1, 0], [50, 100]),
            'x': np.concatenate([np.random.randn(50) + 1.0, np.random.randn(100)]),
            'female': np.random.binomial(1, 0.5, 150),
        })
        after = before[(before['treatment'] == 1) | (before['x'] > 0.3)]

        table = psm_diagnostics.covariate_balance_table(before, after, 'treatment', ['x', 'female'])

        row = table.set_index('Covariate').loc['x']
        assert abs(row['SMD_After']) < abs(row['SMD_Before'])
        assert row['SMD_Improvement_%'] > 0
        assert table['Covariate'].tolist() == ['x', 'female']

    def test_weight_column_required(self):
        """指定したウェイト列が無ければエラー"""
        from causal_tutorials.exceptions import InvalidInputError

        df = pd.DataFrame({'treatment': [0, 1, 0, 1], 'x': [1.0, 2.0, 3.0, 4.0]})

        with pytest.raises(InvalidInputError):
            psm_diagnostics.covariate_balance_table(df, df, 'treatment', ['x'], weight_col='weight')


class TestCheckOverlap:
    """check_overlap のテスト"""

    def test_minmax(self, sample_propensity_scores):
        """両群の最小・最大の重なり"""
        ps_treated, ps_control = sample_propensity_scores

        result = psm_diagnostics.check_overlap(ps_treated, ps_control)

        low, high = result['overlap_range']
        assert low == pytest.approx(max(ps_treated.min(), ps_control.min()))
        assert high == pytest.approx(min(ps_treated.max(), ps_control.max()))
        assert 0 <= result['percentage_treated'] <= 100
        assert result['range_width'] == pytest.approx(high - low)

    def test_full_overlap(self):
        """同じ分布なら ✅"""
        ps = np.linspace(0.1, 0.9, 100)

        result = psm_diagnostics.check_overlap(ps, ps)

        assert result['percentage_treated'] == 100
        assert "✅" in result['recommendation']

    def test_no_overlap(self):
        """重ならなければ幅0で ❌"""
        result = psm_diagnostics.check_overlap(np.array([0.8, 0.9]), np.array([0.1, 0.2]))

        assert result['range_width'] == 0.0
        assert "❌" in result['recommendation']

    def test_percentile(self, sample_propensity_scores):
        """パーセンタイル法は minmax より狭い"""
        ps_treated, ps_control = sample_propensity_scores

        minmax = psm_diagnostics.check_overlap(ps_treated, ps_control)
        pct = psm_diagnostics.check_overlap(ps_treated, ps_control, method="percentile")

        assert pct['range_width'] <= minmax['range_width']

    def test_unknown_method(self, sample_propensity_scores):
        """未知の方法はエラー"""
        ps_treated, ps_control = sample_propensity_scores

        with pytest.raises(ValueError):
            psm_diagnostics.check_overlap(ps_treated, ps_control, method="kde")


class TestPSMQualityReport:
    """psm_quality_report のテスト"""

    def test_excellent(self):
        """バランス・重なり・マッチング率が良好なら Excellent"""
        balance = pd.DataFrame({'Covariate': ['x', 'z'], 'SMD_After': [0.01, -0.02]})
        overlap = {'percentage_treated': 98.0, 'percentage_control': 95.0}

        report = psm_diagnostics.psm_quality_report(balance, overlap, 95, 100)

        assert report['overall_quality'] == "Excellent"
        assert report['recommendations'] == ["✅ マッチングの品質は良好です。"]

    def test_poor(self):
        """バランスが悪く重なりも少なければ Poor"""
        balance = pd.DataFrame({'Covariate': ['x', 'z'], 'SMD_After': [0.5, 0.4]})
        overlap = {'percentage_treated': 40.0, 'percentage_control': 30.0}

        report = psm_diagnostics.psm_quality_report(balance, overlap, 20, 100)

        assert report['overall_quality'] == "Poor"
        assert any("x" in rec for rec in report['recommendations'])
        assert "マッチング品質レポート" in report['summary']
