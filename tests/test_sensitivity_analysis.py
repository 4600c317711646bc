"""
sensitivity_analysis.py のテスト
"""

import pytest
import numpy as np
import pandas as pd
from causal_tutorials import sensitivity_analysis
from causal_tutorials.exceptions import InvalidInputError, InsufficientDataError


class TestRosenbaumBounds:
    """rosenbaum_bounds のテスト"""

    def test_basic_functionality(self, sample_binary_data):
        """基本的な機能のテスト"""
        treated, control = sample_binary_data

        result = sensitivity_analysis.rosenbaum_bounds(treated, control)

        assert isinstance(result, pd.DataFrame)
        assert len(result) == 5  # デフォルトのGamma値は5つ
        assert 'Gamma' in result.columns
        assert 'P_value_upper' in result.columns
        assert 'P_value_lower' in result.columns

    def test_custom_gamma_values(self, sample_binary_data):
        """カスタムGamma値のテスト"""
        treated, control = sample_binary_data

        gamma_values = [1.0, 2.0, 3.0]
        result = sensitivity_analysis.rosenbaum_bounds(
            treated, control, gamma_values=gamma_values
        )

        assert len(result) == 3
        assert list(result['Gamma']) == gamma_values

    def test_bounds_widen_with_gamma(self, sample_continuous_data):
        """Gammaが大きくなると上限p値は増加し、下限p値は減少する"""
        treated, control = sample_continuous_data

        result = sensitivity_analysis.rosenbaum_bounds(treated, control)

        assert result['P_value_upper'].is_monotonic_increasing
        assert result['P_value_lower'].is_monotonic_decreasing

    def test_gamma_one_bounds_coincide(self, sample_continuous_data):
        """Gamma=1 では上限と下限が一致する（通常の符号順位検定）"""
        treated, control = sample_continuous_data

        result = sensitivity_analysis.rosenbaum_bounds(treated, control, gamma_values=[1.0])

        assert result.loc[0, 'P_value_upper'] == pytest.approx(result.loc[0, 'P_value_lower'])
        assert result.loc[0, 'Significant_upper']

    def test_all_zero_differences(self):
        """ペア差がすべて0ならエラー"""
        with pytest.raises(InsufficientDataError):
            sensitivity_analysis.rosenbaum_bounds(np.ones(10), np.ones(10))

    def test_length_mismatch(self):
        """長さが異なるとエラー"""
        with pytest.raises(InvalidInputError, match="Array length mismatch"):
            sensitivity_analysis.rosenbaum_bounds(np.ones(5), np.zeros(4))

    def test_invalid_gamma(self, sample_continuous_data):
        """1未満のGammaはエラー"""
        treated, control = sample_continuous_data

        with pytest.raises(InvalidInputError):
            sensitivity_analysis.rosenbaum_bounds(treated, control, gamma_values=[0.5])


class TestCalculateEValue:
    """calculate_e_value のテスト"""

    def test_risk_ratio_formula(self):
        """RR=2 の E-value は 2 + sqrt(2)"""
        result = sensitivity_analysis.calculate_e_value(2.0)

        assert result['point_estimate'] == pytest.approx(2.0 + np.sqrt(2.0))
        assert result['risk_ratio'] == pytest.approx(2.0)
        assert 'ci_limit' not in result

    def test_odds_ratio_basic(self):
        """オッズ比の基本的なテスト"""
        result = sensitivity_analysis.calculate_e_value(
            effect_estimate=2.0,
            effect_type="odds_ratio"
        )

        assert 'point_estimate' in result
        assert 'interpretation' in result
        assert result['point_estimate'] > 1.0  # E-valueは1より大きい

    def test_common_outcome_uses_sqrt(self):
        """一般的なアウトカムでは RR ≈ sqrt(OR)"""
        result = sensitivity_analysis.calculate_e_value(4.0, effect_type="odds_ratio", common_outcome=True)

        assert result['risk_ratio'] == pytest.approx(2.0)

    def test_with_se(self):
        """標準誤差を含むテスト"""
        result = sensitivity_analysis.calculate_e_value(
            effect_estimate=2.0,
            effect_se=0.1,
            effect_type="risk_ratio"
        )

        assert 'ci_limit' in result
        assert 1.0 < result['ci_limit'] < result['point_estimate']

    def test_ci_crossing_null(self):
        """信頼区間が1を含む場合、信頼限界のE-valueは1"""
        result = sensitivity_analysis.calculate_e_value(1.1, effect_se=0.5)

        assert result['ci_limit'] == 1.0

    def test_protective_effect(self):
        """保護効果（RR < 1）は逆数で計算される"""
        protective = sensitivity_analysis.calculate_e_value(0.5)
        harmful = sensitivity_analysis.calculate_e_value(2.0)

        assert protective['point_estimate'] == pytest.approx(harmful['point_estimate'])

    def test_smd_conversion(self):
        """SMD は exp(0.91 d) でリスク比に変換"""
        result = sensitivity_analysis.calculate_e_value(0.5, effect_type="smd")

        assert result['risk_ratio'] == pytest.approx(np.exp(0.91 * 0.5))

    def test_interpretation_levels(self):
        """E-valueの解釈レベルのテスト"""
        result_low = sensitivity_analysis.calculate_e_value(1.1)
        assert "脆弱" in result_low['interpretation']

        result_high = sensitivity_analysis.calculate_e_value(5.0)
        assert "頑健" in result_high['interpretation']

    def test_non_positive_ratio(self):
        """比が0以下ならエラー"""
        with pytest.raises(InvalidInputError, match="must be positive"):
            sensitivity_analysis.calculate_e_value(0.0)

    def test_invalid_effect_type(self):
        """無効なeffect_typeはエラー"""
        with pytest.raises(ValueError):
            sensitivity_analysis.calculate_e_value(2.0, effect_type="unknown")


class TestSensitivityAnalysisReport:
    """sensitivity_analysis_report のテスト"""

    def test_basic_report_generation(self, sample_continuous_data):
        """基本的なレポート生成のテスト"""
        treated, control = sample_continuous_data

        report = sensitivity_analysis.sensitivity_analysis_report(
            treated_outcomes=treated,
            control_outcomes=control,
            effect_estimate=1.0,
            effect_se=0.1,
        )

        assert set(report) == {'rosenbaum_bounds', 'e_value', 'critical_gamma', 'summary', 'recommendation'}
        assert 'Rosenbaum' in report['summary']
        assert 'E-value' in report['summary']
        assert report['critical_gamma'] >= 1.0

    def test_recommendation_quality(self, sample_continuous_data):
        """E-value の大きさに応じた推奨事項"""
        treated, control = sample_continuous_data

        report_high = sensitivity_analysis.sensitivity_analysis_report(
            treated, control, effect_estimate=4.0, effect_type="risk_ratio"
        )
        assert "✅" in report_high['recommendation']

        report_low = sensitivity_analysis.sensitivity_analysis_report(
            treated, control, effect_estimate=1.2, effect_type="risk_ratio"
        )
        assert "❌" in report_low['recommendation']

    def test_no_significant_gamma(self):
        """Gamma=1 でも有意でなければ critical_gamma は NaN"""
        # 正負が対称なペア差
        control = np.zeros(40)
        treated = np.repeat(np.arange(1, 21), 2) * np.tile([1, -1], 20)

        report = sensitivity_analysis.sensitivity_analysis_report(treated, control, effect_estimate=0.05)

        assert np.isnan(report['critical_gamma'])
        assert "有意ではありません" in report['summary']


class TestHelperFunctions:
    """ヘルパー関数のテスト"""

    def test_interpret_e_value(self):
        """E-valueの解釈関数のテスト"""
        from causal_tutorials.sensitivity_analysis import _interpret_e_value

        assert "脆弱" in _interpret_e_value(1.2)
        assert "頑健" in _interpret_e_value(3.5)

    def test_critical_gamma(self):
        """上限p値が有意な最大のGamma"""
        from causal_tutorials.sensitivity_analysis import _critical_gamma

        table = pd.DataFrame({
            'Gamma': [1.0, 1.5, 2.0],
            'Significant_upper': [True, True, False],
        })

        assert _critical_gamma(table) == 1.5
