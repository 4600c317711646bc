"""
visualization パッケージのテスト
"""

import pytest
import numpy as np
import pandas as pd
from matplotlib.figure import Figure

from causal_tutorials import visualization as viz
from causal_tutorials import did_analysis, rdd_analysis, sensitivity_analysis, synthetic_control
from causal_tutorials.tutorials.dags import build_dag


@pytest.fixture
def balance_table() -> pd.DataFrame:
    """covariate_balance_table() と同じ列を持つ表"""
    return pd.DataFrame({
        'Covariate': ['age', 'income', 'prior'],
        'SMD_Before': [0.35, -0.2, 0.5],
        'SMD_After': [0.03, -0.05, 0.08],
        'SMD_Improvement_%': [91.4, 75.0, 84.0],
    })


@pytest.fixture
def estimate_table() -> pd.DataFrame:
    """係数と信頼区間の表"""
    return pd.DataFrame({
        'Variable': ['educ', 'exper'],
        'Coefficient': [0.8, 0.3],
        'CI_Lower': [0.6, 0.25],
        'CI_Upper': [1.0, 0.35],
    })


class TestBalancePlots:
    """バランス診断の図のテスト"""

    def test_love_plot_saved(self, balance_table, tmp_path):
        """Figure を返し、指定パスに保存する"""
        path = tmp_path / "love.png"

        fig = viz.plot_love(balance_table, save_path=str(path))

        assert isinstance(fig, Figure)
        assert path.exists()

    def test_smd_comparison(self, balance_table):
        """共変量ごとに棒が1本"""
        fig = viz.plot_smd_comparison(balance_table)

        assert len(fig.axes[0].patches) == 3

    def test_propensity_overlap(self, sample_propensity_scores):
        """処置群と対照群の傾向スコア分布"""
        ps_treated, ps_control = sample_propensity_scores
        scores = pd.Series(np.concatenate([ps_treated, ps_control]))
        treatment = pd.Series([1] * len(ps_treated) + [0] * len(ps_control))

        fig = viz.plot_propensity_overlap(scores, treatment)

        assert isinstance(fig, Figure)


class TestDIDPlots:
    """DID の図のテスト"""

    def test_parallel_trends(self, did_data):
        """2群の時系列"""
        fig = viz.plot_parallel_trends(did_data, 'y', 'time', 'group', treatment_time=3)

        assert len(fig.axes[0].lines) >= 2

    def test_effect_over_time(self, did_data):
        """did_estimation の結果から描画できる"""
        result = did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit')

        assert isinstance(viz.plot_treatment_effect_over_time(result), Figure)

    def test_did_coefficients(self, did_data):
        """did_estimation と twfe_did の結果を並べられる"""
        estimates = {
            'DID': did_analysis.did_estimation(did_data, 'y', 'd', 'time', 'unit'),
            'TWFE': did_analysis.twfe_did(did_data, 'y', 'd', 'unit', 'time'),
        }

        fig = viz.plot_did_coefficients(estimates)

        assert [t.get_text() for t in fig.axes[0].get_xticklabels()] == ['DID', 'TWFE']

    def test_event_study_with_true_effects(self):
        """集計済みの ATT 表と真の効果を重ねる"""
        table = pd.DataFrame({
            'Relative_Time': [-2, -1, 0, 1],
            'ATT': [0.1, 0.0, 2.1, 2.4],
            'CI_Lower': [-0.3, 0.0, 1.7, 2.0],
            'CI_Upper': [0.5, 0.0, 2.5, 2.8],
        })
        true_effects = pd.Series([0.0, 0.0, 2.0, 2.5], index=[-2, -1, 0, 1])

        fig = viz.plot_event_study(table, true_effects=true_effects)

        assert len(fig.axes[0].lines) >= 2

    def test_event_study_skips_empty_bins(self):
        """係数が NaN の相対時点は描かない"""
        table = pd.DataFrame({
            'Relative_Time': [-3, -2, -1, 0, 1],
            'Coefficient': [np.nan, 0.1, 0.0, 2.0, np.nan],
            'CI_Lower': [np.nan, -0.3, 0.0, 1.6, np.nan],
            'CI_Upper': [np.nan, 0.5, 0.0, 2.4, np.nan],
        })

        fig = viz.plot_event_study(table)

        assert list(fig.axes[0].lines[0].get_xdata()) == [-2, -1, 0]


class TestRDDPlots:
    """RDD の図のテスト"""

    def test_rdd_with_fit(self, rdd_data):
        """ビン平均と局所線形フィット"""
        binned = rdd_analysis.binned_means(rdd_data, 'y', 'score', 0.0)
        result = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=20)

        fig = viz.plot_rdd(binned, 0.0, rdd_result=result)

        assert isinstance(fig, Figure)

    def test_bandwidth_sensitivity(self, rdd_data):
        """バンド幅ごとの推定値"""
        table = rdd_analysis.bandwidth_sensitivity(rdd_data, 'y', 'score', 0.0, [10, 20])

        assert isinstance(viz.plot_bandwidth_sensitivity(table), Figure)


class TestSynthPlots:
    """合成コントロールの図のテスト"""

    def test_synthetic_control(self, synth_data):
        """実際の系列と合成の系列"""
        result = synthetic_control.fit_synthetic_control(synth_data, 'unit', 'time', 'y', 'unit_00', 16)

        assert isinstance(viz.plot_synthetic_control(result), Figure)

    def test_placebo_gaps(self):
        """処置単位を含むギャップの表"""
        gaps = pd.DataFrame(
            np.random.default_rng(0).normal(size=(10, 3)),
            columns=['unit_00', 'unit_01', 'unit_02'],
        )

        fig = viz.plot_placebo_gaps(gaps, 'unit_00', 5)

        assert len(fig.axes[0].lines) >= 3


class TestInferencePlots:
    """推論の図のテスト"""

    def test_coefficients_subset(self, estimate_table):
        """指定した変数だけを描く"""
        fig = viz.plot_coefficients(estimate_table, variables=['educ'])

        assert [t.get_text() for t in fig.axes[0].get_yticklabels()] == ['educ']

    def test_null_distribution(self):
        """帰無分布と観測値"""
        null = np.random.default_rng(0).normal(size=500)

        assert isinstance(viz.plot_null_distribution(null, 2.5), Figure)

    def test_sensitivity_analysis(self, sample_continuous_data):
        """Rosenbaum の上限・下限p値"""
        treated, control = sample_continuous_data
        bounds = sensitivity_analysis.rosenbaum_bounds(treated, control)

        fig = viz.plot_sensitivity_analysis(bounds)

        assert len(fig.axes[0].lines) >= 3

    def test_dag(self):
        """DAG の描画では元のグラフは変更されない"""
        dag = build_dag()
        n_edges = len(dag.edges)

        fig = viz.plot_dag(dag, highlight=["D", "Y"])

        assert isinstance(fig, Figure)
        assert len(dag.edges) == n_edges
