"""
rdd_analysis.py のテスト
"""

import pytest
import numpy as np
import pandas as pd

from causal_tutorials import rdd_analysis, datasets
from causal_tutorials.exceptions import InvalidInputError, InsufficientDataError


class TestKernelWeights:
    """kernel_weights のテスト"""

    def test_triangular(self):
        """三角カーネルは中心で1、端で0"""
        w = rdd_analysis.kernel_weights(np.array([0.0, 0.5, -0.5, 1.0, 1.5]))

        np.testing.assert_allclose(w, [1.0, 0.5, 0.5, 0.0, 0.0])

    def test_support(self):
        """すべてのカーネルは |u| > 1 で0"""
        for kernel in ("triangular", "uniform", "epanechnikov"):
            w = rdd_analysis.kernel_weights(np.array([-2.0, 0.0, 2.0]), kernel)
            assert w[0] == 0.0 and w[2] == 0.0
            assert w[1] > 0

    def test_unknown_kernel(self):
        """未知のカーネルはエラー"""
        with pytest.raises(ValueError):
            rdd_analysis.kernel_weights(np.zeros(3), "gaussian")


class TestEstimateRDD:
    """estimate_rdd のテスト"""

    def test_recovers_jump(self, rdd_data):
        """閾値でのジャンプは真の効果 3.0 に近い"""
        result = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=20)

        assert result['tau'] == pytest.approx(3.0, abs=0.6)
        assert result['ci_lower'] < result['tau'] < result['ci_upper']
        assert result['n_below'] > 0 and result['n_above'] > 0
        assert result['bandwidth'] == 20

    def test_quadratic_and_covariates(self, rdd_data):
        """2次の多項式と共変量でも推定できる"""
        result = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=30,
                                           order=2, covariates=['age'])

        assert result['order'] == 2
        assert result['tau'] == pytest.approx(3.0, abs=0.8)

    def test_covariates_improve_precision(self, rdd_data):
        """アウトカムを説明する共変量は標準誤差を小さくする"""
        plain = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=20)
        adjusted = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=20, covariates=['age'])

        assert adjusted['se'] < plain['se']

    def test_automatic_bandwidth(self, rdd_data):
        """バンド幅を省略すると交差検証で選ぶ"""
        result = rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0)

        assert 0 < result['bandwidth'] <= 50

    def test_bandwidth_too_small(self, rdd_data):
        """窓内の観測が少なすぎるとエラー"""
        with pytest.raises(InsufficientDataError):
            rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=0.01)

    def test_non_positive_bandwidth(self, rdd_data):
        """バンド幅は正"""
        with pytest.raises(InvalidInputError):
            rdd_analysis.estimate_rdd(rdd_data, 'y', 'score', 0.0, bandwidth=-1)


class TestSelectBandwidth:
    """select_bandwidth のテスト"""

    def test_chooses_from_candidates(self, rdd_data):
        """候補の中から CV_MSE 最小のものを選ぶ"""
        result = rdd_analysis.select_bandwidth(rdd_data, 'y', 'score', 0.0, candidates=[5, 10, 20])
        table = result['cv_table']

        assert result['bandwidth'] in (5, 10, 20)
        assert len(table) == 3
        assert table.loc[table['CV_MSE'].idxmin(), 'Bandwidth'] == result['bandwidth']

    def test_no_positive_candidates(self, rdd_data):
        """正の候補がなければエラー"""
        with pytest.raises(InvalidInputError):
            rdd_analysis.select_bandwidth(rdd_data, 'y', 'score', 0.0, candidates=[0, -1])


class TestFuzzyRDD:
    """fuzzy_rdd のテスト"""

    def test_late(self):
        """LATE = アウトカムのジャンプ / 処置確率のジャンプ"""
        df = datasets.make_rdd_data(n=4000, fuzzy=True, random_state=0)

        result = rdd_analysis.fuzzy_rdd(df, 'y', 'd', 'score', 0.0, bandwidth=30)

        assert result['first_stage_jump'] == pytest.approx(0.6, abs=0.15)
        assert result['late'] == pytest.approx(3.0, abs=1.2)
        assert result['late'] == pytest.approx(
            result['reduced_form_jump'] / result['first_stage_jump'], rel=1e-6
        )

    def test_no_first_stage(self, rdd_data):
        """処置確率が閾値で変化しなければエラー"""
        df = rdd_data.assign(d=0.5)

        with pytest.raises(InsufficientDataError, match="No discontinuity"):
            rdd_analysis.fuzzy_rdd(df, 'y', 'd', 'score', 0.0, bandwidth=20)


class TestDensityTest:
    """density_test のテスト"""

    def test_uniform_running_variable(self, rdd_data):
        """一様な割り当て変数では左右の観測数はほぼ等しい"""
        result = rdd_analysis.density_test(rdd_data['score'].values, 0.0, bandwidth=10)

        assert abs(result['z_statistic']) < 3
        assert result['n_below'] + result['n_above'] > 0

    def test_detects_bunching(self, rdd_data):
        """閾値の直上に集中があれば操作が疑われる"""
        bunched = np.concatenate([rdd_data['score'].values, np.full(150, 0.5)])

        result = rdd_analysis.density_test(bunched, 0.0, bandwidth=5)

        assert result['manipulation_suspected']
        assert result['z_statistic'] > 0

    def test_empty_window(self):
        """閾値付近に観測がなければエラー"""
        with pytest.raises(InsufficientDataError):
            rdd_analysis.density_test(np.array([-10.0, -9.0, 9.0, 10.0]), 0.0, bandwidth=1)


class TestRobustnessChecks:
    """covariate_balance_at_cutoff / placebo_cutoffs / bandwidth_sensitivity のテスト"""

    def test_covariate_balance(self, rdd_data):
        """共変量ごとに1行"""
        table = rdd_analysis.covariate_balance_at_cutoff(rdd_data, ['age'], 'score', 0.0, bandwidth=20)

        assert table['Covariate'].tolist() == ['age']
        assert list(table.columns) == ['Covariate', 'Jump', 'SE', 'P_Value', 'Balanced']

    def test_placebo_cutoffs_skip_true_cutoff(self, rdd_data):
        """真の閾値は除外し、偽の閾値ではジャンプは小さい"""
        table = rdd_analysis.placebo_cutoffs(rdd_data, 'y', 'score', [-20, 0, 20], bandwidth=10,
                                             true_cutoff=0.0)

        assert table['Cutoff'].tolist() == [-20, 20]
        assert (table['Estimate'].abs() < 1.5).all()

    def test_bandwidth_sensitivity(self, rdd_data):
        """バンド幅が広いほど観測数が増える"""
        table = rdd_analysis.bandwidth_sensitivity(rdd_data, 'y', 'score', 0.0, [10, 20, 40])

        assert table['Bandwidth'].tolist() == [10, 20, 40]
        assert table['N'].is_monotonic_increasing


class TestBinnedMeans:
    """binned_means のテスト"""

    def test_bins_do_not_cross_cutoff(self, rdd_data):
        """ビンは閾値の片側に収まる"""
        bins = rdd_analysis.binned_means(rdd_data, 'y', 'score', 0.0, n_bins=20)

        below = bins[bins['Side'] == 'below']
        above = bins[bins['Side'] == 'above']

        assert len(below) == 10 and len(above) == 10
        assert (below['Bin_Center'] < 0).all()
        assert (above['Bin_Center'] > 0).all()
        assert bins['Count'].sum() == len(rdd_data)

    def test_single_value_side(self):
        """閾値の片側に得点が1値しかなければビンは1つ"""
        df = pd.DataFrame({
            'score': [-3.0, -2.0, -1.0, -0.5, 0.0, 0.0],
            'y': [1.0, 1.2, 1.1, 1.3, 4.0, 5.0],
        })

        bins = rdd_analysis.binned_means(df, 'y', 'score', 0.0, n_bins=4)
        above = bins[bins['Side'] == 'above']

        assert len(above) == 1
        assert above['Bin_Center'].iloc[0] == 0.0
        assert above['Mean'].iloc[0] == pytest.approx(4.5)
        assert bins['Count'].sum() == len(df)
