"""
cluster_robust.py のテスト
"""

import pytest
import numpy as np
import pandas as pd
import statsmodels.api as sm

from causal_tutorials import cluster_robust
from causal_tutorials.exceptions import InvalidInputError


class TestClusterRobustSE:
    """cluster_robust_se のテスト"""

    def test_basic_functionality(self, sample_regression_data):
        """基本的な機能のテスト"""
        y, X, clusters = sample_regression_data

        result = cluster_robust.cluster_robust_se(y, X, clusters)

        assert len(result['coefficients']) == X.shape[1] + 1  # 切片を含む
        assert result['n_clusters'] == 10
        assert result['n_observations'] == 100
        assert result['df'] == 9
        assert 0.0 <= result['icc'] <= 1.0

    def test_matches_statsmodels(self, sample_regression_data):
        """statsmodels のクラスター共分散（CR1）と一致"""
        y, X, clusters = sample_regression_data

        result = cluster_robust.cluster_robust_se(y, X, clusters)
        expected = sm.OLS(y, sm.add_constant(X)).fit(cov_type='cluster', cov_kwds={'groups': clusters})

        np.testing.assert_allclose(result['coefficients'], expected.params)
        np.testing.assert_allclose(result['se_cluster'], expected.bse, rtol=1e-6)

    def test_correlated_clusters_inflate_se(self):
        """クラスター内で処置と誤差が相関すると SE が大きくなる"""
        rng = np.random.default_rng(0)
        clusters = np.repeat(np.arange(20), 25)
        treatment = rng.binomial(1, 0.5, 20)[clusters]
        y = 1.0 * treatment + rng.normal(0, 2, 20)[clusters] + rng.normal(0, 1, len(clusters))

        result = cluster_robust.cluster_robust_se(y, treatment, clusters)

        assert result['design_effect'][1] > 1.5
        assert result['icc'] > 0.3

    def test_ci_contains_coefficients(self, sample_regression_data):
        """信頼区間は推定値を含む"""
        y, X, clusters = sample_regression_data

        result = cluster_robust.cluster_robust_se(y, X, clusters)

        assert np.all(result['ci_lower'] < result['coefficients'])
        assert np.all(result['coefficients'] < result['ci_upper'])

    def test_length_mismatch(self, sample_regression_data):
        """長さが異なるとエラー"""
        y, X, clusters = sample_regression_data

        with pytest.raises(InvalidInputError, match="Array length mismatch"):
            cluster_robust.cluster_robust_se(y[:-1], X, clusters)

    def test_single_cluster(self, sample_regression_data):
        """クラスターが1つだけならエラー"""
        y, X, _ = sample_regression_data

        with pytest.raises(InvalidInputError, match="clusters"):
            cluster_robust.cluster_robust_se(y, X, np.zeros(len(y)))


class TestCalculateICC:
    """calculate_icc のテスト"""

    def test_no_clustering(self):
        """クラスター差がなければ ICC は0付近"""
        rng = np.random.default_rng(0)
        y = rng.normal(0, 1, 1000)
        clusters = np.repeat(np.arange(50), 20)

        assert cluster_robust.calculate_icc(y, clusters) < 0.05

    def test_pure_cluster_effect(self):
        """クラスター内で値が同じなら ICC は1"""
        clusters = np.repeat(np.arange(5), 4)
        y = clusters.astype(float) * 2.0

        assert cluster_robust.calculate_icc(y, clusters) == pytest.approx(1.0)


class TestClusterRobustInference:
    """cluster_robust_inference のテスト"""

    def test_table_layout(self, experiment_data):
        """処置と共変量の行を持つ表"""
        table = cluster_robust.cluster_robust_inference(
            experiment_data['y'].values,
            experiment_data['treatment'].values,
            experiment_data[['age']].values,
            experiment_data['cluster'].values,
            covariate_names=['age'],
        )

        assert table['Variable'].tolist() == ['Intercept', 'Treatment', 'age']
        assert {'SE_Regular', 'SE_Cluster', 'Design_Effect', 'Significance'} <= set(table.columns)

    def test_without_covariates(self, sample_regression_data):
        """共変量なしでも推定できる"""
        y, X, clusters = sample_regression_data

        table = cluster_robust.cluster_robust_inference(y, X[:, 0], None, clusters, treatment_name="x1")

        assert table['Variable'].tolist() == ['Intercept', 'x1']


class TestHelpers:
    """補助関数のテスト"""

    def test_cluster_summary_statistics(self):
        """サイズの大きい順に並ぶ"""
        summary = cluster_robust.cluster_summary_statistics(np.array([0, 1, 1, 2, 2, 2]))

        assert summary['Size'].tolist() == [3, 2, 1]
        assert summary['Percentage'].sum() == pytest.approx(100.0)

    def test_recommendation_levels(self):
        """ICC とクラスター数に応じた推奨"""
        few = cluster_robust.recommend_clustering_approach(10, 500, 0.2)
        assert "⚠️ クラスター数が少ない" in few
        assert "❌" in few

        many = cluster_robust.recommend_clustering_approach(100, 5000, 0.01)
        assert "✅" in many
        assert "クラスター数が少ない" not in many
