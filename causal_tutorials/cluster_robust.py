"""
クラスター頑健標準誤差モジュール

学校・地域・企業などのクラスター内相関を考慮した統計的推論を提供します。

主な機能：
1. クラスター頑健標準誤差（CR1 サンドイッチ推定量）
2. クラスター調整されたp値と信頼区間
3. クラスター内相関係数（ICC）と設計効果
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional
import logging
from statsmodels.regression.linear_model import OLS
from statsmodels.tools.tools import add_constant

from .utils import get_significance_stars, resolve_alpha
from .validators import validate_array_lengths, validate_clusters, validate_2d_array
from .types import ClusterRobustResult

logger = logging.getLogger(__name__)


def cluster_robust_se(
    y: np.ndarray,
    X: np.ndarray,
    clusters: np.ndarray,
    add_intercept: bool = True,
    alpha: Optional[float] = None
) -> ClusterRobustResult:
    """
    クラスター頑健標準誤差を計算

    同じクラスター内の観測値は相関している可能性があるため、
    通常の標準誤差は過小評価されます。

    Parameters
    ----------
    y : np.ndarray
        アウトカム変数
    X : np.ndarray
        説明変数 Shape: (n_samples, n_features)
    clusters : np.ndarray
        クラスターID Shape: (n_samples,)
    add_intercept : bool
        切片を追加するか
    alpha : float, optional
        信頼区間の有意水準

    Returns
    -------
    Dict
        'coefficients', 'se_regular', 'se_cluster', 't_statistics', 'p_values',
        'ci_lower', 'ci_upper', 'n_clusters', 'n_observations', 'df', 'icc',
        'design_effect', 'vcov_cluster'

    Notes
    -----
    V_CR1 = c × (X'X)^{-1} (Σ_g X_g' e_g e_g' X_g) (X'X)^{-1}
    c = G/(G-1) × (N-1)/(N-K)

    推論には自由度 G-1 の t 分布を用います。

    References
    ----------
    Cameron, A. C., & Miller, D. L. (2015). "A practitioner's guide to cluster-robust inference."
    Journal of Human Resources, 50(2), 317-372.
    """
    alpha = resolve_alpha(alpha)
    y = np.asarray(y, dtype=float)
    X = np.asarray(X, dtype=float)
    clusters = np.asarray(clusters)

    if X.ndim == 1:
        X = X.reshape(-1, 1)
    validate_2d_array(X, "X")
    validate_array_lengths(y, X, clusters, names=["y", "X", "clusters"])
    validate_clusters(clusters, min_clusters=2)

    if add_intercept:
        X = add_constant(X, has_constant='add')

    n_samples, n_features = X.shape
    unique_clusters = np.unique(clusters)
    n_clusters = len(unique_clusters)

    logger.info(f"Calculating cluster-robust SE with {n_clusters} clusters, {n_samples} observations")

    results = OLS(y, X).fit()
    coefficients = np.asarray(results.params)
    se_regular = np.asarray(results.bse)
    residuals = np.asarray(results.resid)

    # クラスターごとのスコア X_g' e_g
    cluster_scores = np.zeros((n_clusters, n_features))
    for i, cluster_id in enumerate(unique_clusters):
        mask = clusters == cluster_id
        cluster_scores[i] = X[mask].T @ residuals[mask]

    meat = cluster_scores.T @ cluster_scores
    bread = np.linalg.inv(X.T @ X)
    small_sample_adj = n_clusters / (n_clusters - 1) * (n_samples - 1) / (n_samples - n_features)
    vcov_cluster = small_sample_adj * bread @ meat @ bread

    se_cluster = np.sqrt(np.diag(vcov_cluster))
    t_stats = coefficients / se_cluster
    df = n_clusters - 1
    p_values = 2 * (1 - stats.t.cdf(np.abs(t_stats), df))

    t_critical = stats.t.ppf(1 - alpha / 2, df)
    ci_lower = coefficients - t_critical * se_cluster
    ci_upper = coefficients + t_critical * se_cluster

    icc = calculate_icc(y, clusters)
    design_effect = se_cluster / se_regular

    logger.info(f"Cluster-robust SE calculated - ICC: {icc:.4f}, Mean design effect: {design_effect.mean():.3f}")

    return {
        'coefficients': coefficients,
        'se_regular': se_regular,
        'se_cluster': se_cluster,
        't_statistics': t_stats,
        'p_values': p_values,
        'ci_lower': ci_lower,
        'ci_upper': ci_upper,
        'n_clusters': n_clusters,
        'n_observations': n_samples,
        'df': df,
        'icc': icc,
        'design_effect': design_effect,
        'vcov_cluster': vcov_cluster,
    }


def calculate_icc(y: np.ndarray, clusters: np.ndarray) -> float:
    """
    クラスター内相関係数（ICC）を一元配置分散分析から計算

    Notes
    -----
    ICC = (MS_between - MS_within) / (MS_between + (n̄ - 1) MS_within)
    結果は [0, 1] に丸めます。
    """
    y = np.asarray(y, dtype=float)
    clusters = np.asarray(clusters)
    frame = pd.DataFrame({'y': y, 'g': clusters})

    grouped = frame.groupby('g')['y']
    sizes = grouped.size().values
    means = grouped.mean().values
    n_clusters = len(sizes)

    if n_clusters < 2:
        return 0.0

    grand_mean = y.mean()
    ms_between = np.sum(sizes * (means - grand_mean) ** 2) / (n_clusters - 1)

    ss_within = float(((frame['y'] - grouped.transform('mean')) ** 2).sum())
    df_within = len(y) - n_clusters
    ms_within = ss_within / df_within if df_within > 0 else 0.0

    n_bar = len(y) / n_clusters

    if ms_within <= 0:
        return 1.0 if ms_between > 0 else 0.0

    icc = (ms_between - ms_within) / (ms_between + (n_bar - 1) * ms_within)
    return float(max(0.0, min(1.0, icc)))


def cluster_robust_inference(
    y: np.ndarray,
    treatment: np.ndarray,
    covariates: Optional[np.ndarray],
    clusters: np.ndarray,
    treatment_name: str = "Treatment",
    covariate_names: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    クラスター頑健な処置効果の推定表

    Parameters
    ----------
    y : np.ndarray
        アウトカム変数
    treatment : np.ndarray
        処置変数
    covariates : np.ndarray, optional
        共変量
    clusters : np.ndarray
        クラスターID
    treatment_name : str
        処置変数の名前
    covariate_names : List[str], optional
        共変量の名前

    Returns
    -------
    pd.DataFrame
        係数、通常SE、クラスターSE、設計効果、p値、信頼区間の表
    """
    treatment = np.asarray(treatment, dtype=float).reshape(-1, 1)
    if covariates is not None:
        covariates = np.asarray(covariates, dtype=float)
        if covariates.ndim == 1:
            covariates = covariates.reshape(-1, 1)
        X = np.column_stack([treatment, covariates])
        if covariate_names is None:
            covariate_names = [f"Covariate_{i + 1}" for i in range(covariates.shape[1])]
        var_names = [treatment_name] + list(covariate_names)
    else:
        X = treatment
        var_names = [treatment_name]

    results = cluster_robust_se(y, X, clusters, add_intercept=True)

    results_df = pd.DataFrame({
        'Variable': ['Intercept'] + var_names,
        'Coefficient': results['coefficients'],
        'SE_Regular': results['se_regular'],
        'SE_Cluster': results['se_cluster'],
        'Design_Effect': results['design_effect'],
        'T_Statistic': results['t_statistics'],
        'P_Value': results['p_values'],
        'CI_Lower': results['ci_lower'],
        'CI_Upper': results['ci_upper'],
    })
    results_df['Significance'] = results_df['P_Value'].apply(get_significance_stars)

    logger.info(
        f"Treatment effect: {results['coefficients'][1]:.4f} "
        f"(cluster SE: {results['se_cluster'][1]:.4f}, p={results['p_values'][1]:.4f})"
    )

    return results_df


def cluster_summary_statistics(clusters: np.ndarray) -> pd.DataFrame:
    """クラスターごとのサイズと割合"""
    unique_clusters, cluster_counts = np.unique(clusters, return_counts=True)

    summary = pd.DataFrame({
        'Cluster_ID': unique_clusters,
        'Size': cluster_counts,
        'Percentage': 100 * cluster_counts / len(clusters),
    })

    return summary.sort_values('Size', ascending=False).reset_index(drop=True)


def recommend_clustering_approach(n_clusters: int, n_observations: int, icc: float) -> str:
    """
    クラスタリングアプローチの推奨事項を提供

    Parameters
    ----------
    n_clusters : int
        クラスター数
    n_observations : int
        観測数
    icc : float
        クラスター内相関係数

    Returns
    -------
    str
        推奨事項のテキスト
    """
    avg_cluster_size = n_observations / n_clusters

    recommendation = f"""
【クラスター構造の診断】

クラスター数: {n_clusters}
平均クラスターサイズ: {avg_cluster_size:.1f}
ICC: {icc:.4f}
"""

    if n_clusters < 30:
        recommendation += """
⚠️ クラスター数が少ない（<30）ため、以下に注意してください：
  - クラスター頑健標準誤差は過小評価される可能性があります
  - Wild cluster bootstrap の利用を検討してください
"""

    if icc < 0.05:
        recommendation += """
✅ ICC が低い（<0.05）ため、クラスタリングの影響は小さいです。
  - 通常の標準誤差との差は小さくなります
"""
    elif icc < 0.15:
        recommendation += """
⚠️ ICC が中程度（0.05-0.15）のため、クラスタリングを考慮すべきです。
  - 通常のSEを使うと過度に楽観的な結果になります
"""
    else:
        recommendation += """
❌ ICC が高い（>=0.15）ため、クラスタリングの影響が大きいです。
  - クラスター頑健標準誤差の使用が必須です
  - 固定効果モデルや階層モデルも検討してください
"""

    return recommendation.strip()
