"""
型定義モジュール

分析関数が返す辞書の型と、文字列オプションの型を定義します。
"""

from typing import Dict, List, Literal, Optional, Tuple, TypedDict
import numpy as np
import pandas as pd


class TTestResult(TypedDict):
    """two_sample_ttest の結果型"""
    statistic: float
    p_value: float
    mean_treated: float
    mean_control: float
    mean_difference: float
    se: float
    ci_lower: float
    ci_upper: float
    df: float
    cohens_d: float
    significant: bool
    interpretation: str


class _EValueBase(TypedDict):
    risk_ratio: float
    point_estimate: float
    interpretation: str


class EValueResult(_EValueBase, total=False):
    """E-value の結果型（ci_limit は標準誤差を与えた場合のみ）"""
    ci_limit: float


class SensitivityAnalysisReport(TypedDict):
    """感度分析レポートの型"""
    rosenbaum_bounds: pd.DataFrame
    e_value: EValueResult
    critical_gamma: float
    summary: str
    recommendation: str


class ClusterRobustResult(TypedDict):
    """クラスター頑健標準誤差の結果型"""
    coefficients: np.ndarray
    se_regular: np.ndarray
    se_cluster: np.ndarray
    t_statistics: np.ndarray
    p_values: np.ndarray
    ci_lower: np.ndarray
    ci_upper: np.ndarray
    n_clusters: int
    n_observations: int
    df: int
    icc: float
    design_effect: np.ndarray
    vcov_cluster: np.ndarray


class OverlapResult(TypedDict):
    """傾向スコアの重なり評価結果型"""
    overlap_range: Tuple[float, float]
    n_treated_in_range: int
    n_control_in_range: int
    percentage_treated: float
    percentage_control: float
    recommendation: str
    range_width: float


class PSMQualityReport(TypedDict):
    """マッチング品質レポートの型"""
    overall_quality: Literal["Excellent", "Good", "Acceptable", "Poor"]
    overall_score: float
    balance_score: float
    overlap_score: float
    matching_rate_treated: float
    summary: str
    recommendations: List[str]


class ParallelTrendsTestResult(TypedDict):
    """平行トレンド検定の結果型"""
    test_statistic: float
    p_value: float
    result: Literal["Pass", "Fail", "Inconclusive"]
    interpretation: str


class DIDResult(TypedDict):
    """DID推定結果の型"""
    did_estimate: float
    did_coefficient: float
    se: float
    p_value: float
    ci_lower: float
    ci_upper: float
    n_treated: int
    n_control: int
    n_observations: int
    means: Dict[str, float]
    parallel_trends_test: ParallelTrendsTestResult
    interpretation: str
    model: object


class IVResult(TypedDict):
    """2SLS の結果型"""
    estimate: float
    se: float
    p_value: float
    ci_lower: float
    ci_upper: float
    nobs: int
    first_stage: Dict
    ols_estimate: float
    ols_se: float
    endogeneity_test: Dict[str, float]
    overidentification_test: Optional[Dict]
    interpretation: str
    model: object


class RDDResult(TypedDict):
    """Sharp RDD の結果型"""
    tau: float
    se: float
    p_value: float
    ci_lower: float
    ci_upper: float
    bandwidth: float
    kernel: str
    order: int
    n_below: int
    n_above: int
    interpretation: str
    model: object


class SyntheticControlResult(TypedDict):
    """合成コントロールの結果型"""
    weights: pd.Series
    actual: pd.Series
    synthetic: pd.Series
    gap: pd.Series
    pre_rmspe: float
    post_rmspe: float
    rmspe_ratio: float
    att: float
    pre_fit_quality: Literal["Good", "Fair", "Poor"]
    treated_unit: object
    treatment_time: object


EffectType = Literal["risk_ratio", "odds_ratio", "smd"]
OverlapMethod = Literal["minmax", "percentile"]
KernelName = Literal["triangular", "uniform", "epanechnikov"]
PanelModel = Literal["pooled", "fe", "twfe", "re", "fd"]
ControlGroup = Literal["never_treated", "not_yet_treated"]
Estimand = Literal["ate", "att"]
