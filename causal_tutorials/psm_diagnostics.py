"""
マッチング診断モジュール

マッチングや重み付けの品質を評価するための診断指標を提供します。

主な機能：
1. 標準化平均差（SMD、重み付き対応）の計算
2. マッチング前後の共変量バランステーブル
3. 傾向スコアの重なり（共通サポート）の評価
4. マッチング品質の総合レポート
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional
import logging

from .constants import MatchingConfig
from .validators import validate_columns, validate_binary_array
from .types import OverlapMethod, OverlapResult, PSMQualityReport

logger = logging.getLogger(__name__)


def _weighted_mean_var(values: np.ndarray, weights: Optional[np.ndarray]) -> tuple:
    values = np.asarray(values, dtype=float)
    if weights is None:
        return np.mean(values), np.var(values, ddof=1) if len(values) > 1 else 0.0
    weights = np.asarray(weights, dtype=float)
    mean = np.average(values, weights=weights)
    var = np.average((values - mean) ** 2, weights=weights)
    return mean, var


def calculate_smd(
    treated: np.ndarray,
    control: np.ndarray,
    continuous: bool = True,
    weights_treated: Optional[np.ndarray] = None,
    weights_control: Optional[np.ndarray] = None
) -> float:
    """
    標準化平均差（Standardized Mean Difference, SMD）を計算

    Parameters
    ----------
    treated : np.ndarray
        処置群の共変量
    control : np.ndarray
        対照群の共変量
    continuous : bool
        連続変数かどうか（Falseの場合は二値変数）
    weights_treated, weights_control : np.ndarray, optional
        マッチング・重み付け後の観測ウェイト

    Returns
    -------
    float
        SMD値（どちらかの群が空なら NaN）

    Notes
    -----
    連続変数:
    SMD = (mean_treated - mean_control) / sqrt((var_treated + var_control) / 2)

    二値変数:
    SMD = (p_treated - p_control) / sqrt((p_t(1-p_t) + p_c(1-p_c)) / 2)

    |SMD| < 0.1 であれば良好なバランスとされます。

    References
    ----------
    Austin, P. C. (2011). "An introduction to propensity score methods for reducing the effects
    of confounding in observational studies." Multivariate Behavioral Research, 46(3), 399-424.
    """
    if len(treated) == 0 or len(control) == 0:
        logger.warning("Empty array provided to calculate_smd")
        return np.nan

    mean_t, var_t = _weighted_mean_var(treated, weights_treated)
    mean_c, var_c = _weighted_mean_var(control, weights_control)

    if not continuous:
        var_t = mean_t * (1 - mean_t)
        var_c = mean_c * (1 - mean_c)

    pooled_std = np.sqrt((var_t + var_c) / 2)
    if pooled_std == 0:
        return 0.0

    return float((mean_t - mean_c) / pooled_std)


def evaluate_balance(smd: float) -> str:
    """SMD値からバランスを評価"""
    if np.isnan(smd):
        return "Undefined"
    abs_smd = abs(smd)
    if abs_smd < 0.1:
        return "Excellent"
    elif abs_smd < 0.2:
        return "Good"
    elif abs_smd < 0.3:
        return "Acceptable"
    else:
        return "Poor"


def _is_binary(series: pd.Series) -> bool:
    return set(pd.unique(series.dropna())) <= {0, 1}


def covariate_balance_table(
    before: pd.DataFrame,
    after: pd.DataFrame,
    treatment_col: str,
    covariates: List[str],
    weight_col: Optional[str] = None
) -> pd.DataFrame:
    """
    マッチング前後の共変量バランステーブルを生成

    Parameters
    ----------
    before : pd.DataFrame
        マッチング前のデータ
    after : pd.DataFrame
        マッチング後のデータ（重複行を含みうる）
    treatment_col : str
        処置変数の列名（0/1）
    covariates : List[str]
        共変量の列名
    weight_col : str, optional
        マッチング後データのウェイト列（CEM や IPW の重み）

    Returns
    -------
    pd.DataFrame
        'Covariate', 'Mean_Treated_Before', 'Mean_Control_Before', 'SMD_Before',
        'Balance_Before', 'Mean_Treated_After', 'Mean_Control_After', 'SMD_After',
        'Balance_After', 'SMD_Improvement_%'
    """
    validate_columns(before, [treatment_col] + covariates, "balance table (before)")
    required_after = [treatment_col] + covariates + ([weight_col] if weight_col else [])
    validate_columns(after, required_after, "balance table (after)")
    validate_binary_array(before[treatment_col].values, treatment_col)

    t_before = before[before[treatment_col] == 1]
    c_before = before[before[treatment_col] == 0]
    t_after = after[after[treatment_col] == 1]
    c_after = after[after[treatment_col] == 0]
    w_t = t_after[weight_col].values if weight_col else None
    w_c = c_after[weight_col].values if weight_col else None

    rows = []
    for name in covariates:
        continuous = not _is_binary(before[name])

        smd_before = calculate_smd(t_before[name].values, c_before[name].values, continuous)
        smd_after = calculate_smd(t_after[name].values, c_after[name].values, continuous, w_t, w_c)

        mean_t_after = np.average(t_after[name], weights=w_t) if len(t_after) else np.nan
        mean_c_after = np.average(c_after[name], weights=w_c) if len(c_after) else np.nan

        if abs(smd_before) > 0 and not np.isnan(smd_after):
            improvement = (abs(smd_before) - abs(smd_after)) / abs(smd_before) * 100
        else:
            improvement = 0.0

        rows.append({
            'Covariate': name,
            'Mean_Treated_Before': t_before[name].mean(),
            'Mean_Control_Before': c_before[name].mean(),
            'SMD_Before': smd_before,
            'Balance_Before': evaluate_balance(smd_before),
            'Mean_Treated_After': mean_t_after,
            'Mean_Control_After': mean_c_after,
            'SMD_After': smd_after,
            'Balance_After': evaluate_balance(smd_after),
            'SMD_Improvement_%': improvement,
        })

    balance_df = pd.DataFrame(rows)

    logger.info(f"Balance table generated for {len(covariates)} covariates")
    logger.info(f"Mean |SMD| before: {balance_df['SMD_Before'].abs().mean():.3f}, "
                f"after: {balance_df['SMD_After'].abs().mean():.3f}")

    return balance_df


def check_overlap(
    ps_treated: np.ndarray,
    ps_control: np.ndarray,
    method: OverlapMethod = "minmax"
) -> OverlapResult:
    """
    傾向スコアの重なり度合いを評価

    Parameters
    ----------
    ps_treated : np.ndarray
        処置群の傾向スコア
    ps_control : np.ndarray
        対照群の傾向スコア
    method : str
        "minmax"（両群の最小・最大の重なり）または "percentile"（5-95パーセンタイル）

    Returns
    -------
    Dict
        'overlap_range', 'n_treated_in_range', 'n_control_in_range',
        'percentage_treated', 'percentage_control', 'recommendation', 'range_width'
    """
    ps_treated = np.asarray(ps_treated, dtype=float)
    ps_control = np.asarray(ps_control, dtype=float)

    if method == "minmax":
        overlap_min = max(ps_treated.min(), ps_control.min())
        overlap_max = min(ps_treated.max(), ps_control.max())
    elif method == "percentile":
        overlap_min = max(np.percentile(ps_treated, 5), np.percentile(ps_control, 5))
        overlap_max = min(np.percentile(ps_treated, 95), np.percentile(ps_control, 95))
    else:
        raise ValueError(f"Unknown method: {method}")

    n_treated_in_range = int(np.sum((ps_treated >= overlap_min) & (ps_treated <= overlap_max)))
    n_control_in_range = int(np.sum((ps_control >= overlap_min) & (ps_control <= overlap_max)))

    percentage_treated = n_treated_in_range / len(ps_treated) * 100
    percentage_control = n_control_in_range / len(ps_control) * 100

    recommendation = _generate_overlap_recommendation(
        percentage_treated, percentage_control, overlap_min, overlap_max
    )

    logger.info(f"Overlap check - Range: [{overlap_min:.3f}, {overlap_max:.3f}], "
                f"Treated: {percentage_treated:.1f}%, Control: {percentage_control:.1f}%")
    if min(percentage_treated, percentage_control) < 75:
        logger.warning("Limited common support between treated and control propensity scores")

    return {
        'overlap_range': (float(overlap_min), float(overlap_max)),
        'n_treated_in_range': n_treated_in_range,
        'n_control_in_range': n_control_in_range,
        'percentage_treated': percentage_treated,
        'percentage_control': percentage_control,
        'recommendation': recommendation,
        'range_width': float(max(overlap_max - overlap_min, 0.0)),
    }


def _generate_overlap_recommendation(
    pct_treated: float,
    pct_control: float,
    overlap_min: float,
    overlap_max: float
) -> str:
    """重なり度合いに基づく推奨事項"""
    min_percentage = min(pct_treated, pct_control)

    if min_percentage >= 90:
        rec = f"""
✅ 優れた重なり: 両群の{min_percentage:.1f}%以上が共通サポート範囲内です。
  - 外挿に頼らずに比較できます
"""
    elif min_percentage >= 75:
        rec = f"""
⚠️ 良好な重なり: 両群の{min_percentage:.1f}%が共通サポート範囲内です。
  - 一部のサンプルでは外挿に依存します
"""
    elif min_percentage >= 50:
        rec = f"""
⚠️ 中程度の重なり: 両群の{min_percentage:.1f}%のみが共通サポート範囲内です。
  - トリミング（極端なスコアの除外）を検討してください
  - カリパーを狭めることを推奨します
"""
    else:
        rec = f"""
❌ 不十分な重なり: 両群の{min_percentage:.1f}%しか共通サポート範囲内にありません。
  - 処置群と対照群は比較可能ではありません
  - 共変量の選択を見直すか、別の識別戦略（IV、DiD、RDD）を検討してください
"""

    if overlap_max - overlap_min < 0.3:
        rec += f"""
⚠️ 重なり範囲が狭い（幅={overlap_max - overlap_min:.3f}）:
  - 推定される効果は限定的な集団にのみ当てはまります
"""

    return rec.strip()


def psm_quality_report(
    balance_table: pd.DataFrame,
    overlap_results: Dict,
    n_matched_treated: int,
    n_treated_total: int
) -> PSMQualityReport:
    """
    マッチングの総合的な品質レポートを生成

    Parameters
    ----------
    balance_table : pd.DataFrame
        covariate_balance_table() の結果
    overlap_results : Dict
        check_overlap() の結果
    n_matched_treated : int
        マッチングされた処置群の数
    n_treated_total : int
        処置群の総数

    Returns
    -------
    Dict
        'overall_quality', 'overall_score', 'balance_score', 'overlap_score',
        'matching_rate_treated', 'summary', 'recommendations'
    """
    threshold = MatchingConfig.get_smd_threshold()

    abs_smd_after = balance_table['SMD_After'].abs()
    mean_smd_after = abs_smd_after.mean()
    max_smd_after = abs_smd_after.max()
    n_poor_balance = int((abs_smd_after >= 2 * threshold).sum())

    balance_score = max(0.0, 100 - mean_smd_after * 500)
    overlap_score = min(overlap_results['percentage_treated'], overlap_results['percentage_control'])
    matching_rate_treated = n_matched_treated / n_treated_total * 100 if n_treated_total else 0.0

    overall_score = balance_score * 0.5 + overlap_score * 0.3 + matching_rate_treated * 0.2

    if overall_score >= 80:
        overall_quality = "Excellent"
    elif overall_score >= 60:
        overall_quality = "Good"
    elif overall_score >= 40:
        overall_quality = "Acceptable"
    else:
        overall_quality = "Poor"

    summary = f"""
【マッチング品質レポート】

総合評価: {overall_quality} (スコア: {overall_score:.1f}/100)

■ バランス評価
- 平均|SMD|（マッチング後）: {mean_smd_after:.3f}
- 最大|SMD|（マッチング後）: {max_smd_after:.3f}
- 不十分なバランスの変数数: {n_poor_balance}/{len(balance_table)}

■ 重なり評価
- 処置群の範囲内割合: {overlap_results['percentage_treated']:.1f}%
- 対照群の範囲内割合: {overlap_results['percentage_control']:.1f}%

■ マッチング統計
- マッチングされた処置群: {n_matched_treated}/{n_treated_total} ({matching_rate_treated:.1f}%)
"""

    recommendations = []
    if mean_smd_after > threshold:
        recommendations.append(f"⚠️ 平均SMDが{threshold}を超えています。カリパーを狭めるか、共変量を追加してください。")
    if n_poor_balance > 0:
        poor_vars = balance_table.loc[abs_smd_after >= 2 * threshold, 'Covariate'].tolist()
        recommendations.append(f"⚠️ バランスが不十分な変数: {', '.join(poor_vars)}")
    if overlap_score < 75:
        recommendations.append("⚠️ 重なりが不十分です。トリミングを検討してください。")
    if matching_rate_treated < 70:
        recommendations.append("⚠️ マッチング率が低いです。推定対象が処置群の一部に限られます。")
    if not recommendations:
        recommendations.append("✅ マッチングの品質は良好です。")

    logger.info(f"Matching quality report - {overall_quality} ({overall_score:.1f}/100)")

    return {
        'overall_quality': overall_quality,
        'overall_score': overall_score,
        'balance_score': balance_score,
        'overlap_score': overlap_score,
        'matching_rate_treated': matching_rate_treated,
        'summary': summary.strip(),
        'recommendations': recommendations,
    }
