"""
感度分析モジュール

隠れた交絡因子（観測されていない変数）の影響を評価する手法を提供します。

主な機能：
1. Rosenbaum Bounds: マッチドペアの符号順位検定に対する隠れた交絡の影響範囲
2. E-value: 結果を無効にするために必要な最小の交絡の強さ
3. 感度分析レポート生成
"""

import numpy as np
import pandas as pd
from scipy.stats import norm
from typing import Dict, Optional, List
import logging

from .exceptions import InsufficientDataError, InvalidInputError
from .utils import resolve_alpha, normal_critical_value
from .validators import validate_array_lengths, validate_gamma_values, validate_array_no_nan
from .types import EValueResult, EffectType, SensitivityAnalysisReport

logger = logging.getLogger(__name__)

DEFAULT_GAMMA_VALUES = [1.0, 1.5, 2.0, 2.5, 3.0]


def rosenbaum_bounds(
    treated_outcomes: np.ndarray,
    control_outcomes: np.ndarray,
    gamma_values: Optional[List[float]] = None,
    alpha: Optional[float] = None
) -> pd.DataFrame:
    """
    マッチドペアに対する Rosenbaum bounds を計算

    Rosenbaumの感度分析は、マッチング後に隠れた交絡因子が
    どの程度存在しても結果が頑健かを評価します。

    Parameters
    ----------
    treated_outcomes : np.ndarray
        処置群のアウトカム（ペアの順序で並べる）
    control_outcomes : np.ndarray
        マッチした対照群のアウトカム
    gamma_values : List[float], optional
        評価するGamma値のリスト。None の場合は [1.0, 1.5, 2.0, 2.5, 3.0]
    alpha : float, optional
        有意判定に使う有意水準

    Returns
    -------
    pd.DataFrame
        'Gamma', 'P_value_upper', 'P_value_lower',
        'Significant_upper', 'Significant_lower'

    Notes
    -----
    ペア差 d_i = Y_t,i - Y_c,i のうち0でないものの |d_i| に順位を付け、
    正の差の順位和 T+ を検定統計量とします。

    Gamma の下で各ペアの差が正である確率は 1/(1+Γ) から Γ/(1+Γ) の範囲にあり、
    p+ = Γ/(1+Γ) のとき
    E[T+] = p+ S(S+1)/2,  Var[T+] = p+(1-p+) S(S+1)(2S+1)/6
    （S は0でないペア数）。

    Gamma値の解釈:
    - Gamma=1: 隠れた交絡なし（通常の符号順位検定と一致）
    - Gamma=2: 隠れた交絡により処置のオッズが2倍異なる可能性

    References
    ----------
    Rosenbaum, P. R. (2002). "Observational Studies" (2nd ed.). Springer.
    """
    if gamma_values is None:
        gamma_values = DEFAULT_GAMMA_VALUES
    validate_gamma_values(gamma_values)
    alpha = resolve_alpha(alpha)

    treated_outcomes = np.asarray(treated_outcomes, dtype=float)
    control_outcomes = np.asarray(control_outcomes, dtype=float)
    validate_array_lengths(treated_outcomes, control_outcomes,
                           names=["treated_outcomes", "control_outcomes"])
    validate_array_no_nan(treated_outcomes, "treated_outcomes")
    validate_array_no_nan(control_outcomes, "control_outcomes")

    diffs = treated_outcomes - control_outcomes
    diffs = diffs[diffs != 0]
    n_pairs = len(diffs)
    if n_pairs == 0:
        raise InsufficientDataError("All matched-pair differences are zero")

    # 同順位は平均順位
    ranks = pd.Series(np.abs(diffs)).rank(method='average').values
    t_plus = float(np.sum(ranks[diffs > 0]))
    sum_ranks = n_pairs * (n_pairs + 1) / 2
    sum_sq_ranks = n_pairs * (n_pairs + 1) * (2 * n_pairs + 1) / 6

    results = []
    for gamma in gamma_values:
        p_upper = gamma / (1 + gamma)
        p_lower = 1 / (1 + gamma)

        # 上限（最も不利なシナリオ）
        e_upper = p_upper * sum_ranks
        var_upper = p_upper * (1 - p_upper) * sum_sq_ranks
        p_val_upper = 1 - norm.cdf((t_plus - e_upper) / np.sqrt(var_upper))

        # 下限（最も有利なシナリオ）
        e_lower = p_lower * sum_ranks
        var_lower = p_lower * (1 - p_lower) * sum_sq_ranks
        p_val_lower = 1 - norm.cdf((t_plus - e_lower) / np.sqrt(var_lower))

        results.append({
            'Gamma': gamma,
            'P_value_upper': float(p_val_upper),
            'P_value_lower': float(p_val_lower),
            'Significant_upper': bool(p_val_upper < alpha),
            'Significant_lower': bool(p_val_lower < alpha),
        })

        logger.info(f"Rosenbaum bounds - Gamma={gamma}: p_upper={p_val_upper:.4f}, p_lower={p_val_lower:.4f}")

    return pd.DataFrame(results)


def _e_value_from_rr(rr: float) -> float:
    if rr < 1:
        rr = 1 / rr
    return float(rr + np.sqrt(rr * (rr - 1)))


def calculate_e_value(
    effect_estimate: float,
    effect_se: Optional[float] = None,
    effect_type: EffectType = "risk_ratio",
    common_outcome: bool = False,
    alpha: Optional[float] = None
) -> EValueResult:
    """
    E-value を計算

    E-valueは、観測された因果効果を無効にするために必要な
    最小の交絡因子の強さ（リスク比スケール）を示します。

    Parameters
    ----------
    effect_estimate : float
        観測された効果の推定値
    effect_se : float, optional
        標準誤差。比の場合は対数スケール、SMD の場合は d のスケール。
        Noneの場合は信頼限界のE-valueは計算されない
    effect_type : str
        "risk_ratio", "odds_ratio", "smd"（標準化平均差）
    common_outcome : bool
        odds_ratio でアウトカムが稀でない（>15%）場合は True。RR ≈ sqrt(OR) で変換します
    alpha : float, optional
        信頼区間の有意水準

    Returns
    -------
    Dict
        'risk_ratio': リスク比スケールに変換した推定値
        'point_estimate': 点推定値のE-value
        'ci_limit': 帰無値に近い側の信頼限界のE-value（effect_seが提供された場合）
        'interpretation': 解釈

    Notes
    -----
    E-value = RR + sqrt(RR × (RR - 1))（RR < 1 の場合は 1/RR を用いる）

    変換:
    - odds_ratio（稀なアウトカム）: RR ≈ OR
    - odds_ratio（一般的なアウトカム）: RR ≈ sqrt(OR)
    - smd: RR ≈ exp(0.91 × d)

    信頼区間が帰無値を含む場合、信頼限界のE-valueは1です。

    References
    ----------
    VanderWeele, T. J., & Ding, P. (2017). "Sensitivity Analysis in Observational Research:
    Introducing the E-Value." Annals of Internal Medicine, 167(4), 268-274.
    """
    alpha = resolve_alpha(alpha)
    z = normal_critical_value(alpha)

    if effect_type in ("risk_ratio", "odds_ratio"):
        if effect_estimate <= 0:
            raise InvalidInputError(f"Ratio estimates must be positive, got {effect_estimate}")
        if effect_type == "odds_ratio" and common_outcome:
            to_rr = lambda value: np.sqrt(value)
        else:
            to_rr = lambda value: value
        rr = to_rr(effect_estimate)

        ci_rr = None
        if effect_se is not None:
            log_est = np.log(effect_estimate)
            limit = np.exp(log_est - z * effect_se) if effect_estimate >= 1 else np.exp(log_est + z * effect_se)
            crosses_null = (limit <= 1) if effect_estimate >= 1 else (limit >= 1)
            ci_rr = None if crosses_null else to_rr(limit)

    elif effect_type == "smd":
        rr = np.exp(0.91 * effect_estimate)
        ci_rr = None
        if effect_se is not None:
            limit = effect_estimate - z * effect_se if effect_estimate >= 0 else effect_estimate + z * effect_se
            crosses_null = (limit <= 0) if effect_estimate >= 0 else (limit >= 0)
            ci_rr = None if crosses_null else np.exp(0.91 * limit)

    else:
        raise ValueError(f"Unknown effect_type: {effect_type}")

    e_value_point = _e_value_from_rr(rr)
    result = {
        'risk_ratio': float(rr),
        'point_estimate': e_value_point,
        'interpretation': _interpret_e_value(e_value_point),
    }

    if effect_se is not None:
        result['ci_limit'] = _e_value_from_rr(ci_rr) if ci_rr is not None else 1.0

    logger.info(f"E-value calculated - Point: {e_value_point:.3f}, Interpretation: {result['interpretation']}")

    return result


def _interpret_e_value(e_value: float) -> str:
    """E-valueの解釈を提供"""
    if e_value < 1.5:
        return "非常に脆弱（弱い交絡で無効化される）"
    elif e_value < 2.0:
        return "やや脆弱（中程度の交絡で無効化される）"
    elif e_value < 3.0:
        return "中程度の頑健性（強い交絡が必要）"
    elif e_value < 4.0:
        return "頑健（非常に強い交絡が必要）"
    else:
        return "非常に頑健（極めて強い交絡が必要）"


def sensitivity_analysis_report(
    treated_outcomes: np.ndarray,
    control_outcomes: np.ndarray,
    effect_estimate: float,
    effect_se: Optional[float] = None,
    effect_type: EffectType = "smd",
    gamma_values: Optional[List[float]] = None,
    common_outcome: bool = False
) -> SensitivityAnalysisReport:
    """
    包括的な感度分析レポートを生成

    Parameters
    ----------
    treated_outcomes : np.ndarray
        マッチした処置群のアウトカム
    control_outcomes : np.ndarray
        マッチした対照群のアウトカム
    effect_estimate : float
        観測された効果の推定値
    effect_se : float, optional
        効果推定値の標準誤差
    effect_type : str
        効果の種類（calculate_e_value を参照）
    gamma_values : List[float], optional
        Rosenbaum bounds で評価するGamma値
    common_outcome : bool
        odds_ratio の変換方法

    Returns
    -------
    Dict
        'rosenbaum_bounds', 'e_value', 'critical_gamma', 'summary', 'recommendation'
    """
    logger.info("Generating comprehensive sensitivity analysis report...")

    rosenbaum_results = rosenbaum_bounds(treated_outcomes, control_outcomes, gamma_values)
    e_value_results = calculate_e_value(effect_estimate, effect_se, effect_type, common_outcome)
    critical_gamma = _critical_gamma(rosenbaum_results)

    report = {
        'rosenbaum_bounds': rosenbaum_results,
        'e_value': e_value_results,
        'critical_gamma': critical_gamma,
        'summary': _generate_summary(critical_gamma, e_value_results),
        'recommendation': _generate_recommendation(e_value_results),
    }

    logger.info("Sensitivity analysis report generated successfully")

    return report


def _critical_gamma(rosenbaum_results: pd.DataFrame) -> float:
    """上限p値が有意なままである最大のGamma（1でも有意でなければ NaN）"""
    significant = rosenbaum_results.loc[rosenbaum_results['Significant_upper'], 'Gamma']
    return float(significant.max()) if len(significant) else np.nan


def _generate_summary(critical_gamma: float, e_value_results: Dict) -> str:
    """サマリーテキストを生成"""
    if np.isnan(critical_gamma):
        rosenbaum_summary = "Rosenbaum bounds分析: 隠れた交絡がなくても（Gamma=1）結果は有意ではありません。"
    else:
        rosenbaum_summary = (
            f"Rosenbaum bounds分析: Gamma={critical_gamma}までは結果が有意に保たれます。\n"
            f"隠れた交絡因子が処置のオッズを{critical_gamma}倍変化させる程度であれば、"
            f"結論は変わりません。"
        )

    e_val = e_value_results['point_estimate']
    e_summary = f"E-value: {e_val:.2f}（{e_value_results['interpretation']}）"
    if 'ci_limit' in e_value_results:
        e_summary += f"\n信頼限界のE-value: {e_value_results['ci_limit']:.2f}"

    full_summary = f"""
【感度分析サマリー】

{rosenbaum_summary}
{e_summary}

E-valueは、観測された効果を説明し尽くすには、処置とアウトカムの双方と
リスク比{e_val:.2f}以上で関連する隠れた交絡因子が必要であることを示しています。
"""

    return full_summary.strip()


def _generate_recommendation(e_value_results: Dict) -> str:
    """推奨事項を生成"""
    e_val = e_value_results['point_estimate']

    if e_val >= 3.0:
        rec = """
【推奨事項】
✅ 結果は隠れた交絡に対して頑健です。
✅ 因果的解釈に比較的高い信頼性があります。
"""
    elif e_val >= 2.0:
        rec = """
【推奨事項】
⚠️ 結果は中程度の頑健性を持ちます。
⚠️ 既知の交絡要因の強さと E-value を比較してください。
"""
    else:
        rec = """
【推奨事項】
❌ 結果は隠れた交絡に対して脆弱です。
❌ 因果的解釈には慎重さが必要です。
❌ 操作変数や自然実験など別の識別戦略の検討を推奨します。
"""

    return rec.strip()
