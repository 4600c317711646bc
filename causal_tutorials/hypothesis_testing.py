"""
仮説検定モジュール

チュートリアル冒頭で扱う基本的な検定を提供します。

主な機能：
1. 2標本t検定（Welch / プール分散）と効果量
2. 2標本の比率のz検定
3. 独立性のカイ二乗検定
4. 並べ替え（permutation）検定
5. 多重検定補正
6. 検出力分析による必要サンプルサイズ
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional, Sequence
import logging
from statsmodels.stats.multitest import multipletests
from statsmodels.stats.power import TTestIndPower
from statsmodels.stats.proportion import proportions_ztest

from .constants import StatisticalConfig
from .exceptions import InsufficientDataError, InvalidInputError
from .utils import (
    resolve_alpha, make_rng, normal_critical_value, interpret_significance, format_ci
)
from .validators import (
    validate_array_no_nan, validate_columns, validate_probability, validate_positive_integer
)
from .types import TTestResult

logger = logging.getLogger(__name__)


def two_sample_ttest(
    treated: np.ndarray,
    control: np.ndarray,
    equal_var: bool = False,
    alpha: Optional[float] = None
) -> TTestResult:
    """
    2標本t検定

    Parameters
    ----------
    treated : np.ndarray
        処置群のアウトカム
    control : np.ndarray
        対照群のアウトカム
    equal_var : bool
        True ならプール分散t検定、False なら Welch のt検定
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'statistic', 'p_value', 'mean_treated', 'mean_control',
        'mean_difference', 'ci_lower', 'ci_upper', 'df', 'cohens_d',
        'significant', 'interpretation'

    Notes
    -----
    Welch の自由度:
    df = (s1²/n1 + s0²/n0)² / ((s1²/n1)²/(n1-1) + (s0²/n0)²/(n0-1))

    Cohen's d はプール標準偏差で標準化した平均差です。
    """
    alpha = resolve_alpha(alpha)
    treated = np.asarray(treated, dtype=float)
    control = np.asarray(control, dtype=float)

    if len(treated) < 2 or len(control) < 2:
        raise InsufficientDataError(
            f"t-test needs at least 2 observations per group, "
            f"got treated={len(treated)}, control={len(control)}"
        )
    validate_array_no_nan(treated, "treated")
    validate_array_no_nan(control, "control")

    n1, n0 = len(treated), len(control)
    v1, v0 = np.var(treated, ddof=1), np.var(control, ddof=1)
    diff = treated.mean() - control.mean()

    result = stats.ttest_ind(treated, control, equal_var=equal_var)

    if equal_var:
        dof = n1 + n0 - 2
        pooled = ((n1 - 1) * v1 + (n0 - 1) * v0) / dof
        se = np.sqrt(pooled * (1 / n1 + 1 / n0))
    else:
        se = np.sqrt(v1 / n1 + v0 / n0)
        dof = (v1 / n1 + v0 / n0) ** 2 / ((v1 / n1) ** 2 / (n1 - 1) + (v0 / n0) ** 2 / (n0 - 1))

    t_crit = stats.t.ppf(1 - alpha / 2, dof)
    pooled_sd = np.sqrt(((n1 - 1) * v1 + (n0 - 1) * v0) / (n1 + n0 - 2))
    cohens_d = diff / pooled_sd if pooled_sd > 0 else 0.0

    p_value = float(result.pvalue)
    logger.info(f"t-test - diff={diff:.4f}, t={result.statistic:.3f}, p={p_value:.4f}")

    return {
        'statistic': float(result.statistic),
        'p_value': p_value,
        'mean_treated': float(treated.mean()),
        'mean_control': float(control.mean()),
        'mean_difference': float(diff),
        'se': float(se),
        'ci_lower': float(diff - t_crit * se),
        'ci_upper': float(diff + t_crit * se),
        'df': float(dof),
        'cohens_d': float(cohens_d),
        'significant': p_value < alpha,
        'interpretation': interpret_significance(p_value, alpha, "平均差"),
    }


def proportion_ztest(
    successes: Sequence[int],
    nobs: Sequence[int],
    alpha: Optional[float] = None
) -> Dict:
    """
    2標本の比率の差のz検定

    Parameters
    ----------
    successes : Sequence[int]
        各群の成功数 [処置群, 対照群]
    nobs : Sequence[int]
        各群の観測数 [処置群, 対照群]
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'proportions', 'difference', 'statistic', 'p_value',
        'ci_lower', 'ci_upper', 'significant'
    """
    alpha = resolve_alpha(alpha)
    successes = np.asarray(successes, dtype=float)
    nobs = np.asarray(nobs, dtype=float)

    if successes.shape != (2,) or nobs.shape != (2,):
        raise InvalidInputError("successes and nobs must each contain exactly two groups")
    if np.any(nobs <= 0) or np.any(successes < 0) or np.any(successes > nobs):
        raise InvalidInputError(
            f"Invalid counts: successes={successes.tolist()}, nobs={nobs.tolist()}"
        )

    statistic, p_value = proportions_ztest(successes, nobs)
    props = successes / nobs
    diff = props[0] - props[1]
    se = np.sqrt(np.sum(props * (1 - props) / nobs))
    z = normal_critical_value(alpha)

    logger.info(f"Proportion z-test - p1={props[0]:.3f}, p0={props[1]:.3f}, p={p_value:.4f}")

    return {
        'proportions': props.tolist(),
        'difference': float(diff),
        'statistic': float(statistic),
        'p_value': float(p_value),
        'ci_lower': float(diff - z * se),
        'ci_upper': float(diff + z * se),
        'significant': bool(p_value < alpha),
    }


def chi_square_independence(df: pd.DataFrame, row_col: str, col_col: str) -> Dict:
    """
    分割表によるカイ二乗独立性検定

    Returns
    -------
    Dict
        'chi2', 'p_value', 'dof', 'observed', 'expected', 'cramers_v'
    """
    validate_columns(df, [row_col, col_col], "chi-square test")

    observed = pd.crosstab(df[row_col], df[col_col])
    if min(observed.shape) < 2:
        raise InsufficientDataError(
            f"Contingency table must be at least 2x2, got {observed.shape}"
        )

    chi2, p_value, dof, expected = stats.chi2_contingency(observed)
    n = observed.values.sum()
    cramers_v = np.sqrt(chi2 / (n * (min(observed.shape) - 1)))

    logger.info(f"Chi-square test - chi2={chi2:.3f}, dof={dof}, p={p_value:.4f}")

    return {
        'chi2': float(chi2),
        'p_value': float(p_value),
        'dof': int(dof),
        'observed': observed,
        'expected': pd.DataFrame(expected, index=observed.index, columns=observed.columns),
        'cramers_v': float(cramers_v),
    }


def permutation_test(
    treated: np.ndarray,
    control: np.ndarray,
    n_permutations: Optional[int] = None,
    statistic: str = "mean_difference",
    random_state: Optional[int] = None
) -> Dict:
    """
    並べ替え検定

    群ラベルをランダムに入れ替えて帰無分布を作り、観測統計量と比較します。

    Parameters
    ----------
    treated, control : np.ndarray
        各群のアウトカム
    n_permutations : int, optional
        並べ替え回数。None の場合は設定ファイルの値
    statistic : str
        "mean_difference" または "median_difference"
    random_state : int, optional
        乱数シード

    Returns
    -------
    Dict
        'observed', 'p_value', 'null_distribution', 'n_permutations'

    Notes
    -----
    p値 = (#{|T*| >= |T_obs|} + 1) / (B + 1)
    観測値自身を帰無分布に含めるため、p値がゼロになることはありません。
    """
    if statistic == "mean_difference":
        stat_fn = lambda a, b: np.mean(a) - np.mean(b)
    elif statistic == "median_difference":
        stat_fn = lambda a, b: np.median(a) - np.median(b)
    else:
        raise ValueError(f"Unknown statistic: {statistic}")

    if n_permutations is None:
        n_permutations = StatisticalConfig.get_n_permutations()
    validate_positive_integer(n_permutations, "n_permutations")

    treated = np.asarray(treated, dtype=float)
    control = np.asarray(control, dtype=float)
    if len(treated) == 0 or len(control) == 0:
        raise InsufficientDataError("Both groups need at least one observation")

    rng = make_rng(random_state)
    pooled = np.concatenate([treated, control])
    n1 = len(treated)

    observed = stat_fn(treated, control)
    null = np.empty(n_permutations)
    for i in range(n_permutations):
        perm = rng.permutation(pooled)
        null[i] = stat_fn(perm[:n1], perm[n1:])

    p_value = (np.sum(np.abs(null) >= abs(observed) - 1e-12) + 1) / (n_permutations + 1)

    logger.info(f"Permutation test - observed={observed:.4f}, p={p_value:.4f}, B={n_permutations}")

    return {
        'observed': float(observed),
        'p_value': float(p_value),
        'null_distribution': null,
        'n_permutations': n_permutations,
    }


def adjust_pvalues(
    p_values: Sequence[float],
    method: Optional[str] = None,
    alpha: Optional[float] = None,
    labels: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    多重検定補正

    Parameters
    ----------
    p_values : Sequence[float]
        補正前のp値
    method : str, optional
        statsmodels の multipletests の手法名（"bonferroni", "holm", "fdr_bh" など）
    alpha : float, optional
        有意水準
    labels : List[str], optional
        各検定のラベル

    Returns
    -------
    pd.DataFrame
        'Test', 'P_Value', 'P_Adjusted', 'Reject'
    """
    alpha = resolve_alpha(alpha)
    method = method or StatisticalConfig.get_correction_method()
    p_values = np.asarray(p_values, dtype=float)

    if p_values.size == 0:
        raise InsufficientDataError("p_values must not be empty")
    for p in p_values:
        validate_probability(float(p), "p_value")

    reject, p_adjusted, _, _ = multipletests(p_values, alpha=alpha, method=method)

    if labels is None:
        labels = [f"Test_{i + 1}" for i in range(len(p_values))]

    logger.info(f"Multiple testing correction ({method}) - {int(reject.sum())}/{len(p_values)} rejected")

    return pd.DataFrame({
        'Test': labels,
        'P_Value': p_values,
        'P_Adjusted': p_adjusted,
        'Reject': reject,
    })


def required_sample_size(
    effect_size: float,
    alpha: Optional[float] = None,
    power: float = 0.8,
    ratio: float = 1.0
) -> int:
    """
    2群比較に必要な1群あたりのサンプルサイズ

    Parameters
    ----------
    effect_size : float
        標準化効果量（Cohen's d）
    alpha : float, optional
        有意水準
    power : float
        検出力
    ratio : float
        対照群 / 処置群 のサイズ比

    Returns
    -------
    int
        処置群に必要なサンプルサイズ（切り上げ）
    """
    alpha = resolve_alpha(alpha)
    validate_probability(power, "power", allow_bounds=False)
    if effect_size == 0:
        raise InvalidInputError("effect_size must be non-zero")

    n = TTestIndPower().solve_power(
        effect_size=abs(effect_size), alpha=alpha, power=power, ratio=ratio
    )
    n_required = int(np.ceil(n))

    logger.info(f"Required sample size for d={effect_size}: {n_required} per group")

    return n_required


def describe_test(result: Dict) -> str:
    """t検定の結果を1段落の説明文にまとめる"""
    return (
        f"平均差 = {result['mean_difference']:.3f} "
        f"{format_ci(result['ci_lower'], result['ci_upper'])}, "
        f"t = {result['statistic']:.2f}, Cohen's d = {result['cohens_d']:.2f}\n"
        f"{result['interpretation']}"
    )
