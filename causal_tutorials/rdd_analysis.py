"""
回帰不連続デザイン（Regression Discontinuity Design, RDD）分析モジュール

割り当て変数（running variable）が閾値を超えるかどうかで処置が決まる状況で、
閾値での不連続なジャンプから局所的な処置効果を推定します。

主な機能：
1. カーネル重み付き局所多項式回帰による Sharp RDD
2. 交差検証によるバンド幅選択（Imbens & Lemieux, 2008）
3. Fuzzy RDD（閾値を操作変数とする2SLS）
4. 密度検定（閾値付近での操作の検出）
5. 妥当性チェック（共変量バランス、プラセボ閾値、バンド幅感度）
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional, Sequence
import logging
import statsmodels.api as sm
from linearmodels.iv import IV2SLS

from .constants import RDDConfig
from .exceptions import InsufficientDataError, InvalidInputError
from .utils import resolve_alpha, interpret_significance
from .validators import validate_columns, validate_positive_integer
from .types import KernelName, RDDResult

logger = logging.getLogger(__name__)

KERNELS = ("triangular", "uniform", "epanechnikov")
MAX_CV_EVALUATION_POINTS = 200


def kernel_weights(u: np.ndarray, kernel: KernelName = "triangular") -> np.ndarray:
    """
    カーネル重み

    Parameters
    ----------
    u : np.ndarray
        (x - c) / h で基準化した距離
    kernel : str
        "triangular", "uniform", "epanechnikov"

    Returns
    -------
    np.ndarray
        |u| ≤ 1 で正、それ以外で0の重み
    """
    u = np.abs(np.asarray(u, dtype=float))
    inside = u <= 1
    if kernel == "triangular":
        w = 1 - u
    elif kernel == "uniform":
        w = np.full_like(u, 0.5)
    elif kernel == "epanechnikov":
        w = 0.75 * (1 - u ** 2)
    else:
        raise ValueError(f"Unknown kernel: {kernel}")
    return np.where(inside, w, 0.0)


def _local_design(xc: np.ndarray, order: int) -> pd.DataFrame:
    above = (xc >= 0).astype(float)
    design = {'above': above}
    for p in range(1, order + 1):
        design[f'x{p}'] = xc ** p
        design[f'above_x{p}'] = above * xc ** p
    return pd.DataFrame(design)


def estimate_rdd(
    df: pd.DataFrame,
    outcome: str,
    running: str,
    cutoff: float,
    bandwidth: Optional[float] = None,
    kernel: Optional[KernelName] = None,
    order: int = 1,
    covariates: Optional[List[str]] = None,
    alpha: Optional[float] = None
) -> RDDResult:
    """
    Sharp RDD の局所多項式推定

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome : str
        アウトカム
    running : str
        割り当て変数
    cutoff : float
        閾値（running >= cutoff で処置）
    bandwidth : float, optional
        バンド幅。None の場合は select_bandwidth で選択
    kernel : str, optional
        カーネル。None は設定値
    order : int
        多項式の次数（閾値の両側で別々の傾きを持つ）
    covariates : List[str], optional
        精度向上のための共変量
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'tau', 'se', 'p_value', 'ci_lower', 'ci_upper', 'bandwidth', 'kernel',
        'order', 'n_below', 'n_above', 'interpretation', 'model'

    Notes
    -----
    Y_i = α + τ D_i + Σ_p [β_p (X_i - c)^p + γ_p D_i (X_i - c)^p] + ε_i
    重み K((X_i - c)/h) の WLS で推定し、HC1 頑健標準誤差を用います。
    τ は閾値での条件付き期待値のジャンプです。
    """
    kernel = kernel or RDDConfig.get_kernel()
    validate_positive_integer(order, "order")
    covariates = list(covariates or [])
    validate_columns(df, [outcome, running] + covariates, "RDD estimation")
    alpha = resolve_alpha(alpha)

    if bandwidth is None:
        bandwidth = select_bandwidth(df, outcome, running, cutoff, kernel=kernel)['bandwidth']
    if bandwidth <= 0:
        raise InvalidInputError(f"bandwidth must be positive, got {bandwidth}")

    data = df[[outcome, running] + covariates].dropna()
    xc = data[running].to_numpy(dtype=float) - cutoff
    weights = kernel_weights(xc / bandwidth, kernel)
    in_window = weights > 0

    n_below = int(np.sum(in_window & (xc < 0)))
    n_above = int(np.sum(in_window & (xc >= 0)))
    min_side = order + 2
    if n_below < min_side or n_above < min_side:
        raise InsufficientDataError(
            f"RDD with order={order} needs at least {min_side} observations on each side "
            f"within bandwidth {bandwidth:.4g}, got below={n_below}, above={n_above}"
        )

    design = _local_design(xc[in_window], order)
    for name in covariates:
        design[name] = data[name].to_numpy(dtype=float)[in_window]
    y = data[outcome].to_numpy(dtype=float)[in_window]

    results = sm.WLS(y, sm.add_constant(design, has_constant='add'),
                     weights=weights[in_window]).fit(cov_type="HC1")
    ci = results.conf_int(alpha=alpha).loc['above']

    tau = float(results.params['above'])
    p_value = float(results.pvalues['above'])
    logger.info(f"RDD estimate tau={tau:.4f} (SE={results.bse['above']:.4f}, h={bandwidth:.4g}, "
                f"n={n_below}+{n_above}, kernel={kernel})")

    return {
        'tau': tau,
        'se': float(results.bse['above']),
        'p_value': p_value,
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'bandwidth': float(bandwidth),
        'kernel': kernel,
        'order': order,
        'n_below': n_below,
        'n_above': n_above,
        'interpretation': interpret_significance(p_value, alpha, "閾値でのジャンプ"),
        'model': results,
    }


def _boundary_prediction(x: np.ndarray, y: np.ndarray, x0: float, kernel: str, h: float) -> float:
    w = kernel_weights((x - x0) / h, kernel)
    mask = w > 0
    if mask.sum() < 3 or np.ptp(x[mask]) == 0:
        return np.nan
    coef = np.polyfit(x[mask] - x0, y[mask], deg=1, w=np.sqrt(w[mask]))
    return float(coef[-1])


def select_bandwidth(
    df: pd.DataFrame,
    outcome: str,
    running: str,
    cutoff: float,
    candidates: Optional[Sequence[float]] = None,
    kernel: Optional[KernelName] = None
) -> Dict:
    """
    交差検証によるバンド幅選択

    Returns
    -------
    Dict
        'bandwidth', 'cv_table'（'Bandwidth', 'CV_MSE', 'N_Predictions'）

    Notes
    -----
    Imbens & Lemieux (2008) の手順:
    閾値の左側の点 x_i は、x_i より左にある [x_i - h, x_i) の観測だけで
    局所線形回帰を行い、境界点として予測します（右側も対称）。
    閾値付近での推定を模倣するため、評価点は各側で閾値に近い半分の観測に限ります。
    """
    kernel = kernel or RDDConfig.get_kernel()
    validate_columns(df, [outcome, running], "bandwidth selection")

    data = df[[outcome, running]].dropna()
    x = data[running].to_numpy(dtype=float)
    y = data[outcome].to_numpy(dtype=float)
    dist = np.abs(x - cutoff)

    if candidates is None:
        grid_size = RDDConfig.get_bandwidth_grid_size()
        candidates = np.unique(np.quantile(dist[dist > 0], np.linspace(0.15, 0.9, grid_size)))
    candidates = [float(h) for h in candidates if h > 0]
    if not candidates:
        raise InvalidInputError("No positive bandwidth candidates")

    eval_points = []
    for side in (x < cutoff, x >= cutoff):
        if not side.any():
            continue
        idx = np.flatnonzero(side & (dist <= np.median(dist[side])))
        step = max(1, len(idx) // (MAX_CV_EVALUATION_POINTS // 2))
        eval_points.extend(idx[::step])
    if not eval_points:
        raise InsufficientDataError("No observations available for cross-validation")

    rows = []
    for h in candidates:
        errors = []
        for i in eval_points:
            if x[i] < cutoff:
                mask = (x < x[i]) & (x >= x[i] - h)
            else:
                mask = (x > x[i]) & (x <= x[i] + h)
            pred = _boundary_prediction(x[mask], y[mask], x[i], kernel, h)
            if not np.isnan(pred):
                errors.append((y[i] - pred) ** 2)
        rows.append({
            'Bandwidth': h,
            'CV_MSE': float(np.mean(errors)) if errors else np.nan,
            'N_Predictions': len(errors),
        })

    cv_table = pd.DataFrame(rows)
    valid = cv_table.dropna(subset=['CV_MSE'])
    if valid.empty:
        raise InsufficientDataError("Cross-validation failed for every bandwidth candidate")

    best = float(valid.loc[valid['CV_MSE'].idxmin(), 'Bandwidth'])
    logger.info(f"Cross-validated bandwidth: {best:.4g} ({len(candidates)} candidates)")

    return {'bandwidth': best, 'cv_table': cv_table}


def fuzzy_rdd(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    running: str,
    cutoff: float,
    bandwidth: Optional[float] = None,
    kernel: Optional[KernelName] = None,
    alpha: Optional[float] = None
) -> Dict:
    """
    Fuzzy RDD

    閾値を超えると処置確率が不連続に変化する（が0/1には切り替わらない）場合に、
    閾値ダミーを操作変数とする局所2SLSで推定します。

    Returns
    -------
    Dict
        'late', 'se', 'p_value', 'ci_lower', 'ci_upper', 'first_stage_jump',
        'reduced_form_jump', 'bandwidth', 'n_observations', 'model'

    Notes
    -----
    LATE = 閾値でのアウトカムのジャンプ / 閾値での処置確率のジャンプ
    閾値付近のコンプライアー（閾値によって処置が変わる人）に対する効果です。
    """
    kernel = kernel or RDDConfig.get_kernel()
    validate_columns(df, [outcome, treatment, running], "fuzzy RDD")
    alpha = resolve_alpha(alpha)

    if bandwidth is None:
        bandwidth = select_bandwidth(df, outcome, running, cutoff, kernel=kernel)['bandwidth']

    first_stage = estimate_rdd(df, treatment, running, cutoff, bandwidth, kernel)
    reduced_form = estimate_rdd(df, outcome, running, cutoff, bandwidth, kernel)
    if abs(first_stage['tau']) < 1e-8:
        raise InsufficientDataError("No discontinuity in treatment probability at the cutoff")

    data = df[[outcome, treatment, running]].dropna()
    xc = data[running].to_numpy(dtype=float) - cutoff
    weights = kernel_weights(xc / bandwidth, kernel)
    window = weights > 0
    data = data[window]
    xc = xc[window]

    design = _local_design(xc, 1)
    design.index = data.index
    exog = sm.add_constant(design[['x1', 'above_x1']], has_constant='add')

    model = IV2SLS(
        data[outcome].astype(float),
        exog,
        data[[treatment]].astype(float),
        design[['above']],
        weights=pd.Series(weights[window], index=data.index),
    )
    results = model.fit(cov_type="robust")
    ci = results.conf_int(level=1 - alpha).loc[treatment]

    late = float(results.params[treatment])
    logger.info(f"Fuzzy RDD - LATE={late:.4f}, first stage jump={first_stage['tau']:.4f}, "
                f"reduced form jump={reduced_form['tau']:.4f}")

    return {
        'late': late,
        'se': float(results.std_errors[treatment]),
        'p_value': float(results.pvalues[treatment]),
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'first_stage_jump': first_stage['tau'],
        'reduced_form_jump': reduced_form['tau'],
        'bandwidth': float(bandwidth),
        'n_observations': int(results.nobs),
        'model': results,
    }


def density_test(
    running_values: np.ndarray,
    cutoff: float,
    bandwidth: Optional[float] = None,
    alpha: Optional[float] = None
) -> Dict:
    """
    閾値付近の密度検定

    閾値の両側の同じ幅の区間に含まれる観測数を比較します。
    操作がなければ、閾値の近くでは左右の観測数はほぼ等しくなるはずです。

    Returns
    -------
    Dict
        'n_below', 'n_above', 'z_statistic', 'p_value', 'bandwidth', 'manipulation_suspected'

    Notes
    -----
    z = (N_above - N_below) / sqrt(N_above + N_below)
    p値は Binomial(N, 0.5) による正確な両側検定です。
    McCrary (2008) の局所線形密度推定を簡略化したものです。
    """
    alpha = resolve_alpha(alpha)
    x = np.asarray(running_values, dtype=float)
    x = x[~np.isnan(x)]

    if bandwidth is None:
        bandwidth = RDDConfig.get_density_bandwidth_fraction() * np.ptp(x)
    if bandwidth <= 0:
        raise InvalidInputError(f"bandwidth must be positive, got {bandwidth}")

    below = int(np.sum((x >= cutoff - bandwidth) & (x < cutoff)))
    above = int(np.sum((x >= cutoff) & (x < cutoff + bandwidth)))
    n = below + above
    if n == 0:
        raise InsufficientDataError(f"No observations within {bandwidth:.4g} of the cutoff")

    z_stat = (above - below) / np.sqrt(n)
    p_value = float(stats.binomtest(above, n, 0.5).pvalue)
    suspected = p_value < alpha

    if suspected:
        logger.warning(f"Density test suggests manipulation at cutoff (below={below}, above={above}, p={p_value:.4f})")
    else:
        logger.info(f"Density test - below={below}, above={above}, p={p_value:.4f}")

    return {
        'n_below': below,
        'n_above': above,
        'z_statistic': float(z_stat),
        'p_value': p_value,
        'bandwidth': float(bandwidth),
        'manipulation_suspected': bool(suspected),
    }


def covariate_balance_at_cutoff(
    df: pd.DataFrame,
    covariates: List[str],
    running: str,
    cutoff: float,
    bandwidth: float,
    kernel: Optional[KernelName] = None,
    alpha: Optional[float] = None
) -> pd.DataFrame:
    """
    事前に決まっている共変量の閾値でのジャンプ

    処置の影響を受けない共変量に不連続があれば、閾値付近での比較可能性が疑われます。

    Returns
    -------
    pd.DataFrame
        'Covariate', 'Jump', 'SE', 'P_Value', 'Balanced'
    """
    alpha = resolve_alpha(alpha)
    rows = []
    for name in covariates:
        result = estimate_rdd(df, name, running, cutoff, bandwidth, kernel)
        rows.append({
            'Covariate': name,
            'Jump': result['tau'],
            'SE': result['se'],
            'P_Value': result['p_value'],
            'Balanced': result['p_value'] >= alpha,
        })
    return pd.DataFrame(rows)


def _effect_table(results: List[Dict], key: str, values: Sequence[float]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            key: value,
            'Estimate': r['tau'],
            'SE': r['se'],
            'CI_Lower': r['ci_lower'],
            'CI_Upper': r['ci_upper'],
            'P_Value': r['p_value'],
            'N': r['n_below'] + r['n_above'],
        }
        for value, r in zip(values, results)
    ])


def placebo_cutoffs(
    df: pd.DataFrame,
    outcome: str,
    running: str,
    cutoffs: Sequence[float],
    bandwidth: float,
    true_cutoff: Optional[float] = None,
    kernel: Optional[KernelName] = None
) -> pd.DataFrame:
    """
    偽の閾値での推定

    真の閾値が与えられた場合、偽の閾値と同じ側のデータだけを使い、
    真のジャンプが混入しないようにします。推定できない閾値は除外します。

    Returns
    -------
    pd.DataFrame
        'Cutoff', 'Estimate', 'SE', 'CI_Lower', 'CI_Upper', 'P_Value', 'N'
    """
    results, used = [], []
    for c in cutoffs:
        data = df
        if true_cutoff is not None:
            if c == true_cutoff:
                continue
            data = df[df[running] < true_cutoff] if c < true_cutoff else df[df[running] >= true_cutoff]
        try:
            results.append(estimate_rdd(data, outcome, running, c, bandwidth, kernel))
            used.append(c)
        except InsufficientDataError as e:
            logger.warning(f"Placebo cutoff {c} skipped: {e}")
    return _effect_table(results, 'Cutoff', used)


def bandwidth_sensitivity(
    df: pd.DataFrame,
    outcome: str,
    running: str,
    cutoff: float,
    bandwidths: Sequence[float],
    kernel: Optional[KernelName] = None
) -> pd.DataFrame:
    """
    バンド幅を変えたときの推定値の変化

    Returns
    -------
    pd.DataFrame
        'Bandwidth', 'Estimate', 'SE', 'CI_Lower', 'CI_Upper', 'P_Value', 'N'
    """
    results = [estimate_rdd(df, outcome, running, cutoff, h, kernel) for h in bandwidths]
    return _effect_table(results, 'Bandwidth', bandwidths)


def binned_means(
    df: pd.DataFrame,
    outcome: str,
    running: str,
    cutoff: float,
    n_bins: int = 20
) -> pd.DataFrame:
    """
    RDDプロット用のビン平均

    閾値の両側をそれぞれ n_bins // 2 個の等幅ビンに分けるため、
    閾値をまたぐビンはできません。

    Returns
    -------
    pd.DataFrame
        'Bin_Center', 'Mean', 'Count', 'Side'
    """
    validate_positive_integer(n_bins, "n_bins", min_value=2)
    validate_columns(df, [outcome, running], "binned means")
    data = df[[outcome, running]].dropna()
    per_side = n_bins // 2

    frames = []
    for side, subset in (('below', data[data[running] < cutoff]), ('above', data[data[running] >= cutoff])):
        if subset.empty:
            continue
        lo, hi = (subset[running].min(), cutoff) if side == 'below' else (cutoff, subset[running].max())
        if lo == hi:
            # 片側の得点が1値だけならビンは1つ
            frames.append(pd.DataFrame({
                'Bin_Center': [float(lo)],
                'Mean': [float(subset[outcome].mean())],
                'Count': [len(subset)],
                'Side': side,
            }))
            continue
        edges = np.linspace(lo, hi, per_side + 1)
        bins = pd.cut(subset[running], edges, include_lowest=True)
        grouped = subset.groupby(bins, observed=True)[outcome].agg(['mean', 'count'])
        frames.append(pd.DataFrame({
            'Bin_Center': [interval.mid for interval in grouped.index],
            'Mean': grouped['mean'].values,
            'Count': grouped['count'].values,
            'Side': side,
        }))

    return pd.concat(frames, ignore_index=True)
