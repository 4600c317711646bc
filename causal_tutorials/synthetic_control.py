"""
合成コントロール法モジュール

処置を受けた1つの単位について、処置前のアウトカムの推移を再現する
対照単位（ドナー）の凸結合を作り、反実仮想と比較します。

主な機能：
1. パネルデータの整形と検証
2. ドナーウェイトの推定（非負・総和1の制約付き二乗誤差最小化）
3. 空間プラセボ（置換推論）と時間プラセボ
4. Leave-one-out による頑健性チェック
"""

import numpy as np
import pandas as pd
from scipy.optimize import minimize
from typing import Dict, List, Optional
import logging

from .constants import SyntheticControlConfig, NumericalConfig
from .exceptions import ConvergenceError, InsufficientDataError, InvalidInputError
from .validators import validate_columns, validate_unique_panel
from .types import SyntheticControlResult

logger = logging.getLogger(__name__)


def prepare_synth_data(
    df: pd.DataFrame,
    unit_col: str,
    time_col: str,
    outcome_col: str,
    treated_unit,
    treatment_time,
    donors: Optional[List] = None
) -> Dict:
    """
    ロング形式のパネルを (時点 × 単位) のワイド形式に整形

    Returns
    -------
    Dict
        'wide', 'treated_unit', 'donors', 'pre_periods', 'post_periods'

    Raises
    ------
    InvalidInputError
        処置単位が存在しない、パネルが不均衡、ドナーがいない場合
    InsufficientDataError
        処置前の期間が2期未満、または処置後の期間がない場合
    """
    validate_columns(df, [unit_col, time_col, outcome_col], "synthetic control")
    validate_unique_panel(df, unit_col, time_col)

    units = pd.unique(df[unit_col])
    if treated_unit not in units:
        raise InvalidInputError(f"Treated unit {treated_unit!r} not found in column {unit_col}")

    if donors is None:
        donors = [u for u in units if u != treated_unit]
    else:
        missing = [u for u in donors if u not in units]
        if missing:
            raise InvalidInputError(f"Donor unit(s) not found: {missing}")
        donors = [u for u in donors if u != treated_unit]
    if not donors:
        raise InvalidInputError("Synthetic control needs at least one donor unit")

    wide = df.pivot(index=time_col, columns=unit_col, values=outcome_col).sort_index()
    wide = wide[[treated_unit] + list(donors)]
    if wide.isna().any().any():
        incomplete = wide.columns[wide.isna().any()].tolist()
        raise InvalidInputError(f"Panel is unbalanced; units with missing periods: {incomplete}")

    pre_periods = wide.index[wide.index < treatment_time]
    post_periods = wide.index[wide.index >= treatment_time]
    if len(pre_periods) < 2:
        raise InsufficientDataError(
            f"Synthetic control needs at least 2 pre-treatment periods, got {len(pre_periods)}"
        )
    if len(post_periods) == 0:
        raise InsufficientDataError(f"No periods at or after treatment_time={treatment_time}")

    return {
        'wide': wide,
        'treated_unit': treated_unit,
        'donors': list(donors),
        'pre_periods': pre_periods,
        'post_periods': post_periods,
    }


def _solve_weights(y_pre: np.ndarray, X_pre: np.ndarray) -> np.ndarray:
    """非負・総和1の制約下で ||y - Xw||² を最小化"""
    n_donors = X_pre.shape[1]
    if n_donors == 1:
        return np.ones(1)

    scale = max(np.abs(y_pre).max(), 1.0)
    y_s, X_s = y_pre / scale, X_pre / scale

    def objective(w):
        resid = y_s - X_s @ w
        return resid @ resid

    def gradient(w):
        return -2 * X_s.T @ (y_s - X_s @ w)

    result = minimize(
        objective,
        x0=np.full(n_donors, 1.0 / n_donors),
        jac=gradient,
        method='SLSQP',
        bounds=[(0.0, 1.0)] * n_donors,
        constraints=[{'type': 'eq', 'fun': lambda w: np.sum(w) - 1.0}],
        options={
            'maxiter': SyntheticControlConfig.get_maxiter(),
            'ftol': SyntheticControlConfig.get_tolerance(),
        },
    )
    if not result.success:
        raise ConvergenceError(f"Synthetic control weights did not converge: {result.message}")

    weights = np.clip(result.x, 0.0, None)
    return weights / weights.sum()


def _rmspe(gap: pd.Series) -> float:
    return float(np.sqrt(np.mean(np.square(gap.values))))


def _rmspe_ratio(pre_rmspe: float, post_rmspe: float) -> float:
    """処置後RMSPE / 処置前RMSPE。両方とも0なら比は定義できないため NaN"""
    eps = NumericalConfig.get_epsilon()
    if pre_rmspe > eps:
        return post_rmspe / pre_rmspe
    return np.inf if post_rmspe > eps else np.nan


def _fit_quality(pre_rmspe: float, treated_pre: pd.Series) -> str:
    spread = treated_pre.std(ddof=1)
    relative = pre_rmspe / spread if spread > NumericalConfig.get_epsilon() else 0.0
    if relative < 0.25:
        return "Good"
    elif relative < 0.5:
        return "Fair"
    return "Poor"


def fit_synthetic_control(
    df: pd.DataFrame,
    unit_col: str,
    time_col: str,
    outcome_col: str,
    treated_unit,
    treatment_time,
    donors: Optional[List] = None
) -> SyntheticControlResult:
    """
    合成コントロールの推定

    Parameters
    ----------
    df : pd.DataFrame
        ロング形式のパネル
    unit_col, time_col, outcome_col : str
        単位・時点・アウトカムの列名
    treated_unit
        処置単位のID
    treatment_time
        処置開始時点（この時点以降が処置後）
    donors : List, optional
        ドナー候補。None の場合は処置単位以外の全単位

    Returns
    -------
    Dict
        'weights'（pd.Series）, 'actual', 'synthetic', 'gap', 'pre_rmspe',
        'post_rmspe', 'rmspe_ratio', 'att', 'pre_fit_quality', 'treated_unit',
        'treatment_time'

    Notes
    -----
    予測変数は処置前のアウトカムの系列のみを用います。
    W* = argmin_W Σ_{t<T0} (Y_1t - Σ_j w_j Y_jt)²  s.t. w_j ≥ 0, Σ w_j = 1

    References
    ----------
    Abadie, A., Diamond, A., & Hainmueller, J. (2010). "Synthetic control methods for
    comparative case studies." JASA, 105(490), 493-505.
    """
    prepared = prepare_synth_data(df, unit_col, time_col, outcome_col,
                                  treated_unit, treatment_time, donors)
    wide = prepared['wide']
    pre, post = prepared['pre_periods'], prepared['post_periods']
    donor_cols = prepared['donors']

    weights = _solve_weights(
        wide.loc[pre, treated_unit].to_numpy(dtype=float),
        wide.loc[pre, donor_cols].to_numpy(dtype=float),
    )
    weights = pd.Series(weights, index=donor_cols, name='weight')

    actual = wide[treated_unit].astype(float)
    synthetic = (wide[donor_cols] @ weights).rename('synthetic')
    gap = (actual - synthetic).rename('gap')

    pre_rmspe = _rmspe(gap.loc[pre])
    post_rmspe = _rmspe(gap.loc[post])
    ratio = _rmspe_ratio(pre_rmspe, post_rmspe)
    att = float(gap.loc[post].mean())
    quality = _fit_quality(pre_rmspe, actual.loc[pre])

    if quality == "Poor":
        logger.warning(f"Poor pre-treatment fit for {treated_unit!r} (pre-RMSPE={pre_rmspe:.4f})")
    logger.info(f"Synthetic control for {treated_unit!r} - ATT={att:.4f}, "
                f"pre-RMSPE={pre_rmspe:.4f}, donors with weight>0.01: {int((weights > 0.01).sum())}")

    return {
        'weights': weights,
        'actual': actual,
        'synthetic': synthetic,
        'gap': gap,
        'pre_rmspe': pre_rmspe,
        'post_rmspe': post_rmspe,
        'rmspe_ratio': float(ratio),
        'att': att,
        'pre_fit_quality': quality,
        'treated_unit': treated_unit,
        'treatment_time': treatment_time,
    }


def placebo_in_space(
    df: pd.DataFrame,
    unit_col: str,
    time_col: str,
    outcome_col: str,
    treated_unit,
    treatment_time,
    rmspe_threshold: Optional[float] = None
) -> Dict:
    """
    空間プラセボ（置換推論）

    各ドナーを仮の処置単位として合成コントロールを推定し、
    処置単位の効果がプラセボの分布の中でどれだけ極端かを評価します。

    Parameters
    ----------
    rmspe_threshold : float, optional
        処置前RMSPEが処置単位の threshold 倍を超えるプラセボを除外。
        None は設定値、0 以下で除外なし

    Returns
    -------
    Dict
        'gaps'（時点 × 単位）, 'rmspe_table', 'p_value', 'n_placebos', 'treated_result'

    Notes
    -----
    p値 = #{単位 : RMSPE比 ≥ 処置単位のRMSPE比} / 単位数（処置単位を含む）
    処置前・処置後のRMSPEがともに0のプラセボはRMSPE比が定義できないため順位付けから除きます。
    """
    if rmspe_threshold is None:
        rmspe_threshold = SyntheticControlConfig.get_rmspe_threshold()

    treated_result = fit_synthetic_control(df, unit_col, time_col, outcome_col,
                                           treated_unit, treatment_time)
    donors = list(treated_result['weights'].index)
    placebo_df = df[df[unit_col] != treated_unit]

    gaps = {treated_unit: treated_result['gap']}
    rows = [{
        'Unit': treated_unit,
        'Treated': True,
        'Pre_RMSPE': treated_result['pre_rmspe'],
        'Post_RMSPE': treated_result['post_rmspe'],
        'RMSPE_Ratio': treated_result['rmspe_ratio'],
    }]

    for unit in donors:
        try:
            result = fit_synthetic_control(placebo_df, unit_col, time_col, outcome_col,
                                           unit, treatment_time)
        except (ConvergenceError, InvalidInputError) as e:
            logger.warning(f"Placebo for {unit!r} skipped: {e}")
            continue
        gaps[unit] = result['gap']
        rows.append({
            'Unit': unit,
            'Treated': False,
            'Pre_RMSPE': result['pre_rmspe'],
            'Post_RMSPE': result['post_rmspe'],
            'RMSPE_Ratio': result['rmspe_ratio'],
        })

    table = pd.DataFrame(rows)
    if rmspe_threshold and rmspe_threshold > 0:
        limit = rmspe_threshold * treated_result['pre_rmspe']
        keep = table['Treated'] | (table['Pre_RMSPE'] <= limit)
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.info(f"Dropped {n_dropped} placebo(s) with pre-RMSPE > {rmspe_threshold}x treated")
        table = table[keep].reset_index(drop=True)

    undefined = ~table['Treated'] & table['RMSPE_Ratio'].isna()
    if undefined.any():
        logger.warning(f"Excluded {int(undefined.sum())} placebo(s) with zero pre- and post-RMSPE from ranking")
        table = table[~undefined].reset_index(drop=True)

    treated_ratio = treated_result['rmspe_ratio']
    if np.isnan(treated_ratio):
        logger.warning(f"RMSPE ratio of {treated_unit!r} is undefined; permutation p-value is NaN")
        p_value = np.nan
    else:
        p_value = float((table['RMSPE_Ratio'] >= treated_ratio).mean())
    table = table.sort_values('RMSPE_Ratio', ascending=False).reset_index(drop=True)
    table['Rank'] = np.arange(1, len(table) + 1)

    gaps_df = pd.DataFrame({unit: gaps[unit] for unit in table['Unit']})

    logger.info(f"Placebo-in-space - {len(table) - 1} placebos, permutation p={p_value:.4f}")

    return {
        'gaps': gaps_df,
        'rmspe_table': table,
        'p_value': p_value,
        'n_placebos': len(table) - 1,
        'treated_result': treated_result,
    }


def placebo_in_time(
    df: pd.DataFrame,
    unit_col: str,
    time_col: str,
    outcome_col: str,
    treated_unit,
    treatment_time,
    placebo_time
) -> Dict:
    """
    時間プラセボ

    実際の処置より前の時点を仮の処置時点とし、処置前データだけで推定します。
    仮の処置後に大きなギャップが出る場合、合成コントロールの妥当性が疑われます。

    Returns
    -------
    Dict
        fit_synthetic_control の結果に 'placebo_time' を加えたもの
    """
    if not placebo_time < treatment_time:
        raise InvalidInputError(
            f"placebo_time ({placebo_time}) must be earlier than treatment_time ({treatment_time})"
        )
    validate_columns(df, [time_col], "placebo in time")
    pre_df = df[df[time_col] < treatment_time]

    result = fit_synthetic_control(pre_df, unit_col, time_col, outcome_col,
                                   treated_unit, placebo_time)
    result['placebo_time'] = placebo_time

    logger.info(f"Placebo-in-time at {placebo_time} - placebo ATT={result['att']:.4f}")
    return result


def leave_one_out(
    df: pd.DataFrame,
    unit_col: str,
    time_col: str,
    outcome_col: str,
    treated_unit,
    treatment_time,
    min_weight: float = 0.01
) -> Dict:
    """
    Leave-one-out 頑健性チェック

    正のウェイトを持つドナーを1つずつ除いて再推定します。

    Returns
    -------
    Dict
        'baseline_att', 'results'（'Omitted_Donor', 'Weight', 'ATT', 'Pre_RMSPE'）,
        'synthetics'（時点 × 除外ドナー）
    """
    baseline = fit_synthetic_control(df, unit_col, time_col, outcome_col,
                                     treated_unit, treatment_time)
    all_donors = list(baseline['weights'].index)
    influential = baseline['weights'][baseline['weights'] > min_weight]

    rows, synthetics = [], {}
    for donor, weight in influential.items():
        remaining = [d for d in all_donors if d != donor]
        if not remaining:
            continue
        result = fit_synthetic_control(df, unit_col, time_col, outcome_col,
                                       treated_unit, treatment_time, donors=remaining)
        synthetics[donor] = result['synthetic']
        rows.append({
            'Omitted_Donor': donor,
            'Weight': float(weight),
            'ATT': result['att'],
            'Pre_RMSPE': result['pre_rmspe'],
        })

    results = pd.DataFrame(rows, columns=['Omitted_Donor', 'Weight', 'ATT', 'Pre_RMSPE'])
    if len(results):
        logger.info(f"Leave-one-out ATT range: [{results['ATT'].min():.4f}, {results['ATT'].max():.4f}] "
                    f"(baseline {baseline['att']:.4f})")

    return {
        'baseline_att': baseline['att'],
        'results': results,
        'synthetics': pd.DataFrame(synthetics),
    }
