"""
差分の差分法（Difference-in-Differences, DID）分析モジュール

パネルデータを活用した因果推論手法を提供します。

主な機能：
1. 標準的な2×2 DID推定（個体クラスター頑健標準誤差）
2. 平行トレンド仮定の検証
3. 共変量調整付きDID
4. 二方向固定効果（TWFE）DID
5. イベントスタディ
6. 多時点DID（スタガード採用デザイン、Callaway & Sant'Anna 型の ATT(g,t)）
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Tuple, Optional
import logging
from statsmodels.formula.api import ols
from linearmodels.panel import PanelOLS

from .exceptions import InsufficientDataError, InvalidInputError
from .utils import resolve_alpha, normal_critical_value, interpret_significance
from .validators import validate_columns, validate_unique_panel
from .types import ControlGroup, DIDResult, ParallelTrendsTestResult

logger = logging.getLogger(__name__)


def _split_periods(df: pd.DataFrame, time_col: str,
                   pre_period: Optional[Tuple], post_period: Optional[Tuple]) -> Tuple[Tuple, Tuple]:
    if pre_period is None or post_period is None:
        # 自動的に期間を設定
        time_values = sorted(df[time_col].unique())
        if len(time_values) < 2:
            raise InsufficientDataError("DID needs at least two distinct time periods")
        mid_point = len(time_values) // 2
        pre_period = (time_values[0], time_values[mid_point - 1])
        post_period = (time_values[mid_point], time_values[-1])
        logger.info(f"Auto-detected periods - Pre: {pre_period}, Post: {post_period}")
    return pre_period, post_period


def _prepare_did_frame(df: pd.DataFrame, treatment_col: str, time_col: str, unit_col: str,
                       pre_period: Tuple, post_period: Tuple) -> pd.DataFrame:
    df = df.copy()

    # 処置群: 期間中に一度でも処置を受けた個体
    treated_units = df[df[treatment_col] == 1][unit_col].unique()
    df['treated_group'] = df[unit_col].isin(treated_units).astype(int)

    df['post'] = ((df[time_col] >= post_period[0]) & (df[time_col] <= post_period[1])).astype(int)
    df['pre'] = ((df[time_col] >= pre_period[0]) & (df[time_col] <= pre_period[1])).astype(int)

    df_analysis = df[(df['pre'] == 1) | (df['post'] == 1)].copy()
    df_analysis['interaction'] = df_analysis['treated_group'] * df_analysis['post']
    return df_analysis


def _fit_did_formula(df_analysis: pd.DataFrame, formula: str, unit_col: str, cluster: bool):
    model = ols(formula, data=df_analysis)
    if cluster:
        groups = pd.factorize(df_analysis.loc[model.data.row_labels, unit_col])[0]
        return model.fit(cov_type="cluster", cov_kwds={'groups': groups})
    return model.fit()


def did_estimation(
    df: pd.DataFrame,
    outcome_col: str,
    treatment_col: str,
    time_col: str,
    unit_col: str,
    pre_period: Optional[Tuple] = None,
    post_period: Optional[Tuple] = None,
    cluster: bool = True,
    alpha: Optional[float] = None
) -> DIDResult:
    """
    差分の差分法（DID）による因果効果の推定

    DIDは、処置群と対照群の時系列変化を比較することで、
    時間不変の交絡因子を除去できます。

    Parameters
    ----------
    df : pd.DataFrame
        分析データ（パネルデータ形式）
    outcome_col : str
        アウトカム変数の列名
    treatment_col : str
        処置変数の列名（一度でも1になる個体を処置群とする）
    time_col : str
        時点を示す列名
    unit_col : str
        個体IDの列名
    pre_period : Tuple, optional
        処置前期間の範囲（例: (2018, 2019)）
    post_period : Tuple, optional
        処置後期間の範囲（例: (2020, 2021)）
    cluster : bool
        個体クラスター頑健標準誤差を用いるか
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'did_estimate', 'did_coefficient', 'se', 'p_value', 'ci_lower', 'ci_upper',
        'n_treated', 'n_control', 'n_observations', 'means',
        'parallel_trends_test', 'interpretation', 'model'

    Notes
    -----
    DIDの仮定:
    1. 平行トレンド仮定: 処置がない場合、両群のトレンドは平行
    2. 共通ショック: 処置以外の時間効果は両群で同じ
    3. 予期効果なし: 処置前にアウトカムが反応しない

    推定式:
    Y_it = β0 + β1*Treated_i + β2*Post_t + β3*(Treated_i * Post_t) + ε_it

    DID推定値 = β3 = (Y_treated_post - Y_treated_pre) - (Y_control_post - Y_control_pre)

    Examples
    --------
    >>> df = pd.DataFrame({
    ...     'unit': [1, 1, 2, 2, 3, 3, 4, 4],
    ...     'year': [2020, 2022, 2020, 2022, 2020, 2022, 2020, 2022],
    ...     'd': [0, 1, 0, 1, 0, 0, 0, 0],
    ...     'y': [1.0, 3.0, 1.2, 3.1, 0.9, 1.4, 1.1, 1.5]
    ... })
    >>> results = did_estimation(df, 'y', 'd', 'year', 'unit')
    """
    logger.info(f"Starting DID estimation for outcome: {outcome_col}, treatment: {treatment_col}")
    validate_columns(df, [outcome_col, treatment_col, time_col, unit_col], "DID estimation")
    alpha = resolve_alpha(alpha)

    pre_period, post_period = _split_periods(df, time_col, pre_period, post_period)
    df_analysis = _prepare_did_frame(df, treatment_col, time_col, unit_col, pre_period, post_period)

    # 各グループ・期間の平均アウトカム
    means = df_analysis.groupby(['treated_group', 'post'])[outcome_col].mean()

    try:
        y_treated_pre = means.loc[(1, 0)]
        y_treated_post = means.loc[(1, 1)]
        y_control_pre = means.loc[(0, 0)]
        y_control_post = means.loc[(0, 1)]
    except KeyError as e:
        logger.error("Insufficient data for DID estimation (missing group-period combinations)")
        raise InsufficientDataError(
            "Cannot compute DID: missing data for some group-period combinations"
        ) from e

    did_estimate = (y_treated_post - y_treated_pre) - (y_control_post - y_control_pre)

    logger.info(f"DID estimate: {did_estimate:.4f}")
    logger.info(f"  Treated: {y_treated_pre:.3f} -> {y_treated_post:.3f} (Δ={y_treated_post - y_treated_pre:.3f})")
    logger.info(f"  Control: {y_control_pre:.3f} -> {y_control_post:.3f} (Δ={y_control_post - y_control_pre:.3f})")

    # 回帰による推定（標準誤差を得るため）
    model = _fit_did_formula(
        df_analysis, f"{outcome_col} ~ treated_group + post + interaction", unit_col, cluster
    )

    did_coef = model.params['interaction']
    did_pval = model.pvalues['interaction']
    did_ci = model.conf_int(alpha=alpha).loc['interaction']

    n_treated = df_analysis[df_analysis['treated_group'] == 1][unit_col].nunique()
    n_control = df_analysis[df_analysis['treated_group'] == 0][unit_col].nunique()

    full = df.copy()
    full['treated_group'] = full[unit_col].isin(df[df[treatment_col] == 1][unit_col].unique()).astype(int)
    parallel_trends_result = parallel_trends_test(full, outcome_col, unit_col, time_col,
                                                  'treated_group', pre_period, alpha=alpha)

    results = {
        'did_estimate': float(did_estimate),
        'did_coefficient': float(did_coef),
        'se': float(model.bse['interaction']),
        'p_value': float(did_pval),
        'ci_lower': float(did_ci.iloc[0]),
        'ci_upper': float(did_ci.iloc[1]),
        'n_treated': n_treated,
        'n_control': n_control,
        'n_observations': len(df_analysis),
        'means': {
            'treated_pre': y_treated_pre,
            'treated_post': y_treated_post,
            'control_pre': y_control_pre,
            'control_post': y_control_post
        },
        'parallel_trends_test': parallel_trends_result,
        'interpretation': interpret_significance(did_pval, alpha, "DID推定値"),
        'model': model
    }

    logger.info(f"DID estimation completed - Estimate: {did_estimate:.4f}, p-value: {did_pval:.4f}")

    return results


def parallel_trends_test(
    df: pd.DataFrame,
    outcome_col: str,
    unit_col: str,
    time_col: str,
    treated_col: str,
    pre_period: Tuple,
    alpha: Optional[float] = None
) -> ParallelTrendsTestResult:
    """
    平行トレンド仮定の検定

    処置前期間において、処置群と対照群のトレンドが平行であることを確認します。

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome_col : str
        アウトカム変数
    unit_col : str
        個体ID（クラスター）
    time_col : str
        時点（数値）
    treated_col : str
        処置群フラグ（0 or 1）
    pre_period : Tuple
        処置前期間
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'test_statistic', 'p_value', 'result'（"Pass" / "Fail" / "Inconclusive"）, 'interpretation'

    Notes
    -----
    検定方法（回帰法）:
    Y_it = β0 + β1*Treated_i + β2*Time_t + β3*(Treated_i * Time_t) + ε_it

    H0: β3 = 0（平行トレンド）
    処置前の時点が2期未満の場合は検定できません。
    検定を通過しても平行トレンドが証明されるわけではありません。
    """
    logger.info("Testing parallel trends assumption...")
    alpha = resolve_alpha(alpha)

    df_pre = df[(df[time_col] >= pre_period[0]) & (df[time_col] <= pre_period[1])].copy()

    if df_pre[time_col].nunique() < 2 or df_pre[treated_col].nunique() < 2:
        logger.warning("Not enough pre-treatment periods for parallel trends test")
        return {
            'test_statistic': np.nan,
            'p_value': np.nan,
            'result': 'Inconclusive',
            'interpretation': '処置前の時点が2期未満のため検定できません'
        }

    df_pre['time_numeric'] = df_pre[time_col] - df_pre[time_col].min()
    df_pre['interaction_time'] = df_pre[treated_col] * df_pre['time_numeric']

    model = _fit_did_formula(
        df_pre, f"{outcome_col} ~ {treated_col} + time_numeric + interaction_time", unit_col, True
    )

    coef = model.params['interaction_time']
    pval = model.pvalues['interaction_time']
    result = "Pass" if pval > alpha else "Fail"

    if result == "Pass":
        interpretation = f"""
✅ 平行トレンド仮定は棄却されません（p={pval:.3f} > {alpha}）
  - 処置前期間で両群のトレンドは統計的に有意な差がありません
"""
    else:
        interpretation = f"""
❌ 平行トレンド仮定が棄却されます（p={pval:.3f} < {alpha}）
  - 処置前期間で両群のトレンドに有意な差があります
  - DID推定値にはバイアスがある可能性があります
  - 以下の対策を検討してください：
    1. 共変量調整DID（did_with_covariates）を使用
    2. より短い比較期間を選択
    3. 合成コントロール法など別の手法を検討
"""

    logger.info(f"Parallel trends test - Coefficient: {coef:.4f}, p-value: {pval:.4f}, Result: {result}")

    return {
        'test_statistic': float(coef),
        'p_value': float(pval),
        'result': result,
        'interpretation': interpretation.strip()
    }


def did_with_covariates(
    df: pd.DataFrame,
    outcome_col: str,
    treatment_col: str,
    time_col: str,
    unit_col: str,
    covariate_cols: List[str],
    pre_period: Optional[Tuple] = None,
    post_period: Optional[Tuple] = None,
    cluster: bool = True,
    alpha: Optional[float] = None
) -> Dict:
    """
    共変量調整付きDID

    Returns
    -------
    Dict
        'did_estimate', 'se', 'p_value', 'ci_lower', 'ci_upper', 'n_treated',
        'n_control', 'n_observations', 'covariates_used', 'covariate_effects',
        'model_r_squared', 'model'

    Notes
    -----
    推定式:
    Y_it = β0 + β1*Treated_i + β2*Post_t + β3*(Treated_i * Post_t) + Σ(γ_k * X_k) + ε_it

    共変量を含めることで、観測可能な時間変動する交絡因子をコントロールします。
    """
    logger.info(f"Starting DID with covariates: {covariate_cols}")
    if not covariate_cols:
        raise InvalidInputError("covariate_cols must not be empty")
    validate_columns(df, [outcome_col, treatment_col, time_col, unit_col] + list(covariate_cols),
                     "DID with covariates")
    alpha = resolve_alpha(alpha)

    pre_period, post_period = _split_periods(df, time_col, pre_period, post_period)
    df_analysis = _prepare_did_frame(df, treatment_col, time_col, unit_col, pre_period, post_period)

    covariate_formula = " + ".join(covariate_cols)
    model = _fit_did_formula(
        df_analysis,
        f"{outcome_col} ~ treated_group + post + interaction + {covariate_formula}",
        unit_col, cluster
    )

    did_coef = model.params['interaction']
    did_pval = model.pvalues['interaction']
    did_ci = model.conf_int(alpha=alpha).loc['interaction']

    n_treated = df_analysis[df_analysis['treated_group'] == 1][unit_col].nunique()
    n_control = df_analysis[df_analysis['treated_group'] == 0][unit_col].nunique()

    covariate_effects = {}
    for cov in covariate_cols:
        if cov in model.params:
            covariate_effects[cov] = {
                'coefficient': float(model.params[cov]),
                'p_value': float(model.pvalues[cov])
            }

    results = {
        'did_estimate': float(did_coef),
        'se': float(model.bse['interaction']),
        'p_value': float(did_pval),
        'ci_lower': float(did_ci.iloc[0]),
        'ci_upper': float(did_ci.iloc[1]),
        'n_treated': n_treated,
        'n_control': n_control,
        'n_observations': len(df_analysis),
        'covariates_used': list(covariate_cols),
        'covariate_effects': covariate_effects,
        'model_r_squared': float(model.rsquared),
        'model': model
    }

    logger.info(f"DID with covariates completed - Estimate: {did_coef:.4f}, p-value: {did_pval:.4f}")

    return results


def twfe_did(
    df: pd.DataFrame,
    outcome_col: str,
    treatment_col: str,
    unit_col: str,
    time_col: str,
    alpha: Optional[float] = None
) -> Dict:
    """
    二方向固定効果（TWFE）DID

    Y_it = α_i + λ_t + τ D_it + ε_it を個体クラスター頑健標準誤差で推定します。

    Returns
    -------
    Dict
        'estimate', 'se', 'p_value', 'ci_lower', 'ci_upper', 'nobs', 'model'

    Notes
    -----
    処置時期が個体ごとに異なり効果が時間とともに変化する場合、TWFE推定値は
    既処置群を対照に使う「禁じられた比較」によりバイアスします
    （Goodman-Bacon, 2021）。その場合は group_time_att を使用してください。
    """
    validate_columns(df, [outcome_col, treatment_col, unit_col, time_col], "TWFE DID")
    validate_unique_panel(df, unit_col, time_col)
    alpha = resolve_alpha(alpha)

    data = df[[unit_col, time_col, outcome_col, treatment_col]].dropna()
    data = data.set_index([unit_col, time_col]).sort_index()

    model = PanelOLS(
        data[outcome_col].astype(float),
        data[[treatment_col]].astype(float),
        entity_effects=True,
        time_effects=True,
    )
    results = model.fit(cov_type="clustered", cluster_entity=True)
    ci = results.conf_int(level=1 - alpha).loc[treatment_col]

    estimate = float(results.params[treatment_col])
    logger.info(f"TWFE DID - estimate={estimate:.4f} (clustered SE={results.std_errors[treatment_col]:.4f})")

    return {
        'estimate': estimate,
        'se': float(results.std_errors[treatment_col]),
        'p_value': float(results.pvalues[treatment_col]),
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'nobs': int(results.nobs),
        'model': results,
    }


def _is_never_treated(values: pd.Series) -> pd.Series:
    return values.isna() | (values == 0)


def _relative_time_name(k: int) -> str:
    return f"rel_m{abs(k)}" if k < 0 else f"rel_p{k}"


def event_study(
    df: pd.DataFrame,
    outcome_col: str,
    unit_col: str,
    time_col: str,
    treatment_time_col: str,
    window: Tuple[int, int] = (-4, 4),
    reference: int = -1,
    alpha: Optional[float] = None
) -> Dict:
    """
    イベントスタディ（動的DID）

    Parameters
    ----------
    df : pd.DataFrame
        ロング形式のパネル
    outcome_col, unit_col, time_col : str
        アウトカム・個体・時点の列名
    treatment_time_col : str
        個体ごとの処置開始時点（NaN または 0 は未処置）
    window : Tuple[int, int]
        相対時点の範囲 (最小, 最大)。範囲外は端の値にまとめる
    reference : int
        基準とする相対時点（係数を0に固定）
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'coefficients'（'Relative_Time', 'Coefficient', 'SE', 'CI_Lower', 'CI_Upper', 'P_Value'）,
        'pretrend_test'（'statistic', 'df', 'p_value'）, 'model'

    Notes
    -----
    Y_it = α_i + λ_t + Σ_{k≠ref} β_k 1[t - G_i = k] + ε_it

    処置前の β_k（k < 0）が全て0であるという帰無仮説を Wald 検定します。
    観測のない相対時点は推定から除き、その行は NaN になります。
    """
    lo, hi = window
    if not lo <= reference <= hi or lo >= hi:
        raise InvalidInputError(f"reference={reference} must lie inside window={window}")
    validate_columns(df, [outcome_col, unit_col, time_col, treatment_time_col], "event study")
    validate_unique_panel(df, unit_col, time_col)
    alpha = resolve_alpha(alpha)

    data = df[[unit_col, time_col, outcome_col, treatment_time_col]].copy()
    never = _is_never_treated(data[treatment_time_col])
    relative = (data[time_col] - data[treatment_time_col]).clip(lo, hi)

    dummy_cols = []
    for k in range(lo, hi + 1):
        if k == reference:
            continue
        name = _relative_time_name(k)
        data[name] = ((relative == k) & ~never).astype(float)
        dummy_cols.append(name)

    data = data.dropna(subset=[outcome_col]).set_index([unit_col, time_col]).sort_index()
    empty_bins = [name for name in dummy_cols if data[name].sum() == 0]
    if empty_bins:
        logger.warning(f"Event study - no observations for {empty_bins}; reported as NaN")
        dummy_cols = [name for name in dummy_cols if name not in empty_bins]
    if not dummy_cols:
        raise InsufficientDataError(f"No treated observations fall inside window={window}")

    model = PanelOLS(
        data[outcome_col].astype(float),
        data[dummy_cols],
        entity_effects=True,
        time_effects=True,
        drop_absorbed=True,
    )
    results = model.fit(cov_type="clustered", cluster_entity=True)
    ci = results.conf_int(level=1 - alpha)

    rows = []
    for k in range(lo, hi + 1):
        name = _relative_time_name(k)
        if k == reference:
            rows.append({'Relative_Time': k, 'Coefficient': 0.0, 'SE': 0.0,
                         'CI_Lower': 0.0, 'CI_Upper': 0.0, 'P_Value': np.nan})
            continue
        if name not in results.params.index:
            # 観測のない相対時点、または吸収された相対時点
            rows.append({'Relative_Time': k, 'Coefficient': np.nan, 'SE': np.nan,
                         'CI_Lower': np.nan, 'CI_Upper': np.nan, 'P_Value': np.nan})
            continue
        rows.append({
            'Relative_Time': k,
            'Coefficient': float(results.params[name]),
            'SE': float(results.std_errors[name]),
            'CI_Lower': float(ci.loc[name].iloc[0]),
            'CI_Upper': float(ci.loc[name].iloc[1]),
            'P_Value': float(results.pvalues[name]),
        })
    coefficients = pd.DataFrame(rows)

    leads = [_relative_time_name(k) for k in range(lo, 0)
             if k != reference and _relative_time_name(k) in results.params.index]
    if leads:
        b = results.params[leads].values
        V = results.cov.loc[leads, leads].values
        statistic = float(b @ np.linalg.pinv(V) @ b)
        pretrend = {
            'statistic': statistic,
            'df': len(leads),
            'p_value': float(1 - stats.chi2.cdf(statistic, len(leads))),
        }
        logger.info(f"Event study pre-trend Wald test - chi2={statistic:.3f}, p={pretrend['p_value']:.4f}")
    else:
        pretrend = {'statistic': np.nan, 'df': 0, 'p_value': np.nan}

    return {
        'coefficients': coefficients,
        'pretrend_test': pretrend,
        'model': results,
    }


def group_time_att(
    df: pd.DataFrame,
    outcome_col: str,
    unit_col: str,
    time_col: str,
    group_col: str,
    control_group: ControlGroup = "never_treated",
    alpha: Optional[float] = None
) -> pd.DataFrame:
    """
    グループ・時点別の平均処置効果 ATT(g,t)

    Parameters
    ----------
    df : pd.DataFrame
        ロング形式のパネル
    outcome_col, unit_col, time_col : str
        アウトカム・個体・時点の列名
    group_col : str
        最初に処置を受けた時点（0 または NaN は未処置）
    control_group : str
        "never_treated" または "not_yet_treated"
    alpha : float, optional
        有意水準

    Returns
    -------
    pd.DataFrame
        'Group', 'Time', 'Relative_Time', 'ATT', 'SE', 'CI_Lower', 'CI_Upper',
        'N_Treated', 'N_Control'

    Notes
    -----
    ATT(g,t) = E[Y_t - Y_b | G=g] - E[Y_t - Y_b | C]

    基準時点 b は処置後（t ≥ g）では g の直前の時点、処置前では t の直前の時点です。
    共変量なしの無条件平行トレンドを仮定しています。

    References
    ----------
    Callaway, B., & Sant'Anna, P. H. C. (2021). "Difference-in-Differences with multiple
    time periods." Journal of Econometrics, 225(2), 200-230.
    """
    if control_group not in ("never_treated", "not_yet_treated"):
        raise ValueError(f"Unknown control_group: {control_group}")
    validate_columns(df, [outcome_col, unit_col, time_col, group_col], "group-time ATT")
    validate_unique_panel(df, unit_col, time_col)
    alpha = resolve_alpha(alpha)
    z_crit = normal_critical_value(alpha)

    wide = df.pivot(index=unit_col, columns=time_col, values=outcome_col)
    first = df.groupby(unit_col)[group_col].first()
    groups = first.where(~_is_never_treated(first), np.inf).reindex(wide.index)
    periods = list(wide.columns)

    cohorts = sorted(g for g in groups.unique() if np.isfinite(g))
    if not cohorts:
        raise InsufficientDataError("No treated cohorts found in group column")
    if control_group == "never_treated" and not np.isinf(groups).any():
        raise InsufficientDataError("control_group='never_treated' requires never-treated units")

    rows = []
    for g in cohorts:
        earlier = [p for p in periods if p < g]
        if not earlier:
            logger.warning(f"Cohort {g} has no pre-treatment period and is skipped")
            continue
        g_base = earlier[-1]

        for i, t in enumerate(periods):
            if t >= g:
                base = g_base
            elif i == 0:
                continue
            else:
                base = periods[i - 1]

            treated_mask = groups == g
            if control_group == "never_treated":
                control_mask = np.isinf(groups)
            else:
                control_mask = (groups > max(t, base)) & (groups != g)

            diff = wide[t] - wide[base]
            d_treated = diff[treated_mask].dropna()
            d_control = diff[control_mask].dropna()
            if len(d_treated) < 2 or len(d_control) < 2:
                continue

            att = d_treated.mean() - d_control.mean()
            se = np.sqrt(d_treated.var(ddof=1) / len(d_treated) + d_control.var(ddof=1) / len(d_control))
            rows.append({
                'Group': g,
                'Time': t,
                'Relative_Time': t - g,
                'ATT': float(att),
                'SE': float(se),
                'CI_Lower': float(att - z_crit * se),
                'CI_Upper': float(att + z_crit * se),
                'N_Treated': len(d_treated),
                'N_Control': len(d_control),
            })

    if not rows:
        raise InsufficientDataError("No estimable group-time cells")

    result = pd.DataFrame(rows)
    logger.info(f"Group-time ATT - {len(result)} cells for {len(cohorts)} cohorts ({control_group})")
    return result


def _weighted_summary(att: pd.Series, se: pd.Series, weights: pd.Series) -> Tuple[float, float]:
    # セル間の独立性を仮定
    w = weights / weights.sum()
    return float(np.sum(w * att)), float(np.sqrt(np.sum(w ** 2 * se ** 2)))


def aggregate_group_time_att(
    att_gt: pd.DataFrame,
    method: str = "simple",
    alpha: Optional[float] = None
) -> Dict:
    """
    ATT(g,t) の集計

    Parameters
    ----------
    att_gt : pd.DataFrame
        group_time_att() の結果
    method : str
        "simple"（処置後セルのサイズ加重平均）,
        "dynamic"（相対時点ごとの平均 = イベントスタディ）,
        "group"（コホートごとの処置後平均）
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'overall_att', 'overall_se', 'ci_lower', 'ci_upper', 'method', 'table'

    Notes
    -----
    標準誤差はセルを互いに独立とみなして計算します（同じ対照群を共有するため保守的ではありません）。
    """
    if method not in ("simple", "dynamic", "group"):
        raise ValueError(f"Unknown aggregation method: {method}")
    alpha = resolve_alpha(alpha)
    z_crit = normal_critical_value(alpha)

    post = att_gt[att_gt['Relative_Time'] >= 0]
    if post.empty:
        raise InsufficientDataError("No post-treatment group-time cells to aggregate")

    if method == "simple":
        overall, overall_se = _weighted_summary(post['ATT'], post['SE'], post['N_Treated'])
        table = post.reset_index(drop=True)
    else:
        key = 'Relative_Time' if method == "dynamic" else 'Group'
        source = att_gt if method == "dynamic" else post
        rows = []
        for value, cells in source.groupby(key):
            if method == "dynamic":
                est, se = _weighted_summary(cells['ATT'], cells['SE'], cells['N_Treated'])
            else:
                est, se = _weighted_summary(cells['ATT'], cells['SE'], pd.Series(1.0, index=cells.index))
            rows.append({
                key: value,
                'ATT': est,
                'SE': se,
                'CI_Lower': est - z_crit * se,
                'CI_Upper': est + z_crit * se,
                'N_Treated': int(cells['N_Treated'].max()),
            })
        table = pd.DataFrame(rows)

        if method == "dynamic":
            post_table = table[table['Relative_Time'] >= 0]
            overall, overall_se = _weighted_summary(
                post_table['ATT'], post_table['SE'], pd.Series(1.0, index=post_table.index)
            )
        else:
            overall, overall_se = _weighted_summary(table['ATT'], table['SE'], table['N_Treated'])

    logger.info(f"Aggregated ATT ({method}) = {overall:.4f} (SE={overall_se:.4f})")

    return {
        'overall_att': overall,
        'overall_se': overall_se,
        'ci_lower': overall - z_crit * overall_se,
        'ci_upper': overall + z_crit * overall_se,
        'method': method,
        'table': table,
    }


def staggered_did(
    df: pd.DataFrame,
    outcome_col: str,
    unit_col: str,
    time_col: str,
    group_col: str,
    control_group: ControlGroup = "never_treated",
    alpha: Optional[float] = None
) -> Dict:
    """
    スタガード採用デザインDID（異なる時点で処置を受ける場合）

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome_col : str
        アウトカム変数
    unit_col : str
        個体ID
    time_col : str
        時点
    group_col : str
        最初に処置を受けた時点（0 または NaN は未処置）
    control_group : str
        "never_treated" または "not_yet_treated"
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'overall_att', 'overall_se', 'ci_lower', 'ci_upper', 'cohort_results',
        'n_cohorts', 'n_never_treated', 'group_time_att', 'event_study', 'control_group'

    Notes
    -----
    スタガードDIDの課題:
    - 異なる処置タイミングが存在
    - 標準的なTwo-way Fixed Effectsはバイアスを持つ
    - ATT(g,t) を推定してから集計する Callaway & Sant'Anna (2021) の手順に従います
    """
    logger.info(f"Starting staggered DID estimation with control group: {control_group}")

    att_gt = group_time_att(df, outcome_col, unit_col, time_col, group_col, control_group, alpha)
    by_group = aggregate_group_time_att(att_gt, method="group", alpha=alpha)
    dynamic = aggregate_group_time_att(att_gt, method="dynamic", alpha=alpha)

    cohort_results = [
        {
            'cohort': row['Group'],
            'att': row['ATT'],
            'se': row['SE'],
            'n_treated': row['N_Treated'],
        }
        for _, row in by_group['table'].iterrows()
    ]

    first = df.groupby(unit_col)[group_col].first()
    n_never_treated = int(_is_never_treated(first).sum())

    logger.info(f"Staggered DID completed - Overall ATT: {by_group['overall_att']:.4f}")

    return {
        'overall_att': by_group['overall_att'],
        'overall_se': by_group['overall_se'],
        'ci_lower': by_group['ci_lower'],
        'ci_upper': by_group['ci_upper'],
        'cohort_results': cohort_results,
        'n_cohorts': len(cohort_results),
        'n_never_treated': n_never_treated,
        'group_time_att': att_gt,
        'event_study': dynamic['table'],
        'control_group': control_group,
    }
