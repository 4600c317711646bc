"""
操作変数法モジュール

内生的な処置変数の因果効果を、操作変数を用いて推定します。

主な機能：
1. 第一段階の診断（部分F統計量、弱操作変数の判定）
2. 2段階最小二乗法（linearmodels IV2SLS）
3. 内生性の検定（Durbin-Wu-Hausman、制御関数アプローチ）
4. 過剰識別の検定（Sargan）
5. 二値操作変数の Wald 推定量
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional, Union
import logging
import statsmodels.api as sm
from linearmodels.iv import IV2SLS

from .constants import IVConfig, NumericalConfig
from .exceptions import EstimationError, InsufficientDataError, InvalidInputError
from .utils import resolve_alpha, normal_critical_value, interpret_significance
from .validators import validate_columns, validate_binary_array
from .types import IVResult

logger = logging.getLogger(__name__)

IV_COV_TYPES = ("unadjusted", "robust", "clustered")


def _as_list(names: Union[None, str, List[str]]) -> List[str]:
    if names is None:
        return []
    if isinstance(names, str):
        return [names]
    return list(names)


def _exog_matrix(data: pd.DataFrame, exog: List[str]) -> pd.DataFrame:
    return sm.add_constant(data[exog].astype(float), has_constant='add') if exog \
        else pd.DataFrame({'const': 1.0}, index=data.index)


def _prepare(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    validate_columns(df, columns, "instrumental variables")
    data = df[columns].dropna()
    if len(data) < len(columns) + 2:
        raise InsufficientDataError(
            f"IV estimation needs at least {len(columns) + 2} complete rows, got {len(data)}"
        )
    return data


def first_stage_diagnostics(
    df: pd.DataFrame,
    endogenous: str,
    instruments: Union[str, List[str]],
    exog: Optional[List[str]] = None
) -> Dict:
    """
    第一段階回帰の診断

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    endogenous : str
        内生変数
    instruments : str or List[str]
        除外操作変数
    exog : List[str], optional
        外生的な統制変数

    Returns
    -------
    Dict
        'coefficients', 'f_statistic', 'f_pvalue', 'partial_r2',
        'weak_instrument', 'threshold', 'model'

    Notes
    -----
    部分F統計量は、統制変数のみの制約付きモデルと操作変数を加えたモデルの
    F検定です。経験則として F < 10 は弱操作変数とみなします（Staiger & Stock, 1997）。
    """
    instruments = _as_list(instruments)
    exog = _as_list(exog)
    if not instruments:
        raise InvalidInputError("At least one instrument is required")
    data = _prepare(df, [endogenous] + instruments + exog)

    d = data[endogenous].astype(float)
    restricted = sm.OLS(d, _exog_matrix(data, exog)).fit()
    unrestricted = sm.OLS(d, _exog_matrix(data, exog + instruments)).fit()

    f_stat, f_pvalue, _ = unrestricted.compare_f_test(restricted)
    partial_r2 = (restricted.ssr - unrestricted.ssr) / restricted.ssr if restricted.ssr > 0 else 0.0
    threshold = IVConfig.get_weak_instrument_f()
    weak = bool(f_stat < threshold)

    if weak:
        logger.warning(f"Weak instrument: first-stage F={f_stat:.2f} < {threshold}")
    else:
        logger.info(f"First stage F={f_stat:.2f}, partial R2={partial_r2:.4f}")

    return {
        'coefficients': unrestricted.params[instruments],
        'f_statistic': float(f_stat),
        'f_pvalue': float(f_pvalue),
        'partial_r2': float(partial_r2),
        'weak_instrument': weak,
        'threshold': threshold,
        'model': unrestricted,
    }


def _control_function_test(data: pd.DataFrame, outcome: str, endogenous: str,
                           exog: List[str], first_stage) -> Dict:
    """制御関数による Durbin-Wu-Hausman 検定"""
    augmented = data.copy()
    augmented['_first_stage_residual'] = np.asarray(first_stage.resid)

    X = sm.add_constant(
        augmented[[endogenous] + exog + ['_first_stage_residual']].astype(float),
        has_constant='add'
    )
    results = sm.OLS(augmented[outcome].astype(float), X).fit(cov_type="HC1")

    return {
        'statistic': float(results.tvalues['_first_stage_residual']),
        'p_value': float(results.pvalues['_first_stage_residual']),
        'coefficient': float(results.params['_first_stage_residual']),
    }


def _sargan_test(data: pd.DataFrame, residuals: np.ndarray, instruments: List[str],
                 exog: List[str], n_endogenous: int) -> Dict:
    """Sargan 過剰識別検定: n × R²（2SLS残差を全外生変数に回帰）"""
    aux = sm.OLS(residuals, _exog_matrix(data, exog + instruments)).fit()
    statistic = len(data) * aux.rsquared
    df_sargan = len(instruments) - n_endogenous
    return {
        'statistic': float(statistic),
        'df': df_sargan,
        'p_value': float(1 - stats.chi2.cdf(statistic, df_sargan)),
    }


def two_stage_least_squares(
    df: pd.DataFrame,
    outcome: str,
    endogenous: str,
    instruments: Union[str, List[str]],
    exog: Optional[List[str]] = None,
    cov_type: str = "robust",
    cluster_col: Optional[str] = None,
    alpha: Optional[float] = None
) -> IVResult:
    """
    2段階最小二乗法（2SLS）

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome : str
        アウトカム
    endogenous : str
        内生変数（処置）
    instruments : str or List[str]
        除外操作変数
    exog : List[str], optional
        外生的な統制変数
    cov_type : str
        "unadjusted", "robust", "clustered"
    cluster_col : str, optional
        cov_type="clustered" のときのクラスター列
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'estimate', 'se', 'p_value', 'ci_lower', 'ci_upper', 'nobs',
        'first_stage', 'ols_estimate', 'ols_se', 'endogeneity_test',
        'overidentification_test', 'interpretation', 'model'

    Notes
    -----
    識別の仮定:
    1. 関連性: 操作変数が内生変数と相関する（第一段階で検証可能）
    2. 除外制約: 操作変数は内生変数を通じてのみアウトカムに影響する（検証不可能）
    3. 独立性: 操作変数は未観測の交絡要因と無相関
    """
    if cov_type not in IV_COV_TYPES:
        raise ValueError(f"Unknown cov_type: {cov_type}")
    if cov_type == "clustered" and cluster_col is None:
        raise InvalidInputError("cov_type='clustered' requires cluster_col")

    alpha = resolve_alpha(alpha)
    instruments = _as_list(instruments)
    exog = _as_list(exog)
    columns = [outcome, endogenous] + instruments + exog + ([cluster_col] if cluster_col else [])
    data = _prepare(df, list(dict.fromkeys(columns)))

    first_stage = first_stage_diagnostics(data, endogenous, instruments, exog)

    model = IV2SLS(
        data[outcome].astype(float),
        _exog_matrix(data, exog),
        data[[endogenous]].astype(float),
        data[instruments].astype(float),
    )
    if cov_type == "clustered":
        results = model.fit(cov_type="clustered", clusters=pd.Series(
            pd.factorize(data[cluster_col])[0], index=data.index))
    else:
        results = model.fit(cov_type=cov_type)

    estimate = float(results.params[endogenous])
    se = float(results.std_errors[endogenous])
    p_value = float(results.pvalues[endogenous])
    ci = results.conf_int(level=1 - alpha).loc[endogenous]

    ols = sm.OLS(
        data[outcome].astype(float), _exog_matrix(data, [endogenous] + exog)
    ).fit(cov_type="HC1")

    endogeneity = _control_function_test(data, outcome, endogenous, exog, first_stage['model'])
    overid = None
    if len(instruments) > 1:
        overid = _sargan_test(data, np.asarray(results.resids), instruments, exog, 1)

    interpretation = interpret_significance(p_value, alpha, "2SLS推定値")
    if first_stage['weak_instrument']:
        interpretation += (
            f"\n⚠️ 第一段階F={first_stage['f_statistic']:.1f} は弱操作変数の目安を下回ります。"
            f"2SLS推定値はOLS方向にバイアスし、信頼区間は過小になります。"
        )
    if endogeneity['p_value'] < alpha:
        interpretation += "\n内生性検定が有意のため、OLS推定値は一致性を持たない可能性があります。"

    logger.info(f"2SLS - estimate={estimate:.4f} (SE={se:.4f}), OLS={ols.params[endogenous]:.4f}")

    return {
        'estimate': estimate,
        'se': se,
        'p_value': p_value,
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'nobs': int(results.nobs),
        'first_stage': first_stage,
        'ols_estimate': float(ols.params[endogenous]),
        'ols_se': float(ols.bse[endogenous]),
        'endogeneity_test': endogeneity,
        'overidentification_test': overid,
        'interpretation': interpretation,
        'model': results,
    }


def wald_estimator(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    instrument: str,
    alpha: Optional[float] = None
) -> Dict:
    """
    二値操作変数の Wald 推定量

    Returns
    -------
    Dict
        'reduced_form', 'first_stage', 'late', 'se', 'ci_lower', 'ci_upper', 'p_value'

    Notes
    -----
    LATE = (E[Y|Z=1] - E[Y|Z=0]) / (E[D|Z=1] - E[D|Z=0])

    標準誤差はデルタ法:
    Var(LATE) ≈ [Var(RF) + LATE² Var(FS) - 2 LATE Cov(RF, FS)] / FS²
    """
    alpha = resolve_alpha(alpha)
    data = _prepare(df, [outcome, treatment, instrument])
    validate_binary_array(data[instrument].values, instrument)

    groups = {z: data[data[instrument] == z] for z in (0, 1)}
    if min(len(g) for g in groups.values()) < 2:
        raise InsufficientDataError("Each instrument arm needs at least 2 observations")

    reduced_form = groups[1][outcome].mean() - groups[0][outcome].mean()
    first_stage = groups[1][treatment].mean() - groups[0][treatment].mean()

    if abs(first_stage) < NumericalConfig.get_epsilon():
        raise EstimationError(
            f"First stage is zero ({first_stage:.2e}): the instrument does not shift {treatment}"
        )

    late = reduced_form / first_stage

    var_rf = sum(g[outcome].var(ddof=1) / len(g) for g in groups.values())
    var_fs = sum(g[treatment].var(ddof=1) / len(g) for g in groups.values())
    cov_rf_fs = sum(np.cov(g[outcome], g[treatment], ddof=1)[0, 1] / len(g) for g in groups.values())
    variance = (var_rf + late ** 2 * var_fs - 2 * late * cov_rf_fs) / first_stage ** 2
    se = np.sqrt(max(variance, 0.0))

    z_crit = normal_critical_value(alpha)
    p_value = 2 * (1 - stats.norm.cdf(abs(late / se))) if se > 0 else np.nan

    logger.info(f"Wald estimator - RF={reduced_form:.4f}, FS={first_stage:.4f}, LATE={late:.4f}")

    return {
        'reduced_form': float(reduced_form),
        'first_stage': float(first_stage),
        'late': float(late),
        'se': float(se),
        'ci_lower': float(late - z_crit * se),
        'ci_upper': float(late + z_crit * se),
        'p_value': float(p_value),
    }


def compare_ols_iv(
    df: pd.DataFrame,
    outcome: str,
    endogenous: str,
    instruments: Union[str, List[str]],
    exog: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    OLS と 2SLS の比較表

    Returns
    -------
    pd.DataFrame
        'Method', 'Estimate', 'SE', 'CI_Lower', 'CI_Upper'
    """
    iv = two_stage_least_squares(df, outcome, endogenous, instruments, exog)
    z_crit = normal_critical_value(resolve_alpha())

    return pd.DataFrame([
        {
            'Method': 'OLS',
            'Estimate': iv['ols_estimate'],
            'SE': iv['ols_se'],
            'CI_Lower': iv['ols_estimate'] - z_crit * iv['ols_se'],
            'CI_Upper': iv['ols_estimate'] + z_crit * iv['ols_se'],
        },
        {
            'Method': '2SLS',
            'Estimate': iv['estimate'],
            'SE': iv['se'],
            'CI_Lower': iv['ci_lower'],
            'CI_Upper': iv['ci_upper'],
        },
    ])
