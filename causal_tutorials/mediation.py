"""
媒介分析モジュール

処置の効果を、媒介変数を経由する間接効果と直接効果に分解します。

主な機能：
1. Baron & Kenny の回帰アプローチ（経路 a, b, c, c'）
2. Sobel 検定
3. 間接効果のブートストラップ信頼区間
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional
import logging
import statsmodels.api as sm

from .constants import BootstrapConfig, StatisticalConfig
from .exceptions import InsufficientDataError
from .utils import make_rng, format_ci, safe_division, log_execution_time
from .validators import validate_columns, validate_positive_integer, validate_probability

logger = logging.getLogger(__name__)


def _path(data: pd.DataFrame, dependent: str, regressors: List[str], name: str):
    results = sm.OLS(data[dependent].astype(float), sm.add_constant(data[regressors].astype(float))).fit()
    return float(results.params[name]), float(results.bse[name]), float(results.pvalues[name])


def _prepare(df: pd.DataFrame, treatment: str, mediator: str, outcome: str,
             covariates: Optional[List[str]]) -> pd.DataFrame:
    covariates = list(covariates or [])
    columns = [treatment, mediator, outcome] + covariates
    validate_columns(df, columns, "mediation analysis")
    data = df[columns].dropna()
    if len(data) < len(columns) + 2:
        raise InsufficientDataError(
            f"Mediation analysis needs at least {len(columns) + 2} complete rows, got {len(data)}"
        )
    return data


def baron_kenny(
    df: pd.DataFrame,
    treatment: str,
    mediator: str,
    outcome: str,
    covariates: Optional[List[str]] = None
) -> Dict:
    """
    Baron & Kenny の3本の回帰による経路係数

    Returns
    -------
    Dict
        'a', 'se_a', 'p_a'（T→M）,
        'b', 'se_b', 'p_b'（M→Y | T）,
        'c', 'se_c', 'p_c'（総効果）,
        'c_prime', 'se_c_prime', 'p_c_prime'（直接効果）

    Notes
    -----
    M = i1 + a T + e1
    Y = i2 + c T + e2
    Y = i3 + c' T + b M + e3

    線形モデルでは c = c' + a × b が成り立ちます。
    """
    covariates = list(covariates or [])
    data = _prepare(df, treatment, mediator, outcome, covariates)

    a, se_a, p_a = _path(data, mediator, [treatment] + covariates, treatment)
    c, se_c, p_c = _path(data, outcome, [treatment] + covariates, treatment)
    full = sm.OLS(
        data[outcome].astype(float),
        sm.add_constant(data[[treatment, mediator] + covariates].astype(float))
    ).fit()

    result = {
        'a': a, 'se_a': se_a, 'p_a': p_a,
        'b': float(full.params[mediator]), 'se_b': float(full.bse[mediator]),
        'p_b': float(full.pvalues[mediator]),
        'c': c, 'se_c': se_c, 'p_c': p_c,
        'c_prime': float(full.params[treatment]), 'se_c_prime': float(full.bse[treatment]),
        'p_c_prime': float(full.pvalues[treatment]),
        'n_observations': len(data),
    }

    logger.info(f"Baron-Kenny paths - a={a:.4f}, b={result['b']:.4f}, c={c:.4f}, c'={result['c_prime']:.4f}")
    return result


def sobel_test(a: float, se_a: float, b: float, se_b: float) -> Dict:
    """
    Sobel 検定

    Returns
    -------
    Dict
        'indirect_effect', 'se', 'z_statistic', 'p_value'

    Notes
    -----
    SE(ab) = sqrt(b² SE_a² + a² SE_b²)
    間接効果の分布は非対称なため、小標本ではブートストラップの方が信頼できます。
    """
    indirect = a * b
    se = np.sqrt(b ** 2 * se_a ** 2 + a ** 2 * se_b ** 2)
    z = safe_division(indirect, se, default=np.nan)
    p_value = 2 * (1 - stats.norm.cdf(abs(z))) if not np.isnan(z) else np.nan

    return {
        'indirect_effect': float(indirect),
        'se': float(se),
        'z_statistic': float(z),
        'p_value': float(p_value),
    }


def bootstrap_indirect_effect(
    df: pd.DataFrame,
    treatment: str,
    mediator: str,
    outcome: str,
    covariates: Optional[List[str]] = None,
    n_bootstrap: Optional[int] = None,
    ci_level: Optional[float] = None,
    random_state: Optional[int] = None
) -> Dict:
    """
    間接効果 a × b のパーセンタイル・ブートストラップ信頼区間

    Returns
    -------
    Dict
        'indirect_effect', 'ci_lower', 'ci_upper', 'se', 'bootstrap_distribution', 'n_bootstrap'
    """
    n_bootstrap = n_bootstrap or BootstrapConfig.get_n_bootstrap()
    ci_level = ci_level if ci_level is not None else StatisticalConfig.get_confidence_level()
    validate_positive_integer(n_bootstrap, "n_bootstrap")
    validate_probability(ci_level, "ci_level", allow_bounds=False)

    covariates = list(covariates or [])
    data = _prepare(df, treatment, mediator, outcome, covariates).reset_index(drop=True)
    rng = make_rng(random_state)

    def indirect(sample: pd.DataFrame) -> float:
        a = _path(sample, mediator, [treatment] + covariates, treatment)[0]
        b = _path(sample, outcome, [treatment, mediator] + covariates, mediator)[0]
        return a * b

    point = indirect(data)
    draws = np.empty(n_bootstrap)
    with log_execution_time(logger, f"Bootstrap indirect effect (B={n_bootstrap})"):
        for i in range(n_bootstrap):
            sample = data.iloc[rng.integers(0, len(data), size=len(data))]
            draws[i] = indirect(sample)

    tail = (1 - ci_level) / 2 * 100
    ci_lower, ci_upper = np.percentile(draws, [tail, 100 - tail])

    return {
        'indirect_effect': float(point),
        'ci_lower': float(ci_lower),
        'ci_upper': float(ci_upper),
        'se': float(draws.std(ddof=1)),
        'bootstrap_distribution': draws,
        'n_bootstrap': n_bootstrap,
    }


def mediation_analysis(
    df: pd.DataFrame,
    treatment: str,
    mediator: str,
    outcome: str,
    covariates: Optional[List[str]] = None,
    n_bootstrap: Optional[int] = None,
    random_state: Optional[int] = None
) -> Dict:
    """
    媒介分析の総合結果

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    treatment : str
        処置変数
    mediator : str
        媒介変数
    outcome : str
        アウトカム
    covariates : List[str], optional
        統制変数
    n_bootstrap : int, optional
        ブートストラップ回数
    random_state : int, optional
        乱数シード

    Returns
    -------
    Dict
        'total_effect', 'direct_effect', 'indirect_effect', 'proportion_mediated',
        'paths', 'sobel', 'bootstrap', 'interpretation'
    """
    paths = baron_kenny(df, treatment, mediator, outcome, covariates)
    sobel = sobel_test(paths['a'], paths['se_a'], paths['b'], paths['se_b'])
    boot = bootstrap_indirect_effect(
        df, treatment, mediator, outcome, covariates,
        n_bootstrap=n_bootstrap, random_state=random_state
    )

    indirect = paths['a'] * paths['b']
    proportion = safe_division(indirect, paths['c'], default=np.nan)
    significant = boot['ci_lower'] > 0 or boot['ci_upper'] < 0

    if significant:
        interpretation = (
            f"✅ 間接効果 {indirect:.3f} のブートストラップCI {format_ci(boot['ci_lower'], boot['ci_upper'])} は"
            f"0を含まず、{mediator} を通じた媒介が示唆されます（媒介割合 {proportion:.1%}）。"
        )
    else:
        interpretation = (
            f"⚠️ 間接効果 {indirect:.3f} のブートストラップCI {format_ci(boot['ci_lower'], boot['ci_upper'])} は"
            f"0を含み、媒介効果は確認できません。"
        )
    interpretation += "\n注意: 因果的な解釈には、媒介変数とアウトカムの間に未観測の交絡がないことが必要です。"

    logger.info(f"Mediation - total={paths['c']:.4f}, direct={paths['c_prime']:.4f}, indirect={indirect:.4f}")

    return {
        'total_effect': paths['c'],
        'direct_effect': paths['c_prime'],
        'indirect_effect': float(indirect),
        'proportion_mediated': float(proportion),
        'paths': paths,
        'sobel': sobel,
        'bootstrap': boot,
        'interpretation': interpretation,
    }
