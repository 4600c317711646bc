"""
パネルデータ分析モジュール

同一個体を複数時点で観測したデータから、時間不変の未観測異質性を
取り除いて効果を推定します。

主な機能：
1. 個体内変換（within 変換）
2. プーリングOLS・固定効果・二方向固定効果・変量効果・一階差分モデル
3. Hausman 検定（固定効果 vs 変量効果）
4. モデル比較表
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional, Sequence
import logging
import statsmodels.api as sm
from linearmodels.panel import PanelOLS, PooledOLS, RandomEffects, FirstDifferenceOLS

from .exceptions import InsufficientDataError
from .utils import resolve_alpha, get_significance_stars
from .validators import validate_columns, validate_unique_panel, validate_numeric_columns
from .types import PanelModel

logger = logging.getLogger(__name__)

PANEL_MODELS = ("pooled", "fe", "twfe", "re", "fd")
PANEL_COV_TYPES = ("unadjusted", "robust", "clustered")


def within_transform(df: pd.DataFrame, columns: List[str], entity_col: str) -> pd.DataFrame:
    """
    個体内平均からの偏差に変換

    Returns
    -------
    pd.DataFrame
        各列から個体平均を引いたデータ（entity_col はそのまま）

    Notes
    -----
    ỹ_it = y_it - ȳ_i
    変換後のOLSは固定効果推定量と一致します（自由度補正を除く）。
    """
    validate_columns(df, list(columns) + [entity_col], "within transform")
    transformed = df[[entity_col]].copy()
    means = df.groupby(entity_col)[list(columns)].transform('mean')
    for col in columns:
        transformed[col] = df[col] - means[col]
    return transformed


def _panel_frame(df: pd.DataFrame, outcome: str, regressors: List[str],
                 entity_col: str, time_col: str) -> pd.DataFrame:
    validate_columns(df, [outcome, entity_col, time_col] + regressors, "panel model")
    validate_numeric_columns(df, [outcome] + regressors)
    validate_unique_panel(df, entity_col, time_col)

    data = df[[entity_col, time_col, outcome] + regressors].dropna()
    if data[entity_col].nunique() < 2:
        raise InsufficientDataError("Panel models need at least 2 entities")
    return data.set_index([entity_col, time_col]).sort_index()


def fit_panel_model(
    df: pd.DataFrame,
    outcome: str,
    regressors: Sequence[str],
    entity_col: str,
    time_col: str,
    model: PanelModel = "pooled",
    cov_type: str = "clustered",
    alpha: Optional[float] = None
) -> Dict:
    """
    パネルモデルの推定

    Parameters
    ----------
    df : pd.DataFrame
        ロング形式のパネルデータ
    outcome : str
        アウトカム
    regressors : Sequence[str]
        説明変数
    entity_col : str
        個体ID列
    time_col : str
        時点列（数値）
    model : str
        "pooled", "fe"（個体固定効果）, "twfe"（個体+時点固定効果）,
        "re"（変量効果）, "fd"（一階差分）
    cov_type : str
        "unadjusted", "robust", "clustered"（個体クラスター）
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'params', 'std_errors', 'pvalues', 'conf_int', 'rsquared', 'nobs',
        'n_entities', 'model_type', 'coefficient_table', 'model'

    Notes
    -----
    固定効果モデルは時間不変の未観測要因 α_i と説明変数の相関を許容します。
    変量効果モデルは α_i が説明変数と無相関であることを仮定します。
    """
    if model not in PANEL_MODELS:
        raise ValueError(f"Unknown panel model: {model}")
    if cov_type not in PANEL_COV_TYPES:
        raise ValueError(f"Unknown cov_type: {cov_type}")

    alpha = resolve_alpha(alpha)
    regressors = list(regressors)
    data = _panel_frame(df, outcome, regressors, entity_col, time_col)

    y = data[outcome].astype(float)
    X = data[regressors].astype(float)

    if model == "pooled":
        estimator = PooledOLS(y, sm.add_constant(X))
    elif model == "fe":
        estimator = PanelOLS(y, sm.add_constant(X), entity_effects=True)
    elif model == "twfe":
        estimator = PanelOLS(y, sm.add_constant(X), entity_effects=True, time_effects=True)
    elif model == "re":
        estimator = RandomEffects(y, sm.add_constant(X))
    else:
        # 一階差分では定数項は識別されない
        estimator = FirstDifferenceOLS(y, X)

    if cov_type == "clustered":
        results = estimator.fit(cov_type="clustered", cluster_entity=True)
    else:
        results = estimator.fit(cov_type=cov_type)

    ci = results.conf_int(level=1 - alpha)
    table = pd.DataFrame({
        'Variable': results.params.index,
        'Coefficient': results.params.values,
        'SE': results.std_errors.values,
        'P_Value': results.pvalues.values,
        'CI_Lower': ci.iloc[:, 0].values,
        'CI_Upper': ci.iloc[:, 1].values,
    })
    table['Significance'] = table['P_Value'].apply(get_significance_stars)

    n_entities = int(data.index.get_level_values(0).nunique())
    logger.info(f"Panel model '{model}' fitted - n={int(results.nobs)}, entities={n_entities}, "
                f"R2={results.rsquared:.3f}")

    return {
        'params': results.params,
        'std_errors': results.std_errors,
        'pvalues': results.pvalues,
        'conf_int': ci,
        'rsquared': float(results.rsquared),
        'nobs': int(results.nobs),
        'n_entities': n_entities,
        'model_type': model,
        'coefficient_table': table,
        'model': results,
    }


def hausman_test(fe_result: Dict, re_result: Dict, alpha: Optional[float] = None) -> Dict:
    """
    Hausman 検定

    Parameters
    ----------
    fe_result : Dict
        fit_panel_model(model="fe") の結果
    re_result : Dict
        fit_panel_model(model="re") の結果
    alpha : float, optional
        有意水準

    Returns
    -------
    Dict
        'statistic', 'df', 'p_value', 'recommendation'

    Notes
    -----
    H = (b_FE - b_RE)' [V_FE - V_RE]^{-1} (b_FE - b_RE) ~ χ²(k)

    帰無仮説（α_i と説明変数が無相関）の下では両推定量は一致性を持ち、
    RE の方が効率的です。棄却されれば FE を選びます。
    """
    alpha = resolve_alpha(alpha)
    fe_model, re_model = fe_result['model'], re_result['model']
    common = [name for name in fe_model.params.index
              if name in re_model.params.index and name != 'const']
    if not common:
        raise InsufficientDataError("No common slope coefficients between FE and RE models")

    diff = (fe_model.params[common] - re_model.params[common]).values
    var_diff = (fe_model.cov.loc[common, common] - re_model.cov.loc[common, common]).values

    statistic = float(diff @ np.linalg.pinv(var_diff) @ diff)
    statistic = max(statistic, 0.0)
    df = len(common)
    p_value = float(1 - stats.chi2.cdf(statistic, df))

    if p_value < alpha:
        recommendation = f"❌ 帰無仮説を棄却（p={p_value:.3f} < {alpha}）: 個体効果が説明変数と相関しています。固定効果モデルを使用してください。"
    else:
        recommendation = f"✅ 帰無仮説を棄却できません（p={p_value:.3f} >= {alpha}）: 変量効果モデルが一致性を持ち、より効率的です。"

    logger.info(f"Hausman test - chi2={statistic:.3f}, df={df}, p={p_value:.4f}")

    return {
        'statistic': statistic,
        'df': df,
        'p_value': p_value,
        'recommendation': recommendation,
    }


def compare_panel_models(
    df: pd.DataFrame,
    outcome: str,
    regressors: Sequence[str],
    entity_col: str,
    time_col: str,
    models: Sequence[str] = ("pooled", "fe", "twfe", "re", "fd")
) -> pd.DataFrame:
    """
    複数のパネルモデルの係数を比較

    Returns
    -------
    pd.DataFrame
        行 = モデル、列 = 'Model', 各説明変数の係数と '<変数>_SE', 'R2', 'N'
    """
    rows = []
    for name in models:
        result = fit_panel_model(df, outcome, regressors, entity_col, time_col, model=name)
        row = {'Model': name}
        for var in regressors:
            row[var] = float(result['params'][var])
            row[f"{var}_SE"] = float(result['std_errors'][var])
        row['R2'] = result['rsquared']
        row['N'] = result['nobs']
        rows.append(row)

    return pd.DataFrame(rows)
