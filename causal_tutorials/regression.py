"""
回帰分析モジュール

線形回帰・一般化線形モデルと、回帰の因果的解釈に関わる
教材用の分解（FWL定理、欠落変数バイアス）を提供します。

主な機能：
1. OLS（頑健標準誤差・クラスター頑健標準誤差）
2. GLM（ロジット、ポアソン）とオッズ比
3. ロジットの平均限界効果
4. 複数モデルの比較表
5. Frisch-Waugh-Lovell 定理の確認
6. 欠落変数バイアスの分解
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional
import logging
import statsmodels.api as sm
import statsmodels.formula.api as smf

from .exceptions import InvalidInputError, EstimationError
from .utils import resolve_alpha, get_significance_stars
from .validators import validate_columns

logger = logging.getLogger(__name__)

ROBUST_COV_TYPES = ("nonrobust", "HC0", "HC1", "HC2", "HC3", "cluster")


def coefficient_table(results, alpha: Optional[float] = None) -> pd.DataFrame:
    """
    statsmodels の推定結果から係数表を作成

    Parameters
    ----------
    results : statsmodels の Results オブジェクト
        推定結果
    alpha : float, optional
        信頼区間の有意水準

    Returns
    -------
    pd.DataFrame
        'Variable', 'Coefficient', 'SE', 'T_Statistic', 'P_Value',
        'CI_Lower', 'CI_Upper', 'Significance'
    """
    alpha = resolve_alpha(alpha)
    ci = results.conf_int(alpha=alpha)

    table = pd.DataFrame({
        'Variable': results.params.index,
        'Coefficient': results.params.values,
        'SE': results.bse.values,
        'T_Statistic': results.tvalues.values,
        'P_Value': results.pvalues.values,
        'CI_Lower': ci.iloc[:, 0].values,
        'CI_Upper': ci.iloc[:, 1].values,
    })
    table['Significance'] = table['P_Value'].apply(get_significance_stars)
    return table.reset_index(drop=True)


def fit_ols(
    df: pd.DataFrame,
    formula: str,
    cov_type: str = "nonrobust",
    cluster_col: Optional[str] = None,
    alpha: Optional[float] = None
) -> Dict:
    """
    OLS 回帰

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    formula : str
        patsy 形式の回帰式（例: "wage ~ educ + exper"）
    cov_type : str
        "nonrobust", "HC0"〜"HC3", "cluster"
    cluster_col : str, optional
        cov_type="cluster" のときのクラスター列
    alpha : float, optional
        信頼区間の有意水準

    Returns
    -------
    Dict
        'params', 'bse', 'pvalues', 'conf_int', 'rsquared', 'rsquared_adj',
        'nobs', 'coefficient_table', 'model'

    Examples
    --------
    >>> result = fit_ols(df, "y ~ treatment + x1", cov_type="HC1")
    >>> result['params']['treatment']
    """
    if cov_type not in ROBUST_COV_TYPES:
        raise ValueError(f"Unknown cov_type: {cov_type}")
    if cov_type == "cluster" and cluster_col is None:
        raise InvalidInputError("cov_type='cluster' requires cluster_col")
    if not isinstance(df, pd.DataFrame):
        raise InvalidInputError(f"fit_ols expects a pandas DataFrame, got {type(df).__name__}")

    alpha = resolve_alpha(alpha)
    model = smf.ols(formula, data=df)

    if cov_type == "cluster":
        validate_columns(df, [cluster_col], "clustered OLS")
        groups = df.loc[model.data.row_labels, cluster_col]
        results = model.fit(cov_type="cluster", cov_kwds={'groups': pd.factorize(groups)[0]})
    else:
        results = model.fit(cov_type=cov_type)

    logger.info(f"OLS fitted: {formula} (n={int(results.nobs)}, cov={cov_type}, R2={results.rsquared:.3f})")

    return {
        'params': results.params,
        'bse': results.bse,
        'pvalues': results.pvalues,
        'conf_int': results.conf_int(alpha=alpha),
        'rsquared': float(results.rsquared),
        'rsquared_adj': float(results.rsquared_adj),
        'nobs': int(results.nobs),
        'cov_type': cov_type,
        'coefficient_table': coefficient_table(results, alpha),
        'model': results,
    }


def fit_glm(
    df: pd.DataFrame,
    formula: str,
    family: str = "binomial",
    alpha: Optional[float] = None
) -> Dict:
    """
    一般化線形モデル

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    formula : str
        回帰式
    family : str
        "binomial"（ロジットリンク）, "poisson"（対数リンク）, "gaussian"
    alpha : float, optional
        信頼区間の有意水準

    Returns
    -------
    Dict
        'params', 'bse', 'pvalues', 'deviance', 'aic', 'nobs',
        'coefficient_table', 'model'

    Notes
    -----
    binomial / poisson では係数表に 'Exp_Coefficient'（オッズ比 / 発生率比）を追加します。
    """
    families = {
        'binomial': sm.families.Binomial,
        'poisson': sm.families.Poisson,
        'gaussian': sm.families.Gaussian,
    }
    if family not in families:
        raise ValueError(f"Unknown family: {family}")

    alpha = resolve_alpha(alpha)
    results = smf.glm(formula, data=df, family=families[family]()).fit()

    table = coefficient_table(results, alpha)
    if family in ("binomial", "poisson"):
        table['Exp_Coefficient'] = np.exp(table['Coefficient'])

    logger.info(f"GLM ({family}) fitted: {formula} (n={int(results.nobs)}, deviance={results.deviance:.2f})")

    return {
        'params': results.params,
        'bse': results.bse,
        'pvalues': results.pvalues,
        'deviance': float(results.deviance),
        'aic': float(results.aic),
        'nobs': int(results.nobs),
        'family': family,
        'coefficient_table': table,
        'model': results,
    }


def fit_logit(df: pd.DataFrame, formula: str) -> Dict:
    """
    ロジット回帰と平均限界効果（AME）

    Returns
    -------
    Dict
        'params', 'odds_ratios', 'marginal_effects'（DataFrame）, 'pseudo_rsquared', 'model'

    Notes
    -----
    ロジット係数は対数オッズの変化です。確率の変化で解釈するには
    平均限界効果 dP/dx を用います。
    """
    try:
        results = smf.logit(formula, data=df).fit(disp=0)
    except np.linalg.LinAlgError as e:
        logger.error(f"Logit estimation failed: {e}")
        raise EstimationError(f"Logit estimation failed (singular design): {e}") from e

    margeff = results.get_margeff(at="overall")
    names = [name for name in results.params.index if name != "Intercept"]
    marginal = pd.DataFrame({
        'Variable': names,
        'AME': np.asarray(margeff.margeff),
        'SE': np.asarray(margeff.margeff_se),
        'P_Value': np.asarray(margeff.pvalues),
    })

    logger.info(f"Logit fitted: {formula} (pseudo R2={results.prsquared:.3f})")

    return {
        'params': results.params,
        'odds_ratios': np.exp(results.params),
        'marginal_effects': marginal,
        'pseudo_rsquared': float(results.prsquared),
        'model': results,
    }


def regression_table(models: Dict[str, Dict], decimals: int = 3) -> pd.DataFrame:
    """
    複数モデルの係数を横並びにした比較表

    Parameters
    ----------
    models : Dict[str, Dict]
        モデル名 -> fit_ols / fit_glm の結果
    decimals : int
        小数点以下の桁数

    Returns
    -------
    pd.DataFrame
        行 = 変数（+ N, R2）、列 = モデル名、セル = "係数 (SE)有意性"
    """
    if not models:
        raise InvalidInputError("models must not be empty")

    variables: List[str] = []
    for result in models.values():
        for name in result['params'].index:
            if name not in variables:
                variables.append(name)

    fmt = f"{{:.{decimals}f}}"
    columns = {}
    for model_name, result in models.items():
        cells = []
        for var in variables:
            if var in result['params'].index:
                coef = result['params'][var]
                se = result['bse'][var]
                stars = get_significance_stars(result['pvalues'][var])
                cells.append(f"{fmt.format(coef)} ({fmt.format(se)}){stars}")
            else:
                cells.append("")
        cells.append(str(result['nobs']))
        rsq = result.get('rsquared')
        cells.append(fmt.format(rsq) if rsq is not None else "")
        columns[model_name] = cells

    return pd.DataFrame(columns, index=variables + ['N', 'R2'])


def frisch_waugh_lovell(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    controls: List[str]
) -> Dict:
    """
    Frisch-Waugh-Lovell 定理の確認

    重回帰の処置係数は、処置とアウトカムの双方から統制変数の影響を
    取り除いた残差同士の単回帰係数に一致します。

    Returns
    -------
    Dict
        'full_coefficient', 'residualized_coefficient', 'difference',
        'treatment_residuals', 'outcome_residuals'
    """
    validate_columns(df, [outcome, treatment] + list(controls), "FWL decomposition")
    data = df[[outcome, treatment] + list(controls)].dropna()

    X_controls = sm.add_constant(data[list(controls)])
    full = sm.OLS(data[outcome], sm.add_constant(data[[treatment] + list(controls)])).fit()

    t_resid = sm.OLS(data[treatment], X_controls).fit().resid
    y_resid = sm.OLS(data[outcome], X_controls).fit().resid
    partial = sm.OLS(y_resid, sm.add_constant(t_resid.rename(treatment))).fit()

    full_coef = float(full.params[treatment])
    resid_coef = float(partial.params[treatment])

    logger.info(f"FWL - full={full_coef:.6f}, residualized={resid_coef:.6f}")

    return {
        'full_coefficient': full_coef,
        'residualized_coefficient': resid_coef,
        'difference': abs(full_coef - resid_coef),
        'treatment_residuals': t_resid,
        'outcome_residuals': y_resid,
    }


def omitted_variable_bias(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    omitted: str,
    controls: Optional[List[str]] = None
) -> Dict:
    """
    欠落変数バイアスの分解

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome : str
        アウトカム
    treatment : str
        処置変数
    omitted : str
        短い回帰で欠落させる変数
    controls : List[str], optional
        両方の回帰に含める統制変数

    Returns
    -------
    Dict
        'short_coefficient', 'long_coefficient', 'delta', 'gamma',
        'bias', 'bias_formula', 'interpretation'

    Notes
    -----
    短い回帰: Y = a + β_s T + e
    長い回帰: Y = a + β_l T + γ U + e
    補助回帰: U = d + δ T + v

    β_s - β_l = γ × δ は OLS の代数的恒等式として成り立ちます。
    """
    controls = list(controls or [])
    validate_columns(df, [outcome, treatment, omitted] + controls, "omitted variable bias")
    data = df[[outcome, treatment, omitted] + controls].dropna()

    short = sm.OLS(data[outcome], sm.add_constant(data[[treatment] + controls])).fit()
    long = sm.OLS(data[outcome], sm.add_constant(data[[treatment, omitted] + controls])).fit()
    aux = sm.OLS(data[omitted], sm.add_constant(data[[treatment] + controls])).fit()

    short_coef = float(short.params[treatment])
    long_coef = float(long.params[treatment])
    gamma = float(long.params[omitted])
    delta = float(aux.params[treatment])
    bias = short_coef - long_coef

    direction = "上方" if bias > 0 else "下方"
    interpretation = (
        f"{omitted} を欠落させると {treatment} の係数は {abs(bias):.3f} だけ{direction}にバイアスします"
        f"（γ={gamma:.3f} × δ={delta:.3f}）。"
    )

    logger.info(f"OVB - short={short_coef:.4f}, long={long_coef:.4f}, bias={bias:.4f}")

    return {
        'short_coefficient': short_coef,
        'long_coefficient': long_coef,
        'delta': delta,
        'gamma': gamma,
        'bias': bias,
        'bias_formula': gamma * delta,
        'interpretation': interpretation,
    }
