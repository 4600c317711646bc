"""
ランダム化実験モジュール

処置の割り付けと、ランダム化実験での平均処置効果（ATE）の推定を提供します。

主な機能：
1. 完全ランダム化・ブロックランダム化・クラスターランダム化
2. 割り付け後の共変量バランスチェック
3. 平均の差（Neyman 分散）と Lin (2013) の回帰調整推定量
4. Fisher の鋭い帰無仮説に基づくランダム化推論
"""

import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional
import logging
import statsmodels.api as sm

from .constants import StatisticalConfig
from .exceptions import InsufficientDataError, InvalidInputError
from .psm_diagnostics import calculate_smd, evaluate_balance, _is_binary
from .utils import resolve_alpha, make_rng, normal_critical_value, interpret_significance
from .validators import (
    validate_columns, validate_binary_array, validate_positive_integer, validate_probability
)

logger = logging.getLogger(__name__)


def complete_randomization(
    n: int,
    n_treated: Optional[int] = None,
    p: float = 0.5,
    random_state: Optional[int] = None
) -> np.ndarray:
    """
    完全ランダム化

    ちょうど n_treated 人を処置群に割り付けます。

    Parameters
    ----------
    n : int
        サンプルサイズ
    n_treated : int, optional
        処置群の人数。None の場合は round(n × p)
    p : float
        処置割合
    random_state : int, optional
        乱数シード

    Returns
    -------
    np.ndarray
        0/1 の割り付けベクトル
    """
    validate_positive_integer(n, "n")
    validate_probability(p, "p")
    if n_treated is None:
        n_treated = int(round(n * p))
    if not 0 <= n_treated <= n:
        raise InvalidInputError(f"n_treated must be between 0 and {n}, got {n_treated}")

    rng = make_rng(random_state)
    assignment = np.zeros(n, dtype=int)
    assignment[rng.choice(n, size=n_treated, replace=False)] = 1
    return assignment


def block_randomization(
    df: pd.DataFrame,
    block_col: str,
    p: float = 0.5,
    random_state: Optional[int] = None
) -> pd.Series:
    """
    ブロック（層別）ランダム化

    各ブロック内で完全ランダム化を行うため、ブロック変数は両群で完全にバランスします。

    Returns
    -------
    pd.Series
        df.index に揃えた 0/1 の割り付け
    """
    validate_columns(df, [block_col], "block randomization")
    rng = make_rng(random_state)

    assignment = pd.Series(0, index=df.index, name="treatment")
    for _, idx in df.groupby(block_col).groups.items():
        assignment.loc[idx] = complete_randomization(len(idx), p=p, random_state=rng)

    logger.info(f"Block randomization - {df[block_col].nunique()} blocks, {int(assignment.sum())} treated")
    return assignment


def cluster_randomization(
    df: pd.DataFrame,
    cluster_col: str,
    p: float = 0.5,
    random_state: Optional[int] = None
) -> pd.Series:
    """
    クラスターランダム化

    クラスター単位で割り付け、同じクラスターの全員に同じ処置を与えます。
    """
    validate_columns(df, [cluster_col], "cluster randomization")
    clusters = pd.unique(df[cluster_col])
    cluster_assignment = complete_randomization(len(clusters), p=p, random_state=random_state)
    mapping = dict(zip(clusters, cluster_assignment))

    assignment = df[cluster_col].map(mapping).astype(int).rename("treatment")
    logger.info(f"Cluster randomization - {int(cluster_assignment.sum())}/{len(clusters)} clusters treated")
    return assignment


def balance_table(df: pd.DataFrame, treatment_col: str, covariates: List[str]) -> pd.DataFrame:
    """
    割り付け後の共変量バランス表

    Returns
    -------
    pd.DataFrame
        'Covariate', 'Mean_Treated', 'Mean_Control', 'SMD', 'P_Value', 'Balance'
    """
    validate_columns(df, [treatment_col] + list(covariates), "balance table")
    validate_binary_array(df[treatment_col].values, treatment_col)

    treated = df[df[treatment_col] == 1]
    control = df[df[treatment_col] == 0]

    rows = []
    for name in covariates:
        smd = calculate_smd(treated[name].values, control[name].values, not _is_binary(df[name]))
        _, p_value = stats.ttest_ind(treated[name], control[name], equal_var=False)
        rows.append({
            'Covariate': name,
            'Mean_Treated': treated[name].mean(),
            'Mean_Control': control[name].mean(),
            'SMD': smd,
            'P_Value': float(p_value),
            'Balance': evaluate_balance(smd),
        })

    return pd.DataFrame(rows)


def _split_outcome(df: pd.DataFrame, outcome: str, treatment: str):
    validate_columns(df, [outcome, treatment], "treatment effect estimation")
    validate_binary_array(df[treatment].values, treatment)
    y1 = df.loc[df[treatment] == 1, outcome].to_numpy(dtype=float)
    y0 = df.loc[df[treatment] == 0, outcome].to_numpy(dtype=float)
    if len(y1) < 2 or len(y0) < 2:
        raise InsufficientDataError(
            f"Each arm needs at least 2 observations, got treated={len(y1)}, control={len(y0)}"
        )
    return y1, y0


def difference_in_means(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    alpha: Optional[float] = None
) -> Dict:
    """
    平均の差による ATE 推定

    Returns
    -------
    Dict
        'ate', 'se', 'z_statistic', 'p_value', 'ci_lower', 'ci_upper',
        'n_treated', 'n_control', 'interpretation'

    Notes
    -----
    Neyman の保守的な分散推定量:
    Var(ATE) = s1²/n1 + s0²/n0
    """
    alpha = resolve_alpha(alpha)
    y1, y0 = _split_outcome(df, outcome, treatment)

    ate = y1.mean() - y0.mean()
    se = np.sqrt(y1.var(ddof=1) / len(y1) + y0.var(ddof=1) / len(y0))
    z = ate / se if se > 0 else np.nan
    p_value = 2 * (1 - stats.norm.cdf(abs(z))) if se > 0 else np.nan
    z_crit = normal_critical_value(alpha)

    logger.info(f"Difference in means - ATE={ate:.4f} (SE={se:.4f})")

    return {
        'ate': float(ate),
        'se': float(se),
        'z_statistic': float(z),
        'p_value': float(p_value),
        'ci_lower': float(ate - z_crit * se),
        'ci_upper': float(ate + z_crit * se),
        'n_treated': len(y1),
        'n_control': len(y0),
        'interpretation': interpret_significance(p_value, alpha, "ATE"),
    }


def regression_adjusted_ate(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    covariates: List[str],
    alpha: Optional[float] = None
) -> Dict:
    """
    Lin (2013) の回帰調整推定量

    中心化した共変量と処置の交互作用を含めた OLS により、
    ランダム化実験で精度を落とさない ATE 推定を行います。

    Returns
    -------
    Dict
        'ate', 'se', 'p_value', 'ci_lower', 'ci_upper', 'model'

    Notes
    -----
    Y = α + τ T + β'(X - X̄) + γ'T(X - X̄) + ε
    SE は HC2 頑健標準誤差です。

    References
    ----------
    Lin, W. (2013). "Agnostic notes on regression adjustments to experimental data:
    Reexamining Freedman's critique." Annals of Applied Statistics, 7(1), 295-318.
    """
    alpha = resolve_alpha(alpha)
    covariates = list(covariates)
    validate_columns(df, [outcome, treatment] + covariates, "regression-adjusted ATE")
    validate_binary_array(df[treatment].values, treatment)

    data = df[[outcome, treatment] + covariates].dropna()
    centered = data[covariates] - data[covariates].mean()
    design = pd.DataFrame({treatment: data[treatment].astype(float)}, index=data.index)
    for name in covariates:
        design[name] = centered[name]
        design[f"{treatment}:{name}"] = data[treatment] * centered[name]

    results = sm.OLS(data[outcome].astype(float), sm.add_constant(design)).fit(cov_type="HC2")
    ci = results.conf_int(alpha=alpha).loc[treatment]

    ate = float(results.params[treatment])
    logger.info(f"Lin regression adjustment - ATE={ate:.4f} (HC2 SE={results.bse[treatment]:.4f})")

    return {
        'ate': ate,
        'se': float(results.bse[treatment]),
        'p_value': float(results.pvalues[treatment]),
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'model': results,
    }


def randomization_inference(
    df: pd.DataFrame,
    outcome: str,
    treatment: str,
    n_permutations: Optional[int] = None,
    block_col: Optional[str] = None,
    random_state: Optional[int] = None
) -> Dict:
    """
    Fisher のランダム化推論

    「全ての個体で処置効果がゼロ」という鋭い帰無仮説の下で、
    実際の割り付け方法を再現して処置ラベルを並べ替えます。

    Parameters
    ----------
    block_col : str, optional
        指定した場合はブロック内でのみ並べ替えます

    Returns
    -------
    Dict
        'observed_ate', 'p_value', 'null_distribution', 'n_permutations'
    """
    if n_permutations is None:
        n_permutations = StatisticalConfig.get_n_permutations()
    validate_positive_integer(n_permutations, "n_permutations")

    columns = [outcome, treatment] + ([block_col] if block_col else [])
    validate_columns(df, columns, "randomization inference")
    y1, y0 = _split_outcome(df, outcome, treatment)

    rng = make_rng(random_state)
    y = df[outcome].to_numpy(dtype=float)
    t = df[treatment].to_numpy(dtype=int)
    observed = y1.mean() - y0.mean()

    if block_col:
        blocks = df[block_col].to_numpy()
        block_index = [np.flatnonzero(blocks == b) for b in pd.unique(blocks)]
    else:
        block_index = [np.arange(len(df))]

    null = np.empty(n_permutations)
    for i in range(n_permutations):
        t_perm = t.copy()
        for idx in block_index:
            t_perm[idx] = rng.permutation(t[idx])
        null[i] = y[t_perm == 1].mean() - y[t_perm == 0].mean()

    p_value = (np.sum(np.abs(null) >= abs(observed) - 1e-12) + 1) / (n_permutations + 1)

    logger.info(f"Randomization inference - ATE={observed:.4f}, p={p_value:.4f}, B={n_permutations}")

    return {
        'observed_ate': float(observed),
        'p_value': float(p_value),
        'null_distribution': null,
        'n_permutations': n_permutations,
    }
