"""
マッチング・重み付けモジュール

観察データで処置群と比較可能な対照群を構成し、処置群の平均処置効果（ATT）
などを推定します。

主な機能：
1. 傾向スコアの推定（ロジスティック回帰）
2. 傾向スコアの最近傍マッチング（カリパー付き、復元・非復元）
3. 完全一致マッチング・粗大化完全一致マッチング（CEM）
4. マッチング後データでの ATT 推定
5. 逆確率重み付け（IPW）
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Union
import logging
import statsmodels.api as sm
from sklearn.linear_model import LogisticRegression
from sklearn.neighbors import NearestNeighbors
from sklearn.preprocessing import StandardScaler

from .constants import MatchingConfig, NumericalConfig
from .exceptions import MatchingError, InsufficientDataError, InvalidInputError
from .utils import resolve_alpha, interpret_significance
from .validators import (
    validate_columns, validate_binary_array, validate_positive_integer, validate_probability
)
from .types import Estimand

logger = logging.getLogger(__name__)

WEIGHT_COL = "weight"


def estimate_propensity_score(
    df: pd.DataFrame,
    treatment_col: str,
    covariates: List[str],
    random_state: Optional[int] = None
) -> pd.Series:
    """
    ロジスティック回帰による傾向スコアの推定

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    treatment_col : str
        処置変数（0/1）
    covariates : List[str]
        共変量
    random_state : int, optional
        乱数シード

    Returns
    -------
    pd.Series
        df.index に揃えた傾向スコア（0と1から epsilon だけ離して丸める）
    """
    validate_columns(df, [treatment_col] + list(covariates), "propensity score")
    validate_binary_array(df[treatment_col].values, treatment_col)
    if df[treatment_col].nunique() < 2:
        raise InsufficientDataError("Propensity score estimation needs both treated and control units")

    X = StandardScaler().fit_transform(df[list(covariates)].astype(float))
    model = LogisticRegression(random_state=random_state, max_iter=1000)
    model.fit(X, df[treatment_col].astype(int))

    eps = NumericalConfig.get_epsilon()
    scores = np.clip(model.predict_proba(X)[:, 1], eps, 1 - eps)

    logger.info(f"Propensity scores estimated - treated mean={scores[df[treatment_col].values == 1].mean():.3f}, "
                f"control mean={scores[df[treatment_col].values == 0].mean():.3f}")

    return pd.Series(scores, index=df.index, name="propensity_score")


def _logit(p: np.ndarray) -> np.ndarray:
    return np.log(p / (1 - p))


def nearest_neighbor_match(
    df: pd.DataFrame,
    treatment_col: str,
    covariates: Optional[List[str]] = None,
    propensity_col: Optional[str] = None,
    caliper: Optional[float] = None,
    n_neighbors: int = 1,
    replace: bool = True,
    random_state: Optional[int] = None
) -> Dict:
    """
    傾向スコアのロジットによる最近傍マッチング

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    treatment_col : str
        処置変数（0/1）
    covariates : List[str], optional
        傾向スコア推定に使う共変量（propensity_col が無い場合は必須）
    propensity_col : str, optional
        推定済み傾向スコアの列
    caliper : float, optional
        ロジット傾向スコアの標準偏差を単位とするカリパー。None は設定値（0.2）、
        0 以下を指定するとカリパーなし
    n_neighbors : int
        処置群1人あたりの対照群の数
    replace : bool
        対照群の復元抽出を許すか
    random_state : int, optional
        乱数シード

    Returns
    -------
    Dict
        'pairs'（treated_index, control_index, distance）,
        'matched_data'（weight 列付き）, 'n_matched_treated',
        'n_unmatched_treated', 'n_matched_control', 'caliper_distance',
        'propensity_score'

    Raises
    ------
    MatchingError
        カリパー内に対照群が1人も見つからない場合

    Notes
    -----
    Austin (2011) の推奨に従い、カリパー幅はロジット傾向スコアの標準偏差の
    0.2 倍を既定値とします。
    非復元マッチングでは傾向スコアの高い処置群から順に貪欲に割り当てます。
    """
    validate_positive_integer(n_neighbors, "n_neighbors")
    validate_columns(df, [treatment_col], "nearest neighbor matching")

    if propensity_col is not None:
        validate_columns(df, [propensity_col], "nearest neighbor matching")
        ps = df[propensity_col].astype(float)
    elif covariates:
        ps = estimate_propensity_score(df, treatment_col, covariates, random_state)
    else:
        raise InvalidInputError("Either covariates or propensity_col must be given")

    eps = NumericalConfig.get_epsilon()
    logit_ps = pd.Series(_logit(np.clip(ps.values, eps, 1 - eps)), index=df.index)

    caliper = MatchingConfig.get_caliper() if caliper is None else caliper
    caliper_distance = caliper * logit_ps.std(ddof=1) if caliper > 0 else np.inf

    treated_idx = df.index[df[treatment_col] == 1]
    control_idx = df.index[df[treatment_col] == 0]
    if len(treated_idx) == 0 or len(control_idx) == 0:
        raise InsufficientDataError("Matching needs both treated and control units")

    control_scores = logit_ps.loc[control_idx].values.reshape(-1, 1)
    nn = NearestNeighbors().fit(control_scores)

    pairs = []
    if replace:
        k = min(n_neighbors, len(control_idx))
        distances, indices = nn.kneighbors(logit_ps.loc[treated_idx].values.reshape(-1, 1), n_neighbors=k)
        for t, dist_row, idx_row in zip(treated_idx, distances, indices):
            for dist, j in zip(dist_row, idx_row):
                if dist <= caliper_distance:
                    pairs.append((t, control_idx[j], float(dist)))
    else:
        used = set()
        order = logit_ps.loc[treated_idx].sort_values(ascending=False).index
        distances, indices = nn.kneighbors(
            logit_ps.loc[order].values.reshape(-1, 1), n_neighbors=len(control_idx)
        )
        for t, dist_row, idx_row in zip(order, distances, indices):
            n_found = 0
            for dist, j in zip(dist_row, idx_row):
                if dist > caliper_distance or n_found >= n_neighbors:
                    break
                if j in used:
                    continue
                used.add(j)
                pairs.append((t, control_idx[j], float(dist)))
                n_found += 1

    if not pairs:
        raise MatchingError(
            f"No treated unit found a control within the caliper "
            f"({caliper} SD = {caliper_distance:.4f} on the logit scale)"
        )

    pairs_df = pd.DataFrame(pairs, columns=['treated_index', 'control_index', 'distance'])

    # 処置群1人の重みを k 人の対照群に 1/k ずつ配分
    per_treated = pairs_df.groupby('treated_index')['control_index'].transform('size')
    control_weights = (1.0 / per_treated).groupby(pairs_df['control_index']).sum()
    matched_treated = pd.unique(pairs_df['treated_index'])

    treated_part = df.loc[matched_treated].copy()
    treated_part[WEIGHT_COL] = 1.0
    control_part = df.loc[control_weights.index].copy()
    control_part[WEIGHT_COL] = control_weights.values
    matched = pd.concat([treated_part, control_part])
    matched['propensity_score'] = ps.loc[matched.index].values

    n_unmatched = len(treated_idx) - len(matched_treated)
    if n_unmatched > 0:
        logger.warning(f"{n_unmatched} treated unit(s) dropped outside the caliper")
    logger.info(f"Nearest neighbor matching - {len(matched_treated)} treated matched to "
                f"{len(control_weights)} controls (caliper={caliper_distance:.4f}, replace={replace})")

    return {
        'pairs': pairs_df,
        'matched_data': matched,
        'n_matched_treated': len(matched_treated),
        'n_unmatched_treated': n_unmatched,
        'n_matched_control': len(control_weights),
        'caliper_distance': float(caliper_distance),
        'propensity_score': ps,
    }


def _stratum_weights(df: pd.DataFrame, treatment_col: str, strata: pd.Series) -> Dict:
    """層ごとの重み: 処置群は1、対照群は (n_T_s/n_C_s)·(N_C/N_T)"""
    frame = pd.DataFrame({'t': df[treatment_col].values, 's': strata.values}, index=df.index)
    counts = frame.groupby(['s', 't']).size().unstack(fill_value=0)
    for arm in (0, 1):
        if arm not in counts.columns:
            counts[arm] = 0
    valid = counts[(counts[0] > 0) & (counts[1] > 0)]

    if valid.empty:
        raise MatchingError("No stratum contains both treated and control units")

    keep = frame['s'].isin(valid.index)
    kept = frame[keep]
    n_treated = int((kept['t'] == 1).sum())
    n_control = int((kept['t'] == 0).sum())

    ratio = (valid[1] / valid[0]) * (n_control / n_treated)
    weights = np.where(kept['t'] == 1, 1.0, kept['s'].map(ratio).values)

    matched = df.loc[kept.index].copy()
    matched['stratum'] = kept['s'].values
    matched[WEIGHT_COL] = weights

    n_treated_total = int((frame['t'] == 1).sum())
    return {
        'matched_data': matched,
        'n_strata': len(valid),
        'n_matched_treated': n_treated,
        'n_matched_control': n_control,
        'n_unmatched_treated': n_treated_total - n_treated,
    }


def exact_match(df: pd.DataFrame, treatment_col: str, covariates: List[str]) -> Dict:
    """
    完全一致マッチング

    全ての共変量の値が一致する層のうち、処置群と対照群の両方を含む層だけを残します。

    Returns
    -------
    Dict
        'matched_data'（stratum, weight 列付き）, 'n_strata',
        'n_matched_treated', 'n_matched_control', 'n_unmatched_treated'
    """
    validate_columns(df, [treatment_col] + list(covariates), "exact matching")
    validate_binary_array(df[treatment_col].values, treatment_col)

    strata = df[list(covariates)].astype(str).agg('|'.join, axis=1)
    result = _stratum_weights(df, treatment_col, strata)

    logger.info(f"Exact matching - {result['n_strata']} strata, "
                f"{result['n_matched_treated']} treated, {result['n_matched_control']} controls")
    return result


def coarsened_exact_match(
    df: pd.DataFrame,
    treatment_col: str,
    covariates: List[str],
    n_bins: Union[None, int, Dict[str, int]] = None
) -> Dict:
    """
    粗大化完全一致マッチング（Coarsened Exact Matching, CEM）

    Parameters
    ----------
    n_bins : int or Dict[str, int], optional
        連続変数の区間数。変数ごとに辞書で指定可能。None は設定値

    Returns
    -------
    Dict
        exact_match と同じキー（matched_data は元の値のまま）

    Notes
    -----
    区間数以下の値しか取らない変数（二値変数など）は粗大化しません。

    References
    ----------
    Iacus, S. M., King, G., & Porro, G. (2012). "Causal inference without balance checking:
    Coarsened exact matching." Political Analysis, 20(1), 1-24.
    """
    validate_columns(df, [treatment_col] + list(covariates), "coarsened exact matching")
    validate_binary_array(df[treatment_col].values, treatment_col)

    default_bins = MatchingConfig.get_cem_bins()
    coarsened = pd.DataFrame(index=df.index)
    for name in covariates:
        bins = n_bins.get(name, default_bins) if isinstance(n_bins, dict) else (n_bins or default_bins)
        validate_positive_integer(bins, f"n_bins[{name}]")
        if df[name].nunique() <= bins:
            coarsened[name] = df[name]
        else:
            coarsened[name] = pd.cut(df[name], bins=bins, labels=False, include_lowest=True)

    strata = coarsened.astype(str).agg('|'.join, axis=1)
    result = _stratum_weights(df, treatment_col, strata)

    logger.info(f"CEM - {result['n_strata']} strata, {result['n_matched_treated']} treated, "
                f"{result['n_unmatched_treated']} treated pruned")
    return result


def estimate_att(
    matched_df: pd.DataFrame,
    outcome: str,
    treatment_col: str,
    weight_col: str = WEIGHT_COL,
    alpha: Optional[float] = None
) -> Dict:
    """
    マッチング後データでの ATT 推定

    重み付き最小二乗法で処置ダミーに回帰します（HC1 頑健標準誤差）。

    Returns
    -------
    Dict
        'att', 'se', 'p_value', 'ci_lower', 'ci_upper', 'n_observations', 'interpretation'
    """
    alpha = resolve_alpha(alpha)
    validate_columns(matched_df, [outcome, treatment_col, weight_col], "ATT estimation")
    if matched_df[treatment_col].nunique() < 2:
        raise InsufficientDataError("Matched data must contain both treated and control units")

    X = sm.add_constant(matched_df[[treatment_col]].astype(float))
    results = sm.WLS(matched_df[outcome].astype(float), X,
                     weights=matched_df[weight_col].astype(float)).fit(cov_type="HC1")
    ci = results.conf_int(alpha=alpha).loc[treatment_col]

    att = float(results.params[treatment_col])
    p_value = float(results.pvalues[treatment_col])
    logger.info(f"ATT={att:.4f} (SE={results.bse[treatment_col]:.4f}, n={len(matched_df)})")

    return {
        'att': att,
        'se': float(results.bse[treatment_col]),
        'p_value': p_value,
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'n_observations': len(matched_df),
        'interpretation': interpret_significance(p_value, alpha, "ATT"),
    }


def inverse_probability_weighting(
    df: pd.DataFrame,
    outcome: str,
    treatment_col: str,
    covariates: List[str],
    estimand: Estimand = "ate",
    trim: Optional[float] = None,
    alpha: Optional[float] = None,
    random_state: Optional[int] = None
) -> Dict:
    """
    逆確率重み付け推定

    Parameters
    ----------
    estimand : str
        "ate" または "att"
    trim : float, optional
        傾向スコアが [trim, 1 - trim] の外にある観測を除外

    Returns
    -------
    Dict
        'estimate', 'se', 'p_value', 'ci_lower', 'ci_upper', 'estimand',
        'weights', 'propensity_score', 'n_trimmed'

    Notes
    -----
    ATE の重み: T/e(X) + (1-T)/(1-e(X))
    ATT の重み: T + (1-T) e(X)/(1-e(X))

    群ごとに重みを正規化する Hájek 推定量を用います。
    標準誤差は傾向スコアの推定誤差を無視した WLS の頑健標準誤差です。
    """
    if estimand not in ("ate", "att"):
        raise ValueError(f"Unknown estimand: {estimand}")
    alpha = resolve_alpha(alpha)
    validate_columns(df, [outcome, treatment_col] + list(covariates), "inverse probability weighting")

    ps = estimate_propensity_score(df, treatment_col, covariates, random_state)
    keep = pd.Series(True, index=df.index)
    if trim is not None:
        validate_probability(trim, "trim")
        if trim >= 0.5:
            raise InvalidInputError(f"trim must be below 0.5, got {trim}")
        keep = (ps >= trim) & (ps <= 1 - trim)
        if keep.sum() == 0:
            raise InsufficientDataError(f"No observations left after trimming at {trim}")

    data = df.loc[keep]
    e = ps.loc[keep]
    t = data[treatment_col].astype(float)
    y = data[outcome].astype(float)

    if estimand == "ate":
        weights = t / e + (1 - t) / (1 - e)
    else:
        weights = t + (1 - t) * e / (1 - e)
    weights = weights.rename(WEIGHT_COL)

    treated_mean = np.sum(weights * t * y) / np.sum(weights * t)
    control_mean = np.sum(weights * (1 - t) * y) / np.sum(weights * (1 - t))
    estimate = float(treated_mean - control_mean)

    wls = sm.WLS(y, sm.add_constant(t.to_frame(treatment_col)), weights=weights).fit(cov_type="HC1")
    se = float(wls.bse[treatment_col])
    ci = wls.conf_int(alpha=alpha).loc[treatment_col]

    n_trimmed = int((~keep).sum())
    if n_trimmed:
        logger.info(f"IPW trimming removed {n_trimmed} observation(s)")
    max_share = float(weights.max() / weights.sum())
    if max_share > 0.05:
        logger.warning(f"Extreme IPW weight: one unit carries {max_share:.1%} of the total weight")
    logger.info(f"IPW ({estimand.upper()}) - estimate={estimate:.4f} (SE={se:.4f})")

    return {
        'estimate': estimate,
        'se': se,
        'p_value': float(wls.pvalues[treatment_col]),
        'ci_lower': float(ci.iloc[0]),
        'ci_upper': float(ci.iloc[1]),
        'estimand': estimand,
        'weights': weights,
        'propensity_score': ps,
        'n_trimmed': n_trimmed,
    }
