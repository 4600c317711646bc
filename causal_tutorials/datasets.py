"""
チュートリアル用データセット

各手法の前提を満たす（または意図的に破る）シミュレーションデータを生成します。
真の効果は df.attrs['true_effects'] に格納され、推定値と比較できます。

主な機能：
1. 手法ごとのデータ生成関数（乱数シードで再現可能）
2. CSV の読み込み（ローカルパスまたは URL）
"""

import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Sequence, Union
import logging

from .exceptions import InvalidInputError
from .randomization import block_randomization
from .utils import make_rng
from .validators import validate_positive_integer

logger = logging.getLogger(__name__)


def _finalize(df: pd.DataFrame, name: str, true_effects: Dict) -> pd.DataFrame:
    df.attrs['dataset'] = name
    df.attrs['true_effects'] = dict(true_effects)
    logger.debug(f"Generated dataset '{name}' with {len(df)} rows")
    return df


def _logistic(z: np.ndarray) -> np.ndarray:
    return 1 / (1 + np.exp(-z))


def make_experiment_data(
    n: int = 1000,
    ate: float = 2.0,
    n_blocks: int = 4,
    n_clusters: int = 40,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    ランダム化実験のデータ

    Returns
    -------
    pd.DataFrame
        'id', 'block', 'cluster', 'age', 'female', 'treatment', 'y'

    Notes
    -----
    Y = 5 + 0.05 age + 1.0 female + 0.5 block + ATE × T + u_cluster + ε
    処置はブロック内で完全ランダム化します。真の効果: ate
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    df = pd.DataFrame({
        'id': np.arange(n),
        'block': rng.integers(0, n_blocks, size=n),
        'cluster': rng.integers(0, n_clusters, size=n),
        'age': rng.normal(40, 10, size=n).round(),
        'female': rng.binomial(1, 0.5, size=n),
    })
    df['treatment'] = block_randomization(df, 'block', p=0.5, random_state=rng).values

    cluster_effect = rng.normal(0, 0.5, size=n_clusters)[df['cluster']]
    df['y'] = (5 + 0.05 * df['age'] + 1.0 * df['female'] + 0.5 * df['block']
               + ate * df['treatment'] + cluster_effect + rng.normal(0, 2, size=n))

    return _finalize(df, 'experiment', {'ate': ate})


def make_regression_data(
    n: int = 1000,
    educ_effect: float = 0.8,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    賃金方程式のデータ（能力が欠落変数）

    Returns
    -------
    pd.DataFrame
        'ability', 'educ', 'exper', 'region', 'wage', 'employed', 'visits'

    Notes
    -----
    educ = 12 + 1.5 ability + ν
    wage = 1 + β educ + 0.3 exper + 2 ability + ε
    ability を除いた回帰では β が上方にバイアスします。真の効果: educ_effect
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    ability = rng.normal(0, 1, size=n)
    educ = 12 + 1.5 * ability + rng.normal(0, 2, size=n)
    exper = rng.uniform(0, 30, size=n)
    region = rng.integers(0, 30, size=n)
    region_shock = rng.normal(0, 1, size=30)[region]
    wage = 1 + educ_effect * educ + 0.3 * exper + 2 * ability + region_shock + rng.normal(0, 2, size=n)
    employed = rng.binomial(1, _logistic(-6 + 0.5 * educ))
    visits = rng.poisson(np.exp(0.5 + 0.05 * exper))

    df = pd.DataFrame({
        'ability': ability,
        'educ': educ,
        'exper': exper,
        'region': region,
        'wage': wage,
        'employed': employed,
        'visits': visits,
    })
    return _finalize(df, 'regression', {'educ': educ_effect, 'exper': 0.3, 'ability': 2.0})


def make_mediation_data(
    n: int = 1000,
    a: float = 0.5,
    b: float = 0.8,
    c_prime: float = 0.3,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    媒介分析のデータ

    Returns
    -------
    pd.DataFrame
        'x', 'treatment', 'mediator', 'outcome'

    Notes
    -----
    M = a T + 0.5 x + ε1
    Y = c' T + b M + 0.5 x + ε2
    真の間接効果 a×b、直接効果 c'、総効果 c' + a×b
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    x = rng.normal(0, 1, size=n)
    treatment = rng.binomial(1, 0.5, size=n)
    mediator = a * treatment + 0.5 * x + rng.normal(0, 1, size=n)
    outcome = c_prime * treatment + b * mediator + 0.5 * x + rng.normal(0, 1, size=n)

    df = pd.DataFrame({'x': x, 'treatment': treatment, 'mediator': mediator, 'outcome': outcome})
    return _finalize(df, 'mediation', {
        'a': a, 'b': b, 'direct': c_prime, 'indirect': a * b, 'total': c_prime + a * b,
    })


def make_iv_data(
    n: int = 2000,
    effect: float = 1.0,
    instrument_strength: float = 0.5,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    操作変数のデータ（未観測の交絡 U あり）

    Returns
    -------
    pd.DataFrame
        'x', 'z1', 'z2', 'd', 'y'（連続の内生変数）と
        'offer', 'takeup', 'earnings'（二値の操作変数と処置）

    Notes
    -----
    d = γ z1 + 0.3 z2 + 0.5 x + U + ν
    y = β d + 0.5 x + 2 U + ε
    U は観測されないため OLS は上方にバイアスします。真の効果: effect
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    u = rng.normal(0, 1, size=n)
    x = rng.normal(0, 1, size=n)
    z1 = rng.normal(0, 1, size=n)
    z2 = rng.normal(0, 1, size=n)
    d = instrument_strength * z1 + 0.3 * z2 + 0.5 * x + u + rng.normal(0, 1, size=n)
    y = effect * d + 0.5 * x + 2 * u + rng.normal(0, 1, size=n)

    offer = rng.binomial(1, 0.5, size=n)
    takeup = rng.binomial(1, np.clip(0.15 + 0.5 * offer + 0.15 * (u > 0), 0, 1))
    earnings = 10 + effect * takeup + 2 * u + rng.normal(0, 1, size=n)

    df = pd.DataFrame({
        'x': x, 'z1': z1, 'z2': z2, 'd': d, 'y': y,
        'offer': offer, 'takeup': takeup, 'earnings': earnings,
    })
    return _finalize(df, 'iv', {'effect': effect})


def make_panel_data(
    n_units: int = 200,
    n_periods: int = 6,
    beta: float = 1.5,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    個体効果が説明変数と相関するパネルデータ

    Returns
    -------
    pd.DataFrame
        'unit', 'time', 'x', 'z', 'y'

    Notes
    -----
    x_it = 0.8 α_i + η_it
    y_it = β x_it + 0.5 z_it + α_i + λ_t + ε_it
    プーリングOLSと変量効果はバイアスし、固定効果は一致します。真の効果: beta
    """
    validate_positive_integer(n_units, "n_units")
    validate_positive_integer(n_periods, "n_periods", min_value=2)
    rng = make_rng(random_state)

    unit = np.repeat(np.arange(n_units), n_periods)
    time = np.tile(np.arange(n_periods), n_units)
    alpha_i = rng.normal(0, 2, size=n_units)[unit]
    lambda_t = np.linspace(0, 1, n_periods)[time]

    x = 0.8 * alpha_i + rng.normal(0, 1, size=len(unit))
    z = rng.normal(0, 1, size=len(unit))
    y = beta * x + 0.5 * z + alpha_i + lambda_t + rng.normal(0, 1, size=len(unit))

    df = pd.DataFrame({'unit': unit, 'time': time, 'x': x, 'z': z, 'y': y})
    return _finalize(df, 'panel', {'x': beta, 'z': 0.5})


def make_observational_data(
    n: int = 2000,
    att: float = 1.5,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    観測された交絡のある観察データ（マッチング用）

    Returns
    -------
    pd.DataFrame
        'age', 'income', 'female', 'prior', 'age_group', 'treatment', 'outcome'

    Notes
    -----
    P(T=1|X) = logistic(-1 + 0.04(age-40) + 0.3 income + 0.8 prior)
    outcome = 10 + 0.1 age + 0.5 income + 0.5 female + 2 prior + ATT × T + ε
    処置効果は一定なので ATE = ATT。真の効果: att
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    age = rng.normal(40, 10, size=n)
    income = rng.normal(0, 1, size=n)
    female = rng.binomial(1, 0.5, size=n)
    prior = rng.normal(0, 1, size=n)
    ps = _logistic(-1 + 0.04 * (age - 40) + 0.3 * income + 0.8 * prior)
    treatment = rng.binomial(1, ps)
    outcome = (10 + 0.1 * age + 0.5 * income + 0.5 * female + 2 * prior
               + att * treatment + rng.normal(0, 1, size=n))

    df = pd.DataFrame({
        'age': age,
        'income': income,
        'female': female,
        'prior': prior,
        'age_group': pd.cut(age, [-np.inf, 30, 40, 50, np.inf], labels=False),
        'treatment': treatment,
        'outcome': outcome,
    })
    return _finalize(df, 'observational', {'att': att, 'ate': att})


def make_synthetic_control_data(
    n_units: int = 20,
    n_periods: int = 30,
    treatment_time: int = 20,
    effect: float = -5.0,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    合成コントロール用の因子モデルデータ

    Returns
    -------
    pd.DataFrame
        'unit', 'time', 'y', 'treated'（'unit_00' が処置単位）

    Notes
    -----
    Y_it = δ_t + θ_i μ_t + ε_it
    処置単位の因子負荷はドナーの範囲内にあるため、凸結合で再現できます。
    treatment_time 以降、処置単位に effect を加えます。真の効果: effect
    """
    validate_positive_integer(n_units, "n_units", min_value=3)
    if not 2 <= treatment_time < n_periods:
        raise InvalidInputError(f"treatment_time must be in [2, {n_periods}), got {treatment_time}")
    rng = make_rng(random_state)

    time = np.arange(n_periods)
    delta = 50 + 0.5 * time
    mu = np.column_stack([np.sin(time / 4), time / n_periods])
    loadings = rng.uniform(0, 10, size=(n_units, 2))
    loadings[0] = loadings[1:4].mean(axis=0)

    rows = []
    for i in range(n_units):
        y = delta + mu @ loadings[i] + rng.normal(0, 0.5, size=n_periods)
        if i == 0:
            y = y + effect * (time >= treatment_time)
        for t in range(n_periods):
            rows.append({'unit': f"unit_{i:02d}", 'time': int(time[t]), 'y': y[t], 'treated': int(i == 0)})

    df = pd.DataFrame(rows)
    df.attrs['treated_unit'] = 'unit_00'
    df.attrs['treatment_time'] = treatment_time
    return _finalize(df, 'synthetic_control', {'att': effect})


def make_did_data(
    n_units: int = 200,
    n_periods: int = 6,
    treatment_period: int = 3,
    effect: float = 2.0,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    2群のDIDデータ

    Returns
    -------
    pd.DataFrame
        'unit', 'time', 'group'（処置群=1）, 'post', 'd'（処置中=1）, 'x', 'y'

    Notes
    -----
    Y_it = α_i + 0.5 t + 1.0 group_i + τ D_it + 0.3 x_it + ε_it
    処置前のトレンドは両群で平行です。真の効果: effect
    """
    validate_positive_integer(n_units, "n_units", min_value=4)
    if not 1 <= treatment_period < n_periods:
        raise InvalidInputError(f"treatment_period must be in [1, {n_periods}), got {treatment_period}")
    rng = make_rng(random_state)

    unit = np.repeat(np.arange(n_units), n_periods)
    time = np.tile(np.arange(n_periods), n_units)
    group = (np.arange(n_units) < n_units // 2).astype(int)[unit]
    post = (time >= treatment_period).astype(int)
    d = group * post
    alpha_i = rng.normal(0, 1, size=n_units)[unit]
    x = rng.normal(0, 1, size=len(unit))

    y = alpha_i + 0.5 * time + 1.0 * group + effect * d + 0.3 * x + rng.normal(0, 1, size=len(unit))

    df = pd.DataFrame({'unit': unit, 'time': time, 'group': group, 'post': post, 'd': d, 'x': x, 'y': y})
    df.attrs['treatment_period'] = treatment_period
    return _finalize(df, 'did', {'att': effect})


def make_staggered_did_data(
    n_units: int = 300,
    n_periods: int = 10,
    cohorts: Sequence[int] = (4, 6, 8),
    effect: float = 2.0,
    effect_growth: float = 0.5,
    never_treated_share: float = 0.25,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    処置時期が異なるパネル（スタガード採用）

    Returns
    -------
    pd.DataFrame
        'unit', 'time', 'first_treated'（未処置は0）, 'd', 'y'

    Notes
    -----
    処置後 e 期目の効果は effect + effect_growth × e で、時間とともに大きくなります。
    この動的効果の下では TWFE 推定値がバイアスします。
    真の効果: 相対時点 e の ATT = effect + effect_growth × e
    """
    validate_positive_integer(n_units, "n_units", min_value=4)
    if any(g <= 0 or g >= n_periods for g in cohorts):
        raise InvalidInputError(f"cohorts must lie in (0, {n_periods}), got {list(cohorts)}")
    rng = make_rng(random_state)

    n_never = int(round(n_units * never_treated_share))
    first_treated = np.concatenate([
        np.zeros(n_never, dtype=int),
        rng.choice(np.asarray(cohorts), size=n_units - n_never),
    ])
    rng.shuffle(first_treated)

    unit = np.repeat(np.arange(n_units), n_periods)
    time = np.tile(np.arange(n_periods), n_units)
    g = first_treated[unit]
    treated_now = (g > 0) & (time >= g)
    rel = np.where(treated_now, time - g, 0)

    alpha_i = rng.normal(0, 1, size=n_units)[unit]
    y = (alpha_i + 0.3 * time + treated_now * (effect + effect_growth * rel)
         + rng.normal(0, 1, size=len(unit)))

    df = pd.DataFrame({
        'unit': unit,
        'time': time,
        'first_treated': g,
        'd': treated_now.astype(int),
        'y': y,
    })
    return _finalize(df, 'staggered_did', {'effect_at_adoption': effect, 'effect_growth': effect_growth})


def make_rdd_data(
    n: int = 2000,
    cutoff: float = 0.0,
    effect: float = 3.0,
    fuzzy: bool = False,
    random_state: Optional[int] = None
) -> pd.DataFrame:
    """
    回帰不連続デザインのデータ

    Returns
    -------
    pd.DataFrame
        'score'（割り当て変数）, 'above', 'd', 'age', 'y'

    Notes
    -----
    Y = 10 + 0.05 (score-c) + 0.0005 (score-c)² + τ D + 0.1 age + ε
    sharp: D = 1[score ≥ c]
    fuzzy: P(D=1) = 0.2 + 0.6 × 1[score ≥ c]
    age は事前に決まる共変量で、閾値で不連続になりません。真の効果: effect
    """
    validate_positive_integer(n, "n")
    rng = make_rng(random_state)

    score = cutoff + rng.uniform(-50, 50, size=n)
    above = (score >= cutoff).astype(int)
    if fuzzy:
        d = rng.binomial(1, 0.2 + 0.6 * above)
    else:
        d = above
    age = rng.normal(40, 10, size=n)
    xc = score - cutoff
    y = 10 + 0.05 * xc + 0.0005 * xc ** 2 + effect * d + 0.1 * age + rng.normal(0, 1, size=n)

    df = pd.DataFrame({'score': score, 'above': above, 'd': d, 'age': age, 'y': y})
    df.attrs['cutoff'] = cutoff
    return _finalize(df, 'rdd_fuzzy' if fuzzy else 'rdd', {'effect': effect})


def load_dataset(path_or_url: Union[str, Path], **read_csv_kwargs) -> pd.DataFrame:
    """
    CSV ファイルを読み込む

    Parameters
    ----------
    path_or_url : str or Path
        ローカルパス、または http(s) の URL
    **read_csv_kwargs
        pd.read_csv に渡す引数

    Raises
    ------
    FileNotFoundError
        ローカルファイルが存在しない場合
    InvalidInputError
        読み込んだ表が空の場合
    """
    source = str(path_or_url)
    if not source.startswith(("http://", "https://")):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Dataset not found: {path}")
        source = path

    try:
        df = pd.read_csv(source, **read_csv_kwargs)
    except pd.errors.EmptyDataError as e:
        raise InvalidInputError(f"Dataset is empty: {path_or_url}") from e
    if df.empty:
        raise InvalidInputError(f"Dataset is empty: {path_or_url}")

    logger.info(f"Loaded dataset {path_or_url} with shape {df.shape}")
    return df
