"""
Pytestの共通設定とフィクスチャ
"""

import matplotlib
matplotlib.use("Agg")

import matplotlib.pyplot as plt
import pytest
import numpy as np
import pandas as pd
from typing import Tuple

from causal_tutorials import datasets


@pytest.fixture(autouse=True)
def close_figures():
    """テストごとに開いた図を閉じる"""
    yield
    plt.close('all')


@pytest.fixture
def sample_binary_data() -> Tuple[np.ndarray, np.ndarray]:
    """
    サンプルの二値データを生成

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        (treated_outcomes, control_outcomes)
    """
    np.random.seed(42)
    treated = np.random.binomial(1, 0.6, 50)
    control = np.random.binomial(1, 0.4, 50)
    return treated, control


@pytest.fixture
def sample_continuous_data() -> Tuple[np.ndarray, np.ndarray]:
    """
    サンプルの連続データを生成（マッチドペアを想定）

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        (treated_outcomes, control_outcomes)
    """
    np.random.seed(42)
    treated = np.random.normal(1.0, 0.5, 50)
    control = np.random.normal(0.5, 0.5, 50)
    return treated, control


@pytest.fixture
def sample_regression_data() -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    サンプルの回帰データを生成

    Returns
    -------
    Tuple[np.ndarray, np.ndarray, np.ndarray]
        (y, X, clusters)
    """
    np.random.seed(42)
    n_samples = 100
    n_features = 3

    X = np.random.randn(n_samples, n_features)
    true_coef = np.array([1.5, -0.8, 0.3])
    y = X @ true_coef + np.random.randn(n_samples) * 0.5

    # 10個のクラスターを作成
    clusters = np.repeat(np.arange(10), 10)

    return y, X, clusters


@pytest.fixture
def sample_propensity_scores() -> Tuple[np.ndarray, np.ndarray]:
    """
    サンプルの傾向スコアを生成

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        (ps_treated, ps_control)
    """
    np.random.seed(42)
    ps_treated = np.random.beta(5, 2, 50)
    ps_control = np.random.beta(2, 5, 100)
    return ps_treated, ps_control


@pytest.fixture
def experiment_data() -> pd.DataFrame:
    """ランダム化実験のデータ（真の ATE = 2.0）"""
    return datasets.make_experiment_data(n=600, random_state=0)


@pytest.fixture
def regression_data() -> pd.DataFrame:
    """賃金方程式のデータ（真の educ 効果 = 0.8）"""
    return datasets.make_regression_data(n=800, random_state=0)


@pytest.fixture
def mediation_data() -> pd.DataFrame:
    """媒介分析のデータ（間接効果 = 0.4, 直接効果 = 0.3）"""
    return datasets.make_mediation_data(n=800, random_state=0)


@pytest.fixture
def iv_data() -> pd.DataFrame:
    """操作変数のデータ（真の効果 = 1.0）"""
    return datasets.make_iv_data(n=2000, random_state=0)


@pytest.fixture
def panel_data() -> pd.DataFrame:
    """個体効果が x と相関するパネル（真の β = 1.5）"""
    return datasets.make_panel_data(n_units=150, n_periods=5, random_state=0)


@pytest.fixture
def observational_data() -> pd.DataFrame:
    """観察データ（真の ATT = 1.5）"""
    return datasets.make_observational_data(n=1200, random_state=0)


@pytest.fixture
def synth_data() -> pd.DataFrame:
    """合成コントロールのデータ（真の効果 = -5.0）"""
    return datasets.make_synthetic_control_data(n_units=12, n_periods=24, treatment_time=16, random_state=0)


@pytest.fixture
def did_data() -> pd.DataFrame:
    """2群 DID のパネル（真の ATT = 2.0、処置開始 t=3）"""
    return datasets.make_did_data(n_units=200, random_state=0)


@pytest.fixture
def staggered_data() -> pd.DataFrame:
    """処置時期が異なるパネル"""
    return datasets.make_staggered_did_data(n_units=240, random_state=0)


@pytest.fixture
def rdd_data() -> pd.DataFrame:
    """Sharp RDD のデータ（真の効果 = 3.0、閾値 0）"""
    return datasets.make_rdd_data(n=2000, random_state=0)
