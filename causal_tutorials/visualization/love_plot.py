"""
Love Plotモジュール

共変量バランスと傾向スコアの重なりを可視化します。
"""

import numpy as np
import pandas as pd
import seaborn as sns
from typing import Optional, Tuple
import logging

from ..constants import MatchingConfig
from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_love(
    balance_table: pd.DataFrame,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    Love plot（共変量バランスの可視化）

    Parameters
    ----------
    balance_table : pd.DataFrame
        covariate_balance_table()の結果
    save_path : str, optional
        保存先パス
    figsize : Tuple
        図のサイズ
    close : bool
        描画後に Figure を閉じるか

    Returns
    -------
    matplotlib.figure.Figure
    """
    fig, ax = new_figure(figsize)

    covariates = balance_table['Covariate'].values
    smd_before = balance_table['SMD_Before'].abs().values
    smd_after = balance_table['SMD_After'].abs().values

    y_pos = np.arange(len(covariates))

    ax.scatter(smd_before, y_pos, marker='o', s=100, label='Before Matching', alpha=0.7)
    ax.scatter(smd_after, y_pos, marker='s', s=100, label='After Matching', alpha=0.7)

    for i in range(len(covariates)):
        ax.plot([smd_before[i], smd_after[i]], [y_pos[i], y_pos[i]], 'k-', alpha=0.3)

    threshold = MatchingConfig.get_smd_threshold()
    ax.axvline(x=threshold, color='red', linestyle='--', linewidth=2, label=f'SMD={threshold} threshold')
    ax.axvline(x=2 * threshold, color='orange', linestyle='--', linewidth=2, alpha=0.5)

    ax.set_yticks(y_pos)
    ax.set_yticklabels(covariates)
    ax.set_xlabel('Absolute Standardized Mean Difference', fontsize=12, fontweight='bold')
    ax.set_title('Love Plot: Covariate Balance', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Love plot")


def plot_smd_comparison(
    balance_table: pd.DataFrame,
    save_path: Optional[str] = None,
    close: bool = True
):
    """SMDの改善を棒グラフで可視化"""
    fig, ax = new_figure((10, 6))

    covariates = balance_table['Covariate'].values
    improvement = balance_table['SMD_Improvement_%'].values

    colors = ['green' if x > 0 else 'red' for x in improvement]
    ax.barh(covariates, improvement, color=colors, alpha=0.7)

    ax.set_xlabel('SMD Improvement (%)', fontsize=12, fontweight='bold')
    ax.set_title('Covariate Balance Improvement', fontsize=14, fontweight='bold')
    ax.axvline(x=0, color='black', linestyle='-', linewidth=1)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "SMD comparison plot")


def plot_propensity_overlap(
    propensity_score: pd.Series,
    treatment: pd.Series,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    処置群・対照群の傾向スコア分布の重なり

    Parameters
    ----------
    propensity_score : pd.Series
        傾向スコア
    treatment : pd.Series
        処置変数（0/1）
    """
    fig, ax = new_figure(figsize)

    frame = pd.DataFrame({
        'Propensity Score': np.asarray(propensity_score, dtype=float),
        'Group': np.where(np.asarray(treatment) == 1, 'Treated', 'Control'),
    })
    sns.histplot(data=frame, x='Propensity Score', hue='Group', stat='density',
                 common_norm=False, element='step', bins=30, ax=ax)

    ax.set_xlim(0, 1)
    ax.set_title('Propensity Score Overlap', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Propensity overlap plot")
