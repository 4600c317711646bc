"""
RDD分析の可視化モジュール
"""

import numpy as np
import pandas as pd
from typing import Dict, Optional, Tuple
import logging

from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_rdd(
    binned: pd.DataFrame,
    cutoff: float,
    rdd_result: Optional[Dict] = None,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    RDDプロット（ビン平均と局所線形フィット）

    Parameters
    ----------
    binned : pd.DataFrame
        binned_means()の結果
    cutoff : float
        閾値
    rdd_result : Dict, optional
        estimate_rdd()の結果（order=1, 共変量なし）。あれば帯域内のフィットを描く
    """
    fig, ax = new_figure(figsize)

    for side, marker in (('below', 'o'), ('above', 's')):
        part = binned[binned['Side'] == side]
        ax.scatter(part['Bin_Center'], part['Mean'], marker=marker, s=50, alpha=0.8,
                   label=f'Bin means ({side})')

    if rdd_result is not None and rdd_result.get('order', 1) == 1:
        params = rdd_result['model'].params
        h = rdd_result['bandwidth']
        left = np.linspace(-h, 0, 50)
        right = np.linspace(0, h, 50)
        ax.plot(cutoff + left, params['const'] + params['x1'] * left, 'k-', linewidth=2)
        ax.plot(cutoff + right,
                params['const'] + params['above'] + (params['x1'] + params['above_x1']) * right,
                'k-', linewidth=2, label=f"Local linear fit (tau={rdd_result['tau']:.3f})")

    ax.axvline(x=cutoff, color='red', linestyle='--', linewidth=2, label='Cutoff')
    ax.set_xlabel('Running Variable', fontsize=12, fontweight='bold')
    ax.set_ylabel('Outcome', fontsize=12, fontweight='bold')
    ax.set_title('Regression Discontinuity', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "RDD plot")


def plot_bandwidth_sensitivity(
    sensitivity: pd.DataFrame,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    バンド幅ごとの推定値と信頼区間

    Parameters
    ----------
    sensitivity : pd.DataFrame
        bandwidth_sensitivity()の結果
    """
    fig, ax = new_figure(figsize)

    est = sensitivity['Estimate'].values
    ax.errorbar(sensitivity['Bandwidth'], est,
                yerr=[est - sensitivity['CI_Lower'].values, sensitivity['CI_Upper'].values - est],
                fmt='o', markersize=8, capsize=6, linewidth=2)
    ax.axhline(y=0, color='red', linestyle='--', linewidth=1.5)

    ax.set_xlabel('Bandwidth', fontsize=12, fontweight='bold')
    ax.set_ylabel('RDD Estimate', fontsize=12, fontweight='bold')
    ax.set_title('Bandwidth Sensitivity', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Bandwidth sensitivity plot")
