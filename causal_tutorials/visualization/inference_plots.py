"""
推定結果・検定結果の可視化モジュール
"""

import numpy as np
import pandas as pd
from typing import Optional, Sequence, Tuple
import logging

from ..utils import resolve_alpha
from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_coefficients(
    table: pd.DataFrame,
    variables: Optional[Sequence[str]] = None,
    label_col: str = 'Variable',
    save_path: Optional[str] = None,
    figsize: Tuple = (8, 6),
    close: bool = True
):
    """
    係数と信頼区間のフォレストプロット

    Parameters
    ----------
    table : pd.DataFrame
        'Coefficient'（または 'Estimate'）, 'CI_Lower', 'CI_Upper' と label_col を持つ表
    variables : Sequence[str], optional
        描画する行（label_col の値）。None は全行
    label_col : str
        縦軸ラベルに使う列
    """
    if variables is not None:
        table = table[table[label_col].isin(variables)]
    value_col = 'Coefficient' if 'Coefficient' in table.columns else 'Estimate'

    fig, ax = new_figure(figsize)

    est = table[value_col].to_numpy(dtype=float)
    y_pos = np.arange(len(table))[::-1]
    ax.errorbar(est, y_pos,
                xerr=[est - table['CI_Lower'].to_numpy(dtype=float),
                      table['CI_Upper'].to_numpy(dtype=float) - est],
                fmt='o', markersize=8, capsize=6, linewidth=2)
    ax.axvline(x=0, color='red', linestyle='--', linewidth=1.5)

    ax.set_yticks(y_pos)
    ax.set_yticklabels(table[label_col].astype(str).values)
    ax.set_xlabel('Estimate', fontsize=12, fontweight='bold')
    ax.set_title('Estimates with Confidence Intervals', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Coefficient plot")


def plot_null_distribution(
    null_distribution: np.ndarray,
    observed: float,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    並べ替え検定の帰無分布と観測統計量

    Parameters
    ----------
    null_distribution : np.ndarray
        permutation_test() / randomization_inference() の帰無分布
    observed : float
        観測統計量
    """
    fig, ax = new_figure(figsize)

    ax.hist(null_distribution, bins=40, alpha=0.7, color='steelblue', edgecolor='white',
            label='Null distribution')
    ax.axvline(x=observed, color='red', linewidth=2.5, label=f'Observed = {observed:.3f}')
    ax.axvline(x=-observed, color='red', linestyle='--', linewidth=1.5, alpha=0.6)

    ax.set_xlabel('Test Statistic', fontsize=12, fontweight='bold')
    ax.set_ylabel('Count', fontsize=12, fontweight='bold')
    ax.set_title('Randomization Null Distribution', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Null distribution plot")


def plot_sensitivity_analysis(
    rosenbaum_results: pd.DataFrame,
    alpha: Optional[float] = None,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    感度分析の結果をプロット

    Parameters
    ----------
    rosenbaum_results : pd.DataFrame
        rosenbaum_bounds()の結果
    alpha : float, optional
        有意水準の参照線
    save_path : str, optional
        保存先のパス
    """
    alpha = resolve_alpha(alpha)
    fig, ax = new_figure(figsize)

    gamma_vals = rosenbaum_results['Gamma'].values
    p_upper = rosenbaum_results['P_value_upper'].values
    p_lower = rosenbaum_results['P_value_lower'].values

    ax.plot(gamma_vals, p_upper, 'o-', label='Upper bound (worst case)', linewidth=2, markersize=8)
    ax.plot(gamma_vals, p_lower, 's-', label='Lower bound (best case)', linewidth=2, markersize=8)
    ax.axhline(y=alpha, color='r', linestyle='--', label=f'alpha={alpha}', linewidth=2)

    ax.set_xlabel('Gamma (strength of hidden confounding)', fontsize=12, fontweight='bold')
    ax.set_ylabel('P-value', fontsize=12, fontweight='bold')
    ax.set_title('Rosenbaum Bounds: Sensitivity Analysis', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Sensitivity analysis plot")
