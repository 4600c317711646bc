"""
合成コントロール法の可視化モジュール
"""

import pandas as pd
from typing import Dict, Optional, Tuple
import logging

from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_synthetic_control(
    synth_result: Dict,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    処置単位と合成コントロールの推移

    Parameters
    ----------
    synth_result : Dict
        fit_synthetic_control()の結果
    """
    fig, ax = new_figure(figsize)

    actual = synth_result['actual']
    synthetic = synth_result['synthetic']

    ax.plot(actual.index, actual.values, '-', linewidth=2.5, label=f"{synth_result['treated_unit']} (actual)")
    ax.plot(synthetic.index, synthetic.values, '--', linewidth=2.5, label='Synthetic control')
    ax.axvline(x=synth_result['treatment_time'], color='red', linestyle=':', linewidth=2, label='Treatment')

    ax.set_xlabel('Time', fontsize=12, fontweight='bold')
    ax.set_ylabel('Outcome', fontsize=12, fontweight='bold')
    ax.set_title(f"Synthetic Control (ATT={synth_result['att']:.3f})", fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Synthetic control plot")


def plot_placebo_gaps(
    gaps: pd.DataFrame,
    treated_unit,
    treatment_time,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    空間プラセボのギャップ（処置単位を強調）

    Parameters
    ----------
    gaps : pd.DataFrame
        placebo_in_space()の 'gaps'（時点 × 単位）
    """
    fig, ax = new_figure(figsize)

    for unit in gaps.columns:
        if unit == treated_unit:
            continue
        ax.plot(gaps.index, gaps[unit].values, color='gray', alpha=0.4, linewidth=1)

    ax.plot(gaps.index, gaps[treated_unit].values, color='black', linewidth=2.5, label=str(treated_unit))
    ax.axhline(y=0, color='red', linestyle='--', linewidth=1.5)
    ax.axvline(x=treatment_time, color='red', linestyle=':', linewidth=2)

    ax.set_xlabel('Time', fontsize=12, fontweight='bold')
    ax.set_ylabel('Gap (actual - synthetic)', fontsize=12, fontweight='bold')
    ax.set_title('Placebo Gaps (in-space)', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Placebo gaps plot")
