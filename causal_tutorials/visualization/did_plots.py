"""
DID分析の可視化モジュール

差分の差分法とイベントスタディの結果を可視化します。
"""

import pandas as pd
from typing import Dict, Optional, Tuple
import logging

from ..constants import StatisticalConfig
from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_parallel_trends(
    df: pd.DataFrame,
    outcome_col: str,
    time_col: str,
    group_col: str,
    treatment_time: Optional[float] = None,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    平行トレンドのプロット

    Parameters
    ----------
    df : pd.DataFrame
        分析データ
    outcome_col : str
        アウトカム変数
    time_col : str
        時間変数
    group_col : str
        グループ変数（0=対照群, 1=処置群）
    treatment_time : float, optional
        処置開始時点（縦線を描く）
    save_path : str, optional
        保存先パス
    figsize : Tuple
        図のサイズ
    close : bool
        描画後に Figure を閉じるか
    """
    fig, ax = new_figure(figsize)

    # グループごとの時系列平均
    grouped = df.groupby([time_col, group_col])[outcome_col].mean().reset_index()

    for group_id in [0, 1]:
        group_data = grouped[grouped[group_col] == group_id]
        label = 'Treatment Group' if group_id == 1 else 'Control Group'
        ax.plot(group_data[time_col], group_data[outcome_col], 'o-', label=label, linewidth=2, markersize=8)

    if treatment_time is not None:
        ax.axvline(x=treatment_time - 0.5, color='gray', linestyle=':', linewidth=2, label='Treatment start')

    ax.set_xlabel('Time', fontsize=12, fontweight='bold')
    ax.set_ylabel(f'Mean {outcome_col}', fontsize=12, fontweight='bold')
    ax.set_title('Parallel Trends Check', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Parallel trends plot")


def plot_treatment_effect_over_time(
    did_results: Dict,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    2×2 DID の平均値の推移

    Parameters
    ----------
    did_results : Dict
        did_estimation()の結果
    """
    fig, ax = new_figure(figsize)

    means = did_results['means']
    periods = ['Pre', 'Post']

    treated = [means['treated_pre'], means['treated_post']]
    control = [means['control_pre'], means['control_post']]
    counterfactual = [means['treated_pre'],
                      means['treated_pre'] + means['control_post'] - means['control_pre']]

    ax.plot(periods, treated, 'o-', label='Treatment Group', linewidth=2, markersize=10)
    ax.plot(periods, control, 's-', label='Control Group', linewidth=2, markersize=10)
    ax.plot(periods, counterfactual, 'o--', color='gray', label='Counterfactual (parallel trend)', linewidth=1.5)

    # DID効果を矢印で表示
    did_estimate = did_results['did_estimate']
    ax.annotate(
        '',
        xy=(1, means['treated_post']),
        xytext=(1, counterfactual[1]),
        arrowprops=dict(arrowstyle='<->', color='red', lw=2),
    )
    ax.text(1.03, counterfactual[1] + did_estimate / 2, f'DID = {did_estimate:.3f}',
            fontsize=12, fontweight='bold', color='red')

    ax.set_ylabel('Outcome', fontsize=12, fontweight='bold')
    ax.set_title('Difference-in-Differences Effect', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "DID effect plot")


def plot_did_coefficients(
    estimates: Dict[str, Dict],
    save_path: Optional[str] = None,
    figsize: Tuple = (8, 6),
    close: bool = True
):
    """
    DID推定値と信頼区間のプロット

    Parameters
    ----------
    estimates : Dict[str, Dict]
        ラベル -> 'did_estimate'（または 'estimate'）, 'ci_lower', 'ci_upper' を持つ結果
    """
    fig, ax = new_figure(figsize)

    for i, (label, result) in enumerate(estimates.items()):
        estimate = result.get('did_estimate', result.get('estimate'))
        ci_lower, ci_upper = result['ci_lower'], result['ci_upper']
        ax.errorbar(i, estimate, yerr=[[estimate - ci_lower], [ci_upper - estimate]],
                    fmt='o', markersize=12, capsize=10, capthick=2, linewidth=2)
        # 推定値をテキストで表示
        ax.text(i + 0.1, estimate, f'{estimate:.3f}\n[{ci_lower:.3f}, {ci_upper:.3f}]',
                fontsize=10, verticalalignment='center')

    ax.axhline(y=0, color='red', linestyle='--', linewidth=2)
    ax.set_xlim(-0.5, len(estimates) - 0.5)
    ax.set_xticks(range(len(estimates)))
    ax.set_xticklabels(list(estimates.keys()))
    ax.set_ylabel('Treatment Effect', fontsize=12, fontweight='bold')
    ax.set_title('DID Estimates with Confidence Intervals', fontsize=14, fontweight='bold')
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "DID coefficient plot")


def plot_event_study(
    coefficients: pd.DataFrame,
    true_effects: Optional[pd.Series] = None,
    save_path: Optional[str] = None,
    figsize: Tuple = (10, 6),
    close: bool = True
):
    """
    イベントスタディ係数のプロット

    Parameters
    ----------
    coefficients : pd.DataFrame
        'Relative_Time', 'Coefficient'（または 'ATT'）, 'CI_Lower', 'CI_Upper' を持つ表
    true_effects : pd.Series, optional
        相対時点 -> 真の効果（シミュレーションの場合）
    """
    fig, ax = new_figure(figsize)

    value_col = 'Coefficient' if 'Coefficient' in coefficients.columns else 'ATT'
    # 観測のない相対時点は描かない
    coefficients = coefficients.dropna(subset=[value_col])
    rel = coefficients['Relative_Time'].values
    est = coefficients[value_col].values

    ax.fill_between(rel, coefficients['CI_Lower'].values, coefficients['CI_Upper'].values,
                    alpha=0.2, label=f"{round(StatisticalConfig.get_confidence_level() * 100, 1):g}% CI")
    ax.plot(rel, est, 'o-', linewidth=2, markersize=8, label='Estimate')
    if true_effects is not None:
        ax.plot(true_effects.index, true_effects.values, 'k--', linewidth=1.5, label='True effect')

    ax.axhline(y=0, color='red', linestyle='--', linewidth=1.5)
    ax.axvline(x=-0.5, color='gray', linestyle=':', linewidth=2)

    ax.set_xlabel('Periods Relative to Treatment', fontsize=12, fontweight='bold')
    ax.set_ylabel('Effect', fontsize=12, fontweight='bold')
    ax.set_title('Event Study', fontsize=14, fontweight='bold')
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return finish_figure(fig, save_path, close, "Event study plot")
