"""
チュートリアル: 媒介分析

処置の効果を、媒介変数を通る間接効果とそれ以外の直接効果に分解します。
"""

from typing import Optional
import logging

import pandas as pd

from ..datasets import make_mediation_data
from ..mediation import mediation_analysis
from ..utils import normal_critical_value, resolve_alpha
from ..visualization import plot_coefficients
from .base import TutorialReport, resolve_seed, true_effects, compare_with_truth

logger = logging.getLogger(__name__)

KEY = "mediation"
TITLE = "媒介分析: 効果はどの経路を通って生じるか"


def _effect_table(result: dict) -> pd.DataFrame:
    paths = result['paths']
    z = normal_critical_value(resolve_alpha())
    boot = result['bootstrap']
    return pd.DataFrame({
        'Effect': ['Total (c)', 'Direct (c\')', 'Indirect (a×b)'],
        'Estimate': [paths['c'], paths['c_prime'], result['indirect_effect']],
        'CI_Lower': [paths['c'] - z * paths['se_c'], paths['c_prime'] - z * paths['se_c_prime'], boot['ci_lower']],
        'CI_Upper': [paths['c'] + z * paths['se_c'], paths['c_prime'] + z * paths['se_c_prime'], boot['ci_upper']],
    })


def run(data: Optional[pd.DataFrame] = None, random_state: Optional[int] = None,
        make_figures: bool = True) -> TutorialReport:
    """
    媒介分析のチュートリアルを実行

    Parameters
    ----------
    data : pd.DataFrame, optional
        'treatment', 'mediator', 'outcome', 'x' を持つデータ
    """
    seed = resolve_seed(random_state)
    if data is None:
        data = make_mediation_data(random_state=seed)
    truth = true_effects(data)
    logger.info(f"Running tutorial '{KEY}' on {len(data)} rows")

    report = TutorialReport(KEY, TITLE)
    report.add_text(
        "処置（treatment）は媒介変数（mediator）を動かし、媒介変数がアウトカムを動かします。"
        "処置はアウトカムに直接も影響します。x は統制変数です。"
    )

    result = mediation_analysis(data, 'treatment', 'mediator', 'outcome', covariates=['x'], random_state=seed)
    paths = result['paths']

    report.add_heading("Baron & Kenny の3つの回帰")
    report.add_result("経路係数", paths, ['a', 'se_a', 'p_a', 'b', 'se_b', 'p_b',
                                         'c', 'se_c', 'c_prime', 'se_c_prime', 'n_observations'])
    report.add_text(
        "(1) outcome ~ treatment で総効果 c、(2) mediator ~ treatment で a、"
        "(3) outcome ~ treatment + mediator で直接効果 c' と b を推定します。"
        "線形モデルでは c = c' + a×b が成り立ちます。"
    )

    report.add_heading("間接効果の推論")
    report.add_result("Sobel 検定", result['sobel'], ['indirect_effect', 'se', 'z_statistic', 'p_value'])
    report.add_result("ブートストラップ", result['bootstrap'], ['indirect_effect', 'se', 'ci_lower', 'ci_upper', 'n_bootstrap'])
    report.add_text(
        "a×b の分布は正規分布から外れやすいため、Sobel 検定よりパーセンタイル・ブートストラップの"
        "信頼区間が推奨されます。"
    )

    report.add_heading("効果の分解")
    report.add_text(compare_with_truth("総効果", result['total_effect'], truth.get('total')))
    report.add_text(compare_with_truth("直接効果", result['direct_effect'], truth.get('direct')))
    report.add_text(compare_with_truth("間接効果", result['indirect_effect'], truth.get('indirect')))
    report.add_text(result['interpretation'])
    if make_figures:
        report.add_figure("effects", plot_coefficients(_effect_table(result), label_col='Effect'),
                          "総効果・直接効果・間接効果")

    logger.info(f"Tutorial '{KEY}' finished")
    return report
