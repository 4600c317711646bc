"""
チュートリアル: 操作変数法

未観測の交絡がある状況で、操作変数と2段階最小二乗法（2SLS）により効果を推定します。
"""

from typing import Optional
import logging

import pandas as pd

from ..datasets import make_iv_data
from ..iv_analysis import first_stage_diagnostics, two_stage_least_squares, wald_estimator, compare_ols_iv
from ..visualization import plot_coefficients
from .base import TutorialReport, resolve_seed, true_effects, estimate_line, compare_with_truth

logger = logging.getLogger(__name__)

KEY = "iv"
TITLE = "操作変数法: 交絡を測れないときの因果推論"

INSTRUMENTS = ['z1', 'z2']
EXOG = ['x']


def run(data: Optional[pd.DataFrame] = None, random_state: Optional[int] = None,
        make_figures: bool = True) -> TutorialReport:
    """
    操作変数法のチュートリアルを実行

    Parameters
    ----------
    data : pd.DataFrame, optional
        'y', 'd', 'z1', 'z2', 'x', 'offer', 'takeup', 'earnings' を持つデータ
    """
    seed = resolve_seed(random_state)
    if data is None:
        data = make_iv_data(random_state=seed)
    truth = true_effects(data).get('effect')
    logger.info(f"Running tutorial '{KEY}' on {len(data)} rows")

    report = TutorialReport(KEY, TITLE)
    report.add_text(
        "内生変数 d はアウトカム y と未観測の要因を共有しているため、OLS はバイアスを持ちます。"
        "z1, z2 は d を動かすが y には d を通じてしか影響しない操作変数です。"
    )

    report.add_heading("第1段階: 操作変数の強さ")
    first = first_stage_diagnostics(data, 'd', INSTRUMENTS, exog=EXOG)
    report.add_result("第1段階", first, ['f_statistic', 'f_pvalue', 'partial_r2', 'weak_instrument', 'threshold'])
    report.add_text(
        f"操作変数の F 統計量が {first['threshold']:.0f} を下回ると弱い操作変数とみなされ、"
        "2SLS は OLS の方向にバイアスし、信頼区間も信用できなくなります。"
    )

    report.add_heading("2SLS")
    iv = two_stage_least_squares(data, 'y', 'd', INSTRUMENTS, exog=EXOG)
    report.add_text(estimate_line("2SLS", iv, 'estimate', truth))
    report.add_text(compare_with_truth("OLS", iv['ols_estimate'], truth))
    report.add_text(iv['interpretation'])
    report.add_result("内生性検定（制御関数）", iv['endogeneity_test'])
    if iv['overidentification_test'] is not None:
        report.add_result("Sargan 過剰識別検定", iv['overidentification_test'])
        report.add_text("過剰識別検定が有意でなければ、操作変数どうしの推定値は矛盾していません。")

    comparison = compare_ols_iv(data, 'y', 'd', INSTRUMENTS, exog=EXOG)
    report.add_table(comparison, "OLS と 2SLS の比較")
    if make_figures:
        report.add_figure("ols_vs_iv", plot_coefficients(comparison, label_col='Method'), "OLS と 2SLS")

    report.add_heading("二値の操作変数と Wald 推定量")
    wald = wald_estimator(data, 'earnings', 'takeup', 'offer')
    report.add_result("Wald 推定量", wald, ['reduced_form', 'first_stage', 'late'])
    report.add_text(estimate_line("LATE", wald, 'late', truth))
    report.add_text(
        "プログラムの案内（offer）はランダムですが、参加（takeup）は本人が選びます。"
        "誘導形（案内の効果）を第1段階（参加率の差）で割ると、案内によって参加を変えた人々"
        "（complier）の局所平均処置効果（LATE）になります。"
    )

    logger.info(f"Tutorial '{KEY}' finished")
    return report
