"""
チュートリアル: 差分の差分法（DID）

2×2 の DID から始め、イベントスタディ、処置時期が異なる場合の
グループ・時点別 ATT（Callaway & Sant'Anna）までを扱います。
"""

from typing import Optional
import logging

import pandas as pd

from ..datasets import make_did_data, make_staggered_did_data
from ..did_analysis import (
    did_estimation,
    did_with_covariates,
    twfe_did,
    event_study,
    aggregate_group_time_att,
    staggered_did,
)
from ..visualization import (
    plot_parallel_trends,
    plot_treatment_effect_over_time,
    plot_did_coefficients,
    plot_event_study,
)
from .base import TutorialReport, resolve_seed, true_effects, estimate_line, compare_with_truth

logger = logging.getLogger(__name__)

KEY = "did"
TITLE = "差分の差分法: 変化の差を比べる"


def run(data: Optional[pd.DataFrame] = None, random_state: Optional[int] = None,
        make_figures: bool = True) -> TutorialReport:
    """
    DID のチュートリアルを実行

    Parameters
    ----------
    data : pd.DataFrame, optional
        2×2 部分に使う 'unit', 'time', 'group', 'd', 'x', 'y' を持つパネル。
        attrs['treatment_period'] が処置開始時点。
        スタガード部分は常に生成データを使用
    """
    seed = resolve_seed(random_state)
    if data is None:
        data = make_did_data(random_state=seed)
    truth = true_effects(data).get('att')
    treatment_period = data.attrs.get('treatment_period', int(data.loc[data['d'] == 1, 'time'].min()))
    logger.info(f"Running tutorial '{KEY}' on {len(data)} rows")

    report = TutorialReport(KEY, TITLE)
    report.add_text(
        f"時点 {treatment_period} から処置群（group=1）だけが政策の対象になります。"
        "処置群の変化から対照群の変化を引くことで、共通の時間トレンドと時間不変の群間差を取り除きます。"
    )
    if make_figures:
        report.add_figure("parallel_trends",
                          plot_parallel_trends(data, 'y', 'time', 'group', treatment_time=treatment_period),
                          "群ごとの平均の推移")

    report.add_heading("2×2 DID")
    times = sorted(data['time'].unique())
    pre_period = (times[0], treatment_period - 1)
    post_period = (treatment_period, times[-1])
    did = did_estimation(data, 'y', 'd', 'time', 'unit', pre_period, post_period)
    report.add_text(estimate_line("DID", did, 'did_estimate', truth))
    report.add_text(did['parallel_trends_test']['interpretation'])

    covariate_did = did_with_covariates(data, 'y', 'd', 'time', 'unit', ['x'], pre_period, post_period)
    report.add_text(estimate_line("共変量調整 DID", covariate_did, 'did_estimate', truth))
    twfe = twfe_did(data, 'y', 'd', 'unit', 'time')
    report.add_text(estimate_line("TWFE", twfe, 'estimate', truth))
    if make_figures:
        report.add_figure("did_effect", plot_treatment_effect_over_time(did), "2×2 DID の図解")
        report.add_figure("did_estimates",
                          plot_did_coefficients({'2x2': did, 'Covariates': covariate_did, 'TWFE': twfe}),
                          "推定方法ごとの DID 推定値")

    report.add_heading("イベントスタディ")
    data = data.assign(treat_start=data['group'] * treatment_period)
    dynamic = event_study(data, 'y', 'unit', 'time', 'treat_start', window=(-3, 2))
    report.add_table(dynamic['coefficients'], "相対時点ごとの効果（基準: -1）")
    pretrend = dynamic['pretrend_test']
    report.add_text(
        f"処置前の係数がすべて0という Wald 検定: χ²={pretrend['statistic']:.2f}, p={pretrend['p_value']:.3f}。"
        "処置前の係数がゼロ付近にあることは、平行トレンド仮定を支持する証拠になります。"
    )
    if make_figures:
        report.add_figure("event_study", plot_event_study(dynamic['coefficients']), "イベントスタディ")

    report.add_heading("処置時期が異なる場合（スタガード）")
    staggered = make_staggered_did_data(random_state=seed)
    effects = true_effects(staggered)
    stg_twfe = twfe_did(staggered, 'y', 'd', 'unit', 'time')
    result = staggered_did(staggered, 'y', 'unit', 'time', 'first_treated')
    report.add_text(
        "処置効果が時間とともに大きくなると、TWFE は既に処置を受けた個体を対照として使うため、"
        "効果を過小評価します。グループ・時点別の ATT(g,t) を推定してから集計すれば、この問題を避けられます。"
    )
    report.add_text(estimate_line("TWFE（スタガード）", stg_twfe, 'estimate'))
    report.add_text(
        f"Callaway & Sant'Anna（コホート平均）: {result['overall_att']:.3f} "
        f"（SE {result['overall_se']:.3f}、コホート数 {result['n_cohorts']}、未処置 {result['n_never_treated']} 個体）"
    )
    simple = aggregate_group_time_att(result['group_time_att'], method="simple")
    report.add_text(f"処置後セルの単純平均 ATT: {simple['overall_att']:.3f}")

    dynamic_table = result['event_study']
    post_dynamic = dynamic_table[dynamic_table['Relative_Time'] >= 0]
    truth_by_time = pd.Series(
        [effects.get('effect_at_adoption', 0.0) + effects.get('effect_growth', 0.0) * e
         for e in post_dynamic['Relative_Time']],
        index=post_dynamic['Relative_Time'].values,
    ) if effects else None
    report.add_table(dynamic_table, "相対時点ごとの ATT（動的集計）")
    if truth_by_time is not None:
        for e, value in zip(post_dynamic['Relative_Time'], post_dynamic['ATT']):
            report.add_text(compare_with_truth(f"e={e}", value, truth_by_time.loc[e]))
    if make_figures:
        report.add_figure("staggered_event_study", plot_event_study(dynamic_table, true_effects=truth_by_time),
                          "ATT(g,t) の動的集計")

    logger.info(f"Tutorial '{KEY}' finished")
    return report
