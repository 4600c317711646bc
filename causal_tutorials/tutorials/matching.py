"""
チュートリアル: マッチングと傾向スコア

観測された交絡を、傾向スコアマッチング・完全一致マッチング・CEM・IPW で調整し、
最後に未観測の交絡への感度を評価します。
"""

from typing import Optional
import logging

import pandas as pd

from ..datasets import make_observational_data
from ..matching import (
    estimate_propensity_score,
    nearest_neighbor_match,
    exact_match,
    coarsened_exact_match,
    estimate_att,
    inverse_probability_weighting,
    WEIGHT_COL,
)
from ..psm_diagnostics import check_overlap, covariate_balance_table, psm_quality_report
from ..sensitivity_analysis import sensitivity_analysis_report
from ..visualization import plot_love, plot_propensity_overlap, plot_sensitivity_analysis
from .base import TutorialReport, resolve_seed, true_effects, estimate_line

logger = logging.getLogger(__name__)

KEY = "matching"
TITLE = "マッチング: 似た人どうしを比べる"

COVARIATES = ['age', 'income', 'female', 'prior']


def run(data: Optional[pd.DataFrame] = None, random_state: Optional[int] = None,
        make_figures: bool = True) -> TutorialReport:
    """
    マッチングのチュートリアルを実行

    Parameters
    ----------
    data : pd.DataFrame, optional
        'treatment', 'outcome', 'age', 'income', 'female', 'prior', 'age_group' を持つデータ
    """
    seed = resolve_seed(random_state)
    if data is None:
        data = make_observational_data(random_state=seed)
    truth = true_effects(data).get('att')
    logger.info(f"Running tutorial '{KEY}' on {len(data)} rows")

    report = TutorialReport(KEY, TITLE)
    report.add_text(
        "処置を受けるかどうかは年齢・所得・過去の実績に依存しており、これらはアウトカムにも影響します。"
        "単純な比較は交絡によってバイアスします。"
    )
    naive = data.loc[data['treatment'] == 1, 'outcome'].mean() - data.loc[data['treatment'] == 0, 'outcome'].mean()
    report.add_text(f"単純な平均の差: {naive:.3f}" + (f"（真の ATT {truth:.3f}）" if truth is not None else ""))

    report.add_heading("傾向スコアと重なり")
    ps = estimate_propensity_score(data, 'treatment', COVARIATES, random_state=seed)
    is_treated = data['treatment'] == 1
    overlap = check_overlap(ps[is_treated].values, ps[~is_treated].values)
    report.add_text(overlap['recommendation'])
    if make_figures:
        report.add_figure("propensity_overlap", plot_propensity_overlap(ps, data['treatment']),
                          "傾向スコアの分布")

    report.add_heading("最近傍マッチング")
    nn = nearest_neighbor_match(data, 'treatment', COVARIATES, random_state=seed)
    matched = nn['matched_data']
    balance = covariate_balance_table(data, matched, 'treatment', COVARIATES, weight_col=WEIGHT_COL)
    report.add_table(balance[['Covariate', 'SMD_Before', 'SMD_After', 'Balance_After', 'SMD_Improvement_%']],
                     "マッチング前後の共変量バランス")
    if make_figures:
        report.add_figure("love_plot", plot_love(balance), "Love plot")

    quality = psm_quality_report(balance, overlap, nn['n_matched_treated'], int(is_treated.sum()))
    report.add_text(quality['summary'])
    report.add_text("\n".join(quality['recommendations']))

    att = estimate_att(matched, 'outcome', 'treatment', WEIGHT_COL)
    report.add_text(estimate_line("PSM の ATT", att, 'att', truth))

    report.add_heading("完全一致マッチングと CEM")
    exact = exact_match(data, 'treatment', ['female', 'age_group'])
    exact_att = estimate_att(exact['matched_data'], 'outcome', 'treatment', WEIGHT_COL)
    report.add_text(estimate_line(f"完全一致（{exact['n_strata']} 層）", exact_att, 'att', truth))
    cem = coarsened_exact_match(data, 'treatment', COVARIATES)
    cem_att = estimate_att(cem['matched_data'], 'outcome', 'treatment', WEIGHT_COL)
    report.add_text(estimate_line(f"CEM（{cem['n_strata']} 層、未マッチの処置 {cem['n_unmatched_treated']} 人）",
                                  cem_att, 'att', truth))
    report.add_text(
        "性別と年齢層だけの完全一致では所得と過去の実績による交絡が残ります。"
        "CEM は連続変数を区間に粗くしてから完全一致させるため、より多くの交絡因子を扱えます。"
    )

    report.add_heading("逆確率重み付け（IPW）")
    ipw = inverse_probability_weighting(data, 'outcome', 'treatment', COVARIATES, estimand='att',
                                        random_state=seed)
    report.add_text(estimate_line("IPW の ATT", ipw, 'estimate', truth))

    report.add_heading("感度分析")
    pairs = nn['pairs']
    treated_outcomes = data.loc[pairs['treated_index'], 'outcome'].to_numpy()
    control_outcomes = data.loc[pairs['control_index'], 'outcome'].to_numpy()
    sd = data['outcome'].std(ddof=1)
    sensitivity = sensitivity_analysis_report(
        treated_outcomes, control_outcomes,
        effect_estimate=att['att'] / sd, effect_se=att['se'] / sd, effect_type="smd"
    )
    report.add_table(sensitivity['rosenbaum_bounds'], "Rosenbaum bounds")
    report.add_text(sensitivity['summary'])
    report.add_text(sensitivity['recommendation'])
    if make_figures:
        report.add_figure("sensitivity", plot_sensitivity_analysis(sensitivity['rosenbaum_bounds']),
                          "隠れた交絡の強さと p値")

    logger.info(f"Tutorial '{KEY}' finished")
    return report
