"""
チュートリアル: 仮説検定

ランダム化実験のデータで、t検定・比率の検定・並べ替え検定・多重検定補正を扱います。
"""

from typing import Optional
import logging

import pandas as pd

from ..datasets import make_experiment_data
from ..hypothesis_testing import (
    two_sample_ttest,
    proportion_ztest,
    chi_square_independence,
    permutation_test,
    adjust_pvalues,
    required_sample_size,
    describe_test,
)
from ..visualization import plot_null_distribution
from .base import TutorialReport, resolve_seed, true_effects, compare_with_truth

logger = logging.getLogger(__name__)

KEY = "hypothesis"
TITLE = "仮説検定: 効果は偶然で説明できるか"


def run(data: Optional[pd.DataFrame] = None, random_state: Optional[int] = None,
        make_figures: bool = True) -> TutorialReport:
    """
    仮説検定のチュートリアルを実行

    Parameters
    ----------
    data : pd.DataFrame, optional
        'treatment', 'y', 'female', 'block' を持つ実験データ。None なら生成
    random_state : int, optional
        乱数シード
    make_figures : bool
        図を作成するか
    """
    seed = resolve_seed(random_state)
    if data is None:
        data = make_experiment_data(random_state=seed)
    truth = true_effects(data)
    logger.info(f"Running tutorial '{KEY}' on {len(data)} rows")

    report = TutorialReport(KEY, TITLE)
    report.add_text(
        "処置群と対照群のアウトカムの差が、偶然のばらつきだけで生じうる大きさかを確かめます。"
        "帰無仮説は「処置効果はゼロ」です。"
    )

    treated = data.loc[data['treatment'] == 1, 'y'].to_numpy()
    control = data.loc[data['treatment'] == 0, 'y'].to_numpy()

    report.add_heading("Welch の t検定")
    ttest = two_sample_ttest(treated, control)
    report.add_result("t検定", ttest, ['mean_treated', 'mean_control', 'mean_difference', 'se',
                                        'statistic', 'p_value', 'cohens_d'])
    report.add_text(describe_test(ttest))
    report.add_text(compare_with_truth("平均差", ttest['mean_difference'], truth.get('ate')))

    report.add_heading("並べ替え検定")
    perm = permutation_test(treated, control, random_state=seed)
    report.add_result("並べ替え検定", perm, ['observed', 'p_value', 'n_permutations'])
    report.add_text(
        "処置ラベルをランダムに入れ替えて作った帰無分布の中で、観測された差がどれほど極端かを見ます。"
        "分布の仮定を置かない検定で、t検定と同じ結論になるかを確認します。"
    )
    if make_figures:
        report.add_figure("null_distribution",
                          plot_null_distribution(perm['null_distribution'], perm['observed']),
                          "並べ替え検定の帰無分布")

    report.add_heading("比率の検定")
    threshold = data['y'].median()
    successes = [int((treated > threshold).sum()), int((control > threshold).sum())]
    nobs = [len(treated), len(control)]
    ztest = proportion_ztest(successes, nobs)
    report.add_result("比率のz検定（中央値超えの割合）", ztest, ['difference', 'statistic', 'p_value'])

    report.add_heading("ランダム化の確認（カイ二乗検定）")
    chi2 = chi_square_independence(data, 'treatment', 'female')
    report.add_table(chi2['observed'], "処置 × 性別のクロス表")
    report.add_result("独立性の検定", chi2, ['chi2', 'p_value', 'dof', 'cramers_v'])
    report.add_text("ランダム化が機能していれば、処置の割り当ては性別と独立になるはずです。")

    report.add_heading("多重検定補正")
    labels, p_values = [], []
    for name, sub in data.groupby('block'):
        sub_t = sub.loc[sub['treatment'] == 1, 'y'].to_numpy()
        sub_c = sub.loc[sub['treatment'] == 0, 'y'].to_numpy()
        if len(sub_t) >= 2 and len(sub_c) >= 2:
            labels.append(f"block={name}")
            p_values.append(two_sample_ttest(sub_t, sub_c)['p_value'])
    adjusted = adjust_pvalues(p_values, labels=labels)
    report.add_table(adjusted, "ブロック別の検定と補正後p値")
    report.add_text(
        "サブグループごとに検定を繰り返すと、偶然に有意となる検定が増えます。"
        "補正後のp値で判断することで、偽陽性の割合を抑えます。"
    )

    report.add_heading("検出力とサンプルサイズ")
    n_required = required_sample_size(ttest['cohens_d'])
    report.add_text(
        f"観測された効果量 d={ttest['cohens_d']:.2f} を検出力80%で検出するには、"
        f"1群あたり {n_required} 人が必要です（現在: 処置群 {len(treated)} 人）。"
    )

    logger.info(f"Tutorial '{KEY}' finished")
    return report
