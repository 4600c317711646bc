"""
因果推論チュートリアル

このパッケージには以下のモジュールが含まれます：
- hypothesis_testing: 仮説検定（t検定、並べ替え検定、多重検定補正）
- regression: 回帰分析（OLS, GLM, FWL定理, 欠落変数バイアス）
- dag: 因果DAG（d分離、バックドア基準）
- randomization: ランダム化実験
- mediation: 媒介分析
- iv_analysis: 操作変数法（2SLS）
- panel_data: パネルデータ（固定効果、変量効果）
- matching: マッチングと傾向スコア
- psm_diagnostics: 傾向スコアマッチングの診断指標
- sensitivity_analysis: 感度分析（Rosenbaum bounds, E-value）
- cluster_robust: クラスター頑健標準誤差
- synthetic_control: 合成コントロール法
- did_analysis: 差分の差分法（Difference-in-Differences）
- rdd_analysis: 回帰不連続デザイン
- datasets: 真の効果が既知のサンプルデータ
- visualization, tutorials: 図とチュートリアル（matplotlib を読み込むため明示的に import）
"""

from .exceptions import (
    CausalInferenceError,
    InvalidInputError,
    InsufficientDataError,
    ConvergenceError,
    ConfigurationError,
    MatchingError,
    EstimationError,
    IdentificationError,
)

from .hypothesis_testing import (
    two_sample_ttest,
    proportion_ztest,
    chi_square_independence,
    permutation_test,
    adjust_pvalues,
    required_sample_size,
)

from .regression import (
    fit_ols,
    fit_glm,
    fit_logit,
    regression_table,
    frisch_waugh_lovell,
    omitted_variable_bias,
)

from .dag import CausalDAG

from .randomization import (
    complete_randomization,
    block_randomization,
    cluster_randomization,
    balance_table,
    difference_in_means,
    regression_adjusted_ate,
    randomization_inference,
)

from .mediation import (
    baron_kenny,
    sobel_test,
    bootstrap_indirect_effect,
    mediation_analysis,
)

from .iv_analysis import (
    first_stage_diagnostics,
    two_stage_least_squares,
    wald_estimator,
    compare_ols_iv,
)

from .panel_data import (
    within_transform,
    fit_panel_model,
    hausman_test,
    compare_panel_models,
)

from .matching import (
    estimate_propensity_score,
    nearest_neighbor_match,
    exact_match,
    coarsened_exact_match,
    estimate_att,
    inverse_probability_weighting,
)

from .psm_diagnostics import (
    calculate_smd,
    covariate_balance_table,
    check_overlap,
    psm_quality_report,
)

from .sensitivity_analysis import (
    rosenbaum_bounds,
    calculate_e_value,
    sensitivity_analysis_report,
)

from .cluster_robust import (
    cluster_robust_se,
    cluster_robust_inference,
)

from .synthetic_control import (
    fit_synthetic_control,
    placebo_in_space,
    placebo_in_time,
    leave_one_out,
)

from .did_analysis import (
    did_estimation,
    parallel_trends_test,
    did_with_covariates,
    twfe_did,
    event_study,
    group_time_att,
    aggregate_group_time_att,
    staggered_did,
)

from .rdd_analysis import (
    estimate_rdd,
    select_bandwidth,
    fuzzy_rdd,
    density_test,
    covariate_balance_at_cutoff,
    placebo_cutoffs,
    bandwidth_sensitivity,
)

__version__ = "1.0.0"

__all__ = [
    # Exceptions
    'CausalInferenceError',
    'InvalidInputError',
    'InsufficientDataError',
    'ConvergenceError',
    'ConfigurationError',
    'MatchingError',
    'EstimationError',
    'IdentificationError',

    # Hypothesis Testing
    'two_sample_ttest',
    'proportion_ztest',
    'chi_square_independence',
    'permutation_test',
    'adjust_pvalues',
    'required_sample_size',

    # Regression
    'fit_ols',
    'fit_glm',
    'fit_logit',
    'regression_table',
    'frisch_waugh_lovell',
    'omitted_variable_bias',

    # DAG
    'CausalDAG',

    # Randomization
    'complete_randomization',
    'block_randomization',
    'cluster_randomization',
    'balance_table',
    'difference_in_means',
    'regression_adjusted_ate',
    'randomization_inference',

    # Mediation
    'baron_kenny',
    'sobel_test',
    'bootstrap_indirect_effect',
    'mediation_analysis',

    # Instrumental Variables
    'first_stage_diagnostics',
    'two_stage_least_squares',
    'wald_estimator',
    'compare_ols_iv',

    # Panel Data
    'within_transform',
    'fit_panel_model',
    'hausman_test',
    'compare_panel_models',

    # Matching
    'estimate_propensity_score',
    'nearest_neighbor_match',
    'exact_match',
    'coarsened_exact_match',
    'estimate_att',
    'inverse_probability_weighting',

    # PSM Diagnostics
    'calculate_smd',
    'covariate_balance_table',
    'check_overlap',
    'psm_quality_report',

    # Sensitivity Analysis
    'rosenbaum_bounds',
    'calculate_e_value',
    'sensitivity_analysis_report',

    # Cluster Robust
    'cluster_robust_se',
    'cluster_robust_inference',

    # Synthetic Control
    'fit_synthetic_control',
    'placebo_in_space',
    'placebo_in_time',
    'leave_one_out',

    # DID Analysis
    'did_estimation',
    'parallel_trends_test',
    'did_with_covariates',
    'twfe_did',
    'event_study',
    'group_time_att',
    'aggregate_group_time_att',
    'staggered_did',

    # RDD
    'estimate_rdd',
    'select_bandwidth',
    'fuzzy_rdd',
    'density_test',
    'covariate_balance_at_cutoff',
    'placebo_cutoffs',
    'bandwidth_sensitivity',
]
