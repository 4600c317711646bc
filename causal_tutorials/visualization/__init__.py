"""
可視化パッケージ

すべての関数は matplotlib の Figure を返し、save_path が指定されれば保存します。
"""

from .love_plot import plot_love, plot_smd_comparison, plot_propensity_overlap
from .did_plots import (
    plot_parallel_trends,
    plot_treatment_effect_over_time,
    plot_did_coefficients,
    plot_event_study,
)
from .rdd_plots import plot_rdd, plot_bandwidth_sensitivity
from .synth_plots import plot_synthetic_control, plot_placebo_gaps
from .dag_plot import plot_dag
from .inference_plots import plot_coefficients, plot_null_distribution, plot_sensitivity_analysis

__all__ = [
    'plot_love',
    'plot_smd_comparison',
    'plot_propensity_overlap',
    'plot_parallel_trends',
    'plot_treatment_effect_over_time',
    'plot_did_coefficients',
    'plot_event_study',
    'plot_rdd',
    'plot_bandwidth_sensitivity',
    'plot_synthetic_control',
    'plot_placebo_gaps',
    'plot_dag',
    'plot_coefficients',
    'plot_null_distribution',
    'plot_sensitivity_analysis',
]
