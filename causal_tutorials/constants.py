"""
定数定義モジュール

チュートリアルの推定関数で使用される既定値を管理します。
config.yaml から設定値を読み込み、デフォルト値をここで定義します。
"""

from .config_loader import get_config


class StatisticalConfig:
    """統計的検定パラメータ"""

    DEFAULT_SIGNIFICANCE_LEVEL = 0.05
    DEFAULT_CONFIDENCE_LEVEL = 0.95
    DEFAULT_CORRECTION_METHOD = 'fdr_bh'
    DEFAULT_N_PERMUTATIONS = 2000

    @staticmethod
    def get_significance_level():
        return get_config('statistical_tests.significance_level', StatisticalConfig.DEFAULT_SIGNIFICANCE_LEVEL)

    @staticmethod
    def get_confidence_level():
        return get_config('statistical_tests.confidence_level', StatisticalConfig.DEFAULT_CONFIDENCE_LEVEL)

    @staticmethod
    def get_correction_method():
        return get_config('statistical_tests.multiple_testing_correction', StatisticalConfig.DEFAULT_CORRECTION_METHOD)

    @staticmethod
    def get_n_permutations():
        return get_config('statistical_tests.n_permutations', StatisticalConfig.DEFAULT_N_PERMUTATIONS)


class BootstrapConfig:
    """ブートストラップと乱数のパラメータ"""

    DEFAULT_N_BOOTSTRAP = 500
    DEFAULT_SEED = 42

    @staticmethod
    def get_n_bootstrap():
        return get_config('bootstrap.n_bootstrap', BootstrapConfig.DEFAULT_N_BOOTSTRAP)

    @staticmethod
    def get_seed():
        return get_config('random.seed', BootstrapConfig.DEFAULT_SEED)


class MatchingConfig:
    """マッチングのパラメータ"""

    DEFAULT_CALIPER = 0.2
    DEFAULT_N_NEIGHBORS = 1
    DEFAULT_CEM_BINS = 5
    DEFAULT_SMD_THRESHOLD = 0.1

    @staticmethod
    def get_caliper():
        return get_config('matching.caliper', MatchingConfig.DEFAULT_CALIPER)

    @staticmethod
    def get_n_neighbors():
        return get_config('matching.n_neighbors', MatchingConfig.DEFAULT_N_NEIGHBORS)

    @staticmethod
    def get_cem_bins():
        return get_config('matching.cem_bins', MatchingConfig.DEFAULT_CEM_BINS)

    @staticmethod
    def get_smd_threshold():
        return get_config('matching.smd_threshold', MatchingConfig.DEFAULT_SMD_THRESHOLD)


class IVConfig:
    """操作変数法のパラメータ"""

    DEFAULT_WEAK_INSTRUMENT_F = 10.0

    @staticmethod
    def get_weak_instrument_f():
        return get_config('iv.weak_instrument_f', IVConfig.DEFAULT_WEAK_INSTRUMENT_F)


class RDDConfig:
    """回帰不連続デザインのパラメータ"""

    DEFAULT_KERNEL = 'triangular'
    DEFAULT_BANDWIDTH_GRID_SIZE = 15
    DEFAULT_DENSITY_BANDWIDTH_FRACTION = 0.1

    @staticmethod
    def get_kernel():
        return get_config('rdd.kernel', RDDConfig.DEFAULT_KERNEL)

    @staticmethod
    def get_bandwidth_grid_size():
        return get_config('rdd.bandwidth_grid_size', RDDConfig.DEFAULT_BANDWIDTH_GRID_SIZE)

    @staticmethod
    def get_density_bandwidth_fraction():
        return get_config('rdd.density_bandwidth_fraction', RDDConfig.DEFAULT_DENSITY_BANDWIDTH_FRACTION)


class SyntheticControlConfig:
    """合成コントロール法のパラメータ"""

    DEFAULT_MAXITER = 1000
    DEFAULT_TOLERANCE = 1e-10
    DEFAULT_RMSPE_THRESHOLD = 5.0

    @staticmethod
    def get_maxiter():
        return get_config('synthetic_control.maxiter', SyntheticControlConfig.DEFAULT_MAXITER)

    @staticmethod
    def get_tolerance():
        return get_config('synthetic_control.tolerance', SyntheticControlConfig.DEFAULT_TOLERANCE)

    @staticmethod
    def get_rmspe_threshold():
        return get_config('synthetic_control.rmspe_threshold', SyntheticControlConfig.DEFAULT_RMSPE_THRESHOLD)


class NumericalConfig:
    """数値計算パラメータ"""

    DEFAULT_EPSILON = 1e-8

    @staticmethod
    def get_epsilon():
        return get_config('numerical.epsilon', NumericalConfig.DEFAULT_EPSILON)


class OutputConfig:
    """出力パラメータ"""

    DEFAULT_DIRECTORY = './tutorial_output'
    DEFAULT_FIGURE_DPI = 300

    @staticmethod
    def get_directory():
        return get_config('output.directory', OutputConfig.DEFAULT_DIRECTORY)

    @staticmethod
    def get_figure_dpi():
        return get_config('output.figure_dpi', OutputConfig.DEFAULT_FIGURE_DPI)
