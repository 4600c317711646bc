"""
カスタム例外クラス

チュートリアル用因果推論パッケージの例外階層を定義します。
"""


class CausalInferenceError(Exception):
    """因果推論パッケージの基底例外クラス"""
    pass


class InvalidInputError(CausalInferenceError):
    """入力データの検証エラー"""
    pass


class InsufficientDataError(CausalInferenceError):
    """データ不足エラー"""
    pass


class ConvergenceError(CausalInferenceError):
    """最適化の収束失敗エラー"""
    pass


class ConfigurationError(CausalInferenceError):
    """設定エラー"""
    pass


class MatchingError(CausalInferenceError):
    """マッチング失敗エラー"""
    pass


class EstimationError(CausalInferenceError):
    """推定失敗エラー"""
    pass


class IdentificationError(CausalInferenceError):
    """識別上の問題（巡回グラフ、未知のノード、カットオフ片側のデータ欠如など）"""
    pass
