"""
ユーティリティモジュール

ロギング設定、結果の整形、乱数生成など共通のヘルパー関数を提供します。
"""

import time
import logging
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Any, Optional, Union

import numpy as np
from scipy import stats

from .config_loader import get_config
from .constants import StatisticalConfig, NumericalConfig

PACKAGE_LOGGER_NAME = 'causal_tutorials'


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    ロギングの設定を行う

    Parameters
    ----------
    level : str, optional
        ログレベル。None の場合は config.yaml の logging.level

    Returns
    -------
    logging.Logger
        設定済みのパッケージロガー
    """
    log_config = get_config('logging', {}) or {}
    level_name = (level or log_config.get('level', 'INFO')).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_format = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.setLevel(log_level)

    # 既存のハンドラを削除（重複登録を防止）
    logger.handlers.clear()

    if log_config.get('console_logging', True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(console_handler)

    if log_config.get('file_logging', False):
        log_dir = Path(log_config.get('log_dir', './logs'))
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_dir / log_config.get('log_file', 'causal_tutorials.log'),
            maxBytes=log_config.get('max_bytes', 10485760),
            backupCount=log_config.get('backup_count', 5)
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(file_handler)

    return logger


@contextmanager
def log_execution_time(
    logger: logging.Logger,
    operation_name: str,
    level: int = logging.INFO
) -> Generator[dict, None, None]:
    """
    処理時間をログに記録するコンテキストマネージャー

    Parameters
    ----------
    logger : logging.Logger
        ロガーインスタンス
    operation_name : str
        操作名
    level : int
        ログレベル

    Yields
    ------
    dict
        メタデータを格納する辞書

    Examples
    --------
    >>> with log_execution_time(logger, "synthetic control placebo") as metadata:
    ...     run_placebos()
    ...     metadata['n_placebos'] = 38
    """
    metadata: dict = {}
    start_time = time.time()

    logger.log(level, f"Starting: {operation_name}")

    try:
        yield metadata
    except Exception as e:
        elapsed = time.time() - start_time
        logger.error(
            f"Failed: {operation_name} after {elapsed:.2f}s - {type(e).__name__}: {e}",
            exc_info=True
        )
        raise
    else:
        elapsed = time.time() - start_time
        metadata_str = ", ".join(f"{k}={v}" for k, v in metadata.items())
        if metadata_str:
            logger.log(level, f"Completed: {operation_name} in {elapsed:.2f}s ({metadata_str})")
        else:
            logger.log(level, f"Completed: {operation_name} in {elapsed:.2f}s")


def resolve_alpha(alpha: Optional[float] = None) -> float:
    """alpha が None なら設定ファイルの有意水準を返す"""
    if alpha is None:
        return float(StatisticalConfig.get_significance_level())
    return float(alpha)


def normal_critical_value(alpha: float) -> float:
    """両側検定の正規分布臨界値"""
    return float(stats.norm.ppf(1 - alpha / 2))


def make_rng(random_state: Union[None, int, np.random.Generator] = None) -> np.random.Generator:
    """
    乱数生成器を作成

    Generator が渡された場合はそのまま返します。
    """
    if isinstance(random_state, np.random.Generator):
        return random_state
    return np.random.default_rng(random_state)


def safe_division(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    ゼロ除算を安全に処理する除算

    Parameters
    ----------
    numerator : float
        分子
    denominator : float
        分母
    default : float
        分母がほぼゼロの場合の返り値
    """
    if abs(denominator) < NumericalConfig.get_epsilon():
        return default
    return numerator / denominator


def format_pvalue(p_value: float, threshold: float = 0.001) -> str:
    """
    p値を見やすくフォーマット

    Examples
    --------
    >>> format_pvalue(0.0001)
    'p < 0.001'
    >>> format_pvalue(0.045)
    'p = 0.045'
    """
    if np.isnan(p_value):
        return "p = NA"
    if p_value < threshold:
        return f"p < {threshold}"
    return f"p = {p_value:.3f}"


def format_ci(lower: float, upper: float, decimals: int = 3) -> str:
    """
    信頼区間を見やすくフォーマット

    Examples
    --------
    >>> format_ci(0.123, 0.456)
    '[0.123, 0.456]'
    """
    fmt = f"{{:.{decimals}f}}"
    return f"[{fmt.format(lower)}, {fmt.format(upper)}]"


def get_significance_stars(p_value: float) -> str:
    """
    p値から有意性マーカーを取得

    Examples
    --------
    >>> get_significance_stars(0.0001)
    '***'
    >>> get_significance_stars(0.02)
    '*'
    >>> get_significance_stars(0.2)
    ''
    """
    if p_value is None or np.isnan(p_value):
        return ""
    if p_value < 0.001:
        return "***"
    elif p_value < 0.01:
        return "**"
    elif p_value < 0.05:
        return "*"
    elif p_value < 0.1:
        return "."
    else:
        return ""


def interpret_significance(p_value: float, alpha: float, label: str = "効果") -> str:
    """p値と有意水準から一行の解釈テキストを生成"""
    if p_value < alpha:
        return f"✅ {label}は有意水準{alpha}で統計的に有意です（{format_pvalue(p_value)}）"
    return f"⚠️ {label}は有意水準{alpha}で有意ではありません（{format_pvalue(p_value)}）"
