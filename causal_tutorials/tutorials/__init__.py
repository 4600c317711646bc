"""
チュートリアル集

各モジュールは run(data=None, random_state=None, make_figures=True) を持ち、
TutorialReport を返します。
"""

from collections import OrderedDict
from typing import Dict, Iterable, Optional
import logging

from ..exceptions import InvalidInputError
from ..utils import log_execution_time
from .base import TutorialReport
from . import (
    hypothesis,
    regression,
    dags,
    randomization,
    mediation,
    iv,
    panel,
    matching,
    synthetic_control,
    did,
    rdd,
)

logger = logging.getLogger(__name__)

TUTORIALS = OrderedDict(
    (module.KEY, module)
    for module in (
        hypothesis,
        regression,
        dags,
        randomization,
        mediation,
        iv,
        panel,
        matching,
        synthetic_control,
        did,
        rdd,
    )
)


def get_tutorial(key: str):
    """キーからチュートリアルのモジュールを取得"""
    if key not in TUTORIALS:
        raise InvalidInputError(f"Unknown tutorial '{key}'. Available: {', '.join(TUTORIALS)}")
    return TUTORIALS[key]


def run_tutorial(key: str, random_state: Optional[int] = None, make_figures: bool = True) -> TutorialReport:
    """1つのチュートリアルを生成データで実行"""
    module = get_tutorial(key)
    with log_execution_time(logger, f"tutorial '{key}'"):
        return module.run(random_state=random_state, make_figures=make_figures)


def run_all(
    keys: Optional[Iterable[str]] = None,
    random_state: Optional[int] = None,
    make_figures: bool = True
) -> Dict[str, TutorialReport]:
    """
    複数のチュートリアルを順に実行

    Parameters
    ----------
    keys : Iterable[str], optional
        実行するチュートリアル。None はすべて
    random_state : int, optional
        乱数シード
    make_figures : bool
        図を作成するか

    Returns
    -------
    Dict[str, TutorialReport]
        キー -> レポート（実行順）
    """
    keys = list(TUTORIALS) if keys is None else list(keys)
    for key in keys:
        get_tutorial(key)
    return OrderedDict((key, run_tutorial(key, random_state, make_figures)) for key in keys)


__all__ = ['TUTORIALS', 'TutorialReport', 'get_tutorial', 'run_tutorial', 'run_all']
