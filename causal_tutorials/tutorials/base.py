"""
チュートリアルレポート

文章・表・図・推定結果を順に積み上げ、Markdown と PNG に書き出します。
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd

from ..constants import BootstrapConfig, OutputConfig, StatisticalConfig
from ..utils import format_ci, format_pvalue

logger = logging.getLogger(__name__)

SCALAR_TYPES = (int, float, bool, str, np.integer, np.floating, np.bool_)


def resolve_seed(random_state: Optional[int]) -> int:
    """random_state が None なら設定ファイルのシードを使う"""
    return BootstrapConfig.get_seed() if random_state is None else random_state


def true_effects(data: pd.DataFrame) -> Dict[str, float]:
    """データ生成関数が付けた真の効果（外部データでは空）"""
    return dict(data.attrs.get('true_effects', {}))


def compare_with_truth(label: str, estimate: float, truth: Optional[float]) -> str:
    """推定値と真の値の比較文"""
    if truth is None:
        return f"{label}: {estimate:.3f}"
    return f"{label}: {estimate:.3f}（真の値 {truth:.3f}、差 {estimate - truth:+.3f}）"


def ci_label(level: Optional[float] = None) -> str:
    """信頼区間の見出し（例: 95%CI）。level が None なら設定ファイルの信頼水準"""
    if level is None:
        level = StatisticalConfig.get_confidence_level()
    return f"{round(float(level) * 100, 1):g}%CI"


def estimate_line(label: str, result: Dict, estimate_key: str, truth: Optional[float] = None) -> str:
    """推定値・信頼区間・p値を1行にまとめる"""
    text = compare_with_truth(label, result[estimate_key], truth)
    if 'ci_lower' in result and 'ci_upper' in result:
        text += f"、{ci_label()} {format_ci(result['ci_lower'], result['ci_upper'])}"
    if 'p_value' in result:
        text += f"、{format_pvalue(result['p_value'])}"
    return text


class TutorialReport:
    """
    1つのチュートリアルの出力

    Attributes
    ----------
    key : str
        チュートリアルの識別子（ファイル名に使用）
    title : str
        見出し
    results : Dict[str, Dict]
        add_result() で登録した推定結果
    figures : Dict[str, matplotlib.figure.Figure]
        add_figure() で登録した図
    """

    def __init__(self, key: str, title: str):
        self.key = key
        self.title = title
        self.results: Dict[str, Dict] = {}
        self.figures: Dict[str, Any] = {}
        self._blocks: List[Tuple[str, Any]] = []

    def __repr__(self) -> str:
        return f"TutorialReport(key={self.key!r}, blocks={len(self._blocks)}, figures={len(self.figures)})"

    def add_heading(self, text: str, level: int = 2) -> None:
        self._blocks.append(('heading', (level, text)))

    def add_text(self, text: str) -> None:
        self._blocks.append(('text', text.strip()))

    def add_table(self, table: Union[pd.DataFrame, pd.Series], caption: Optional[str] = None,
                  decimals: int = 4) -> None:
        """
        表を追加

        表は印字された出力として固定幅のコードブロックに書き出します。
        """
        if isinstance(table, pd.Series):
            table = table.to_frame()
        self._blocks.append(('table', (table.copy(), caption, decimals)))

    def add_figure(self, name: str, figure, caption: Optional[str] = None) -> None:
        """図を追加（save() で <key>_<name>.png として保存）"""
        self.figures[name] = figure
        self._blocks.append(('figure', (name, caption)))

    def add_result(self, name: str, result: Dict, keys: Optional[Iterable[str]] = None) -> None:
        """
        推定結果を登録し、スカラー値を一覧として表示

        Parameters
        ----------
        name : str
            結果の名前
        result : Dict
            分析関数の戻り値
        keys : Iterable[str], optional
            表示するキー。None の場合はスカラー値すべて
        """
        self.results[name] = result
        keys = list(keys) if keys is not None else list(result.keys())
        items = [(k, result[k]) for k in keys if k in result and isinstance(result[k], SCALAR_TYPES)]
        self._blocks.append(('result', (name, items)))

    @staticmethod
    def _format_value(value) -> str:
        if isinstance(value, (bool, np.bool_)):
            return str(bool(value))
        if isinstance(value, (float, np.floating)):
            return f"{value:.4f}"
        return str(value)

    def to_markdown(self) -> str:
        """Markdown 文字列に変換"""
        lines = [f"# {self.title}", ""]

        for kind, payload in self._blocks:
            if kind == 'heading':
                level, text = payload
                lines.append(f"{'#' * level} {text}")
            elif kind == 'text':
                lines.append(payload)
            elif kind == 'table':
                table, caption, decimals = payload
                if caption:
                    lines.append(f"**{caption}**")
                    lines.append("")
                with pd.option_context('display.max_rows', 200, 'display.max_columns', 50, 'display.width', 200):
                    body = table.to_string(float_format=lambda v: f"{v:.{decimals}f}")
                lines.extend(["```", body, "```"])
            elif kind == 'figure':
                name, caption = payload
                lines.append(f"![{caption or name}]({self.key}_{name}.png)")
            elif kind == 'result':
                name, items = payload
                lines.append(f"**{name}**")
                lines.append("")
                lines.extend(f"- {k}: {self._format_value(v)}" for k, v in items)
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    def save(self, output_dir: Optional[Union[str, Path]] = None) -> Path:
        """
        <key>.md と図の PNG を書き出す

        Returns
        -------
        Path
            Markdown ファイルのパス
        """
        output_dir = Path(output_dir or OutputConfig.get_directory())
        output_dir.mkdir(parents=True, exist_ok=True)

        dpi = OutputConfig.get_figure_dpi()
        for name, figure in self.figures.items():
            figure.savefig(output_dir / f"{self.key}_{name}.png", dpi=dpi, bbox_inches='tight')

        path = output_dir / f"{self.key}.md"
        path.write_text(self.to_markdown(), encoding='utf-8')
        logger.info(f"Tutorial '{self.key}' saved to {path} ({len(self.figures)} figures)")
        return path
