"""
図の共通スタイルと保存処理
"""

from typing import Optional, Tuple
import logging

import matplotlib.pyplot as plt
import seaborn as sns

from ..constants import OutputConfig

logger = logging.getLogger(__name__)


def new_figure(figsize: Tuple = (10, 6)):
    """whitegrid スタイルの Figure と Axes を作成"""
    sns.set_style("whitegrid")
    return plt.subplots(figsize=figsize)


def finish_figure(fig, save_path: Optional[str] = None, close: bool = True, name: str = "Figure"):
    """
    レイアウトを整え、必要なら保存して Figure を返す

    close=True の場合も Figure オブジェクトは返されるため、後から savefig できます。
    """
    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=OutputConfig.get_figure_dpi(), bbox_inches='tight')
        logger.info(f"{name} saved to {save_path}")

    if close:
        plt.close(fig)

    return fig
