"""
因果グラフ（DAG）の描画
"""

from typing import Iterable, Optional, Tuple
import logging

import networkx as nx

from .style import new_figure, finish_figure

logger = logging.getLogger(__name__)


def plot_dag(
    dag,
    highlight: Iterable[str] = (),
    save_path: Optional[str] = None,
    figsize: Tuple = (8, 6),
    close: bool = True
):
    """
    CausalDAG を描画

    Parameters
    ----------
    dag : CausalDAG
        描画するグラフ
    highlight : Iterable[str]
        強調するノード（処置・アウトカムなど）
    save_path : str, optional
        保存先パス

    Notes
    -----
    潜在変数は破線の枠の灰色ノードで描きます。
    配置は階層（トポロジカル順）に基づきます。
    """
    fig, ax = new_figure(figsize)
    ax.grid(False)
    ax.set_axis_off()

    graph = dag.graph.copy()
    layers = {}
    for node in dag.topological_order():
        parents = list(graph.predecessors(node))
        layers[node] = 0 if not parents else max(layers[p] for p in parents) + 1
    nx.set_node_attributes(graph, layers, 'layer')
    pos = nx.multipartite_layout(graph, subset_key='layer', align='horizontal', scale=1.0)
    # 上から下へ因果が流れるように反転
    pos = {node: (xy[0], -xy[1]) for node, xy in pos.items()}

    highlight = set(highlight)
    latent = [n for n in graph.nodes if n in dag.latent]
    observed = [n for n in graph.nodes if n not in dag.latent]
    colors = ['salmon' if n in highlight else 'lightblue' for n in observed]

    nx.draw_networkx_nodes(graph, pos, nodelist=observed, node_color=colors,
                           node_size=1800, edgecolors='black', ax=ax)
    if latent:
        nx.draw_networkx_nodes(graph, pos, nodelist=latent, node_color='lightgray',
                               node_size=1800, edgecolors='black', linewidths=1.5,
                               node_shape='o', ax=ax).set_linestyle('--')
    nx.draw_networkx_edges(graph, pos, arrows=True, arrowsize=20, node_size=1800, ax=ax)
    nx.draw_networkx_labels(graph, pos, font_size=11, font_weight='bold', ax=ax)

    ax.set_title('Causal DAG', fontsize=14, fontweight='bold')

    return finish_figure(fig, save_path, close, "DAG plot")
