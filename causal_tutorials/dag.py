"""
因果グラフ（DAG）モジュール

有向非巡回グラフで因果構造を表し、交絡・合流点・調整集合を調べる機能を提供します。

主な機能：
1. d分離の判定（祖先グラフのモラル化による判定）
2. バックドアパスの列挙と開閉判定
3. バックドア基準を満たす調整集合の列挙
4. 操作変数の条件の確認
5. 線形構造方程式モデルからのデータ生成
"""

import itertools
import numpy as np
import pandas as pd
import networkx as nx
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union
import logging

from .exceptions import IdentificationError, InvalidInputError
from .utils import make_rng
from .validators import validate_positive_integer

logger = logging.getLogger(__name__)

NodeSet = Union[str, Iterable[str]]


def _as_set(nodes: NodeSet) -> Set[str]:
    if nodes is None:
        return set()
    if isinstance(nodes, str):
        return {nodes}
    return set(nodes)


class CausalDAG:
    """
    因果DAG

    Parameters
    ----------
    edges : Iterable[Tuple[str, str]], optional
        (原因, 結果) の辺のリスト
    latent : Iterable[str], optional
        観測されない変数の名前

    Examples
    --------
    >>> dag = CausalDAG([("ability", "educ"), ("ability", "wage"), ("educ", "wage")],
    ...                 latent=["ability"])
    >>> dag.backdoor_paths("educ", "wage")
    [['educ', 'ability', 'wage']]
    """

    def __init__(
        self,
        edges: Optional[Iterable[Tuple[str, str]]] = None,
        latent: Optional[Iterable[str]] = None
    ):
        self.graph = nx.DiGraph()
        self.latent: Set[str] = set(latent or [])
        for node in self.latent:
            self.graph.add_node(node)
        if edges:
            self.add_edges(edges)

    def __repr__(self) -> str:
        return f"CausalDAG(nodes={len(self.graph)}, edges={self.graph.number_of_edges()}, latent={sorted(self.latent)})"

    # ------------------------------------------------------------------
    # 構築
    # ------------------------------------------------------------------
    def add_node(self, node: str, latent: bool = False) -> None:
        """ノードを追加"""
        self.graph.add_node(node)
        if latent:
            self.latent.add(node)

    def add_edge(self, cause: str, effect: str) -> None:
        """
        辺 cause -> effect を追加

        Raises
        ------
        IdentificationError
            辺の追加で巡回が生じる場合
        """
        if cause == effect:
            raise IdentificationError(f"Self-loop on '{cause}' is not allowed in a DAG")

        existed = self.graph.has_edge(cause, effect)
        self.graph.add_edge(cause, effect)

        if not nx.is_directed_acyclic_graph(self.graph):
            if not existed:
                self.graph.remove_edge(cause, effect)
            logger.error(f"Edge {cause} -> {effect} would create a cycle")
            raise IdentificationError(
                f"Adding edge {cause} -> {effect} creates a cycle; causal graphs must be acyclic"
            )

    def add_edges(self, edges: Iterable[Tuple[str, str]]) -> None:
        """複数の辺を追加"""
        for cause, effect in edges:
            self.add_edge(cause, effect)

    # ------------------------------------------------------------------
    # 基本的な問い合わせ
    # ------------------------------------------------------------------
    def _check_nodes(self, *nodes: str) -> None:
        for node in nodes:
            if node not in self.graph:
                raise IdentificationError(
                    f"Unknown node '{node}'. Known nodes: {sorted(self.graph.nodes)}"
                )

    @property
    def nodes(self) -> List[str]:
        return list(self.graph.nodes)

    @property
    def edges(self) -> List[Tuple[str, str]]:
        return list(self.graph.edges)

    @property
    def observed_nodes(self) -> List[str]:
        return [node for node in self.graph.nodes if node not in self.latent]

    def parents(self, node: str) -> Set[str]:
        self._check_nodes(node)
        return set(self.graph.predecessors(node))

    def children(self, node: str) -> Set[str]:
        self._check_nodes(node)
        return set(self.graph.successors(node))

    def ancestors(self, node: str) -> Set[str]:
        self._check_nodes(node)
        return nx.ancestors(self.graph, node)

    def descendants(self, node: str) -> Set[str]:
        self._check_nodes(node)
        return nx.descendants(self.graph, node)

    def topological_order(self) -> List[str]:
        return list(nx.topological_sort(self.graph))

    # ------------------------------------------------------------------
    # d分離
    # ------------------------------------------------------------------
    @staticmethod
    def _d_separated(graph: nx.DiGraph, xs: Set[str], ys: Set[str], zs: Set[str]) -> bool:
        """祖先グラフをモラル化して d分離を判定"""
        relevant = xs | ys | zs
        ancestral = set(relevant)
        for node in relevant:
            ancestral |= nx.ancestors(graph, node)

        sub = graph.subgraph(ancestral)
        moral = nx.Graph(sub.to_undirected())
        for node in sub.nodes:
            for a, b in itertools.combinations(list(sub.predecessors(node)), 2):
                moral.add_edge(a, b)

        moral.remove_nodes_from(zs)
        for x in xs:
            reachable = nx.node_connected_component(moral, x)
            if reachable & ys:
                return False
        return True

    def is_d_separated(self, x: NodeSet, y: NodeSet, given: NodeSet = ()) -> bool:
        """
        x と y が given の下で d分離されているか

        Parameters
        ----------
        x, y : str or Iterable[str]
            ノード（集合）
        given : str or Iterable[str]
            条件付けるノード集合

        Returns
        -------
        bool
            d分離されていれば True（条件付き独立が含意される）
        """
        xs, ys, zs = _as_set(x), _as_set(y), _as_set(given)
        self._check_nodes(*(xs | ys | zs))

        if xs & ys or (xs | ys) & zs:
            raise InvalidInputError("x, y and given must be disjoint node sets")

        return self._d_separated(self.graph, xs, ys, zs)

    # ------------------------------------------------------------------
    # パス
    # ------------------------------------------------------------------
    def all_paths(self, x: str, y: str) -> List[List[str]]:
        """向きを無視した x から y への単純パス"""
        self._check_nodes(x, y)
        return [list(p) for p in nx.all_simple_paths(self.graph.to_undirected(), x, y)]

    def is_collider_on_path(self, path: List[str], index: int) -> bool:
        """path[index] がパス上で合流点（→ node ←）か"""
        prev_node, node, next_node = path[index - 1], path[index], path[index + 1]
        return self.graph.has_edge(prev_node, node) and self.graph.has_edge(next_node, node)

    def is_path_open(self, path: List[str], given: NodeSet = ()) -> bool:
        """
        パスが given の下で開いているか

        Notes
        -----
        - 非合流点が条件付けられていればパスは閉じる
        - 合流点は、それ自身かその子孫が条件付けられている場合のみ開く
        """
        zs = _as_set(given)
        for i in range(1, len(path) - 1):
            node = path[i]
            if self.is_collider_on_path(path, i):
                if node not in zs and not (self.descendants(node) & zs):
                    return False
            elif node in zs:
                return False
        return True

    def backdoor_paths(self, treatment: str, outcome: str) -> List[List[str]]:
        """処置に向かう矢印で始まるパス（バックドアパス）"""
        return [
            path for path in self.all_paths(treatment, outcome)
            if self.graph.has_edge(path[1], path[0])
        ]

    def open_backdoor_paths(self, treatment: str, outcome: str, given: NodeSet = ()) -> List[List[str]]:
        """given の下で開いているバックドアパス"""
        return [
            path for path in self.backdoor_paths(treatment, outcome)
            if self.is_path_open(path, given)
        ]

    def colliders(self) -> List[Tuple[str, str, str]]:
        """合流点 (a, c, b) : a -> c <- b"""
        triples = []
        for node in self.graph.nodes:
            for a, b in itertools.combinations(sorted(self.graph.predecessors(node)), 2):
                triples.append((a, node, b))
        return triples

    def confounders(self, treatment: str, outcome: str) -> Set[str]:
        """処置とアウトカムの共通原因（処置を経由しない経路でアウトカムに至る処置の祖先）"""
        self._check_nodes(treatment, outcome)
        without_treatment = self.graph.copy()
        without_treatment.remove_node(treatment)
        return self.ancestors(treatment) & nx.ancestors(without_treatment, outcome)

    # ------------------------------------------------------------------
    # 識別
    # ------------------------------------------------------------------
    def _without_outgoing(self, node: str) -> nx.DiGraph:
        graph = self.graph.copy()
        graph.remove_edges_from(list(graph.out_edges(node)))
        return graph

    def satisfies_backdoor(self, treatment: str, outcome: str, adjustment: NodeSet) -> bool:
        """
        調整集合がバックドア基準を満たすか

        Notes
        -----
        1. 調整集合に処置の子孫を含まない
        2. 処置から出る辺を除いたグラフで、処置とアウトカムが調整集合の下で d分離される
        """
        zs = _as_set(adjustment)
        self._check_nodes(treatment, outcome, *zs)

        if {treatment, outcome} & zs:
            raise InvalidInputError("Adjustment set must not contain the treatment or the outcome")
        latent_used = zs & self.latent
        if latent_used:
            raise InvalidInputError(f"Cannot adjust for latent variable(s): {sorted(latent_used)}")

        if zs & self.descendants(treatment):
            return False

        return self._d_separated(self._without_outgoing(treatment), {treatment}, {outcome}, zs)

    def adjustment_sets(
        self,
        treatment: str,
        outcome: str,
        minimal: bool = True,
        max_size: Optional[int] = None
    ) -> List[Set[str]]:
        """
        バックドア基準を満たす観測変数の調整集合を列挙

        Parameters
        ----------
        treatment, outcome : str
            処置とアウトカム
        minimal : bool
            True の場合、真部分集合が有効でない集合（極小集合）のみ返す
        max_size : int, optional
            列挙する集合の最大サイズ

        Returns
        -------
        List[Set[str]]
            サイズの小さい順の調整集合（空集合を含みうる）。識別できなければ空リスト
        """
        self._check_nodes(treatment, outcome)
        candidates = sorted(
            set(self.observed_nodes) - {treatment, outcome} - self.descendants(treatment)
        )
        limit = len(candidates) if max_size is None else min(max_size, len(candidates))

        valid: List[Set[str]] = []
        for size in range(limit + 1):
            for combo in itertools.combinations(candidates, size):
                zs = set(combo)
                if minimal and any(found <= zs for found in valid):
                    continue
                if self.satisfies_backdoor(treatment, outcome, zs):
                    valid.append(zs)

        logger.info(f"Found {len(valid)} adjustment set(s) for {treatment} -> {outcome}")
        return valid

    def is_instrument(self, instrument: str, treatment: str, outcome: str) -> bool:
        """
        操作変数の条件を満たすか

        Notes
        -----
        - 関連性: 操作変数は処置と d結合している
        - 除外制約 + 独立性: 処置から出る辺を除いたグラフで操作変数とアウトカムが d分離される
        """
        self._check_nodes(instrument, treatment, outcome)
        if instrument in self.latent:
            return False

        relevant = not self._d_separated(self.graph, {instrument}, {treatment}, set())
        excluded = self._d_separated(self._without_outgoing(treatment), {instrument}, {outcome}, set())
        return relevant and excluded

    # ------------------------------------------------------------------
    # シミュレーション
    # ------------------------------------------------------------------
    def simulate(
        self,
        coefficients: Optional[Dict[Tuple[str, str], float]] = None,
        n: int = 1000,
        noise_sd: Union[float, Dict[str, float]] = 1.0,
        random_state: Optional[int] = None
    ) -> pd.DataFrame:
        """
        線形ガウス構造方程式モデルからデータを生成

        各ノードは X_j = Σ β_ij X_i + ε_j（ε_j ~ N(0, σ_j²)）として
        トポロジカル順に生成されます。指定のない辺の係数は 1.0 とします。

        Parameters
        ----------
        coefficients : Dict[Tuple[str, str], float], optional
            辺 (原因, 結果) -> 係数
        n : int
            サンプルサイズ
        noise_sd : float or Dict[str, float]
            誤差の標準偏差（ノード別に指定可）
        random_state : int, optional
            乱数シード

        Returns
        -------
        pd.DataFrame
            全ノード（潜在変数を含む）の列を持つデータ
        """
        validate_positive_integer(n, "n")
        coefficients = dict(coefficients or {})
        unknown = [edge for edge in coefficients if not self.graph.has_edge(*edge)]
        if unknown:
            raise InvalidInputError(f"Coefficients given for non-existent edge(s): {unknown}")

        rng = make_rng(random_state)
        data: Dict[str, np.ndarray] = {}

        for node in self.topological_order():
            sd = noise_sd.get(node, 1.0) if isinstance(noise_sd, dict) else noise_sd
            value = rng.normal(0.0, sd, n)
            for parent in self.graph.predecessors(node):
                value = value + coefficients.get((parent, node), 1.0) * data[parent]
            data[node] = value

        return pd.DataFrame(data)[self.nodes]

    def describe(self) -> str:
        """DAG の構造をテキストで要約"""
        lines = ["【因果グラフ】"]
        for cause, effect in sorted(self.graph.edges):
            lines.append(f"  {cause} -> {effect}")
        colliders = self.colliders()
        if colliders:
            lines.append("合流点: " + ", ".join(f"{a} -> {c} <- {b}" for a, c, b in colliders))
        if self.latent:
            lines.append("未観測: " + ", ".join(sorted(self.latent)))
        return "\n".join(lines)
