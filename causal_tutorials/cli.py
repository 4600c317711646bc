"""
コマンドラインインターフェース

使用方法:
    causal-tutorials list
    causal-tutorials run did rdd --output ./output
    causal-tutorials run --all --no-figures --seed 7
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config_loader import CONFIG_ENV_VAR, reload_config
from .exceptions import CausalInferenceError
from .utils import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """引数パーサーを作成"""
    parser = argparse.ArgumentParser(
        prog="causal-tutorials",
        description="因果推論チュートリアルを生成データで実行し、Markdown と図を出力します。",
    )
    parser.add_argument("--config", metavar="PATH", help="config.yaml のパス")
    parser.add_argument("--log-level", default=None, help="ログレベル（DEBUG, INFO, WARNING, ...）")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    subparsers.add_parser("list", help="利用可能なチュートリアルを表示")

    run_parser = subparsers.add_parser("run", help="チュートリアルを実行")
    run_parser.add_argument("keys", nargs="*", metavar="KEY", help="実行するチュートリアルのキー")
    run_parser.add_argument("--all", action="store_true", help="すべてのチュートリアルを実行")
    run_parser.add_argument("--output", metavar="DIR", help="出力ディレクトリ。省略時は標準出力に Markdown を表示")
    run_parser.add_argument("--no-figures", action="store_true", help="図を作成しない")
    run_parser.add_argument("--seed", type=int, default=None, help="乱数シード")

    return parser


def _list_tutorials() -> int:
    from .tutorials import TUTORIALS

    for key, module in TUTORIALS.items():
        print(f"{key:<20} {module.TITLE}")
    return 0


def _run_tutorials(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    if not args.all and not args.keys:
        parser.error("run requires at least one KEY or --all")

    # matplotlib は描画バックエンドを決めてから読み込む
    import matplotlib
    matplotlib.use("Agg")
    from .tutorials import run_all

    keys = None if args.all else args.keys
    reports = run_all(keys, random_state=args.seed, make_figures=not args.no_figures)

    for key, report in reports.items():
        if args.output:
            path = report.save(args.output)
            print(f"{key}: {path}")
        else:
            sys.stdout.write(report.to_markdown())
            sys.stdout.write("\n")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI のエントリーポイント

    Parameters
    ----------
    argv : List[str], optional
        引数リスト。None の場合は sys.argv[1:]

    Returns
    -------
    int
        終了コード（成功: 0、分析エラー: 1）
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.config:
            os.environ[CONFIG_ENV_VAR] = args.config
            reload_config()
        setup_logging(args.log_level)

        if args.command == "list":
            return _list_tutorials()
        return _run_tutorials(args, parser)
    except (CausalInferenceError, FileNotFoundError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        print(f"エラー: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
