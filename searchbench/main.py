"""search-bench: メインエントリーポイント.

サブコマンド:
  sanity     ES への接続確認
  index      ベンチマーク用インデックスを作り直して商品を投入
  bench      クエリファイルのクエリを実行してレイテンシを計測
  compare    複数の結果ファイルを比較
  changelog  商品ファイルから変更ログを生成
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime

from searchbench.backend import ElasticClient, to_pretty_json
from searchbench.changelog import create_change_log
from searchbench.compare import compare_results
from searchbench.config import (
    BATCH_SIZE,
    BENCH_INDEX_NAME,
    ES_HOST,
    FETCH_MAX,
    FILENAME_FILTER,
    LOG_DIR,
    PAGE_SIZE,
)
from searchbench.errors import SearchBenchError
from searchbench.executor import PaginatedExecutor, run_benchmark
from searchbench.indexer import run_indexer
from searchbench.query import load_queries
from searchbench.tokenizer import WhitespaceTokenizer

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"searchbench_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    # requests / urllib3 の接続ログは抑制
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="searchbench", description="Elasticsearch search benchmark")
    parser.add_argument("--debug", action="store_true", help="DEBUG ログを出力する")
    parser.add_argument("--host", default=ES_HOST, help="Elasticsearch の URL")
    parser.add_argument("--index", default=BENCH_INDEX_NAME, help="ベンチマーク用インデックス名")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sanity", help="ES への接続確認")

    p = sub.add_parser("index", help="インデックスを作り直して商品を投入する")
    p.add_argument("-d", "--data-dir", required=True, help="gzip 圧縮 CSV の商品ファイルがあるディレクトリ")
    p.add_argument("-f", "--filename-filter", default=FILENAME_FILTER)
    p.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    p.add_argument("--max", type=int, default=0, help="最大投入件数 (0 なら全件)")

    p = sub.add_parser("bench", help="クエリを実行してレイテンシを計測する")
    p.add_argument("-q", "--queries-file", required=True, help="検索ログからエクスポートしたクエリファイル (JSON)")
    p.add_argument("--runs", type=int, default=1, help="クエリセットの実行回数")
    p.add_argument("-o", "--results-file", default="", help="初回実行の結果 (先頭ページの ID 列) の書き出し先")
    p.add_argument("--fetch-source", action="store_true", help="ID だけでなく商品データも取得する")
    p.add_argument("--page-size", type=int, default=PAGE_SIZE)
    p.add_argument("--fetch-max", type=int, default=FETCH_MAX)

    p = sub.add_parser("compare", help="結果ファイルを比較する")
    p.add_argument("files", nargs="+", help="結果ファイル (先頭が比較の基準)")

    p = sub.add_parser("changelog", help="変更ログを生成する")
    p.add_argument("-d", "--data-dir", required=True)
    p.add_argument("-f", "--filename-filter", default=FILENAME_FILTER)
    p.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    p.add_argument("--start-from", type=int, required=True, help="この位置までの商品を更新イベントにする")
    p.add_argument("--max", type=int, required=True, help="生成するイベント数の目安")
    p.add_argument("-o", "--output", required=True, help="変更ログの書き出し先 (JSON)")
    p.add_argument("--seed", type=int, default=None, help="乱数シード (再現性が必要な場合)")

    return parser


def run_bench(args: argparse.Namespace, client: ElasticClient) -> None:
    queries = load_queries(args.queries_file, WhitespaceTokenizer())
    client.sanity_test()

    logger.info("Index stats (before):\n%s", to_pretty_json(client.index_stats(args.index)))

    executor = PaginatedExecutor(
        client,
        index=args.index,
        page_size=args.page_size,
        fetch_max=args.fetch_max,
        fetch_source=args.fetch_source,
    )
    run_benchmark(executor, queries, runs=args.runs, results_file=args.results_file or None)

    logger.info("Index stats (after):\n%s", to_pretty_json(client.index_stats(args.index)))


def run(argv: list[str] | None = None) -> None:
    """サブコマンドを実行する. エラーは呼び出し元に送出する."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    client = ElasticClient(args.host)

    if args.command == "sanity":
        client.sanity_test()
    elif args.command == "index":
        client.sanity_test()
        run_indexer(
            client,
            WhitespaceTokenizer(),
            args.data_dir,
            filename_filter=args.filename_filter,
            batch_size=args.batch_size,
            max_items=args.max,
            index=args.index,
        )
    elif args.command == "bench":
        run_bench(args, client)
    elif args.command == "compare":
        report = compare_results(args.files, debug=args.debug)
        print(f"Comparison:\n{to_pretty_json(report.to_dict())}\n")
    elif args.command == "changelog":
        summary = create_change_log(
            args.data_dir,
            args.output,
            start_from=args.start_from,
            max_items=args.max,
            filename_filter=args.filename_filter,
            batch_size=args.batch_size,
            seed=args.seed,
        )
        print(summary)


def main(argv: list[str] | None = None) -> int:
    try:
        run(argv)
    except SearchBenchError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    except ValueError as e:
        logger.error("invalid argument: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
