"""検索ベンチマーク実行モジュール.

処理フロー:
  1. StructuredQuery を bool クエリにコンパイル
  2. page_size 件ずつ from をずらしながら検索 (fetch_max 件で打ち切り)
  3. 初回実行時のみ、各クエリの先頭ページの ID 列を結果ファイルに1行書き出す
  4. クエリごとのレイテンシを集計
"""

from __future__ import annotations

import logging
import statistics
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence, TextIO

from searchbench.compiler import compile_query
from searchbench.config import BENCH_INDEX_NAME, FETCH_MAX, PAGE_SIZE, PREVIEW_HITS, PROGRESS_EVERY
from searchbench.errors import InputError
from searchbench.models import CompiledQuery, Page, ResultSnapshot, StructuredQuery, TotalRelation

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    def search(self, index: str, body: dict) -> Page: ...


class ResultSink:
    """結果ファイル (1クエリ1行の追記専用ログ)."""

    def __init__(self, f: TextIO, name: str = "") -> None:
        self._f = f
        self.name = name
        self.lines = 0

    @classmethod
    def open(cls, path: str | Path) -> ResultSink:
        """結果ファイルを新規作成 (既存なら切り詰め) して開く."""
        try:
            f = open(path, "w", encoding="utf-8")
        except OSError as e:
            raise InputError(f"failed to open results file {path}: {e}") from e
        return cls(f, name=str(path))

    @property
    def closed(self) -> bool:
        return self._f.closed

    def write(self, snapshot: ResultSnapshot) -> None:
        self._f.write(snapshot.to_line() + "\n")
        self.lines += 1

    def close(self) -> None:
        if not self._f.closed:
            self._f.close()
            logger.info("結果ファイル %s に %d 行書き込み", self.name, self.lines)


@dataclass
class QueryTiming:
    """1クエリ分の実行結果."""

    ordinal: int
    elapsed_ms: float
    pages: int
    fetched: int
    total: int
    relation: TotalRelation


@dataclass
class RunResult:
    """クエリセット1周分の実行結果."""

    timings: list[QueryTiming] = field(default_factory=list)
    elapsed_s: float = 0.0

    @property
    def fetched(self) -> int:
        return sum(t.fetched for t in self.timings)

    def latency_summary(self) -> dict[str, float]:
        """クエリレイテンシ (ms) の平均・p50・p95・最大."""
        times = [t.elapsed_ms for t in self.timings]
        if not times:
            return {"n": 0, "avg_ms": 0.0, "p50_ms": 0.0, "p95_ms": 0.0, "max_ms": 0.0}
        return {
            "n": len(times),
            "avg_ms": statistics.mean(times),
            "p50_ms": statistics.median(times),
            "p95_ms": statistics.quantiles(times, n=20)[18] if len(times) >= 20 else max(times),
            "max_ms": max(times),
        }


class PaginatedExecutor:
    """コンパイル済みクエリをページングしながら実行する."""

    def __init__(
        self,
        backend: SearchBackend,
        index: str = BENCH_INDEX_NAME,
        page_size: int = PAGE_SIZE,
        fetch_max: int = FETCH_MAX,
        fetch_source: bool = False,
    ) -> None:
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        if fetch_max <= 0:
            raise ValueError(f"fetch_max must be positive, got {fetch_max}")
        self.backend = backend
        self.index = index
        self.page_size = page_size
        self.fetch_max = fetch_max
        self.fetch_source = fetch_source

    def execute(
        self, compiled: CompiledQuery, ordinal: int, sink: ResultSink | None = None
    ) -> QueryTiming:
        """1クエリを実行する.

        次ページに進むのは、ヒット総数が page_size を超え、直前のページが満杯で、
        取得済み件数が fetch_max 未満の場合のみ。

        Args:
            compiled: 実行するクエリ
            ordinal: クエリ番号 (1始まり)
            sink: 先頭ページの ID 列を書き出す結果ファイル。None なら書き出さない。
        """
        offset = 0
        fetched = 0
        pages = 0
        page: Page | None = None
        start = time.perf_counter()

        while True:
            body = compiled.to_body(offset, self.page_size, self.fetch_source)
            page = self.backend.search(self.index, body)
            pages += 1
            fetched += len(page.hits)

            logger.debug(
                "query #%d page %d: fetched %d / %d (%s) took %dms",
                ordinal, pages, fetched, page.total, page.relation.value, page.took,
            )

            if self.fetch_source:
                self._log_preview(page)
            elif sink is not None and offset == 0 and page.hits:
                # 先頭ページのみ
                sink.write(ResultSnapshot(
                    ordinal=ordinal,
                    best_match=page.hits[0].score > 0,
                    ids=tuple(h.id for h in page.hits),
                ))

            has_next_page = page.total > self.page_size and len(page.hits) == self.page_size
            if not has_next_page or fetched >= self.fetch_max:
                break

            offset += len(page.hits)

        return QueryTiming(
            ordinal=ordinal,
            elapsed_ms=(time.perf_counter() - start) * 1000,
            pages=pages,
            fetched=fetched,
            total=page.total,
            relation=page.relation,
        )

    def _log_preview(self, page: Page) -> None:
        for i, hit in enumerate(page.hits[:PREVIEW_HITS], start=1):
            src = hit.source or {}
            logger.info(
                "%03d. ID: %s  Name: %s  Status: %s  Category: %s",
                i, hit.id, src.get("name"), src.get("status"), src.get("category_id"),
            )

    def run_queries(
        self, queries: Sequence[StructuredQuery], sink: ResultSink | None = None
    ) -> RunResult:
        """全クエリを順番に1回ずつ実行する."""
        result = RunResult()
        start = time.perf_counter()

        for qc, q in enumerate(queries, start=1):
            timing = self.execute(compile_query(q), qc, sink)
            result.timings.append(timing)

            if qc % PROGRESS_EVERY == 0:
                logger.info(
                    "%d クエリ実行済み: 直近 %d / %d (%s) 件取得",
                    qc, timing.fetched, timing.total, timing.relation.value,
                )

        result.elapsed_s = time.perf_counter() - start
        return result


def run_benchmark(
    executor: PaginatedExecutor,
    queries: Sequence[StructuredQuery],
    runs: int = 1,
    results_file: str | Path | None = None,
) -> list[RunResult]:
    """クエリセットを runs 回実行し、平均実行時間をログ出力する.

    結果ファイルは初回実行のみ書き込み、その後は閉じて二度と開かない。
    fetch_source 時は ID 行を書かないため結果ファイルは空になる。
    """
    if runs <= 0:
        raise ValueError(f"runs must be positive, got {runs}")

    logger.info("ベンチマーク開始: %d クエリ x %d 回", len(queries), runs)

    sink = ResultSink.open(results_file) if results_file else None
    results: list[RunResult] = []
    try:
        for run in range(runs):
            result = executor.run_queries(queries, sink)
            results.append(result)

            summary = result.latency_summary()
            logger.info(
                "run %d/%d: %.3f 秒 (avg=%.2fms p50=%.2fms p95=%.2fms max=%.2fms)",
                run + 1, runs, result.elapsed_s,
                summary["avg_ms"], summary["p50_ms"], summary["p95_ms"], summary["max_ms"],
            )

            if run == 0 and sink is not None:
                sink.close()
                sink = None
    finally:
        if sink is not None:
            sink.close()

    average = sum(r.elapsed_s for r in results) / len(results)
    logger.info(
        "実行完了: %d クエリ x %d 回, 平均 %.3f 秒",
        len(queries), runs, average,
    )
    return results
