"""executor モジュールのユニットテスト."""

import io
import logging

import pytest

from searchbench.compiler import compile_query
from searchbench.errors import BackendError
from searchbench.executor import PaginatedExecutor, ResultSink, run_benchmark
from searchbench.models import Hit, Page, StructuredQuery, TotalRelation


class FakeBackend:
    """ids を先頭から from/size で切り出して返すバックエンド."""

    def __init__(self, ids, score=1.5, total=None, relation=TotalRelation.EXACT, took=0):
        self.ids = list(ids)
        self.score = score
        self.total = len(self.ids) if total is None else total
        self.relation = relation
        self.took = took
        self.bodies = []

    def search(self, index, body):
        self.bodies.append(body)
        start, size = body["from"], body["size"]
        chunk = self.ids[start:start + size]
        return Page(
            hits=tuple(Hit(id=i, score=self.score) for i in chunk),
            total=self.total,
            relation=self.relation,
            took=self.took,
        )


def _ids(n):
    return [str(i) for i in range(1, n + 1)]


KEYWORD = compile_query(StructuredQuery(keyword="shoes"))


class TestPagination:
    """ページングと打ち切り条件のテスト."""

    def test_stops_at_fetch_max(self):
        """取得件数が fetch_max に達したら止まること."""
        backend = FakeBackend(_ids(1000))
        ex = PaginatedExecutor(backend, page_size=120, fetch_max=240)

        t = ex.execute(KEYWORD, 1)

        assert t.pages == 2
        assert t.fetched == 240
        assert [b["from"] for b in backend.bodies] == [0, 120]

    def test_stops_on_short_page(self):
        backend = FakeBackend(_ids(300))
        ex = PaginatedExecutor(backend, page_size=120, fetch_max=10_000)

        t = ex.execute(KEYWORD, 1)

        assert t.pages == 3
        assert t.fetched == 300

    def test_short_page_despite_large_total(self):
        """ヒット総数の見積もりが多くても、ページが満杯でなければ止まること."""
        backend = FakeBackend(_ids(130), total=10_000, relation=TotalRelation.GREATER_THAN_OR_EQUAL)
        ex = PaginatedExecutor(backend, page_size=120, fetch_max=10_000)

        t = ex.execute(KEYWORD, 1)

        assert t.pages == 2
        assert t.fetched == 130
        assert t.relation is TotalRelation.GREATER_THAN_OR_EQUAL

    def test_total_not_above_page_size(self):
        backend = FakeBackend(_ids(120))
        ex = PaginatedExecutor(backend, page_size=120, fetch_max=240)

        t = ex.execute(KEYWORD, 1)

        assert t.pages == 1

    def test_no_hits(self):
        backend = FakeBackend([])
        ex = PaginatedExecutor(backend, page_size=120, fetch_max=240)

        t = ex.execute(KEYWORD, 1)

        assert t.pages == 1
        assert t.fetched == 0

    @pytest.mark.parametrize("page_size,fetch_max,n", [
        (100, 250, 10_000),
        (7, 20, 1000),
        (50, 50, 49),
        (50, 1, 500),
        (3, 10, 10),
    ])
    def test_overshoot_at_most_one_page(self, page_size, fetch_max, n):
        """取得件数は fetch_max + page_size - 1 を超えないこと."""
        backend = FakeBackend(_ids(n))
        ex = PaginatedExecutor(backend, page_size=page_size, fetch_max=fetch_max)

        t = ex.execute(KEYWORD, 1)

        assert t.fetched <= fetch_max + page_size - 1
        assert t.fetched == min(n, -(-fetch_max // page_size) * page_size)

    def test_took_is_logged(self, caplog):
        """ES 側の処理時間がページごとに DEBUG ログに出ること."""
        ex = PaginatedExecutor(FakeBackend(_ids(3), took=17), page_size=10)

        with caplog.at_level(logging.DEBUG, logger="searchbench.executor"):
            ex.execute(KEYWORD, 1)

        assert "took 17ms" in caplog.text

    def test_invalid_page_size(self):
        with pytest.raises(ValueError):
            PaginatedExecutor(FakeBackend([]), page_size=0)

    def test_backend_error_propagates(self):
        """バックエンドのエラーはそのまま送出されること."""

        class Broken:
            def search(self, index, body):
                raise BackendError("boom", status=500, body="oops")

        ex = PaginatedExecutor(Broken())
        with pytest.raises(BackendError):
            ex.execute(KEYWORD, 1)


class TestResultSnapshot:
    """結果ファイルへの書き出しのテスト."""

    def test_first_page_only(self):
        """先頭ページの ID だけを1行書き出すこと."""
        buf = io.StringIO()
        sink = ResultSink(buf)
        ex = PaginatedExecutor(FakeBackend(_ids(10)), page_size=4, fetch_max=100)

        ex.execute(KEYWORD, 7, sink)

        assert buf.getvalue() == "7|bm=1|1,2,3,4\n"
        assert sink.lines == 1

    def test_zero_score_is_not_best_match(self):
        buf = io.StringIO()
        ex = PaginatedExecutor(FakeBackend(_ids(2), score=0.0), page_size=4)

        ex.execute(compile_query(StructuredQuery(category_ids=[1])), 1, ResultSink(buf))

        assert buf.getvalue() == "1|bm=0|1,2\n"

    def test_empty_result_writes_nothing(self):
        buf = io.StringIO()
        ex = PaginatedExecutor(FakeBackend([]))

        ex.execute(KEYWORD, 1, ResultSink(buf))

        assert buf.getvalue() == ""

    def test_fetch_source_writes_nothing(self):
        buf = io.StringIO()
        ex = PaginatedExecutor(FakeBackend(_ids(3)), fetch_source=True)

        ex.execute(KEYWORD, 1, ResultSink(buf))

        assert buf.getvalue() == ""

    def test_request_body(self):
        backend = FakeBackend(_ids(3))
        ex = PaginatedExecutor(backend, page_size=5, fetch_source=False)

        ex.execute(KEYWORD, 1)

        body = backend.bodies[0]
        assert body["_source"] is False
        assert body["size"] == 5
        assert body["sort"] == {"_score": "desc"}


class TestRunBenchmark:
    """run_benchmark のテスト."""

    QUERIES = [
        StructuredQuery(keyword="a"),
        StructuredQuery(category_ids=[1]),
        StructuredQuery(keyword="b"),
    ]

    def test_results_written_on_first_run_only(self, tmp_path):
        """複数回実行しても結果ファイルは初回分の1クエリ1行だけであること."""
        path = tmp_path / "results.txt"
        backend = FakeBackend(_ids(5))
        ex = PaginatedExecutor(backend, page_size=10)

        results = run_benchmark(ex, self.QUERIES, runs=3, results_file=path)

        assert len(results) == 3
        assert len(backend.bodies) == 9
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines == [
            "1|bm=1|1,2,3,4,5",
            "2|bm=1|1,2,3,4,5",
            "3|bm=1|1,2,3,4,5",
        ]

    def test_without_results_file(self):
        ex = PaginatedExecutor(FakeBackend(_ids(5)), page_size=10)

        results = run_benchmark(ex, self.QUERIES, runs=2)

        assert [len(r.timings) for r in results] == [3, 3]
        summary = results[0].latency_summary()
        assert summary["n"] == 3
        assert summary["max_ms"] >= summary["p50_ms"]

    def test_invalid_runs(self):
        with pytest.raises(ValueError):
            run_benchmark(PaginatedExecutor(FakeBackend([])), self.QUERIES, runs=0)

    def test_sink_closed_on_error(self, tmp_path):
        """途中でエラーになっても結果ファイルが閉じられること."""

        class FailSecond(FakeBackend):
            def search(self, index, body):
                if len(self.bodies) == 1:
                    raise BackendError("boom", status=503)
                return super().search(index, body)

        path = tmp_path / "results.txt"
        with pytest.raises(BackendError):
            run_benchmark(PaginatedExecutor(FailSecond(_ids(3))), self.QUERIES, results_file=path)

        assert path.read_text(encoding="utf-8") == "1|bm=1|1,2,3\n"
