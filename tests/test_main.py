"""main モジュール (CLI) のテスト."""

import json
from unittest.mock import patch

from searchbench.errors import BackendError
from searchbench.main import build_parser, main
from searchbench.models import Hit, Page, TotalRelation


def _write(path, lines):
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    return str(path)


class TestParser:
    """build_parser のテスト."""

    def test_bench_defaults(self):
        args = build_parser().parse_args(["bench", "-q", "queries.json"])

        assert args.command == "bench"
        assert args.runs == 1
        assert args.page_size == 120
        assert args.fetch_max == 240
        assert args.fetch_source is False

    def test_changelog_seed(self):
        args = build_parser().parse_args([
            "changelog", "-d", "data", "--start-from", "100", "--max", "300", "-o", "cl.json", "--seed", "5",
        ])

        assert args.start_from == 100
        assert args.seed == 5


class TestMain:
    """main のテスト."""

    def test_compare(self, tmp_path, capsys):
        a = _write(tmp_path / "a.txt", ["1|bm=1|1,2"])
        b = _write(tmp_path / "b.txt", ["1|bm=1|1,2"])

        assert main(["compare", a, b]) == 0

        out = capsys.readouterr().out
        report = out[out.index("Comparison:") + len("Comparison:"):]
        assert json.loads(report)["overall"]["identical"] == 1

    def test_alignment_error_exit_code(self, tmp_path):
        """致命的エラーは終了コード 1 になること."""
        a = _write(tmp_path / "a.txt", ["1|bm=1|1"])
        b = _write(tmp_path / "b.txt", ["2|bm=1|1"])

        assert main(["compare", a, b]) == 1

    @patch("searchbench.main.ElasticClient")
    def test_bench(self, mock_client_cls, tmp_path):
        client = mock_client_cls.return_value
        client.search.return_value = Page(
            hits=(Hit(id="m1", score=2.0), Hit(id="m2", score=1.0)),
            total=2,
            relation=TotalRelation.EXACT,
        )
        client.index_stats.return_value = {"docs_count": 2}
        queries = tmp_path / "queries.json"
        queries.write_text(json.dumps([{"query": "shoes<|>[]<|>[]", "c": "1"}]), encoding="utf-8")
        results = tmp_path / "results.txt"

        code = main(["bench", "-q", str(queries), "--runs", "2", "-o", str(results)])

        assert code == 0
        client.sanity_test.assert_called_once()
        assert client.search.call_count == 2
        assert results.read_text(encoding="utf-8") == "1|bm=1|m1,m2\n"

    @patch("searchbench.main.ElasticClient")
    def test_backend_error_exit_code(self, mock_client_cls):
        mock_client_cls.return_value.sanity_test.side_effect = BackendError("down")

        assert main(["sanity"]) == 1
