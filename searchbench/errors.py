"""例外定義.

どのエラーも致命的として扱い、リトライはしない。
main.main() で一括して捕捉し、ログ出力後に終了コード 1 で終了する。
"""

from __future__ import annotations


class SearchBenchError(RuntimeError):
    """search-bench の全例外の基底クラス."""


class InputError(SearchBenchError):
    """入力データ (クエリ・CSV・結果ファイル) の不正、読み込み失敗."""


class MalformedQuery(InputError):
    """エンコード済みクエリが 3 セグメントに分割できない."""


class InvalidCategoryID(InputError):
    """カテゴリ ID が整数として解釈できない."""


class BackendError(SearchBenchError):
    """検索バックエンドの異常応答.

    Attributes:
        status: HTTP ステータスコード。通信自体に失敗した場合は None。
        body: レスポンスボディ (先頭のみ)。
    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        msg = super().__str__()
        if self.status is not None:
            msg = f"{msg} (status={self.status})"
        if self.body:
            msg = f"{msg}: {self.body}"
        return msg


class AlignmentError(SearchBenchError):
    """比較対象ファイル間で同じ行のクエリ番号が一致しない."""
