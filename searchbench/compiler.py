"""StructuredQuery から bool クエリを組み立てる.

ソート順:
  - フィルタあり → created 降順 (スコアのないクエリでもページングを安定させる)
  - キーワードあり → スコア降順 (フィルタより優先)
  - どちらもなし → 指定しない
"""

from __future__ import annotations

from searchbench.models import CompiledQuery, StructuredQuery

CREATED_SORT = {"created": "desc"}
SCORE_SORT = {"_score": "desc"}

# キーワードをマッチさせるテキストフィールド
MATCH_FIELDS = ("name", "desc")


def compile_query(q: StructuredQuery) -> CompiledQuery:
    """StructuredQuery を CompiledQuery に変換する (I/O なし)."""
    compiled = CompiledQuery()

    if q.category_ids:
        compiled.filter.append({"terms": {"category_id": list(q.category_ids)}})
    if q.statuses:
        compiled.filter.append({"terms": {"status": [int(s) for s in q.statuses]}})
    if compiled.filter:
        compiled.sort = dict(CREATED_SORT)

    if q.keyword:
        compiled.should = [
            {"match": {f: {"query": q.keyword}}} for f in MATCH_FIELDS
        ]
        compiled.sort = dict(SCORE_SORT)

    return compiled
