"""Elasticsearch HTTP クライアント.

検索・バルク書き込み・統計取得・インデックス管理を行う。
異常応答はすべて BackendError として即座に送出し、リトライはしない。
"""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from searchbench.config import ES_HOST, REQUEST_TIMEOUT, SANITY_TEST_INDEX_NAME
from searchbench.errors import BackendError
from searchbench.models import Hit, Page, TotalRelation

logger = logging.getLogger(__name__)

# エラーメッセージに含めるレスポンスボディの最大長
_BODY_PREVIEW = 2000


def to_json(o: Any) -> str:
    return json.dumps(o, ensure_ascii=False, separators=(",", ":"))


def to_pretty_json(o: Any) -> str:
    return json.dumps(o, ensure_ascii=False, indent=2)


def build_bulk_body(*obs: dict) -> bytes:
    """アクション行とドキュメント行を改行区切りで連結したバルクボディを作る."""
    lines = [to_json(o) for o in obs]
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_page(data: dict) -> Page:
    """_search のレスポンスを Page に変換する.

    created 降順などスコア以外でソートした場合 _score は null になるため 0 として扱う。

    Raises:
        BackendError: レスポンスの構造が想定と異なる場合
    """
    try:
        hits_obj = data["hits"]
        total = hits_obj["total"]
        hits = tuple(
            Hit(
                id=str(h["_id"]),
                score=float(h.get("_score") or 0.0),
                source=h.get("_source"),
            )
            for h in hits_obj.get("hits") or []
        )
        return Page(
            hits=hits,
            total=int(total["value"]),
            relation=TotalRelation(total.get("relation", "eq")),
            took=int(data.get("took", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise BackendError(f"malformed search response: {e!r}", body=to_json(data)[:_BODY_PREVIEW]) from e


def summarize_stats(raw: dict) -> dict[str, Any]:
    """_stats のレスポンスからベンチマークに関係する値だけを取り出す."""
    primaries = raw.get("_all", {}).get("primaries", {})
    docs = primaries.get("docs", {})
    store = primaries.get("store", {})
    return {
        "docs_count": docs.get("count", 0),
        "store": {
            "size_in_bytes": store.get("size_in_bytes", 0),
            "total_data_set_size_in_bytes": store.get("total_data_set_size_in_bytes", 0),
        },
        "query_cache": primaries.get("query_cache", {}),
        "request_cache": primaries.get("request_cache", {}),
    }


class ElasticClient:
    """Elasticsearch の REST API を呼び出すクライアント."""

    def __init__(self, host: str = ES_HOST, timeout: float | None = REQUEST_TIMEOUT) -> None:
        self.host = host.rstrip("/")
        self.timeout = timeout

    def call(self, method: str, path: str, body: bytes | None = None) -> requests.Response:
        """API を1回呼び出す. 通信エラーは BackendError に変換する."""
        url = f"{self.host}{path}"
        try:
            resp = requests.request(
                method,
                url,
                data=body,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"{method} {url} failed: {e}") from e
        logger.debug("%s %s -> %d", method, url, resp.status_code)
        return resp

    def _json(self, resp: requests.Response) -> dict:
        try:
            return resp.json()
        except ValueError as e:
            raise BackendError(
                f"invalid JSON response from {resp.url}",
                status=resp.status_code,
                body=resp.text[:_BODY_PREVIEW],
            ) from e

    def _ensure_ok(self, resp: requests.Response, what: str) -> None:
        if resp.status_code >= 300:
            raise BackendError(
                f"{what}: unexpected status code",
                status=resp.status_code,
                body=resp.text[:_BODY_PREVIEW],
            )

    def search(self, index: str, body: dict) -> Page:
        """1ページ分の検索を実行する.

        Raises:
            BackendError: 2xx 以外の応答、またはレスポンスが壊れている場合
        """
        resp = self.call("POST", f"/{index}/_search?request_cache=false", to_json(body).encode("utf-8"))
        if resp.status_code >= 300:
            logger.error("Query dump:\n%s", to_pretty_json(body))
            raise BackendError(
                f"search on {index} failed",
                status=resp.status_code,
                body=resp.text[:_BODY_PREVIEW],
            )
        return parse_page(self._json(resp))

    def bulk(self, body: bytes) -> dict:
        """バルク書き込みを実行する. 1件でも失敗があれば BackendError."""
        resp = self.call("POST", "/_bulk", body)
        if resp.status_code != 200:
            raise BackendError("bulk request failed", status=resp.status_code, body=resp.text[:_BODY_PREVIEW])
        result = self._json(resp)
        if result.get("errors") is not False:
            raise BackendError("bulk request reported errors", status=resp.status_code, body=resp.text[:_BODY_PREVIEW])
        return result

    def delete_index(self, index: str) -> None:
        """インデックスを削除する. 存在しない場合 (404) は無視する."""
        resp = self.call("DELETE", f"/{index}")
        if resp.status_code != 404:
            self._ensure_ok(resp, f"delete index {index}")

    def create_index(self, index: str, definition: dict) -> None:
        resp = self.call("PUT", f"/{index}", to_json(definition).encode("utf-8"))
        self._ensure_ok(resp, f"create index {index}")

    def refresh(self, index: str) -> None:
        resp = self.call("GET", f"/{index}/_refresh")
        self._ensure_ok(resp, f"refresh index {index}")

    def index_stats(self, index: str) -> dict[str, Any]:
        """インデックス統計を取得し、主要な値を返す."""
        resp = self.call("GET", f"/{index}/_stats")
        self._ensure_ok(resp, f"stats of index {index}")
        return summarize_stats(self._json(resp))

    def sanity_test(self) -> None:
        """テスト用インデックスを作り直し、書き込み→検索ができることを確認する."""
        index = SANITY_TEST_INDEX_NAME
        self.delete_index(index)
        self.create_index(index, {
            "mappings": {
                "properties": {
                    "age": {"type": "integer"},
                    "email": {"type": "keyword"},
                    "name": {"type": "text"},
                },
            },
        })
        self.bulk(build_bulk_body(
            {"index": {"_index": index, "_id": "101"}},
            {"age": 30, "name": "Mr Magoo", "email": "mr@magoo.se"},
            {"index": {"_index": index, "_id": "102"}},
            {"age": 25, "name": "Ms Molly", "email": "ms@molly.se"},
            {"index": {"_index": index, "_id": "103"}},
            {"age": 21, "name": "Mrs Daisy Malone", "email": "dmalone@molly.se"},
        ))
        self.refresh(index)

        resp = self.call("POST", f"/{index}/_search", to_json({
            "query": {"query_string": {"query": 'name:"daisy malone"^5 AND age:>=10^2'}},
        }).encode("utf-8"))
        self._ensure_ok(resp, "sanity test search")
        if "Mrs Daisy Malone" not in resp.text:
            raise BackendError(
                'sanity test: expected result to contain "Mrs Daisy Malone"',
                status=resp.status_code,
                body=resp.text[:_BODY_PREVIEW],
            )
        logger.info("ES 接続確認 OK: テストインデックスの作成・書き込み・検索に成功")
