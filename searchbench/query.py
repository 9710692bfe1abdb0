"""検索クエリのロード・デコード.

クエリファイルは検索ログからエクスポートした JSON 配列:

    [{"query": "赤 スニーカー<|>[1,2]<|>[ITEM_STATUS_ON_SALE]", "c": "123"}, ...]

query は ``<|>`` 区切りの 3 セグメント (キーワード / カテゴリ ID 配列 / ステータス配列)。
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from searchbench.errors import InputError, InvalidCategoryID, MalformedQuery
from searchbench.models import Status, StructuredQuery
from searchbench.tokenizer import Tokenizer, wakati

logger = logging.getLogger(__name__)

DELIMITER = "<|>"

# 未知のステータスは無視する (上流で追加された値で古いベンチが壊れないように)
STATUS_TOKENS: dict[str, Status] = {
    "ITEM_STATUS_ON_SALE": Status.ON_SALE,
    "ITEM_STATUS_TRADING": Status.TRADING,
    "ITEM_STATUS_SOLD_OUT": Status.SOLD,
}
_TOKEN_BY_STATUS = {v: k for k, v in STATUS_TOKENS.items()}

_CATEGORY_ID = re.compile(r"-?[0-9]+")


def _split_array(segment: str) -> list[str]:
    """``[a,b,c]`` 形式の文字列を要素に分割する. 括弧だけなら空リスト."""
    if len(segment) <= 2:
        return []
    return segment[1:-1].split(",")


def decode_query(raw: str, tokenizer: Tokenizer) -> StructuredQuery:
    """エンコード済みクエリ文字列を StructuredQuery に変換する.

    Args:
        raw: ``keyword<|>[ids]<|>[statuses]`` 形式の文字列
        tokenizer: キーワードの分かち書きに使うトークナイザ

    Raises:
        MalformedQuery: 3 セグメントに分割できない場合
        InvalidCategoryID: カテゴリ ID が整数でない場合
    """
    parts = raw.split(DELIMITER)
    if len(parts) != 3:
        raise MalformedQuery(f"expected 3 parts in raw query: {raw!r}")

    keyword_part, categories_part, statuses_part = parts
    q = StructuredQuery()

    if keyword_part != "":
        q.keyword = wakati(tokenizer, keyword_part)

    for token in _split_array(categories_part):
        if not _CATEGORY_ID.fullmatch(token):
            raise InvalidCategoryID(f"invalid category ID {token!r} in raw query: {raw!r}")
        q.category_ids.append(int(token))

    for token in _split_array(statuses_part):
        status = STATUS_TOKENS.get(token.strip().strip('"'))
        if status is not None and status not in q.statuses:
            q.statuses.append(status)

    return q


def encode_query(query: StructuredQuery) -> str:
    """StructuredQuery をエンコード済み文字列に戻す (decode_query の逆変換)."""
    try:
        status_tokens = [_TOKEN_BY_STATUS[s] for s in query.statuses]
    except KeyError as e:
        raise ValueError(f"status {e.args[0]!r} has no query token") from None

    categories = "[" + ",".join(str(c) for c in query.category_ids) + "]"
    statuses = "[" + ",".join(status_tokens) + "]"
    return DELIMITER.join([query.keyword or "", categories, statuses])


def load_queries(path: str | Path, tokenizer: Tokenizer) -> list[StructuredQuery]:
    """クエリファイルを読み込み、全クエリをデコードする.

    Raises:
        InputError: ファイルの読み込み・JSON パースに失敗した場合
        MalformedQuery / InvalidCategoryID: 不正なクエリを含む場合
    """
    logger.info("クエリ読み込み: %s", path)
    try:
        with open(path, encoding="utf-8") as f:
            raws = json.load(f)
    except OSError as e:
        raise InputError(f"failed to read queries file {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise InputError(f"queries file {path} is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise InputError(f"queries file {path} is not valid JSON: {e}") from e

    if not isinstance(raws, list):
        raise InputError(f"queries file {path} must contain a JSON array")

    queries: list[StructuredQuery] = []
    for i, r in enumerate(raws, start=1):
        raw = r.get("query") if isinstance(r, dict) else None
        if not isinstance(raw, str):
            raise MalformedQuery(f"query #{i} in {path} has no 'query' string: {r!r}")
        try:
            queries.append(decode_query(raw, tokenizer))
        except InputError as e:
            raise type(e)(f"query #{i} in {path}: {e}") from e

    logger.info("クエリ %d 件をロード", len(queries))
    return queries
