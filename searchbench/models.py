"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


class Status(IntEnum):
    """商品ステータス (インデックス上は整数で保持)."""

    ON_SALE = 1
    TRADING = 2
    SOLD = 3
    STOPPED = 4
    CANCEL = 5
    OTHER = 6


class TotalRelation(str, Enum):
    """ヒット総数の精度."""

    EXACT = "eq"
    GREATER_THAN_OR_EQUAL = "gte"


@dataclass
class Item:
    """インデックス対象の1商品を表す."""

    id: str
    name: str
    desc: str
    status: Status
    created: int  # epoch millis
    category_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "desc": self.desc,
            "status": int(self.status),
            "created": self.created,
            "category_id": self.category_id,
        }


@dataclass
class StructuredQuery:
    """デコード済みの検索クエリ.

    keyword / category_ids / statuses がすべて空なら全件マッチのクエリになる。
    """

    keyword: str | None = None  # トークナイズ済み (空白区切り)
    category_ids: list[int] = field(default_factory=list)
    statuses: list[Status] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.keyword and not self.category_ids and not self.statuses


@dataclass
class CompiledQuery:
    """バックエンドに送る bool クエリ."""

    should: list[dict] = field(default_factory=list)
    filter: list[dict] = field(default_factory=list)
    sort: dict | None = None

    @property
    def minimum_should_match(self) -> int | None:
        return 1 if self.should else None

    def bool_query(self) -> dict[str, Any]:
        q: dict[str, Any] = {}
        if self.filter:
            q["filter"] = self.filter
        if self.should:
            q["should"] = self.should
            q["minimum_should_match"] = self.minimum_should_match
        return q

    def to_body(self, offset: int, size: int, fetch_source: bool) -> dict[str, Any]:
        """[offset, offset+size) を取得する検索リクエストボディを組み立てる."""
        body: dict[str, Any] = {
            "query": {"bool": self.bool_query()},
            "size": size,
            "_source": fetch_source,
            "from": offset,
        }
        if self.sort is not None:
            body["sort"] = self.sort
        return body


@dataclass(frozen=True)
class Hit:
    """検索結果の1件."""

    id: str
    score: float
    source: dict | None = None


@dataclass(frozen=True)
class Page:
    """検索1回分のレスポンス."""

    hits: tuple[Hit, ...]
    total: int
    relation: TotalRelation
    took: int = 0


@dataclass(frozen=True)
class ResultSnapshot:
    """結果ファイルの1行 (1クエリの先頭ページ).

    行フォーマット: ``<ordinal>|bm=<0|1>|<id>,<id>,...``
    """

    ordinal: int  # 1始まり
    best_match: bool  # 先頭ヒットのスコアが 0 より大きい
    ids: tuple[str, ...]

    def to_line(self) -> str:
        bm = "bm=1" if self.best_match else "bm=0"
        return f"{self.ordinal}|{bm}|{','.join(self.ids)}"

    @classmethod
    def from_line(cls, text: str) -> ResultSnapshot:
        """結果ファイルの1行をパースする.

        Raises:
            ValueError: 行フォーマットが不正な場合
        """
        parts = text.split("|", 2)
        if len(parts) != 3:
            raise ValueError(f"expected 3 fields separated by '|': {text!r}")
        ordinal = int(parts[0])
        ids = tuple(parts[2].split(",")) if parts[2] else ()
        return cls(ordinal=ordinal, best_match=parts[1] == "bm=1", ids=ids)


@dataclass
class ComparisonStats:
    """結果ファイル比較の集計値."""

    total: int = 0
    identical: int = 0
    different: int = 0
    diff_ratio_sum: float = 0.0
    diff_ratio_count: int = 0

    @property
    def diff_pct(self) -> float:
        if self.total == 0:
            return 0.0
        return self.different / self.total * 100

    @property
    def average_divergence_pct(self) -> float:
        """件数・差分件数が揃っている不一致だけを対象にした平均差分率 (%)."""
        if self.diff_ratio_count == 0:
            return 0.0
        return self.diff_ratio_sum / self.diff_ratio_count * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "identical": self.identical,
            "different": self.different,
            "diff_pct": round(self.diff_pct, 4),
            "diff_ratio_sum": round(self.diff_ratio_sum, 6),
            "diff_ratio_count": self.diff_ratio_count,
            "average_divergence_pct": round(self.average_divergence_pct, 4),
        }


@dataclass
class ItemUpdate:
    """更新イベントで変更するフィールド (None は未変更)."""

    name: str | None = None
    created: int | None = None
    status: Status | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.name is not None:
            d["name"] = self.name
        if self.created is not None:
            d["created"] = self.created
        if self.status is not None:
            d["status"] = int(self.status)
        return d


@dataclass
class ChangeLogEntry:
    """変更ログの1イベント. update と insert のどちらか一方だけを持つ."""

    item_id: str
    update: ItemUpdate | None = None
    insert: Item | None = None

    def __post_init__(self) -> None:
        if (self.update is None) == (self.insert is None):
            raise ValueError(
                f"change log entry for item {self.item_id} must have exactly one of update/insert"
            )

    @property
    def is_update(self) -> bool:
        return self.update is not None

    def to_dict(self) -> dict[str, Any]:
        if self.update is not None:
            return {"itemID": self.item_id, "update": self.update.to_dict()}
        return {"itemID": self.item_id, "insert": self.insert.to_dict()}
