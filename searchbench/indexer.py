"""ベンチマーク用インデックスの作成と商品のバルク投入."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from searchbench.backend import ElasticClient, build_bulk_body, to_pretty_json
from searchbench.config import BATCH_SIZE, BENCH_INDEX_NAME, BULK_WARN_BYTES, FILENAME_FILTER
from searchbench.items import import_items
from searchbench.models import Item
from searchbench.tokenizer import Tokenizer, wakati

logger = logging.getLogger(__name__)

ITEMS_INDEX_DEFINITION: dict[str, Any] = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "name": {"type": "text"},
            "desc": {"type": "text"},
            "status": {"type": "integer"},
            "created": {"type": "date", "format": "epoch_millis"},
            "category_id": {"type": "integer"},
        },
    },
    "settings": {
        "number_of_shards": 1,
        "index": {
            "queries.cache.enabled": "false",
            "similarity": {
                "default": {"type": "BM25", "b": 0.75, "k1": 1.2},
            },
        },
    },
}


def create_items_index(client: ElasticClient, index: str = BENCH_INDEX_NAME) -> None:
    """ベンチマーク用インデックスを削除して作り直す."""
    client.delete_index(index)
    client.create_index(index, ITEMS_INDEX_DEFINITION)
    logger.info("インデックス %s を作成", index)


class BulkIndexer:
    """商品名・説明を分かち書きしてバルク投入する BatchSink."""

    def __init__(self, client: ElasticClient, tokenizer: Tokenizer, index: str = BENCH_INDEX_NAME) -> None:
        self.client = client
        self.tokenizer = tokenizer
        self.index = index
        self.indexed = 0

    def build_body(self, items: list[Item]) -> bytes:
        docs: list[dict] = []
        for i in items:
            doc = i.to_dict()
            doc["name"] = wakati(self.tokenizer, i.name)
            doc["desc"] = wakati(self.tokenizer, i.desc)
            docs.append({"index": {"_index": self.index, "_id": i.id}})
            docs.append(doc)
        return build_bulk_body(*docs)

    def accept(self, items: list[Item]) -> bool:
        body = self.build_body(items)
        if len(body) > BULK_WARN_BYTES:
            logger.warning("バルクボディが大きすぎます: %d bytes", len(body))

        logger.info("バルク投入: %d 件 (JSON payload: %d bytes)", len(items), len(body))
        self.client.bulk(body)
        self.indexed += len(items)
        return True

    def flush(self) -> None:
        pass


def run_indexer(
    client: ElasticClient,
    tokenizer: Tokenizer,
    data_dir: str | Path,
    filename_filter: str = FILENAME_FILTER,
    batch_size: int = BATCH_SIZE,
    max_items: int = 0,
    index: str = BENCH_INDEX_NAME,
) -> dict[str, Any]:
    """インデックスを作り直して全商品を投入し、統計を返す."""
    logger.info("インデクサ開始: 最大 %d 件", max_items)
    create_items_index(client, index)

    start = time.time()
    indexer = BulkIndexer(client, tokenizer, index)
    import_items(data_dir, indexer, filename_filter, batch_size, max_items)

    client.refresh(index)
    stats = client.index_stats(index)
    logger.info("Index stats (after):\n%s", to_pretty_json(stats))
    logger.info("%d 件のインデックス完了: %.1f 秒", stats["docs_count"], time.time() - start)
    return stats
