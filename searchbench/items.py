"""商品データのインポート.

データディレクトリ内の gzip 圧縮 CSV を読み、batch_size 件ずつ BatchSink に渡す。

CSV フォーマット (1行目はヘッダ):
    id,name,description,status,created,category_id
"""

from __future__ import annotations

import csv
import gzip
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from searchbench.config import BATCH_SIZE, FILENAME_FILTER, IMPORT_PROGRESS_EVERY
from searchbench.errors import InputError
from searchbench.models import Item, Status

logger = logging.getLogger(__name__)

CREATED_FORMAT = "%Y-%m-%d %H:%M:%S %Z"

STATUS_VALUES: dict[str, Status] = {
    "on_sale": Status.ON_SALE,
    "trading": Status.TRADING,
    "sold_out": Status.SOLD,
    "stop": Status.STOPPED,
    "cancel": Status.CANCEL,
}


class BatchSink(Protocol):
    """商品バッチの受け手."""

    def accept(self, items: list[Item]) -> bool:
        """バッチを処理する. False を返すとインポートを打ち切る."""
        ...

    def flush(self) -> None: ...


def to_unix_millis(s: str) -> int:
    """``2021-03-04 12:34:56 UTC`` 形式の日時を epoch millis に変換する."""
    try:
        dt = datetime.strptime(s, CREATED_FORMAT)
    except ValueError as e:
        raise InputError(f"invalid timestamp {s!r}: {e}") from e
    return int(dt.replace(tzinfo=timezone.utc).timestamp() * 1000)


def parse_item(rec: list[str], headers: list[str]) -> Item:
    """CSV の1レコードを Item に変換する.

    Raises:
        InputError: 商品レコードの形式でない場合
    """
    if len(rec) != 6 or len(headers) < 3 or headers[2] != "description":
        raise InputError(f"does not look like an item record: headers={headers} record={rec}")

    try:
        category_id = int(rec[5])
    except ValueError:
        raise InputError(f"invalid category_id {rec[5]!r} for item {rec[0]}") from None

    return Item(
        id=rec[0],
        name=rec[1],
        desc=rec[2],
        status=STATUS_VALUES.get(rec[3], Status.OTHER),
        created=to_unix_millis(rec[4]),
        category_id=category_id,
    )


class ItemBatcher:
    """商品を size 件ずつまとめて sink に渡す."""

    def __init__(self, sink: BatchSink, size: int = BATCH_SIZE) -> None:
        if size <= 0:
            raise ValueError(f"batch size must be positive, got {size}")
        self.sink = sink
        self.size = size
        self.total = 0
        self._items: list[Item] = []

    def add(self, item: Item) -> bool:
        """1件追加する. sink が打ち切りを要求したら False."""
        self.total += 1
        self._items.append(item)
        if len(self._items) >= self.size:
            return self._send()
        return True

    def _send(self) -> bool:
        items, self._items = self._items, []
        return self.sink.accept(items)

    def flush(self) -> None:
        """残りのバッチを渡し、sink をフラッシュする."""
        if self._items:
            self._send()
        self.sink.flush()


def list_item_files(data_dir: str | Path, filename_filter: str = FILENAME_FILTER) -> list[Path]:
    """data_dir 内で filename_filter を名前に含むファイルを名前順に返す."""
    d = Path(data_dir)
    if not d.is_dir():
        raise InputError(f"data dir {data_dir} does not exist")
    return sorted(p for p in d.iterdir() if p.is_file() and filename_filter in p.name)


def import_items(
    data_dir: str | Path,
    sink: BatchSink,
    filename_filter: str = FILENAME_FILTER,
    batch_size: int = BATCH_SIZE,
    max_items: int = 0,
) -> int:
    """商品ファイルを読み込み sink に流す.

    Args:
        max_items: 読み込む最大件数。0 なら全件。

    Returns:
        読み込んだ商品数
    """
    batcher = ItemBatcher(sink, batch_size)
    total = 0
    stop = False

    for path in list_item_files(data_dir, filename_filter):
        logger.info("商品ファイル読み込み: %s", path.name)
        try:
            with gzip.open(path, "rt", encoding="utf-8", newline="") as f:
                reader = csv.reader(f)
                headers = next(reader, None)
                if headers is None:
                    continue
                logger.info("Headers: %s", headers)

                for rec in reader:
                    item = parse_item(rec, headers)
                    total += 1
                    if total == 1:
                        logger.info("Preview item: %s", rec)

                    if not batcher.add(item):
                        stop = True
                        break

                    if total % IMPORT_PROGRESS_EVERY == 0:
                        logger.info("%d 件処理済み ..", total)

                    if max_items > 0 and total >= max_items:
                        stop = True
                        break
        except (OSError, EOFError, UnicodeDecodeError, csv.Error) as e:
            raise InputError(f"failed to read item file {path}: {e}") from e

        if stop:
            break

    batcher.flush()
    logger.info("商品 %d 件をインポート", total)
    return total
