"""変更ログ (インクリメンタル更新の負荷シミュレーション用) の生成.

商品ストリームの先頭 start_from 件は「インデックス済み商品の更新」、
それ以降は「新規商品の追加」としてイベント化する。

  - 更新イベント: max_items の 1/3 まで。上限に達したら以降の更新候補はスキップ
  - 追加イベント: max_items の 2/3 まで。上限に達したら生成を終了
  - 更新内容: 30% で created を1日進める、70% で status を売り切れにする
    (出品中・取引中の商品のみ。それ以外は変更なしの更新イベントになる)

生成したイベント列はシャッフルしてから JSON 配列として書き出す。
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from pathlib import Path

from searchbench.config import BATCH_SIZE, FILENAME_FILTER, ONE_DAY_MS
from searchbench.errors import InputError
from searchbench.items import import_items
from searchbench.models import ChangeLogEntry, Item, ItemUpdate, Status

logger = logging.getLogger(__name__)

# 売り切れに変更できるステータス
_SELLABLE = (Status.ON_SALE, Status.TRADING)


@dataclass
class ChangeLogSummary:
    updates: int
    inserts: int
    path: str = ""
    size_bytes: int = 0

    def __str__(self) -> str:
        s = f"change log with {self.updates} updates and {self.inserts} inserts"
        if self.path:
            s += f" written to {self.path} ({self.size_bytes} bytes)"
        return s


class ChangeLogSynthesizer:
    """商品バッチから変更ログを組み立てる BatchSink.

    Args:
        start_from: この位置 (1始まり) までの商品を更新候補にする
        max_items: 生成するイベント数の目安。更新 1/3、追加 2/3 に配分する
        rng: 乱数生成器。省略時は seed から作る (seed も省略ならシードなし)
    """

    def __init__(
        self,
        start_from: int,
        max_items: int,
        seed: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if start_from < 0:
            raise ValueError(f"start_from must not be negative, got {start_from}")
        if max_items <= 0:
            raise ValueError(f"max_items must be positive, got {max_items}")
        self.start_from = start_from
        self.max_items = max_items
        self.max_updates = max_items // 3
        self.max_inserts = (max_items // 3) * 2
        self.rng = rng if rng is not None else random.Random(seed)

        self.entries: list[ChangeLogEntry] = []
        self.updates = 0
        self.inserts = 0
        self.position = 0
        self.done = False
        self._shuffled = False

    @property
    def items_to_import(self) -> int:
        return self.start_from + self.max_items

    def make_update(self, item: Item) -> ChangeLogEntry:
        """商品1件に対するランダムな更新イベントを作る."""
        update = ItemUpdate()
        if self.rng.randrange(10) < 3:
            update.created = item.created + ONE_DAY_MS
        elif item.status in _SELLABLE:
            update.status = Status.SOLD
        return ChangeLogEntry(item_id=item.id, update=update)

    def accept(self, items: list[Item]) -> bool:
        if self.done:
            return False

        for item in items:
            self.position += 1

            if self.position <= self.start_from:
                if self.updates >= self.max_updates:
                    continue
                self.entries.append(self.make_update(item))
                self.updates += 1
            else:
                if self.inserts >= self.max_inserts:
                    logger.info(
                        "変更ログ生成完了: 更新 %d 件, 追加 %d 件", self.updates, self.inserts,
                    )
                    self.done = True
                    return False
                self.entries.append(ChangeLogEntry(item_id=item.id, insert=item))
                self.inserts += 1

        return True

    def flush(self) -> None:
        pass

    def finish(self) -> list[ChangeLogEntry]:
        """イベント列をシャッフルして返す (1回だけ)."""
        if not self._shuffled:
            self.rng.shuffle(self.entries)
            self._shuffled = True
        return self.entries

    def summary(self) -> ChangeLogSummary:
        return ChangeLogSummary(updates=self.updates, inserts=self.inserts)

    def write(self, path: str | Path) -> ChangeLogSummary:
        """シャッフル済みのイベント列を JSON 配列としてファイルに書き出す."""
        entries = self.finish()
        data = json.dumps([e.to_dict() for e in entries], ensure_ascii=False).encode("utf-8")
        try:
            Path(path).write_bytes(data)
        except OSError as e:
            raise InputError(f"failed to write change log {path}: {e}") from e

        summary = ChangeLogSummary(
            updates=self.updates, inserts=self.inserts, path=str(path), size_bytes=len(data),
        )
        logger.info("Wrote %s", summary)
        return summary


def create_change_log(
    data_dir: str | Path,
    output: str | Path,
    start_from: int,
    max_items: int,
    filename_filter: str = FILENAME_FILTER,
    batch_size: int = BATCH_SIZE,
    seed: int | None = None,
) -> ChangeLogSummary:
    """商品ファイルから変更ログを生成して output に書き出す."""
    synth = ChangeLogSynthesizer(start_from, max_items, seed=seed)
    logger.info(
        "変更ログ生成開始: 更新 最大 %d 件, 追加 最大 %d 件",
        synth.max_updates, synth.max_inserts,
    )
    import_items(data_dir, synth, filename_filter, batch_size, synth.items_to_import)
    return synth.write(output)
