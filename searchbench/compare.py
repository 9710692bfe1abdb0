"""結果ファイル比較モジュール.

複数のベンチマーク実行で書き出した結果ファイルを行単位で揃えて読み、
先頭ファイル (main) に対する他ファイルの一致・不一致を集計する。

一致判定は ID 列の順序込みの完全一致。不一致の場合、両者の件数が同じで
片側だけに存在する ID の数が左右で等しいときに限り、
「main 側だけにある ID 数 / main の件数」を差分率として平均に加える
(並び順だけが違う場合の数え方は divergence() を参照)。
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Sequence

from searchbench.errors import AlignmentError, InputError
from searchbench.models import ComparisonStats, ResultSnapshot

logger = logging.getLogger(__name__)


@dataclass
class Line:
    """結果ファイルから読んだ1行."""

    from_file: str
    text: str


@dataclass
class ComparisonReport:
    """比較結果. 全体と bestmatch / 日付ソート別の集計を持つ."""

    files: list[str]
    lines: int = 0
    overall: ComparisonStats = field(default_factory=ComparisonStats)
    best_match: ComparisonStats = field(default_factory=ComparisonStats)
    sort_by_date: ComparisonStats = field(default_factory=ComparisonStats)

    @property
    def average_divergence_pct(self) -> float:
        return self.overall.average_divergence_pct

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": self.files,
            "lines": self.lines,
            "overall": self.overall.to_dict(),
            "best_match": self.best_match.to_dict(),
            "sort_by_date": self.sort_by_date.to_dict(),
            "average_divergence_pct": round(self.average_divergence_pct, 4),
        }


def read_files_line_by_line(files: Sequence[str | Path]) -> Iterator[tuple[int, list[Line]]]:
    """全ファイルから同じ行番号の行をまとめて返す.

    いずれかのファイルが EOF または空行に達した時点で終了する。

    Yields:
        (行番号 (1始まり), ファイル順の Line リスト)
    """
    with ExitStack() as stack:
        handles = []
        for path in files:
            try:
                handles.append((Path(path).name, stack.enter_context(open(path, encoding="utf-8"))))
            except OSError as e:
                raise InputError(f"failed to open results file {path}: {e}") from e

        line_number = 0
        while True:
            lines: list[Line] = []
            ended: list[str] = []
            for name, f in handles:
                try:
                    text = f.readline().strip()
                except UnicodeDecodeError as e:
                    raise InputError(
                        f"results file {name} is not valid UTF-8 (around line {line_number + 1}): {e}"
                    ) from e
                if text == "":
                    ended.append(name)
                else:
                    lines.append(Line(from_file=name, text=text))

            if ended:
                if lines:
                    logger.warning(
                        "ファイル長が一致しません: %s は %d 行目で終了、%s にはまだ行があります",
                        ", ".join(ended), line_number + 1, ", ".join(line.from_file for line in lines),
                    )
                return

            line_number += 1
            yield line_number, lines


def diff_ids(a: Sequence[str], b: Sequence[str]) -> tuple[set[str], set[str], set[str]]:
    """順序を無視した差分. (a のみ, b のみ, 両方) を返す."""
    sa, sb = set(a), set(b)
    return sa - sb, sb - sa, sa & sb


def _lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    prev = [0] * (len(b) + 1)
    for x in a:
        cur = [0]
        for j, y in enumerate(b):
            cur.append(prev[j] + 1 if x == y else max(prev[j + 1], cur[j]))
        prev = cur
    return prev[-1]


def divergence(main: Sequence[str], other: Sequence[str]) -> tuple[int, int]:
    """片側にしか現れない ID の数を (main 側, other 側) で返す.

    集合として異なる場合は集合差。集合が同じで順序だけ異なる場合は、
    最長共通部分列から外れた (位置がずれた) ID をそれぞれの側の差分として数える。
    """
    only_main, only_other, _ = diff_ids(main, other)
    if only_main or only_other:
        return len(only_main), len(only_other)
    common = _lcs_length(main, other)
    return len(main) - common, len(other) - common


def _parse(line: Line, line_number: int) -> ResultSnapshot:
    try:
        return ResultSnapshot.from_line(line.text)
    except ValueError as e:
        raise InputError(f"{line.from_file} line {line_number}: malformed result line: {e}") from e


def _accumulate(stats: ComparisonStats, main: ResultSnapshot, other: ResultSnapshot) -> bool:
    """1組の比較結果を stats に加える. 完全一致なら True."""
    stats.total += 1
    if main.ids == other.ids:
        stats.identical += 1
        return True

    stats.different += 1
    only_main, only_other = divergence(main.ids, other.ids)
    if only_main > 0 and only_main == only_other and len(main.ids) == len(other.ids):
        stats.diff_ratio_sum += only_main / len(main.ids)
        stats.diff_ratio_count += 1
    return False


def compare_results(files: Sequence[str | Path], debug: bool = False) -> ComparisonReport:
    """結果ファイルを比較する.

    Args:
        files: 比較するファイル (2つ以上)。先頭が比較の基準になる。
        debug: True なら不一致行ごとに片側のみの ID 数をログ出力する

    Raises:
        AlignmentError: 同じ行のクエリ番号がファイル間で異なる場合
        InputError: ファイルが読めない、または行フォーマットが不正な場合
    """
    if len(files) < 2:
        raise InputError(f"need at least 2 results files to compare, got {len(files)}")

    report = ComparisonReport(files=[str(f) for f in files])

    for line_number, lines in read_files_line_by_line(files):
        main_line = lines[0]
        main = _parse(main_line, line_number)
        group = report.best_match if main.best_match else report.sort_by_date

        for other_line in lines[1:]:
            other = _parse(other_line, line_number)

            if other.ordinal != main.ordinal:
                raise AlignmentError(
                    f"line {line_number}: at query #{main.ordinal} in file {main_line.from_file} "
                    f"but query #{other.ordinal} in file {other_line.from_file}"
                )
            if other.best_match != main.best_match:
                logger.warning(
                    "query #%d: bestmatch=%s in %s but bestmatch=%s in %s",
                    main.ordinal, main.best_match, main_line.from_file,
                    other.best_match, other_line.from_file,
                )

            _accumulate(report.overall, main, other)
            identical = _accumulate(group, main, other)

            if debug and not identical:
                only_main, only_other = divergence(main.ids, other.ids)
                logger.debug(
                    "#%-5d %-20s IDs found only in main : %3d / %-20s IDs found only here : %3d",
                    main.ordinal, main_line.from_file, only_main,
                    other_line.from_file, only_other,
                )

        report.lines = line_number

    logger.info(
        "比較完了: %d 行, 一致 %d / 不一致 %d (平均差分率 %.2f%%)",
        report.lines, report.overall.identical, report.overall.different,
        report.average_divergence_pct,
    )
    return report
