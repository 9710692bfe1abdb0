"""トークナイザ.

形態素解析などの分かち書きは外部サービス扱い。
Tokenizer プロトコルを満たすオブジェクトを起動時に1つ作り、
クエリのデコードとインデックス投入の両方に明示的に渡す。
"""

from __future__ import annotations

import re
from typing import Protocol

_TOKEN_PATTERN = re.compile(r"\S+")


class Tokenizer(Protocol):
    """テキストを順序付きトークン列に分割する."""

    def segment(self, text: str) -> list[str]: ...


class WhitespaceTokenizer:
    """空白区切りでトークン化するデフォルト実装."""

    def segment(self, text: str) -> list[str]:
        return _TOKEN_PATTERN.findall(text)


def wakati(tokenizer: Tokenizer, text: str) -> str:
    """分かち書きした結果を空白で連結して返す."""
    return " ".join(tokenizer.segment(text))
