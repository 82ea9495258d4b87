from __future__ import annotations

import re

_WS_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """去掉首尾空白并把连续空白折叠为一个空格，仅用于比较。"""

    return _WS_RE.sub(" ", (text or "").strip())


class ChangeDetector:
    """按区域记录上一次送去翻译的文本，文本没变就不再翻译。"""

    def __init__(self) -> None:
        self._last: dict[int, str] = {}

    def observe(self, region_id: int, text: str) -> str | None:
        """返回需要翻译的原文；None 表示本轮无需更新。"""

        norm = normalize_text(text)
        if not norm:
            return None
        if self._last.get(region_id) == norm:
            return None
        self._last[region_id] = norm
        return text

    def cached(self, region_id: int) -> str | None:
        return self._last.get(region_id)

    def forget(self, region_id: int) -> None:
        self._last.pop(region_id, None)

    def clear(self) -> None:
        self._last.clear()

    def __len__(self) -> int:
        return len(self._last)
