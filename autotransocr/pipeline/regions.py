from __future__ import annotations

import time
from typing import Callable, Iterator

from autotransocr.util.geometry import Region


def _millis() -> int:
    return int(time.time() * 1000)


class RegionStore:
    """捕获区域的有序登记表。

    id 取当前毫秒时间戳，但保证严格递增：同一毫秒内连续添加时顺延 +1。
    """

    def __init__(self, clock: Callable[[], int] = _millis):
        self._clock = clock
        self._regions: list[Region] = []
        self._last_id = 0

    def _next_id(self) -> int:
        self._last_id = max(self._last_id + 1, int(self._clock()))
        return self._last_id

    def add(self, x: int, y: int, width: int, height: int) -> Region:
        if int(width) <= 0 or int(height) <= 0:
            raise ValueError(f"区域宽高必须为正数：{width}x{height}")
        region = Region(
            id=self._next_id(),
            x=int(x),
            y=int(y),
            width=int(width),
            height=int(height),
        )
        self._regions.append(region)
        return region

    def remove(self, region_id: int) -> bool:
        before = len(self._regions)
        self._regions = [r for r in self._regions if r.id != region_id]
        return len(self._regions) != before

    def get(self, region_id: int) -> Region | None:
        for r in self._regions:
            if r.id == region_id:
                return r
        return None

    def list(self) -> list[Region]:
        return list(self._regions)

    def __contains__(self, region_id: object) -> bool:
        return any(r.id == region_id for r in self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self) -> Iterator[Region]:
        return iter(list(self._regions))
