from __future__ import annotations

import logging

from autotransocr.pipeline.orchestrator import TranslatedUpdate
from autotransocr.util.geometry import Region

logger = logging.getLogger(__name__)


class ConsoleDisplay:
    """无界面运行时的显示端：把译文打到日志里，并记住每个区域的最新译文。"""

    def __init__(self) -> None:
        self.regions: list[Region] = []
        self.translations: dict[int, TranslatedUpdate] = {}

    def update_regions(self, regions: list[Region]) -> None:
        self.regions = list(regions)
        live = {r.id for r in regions}
        for rid in [k for k in self.translations if k not in live]:
            self.translations.pop(rid, None)

    def update_translation(self, update: TranslatedUpdate) -> None:
        self.translations[update.id] = update
        logger.info(
            "[%d,%d %dx%d] %s",
            update.x,
            update.y,
            update.width,
            update.height,
            update.text,
        )

    def remove_translation(self, region_id: int) -> None:
        self.translations.pop(region_id, None)


class ConsoleControl:
    def __init__(self) -> None:
        self.capturing = False
        self.regions: list[Region] = []

    def regions_updated(self, regions: list[Region]) -> None:
        self.regions = list(regions)
        logger.info("当前区域 %d 个：%s", len(regions),
                    ", ".join(str(r.id) for r in regions) or "-")

    def capture_status(self, capturing: bool) -> None:
        self.capturing = capturing
        logger.info("捕获状态：%s", "运行中" if capturing else "已停止")
