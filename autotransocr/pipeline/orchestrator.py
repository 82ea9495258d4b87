from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

from autotransocr.pipeline.capture import CaptureError, EncodedFrame
from autotransocr.pipeline.change import ChangeDetector
from autotransocr.pipeline.regions import RegionStore
from autotransocr.pipeline.translate import TranslateResult
from autotransocr.pipeline.worker_protocol import OcrFailure, OcrOutcome
from autotransocr.util.geometry import Region

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranslatedUpdate:
    id: int
    x: int
    y: int
    width: int
    height: int
    text: str


class DisplaySink(Protocol):
    def update_regions(self, regions: list[Region]) -> None: ...

    def update_translation(self, update: TranslatedUpdate) -> None: ...

    def remove_translation(self, region_id: int) -> None: ...


class ControlSurface(Protocol):
    def regions_updated(self, regions: list[Region]) -> None: ...

    def capture_status(self, capturing: bool) -> None: ...


class Recognizer(Protocol):
    async def recognize(self, image: bytes, region: Region) -> OcrOutcome: ...

    async def ensure_started(self) -> bool: ...


class Translator(Protocol):
    async def translate_result(self, source: str) -> TranslateResult: ...


GrabFn = Callable[[], Awaitable[EncodedFrame]]


class CaptureScheduler:
    """捕获调度器：Idle / Capturing 两个状态。

    所有状态只在事件循环线程里读写：
    - 定时器每 interval 触发一次；上一轮还没结束就直接跳过（不排队、不打日志）
    - 一轮内按区域列表顺序逐个处理，OCR 与翻译永远不会并发
    - 单个区域出错只记日志，不影响后续区域；截屏失败则放弃本轮
    """

    def __init__(
        self,
        *,
        store: RegionStore,
        grab: GrabFn,
        recognizer: Recognizer,
        translator: Translator,
        display: DisplaySink,
        control: ControlSurface,
        detector: ChangeDetector | None = None,
        interval_sec: float = 0.2,
        dpi_scale: float = 1.0,
        retry_failed: bool = True,
    ):
        self._store = store
        self._grab = grab
        self._recognizer = recognizer
        self._translator = translator
        self._display = display
        self._control = control
        self._detector = detector or ChangeDetector()
        self._interval_sec = interval_sec
        self._dpi_scale = dpi_scale
        self._retry_failed = retry_failed

        self._capturing = False
        self._in_flight = False
        self._timer_task: asyncio.Task | None = None
        self._pass_task: asyncio.Task | None = None
        self._starting: asyncio.Task | None = None

    @property
    def capturing(self) -> bool:
        return self._capturing

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def store(self) -> RegionStore:
        return self._store

    # ---- 控制面命令 ----

    def add_region(self, x: int, y: int, width: int, height: int) -> Region:
        region = self._store.add(x, y, width, height)
        logger.info("添加区域：%s", region.to_dict())
        self._notify_regions()
        return region

    def remove_region(self, region_id: int) -> bool:
        removed = self._store.remove(region_id)
        # 不管区域是否存在，都清掉缓存，避免残留
        self._detector.forget(region_id)
        if not removed:
            return False
        logger.info("删除区域：%s", region_id)
        self._notify_regions()
        self._display.remove_translation(region_id)
        return True

    def clear_regions(self) -> int:
        ids = [r.id for r in self._store.list()]
        for rid in ids:
            self.remove_region(rid)
        return len(ids)

    def toggle_capture(self) -> bool:
        if self._capturing:
            self.stop()
        else:
            self.start()
        return self._capturing

    def start(self) -> None:
        if self._capturing:
            return
        self._capturing = True
        self._control.capture_status(True)
        logger.info("=== 捕获开始 ===")
        self._timer_task = asyncio.get_running_loop().create_task(
            self._timer_loop())

    def stop(self) -> None:
        if not self._capturing:
            return
        self._capturing = False
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        # 正在进行的一轮不打断，跑完后自然不再触发
        self._in_flight = False
        self._control.capture_status(False)
        logger.info("=== 捕获停止 ===")

    async def wait_idle(self) -> None:
        """等待当前这一轮（如果有）结束。"""

        task = self._pass_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    # ---- 调度 ----

    async def _start_recognizer(self) -> None:
        try:
            await self._recognizer.ensure_started()
        except Exception:  # noqa: BLE001
            logger.exception("启动 OCR 工作进程失败")

    async def _timer_loop(self) -> None:
        # 第一次 tick 立即触发；这一轮自己等待工作进程启动完成
        self._starting = asyncio.get_running_loop().create_task(
            self._start_recognizer())
        while self._capturing:
            self.tick()
            await asyncio.sleep(self._interval_sec)

    def tick(self) -> asyncio.Task | None:
        if not self._capturing or self._in_flight:
            return None
        if self._pass_task is not None and not self._pass_task.done():
            # 停止后又立即开始：上一轮还在跑，不能重叠
            return None
        regions = self._store.list()
        if not regions:
            return None

        self._in_flight = True
        self._pass_task = asyncio.get_running_loop().create_task(
            self._run_pass(regions))
        return self._pass_task

    async def _run_pass(self, regions: list[Region]) -> None:
        try:
            if self._starting is not None:
                await self._starting
            for region in regions:
                if region.id not in self._store:
                    continue
                try:
                    await self.process_region(region)
                except CaptureError as e:
                    logger.error("[region %s] 截屏失败，放弃本轮：%s",
                                 region.id, e)
                    break
                except Exception:  # noqa: BLE001
                    logger.exception("[region %s] 处理错误", region.id)
        finally:
            self._in_flight = False

    async def process_region(self, region: Region) -> TranslatedUpdate | None:
        """单个区域：截屏 -> OCR -> 变化检测 -> 翻译 -> 推送显示。"""

        frame = await self._grab()

        # 区域是屏幕坐标，截图以 monitor 左上角为原点
        target = region.scaled(self._dpi_scale).offset(-frame.left,
                                                       -frame.top)
        outcome = await self._recognizer.recognize(frame.png, target)
        if isinstance(outcome, OcrFailure):
            logger.warning("[region %s] OCR 失败：%s", region.id,
                           outcome.error)
            return None

        if region.id not in self._store:
            return None
        text = self._detector.observe(region.id, outcome.text)
        if text is None:
            return None

        logger.info("[region %s] 文本检测：%s", region.id, _preview(text, 50))
        result = await self._translator.translate_result(text)
        if not result.ok and self._retry_failed:
            self._detector.forget(region.id)

        if region.id not in self._store:
            return None
        logger.info("[region %s] 翻译完成：%s", region.id,
                    _preview(result.text, 100))

        update = TranslatedUpdate(
            id=region.id,
            x=region.x,
            y=region.y,
            width=region.width,
            height=region.height,
            text=result.text,
        )
        self._display.update_translation(update)
        return update

    def _notify_regions(self) -> None:
        regions = self._store.list()
        self._display.update_regions(regions)
        self._control.regions_updated(regions)


def _preview(text: str, limit: int) -> str:
    t = text.replace("\n", " ")
    return t if len(t) <= limit else t[:limit] + "..."
