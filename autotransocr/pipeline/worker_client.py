from __future__ import annotations

import asyncio
import itertools
import logging
import sys
from typing import Awaitable, Callable, Protocol

from autotransocr.config import OcrConfig
from autotransocr.pipeline.worker_protocol import (
    OcrFailure,
    OcrOutcome,
    OcrRequest,
    ProtocolError,
    decode_response,
    encode_request,
)
from autotransocr.util.geometry import Region

logger = logging.getLogger(__name__)

# 应答一行带整段识别文本，asyncio 默认的 64 KiB 行上限不够
STREAM_LIMIT = 16 * 1024 * 1024


class WorkerProcess(Protocol):
    """asyncio.subprocess.Process 中本模块用到的部分。"""

    stdin: asyncio.StreamWriter
    stdout: asyncio.StreamReader
    returncode: int | None

    async def wait(self) -> int: ...

    def kill(self) -> None: ...


SpawnFn = Callable[[], Awaitable[WorkerProcess]]


def worker_command(cfg: OcrConfig, *, log_level: str = "INFO") -> list[str]:
    cmd = [
        sys.executable,
        "-m",
        "autotransocr.pipeline.ocr_worker",
        "--lang", cfg.lang,
        "--psm", str(cfg.psm),
        "--oem", str(cfg.oem),
        "--upscale", str(cfg.upscale),
        "--invert-below", str(cfg.invert_below),
        "--threshold", str(cfg.threshold),
        "--log-level", log_level,
    ]
    if cfg.tesseract_cmd:
        cmd += ["--tesseract-cmd", cfg.tesseract_cmd]
    return cmd


def subprocess_spawner(cmd: list[str]) -> SpawnFn:
    async def spawn() -> WorkerProcess:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )

    return spawn


class OcrWorkerClient:
    """主进程一侧的 OCR 工作进程代理。

    - 同一时刻最多一个未完成请求（asyncio.Lock）
    - 请求带自增 id，应答按 id 对应；超时后迟到的应答直接丢弃
    - 每个请求只有一个等待点（asyncio.wait_for），超时/成功/失败互斥
    - 进程以非 0 退出且 should_restart() 为真时，固定延迟后重启一次
    """

    def __init__(
        self,
        spawn: SpawnFn,
        *,
        timeout_sec: float = 10.0,
        restart_delay_sec: float = 1.0,
        max_restarts: int = 5,
        should_restart: Callable[[], bool] | None = None,
    ):
        self._spawn = spawn
        self._timeout_sec = timeout_sec
        self._restart_delay_sec = restart_delay_sec
        self._max_restarts = max_restarts
        self._should_restart = should_restart or (lambda: True)

        self._proc: WorkerProcess | None = None
        self._reader_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._lock: asyncio.Lock | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._closing = False

        # 连续重启次数；工作进程报告 ready 后清零
        self._consecutive_restarts = 0
        self.restart_attempts = 0

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    async def ensure_started(self) -> bool:
        """确保工作进程在运行；用于开始捕获时，会清零重启计数。"""

        self._closing = False
        self._consecutive_restarts = 0
        if self.running or self.restart_pending:
            return True
        return await self._spawn_once()

    async def recognize(self, image: bytes, region: Region) -> OcrOutcome:
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            proc = self._proc
            if proc is None or proc.returncode is not None:
                return OcrFailure(error="OCR 工作进程未运行")

            req_id = next(self._ids)
            fut: asyncio.Future = asyncio.get_running_loop().create_future()
            self._pending[req_id] = fut
            try:
                proc.stdin.write(
                    encode_request(OcrRequest(req_id, image, region)))
                await proc.stdin.drain()
            except ConnectionError as e:
                self._pending.pop(req_id, None)
                return OcrFailure(error=f"写入 OCR 工作进程失败：{e}")

            try:
                return await asyncio.wait_for(fut, self._timeout_sec)
            except asyncio.TimeoutError:
                logger.warning(
                    "[region %s] OCR 超时（%.1fs），本轮按空文本处理",
                    region.id,
                    self._timeout_sec,
                )
                return OcrFailure(error="timeout")
            finally:
                self._pending.pop(req_id, None)

    async def close(self) -> None:
        self._closing = True
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None

        proc = self._proc
        self._proc = None
        if proc is not None and proc.returncode is None:
            try:
                proc.stdin.close()
            except (OSError, RuntimeError):
                pass
            try:
                await asyncio.wait_for(proc.wait(), 2.0)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()

        for task in (self._reader_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
        self._reader_task = None
        self._watch_task = None
        self._fail_pending("OCR 工作进程已关闭")

    async def _spawn_once(self) -> bool:
        try:
            proc = await self._spawn()
        except OSError as e:
            logger.error("启动 OCR 工作进程失败：%s", e)
            self._schedule_restart()
            return False

        self._proc = proc
        self._reader_task = asyncio.create_task(self._read_loop(proc))
        self._watch_task = asyncio.create_task(self._watch(proc))
        logger.info("OCR 工作进程已启动")
        return True

    async def _read_loop(self, proc: WorkerProcess) -> None:
        try:
            while True:
                try:
                    line = await proc.stdout.readline()
                except ValueError as e:
                    # 超过行上限后读端无法再同步，结束进程交给监督重启
                    logger.error("OCR 工作进程应答过长，结束进程：%s", e)
                    self._kill(proc)
                    break
                if not line:
                    break
                try:
                    req_id, outcome = decode_response(line)
                except ProtocolError as e:
                    logger.warning("OCR 工作进程输出无法解析：%s", e)
                    continue

                if outcome is None:
                    self._consecutive_restarts = 0
                    logger.debug("OCR 工作进程就绪")
                    continue

                if req_id is None and len(self._pending) == 1:
                    # 工作进程没能解析出 id，但只可能是唯一的未完成请求
                    req_id = next(iter(self._pending))

                fut = self._pending.get(req_id) if req_id is not None else None
                if fut is None or fut.done():
                    logger.debug("丢弃过期的 OCR 应答 id=%s", req_id)
                    continue
                fut.set_result(outcome)
        finally:
            self._fail_pending("OCR 工作进程已退出")

    async def _watch(self, proc: WorkerProcess) -> None:
        code = await proc.wait()
        if self._proc is proc:
            self._proc = None
        if self._closing:
            return

        if code == 0:
            logger.info("OCR 工作进程已退出")
            return

        logger.warning("OCR 工作进程异常退出 code=%s", code)
        if self._should_restart():
            self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._closing or self.restart_pending:
            return
        if self._consecutive_restarts >= self._max_restarts:
            logger.error(
                "OCR 工作进程连续重启 %d 次失败，放弃；重新开始捕获时会再次尝试",
                self._consecutive_restarts,
            )
            return
        self._restart_task = asyncio.create_task(self._restart_later())

    async def _restart_later(self) -> None:
        await asyncio.sleep(self._restart_delay_sec)
        if self._closing or self.running or not self._should_restart():
            return
        self._consecutive_restarts += 1
        self.restart_attempts += 1
        logger.info("重启 OCR 工作进程（第 %d 次）", self._consecutive_restarts)
        # _spawn_once 失败时会再次调度；当前任务需先让出 restart_pending
        self._restart_task = None
        await self._spawn_once()

    @staticmethod
    def _kill(proc: WorkerProcess) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    def _fail_pending(self, reason: str) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.set_result(OcrFailure(error=reason))
        self._pending.clear()
