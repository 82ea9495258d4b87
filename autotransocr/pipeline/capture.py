from __future__ import annotations

from dataclasses import dataclass
import threading
import subprocess
import tempfile
from pathlib import Path
import shutil

import numpy as np
from mss import mss
from mss.exception import ScreenShotError
from PIL import Image

from autotransocr.pipeline.preprocess import encode_png


class CaptureError(RuntimeError):
    pass


@dataclass(frozen=True)
class Frame:
    image: Image.Image
    width: int
    height: int
    left: int
    top: int


@dataclass(frozen=True)
class EncodedFrame:
    png: bytes
    width: int
    height: int
    left: int
    top: int


class ScreenCapturer:
    def __init__(self, monitor: int = 1, backend: str = "auto"):
        # mss 在 Linux 下会把 display 放在线程局部存储里。
        # grab 由 asyncio.to_thread 在线程池中调用，线程不固定，
        # 因此每个线程懒初始化一个独立的 mss() 实例。
        self._tls = threading.local()
        self._monitor_index = monitor
        self._backend = (backend or "auto").strip().lower()

    def _get_sct(self):
        sct = getattr(self._tls, "sct", None)
        if sct is None:
            sct = mss()
            self._tls.sct = sct
        return sct

    def list_monitors(self) -> list[dict]:
        return list(self._get_sct().monitors)

    def grab(self) -> Frame:
        try:
            if self._backend == "spectacle":
                return self._grab_spectacle()
            if self._backend == "mss":
                return self._grab_mss()
            # auto
            try:
                return self._grab_mss()
            except ScreenShotError:
                return self._grab_spectacle()
        except CaptureError:
            raise
        except (ScreenShotError, OSError, ValueError, RuntimeError,
                subprocess.SubprocessError) as e:
            raise CaptureError(f"截屏失败：{type(e).__name__}: {e}") from e

    def grab_png(self) -> EncodedFrame:
        frame = self.grab()
        return EncodedFrame(
            png=encode_png(frame.image),
            width=frame.width,
            height=frame.height,
            left=frame.left,
            top=frame.top,
        )

    def _grab_mss(self) -> Frame:
        sct = self._get_sct()
        monitors = sct.monitors
        if self._monitor_index < 0 or self._monitor_index >= len(monitors):
            raise CaptureError(
                (
                    f"monitor 索引无效：{self._monitor_index}，"
                    f"可用范围 0..{len(monitors)-1}"
                )
            )

        mon = monitors[self._monitor_index]
        raw = sct.grab(mon)
        arr = np.array(raw)  # BGRA
        img = Image.fromarray(arr[:, :, :3][:, :, ::-1])  # to RGB
        return Frame(
            image=img,
            width=img.width,
            height=img.height,
            left=int(mon.get("left", 0) or 0),
            top=int(mon.get("top", 0) or 0),
        )

    def _grab_spectacle(self) -> Frame:
        exe = shutil.which("spectacle")
        if not exe:
            raise CaptureError(
                "未找到 spectacle，可用 `sudo apt install spectacle` 或使用其它后端")

        with tempfile.TemporaryDirectory(prefix="autotransocr-") as td:
            out_path = Path(td) / "shot.png"
            cmd = [
                exe,
                "--background",
                "--nonotify",
                "--fullscreen",
                "--output",
                str(out_path),
            ]
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
            )
            if proc.returncode != 0:
                stderr = (proc.stderr or proc.stdout or "").strip()
                raise CaptureError(
                    f"spectacle 截图失败：exit={proc.returncode} {stderr}")

            if not out_path.exists() or out_path.stat().st_size <= 0:
                raise CaptureError("spectacle 未生成有效截图文件")

            img = Image.open(out_path).convert("RGB")
            # spectacle 的输出是整个虚拟桌面，坐标原点即 (0, 0)
            return Frame(
                image=img,
                width=img.width,
                height=img.height,
                left=0,
                top=0,
            )
