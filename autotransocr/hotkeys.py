from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable

from pynput import keyboard


@dataclass(frozen=True)
class HotkeyConfig:
    toggle_capture: str = "<ctrl>+<shift>+s"
    clear_regions: str = "<ctrl>+<shift>+x"
    quit: str = "<ctrl>+<shift>+q"


class HotkeyBridge:
    """把 pynput 的全局热键转发到 asyncio 事件循环。

    pynput 在自己的监听线程里调用回调；调度器的状态只能在事件循环线程里改，
    所以这里统一用 call_soon_threadsafe 切回去。
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        on_toggle_capture: Callable[[], object],
        on_clear_regions: Callable[[], object],
        on_quit: Callable[[], object],
        cfg: HotkeyConfig | None = None,
    ):
        self._loop = loop
        self._cfg = cfg or HotkeyConfig()
        self._bindings = {
            self._cfg.toggle_capture: on_toggle_capture,
            self._cfg.clear_regions: on_clear_regions,
            self._cfg.quit: on_quit,
        }
        self._listener: keyboard.GlobalHotKeys | None = None

    def _dispatch(self, fn: Callable[[], object]) -> Callable[[], None]:
        def fire() -> None:
            if self._loop.is_closed():
                return
            self._loop.call_soon_threadsafe(fn)

        return fire

    def start(self) -> None:
        if self._listener is not None:
            return
        self._listener = keyboard.GlobalHotKeys(
            {combo: self._dispatch(fn) for combo, fn in self._bindings.items()}
        )
        self._listener.start()

    def stop(self) -> None:
        if self._listener is None:
            return
        self._listener.stop()
        self._listener = None
