import argparse
import asyncio
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

from autotransocr.config import (
    AppConfig,
    LoggingConfig,
    load_config,
    parse_region_spec,
    write_default_config,
)
from autotransocr.pipeline.capture import EncodedFrame, ScreenCapturer
from autotransocr.pipeline.orchestrator import CaptureScheduler
from autotransocr.pipeline.regions import RegionStore
from autotransocr.pipeline.translate import LocalTranslator
from autotransocr.pipeline.worker_client import (
    OcrWorkerClient,
    subprocess_spawner,
    worker_command,
)
from autotransocr.ui.console import ConsoleControl, ConsoleDisplay

__version__ = "0.1.0"

logger = logging.getLogger("autotransocr")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autotransocr",
        description="capture screen regions, OCR them and translate")
    parser.add_argument("--version", action="store_true",
                        help="print version and exit")
    parser.add_argument("--config", type=str,
                        help="path to configuration file (optional)")
    parser.add_argument("--doctor", action="store_true",
                        help="probe translation endpoint and tesseract, exit")
    parser.add_argument("--region", action="append", default=[],
                        metavar="X,Y,W,H",
                        help="add a capture region (repeatable)")
    parser.add_argument("--start", action="store_true",
                        help="start capturing immediately")
    parser.add_argument("--no-hotkeys", action="store_true",
                        help="do not register global hotkeys (implies --start)")
    return parser


def configure_logging(cfg: LoggingConfig) -> None:
    fmt = logging.Formatter(
        "[%(asctime)s.%(msecs)03d] [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    root = logging.getLogger()
    root.setLevel(getattr(logging, cfg.level, logging.INFO))

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(fmt)
    root.addHandler(stream)

    if cfg.file is not None:
        cfg.file.mkdir(parents=True, exist_ok=True)
        path = cfg.file / f"app-{time.strftime('%Y-%m-%d')}.log"
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)

    # SDK 的请求日志太吵
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def run(cfg: AppConfig, *, start: bool, hotkeys: bool) -> int:
    loop = asyncio.get_running_loop()

    capturer = ScreenCapturer(
        monitor=cfg.capture.monitor, backend=cfg.capture.backend)

    async def grab() -> EncodedFrame:
        return await asyncio.to_thread(capturer.grab_png)

    scheduler: CaptureScheduler | None = None

    def capturing() -> bool:
        return scheduler is not None and scheduler.capturing

    worker = OcrWorkerClient(
        subprocess_spawner(
            worker_command(cfg.ocr, log_level=cfg.logging.level)),
        timeout_sec=cfg.ocr.timeout_sec,
        restart_delay_sec=cfg.ocr.restart_delay_sec,
        max_restarts=cfg.ocr.max_restarts,
        should_restart=capturing,
    )
    translator = LocalTranslator(cfg.translate)
    scheduler = CaptureScheduler(
        store=RegionStore(),
        grab=grab,
        recognizer=worker,
        translator=translator,
        display=ConsoleDisplay(),
        control=ConsoleControl(),
        interval_sec=cfg.capture.interval_ms / 1000.0,
        dpi_scale=cfg.capture.dpi_scale,
        retry_failed=cfg.translate.retry_failed,
    )
    for r in cfg.regions:
        scheduler.add_region(r.x, r.y, r.width, r.height)

    quit_event = asyncio.Event()
    bridge = None
    if hotkeys:
        # pynput 在没有图形会话的 Linux 上导入即失败，只在需要时加载
        from autotransocr.hotkeys import HotkeyBridge, HotkeyConfig

        hk_cfg = HotkeyConfig()
        bridge = HotkeyBridge(
            loop,
            on_toggle_capture=scheduler.toggle_capture,
            on_clear_regions=scheduler.clear_regions,
            on_quit=quit_event.set,
            cfg=hk_cfg,
        )
        bridge.start()
        logger.info(
            "热键：%s 开始/停止，%s 清空区域，%s 退出",
            hk_cfg.toggle_capture,
            hk_cfg.clear_regions,
            hk_cfg.quit,
        )

    if start or not hotkeys:
        scheduler.start()

    try:
        await quit_event.wait()
    finally:
        if bridge is not None:
            bridge.stop()
        scheduler.stop()
        await scheduler.wait_idle()
        await worker.close()
        await translator.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"autotransocr {__version__}")
        return 0

    config_path = Path(args.config) if args.config else None
    try:
        cfg = load_config(config_path)
    except FileNotFoundError:
        created = write_default_config(config_path)
        print(f"已生成配置文件：{created}，请确认 [translate] 后重新运行。")
        return 2
    except ValueError as e:
        print(f"配置文件有误：{e}", file=sys.stderr)
        return 2

    if args.doctor:
        from autotransocr.diagnostics import diagnose

        print(diagnose(cfg))
        return 0

    try:
        extra = tuple(parse_region_spec(r) for r in args.region)
    except ValueError as e:
        parser.error(str(e))
    if extra:
        cfg = replace(cfg, regions=cfg.regions + extra)

    configure_logging(cfg.logging)
    if not cfg.regions:
        logger.warning("没有配置任何区域，可在 config.toml 的 [[regions]] 或 --region 添加")

    try:
        return asyncio.run(
            run(cfg, start=args.start, hotkeys=not args.no_hotkeys))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
