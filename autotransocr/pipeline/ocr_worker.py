"""OCR 工作进程。

由主进程以 `python -m autotransocr.pipeline.ocr_worker` 启动，
从 stdin 逐行读取请求，向 stdout 逐行写回应答（见 worker_protocol）。
Tesseract 崩溃/卡死只影响本进程，主进程的调度循环不受影响。
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import BinaryIO, Protocol

from PIL import Image

from autotransocr.pipeline.preprocess import PreprocessParams, prepare_for_ocr
from autotransocr.pipeline.recognize import RecognitionResult, TextRecognizer
from autotransocr.pipeline.worker_protocol import (
    OcrFailure,
    OcrOutcome,
    OcrSuccess,
    ProtocolError,
    decode_request,
    encode_outcome,
    encode_ready,
)
from autotransocr.util.geometry import Region

logger = logging.getLogger("autotransocr.ocr_worker")


class Recognizer(Protocol):
    def recognize(self, image: Image.Image) -> RecognitionResult: ...


class OcrWorker:
    def __init__(self, recognizer: Recognizer, params: PreprocessParams):
        self._recognizer = recognizer
        self._params = params

    def handle_line(self, line: bytes) -> bytes:
        try:
            req = decode_request(line)
        except ProtocolError as e:
            logger.warning("无法解析请求：%s", e)
            return encode_outcome(None, OcrFailure(error=str(e)))
        return encode_outcome(req.id, self.run(req.image, req.region))

    def run(self, image: bytes, region: Region) -> OcrOutcome:
        # 不信任上游：这里重新按图像尺寸裁剪
        try:
            prepared = prepare_for_ocr(
                image,
                x=region.x,
                y=region.y,
                width=region.width,
                height=region.height,
                params=self._params,
            )
            logger.debug(
                "区域 %dx%d，平均亮度 %.1f%s",
                prepared.bbox.w,
                prepared.bbox.h,
                prepared.mean_luma,
                "，已反色" if prepared.inverted else "",
            )
            result = self._recognizer.recognize(prepared.image)
        # Tesseract/Pillow 的失败种类很多，全部转成 error 应答
        except Exception as e:  # noqa: BLE001
            logger.error("OCR 失败：%s: %s", type(e).__name__, e)
            return OcrFailure(error=f"{type(e).__name__}: {e}")

        text = result.text.strip()
        logger.info("OCR 结果 (置信度 %.1f%%): %r", result.confidence,
                    text[:100])
        return OcrSuccess(text=text, confidence=result.confidence)

    def serve(self, stdin: BinaryIO, stdout: BinaryIO) -> None:
        stdout.write(encode_ready())
        stdout.flush()
        for line in stdin:
            if not line.strip():
                continue
            stdout.write(self.handle_line(line))
            stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocr_worker", description="autotransocr OCR worker process")
    parser.add_argument("--lang", default="eng")
    parser.add_argument("--psm", type=int, default=6)
    parser.add_argument("--oem", type=int, default=1)
    parser.add_argument("--upscale", type=int, default=4)
    parser.add_argument("--invert-below", type=float, default=140.0)
    parser.add_argument("--threshold", type=int, default=128)
    parser.add_argument("--tesseract-cmd", default=None)
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # stdout 被协议占用，日志只能走 stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="[ocr-worker] [%(levelname)s] %(message)s",
    )

    worker = OcrWorker(
        TextRecognizer(
            lang=args.lang,
            psm=args.psm,
            oem=args.oem,
            tesseract_cmd=args.tesseract_cmd,
        ),
        PreprocessParams(
            upscale=args.upscale,
            invert_below=args.invert_below,
            threshold=args.threshold,
        ),
    )
    logger.info("启动完成")
    try:
        worker.serve(sys.stdin.buffer, sys.stdout.buffer)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
