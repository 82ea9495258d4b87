from __future__ import annotations

from dataclasses import dataclass

import pytesseract
from PIL import Image


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float


class TextRecognizer:
    def __init__(
        self,
        *,
        lang: str = "eng",
        psm: int = 6,
        oem: int = 1,
        tesseract_cmd: str | None = None,
    ):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self._lang = lang
        # preserve_interword_spaces：保留词间空白，变化检测再统一折叠
        self._config = (
            f"--psm {int(psm)} --oem {int(oem)} "
            "-c preserve_interword_spaces=1"
        )

    def recognize(self, image: Image.Image) -> RecognitionResult:
        data = pytesseract.image_to_data(
            image,
            lang=self._lang,
            config=self._config,
            output_type=pytesseract.Output.DICT,
        )
        return result_from_data(data)


def result_from_data(data: dict) -> RecognitionResult:
    """把 image_to_data 的逐词输出还原为文本，并计算平均置信度。

    Tesseract 以 (block, par, line) 标识一行；同一行的词用空格连接，行之间换行。
    conf 为 -1 的条目是版面结构节点，不参与统计。
    """

    words = data.get("text") or []
    confs = data.get("conf") or []
    blocks = data.get("block_num") or [0] * len(words)
    pars = data.get("par_num") or [0] * len(words)
    lines_no = data.get("line_num") or [0] * len(words)

    lines: list[list[str]] = []
    last_key: tuple[int, int, int] | None = None
    scores: list[float] = []
    for i, word in enumerate(words):
        try:
            conf = float(confs[i])
        except (IndexError, TypeError, ValueError):
            conf = -1.0
        word = (word or "").strip()
        if conf < 0 or not word:
            continue

        key = (int(blocks[i]), int(pars[i]), int(lines_no[i]))
        if key != last_key:
            lines.append([])
            last_key = key
        lines[-1].append(word)
        scores.append(conf)

    text = "\n".join(" ".join(ln) for ln in lines).strip()
    confidence = sum(scores) / len(scores) if scores else 0.0
    return RecognitionResult(text=text, confidence=confidence)
