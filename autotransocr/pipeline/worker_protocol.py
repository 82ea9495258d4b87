"""OCR 工作进程与主进程之间的消息格式。

每条消息是一行 JSON（UTF-8，以 \\n 结尾）：

- 请求：`{"id": 1, "type": "ocr", "image": "<base64 PNG>", "region": {...}}`
- 成功：`{"id": 1, "type": "result", "text": "...", "confidence": 91.5}`
- 失败：`{"id": 1, "type": "error", "error": "..."}`
- 工作进程启动完成：`{"type": "ready"}`
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Union

from autotransocr.util.geometry import Region


@dataclass(frozen=True)
class OcrRequest:
    id: int
    image: bytes
    region: Region


@dataclass(frozen=True)
class OcrSuccess:
    text: str
    confidence: float = 0.0


@dataclass(frozen=True)
class OcrFailure:
    error: str


OcrOutcome = Union[OcrSuccess, OcrFailure]


class ProtocolError(ValueError):
    pass


def _dumps(obj: dict[str, Any]) -> bytes:
    line = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    return (line + "\n").encode("utf-8")


def encode_request(req: OcrRequest) -> bytes:
    return _dumps(
        {
            "id": req.id,
            "type": "ocr",
            "image": base64.b64encode(req.image).decode("ascii"),
            "region": req.region.to_dict(),
        }
    )


def decode_request(line: bytes | str) -> OcrRequest:
    obj = _loads(line)
    if obj.get("type") != "ocr":
        raise ProtocolError(f"未知的请求类型：{obj.get('type')!r}")

    try:
        req_id = int(obj["id"])
        image = base64.b64decode(obj["image"], validate=True)
        r = obj["region"]
        region = Region(
            id=int(r.get("id", 0)),
            x=int(r["x"]),
            y=int(r["y"]),
            width=int(r["width"]),
            height=int(r["height"]),
        )
    except (KeyError, TypeError, ValueError, AttributeError,
            binascii.Error) as e:
        raise ProtocolError(f"请求字段无效：{e}") from e
    return OcrRequest(id=req_id, image=image, region=region)


def encode_outcome(req_id: int | None, outcome: OcrOutcome) -> bytes:
    if isinstance(outcome, OcrSuccess):
        return _dumps(
            {
                "id": req_id,
                "type": "result",
                "text": outcome.text,
                "confidence": round(float(outcome.confidence), 2),
            }
        )
    return _dumps({"id": req_id, "type": "error", "error": outcome.error})


def encode_ready() -> bytes:
    return _dumps({"type": "ready"})


def decode_response(line: bytes | str) -> tuple[int | None, OcrOutcome | None]:
    """解析工作进程的一行输出。

    返回 (id, outcome)；ready 等非应答消息返回 (None, None)。
    """

    obj = _loads(line)
    kind = obj.get("type")
    if kind == "ready":
        return None, None

    raw_id = obj.get("id")
    req_id = int(raw_id) if isinstance(raw_id, int) else None
    if kind == "result":
        text = obj.get("text")
        if not isinstance(text, str):
            raise ProtocolError("result 缺少 text")
        conf = obj.get("confidence", 0.0)
        try:
            confidence = float(conf)
        except (TypeError, ValueError):
            confidence = 0.0
        return req_id, OcrSuccess(text=text, confidence=confidence)
    if kind == "error":
        return req_id, OcrFailure(error=str(obj.get("error") or "unknown"))
    raise ProtocolError(f"未知的应答类型：{kind!r}")


def _loads(line: bytes | str) -> dict[str, Any]:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"消息不是 UTF-8：{e}") from e
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"消息不是 JSON：{e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("消息必须是 JSON 对象")
    return obj
