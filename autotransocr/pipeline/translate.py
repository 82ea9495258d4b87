from __future__ import annotations

import asyncio
import errno
import logging
import re
from dataclasses import dataclass
from typing import Any, cast

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from autotransocr.config import SYSTEM_PROMPT, TranslateConfig

logger = logging.getLogger(__name__)

FAILURE_PREFIX = "[translation failed] "

_HTML_LIKE_RE = re.compile(
    r"^\s*(?:<!doctype\s+html|<html\b|<head\b|<body\b)", re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)


class MalformedResponse(ValueError):
    pass


@dataclass(frozen=True)
class TranslateResult:
    text: str
    ok: bool = True
    # connection_refused | connection | timeout | http_status | malformed
    category: str | None = None


def failure_text(source: str) -> str:
    return FAILURE_PREFIX + source


class LocalTranslator:
    """调用本地 OpenAI 兼容推理服务做翻译。

    - 每次调用恰好一个 chat.completions 请求，不重试、不合并
    - 任何失败都不抛出，返回带原文的失败占位串，保证显示端总有内容
    """

    def __init__(
        self,
        cfg: TranslateConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._cfg = cfg
        self._system_prompt = SYSTEM_PROMPT.format(
            target_language=cfg.target_language)
        self._client: Any = AsyncOpenAI(
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            default_headers=cfg.headers,
            timeout=cfg.timeout_sec,
            max_retries=0,
            http_client=http_client,
        )

    async def translate(self, source: str) -> str:
        return (await self.translate_result(source)).text

    async def translate_result(self, source: str) -> TranslateResult:
        try:
            translated = await self._call_ai(source)
        except (APITimeoutError, asyncio.TimeoutError):
            return self._failed(
                source, "timeout",
                f"请求超时（{self._cfg.timeout_sec:.0f}s）")
        except APIConnectionError as e:
            if _is_connection_refused(e):
                return self._failed(
                    source, "connection_refused",
                    f"无法连接推理服务 {self._cfg.base_url}，请确认服务已启动")
            return self._failed(source, "connection", f"连接失败：{e}")
        except APIStatusError as e:
            return self._failed(
                source, "http_status", f"HTTP {e.status_code}: {_snippet(e)}")
        except (APIError, MalformedResponse, ValueError, TypeError,
                AttributeError, IndexError, KeyError) as e:
            return self._failed(
                source, "malformed", f"{type(e).__name__}: {e}")

        return TranslateResult(text=translated)

    async def close(self) -> None:
        await self._client.close()

    async def _call_ai(self, source: str) -> str:
        messages: Any = [
            {"role": "system", "content": self._system_prompt},
            {"role": "user", "content": source},
        ]
        # SDK 的 timeout 只限制单次读写，整体期限由 wait_for 保证
        resp = await asyncio.wait_for(
            self._client.chat.completions.create(
                model=self._cfg.model,
                messages=cast(Any, messages),
                max_tokens=self._cfg.max_tokens,
                temperature=self._cfg.temperature,
            ),
            self._cfg.timeout_sec,
        )

        choices = getattr(resp, "choices", None)
        if not choices:
            raise MalformedResponse("应答缺少 choices")
        content = choices[0].message.content
        if not isinstance(content, str):
            raise MalformedResponse("应答缺少 choices[0].message.content")

        text_out = clean_output(content)
        if not text_out:
            raise MalformedResponse("模型输出为空")
        if _HTML_LIKE_RE.match(text_out):
            raise MalformedResponse(
                "上游返回了 HTML（base_url 可能指向了网页而不是 API）")
        return text_out

    def _failed(self, source: str, category: str, msg: str) -> TranslateResult:
        logger.error("[翻译错误][%s] %s", category, msg)
        return TranslateResult(
            text=failure_text(source), ok=False, category=category)


def clean_output(text: str) -> str:
    """去掉模型偶尔附带的代码块围栏和成对引号。"""

    t = (text or "").strip()
    m = _CODE_FENCE_RE.match(t)
    if m:
        t = m.group(1).strip()
    for left, right in (('"', '"'), ("「", "」"), ("“", "”")):
        if len(t) >= 2 and t.startswith(left) and t.endswith(right):
            t = t[len(left): -len(right)].strip()
            break
    return t


def _is_connection_refused(exc: BaseException) -> bool:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        if isinstance(cur, ConnectionRefusedError):
            return True
        if isinstance(cur, OSError) and cur.errno == errno.ECONNREFUSED:
            return True
        if "connection refused" in str(cur).lower():
            return True
        cur = cur.__cause__ or cur.__context__
    return False


def _snippet(e: APIStatusError) -> str:
    body = getattr(e, "body", None)
    if body is None:
        body = getattr(getattr(e, "response", None), "text", "")
    return str(body)[:200].replace("\n", " ")
