from __future__ import annotations

import json
import socket
from urllib.parse import urlparse

import pytesseract
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    OpenAI,
)

from autotransocr.config import AppConfig, OcrConfig, TranslateConfig


def diagnose(cfg: AppConfig) -> str:
    """探测翻译服务与 Tesseract 是否可用，输出可复制粘贴的诊断文本。"""

    lines = ["== autotransocr 诊断 =="]
    lines.extend(diagnose_translate_endpoint(cfg.translate))
    lines.append("")
    lines.extend(diagnose_tesseract(cfg.ocr))
    return "\n".join(lines)


def diagnose_translate_endpoint(cfg: TranslateConfig) -> list[str]:
    base_url = cfg.base_url.rstrip("/")

    parsed = urlparse(base_url)
    host = parsed.hostname
    ip = None
    if host:
        try:
            ip = socket.gethostbyname(host)
        except OSError:
            ip = None

    lines: list[str] = ["-- 翻译服务 --"]
    lines.append(f"base_url: {base_url}")
    if host:
        lines.append(f"host: {host} ip: {ip or 'N/A'} port: {parsed.port}")
    lines.append(f"model: {cfg.model}")
    if cfg.headers:
        headers_json = json.dumps(cfg.headers, ensure_ascii=False)
        lines.append(f"extra_headers: {headers_json}")

    client = OpenAI(
        api_key=cfg.api_key,
        base_url=base_url,
        default_headers=cfg.headers or None,
        timeout=10.0,
        max_retries=0,
    )

    try:
        models = client.models.list()
    except AuthenticationError as e:
        lines.append("结论：鉴权失败，请检查 [translate].api_key。")
        lines.append(f"{type(e).__name__}: {e}")
        return lines
    except APITimeoutError as e:
        lines.append("结论：请求超时，服务可能正在加载模型。")
        lines.append(f"{type(e).__name__}: {e}")
        return lines
    except APIConnectionError as e:
        lines.append(
            "结论：连接失败，请确认 LM Studio 等本地服务已启动并开启了 Server。")
        lines.append(f"{type(e).__name__}: {e}")
        if e.__cause__ is not None:
            lines.append(f"cause: {type(e.__cause__).__name__}: {e.__cause__}")
        return lines
    except APIStatusError as e:
        lines.append(f"status: {e.status_code}")
        body = getattr(e, "body", None)
        snippet = str(body)[:400].replace("\n", " ").strip()
        lines.append(f"body_snippet: {snippet!r}")
        lines.append("结论：服务返回非 2xx，请检查 base_url 是否以 /v1 结尾。")
        return lines

    model_ids = [m.id for m in (models.data or []) if getattr(m, "id", None)]
    lines.append(f"models: {len(model_ids)}")
    if model_ids:
        shown = ", ".join(model_ids[:8])
        lines.append(f"sample: {shown}{' ...' if len(model_ids) > 8 else ''}")
    if model_ids and cfg.model not in model_ids:
        lines.append(f"警告：服务端没有加载模型 {cfg.model!r}")
    else:
        lines.append("结论：服务可用。")
    return lines


def diagnose_tesseract(cfg: OcrConfig) -> list[str]:
    if cfg.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = cfg.tesseract_cmd

    lines = ["-- Tesseract --"]
    lines.append(f"cmd: {pytesseract.pytesseract.tesseract_cmd}")
    try:
        version = pytesseract.get_tesseract_version()
    except pytesseract.TesseractNotFoundError:
        lines.append("结论：找不到 tesseract，可安装后或在 [ocr].tesseract_cmd 指定路径。")
        return lines
    lines.append(f"version: {version}")

    try:
        langs = pytesseract.get_languages(config="")
    except pytesseract.TesseractError as e:
        lines.append(f"无法列出语言包：{e}")
        return lines
    if cfg.lang not in langs:
        lines.append(f"结论：缺少语言包 {cfg.lang!r}（已安装：{', '.join(langs)}）")
    else:
        lines.append("结论：Tesseract 可用。")
    return lines
