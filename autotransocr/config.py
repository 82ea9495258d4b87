from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib  # py>=3.11
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore


DEFAULT_CONFIG_PATH = Path("config.toml")


SYSTEM_PROMPT = """You are a translation engine.
Translate the English text given by the user into {target_language}.
Output the translation only: no commentary, no explanations, no notes,
no quotation marks, no markdown or other formatting.
If the text is not English, output it unchanged.
"""


@dataclass(frozen=True)
class TranslateConfig:
    base_url: str = "http://127.0.0.1:1234/v1"
    # LM Studio 等本地服务不校验 key，但 SDK 要求非空
    api_key: str = "lm-studio"
    model: str = "plamo-2-translate"
    target_language: str = "Japanese"
    timeout_sec: float = 30.0
    max_tokens: int = 500
    temperature: float = 0.3
    # 翻译失败时是否清掉变化缓存，让下一轮同样的文本重新请求
    retry_failed: bool = True
    headers: dict[str, str] | None = None


@dataclass(frozen=True)
class CaptureConfig:
    monitor: int = 1
    backend: str = "auto"  # auto | mss | spectacle
    interval_ms: int = 200
    # 逻辑坐标 -> 物理像素的换算系数（高 DPI 屏幕）
    dpi_scale: float = 1.0


@dataclass(frozen=True)
class OcrConfig:
    lang: str = "eng"
    psm: int = 6  # 单一文本块
    oem: int = 1  # 仅 LSTM
    upscale: int = 4
    # 平均亮度低于该值时反色（暗底亮字 -> 亮底暗字）
    invert_below: float = 140.0
    threshold: int = 128
    timeout_sec: float = 10.0
    restart_delay_sec: float = 1.0
    max_restarts: int = 5
    tesseract_cmd: str | None = None


@dataclass(frozen=True)
class RegionSpec:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    # 为空时只输出到终端；否则写入该目录下的 app-YYYY-MM-DD.log
    file: Path | None = None


@dataclass(frozen=True)
class AppConfig:
    translate: TranslateConfig = TranslateConfig()
    capture: CaptureConfig = CaptureConfig()
    ocr: OcrConfig = OcrConfig()
    logging: LoggingConfig = LoggingConfig()
    regions: tuple[RegionSpec, ...] = field(default_factory=tuple)
    config_path: Path = DEFAULT_CONFIG_PATH


def _get(d: dict[str, Any], key: str, default: Any) -> Any:
    value = d.get(key, default)
    return default if value is None else value


def parse_region_spec(raw: Any) -> RegionSpec:
    """解析 `{x, y, width, height}` 表或 "x,y,w,h" 字符串。"""

    if isinstance(raw, str):
        parts = [p.strip() for p in raw.split(",")]
        if len(parts) != 4:
            raise ValueError(f"区域格式应为 x,y,width,height：{raw!r}")
        x, y, w, h = (int(p) for p in parts)
    elif isinstance(raw, dict):
        try:
            x = int(raw["x"])
            y = int(raw["y"])
            w = int(raw["width"])
            h = int(raw["height"])
        except KeyError as e:
            raise ValueError(f"区域缺少字段 {e.args[0]!r}：{raw!r}") from e
    else:
        raise ValueError(f"无法解析区域：{raw!r}")

    if w <= 0 or h <= 0:
        raise ValueError(f"区域宽高必须为正数：{raw!r}")
    return RegionSpec(x=x, y=y, width=w, height=h)


def config_from_dict(
    raw: dict[str, Any], config_path: Path = DEFAULT_CONFIG_PATH
) -> AppConfig:
    translate_raw = raw.get("translate") or {}

    headers_raw = translate_raw.get("headers") or None
    headers: dict[str, str] | None
    if isinstance(headers_raw, dict):
        headers = {str(k): str(v)
                   for k, v in headers_raw.items() if str(k).strip()}
        headers = headers or None
    else:
        headers = None

    base_url = str(
        _get(translate_raw, "base_url", TranslateConfig.base_url)
    ).strip().rstrip("/")
    translate = TranslateConfig(
        base_url=base_url or TranslateConfig.base_url,
        api_key=str(
            _get(translate_raw, "api_key", TranslateConfig.api_key)
        ).strip() or TranslateConfig.api_key,
        model=str(_get(translate_raw, "model", TranslateConfig.model)),
        target_language=str(
            _get(
                translate_raw,
                "target_language",
                TranslateConfig.target_language,
            )
        ),
        timeout_sec=float(
            _get(translate_raw, "timeout_sec", TranslateConfig.timeout_sec)),
        max_tokens=int(
            _get(translate_raw, "max_tokens", TranslateConfig.max_tokens)),
        temperature=float(
            _get(translate_raw, "temperature", TranslateConfig.temperature)),
        retry_failed=bool(
            _get(translate_raw, "retry_failed", TranslateConfig.retry_failed)),
        headers=headers,
    )
    if translate.timeout_sec <= 0:
        raise ValueError("[translate].timeout_sec 必须大于 0")

    capture_raw = raw.get("capture") or {}
    capture = CaptureConfig(
        monitor=int(_get(capture_raw, "monitor", CaptureConfig.monitor)),
        backend=str(_get(capture_raw, "backend", CaptureConfig.backend)
                    ).strip().lower() or CaptureConfig.backend,
        interval_ms=int(
            _get(capture_raw, "interval_ms", CaptureConfig.interval_ms)),
        dpi_scale=float(
            _get(capture_raw, "dpi_scale", CaptureConfig.dpi_scale)),
    )
    if capture.backend not in {"auto", "mss", "spectacle"}:
        raise ValueError(f"未知的 [capture].backend：{capture.backend!r}")
    if capture.interval_ms <= 0:
        raise ValueError("[capture].interval_ms 必须大于 0")
    if capture.dpi_scale <= 0:
        raise ValueError("[capture].dpi_scale 必须大于 0")

    ocr_raw = raw.get("ocr") or {}
    tesseract_cmd = str(_get(ocr_raw, "tesseract_cmd", "")).strip()
    ocr = OcrConfig(
        lang=str(_get(ocr_raw, "lang", OcrConfig.lang)),
        psm=int(_get(ocr_raw, "psm", OcrConfig.psm)),
        oem=int(_get(ocr_raw, "oem", OcrConfig.oem)),
        upscale=int(_get(ocr_raw, "upscale", OcrConfig.upscale)),
        invert_below=float(
            _get(ocr_raw, "invert_below", OcrConfig.invert_below)),
        threshold=int(_get(ocr_raw, "threshold", OcrConfig.threshold)),
        timeout_sec=float(_get(ocr_raw, "timeout_sec", OcrConfig.timeout_sec)),
        restart_delay_sec=float(
            _get(ocr_raw, "restart_delay_sec", OcrConfig.restart_delay_sec)),
        max_restarts=int(
            _get(ocr_raw, "max_restarts", OcrConfig.max_restarts)),
        tesseract_cmd=tesseract_cmd or None,
    )
    if ocr.upscale < 1:
        raise ValueError("[ocr].upscale 至少为 1")

    logging_raw = raw.get("logging") or {}
    log_file = str(_get(logging_raw, "file", "")).strip()
    logging_cfg = LoggingConfig(
        level=str(_get(logging_raw, "level", LoggingConfig.level)
                  ).strip().upper() or LoggingConfig.level,
        file=Path(log_file) if log_file else None,
    )

    regions_raw = raw.get("regions") or []
    if not isinstance(regions_raw, list):
        raise ValueError("[[regions]] 必须是数组表")
    regions = tuple(parse_region_spec(r) for r in regions_raw)

    return AppConfig(
        translate=translate,
        capture=capture,
        ocr=ocr,
        logging=logging_cfg,
        regions=regions,
        config_path=config_path,
    )


def load_config(path: Path | str | None = None) -> AppConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(config_path)

    raw = tomllib.loads(config_path.read_text(encoding="utf-8"))
    return config_from_dict(raw, config_path=config_path)


def write_default_config(path: Path | str | None = None) -> Path:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if config_path.exists():
        return config_path

    template = ("""# autotransocr 配置文件
# 说明：尽量只放用户确实会改的项。

[translate]
# OpenAI 兼容的本地推理服务（LM Studio 默认端口 1234）
base_url = "http://127.0.0.1:1234/v1"
model = "plamo-2-translate"
target_language = "Japanese"
timeout_sec = 30
max_tokens = 500
temperature = 0.3
# 翻译失败后，同样的文本在下一轮是否重新请求
retry_failed = true

[capture]
# mss 的 monitor 索引（通常 1 是主屏）
monitor = 1
backend = "auto"
interval_ms = 200
# 高 DPI 屏幕：区域坐标乘以该系数得到物理像素
dpi_scale = 1.0

[ocr]
lang = "eng"
upscale = 4
invert_below = 140
threshold = 128
timeout_sec = 10
restart_delay_sec = 1.0
max_restarts = 5
# tesseract_cmd = "/usr/bin/tesseract"

[logging]
level = "INFO"
# file = "logs"

# 初始识别区域（屏幕物理像素坐标），可以写多个
# [[regions]]
# x = 100
# y = 100
# width = 200
# height = 50
""")

    config_path.write_text(template, encoding="utf-8")
    return config_path
