from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image, ImageFilter, ImageOps, ImageStat

from autotransocr.util.geometry import BBox, clamp_region


@dataclass(frozen=True)
class PreprocessParams:
    upscale: int = 4
    invert_below: float = 140.0
    threshold: int = 128
    sharpen_radius: float = 2.0


@dataclass(frozen=True)
class PreparedImage:
    image: Image.Image
    bbox: BBox
    mean_luma: float
    inverted: bool


def load_image(data: bytes | Image.Image) -> Image.Image:
    if isinstance(data, Image.Image):
        return data
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def mean_luma(image: Image.Image) -> float:
    return float(ImageStat.Stat(image.convert("L")).mean[0])


def prepare_for_ocr(
    data: bytes | Image.Image,
    *,
    x: int,
    y: int,
    width: int,
    height: int,
    params: PreprocessParams | None = None,
) -> PreparedImage:
    """从整屏截图中切出区域，并处理成适合 Tesseract 的黑字白底二值图。

    步骤：裁剪 -> 统计平均亮度 -> 放大 -> 灰度 + 拉伸对比度 -> (暗底时)反色
    -> 固定阈值二值化 -> 锐化。
    """

    p = params or PreprocessParams()
    src = load_image(data)
    if src.mode not in ("RGB", "L"):
        src = src.convert("RGB")

    bbox = clamp_region(x, y, width, height, src.width, src.height)
    crop = src.crop(bbox.as_tuple())

    # 亮度要在放大/拉伸之前统计，否则 normalize 会把差异抹平
    luma = mean_luma(crop)

    scale = max(1, int(p.upscale))
    img = crop.resize(
        (bbox.w * scale, bbox.h * scale),
        resample=Image.Resampling.LANCZOS,
    )
    img = ImageOps.autocontrast(img.convert("L"))

    inverted = luma < p.invert_below
    if inverted:
        img = ImageOps.invert(img)

    thr = int(p.threshold)
    img = img.point(lambda v: 255 if v >= thr else 0)
    img = img.filter(
        ImageFilter.UnsharpMask(radius=p.sharpen_radius, percent=150,
                                threshold=0)
    )

    return PreparedImage(image=img, bbox=bbox, mean_luma=luma,
                         inverted=inverted)
