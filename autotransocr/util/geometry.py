from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Region:
    id: int
    x: int
    y: int
    width: int
    height: int

    def scaled(self, factor: float) -> "Region":
        """按 DPI 系数换算到物理像素坐标。"""

        if factor == 1.0:
            return self
        return Region(
            id=self.id,
            x=int(round(self.x * factor)),
            y=int(round(self.y * factor)),
            width=max(1, int(round(self.width * factor))),
            height=max(1, int(round(self.height * factor))),
        )

    def offset(self, dx: int, dy: int) -> "Region":
        if dx == 0 and dy == 0:
            return self
        return Region(self.id, self.x + dx, self.y + dy,
                      self.width, self.height)

    def to_dict(self) -> dict[str, int]:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass(frozen=True)
class BBox:
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def w(self) -> int:
        return max(0, self.x2 - self.x1)

    @property
    def h(self) -> int:
        return max(0, self.y2 - self.y1)

    @property
    def area(self) -> int:
        return self.w * self.h

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.x1, self.y1, self.x2, self.y2)


def clamp_region(
    x: int, y: int, width: int, height: int, img_w: int, img_h: int
) -> BBox:
    """把区域限制在图像范围内，返回可直接用于 crop 的 BBox。

    保证：0 <= left <= W-1，left+width <= W（纵向同理），且至少 1px。
    """

    if img_w <= 0 or img_h <= 0:
        raise ValueError(f"图像尺寸无效：{img_w}x{img_h}")

    left = max(0, min(int(x), img_w - 1))
    top = max(0, min(int(y), img_h - 1))
    w = max(1, min(int(width), img_w - left))
    h = max(1, min(int(height), img_h - top))
    return BBox(left, top, left + w, top + h)
