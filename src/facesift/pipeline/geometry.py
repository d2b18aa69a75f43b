"""Axis-aligned bounding-box arithmetic."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class BoundingBox:
    """A face box in pixel units, origin top-left."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if not (self.width > 0 and self.height > 0):
            raise ValueError(f"Bounding box must have positive size, got {self.width}x{self.height}")

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> BoundingBox:
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1))

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def scaled(self, factor: float) -> BoundingBox:
        """Return the box with every coordinate multiplied by ``factor``."""
        return BoundingBox(
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor,
        )

    def intersection_area(self, other: BoundingBox) -> float:
        overlap_w = min(self.right, other.right) - max(self.x, other.x)
        overlap_h = min(self.bottom, other.bottom) - max(self.y, other.y)
        if overlap_w <= 0 or overlap_h <= 0:
            return 0.0
        return overlap_w * overlap_h

    def iou(self, other: BoundingBox) -> float:
        """Intersection-over-union; 0.0 when the boxes do not overlap."""
        intersection = self.intersection_area(other)
        if intersection == 0.0:
            return 0.0
        return intersection / (self.area + other.area - intersection)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    return a.iou(b)


def center_distance(box: BoundingBox, point: tuple[float, float]) -> float:
    """Euclidean distance from the box center to ``point``."""
    cx, cy = box.center
    return math.hypot(cx - point[0], cy - point[1])
