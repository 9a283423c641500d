"""Rectangle distance and overlap primitives.

All functions are total: degenerate (zero-area) rectangles yield defined
values instead of dividing by zero.
"""

import math
from collections.abc import Iterable

from .models import BoundingRect


def center_distance(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Euclidean distance between the centers of two rectangles."""
    cx1, cy1 = rect1.center
    cx2, cy2 = rect2.center
    return math.hypot(cx2 - cx1, cy2 - cy1)


def origin_distance(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Euclidean distance between the top-left corners of two rectangles."""
    return math.hypot(rect2.x - rect1.x, rect2.y - rect1.y)


def diagonal(rect: BoundingRect) -> float:
    return math.hypot(rect.width, rect.height)


def normalized_center_distance(
    rect1: BoundingRect,
    rect2: BoundingRect,
    reference: BoundingRect,
) -> float:
    """Center distance divided by the diagonal of ``reference``.

    Returns 0 for coincident centers and 1 when the reference is degenerate
    and the centers differ.
    """
    distance = center_distance(rect1, rect2)
    scale = diagonal(reference)
    if scale <= 0:
        return 0.0 if distance == 0 else 1.0
    return distance / scale


def overlap_area(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Area of the intersection of two rectangles."""
    width = min(rect1.right, rect2.right) - max(rect1.left, rect2.left)
    height = min(rect1.bottom, rect2.bottom) - max(rect1.top, rect2.top)
    if width <= 0 or height <= 0:
        return 0.0
    return width * height


def iou(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Intersection over union of two rectangles."""
    intersection = overlap_area(rect1, rect2)
    union = rect1.area + rect2.area - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def overlap_ratio(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Intersection area relative to the smaller of the two rectangles."""
    smaller = min(rect1.area, rect2.area)
    if smaller <= 0:
        return 0.0
    return overlap_area(rect1, rect2) / smaller


def containment_ratio(inner: BoundingRect, outer: BoundingRect) -> float:
    """Share of ``inner`` that lies inside ``outer``."""
    if inner.area <= 0:
        return 1.0 if outer.contains(inner) else 0.0
    return overlap_area(inner, outer) / inner.area


def aspect_ratio_difference(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """``1 - min/max`` of the two aspect ratios (0 for identical shapes)."""
    if rect1.height <= 0 or rect2.height <= 0:
        return 0.0 if rect1.height == rect2.height else 1.0
    ratio1 = rect1.width / rect1.height
    ratio2 = rect2.width / rect2.height
    largest = max(ratio1, ratio2)
    if largest <= 0:
        return 0.0
    return 1 - min(ratio1, ratio2) / largest


def normalized_size_difference(rect1: BoundingRect, rect2: BoundingRect) -> float:
    """Largest relative change of width or height, capped at 1."""
    def relative(a: float, b: float) -> float:
        largest = max(a, b)
        if largest <= 0:
            return 0.0
        return abs(a - b) / largest

    return min(1.0, max(relative(rect1.width, rect2.width), relative(rect1.height, rect2.height)))


def is_outside(rect: BoundingRect, area: BoundingRect) -> bool:
    """Check whether ``rect`` lies entirely outside ``area``."""
    return (
        rect.right <= area.left
        or rect.left >= area.right
        or rect.bottom <= area.top
        or rect.top >= area.bottom
    )


def union_rect(rects: Iterable[BoundingRect]) -> BoundingRect | None:
    """Smallest rectangle covering all ``rects``; None for an empty input."""
    result = None
    for rect in rects:
        result = rect if result is None else result.union(rect)
    return result
