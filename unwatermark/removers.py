"""Watermark remover implementations."""

from __future__ import annotations

import cv2
import numpy as np

from .interfaces import IWatermarkRemover
from .models import WatermarkInfo, WatermarkPosition

LARGE_IMAGE_THRESHOLD = 1024
SMALL_LOGO = (48, 32)  # (size, margin)
LARGE_LOGO = (96, 64)


def watermark_geometry(width: int, height: int) -> WatermarkInfo:
    """Return the bottom-right box of the known overlay for an image size."""

    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    if width > LARGE_IMAGE_THRESHOLD and height > LARGE_IMAGE_THRESHOLD:
        size, margin = LARGE_LOGO
    else:
        size, margin = SMALL_LOGO
    x = max(0, width - margin - size)
    y = max(0, height - margin - size)
    return WatermarkInfo(size=size, position=WatermarkPosition(x, y), width=width, height=height)


class InpaintWatermarkRemover(IWatermarkRemover):
    """Fill the overlay box using OpenCV inpainting."""

    def __init__(self, radius: int = 3, method: int = cv2.INPAINT_TELEA) -> None:
        if radius <= 0:
            raise ValueError("radius must be > 0")
        self._radius = radius
        self._method = method

    def watermark_info(self, width: int, height: int) -> WatermarkInfo:
        return watermark_geometry(width, height)

    def mask_for(self, width: int, height: int) -> np.ndarray:
        info = self.watermark_info(width, height)
        mask = np.zeros((height, width), dtype=np.uint8)
        x, y = info.position.x, info.position.y
        mask[y : y + info.size, x : x + info.size] = 255
        return mask

    def remove_watermark(self, frame_bgr: np.ndarray) -> np.ndarray:
        height, width = frame_bgr.shape[:2]
        mask = self.mask_for(width, height)
        return cv2.inpaint(frame_bgr, mask, self._radius, self._method)
