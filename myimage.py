"""
Grayscale image buffers and the image error model.

GrayScaleImage is a thin row-major uint8 buffer. Decoding and encoding go
through Pillow; everything else works on the raw numpy samples.
"""

from __future__ import annotations
from typing import Optional

import numpy as np
from numba import njit
from PIL import Image

# Blur kernel weights for the pixel itself and the rings at distance 1, 2, 3
RING_WEIGHTS = np.array([7.0 / 16.0, 5.0 / 16.0, 3.0 / 16.0, 1.0 / 16.0])
MAX_RING = 3


class GrayScaleImage:
    """Gray-scale (uint8) image"""

    def __init__(self, width: int, height: int, data: Optional[np.ndarray] = None):
        self.width = int(width)
        self.height = int(height)
        if data is None:
            # Filled with black
            data = np.zeros(self.width * self.height, dtype=np.uint8)
        else:
            data = np.asarray(data, dtype=np.uint8).reshape(-1)
            if len(data) != self.width * self.height:
                raise ValueError(
                    f"Expected {self.width * self.height} samples, got {len(data)}"
                )
        self.data = data

    def write_pixel(self, x: int, y: int, color: int):
        self.data[x + y * self.width] = color

    def read_pixel(self, x: int, y: int) -> int:
        return int(self.data[x + y * self.width])

    def read_pixel_checked(self, x: int, y: int) -> Optional[int]:
        """Returns the pixel value at (x, y) or None when out of bounds"""
        if x < 0 or y < 0 or x >= self.width or y >= self.height:
            return None
        return self.read_pixel(x, y)

    def same_size(self, other: GrayScaleImage) -> bool:
        return self.width == other.width and self.height == other.height

    def as_array(self) -> np.ndarray:
        return self.data.reshape(self.height, self.width)

    def save(self, filename: str):
        Image.fromarray(self.as_array()).save(filename)

    @classmethod
    def from_rgb(cls, rgb: np.ndarray) -> GrayScaleImage:
        """grayscale = 0.3 * R + 0.59 * G + 0.11 * B, truncated"""
        rgb = np.asarray(rgb, dtype=np.float32)
        height, width = rgb.shape[:2]
        gray = 0.3 * rgb[..., 0] + 0.59 * rgb[..., 1] + 0.11 * rgb[..., 2]
        return cls(width, height, gray.astype(np.uint8))


def load_grayscale(filename: str) -> GrayScaleImage:
    with Image.open(filename) as img:
        rgb = np.asarray(img.convert("RGB"))
    return GrayScaleImage.from_rgb(rgb)


def comparison_image(goal: GrayScaleImage, generated: GrayScaleImage) -> GrayScaleImage:
    """Goal on the left, generated on the right"""
    check_same_size(goal, generated)
    side_by_side = np.hstack([goal.as_array(), generated.as_array()])
    return GrayScaleImage(goal.width * 2, goal.height, side_by_side)


def check_same_size(goal: GrayScaleImage, generated: GrayScaleImage):
    if not goal.same_size(generated):
        raise ValueError(
            f"Image size mismatch: {goal.width}x{goal.height} vs "
            f"{generated.width}x{generated.height}"
        )


def calc_image_error(goal: GrayScaleImage, generated: GrayScaleImage) -> int:
    """Sum of squared per-pixel differences"""
    check_same_size(goal, generated)
    diff = goal.data.astype(np.int64) - generated.data.astype(np.int64)
    return int(np.sum(diff * diff))


@njit(cache=True)
def perceptual_error_kernel(diff, width, height, weights, max_ring):
    """
    Sum over pixels of the cubed, weighted own error plus the cubed,
    weighted mean error of each surrounding ring. Out-of-bounds ring members
    are skipped, not zero-padded.
    """
    total = 0.0
    for y in range(height):
        for x in range(width):
            t = weights[0] * diff[x + y * width]
            pixel_error = t * t * t

            for d in range(1, max_ring + 1):
                s = 0.0
                n = 0
                for dy in range(-d, d + 1):
                    ny = y + dy
                    if ny < 0 or ny >= height:
                        continue
                    for dx in range(-d, d + 1):
                        if abs(dx) != d and abs(dy) != d:
                            continue
                        nx = x + dx
                        if nx < 0 or nx >= width:
                            continue
                        s += diff[nx + ny * width]
                        n += 1
                if n > 0:
                    t = weights[d] * (s / n)
                    pixel_error += t * t * t

            total += pixel_error
    return total


def calc_perceptual_error(goal: GrayScaleImage, generated: GrayScaleImage) -> float:
    check_same_size(goal, generated)
    diff = np.abs(goal.data.astype(np.float64) - generated.data.astype(np.float64))
    return float(perceptual_error_kernel(diff, goal.width, goal.height,
                                         RING_WEIGHTS, MAX_RING))
