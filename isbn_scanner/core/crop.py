"""
Crop selection geometry.

All coordinates are in displayed-image pixels. The pure functions
`drag_region` and `resize_region` do the work; `CropEngine` only remembers the
region and where the current pointer gesture started, the way a mouse-down /
mouse-move / mouse-up handler would.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

from PIL import Image

from isbn_scanner.config import CROP_INITIAL_SIZE_RATIO, CROP_MIN_HEIGHT, CROP_MIN_WIDTH

Size = Tuple[float, float]

HANDLES = {"n", "s", "e", "w", "ne", "nw", "se", "sw"}
HANDLE_ALIASES = {"top": "n", "bottom": "s", "left": "w", "right": "e"}


@dataclass(frozen=True)
class CropRegion:
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def within(self, bounds: Size, min_size: Size = (0, 0)) -> bool:
        min_w, min_h = effective_min_size(bounds, min_size)
        return (
            self.left >= 0
            and self.top >= 0
            and self.right <= bounds[0]
            and self.bottom <= bounds[1]
            and self.width >= min_w
            and self.height >= min_h
        )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def effective_min_size(bounds: Size, min_size: Size) -> Size:
    # an image smaller than the floor caps the floor at the image size
    return min(min_size[0], bounds[0]), min(min_size[1], bounds[1])


def initial_region(bounds: Size, ratio: float = CROP_INITIAL_SIZE_RATIO,
                   min_size: Size = (CROP_MIN_WIDTH, CROP_MIN_HEIGHT)) -> CropRegion:
    min_w, min_h = effective_min_size(bounds, min_size)
    width = _clamp(bounds[0] * ratio, min_w, bounds[0])
    height = _clamp(bounds[1] * ratio, min_h, bounds[1])
    return CropRegion((bounds[0] - width) / 2, (bounds[1] - height) / 2, width, height)


def drag_region(region: CropRegion, delta: Tuple[float, float], bounds: Size) -> CropRegion:
    """Translate the region, keeping it fully inside the image."""
    left = _clamp(region.left + delta[0], 0, bounds[0] - region.width)
    top = _clamp(region.top + delta[1], 0, bounds[1] - region.height)
    return replace(region, left=left, top=top)


def resize_region(region: CropRegion, handle: str, delta: Tuple[float, float], bounds: Size,
                  min_size: Size = (CROP_MIN_WIDTH, CROP_MIN_HEIGHT)) -> CropRegion:
    """
    Move the edge(s) named by `handle` by `delta`.

    The edge opposite to each moved edge stays put. The size is clamped to the
    floor and to the room left in the image first, and the moved edge is
    placed from that size, so the region cannot invert or leave the image.
    """
    handle = HANDLE_ALIASES.get(handle, handle)
    if handle not in HANDLES:
        raise ValueError(f"Unknown resize handle: {handle}")
    min_w, min_h = effective_min_size(bounds, min_size)
    dx, dy = delta
    left, top, width, height = region.left, region.top, region.width, region.height

    if "n" in handle:
        bottom = top + height
        height = _clamp(height - dy, min_h, bottom)
        top = bottom - height
    if "s" in handle:
        height = _clamp(height + dy, min_h, bounds[1] - top)
    if "w" in handle:
        right = left + width
        width = _clamp(width - dx, min_w, right)
        left = right - width
    if "e" in handle:
        width = _clamp(width + dx, min_w, bounds[0] - left)

    return CropRegion(left, top, width, height)


def map_to_native(region: CropRegion, displayed: Size, native: Size) -> Tuple[int, int, int, int]:
    """
    Convert a displayed-coordinate region into a native pixel box.

    Each axis has its own scale since the displayed image may be stretched.
    """
    scale_x = native[0] / displayed[0]
    scale_y = native[1] / displayed[1]
    x0 = int(round(region.left * scale_x))
    y0 = int(round(region.top * scale_y))
    x1 = int(round(region.right * scale_x))
    y1 = int(round(region.bottom * scale_y))
    x0, x1 = int(_clamp(x0, 0, native[0])), int(_clamp(x1, 0, native[0]))
    y0, y1 = int(_clamp(y0, 0, native[1])), int(_clamp(y1, 0, native[1]))
    return x0, y0, max(x1, x0 + 1), max(y1, y0 + 1)


class CropEngine:
    """Rectangular selection over a still image."""

    def __init__(self, min_size: Size = (CROP_MIN_WIDTH, CROP_MIN_HEIGHT)):
        self.min_size = min_size
        self.image: Optional[Image.Image] = None
        self.bounds: Optional[Size] = None
        self.region: Optional[CropRegion] = None
        self._anchor: Optional[CropRegion] = None

    @property
    def active(self) -> bool:
        return self.region is not None

    def begin(self, image: Image.Image, initial_ratio: float = CROP_INITIAL_SIZE_RATIO,
              displayed_size: Optional[Size] = None) -> CropRegion:
        """
        Start cropping `image`. `displayed_size` is the on-screen size of the
        image; it defaults to the native size.
        """
        self.image = image
        self.bounds = tuple(displayed_size) if displayed_size else image.size
        self.region = initial_region(self.bounds, initial_ratio, self.min_size)
        self._anchor = None
        return self.region

    def press(self) -> None:
        """Remember the region at pointer-down; later deltas are relative to it."""
        self._require()
        self._anchor = self.region

    def release(self) -> None:
        self._anchor = None

    def drag(self, dx: float, dy: float) -> CropRegion:
        self._require()
        self.region = drag_region(self._anchor or self.region, (dx, dy), self.bounds)
        return self.region

    def resize(self, handle: str, dx: float, dy: float) -> CropRegion:
        self._require()
        self.region = resize_region(self._anchor or self.region, handle, (dx, dy), self.bounds, self.min_size)
        return self.region

    def commit(self) -> Image.Image:
        """Return a new image cut to the selection and end cropping."""
        self._require()
        box = map_to_native(self.region, self.bounds, self.image.size)
        cropped = self.image.crop(box)
        self.end()
        return cropped

    def end(self) -> None:
        self.region = None
        self.bounds = None
        self._anchor = None
        self.image = None

    def _require(self) -> None:
        if self.region is None:
            raise RuntimeError("Cropping has not been started")
