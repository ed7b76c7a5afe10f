"""Unit conversion and layout helpers shared by the resize and composite recipes."""

import math
from dataclasses import dataclass
from enum import Enum


class LengthUnit(str, Enum):
    PX = "px"
    MM = "mm"
    CM = "cm"
    INCH = "in"


# Units per inch for physical lengths
_PER_INCH = {
    LengthUnit.MM: 25.4,
    LengthUnit.CM: 2.54,
    LengthUnit.INCH: 1.0,
}

_UNIT_ALIASES = {
    "px": LengthUnit.PX,
    "pixel": LengthUnit.PX,
    "pixels": LengthUnit.PX,
    "mm": LengthUnit.MM,
    "millimeter": LengthUnit.MM,
    "millimeters": LengthUnit.MM,
    "cm": LengthUnit.CM,
    "centimeter": LengthUnit.CM,
    "centimeters": LengthUnit.CM,
    "in": LengthUnit.INCH,
    "inch": LengthUnit.INCH,
    "inches": LengthUnit.INCH,
}


def parse_unit(name: str | None) -> LengthUnit | None:
    if name is None:
        return None
    return _UNIT_ALIASES.get(str(name).strip().lower())


def to_pixels(value: float, unit: LengthUnit, dpi: int) -> int:
    """Convert a length to whole pixels at the given density."""
    if unit == LengthUnit.PX:
        return int(round(value))
    return int(round(value * dpi / _PER_INCH[unit]))


def from_pixels(pixels: int, unit: LengthUnit, dpi: int) -> float:
    """Inverse of to_pixels (without the rounding)."""
    if unit == LengthUnit.PX:
        return float(pixels)
    return pixels * _PER_INCH[unit] / dpi


@dataclass(frozen=True)
class GridLayout:
    """Row/column layout for tiling copies of one unit image.

    Columns are ceil(sqrt(n)) and rows ceil(n / cols), so the grid is as
    close to square as possible and its capacity is never below n.
    """

    cols: int
    rows: int
    unit_width: int
    unit_height: int

    @classmethod
    def for_quantity(cls, quantity: int, unit_width: int, unit_height: int) -> "GridLayout":
        quantity = max(1, quantity)
        cols = math.ceil(math.sqrt(quantity))
        rows = math.ceil(quantity / cols)
        return cls(cols=cols, rows=rows, unit_width=unit_width, unit_height=unit_height)

    @property
    def capacity(self) -> int:
        return self.cols * self.rows

    @property
    def canvas_size(self) -> tuple[int, int]:
        return self.cols * self.unit_width, self.rows * self.unit_height

    def offsets(self, quantity: int) -> list[tuple[int, int]]:
        """Top-left offsets for the first ``quantity`` cells, row-major.

        Copies beyond the grid capacity are not placed.
        """
        placed = min(quantity, self.capacity)
        return [
            ((i % self.cols) * self.unit_width, (i // self.cols) * self.unit_height)
            for i in range(placed)
        ]


def face_region_box(width: int, height: int) -> tuple[int, int, int, int]:
    """Square crop box biased toward where a face usually sits in a portrait.

    This is a positional heuristic, not a face detector: the square has
    side min(width, height), is horizontally centered, and its top edge
    sits one third of the way down the vertical slack instead of half way,
    shifting the crop upward.
    """
    size = min(width, height)
    left = max(0, (width - size) // 2)
    top = max(0, (height - size) // 3)
    return left, top, left + size, top + size


def scale_to_fit(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Largest size with the same aspect ratio fitting inside the bounds (never upscales)."""
    if width <= max_width and height <= max_height:
        return width, height
    ratio = min(max_width / width, max_height / height)
    return max(1, round(width * ratio)), max(1, round(height * ratio))
