"""Plain geometry value objects shared by the drop resolver and the canvas.

All coordinates are in document (world) units; zoom is applied by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class Point:
    """A pointer position or a node's top-left corner."""

    x: float
    y: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "Point":
        if not data:
            return cls(0.0, 0.0)
        return cls(float(data.get("x", 0) or 0), float(data.get("y", 0) or 0))

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle given by its top-left corner and size."""

    x: float
    y: float
    width: float
    height: float

    @property
    def left(self) -> float:
        return self.x

    @property
    def top(self) -> float:
        return self.y

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains_point(self, px: float, py: float) -> bool:
        """Return True if the point lies inside the rectangle, edges included."""
        return self.left <= px <= self.right and self.top <= py <= self.bottom

    def translated(self, dx: float, dy: float) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def moved_to(self, x: float, y: float) -> "Rect":
        return Rect(x, y, self.width, self.height)


@dataclass(frozen=True)
class Guide:
    """A snap guide line to display while dragging on the canvas.

    ``orientation`` is ``"vertical"`` (constant x) or ``"horizontal"``
    (constant y); ``position`` is that constant coordinate.
    """

    orientation: str
    position: float


__all__ = ["Point", "Rect", "Guide"]
