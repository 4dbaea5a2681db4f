from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

Point2D = tuple[float, float]

POLYGON = "POLYGON"
TEXT = "TEXT"
ALL_LAYERS = -1


@dataclass(frozen=True)
class Entity:
    kind: str
    layer: int
    points: tuple[Point2D, ...]
    closed: bool = False
    text: str | None = None
    label: str | None = None

    @property
    def is_text(self) -> bool:
        return self.kind == TEXT

    @property
    def anchor(self) -> Point2D:
        if not self.points:
            raise ValueError(f"{self.kind} entity has no points")
        return self.points[0]

    def to_points(self) -> list[Point2D]:
        if self.kind == TEXT:
            return [self.anchor]
        if self.kind == POLYGON:
            points = list(self.points)
            if self.closed and points:
                points.append(points[0])
            return points
        raise NotImplementedError(f"to_points is not supported for {self.kind}")


EntityTable = Dict[int, List[Entity]]
