from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

PCELL_MARKER = "CONTEXT_INFO"
DEFAULT_UNITS = (1.0e-3, 1.0e-9)


class ElementType(Enum):
    BOUNDARY = "BOUNDARY"
    PATH = "PATH"
    SREF = "SREF"
    AREF = "AREF"
    TEXT = "TEXT"
    NODE = "NODE"
    BOX = "BOX"

    @property
    def is_reference(self) -> bool:
        return self in (ElementType.SREF, ElementType.AREF)


@dataclass
class Element:
    kind: ElementType
    layer: int = 0
    data_type: int = 0
    xy: list[int] = field(default_factory=list)
    width: int = 0
    path_type: int = 0
    text: str | None = None
    text_type: int = 0
    sname: str | None = None
    ref: int | None = None
    angle: float = 0.0
    mag: float = 1.0
    reflection: bool = False
    absolute_mag: bool = False
    absolute_angle: bool = False
    columns: int = 0
    rows: int = 0
    properties: list[tuple[int, str]] = field(default_factory=list)

    def points(self) -> list[tuple[int, int]]:
        return [(self.xy[i], self.xy[i + 1]) for i in range(0, len(self.xy) - 1, 2)]


@dataclass
class Structure:
    name: str = ""
    elements: list[Element] = field(default_factory=list)
    is_referenced: bool = False
    is_pcell: bool = False


@dataclass
class Library:
    name: str | None = None
    version: int | None = None
    units: tuple[float, float] = DEFAULT_UNITS
    structures: list[Structure] = field(default_factory=list)
    layers: list[int] = field(default_factory=list)

    @property
    def unit_in_meters(self) -> float:
        """Meters per user unit."""
        return self.units[1] / self.units[0]

    @property
    def meters_per_db_unit(self) -> float:
        return self.units[1]

    def structure_index(self, name: str) -> int | None:
        for index, structure in enumerate(self.structures):
            if structure.name == name:
                return index
        return None

    def structure(self, name: str) -> Structure:
        index = self.structure_index(name)
        if index is None:
            raise KeyError(name)
        return self.structures[index]

    def top_level(self) -> Iterator[tuple[int, Structure]]:
        for index, structure in enumerate(self.structures):
            if not structure.is_referenced and not structure.is_pcell:
                yield index, structure


def has_pcell_marker(value: str) -> bool:
    return PCELL_MARKER in value.upper()
