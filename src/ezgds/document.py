from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .entity import ALL_LAYERS, POLYGON, TEXT, Entity, EntityTable
from .flatten import flatten, resolve_length_unit
from .geometry import point_in_polygon
from .model import ElementType, Library, Structure
from .parser import parse_file

logger = logging.getLogger("ezgds")


class DocumentCache:
    """Holds the most recently read document, keyed by its path."""

    def __init__(self) -> None:
        self._path: str | None = None
        self._doc: Document | None = None

    @property
    def path(self) -> str | None:
        return self._path

    def get(self, path: str | Path, context: "GdsContext") -> "Document":
        key = str(path)
        if self._doc is None or self._path != key:
            self.clear()
            self._doc = read(key, context=context)
            self._path = key
        return self._doc

    def clear(self) -> None:
        self._path = None
        self._doc = None


@dataclass
class GdsContext:
    logger: logging.Logger = field(default_factory=lambda: logger)
    cache: DocumentCache = field(default_factory=DocumentCache)


_default_context = GdsContext()


def default_context() -> GdsContext:
    return _default_context


def read(path: str | Path, *, context: GdsContext | None = None) -> "Document":
    context = context or _default_context
    library = parse_file(path, log=context.logger)
    return Document(path=str(path), library=library, context=context)


@dataclass(frozen=True)
class Document:
    path: str
    library: Library
    context: GdsContext = field(default_factory=default_context, compare=False, repr=False)
    _tables: dict[float, EntityTable] = field(default_factory=dict, compare=False, repr=False)

    @property
    def name(self) -> str | None:
        return self.library.name

    @property
    def layers(self) -> list[int]:
        return list(self.library.layers)

    @property
    def structures(self) -> list[Structure]:
        return self.library.structures

    def entity_table(self, length_unit: float | None = None) -> EntityTable:
        unit = resolve_length_unit(length_unit, log=self.context.logger)
        table = self._tables.get(unit)
        if table is None:
            table = flatten(self.library, length_unit=unit, log=self.context.logger)
            self._tables[unit] = table
        return table

    def query(
        self,
        kind: str | None = None,
        *,
        layer: int = ALL_LAYERS,
        length_unit: float | None = None,
    ) -> Iterator[Entity]:
        table = self.entity_table(length_unit)
        layers = table.keys() if layer == ALL_LAYERS else [layer]
        for number in layers:
            for entity in table.get(number, ()):
                if kind is None or entity.kind == kind:
                    yield entity

    def texts(self, layer: int = ALL_LAYERS, *, length_unit: float | None = None) -> list[Entity]:
        return list(self.query(TEXT, layer=layer, length_unit=length_unit))

    def polygons(
        self,
        layer: int = ALL_LAYERS,
        label: str | None = None,
        *,
        length_unit: float | None = None,
    ) -> list[Entity]:
        polygons = list(self.query(POLYGON, layer=layer, length_unit=length_unit))
        if label is None:
            return polygons
        anchors_by_layer: dict[int, list[tuple[float, float]]] = {}
        for text in self.query(TEXT, layer=layer, length_unit=length_unit):
            if text.text == label:
                anchors_by_layer.setdefault(text.layer, []).append(text.anchor)
        return [
            polygon
            for polygon in polygons
            if any(
                point_in_polygon(polygon.points, x, y)
                for x, y in anchors_by_layer.get(polygon.layer, ())
            )
        ]

    def describe(self) -> str:
        library = self.library
        lines = [
            "*",
            f"* File {self.path}: ",
        ]
        if library.name:
            lines.append(f"* Library {library.name}: ")
        lines.append(
            f"* Unit={library.unit_in_meters:e} meters "
            f"(file units = {{{library.units[0]:e},{library.units[1]:e}}})"
        )
        lines.append("*")
        rule = "*" * 50
        lines.extend([rule, f"** Library {library.name or ''}:", rule])
        for struct_index, structure in enumerate(library.structures):
            lines.append("-" * 50)
            lines.append(f"** Struct {struct_index}: {structure.name}")
            lines.append("-" * 50)
            for element_index, element in enumerate(structure.elements):
                lines.append(
                    f"  Element {element_index}: {element.kind.value} "
                    f"(layer {element.layer}, datatype {element.data_type})"
                )
                if element.kind in (ElementType.PATH, ElementType.TEXT):
                    lines.append(f"    (width {element.width}, pathtype {element.path_type})")
                if element.text is not None:
                    lines.append(f"    (text {element.text})")
                if element.sname is not None:
                    lines.append(f"    (structure {element.sname})")
                if element.mag != 1.0 or element.angle != 0.0:
                    lines.append(f"    (mag {element.mag:g}, angle {element.angle:g})")
                if element.columns != 0 or element.rows != 0:
                    lines.append(f"    ({element.columns} x {element.rows} array)")
                for attribute, value in element.properties:
                    lines.append(f"    (attribute {attribute}: {value})")
                lines.append("     XY: " + "".join(f"{value} " for value in element.xy))
                lines.append("")
        return "\n".join(lines) + "\n"


def get_layers(path: str | Path, *, context: GdsContext | None = None) -> list[int]:
    context = context or _default_context
    return context.cache.get(path, context).layers


def get_polygons(
    path: str | Path,
    layer: int = ALL_LAYERS,
    label: str | None = None,
    *,
    context: GdsContext | None = None,
) -> list[Entity]:
    context = context or _default_context
    return context.cache.get(path, context).polygons(layer, label)


def get_texts(
    path: str | Path,
    layer: int = ALL_LAYERS,
    *,
    context: GdsContext | None = None,
) -> list[Entity]:
    context = context or _default_context
    return context.cache.get(path, context).texts(layer)
