from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Mapping

from .entity import ALL_LAYERS, POLYGON, TEXT, Entity, EntityTable, Point2D
from .errors import CyclicReference, DanglingReference, MalformedRecord
from .geometry import path_segment_quads
from .model import Element, ElementType, Library, Structure

logger = logging.getLogger(__name__)

LENGTH_UNIT_ENV = "EZGDS_LENGTH_UNIT"
DEFAULT_LENGTH_UNIT = 1.0e-6


@dataclass(frozen=True)
class Transform:
    """Affine map ``p -> M p + t`` acting on database-unit coordinates."""

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    tx: float = 0.0
    ty: float = 0.0

    @classmethod
    def from_reference(
        cls,
        x0: float,
        y0: float,
        *,
        angle: float = 0.0,
        mag: float = 1.0,
        reflection: bool = False,
    ) -> "Transform":
        # scale, mirror about the x axis, rotate, then translate
        theta = math.radians(angle)
        cos_t = math.cos(theta)
        sin_t = math.sin(theta)
        flip = -1.0 if reflection else 1.0
        return cls(
            a=mag * cos_t,
            b=-flip * mag * sin_t,
            c=mag * sin_t,
            d=flip * mag * cos_t,
            tx=float(x0),
            ty=float(y0),
        )

    def apply(self, x: float, y: float) -> Point2D:
        return (self.a * x + self.b * y + self.tx, self.c * x + self.d * y + self.ty)

    def compose(self, inner: "Transform") -> "Transform":
        """Return the transform applying ``inner`` first, then ``self``."""
        return Transform(
            a=self.a * inner.a + self.b * inner.c,
            b=self.a * inner.b + self.b * inner.d,
            c=self.c * inner.a + self.d * inner.c,
            d=self.c * inner.b + self.d * inner.d,
            tx=self.a * inner.tx + self.b * inner.ty + self.tx,
            ty=self.c * inner.tx + self.d * inner.ty + self.ty,
        )


IDENTITY = Transform()


def resolve_length_unit(
    length_unit: float | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    log: logging.Logger | None = None,
) -> float:
    if length_unit is not None:
        if length_unit <= 0.0:
            raise ValueError(f"length unit must be positive: {length_unit!r}")
        return float(length_unit)
    log = log or logger
    env = os.environ if environ is None else environ
    override = env.get(LENGTH_UNIT_ENV)
    if override:
        try:
            value = float(override)
        except ValueError:
            value = 0.0
        if value > 0.0:
            log.info("setting length unit to %g meters", value)
            return value
        log.warning("ignoring invalid %s=%r", LENGTH_UNIT_ENV, override)
    return DEFAULT_LENGTH_UNIT


def _trunc_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def array_offsets(element: Element) -> list[tuple[int, int]]:
    """Per-cell translations of an AREF, column-major as (nc, nr)."""
    x0, y0, x1, y1, x2, y2 = element.xy[:6]
    columns, rows = element.columns, element.rows
    col_step = (_trunc_div(x1 - x0, columns), _trunc_div(y1 - y0, columns))
    row_step = (_trunc_div(x2 - x0, rows), _trunc_div(y2 - y0, rows))
    return [
        (
            x0 + nc * col_step[0] + nr * row_step[0],
            y0 + nc * col_step[1] + nr * row_step[1],
        )
        for nc in range(columns)
        for nr in range(rows)
    ]


class _Flattener:
    def __init__(self, library: Library, scale: float, layer: int, log: logging.Logger) -> None:
        self.library = library
        self.scale = scale
        self.layer = layer
        self.log = log
        if layer == ALL_LAYERS:
            self.table: EntityTable = {number: [] for number in library.layers}
        else:
            self.table = {layer: []}

    def run(self) -> EntityTable:
        for index, _structure in self.library.top_level():
            self.add_structure(index, IDENTITY, ())
        return self.table

    def _wants(self, layer: int) -> bool:
        return self.layer == ALL_LAYERS or self.layer == layer

    def _emit(self, entity: Entity) -> None:
        self.table.setdefault(entity.layer, []).append(entity)

    def _physical(self, transform: Transform, x: int, y: int) -> Point2D:
        px, py = transform.apply(x, y)
        return (self.scale * px, self.scale * py)

    def add_structure(self, index: int, transform: Transform, chain: tuple[int, ...]) -> None:
        structure = self.library.structures[index]
        if structure.is_pcell:
            return
        if index in chain:
            names = [self.library.structures[i].name for i in chain] + [structure.name]
            raise CyclicReference(names)
        chain = chain + (index,)
        for element_index, element in enumerate(structure.elements):
            kind = element.kind
            if kind == ElementType.BOUNDARY:
                self._add_boundary(structure, element_index, element, transform)
            elif kind == ElementType.PATH:
                self._add_path(structure, element_index, element, transform)
            elif kind == ElementType.TEXT:
                self._add_text(structure, element_index, element, transform)
            elif kind.is_reference:
                self._add_reference(structure, element_index, element, transform, chain)

    def _add_boundary(
        self, structure: Structure, index: int, element: Element, transform: Transform
    ) -> None:
        if not self._wants(element.layer):
            return
        points = element.points()
        if len(points) > 1 and points[0] == points[-1]:
            points = points[:-1]
        if not points:
            return
        self._emit(
            Entity(
                kind=POLYGON,
                layer=element.layer,
                points=tuple(self._physical(transform, x, y) for x, y in points),
                closed=True,
                label=f"Struct {structure.name} element #{index} ({element.kind.value.lower()})",
            )
        )

    def _add_path(
        self, structure: Structure, index: int, element: Element, transform: Transform
    ) -> None:
        if not self._wants(element.layer):
            return
        label = f"Struct {structure.name} element #{index} (path)"
        points = [self._physical(transform, x, y) for x, y in element.points()]
        if element.width == 0:
            if points:
                self._emit(
                    Entity(kind=POLYGON, layer=element.layer, points=tuple(points), label=label)
                )
            return
        # width is in database units and does not follow reference magnification
        width = abs(element.width) * self.scale
        for quad in path_segment_quads(points, width):
            self._emit(
                Entity(
                    kind=POLYGON,
                    layer=element.layer,
                    points=tuple(quad),
                    closed=True,
                    label=label,
                )
            )

    def _add_text(
        self, structure: Structure, index: int, element: Element, transform: Transform
    ) -> None:
        if not self._wants(element.layer):
            return
        if len(element.xy) < 2:
            raise MalformedRecord(
                f"structure {structure.name}, element {index}: text without anchor point"
            )
        self._emit(
            Entity(
                kind=TEXT,
                layer=element.layer,
                points=(self._physical(transform, element.xy[0], element.xy[1]),),
                text=element.text or "",
                label=f"Struct {structure.name} element #{index} (texttype {element.text_type})",
            )
        )

    def _add_reference(
        self,
        structure: Structure,
        index: int,
        element: Element,
        transform: Transform,
        chain: tuple[int, ...],
    ) -> None:
        if element.ref is None or not 0 <= element.ref < len(self.library.structures):
            raise DanglingReference(structure.name, index, element.sname or "")

        if element.kind == ElementType.SREF:
            if len(element.xy) < 2:
                raise MalformedRecord(
                    f"structure {structure.name}, element {index}: SREF without anchor point"
                )
            local = Transform.from_reference(
                element.xy[0],
                element.xy[1],
                angle=element.angle,
                mag=element.mag,
                reflection=element.reflection,
            )
            self.add_structure(element.ref, transform.compose(local), chain)
            return

        if element.columns <= 0 or element.rows <= 0 or len(element.xy) < 6:
            self.log.warning(
                "structure %s, element %d: degenerate AREF %dx%d (ignoring)",
                structure.name,
                index,
                element.columns,
                element.rows,
            )
            return
        for x, y in array_offsets(element):
            self.add_structure(element.ref, transform.compose(Transform.from_reference(x, y)), chain)


def flatten(
    library: Library,
    *,
    length_unit: float | None = None,
    layer: int = ALL_LAYERS,
    log: logging.Logger | None = None,
) -> EntityTable:
    """Resolve the hierarchy into per-layer entities in physical coordinates.

    Coordinates are expressed in multiples of ``length_unit`` meters. Only
    structures that are neither referenced nor parametric-cell templates are
    instanced at the top level.
    """
    log = log or logger
    unit = resolve_length_unit(length_unit, log=log)
    scale = library.meters_per_db_unit / unit
    return _Flattener(library, scale, layer, log).run()
