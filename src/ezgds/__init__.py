from typing import Sequence

from .convert import ConvertResult, GmshResult, to_dxf, to_gmsh
from .document import Document, DocumentCache, GdsContext, get_layers, get_polygons, get_texts, read
from .entity import ALL_LAYERS, Entity
from .errors import (
    CyclicReference,
    DanglingReference,
    GdsError,
    GdsIOError,
    MalformedRecord,
    OrphanPropValue,
    TruncatedFile,
    TruncatedPayload,
    TypeMismatch,
    UnexpectedRecord,
)
from .flatten import Transform, flatten
from .geometry import intersect_line_with_segment, intersect_ray_with_segment, point_in_polygon
from .model import Element, ElementType, Library, Structure
from . import raw

__all__ = [
    "read",
    "Document",
    "DocumentCache",
    "GdsContext",
    "get_layers",
    "get_polygons",
    "get_texts",
    "Entity",
    "ALL_LAYERS",
    "Library",
    "Structure",
    "Element",
    "ElementType",
    "flatten",
    "Transform",
    "point_in_polygon",
    "intersect_ray_with_segment",
    "intersect_line_with_segment",
    "to_dxf",
    "to_gmsh",
    "ConvertResult",
    "GmshResult",
    "GdsError",
    "GdsIOError",
    "MalformedRecord",
    "TruncatedPayload",
    "TruncatedFile",
    "TypeMismatch",
    "UnexpectedRecord",
    "OrphanPropValue",
    "DanglingReference",
    "CyclicReference",
    "raw",
]


def main(argv: Sequence[str] | None = None) -> int:
    from ezgds.cli import main as cli_main

    return cli_main(argv)
