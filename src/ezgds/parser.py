from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable

from . import raw
from .errors import MalformedRecord, OrphanPropValue, UnexpectedRecord
from .model import Element, ElementType, Library, Structure, has_pcell_marker

logger = logging.getLogger(__name__)


class ParseState(Enum):
    INITIAL = "Initial"
    IN_HEADER = "InHeader"
    IN_LIBRARY = "InLibrary"
    IN_STRUCTURE = "InStructure"
    IN_ELEMENT = "InElement"
    DONE = "Done"


_ELEMENT_OPENERS = {
    raw.BOUNDARY: ElementType.BOUNDARY,
    raw.PATH: ElementType.PATH,
    raw.SREF: ElementType.SREF,
    raw.AREF: ElementType.AREF,
    raw.TEXT: ElementType.TEXT,
    raw.NODE: ElementType.NODE,
    raw.BOX: ElementType.BOX,
}

_REFERENCE_TYPES = (ElementType.SREF, ElementType.AREF)


class _LibraryBuilder:
    def __init__(self, log: logging.Logger) -> None:
        self.log = log
        self.library = Library()
        self.state = ParseState.INITIAL
        self.structure: Structure | None = None
        self.element: Element | None = None
        self.layer_set: set[int] = set()
        self.num_records = 0
        self._ignored: set[int] = set()
        self._handlers: dict[int, Callable[[raw.Record], None]] = {
            raw.HEADER: self._on_header,
            raw.BGNLIB: self._on_bgnlib,
            raw.LIBNAME: self._on_libname,
            raw.UNITS: self._on_units,
            raw.ENDLIB: self._on_endlib,
            raw.BGNSTR: self._on_bgnstr,
            raw.STRNAME: self._on_strname,
            raw.ENDSTR: self._on_endstr,
            raw.LAYER: self._on_layer,
            raw.DATATYPE: self._on_datatype,
            raw.TEXTTYPE: self._on_texttype,
            raw.PATHTYPE: self._on_pathtype,
            raw.BOXTYPE: self._on_boxtype,
            raw.NODETYPE: self._on_nodetype,
            raw.STRANS: self._on_strans,
            raw.MAG: self._on_mag,
            raw.ANGLE: self._on_angle,
            raw.XY: self._on_xy,
            raw.SNAME: self._on_sname,
            raw.STRING: self._on_string,
            raw.COLROW: self._on_colrow,
            raw.WIDTH: self._on_width,
            raw.PROPATTR: self._on_propattr,
            raw.PROPVALUE: self._on_propvalue,
            raw.ENDEL: self._on_endel,
        }
        for code in _ELEMENT_OPENERS:
            self._handlers[code] = self._on_element

    @property
    def done(self) -> bool:
        return self.state == ParseState.DONE

    def feed(self, record: raw.Record) -> None:
        self.num_records += 1
        handler = self._handlers.get(record.code)
        if handler is None:
            if record.code not in self._ignored:
                self._ignored.add(record.code)
                self.log.warning("ignoring unsupported record %s", record.name)
            return
        handler(record)

    def _expect(self, record: raw.Record, *states: ParseState) -> None:
        if self.state not in states:
            raise UnexpectedRecord(record.name, self.state.value)

    def _expect_element(self, record: raw.Record, *kinds: ElementType) -> Element:
        self._expect(record, ParseState.IN_ELEMENT)
        element = self.element
        if kinds and element.kind not in kinds:
            raise UnexpectedRecord(
                record.name,
                self.state.value,
                f"not applicable to {element.kind.value} elements",
            )
        return element

    @staticmethod
    def _values(record: raw.Record, count: int = 1) -> tuple:
        values = record.value
        if values is None or len(values) < count:
            raise MalformedRecord(f"{record.name}: expected at least {count} value(s)")
        return values

    def _on_header(self, record: raw.Record) -> None:
        self._expect(record, ParseState.INITIAL)
        if record.value:
            self.library.version = record.value[0]
        self.state = ParseState.IN_HEADER

    def _on_bgnlib(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_HEADER)
        self.state = ParseState.IN_LIBRARY

    def _on_libname(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_LIBRARY)
        self.library.name = record.value

    def _on_units(self, record: raw.Record) -> None:
        values = record.value
        if values is None or len(values) < 2:
            raise MalformedRecord("UNITS: expected 2 values")
        if values[0] <= 0.0 or values[1] <= 0.0:
            raise MalformedRecord(f"UNITS: values must be positive, got {values[0]:g} {values[1]:g}")
        self.library.units = (values[0], values[1])

    def _on_endlib(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_LIBRARY)
        self.state = ParseState.DONE

    def _on_bgnstr(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_LIBRARY)
        self.structure = Structure()
        self.library.structures.append(self.structure)
        self.state = ParseState.IN_STRUCTURE

    def _on_strname(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_STRUCTURE)
        self.structure.name = record.value
        if has_pcell_marker(record.value):
            self.structure.is_pcell = True

    def _on_endstr(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_STRUCTURE)
        self.structure = None
        self.state = ParseState.IN_LIBRARY

    def _on_element(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_STRUCTURE)
        self.element = Element(kind=_ELEMENT_OPENERS[record.code])
        self.structure.elements.append(self.element)
        self.state = ParseState.IN_ELEMENT

    def _on_endel(self, record: raw.Record) -> None:
        self._expect(record, ParseState.IN_ELEMENT)
        self.element = None
        self.state = ParseState.IN_STRUCTURE

    def _on_layer(self, record: raw.Record) -> None:
        element = self._expect_element(record)
        element.layer = self._values(record)[0]
        self.layer_set.add(element.layer)

    def _on_datatype(self, record: raw.Record) -> None:
        self._expect_element(record).data_type = self._values(record)[0]

    def _on_texttype(self, record: raw.Record) -> None:
        self._expect_element(record, ElementType.TEXT).text_type = self._values(record)[0]

    def _on_pathtype(self, record: raw.Record) -> None:
        self._expect_element(record).path_type = self._values(record)[0]

    def _on_boxtype(self, record: raw.Record) -> None:
        self._expect_element(record, ElementType.BOX).data_type = self._values(record)[0]

    def _on_nodetype(self, record: raw.Record) -> None:
        self._expect_element(record, ElementType.NODE).data_type = self._values(record)[0]

    def _on_strans(self, record: raw.Record) -> None:
        element = self._expect_element(record)
        bits = record.value
        element.reflection = bits[raw.STRANS_REFLECTION]
        element.absolute_mag = bits[raw.STRANS_ABSOLUTE_MAG]
        element.absolute_angle = bits[raw.STRANS_ABSOLUTE_ANGLE]

    def _on_mag(self, record: raw.Record) -> None:
        self._expect_element(record).mag = self._values(record)[0]

    def _on_angle(self, record: raw.Record) -> None:
        self._expect_element(record).angle = self._values(record)[0]

    def _on_xy(self, record: raw.Record) -> None:
        self._expect_element(record).xy.extend(record.value or ())

    def _on_sname(self, record: raw.Record) -> None:
        self._expect_element(record, *_REFERENCE_TYPES).sname = record.value

    def _on_string(self, record: raw.Record) -> None:
        self._expect_element(record, ElementType.TEXT).text = record.value

    def _on_colrow(self, record: raw.Record) -> None:
        element = self._expect_element(record, ElementType.AREF)
        element.columns, element.rows = self._values(record, 2)[:2]

    def _on_width(self, record: raw.Record) -> None:
        self._expect_element(record).width = self._values(record)[0]

    def _on_propattr(self, record: raw.Record) -> None:
        element = self._expect_element(record)
        element.properties.append((self._values(record)[0], ""))

    def _on_propvalue(self, record: raw.Record) -> None:
        element = self._expect_element(record)
        if not element.properties:
            raise OrphanPropValue("PROPVALUE without PROPATTR")
        attribute, _ = element.properties[-1]
        element.properties[-1] = (attribute, record.value)
        if has_pcell_marker(record.value):
            self.structure.is_pcell = True


def parse_stream(stream: BinaryIO, *, log: logging.Logger | None = None) -> Library:
    """Read records until ENDLIB, then resolve structure references."""
    log = log or logger
    builder = _LibraryBuilder(log)
    while not builder.done:
        builder.feed(raw.read_record(stream))

    library = builder.library
    library.layers = sorted(builder.layer_set)
    log.debug("read %d data records", builder.num_records)
    resolve_references(library, log=log)
    return library


def parse_file(path: str | Path, *, log: logging.Logger | None = None) -> Library:
    with raw.open_gds(path) as stream:
        library = parse_stream(stream, log=log)
    (log or logger).debug("parsed %s: %d structures", path, len(library.structures))
    return library


def resolve_references(library: Library, *, log: logging.Logger | None = None) -> None:
    log = log or logger
    index_by_name: dict[str, int] = {}
    for index, structure in enumerate(library.structures):
        index_by_name.setdefault(structure.name, index)

    for structure in library.structures:
        for element in structure.elements:
            if element.kind not in _REFERENCE_TYPES:
                continue
            element.ref = index_by_name.get(element.sname) if element.sname is not None else None
            if element.ref is None:
                log.warning("reference to unknown struct %s", element.sname)
                continue
            library.structures[element.ref].is_referenced = True
