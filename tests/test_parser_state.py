from __future__ import annotations

import io
import logging
import struct
from pathlib import Path

import pytest

from ezgds import raw
from ezgds.errors import MalformedRecord, OrphanPropValue, TruncatedFile, UnexpectedRecord
from ezgds.model import DEFAULT_UNITS, ElementType
from ezgds.parser import parse_file, parse_stream
from tests import _gds_helpers as gds


def _parse(data: bytes):
    return parse_stream(io.BytesIO(data))


def test_parse_single_boundary_library(tmp_path: Path) -> None:
    data = gds.library(
        [gds.structure("TOP", gds.boundary(1, [(0, 0), (10, 0), (10, 10), (0, 10)], datatype=3))],
        name="DEMO",
    )
    library = parse_file(gds.write_gds(tmp_path, data))

    assert library.name == "DEMO"
    assert library.version == 600
    assert library.units == pytest.approx((1.0e-3, 1.0e-9))
    assert library.layers == [1]
    assert [structure.name for structure in library.structures] == ["TOP"]

    element = library.structures[0].elements[0]
    assert element.kind == ElementType.BOUNDARY
    assert element.layer == 1
    assert element.data_type == 3
    assert element.points() == [(0, 0), (10, 0), (10, 10), (0, 10), (0, 0)]


def test_parse_reference_attributes() -> None:
    data = gds.library(
        [
            gds.structure("CELL", gds.boundary(2, [(0, 0), (1, 0), (1, 1)])),
            gds.structure("TOP", gds.sref("CELL", (5, 6), angle=90.0, mag=2.0, reflection=True)),
        ]
    )
    library = _parse(data)

    cell, top = library.structures
    ref = top.elements[0]
    assert ref.kind == ElementType.SREF
    assert ref.sname == "CELL"
    assert ref.ref == 0
    assert ref.reflection is True
    assert ref.absolute_mag is False
    assert ref.mag == pytest.approx(2.0)
    assert ref.angle == pytest.approx(90.0)
    assert ref.xy == [5, 6]
    assert cell.is_referenced is True
    assert top.is_referenced is False
    assert [structure.name for _, structure in library.top_level()] == ["TOP"]


def test_parse_aref_colrow() -> None:
    data = gds.library(
        [
            gds.structure("CELL"),
            gds.structure("TOP", gds.aref("CELL", 2, 3, (0, 0), (20, 0), (0, 30))),
        ]
    )
    ref = _parse(data).structures[1].elements[0]

    assert ref.kind == ElementType.AREF
    assert (ref.columns, ref.rows) == (2, 3)
    assert ref.xy == [0, 0, 20, 0, 0, 30]


def test_parse_text_element() -> None:
    data = gds.library([gds.structure("TOP", gds.text(7, (3, 4), "VDD", texttype=2))])
    element = _parse(data).structures[0].elements[0]

    assert element.kind == ElementType.TEXT
    assert element.text == "VDD"
    assert element.text_type == 2
    assert element.layer == 7


def test_layers_are_sorted_and_unique() -> None:
    square = [(0, 0), (1, 0), (1, 1), (0, 1)]
    data = gds.library(
        [
            gds.structure(
                "TOP",
                gds.boundary(5, square),
                gds.boundary(1, square),
                gds.path(3, [(0, 0), (5, 0)], 1),
                gds.boundary(5, square),
            )
        ]
    )
    assert _parse(data).layers == [1, 3, 5]


def test_element_before_structure_is_unexpected() -> None:
    data = b"".join(
        [
            gds.int2(raw.HEADER, 600),
            gds.int2(raw.BGNLIB, *([0] * 12)),
            gds.no_data(raw.BOUNDARY),
        ]
    )
    with pytest.raises(UnexpectedRecord) as excinfo:
        _parse(data)
    assert excinfo.value.kind == "BOUNDARY"
    assert excinfo.value.state == "InLibrary"


def test_library_before_header_is_unexpected() -> None:
    with pytest.raises(UnexpectedRecord):
        _parse(gds.int2(raw.BGNLIB, *([0] * 12)))


def test_texttype_on_boundary_is_unexpected() -> None:
    element = b"".join(
        [
            gds.no_data(raw.BOUNDARY),
            gds.int2(raw.LAYER, 1),
            gds.int2(raw.TEXTTYPE, 0),
            gds.no_data(raw.ENDEL),
        ]
    )
    with pytest.raises(UnexpectedRecord, match="TEXTTYPE"):
        _parse(gds.library([gds.structure("TOP", element)]))


def test_colrow_on_sref_is_unexpected() -> None:
    element = b"".join(
        [
            gds.no_data(raw.SREF),
            gds.string(raw.SNAME, "TOP"),
            gds.int2(raw.COLROW, 1, 1),
            gds.no_data(raw.ENDEL),
        ]
    )
    with pytest.raises(UnexpectedRecord, match="COLROW"):
        _parse(gds.library([gds.structure("TOP", element)]))


def test_propvalue_without_propattr_is_rejected() -> None:
    element = b"".join(
        [
            gds.no_data(raw.BOUNDARY),
            gds.int2(raw.LAYER, 1),
            gds.string(raw.PROPVALUE, "NAME"),
            gds.no_data(raw.ENDEL),
        ]
    )
    with pytest.raises(OrphanPropValue):
        _parse(gds.library([gds.structure("TOP", element)]))


def test_properties_are_paired() -> None:
    element = b"".join(
        [
            gds.no_data(raw.BOUNDARY),
            gds.int2(raw.LAYER, 1),
            gds.int4(raw.XY, 0, 0, 1, 0, 1, 1),
            gds.int2(raw.PROPATTR, 1),
            gds.string(raw.PROPVALUE, "NET"),
            gds.int2(raw.PROPATTR, 2),
            gds.no_data(raw.ENDEL),
        ]
    )
    library = _parse(gds.library([gds.structure("TOP", element)]))
    assert library.structures[0].elements[0].properties == [(1, "NET"), (2, "")]


def test_missing_endlib_is_truncated() -> None:
    data = gds.library([gds.structure("TOP")])
    with pytest.raises(TruncatedFile):
        _parse(data[: -len(gds.no_data(raw.ENDLIB))])


def test_units_short_payload_is_malformed() -> None:
    data = b"".join(
        [
            gds.int2(raw.HEADER, 600),
            gds.int2(raw.BGNLIB, *([0] * 12)),
            gds.reals(raw.UNITS, 1.0e-3),
        ]
    )
    with pytest.raises(MalformedRecord):
        _parse(data)


@pytest.mark.parametrize("units", [(0.0, 1.0e-9), (1.0e-3, -1.0e-9)])
def test_non_positive_units_are_malformed(units: tuple[float, float]) -> None:
    with pytest.raises(MalformedRecord, match="UNITS"):
        _parse(gds.library([gds.structure("TOP")], units=units))


def test_missing_units_fall_back_to_defaults() -> None:
    data = b"".join(
        [
            gds.int2(raw.HEADER, 600),
            gds.int2(raw.BGNLIB, *([0] * 12)),
            gds.structure("TOP"),
            gds.no_data(raw.ENDLIB),
        ]
    )
    assert _parse(data).units == DEFAULT_UNITS


def test_units_accepted_inside_structure() -> None:
    data = b"".join(
        [
            gds.int2(raw.HEADER, 600),
            gds.int2(raw.BGNLIB, *([0] * 12)),
            gds.int2(raw.BGNSTR, *([0] * 12)),
            gds.string(raw.STRNAME, "TOP"),
            gds.reals(raw.UNITS, 1.0e-2, 1.0e-8),
            gds.no_data(raw.ENDSTR),
            gds.no_data(raw.ENDLIB),
        ]
    )
    assert _parse(data).units == pytest.approx((1.0e-2, 1.0e-8))


def test_pcell_detected_from_structure_name() -> None:
    data = gds.library([gds.structure("TOP"), gds.structure("context_info")])
    library = _parse(data)

    assert library.structures[1].is_pcell is True
    assert [structure.name for _, structure in library.top_level()] == ["TOP"]


def test_pcell_detected_from_property_value() -> None:
    element = b"".join(
        [
            gds.no_data(raw.BOUNDARY),
            gds.int2(raw.LAYER, 1),
            gds.int4(raw.XY, 0, 0, 1, 0, 1, 1),
            gds.int2(raw.PROPATTR, 126),
            gds.string(raw.PROPVALUE, "CONTEXT_INFO"),
            gds.no_data(raw.ENDEL),
        ]
    )
    library = _parse(gds.library([gds.structure("TEMPLATE", element), gds.structure("TOP")]))

    assert library.structures[0].is_pcell is True
    assert library.structures[1].is_pcell is False


def test_unknown_reference_warns_and_stays_unresolved(caplog) -> None:
    data = gds.library([gds.structure("TOP", gds.sref("MISSING", (0, 0)))])
    with caplog.at_level(logging.WARNING):
        library = _parse(data)

    assert library.structures[0].elements[0].ref is None
    assert "MISSING" in caplog.text


def test_first_structure_wins_for_duplicate_names() -> None:
    data = gds.library(
        [
            gds.structure("CELL", gds.boundary(1, [(0, 0), (1, 0), (1, 1)])),
            gds.structure("CELL", gds.boundary(2, [(0, 0), (1, 0), (1, 1)])),
            gds.structure("TOP", gds.sref("CELL", (0, 0))),
        ]
    )
    library = _parse(data)

    assert library.structures[2].elements[0].ref == 0
    assert library.structures[0].is_referenced is True
    assert library.structures[1].is_referenced is False


def test_unsupported_record_warns_once(caplog) -> None:
    elflags = gds.record(0x26, struct.pack(">H", 0))
    element = b"".join(
        [
            gds.no_data(raw.BOUNDARY),
            elflags,
            gds.int2(raw.LAYER, 1),
            gds.int4(raw.XY, 0, 0, 1, 0, 1, 1),
            gds.no_data(raw.ENDEL),
        ]
    )
    with caplog.at_level(logging.WARNING):
        library = _parse(gds.library([gds.structure("TOP", element, element)]))

    assert len(library.structures[0].elements) == 2
    warnings = [record for record in caplog.records if "ELFLAGS" in record.getMessage()]
    assert len(warnings) == 1
