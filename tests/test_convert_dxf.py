from __future__ import annotations

from pathlib import Path

import pytest

import ezgds
import ezgds.convert as convert_module
from ezgds.entity import POLYGON, TEXT, Entity
from tests import _gds_helpers as gds


def _sample(tmp_path: Path) -> Path:
    data = gds.library(
        [
            gds.structure("CELL", gds.boundary(3, [(0, 0), (1000, 0), (1000, 500), (0, 500)])),
            gds.structure(
                "TOP",
                gds.sref("CELL", (2000, 0)),
                gds.path(4, [(0, 0), (0, 3000)], 0),
                gds.text(3, (2100, 100), "OUT"),
            ),
        ]
    )
    return gds.write_gds(tmp_path, data)


def _modelspace(path: Path, dxftype: str) -> list:
    ezdxf = pytest.importorskip("ezdxf")
    return list(ezdxf.readfile(str(path)).modelspace().query(dxftype))


def test_to_dxf_writes_polygons_and_texts(tmp_path: Path) -> None:
    pytest.importorskip("ezdxf")

    output = tmp_path / "out" / "chip.dxf"
    result = ezgds.to_dxf(str(_sample(tmp_path)), str(output))

    assert output.exists()
    assert result.total_entities == 3
    assert result.written_entities == 3
    assert result.skipped_entities == 0
    assert result.skipped_by_layer == {}

    polylines = _modelspace(output, "LWPOLYLINE")
    assert len(polylines) == 2
    by_layer = {polyline.dxf.layer: polyline for polyline in polylines}
    assert set(by_layer) == {"L3", "L4"}
    assert by_layer["L3"].closed is True
    assert by_layer["L4"].closed is False
    coords = [c for point in by_layer["L3"].get_points("xy") for c in point]
    assert coords == pytest.approx([2.0, 0.0, 3.0, 0.0, 3.0, 0.5, 2.0, 0.5])

    texts = _modelspace(output, "TEXT")
    assert len(texts) == 1
    assert texts[0].dxf.text == "OUT"
    assert texts[0].dxf.layer == "L3"
    assert texts[0].dxf.insert[0] == pytest.approx(2.1)


def test_to_dxf_layer_filter(tmp_path: Path) -> None:
    pytest.importorskip("ezdxf")

    output = tmp_path / "layer4.dxf"
    result = ezgds.to_dxf(str(_sample(tmp_path)), str(output), layer=4, length_unit=1.0e-9)

    assert result.total_entities == 1
    [polyline] = _modelspace(output, "LWPOLYLINE")
    assert polyline.dxf.layer == "L4"
    coords = [c for point in polyline.get_points("xy") for c in point]
    assert coords == pytest.approx([0.0, 0.0, 0.0, 3000.0])


class _StubDoc:
    path = "stub.gds"

    def __init__(self, entities: list[Entity]) -> None:
        self._entities = entities

    def query(self, kind=None, *, layer=-1, length_unit=None):  # noqa: ANN001
        return iter(self._entities)


def test_to_dxf_counts_skipped_entities(tmp_path: Path) -> None:
    pytest.importorskip("ezdxf")

    entities = [
        Entity(kind=POLYGON, layer=1, points=((0.0, 0.0), (1.0, 0.0), (1.0, 1.0)), closed=True),
        Entity(kind=POLYGON, layer=2, points=((0.0, 0.0),)),
        Entity(kind=TEXT, layer=2, points=((0.0, 0.0),), text="A"),
    ]
    output = tmp_path / "skipped.dxf"

    result = ezgds.to_dxf(_StubDoc(entities), str(output))

    assert result.source_path == "stub.gds"
    assert result.written_entities == 2
    assert result.skipped_entities == 1
    assert result.skipped_by_layer == {2: 1}

    with pytest.raises(ValueError, match="failed to convert 1 entities"):
        ezgds.to_dxf(_StubDoc(entities), str(tmp_path / "strict.dxf"), strict=True)


def test_to_dxf_requires_ezdxf(monkeypatch, tmp_path: Path) -> None:
    def _missing():
        raise ImportError("ezdxf is required")

    monkeypatch.setattr(convert_module, "_require_ezdxf", _missing)
    with pytest.raises(ImportError):
        ezgds.to_dxf(str(_sample(tmp_path)), str(tmp_path / "never.dxf"))


def test_dxf_layer_name() -> None:
    assert convert_module.dxf_layer_name(0) == "L0"
    assert convert_module.dxf_layer_name(42) == "L42"
