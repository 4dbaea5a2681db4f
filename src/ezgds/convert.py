from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .document import Document, read
from .entity import ALL_LAYERS, POLYGON, TEXT, Entity, EntityTable
from .geometry import point_in_polygon

logger = logging.getLogger(__name__)

PORT_Z = 0.0
_PORT_LABEL = re.compile(r"([+-]?\d+)(.)")


@dataclass(frozen=True)
class ConvertResult:
    source_path: str
    output_path: str
    total_entities: int
    written_entities: int
    skipped_entities: int
    skipped_by_layer: dict[int, int]


@dataclass(frozen=True)
class GmshResult:
    source_path: str
    geo_files: list[str]
    pp_file: str | None
    ports_file: str | None
    polygons_written: int
    texts_written: int
    ports: int
    port_terminals: int
    skipped_layers: list[int] = field(default_factory=list)


def to_dxf(
    source: str | Path | Document,
    output_path: str,
    *,
    layer: int = ALL_LAYERS,
    length_unit: float | None = None,
    dxf_version: str = "R2010",
    text_height: float = 1.0,
    strict: bool = False,
) -> ConvertResult:
    ezdxf = _require_ezdxf()
    source_path, doc = _resolve_document(source)

    dxf_doc = ezdxf.new(dxfversion=dxf_version)
    modelspace = dxf_doc.modelspace()

    total = 0
    written = 0
    skipped_by_layer: dict[int, int] = {}

    for entity in doc.query(layer=layer, length_unit=length_unit):
        total += 1
        if _write_entity_to_modelspace(modelspace, entity, text_height):
            written += 1
            continue
        skipped_by_layer[entity.layer] = skipped_by_layer.get(entity.layer, 0) + 1

    skipped = total - written
    if strict and skipped > 0:
        summary = ", ".join(f"{number}:{count}" for number, count in sorted(skipped_by_layer.items()))
        raise ValueError(f"failed to convert {skipped} entities ({summary})")

    out_path = Path(output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    dxf_doc.saveas(str(out_path))

    return ConvertResult(
        source_path=source_path,
        output_path=str(out_path),
        total_entities=total,
        written_entities=written,
        skipped_entities=skipped,
        skipped_by_layer=dict(sorted(skipped_by_layer.items())),
    )


def _require_ezdxf():
    try:
        import ezdxf
    except Exception as exc:
        raise ImportError(
            "ezdxf is required for GDSII->DXF conversion. "
            'Install it with `pip install "ezgds[dxf]"`.'
        ) from exc
    return ezdxf


def _resolve_document(source: str | Path | Document) -> tuple[str, Document]:
    if isinstance(source, (str, Path)):
        return str(source), read(source)
    return source.path, source


def dxf_layer_name(layer: int) -> str:
    return f"L{layer}"


def _write_entity_to_modelspace(modelspace: Any, entity: Entity, text_height: float) -> bool:
    try:
        return _write_entity_to_modelspace_unsafe(modelspace, entity, text_height)
    except Exception:
        logger.debug("could not write %s", entity.label, exc_info=True)
        return False


def _write_entity_to_modelspace_unsafe(modelspace: Any, entity: Entity, text_height: float) -> bool:
    dxfattribs = {"layer": dxf_layer_name(entity.layer)}

    if entity.kind == POLYGON:
        if len(entity.points) < 2:
            return False
        modelspace.add_lwpolyline(list(entity.points), close=entity.closed, dxfattribs=dxfattribs)
        return True

    if entity.kind == TEXT:
        x, y = entity.anchor
        dxfattribs["insert"] = (x, y)
        dxfattribs["height"] = text_height
        modelspace.add_text(entity.text or "", dxfattribs=dxfattribs)
        return True

    return False


def detect_port_terminal_label(text: str, *, log: logging.Logger | None = None) -> int:
    """Interpret ``PORT <n><polarity>`` labels.

    Returns +n for a positive terminal (``P``, ``p``, ``+``), -n for a
    negative one (``M``, ``m``, ``N``, ``n``, ``-``) and 0 otherwise.
    Port indices start at 1.
    """
    log = log or logger
    if text[:5].upper() != "PORT ":
        return 0
    match = _PORT_LABEL.match(text[5:].lstrip())
    if match is None:
        log.warning("%s is not a valid port terminal label (ignoring)", text)
        return 0
    number = int(match.group(1))
    polarity = match.group(2)
    if number <= 0:
        log.warning("in port terminal label %s: %d is not a valid port index (ignoring)", text, number)
        return 0
    if polarity in "Pp+":
        return number
    if polarity in "MmNn-":
        return -number
    log.warning("in port terminal label %s: %s is not a valid polarity indicator (ignoring)", text, polarity)
    return 0


class _GeoWriter:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.num_nodes = 0
        self.num_lines = 0
        self.num_surfaces = 0

    def add(self, entity: Entity) -> None:
        self.lines.append(f"// Layer {entity.layer} {entity.label or ''} ")
        node0 = self.num_nodes
        line0 = self.num_lines
        count = len(entity.points)
        for x, y in entity.points:
            self.lines.append(f"Point({self.num_nodes})={{{x:e},{y:e},{0.0:e}}};")
            self.num_nodes += 1
        for n in range(count - 1):
            self.lines.append(f"Line({self.num_lines})={{{node0 + n},{node0 + n + 1}}};")
            self.num_lines += 1
        if entity.closed:
            self.lines.append(f"Line({self.num_lines})={{{node0 + count - 1},{node0}}};")
            self.num_lines += 1
            loop = ",".join(str(line0 + n) for n in range(count))
            self.lines.append(f"Line Loop({self.num_surfaces})={{{loop}}};")
            self.lines.append(f"Plane Surface({self.num_surfaces})={{{self.num_surfaces}}};")
            self.num_surfaces += 1
        self.lines.append("")

    def write(self, path: Path) -> None:
        path.write_text("\n".join(self.lines) + "\n", encoding="utf-8")


def _pp_view(entity: Entity) -> str:
    x, y = entity.anchor
    return (
        f'View "Layer {entity.layer} {entity.label or ""}" {{\n'
        f'T3 ({x:e},{y:e},{0.0:e},0) {{"{entity.text or ""}"}};\n'
        "};\n"
    )


def _port_polygon_line(polarity: int, polygon: Entity) -> str:
    line = "    %s " % ("NEGATIVE" if polarity < 0 else "POSITIVE")
    line += "".join(f"{x:+g} {y:+g} {PORT_Z:+g} " for x, y in polygon.points)
    return line + "\n"


def _collect_ports(
    table: EntityTable,
    log: logging.Logger,
) -> tuple[dict[int, dict[int, str]], set[int], int]:
    # port number -> {+1: positive terminal text, -1: negative terminal text}
    ports: dict[int, dict[int, str]] = {}
    port_layers: set[int] = set()
    terminals = 0
    for number, entities in table.items():
        polygons = [entity for entity in entities if entity.kind == POLYGON and entity.closed]
        used: set[int] = set()
        terminals_this_layer = 0
        for entity in entities:
            if entity.kind != TEXT or not entity.text:
                continue
            terminal = detect_port_terminal_label(entity.text, log=log)
            if terminal == 0:
                continue
            port_layers.add(number)
            polarity = 1 if terminal > 0 else -1
            x, y = entity.anchor
            for polygon_index, polygon in enumerate(polygons):
                if polygon_index in used or not point_in_polygon(polygon.points, x, y):
                    continue
                used.add(polygon_index)
                slot = ports.setdefault(abs(terminal), {1: "", -1: ""})
                slot[polarity] += _port_polygon_line(polarity, polygon)
                terminals_this_layer += 1
                break
            else:
                log.warning(
                    "port-terminal label %s on layer %d is not contained in any polygon (ignoring)",
                    entity.text,
                    number,
                )
        log.info("%d port terminals on layer %d", terminals_this_layer, number)
        terminals += terminals_this_layer
    if terminals == 0:
        log.warning("no labeled port-terminal polygons detected")
    return ports, port_layers, terminals


def to_gmsh(
    source: str | Path | Document,
    file_base: str,
    *,
    ports: bool = False,
    metal_layers: Iterable[int] | None = None,
    separate_layers: bool = False,
    length_unit: float | None = None,
) -> GmshResult:
    """Write GMSH geometry (.geo), text labels (.pp) and optional port (.ports) files."""
    source_path, doc = _resolve_document(source)
    log = doc.context.logger
    table = doc.entity_table(length_unit)
    base = Path(file_base)
    base.parent.mkdir(parents=True, exist_ok=True)

    pp_file = None
    views = [_pp_view(entity) for entities in table.values() for entity in entities if entity.kind == TEXT]
    if views:
        pp_path = base.with_name(base.name + ".pp")
        pp_path.write_text("".join(views), encoding="utf-8")
        pp_file = str(pp_path)
        log.info("wrote %d text strings to %s", len(views), pp_path)

    ports_file = None
    port_layers: set[int] = set()
    port_count = 0
    terminal_count = 0
    if ports:
        port_map, port_layers, terminal_count = _collect_ports(table, log)
        port_count = max(port_map, default=0)
        blocks = []
        for number in range(1, port_count + 1):
            slot = port_map.get(number, {1: "", -1: ""})
            blocks.append(f"PORT\n\n{slot[1]}\n{slot[-1]}\nENDPORT\n\n")
        ports_path = base.with_name(base.name + ".ports")
        ports_path.write_text("".join(blocks), encoding="utf-8")
        ports_file = str(ports_path)
        log.info("wrote %d port definitions (%d terminals) to %s", port_count, terminal_count, ports_path)

    metal = set(metal_layers) if metal_layers else None
    writers: dict[str, _GeoWriter] = {}
    skipped_layers: list[int] = []
    polygons_written = 0
    for number, entities in table.items():
        if number in port_layers:
            continue
        if metal is not None and number not in metal:
            skipped_layers.append(number)
            continue
        geo_name = f"{base.name}.Layer{number}.geo" if separate_layers else f"{base.name}.geo"
        for entity in entities:
            if entity.kind != POLYGON:
                continue
            writers.setdefault(geo_name, _GeoWriter()).add(entity)
            polygons_written += 1

    geo_files = []
    for geo_name, writer in writers.items():
        geo_path = base.with_name(geo_name)
        writer.write(geo_path)
        geo_files.append(str(geo_path))
        log.info("wrote GMSH geometry file %s", geo_path)

    return GmshResult(
        source_path=source_path,
        geo_files=geo_files,
        pp_file=pp_file,
        ports_file=ports_file,
        polygons_written=polygons_written,
        texts_written=len(views),
        ports=port_count,
        port_terminals=terminal_count,
        skipped_layers=skipped_layers,
    )
