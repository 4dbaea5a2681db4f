from __future__ import annotations

import argparse
import logging
import sys
from collections import Counter
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Sequence

from . import raw
from .convert import to_dxf, to_gmsh
from .document import read
from .entity import ALL_LAYERS, POLYGON, TEXT
from .errors import GdsError


def _package_version() -> str:
    try:
        return version("ezgds")
    except PackageNotFoundError:
        return "0.0.0"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ezgds", description="Inspect, flatten, and convert GDSII files.")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log informational messages to stderr.",
    )
    subparsers = parser.add_subparsers(dest="command")

    inspect_parser = subparsers.add_parser("inspect", help="Show library, structure and layer summary.")
    inspect_parser.add_argument("path", help="Path to GDSII file.")
    inspect_parser.add_argument(
        "--length-unit",
        type=float,
        default=None,
        help="Length unit in meters for flattened coordinates (default: $EZGDS_LENGTH_UNIT or 1e-6).",
    )

    dump_parser = subparsers.add_parser("dump", help="Print a raw listing of every data record.")
    dump_parser.add_argument("path", help="Path to GDSII file.")

    describe_parser = subparsers.add_parser(
        "describe",
        help="Print a detailed listing of the hierarchical structure.",
    )
    describe_parser.add_argument("path", help="Path to GDSII file.")
    describe_parser.add_argument("-o", "--output", default=None, help="Write the listing to this file.")

    convert_parser = subparsers.add_parser(
        "convert",
        help="Flatten GDSII and write DXF using ezdxf as the writing backend.",
    )
    convert_parser.add_argument("input_path", help="Path to GDSII file.")
    convert_parser.add_argument("output_path", help="Path to output DXF file.")
    convert_parser.add_argument(
        "--layer",
        type=int,
        default=ALL_LAYERS,
        help="Only export entities on this GDSII layer.",
    )
    convert_parser.add_argument("--length-unit", type=float, default=None, help="Length unit in meters.")
    convert_parser.add_argument(
        "--dxf-version",
        default="R2010",
        help="DXF version for ezdxf.new(), e.g. R2000/R2010/R2018.",
    )
    convert_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail if any entity cannot be converted.",
    )

    gmsh_parser = subparsers.add_parser(
        "gmsh",
        help="Flatten GDSII and write GMSH .geo/.pp files (and optionally .ports).",
    )
    gmsh_parser.add_argument("path", help="Path to GDSII file.")
    gmsh_parser.add_argument(
        "--file-base",
        default=None,
        help="Base name for output files (default: input file name without extension).",
    )
    gmsh_parser.add_argument(
        "--ports",
        action="store_true",
        help="Detect PORT labels and write a .ports file.",
    )
    gmsh_parser.add_argument(
        "--metal-layer",
        type=int,
        action="append",
        default=None,
        help="Treat this layer as a metal layer (may be repeated); other layers are skipped.",
    )
    gmsh_parser.add_argument(
        "--separate-layers",
        action="store_true",
        help="Write one .geo file per layer.",
    )
    gmsh_parser.add_argument("--length-unit", type=float, default=None, help="Length unit in meters.")
    return parser


def _run_inspect(path: str, *, length_unit: float | None = None) -> int:
    file_path = Path(path)
    if not file_path.exists():
        print(f"error: file not found: {file_path}", file=sys.stderr)
        return 2

    try:
        doc = read(str(file_path))
        table = doc.entity_table(length_unit)
    except Exception as exc:
        print(f"error: failed to read GDSII: {exc}", file=sys.stderr)
        return 2

    library = doc.library
    top_level = [structure.name for _, structure in library.top_level()]
    print(f"file: {file_path}")
    print(f"library: {library.name or ''}")
    print(f"units: {library.units[0]:g} {library.units[1]:g}")
    print(f"structures: {len(library.structures)}")
    print(f"top_level: {' '.join(top_level)}")
    pcells = [structure.name for structure in library.structures if structure.is_pcell]
    if pcells:
        print(f"pcells: {' '.join(pcells)}")
    print(f"layers: {' '.join(str(number) for number in doc.layers)}")
    for number, entities in table.items():
        counts = Counter(entity.kind for entity in entities)
        print(f"layer[{number}]: polygons={counts.get(POLYGON, 0)} texts={counts.get(TEXT, 0)}")
    return 0


def _run_dump(path: str) -> int:
    count = 0
    try:
        for line in raw.dump_records(path):
            print(line)
            count += 1
    except GdsError as exc:
        print(f"error: {exc} (aborting)", file=sys.stderr)
        return 2
    print(f"Read {count} data records from file {path}.")
    return 0


def _run_describe(path: str, *, output: str | None = None) -> int:
    try:
        text = read(path).describe()
    except Exception as exc:
        print(f"error: failed to read GDSII: {exc}", file=sys.stderr)
        return 2
    if output is None:
        sys.stdout.write(text)
        return 0
    out_path = Path(output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(text, encoding="utf-8")
    print(f"output: {out_path}")
    return 0


def _run_convert(
    input_path: str,
    output_path: str,
    *,
    layer: int = ALL_LAYERS,
    length_unit: float | None = None,
    dxf_version: str = "R2010",
    strict: bool = False,
) -> int:
    gds_path = Path(input_path)
    if not gds_path.exists():
        print(f"error: file not found: {gds_path}", file=sys.stderr)
        return 2

    try:
        result = to_dxf(
            str(gds_path),
            output_path,
            layer=layer,
            length_unit=length_unit,
            dxf_version=dxf_version,
            strict=strict,
        )
    except Exception as exc:
        print(f"error: failed to convert GDSII to DXF: {exc}", file=sys.stderr)
        return 2

    print(f"input: {result.source_path}")
    print(f"output: {result.output_path}")
    print(f"total_entities: {result.total_entities}")
    print(f"written_entities: {result.written_entities}")
    print(f"skipped_entities: {result.skipped_entities}")
    for number, count in result.skipped_by_layer.items():
        print(f"skipped[{number}]: {count}")
    return 0


def _run_gmsh(
    path: str,
    *,
    file_base: str | None = None,
    ports: bool = False,
    metal_layers: list[int] | None = None,
    separate_layers: bool = False,
    length_unit: float | None = None,
) -> int:
    gds_path = Path(path)
    if not gds_path.exists():
        print(f"error: file not found: {gds_path}", file=sys.stderr)
        return 2

    try:
        result = to_gmsh(
            str(gds_path),
            file_base or gds_path.stem,
            ports=ports,
            metal_layers=metal_layers,
            separate_layers=separate_layers,
            length_unit=length_unit,
        )
    except Exception as exc:
        print(f"error: failed to write GMSH files: {exc}", file=sys.stderr)
        return 2

    print(f"input: {result.source_path}")
    for geo_file in result.geo_files:
        print(f"geo: {geo_file}")
    if result.pp_file:
        print(f"pp: {result.pp_file}")
    if result.ports_file:
        print(f"ports: {result.ports_file}")
        print(f"port_definitions: {result.ports}")
        print(f"port_terminals: {result.port_terminals}")
    print(f"polygons: {result.polygons_written}")
    print(f"texts: {result.texts_written}")
    for number in result.skipped_layers:
        print(f"skipped_layer: {number}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    if args.command == "inspect":
        return _run_inspect(args.path, length_unit=args.length_unit)
    if args.command == "dump":
        return _run_dump(args.path)
    if args.command == "describe":
        return _run_describe(args.path, output=args.output)
    if args.command == "convert":
        return _run_convert(
            args.input_path,
            args.output_path,
            layer=args.layer,
            length_unit=args.length_unit,
            dxf_version=args.dxf_version,
            strict=bool(args.strict),
        )
    if args.command == "gmsh":
        return _run_gmsh(
            args.path,
            file_base=args.file_base,
            ports=bool(args.ports),
            metal_layers=args.metal_layer,
            separate_layers=bool(args.separate_layers),
            length_unit=args.length_unit,
        )

    parser.print_help()
    return 0
