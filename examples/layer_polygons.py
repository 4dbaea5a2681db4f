from __future__ import annotations

import sys

import ezgds


def main(path: str, layer: int, label: str | None = None) -> None:
    doc = ezgds.read(path)
    print(f"library: {doc.name}  layers: {doc.layers}")

    for polygon in doc.polygons(layer, label):
        xs = [x for x, _ in polygon.points]
        ys = [y for _, y in polygon.points]
        print(f"{polygon.label}: x=[{min(xs):g}, {max(xs):g}] y=[{min(ys):g}, {max(ys):g}]")

    for text in doc.texts(layer):
        print(f"text {text.text!r} at {text.anchor}")


if __name__ == "__main__":
    main(sys.argv[1], int(sys.argv[2]), sys.argv[3] if len(sys.argv) > 3 else None)
