from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Iterator, NamedTuple, Union

from .errors import GdsIOError, MalformedRecord, TruncatedFile, TruncatedPayload, TypeMismatch


class DataType(IntEnum):
    NO_DATA = 0x00
    BITARRAY = 0x01
    INTEGER_2 = 0x02
    INTEGER_4 = 0x03
    REAL_4 = 0x04
    REAL_8 = 0x05
    STRING = 0x06


class RecordSpec(NamedTuple):
    name: str
    dtype: DataType


_N = DataType.NO_DATA
_B = DataType.BITARRAY
_I2 = DataType.INTEGER_2
_I4 = DataType.INTEGER_4
_R8 = DataType.REAL_8
_S = DataType.STRING

RECORD_TYPES: tuple[RecordSpec, ...] = (
    RecordSpec("HEADER", _I2),  # 0x00
    RecordSpec("BGNLIB", _I2),  # 0x01
    RecordSpec("LIBNAME", _S),  # 0x02
    RecordSpec("UNITS", _R8),  # 0x03
    RecordSpec("ENDLIB", _N),  # 0x04
    RecordSpec("BGNSTR", _I2),  # 0x05
    RecordSpec("STRNAME", _S),  # 0x06
    RecordSpec("ENDSTR", _N),  # 0x07
    RecordSpec("BOUNDARY", _N),  # 0x08
    RecordSpec("PATH", _N),  # 0x09
    RecordSpec("SREF", _N),  # 0x0a
    RecordSpec("AREF", _N),  # 0x0b
    RecordSpec("TEXT", _N),  # 0x0c
    RecordSpec("LAYER", _I2),  # 0x0d
    RecordSpec("DATATYPE", _I2),  # 0x0e
    RecordSpec("WIDTH", _I4),  # 0x0f
    RecordSpec("XY", _I4),  # 0x10
    RecordSpec("ENDEL", _N),  # 0x11
    RecordSpec("SNAME", _S),  # 0x12
    RecordSpec("COLROW", _I2),  # 0x13
    RecordSpec("TEXTNODE", _N),  # 0x14
    RecordSpec("NODE", _N),  # 0x15
    RecordSpec("TEXTTYPE", _I2),  # 0x16
    RecordSpec("PRESENTATION", _B),  # 0x17
    RecordSpec("UNUSED", _N),  # 0x18
    RecordSpec("STRING", _S),  # 0x19
    RecordSpec("STRANS", _B),  # 0x1a
    RecordSpec("MAG", _R8),  # 0x1b
    RecordSpec("ANGLE", _R8),  # 0x1c
    RecordSpec("UINTEGER", _N),  # 0x1d
    RecordSpec("USTRING", _N),  # 0x1e
    RecordSpec("REFLIBS", _S),  # 0x1f
    RecordSpec("FONTS", _S),  # 0x20
    RecordSpec("PATHTYPE", _I2),  # 0x21
    RecordSpec("GENERATIONS", _I2),  # 0x22
    RecordSpec("ATTRTABLE", _S),  # 0x23
    RecordSpec("STYPTABLE", _S),  # 0x24
    RecordSpec("STRTYPE", _I2),  # 0x25
    RecordSpec("ELFLAGS", _B),  # 0x26
    RecordSpec("ELKEY", _I4),  # 0x27
    RecordSpec("LINKTYPE", _N),  # 0x28
    RecordSpec("LINKKEYS", _N),  # 0x29
    RecordSpec("NODETYPE", _I2),  # 0x2a
    RecordSpec("PROPATTR", _I2),  # 0x2b
    RecordSpec("PROPVALUE", _S),  # 0x2c
    RecordSpec("BOX", _N),  # 0x2d
    RecordSpec("BOXTYPE", _I2),  # 0x2e
    RecordSpec("PLEX", _I4),  # 0x2f
    RecordSpec("BGNEXTN", _I4),  # 0x30
    RecordSpec("ENDEXTN", _I4),  # 0x31
    RecordSpec("TAPENUM", _I2),  # 0x32
    RecordSpec("TAPECODE", _I2),  # 0x33
    RecordSpec("STRCLASS", _B),  # 0x34
    RecordSpec("RESERVED", _I4),  # 0x35
    RecordSpec("FORMAT", _I2),  # 0x36
    RecordSpec("MASK", _S),  # 0x37
    RecordSpec("ENDMASKS", _N),  # 0x38
    RecordSpec("LIBDIRSIZE", _I2),  # 0x39
    RecordSpec("SRFNAME", _S),  # 0x3a
    RecordSpec("LIBSECUR", _I2),  # 0x3b
)

MAX_RECORD_TYPE = len(RECORD_TYPES) - 1

HEADER = 0x00
BGNLIB = 0x01
LIBNAME = 0x02
UNITS = 0x03
ENDLIB = 0x04
BGNSTR = 0x05
STRNAME = 0x06
ENDSTR = 0x07
BOUNDARY = 0x08
PATH = 0x09
SREF = 0x0A
AREF = 0x0B
TEXT = 0x0C
LAYER = 0x0D
DATATYPE = 0x0E
WIDTH = 0x0F
XY = 0x10
ENDEL = 0x11
SNAME = 0x12
COLROW = 0x13
NODE = 0x15
TEXTTYPE = 0x16
STRING = 0x19
STRANS = 0x1A
MAG = 0x1B
ANGLE = 0x1C
PATHTYPE = 0x21
NODETYPE = 0x2A
PROPATTR = 0x2B
PROPVALUE = 0x2C
BOX = 0x2D
BOXTYPE = 0x2E

MAX_STRING_LENGTH = 32

# STRANS flag positions, numbered from the most significant bit.
STRANS_REFLECTION = 0
STRANS_ABSOLUTE_MAG = 13
STRANS_ABSOLUTE_ANGLE = 14

RecordValue = Union[None, tuple[bool, ...], tuple[int, ...], tuple[float, ...], str]


@dataclass(frozen=True)
class Record:
    code: int
    dtype: DataType
    value: RecordValue

    @property
    def name(self) -> str:
        return RECORD_TYPES[self.code].name

    @property
    def count(self) -> int:
        if self.value is None:
            return 0
        if isinstance(self.value, str):
            return 1
        if self.dtype == DataType.BITARRAY:
            return 1
        return len(self.value)


def is_allowed_char(char: str) -> bool:
    lowered = char.lower()
    return ("a" <= lowered <= "z") or lowered in "$_?"


def make_gds_string(payload: bytes) -> str:
    if not payload:
        return ""
    text = payload[:MAX_STRING_LENGTH].split(b"\x00", 1)[0].decode("latin-1")
    end = len(text)
    while end > 0 and not is_allowed_char(text[end - 1]):
        end -= 1
    return "".join(ch if is_allowed_char(ch) else "_" for ch in text[:end])


def decode_real(data: bytes) -> float:
    """Decode one excess-64, base-16 GDSII real (4 or 8 bytes)."""
    if len(data) not in (4, 8):
        raise MalformedRecord(f"invalid real width: {len(data)} bytes")
    sign = -1.0 if data[0] & 0x80 else 1.0
    exponent = (data[0] & 0x7F) - 64
    mantissa_bits = 8 * (len(data) - 1)
    mantissa = int.from_bytes(data[1:], "big")
    return sign * math.ldexp(mantissa, 4 * exponent - mantissa_bits)


def decode_bits(data: bytes) -> tuple[bool, ...]:
    if len(data) < 2:
        raise MalformedRecord("bit array payload shorter than 2 bytes")
    word = int.from_bytes(data[:2], "big")
    return tuple(bool(word & (0x8000 >> n)) for n in range(16))


def decode_payload(dtype: DataType, payload: bytes) -> RecordValue:
    if dtype == DataType.NO_DATA:
        return None
    if dtype == DataType.BITARRAY:
        return decode_bits(payload)
    if dtype == DataType.STRING:
        return make_gds_string(payload)
    if dtype in (DataType.INTEGER_2, DataType.INTEGER_4):
        width = 2 if dtype == DataType.INTEGER_2 else 4
        count = len(payload) // width
        fmt = ">%d%s" % (count, "h" if width == 2 else "i")
        return struct.unpack(fmt, payload[: count * width])
    width = 4 if dtype == DataType.REAL_4 else 8
    count = len(payload) // width
    return tuple(decode_real(payload[i * width : (i + 1) * width]) for i in range(count))


def read_record(stream: BinaryIO) -> Record:
    header = stream.read(4)
    if not header:
        raise TruncatedFile("unexpected end of file")
    if len(header) < 4:
        raise MalformedRecord("unexpected end of file inside record header")

    length, code, dtype_code = struct.unpack(">HBB", header)
    if code > MAX_RECORD_TYPE:
        raise MalformedRecord(f"unknown record type 0x{code:02X}")
    entry = RECORD_TYPES[code]
    if dtype_code != entry.dtype:
        raise TypeMismatch(
            f"{entry.name}: data type disagrees with record type "
            f"({dtype_code} != {int(entry.dtype)})"
        )
    if length < 4:
        raise MalformedRecord(f"{entry.name}: invalid record length {length}")

    payload_size = length - 4
    payload = stream.read(payload_size) if payload_size else b""
    if len(payload) != payload_size:
        raise TruncatedPayload(
            f"{entry.name}: expected {payload_size} payload bytes, got {len(payload)}"
        )
    return Record(code=code, dtype=entry.dtype, value=decode_payload(entry.dtype, payload))


def iter_records(stream: BinaryIO) -> Iterator[Record]:
    """Yield records up to and including ENDLIB."""
    while True:
        record = read_record(stream)
        yield record
        if record.code == ENDLIB:
            return


def describe_record(record: Record, *, verbose: bool = True) -> str:
    text = f"{record.name:>12}"
    if record.count > 0:
        text += f" ( {record.count}) "
    if not verbose:
        return text

    text += " = "
    value = record.value
    if record.dtype == DataType.BITARRAY:
        text += "".join("1" if bit else "0" for bit in value)
    elif record.dtype == DataType.STRING:
        text += value
    elif value is not None:
        text += "".join(f"{item:g} " if isinstance(item, float) else f"{item} " for item in value)
    return text


def open_gds(path: str | Path) -> BinaryIO:
    try:
        return open(path, "rb")
    except OSError as exc:
        raise GdsIOError(f"could not open {path}: {exc.strerror or exc}") from exc


def dump_records(path: str | Path) -> Iterator[str]:
    with open_gds(path) as stream:
        for index, record in enumerate(iter_records(stream)):
            yield f"Record {index}: {describe_record(record)}"
