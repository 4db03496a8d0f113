"""
ICO container synthesis.

Layout::

    ICONDIR      6 bytes   reserved=0, type=1, count=N
    ICONDIRENTRY 16 bytes  × N
    payloads               concatenated in entry order

Every payload is a raw PNG, so each entry's length field is the PNG
length.  A dimension of 256 is stored as the byte 0.
"""
import logging
import struct
from dataclasses import dataclass
from typing import Sequence

from PIL import Image

from packager.core.icons import png_bytes
from packager.exceptions import IconGenerationError

logger = logging.getLogger(__name__)

ICO_SIZES = (16, 32, 48, 64, 128, 256)

HEADER = struct.Struct("<HHH")
ENTRY = struct.Struct("<BBBBHHII")


@dataclass(frozen=True)
class IcoEntry:
    width: int
    height: int
    color_count: int
    planes: int
    bit_count: int
    data: bytes


def _dim_byte(size: int) -> int:
    if not 1 <= size <= 256:
        raise IconGenerationError(f"ICO dimension out of range: {size}")
    return 0 if size == 256 else size


def build_ico(canonical: Image.Image, sizes: Sequence[int] = ICO_SIZES) -> bytes:
    """Render *canonical* at each size and pack the results into an ICO."""
    payloads = [
        (size, png_bytes(canonical.resize((size, size), Image.LANCZOS)))
        for size in sizes
    ]

    offset = HEADER.size + ENTRY.size * len(payloads)
    out = bytearray(HEADER.pack(0, 1, len(payloads)))
    for size, data in payloads:
        dim = _dim_byte(size)
        out += ENTRY.pack(dim, dim, 0, 0, 1, 32, len(data), offset)
        offset += len(data)
    for _, data in payloads:
        out += data

    logger.debug("Built ICO with %s images (%s bytes)", len(payloads), len(out))
    return bytes(out)


def parse_ico(data: bytes) -> list[IcoEntry]:
    """Split an ICO into its images.

    Raises:
        IconGenerationError: If the header or a directory entry is malformed.
    """
    if len(data) < HEADER.size:
        raise IconGenerationError("ICO too short")
    reserved, kind, count = HEADER.unpack_from(data, 0)
    if reserved != 0 or kind != 1:
        raise IconGenerationError("Not an ICO file")

    entries = []
    for i in range(count):
        pos = HEADER.size + i * ENTRY.size
        if pos + ENTRY.size > len(data):
            raise IconGenerationError("ICO directory truncated")
        w, h, colors, _reserved, planes, bits, length, offset = ENTRY.unpack_from(data, pos)
        if offset + length > len(data):
            raise IconGenerationError(f"ICO entry {i} points past end of file")
        entries.append(IcoEntry(
            width=w or 256,
            height=h or 256,
            color_count=colors,
            planes=planes,
            bit_count=bits,
            data=data[offset:offset + length],
        ))
    return entries
