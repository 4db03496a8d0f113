"""
ICNS container synthesis (PNG-based icon types).

Header:  b'icns' + uint32 BE total-file-size
Chunk:   type-code (4 chars) + uint32 BE (8 + png-size) + png-blob
"""
import logging
import struct
from typing import Sequence

from PIL import Image

from packager.core.icons import png_bytes

logger = logging.getLogger(__name__)

# (type_code, pixel_size) — ordered small→large.
ICNS_TYPES: list[tuple[str, int]] = [
    ("icp4", 16),
    ("icp5", 32),
    ("icp6", 64),
    ("ic07", 128),
    ("ic08", 256),
    ("ic09", 512),
    ("ic10", 1024),
]


def build_icns(
    canonical: Image.Image,
    types: Sequence[tuple[str, int]] = ICNS_TYPES,
) -> bytes:
    """
    Render *canonical* at each size and pack the results into an ICNS.

    A size that fails to render is logged and left out.
    """
    chunks: list[tuple[bytes, bytes]] = []
    for type_code, px in types:
        try:
            data = png_bytes(canonical.resize((px, px), Image.LANCZOS))
        except (OSError, ValueError) as e:
            logger.warning("Skipping ICNS size %s (%s): %s", px, type_code, e)
            continue
        chunks.append((type_code.encode("ascii"), data))

    total = 8 + sum(8 + len(data) for _, data in chunks)
    out = bytearray(b"icns")
    out += struct.pack(">I", total)
    for code, data in chunks:
        out += code
        out += struct.pack(">I", len(data) + 8)  # includes the 8-byte chunk header
        out += data
    return bytes(out)
