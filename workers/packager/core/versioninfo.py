"""
VS_VERSIONINFO parsing and serialization.

Every node in the version resource shares one shape::

    WORD  wLength        node size in bytes, without trailing padding
    WORD  wValueLength   value size (WCHARs for text, bytes for binary)
    WORD  wType          1 = text, 0 = binary
    WCHAR szKey[]        NUL-terminated UTF-16LE key
    padding              to a 32-bit boundary
    Value
    padding              to a 32-bit boundary
    Children

The tree is kept generic; only the StringFileInfo string table is
interpreted.
"""
import logging
import struct
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from packager.exceptions import ResourceEditError

logger = logging.getLogger(__name__)

NODE_HEADER = struct.Struct("<HHH")
TEXT = 1
BINARY = 0

# U.S. English, Unicode
DEFAULT_LANG = 0x0409
DEFAULT_CODEPAGE = 1200


def _align4(n: int) -> int:
    return (n + 3) & ~3


@dataclass
class VersionNode:
    key: str
    value: Union[bytes, str] = b""
    value_type: int = BINARY
    children: list["VersionNode"] = field(default_factory=list)

    def child(self, key: str) -> Optional["VersionNode"]:
        for node in self.children:
            if node.key.lower() == key.lower():
                return node
        return None


def _read_key(data: bytes, pos: int, end: int) -> tuple[str, int]:
    stop = pos
    while stop + 1 < end and data[stop:stop + 2] != b"\x00\x00":
        stop += 2
    if stop + 1 >= end:
        raise ResourceEditError("Version resource key is not terminated")
    return data[pos:stop].decode("utf-16-le"), stop + 2


def parse_node(data: bytes, offset: int = 0) -> tuple[VersionNode, int]:
    """Parse the node at *offset*; return it with its unpadded end offset."""
    if offset + NODE_HEADER.size > len(data):
        raise ResourceEditError("Version resource truncated")
    length, value_length, value_type = NODE_HEADER.unpack_from(data, offset)
    end = offset + length
    if length < NODE_HEADER.size or end > len(data):
        raise ResourceEditError(f"Invalid version node length {length} at {offset}")

    key, pos = _read_key(data, offset + NODE_HEADER.size, end)
    pos = _align4(pos)

    node = VersionNode(key=key, value_type=value_type)
    if value_type == TEXT:
        value_end = min(pos + value_length * 2, end)
        node.value = data[pos:value_end].decode("utf-16-le", errors="replace").split("\x00", 1)[0]
    else:
        value_end = pos + value_length
        node.value = data[pos:value_end]
    pos = _align4(value_end)

    while pos < end:
        child, child_end = parse_node(data, pos)
        node.children.append(child)
        pos = _align4(child_end)
    return node, end


def serialize_node(node: VersionNode) -> bytes:
    body = bytearray(NODE_HEADER.size)
    body += node.key.encode("utf-16-le") + b"\x00\x00"
    body += b"\x00" * (_align4(len(body)) - len(body))

    if node.value_type == TEXT:
        text = node.value if isinstance(node.value, str) else node.value.decode("utf-16-le")
        value = text.encode("utf-16-le") + b"\x00\x00" if text or not node.children else b""
        value_length = len(value) // 2
    else:
        value = bytes(node.value)
        value_length = len(value)
    body += value

    for child in node.children:
        body += b"\x00" * (_align4(len(body)) - len(body))
        body += serialize_node(child)

    NODE_HEADER.pack_into(body, 0, len(body), value_length, node.value_type)
    return bytes(body)


def parse_version_info(data: bytes) -> VersionNode:
    root, _ = parse_node(data, 0)
    if root.key != "VS_VERSION_INFO":
        raise ResourceEditError(f"Unexpected version resource root: {root.key!r}")
    return root


def table_key(lang: int = DEFAULT_LANG, codepage: int = DEFAULT_CODEPAGE) -> str:
    return f"{lang:04X}{codepage:04X}"


def set_string_values(
    root: VersionNode,
    values: Mapping[str, str],
    lang: int = DEFAULT_LANG,
    codepage: int = DEFAULT_CODEPAGE,
) -> None:
    """
    Set *values* in the StringFileInfo table for ``(lang, codepage)``.

    Missing StringFileInfo / table nodes are created, and the pair is
    added to VarFileInfo\\Translation if it is not listed yet.
    """
    sfi = root.child("StringFileInfo")
    if sfi is None:
        sfi = VersionNode(key="StringFileInfo", value_type=TEXT, value="")
        root.children.insert(0, sfi)

    key = table_key(lang, codepage)
    table = sfi.child(key)
    if table is None:
        table = VersionNode(key=key, value_type=TEXT, value="")
        sfi.children.append(table)

    for name, text in values.items():
        entry = table.child(name)
        if entry is None:
            table.children.append(VersionNode(key=name, value=text, value_type=TEXT))
        else:
            entry.value = text
            entry.value_type = TEXT

    _ensure_translation(root, lang, codepage)


def _ensure_translation(root: VersionNode, lang: int, codepage: int) -> None:
    vfi = root.child("VarFileInfo")
    if vfi is None:
        vfi = VersionNode(key="VarFileInfo", value_type=TEXT, value="")
        root.children.append(vfi)
    translation = vfi.child("Translation")
    if translation is None:
        translation = VersionNode(key="Translation", value_type=BINARY, value=b"")
        vfi.children.append(translation)

    pair = struct.pack("<HH", lang, codepage)
    raw = bytes(translation.value)
    pairs = [raw[i:i + 4] for i in range(0, len(raw) - len(raw) % 4, 4)]
    if pair not in pairs:
        translation.value = raw + pair


def string_values(
    root: VersionNode,
    lang: int = DEFAULT_LANG,
    codepage: int = DEFAULT_CODEPAGE,
) -> dict[str, str]:
    sfi = root.child("StringFileInfo")
    table = sfi.child(table_key(lang, codepage)) if sfi else None
    if table is None:
        return {}
    return {node.key: str(node.value) for node in table.children}
