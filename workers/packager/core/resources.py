"""
Resource editor — rewrite the resource section of a PE executable.

pefile parses the existing resource tree into a flat table keyed by
``(type, name, lang)``.  The table is edited in memory and serialized
into a fresh section appended to the image; the resource data
directory is repointed at it and the checksum regenerated.

Section layout produced by :func:`build_resource_section`::

    directory tables   root → type → name → language
    data entries       16 bytes each
    name strings       WORD length + UTF-16LE
    payloads           8-byte aligned
"""
import logging
import struct
from dataclasses import dataclass
from typing import Iterator, Optional, Union

import pefile

from packager.core.ico import IcoEntry, parse_ico
from packager.core.versioninfo import (
    DEFAULT_CODEPAGE,
    DEFAULT_LANG,
    parse_version_info,
    serialize_node,
    set_string_values,
)
from packager.exceptions import ResourceEditError

logger = logging.getLogger(__name__)

RT_ICON = 3
RT_GROUP_ICON = 14
RT_VERSION = 16

DIR_RESOURCE = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"]
DIR_SECURITY = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_SECURITY"]

SECTION_NAME = b".rsrc2"
SECTION_HEADER_SIZE = 40
SECTION_FLAGS = 0x40000040  # INITIALIZED_DATA | MEM_READ

ResourceId = Union[int, str]

DIRECTORY = struct.Struct("<IIHHHH")
DIRECTORY_ENTRY = struct.Struct("<II")
DATA_ENTRY = struct.Struct("<IIII")
GRPICONDIR = struct.Struct("<HHH")
GRPICONDIRENTRY = struct.Struct("<BBBBHHIH")


def _align(n: int, alignment: int) -> int:
    return (n + alignment - 1) // alignment * alignment if alignment else n


@dataclass
class ResourceData:
    data: bytes
    codepage: int = 0


class ResourceTable:
    """Flat, ordered view of a resource tree."""

    def __init__(self):
        self._entries: dict[tuple[ResourceId, ResourceId, int], ResourceData] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries

    def items(self) -> Iterator[tuple[tuple[ResourceId, ResourceId, int], ResourceData]]:
        return iter(list(self._entries.items()))

    def get(self, rtype: ResourceId, name: ResourceId, lang: int) -> Optional[ResourceData]:
        return self._entries.get((rtype, name, lang))

    def set(self, rtype: ResourceId, name: ResourceId, lang: int, data: bytes, codepage: int = 0) -> None:
        self._entries[(rtype, name, lang)] = ResourceData(bytes(data), codepage)

    def remove_type(self, rtype: ResourceId) -> int:
        keys = [k for k in self._entries if k[0] == rtype]
        for k in keys:
            del self._entries[k]
        return len(keys)

    def of_type(self, rtype: ResourceId) -> list[tuple[tuple[ResourceId, ResourceId, int], ResourceData]]:
        return [(k, v) for k, v in self._entries.items() if k[0] == rtype]

    def copy(self) -> "ResourceTable":
        clone = ResourceTable()
        clone._entries = dict(self._entries)
        return clone


# ── Reading ──────────────────────────────────────────────────────────────────

def _entry_id(entry) -> ResourceId:
    if entry.name is not None:
        return str(entry.name)
    return entry.id


def load_pe(data: bytes) -> pefile.PE:
    try:
        pe = pefile.PE(data=data, fast_load=True)
        pe.parse_data_directories(directories=[DIR_RESOURCE])
    except pefile.PEFormatError as e:
        raise ResourceEditError(f"Not a valid PE executable: {e}") from e
    return pe


def read_resources(pe: pefile.PE) -> ResourceTable:
    """Flatten the parsed resource directory of *pe*."""
    table = ResourceTable()
    root = getattr(pe, "DIRECTORY_ENTRY_RESOURCE", None)
    if root is None:
        return table

    for type_entry in root.entries:
        if not hasattr(type_entry, "directory"):
            continue
        rtype = _entry_id(type_entry)
        for name_entry in type_entry.directory.entries:
            if not hasattr(name_entry, "directory"):
                continue
            name = _entry_id(name_entry)
            for lang_entry in name_entry.directory.entries:
                struct_ = lang_entry.data.struct
                data = pe.get_data(struct_.OffsetToData, struct_.Size)
                table.set(rtype, name, lang_entry.id, data, struct_.CodePage)
    return table


# ── Writing ──────────────────────────────────────────────────────────────────

def _sort_ids(ids) -> list[ResourceId]:
    named = sorted((i for i in ids if isinstance(i, str)), key=str.upper)
    numbered = sorted(i for i in ids if isinstance(i, int))
    return named + numbered


def build_resource_section(table: ResourceTable, base_rva: int) -> bytes:
    """Serialize *table* as a resource section mapped at *base_rva*."""
    tree: dict[ResourceId, dict[ResourceId, dict[int, ResourceData]]] = {}
    for (rtype, name, lang), res in table.items():
        tree.setdefault(rtype, {}).setdefault(name, {})[lang] = res

    def dir_size(count: int) -> int:
        return DIRECTORY.size + DIRECTORY_ENTRY.size * count

    # ── offsets ──
    types = _sort_ids(tree)
    offset = dir_size(len(types))
    name_dir_off: dict[ResourceId, int] = {}
    for rtype in types:
        name_dir_off[rtype] = offset
        offset += dir_size(len(tree[rtype]))

    lang_dir_off: dict[tuple, int] = {}
    for rtype in types:
        for name in _sort_ids(tree[rtype]):
            lang_dir_off[(rtype, name)] = offset
            offset += dir_size(len(tree[rtype][name]))

    leaves: list[tuple[ResourceId, ResourceId, int]] = [
        (rtype, name, lang)
        for rtype in types
        for name in _sort_ids(tree[rtype])
        for lang in sorted(tree[rtype][name])
    ]
    data_entry_off = {}
    for leaf in leaves:
        data_entry_off[leaf] = offset
        offset += DATA_ENTRY.size

    string_off: dict[str, int] = {}
    for rid in [*types, *(n for t in types for n in tree[t])]:
        if isinstance(rid, str) and rid not in string_off:
            string_off[rid] = offset
            offset += 2 + len(rid.encode("utf-16-le"))

    payload_off = {}
    for leaf in leaves:
        offset = _align(offset, 8)
        payload_off[leaf] = offset
        offset += len(tree[leaf[0]][leaf[1]][leaf[2]].data)

    # ── pack ──
    out = bytearray(offset)

    def write_dir(at: int, ids: list[ResourceId], target) -> None:
        named = sum(1 for i in ids if isinstance(i, str))
        DIRECTORY.pack_into(out, at, 0, 0, 0, 0, named, len(ids) - named)
        for i, rid in enumerate(ids):
            name_field = (0x80000000 | string_off[rid]) if isinstance(rid, str) else rid
            DIRECTORY_ENTRY.pack_into(out, at + DIRECTORY.size + i * DIRECTORY_ENTRY.size, name_field, target(rid))

    write_dir(0, types, lambda t: 0x80000000 | name_dir_off[t])
    for rtype in types:
        names = _sort_ids(tree[rtype])
        write_dir(name_dir_off[rtype], names, lambda n, t=rtype: 0x80000000 | lang_dir_off[(t, n)])
        for name in names:
            langs = sorted(tree[rtype][name])
            write_dir(lang_dir_off[(rtype, name)], langs, lambda l, t=rtype, n=name: data_entry_off[(t, n, l)])

    for leaf in leaves:
        res = tree[leaf[0]][leaf[1]][leaf[2]]
        DATA_ENTRY.pack_into(out, data_entry_off[leaf], base_rva + payload_off[leaf], len(res.data), res.codepage, 0)
        out[payload_off[leaf]:payload_off[leaf] + len(res.data)] = res.data

    for text, at in string_off.items():
        encoded = text.encode("utf-16-le")
        struct.pack_into("<H", out, at, len(encoded) // 2)
        out[at + 2:at + 2 + len(encoded)] = encoded

    return bytes(out)


def write_resources(data: bytes, pe: pefile.PE, table: ResourceTable) -> bytes:
    """
    Return a copy of the image whose resource directory is *table*.

    The new section is appended after the last section.  An attached
    Authenticode certificate is dropped because the edit invalidates it;
    any other overlay is kept after the new section.
    """
    sections = sorted(pe.sections, key=lambda s: s.VirtualAddress)
    if not sections:
        raise ResourceEditError("Executable has no sections")

    opt = pe.OPTIONAL_HEADER
    file_align = opt.FileAlignment or 0x200
    sect_align = opt.SectionAlignment or 0x1000

    header_off = pe.sections[0].get_file_offset() + SECTION_HEADER_SIZE * len(pe.sections)
    first_raw = min((s.PointerToRawData for s in sections if s.SizeOfRawData), default=opt.SizeOfHeaders)
    if header_off + SECTION_HEADER_SIZE > min(first_raw, opt.SizeOfHeaders):
        raise ResourceEditError("No room in the PE header for another section")

    last = sections[-1]
    rva = _align(last.VirtualAddress + max(last.Misc_VirtualSize, last.SizeOfRawData), sect_align)
    raw_end = max(s.PointerToRawData + s.SizeOfRawData for s in sections)
    raw_ptr = _align(raw_end, file_align)

    blob = build_resource_section(table, rva)
    raw_size = _align(len(blob), file_align)

    security = opt.DATA_DIRECTORY[DIR_SECURITY]
    cert = (security.VirtualAddress, security.Size) if security.Size else None

    opt.DATA_DIRECTORY[DIR_RESOURCE].VirtualAddress = rva
    opt.DATA_DIRECTORY[DIR_RESOURCE].Size = len(blob)
    security.VirtualAddress = 0
    security.Size = 0
    opt.SizeOfImage = _align(rva + len(blob), sect_align)
    pe.FILE_HEADER.NumberOfSections += 1

    image = bytearray(pe.write())
    header = struct.pack(
        "<8sIIIIIIHHI",
        SECTION_NAME, len(blob), rva, raw_size, raw_ptr, 0, 0, 0, 0, SECTION_FLAGS,
    )
    image[header_off:header_off + SECTION_HEADER_SIZE] = header

    overlay = bytes(image[raw_end:])
    if cert and cert[0] >= raw_end:
        start = cert[0] - raw_end
        overlay = overlay[:start] + overlay[start + cert[1]:]

    out = bytes(image[:raw_end]).ljust(raw_ptr, b"\x00") + blob.ljust(raw_size, b"\x00") + overlay

    final = pefile.PE(data=out, fast_load=True)
    final.OPTIONAL_HEADER.CheckSum = final.generate_checksum()
    return bytes(final.write())


# ── Editing operations ───────────────────────────────────────────────────────

def update_version_strings(
    table: ResourceTable,
    values: dict[str, str],
    lang: int = DEFAULT_LANG,
    codepage: int = DEFAULT_CODEPAGE,
) -> bool:
    """Rewrite the string table of every VS_VERSIONINFO resource.

    Returns False if the executable carries no version resource.
    """
    entries = table.of_type(RT_VERSION)
    if not entries:
        logger.info("No version resource present; leaving version info untouched")
        return False
    for (rtype, name, res_lang), res in entries:
        root = parse_version_info(res.data)
        set_string_values(root, values, lang, codepage)
        table.set(rtype, name, res_lang, serialize_node(root), res.codepage)
    return True


def group_icon_directory(icons: list[IcoEntry], first_id: int = 1) -> bytes:
    """GRPICONDIR for *icons* stored as RT_ICON ids ``first_id..``."""
    out = bytearray(GRPICONDIR.pack(0, 1, len(icons)))
    for i, icon in enumerate(icons):
        out += GRPICONDIRENTRY.pack(
            0 if icon.width >= 256 else icon.width,
            0 if icon.height >= 256 else icon.height,
            icon.color_count,
            0,
            icon.planes,
            icon.bit_count,
            len(icon.data),
            first_id + i,
        )
    return bytes(out)


def replace_icon_group(
    table: ResourceTable,
    ico: bytes,
    group_id: int = 1,
    lang: int = DEFAULT_LANG,
) -> None:
    """Drop every RT_ICON / RT_GROUP_ICON and install *ico* as group *group_id*."""
    icons = parse_ico(ico)
    if not icons:
        raise ResourceEditError("ICO contains no images")
    table.remove_type(RT_GROUP_ICON)
    table.remove_type(RT_ICON)
    for i, icon in enumerate(icons):
        table.set(RT_ICON, 1 + i, lang, icon.data)
    table.set(RT_GROUP_ICON, group_id, lang, group_icon_directory(icons))


def add_custom_resource(
    table: ResourceTable,
    type_name: str,
    data: bytes,
    resource_id: int = 1,
    lang: int = DEFAULT_LANG,
    codepage: int = DEFAULT_CODEPAGE,
) -> None:
    table.set(type_name.upper(), resource_id, lang, data, codepage)
