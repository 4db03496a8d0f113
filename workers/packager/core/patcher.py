"""
Config patcher — targeted rewrites of structured text artifacts.

Each helper changes only the fields it is asked to change and leaves the
rest of the file as it was.  Required files raise ``ConfigPatchError``
when missing or unparseable; optional files are a no-op when absent.
"""
import json
import logging
import plistlib
import re
from pathlib import Path
from typing import Any, Mapping, Optional
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import quoteattr

from packager.exceptions import ConfigPatchError

logger = logging.getLogger(__name__)


def _rel(path: Path, root: Optional[Path]) -> str:
    if root is None:
        return str(path)
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def _read_text(path: Path, required: bool, root: Optional[Path]) -> Optional[str]:
    if not path.is_file():
        if required:
            raise ConfigPatchError(_rel(path, root), f"Required config file not found: {_rel(path, root)}")
        logger.info("Optional file %s not found, skipping", _rel(path, root))
        return None
    return path.read_text(encoding="utf-8")


# ── JSON ─────────────────────────────────────────────────────────────────────

def set_nested(data: dict, dotted_key: str, value: Any) -> None:
    """Set ``data["a"]["b"] = value`` for ``"a.b"``, creating dicts as needed."""
    *parents, leaf = dotted_key.split(".")
    node = data
    for key in parents:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[leaf] = value


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def patch_json_file(
    path: Path,
    updates: Mapping[str, Any],
    required: bool = True,
    root: Optional[Path] = None,
) -> bool:
    """
    Apply dotted-key *updates* to a JSON document and re-serialize it.

    Returns True if the file was written, False if an optional file
    was absent.
    """
    text = _read_text(path, required, root)
    if text is None:
        return False
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigPatchError(_rel(path, root), f"Invalid JSON in {_rel(path, root)}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigPatchError(_rel(path, root), f"Expected a JSON object in {_rel(path, root)}")

    for key, value in updates.items():
        set_nested(data, key, value)

    path.write_text(dump_json(data), encoding="utf-8")
    return True


def patch_string_resource(
    path: Path,
    names: Mapping[str, str],
    required: bool = False,
    root: Optional[Path] = None,
) -> bool:
    """Update ``{"string": [{"name": ..., "value": ...}]}`` resource entries."""
    text = _read_text(path, required, root)
    if text is None:
        return False
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigPatchError(_rel(path, root), f"Invalid JSON in {_rel(path, root)}: {e}") from e

    for entry in data.get("string", []) if isinstance(data, dict) else []:
        if isinstance(entry, dict) and entry.get("name") in names:
            entry["value"] = names[entry["name"]]

    path.write_text(dump_json(data), encoding="utf-8")
    return True


# ── XML manifest ─────────────────────────────────────────────────────────────

def replace_xml_attribute(text: str, attribute: str, value: str) -> str:
    """Replace the first ``attribute="..."``; unchanged if it does not occur.

    *value* is escaped, so markup characters cannot break the document.
    """
    pattern = re.compile(re.escape(attribute) + r'="[^"]*"')
    quoted = quoteattr(value, {'"': "&quot;"})
    return pattern.sub(lambda _m: f"{attribute}={quoted}", text, count=1)


def patch_xml_attribute(
    path: Path,
    attribute: str,
    value: str,
    required: bool = False,
    root: Optional[Path] = None,
) -> bool:
    text = _read_text(path, required, root)
    if text is None:
        return False
    path.write_text(replace_xml_attribute(text, attribute, value), encoding="utf-8")
    return True


# ── pbxproj ──────────────────────────────────────────────────────────────────

def replace_build_setting(
    text: str,
    key: str,
    value: str,
    value_pattern: str = r"[^;]+",
) -> str:
    """Replace every ``KEY = <value_pattern>;`` with ``KEY = value;``."""
    pattern = re.compile(rf"\b{re.escape(key)} = {value_pattern};")
    return pattern.sub(lambda _m: f"{key} = {value};", text)


def patch_pbxproj(
    path: Path,
    settings: Mapping[str, str],
    value_patterns: Optional[Mapping[str, str]] = None,
) -> None:
    """Apply :func:`replace_build_setting` for each key; unmatched keys are left alone."""
    text = path.read_text(encoding="utf-8")
    value_patterns = value_patterns or {}
    for key, value in settings.items():
        text = replace_build_setting(text, key, value, value_patterns.get(key, r"[^;]+"))
    path.write_text(text, encoding="utf-8")


# ── JSON5 ────────────────────────────────────────────────────────────────────

def replace_json5_value(text: str, key: str, value: Any) -> str:
    """
    Replace the first ``"key": <scalar>`` in a JSON5 document.

    Strings keep their quotes; numbers are written bare.  Comments and
    trailing commas elsewhere in the document are preserved.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        pattern = re.compile(rf'"{re.escape(key)}"\s*:\s*"[^"]*"')
        replacement = f'"{key}": {json.dumps(str(value), ensure_ascii=False)}'
    else:
        pattern = re.compile(rf'"{re.escape(key)}"\s*:\s*-?\d+(?:\.\d+)?')
        replacement = f'"{key}": {value}'
    return pattern.sub(lambda _m: replacement, text, count=1)


def patch_json5_file(
    path: Path,
    updates: Mapping[str, Any],
    required: bool = True,
    root: Optional[Path] = None,
) -> bool:
    text = _read_text(path, required, root)
    if text is None:
        return False
    for key, value in updates.items():
        text = replace_json5_value(text, key, value)
    path.write_text(text, encoding="utf-8")
    return True


# ── Property list ────────────────────────────────────────────────────────────

def patch_plist(
    path: Path,
    updates: Mapping[str, Any],
    only_existing: frozenset = frozenset(),
    required: bool = True,
    root: Optional[Path] = None,
) -> bool:
    """
    Set top-level keys in an XML or binary plist, keeping its format.

    Keys listed in *only_existing* are updated only if already present.
    """
    if not path.is_file():
        if required:
            raise ConfigPatchError(_rel(path, root), f"Required plist not found: {_rel(path, root)}")
        return False

    raw = path.read_bytes()
    fmt = plistlib.FMT_BINARY if raw.startswith(b"bplist") else plistlib.FMT_XML
    try:
        data = plistlib.loads(raw)
    except (plistlib.InvalidFileException, ValueError, ExpatError) as e:
        raise ConfigPatchError(_rel(path, root), f"Invalid plist {_rel(path, root)}: {e}") from e

    for key, value in updates.items():
        if key in only_existing and key not in data:
            continue
        data[key] = value

    path.write_bytes(plistlib.dumps(data, fmt=fmt))
    return True


# ── Policy text ──────────────────────────────────────────────────────────────

def write_privacy_policy(
    path: Path,
    text: Optional[str],
    legacy: tuple[Path, ...] = (),
) -> bool:
    """
    Write the privacy policy verbatim if provided.

    When *text* is None an existing file is left untouched.  *legacy*
    files superseded by the new one are removed after a write.
    """
    if text is None:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    for old in legacy:
        if old.is_file():
            old.unlink()
    return True
