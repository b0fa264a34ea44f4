"""Shared helpers for the export and import pipelines."""

import copy
import json
import re
import secrets
from string import ascii_letters, digits
from typing import Any, Awaitable, Callable, Dict, Optional, Pattern

# src="..." / href="..." values that are not absolute http(s) URLs, with an optional ?query
RICH_TEXT_ASSET_PATTERN = re.compile(
    r'(src|href)="(?!https?://)([\w\-._~%!$&\'()*+,;=:@/]*(?:\?[^"#]*)?)"'
)

_ILLEGAL_RE = re.compile(r'[/?<>\\:*|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+$")
_WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_WINDOWS_TRAILING_RE = re.compile(r"[. ]+$")

_ID_ALPHABET = ascii_letters + digits


def sanitize_filename(value: str, replacement: str = "") -> str:
    """
    Make a string safe to use as a filename on any platform.

    Args:
        value: Proposed filename
        replacement: Text substituted for each illegal part

    Returns:
        Sanitized filename

    Raises:
        TypeError: If value is not a string
    """
    if not isinstance(value, str):
        raise TypeError("Input must be string")
    sanitized = _ILLEGAL_RE.sub(replacement, value)
    sanitized = _CONTROL_RE.sub(replacement, sanitized)
    sanitized = _RESERVED_RE.sub(replacement, sanitized)
    sanitized = _WINDOWS_RESERVED_RE.sub(replacement, sanitized)
    sanitized = _WINDOWS_TRAILING_RE.sub(replacement, sanitized)
    return sanitized


def sanitize_adventure_name(name: str) -> str:
    """
    Turn an adventure name into a storage directory name.

    Example:
        >>> sanitize_adventure_name("Lost Mine: Part 1")
        'Lost_Mine__Part_1'
    """
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE)


def strip_query(filename: str) -> str:
    """Remove a cache-busting ``?query`` suffix from a filename."""
    return filename.split("?", 1)[0]


def random_id(length: int = 16) -> str:
    """Generate a host-style random alphanumeric identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def export_to_json(data: Dict[str, Any], source: Optional[Dict[str, Any]] = None) -> str:
    """
    Serialize a document to the archive's canonical JSON form.

    Ownership data is dropped. When the document carries an ``exportSource``
    flag it is refreshed from ``source`` (world, system and version info).

    Args:
        data: Document data
        source: Values for the exportSource flag

    Returns:
        Tab-indented JSON string
    """
    export_data = copy.deepcopy(data)
    if isinstance(export_data, dict):
        export_data.pop("permission", None)
        export_data.pop("ownership", None)

        flags = export_data.get("flags")
        if isinstance(flags, dict) and flags.get("exportSource") and source:
            flags["exportSource"] = {
                "world": source.get("id"),
                "system": source.get("system"),
                "coreVersion": source.get("coreVersion"),
                "systemVersion": source.get("systemVersion"),
            }

    return json.dumps(export_data, indent="\t", ensure_ascii=False)


def build_update_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten nested document data into dotted update keys.

    Lists are kept whole; None values are dropped.

    Example:
        >>> build_update_data({"name": "Goblin", "token": {"img": "a.png"}})
        {'name': 'Goblin', 'token.img': 'a.png'}
    """
    update: Dict[str, Any] = {}

    def _flatten(prefix: str, value: Any) -> None:
        if isinstance(value, dict):
            for key, nested in value.items():
                _flatten(f"{prefix}.{key}" if prefix else key, nested)
        elif value is not None:
            update[prefix] = value

    _flatten("", data)
    return update


async def replace_async(
    text: str,
    pattern: Pattern[str],
    replacer: Callable[[re.Match], Awaitable[str]]
) -> str:
    """
    Replace every match of ``pattern`` with the awaited result of ``replacer``.

    Matches are processed one at a time, in order of appearance.
    """
    parts = []
    last = 0
    for match in pattern.finditer(text):
        parts.append(text[last:match.start()])
        parts.append(await replacer(match))
        last = match.end()
    parts.append(text[last:])
    return "".join(parts)
