"""
Front Matter Codec - Record header serialization

WHAT: Renders and parses the ``---``-delimited header at the top of record files
WHERE: learnloop/runtime/memory/frontmatter.py - persistence format layer
WHO: RecordStore reading and writing files under ``memories/``
TIME: O(lines) per record

Header format (a deliberately small YAML subset)::

    ---
    id: "mem_1700000000000_a1b2c3d4e"
    confidence: 0.9
    tags:
      - "meta"
      - "storage"
    connections: []
    ---

    Record body text...

Scalars are JSON-encoded after ``key:``; lists render one JSON scalar per
``  - `` line; empty lists render as ``[]``. Parsing tries strict JSON first and
falls back to the trimmed raw text, so hand-edited files with unquoted values
still load.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Tuple

DELIMITER = "---"

_DOCUMENT_RE = re.compile(r"^---\n([\s\S]*?)\n---\n([\s\S]*)$")
_LIST_ITEM_RE = re.compile(r"^  - (.+)$")
_KEY_VALUE_RE = re.compile(r"^([^:]+):\s*(.+)?$")


def _decode(raw: str) -> Any:
    value = raw.strip()
    try:
        return json.loads(value)
    except ValueError:
        return re.sub(r"^[\"']|[\"']$", "", value)


def serialize(metadata: Mapping[str, Any]) -> str:
    """Render ``metadata`` as header lines, skipping ``None`` values."""
    lines = []
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            if not value:
                lines.append(f"{key}: []")
                continue
            lines.append(f"{key}:")
            lines.extend(f"  - {json.dumps(item)}" for item in value)
        else:
            lines.append(f"{key}: {json.dumps(value)}")
    return "\n".join(lines)


def parse(text: str) -> Tuple[Dict[str, Any], str]:
    """Split ``text`` into ``(metadata, body)``.

    Text without a leading header block is returned whole as the body with
    empty metadata.
    """
    normalized = text.replace("\r\n", "\n")
    match = _DOCUMENT_RE.match(normalized)
    if not match:
        return {}, normalized

    header, body = match.group(1), match.group(2).strip()
    metadata: Dict[str, Any] = {}
    current_key: str | None = None

    for line in header.split("\n"):
        item = _LIST_ITEM_RE.match(line)
        if item and current_key:
            bucket = metadata.get(current_key)
            if not isinstance(bucket, list):
                bucket = metadata[current_key] = []
            bucket.append(_decode(item.group(1)))
            continue

        pair = _KEY_VALUE_RE.match(line)
        if not pair:
            continue
        current_key = pair.group(1).strip()
        value = pair.group(2)
        metadata[current_key] = _decode(value) if value and value.strip() else []

    return metadata, body


def render_document(metadata: Mapping[str, Any], body: str) -> str:
    """Full file text: header block, blank line, body."""
    return f"{DELIMITER}\n{serialize(metadata)}\n{DELIMITER}\n\n{body}"


__all__ = ["DELIMITER", "parse", "render_document", "serialize"]
