"""Pull structured records out of model output that is still streaming.

The reasoning backend is asked for one JSON object whose ``items`` array holds
the records we care about. Waiting for the whole object would hide every record
until the last token arrives, so the array is scanned as it grows and each
element is surfaced as soon as its closing brace lands.
"""
from __future__ import annotations

import json
import re
from typing import Any, Iterable

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT = re.compile(r"\{[\s\S]*\}")


class IncrementalArrayExtractor:
    """Stateful scanner over a growing buffer.

    ``feed`` appends a delta and resumes where the previous call stopped, so
    no character is scanned twice. Elements are returned once each.
    """

    def __init__(
        self,
        field: str = "items",
        required: Iterable[str] = ("name", "description"),
    ) -> None:
        self.field = field
        self.required = tuple(required)
        self.emitted = 0
        self._key = f'"{field}"'
        self._buffer = ""
        self._search_from = 0
        self._pos = 0
        self._in_array = False
        self._closed = False
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._object_start = -1

    @property
    def closed(self) -> bool:
        """True once the closing ``]`` of the array has been seen."""
        return self._closed

    def feed(self, delta: str) -> list[dict[str, Any]]:
        self._buffer += delta
        if self._closed:
            return []
        if not self._in_array and not self._locate_array():
            return []
        found = self._scan()
        self.emitted += len(found)
        return found

    def _locate_array(self) -> bool:
        key_at = self._buffer.find(self._key, self._search_from)
        if key_at == -1:
            self._search_from = max(0, len(self._buffer) - len(self._key) + 1)
            return False
        self._search_from = key_at
        bracket_at = self._buffer.find("[", key_at + len(self._key))
        if bracket_at == -1:
            return False
        self._in_array = True
        self._pos = bracket_at + 1
        return True

    def _scan(self) -> list[dict[str, Any]]:
        found: list[dict[str, Any]] = []
        buf = self._buffer
        i = self._pos
        while i < len(buf):
            ch = buf[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch == "{":
                if self._depth == 0:
                    self._object_start = i
                self._depth += 1
            elif ch == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    item = self._accept(buf[self._object_start : i + 1])
                    if item is not None:
                        found.append(item)
                    self._object_start = -1
            elif ch == "]" and self._depth == 0:
                self._closed = True
                i += 1
                break
            i += 1
        self._pos = i
        return found

    def _accept(self, candidate: str) -> dict[str, Any] | None:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            return None
        if not isinstance(parsed, dict):
            return None
        if any(parsed.get(name) is None for name in self.required):
            return None
        return parsed


def extract_new_items(
    buffer: str,
    already_emitted: int = 0,
    *,
    field: str = "items",
    required: Iterable[str] = ("name", "description"),
) -> list[dict[str, Any]]:
    """Complete elements of ``field`` in ``buffer`` beyond the first ``already_emitted``."""
    extractor = IncrementalArrayExtractor(field=field, required=required)
    return extractor.feed(buffer)[already_emitted:]


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Best-effort parse of the JSON object in a finished model response.

    Handles markdown fences and prose around the object. Returns None when
    nothing parses.
    """
    candidate = text.strip()
    fenced = _FENCE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    match = _OBJECT.search(candidate)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None
