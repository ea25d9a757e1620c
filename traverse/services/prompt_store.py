from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any, Iterator

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Dotted-key access to a JSON catalog of ``string.Template`` prompts.

    Long prompts are stored as lists of lines and joined with newlines. The
    file is re-read whenever its modification time changes.
    """

    def __init__(self, path: str | Path = PROMPTS_PATH):
        self.path = Path(path)
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _catalog(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Prompt catalog must be a JSON object: {self.path}")
            self._entries = payload
            self._mtime_ns = mtime_ns
        return self._entries

    def keys(self) -> Iterator[str]:
        """Every dotted key that resolves to a prompt."""

        def walk(node: dict[str, Any], prefix: str) -> Iterator[str]:
            for name, value in node.items():
                key = f"{prefix}{name}"
                if isinstance(value, dict):
                    yield from walk(value, f"{key}.")
                else:
                    yield key

        return walk(self._catalog(), "")

    def template(self, key: str) -> Template:
        node: Any = self._catalog()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            node = "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
        return Template(node)

    def placeholders(self, key: str) -> set[str]:
        names: set[str] = set()
        for match in Template.pattern.finditer(self.template(key).template):
            name = match.group("named") or match.group("braced")
            if name:
                names.add(name)
        return names

    def render(self, key: str, **values: Any) -> str:
        try:
            return self.template(key).substitute(**values)
        except KeyError as exc:
            missing = str(exc.args[0])
            raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc


catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)
