from __future__ import annotations

import pytest

from traverse.services.prompt_store import render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("translate.system", language="Japanese")
    assert "Translate the following JSON data into Japanese." in prompt
    assert "${language}" not in prompt


def test_render_prompt_joins_line_lists():
    prompt = render_prompt("documents.cross_check_previous", previous="--- PREVIOUS DOC 1 ---")
    assert prompt.splitlines()[0] == "PREVIOUSLY ANALYZED DOCUMENTS:"
    assert "--- PREVIOUS DOC 1 ---" in prompt


def test_render_prompt_keeps_json_braces():
    prompt = render_prompt("documents.read")
    assert '"docType": "document_type",' in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="language"):
        render_prompt("translate.user", payload="{}")


def test_catalog_placeholders_match_callers():
    from traverse.services.prompt_store import catalog

    assert catalog.placeholders("translate.user") == {"language", "payload"}
    assert catalog.placeholders("documents.read") == set()
    assert catalog.placeholders("advisory.user") == {
        "requirement_count",
        "requirements",
        "document_count",
        "extractions",
        "compliances",
        "baseline",
    }


def test_every_catalog_entry_renders():
    from traverse.services.prompt_store import catalog

    keys = list(catalog.keys())
    assert "research.system" in keys
    for key in keys:
        values = {name: "x" for name in catalog.placeholders(key)}
        assert catalog.render(key, **values)


def test_catalog_reloads_when_file_changes(tmp_path):
    import os

    from traverse.services.prompt_store import PromptCatalog

    path = tmp_path / "prompts.json"
    path.write_text('{"greeting": "Hello ${name}"}', encoding="utf-8")
    prompts = PromptCatalog(path)
    assert prompts.render("greeting", name="Ada") == "Hello Ada"

    path.write_text('{"greeting": ["Hi ${name}", "Welcome"]}', encoding="utf-8")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
    assert prompts.render("greeting", name="Ada") == "Hi Ada\nWelcome"


def test_catalog_rejects_non_object(tmp_path):
    from traverse.services.prompt_store import PromptCatalog

    path = tmp_path / "prompts.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError):
        PromptCatalog(path).render("anything")
