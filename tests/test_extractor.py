"""Tests for incremental extraction of streamed JSON array elements."""
import json

from traverse.services.extractor import IncrementalArrayExtractor, extract_json_object, extract_new_items

PARTIAL = '{"items":[{"name":"A","description":"d1"},{"name":"B","desc'
COMPLETE = '{"items":[{"name":"A","description":"d1"},{"name":"B","description":"d2"}]}'


def test_returns_only_completed_elements():
    first = extract_new_items(PARTIAL, 0)
    assert first == [{"name": "A", "description": "d1"}]

    second = extract_new_items(COMPLETE, 1)
    assert second == [{"name": "B", "description": "d2"}]


def test_braces_and_quotes_inside_strings_are_opaque():
    buffer = '{"items":[{"name":"x}{","description":"say \\"hi\\" ]"},{"name":"y","description":"ok"}]}'
    items = extract_new_items(buffer)
    assert [item["name"] for item in items] == ["x}{", "y"]


def test_nested_objects_and_missing_fields():
    buffer = (
        '{"items":['
        '{"name":"nested","description":"d","meta":{"k":[1,2]}},'
        '{"name":"no description"},'
        '{"name":"null description","description":null},'
        '{"name":"ok","description":"fine"}'
        ']}'
    )
    items = extract_new_items(buffer)
    assert [item["name"] for item in items] == ["nested", "ok"]


def test_stops_at_end_of_array():
    buffer = '{"items":[{"name":"a","description":"b"}],"other":[{"name":"c","description":"d"}]}'
    assert len(extract_new_items(buffer)) == 1


def test_custom_field_and_required_keys():
    buffer = '{"fixes":[{"issue":"i","fix":"f"},{"issue":"only"}]}'
    items = extract_new_items(buffer, field="fixes", required=("issue", "fix"))
    assert items == [{"issue": "i", "fix": "f"}]


def test_no_array_yet():
    assert extract_new_items('{"corridor":"India → Germany","it') == []


def test_stateful_extractor_matches_pure_function():
    items = [{"name": f"Item {i}", "description": f"desc {{{i}}} \"q\""} for i in range(6)]
    final = json.dumps({"visaType": "C", "items": items, "fees": {"visa": "EUR 90"}})

    extractor = IncrementalArrayExtractor()
    collected = []
    for i in range(0, len(final), 3):
        collected.extend(extractor.feed(final[i : i + 3]))

    assert collected == extract_new_items(final)
    assert collected == items
    assert extractor.emitted == len(items)
    assert extractor.closed
    assert extractor.feed("trailing") == []


def test_stateful_extractor_finds_key_split_across_chunks():
    extractor = IncrementalArrayExtractor()
    assert extractor.feed('{"it') == []
    assert extractor.feed('ems": [') == []
    assert extractor.feed('{"name":"A","description":"d"}') == [{"name": "A", "description": "d"}]


def test_extract_json_object_handles_fences_and_prose():
    assert extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert extract_json_object('Here you go: {"a": {"b": 2}} thanks') == {"a": {"b": 2}}
    assert extract_json_object("no json here") is None
    assert extract_json_object("{broken") is None
