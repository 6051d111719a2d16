"""Recovery of JSON from malformed model responses."""
import json

import pytest

from docauto.json_recovery import (
    aggressive_cleanup,
    conservative_cleanup,
    extract_balanced_object,
    extract_fenced_block,
    recover_json,
    recover_object,
)

CANONICAL = {
    "reasoning": "two visuals",
    "infographics": [
        {"scope": "single_section", "section_indices": [0], "title": "Setup"},
        {"scope": "multi_section", "section_indices": [1, 2], "title": "Rollout"},
    ],
}

MALFORMED = {
    "trailing_commas": (
        '{"reasoning": "two visuals", "infographics": ['
        '{"scope": "single_section", "section_indices": [0,], "title": "Setup",},'
        '{"scope": "multi_section", "section_indices": [1, 2], "title": "Rollout"},'
        "],}"
    ),
    "smart_quotes": (
        "{“reasoning”: “two visuals”, “infographics”: ["
        "{“scope”: “single_section”, “section_indices”: [0], “title”: “Setup”},"
        "{“scope”: “multi_section”, “section_indices”: [1, 2], “title”: “Rollout”}]}"
    ),
    "text_around_block": "Sure! Here is the plan:\n" + json.dumps(CANONICAL) + "\nLet me know if you need more.",
    "fenced_block": "```json\n" + json.dumps(CANONICAL, indent=2) + "\n```\nThat's it.",
    "missing_commas_between_objects": (
        '{"reasoning": "two visuals", "infographics": ['
        '{"scope": "single_section", "section_indices": [0], "title": "Setup"}\n'
        '{"scope": "multi_section", "section_indices": [1, 2], "title": "Rollout"}]}'
    ),
}


@pytest.mark.parametrize("name", sorted(MALFORMED))
def test_malformed_fixture_recovers_canonical_object(name):
    assert recover_json(MALFORMED[name]) == recover_json(json.dumps(CANONICAL)) == CANONICAL


@pytest.mark.parametrize("raw", [None, "", "   ", "I could not decide.", "{{{", "```json\n```", "} nope {"])
def test_unrecoverable_input_returns_none(raw):
    assert recover_json(raw) is None


def test_recover_object_rejects_non_objects():
    assert recover_json("[1, 2]") == [1, 2]
    assert recover_object("[1, 2]") is None


def test_newline_inside_string_value_is_tolerated():
    raw = '{"prompt": "line one\nline two"}'
    assert recover_object(raw) == {"prompt": "line one line two"}


def test_fenced_block_extraction():
    assert extract_fenced_block("x\n```json\n{\"a\": 1}\n```") == '{"a": 1}'
    assert extract_fenced_block("no fence") is None


def test_balanced_object_ignores_braces_in_strings():
    raw = 'prefix {"a": "}{", "b": {"c": 1}} suffix {"d": 2}'
    assert extract_balanced_object(raw) == '{"a": "}{", "b": {"c": 1}}'


def test_conservative_cleanup_only_touches_trailing_commas():
    assert conservative_cleanup('{"a": [1, 2,], }') == '{"a": [1, 2]}'


def test_aggressive_cleanup_cuts_after_last_brace():
    assert aggressive_cleanup('{"a": 1} trailing words') == '{"a": 1}'


def test_aggressive_cleanup_leaves_arrays_whole():
    cleaned = aggressive_cleanup('[{“a”: 1} {"b": 2}]')
    assert cleaned == '[{"a": 1},{"b": 2}]'
    assert json.loads(cleaned) == [{"a": 1}, {"b": 2}]
