import json

import pytest

from src.forge.services.partial_json import complete_json, parse_partial


@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"commentary": "Hel', {"commentary": "Hel"}),
        ('{"a": 1, "b', {"a": 1}),
        ('{"a": 1,', {"a": 1}),
        ('{"a": [1, 2', {"a": [1, 2]}),
        ('{"a": {"b": "c"', {"a": {"b": "c"}}),
        ('{"a": ', {}),
        ('{"flag": tr', {}),
        ('{"flag": true', {"flag": True}),
        ('{"a": "x\\', {"a": "x"}),
        ('{"a": "x\\u00', {"a": "x"}),
        ('{"code": [{"file_path": "a.py", "file_content": "print(', {"code": [{"file_path": "a.py", "file_content": "print("}]}),
    ],
)
def test_parse_partial_prefixes(text, expected):
    assert parse_partial(text) == expected


def test_no_object_yet():
    assert parse_partial("") is None
    assert parse_partial("Sure, here it is:") is None
    assert complete_json("```json\n") is None


def test_surrounding_prose_is_ignored():
    assert parse_partial('Here you go: {"title": "x"} hope it helps') == {"title": "x"}


def test_every_prefix_of_a_document_parses_to_a_growing_object():
    doc = json.dumps(
        {
            "commentary": "hi",
            "port": 3000,
            "scale": -3.5e2,
            "ratio": 0.25,
            "code": [{"file_path": "a", "file_content": "b"}],
        }
    )
    seen = set()
    for i in range(1, len(doc) + 1):
        snap = parse_partial(doc[:i])
        assert snap is not None
        assert set(snap) >= seen, doc[:i]
        seen = set(snap)
    assert parse_partial(doc) == json.loads(doc)


def test_non_object_top_level_is_rejected():
    assert parse_partial("[1, 2, 3]") is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"port": -350.', {"port": -350}),
        ('{"port": -3.5e', {"port": -3.5}),
        ('{"port": 1E+', {"port": 1}),
        ('{"a": 1, "port": -', {"a": 1}),
    ],
)
def test_number_cut_mid_token_keeps_valid_prefix(text, expected):
    assert parse_partial(text) == expected
