from __future__ import annotations

import json

import pytest

from microplastic_detector.errors import (
    CharacterizationParseError,
    MalformedJson,
    NoArrayFound,
    UnexpectedShape,
)
from microplastic_detector.llm.response import (
    ParsedEntry,
    parse_analysis_response,
    try_parse_analysis_response,
)
from microplastic_detector.vision.types import ParticleAnalysis

_ARRAY = [
    {"index": 0, "analysis": {"shape": "Fiber", "color": "Blue", "transparency": "Opaque"}},
    {"index": 1, "analysis": {"shape": "Film", "color": "Clear", "transparency": "Transparent"}},
]


def test_parse_fenced_reply_with_prose() -> None:
    raw = (
        'Sure! ```json\n[{"index":0,"analysis":{"shape":"Fiber","color":"Blue",'
        '"transparency":"Opaque"}}]\n```'
    )
    entries = parse_analysis_response(raw)
    assert entries == [
        ParsedEntry(
            index=0,
            analysis=ParticleAnalysis(shape="Fiber", color="Blue", transparency="Opaque"),
        )
    ]


def test_wrapping_text_does_not_change_result() -> None:
    bare = json.dumps(_ARRAY)
    wrapped = f"Here is the analysis you asked for:\n```json\n{bare}\n```\nLet me know!"
    assert parse_analysis_response(wrapped) == parse_analysis_response(bare)


@pytest.mark.parametrize(
    "raw",
    ["", "no array here", "{'index': 0}", "] backwards [", "only [ opening", "only closing ]", None],
)
def test_missing_brackets_raise_no_array_found(raw: str | None) -> None:
    with pytest.raises(NoArrayFound):
        parse_analysis_response(raw)


def test_malformed_json_inside_brackets() -> None:
    with pytest.raises(MalformedJson):
        parse_analysis_response("[{index: 0, analysis: }]")


def test_two_arrays_with_prose_between_is_malformed() -> None:
    # First "[" to last "]" spans both arrays and the prose between them.
    with pytest.raises(MalformedJson):
        parse_analysis_response('[{"index": 0}] and also [{"index": 1}]')


def test_unexpected_shape_is_raised_for_non_list(monkeypatch: pytest.MonkeyPatch) -> None:
    import microplastic_detector.llm.response as response

    monkeypatch.setattr(response.json, "loads", lambda _s: {"index": 0})
    with pytest.raises(UnexpectedShape):
        parse_analysis_response("[0]")


def test_non_numeric_indices_are_kept_but_unmatched() -> None:
    raw = json.dumps(
        [
            {"index": "0", "analysis": {"shape": "Fiber"}},
            {"index": True, "analysis": {"shape": "Film"}},
            {"index": 1.5, "analysis": {"shape": "Bead"}},
            {"index": 2.0, "analysis": {"shape": "Foam"}},
            {"analysis": {"shape": "Pellet"}},
            "not an object",
            3,
        ]
    )
    entries = parse_analysis_response(raw)
    assert [e.index for e in entries] == [None, None, None, 2, None, None, None]
    assert entries[3].analysis == ParticleAnalysis(shape="Foam")
    assert entries[5].analysis is None


def test_analysis_values_are_coerced_to_text() -> None:
    [entry] = parse_analysis_response(
        '[{"index": 0, "analysis": {"shape": " Fiber ", "color": 7, "extra": "x"}}]'
    )
    assert entry.analysis == ParticleAnalysis(shape="Fiber", color="7")


def test_empty_array_is_a_valid_result() -> None:
    assert parse_analysis_response("[]") == []


def test_try_parse_returns_tagged_results() -> None:
    ok = try_parse_analysis_response(json.dumps(_ARRAY))
    assert ok.ok
    assert ok.error is None
    assert [e.index for e in ok.entries] == [0, 1]

    failed = try_parse_analysis_response("I could not see any particles.")
    assert not failed.ok
    assert failed.entries == []
    assert isinstance(failed.error, NoArrayFound)
    assert isinstance(failed.error, CharacterizationParseError)

    malformed = try_parse_analysis_response("[oops]")
    assert isinstance(malformed.error, MalformedJson)
