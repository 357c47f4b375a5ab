import json

import pytest

from storyplay.modules.llm.runtime.recovery import (
    SYNTHETIC_CHOICES,
    SYNTHETIC_IMAGE_PROMPT,
    TIER_DIRECT,
    TIER_FIELDS,
    TIER_STRUCTURAL,
    TIER_SYNTHETIC,
    TierFailure,
    TierSuccess,
    direct_parse,
    matching_object_span,
    recover,
    recover_with_trace,
    sanitize_raw_snippet,
    strip_code_fences,
    unescape_json_string,
)
from storyplay.modules.story.scene_prompt import CharacterDetails, synthesize


def test_fenced_json_is_parsed_directly() -> None:
    raw = '```json\n{"story":"The gate opens.","choices":["Enter","Wait"],"imagePrompt":"open gate at dusk"}\n```'
    result = recover_with_trace(raw)

    assert result.tier == TIER_DIRECT
    assert result.failures == ()
    assert result.response.story == "The gate opens."
    assert result.response.choices == ["Enter", "Wait"]
    assert result.response.image_prompt == "open gate at dusk"
    assert result.recovered is True


def test_control_character_inside_string_recovered_structurally() -> None:
    raw = '{"story": "Line one\nline two", "choices": ["Go",]}'
    result = recover_with_trace(raw)

    assert result.tier == TIER_STRUCTURAL
    assert [failure.tier for failure in result.failures] == [TIER_DIRECT]
    assert result.response.story == "Line one line two"
    assert result.response.choices == ["Go"]


def test_leading_prose_and_trailing_garbage_recovered_structurally() -> None:
    raw = 'Sure! Here it is: {"story":"A bell rings.","choices":["Listen"]} Hope you enjoy it }'
    result = recover_with_trace(raw)

    assert result.tier == TIER_STRUCTURAL
    assert result.response.story == "A bell rings."


def test_unescaped_quotes_recovered_by_field_extraction() -> None:
    raw = '{"story": "She said "run" and fled.", "choices": ["Run", "Hide"], "isEnding": false}'
    result = recover_with_trace(raw)

    assert result.tier == TIER_FIELDS
    assert result.response.story == 'She said "run" and fled.'
    assert result.response.choices == ["Run", "Hide"]
    assert result.response.is_ending is False


def test_truncated_response_keeps_partial_story() -> None:
    raw = '{"story": "The dragon roars and the cav'
    result = recover_with_trace(raw)

    assert result.tier == TIER_FIELDS
    assert result.response.story == "The dragon roars and the cav"
    assert result.response.choices == []
    assert "massive dragon with detailed scales" in (result.response.image_prompt or "")


def test_field_extraction_reads_ending_fields() -> None:
    raw = '{"story": "It is "over".", "isEnding": true, "endingType": "tragic", "imagePrompt": "ashes"}'
    response = recover(raw)

    assert response.is_ending is True
    assert response.ending_type == "tragic"
    assert response.image_prompt == "ashes"
    assert response.choices == []


def test_plain_prose_falls_back_to_synthetic_turn() -> None:
    result = recover_with_trace("I'm sorry, I can't continue this story right now.")

    assert result.tier == TIER_SYNTHETIC
    assert result.recovered is False
    assert tuple(result.response.choices) == SYNTHETIC_CHOICES
    assert result.response.image_prompt == SYNTHETIC_IMAGE_PROMPT
    assert result.response.is_ending is False
    assert [failure.tier for failure in result.failures] == [TIER_DIRECT, TIER_STRUCTURAL, TIER_FIELDS]


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "   ",
        "{",
        "```",
        "[1, 2, 3]",
        '{"story": ""}',
        '{"story": 42, "choices": "nope"}',
        '{"choices": ["a"]}',
        12345,
        {"story": "from a mapping"},
        "\x00\x01\x02",
    ],
)
def test_recover_never_raises(raw) -> None:
    response = recover(raw)
    assert response.story.strip()
    assert len(response.choices) <= 4
    if response.is_ending:
        assert response.choices == []


def test_recover_is_idempotent() -> None:
    raw = '{"story": "Twice "told" tale", "choices": ["A"]}'
    assert recover(raw) == recover(raw)


def test_ending_response_drops_choices() -> None:
    raw = json.dumps({"story": "Fin.", "choices": ["Again"], "isEnding": True})
    response = recover(raw)
    assert response.is_ending is True
    assert response.choices == []


def test_extra_choices_are_capped_at_four() -> None:
    raw = json.dumps({"story": "Many roads.", "choices": ["a", "b", "c", "d", "e", "f"]})
    assert recover(raw).choices == ["a", "b", "c", "d"]


def test_missing_image_prompt_is_synthesized_from_story() -> None:
    story = "In the ancient temple you begin casting a ward as the dragon wakes."
    details = CharacterDetails(name="Aria", descriptor="female")
    response = recover(json.dumps({"story": story, "choices": ["Flee"]}), details)

    assert response.image_prompt == synthesize(story, details)
    assert response.image_prompt.startswith("female named Aria")


def test_direct_parse_reports_failure_without_raising() -> None:
    result = direct_parse("not json at all")
    assert isinstance(result, TierFailure)
    assert result.tier == TIER_DIRECT

    ok = direct_parse('{"story":"ok"}')
    assert isinstance(ok, TierSuccess)


def test_unescape_json_string_handles_common_escapes() -> None:
    assert unescape_json_string('line\\nnext \\"q\\" caf\\u00e9 \\\\n') == 'line\nnext "q" café \\n'


def test_matching_object_span_ignores_trailing_text() -> None:
    assert matching_object_span('xx {"a": {"b": 1}} tail }') == '{"a": {"b": 1}}'
    assert matching_object_span('{"a": {"b": 1') == '{"a": {"b": 1'
    assert matching_object_span("no braces") is None


def test_strip_code_fences() -> None:
    assert strip_code_fences('```JSON\n{"story":"x"}\n```') == '{"story":"x"}'


def test_sanitize_raw_snippet_redacts_keys_and_truncates() -> None:
    out = sanitize_raw_snippet("key sk-abcdefghijklmnop\nrest " + "x" * 400, max_len=40)
    assert out is not None
    assert "sk-abcdefghijklmnop" not in out
    assert len(out) == 40
    assert sanitize_raw_snippet("   ") is None


def test_escaped_emoji_survives_field_extraction() -> None:
    raw = '{"story": "She said "hi" \\ud83d\\ude00 and left", "choices": ["a"], "isEnding": false}'
    result = recover_with_trace(raw)

    assert result.tier == TIER_FIELDS
    assert result.response.story == 'She said "hi" \U0001F600 and left'
    assert result.response.choices == ["a"]


def test_unescape_joins_surrogate_pairs_and_replaces_lone_halves() -> None:
    assert unescape_json_string("smile \\ud83d\\ude00!") == "smile \U0001F600!"
    assert unescape_json_string("broken \\ud83d here") == "broken \ufffd here"


def test_oversized_number_falls_through_to_field_extraction() -> None:
    raw = '{"story": "The gate opens", "choices": ["Enter"], "seed": ' + "1" * 5000 + "}"
    result = recover_with_trace(raw)

    assert result.tier != TIER_SYNTHETIC
    assert result.response.story == "The gate opens"
    assert result.response.choices == ["Enter"]


def test_deep_nesting_falls_through_to_field_extraction() -> None:
    raw = '{"story": "The gate opens", "choices": ["Enter"], "depth": ' + "[" * 100000
    result = recover_with_trace(raw)

    assert result.tier == TIER_FIELDS
    assert result.response.story == "The gate opens"
    assert [failure.tier for failure in result.failures] == [TIER_DIRECT, TIER_STRUCTURAL]
