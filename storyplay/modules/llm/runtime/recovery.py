from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pydantic import ValidationError

from storyplay.modules.llm.runtime.errors import ParseRecoveryExhausted
from storyplay.modules.llm.schemas import StoryResponse
from storyplay.modules.story.scene_prompt import CharacterDetails, synthesize

logger = logging.getLogger(__name__)

TIER_DIRECT = "direct"
TIER_STRUCTURAL = "structural"
TIER_FIELDS = "fields"
TIER_SYNTHETIC = "synthetic"

MAX_CHOICES = 4

SYNTHETIC_STORY = (
    "The story hit a technical difficulty while the next scene was being written. "
    "Please continue, and your adventure will pick up from here."
)
SYNTHETIC_CHOICES: tuple[str, ...] = ("Continue", "Try a different approach", "Start over")
SYNTHETIC_IMAGE_PROMPT = "error scene, technical difficulties"

_TOKEN_REDACTION_RE = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}\b")
_FENCE_OPEN_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_WHITESPACE_RUN_RE = re.compile(r"\s+")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_MISSING_COMMA_RE = re.compile(r"([}\]])(\s*)([{\[])")

_FIELD_KEYS = r"(?:choices|isEnding|endingType|imagePrompt|story)"
# A story value ends at the quote that is followed by the next known key or the
# closing brace, which tolerates unescaped quotes inside the text.
_STORY_ANCHORED_RE = re.compile(r'"story"\s*:\s*"(.*?)"\s*(?:,\s*"' + _FIELD_KEYS + r'"|\})', re.DOTALL)
_STORY_QUOTED_RE = re.compile(r'"story"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_STORY_TRUNCATED_RE = re.compile(r'"story"\s*:\s*"((?:[^"\\]|\\.)+)$', re.DOTALL)
_CHOICES_RE = re.compile(r'"choices"\s*:\s*\[(.*?)\]', re.DOTALL)
_QUOTED_ITEM_RE = re.compile(r'"((?:[^"\\]|\\.)*)"', re.DOTALL)
_IS_ENDING_RE = re.compile(r'"isEnding"\s*:\s*(true|false)')
_IMAGE_PROMPT_RE = re.compile(r'"imagePrompt"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_ENDING_TYPE_RE = re.compile(r'"endingType"\s*:\s*"((?:[^"\\]|\\.)*)"')
# A surrogate pair is matched before single escapes so emoji decode to one code point.
_ESCAPE_RE = re.compile(
    r'\\u([dD][89abAB][0-9a-fA-F]{2})\\u([dD][c-fC-F][0-9a-fA-F]{2})'
    r'|\\(u[0-9a-fA-F]{4}|["\\/bfnrt])'
)
REPLACEMENT_CHAR = "\ufffd"
_SIMPLE_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


@dataclass(frozen=True, slots=True)
class TierSuccess:
    tier: str
    response: StoryResponse


@dataclass(frozen=True, slots=True)
class TierFailure:
    tier: str
    reason: str


TierResult = TierSuccess | TierFailure


@dataclass(frozen=True, slots=True)
class RecoveryResult:
    response: StoryResponse
    tier: str
    failures: tuple[TierFailure, ...] = ()

    @property
    def recovered(self) -> bool:
        return self.tier != TIER_SYNTHETIC


def sanitize_raw_snippet(raw: object, max_len: int = 200) -> str | None:
    if raw is None:
        return None
    text = str(raw)
    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")
    text = _TOKEN_REDACTION_RE.sub("[REDACTED_KEY]", text)
    text = " ".join(text.split())
    if not text:
        return None
    return text[:max_len]


def strip_code_fences(raw_text: str) -> str:
    return _FENCE_OPEN_RE.sub("", raw_text).replace("```", "").strip()


def unescape_json_string(value: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        high, low, token = match.groups()
        if high is not None:
            return chr(0x10000 + ((int(high, 16) - 0xD800) << 10) + (int(low, 16) - 0xDC00))
        if token.startswith("u"):
            code = int(token[1:], 16)
            # Lone surrogates cannot be encoded as UTF-8.
            return REPLACEMENT_CHAR if 0xD800 <= code <= 0xDFFF else chr(code)
        return _SIMPLE_ESCAPES[token]

    return _ESCAPE_RE.sub(_replace, value)


def matching_object_span(text: str) -> str | None:
    """Return the text from the first ``{`` to its matching ``}``.

    Depth counting keeps trailing garbage after the object out of the span. A
    truncated object with no matching brace returns everything after the
    opening brace so later tiers can still pick fields out of it.
    """
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return text[start:]


def clean_json_text(fragment: str) -> str:
    cleaned = _CONTROL_CHARS_RE.sub(" ", fragment)
    cleaned = _WHITESPACE_RUN_RE.sub(" ", cleaned)
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)
    cleaned = _MISSING_COMMA_RE.sub(r"\1,\2\3", cleaned)
    return cleaned.strip()


def _optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _coerce_choices(raw: object) -> list[str]:
    if not isinstance(raw, list):
        return []
    out: list[str] = []
    for item in raw:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            out.append(text)
    return out[:MAX_CHOICES]


def _coerce_is_ending(raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return False


def response_from_payload(payload: object) -> StoryResponse | None:
    if not isinstance(payload, Mapping):
        return None
    story = payload.get("story")
    if not isinstance(story, str) or not story.strip():
        return None
    try:
        return StoryResponse(
            story=story.strip(),
            choices=_coerce_choices(payload.get("choices")),
            is_ending=_coerce_is_ending(payload.get("isEnding", payload.get("is_ending"))),
            ending_type=_optional_text(payload.get("endingType", payload.get("ending_type"))),
            image_prompt=_optional_text(payload.get("imagePrompt", payload.get("image_prompt"))),
        )
    except ValidationError:
        return None


def _parse_candidate(tier: str, candidate: str) -> TierResult:
    try:
        payload = json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        return TierFailure(tier, f"json parse error: {exc}")
    if not isinstance(payload, Mapping):
        return TierFailure(tier, f"expected a json object, got {type(payload).__name__}")
    response = response_from_payload(payload)
    if response is None:
        return TierFailure(tier, "json object has no story text")
    return TierSuccess(tier, response)


def direct_parse(raw_text: str) -> TierResult:
    candidate = strip_code_fences(raw_text)
    if not candidate:
        return TierFailure(TIER_DIRECT, "empty response")
    return _parse_candidate(TIER_DIRECT, candidate)


def structural_parse(raw_text: str) -> TierResult:
    span = matching_object_span(strip_code_fences(raw_text))
    if span is None:
        return TierFailure(TIER_STRUCTURAL, "no json object start")
    return _parse_candidate(TIER_STRUCTURAL, clean_json_text(span))


def _extract_story(text: str) -> str | None:
    for pattern in (_STORY_ANCHORED_RE, _STORY_QUOTED_RE, _STORY_TRUNCATED_RE):
        match = pattern.search(text)
        if match:
            story = unescape_json_string(match.group(1)).strip()
            if story:
                return story
    return None


def _extract_choices(text: str) -> list[str]:
    match = _CHOICES_RE.search(text)
    if not match:
        return []
    inner = match.group(1)
    try:
        parsed = json.loads(f"[{inner}]")
    except (ValueError, RecursionError):
        parsed = [unescape_json_string(item) for item in _QUOTED_ITEM_RE.findall(inner)]
    return _coerce_choices(parsed)


def _extract_optional(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    return _optional_text(unescape_json_string(match.group(1)))


def extract_fields(raw_text: str) -> TierResult:
    text = strip_code_fences(raw_text)
    story = _extract_story(text)
    if story is None:
        return TierFailure(TIER_FIELDS, "no story field found")
    ending_match = _IS_ENDING_RE.search(text)
    try:
        response = StoryResponse(
            story=story,
            choices=_extract_choices(text),
            is_ending=bool(ending_match and ending_match.group(1) == "true"),
            ending_type=_extract_optional(_ENDING_TYPE_RE, text),
            image_prompt=_extract_optional(_IMAGE_PROMPT_RE, text),
        )
    except ValidationError as exc:
        return TierFailure(TIER_FIELDS, f"extracted fields invalid: {exc.error_count()} errors")
    return TierSuccess(TIER_FIELDS, response)


def synthetic_response() -> StoryResponse:
    return StoryResponse(
        story=SYNTHETIC_STORY,
        choices=list(SYNTHETIC_CHOICES),
        is_ending=False,
        image_prompt=SYNTHETIC_IMAGE_PROMPT,
    )


_TIERS: tuple[tuple[str, Callable[[str], TierResult]], ...] = (
    (TIER_DIRECT, direct_parse),
    (TIER_STRUCTURAL, structural_parse),
    (TIER_FIELDS, extract_fields),
)


def _as_text(raw: object) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, Mapping):
        return json.dumps(dict(raw), ensure_ascii=False, default=str)
    return str(raw)


def _with_image_prompt(
    response: StoryResponse,
    character_details: CharacterDetails | Mapping[str, object] | None,
) -> StoryResponse:
    if response.image_prompt:
        return response
    return response.model_copy(update={"image_prompt": synthesize(response.story, character_details)})


def _run_tiers(text: str, failures: list[TierFailure]) -> TierSuccess:
    for name, tier in _TIERS:
        try:
            result = tier(text)
        except Exception as exc:  # noqa: BLE001
            result = TierFailure(name, f"{type(exc).__name__}: {exc}")
        if isinstance(result, TierSuccess):
            return result
        failures.append(result)
        logger.debug("story recovery tier %s failed: %s", result.tier, result.reason)
    raise ParseRecoveryExhausted(
        "no recovery tier produced story text",
        failures=tuple(f"{item.tier}: {item.reason}" for item in failures),
    )


def recover_with_trace(
    raw_text: object,
    character_details: CharacterDetails | Mapping[str, object] | None = None,
) -> RecoveryResult:
    failures: list[TierFailure] = []
    try:
        success = _run_tiers(_as_text(raw_text), failures)
        if failures:
            logger.info("story response recovered by %s tier after %d failed tiers", success.tier, len(failures))
        return RecoveryResult(
            response=_with_image_prompt(success.response, character_details),
            tier=success.tier,
            failures=tuple(failures),
        )
    except ParseRecoveryExhausted as exc:
        logger.warning(
            "story response unrecoverable, using synthetic turn | failures=%s | raw=%s",
            "; ".join(exc.failures),
            sanitize_raw_snippet(raw_text),
        )
    except Exception:  # noqa: BLE001
        logger.exception("story response recovery crashed, using synthetic turn")
    return RecoveryResult(response=synthetic_response(), tier=TIER_SYNTHETIC, failures=tuple(failures))


def recover(
    raw_text: object,
    character_details: CharacterDetails | Mapping[str, object] | None = None,
) -> StoryResponse:
    return recover_with_trace(raw_text, character_details).response
