"""Coercion of session records into store-safe snapshots.

Every write goes through :func:`normalize_record`, which turns whatever the
manager (or an older client snapshot) holds into plain JSON values with an
explicit type for each field. :func:`load_record` is the inverse used when
reading a record back.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import ValidationError

from storyplay.modules.session.errors import SessionValidationError
from storyplay.modules.session.models import SessionRecord, TurnRole
from storyplay.utils.time import parse_timestamp, utc_now_aware

# Field names used by the first mobile client's snapshots.
_LEGACY_KEYS: dict[str, str] = {
    "sessionId": "session_id",
    "userId": "user_id",
    "storyTitle": "story_title",
    "storyDescription": "story_description",
    "storyParts": "turns",
    "currentChoices": "pending_choices",
    "storyContext": "story_context",
    "userAnswers": "customization_answers",
    "customizationQuestions": "customization_questions",
    "awaitingInput": "awaiting_input",
    "isCompleted": "completed",
    "endingType": "ending_type",
    "currentSceneImage": "scene_image_ref",
    "createdAt": "created_at",
    "lastUpdated": "last_updated",
}


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: object) -> str | None:
    return _text(value) or None


def _int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return default


def _iso(value: object, *, fallback: datetime) -> str:
    parsed = parse_timestamp(value)
    return (parsed or fallback).isoformat()


def _canonical_keys(data: Mapping) -> dict:
    out: dict = {}
    for key, value in data.items():
        out[_LEGACY_KEYS.get(str(key), str(key))] = value
    return out


def _turn_role(raw: Mapping) -> str:
    role = raw.get("role")
    if isinstance(role, TurnRole):
        return role.value
    if str(role or "") in {item.value for item in TurnRole}:
        return str(role)
    return TurnRole.USER_CHOICE.value if bool(raw.get("isUserChoice")) else TurnRole.NARRATOR.value


def _normalize_turns(raw_turns: object, *, now: datetime) -> list[dict]:
    if not isinstance(raw_turns, list):
        return []
    turns: list[dict] = []
    for position, raw in enumerate(raw_turns, start=1):
        if not isinstance(raw, Mapping):
            continue
        content = str(raw.get("content") or "")
        role = _turn_role(raw)
        if not content.strip() and role != TurnRole.USER_CHOICE.value:
            continue
        turns.append(
            {
                "id": max(1, _int(raw.get("id"), position)),
                "content": content,
                "role": role,
                "timestamp": _iso(raw.get("timestamp"), fallback=now),
            }
        )
    return turns


def _normalize_choices(raw: object) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [_text(choice) for choice in raw if choice is not None and _text(choice)]


def _normalize_answers(raw: object) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(key): str(value) for key, value in raw.items() if value is not None}


def _normalize_questions(raw: object) -> list[dict]:
    if not isinstance(raw, list):
        return []
    questions: list[dict] = []
    for item in raw:
        if hasattr(item, "model_dump"):
            item = item.model_dump(by_alias=True)
        if not isinstance(item, Mapping) or not _text(item.get("question")):
            continue
        question: dict = {
            "question": _text(item.get("question")),
            "type": _text(item.get("type")) or "text",
        }
        options = item.get("options")
        if isinstance(options, list):
            question["options"] = [str(option) for option in options]
        max_length = _int(item.get("maxLength", item.get("max_length")), 0)
        if max_length > 0:
            question["maxLength"] = max_length
        questions.append(question)
    return questions


def normalize_record(record: SessionRecord | Mapping, *, now: datetime | None = None) -> dict:
    """Return a JSON-safe snapshot of ``record`` stamped with ``now``.

    Raises SessionValidationError when the record has no session id or no
    story title, since such a snapshot could never be matched again.
    """
    current = now or utc_now_aware()
    if isinstance(record, SessionRecord):
        data = record.model_dump(mode="json")
    elif isinstance(record, Mapping):
        data = _canonical_keys(record)
    else:
        raise SessionValidationError(f"cannot normalize session record of type {type(record).__name__}")

    session_id = _text(data.get("session_id"))
    story_title = _text(data.get("story_title"))
    if not session_id:
        raise SessionValidationError("session id is required")
    if not story_title:
        raise SessionValidationError("story title is required")

    turns = _normalize_turns(data.get("turns"), now=current)
    user_turns = sum(1 for turn in turns if turn["role"] == TurnRole.USER_CHOICE.value)
    return {
        "session_id": session_id,
        "user_id": _text(data.get("user_id")),
        "story_title": story_title,
        "story_description": _text(data.get("story_description")),
        "turns": turns,
        "pending_choices": _normalize_choices(data.get("pending_choices")),
        "story_context": _text(data.get("story_context")),
        "customization_answers": _normalize_answers(data.get("customization_answers")),
        "customization_questions": _normalize_questions(data.get("customization_questions")),
        "awaiting_input": bool(data.get("awaiting_input")),
        "completed": bool(data.get("completed")),
        "ending_type": _optional_text(data.get("ending_type")),
        "scene_image_ref": _optional_text(data.get("scene_image_ref")),
        "progress": {"total_parts": len(turns), "last_choice_index": user_turns},
        "created_at": _iso(data.get("created_at"), fallback=current),
        "last_updated": current.isoformat(),
    }


def load_record(data: Mapping | None, *, user_id: str | None = None) -> SessionRecord:
    if not isinstance(data, Mapping):
        raise SessionValidationError("session record not found")
    canonical = _canonical_keys(data)
    if not isinstance(canonical.get("turns"), list):
        raise SessionValidationError("session record has no turn list")
    if user_id is not None and _text(canonical.get("user_id")) != user_id:
        raise SessionValidationError("session record belongs to a different user")

    last_updated = parse_timestamp(canonical.get("last_updated"))
    snapshot = normalize_record(canonical, now=last_updated)
    if last_updated is None:
        # Records without a timestamp sort behind every dated record.
        snapshot["last_updated"] = datetime.min.replace(tzinfo=timezone.utc).isoformat()
    try:
        return SessionRecord.model_validate(snapshot)
    except ValidationError as exc:
        raise SessionValidationError(f"invalid session record: {exc.error_count()} errors") from exc
