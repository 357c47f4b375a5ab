from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime

from storyplay.config import settings
from storyplay.modules.llm.runtime.engine import StoryEngine
from storyplay.modules.llm.runtime.errors import LLMUnavailableError
from storyplay.modules.llm.schemas import CustomizationQuestion, StoryResponse
from storyplay.modules.session.autosave import DebouncedTask, SerializedWriter
from storyplay.modules.session.errors import PersistenceError, SessionFlowError, SessionValidationError
from storyplay.modules.session.models import NarrativeTurn, SessionPhase, SessionRecord, TurnRole
from storyplay.modules.session.normalize import load_record, normalize_record
from storyplay.modules.session.store import SessionStore
from storyplay.modules.story import service as story_service
from storyplay.modules.story.scene_image import build_scene_image_url
from storyplay.utils.time import utc_now_aware

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def select_resumable(records: Sequence[SessionRecord], story_title: str) -> SessionRecord | None:
    candidates = [
        record
        for record in records
        if record.story_title == story_title and not record.completed and len(record.turns) > 0
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda record: record.last_updated, reverse=True)
    return candidates[0]


def _readable_records(raw_records: Sequence[dict], user_id: str) -> list[SessionRecord]:
    records: list[SessionRecord] = []
    for raw in raw_records:
        try:
            records.append(load_record(raw, user_id=user_id))
        except SessionValidationError as exc:
            logger.info("skipping unreadable session for user %s: %s", user_id, exc)
    return records


async def list_user_sessions(store: SessionStore, user_id: str, *, limit: int = 20) -> list[SessionRecord]:
    records = _readable_records(await store.query_by_user(user_id), user_id)
    records.sort(key=lambda record: record.last_updated, reverse=True)
    return records[: max(0, int(limit))]


class SessionContinuationManager:
    """Owns one player's progress through one story.

    One instance per active session: it detects an earlier unfinished run,
    resumes or resets it, advances turns through the story engine and keeps
    the store up to date with a debounced autosave.
    """

    def __init__(
        self,
        *,
        user_id: str,
        story_title: str,
        story_description: str = "",
        engine: StoryEngine,
        store: SessionStore,
        autosave_delay_s: float | None = None,
        clock: Callable[[], datetime] = utc_now_aware,
        session_id_factory: Callable[[], str] = new_session_id,
    ):
        self.user_id = str(user_id)
        self.story_title = str(story_title or "").strip()
        self.story_description = str(story_description or "").strip()
        self.engine = engine
        self.store = store
        self.record: SessionRecord | None = None
        self.candidate: SessionRecord | None = None
        self.last_error: Exception | None = None
        self._phase = SessionPhase.NO_SESSION
        self._generation = 0
        self._clock = clock
        self._session_id_factory = session_id_factory
        self._turn_lock = asyncio.Lock()
        self._writer = SerializedWriter()
        delay = settings.autosave_debounce_s if autosave_delay_s is None else autosave_delay_s
        self._autosave = DebouncedTask(self._autosave_now, delay)

    @property
    def phase(self) -> SessionPhase:
        if self._phase == SessionPhase.ACTIVE and self._writer.in_flight:
            return SessionPhase.AUTO_SAVING
        return self._phase

    @property
    def autosave_pending(self) -> bool:
        return self._autosave.pending or self._autosave.running

    def _require(self, *phases: SessionPhase) -> None:
        if self._phase not in phases:
            allowed = ", ".join(phase.value for phase in phases)
            raise SessionFlowError(
                f"operation not allowed in phase {self._phase.value} (expected {allowed})",
                phase=self._phase.value,
            )

    def _is_current(self, token: int) -> bool:
        return token == self._generation and self._phase == SessionPhase.ACTIVE

    def _fail(self, exc: Exception) -> None:
        self.last_error = exc
        self._phase = SessionPhase.FAILED

    async def check_existing(self) -> SessionRecord | None:
        self._require(SessionPhase.NO_SESSION)
        self._phase = SessionPhase.CHECKING_EXISTING
        try:
            raw_records = await self.store.query_by_user(self.user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("existing session check failed for %s, starting fresh: %s", self.story_title, exc)
            raw_records = []

        candidate = select_resumable(_readable_records(raw_records, self.user_id), self.story_title)
        if candidate is None or not candidate.has_meaningful_progress():
            self.candidate = None
            self._phase = SessionPhase.INITIALIZING
            return None

        logger.info("found resumable session %s with %d turns", candidate.session_id, len(candidate.turns))
        self.candidate = candidate
        self._phase = SessionPhase.PROMPTING_USER
        return candidate

    async def resume(self) -> SessionRecord:
        self._require(SessionPhase.PROMPTING_USER)
        candidate = self.candidate
        if candidate is None:
            raise SessionFlowError("no session to resume", phase=self._phase.value)
        self.candidate = None
        return await self._load(candidate.session_id)

    async def open_session(self, session_id: str) -> SessionRecord:
        """Load a saved session picked from the player's session list."""
        self._require(SessionPhase.NO_SESSION)
        return await self._load(session_id)

    async def _load(self, session_id: str) -> SessionRecord:
        try:
            raw = await self.store.get(session_id)
        except PersistenceError as exc:
            self._fail(exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = PersistenceError(f"failed to load session: {exc}")
            self._fail(error)
            raise error from exc
        try:
            record = load_record(raw, user_id=self.user_id)
        except SessionValidationError as exc:
            self._fail(exc)
            raise

        if not record.completed:
            record.awaiting_input = True
        self.record = record
        self.story_title = record.story_title
        self.story_description = record.story_description
        self._phase = SessionPhase.COMPLETED if record.completed else SessionPhase.ACTIVE
        logger.info("resumed session %s at turn %d", record.session_id, len(record.turns))
        return record

    async def reset(self) -> int:
        """Delete every unfinished run of this story before starting over."""
        self._require(SessionPhase.PROMPTING_USER)
        self.candidate = None
        self._generation += 1
        try:
            raw_records = await self.store.query_by_user(self.user_id)
            doomed = [
                record.session_id
                for record in _readable_records(raw_records, self.user_id)
                if record.story_title == self.story_title and not record.completed
            ]
            await asyncio.gather(*(self.store.delete(session_id) for session_id in doomed))
        except PersistenceError as exc:
            self._fail(exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = PersistenceError(f"failed to reset story: {exc}")
            self._fail(error)
            raise error from exc

        logger.info("deleted %d unfinished sessions for %s", len(doomed), self.story_title)
        self._phase = SessionPhase.INITIALIZING
        return len(doomed)

    async def fetch_customization_questions(self) -> list[CustomizationQuestion]:
        try:
            return await story_service.fetch_customization_questions(
                self.engine, self.story_title, self.story_description
            )
        except LLMUnavailableError as exc:
            logger.info("customization questions unavailable, using defaults: %s", exc)
            return story_service.default_customization_questions()

    async def initialize(
        self,
        customization_answers: Mapping[str, str] | None = None,
        customization_questions: Sequence[CustomizationQuestion] | None = None,
    ) -> StoryResponse | None:
        self._require(SessionPhase.NO_SESSION, SessionPhase.INITIALIZING)
        self._phase = SessionPhase.INITIALIZING
        token = self._generation
        answers = {str(key): str(value) for key, value in (customization_answers or {}).items() if value is not None}
        questions = list(customization_questions or [])
        try:
            response = await story_service.opening_turn(
                self.engine, self.story_title, self.story_description, answers, questions
            )
        except LLMUnavailableError as exc:
            if token == self._generation:
                self._fail(exc)
            raise
        if token != self._generation or self._phase != SessionPhase.INITIALIZING:
            logger.info("discarding opening for %s: session is no longer starting", self.story_title)
            return None

        now = self._clock()
        self.record = SessionRecord(
            session_id=self._session_id_factory(),
            user_id=self.user_id,
            story_title=self.story_title,
            story_description=self.story_description,
            customization_answers=answers,
            customization_questions=questions,
            created_at=now,
            last_updated=now,
        )
        self._phase = SessionPhase.ACTIVE
        self._append_narration(response, context_entry=response.story)
        return response

    def _require_input(self) -> SessionRecord:
        self._require(SessionPhase.ACTIVE)
        if self.record is None or not self.record.awaiting_input:
            raise SessionFlowError("session is not waiting for input", phase=self._phase.value)
        return self.record

    async def submit_choice(self, index: int) -> StoryResponse | None:
        record = self._require_input()
        if not 0 <= index < len(record.pending_choices):
            raise SessionFlowError(f"choice {index} is not available", phase=self._phase.value)
        return await self._advance(record.pending_choices[index], is_custom_input=False)

    async def submit_text(self, text: str) -> StoryResponse | None:
        self._require_input()
        player_input = str(text or "").strip()
        if not player_input:
            raise SessionFlowError("player input is empty", phase=self._phase.value)
        return await self._advance(player_input, is_custom_input=True)

    async def _advance(self, choice_text: str, *, is_custom_input: bool) -> StoryResponse | None:
        async with self._turn_lock:
            record = self._require_input()
            token = self._generation
            story_context = record.story_context
            history_text = record.history_text()
            previous_choices = list(record.pending_choices)

            user_turn = NarrativeTurn(
                id=record.next_turn_id(),
                content=choice_text,
                role=TurnRole.USER_CHOICE,
                timestamp=self._clock(),
            )
            record.turns.append(user_turn)
            record.awaiting_input = False
            record.pending_choices = []
            try:
                response = await story_service.continuation_turn(
                    self.engine,
                    record.story_title,
                    story_context,
                    choice_text,
                    history_text,
                    record.customization_answers,
                    record.customization_questions,
                    story_parts=len(record.turns),
                    user_choices=record.user_choice_count(),
                    is_custom_input=is_custom_input,
                )
            except LLMUnavailableError:
                if self._is_current(token) and record.turns and record.turns[-1] is user_turn:
                    record.turns.pop()
                    record.awaiting_input = True
                    record.pending_choices = previous_choices
                raise

            if not self._is_current(token):
                logger.info("discarding continuation for %s: session left while waiting", record.session_id)
                return None
            self._append_narration(
                response,
                context_entry=f"{story_context}\n\nUser chose: {choice_text}\n\n{response.story}",
            )
            return response

    async def end_story(self, reason: str | None = None) -> StoryResponse | None:
        """Ask the model for a closing scene and complete the session."""
        async with self._turn_lock:
            self._require(SessionPhase.ACTIVE)
            record = self.record
            if record is None:
                raise SessionFlowError("no active session", phase=self._phase.value)
            token = self._generation
            response = await story_service.ending_turn(
                self.engine,
                record.story_title,
                record.history_text(),
                reason,
                record.customization_answers,
                record.customization_questions,
            )
            if not self._is_current(token):
                return None
            self._append_narration(response, context_entry=f"{record.story_context}\n\n{response.story}")
            return response

    def _append_narration(self, response: StoryResponse, *, context_entry: str) -> None:
        record = self.record
        if record is None:
            return
        now = self._clock()
        record.turns.append(
            NarrativeTurn(id=record.next_turn_id(), content=response.story, role=TurnRole.NARRATOR, timestamp=now)
        )
        record.story_context = context_entry.strip()
        record.pending_choices = [] if response.is_ending else list(response.choices)
        record.awaiting_input = not response.is_ending
        scene_ref = build_scene_image_url(response.image_prompt, seed=int(now.timestamp() * 1000))
        if scene_ref:
            record.scene_image_ref = scene_ref
        if response.is_ending:
            record.completed = True
            record.ending_type = response.ending_type
            self._phase = SessionPhase.COMPLETED
            logger.info("session %s completed with %s ending", record.session_id, response.ending_type or "unique")
        record.refresh_progress()
        record.last_updated = now
        self._autosave.schedule()

    async def _write_snapshot(self) -> None:
        record = self.record
        if record is None or not record.turns:
            return
        now = self._clock()
        snapshot = normalize_record(record, now=now)
        await self.store.put(record.session_id, snapshot)
        record.last_updated = now

    async def _autosave_now(self) -> None:
        try:
            await self._writer.run(self._write_snapshot)
        except Exception as exc:  # noqa: BLE001
            session_id = self.record.session_id if self.record else None
            logger.warning("autosave failed for session %s: %s", session_id, exc)

    async def save(self) -> None:
        """Write the current state now, surfacing any store failure."""
        await self._autosave.stop()
        try:
            await self._writer.run(self._write_snapshot)
        except (PersistenceError, SessionValidationError):
            raise
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"failed to save session: {exc}") from exc

    async def leave(self) -> None:
        """Best-effort final save when the player navigates away."""
        self._generation += 1
        previous = self._phase
        self._phase = SessionPhase.CLOSED
        if previous in {SessionPhase.ACTIVE, SessionPhase.COMPLETED}:
            await self.save()

    async def keep_and_exit(self) -> None:
        self._require(SessionPhase.COMPLETED)
        await self.leave()

    async def delete_session(self) -> bool:
        self._require(SessionPhase.COMPLETED)
        self._generation += 1
        await self._autosave.stop()
        record = self.record
        self._phase = SessionPhase.CLOSED
        if record is None:
            return False
        try:
            return await self.store.delete(record.session_id)
        except PersistenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"failed to delete session: {exc}") from exc

    def retry_as_new(self) -> None:
        self._require(SessionPhase.FAILED)
        self._generation += 1
        self.record = None
        self.candidate = None
        self.last_error = None
        self._phase = SessionPhase.INITIALIZING

    def exit(self) -> None:
        self._generation += 1
        self._autosave.cancel()
        self._phase = SessionPhase.CLOSED
