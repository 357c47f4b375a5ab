import json
import re
import time

from storyplay.modules.llm.base import LLMProvider

_CHOICE_LINE_RE = re.compile(r'(?:User\'s choice/action|User\'s own action): "(.*)"')
_TITLE_RE = re.compile(r'Title: "(.*)"')


class FakeProvider(LLMProvider):
    """Offline provider returning fenced JSON shaped like the real model's output."""

    name = "fake"

    def __init__(self):
        self.generate_calls = 0
        self.fail_generate = False
        self.queued_responses: list[str] = []
        self.prompts: list[str] = []

    @staticmethod
    def _fenced(payload: dict) -> str:
        return "```json\n" + json.dumps(payload, ensure_ascii=False, indent=2) + "\n```"

    @staticmethod
    def _title(prompt: str) -> str:
        match = _TITLE_RE.search(prompt)
        return match.group(1) if match else "the story"

    def _questions(self) -> dict:
        return {
            "questions": [
                {"question": "What is your protagonist's name?", "type": "text", "maxLength": 30},
                {
                    "question": "Choose your protagonist's gender:",
                    "type": "multiple_choice",
                    "options": ["Male", "Female"],
                },
                {"question": "What is your character's profession?", "type": "text", "maxLength": 40},
            ]
        }

    def _opening(self, prompt: str) -> dict:
        title = self._title(prompt)
        return {
            "story": (
                f"Torchlight flickers across the ancient temple as {title} begins. "
                "A sealed door hums with a faint blue glow, and footsteps echo somewhere below."
            ),
            "choices": [
                "Examine the glowing door",
                "Follow the footsteps",
                "Search the altar for clues",
            ],
        }

    def _continuation(self, prompt: str) -> dict:
        match = _CHOICE_LINE_RE.search(prompt)
        choice = match.group(1) if match else "press on"
        return {
            "story": f"You decide to {choice.lower()}. The corridor narrows and a cold wind carries distant voices.",
            "choices": ["Step into the dark", "Call out to the voices", "Turn back"],
            "isEnding": False,
        }

    def _ending(self) -> dict:
        return {
            "story": "The last torch gutters out as dawn breaks over the temple steps. Your journey is complete.",
            "endingType": "bittersweet",
            "isEnding": True,
        }

    def _respond(self, prompt: str) -> str:
        if "customization questions" in prompt:
            return self._fenced(self._questions())
        if "Create a satisfying conclusion" in prompt:
            return self._fenced(self._ending())
        if "You are continuing an interactive story" in prompt:
            return self._fenced(self._continuation(prompt))
        return self._fenced(self._opening(prompt))

    async def generate(
        self,
        prompt: str,
        *,
        request_id: str,
        timeout_s: float | None,
        model: str,
        connect_timeout_s: float | None = None,
    ):
        started = time.perf_counter()
        self.generate_calls += 1
        self.prompts.append(prompt)
        if self.fail_generate:
            raise RuntimeError("fake provider failure")
        text = self.queued_responses.pop(0) if self.queued_responses else self._respond(prompt)
        usage = {
            "provider": self.name,
            "model": model,
            "request_id": request_id,
            "prompt_tokens": len(prompt.split()),
            "completion_tokens": len(text.split()),
            "latency_ms": int((time.perf_counter() - started) * 1000),
            "status": "success",
            "error_message": None,
        }
        return text, usage
