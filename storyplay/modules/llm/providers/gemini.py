import time

import httpx

from storyplay.modules.llm.base import LLMProvider


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        temperature: float = 0.9,
        max_output_tokens: int | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = float(temperature)
        self.max_output_tokens = int(max_output_tokens) if max_output_tokens is not None else None

    @staticmethod
    def _extract_text(data: dict) -> str:
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))

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
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        generation_config: dict = {"temperature": self.temperature}
        if self.max_output_tokens is not None and self.max_output_tokens > 0:
            generation_config["maxOutputTokens"] = self.max_output_tokens
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        timeout = httpx.Timeout(
            timeout=timeout_s,
            connect=connect_timeout_s if connect_timeout_s is not None else timeout_s,
        )
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(
                f"{self.base_url}/models/{model}:generateContent",
                headers=headers,
                json=payload,
            )
            resp.raise_for_status()
            data = resp.json()

        usage_raw = data.get("usageMetadata", {})
        usage = {
            "provider": self.name,
            "model": model,
            "request_id": request_id,
            "prompt_tokens": int(usage_raw.get("promptTokenCount", 0) or 0),
            "completion_tokens": int(usage_raw.get("candidatesTokenCount", 0) or 0),
            "latency_ms": int((time.perf_counter() - started) * 1000),
            "status": "success",
            "error_message": None,
        }
        return self._extract_text(data), usage
