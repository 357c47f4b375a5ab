from storyplay.modules.llm.providers.fake import FakeProvider
from storyplay.modules.llm.providers.gemini import GeminiProvider

__all__ = ["FakeProvider", "GeminiProvider"]
