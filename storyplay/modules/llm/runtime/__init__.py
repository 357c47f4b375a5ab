from storyplay.modules.llm.runtime.engine import StoryEngine, get_story_engine
from storyplay.modules.llm.runtime.errors import LLMUnavailableError, ParseRecoveryExhausted, TransientNetworkError
from storyplay.modules.llm.runtime.recovery import RecoveryResult, TierFailure, TierSuccess, recover, recover_with_trace

__all__ = [
    "LLMUnavailableError",
    "TransientNetworkError",
    "ParseRecoveryExhausted",
    "StoryEngine",
    "get_story_engine",
    "RecoveryResult",
    "TierFailure",
    "TierSuccess",
    "recover",
    "recover_with_trace",
]
