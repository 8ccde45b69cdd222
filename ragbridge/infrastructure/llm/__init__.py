# LLM Adapters - 大模型对话适配器
from .ark import ArkChatModel, ArkConfig
from .ark_responses import (
    ArkResponsesChatModel,
    ArkResponsesConfig,
    CacheInfo,
    SessionCacheConfig,
    ToolWebSearch,
    UserLocation,
    invalidate_message_caches,
)
from .claude import ClaudeChatModel, ClaudeConfig, Thinking
from .deepseek import DeepSeekChatModel, DeepSeekConfig, is_prefix, set_prefix
from .gemini import GeminiChatModel, GeminiConfig
from .openai_compatible import OpenAICompatibleChatModel, OpenAICompatibleConfig
from .qianfan import QianfanChatModel, QianfanConfig
from .qwen import QwenChatModel, QwenConfig

__all__ = [
    "ArkChatModel",
    "ArkConfig",
    "ArkResponsesChatModel",
    "ArkResponsesConfig",
    "CacheInfo",
    "ClaudeChatModel",
    "ClaudeConfig",
    "DeepSeekChatModel",
    "DeepSeekConfig",
    "GeminiChatModel",
    "GeminiConfig",
    "OpenAICompatibleChatModel",
    "OpenAICompatibleConfig",
    "QianfanChatModel",
    "QianfanConfig",
    "QwenChatModel",
    "QwenConfig",
    "SessionCacheConfig",
    "Thinking",
    "ToolWebSearch",
    "UserLocation",
    "invalidate_message_caches",
    "is_prefix",
    "set_prefix",
]
