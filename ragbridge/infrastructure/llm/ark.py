"""
Ark Chat Model - 火山方舟对话模型

通过方舟 /api/v3 的OpenAI兼容Chat Completions接口接入
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ragbridge.domain.entities.message import Message
from ragbridge.domain.errors import ConfigError

from .ark_extra import set_ark_request_id, set_model_name, set_service_tier
from .openai_compatible import OpenAICompatibleChatModel, OpenAICompatibleConfig, _get


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ark.cn-beijing.volces.com/api/v3"
DEFAULT_TIMEOUT = 600.0

THINKING_TYPES = ("enabled", "disabled", "auto")


@dataclass
class ArkConfig(OpenAICompatibleConfig):
    """
    方舟配置

    model 为模型名或推理接入点ID；thinking 取 enabled / disabled / auto
    """
    base_url: Optional[str] = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    thinking: Optional[str] = None
    service_tier: Optional[str] = None
    reasoning_effort: Optional[str] = None


def thinking_body(thinking: Optional[str]) -> Dict[str, Any]:
    if thinking is None:
        return {}
    if thinking not in THINKING_TYPES:
        raise ConfigError(f"不支持的thinking类型: {thinking}", component="Ark")
    return {"thinking": {"type": thinking}}


class ArkChatModel(OpenAICompatibleChatModel):
    """火山方舟对话模型"""

    component = "Ark"

    def _pop_extra_options(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        config = self.config
        extra: Dict[str, Any] = {}

        thinking = kwargs.pop("thinking", config.thinking)
        body = thinking_body(thinking)
        if body:
            extra["extra_body"] = body

        service_tier = kwargs.pop("service_tier", config.service_tier)
        if service_tier:
            extra["service_tier"] = service_tier
        reasoning_effort = kwargs.pop("reasoning_effort", config.reasoning_effort)
        if reasoning_effort:
            extra["reasoning_effort"] = reasoning_effort
        return extra

    def _annotate(self, message: Message, response: Any):
        set_ark_request_id(message, getattr(response, "_request_id", None) or _get(response, "id") or "")
        set_model_name(message, _get(response, "model") or "")
        set_service_tier(message, _get(response, "service_tier"))
