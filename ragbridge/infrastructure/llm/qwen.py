"""
Qwen Chat Model - 通义千问对话模型

通过DashScope的OpenAI兼容模式接入
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ragbridge.domain.errors import ConfigError

from .openai_compatible import OpenAICompatibleChatModel, OpenAICompatibleConfig


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"


@dataclass
class QwenConfig(OpenAICompatibleConfig):
    """
    千问配置

    enable_thinking 控制Qwen3等混合推理模型是否输出思考过程
    """
    base_url: Optional[str] = DEFAULT_BASE_URL
    enable_thinking: Optional[bool] = None


class QwenChatModel(OpenAICompatibleChatModel):
    """通义千问对话模型"""

    component = "Qwen"

    def __init__(self, config: Optional[QwenConfig]):
        if config is None:
            raise ConfigError("配置不能为空", component=self.component)
        super().__init__(config)

    def _pop_extra_options(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        enable_thinking = kwargs.pop("enable_thinking", self.config.enable_thinking)
        if enable_thinking is None:
            return {}
        return {"extra_body": {"enable_thinking": enable_thinking}}
