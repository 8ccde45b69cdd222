"""
Qianfan Chat Model - 百度千帆对话模型

通过千帆ModelBuilder v2的OpenAI兼容接口接入
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ragbridge.domain.errors import ModelResponseError

from .openai_compatible import OpenAICompatibleChatModel, OpenAICompatibleConfig, _get


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://qianfan.baidubce.com/v2"


@dataclass
class QianfanConfig(OpenAICompatibleConfig):
    """千帆配置"""
    base_url: Optional[str] = DEFAULT_BASE_URL
    app_id: str = ""
    penalty_score: Optional[float] = None
    max_completion_tokens: Optional[int] = None
    parallel_tool_calls: Optional[bool] = None


class QianfanChatModel(OpenAICompatibleChatModel):
    """百度千帆对话模型"""

    component = "Qianfan"

    def __init__(self, config: QianfanConfig):
        if config.app_id:
            config.default_headers = {**config.default_headers, "appid": config.app_id}
        super().__init__(config)

    def _pop_extra_options(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        config = self.config
        extra: Dict[str, Any] = {}
        if config.max_completion_tokens is not None:
            extra["max_completion_tokens"] = config.max_completion_tokens
        if config.parallel_tool_calls is not None:
            extra["parallel_tool_calls"] = config.parallel_tool_calls
        if config.penalty_score is not None:
            extra["extra_body"] = {"penalty_score": config.penalty_score}
        return extra

    def _check_response(self, response: Any):
        error = _get(response, "error")
        if error:
            code = _get(error, "code", "")
            message = _get(error, "message", "")
            logger.error(f"千帆返回错误: {code} {message}")
            raise ModelResponseError(f"千帆返回错误: {code} {message}", component=self.component)
