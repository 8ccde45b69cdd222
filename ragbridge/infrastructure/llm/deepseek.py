"""
DeepSeek Chat Model - DeepSeek对话模型

直接通过aiohttp调用DeepSeek HTTP接口，支持推理内容与对话前缀续写
"""

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from ragbridge.domain.entities.message import Message, ToolChoice, ToolInfo
from ragbridge.domain.errors import BackendError, ConfigError
from ragbridge.domain.ports.services import ChatModel, ModelOptions, reject_unknown_options

from .openai_compatible import parse_chunk, parse_completion, to_openai_message
from .tools import to_openai_tool_choice, to_openai_tools, validate_tool_options


logger = logging.getLogger(__name__)

COMPONENT = "DeepSeek"

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_PATH = "/chat/completions"

KEY_PREFIX = "deepseek-prefix"

# 超时和响应体解析失败同样视为后端错误
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError)


def set_prefix(message: Message):
    """
    把assistant消息标记为续写前缀

    需要使用 https://api.deepseek.com/beta 作为 base_url
    """
    message.extra[KEY_PREFIX] = True


def is_prefix(message: Message) -> bool:
    return bool(message.extra.get(KEY_PREFIX))


@dataclass
class DeepSeekConfig:
    api_key: str = ""
    model: str = ""
    base_url: str = DEFAULT_BASE_URL
    path: str = DEFAULT_PATH
    timeout: float = 60.0
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    # text / json_object
    response_format_type: Optional[str] = None
    logprobs: Optional[bool] = None
    top_logprobs: Optional[int] = None


def to_deepseek_message(message: Message) -> Dict[str, Any]:
    result = to_openai_message(message)
    if is_prefix(message):
        result["prefix"] = True
    return result


class DeepSeekChatModel(ChatModel):
    """DeepSeek对话模型"""

    def __init__(self, config: DeepSeekConfig):
        if not config.model:
            raise ConfigError("必须指定 model", component=COMPONENT)
        if not config.api_key:
            raise ConfigError("必须指定 api_key", component=COMPONENT)
        self.config = config
        self.url = f"{config.base_url.rstrip('/')}{config.path}"
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }
        self._tools: List[ToolInfo] = []
        self._tool_choice: Optional[ToolChoice] = None

        logger.info(f"初始化DeepSeek模型: {config.model}")

    def get_type(self) -> str:
        return COMPONENT

    def with_tools(self, tools: List[ToolInfo]) -> "DeepSeekChatModel":
        if not tools:
            raise ConfigError("没有可绑定的工具", component=COMPONENT)
        model = copy.copy(self)
        model._tools = list(tools)
        model._tool_choice = ToolChoice.ALLOWED
        return model

    def bind_tools(self, tools: List[ToolInfo]):
        """绑定工具（修改当前实例）"""
        if not tools:
            raise ConfigError("没有可绑定的工具", component=COMPONENT)
        self._tools = list(tools)
        self._tool_choice = ToolChoice.ALLOWED

    def bind_forced_tools(self, tools: List[ToolInfo]):
        """绑定工具并要求必须调用"""
        if not tools:
            raise ConfigError("没有可绑定的工具", component=COMPONENT)
        self._tools = list(tools)
        self._tool_choice = ToolChoice.FORCED

    def _build_payload(self, messages: List[Message], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        options = ModelOptions.pop_from(kwargs)
        reject_unknown_options(kwargs, COMPONENT)

        config = self.config
        tools = options.tools if options.tools is not None else self._tools
        tool_choice = options.tool_choice or self._tool_choice
        allowed_names = options.allowed_tool_names or []
        validate_tool_options(tool_choice, allowed_names, COMPONENT)

        payload: Dict[str, Any] = {
            "model": options.model or config.model,
            "messages": [to_deepseek_message(m) for m in messages],
        }

        optional = {
            "max_tokens": options.max_tokens if options.max_tokens is not None else config.max_tokens,
            "temperature": options.temperature if options.temperature is not None else config.temperature,
            "top_p": options.top_p if options.top_p is not None else config.top_p,
            "stop": options.stop if options.stop is not None else config.stop,
            "presence_penalty": config.presence_penalty,
            "frequency_penalty": config.frequency_penalty,
            "logprobs": config.logprobs,
            "top_logprobs": config.top_logprobs,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        if config.response_format_type:
            payload["response_format"] = {"type": config.response_format_type}

        if tools:
            payload["tools"] = to_openai_tools(tools)
            choice = to_openai_tool_choice(tool_choice, allowed_names)
            if choice is not None:
                payload["tool_choice"] = choice
        return payload

    # ============================================================
    # Transport - HTTP传输
    # ============================================================

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                headers=self.headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise BackendError(
                        f"API请求失败: {response.status} - {error_text}", component=COMPONENT
                    )
                return await response.json()

    async def _post_stream(self, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                headers=self.headers,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise BackendError(
                        f"API请求失败: {response.status} - {error_text}", component=COMPONENT
                    )
                async for line in response.content:
                    line = line.decode("utf-8").strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    yield json.loads(data)

    # ============================================================
    # Generate - 生成
    # ============================================================

    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        payload = self._build_payload(messages, kwargs)
        payload["stream"] = False

        try:
            result = await self._post(payload)
        except TRANSPORT_ERRORS as e:
            logger.error(f"DeepSeek请求失败: {e}")
            raise BackendError(f"请求失败: {e}", component=COMPONENT) from e

        return parse_completion(result, COMPONENT)

    async def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成"""
        payload = self._build_payload(messages, kwargs)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        try:
            async for chunk in self._post_stream(payload):
                message = parse_chunk(chunk)
                if message is not None:
                    yield message
        except TRANSPORT_ERRORS as e:
            logger.error(f"DeepSeek流式请求失败: {e}")
            raise BackendError(f"流式请求失败: {e}", component=COMPONENT) from e
