"""
OpenAI Compatible Chat Model - OpenAI兼容协议对话模型

实现ChatModel接口，千问、千帆、方舟等兼容OpenAI协议的服务在此基础上扩展
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from ragbridge.domain.entities.message import (
    FunctionCall,
    Message,
    MessagePart,
    PartType,
    ResponseMeta,
    Role,
    TokenUsage,
    ToolCall,
    ToolChoice,
    ToolInfo,
)
from ragbridge.domain.errors import BackendError, ComponentError, ConfigError, ModelResponseError
from ragbridge.domain.ports.services import ChatModel, ModelOptions, reject_unknown_options

from .tools import to_openai_tool_choice, to_openai_tools, validate_tool_options


logger = logging.getLogger(__name__)


def _get(obj: Any, name: str, default: Any = None) -> Any:
    """同时兼容SDK对象和原始JSON字典"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


# ============================================================
# Request Conversion - 请求转换
# ============================================================

def to_openai_part(part: MessagePart) -> Dict[str, Any]:
    if part.type == PartType.TEXT:
        return {"type": "text", "text": part.text}
    if part.type == PartType.IMAGE_URL:
        image = {"url": part.data_url}
        if part.detail:
            image["detail"] = part.detail
        return {"type": "image_url", "image_url": image}
    if part.type == PartType.AUDIO_URL:
        audio_format = part.mime_type.split("/")[-1] if part.mime_type else "wav"
        return {
            "type": "input_audio",
            "input_audio": {"data": part.base64_data or part.url, "format": audio_format},
        }
    if part.type == PartType.VIDEO_URL:
        return {"type": "video_url", "video_url": {"url": part.data_url}}
    return {"type": "file", "file": {"file_data": part.data_url}}


def to_openai_message(message: Message) -> Dict[str, Any]:
    result: Dict[str, Any] = {"role": message.role.value}

    if message.multi_content:
        parts = []
        if message.content:
            parts.append({"type": "text", "text": message.content})
        parts.extend(to_openai_part(p) for p in message.multi_content)
        result["content"] = parts
    else:
        result["content"] = message.content

    if message.name:
        result["name"] = message.name
    if message.tool_calls:
        result["tool_calls"] = [
            {
                "id": call.id,
                "type": call.type or "function",
                "function": {"name": call.function.name, "arguments": call.function.arguments},
            }
            for call in message.tool_calls
        ]
    if message.role == Role.TOOL:
        result["tool_call_id"] = message.tool_call_id
    return result


def to_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    return [to_openai_message(m) for m in messages]


# ============================================================
# Response Conversion - 响应转换
# ============================================================

def parse_usage(usage: Any) -> Optional[TokenUsage]:
    if usage is None:
        return None
    prompt_details = _get(usage, "prompt_tokens_details")
    completion_details = _get(usage, "completion_tokens_details")
    return TokenUsage(
        prompt_tokens=_get(usage, "prompt_tokens") or 0,
        completion_tokens=_get(usage, "completion_tokens") or 0,
        total_tokens=_get(usage, "total_tokens") or 0,
        cached_tokens=_get(prompt_details, "cached_tokens") or 0,
        reasoning_tokens=_get(completion_details, "reasoning_tokens") or 0,
    )


def parse_tool_calls(raw_calls: Any, with_index: bool = False) -> List[ToolCall]:
    calls = []
    for raw in raw_calls or []:
        function = _get(raw, "function")
        calls.append(ToolCall(
            id=_get(raw, "id") or "",
            type=_get(raw, "type") or "function",
            function=FunctionCall(
                name=_get(function, "name") or "",
                arguments=_get(function, "arguments") or "",
            ),
            index=_get(raw, "index") if with_index else None,
        ))
    return calls


def pick_choice(choices: Any, component: Optional[str] = None) -> Any:
    """选出index为0的choice"""
    if not choices:
        raise ModelResponseError("响应中没有choices", component=component)
    for choice in choices:
        if (_get(choice, "index") or 0) == 0:
            return choice
    raise ModelResponseError("响应中未找到index为0的choice", component=component)


def parse_completion(response: Any, component: Optional[str] = None) -> Message:
    choice = pick_choice(_get(response, "choices"), component)
    raw = _get(choice, "message")
    return Message(
        role=Role.ASSISTANT,
        content=_get(raw, "content") or "",
        tool_calls=parse_tool_calls(_get(raw, "tool_calls")),
        reasoning_content=_get(raw, "reasoning_content") or "",
        response_meta=ResponseMeta(
            finish_reason=_get(choice, "finish_reason") or "",
            usage=parse_usage(_get(response, "usage")),
        ),
    )


def parse_chunk(chunk: Any) -> Optional[Message]:
    """解析流式分片，没有任何内容的分片返回None"""
    usage = parse_usage(_get(chunk, "usage"))
    choices = _get(chunk, "choices") or []
    if not choices:
        if usage is None:
            return None
        return Message(role=Role.ASSISTANT, response_meta=ResponseMeta(usage=usage))

    choice = choices[0]
    delta = _get(choice, "delta")
    return Message(
        role=Role.ASSISTANT,
        content=_get(delta, "content") or "",
        reasoning_content=_get(delta, "reasoning_content") or "",
        tool_calls=parse_tool_calls(_get(delta, "tool_calls"), with_index=True),
        response_meta=ResponseMeta(
            finish_reason=_get(choice, "finish_reason") or "",
            usage=usage,
        ),
    )


# ============================================================
# Chat Model - 对话模型
# ============================================================

@dataclass
class OpenAICompatibleConfig:
    """OpenAI兼容服务配置，未设置的采样参数不下发"""
    model: str = ""
    api_key: str = ""
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    seed: Optional[int] = None
    response_format: Optional[Dict[str, Any]] = None
    user: Optional[str] = None
    extra_body: Dict[str, Any] = field(default_factory=dict)
    default_headers: Dict[str, str] = field(default_factory=dict)


class OpenAICompatibleChatModel(ChatModel):
    """
    OpenAI兼容对话模型

    子类通过以下钩子扩展：
        _pop_extra_options: 取出服务特有的调用参数，返回需要合并到请求中的字段
        _check_response: 校验响应
        _annotate: 在消息上附加服务特有的信息
    """

    component = "OpenAICompatible"

    def __init__(self, config: OpenAICompatibleConfig):
        if not config.model:
            raise ConfigError("必须指定 model", component=self.component)
        self.config = config
        self._client = None
        self._tools: List[ToolInfo] = []
        self._tool_choice: Optional[ToolChoice] = None
        self._allowed_tool_names: List[str] = []

        logger.info(f"初始化{self.get_type()}模型: {config.model}")

    @property
    def client(self) -> AsyncOpenAI:
        """延迟初始化客户端"""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                default_headers=self.config.default_headers or None,
            )
        return self._client

    def get_type(self) -> str:
        return self.component

    # ------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------

    def with_tools(self, tools: List[ToolInfo]) -> "OpenAICompatibleChatModel":
        if not tools:
            raise ConfigError("没有可绑定的工具", component=self.component)
        model = copy.copy(self)
        model._tools = list(tools)
        model._tool_choice = ToolChoice.ALLOWED
        model._allowed_tool_names = []
        return model

    def bind_tools(self, tools: List[ToolInfo]):
        """绑定工具（修改当前实例）"""
        if not tools:
            raise ConfigError("没有可绑定的工具", component=self.component)
        self._tools = list(tools)
        self._tool_choice = ToolChoice.ALLOWED

    def bind_forced_tools(self, tools: List[ToolInfo]):
        """绑定工具并要求必须调用"""
        if not tools:
            raise ConfigError("没有可绑定的工具", component=self.component)
        self._tools = list(tools)
        self._tool_choice = ToolChoice.FORCED

    # ------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------

    def _pop_extra_options(self, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        return to_openai_messages(messages)

    def _check_response(self, response: Any):
        pass

    def _annotate(self, message: Message, response: Any):
        pass

    # ------------------------------------------------------------
    # Request
    # ------------------------------------------------------------

    def _build_request(self, messages: List[Message], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        options = ModelOptions.pop_from(kwargs)
        extra = self._pop_extra_options(kwargs)
        reject_unknown_options(kwargs, self.component)

        config = self.config
        tools = options.tools if options.tools is not None else self._tools
        tool_choice = options.tool_choice or self._tool_choice
        allowed_names = options.allowed_tool_names or self._allowed_tool_names
        validate_tool_options(tool_choice, allowed_names, self.component)

        request: Dict[str, Any] = {
            "model": options.model or config.model,
            "messages": self._convert_messages(messages),
        }

        optional = {
            "max_tokens": options.max_tokens if options.max_tokens is not None else config.max_tokens,
            "temperature": options.temperature if options.temperature is not None else config.temperature,
            "top_p": options.top_p if options.top_p is not None else config.top_p,
            "stop": options.stop if options.stop is not None else config.stop,
            "presence_penalty": config.presence_penalty,
            "frequency_penalty": config.frequency_penalty,
            "seed": config.seed,
            "response_format": config.response_format,
            "user": config.user,
        }
        request.update({k: v for k, v in optional.items() if v is not None})

        if tools:
            request["tools"] = to_openai_tools(tools)
            choice = to_openai_tool_choice(tool_choice, allowed_names)
            if choice is not None:
                request["tool_choice"] = choice

        extra_body = dict(config.extra_body)
        extra_body.update(extra.pop("extra_body", {}))
        request.update(extra)
        if extra_body:
            request["extra_body"] = extra_body
        return request

    # ------------------------------------------------------------
    # Generate
    # ------------------------------------------------------------

    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        request = self._build_request(messages, kwargs)

        try:
            response = await self.client.chat.completions.create(**request)
        except Exception as e:
            logger.error(f"{self.get_type()}生成失败: {e}")
            raise BackendError(f"生成失败: {e}", component=self.component) from e

        self._check_response(response)
        message = parse_completion(response, self.component)
        self._annotate(message, response)
        return message

    async def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成"""
        request = self._build_request(messages, kwargs)
        request["stream"] = True
        request["stream_options"] = {"include_usage": True}

        try:
            stream = await self.client.chat.completions.create(**request)
        except Exception as e:
            logger.error(f"{self.get_type()}流式生成失败: {e}")
            raise BackendError(f"流式生成失败: {e}", component=self.component) from e

        try:
            async for chunk in stream:
                self._check_response(chunk)
                message = parse_chunk(chunk)
                if message is None:
                    continue
                self._annotate(message, chunk)
                yield message
        except ComponentError:
            raise
        except Exception as e:
            logger.error(f"{self.get_type()}流式读取失败: {e}")
            raise BackendError(f"流式读取失败: {e}", component=self.component) from e
