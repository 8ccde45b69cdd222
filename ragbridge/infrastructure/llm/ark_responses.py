"""
Ark Responses Chat Model - 火山方舟Responses API对话模型

支持会话缓存（previous_response_id）、前缀缓存和联网搜索工具
"""

import copy
import logging
import time
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
from ragbridge.domain.errors import BackendError, ConfigError, ModelResponseError
from ragbridge.domain.ports.services import ChatModel, ModelOptions, reject_unknown_options

from .ark import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, thinking_body
from .ark_extra import (
    KEY_RESPONSE_CACHE_EXPIRE_AT,
    KEY_RESPONSE_CACHING,
    KEY_RESPONSE_ID,
    get_cache_expire_at,
    get_response_id,
    is_response_cached,
    set_cache_expire_at,
    set_model_name,
    set_response_caching,
    set_response_id,
    set_service_tier,
)
from .openai_compatible import _get
from .tools import validate_tool_options


logger = logging.getLogger(__name__)

COMPONENT = "ArkResponses"

DEFAULT_CACHE_TTL = 86400


@dataclass
class UserLocation:
    """联网搜索的用户位置"""
    type: str = "approximate"
    country: str = ""
    region: str = ""
    city: str = ""

    def to_param(self) -> Dict[str, Any]:
        param = {"type": self.type}
        for key in ("country", "region", "city"):
            value = getattr(self, key)
            if value:
                param[key] = value
        return param


@dataclass
class ToolWebSearch:
    """
    联网搜索工具

    sources 为附加搜索源，可选 toutiao / douyin / moji
    """
    limit: Optional[int] = None
    user_location: Optional[UserLocation] = None
    sources: List[str] = field(default_factory=list)
    max_keyword: Optional[int] = None

    def to_param(self) -> Dict[str, Any]:
        param: Dict[str, Any] = {"type": "web_search"}
        if self.limit is not None:
            param["limit"] = self.limit
        if self.user_location is not None:
            param["user_location"] = self.user_location.to_param()
        if self.sources:
            param["sources"] = list(self.sources)
        if self.max_keyword is not None:
            param["max_keyword"] = self.max_keyword
        return param


@dataclass
class SessionCacheConfig:
    """会话缓存，ttl 单位为秒"""
    enable_cache: bool = False
    ttl: int = DEFAULT_CACHE_TTL


@dataclass
class CacheInfo:
    response_id: str
    usage: Optional[TokenUsage] = None


@dataclass
class ArkResponsesConfig:
    model: str = ""
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    thinking: Optional[str] = None
    service_tier: Optional[str] = None
    web_search: Optional[ToolWebSearch] = None
    session_cache: Optional[SessionCacheConfig] = None
    default_headers: Dict[str, str] = field(default_factory=dict)


# ============================================================
# Input Conversion - 输入转换
# ============================================================

def _to_input_part(part: MessagePart) -> Dict[str, Any]:
    if part.type == PartType.TEXT:
        return {"type": "input_text", "text": part.text}
    if part.type == PartType.IMAGE_URL:
        item = {"type": "input_image", "image_url": part.data_url}
        if part.detail:
            item["detail"] = part.detail
        return item
    if part.type == PartType.VIDEO_URL:
        return {"type": "input_video", "video_url": part.data_url}
    if part.type == PartType.FILE_URL:
        if part.url:
            return {"type": "input_file", "file_url": part.url}
        return {"type": "input_file", "file_data": part.data_url}
    raise ConfigError(f"Responses API不支持的内容类型: {part.type.value}", component=COMPONENT)


def to_input_items(messages: List[Message]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == Role.TOOL:
            items.append({
                "type": "function_call_output",
                "call_id": message.tool_call_id,
                "output": message.content,
            })
            continue

        if message.role == Role.ASSISTANT:
            if message.content:
                items.append({
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": message.content}],
                })
            for call in message.tool_calls:
                items.append({
                    "type": "function_call",
                    "call_id": call.id,
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                })
            continue

        content = []
        if message.content:
            content.append({"type": "input_text", "text": message.content})
        content.extend(_to_input_part(p) for p in message.multi_content)
        items.append({"type": "message", "role": message.role.value, "content": content})
    return items


def _cache_alive(message: Message, now: int) -> bool:
    expire_at = get_cache_expire_at(message)
    return expire_at is None or expire_at >= now


def split_cached_history(messages: List[Message], now: Optional[int] = None):
    """
    找到最后一条带未过期缓存响应ID的消息

    Returns:
        (previous_response_id, 该消息之后的消息)

    Raises:
        ConfigError: 缓存消息之后没有新的输入
    """
    if now is None:
        now = int(time.time())

    for i in range(len(messages) - 1, -1, -1):
        message = messages[i]
        if not (get_response_id(message) and is_response_cached(message)):
            continue
        if not _cache_alive(message, now):
            logger.debug(f"跳过已过期的缓存响应: {get_response_id(message)}")
            continue
        pending = messages[i + 1:]
        if not pending:
            logger.error(f"缓存响应之后没有增量输入: {get_response_id(message)}")
            raise ConfigError(
                f"缓存响应 {get_response_id(message)} 之后没有增量输入",
                component=COMPONENT,
            )
        return get_response_id(message), pending
    return None, messages


def invalidate_message_caches(messages: List[Message]):
    """清除消息上的缓存响应ID，之后的请求会重新发送完整上下文"""
    for message in messages:
        message.extra.pop(KEY_RESPONSE_ID, None)
        message.extra.pop(KEY_RESPONSE_CACHING, None)
        message.extra.pop(KEY_RESPONSE_CACHE_EXPIRE_AT, None)


def to_response_tools(tools: List[ToolInfo]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "name": tool.name,
            "description": tool.desc,
            "parameters": tool.to_json_schema(),
        }
        for tool in tools
    ]


def to_response_tool_choice(tool_choice: Optional[ToolChoice], allowed_names: List[str]):
    if tool_choice is None:
        return None
    if tool_choice == ToolChoice.FORBIDDEN:
        return "none"
    if tool_choice == ToolChoice.ALLOWED:
        return "auto"
    if len(allowed_names) == 1:
        return {"type": "function", "name": allowed_names[0]}
    return "required"


# ============================================================
# Output Conversion - 输出转换
# ============================================================

def parse_response_usage(usage: Any) -> Optional[TokenUsage]:
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=_get(usage, "input_tokens") or 0,
        completion_tokens=_get(usage, "output_tokens") or 0,
        total_tokens=_get(usage, "total_tokens") or 0,
        cached_tokens=_get(_get(usage, "input_tokens_details"), "cached_tokens") or 0,
        reasoning_tokens=_get(_get(usage, "output_tokens_details"), "reasoning_tokens") or 0,
    )


def _finish_reason(response: Any) -> str:
    details = _get(response, "incomplete_details")
    if details is not None and _get(details, "reason"):
        return _get(details, "reason")
    return _get(response, "status") or ""


def _caching_enabled(response: Any, requested: bool) -> bool:
    caching = _get(response, "caching")
    if caching is None:
        return requested
    return _get(caching, "type") == "enabled"


def _annotate(message: Message, response: Any, expire_at: Optional[int]):
    set_response_id(message, _get(response, "id") or "")
    set_model_name(message, _get(response, "model") or "")
    set_service_tier(message, _get(response, "service_tier"))
    cached = _caching_enabled(response, expire_at is not None)
    set_response_caching(message, cached)
    if cached and expire_at is not None:
        set_cache_expire_at(message, expire_at)


def parse_response(response: Any, expire_at: Optional[int] = None) -> Message:
    """expire_at 为请求开启缓存时的过期时间，未开启缓存为None"""
    content: List[str] = []
    reasoning: List[str] = []
    tool_calls: List[ToolCall] = []

    for item in _get(response, "output") or []:
        item_type = _get(item, "type")
        if item_type == "message":
            for part in _get(item, "content") or []:
                if _get(part, "type") == "output_text":
                    content.append(_get(part, "text") or "")
        elif item_type == "reasoning":
            for summary in _get(item, "summary") or []:
                reasoning.append(_get(summary, "text") or "")
        elif item_type == "function_call":
            tool_calls.append(ToolCall(
                id=_get(item, "call_id") or "",
                function=FunctionCall(
                    name=_get(item, "name") or "",
                    arguments=_get(item, "arguments") or "",
                ),
            ))

    message = Message(
        role=Role.ASSISTANT,
        content="".join(content),
        reasoning_content="".join(reasoning),
        tool_calls=tool_calls,
        response_meta=ResponseMeta(
            finish_reason=_finish_reason(response),
            usage=parse_response_usage(_get(response, "usage")),
        ),
    )
    _annotate(message, response, expire_at)
    return message


def parse_stream_event(event: Any, expire_at: Optional[int] = None) -> Optional[Message]:
    """把流式事件转为消息分片，不关心的事件返回None"""
    event_type = _get(event, "type")

    if event_type == "response.output_text.delta":
        return Message(role=Role.ASSISTANT, content=_get(event, "delta") or "")

    if event_type == "response.reasoning_summary_text.delta":
        return Message(role=Role.ASSISTANT, reasoning_content=_get(event, "delta") or "")

    if event_type == "response.output_item.added":
        item = _get(event, "item")
        if _get(item, "type") != "function_call":
            return None
        return Message(role=Role.ASSISTANT, tool_calls=[ToolCall(
            id=_get(item, "call_id") or "",
            index=_get(event, "output_index"),
            function=FunctionCall(name=_get(item, "name") or "", arguments=_get(item, "arguments") or ""),
        )])

    if event_type == "response.function_call_arguments.delta":
        return Message(role=Role.ASSISTANT, tool_calls=[ToolCall(
            index=_get(event, "output_index"),
            function=FunctionCall(arguments=_get(event, "delta") or ""),
        )])

    if event_type in ("response.completed", "response.incomplete"):
        response = _get(event, "response")
        message = Message(
            role=Role.ASSISTANT,
            response_meta=ResponseMeta(
                finish_reason=_finish_reason(response),
                usage=parse_response_usage(_get(response, "usage")),
            ),
        )
        _annotate(message, response, expire_at)
        return message

    if event_type in ("error", "response.failed"):
        error = _get(_get(event, "response"), "error") or event
        raise ModelResponseError(
            f"响应失败: {_get(error, 'code', '')} {_get(error, 'message', '')}",
            component=COMPONENT,
        )
    return None


# ============================================================
# Chat Model - 对话模型
# ============================================================

class ArkResponsesChatModel(ChatModel):
    """
    方舟Responses API对话模型

    开启会话缓存后，输入中最后一条带缓存响应ID的消息及其之前的内容
    不再重复发送，改用 previous_response_id 引用
    """

    def __init__(self, config: ArkResponsesConfig):
        if not config.model:
            raise ConfigError("必须指定 model", component=COMPONENT)
        self.config = config
        self._client = None
        self._tools: List[ToolInfo] = []
        self._tool_choice: Optional[ToolChoice] = None

        logger.info(f"初始化方舟Responses模型: {config.model}")

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
        return "Ark"

    def with_tools(self, tools: List[ToolInfo]) -> "ArkResponsesChatModel":
        if not tools:
            raise ConfigError("没有可绑定的工具", component=COMPONENT)
        model = copy.copy(self)
        model._tools = list(tools)
        model._tool_choice = ToolChoice.ALLOWED
        return model

    def _build_request(self, messages: List[Message], kwargs: Dict[str, Any]):
        options = ModelOptions.pop_from(kwargs)
        cache = kwargs.pop("session_cache", None) or self.config.session_cache
        thinking = kwargs.pop("thinking", self.config.thinking)
        reject_unknown_options(kwargs, COMPONENT)

        config = self.config
        tools = options.tools if options.tools is not None else self._tools
        tool_choice = options.tool_choice or self._tool_choice
        allowed_names = options.allowed_tool_names or []
        validate_tool_options(tool_choice, allowed_names, COMPONENT)

        now = int(time.time())
        expire_at = now + cache.ttl if cache is not None and cache.enable_cache else None
        previous_id, pending = (None, messages)
        if expire_at is not None:
            previous_id, pending = split_cached_history(messages, now)

        request: Dict[str, Any] = {
            "model": options.model or config.model,
            "input": to_input_items(pending),
        }
        if previous_id:
            request["previous_response_id"] = previous_id

        optional = {
            "max_output_tokens": options.max_tokens if options.max_tokens is not None else config.max_output_tokens,
            "temperature": options.temperature if options.temperature is not None else config.temperature,
            "top_p": options.top_p if options.top_p is not None else config.top_p,
            "service_tier": config.service_tier,
        }
        request.update({k: v for k, v in optional.items() if v is not None})

        tool_params = to_response_tools(tools)
        if config.web_search is not None:
            tool_params.append(config.web_search.to_param())
        if tool_params:
            request["tools"] = tool_params
            choice = to_response_tool_choice(tool_choice, allowed_names)
            if choice is not None:
                request["tool_choice"] = choice

        extra_body = thinking_body(thinking)
        if expire_at is not None:
            request["store"] = True
            extra_body["caching"] = {"type": "enabled"}
            extra_body["expire_at"] = expire_at
        if extra_body:
            request["extra_body"] = extra_body
        return request, expire_at

    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        request, expire_at = self._build_request(messages, kwargs)

        try:
            response = await self.client.responses.create(**request)
        except Exception as e:
            logger.error(f"方舟Responses生成失败: {e}")
            raise BackendError(f"生成失败: {e}", component=COMPONENT) from e

        return parse_response(response, expire_at)

    async def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成"""
        request, expire_at = self._build_request(messages, kwargs)
        request["stream"] = True

        try:
            stream = await self.client.responses.create(**request)
        except Exception as e:
            logger.error(f"方舟Responses流式生成失败: {e}")
            raise BackendError(f"流式生成失败: {e}", component=COMPONENT) from e

        try:
            async for event in stream:
                message = parse_stream_event(event, expire_at)
                if message is not None:
                    yield message
        except ModelResponseError:
            raise
        except Exception as e:
            logger.error(f"方舟Responses流式读取失败: {e}")
            raise BackendError(f"流式读取失败: {e}", component=COMPONENT) from e

    async def create_prefix_cache(
        self, prefix: List[Message], ttl: int = DEFAULT_CACHE_TTL
    ) -> CacheInfo:
        """
        创建前缀缓存

        Args:
            prefix: 需要缓存的公共前缀消息（如系统提示）
            ttl: 缓存有效期（秒）

        Returns:
            CacheInfo，response_id 可写回消息作为后续请求的缓存起点
        """
        request = {
            "model": self.config.model,
            "input": to_input_items(prefix),
            "store": True,
            "extra_body": {
                "caching": {"type": "enabled", "prefix": True},
                "expire_at": int(time.time()) + ttl,
            },
        }

        try:
            response = await self.client.responses.create(**request)
        except Exception as e:
            logger.error(f"创建前缀缓存失败: {e}")
            raise BackendError(f"创建前缀缓存失败: {e}", component=COMPONENT) from e

        logger.info(f"创建前缀缓存: {_get(response, 'id')}")
        return CacheInfo(
            response_id=_get(response, "id") or "",
            usage=parse_response_usage(_get(response, "usage")),
        )
