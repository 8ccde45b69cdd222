"""
Claude Chat Model - Anthropic Claude对话模型

实现ChatModel接口，基于anthropic异步客户端
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from anthropic import AsyncAnthropic

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

from .openai_compatible import _get
from .tools import validate_tool_options


logger = logging.getLogger(__name__)

COMPONENT = "Claude"

KEY_THINKING_SIGNATURE = "claude-thinking-signature"

EPHEMERAL = {"type": "ephemeral"}


@dataclass
class Thinking:
    """扩展思考，budget_tokens 需小于 max_tokens"""
    enable: bool = False
    budget_tokens: int = 0

    def to_param(self) -> Dict[str, Any]:
        if not self.enable:
            return {"type": "disabled"}
        return {"type": "enabled", "budget_tokens": self.budget_tokens}


@dataclass
class ClaudeConfig:
    model: str = ""
    max_tokens: int = 0
    api_key: str = ""
    base_url: Optional[str] = None
    timeout: float = 600.0
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: List[str] = field(default_factory=list)
    thinking: Optional[Thinking] = None
    disable_parallel_tool_use: Optional[bool] = None
    enable_auto_cache: bool = False


def set_thinking_signature(message: Message, signature: str):
    if signature:
        message.extra[KEY_THINKING_SIGNATURE] = signature


def get_thinking_signature(message: Message) -> str:
    return message.extra.get(KEY_THINKING_SIGNATURE, "")


# ============================================================
# Request Conversion - 请求转换
# ============================================================

def _source(part: MessagePart) -> Dict[str, Any]:
    if part.base64_data:
        return {"type": "base64", "media_type": part.mime_type, "data": part.base64_data}
    return {"type": "url", "url": part.url}


def to_claude_part(part: MessagePart) -> Dict[str, Any]:
    if part.type == PartType.TEXT:
        return {"type": "text", "text": part.text}
    if part.type == PartType.IMAGE_URL:
        return {"type": "image", "source": _source(part)}
    if part.type == PartType.FILE_URL:
        return {"type": "document", "source": _source(part)}
    raise ConfigError(f"Claude不支持的内容类型: {part.type.value}", component=COMPONENT)


def _assistant_blocks(message: Message) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    signature = get_thinking_signature(message)
    if message.reasoning_content and signature:
        blocks.append({
            "type": "thinking",
            "thinking": message.reasoning_content,
            "signature": signature,
        })
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for call in message.tool_calls:
        blocks.append({
            "type": "tool_use",
            "id": call.id,
            "name": call.function.name,
            "input": json.loads(call.function.arguments or "{}"),
        })
    return blocks


def to_claude_messages(messages: List[Message]):
    """
    转换为Claude消息格式

    Returns:
        (system_blocks, messages)；工具结果并入user轮次，相邻同角色的消息合并
    """
    system: List[Dict[str, Any]] = []
    result: List[Dict[str, Any]] = []

    for message in messages:
        if message.role == Role.SYSTEM:
            system.append({"type": "text", "text": message.content})
            continue

        if message.role == Role.ASSISTANT:
            role, blocks = "assistant", _assistant_blocks(message)
        elif message.role == Role.TOOL:
            role = "user"
            blocks = [{
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
            }]
        else:
            role = "user"
            blocks = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            blocks.extend(to_claude_part(p) for p in message.multi_content)

        if result and result[-1]["role"] == role:
            result[-1]["content"].extend(blocks)
        else:
            result.append({"role": role, "content": blocks})
    return system, result


def to_claude_tools(tools: List[ToolInfo]) -> List[Dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.desc, "input_schema": tool.to_json_schema()}
        for tool in tools
    ]


def to_claude_tool_choice(
    tool_choice: Optional[ToolChoice],
    allowed_names: List[str],
    disable_parallel_tool_use: Optional[bool] = None,
) -> Optional[Dict[str, Any]]:
    if tool_choice == ToolChoice.FORBIDDEN:
        return {"type": "none"}

    if tool_choice == ToolChoice.FORCED:
        if len(allowed_names) == 1:
            choice = {"type": "tool", "name": allowed_names[0]}
        else:
            choice = {"type": "any"}
    elif tool_choice == ToolChoice.ALLOWED or disable_parallel_tool_use is not None:
        choice = {"type": "auto"}
    else:
        return None

    if disable_parallel_tool_use is not None:
        choice["disable_parallel_tool_use"] = disable_parallel_tool_use
    return choice


def apply_auto_cache(system: List[Dict[str, Any]], messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]):
    """在最后一个工具、最后一段系统提示和最后一条输入消息上设置缓存断点"""
    if tools:
        tools[-1]["cache_control"] = dict(EPHEMERAL)
    if system:
        system[-1]["cache_control"] = dict(EPHEMERAL)
    if messages and messages[-1]["content"]:
        messages[-1]["content"][-1]["cache_control"] = dict(EPHEMERAL)


# ============================================================
# Response Conversion - 响应转换
# ============================================================

def parse_claude_usage(usage: Any) -> Optional[TokenUsage]:
    if usage is None:
        return None
    cached = _get(usage, "cache_read_input_tokens") or 0
    created = _get(usage, "cache_creation_input_tokens") or 0
    prompt = (_get(usage, "input_tokens") or 0) + cached + created
    completion = _get(usage, "output_tokens") or 0
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        cached_tokens=cached,
    )


def parse_claude_response(response: Any) -> Message:
    content: List[str] = []
    reasoning: List[str] = []
    tool_calls: List[ToolCall] = []
    message = Message(role=Role.ASSISTANT)

    for block in _get(response, "content") or []:
        block_type = _get(block, "type")
        if block_type == "text":
            content.append(_get(block, "text") or "")
        elif block_type == "thinking":
            reasoning.append(_get(block, "thinking") or "")
            set_thinking_signature(message, _get(block, "signature") or "")
        elif block_type == "tool_use":
            tool_calls.append(ToolCall(
                id=_get(block, "id") or "",
                function=FunctionCall(
                    name=_get(block, "name") or "",
                    arguments=json.dumps(_get(block, "input") or {}, ensure_ascii=False),
                ),
            ))

    if not content and not reasoning and not tool_calls:
        raise ModelResponseError("响应中没有内容", component=COMPONENT)

    message.content = "".join(content)
    message.reasoning_content = "".join(reasoning)
    message.tool_calls = tool_calls
    message.response_meta = ResponseMeta(
        finish_reason=_get(response, "stop_reason") or "",
        usage=parse_claude_usage(_get(response, "usage")),
    )
    return message


def parse_claude_event(event: Any) -> Optional[Message]:
    """把流式事件转为消息分片，不关心的事件返回None"""
    event_type = _get(event, "type")

    if event_type == "message_start":
        usage = parse_claude_usage(_get(_get(event, "message"), "usage"))
        return Message(role=Role.ASSISTANT, response_meta=ResponseMeta(usage=usage))

    if event_type == "content_block_start":
        block = _get(event, "content_block")
        block_type = _get(block, "type")
        if block_type == "tool_use":
            return Message(role=Role.ASSISTANT, tool_calls=[ToolCall(
                id=_get(block, "id") or "",
                index=_get(event, "index"),
                function=FunctionCall(name=_get(block, "name") or ""),
            )])
        if block_type == "text" and _get(block, "text"):
            return Message(role=Role.ASSISTANT, content=_get(block, "text"))
        if block_type == "thinking" and _get(block, "thinking"):
            return Message(role=Role.ASSISTANT, reasoning_content=_get(block, "thinking"))
        return None

    if event_type == "content_block_delta":
        delta = _get(event, "delta")
        delta_type = _get(delta, "type")
        if delta_type == "text_delta":
            return Message(role=Role.ASSISTANT, content=_get(delta, "text") or "")
        if delta_type == "thinking_delta":
            return Message(role=Role.ASSISTANT, reasoning_content=_get(delta, "thinking") or "")
        if delta_type == "signature_delta":
            message = Message(role=Role.ASSISTANT)
            set_thinking_signature(message, _get(delta, "signature") or "")
            return message
        if delta_type == "input_json_delta":
            return Message(role=Role.ASSISTANT, tool_calls=[ToolCall(
                index=_get(event, "index"),
                function=FunctionCall(arguments=_get(delta, "partial_json") or ""),
            )])
        return None

    if event_type == "message_delta":
        return Message(
            role=Role.ASSISTANT,
            response_meta=ResponseMeta(
                finish_reason=_get(_get(event, "delta"), "stop_reason") or "",
                usage=parse_claude_usage(_get(event, "usage")),
            ),
        )
    return None


# ============================================================
# Chat Model - 对话模型
# ============================================================

class ClaudeChatModel(ChatModel):
    """Claude对话模型"""

    def __init__(self, config: ClaudeConfig):
        if not config.model:
            raise ConfigError("必须指定 model", component=COMPONENT)
        if config.max_tokens <= 0:
            raise ConfigError("必须指定 max_tokens", component=COMPONENT)
        self.config = config
        self._client = None
        self._tools: List[ToolInfo] = []
        self._tool_choice: Optional[ToolChoice] = None

        logger.info(f"初始化Claude模型: {config.model}")

    @property
    def client(self) -> AsyncAnthropic:
        """延迟初始化客户端"""
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
        return self._client

    def get_type(self) -> str:
        return COMPONENT

    def with_tools(self, tools: List[ToolInfo]) -> "ClaudeChatModel":
        if not tools:
            raise ConfigError("没有可绑定的工具", component=COMPONENT)
        model = copy.copy(self)
        model._tools = list(tools)
        model._tool_choice = ToolChoice.ALLOWED
        return model

    def _build_request(self, messages: List[Message], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        options = ModelOptions.pop_from(kwargs)
        config = self.config
        top_k = kwargs.pop("top_k", config.top_k)
        thinking = kwargs.pop("thinking", config.thinking)
        disable_parallel = kwargs.pop("disable_parallel_tool_use", config.disable_parallel_tool_use)
        auto_cache = kwargs.pop("enable_auto_cache", config.enable_auto_cache)
        reject_unknown_options(kwargs, COMPONENT)

        tools = options.tools if options.tools is not None else self._tools
        tool_choice = options.tool_choice or self._tool_choice
        allowed_names = options.allowed_tool_names or []
        validate_tool_options(tool_choice, allowed_names, COMPONENT)

        system, claude_messages = to_claude_messages(messages)
        request: Dict[str, Any] = {
            "model": options.model or config.model,
            "max_tokens": options.max_tokens or config.max_tokens,
            "messages": claude_messages,
        }

        optional = {
            "temperature": options.temperature if options.temperature is not None else config.temperature,
            "top_p": options.top_p if options.top_p is not None else config.top_p,
            "top_k": top_k,
        }
        request.update({k: v for k, v in optional.items() if v is not None})

        stop = options.stop if options.stop is not None else config.stop_sequences
        if stop:
            request["stop_sequences"] = list(stop)
        if thinking is not None:
            request["thinking"] = thinking.to_param()

        tool_params = to_claude_tools(tools)
        if tool_params:
            request["tools"] = tool_params
            choice = to_claude_tool_choice(tool_choice, allowed_names, disable_parallel)
            if choice is not None:
                request["tool_choice"] = choice

        if auto_cache:
            apply_auto_cache(system, claude_messages, tool_params)
        if system:
            request["system"] = system
        return request

    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        request = self._build_request(messages, kwargs)

        try:
            response = await self.client.messages.create(**request)
        except Exception as e:
            logger.error(f"Claude生成失败: {e}")
            raise BackendError(f"生成失败: {e}", component=COMPONENT) from e

        return parse_claude_response(response)

    async def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成"""
        request = self._build_request(messages, kwargs)
        request["stream"] = True

        try:
            stream = await self.client.messages.create(**request)
        except Exception as e:
            logger.error(f"Claude流式生成失败: {e}")
            raise BackendError(f"流式生成失败: {e}", component=COMPONENT) from e

        try:
            async for event in stream:
                message = parse_claude_event(event)
                if message is not None:
                    yield message
        except Exception as e:
            logger.error(f"Claude流式读取失败: {e}")
            raise BackendError(f"流式读取失败: {e}", component=COMPONENT) from e
