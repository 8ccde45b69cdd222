"""
Message Entity - 对话消息实体

ChatModel 的输入输出模型，以及工具描述、流式分片合并
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class Role(str, Enum):
    """消息角色"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class PartType(str, Enum):
    """多模态内容类型"""
    TEXT = "text"
    IMAGE_URL = "image_url"
    AUDIO_URL = "audio_url"
    VIDEO_URL = "video_url"
    FILE_URL = "file_url"


@dataclass
class MessagePart:
    """
    多模态内容片段

    url 与 base64_data 二选一，base64_data 需要配合 mime_type 使用
    """
    type: PartType = PartType.TEXT
    text: str = ""
    url: str = ""
    base64_data: str = ""
    mime_type: str = ""
    detail: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def data_url(self) -> str:
        """返回可直接发送的URL（base64数据转为data URL）"""
        if self.url:
            return self.url
        if self.base64_data:
            return f"data:{self.mime_type};base64,{self.base64_data}"
        return ""


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """
    工具调用

    index 只在流式分片中使用，同一index的分片合并为一个调用
    """
    id: str = ""
    function: FunctionCall = field(default_factory=FunctionCall)
    type: str = "function"
    index: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Token用量"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    reasoning_tokens: int = 0


@dataclass
class ResponseMeta:
    finish_reason: str = ""
    usage: Optional[TokenUsage] = None


@dataclass
class Message:
    """对话消息"""
    role: Role
    content: str = ""
    name: str = ""
    multi_content: List[MessagePart] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""
    tool_name: str = ""
    reasoning_content: str = ""
    response_meta: Optional[ResponseMeta] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def system_message(content: str) -> Message:
    return Message(role=Role.SYSTEM, content=content)


def user_message(content: str) -> Message:
    return Message(role=Role.USER, content=content)


def assistant_message(content: str, tool_calls: Optional[List[ToolCall]] = None) -> Message:
    return Message(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))


def tool_message(content: str, tool_call_id: str, tool_name: str = "") -> Message:
    return Message(role=Role.TOOL, content=content, tool_call_id=tool_call_id, tool_name=tool_name)


# ============================================================
# Tool - 工具描述
# ============================================================

class ToolChoice(str, Enum):
    """
    工具选择策略

    FORBIDDEN: 不允许调用工具
    ALLOWED: 模型自行决定是否调用
    FORCED: 必须调用工具
    """
    FORBIDDEN = "forbidden"
    ALLOWED = "allowed"
    FORCED = "forced"


@dataclass
class ParameterInfo:
    """工具参数描述"""
    type: str = "string"
    desc: str = ""
    enum: List[str] = field(default_factory=list)
    required: bool = False
    elem_info: Optional["ParameterInfo"] = None
    sub_params: Dict[str, "ParameterInfo"] = field(default_factory=dict)

    def to_json_schema(self) -> Dict[str, Any]:
        if self.type == "object":
            schema = _object_schema(self.sub_params)
        else:
            schema = {"type": self.type}
        if self.desc:
            schema["description"] = self.desc
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.type == "array" and self.elem_info is not None:
            schema["items"] = self.elem_info.to_json_schema()
        return schema


def _object_schema(params: Dict[str, ParameterInfo]) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": {name: info.to_json_schema() for name, info in params.items()},
    }
    required = [name for name, info in params.items() if info.required]
    if required:
        schema["required"] = required
    return schema


@dataclass
class ToolInfo:
    """
    工具描述

    params 和 json_schema 二选一；都不提供时视为无参数工具
    """
    name: str
    desc: str = ""
    params: Optional[Dict[str, ParameterInfo]] = None
    json_schema: Optional[Dict[str, Any]] = None

    def to_json_schema(self) -> Dict[str, Any]:
        if self.json_schema is not None:
            return copy.deepcopy(self.json_schema)
        return _object_schema(self.params or {})


# ============================================================
# Stream Concat - 流式分片合并
# ============================================================

_extra_concat_funcs: Dict[str, Callable[[List[Any]], Any]] = {}


def register_extra_concat(key: str, func: Callable[[List[Any]], Any]):
    """注册extra字段的合并函数"""
    _extra_concat_funcs[key] = func


def _default_extra_concat(values: List[Any]) -> Any:
    if all(isinstance(v, str) for v in values):
        return "".join(values)
    return values[-1]


def _concat_extra(chunks: List[Message]) -> Dict[str, Any]:
    collected: Dict[str, List[Any]] = {}
    for chunk in chunks:
        for key, value in chunk.extra.items():
            collected.setdefault(key, []).append(value)

    result = {}
    for key, values in collected.items():
        func = _extra_concat_funcs.get(key, _default_extra_concat)
        result[key] = func(values)
    return result


def _concat_tool_calls(chunks: List[Message]) -> List[ToolCall]:
    merged: List[ToolCall] = []
    by_index: Dict[int, ToolCall] = {}

    for chunk in chunks:
        for call in chunk.tool_calls:
            if call.index is None:
                merged.append(copy.deepcopy(call))
                continue

            existing = by_index.get(call.index)
            if existing is None:
                existing = copy.deepcopy(call)
                by_index[call.index] = existing
                merged.append(existing)
                continue

            existing.id = existing.id or call.id
            existing.type = existing.type or call.type
            existing.function.name = existing.function.name or call.function.name
            existing.function.arguments += call.function.arguments
            existing.extra.update(call.extra)
    return merged


def _concat_usage(chunks: List[Message]) -> Optional[TokenUsage]:
    usages = [c.response_meta.usage for c in chunks if c.response_meta and c.response_meta.usage]
    if not usages:
        return None
    # 输入与输出用量可能分布在不同分片上，总量不小于两者之和
    prompt_tokens = max(u.prompt_tokens for u in usages)
    completion_tokens = max(u.completion_tokens for u in usages)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=max(max(u.total_tokens for u in usages), prompt_tokens + completion_tokens),
        cached_tokens=max(u.cached_tokens for u in usages),
        reasoning_tokens=max(u.reasoning_tokens for u in usages),
    )


def concat_messages(chunks: List[Message]) -> Message:
    """
    合并流式输出的消息分片

    Args:
        chunks: 同一角色的消息分片

    Returns:
        合并后的完整消息
    """
    if not chunks:
        raise ValueError("没有可合并的消息分片")

    role = chunks[0].role
    for chunk in chunks[1:]:
        if chunk.role != role:
            raise ValueError(f"消息分片角色不一致: {role.value} != {chunk.role.value}")

    finish_reason = ""
    for chunk in chunks:
        if chunk.response_meta and chunk.response_meta.finish_reason:
            finish_reason = chunk.response_meta.finish_reason

    usage = _concat_usage(chunks)
    response_meta = None
    if finish_reason or usage is not None:
        response_meta = ResponseMeta(finish_reason=finish_reason, usage=usage)

    return Message(
        role=role,
        content="".join(c.content for c in chunks),
        name=next((c.name for c in chunks if c.name), ""),
        multi_content=[part for c in chunks for part in c.multi_content],
        tool_calls=_concat_tool_calls(chunks),
        tool_call_id=next((c.tool_call_id for c in chunks if c.tool_call_id), ""),
        tool_name=next((c.tool_name for c in chunks if c.tool_name), ""),
        reasoning_content="".join(c.reasoning_content for c in chunks),
        response_meta=response_meta,
        extra=_concat_extra(chunks),
    )
