# Domain Entities - 领域实体
from .document import Document
from .message import (
    FunctionCall,
    Message,
    MessagePart,
    ParameterInfo,
    PartType,
    ResponseMeta,
    Role,
    TokenUsage,
    ToolCall,
    ToolChoice,
    ToolInfo,
    assistant_message,
    concat_messages,
    register_extra_concat,
    system_message,
    tool_message,
    user_message,
)

__all__ = [
    "Document",
    "FunctionCall",
    "Message",
    "MessagePart",
    "ParameterInfo",
    "PartType",
    "ResponseMeta",
    "Role",
    "TokenUsage",
    "ToolCall",
    "ToolChoice",
    "ToolInfo",
    "assistant_message",
    "concat_messages",
    "register_extra_concat",
    "system_message",
    "tool_message",
    "user_message",
]
