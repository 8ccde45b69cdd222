"""
Gemini Message Extras - Gemini消息附加信息

思考签名、搜索溯源信息、代码执行结果、视频元数据存放在 extra 中
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

from google.genai import types

from ragbridge.domain.entities.message import Message, MessagePart, ToolCall, register_extra_concat


KEY_VIDEO_METADATA = "gemini_video_meta_data"
KEY_THOUGHT_SIGNATURE = "gemini_thought_signature"
KEY_GROUNDING_METADATA = "gemini_ground_metadata"
KEY_EXECUTABLE_CODE = "gemini_executable_code"
KEY_CODE_EXECUTION_RESULT = "gemini_code_execution_result"


# ============================================================
# Stream Concat - 流式合并
# ============================================================

def concat_executable_code(chunks: List[Optional[types.ExecutableCode]]) -> types.ExecutableCode:
    language = None
    code = []
    for chunk in chunks:
        if chunk is None:
            continue
        if chunk.language:
            language = chunk.language
        if chunk.code:
            code.append(chunk.code)
    return types.ExecutableCode(code="".join(code), language=language)


def concat_code_execution_result(
    chunks: List[Optional[types.CodeExecutionResult]],
) -> types.CodeExecutionResult:
    outcome = None
    output = []
    for chunk in chunks:
        if chunk is None:
            continue
        if chunk.outcome:
            outcome = chunk.outcome
        if chunk.output:
            output.append(chunk.output)
    return types.CodeExecutionResult(outcome=outcome, output="".join(output))


def concat_grounding_metadata(
    chunks: List[Optional[types.GroundingMetadata]],
) -> types.GroundingMetadata:
    lists: Dict[str, list] = {
        "grounding_chunks": [],
        "grounding_supports": [],
        "retrieval_queries": [],
        "web_search_queries": [],
    }
    search_entry_point = None
    retrieval_metadata = None
    for chunk in chunks:
        if chunk is None:
            continue
        for name, values in lists.items():
            values.extend(getattr(chunk, name) or [])
        if chunk.search_entry_point is not None:
            search_entry_point = chunk.search_entry_point
        if chunk.retrieval_metadata is not None:
            retrieval_metadata = chunk.retrieval_metadata
    return types.GroundingMetadata(
        search_entry_point=search_entry_point,
        retrieval_metadata=retrieval_metadata,
        **lists,
    )


def _last_non_empty(values: List[Any]) -> Any:
    for value in reversed(values):
        if value:
            return value
    return None


register_extra_concat(KEY_EXECUTABLE_CODE, concat_executable_code)
register_extra_concat(KEY_CODE_EXECUTION_RESULT, concat_code_execution_result)
register_extra_concat(KEY_GROUNDING_METADATA, concat_grounding_metadata)
register_extra_concat(KEY_THOUGHT_SIGNATURE, _last_non_empty)


# ============================================================
# Accessors - 读写
# ============================================================

def set_input_video_metadata(part: MessagePart, metadata: types.VideoMetadata):
    part.extra[KEY_VIDEO_METADATA] = metadata


def get_input_video_metadata(part: MessagePart) -> Optional[types.VideoMetadata]:
    metadata = part.extra.get(KEY_VIDEO_METADATA)
    if isinstance(metadata, types.VideoMetadata):
        return metadata
    return None


def _decode_signature(value: Any) -> Optional[bytes]:
    """签名可能是原始bytes，也可能是序列化后的base64字符串"""
    if isinstance(value, bytes):
        return value or None
    if isinstance(value, str) and value:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return None
    return None


def set_message_thought_signature(message: Message, signature: Optional[bytes]):
    if signature:
        message.extra[KEY_THOUGHT_SIGNATURE] = signature


def get_message_thought_signature(message: Message) -> Optional[bytes]:
    return _decode_signature(message.extra.get(KEY_THOUGHT_SIGNATURE))


def set_tool_call_thought_signature(call: ToolCall, signature: Optional[bytes]):
    """并行调用时只有第一个function_call带签名"""
    if signature:
        call.extra[KEY_THOUGHT_SIGNATURE] = signature


def get_tool_call_thought_signature(call: ToolCall) -> Optional[bytes]:
    return _decode_signature(call.extra.get(KEY_THOUGHT_SIGNATURE))


def set_grounding_metadata(message: Message, metadata: types.GroundingMetadata):
    message.extra[KEY_GROUNDING_METADATA] = metadata


def get_grounding_metadata(message: Message) -> Optional[types.GroundingMetadata]:
    metadata = message.extra.get(KEY_GROUNDING_METADATA)
    if isinstance(metadata, types.GroundingMetadata):
        return metadata
    return None


def get_executable_code(message: Message) -> Optional[types.ExecutableCode]:
    return message.extra.get(KEY_EXECUTABLE_CODE)


def get_code_execution_result(message: Message) -> Optional[types.CodeExecutionResult]:
    return message.extra.get(KEY_CODE_EXECUTION_RESULT)
