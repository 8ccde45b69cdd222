"""
Gemini Chat Model - Google Gemini对话模型

实现ChatModel接口，基于google-genai的异步接口
"""

import base64
import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from google import genai
from google.genai import types

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

from .gemini_extra import (
    KEY_CODE_EXECUTION_RESULT,
    KEY_EXECUTABLE_CODE,
    get_input_video_metadata,
    get_message_thought_signature,
    get_tool_call_thought_signature,
    set_grounding_metadata,
    set_message_thought_signature,
    set_tool_call_thought_signature,
)
from .tools import validate_tool_options


logger = logging.getLogger(__name__)

COMPONENT = "Gemini"


@dataclass
class GeminiConfig:
    """
    Gemini配置

    client 可以直接传入已创建的 genai.Client，否则用 api_key 创建
    """
    model: str = ""
    api_key: str = ""
    client: Optional[genai.Client] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[float] = None
    response_schema: Optional[Dict[str, Any]] = None
    enable_code_execution: bool = False
    safety_settings: List[types.SafetySetting] = field(default_factory=list)
    thinking_config: Optional[types.ThinkingConfig] = None
    response_modalities: List[str] = field(default_factory=list)


# ============================================================
# Request Conversion - 请求转换
# ============================================================

def to_gemini_part(part: MessagePart) -> types.Part:
    if part.type == PartType.TEXT:
        return types.Part(text=part.text)

    if part.base64_data:
        if not part.mime_type:
            raise ConfigError("base64内容必须指定 mime_type", component=COMPONENT)
        result = types.Part(
            inline_data=types.Blob(mime_type=part.mime_type, data=base64.b64decode(part.base64_data))
        )
    elif part.url:
        result = types.Part(file_data=types.FileData(file_uri=part.url, mime_type=part.mime_type or None))
    else:
        raise ConfigError(f"{part.type.value} 内容缺少 url 或 base64_data", component=COMPONENT)

    if part.type == PartType.VIDEO_URL:
        result.video_metadata = get_input_video_metadata(part)
    return result


def _parse_arguments(arguments: str) -> Dict[str, Any]:
    if not arguments:
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ConfigError(f"工具调用参数不是合法JSON: {e}", component=COMPONENT) from e


def _tool_response(content: str) -> Dict[str, Any]:
    try:
        value = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return {"output": content}
    if isinstance(value, dict):
        return value
    return {"output": value}


def to_gemini_contents(messages: List[Message]):
    """
    转换为Gemini内容

    Returns:
        (system_instruction, contents)；assistant对应model角色，工具结果作为user角色的function_response
    """
    system_texts: List[str] = []
    contents: List[types.Content] = []
    call_names: Dict[str, str] = {}

    for message in messages:
        if message.role == Role.SYSTEM:
            system_texts.append(message.content)
            continue

        parts: List[types.Part] = []
        if message.role == Role.ASSISTANT:
            role = "model"
            if message.content:
                parts.append(types.Part(
                    text=message.content,
                    thought_signature=get_message_thought_signature(message),
                ))
            for call in message.tool_calls:
                call_names[call.id] = call.function.name
                parts.append(types.Part(
                    function_call=types.FunctionCall(
                        id=call.id or None,
                        name=call.function.name,
                        args=_parse_arguments(call.function.arguments),
                    ),
                    thought_signature=get_tool_call_thought_signature(call),
                ))
        elif message.role == Role.TOOL:
            role = "user"
            parts.append(types.Part(function_response=types.FunctionResponse(
                id=message.tool_call_id or None,
                name=message.tool_name or call_names.get(message.tool_call_id, ""),
                response=_tool_response(message.content),
            )))
        else:
            role = "user"
            if message.content:
                parts.append(types.Part(text=message.content))
            parts.extend(to_gemini_part(p) for p in message.multi_content)

        if contents and contents[-1].role == role:
            contents[-1].parts.extend(parts)
        else:
            contents.append(types.Content(role=role, parts=parts))

    system_instruction = "\n".join(system_texts) if system_texts else None
    return system_instruction, contents


def to_gemini_tools(tools: List[ToolInfo], enable_code_execution: bool = False) -> List[types.Tool]:
    result = []
    if tools:
        result.append(types.Tool(function_declarations=[
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.desc,
                parameters_json_schema=tool.to_json_schema(),
            )
            for tool in tools
        ]))
    if enable_code_execution:
        result.append(types.Tool(code_execution=types.ToolCodeExecution()))
    return result


def to_gemini_tool_config(
    tool_choice: Optional[ToolChoice], allowed_names: List[str]
) -> Optional[types.ToolConfig]:
    if tool_choice is None:
        return None
    if tool_choice == ToolChoice.FORBIDDEN:
        calling = types.FunctionCallingConfig(mode=types.FunctionCallingConfigMode.NONE)
    elif tool_choice == ToolChoice.ALLOWED:
        calling = types.FunctionCallingConfig(mode=types.FunctionCallingConfigMode.AUTO)
    else:
        calling = types.FunctionCallingConfig(
            mode=types.FunctionCallingConfigMode.ANY,
            allowed_function_names=list(allowed_names) or None,
        )
    return types.ToolConfig(function_calling_config=calling)


# ============================================================
# Response Conversion - 响应转换
# ============================================================

def parse_gemini_usage(usage: Any) -> Optional[TokenUsage]:
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_token_count or 0,
        completion_tokens=usage.candidates_token_count or 0,
        total_tokens=usage.total_token_count or 0,
        cached_tokens=usage.cached_content_token_count or 0,
        reasoning_tokens=usage.thoughts_token_count or 0,
    )


def _finish_reason(candidate: Any) -> str:
    reason = candidate.finish_reason
    if reason is None:
        return ""
    return getattr(reason, "value", str(reason))


def parse_gemini_response(response: Any, allow_empty: bool = False) -> Message:
    """
    解析响应或流式分片

    Args:
        allow_empty: 流式分片可能只带用量，此时不要求有候选结果
    """
    usage = parse_gemini_usage(response.usage_metadata)
    candidates = response.candidates or []
    if not candidates:
        if allow_empty:
            return Message(role=Role.ASSISTANT, response_meta=ResponseMeta(usage=usage))
        raise ModelResponseError("响应中没有候选结果", component=COMPONENT)

    candidate = candidates[0]
    message = Message(
        role=Role.ASSISTANT,
        response_meta=ResponseMeta(finish_reason=_finish_reason(candidate), usage=usage),
    )
    content: List[str] = []
    reasoning: List[str] = []

    parts = candidate.content.parts if candidate.content and candidate.content.parts else []
    for part in parts:
        if part.function_call is not None:
            call = ToolCall(
                id=part.function_call.id or part.function_call.name,
                function=FunctionCall(
                    name=part.function_call.name,
                    arguments=json.dumps(part.function_call.args or {}, ensure_ascii=False),
                ),
            )
            set_tool_call_thought_signature(call, part.thought_signature)
            message.tool_calls.append(call)
            continue

        set_message_thought_signature(message, part.thought_signature)
        if part.text is not None:
            if part.thought:
                reasoning.append(part.text)
            else:
                content.append(part.text)
        elif part.inline_data is not None:
            message.multi_content.append(MessagePart(
                type=PartType.IMAGE_URL,
                base64_data=base64.b64encode(part.inline_data.data or b"").decode("ascii"),
                mime_type=part.inline_data.mime_type or "",
            ))
        elif part.executable_code is not None:
            message.extra[KEY_EXECUTABLE_CODE] = part.executable_code
        elif part.code_execution_result is not None:
            message.extra[KEY_CODE_EXECUTION_RESULT] = part.code_execution_result

    message.content = "".join(content)
    message.reasoning_content = "".join(reasoning)
    if candidate.grounding_metadata is not None:
        set_grounding_metadata(message, candidate.grounding_metadata)
    return message


# ============================================================
# Chat Model - 对话模型
# ============================================================

class GeminiChatModel(ChatModel):
    """Gemini对话模型"""

    def __init__(self, config: GeminiConfig):
        if not config.model:
            raise ConfigError("必须指定 model", component=COMPONENT)
        if config.client is None and not config.api_key:
            raise ConfigError("必须提供 client 或 api_key", component=COMPONENT)
        self.config = config
        self._client = config.client
        self._tools: List[ToolInfo] = []
        self._tool_choice: Optional[ToolChoice] = None

        logger.info(f"初始化Gemini模型: {config.model}")

    @property
    def client(self) -> genai.Client:
        """延迟初始化客户端"""
        if self._client is None:
            self._client = genai.Client(api_key=self.config.api_key)
        return self._client

    def get_type(self) -> str:
        return COMPONENT

    def with_tools(self, tools: List[ToolInfo]) -> "GeminiChatModel":
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
        response_schema = kwargs.pop("response_schema", config.response_schema)
        thinking_config = kwargs.pop("thinking_config", config.thinking_config)
        reject_unknown_options(kwargs, COMPONENT)

        tools = options.tools if options.tools is not None else self._tools
        tool_choice = options.tool_choice or self._tool_choice
        allowed_names = options.allowed_tool_names or []
        validate_tool_options(tool_choice, allowed_names, COMPONENT)

        system_instruction, contents = to_gemini_contents(messages)

        generation = types.GenerateContentConfig(
            system_instruction=system_instruction,
            max_output_tokens=options.max_tokens if options.max_tokens is not None else config.max_tokens,
            temperature=options.temperature if options.temperature is not None else config.temperature,
            top_p=options.top_p if options.top_p is not None else config.top_p,
            top_k=top_k,
            stop_sequences=options.stop,
            safety_settings=config.safety_settings or None,
            thinking_config=thinking_config,
            response_modalities=config.response_modalities or None,
        )
        if response_schema is not None:
            generation.response_mime_type = "application/json"
            generation.response_json_schema = response_schema

        gemini_tools = to_gemini_tools(tools, config.enable_code_execution)
        if gemini_tools:
            generation.tools = gemini_tools
            if tools:
                generation.tool_config = to_gemini_tool_config(tool_choice, allowed_names)

        return {
            "model": options.model or config.model,
            "contents": contents,
            "config": generation,
        }

    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        request = self._build_request(messages, kwargs)

        try:
            response = await self.client.aio.models.generate_content(**request)
        except Exception as e:
            logger.error(f"Gemini生成失败: {e}")
            raise BackendError(f"生成失败: {e}", component=COMPONENT) from e

        return parse_gemini_response(response)

    async def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成"""
        request = self._build_request(messages, kwargs)

        try:
            stream = await self.client.aio.models.generate_content_stream(**request)
        except Exception as e:
            logger.error(f"Gemini流式生成失败: {e}")
            raise BackendError(f"流式生成失败: {e}", component=COMPONENT) from e

        try:
            async for chunk in stream:
                yield parse_gemini_response(chunk, allow_empty=True)
        except ModelResponseError:
            raise
        except Exception as e:
            logger.error(f"Gemini流式读取失败: {e}")
            raise BackendError(f"流式读取失败: {e}", component=COMPONENT) from e
