"""
Gemini Model Tests - Gemini对话模型测试
"""

import base64
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from google.genai import types

from ragbridge.domain.entities.message import (
    FunctionCall,
    Message,
    MessagePart,
    PartType,
    Role,
    ToolCall,
    ToolChoice,
    ToolInfo,
    concat_messages,
    system_message,
    tool_message,
    user_message,
)
from ragbridge.domain.errors import ConfigError, ModelResponseError
from ragbridge.infrastructure.llm import GeminiChatModel, GeminiConfig
from ragbridge.infrastructure.llm.gemini import to_gemini_contents
from ragbridge.infrastructure.llm.gemini_extra import (
    KEY_THOUGHT_SIGNATURE,
    concat_code_execution_result,
    get_code_execution_result,
    get_executable_code,
    get_grounding_metadata,
    get_message_thought_signature,
    get_tool_call_thought_signature,
    set_input_video_metadata,
    set_tool_call_thought_signature,
)


USAGE = types.GenerateContentResponseUsageMetadata(
    prompt_token_count=10,
    candidates_token_count=5,
    total_token_count=18,
    thoughts_token_count=3,
)


def gemini_response(*parts, finish_reason=types.FinishReason.STOP, grounding=None, usage=USAGE):
    return types.GenerateContentResponse(
        candidates=[types.Candidate(
            content=types.Content(role="model", parts=list(parts)),
            finish_reason=finish_reason,
            grounding_metadata=grounding,
        )],
        usage_metadata=usage,
    )


def make_model(**kwargs):
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.models.generate_content_stream = AsyncMock()
    return GeminiChatModel(GeminiConfig(model="gemini-2.5-flash", client=client, **kwargs))


class TestGeminiConversion:
    """消息转换测试"""

    def test_roles_and_function_parts(self):
        call = ToolCall(id="call-1", function=FunctionCall(name="search", arguments='{"q":"a"}'))
        set_tool_call_thought_signature(call, b"sig")
        messages = [
            system_message("你是助手"),
            user_message("搜一下"),
            Message(role=Role.ASSISTANT, tool_calls=[call]),
            tool_message('{"hits": 3}', tool_call_id="call-1"),
        ]

        system, contents = to_gemini_contents(messages)

        assert system == "你是助手"
        assert [c.role for c in contents] == ["user", "model", "user"]
        function_part = contents[1].parts[0]
        assert function_part.function_call.args == {"q": "a"}
        assert function_part.thought_signature == b"sig"
        response = contents[2].parts[0].function_response
        assert response.name == "search"
        assert response.response == {"hits": 3}

    def test_plain_tool_output_wrapped(self):
        _, contents = to_gemini_contents([tool_message("纯文本", tool_call_id="c", tool_name="now")])

        assert contents[0].parts[0].function_response.response == {"output": "纯文本"}

    def test_media_parts(self):
        video = MessagePart(type=PartType.VIDEO_URL, url="gs://bucket/a.mp4", mime_type="video/mp4")
        set_input_video_metadata(video, types.VideoMetadata(fps=2.0))
        image = MessagePart(
            type=PartType.IMAGE_URL,
            base64_data=base64.b64encode(b"png").decode(),
            mime_type="image/png",
        )

        _, contents = to_gemini_contents([Message(role=Role.USER, multi_content=[video, image])])

        parts = contents[0].parts
        assert parts[0].file_data.file_uri == "gs://bucket/a.mp4"
        assert parts[0].video_metadata.fps == 2.0
        assert parts[1].inline_data.data == b"png"

    def test_base64_requires_mime_type(self):
        part = MessagePart(type=PartType.IMAGE_URL, base64_data="cG5n")

        with pytest.raises(ConfigError):
            to_gemini_contents([Message(role=Role.USER, multi_content=[part])])


class TestGeminiExtras:
    """附加信息测试"""

    def test_signature_from_base64_string(self):
        message = Message(role=Role.ASSISTANT, extra={KEY_THOUGHT_SIGNATURE: base64.b64encode(b"sig").decode()})

        assert get_message_thought_signature(message) == b"sig"

    def test_invalid_signature_string(self):
        message = Message(role=Role.ASSISTANT, extra={KEY_THOUGHT_SIGNATURE: "不是base64"})

        assert get_message_thought_signature(message) is None

    def test_concat_code_execution_result(self):
        result = concat_code_execution_result([
            types.CodeExecutionResult(output="1\n"),
            None,
            types.CodeExecutionResult(outcome=types.Outcome.OUTCOME_OK, output="2\n"),
        ])

        assert result.output == "1\n2\n"
        assert result.outcome == types.Outcome.OUTCOME_OK


class TestGeminiGenerate:
    """生成测试"""

    def test_requires_client_or_key(self):
        with pytest.raises(ConfigError):
            GeminiChatModel(GeminiConfig(model="gemini-2.5-flash"))

    @pytest.mark.asyncio
    async def test_generate(self):
        model = make_model(temperature=0.3, enable_code_execution=True)
        model.client.aio.models.generate_content.return_value = gemini_response(
            types.Part(text="推理", thought=True),
            types.Part(text="答案", thought_signature=b"sig"),
            types.Part(executable_code=types.ExecutableCode(code="print(1)", language=types.Language.PYTHON)),
            types.Part(code_execution_result=types.CodeExecutionResult(output="1")),
            grounding=types.GroundingMetadata(web_search_queries=["milvus"]),
        )

        message = await model.with_tools([ToolInfo(name="search")]).generate(
            [system_message("你是助手"), user_message("你好")]
        )

        request = model.client.aio.models.generate_content.call_args.kwargs
        config = request["config"]
        assert request["model"] == "gemini-2.5-flash"
        assert config.system_instruction == "你是助手"
        assert config.temperature == 0.3
        assert config.tools[0].function_declarations[0].name == "search"
        assert config.tools[1].code_execution is not None
        assert config.tool_config.function_calling_config.mode == types.FunctionCallingConfigMode.AUTO
        assert message.content == "答案"
        assert message.reasoning_content == "推理"
        assert get_message_thought_signature(message) == b"sig"
        assert get_executable_code(message).code == "print(1)"
        assert get_code_execution_result(message).output == "1"
        assert get_grounding_metadata(message).web_search_queries == ["milvus"]
        assert message.response_meta.finish_reason == "STOP"
        assert message.response_meta.usage.reasoning_tokens == 3

    @pytest.mark.asyncio
    async def test_function_call_response(self):
        model = make_model()
        model.client.aio.models.generate_content.return_value = gemini_response(
            types.Part(function_call=types.FunctionCall(name="search", args={"q": "a"}), thought_signature=b"s1"),
        )

        message = await model.generate(
            [user_message("搜")],
            tools=[ToolInfo(name="search")],
            tool_choice=ToolChoice.FORCED,
            allowed_tool_names=["search"],
        )

        config = model.client.aio.models.generate_content.call_args.kwargs["config"]
        calling = config.tool_config.function_calling_config
        assert calling.mode == types.FunctionCallingConfigMode.ANY
        assert calling.allowed_function_names == ["search"]
        call = message.tool_calls[0]
        assert call.id == "search"
        assert json.loads(call.function.arguments) == {"q": "a"}
        assert get_tool_call_thought_signature(call) == b"s1"

    @pytest.mark.asyncio
    async def test_response_schema(self):
        model = make_model(response_schema={"type": "object"})
        model.client.aio.models.generate_content.return_value = gemini_response(types.Part(text="{}"))

        await model.generate([user_message("json")])

        config = model.client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.response_json_schema == {"type": "object"}

    @pytest.mark.asyncio
    async def test_no_candidates(self):
        model = make_model()
        model.client.aio.models.generate_content.return_value = types.GenerateContentResponse(candidates=[])

        with pytest.raises(ModelResponseError):
            await model.generate([user_message("你好")])

    @pytest.mark.asyncio
    async def test_stream(self, async_stream):
        model = make_model()
        model.client.aio.models.generate_content_stream.return_value = async_stream([
            gemini_response(types.Part(text="你"), finish_reason=None, usage=None),
            gemini_response(types.Part(text="好"), usage=USAGE),
        ])

        result = concat_messages([m async for m in model.stream([user_message("你好")])])

        assert result.content == "你好"
        assert result.response_meta.finish_reason == "STOP"
        assert result.response_meta.usage.total_tokens == 18
