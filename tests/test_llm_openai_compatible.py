"""
OpenAI Compatible Model Tests - OpenAI兼容协议模型测试（千问、千帆、方舟）
"""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock

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
    tool_message,
    user_message,
)
from ragbridge.domain.errors import BackendError, ConfigError, ModelResponseError
from ragbridge.infrastructure.llm import (
    ArkChatModel,
    ArkConfig,
    QianfanChatModel,
    QianfanConfig,
    QwenChatModel,
    QwenConfig,
)
from ragbridge.infrastructure.llm.ark_extra import (
    get_ark_request_id,
    get_model_name,
    get_service_tier,
)
from ragbridge.infrastructure.llm.openai_compatible import (
    parse_chunk,
    parse_completion,
    to_openai_message,
)
from ragbridge.infrastructure.llm.tools import to_openai_tool_choice, validate_tool_options


SEARCH_TOOL = ToolInfo(name="search", desc="搜索")


def completion(content="你好", tool_calls=None, finish_reason="stop", **kwargs):
    return SimpleNamespace(
        id="resp-1",
        model="test-model",
        choices=[SimpleNamespace(
            index=0,
            finish_reason=finish_reason,
            message=SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=None),
        )],
        usage=SimpleNamespace(
            prompt_tokens=10,
            completion_tokens=5,
            total_tokens=15,
            prompt_tokens_details=SimpleNamespace(cached_tokens=4),
            completion_tokens_details=None,
        ),
        **kwargs,
    )


def chunk(content="", tool_calls=None, finish_reason=None, usage=None):
    choices = [SimpleNamespace(
        index=0,
        finish_reason=finish_reason,
        delta=SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=None),
    )]
    return SimpleNamespace(id="resp-1", model="test-model", choices=choices, usage=usage)


def with_mock_client(model, response):
    model._client = MagicMock()
    model._client.chat.completions.create = AsyncMock(return_value=response)
    return model._client.chat.completions.create


class TestToolHelpers:
    """工具选择测试"""

    def test_allowed_with_names_rejected(self):
        with pytest.raises(ConfigError, match="tool_choice 'allowed' is not supported"):
            validate_tool_options(ToolChoice.ALLOWED, ["a"])

    def test_forced_with_many_names_rejected(self):
        with pytest.raises(ConfigError, match="only one allowed tool name"):
            validate_tool_options(ToolChoice.FORCED, ["a", "b"])

    def test_tool_choice_mapping(self):
        assert to_openai_tool_choice(None) is None
        assert to_openai_tool_choice(ToolChoice.FORBIDDEN) == "none"
        assert to_openai_tool_choice(ToolChoice.ALLOWED) == "auto"
        assert to_openai_tool_choice(ToolChoice.FORCED) == "required"
        assert to_openai_tool_choice(ToolChoice.FORCED, ["search"]) == {
            "type": "function",
            "function": {"name": "search"},
        }


class TestMessageConversion:
    """请求与响应转换测试"""

    def test_multimodal_message(self):
        msg = Message(
            role=Role.USER,
            content="看图",
            multi_content=[MessagePart(type=PartType.IMAGE_URL, url="https://x/a.png", detail="high")],
        )

        result = to_openai_message(msg)

        assert result["content"][0] == {"type": "text", "text": "看图"}
        assert result["content"][1]["image_url"] == {"url": "https://x/a.png", "detail": "high"}

    def test_tool_messages(self):
        call = ToolCall(id="call-1", function=FunctionCall(name="search", arguments="{}"))
        assistant = to_openai_message(Message(role=Role.ASSISTANT, tool_calls=[call]))
        tool = to_openai_message(tool_message("结果", tool_call_id="call-1"))

        assert assistant["tool_calls"][0]["function"]["name"] == "search"
        assert tool["tool_call_id"] == "call-1"

    def test_parse_completion(self):
        raw_call = SimpleNamespace(
            id="call-1", type="function", function=SimpleNamespace(name="search", arguments='{"q":"a"}')
        )

        message = parse_completion(completion(content="", tool_calls=[raw_call], finish_reason="tool_calls"))

        assert message.tool_calls[0].function.arguments == '{"q":"a"}'
        assert message.tool_calls[0].index is None
        assert message.response_meta.finish_reason == "tool_calls"
        assert message.response_meta.usage.cached_tokens == 4

    def test_parse_completion_no_choices(self):
        with pytest.raises(ModelResponseError):
            parse_completion(SimpleNamespace(choices=[], usage=None))

    def test_parse_completion_no_first_choice(self):
        response = {"choices": [{"index": 1, "message": {"content": "x"}}]}

        with pytest.raises(ModelResponseError, match="index为0"):
            parse_completion(response)

    def test_parse_chunk_usage_only(self):
        usage = {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}

        message = parse_chunk({"choices": [], "usage": usage})

        assert message.response_meta.usage.total_tokens == 5
        assert parse_chunk({"choices": []}) is None


class TestQwenChatModel:
    """千问模型测试"""

    def test_none_config(self):
        with pytest.raises(ConfigError):
            QwenChatModel(None)

    def test_model_required(self):
        with pytest.raises(ConfigError):
            QwenChatModel(QwenConfig())

    @pytest.mark.asyncio
    async def test_generate(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus", temperature=0.2, enable_thinking=False))
        create = with_mock_client(model, completion())

        message = await model.generate([user_message("你好")], max_tokens=100)

        request = create.call_args.kwargs
        assert request["model"] == "qwen-plus"
        assert request["temperature"] == 0.2
        assert request["max_tokens"] == 100
        assert request["extra_body"] == {"enable_thinking": False}
        assert "top_p" not in request
        assert message.content == "你好"
        assert message.response_meta.usage.total_tokens == 15

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))
        with_mock_client(model, completion())

        with pytest.raises(TypeError, match="unknown_flag"):
            await model.generate([user_message("你好")], unknown_flag=True)

    @pytest.mark.asyncio
    async def test_backend_error_wrapped(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))
        model._client = MagicMock()
        model._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("超时"))

        with pytest.raises(BackendError, match="超时"):
            await model.generate([user_message("你好")])

    @pytest.mark.asyncio
    async def test_with_tools_copies(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))
        tooled = model.with_tools([SEARCH_TOOL])
        create = with_mock_client(tooled, completion())

        await tooled.generate([user_message("搜一下")])

        request = create.call_args.kwargs
        assert request["tools"][0]["function"]["name"] == "search"
        assert request["tool_choice"] == "auto"
        assert model._tools == []

    @pytest.mark.asyncio
    async def test_forced_tool_with_name(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))
        model.bind_forced_tools([SEARCH_TOOL])
        create = with_mock_client(model, completion())

        await model.generate([user_message("搜")], allowed_tool_names=["search"])

        assert create.call_args.kwargs["tool_choice"] == {"type": "function", "function": {"name": "search"}}

    def test_with_tools_empty(self):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))

        with pytest.raises(ConfigError):
            model.with_tools([])

    @pytest.mark.asyncio
    async def test_stream(self, async_stream):
        model = QwenChatModel(QwenConfig(model="qwen-plus"))
        chunks = [
            chunk(tool_calls=[SimpleNamespace(
                index=0, id="call-1", type="function",
                function=SimpleNamespace(name="search", arguments='{"q":'),
            )]),
            chunk(tool_calls=[SimpleNamespace(
                index=0, id=None, type=None, function=SimpleNamespace(name=None, arguments='"a"}'),
            )], finish_reason="tool_calls"),
            SimpleNamespace(choices=[], usage=SimpleNamespace(
                prompt_tokens=8, completion_tokens=4, total_tokens=12,
                prompt_tokens_details=None, completion_tokens_details=None,
            )),
        ]
        create = with_mock_client(model, async_stream(chunks))

        result = concat_messages([m async for m in model.stream([user_message("搜")])])

        assert create.call_args.kwargs["stream"] is True
        assert create.call_args.kwargs["stream_options"] == {"include_usage": True}
        assert result.tool_calls[0].function.arguments == '{"q":"a"}'
        assert result.response_meta.finish_reason == "tool_calls"
        assert result.response_meta.usage.total_tokens == 12

    @pytest.mark.asyncio
    async def test_stream_read_error(self):
        """读取流的过程中连接中断"""
        model = QwenChatModel(QwenConfig(model="qwen-plus"))

        async def broken():
            yield chunk(content="你")
            raise ConnectionError("连接中断")

        with_mock_client(model, broken())

        with pytest.raises(BackendError, match="连接中断"):
            async for _ in model.stream([user_message("你好")]):
                pass


class TestQianfanChatModel:
    """千帆模型测试"""

    def test_app_id_header(self):
        model = QianfanChatModel(QianfanConfig(model="ernie-4.0-8k", app_id="app-1"))

        assert model.config.default_headers["appid"] == "app-1"

    @pytest.mark.asyncio
    async def test_extra_fields(self):
        config = QianfanConfig(
            model="ernie-4.0-8k", penalty_score=1.2, max_completion_tokens=64, parallel_tool_calls=False
        )
        model = QianfanChatModel(config)
        create = with_mock_client(model, completion(error=None))

        await model.generate([user_message("你好")])

        request = create.call_args.kwargs
        assert request["extra_body"] == {"penalty_score": 1.2}
        assert request["max_completion_tokens"] == 64
        assert request["parallel_tool_calls"] is False

    @pytest.mark.asyncio
    async def test_error_response(self):
        model = QianfanChatModel(QianfanConfig(model="ernie-4.0-8k"))
        with_mock_client(model, completion(error=SimpleNamespace(code="336003", message="参数错误")))

        with pytest.raises(ModelResponseError, match="336003"):
            await model.generate([user_message("你好")])


class TestArkChatModel:
    """方舟模型测试"""

    @pytest.mark.asyncio
    async def test_generate_annotates_extras(self):
        model = ArkChatModel(ArkConfig(model="doubao-seed", thinking="enabled", service_tier="auto"))
        response = completion(service_tier="default")
        response._request_id = "req-123"
        create = with_mock_client(model, response)

        message = await model.generate([user_message("你好")], reasoning_effort="low")

        request = create.call_args.kwargs
        assert request["extra_body"] == {"thinking": {"type": "enabled"}}
        assert request["service_tier"] == "auto"
        assert request["reasoning_effort"] == "low"
        assert get_ark_request_id(message) == "req-123"
        assert get_model_name(message) == "test-model"
        assert get_service_tier(message) == "default"

    @pytest.mark.asyncio
    async def test_invalid_thinking(self):
        model = ArkChatModel(ArkConfig(model="doubao-seed"))
        with_mock_client(model, completion())

        with pytest.raises(ConfigError):
            await model.generate([user_message("你好")], thinking="always")

    @pytest.mark.asyncio
    async def test_stream_extras_not_duplicated(self, async_stream):
        model = ArkChatModel(ArkConfig(model="doubao-seed"))
        with_mock_client(model, async_stream([chunk(content="你"), chunk(content="好", finish_reason="stop")]))

        result = concat_messages([m async for m in model.stream([user_message("你好")])])

        assert result.content == "你好"
        assert get_ark_request_id(result) == "resp-1"
        assert get_model_name(result) == "test-model"
