"""
Ark Responses Tests - 方舟Responses API模型测试
"""

from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ragbridge.domain.entities.message import (
    FunctionCall,
    Message,
    MessagePart,
    PartType,
    Role,
    ToolCall,
    ToolInfo,
    assistant_message,
    concat_messages,
    system_message,
    tool_message,
    user_message,
)
from ragbridge.domain.errors import BackendError, ConfigError, ModelResponseError
from ragbridge.infrastructure.llm import (
    ArkResponsesChatModel,
    ArkResponsesConfig,
    SessionCacheConfig,
    ToolWebSearch,
    UserLocation,
    invalidate_message_caches,
)
from ragbridge.infrastructure.llm.ark_extra import (
    get_cache_expire_at,
    get_response_id,
    is_response_cached,
    set_cache_expire_at,
    set_response_caching,
    set_response_id,
)
from ragbridge.infrastructure.llm.ark_responses import split_cached_history, to_input_items


def make_model(**kwargs):
    model = ArkResponsesChatModel(ArkResponsesConfig(model="doubao-seed", **kwargs))
    model._client = MagicMock()
    model._client.responses.create = AsyncMock()
    return model


def cached_reply(content, response_id):
    message = assistant_message(content)
    set_response_id(message, response_id)
    set_response_caching(message, True)
    return message


def ark_response(output, response_id="resp-2", caching=None, status="completed"):
    return SimpleNamespace(
        id=response_id,
        model="doubao-seed",
        status=status,
        incomplete_details=None,
        service_tier="default",
        caching=caching,
        output=output,
        usage=SimpleNamespace(
            input_tokens=100,
            output_tokens=10,
            total_tokens=110,
            input_tokens_details=SimpleNamespace(cached_tokens=80),
            output_tokens_details=SimpleNamespace(reasoning_tokens=4),
        ),
    )


class TestInputItems:
    """输入转换测试"""

    def test_items(self):
        call = ToolCall(id="call-1", function=FunctionCall(name="search", arguments="{}"))
        messages = [
            system_message("系统"),
            Message(role=Role.USER, content="看图", multi_content=[
                MessagePart(type=PartType.IMAGE_URL, url="https://x/a.png"),
            ]),
            Message(role=Role.ASSISTANT, tool_calls=[call]),
            tool_message("结果", tool_call_id="call-1"),
        ]

        items = to_input_items(messages)

        assert items[0] == {"type": "message", "role": "system", "content": [{"type": "input_text", "text": "系统"}]}
        assert items[1]["content"][1] == {"type": "input_image", "image_url": "https://x/a.png"}
        assert items[2] == {"type": "function_call", "call_id": "call-1", "name": "search", "arguments": "{}"}
        assert items[3] == {"type": "function_call_output", "call_id": "call-1", "output": "结果"}

    def test_split_cached_history(self):
        messages = [
            user_message("一"),
            cached_reply("二", "resp-1"),
            user_message("三"),
        ]

        previous_id, pending = split_cached_history(messages)

        assert previous_id == "resp-1"
        assert pending == [messages[2]]

    def test_uncached_reply_not_used(self):
        reply = assistant_message("二")
        set_response_id(reply, "resp-1")

        previous_id, pending = split_cached_history([user_message("一"), reply])

        assert previous_id is None
        assert len(pending) == 2

    def test_no_input_after_cached_reply(self):
        """缓存响应之后没有新输入"""
        with pytest.raises(ConfigError, match="resp-1"):
            split_cached_history([user_message("一"), cached_reply("二", "resp-1")])

    def test_expired_cache_skipped(self):
        """已过期的缓存响应不再引用"""
        old = cached_reply("二", "resp-1")
        set_cache_expire_at(old, 900)
        expired = cached_reply("四", "resp-2")
        set_cache_expire_at(expired, 999)
        messages = [user_message("一"), old, user_message("三"), expired, user_message("五")]

        previous_id, pending = split_cached_history(messages, now=1000)

        assert previous_id is None
        assert pending == messages

    def test_latest_alive_cache_used(self):
        old = cached_reply("二", "resp-1")
        set_cache_expire_at(old, 2000)
        expired = cached_reply("四", "resp-2")
        set_cache_expire_at(expired, 999)
        messages = [user_message("一"), old, user_message("三"), expired, user_message("五")]

        previous_id, pending = split_cached_history(messages, now=1000)

        assert previous_id == "resp-1"
        assert pending == messages[2:]

    def test_invalidate_message_caches(self):
        reply = cached_reply("二", "resp-1")
        set_cache_expire_at(reply, 2000)

        invalidate_message_caches([reply])

        assert get_response_id(reply) == ""
        assert not is_response_cached(reply)
        assert get_cache_expire_at(reply) is None


class TestArkResponsesGenerate:
    """生成测试"""

    @pytest.mark.asyncio
    async def test_generate_with_session_cache(self):
        model = make_model(session_cache=SessionCacheConfig(enable_cache=True, ttl=3600))
        model.client.responses.create.return_value = ark_response([
            SimpleNamespace(type="reasoning", summary=[SimpleNamespace(text="思考")]),
            SimpleNamespace(type="message", content=[SimpleNamespace(type="output_text", text="答案")]),
        ], caching=SimpleNamespace(type="enabled"))
        messages = [user_message("一"), cached_reply("二", "resp-1"), user_message("三")]

        with patch("ragbridge.infrastructure.llm.ark_responses.time.time", return_value=1000):
            message = await model.generate(messages)

        request = model.client.responses.create.call_args.kwargs
        assert request["previous_response_id"] == "resp-1"
        assert len(request["input"]) == 1
        assert request["store"] is True
        assert request["extra_body"]["caching"] == {"type": "enabled"}
        assert request["extra_body"]["expire_at"] == 4600
        assert message.content == "答案"
        assert message.reasoning_content == "思考"
        assert get_response_id(message) == "resp-2"
        assert is_response_cached(message)
        assert get_cache_expire_at(message) == 4600
        assert message.response_meta.usage.cached_tokens == 80

    @pytest.mark.asyncio
    async def test_generate_without_cache_sends_all(self):
        model = make_model(thinking="disabled")
        model.client.responses.create.return_value = ark_response([])
        messages = [user_message("一"), cached_reply("二", "resp-1"), user_message("三")]

        message = await model.generate(messages)

        request = model.client.responses.create.call_args.kwargs
        assert "previous_response_id" not in request
        assert len(request["input"]) == 3
        assert request["extra_body"] == {"thinking": {"type": "disabled"}}
        assert not is_response_cached(message)

    @pytest.mark.asyncio
    async def test_tools_and_web_search(self):
        web_search = ToolWebSearch(limit=5, user_location=UserLocation(city="北京"), sources=["toutiao"])
        model = make_model(web_search=web_search).with_tools([ToolInfo(name="search", desc="搜索")])
        model.client.responses.create.return_value = ark_response([
            SimpleNamespace(type="function_call", call_id="call-1", name="search", arguments='{"q":"a"}'),
        ])

        message = await model.generate([user_message("搜")])

        request = model.client.responses.create.call_args.kwargs
        assert request["tools"][0] == {"type": "function", "name": "search", "description": "搜索",
                                       "parameters": {"type": "object", "properties": {}}}
        assert request["tools"][1] == {
            "type": "web_search",
            "limit": 5,
            "user_location": {"type": "approximate", "city": "北京"},
            "sources": ["toutiao"],
        }
        assert request["tool_choice"] == "auto"
        assert message.tool_calls[0].id == "call-1"

    @pytest.mark.asyncio
    async def test_session_cache_without_new_input(self):
        """最后一条是缓存响应时不发送空输入"""
        model = make_model(session_cache=SessionCacheConfig(enable_cache=True))

        with pytest.raises(ConfigError):
            await model.generate([user_message("一"), cached_reply("二", "resp-1")])

        model.client.responses.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_backend_error(self):
        model = make_model()
        model.client.responses.create.side_effect = RuntimeError("限流")

        with pytest.raises(BackendError, match="限流"):
            await model.generate([user_message("你好")])

    @pytest.mark.asyncio
    async def test_create_prefix_cache(self):
        model = make_model()
        model.client.responses.create.return_value = ark_response([], response_id="resp-prefix")

        info = await model.create_prefix_cache([system_message("长系统提示")], ttl=60)

        request = model.client.responses.create.call_args.kwargs
        assert request["extra_body"]["caching"] == {"type": "enabled", "prefix": True}
        assert request["store"] is True
        assert info.response_id == "resp-prefix"
        assert info.usage.total_tokens == 110


class TestArkResponsesStream:
    """流式测试"""

    @pytest.mark.asyncio
    async def test_stream_events(self, async_stream):
        model = make_model()
        events = [
            SimpleNamespace(type="response.created", response=SimpleNamespace(id="resp-3")),
            SimpleNamespace(type="response.reasoning_summary_text.delta", delta="想"),
            SimpleNamespace(type="response.output_text.delta", delta="好"),
            SimpleNamespace(type="response.output_item.added", output_index=2, item=SimpleNamespace(
                type="function_call", call_id="call-1", name="search", arguments="",
            )),
            SimpleNamespace(type="response.function_call_arguments.delta", output_index=2, delta='{"q":'),
            SimpleNamespace(type="response.function_call_arguments.delta", output_index=2, delta='"a"}'),
            SimpleNamespace(type="response.completed", response=ark_response([], response_id="resp-3")),
        ]
        model.client.responses.create.return_value = async_stream(events)

        result = concat_messages([m async for m in model.stream([user_message("你好")])])

        assert result.content == "好"
        assert result.reasoning_content == "想"
        assert result.tool_calls[0].function.arguments == '{"q":"a"}'
        assert result.response_meta.finish_reason == "completed"
        assert get_response_id(result) == "resp-3"

    @pytest.mark.asyncio
    async def test_stream_read_error(self):
        """读取流的过程中连接中断"""
        model = make_model()

        async def broken():
            yield SimpleNamespace(type="response.output_text.delta", delta="好")
            raise ConnectionError("连接中断")

        model.client.responses.create.return_value = broken()

        with pytest.raises(BackendError, match="连接中断"):
            async for _ in model.stream([user_message("你好")]):
                pass

    @pytest.mark.asyncio
    async def test_stream_failed(self, async_stream):
        model = make_model()
        failed = SimpleNamespace(
            type="response.failed",
            response=SimpleNamespace(error=SimpleNamespace(code="InternalError", message="服务异常")),
        )
        model.client.responses.create.return_value = async_stream([failed])

        with pytest.raises(ModelResponseError, match="InternalError"):
            async for _ in model.stream([user_message("你好")]):
                pass
