"""
Ark Message Extras - 方舟消息附加信息

请求ID、模型名、服务等级、Responses API的响应ID与缓存标记都存放在 Message.extra 中
"""

from typing import Any, List, Optional

from ragbridge.domain.entities.message import Message, register_extra_concat


KEY_REQUEST_ID = "ark-request-id"
KEY_MODEL_NAME = "ark-model-name"
KEY_SERVICE_TIER = "ark-service-tier"
KEY_RESPONSE_ID = "ark-response-id"
KEY_RESPONSE_CACHING = "ark-response-caching"
KEY_RESPONSE_CACHE_EXPIRE_AT = "ark-response-cache-expire-at"


def _first_non_empty(values: List[Any]) -> Any:
    for value in values:
        if value:
            return value
    return values[-1] if values else None


def _last(values: List[Any]) -> Any:
    return values[-1] if values else None


# 流式分片中这些值每片相同，合并时不能拼接
for _key in (KEY_REQUEST_ID, KEY_MODEL_NAME, KEY_SERVICE_TIER, KEY_RESPONSE_ID):
    register_extra_concat(_key, _first_non_empty)
register_extra_concat(KEY_RESPONSE_CACHING, _last)
register_extra_concat(KEY_RESPONSE_CACHE_EXPIRE_AT, _last)


def set_ark_request_id(message: Message, request_id: str):
    if request_id:
        message.extra[KEY_REQUEST_ID] = request_id


def get_ark_request_id(message: Message) -> str:
    return message.extra.get(KEY_REQUEST_ID, "")


def set_model_name(message: Message, model: str):
    if model:
        message.extra[KEY_MODEL_NAME] = model


def get_model_name(message: Message) -> str:
    return message.extra.get(KEY_MODEL_NAME, "")


def set_service_tier(message: Message, tier: Optional[str]):
    if tier:
        message.extra[KEY_SERVICE_TIER] = tier


def get_service_tier(message: Message) -> str:
    return message.extra.get(KEY_SERVICE_TIER, "")


def set_response_id(message: Message, response_id: str):
    if response_id:
        message.extra[KEY_RESPONSE_ID] = response_id


def get_response_id(message: Message) -> str:
    return message.extra.get(KEY_RESPONSE_ID, "")


def set_response_caching(message: Message, enabled: bool):
    message.extra[KEY_RESPONSE_CACHING] = enabled


def is_response_cached(message: Message) -> bool:
    """消息是否来自开启了缓存的响应，只有这样的响应ID可以作为 previous_response_id"""
    return bool(message.extra.get(KEY_RESPONSE_CACHING))


def set_cache_expire_at(message: Message, expire_at: int):
    """记录缓存过期时间（Unix秒）"""
    message.extra[KEY_RESPONSE_CACHE_EXPIRE_AT] = expire_at


def get_cache_expire_at(message: Message) -> Optional[int]:
    return message.extra.get(KEY_RESPONSE_CACHE_EXPIRE_AT)
