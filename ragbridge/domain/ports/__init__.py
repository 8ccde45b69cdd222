# Ports - 端口层（抽象接口定义）
from .services import (
    ChatModel,
    Embedder,
    Indexer,
    IndexerOptions,
    ModelOptions,
    Retriever,
    RetrieverOptions,
    reject_unknown_options,
)

__all__ = [
    "ChatModel",
    "Embedder",
    "Indexer",
    "IndexerOptions",
    "ModelOptions",
    "Retriever",
    "RetrieverOptions",
    "reject_unknown_options",
]
