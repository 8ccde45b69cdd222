"""
Pytest配置和fixtures
"""

import pytest
from typing import List
from unittest.mock import MagicMock, AsyncMock

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymilvus.client.types import LoadState

from ragbridge.domain.entities.document import Document
from ragbridge.domain.ports.services import Embedder


class FakeEmbedder(Embedder):
    """按文本长度生成固定维度向量的嵌入器"""

    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.calls: List[List[str]] = []

    async def embed_strings(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [[float(len(text))] + [0.5] * (self.dimension - 1) for text in texts]


@pytest.fixture
def fake_embedder():
    """测试嵌入器"""
    return FakeEmbedder()


@pytest.fixture
def failing_embedder():
    """调用即失败的嵌入器"""
    embedder = MagicMock(spec=Embedder)
    embedder.embed_strings = AsyncMock(side_effect=RuntimeError("模型不可用"))
    return embedder


@pytest.fixture
def mock_milvus_client():
    """Mock Milvus客户端，集合已存在且已加载"""
    client = MagicMock()
    client.has_collection.return_value = True
    client.get_load_state.return_value = {"state": LoadState.Loaded}
    client.list_indexes.return_value = []
    client.upsert.return_value = {"upsert_count": 0}
    client.search.return_value = [[]]
    client.hybrid_search.return_value = [[]]
    client.query.return_value = []
    return client


@pytest.fixture
def mock_es_client():
    """Mock Elasticsearch异步客户端"""
    client = MagicMock()
    client.search = AsyncMock(return_value={"hits": {"hits": []}})
    return client


@pytest.fixture
def sample_documents():
    """示例文档"""
    return [
        Document(id="doc-1", content="Milvus是向量数据库", metadata={"source": "wiki"}),
        Document(id="doc-2", content="Elasticsearch是搜索引擎", metadata={"source": "blog"}),
    ]


async def _iterate(items):
    for item in items:
        yield item


@pytest.fixture
def async_stream():
    """把列表包装成异步迭代器，模拟SDK返回的流"""
    return _iterate
