"""
Milvus Retriever - Milvus检索器

实现Retriever接口，具体检索方式由SearchMode策略对象决定
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pymilvus import MilvusClient
from pymilvus.client.types import LoadState

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError
from ragbridge.domain.ports.services import (
    Embedder,
    Retriever,
    RetrieverOptions,
    reject_unknown_options,
)

from .types import (
    CONTENT_FIELD,
    DEFAULT_COLLECTION,
    DEFAULT_SPARSE_VECTOR_FIELD,
    DEFAULT_TOP_K,
    DEFAULT_VECTOR_FIELD,
    ID_FIELD,
    METADATA_FIELD,
    ConsistencyLevel,
    MilvusClientConfig,
)


logger = logging.getLogger(__name__)

COMPONENT = "MilvusRetriever"

# 搜索命中或查询结果行 -> 文档
ResultConverter = Callable[[List[Any]], List[Document]]


@dataclass
class GroupingConfig:
    """
    分组检索配置

    每个分组最多返回 group_size 条，strict_group_size 要求每组都凑满
    """
    group_by_field: str
    group_size: int = 1
    strict_group_size: bool = False


@dataclass
class MilvusSearchOptions:
    """单次检索参数"""
    top_k: Optional[int] = None
    embedding: Optional[Embedder] = None
    filter: str = ""
    grouping: Optional[GroupingConfig] = None


class SearchMode(ABC):
    """检索策略"""

    @abstractmethod
    async def retrieve(
        self,
        client: MilvusClient,
        config: "MilvusRetrieverConfig",
        query: str,
        options: MilvusSearchOptions,
    ) -> List[Document]:
        pass


@dataclass
class MilvusRetrieverConfig:
    """Milvus检索器配置，client 与 client_config 二选一"""
    client: Optional[MilvusClient] = None
    client_config: Optional[MilvusClientConfig] = None
    collection: str = ""
    partitions: List[str] = field(default_factory=list)
    vector_field: str = ""
    sparse_vector_field: str = ""
    output_fields: List[str] = field(default_factory=list)
    top_k: int = 0
    consistency_level: Optional[ConsistencyLevel] = None
    search_mode: Optional[SearchMode] = None
    document_converter: Optional[ResultConverter] = None
    embedding: Optional[Embedder] = None

    def validate(self):
        """校验配置并填充默认值"""
        if self.client is None and self.client_config is None:
            raise ConfigError("必须提供 client 或 client_config", component=COMPONENT)
        if self.search_mode is None:
            raise ConfigError("必须指定 search_mode", component=COMPONENT)
        if self.consistency_level is not None:
            try:
                self.consistency_level = ConsistencyLevel(self.consistency_level)
            except ValueError as e:
                raise ConfigError(f"不支持的一致性级别: {self.consistency_level}", component=COMPONENT) from e

        if not self.collection:
            self.collection = DEFAULT_COLLECTION
        if not self.vector_field:
            self.vector_field = DEFAULT_VECTOR_FIELD
        if not self.sparse_vector_field:
            self.sparse_vector_field = DEFAULT_SPARSE_VECTOR_FIELD
        if not self.output_fields:
            self.output_fields = ["*"]
        if self.top_k <= 0:
            self.top_k = DEFAULT_TOP_K
        if self.document_converter is None:
            self.document_converter = default_document_converter


# ============================================================
# Result Converter - 结果转换
# ============================================================

def _merge_metadata(target: Dict[str, Any], value: Any):
    if isinstance(value, dict):
        target.update(value)
        return
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str) and value:
        parsed = json.loads(value)
        if isinstance(parsed, dict):
            target.update(parsed)


def default_document_converter(results: List[Any]) -> List[Document]:
    """
    默认结果转换

    搜索命中形如 {"id", "distance", "entity"}，其距离作为分数；
    query结果为字段字典，没有分数。
    """
    docs = []
    for item in results:
        if "entity" in item:
            entity = dict(item.get("entity") or {})
            entity.setdefault(ID_FIELD, item.get("id"))
            score = item.get("distance")
        else:
            entity = dict(item)
            score = None

        doc = Document()
        for name, value in entity.items():
            if name == ID_FIELD:
                doc.id = "" if value is None else str(value)
            elif name == CONTENT_FIELD:
                doc.content = "" if value is None else str(value)
            elif name == METADATA_FIELD:
                _merge_metadata(doc.metadata, value)
            else:
                doc.metadata[name] = value

        if score is not None:
            doc.score = float(score)
        docs.append(doc)
    return docs


# ============================================================
# Retriever - 检索器
# ============================================================

class MilvusRetriever(Retriever):
    """
    Milvus检索器

    首次检索时检查集合存在并确保已加载
    """

    def __init__(self, config: MilvusRetrieverConfig):
        config.validate()
        self.config = config
        self._client = config.client
        self._collection_loaded = False

        logger.info(
            f"初始化Milvus检索器: {config.collection} ({type(config.search_mode).__name__})"
        )

    @property
    def client(self) -> MilvusClient:
        """延迟初始化客户端"""
        if self._client is None:
            try:
                self._client = self.config.client_config.create_client()
                logger.info("Milvus客户端创建成功")
            except Exception as e:
                logger.error(f"Milvus客户端创建失败: {e}")
                raise
        return self._client

    def get_type(self) -> str:
        return "Milvus"

    async def _ensure_loaded(self):
        if self._collection_loaded:
            return

        collection = self.config.collection
        if not self.client.has_collection(collection):
            raise ConfigError(f'集合 "{collection}" 不存在', component=COMPONENT)

        state = self.client.get_load_state(collection_name=collection)
        if state.get("state") != LoadState.Loaded:
            try:
                self.client.load_collection(collection_name=collection)
                logger.info(f"加载集合: {collection}")
            except Exception as e:
                logger.error(f"加载集合失败: {e}")
                raise

        self._collection_loaded = True

    async def retrieve(self, query: str, **kwargs) -> List[Document]:
        """
        检索文档

        Args:
            query: 查询文本；Scalar模式下为过滤表达式
            top_k: 覆盖配置中的返回数量
            embedding: 覆盖配置中的嵌入器
            filter: 标量过滤表达式
            grouping: 分组检索配置
        """
        common = RetrieverOptions.pop_from(kwargs)
        options = MilvusSearchOptions(
            top_k=common.top_k,
            embedding=common.embedding,
            filter=kwargs.pop("filter", "") or "",
            grouping=kwargs.pop("grouping", None),
        )
        reject_unknown_options(kwargs, COMPONENT)

        await self._ensure_loaded()

        docs = await self.config.search_mode.retrieve(self.client, self.config, query, options)
        logger.debug(f"检索完成: {len(docs)} 个结果")
        return docs
