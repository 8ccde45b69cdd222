"""
Elasticsearch Retriever - Elasticsearch检索器

实现Retriever接口，支持全文、脚本打分、kNN和稀疏向量检索
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import AsyncElasticsearch

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError
from ragbridge.domain.ports.services import (
    Embedder,
    Retriever,
    RetrieverOptions,
    reject_unknown_options,
)

from .search_mode import ESSearchOptions, SearchMode


logger = logging.getLogger(__name__)

COMPONENT = "ESRetriever"

DEFAULT_TOP_K = 10
DEFAULT_CONTENT_FIELD = "content"


@dataclass
class ESClientConfig:
    """Elasticsearch连接参数"""
    hosts: List[str] = field(default_factory=lambda: ["http://localhost:9200"])
    username: str = ""
    password: str = ""
    api_key: str = ""
    ca_certs: str = ""
    request_timeout: Optional[float] = None

    def create_client(self) -> AsyncElasticsearch:
        kwargs: Dict[str, Any] = {"hosts": list(self.hosts)}
        if self.username:
            kwargs["basic_auth"] = (self.username, self.password)
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.ca_certs:
            kwargs["ca_certs"] = self.ca_certs
        if self.request_timeout is not None:
            kwargs["request_timeout"] = self.request_timeout
        return AsyncElasticsearch(**kwargs)


def default_result_parser(hit: Dict[str, Any]) -> Document:
    """
    默认命中解析

    _source.content 作为正文，其余字段放入metadata
    """
    source = dict(hit.get("_source") or {})
    content = source.pop(DEFAULT_CONTENT_FIELD, "")
    doc = Document(
        id=str(hit.get("_id", "")),
        content="" if content is None else str(content),
        metadata=source,
    )
    if hit.get("_score") is not None:
        doc.score = float(hit["_score"])
    return doc


@dataclass
class ESRetrieverConfig:
    """Elasticsearch检索器配置，client 与 client_config 二选一"""
    index: str = ""
    client: Optional[AsyncElasticsearch] = None
    client_config: Optional[ESClientConfig] = None
    top_k: int = 0
    search_mode: Optional[SearchMode] = None
    result_parser: Optional[Callable[[Dict[str, Any]], Document]] = None
    embedding: Optional[Embedder] = None

    def validate(self):
        if self.client is None and self.client_config is None:
            raise ConfigError("必须提供 client 或 client_config", component=COMPONENT)
        if not self.index:
            raise ConfigError("必须指定 index", component=COMPONENT)
        if self.search_mode is None:
            raise ConfigError("必须指定 search_mode", component=COMPONENT)
        if self.top_k <= 0:
            self.top_k = DEFAULT_TOP_K
        if self.result_parser is None:
            self.result_parser = default_result_parser


class ESRetriever(Retriever):
    """Elasticsearch检索器"""

    def __init__(self, config: ESRetrieverConfig):
        config.validate()
        self.config = config
        self._client = config.client

        logger.info(f"初始化ES检索器: {config.index} ({type(config.search_mode).__name__})")

    @property
    def client(self) -> AsyncElasticsearch:
        """延迟初始化客户端"""
        if self._client is None:
            self._client = self.config.client_config.create_client()
            logger.info("Elasticsearch客户端创建成功")
        return self._client

    def get_type(self) -> str:
        return "ElasticSearch"

    async def build_request(self, query: str, **kwargs) -> Dict[str, Any]:
        """
        构建检索请求

        Args:
            query: 查询文本
            top_k: 返回数量
            score_threshold: 最低分数
            embedding: 覆盖配置中的嵌入器
            filters: ES查询子句列表
            sparse_vector: 查询稀疏向量
        """
        common = RetrieverOptions.pop_from(kwargs)
        options = ESSearchOptions(
            top_k=common.top_k if common.top_k and common.top_k > 0 else self.config.top_k,
            embedding=common.embedding or self.config.embedding,
            filters=list(kwargs.pop("filters", None) or []),
            sparse_vector=kwargs.pop("sparse_vector", None),
        )
        reject_unknown_options(kwargs, COMPONENT)

        request = await self.config.search_mode.build_request(self.config, query, options)
        request.setdefault("size", options.top_k)
        if common.score_threshold is not None:
            request["min_score"] = common.score_threshold
        return request

    async def retrieve(self, query: str, **kwargs) -> List[Document]:
        request = await self.build_request(query, **kwargs)

        try:
            response = await self.client.search(index=self.config.index, **request)
        except Exception as e:
            logger.error(f"ES检索失败: {e}")
            raise

        hits = response["hits"]["hits"]
        docs = [self.config.result_parser(hit) for hit in hits]
        logger.debug(f"检索完成: {len(docs)} 个结果")
        return docs

    async def close(self):
        if self._client is not None:
            await self._client.close()
