"""
Elasticsearch Indexer - Elasticsearch索引器

实现Indexer接口，按批次向量化并通过bulk写入
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import AsyncElasticsearch
from elasticsearch.helpers import async_bulk

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError, ConversionError, EmbeddingError
from ragbridge.domain.ports.services import (
    Embedder,
    Indexer,
    IndexerOptions,
    reject_unknown_options,
)

from .retriever import ESClientConfig


logger = logging.getLogger(__name__)

COMPONENT = "ESIndexer"

DEFAULT_BATCH_SIZE = 5


@dataclass
class FieldValue:
    """
    文档字段值

    embed_key 不为空时，把 value 向量化后写入该字段；
    非字符串值需要通过 stringify 转为文本后再向量化
    """
    value: Any
    embed_key: str = ""
    stringify: Optional[Callable[[Any], str]] = None


@dataclass
class ESIndexerConfig:
    index: str = ""
    client: Optional[AsyncElasticsearch] = None
    client_config: Optional[ESClientConfig] = None
    batch_size: int = 0
    document_to_fields: Optional[Callable[[Document], Dict[str, FieldValue]]] = None
    embedding: Optional[Embedder] = None

    def validate(self):
        if self.client is None and self.client_config is None:
            raise ConfigError("必须提供 client 或 client_config", component=COMPONENT)
        if not self.index:
            raise ConfigError("必须指定 index", component=COMPONENT)
        if self.document_to_fields is None:
            raise ConfigError("必须提供 document_to_fields", component=COMPONENT)
        if self.batch_size <= 0:
            self.batch_size = DEFAULT_BATCH_SIZE


class ESIndexer(Indexer):
    """Elasticsearch索引器"""

    def __init__(self, config: ESIndexerConfig):
        config.validate()
        self.config = config
        self._client = config.client

        logger.info(f"初始化ES索引器: {config.index}")

    @property
    def client(self) -> AsyncElasticsearch:
        """延迟初始化客户端"""
        if self._client is None:
            self._client = self.config.client_config.create_client()
            logger.info("Elasticsearch客户端创建成功")
        return self._client

    def get_type(self) -> str:
        return "ElasticSearch"

    def _collect_fields(self, docs: List[Document]):
        """
        展开文档字段

        Returns:
            (每个文档的字段, 待向量化文本列表, 文本对应的 (文档序号, embed_key))
        """
        all_fields = []
        texts: List[str] = []
        targets = []

        for i, doc in enumerate(docs):
            fields = self.config.document_to_fields(doc)
            for name, field_value in fields.items():
                if not field_value.embed_key:
                    continue
                if field_value.embed_key in fields:
                    raise ConversionError(
                        f"embed_key {field_value.embed_key} 与已有字段重名（字段: {name}）",
                        component=COMPONENT,
                    )
                value = field_value.value
                if not isinstance(value, str):
                    if field_value.stringify is None:
                        raise ConversionError(
                            f"字段 {name} 不是字符串且未提供 stringify，无法向量化",
                            component=COMPONENT,
                        )
                    value = field_value.stringify(value)
                texts.append(value)
                targets.append((i, field_value.embed_key))
            all_fields.append(fields)

        return all_fields, texts, targets

    async def _embed(self, embedder: Optional[Embedder], texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if embedder is None:
            raise EmbeddingError("存在需要向量化的字段，但未配置 embedding", component=COMPONENT)
        try:
            vectors = await embedder.embed_strings(texts)
        except Exception as e:
            logger.error(f"文档向量化失败: {e}")
            raise EmbeddingError(f"文档向量化失败: {e}", component=COMPONENT) from e
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"向量数量与文本数量不一致: {len(vectors)} != {len(texts)}",
                component=COMPONENT,
            )
        return vectors

    async def _build_actions(
        self, docs: List[Document], embedder: Optional[Embedder]
    ) -> List[Dict[str, Any]]:
        all_fields, texts, targets = self._collect_fields(docs)
        vectors = await self._embed(embedder, texts)

        sources: List[Dict[str, Any]] = [
            {name: fv.value for name, fv in fields.items()} for fields in all_fields
        ]
        for (doc_index, embed_key), vector in zip(targets, vectors):
            sources[doc_index][embed_key] = [float(v) for v in vector]

        return [
            {
                "_op_type": "index",
                "_index": self.config.index,
                "_id": doc.id,
                "_source": source,
            }
            for doc, source in zip(docs, sources)
        ]

    async def store(self, docs: List[Document], **kwargs) -> List[str]:
        """
        写入文档

        Args:
            docs: 待写入文档
            embedding: 覆盖配置中的嵌入器

        Returns:
            写入的文档ID
        """
        options = IndexerOptions.pop_from(kwargs)
        reject_unknown_options(kwargs, COMPONENT)

        embedder = options.embedding or self.config.embedding
        batch_size = self.config.batch_size
        ids: List[str] = []

        for start in range(0, len(docs), batch_size):
            batch = docs[start:start + batch_size]
            actions = await self._build_actions(batch, embedder)
            try:
                success, _ = await async_bulk(self.client, actions)
            except Exception as e:
                logger.error(f"批量写入失败: {e}")
                raise
            logger.debug(f"批量写入: {success} 条")
            ids.extend(doc.id for doc in batch)

        logger.info(f"写入完成: {len(ids)} 条记录")
        return ids
