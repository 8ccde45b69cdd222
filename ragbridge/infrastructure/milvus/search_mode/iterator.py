"""
Iterator Search - 迭代检索

通过search_iterator分批拉取结果，适合大 top_k
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from pymilvus import MilvusClient

from ragbridge.domain.entities.document import Document

from ..retriever import MilvusRetrieverConfig, MilvusSearchOptions, SearchMode
from ..types import MetricType
from .utils import (
    apply_common_kwargs,
    embed_query,
    resolve_embedder,
    resolve_top_k,
    search_params,
)


logger = logging.getLogger(__name__)


@dataclass
class Iterator(SearchMode):
    """迭代检索，batch_size 为每批拉取数量"""
    metric_type: MetricType = MetricType.L2
    batch_size: int = 100
    search_params: Dict[str, Any] = field(default_factory=dict)

    def with_search_params(self, params: Dict[str, Any]) -> "Iterator":
        self.search_params = dict(params)
        return self

    def build_iterator_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query_vector,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        kwargs = {
            "collection_name": config.collection,
            "data": [query_vector],
            "anns_field": config.vector_field,
            "batch_size": self.batch_size if self.batch_size > 0 else 100,
            "limit": resolve_top_k(config, options),
            "output_fields": list(config.output_fields),
            "search_params": search_params(self.metric_type, self.search_params),
        }
        if options.grouping is not None:
            logger.warning("迭代检索不支持分组参数，已忽略 grouping")
        return apply_common_kwargs(kwargs, config, options, with_grouping=False)

    async def retrieve(
        self,
        client: MilvusClient,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> List[Document]:
        vector = await embed_query(resolve_embedder(config, options), query)
        kwargs = self.build_iterator_kwargs(config, vector, options)

        try:
            iterator = client.search_iterator(**kwargs)
        except Exception as e:
            logger.error(f"创建检索迭代器失败: {e}")
            raise

        docs: List[Document] = []
        try:
            while True:
                batch = iterator.next()
                if not batch:
                    break
                docs.extend(config.document_converter(list(batch)))
        finally:
            iterator.close()

        logger.debug(f"迭代检索完成: {len(docs)} 个结果")
        return docs
