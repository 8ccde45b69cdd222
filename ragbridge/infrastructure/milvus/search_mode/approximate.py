"""
Approximate Search - 近似最近邻检索

对稠密向量字段做ANN检索
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
    first_result,
    resolve_embedder,
    resolve_top_k,
    search_params,
)


logger = logging.getLogger(__name__)


@dataclass
class Approximate(SearchMode):
    """
    近似检索

    search_params 为索引相关的检索参数，如HNSW的 {"ef": 64}
    """
    metric_type: MetricType = MetricType.L2
    search_params: Dict[str, Any] = field(default_factory=dict)

    def build_search_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query_vector,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        kwargs = {
            "collection_name": config.collection,
            "data": [query_vector],
            "anns_field": config.vector_field,
            "limit": resolve_top_k(config, options),
            "output_fields": list(config.output_fields),
            "search_params": search_params(self.metric_type, self.search_params),
        }
        return apply_common_kwargs(kwargs, config, options)

    async def retrieve(
        self,
        client: MilvusClient,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> List[Document]:
        vector = await embed_query(resolve_embedder(config, options), query)
        kwargs = self.build_search_kwargs(config, vector, options)

        try:
            results = client.search(**kwargs)
        except Exception as e:
            logger.error(f"近似检索失败: {e}")
            raise

        return config.document_converter(first_result(results))
