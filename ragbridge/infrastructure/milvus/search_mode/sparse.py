"""
Sparse Search - 稀疏向量检索

直接以查询文本检索BM25函数生成的稀疏字段，无需嵌入器
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from pymilvus import MilvusClient

from ragbridge.domain.entities.document import Document

from ..retriever import MilvusRetrieverConfig, MilvusSearchOptions, SearchMode
from ..types import MetricType
from .utils import apply_common_kwargs, first_result, resolve_top_k, search_params


logger = logging.getLogger(__name__)


@dataclass
class Sparse(SearchMode):
    metric_type: MetricType = MetricType.BM25
    search_params: Dict[str, Any] = field(default_factory=dict)

    def build_search_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        kwargs = {
            "collection_name": config.collection,
            "data": [query],
            "anns_field": config.sparse_vector_field,
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
        kwargs = self.build_search_kwargs(config, query, options)

        try:
            results = client.search(**kwargs)
        except Exception as e:
            logger.error(f"稀疏检索失败: {e}")
            raise

        return config.document_converter(first_result(results))
