"""
Hybrid Search - 多向量混合检索

对多个向量字段分别检索，再由重排器（RRF / 加权）融合结果
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pymilvus import AnnSearchRequest, MilvusClient

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError, EmbeddingError

from ..retriever import MilvusRetrieverConfig, MilvusSearchOptions, SearchMode
from ..types import MetricType, VectorType
from .utils import (
    COMPONENT,
    apply_common_kwargs,
    embed_query,
    first_result,
    resolve_embedder,
)


logger = logging.getLogger(__name__)


@dataclass
class SubRequest:
    """
    混合检索中的单路检索

    vector_field 为空时按向量类型使用配置中的稠密或稀疏字段，
    top_k 为空时使用配置中的 top_k
    """
    vector_field: str = ""
    metric_type: Optional[MetricType] = None
    top_k: int = 0
    search_params: Dict[str, Any] = field(default_factory=dict)
    vector_type: VectorType = VectorType.DENSE

    def resolve_field(self, config: MilvusRetrieverConfig) -> str:
        if self.vector_field:
            return self.vector_field
        if self.vector_type == VectorType.SPARSE:
            return config.sparse_vector_field
        return config.vector_field


@dataclass
class Hybrid(SearchMode):
    """
    混合检索

    最终返回数量：调用参数 top_k > Hybrid.top_k > 配置 top_k
    """
    reranker: Any  # RRFRanker / WeightedRanker
    sub_requests: List[SubRequest] = field(default_factory=list)
    top_k: int = 0

    def _final_limit(self, config: MilvusRetrieverConfig, options: MilvusSearchOptions) -> int:
        if options.top_k is not None and options.top_k > 0:
            return options.top_k
        if self.top_k > 0:
            return self.top_k
        return config.top_k

    def build_requests(
        self,
        config: MilvusRetrieverConfig,
        query: str,
        query_vector,
        options: MilvusSearchOptions,
    ) -> List[AnnSearchRequest]:
        requests = []
        for i, sub in enumerate(self.sub_requests):
            if sub.vector_type == VectorType.SPARSE:
                data = [query]
            else:
                if query_vector is None:
                    raise EmbeddingError(f"第{i}路稠密检索缺少查询向量", component=COMPONENT)
                data = [query_vector]

            param: Dict[str, Any] = {"params": dict(sub.search_params)}
            if sub.metric_type is not None:
                param["metric_type"] = MetricType(sub.metric_type).to_milvus()

            requests.append(
                AnnSearchRequest(
                    data=data,
                    anns_field=sub.resolve_field(config),
                    param=param,
                    limit=sub.top_k if sub.top_k > 0 else config.top_k,
                    expr=options.filter or None,
                )
            )
        return requests

    def build_search_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query: str,
        query_vector,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        kwargs = {
            "collection_name": config.collection,
            "reqs": self.build_requests(config, query, query_vector, options),
            "ranker": self.reranker,
            "limit": self._final_limit(config, options),
            "output_fields": list(config.output_fields),
        }
        # 过滤条件已下发到每一路检索
        return apply_common_kwargs(kwargs, config, options, with_filter=False)

    async def retrieve(
        self,
        client: MilvusClient,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> List[Document]:
        if len(self.sub_requests) < 2:
            raise ConfigError(
                "混合检索至少需要2个SubRequest，单路检索请使用Approximate或Sparse",
                component=COMPONENT,
            )

        query_vector = None
        if any(sub.vector_type == VectorType.DENSE for sub in self.sub_requests):
            query_vector = await embed_query(resolve_embedder(config, options), query)

        kwargs = self.build_search_kwargs(config, query, query_vector, options)

        try:
            results = client.hybrid_search(**kwargs)
        except Exception as e:
            logger.error(f"混合检索失败: {e}")
            raise

        return config.document_converter(first_result(results))
