"""
Range Search - 范围检索

返回距离落在 (range_filter, radius] 区间内的结果
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

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
class Range(SearchMode):
    """
    范围检索

    L2等距离类度量下 radius 为外边界，IP/COSINE 下 radius 为下界；
    range_filter 为可选的另一侧边界
    """
    metric_type: MetricType = MetricType.L2
    radius: float = 0.0
    range_filter: Optional[float] = None

    def with_range_filter(self, range_filter: float) -> "Range":
        self.range_filter = range_filter
        return self

    def build_search_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query_vector,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"radius": self.radius}
        if self.range_filter is not None:
            params["range_filter"] = self.range_filter

        kwargs = {
            "collection_name": config.collection,
            "data": [query_vector],
            "anns_field": config.vector_field,
            "limit": resolve_top_k(config, options),
            "output_fields": list(config.output_fields),
            "search_params": search_params(self.metric_type, params),
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
            logger.error(f"范围检索失败: {e}")
            raise

        return config.document_converter(first_result(results))
