"""
Scalar Search - 标量过滤查询

查询文本本身就是过滤表达式，不做向量检索
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from pymilvus import MilvusClient

from ragbridge.domain.entities.document import Document

from ..retriever import MilvusRetrieverConfig, MilvusSearchOptions, SearchMode
from .utils import apply_common_kwargs, resolve_top_k


logger = logging.getLogger(__name__)


def combine_filters(query: str, filter_expr: str) -> str:
    if query and filter_expr:
        return f"({query}) and ({filter_expr})"
    return query or filter_expr


@dataclass
class Scalar(SearchMode):
    """标量查询，结果没有分数"""

    def build_query_kwargs(
        self,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> Dict[str, Any]:
        kwargs = {
            "collection_name": config.collection,
            "filter": combine_filters(query, options.filter),
            "output_fields": list(config.output_fields),
            "limit": resolve_top_k(config, options),
        }
        return apply_common_kwargs(kwargs, config, options, with_filter=False, with_grouping=False)

    async def retrieve(
        self,
        client: MilvusClient,
        config: MilvusRetrieverConfig,
        query: str,
        options: MilvusSearchOptions,
    ) -> List[Document]:
        kwargs = self.build_query_kwargs(config, query, options)

        try:
            rows = client.query(**kwargs)
        except Exception as e:
            logger.error(f"标量查询失败: {e}")
            raise

        return config.document_converter(list(rows or []))
