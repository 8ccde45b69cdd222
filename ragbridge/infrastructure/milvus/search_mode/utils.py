"""
Search Mode Utils - 检索策略公共方法
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np

from ragbridge.domain.errors import EmbeddingError
from ragbridge.domain.ports.services import Embedder

from ..retriever import MilvusRetrieverConfig, MilvusSearchOptions
from ..types import ConsistencyLevel, MetricType


logger = logging.getLogger(__name__)

COMPONENT = "MilvusRetriever"


def resolve_top_k(config: MilvusRetrieverConfig, options: MilvusSearchOptions) -> int:
    if options.top_k is not None and options.top_k > 0:
        return options.top_k
    return config.top_k


def resolve_embedder(
    config: MilvusRetrieverConfig, options: MilvusSearchOptions
) -> Optional[Embedder]:
    return options.embedding or config.embedding


async def embed_query(embedder: Optional[Embedder], query: str) -> np.ndarray:
    """把查询文本转为float32向量"""
    if embedder is None:
        raise EmbeddingError("近似检索需要配置 embedding", component=COMPONENT)

    try:
        vectors = await embedder.embed_strings([query])
    except Exception as e:
        logger.error(f"查询向量化失败: {e}")
        raise EmbeddingError(f"查询向量化失败: {e}", component=COMPONENT) from e

    if len(vectors) != 1:
        raise EmbeddingError(
            f"查询向量化结果数量错误: 期望1个，实际{len(vectors)}个", component=COMPONENT
        )
    return np.asarray(vectors[0], dtype=np.float32)


def grouping_kwargs(options: MilvusSearchOptions) -> Dict[str, Any]:
    grouping = options.grouping
    if grouping is None:
        return {}
    kwargs: Dict[str, Any] = {
        "group_by_field": grouping.group_by_field,
        "group_size": grouping.group_size,
    }
    if grouping.strict_group_size:
        kwargs["strict_group_size"] = True
    return kwargs


def apply_common_kwargs(
    kwargs: Dict[str, Any],
    config: MilvusRetrieverConfig,
    options: MilvusSearchOptions,
    with_filter: bool = True,
    with_grouping: bool = True,
) -> Dict[str, Any]:
    """附加分区、过滤、分组和一致性级别参数"""
    if config.partitions:
        kwargs["partition_names"] = list(config.partitions)
    if with_filter and options.filter:
        kwargs["filter"] = options.filter
    if with_grouping:
        kwargs.update(grouping_kwargs(options))
    if config.consistency_level is not None:
        kwargs["consistency_level"] = ConsistencyLevel(config.consistency_level).to_milvus()
    return kwargs


def search_params(metric_type, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"metric_type": MetricType(metric_type).to_milvus(), "params": dict(params or {})}


def first_result(results: Optional[List[Any]]) -> List[Any]:
    """search 对每个查询向量返回一组命中，这里只有一个查询"""
    if not results:
        return []
    return list(results[0])
