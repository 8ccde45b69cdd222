"""
Elasticsearch Search Modes - Elasticsearch检索策略

每个策略把查询文本转换为 AsyncElasticsearch.search 的请求参数
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ragbridge.domain.errors import ConfigError, EmbeddingError
from ragbridge.domain.ports.services import Embedder

if TYPE_CHECKING:
    from .retriever import ESRetrieverConfig


logger = logging.getLogger(__name__)

COMPONENT = "ESRetriever"


@dataclass
class ESSearchOptions:
    """单次检索参数"""
    top_k: int = 10
    embedding: Optional[Embedder] = None
    filters: List[Dict[str, Any]] = field(default_factory=list)
    # SparseVectorQuery 使用的查询稀疏向量 token -> weight
    sparse_vector: Optional[Dict[str, float]] = None


class SearchMode(ABC):
    """检索策略"""

    @abstractmethod
    async def build_request(
        self, config: "ESRetrieverConfig", query: str, options: ESSearchOptions
    ) -> Dict[str, Any]:
        pass


async def _embed_query(embedder: Optional[Embedder], query: str) -> List[float]:
    if embedder is None:
        raise EmbeddingError("embedding not provided", component=COMPONENT)
    try:
        vectors = await embedder.embed_strings([query])
    except Exception as e:
        logger.error(f"查询向量化失败: {e}")
        raise EmbeddingError(f"embedding failed: {e}", component=COMPONENT) from e
    if len(vectors) != 1:
        raise EmbeddingError(
            f"embedding failed: 期望1个向量，实际{len(vectors)}个", component=COMPONENT
        )
    return [float(v) for v in vectors[0]]


def _with_filters(query: Dict[str, Any], filters: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not filters:
        return query
    return {"bool": {"must": [query], "filter": list(filters)}}


# ============================================================
# Exact Match - 全文匹配
# ============================================================

@dataclass
class ExactMatch(SearchMode):
    """对单个文本字段做match查询"""
    query_field_name: str

    async def build_request(self, config, query, options):
        match = {"match": {self.query_field_name: {"query": query}}}
        return {"query": _with_filters(match, options.filters)}


# ============================================================
# Raw String Request - 原始请求体
# ============================================================

@dataclass
class RawStringRequest(SearchMode):
    """查询文本即JSON格式的请求体"""

    async def build_request(self, config, query, options):
        try:
            body = json.loads(query)
        except json.JSONDecodeError as e:
            raise ConfigError(f"请求体不是合法JSON: {e}", component=COMPONENT) from e
        if not isinstance(body, dict):
            raise ConfigError("请求体必须是JSON对象", component=COMPONENT)

        # elasticsearch-py 使用 from_ 避开关键字
        if "from" in body:
            body["from_"] = body.pop("from")
        return body


# ============================================================
# Dense Vector Similarity - 脚本打分的精确向量检索
# ============================================================

class DenseVectorSimilarityType(str, Enum):
    COSINE_SIMILARITY = "cosineSimilarity"
    DOT_PRODUCT = "dotProduct"
    L1_NORM = "l1norm"
    L2_NORM = "l2norm"


_SIMILARITY_SCRIPTS = {
    DenseVectorSimilarityType.COSINE_SIMILARITY: "cosineSimilarity(params.embedding, '{field}') + 1.0",
    DenseVectorSimilarityType.DOT_PRODUCT: (
        "double value = dotProduct(params.embedding, '{field}');\n"
        "return sigmoid(1, Math.E, -value);"
    ),
    DenseVectorSimilarityType.L1_NORM: "1 / (1 + l1norm(params.embedding, '{field}'))",
    DenseVectorSimilarityType.L2_NORM: "1 / (1 + l2norm(params.embedding, '{field}'))",
}


@dataclass
class DenseVectorSimilarity(SearchMode):
    """
    script_score 暴力检索

    分数经过变换保证非负，适合小规模或过滤后的数据集
    """
    similarity_type: DenseVectorSimilarityType
    vector_field_name: str

    async def build_request(self, config, query, options):
        vector = await _embed_query(options.embedding, query)

        if options.filters:
            base_query = {"bool": {"filter": list(options.filters)}}
        else:
            base_query = {"match_all": {}}

        source = _SIMILARITY_SCRIPTS[DenseVectorSimilarityType(self.similarity_type)]
        return {
            "query": {
                "script_score": {
                    "query": base_query,
                    "script": {
                        "source": source.format(field=self.vector_field_name),
                        "params": {"embedding": vector},
                    },
                }
            }
        }


# ============================================================
# Approximate - kNN近似检索
# ============================================================

@dataclass
class ApproximateConfig:
    """
    kNN检索配置

    query_vector_builder_model_id 不为空时由ES内置模型生成查询向量；
    hybrid 为True时同时执行 query_field_name 上的全文检索，可选RRF融合
    """
    vector_field_name: str
    query_field_name: str = ""
    hybrid: bool = False
    rrf: bool = False
    rrf_rank_constant: Optional[int] = None
    rrf_window_size: Optional[int] = None
    query_vector_builder_model_id: str = ""
    boost: Optional[float] = None
    k: Optional[int] = None
    num_candidates: Optional[int] = None
    similarity: Optional[float] = None


@dataclass
class Approximate(SearchMode):
    config: ApproximateConfig

    async def build_request(self, config, query, options):
        approx = self.config
        knn: Dict[str, Any] = {"field": approx.vector_field_name}

        if approx.query_vector_builder_model_id:
            knn["query_vector_builder"] = {
                "text_embedding": {
                    "model_id": approx.query_vector_builder_model_id,
                    "model_text": query,
                }
            }
        else:
            knn["query_vector"] = await _embed_query(options.embedding, query)

        if approx.k is not None:
            knn["k"] = approx.k
        if approx.num_candidates is not None:
            knn["num_candidates"] = approx.num_candidates
        if options.filters:
            knn["filter"] = list(options.filters)
        if approx.similarity is not None:
            knn["similarity"] = approx.similarity
        if approx.boost is not None:
            knn["boost"] = approx.boost

        request: Dict[str, Any] = {"knn": [knn]}

        if approx.hybrid:
            if not approx.query_field_name:
                raise ConfigError("混合检索需要设置 query_field_name", component=COMPONENT)
            bool_query: Dict[str, Any] = {
                "must": [{"match": {approx.query_field_name: {"query": query}}}],
            }
            if options.filters:
                bool_query["filter"] = list(options.filters)
            request["query"] = {"bool": bool_query}

            if approx.rrf:
                rrf: Dict[str, Any] = {}
                if approx.rrf_rank_constant is not None:
                    rrf["rank_constant"] = approx.rrf_rank_constant
                if approx.rrf_window_size is not None:
                    rrf["rank_window_size"] = approx.rrf_window_size
                request["rank"] = {"rrf": rrf}

        return request


# ============================================================
# Sparse Vector - 稀疏向量检索
# ============================================================

@dataclass
class SparseVectorQuery(SearchMode):
    """
    sparse_vector 查询

    inference_id 为空时必须通过检索参数 sparse_vector 提供查询向量
    """
    vector_field_name: str
    inference_id: str = ""

    async def build_request(self, config, query, options):
        sparse: Dict[str, Any] = {"field": self.vector_field_name}
        if self.inference_id:
            sparse["inference_id"] = self.inference_id
            sparse["query"] = query
        elif options.sparse_vector:
            sparse["query_vector"] = dict(options.sparse_vector)
        else:
            raise ConfigError(
                "sparse_vector 查询需要 inference_id 或检索参数 sparse_vector",
                component=COMPONENT,
            )

        bool_query: Dict[str, Any] = {"should": [{"sparse_vector": sparse}]}
        if options.filters:
            bool_query["filter"] = list(options.filters)
        return {"query": {"bool": bool_query}}


@dataclass
class SparseVectorTextExpansion(SearchMode):
    """ELSER text_expansion 查询，向量存放在 <field>.tokens"""
    model_id: str
    vector_field_name: str

    async def build_request(self, config, query, options):
        expansion = {
            "text_expansion": {
                f"{self.vector_field_name}.tokens": {
                    "model_id": self.model_id,
                    "model_text": query,
                }
            }
        }
        bool_query: Dict[str, Any] = {"must": [expansion]}
        if options.filters:
            bool_query["filter"] = list(options.filters)
        return {"query": {"bool": bool_query}}
