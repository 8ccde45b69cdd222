# Elasticsearch Adapters - Elasticsearch索引器与检索器
from .indexer import ESIndexer, ESIndexerConfig, FieldValue
from .retriever import ESClientConfig, ESRetriever, ESRetrieverConfig, default_result_parser
from .search_mode import (
    Approximate,
    ApproximateConfig,
    DenseVectorSimilarity,
    DenseVectorSimilarityType,
    ESSearchOptions,
    ExactMatch,
    RawStringRequest,
    SearchMode,
    SparseVectorQuery,
    SparseVectorTextExpansion,
)

__all__ = [
    "Approximate",
    "ApproximateConfig",
    "DenseVectorSimilarity",
    "DenseVectorSimilarityType",
    "ESClientConfig",
    "ESIndexer",
    "ESIndexerConfig",
    "ESRetriever",
    "ESRetrieverConfig",
    "ESSearchOptions",
    "ExactMatch",
    "FieldValue",
    "RawStringRequest",
    "SearchMode",
    "SparseVectorQuery",
    "SparseVectorTextExpansion",
    "default_result_parser",
]
