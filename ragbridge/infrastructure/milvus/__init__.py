# Milvus Adapters - Milvus索引器与检索器
from .index_builder import (
    AutoIndexBuilder,
    BinFlatIndexBuilder,
    BinIVFFlatIndexBuilder,
    DiskANNIndexBuilder,
    FlatIndexBuilder,
    GPUBruteForceIndexBuilder,
    GPUCagraIndexBuilder,
    GPUIVFFlatIndexBuilder,
    GPUIVFPQIndexBuilder,
    HNSWIndexBuilder,
    IndexBuilder,
    IVFFlatIndexBuilder,
    IVFPQIndexBuilder,
    IVFRaBitQIndexBuilder,
    IVFSQ8IndexBuilder,
    SCANNIndexBuilder,
    SparseIndexBuilder,
    SparseInvertedIndexBuilder,
    SparseWANDIndexBuilder,
)
from .indexer import MilvusIndexer, MilvusIndexerConfig, SparseVectorConfig, VectorConfig
from .retriever import (
    GroupingConfig,
    MilvusRetriever,
    MilvusRetrieverConfig,
    MilvusSearchOptions,
    SearchMode,
)
from .types import ConsistencyLevel, MetricType, MilvusClientConfig, SparseMethod, VectorType

__all__ = [
    "AutoIndexBuilder",
    "BinFlatIndexBuilder",
    "BinIVFFlatIndexBuilder",
    "ConsistencyLevel",
    "DiskANNIndexBuilder",
    "FlatIndexBuilder",
    "GPUBruteForceIndexBuilder",
    "GPUCagraIndexBuilder",
    "GPUIVFFlatIndexBuilder",
    "GPUIVFPQIndexBuilder",
    "GroupingConfig",
    "HNSWIndexBuilder",
    "IndexBuilder",
    "IVFFlatIndexBuilder",
    "IVFPQIndexBuilder",
    "IVFRaBitQIndexBuilder",
    "IVFSQ8IndexBuilder",
    "MetricType",
    "MilvusClientConfig",
    "MilvusIndexer",
    "MilvusIndexerConfig",
    "MilvusRetriever",
    "MilvusRetrieverConfig",
    "MilvusSearchOptions",
    "SCANNIndexBuilder",
    "SearchMode",
    "SparseIndexBuilder",
    "SparseInvertedIndexBuilder",
    "SparseMethod",
    "SparseVectorConfig",
    "SparseWANDIndexBuilder",
    "VectorConfig",
    "VectorType",
]
