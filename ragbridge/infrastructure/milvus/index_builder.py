"""
Index Builders - Milvus索引参数构建

索引算法由服务端实现，这里只负责按名称和参数生成索引描述
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict

from .types import MetricType


class IndexBuilder(ABC):
    """稠密向量索引构建器"""

    index_type: str = ""

    def params(self) -> Dict[str, Any]:
        return {}

    def build(self, metric_type: MetricType) -> Dict[str, Any]:
        """生成 prepare_index_params().add_index 所需的参数"""
        return {
            "index_type": self.index_type,
            "metric_type": MetricType(metric_type).to_milvus(),
            "params": self.params(),
        }


class SparseIndexBuilder(IndexBuilder, ABC):
    """稀疏向量索引构建器"""

    @abstractmethod
    def params(self) -> Dict[str, Any]:
        pass


class AutoIndexBuilder(IndexBuilder):
    index_type = "AUTOINDEX"


class FlatIndexBuilder(IndexBuilder):
    index_type = "FLAT"


@dataclass
class HNSWIndexBuilder(IndexBuilder):
    """HNSW图索引"""
    m: int = 16
    ef_construction: int = 200
    index_type = "HNSW"

    def params(self) -> Dict[str, Any]:
        return {"M": self.m, "efConstruction": self.ef_construction}


@dataclass
class IVFFlatIndexBuilder(IndexBuilder):
    nlist: int = 128
    index_type = "IVF_FLAT"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist}


@dataclass
class IVFPQIndexBuilder(IndexBuilder):
    """IVF + 乘积量化，m需要能整除向量维度"""
    nlist: int = 128
    m: int = 16
    nbits: int = 8
    index_type = "IVF_PQ"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist, "m": self.m, "nbits": self.nbits}


@dataclass
class IVFSQ8IndexBuilder(IndexBuilder):
    nlist: int = 128
    index_type = "IVF_SQ8"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist}


class DiskANNIndexBuilder(IndexBuilder):
    index_type = "DISKANN"


@dataclass
class SCANNIndexBuilder(IndexBuilder):
    nlist: int = 128
    with_raw_data: bool = True
    index_type = "SCANN"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist, "with_raw_data": self.with_raw_data}


class BinFlatIndexBuilder(IndexBuilder):
    """二值向量暴力检索"""
    index_type = "BIN_FLAT"


@dataclass
class BinIVFFlatIndexBuilder(IndexBuilder):
    nlist: int = 128
    index_type = "BIN_IVF_FLAT"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist}


class GPUBruteForceIndexBuilder(IndexBuilder):
    index_type = "GPU_BRUTE_FORCE"


class GPUIVFFlatIndexBuilder(IndexBuilder):
    index_type = "GPU_IVF_FLAT"


class GPUIVFPQIndexBuilder(IndexBuilder):
    index_type = "GPU_IVF_PQ"


@dataclass
class GPUCagraIndexBuilder(IndexBuilder):
    intermediate_graph_degree: int = 128
    graph_degree: int = 64
    index_type = "GPU_CAGRA"

    def params(self) -> Dict[str, Any]:
        return {
            "intermediate_graph_degree": self.intermediate_graph_degree,
            "graph_degree": self.graph_degree,
        }


@dataclass
class IVFRaBitQIndexBuilder(IndexBuilder):
    nlist: int = 128
    index_type = "IVF_RABITQ"

    def params(self) -> Dict[str, Any]:
        return {"nlist": self.nlist}


# ============================================================
# Sparse Index - 稀疏向量索引
# ============================================================

@dataclass
class SparseInvertedIndexBuilder(SparseIndexBuilder):
    """稀疏倒排索引，drop_ratio_build 表示构建时丢弃的小值比例"""
    drop_ratio_build: float = 0.2
    index_type = "SPARSE_INVERTED_INDEX"

    def params(self) -> Dict[str, Any]:
        return {"drop_ratio_build": self.drop_ratio_build}


@dataclass
class SparseWANDIndexBuilder(SparseIndexBuilder):
    drop_ratio_build: float = 0.2
    index_type = "SPARSE_WAND"

    def params(self) -> Dict[str, Any]:
        return {"drop_ratio_build": self.drop_ratio_build}
