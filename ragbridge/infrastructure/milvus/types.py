"""
Milvus Types - Milvus通用类型与默认值
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pymilvus import MilvusClient


DEFAULT_COLLECTION = "ragbridge_collection"
DEFAULT_DESCRIPTION = "the collection for ragbridge"
DEFAULT_TOP_K = 5

ID_FIELD = "id"
CONTENT_FIELD = "content"
METADATA_FIELD = "metadata"
DEFAULT_VECTOR_FIELD = "vector"
DEFAULT_SPARSE_VECTOR_FIELD = "sparse_vector"

MAX_ID_LENGTH = 255
MAX_CONTENT_LENGTH = 65535

BM25_FUNCTION_NAME = "bm25_auto"


class MetricType(str, Enum):
    """向量距离度量"""
    L2 = "L2"
    IP = "IP"
    COSINE = "COSINE"
    HAMMING = "HAMMING"
    JACCARD = "JACCARD"
    TANIMOTO = "TANIMOTO"
    SUBSTRUCTURE = "SUBSTRUCTURE"
    SUPERSTRUCTURE = "SUPERSTRUCTURE"
    BM25 = "BM25"

    def to_milvus(self) -> str:
        return self.value


class ConsistencyLevel(str, Enum):
    """
    一致性级别

    配置中为None表示不设置，由服务端使用默认级别（Bounded）
    """
    STRONG = "Strong"
    SESSION = "Session"
    BOUNDED = "Bounded"
    EVENTUALLY = "Eventually"

    def to_milvus(self) -> str:
        return self.value


class VectorType(str, Enum):
    DENSE = "dense"
    SPARSE = "sparse"


class SparseMethod(str, Enum):
    """
    稀疏向量生成方式

    AUTO: 服务端通过BM25函数从content生成
    PRECOMPUTED: 调用方自行提供稀疏向量
    """
    AUTO = "Auto"
    PRECOMPUTED = "Precomputed"


@dataclass
class MilvusClientConfig:
    """Milvus客户端连接参数"""
    uri: str = "http://localhost:19530"
    token: str = ""
    user: str = ""
    password: str = ""
    db_name: str = ""
    timeout: Optional[float] = None

    def create_client(self) -> MilvusClient:
        return MilvusClient(
            uri=self.uri,
            user=self.user,
            password=self.password,
            db_name=self.db_name,
            token=self.token,
            timeout=self.timeout,
        )
