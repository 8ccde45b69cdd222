"""
Document Entity - 文档领域实体

索引器和检索器之间传递的通用文档模型
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Document:
    """
    通用文档

    dense_vector / sparse_vector 只在调用方自带向量时使用，
    检索结果的相似度写入score
    """
    id: str = ""
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: Optional[float] = None
    dense_vector: Optional[List[float]] = None
    sparse_vector: Optional[Dict[int, float]] = None

    def with_score(self, score: float) -> "Document":
        self.score = score
        return self

    def with_dense_vector(self, vector: List[float]) -> "Document":
        self.dense_vector = vector
        return self

    def with_sparse_vector(self, vector: Dict[int, float]) -> "Document":
        self.sparse_vector = vector
        return self

    @property
    def has_dense_vector(self) -> bool:
        return bool(self.dense_vector)
