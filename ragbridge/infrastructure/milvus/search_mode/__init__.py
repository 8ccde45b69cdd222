# Milvus Search Modes - 检索策略
from .approximate import Approximate
from .hybrid import Hybrid, SubRequest
from .iterator import Iterator
from .range_search import Range
from .scalar import Scalar
from .sparse import Sparse

__all__ = [
    "Approximate",
    "Hybrid",
    "Iterator",
    "Range",
    "Scalar",
    "Sparse",
    "SubRequest",
]
