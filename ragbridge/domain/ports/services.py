"""
Service Ports - 组件接口定义

定义索引器、检索器、嵌入器和对话模型的抽象接口，实现依赖反转
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Any, AsyncIterator, Dict, List, Optional

from ..entities.document import Document
from ..entities.message import Message, ToolChoice, ToolInfo


def _pop_fields(cls, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    return {f.name: kwargs.pop(f.name) for f in fields(cls) if f.name in kwargs}


def reject_unknown_options(kwargs: Dict[str, Any], component: str):
    """所有已识别的参数都取出后，剩余的参数视为调用错误"""
    if kwargs:
        raise TypeError(f"{component} 不支持的参数: {', '.join(sorted(kwargs))}")


# ============================================================
# Embedder - 向量嵌入
# ============================================================

class Embedder(ABC):
    """
    向量嵌入接口

    本项目只消费该接口，具体模型由调用方提供
    """

    @abstractmethod
    async def embed_strings(self, texts: List[str]) -> List[List[float]]:
        """批量嵌入文本"""
        pass


# ============================================================
# Indexer - 索引器
# ============================================================

@dataclass
class IndexerOptions:
    """索引器通用调用参数"""
    embedding: Optional[Embedder] = None

    @classmethod
    def pop_from(cls, kwargs: Dict[str, Any]) -> "IndexerOptions":
        return cls(**_pop_fields(cls, kwargs))


class Indexer(ABC):
    """
    索引器接口

    负责把文档写入后端存储
    """

    @abstractmethod
    async def store(self, docs: List[Document], **kwargs) -> List[str]:
        """写入文档，返回文档ID"""
        pass

    @abstractmethod
    def get_type(self) -> str:
        pass


# ============================================================
# Retriever - 检索器
# ============================================================

@dataclass
class RetrieverOptions:
    """检索器通用调用参数"""
    top_k: Optional[int] = None
    score_threshold: Optional[float] = None
    embedding: Optional[Embedder] = None

    @classmethod
    def pop_from(cls, kwargs: Dict[str, Any]) -> "RetrieverOptions":
        return cls(**_pop_fields(cls, kwargs))


class Retriever(ABC):
    """
    检索器接口

    负责根据查询返回相关文档
    """

    @abstractmethod
    async def retrieve(self, query: str, **kwargs) -> List[Document]:
        """检索文档"""
        pass

    @abstractmethod
    def get_type(self) -> str:
        pass


# ============================================================
# Chat Model - 对话模型
# ============================================================

@dataclass
class ModelOptions:
    """对话模型通用调用参数，未设置的字段沿用模型配置"""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    tools: Optional[List[ToolInfo]] = None
    tool_choice: Optional[ToolChoice] = None
    allowed_tool_names: List[str] = field(default_factory=list)

    @classmethod
    def pop_from(cls, kwargs: Dict[str, Any]) -> "ModelOptions":
        return cls(**_pop_fields(cls, kwargs))


class ChatModel(ABC):
    """
    对话模型接口

    with_tools 返回绑定了工具的新实例，原实例不受影响
    """

    @abstractmethod
    async def generate(self, messages: List[Message], **kwargs) -> Message:
        """生成完整回复"""
        pass

    @abstractmethod
    def stream(self, messages: List[Message], **kwargs) -> AsyncIterator[Message]:
        """流式生成，逐个返回消息分片"""
        pass

    @abstractmethod
    def with_tools(self, tools: List[ToolInfo]) -> "ChatModel":
        pass

    @abstractmethod
    def get_type(self) -> str:
        pass
