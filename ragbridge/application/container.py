"""
Dependency Injection Container - 依赖注入容器

根据配置统一创建和缓存各组件实例
"""

import logging
from typing import Callable, Dict, Optional

from ragbridge.config.settings import Settings, get_settings
from ragbridge.domain.errors import ConfigError
from ragbridge.domain.ports.services import ChatModel, Embedder
from ragbridge.infrastructure.es import ESClientConfig, ESRetriever, ESRetrieverConfig, ExactMatch
from ragbridge.infrastructure.llm import (
    ArkChatModel,
    ArkConfig,
    ArkResponsesChatModel,
    ArkResponsesConfig,
    ClaudeChatModel,
    ClaudeConfig,
    DeepSeekChatModel,
    DeepSeekConfig,
    GeminiChatModel,
    GeminiConfig,
    QianfanChatModel,
    QianfanConfig,
    QwenChatModel,
    QwenConfig,
)
from ragbridge.infrastructure.milvus import (
    MilvusClientConfig,
    MilvusIndexer,
    MilvusIndexerConfig,
    MilvusRetriever,
    MilvusRetrieverConfig,
    VectorConfig,
)
from ragbridge.infrastructure.milvus.search_mode import Approximate


logger = logging.getLogger(__name__)


class Container:
    """
    依赖注入容器

    负责创建和管理所有组件实例；embedding 由调用方提供
    """

    def __init__(self, settings: Optional[Settings] = None, embedding: Optional[Embedder] = None):
        self.settings = settings or get_settings()
        self.embedding = embedding
        self._instances = {}

        logger.info("初始化依赖注入容器")

    # ============================================================
    # Chat Models
    # ============================================================

    def _build_deepseek(self) -> ChatModel:
        s = self.settings.deepseek
        return DeepSeekChatModel(DeepSeekConfig(
            api_key=s.api_key, model=s.model, base_url=s.base_url, timeout=s.timeout,
        ))

    def _build_qwen(self) -> ChatModel:
        s = self.settings.qwen
        return QwenChatModel(QwenConfig(
            api_key=s.api_key, model=s.model, base_url=s.base_url, timeout=s.timeout,
        ))

    def _build_qianfan(self) -> ChatModel:
        s = self.settings.qianfan
        return QianfanChatModel(QianfanConfig(
            api_key=s.api_key, model=s.model, base_url=s.base_url, app_id=s.app_id, timeout=s.timeout,
        ))

    def _build_ark(self) -> ChatModel:
        s = self.settings.ark
        if s.use_responses_api:
            return ArkResponsesChatModel(ArkResponsesConfig(
                api_key=s.api_key, model=s.model, base_url=s.base_url, timeout=s.timeout,
            ))
        return ArkChatModel(ArkConfig(
            api_key=s.api_key, model=s.model, base_url=s.base_url, timeout=s.timeout,
        ))

    def _build_claude(self) -> ChatModel:
        s = self.settings.claude
        return ClaudeChatModel(ClaudeConfig(
            api_key=s.api_key, model=s.model, base_url=s.base_url, max_tokens=s.max_tokens,
        ))

    def _build_gemini(self) -> ChatModel:
        s = self.settings.gemini
        return GeminiChatModel(GeminiConfig(api_key=s.api_key, model=s.model))

    def get_chat_model(self, provider: str) -> ChatModel:
        """
        获取对话模型

        Args:
            provider: deepseek / qwen / qianfan / ark / claude / gemini
        """
        builders: Dict[str, Callable[[], ChatModel]] = {
            "deepseek": self._build_deepseek,
            "qwen": self._build_qwen,
            "qianfan": self._build_qianfan,
            "ark": self._build_ark,
            "claude": self._build_claude,
            "gemini": self._build_gemini,
        }
        key = f"chat_model:{provider.lower()}"
        if key not in self._instances:
            builder = builders.get(provider.lower())
            if builder is None:
                logger.error(f"未知的模型提供方: {provider}")
                raise ConfigError(f"未知的模型提供方: {provider}")
            self._instances[key] = builder()
        return self._instances[key]

    # ============================================================
    # Indexers & Retrievers
    # ============================================================

    def _milvus_client_config(self) -> MilvusClientConfig:
        s = self.settings.milvus
        return MilvusClientConfig(
            uri=s.uri,
            token=s.token,
            user=s.user,
            password=s.password,
            db_name=s.db_name,
            timeout=s.timeout,
        )

    def get_milvus_indexer(self) -> MilvusIndexer:
        """获取Milvus索引器"""
        if "milvus_indexer" not in self._instances:
            s = self.settings.milvus
            self._instances["milvus_indexer"] = MilvusIndexer(MilvusIndexerConfig(
                client_config=self._milvus_client_config(),
                collection=s.collection,
                vector=VectorConfig(dimension=s.dimension),
                embedding=self.embedding,
            ))
        return self._instances["milvus_indexer"]

    def get_milvus_retriever(self) -> MilvusRetriever:
        """获取Milvus检索器，默认使用近似kNN检索"""
        if "milvus_retriever" not in self._instances:
            self._instances["milvus_retriever"] = MilvusRetriever(MilvusRetrieverConfig(
                client_config=self._milvus_client_config(),
                collection=self.settings.milvus.collection,
                search_mode=Approximate(),
                embedding=self.embedding,
            ))
        return self._instances["milvus_retriever"]

    def get_es_retriever(self) -> ESRetriever:
        """获取Elasticsearch检索器，默认对content字段做全文匹配"""
        if "es_retriever" not in self._instances:
            s = self.settings.elasticsearch
            self._instances["es_retriever"] = ESRetriever(ESRetrieverConfig(
                index=s.index,
                client_config=ESClientConfig(
                    hosts=s.hosts,
                    username=s.username,
                    password=s.password,
                    api_key=s.api_key,
                    ca_certs=s.ca_certs,
                ),
                top_k=s.top_k,
                search_mode=ExactMatch("content"),
                embedding=self.embedding,
            ))
        return self._instances["es_retriever"]

    def reset(self):
        """重置所有实例"""
        self._instances.clear()
        logger.info("容器已重置")


# 全局容器实例
_container: Optional[Container] = None


def get_container() -> Container:
    """获取全局容器实例"""
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container():
    """重置全局容器"""
    global _container
    if _container:
        _container.reset()
    _container = None
