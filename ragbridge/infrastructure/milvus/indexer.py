"""
Milvus Indexer - Milvus索引器

实现Indexer接口，支持稠密向量、稀疏向量（BM25自动生成或预计算）
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from pymilvus import DataType, Function, FunctionType, MilvusClient
from pymilvus.client.types import LoadState

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError, ConversionError, EmbeddingError
from ragbridge.domain.ports.services import (
    Embedder,
    Indexer,
    IndexerOptions,
    reject_unknown_options,
)

from .index_builder import IndexBuilder, SparseIndexBuilder
from .types import (
    BM25_FUNCTION_NAME,
    CONTENT_FIELD,
    DEFAULT_COLLECTION,
    DEFAULT_DESCRIPTION,
    DEFAULT_SPARSE_VECTOR_FIELD,
    DEFAULT_VECTOR_FIELD,
    ID_FIELD,
    MAX_CONTENT_LENGTH,
    MAX_ID_LENGTH,
    METADATA_FIELD,
    ConsistencyLevel,
    MetricType,
    MilvusClientConfig,
    SparseMethod,
)


logger = logging.getLogger(__name__)

COMPONENT = "MilvusIndexer"

# (docs, dense_vectors) -> rows
DocumentConverter = Callable[[List[Document], Optional[List[List[float]]]], List[Dict[str, Any]]]


@dataclass
class VectorConfig:
    """稠密向量字段配置，dimension 只在创建集合时使用"""
    dimension: int = 0
    metric_type: Optional[MetricType] = None
    index_builder: Optional[IndexBuilder] = None
    vector_field: str = ""


@dataclass
class SparseVectorConfig:
    """稀疏向量字段配置"""
    index_builder: Optional[SparseIndexBuilder] = None
    vector_field: str = ""
    metric_type: Optional[MetricType] = None
    method: Optional[SparseMethod] = None


@dataclass
class MilvusIndexerConfig:
    """
    Milvus索引器配置

    client 与 client_config 二选一；vector 与 sparse 至少配置一个
    """
    client: Optional[MilvusClient] = None
    client_config: Optional[MilvusClientConfig] = None
    collection: str = ""
    description: str = ""
    partition_name: str = ""
    consistency_level: Optional[ConsistencyLevel] = None
    enable_dynamic_schema: bool = False
    vector: Optional[VectorConfig] = None
    sparse: Optional[SparseVectorConfig] = None
    document_converter: Optional[DocumentConverter] = None
    embedding: Optional[Embedder] = None
    functions: List[Function] = field(default_factory=list)
    # 字段名 -> 额外字段参数，如 {"content": {"enable_match": True}}
    field_params: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def validate(self):
        """校验配置并填充默认值"""
        if self.client is None and self.client_config is None:
            raise ConfigError("必须提供 client 或 client_config", component=COMPONENT)
        if self.vector is None and self.sparse is None:
            raise ConfigError(
                "至少需要配置一个向量字段（vector 或 sparse）", component=COMPONENT
            )

        if not self.collection:
            self.collection = DEFAULT_COLLECTION
        if not self.description:
            self.description = DEFAULT_DESCRIPTION

        if self.vector is not None:
            self.vector.metric_type = MetricType(self.vector.metric_type or MetricType.L2)
            if not self.vector.vector_field:
                self.vector.vector_field = DEFAULT_VECTOR_FIELD

        if self.sparse is not None:
            if not self.sparse.vector_field:
                self.sparse.vector_field = DEFAULT_SPARSE_VECTOR_FIELD
            self.sparse.metric_type = MetricType(self.sparse.metric_type or MetricType.BM25)
            if self.sparse.method is None:
                if self.sparse.metric_type == MetricType.BM25:
                    self.sparse.method = SparseMethod.AUTO
                else:
                    self.sparse.method = SparseMethod.PRECOMPUTED
            if self.sparse.method == SparseMethod.AUTO:
                self._ensure_bm25_function()

        if self.document_converter is None:
            self.document_converter = default_document_converter(self)

    def _ensure_bm25_function(self):
        target = self.sparse.vector_field
        for func in self.functions:
            if target in (func.output_field_names or []):
                return
        self.functions.append(
            Function(
                name=BM25_FUNCTION_NAME,
                function_type=FunctionType.BM25,
                input_field_names=[CONTENT_FIELD],
                output_field_names=[target],
            )
        )

    @property
    def bm25_input_fields(self) -> List[str]:
        fields = []
        for func in self.functions:
            if func.type == FunctionType.BM25:
                fields.extend(func.input_field_names or [])
        return fields


# ============================================================
# Document Converter - 文档转换
# ============================================================

def _to_float32(vector) -> np.ndarray:
    return np.asarray(vector, dtype=np.float32)


def _to_sparse_row(doc: Document, index: int) -> Dict[int, float]:
    sparse = doc.sparse_vector or {}
    row = {}
    for key in sorted(sparse):
        if key < 0:
            raise ConversionError(
                f"文档 {index}（id: {doc.id}）的稀疏向量包含负数下标: {key}",
                component=COMPONENT,
            )
        row[int(key)] = float(sparse[key])
    return row


def default_document_converter(config: MilvusIndexerConfig) -> DocumentConverter:
    """
    创建默认文档转换器

    每行包含 id / content / metadata，按配置附加稠密向量和预计算稀疏向量
    """
    dense_field = config.vector.vector_field if config.vector is not None else ""
    sparse_field = ""
    if config.sparse is not None and config.sparse.method == SparseMethod.PRECOMPUTED:
        sparse_field = config.sparse.vector_field

    def convert(docs: List[Document], vectors: Optional[List[List[float]]]) -> List[Dict[str, Any]]:
        use_embedding = vectors is not None and len(vectors) == len(docs)
        rows = []
        for i, doc in enumerate(docs):
            metadata = doc.metadata or {}
            try:
                json.dumps(metadata)
            except (TypeError, ValueError) as e:
                raise ConversionError(
                    f"文档 {i}（id: {doc.id}）的metadata无法序列化: {e}", component=COMPONENT
                ) from e

            row = {
                ID_FIELD: doc.id,
                CONTENT_FIELD: doc.content,
                METADATA_FIELD: metadata,
            }

            if dense_field:
                vector = vectors[i] if use_embedding else doc.dense_vector
                if vector is None or len(vector) == 0:
                    raise ConversionError(
                        f"文档 {i}（id: {doc.id}）缺少向量数据", component=COMPONENT
                    )
                row[dense_field] = _to_float32(vector)

            if sparse_field:
                row[sparse_field] = _to_sparse_row(doc, i)

            rows.append(row)
        return rows

    return convert


# ============================================================
# Indexer - 索引器
# ============================================================

class MilvusIndexer(Indexer):
    """
    Milvus索引器

    首次写入时创建集合、索引并加载集合
    """

    def __init__(self, config: MilvusIndexerConfig):
        config.validate()
        self.config = config
        self._client = config.client
        self._collection_initialized = False

        logger.info(f"初始化Milvus索引器: {config.collection}")

    @property
    def client(self) -> MilvusClient:
        """延迟初始化客户端"""
        if self._client is None:
            try:
                self._client = self.config.client_config.create_client()
                logger.info("Milvus客户端创建成功")
            except Exception as e:
                logger.error(f"Milvus客户端创建失败: {e}")
                raise
        return self._client

    def get_type(self) -> str:
        return "Milvus"

    async def _ensure_collection(self):
        """确保集合存在、索引已建立且已加载"""
        if self._collection_initialized:
            return

        collection = self.config.collection
        if not self.client.has_collection(collection):
            self._create_collection()

        state = self.client.get_load_state(collection_name=collection)
        if state.get("state") != LoadState.Loaded:
            self._create_indexes()
            self.client.load_collection(collection_name=collection)
            logger.info(f"加载集合: {collection}")

        self._collection_initialized = True

    def _build_schema(self):
        config = self.config
        schema = MilvusClient.create_schema(
            auto_id=False,
            enable_dynamic_field=config.enable_dynamic_schema,
            description=config.description,
        )

        def params_for(name: str) -> Dict[str, Any]:
            return dict(config.field_params.get(name, {}))

        schema.add_field(
            field_name=ID_FIELD,
            datatype=DataType.VARCHAR,
            is_primary=True,
            max_length=MAX_ID_LENGTH,
            **params_for(ID_FIELD),
        )

        content_params = params_for(CONTENT_FIELD)
        if CONTENT_FIELD in config.bm25_input_fields:
            content_params.setdefault("enable_analyzer", True)
        schema.add_field(
            field_name=CONTENT_FIELD,
            datatype=DataType.VARCHAR,
            max_length=MAX_CONTENT_LENGTH,
            **content_params,
        )

        schema.add_field(
            field_name=METADATA_FIELD,
            datatype=DataType.JSON,
            **params_for(METADATA_FIELD),
        )

        if config.vector is not None:
            schema.add_field(
                field_name=config.vector.vector_field,
                datatype=DataType.FLOAT_VECTOR,
                dim=config.vector.dimension,
                **params_for(config.vector.vector_field),
            )

        if config.sparse is not None:
            schema.add_field(
                field_name=config.sparse.vector_field,
                datatype=DataType.SPARSE_FLOAT_VECTOR,
                **params_for(config.sparse.vector_field),
            )

        for func in config.functions:
            schema.add_function(func)
        return schema

    def _create_collection(self):
        config = self.config
        if config.vector is not None and config.vector.dimension <= 0:
            raise ConfigError("集合不存在时必须指定向量维度 dimension", component=COMPONENT)

        kwargs = {}
        if config.consistency_level is not None:
            kwargs["consistency_level"] = ConsistencyLevel(config.consistency_level).to_milvus()

        try:
            self.client.create_collection(
                collection_name=config.collection,
                schema=self._build_schema(),
                **kwargs,
            )
            logger.info(f"创建集合: {config.collection}")
        except Exception as e:
            logger.error(f"创建集合失败: {e}")
            raise

    def _has_index(self, field_name: str) -> bool:
        return bool(self.client.list_indexes(self.config.collection, field_name=field_name))

    def _create_indexes(self):
        config = self.config
        specs = []

        if config.vector is not None:
            builder = config.vector.index_builder
            if builder is not None:
                spec = builder.build(config.vector.metric_type)
            else:
                spec = {
                    "index_type": "AUTOINDEX",
                    "metric_type": config.vector.metric_type.to_milvus(),
                    "params": {},
                }
            specs.append((config.vector.vector_field, spec))

        if config.sparse is not None:
            builder = config.sparse.index_builder
            if builder is not None:
                spec = builder.build(config.sparse.metric_type)
            else:
                spec = {
                    "index_type": "SPARSE_INVERTED_INDEX",
                    "metric_type": config.sparse.metric_type.to_milvus(),
                    "params": {"drop_ratio_build": 0.2},
                }
            specs.append((config.sparse.vector_field, spec))

        for field_name, spec in specs:
            if self._has_index(field_name):
                logger.info(f"字段 {field_name} 已存在索引，跳过创建")
                continue
            index_params = self.client.prepare_index_params()
            index_params.add_index(field_name=field_name, **spec)
            try:
                self.client.create_index(config.collection, index_params, sync=True)
                logger.info(f"创建索引: {field_name} ({spec['index_type']})")
            except Exception as e:
                logger.error(f"创建索引失败: {field_name}: {e}")
                raise

    async def _embed_documents(
        self, embedder: Optional[Embedder], docs: List[Document]
    ) -> Optional[List[List[float]]]:
        if self.config.vector is None or embedder is None:
            return None

        try:
            vectors = await embedder.embed_strings([doc.content for doc in docs])
        except Exception as e:
            logger.error(f"文档向量化失败: {e}")
            raise EmbeddingError(f"文档向量化失败: {e}", component=COMPONENT) from e

        if len(vectors) != len(docs):
            raise EmbeddingError(
                f"向量数量与文档数量不一致: {len(vectors)} != {len(docs)}",
                component=COMPONENT,
            )
        return vectors

    async def store(self, docs: List[Document], **kwargs) -> List[str]:
        """
        写入文档（upsert）

        Args:
            docs: 待写入文档
            embedding: 覆盖配置中的嵌入器
            partition: 目标分区，默认使用配置中的分区

        Returns:
            写入的文档ID
        """
        options = IndexerOptions.pop_from(kwargs)
        partition = kwargs.pop("partition", None) or self.config.partition_name
        reject_unknown_options(kwargs, COMPONENT)

        if not docs:
            return []

        await self._ensure_collection()

        vectors = await self._embed_documents(options.embedding or self.config.embedding, docs)
        rows = self.config.document_converter(docs, vectors)

        upsert_kwargs = {}
        if partition:
            upsert_kwargs["partition_name"] = partition

        try:
            result = self.client.upsert(
                collection_name=self.config.collection,
                data=rows,
                **upsert_kwargs,
            )
        except Exception as e:
            logger.error(f"Upsert失败: {e}")
            raise

        # 新版 pymilvus 返回 ids，旧版为 primary_keys
        result = result or {}
        ids = [str(pk) for pk in result.get("ids") or result.get("primary_keys") or []]
        if not ids:
            ids = [str(row[ID_FIELD]) for row in rows]

        logger.info(f"Upsert完成: {len(ids)} 条记录")
        return ids
