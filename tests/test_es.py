"""
Elasticsearch Tests - Elasticsearch索引器与检索器测试
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from ragbridge.domain.entities.document import Document
from ragbridge.domain.errors import ConfigError, ConversionError, EmbeddingError
from ragbridge.infrastructure.es import (
    Approximate,
    ApproximateConfig,
    DenseVectorSimilarity,
    DenseVectorSimilarityType,
    ESIndexer,
    ESIndexerConfig,
    ESRetriever,
    ESRetrieverConfig,
    ESSearchOptions,
    ExactMatch,
    FieldValue,
    RawStringRequest,
    SparseVectorQuery,
    SparseVectorTextExpansion,
)


FILTER = {"term": {"lang": "zh"}}


class TestESSearchModes:
    """检索策略请求构建测试"""

    @pytest.mark.asyncio
    async def test_exact_match(self):
        request = await ExactMatch("content").build_request(None, "向量", ESSearchOptions())

        assert request == {"query": {"match": {"content": {"query": "向量"}}}}

    @pytest.mark.asyncio
    async def test_exact_match_with_filters(self):
        options = ESSearchOptions(filters=[FILTER])

        request = await ExactMatch("content").build_request(None, "向量", options)

        assert request["query"]["bool"]["filter"] == [FILTER]
        assert request["query"]["bool"]["must"][0]["match"]["content"]["query"] == "向量"

    @pytest.mark.asyncio
    async def test_raw_string_request(self):
        body = json.dumps({"query": {"match_all": {}}, "from": 10, "size": 2})

        request = await RawStringRequest().build_request(None, body, ESSearchOptions())

        assert request == {"query": {"match_all": {}}, "from_": 10, "size": 2}

    @pytest.mark.asyncio
    async def test_raw_string_request_invalid(self):
        with pytest.raises(ConfigError):
            await RawStringRequest().build_request(None, "{not json", ESSearchOptions())

    @pytest.mark.asyncio
    async def test_dense_vector_similarity(self, fake_embedder):
        """测试脚本打分请求"""
        mode = DenseVectorSimilarity(DenseVectorSimilarityType.COSINE_SIMILARITY, "vec")

        request = await mode.build_request(None, "ab", ESSearchOptions(embedding=fake_embedder))

        script_score = request["query"]["script_score"]
        assert script_score["query"] == {"match_all": {}}
        assert script_score["script"]["source"] == "cosineSimilarity(params.embedding, 'vec') + 1.0"
        assert script_score["script"]["params"]["embedding"] == [2.0, 0.5, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_dense_vector_similarity_filters(self, fake_embedder):
        mode = DenseVectorSimilarity(DenseVectorSimilarityType.L2_NORM, "vec")
        options = ESSearchOptions(embedding=fake_embedder, filters=[FILTER])

        request = await mode.build_request(None, "q", options)

        script_score = request["query"]["script_score"]
        assert script_score["query"] == {"bool": {"filter": [FILTER]}}
        assert "l2norm(params.embedding, 'vec')" in script_score["script"]["source"]

    @pytest.mark.asyncio
    async def test_dense_vector_without_embedding(self):
        mode = DenseVectorSimilarity(DenseVectorSimilarityType.DOT_PRODUCT, "vec")

        with pytest.raises(EmbeddingError, match="embedding not provided"):
            await mode.build_request(None, "q", ESSearchOptions())

    @pytest.mark.asyncio
    async def test_dense_vector_embedding_failed(self, failing_embedder):
        mode = DenseVectorSimilarity(DenseVectorSimilarityType.DOT_PRODUCT, "vec")

        with pytest.raises(EmbeddingError, match="embedding failed"):
            await mode.build_request(None, "q", ESSearchOptions(embedding=failing_embedder))

    @pytest.mark.asyncio
    async def test_approximate_knn(self, fake_embedder):
        """测试kNN请求"""
        mode = Approximate(ApproximateConfig(
            vector_field_name="vec", k=5, num_candidates=50, similarity=0.5, boost=1.2,
        ))
        options = ESSearchOptions(embedding=fake_embedder, filters=[FILTER])

        request = await mode.build_request(None, "q", options)

        assert request == {"knn": [{
            "field": "vec",
            "query_vector": [1.0, 0.5, 0.5, 0.5],
            "k": 5,
            "num_candidates": 50,
            "filter": [FILTER],
            "similarity": 0.5,
            "boost": 1.2,
        }]}

    @pytest.mark.asyncio
    async def test_approximate_hybrid_rrf_with_model(self):
        """测试混合检索与RRF，查询向量由ES模型生成"""
        mode = Approximate(ApproximateConfig(
            vector_field_name="vec",
            query_field_name="content",
            hybrid=True,
            rrf=True,
            rrf_rank_constant=60,
            rrf_window_size=100,
            query_vector_builder_model_id="e5",
        ))

        request = await mode.build_request(None, "q", ESSearchOptions())

        knn = request["knn"][0]
        assert knn["query_vector_builder"] == {
            "text_embedding": {"model_id": "e5", "model_text": "q"}
        }
        assert "query_vector" not in knn
        assert request["query"] == {"bool": {"must": [{"match": {"content": {"query": "q"}}}]}}
        assert request["rank"] == {"rrf": {"rank_constant": 60, "rank_window_size": 100}}

    @pytest.mark.asyncio
    async def test_sparse_vector_query_inference(self):
        mode = SparseVectorQuery("tokens", inference_id="elser")

        request = await mode.build_request(None, "q", ESSearchOptions(filters=[FILTER]))

        assert request == {"query": {"bool": {
            "should": [{"sparse_vector": {"field": "tokens", "inference_id": "elser", "query": "q"}}],
            "filter": [FILTER],
        }}}

    @pytest.mark.asyncio
    async def test_sparse_vector_query_vector(self):
        mode = SparseVectorQuery("tokens")
        options = ESSearchOptions(sparse_vector={"milvus": 1.2})

        request = await mode.build_request(None, "q", options)

        sparse = request["query"]["bool"]["should"][0]["sparse_vector"]
        assert sparse == {"field": "tokens", "query_vector": {"milvus": 1.2}}

    @pytest.mark.asyncio
    async def test_sparse_vector_query_missing_source(self):
        with pytest.raises(ConfigError):
            await SparseVectorQuery("tokens").build_request(None, "q", ESSearchOptions())

    @pytest.mark.asyncio
    async def test_text_expansion(self):
        mode = SparseVectorTextExpansion(model_id=".elser_model_2", vector_field_name="ml")

        request = await mode.build_request(None, "q", ESSearchOptions())

        assert request["query"]["bool"]["must"] == [{
            "text_expansion": {"ml.tokens": {"model_id": ".elser_model_2", "model_text": "q"}}
        }]


class TestESRetriever:
    """检索器测试"""

    def test_validate(self, mock_es_client):
        with pytest.raises(ConfigError, match="index"):
            ESRetriever(ESRetrieverConfig(client=mock_es_client, search_mode=ExactMatch("c")))
        with pytest.raises(ConfigError, match="search_mode"):
            ESRetriever(ESRetrieverConfig(client=mock_es_client, index="i"))
        with pytest.raises(ConfigError, match="client"):
            ESRetriever(ESRetrieverConfig(index="i", search_mode=ExactMatch("c")))

    @pytest.mark.asyncio
    async def test_retrieve(self, mock_es_client):
        """测试检索并解析命中"""
        mock_es_client.search.return_value = {"hits": {"hits": [
            {"_id": "1", "_score": 3.2, "_source": {"content": "正文", "author": "x"}},
        ]}}
        retriever = ESRetriever(ESRetrieverConfig(
            client=mock_es_client, index="docs", search_mode=ExactMatch("content"),
        ))

        docs = await retriever.retrieve("q", top_k=3, score_threshold=1.0)

        assert len(docs) == 1
        assert docs[0].id == "1"
        assert docs[0].content == "正文"
        assert docs[0].score == 3.2
        assert docs[0].metadata == {"author": "x"}
        mock_es_client.search.assert_awaited_once_with(
            index="docs",
            query={"match": {"content": {"query": "q"}}},
            size=3,
            min_score=1.0,
        )

    @pytest.mark.asyncio
    async def test_default_top_k_and_config_embedding(self, mock_es_client, fake_embedder):
        retriever = ESRetriever(ESRetrieverConfig(
            client=mock_es_client,
            index="docs",
            search_mode=DenseVectorSimilarity(DenseVectorSimilarityType.COSINE_SIMILARITY, "vec"),
            embedding=fake_embedder,
        ))

        request = await retriever.build_request("q", filters=[FILTER])

        assert request["size"] == 10
        assert "min_score" not in request
        assert fake_embedder.calls == [["q"]]

    @pytest.mark.asyncio
    async def test_unknown_option(self, mock_es_client):
        retriever = ESRetriever(ESRetrieverConfig(
            client=mock_es_client, index="docs", search_mode=ExactMatch("content"),
        ))

        with pytest.raises(TypeError):
            await retriever.retrieve("q", partition="p")


def doc_to_fields(doc: Document):
    return {
        "content": FieldValue(value=doc.content, embed_key="content_vector"),
        "source": FieldValue(value=doc.metadata.get("source", "")),
    }


class TestESIndexer:
    """索引器测试"""

    def test_validate(self, mock_es_client):
        with pytest.raises(ConfigError, match="document_to_fields"):
            ESIndexer(ESIndexerConfig(client=mock_es_client, index="docs"))

    @pytest.mark.asyncio
    async def test_store_in_batches(self, mock_es_client, fake_embedder):
        """测试分批写入并向量化"""
        docs = [Document(id=str(i), content="x" * i, metadata={"source": "s"}) for i in range(1, 4)]
        indexer = ESIndexer(ESIndexerConfig(
            client=mock_es_client,
            index="docs",
            batch_size=2,
            document_to_fields=doc_to_fields,
            embedding=fake_embedder,
        ))

        with patch(
            "ragbridge.infrastructure.es.indexer.async_bulk",
            new=AsyncMock(return_value=(2, [])),
        ) as bulk:
            ids = await indexer.store(docs)

        assert ids == ["1", "2", "3"]
        assert bulk.await_count == 2
        assert fake_embedder.calls == [["x", "xx"], ["xxx"]]
        first_actions = bulk.await_args_list[0].args[1]
        assert first_actions[0] == {
            "_op_type": "index",
            "_index": "docs",
            "_id": "1",
            "_source": {"content": "x", "source": "s", "content_vector": [1.0, 0.5, 0.5, 0.5]},
        }

    @pytest.mark.asyncio
    async def test_store_stringify(self, mock_es_client, fake_embedder):
        """测试非字符串字段通过stringify向量化"""
        def to_fields(doc):
            return {"tags": FieldValue(value=["a", "b"], embed_key="tags_vec", stringify=",".join)}

        indexer = ESIndexer(ESIndexerConfig(
            client=mock_es_client, index="docs", document_to_fields=to_fields, embedding=fake_embedder,
        ))

        with patch("ragbridge.infrastructure.es.indexer.async_bulk", new=AsyncMock(return_value=(1, []))):
            await indexer.store([Document(id="1")])

        assert fake_embedder.calls == [["a,b"]]

    @pytest.mark.asyncio
    async def test_store_non_string_without_stringify(self, mock_es_client, fake_embedder):
        def to_fields(doc):
            return {"count": FieldValue(value=3, embed_key="count_vec")}

        indexer = ESIndexer(ESIndexerConfig(
            client=mock_es_client, index="docs", document_to_fields=to_fields, embedding=fake_embedder,
        ))

        with pytest.raises(ConversionError):
            await indexer.store([Document(id="1")])

    @pytest.mark.asyncio
    async def test_store_embed_key_conflict(self, mock_es_client, fake_embedder):
        def to_fields(doc):
            return {
                "content": FieldValue(value="x", embed_key="source"),
                "source": FieldValue(value="s"),
            }

        indexer = ESIndexer(ESIndexerConfig(
            client=mock_es_client, index="docs", document_to_fields=to_fields, embedding=fake_embedder,
        ))

        with pytest.raises(ConversionError, match="source"):
            await indexer.store([Document(id="1")])

    @pytest.mark.asyncio
    async def test_store_without_embedder(self, mock_es_client):
        indexer = ESIndexer(ESIndexerConfig(
            client=mock_es_client, index="docs", document_to_fields=doc_to_fields,
        ))

        with pytest.raises(EmbeddingError):
            await indexer.store([Document(id="1", content="x")])
