import numpy as np
import pytest
from fakes import EMBEDDING_DIMENSIONS, FakeEmbeddings, make_message

from messaging_toolkit.embeddings.indexer import MessageEmbedder
from messaging_toolkit.errors import EmbeddingConflict, EmptyMessageText, StoreUnavailable, ValidationError
from messaging_toolkit.vectorstores.base import EmbeddingMetadata, EmbeddingRecord, make_vector_id
from messaging_toolkit.vectorstores.chromadb import ChromaDBVectorIndex
from messaging_toolkit.vectorstores.in_memory import InMemoryVectorIndex


def record(conversation_id: str, message_id: str, values: list[float], user_id: str = "alice") -> EmbeddingRecord:
    return EmbeddingRecord(
        id=make_vector_id(conversation_id, message_id),
        values=values + [0.0] * (EMBEDDING_DIMENSIONS - len(values)),
        metadata=EmbeddingMetadata(
            message_id=message_id, conversation_id=conversation_id, text=message_id, timestamp=1, user_id=user_id
        ),
    )


def query_vector(*components: float) -> np.ndarray:
    return np.array(list(components) + [0.0] * (EMBEDDING_DIMENSIONS - len(components)))


@pytest.fixture(params=["memory", "chromadb"])
def index(request, tmp_path):
    if request.param == "memory":
        return InMemoryVectorIndex(dimensions=EMBEDDING_DIMENSIONS)
    return ChromaDBVectorIndex(db_path=str(tmp_path / "vectors"), collection_name="test", dimensions=EMBEDDING_DIMENSIONS)


async def test_query_orders_by_cosine_similarity(index):
    await index.upsert(
        [record("c1", "exact", [1.0]), record("c1", "close", [0.8, 0.6]), record("c1", "orthogonal", [0.0, 1.0])]
    )

    matches = await index.query(query_vector(1.0), top_k=2)

    assert [match.metadata.message_id for match in matches] == ["exact", "close"]
    assert matches[0].score == pytest.approx(1.0, abs=1e-4)
    assert matches[1].score == pytest.approx(0.8, abs=1e-4)


async def test_query_filters_on_metadata(index):
    await index.upsert([record("c1", "m1", [1.0]), record("c2", "m1", [1.0]), record("c1", "m2", [1.0], "bob")])

    in_c1 = await index.query(query_vector(1.0), top_k=10, filters={"conversation_id": "c1"})
    from_bob = await index.query(query_vector(1.0), top_k=10, filters={"conversation_id": "c1", "user_id": "bob"})

    assert sorted(match.id for match in in_c1) == ["c1_m1", "c1_m2"]
    assert [match.id for match in from_bob] == ["c1_m2"]


async def test_upsert_replaces_by_id(index):
    await index.upsert([record("c1", "m1", [1.0])])
    await index.upsert([record("c1", "m1", [0.0, 1.0])])

    assert await index.list_ids() == ["c1_m1"]
    stored = (await index.fetch(["c1_m1"]))["c1_m1"]
    assert stored.values[:2] == pytest.approx([0.0, 1.0])


async def test_delete_and_list(index):
    await index.upsert([record("c1", "m1", [1.0]), record("c1", "m2", [1.0]), record("c2", "m3", [1.0])])

    await index.delete_many(["c1_m1", "unknown"])

    assert await index.list_ids({"conversation_id": "c1"}) == ["c1_m2"]
    assert await index.list_ids() == ["c1_m2", "c2_m3"]


async def test_empty_index_returns_no_matches(index):
    assert await index.query(query_vector(1.0), top_k=5) == []


async def test_dimension_mismatch_is_rejected(index):
    with pytest.raises(ValidationError, match="dimension"):
        await index.upsert([EmbeddingRecord(id="x", values=[1.0], metadata=record("c1", "m1", [1.0]).metadata)])
    with pytest.raises(ValidationError, match="dimension"):
        await index.query(np.array([1.0, 0.0]), top_k=1)


async def test_embedder_truncates_text_before_embedding(embeddings, vector_index):
    embedder = MessageEmbedder(embeddings, vector_index, text_max_chars=10)
    message = make_message("c1", "m1", timestamp=5, text="  a rather long message\x01  ")

    vector_id = await embedder.embed_message(message)

    assert vector_id == "c1_m1"
    assert embeddings.calls == [["a rather l"]]
    stored = (await vector_index.fetch([vector_id]))[vector_id]
    assert stored.metadata.text == "a rather l"
    assert stored.metadata.user_id == "alice"
    assert stored.metadata.timestamp == 5


async def test_re_embedding_the_same_message_replaces_its_vector(embeddings, vector_index):
    embedder = MessageEmbedder(embeddings, vector_index)
    message = make_message("c1", "m1", timestamp=5, text="hello")
    await embedder.embed_message(message)
    await embedder.embed_message(message.model_copy(update={"text": "hello, edited"}))

    assert await vector_index.list_ids() == ["c1_m1"]
    assert (await vector_index.fetch(["c1_m1"]))["c1_m1"].metadata.text == "hello, edited"


async def test_vector_id_owned_by_another_message_is_a_conflict(embeddings, vector_index):
    await vector_index.upsert([record("c1", "m1", [1.0], user_id="mallory")])
    embedder = MessageEmbedder(embeddings, vector_index)

    with pytest.raises(EmbeddingConflict):
        await embedder.embed_message(make_message("c1", "m1", timestamp=1, text="hello"))


async def test_blank_message_is_not_embedded(embeddings, vector_index):
    with pytest.raises(EmptyMessageText):
        await MessageEmbedder(embeddings, vector_index).embed_message(make_message("c1", "m1", 1, text=" \x02 "))
    assert embeddings.calls == []


async def test_conversation_cleanup_is_best_effort(embeddings, vector_index, monkeypatch):
    embedder = MessageEmbedder(embeddings, vector_index)
    await embedder.embed_message(make_message("c1", "m1", 1, text="one"))
    await embedder.embed_message(make_message("c1", "m2", 2, text="two"))
    await embedder.embed_message(make_message("c2", "m3", 3, text="three"))

    assert await embedder.delete_conversation_embeddings("c1") == 2
    assert await vector_index.list_ids() == ["c2_m3"]

    async def offline(ids):
        raise StoreUnavailable("index offline")

    monkeypatch.setattr(vector_index, "delete_many", offline)
    assert await embedder.delete_conversation_embeddings("c2") == 0
    assert not await embedder.delete_message_embedding("c2", "m3")


async def test_embedding_failure_propagates(vector_index):
    embeddings = FakeEmbeddings()
    embeddings.fail_with = StoreUnavailable("model offline")
    with pytest.raises(StoreUnavailable):
        await MessageEmbedder(embeddings, vector_index).embed_message(make_message("c1", "m1", 1, text="hi"))
