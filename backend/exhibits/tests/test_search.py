from unittest.mock import MagicMock

import pytest
from elasticsearch import ConflictError
from elasticsearch import ConnectionError as TransportConnectionError
from elasticsearch import NotFoundError

from exhibits.errors import IndexConflict, SearchIndexError
from exhibits.search import ElasticsearchIndex, InMemorySearchIndex


def _not_found():
    meta = MagicMock(status=404)
    return NotFoundError("not_found", meta, {"found": False})


async def test_elasticsearch_index_round_trip():
    client = MagicMock()
    client.index.return_value = {"result": "created"}
    client.get.return_value = {"found": True, "_source": {"uuid": "a", "title": "Harbor"}}
    client.delete.return_value = {"result": "deleted"}
    index = ElasticsearchIndex(client, index_name="exhibits-test")

    assert await index.index("a", {"uuid": "a"})
    client.index.assert_called_once_with(index="exhibits-test", id="a", document={"uuid": "a"})
    assert await index.get("a") == {"uuid": "a", "title": "Harbor"}
    assert await index.delete("a")


async def test_elasticsearch_missing_documents():
    client = MagicMock()
    client.get.side_effect = _not_found()
    client.delete.side_effect = _not_found()
    index = ElasticsearchIndex(client)

    assert await index.get("missing") is None
    assert await index.delete("missing") is False


async def test_elasticsearch_transport_errors_are_wrapped():
    client = MagicMock()
    client.index.side_effect = TransportConnectionError("connection refused")
    index = ElasticsearchIndex(client)

    with pytest.raises(SearchIndexError):
        await index.index("a", {"uuid": "a"})


async def test_elasticsearch_conditional_writes_use_sequence_numbers():
    client = MagicMock()
    client.get.return_value = {"found": True, "_source": {"uuid": "g"}, "_seq_no": 7, "_primary_term": 2}
    client.index.side_effect = ConflictError("version_conflict_engine_exception", MagicMock(status=409), {})
    index = ElasticsearchIndex(client, index_name="exhibits-test")

    document, version = await index.get_versioned("g")
    assert version == (7, 2)
    with pytest.raises(IndexConflict):
        await index.index("g", document, version=version)
    assert client.index.call_args.kwargs["if_seq_no"] == 7
    assert client.index.call_args.kwargs["if_primary_term"] == 2


async def test_in_memory_conditional_write_rejects_stale_version():
    index = InMemorySearchIndex()
    await index.index("a", {"uuid": "a"})
    _, stale = await index.get_versioned("a")
    await index.index("a", {"uuid": "a", "title": "newer"})

    with pytest.raises(IndexConflict):
        await index.index("a", {"uuid": "a"}, version=stale)
    assert (await index.get("a"))["title"] == "newer"


async def test_in_memory_index_isolates_stored_documents():
    index = InMemorySearchIndex()
    body = {"uuid": "a", "items": []}
    await index.index("a", body)
    body["items"].append({"uuid": "b"})

    stored = await index.get("a")
    assert stored["items"] == []
    stored["items"].append({"uuid": "c"})
    assert (await index.get("a"))["items"] == []
