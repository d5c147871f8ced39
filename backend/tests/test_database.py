import asyncio

import pytest
from azure.core import MatchConditions
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosHttpResponseError,
    CosmosResourceNotFoundError,
)

import database
from database import CosmosDBService, cosmos_metrics


class FakeContainer:
    def __init__(self):
        self.calls = []
        self.failures = []

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    def read_item(self, item, partition_key):
        self.calls.append(("read_item", item, partition_key))
        self._maybe_fail()
        return {"id": item}

    def replace_item(self, item, body, **kwargs):
        self.calls.append(("replace_item", item, kwargs))
        self._maybe_fail()
        return dict(body, _etag="new")

    def query_items(self, query, parameters, **kwargs):
        self.calls.append(("query_items", query, parameters, kwargs))
        return iter([{"id": "a"}])


class FakeDatabase:
    def __init__(self, container):
        self.container = container

    def get_container_client(self, name):
        return self.container


@pytest.fixture
def container():
    return FakeContainer()


@pytest.fixture
def cosmos(container):
    return CosmosDBService(FakeDatabase(container))


def test_find_many_builds_parameterized_query(cosmos, container):
    asyncio.run(cosmos.find_many(
        "submissions", {"assessment_id": "a-1", "user_id": "u-1"},
        order_by="-created_at", limit=1, partition_key="a-1",
    ))
    _, query, parameters, kwargs = container.calls[-1]
    assert query == (
        "SELECT * FROM c WHERE c.assessment_id = @assessment_id AND c.user_id = @user_id "
        "ORDER BY c.created_at DESC OFFSET 0 LIMIT 1"
    )
    assert parameters == [{"name": "@assessment_id", "value": "a-1"}, {"name": "@user_id", "value": "u-1"}]
    assert kwargs == {"partition_key": "a-1"}

    asyncio.run(cosmos.find_one("submissions", {"id": "s-1"}))
    assert container.calls[-1][3] == {"enable_cross_partition_query": True}


def test_replace_sends_if_match(cosmos, container):
    asyncio.run(cosmos.replace_item("submissions", {"id": "s-1"}, etag="abc"))
    _, item_id, kwargs = container.calls[-1]
    assert item_id == "s-1"
    assert kwargs == {"etag": "abc", "match_condition": MatchConditions.IfNotModified}


def test_precondition_failure_is_not_retried(cosmos, container):
    container.failures = [CosmosAccessConditionFailedError(status_code=412, message="Precondition Failed")]
    with pytest.raises(CosmosAccessConditionFailedError):
        asyncio.run(cosmos.replace_item("submissions", {"id": "s-1"}, etag="stale"))
    assert len(container.calls) == 1


def test_transient_errors_are_retried(cosmos, container, monkeypatch):
    monkeypatch.setattr(database.CosmosRetryConfig, "INITIAL_DELAY", 0)
    cosmos_metrics.reset()
    container.failures = [CosmosHttpResponseError(status_code=503, message="busy")] * 2
    doc = asyncio.run(cosmos.read_item("answers", "x", partition_key="s-1"))
    assert doc == {"id": "x"}
    assert len(container.calls) == 3
    assert cosmos.get_metrics()["operation_count"] == 1


def test_missing_item_reads_as_none(cosmos, container):
    container.failures = [CosmosResourceNotFoundError(status_code=404, message="Not found")]
    assert asyncio.run(cosmos.read_item("answers", "x", partition_key="s-1")) is None
