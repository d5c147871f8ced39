import copy
import os
import sys
import uuid
from datetime import datetime

import pytest
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosResourceExistsError,
)

# Ensure backend modules are importable as top-level modules
BACKEND = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, BACKEND)

from clock import ManualClock  # noqa: E402
from constants import CONTAINER  # noqa: E402
from datetime_utils import IST  # noqa: E402
from locks import SubmissionLocks  # noqa: E402
from submission_service import SubmissionService  # noqa: E402
from submission_store import SubmissionStore  # noqa: E402


T0 = datetime(2025, 3, 1, 10, 0, 0, tzinfo=IST)


class MockDB:
    """In-memory stand-in for CosmosDBService with ETag semantics."""

    def __init__(self):
        self.storage = {}
        self.writes = 0
        self.fail_replace = None
        self.replace_failures = []

    def _container(self, name):
        return self.storage.setdefault(name, {})

    def _stamp(self, container_name, item):
        doc = copy.deepcopy(item)
        doc["_etag"] = str(uuid.uuid4())
        self._container(container_name)[doc["id"]] = doc
        self.writes += 1
        return copy.deepcopy(doc)

    def seed(self, container_name, item):
        return self._stamp(container_name, item)

    async def create_item(self, container_name, item):
        if item["id"] in self._container(container_name):
            raise CosmosResourceExistsError(status_code=409, message="Conflict")
        return self._stamp(container_name, item)

    async def read_item(self, container_name, item_id, partition_key):
        doc = self._container(container_name).get(item_id)
        return copy.deepcopy(doc) if doc else None

    async def upsert_item(self, container_name, item):
        return self._stamp(container_name, item)

    async def replace_item(self, container_name, item, etag=None):
        if self.fail_replace is not None:
            raise self.fail_replace
        if self.replace_failures:
            raise self.replace_failures.pop(0)
        current = self._container(container_name).get(item["id"])
        if current is None:
            raise KeyError(item["id"])
        if etag and current.get("_etag") != etag:
            raise CosmosAccessConditionFailedError(status_code=412, message="Precondition Failed")
        return self._stamp(container_name, item)

    async def find_many(self, container_name, filter_dict, order_by=None, limit=None, partition_key=None):
        docs = [
            copy.deepcopy(d) for d in self._container(container_name).values()
            if all(d.get(k) == v for k, v in filter_dict.items())
        ]
        if order_by:
            field = order_by.lstrip("-")
            docs.sort(key=lambda d: d.get(field) or "", reverse=order_by.startswith("-"))
        return docs[:limit] if limit else docs

    async def find_one(self, container_name, filter_dict, order_by=None):
        docs = await self.find_many(container_name, filter_dict, order_by=order_by, limit=1)
        return docs[0] if docs else None


def make_assessment(**overrides):
    """Assessment document with one MCQ section and one coding section."""
    doc = {
        "id": "asmt-1",
        "title": "Backend Screening",
        "time_mode": "section",
        "duration_minutes": None,
        "sections": [
            {
                "id": "sec-mcq",
                "title": "Aptitude",
                "type": "mcq",
                "order": 1,
                "time_limit_minutes": 1,
                "negative_marking": 0.25,
                "marks_per_question": 2,
                "questions": [
                    {"id": "q-single", "type": "single_choice", "correct_answer": "B"},
                    {"id": "q-multi", "type": "multiple_choice", "correct_answer": "A, C"},
                    {"id": "q-fill", "type": "fill_blank", "correct_answer": "Paris", "marks": 4},
                ],
            },
            {
                "id": "sec-code",
                "title": "Coding",
                "type": "coding",
                "order": 2,
                "time_limit_minutes": 30,
                "problems": [
                    {"problem_id": "p-sum", "marks": 10},
                    {"problem_id": "p-graph", "marks": 20},
                ],
            },
        ],
        "plagiarism": {"enabled": True, "strictness": "High", "similarity_threshold": 80},
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def db():
    return MockDB()


@pytest.fixture
def store(db):
    return SubmissionStore(db)


@pytest.fixture
def seed_assessment(db):
    def _seed(**overrides):
        doc = make_assessment(**overrides)
        db.seed(CONTAINER["ASSESSMENTS"], doc)
        return doc
    return _seed


class RecordingDispatcher:
    def __init__(self, fail=False):
        self.jobs = []
        self.fail = fail

    def enqueue(self, jobs):
        if self.fail:
            raise RuntimeError("outbox unavailable")
        self.jobs.extend(jobs)
        return len(jobs)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(store, clock, dispatcher):
    return SubmissionService(store, clock=clock, locks=SubmissionLocks(), dispatcher=dispatcher)
