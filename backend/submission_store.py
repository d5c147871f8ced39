"""Typed persistence for assessments, submissions and answers on top of CosmosDBService."""

import logging
from typing import List, Optional
from azure.cosmos.exceptions import CosmosAccessConditionFailedError, CosmosResourceExistsError
from constants import CONTAINER
from database import CosmosDBService
from error_utils import ConflictError, NotFoundError
from models import (
    Answer,
    AssessmentConfig,
    Submission,
    SubmissionStatus,
    answer_document_id,
)

logger = logging.getLogger(__name__)


class SubmissionStore:
    def __init__(self, db: CosmosDBService):
        self.db = db

    # ----- assessments -----

    async def get_assessment(self, assessment_id: str) -> AssessmentConfig:
        doc = await self.db.read_item(CONTAINER["ASSESSMENTS"], assessment_id, partition_key=assessment_id)
        if not doc:
            raise NotFoundError("Assessment not found", "assessment_not_found")
        return AssessmentConfig.model_validate(doc)

    # ----- submissions -----

    async def get_submission(self, submission_id: str) -> Submission:
        doc = await self.db.find_one(CONTAINER["SUBMISSIONS"], {"id": submission_id})
        if not doc:
            raise NotFoundError("Submission not found", "submission_not_found")
        return Submission.model_validate(doc)

    async def find_latest_submission(self, assessment_id: str, user_id: str) -> Optional[Submission]:
        docs = await self.db.find_many(
            CONTAINER["SUBMISSIONS"],
            {"assessment_id": assessment_id, "user_id": user_id},
            order_by="-created_at",
            limit=1,
            partition_key=assessment_id,
        )
        return Submission.model_validate(docs[0]) if docs else None

    async def list_submissions_by_status(self, status: SubmissionStatus) -> List[Submission]:
        docs = await self.db.find_many(CONTAINER["SUBMISSIONS"], {"status": status.value})
        return [Submission.model_validate(d) for d in docs]

    async def create_submission(self, submission: Submission) -> Submission:
        try:
            doc = await self.db.create_item(CONTAINER["SUBMISSIONS"], submission.to_document())
        except CosmosResourceExistsError as e:
            raise ConflictError("Submission already exists", "submission_exists") from e
        return Submission.model_validate(doc)

    async def save_submission(self, submission: Submission) -> Submission:
        """Write back a submission read earlier; fails with ConflictError if it changed meanwhile."""
        try:
            doc = await self.db.replace_item(CONTAINER["SUBMISSIONS"], submission.to_document(), etag=submission.etag)
        except CosmosAccessConditionFailedError as e:
            raise ConflictError(
                "Submission was modified by another request. Please retry.", "concurrent_modification"
            ) from e
        return Submission.model_validate(doc)

    # ----- answers -----

    async def get_answer(self, submission_id: str, question_id: Optional[str] = None,
                         problem_id: Optional[str] = None) -> Optional[Answer]:
        doc = await self.db.read_item(
            CONTAINER["ANSWERS"],
            answer_document_id(submission_id, question_id, problem_id),
            partition_key=submission_id,
        )
        return Answer.model_validate(doc) if doc else None

    async def list_answers(self, submission_id: str) -> List[Answer]:
        docs = await self.db.find_many(
            CONTAINER["ANSWERS"],
            {"submission_id": submission_id},
            order_by="created_at",
            partition_key=submission_id,
        )
        return [Answer.model_validate(d) for d in docs]

    async def save_answer(self, answer: Answer) -> Answer:
        doc = await self.db.upsert_item(CONTAINER["ANSWERS"], answer.to_document())
        return Answer.model_validate(doc)
