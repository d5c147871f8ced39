"""
Submission lifecycle: create/resume, section navigation, time-guarded writes,
final submit, verdict override and the auto-submit sweep.

Every mutating operation loads the submission inside the per-submission lock,
so the read-modify-write sequence never interleaves with another request for
the same attempt. Timer reads take no lock.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from answer_ledger import AnswerLedger
from clock import SystemClock
from constants import (
    AUTO_START_FIRST_SECTION,
    AUTO_SUBMIT_ENABLED,
    AUTO_SUBMIT_GRACE_PERIOD,
    GRACE_SECONDS,
    TRUST_CLIENT_MARKS,
)
from error_utils import (
    AssessmentError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from evaluation import evaluate_answers
from locks import SubmissionLocks
from models import (
    Answer,
    AssessmentConfig,
    CodingResultRequest,
    PlagiarismWebhookPayload,
    SaveAnswerRequest,
    Submission,
    SubmissionStatus,
    TimeMode,
    TimerSnapshot,
    VerdictStatus,
    VerdictUpdateRequest,
)
from plagiarism import PlagiarismDispatcher, apply_plagiarism_result, build_plagiarism_jobs
from score_aggregator import aggregate, compute_max_score
from submission_store import SubmissionStore
import timer_engine

logger = logging.getLogger(__name__)


class SubmissionService:
    def __init__(self, store: SubmissionStore, clock=None, locks: Optional[SubmissionLocks] = None,
                 dispatcher: Optional[PlagiarismDispatcher] = None, grace_seconds: int = GRACE_SECONDS,
                 trust_client_marks: bool = TRUST_CLIENT_MARKS,
                 auto_start_first_section: bool = AUTO_START_FIRST_SECTION):
        self.store = store
        self.clock = clock or SystemClock()
        self.locks = locks or SubmissionLocks()
        self.dispatcher = dispatcher
        self.trust_client_marks = trust_client_marks
        self.auto_start_first_section = auto_start_first_section
        self.ledger = AnswerLedger(store, self.clock, grace_seconds, trust_client_marks)

    async def _load(self, submission_id: str) -> Tuple[Submission, AssessmentConfig]:
        submission = await self.store.get_submission(submission_id)
        assessment = await self.store.get_assessment(submission.assessment_id)
        return submission, assessment

    @staticmethod
    def _require_in_progress(submission: Submission) -> None:
        if submission.status != SubmissionStatus.IN_PROGRESS:
            raise ForbiddenError(
                f"Submission is {submission.status.value}; answers can no longer be changed",
                "submission_closed",
            )

    # ----- create / resume -----

    async def get_or_create_submission(self, assessment_id: str, user_id: str) -> Submission:
        """Resume the user's in-progress attempt or start a new one. Retakes are rejected."""
        async with self.locks.hold(f"{assessment_id}:{user_id}"):
            existing = await self.store.find_latest_submission(assessment_id, user_id)
            if existing is not None:
                if existing.status == SubmissionStatus.IN_PROGRESS:
                    logger.info(f"Resuming submission {existing.id} for user {user_id}")
                    return existing
                if existing.is_completed:
                    raise ForbiddenError(
                        "You have already completed this assessment. Retakes are not allowed.",
                        "retake_not_allowed",
                    )
                if existing.status == SubmissionStatus.EXPIRED:
                    raise ForbiddenError(
                        "Your attempt at this assessment has expired.", "submission_expired"
                    )

            assessment = await self.store.get_assessment(assessment_id)
            now = self.clock.now()
            submission = Submission(
                assessment_id=assessment_id,
                user_id=user_id,
                started_at=now,
                created_at=now,
                max_score=compute_max_score(assessment),
            )
            if (self.auto_start_first_section and assessment.time_mode == TimeMode.SECTION
                    and assessment.sections):
                timer_engine.enter_section(submission, assessment.sections[0].id, now)

            created = await self.store.create_submission(submission)
            logger.info(
                f"Created submission {created.id} for user {user_id} on assessment {assessment_id} "
                f"(max score {created.max_score})"
            )
            return created

    # ----- timers -----

    async def enter_section(self, submission_id: str, section_id: str) -> Submission:
        async with self.locks.hold(submission_id):
            submission, assessment = await self._load(submission_id)
            self._require_in_progress(submission)
            if assessment.find_section(section_id) is None:
                raise NotFoundError(f"Section {section_id} not found", "section_not_found")
            if not timer_engine.enter_section(submission, section_id, self.clock.now()):
                return submission
            return await self.store.save_submission(submission)

    async def get_timer(self, submission_id: str) -> TimerSnapshot:
        submission, assessment = await self._load(submission_id)
        return timer_engine.snapshot(submission, assessment, self.clock.now())

    # ----- answers -----

    async def save_answer(self, submission_id: str, request: SaveAnswerRequest) -> Answer:
        async with self.locks.hold(submission_id):
            submission, assessment = await self._load(submission_id)
            self._require_in_progress(submission)
            return await self.ledger.save_answer(submission, assessment, request)

    async def save_coding_result(self, submission_id: str, problem_id: str, request: CodingResultRequest) -> Answer:
        async with self.locks.hold(submission_id):
            submission, assessment = await self._load(submission_id)
            self._require_in_progress(submission)
            return await self.ledger.save_coding_result(submission, assessment, problem_id, request)

    async def get_answers(self, submission_id: str) -> List[Answer]:
        await self.store.get_submission(submission_id)
        return await self.store.list_answers(submission_id)

    async def get_submission_detail(self, submission_id: str) -> Tuple[Submission, List[Answer]]:
        submission = await self.store.get_submission(submission_id)
        answers = await self.store.list_answers(submission_id)
        return submission, answers

    # ----- submit -----

    async def _replay(self, submission: Submission, assessment: AssessmentConfig,
                      buffered: List[Dict[str, Any]]) -> int:
        batch = hashlib.sha256(json.dumps(buffered, sort_keys=True, default=str).encode()).hexdigest()[:16]
        saved = 0
        for index, raw in enumerate(buffered):
            try:
                request = SaveAnswerRequest.model_validate(raw)
                await self.ledger.save_answer(submission, assessment, request, replay_token=f"{batch}:{index}")
                saved += 1
            except (AssessmentError, ValidationError) as e:
                ref = raw.get("questionId") or raw.get("question_id") or raw.get("problemId") or raw.get("problem_id")
                logger.warning(f"Skipped buffered answer {ref} on submission {submission.id}: {e}")
        return saved

    async def submit(self, submission_id: str, is_auto_submit: bool = False,
                     buffered_answers: Optional[List[Dict[str, Any]]] = None) -> Submission:
        """Freeze the attempt: replay buffered answers, evaluate, aggregate and persist."""
        async with self.locks.hold(submission_id):
            submission, assessment = await self._load(submission_id)
            if submission.is_completed:
                raise ConflictError("Assessment already submitted", "already_submitted")

            if buffered_answers and submission.status == SubmissionStatus.IN_PROGRESS:
                replayed = await self._replay(submission, assessment, buffered_answers)
                logger.info(f"Replayed {replayed}/{len(buffered_answers)} buffered answers for {submission_id}")

            now = self.clock.now()
            timer_engine.freeze_running_section(submission, now)

            answers = await self.store.list_answers(submission_id)
            evaluate_answers(answers, assessment, self.trust_client_marks)
            for answer in answers:
                await self.store.save_answer(answer)

            submission.status = SubmissionStatus.EVALUATED
            submission.submitted_at = now
            submission.is_auto_submitted = is_auto_submit
            aggregate(submission, assessment, answers, now)

            saved = await self.store.save_submission(submission)
            logger.info(
                f"Submission {submission_id} evaluated: {saved.total_score}/{saved.max_score} "
                f"(auto={is_auto_submit})"
            )

        self._enqueue_plagiarism(saved, assessment, answers)
        return saved

    def _enqueue_plagiarism(self, submission: Submission, assessment: AssessmentConfig, answers: List[Answer]) -> None:
        if self.dispatcher is None:
            return
        try:
            jobs = build_plagiarism_jobs(submission, assessment, answers)
            if jobs:
                queued = self.dispatcher.enqueue(jobs)
                logger.info(f"Queued {queued} plagiarism checks for submission {submission.id}")
        except Exception as e:
            logger.exception(f"Failed to queue plagiarism checks for submission {submission.id}: {e}")

    # ----- organizer operations -----

    async def override_verdict(self, submission_id: str, patch: VerdictUpdateRequest) -> Submission:
        """Merge a partial verdict into the frozen analytics. The computed total_score is left untouched."""
        async with self.locks.hold(submission_id):
            submission = await self.store.get_submission(submission_id)
            if not submission.is_completed or submission.analytics is None:
                raise ConflictError("Submission has not been submitted yet", "not_submitted")

            verdict = submission.analytics.verdict
            updates = patch.model_dump(exclude_unset=True, by_alias=False)
            if "status" in updates and updates["status"] is not None:
                verdict.status = VerdictStatus(updates["status"])
            if updates.get("adjusted_score") is not None:
                verdict.adjusted_score = updates["adjusted_score"]
            if updates.get("violation_penalty") is not None:
                verdict.violation_penalty = updates["violation_penalty"]
                if updates.get("adjusted_score") is None:
                    verdict.adjusted_score = max(0.0, submission.total_score - verdict.violation_penalty)
            if "notes" in updates:
                verdict.notes = updates["notes"]
            if "evaluated_by" in updates:
                verdict.evaluated_by = updates["evaluated_by"]
            verdict.evaluated_at = self.clock.now()

            saved = await self.store.save_submission(submission)
            logger.info(f"Verdict for submission {submission_id} set to {verdict.status.value} by {verdict.evaluated_by}")
            return saved

    async def record_plagiarism_result(self, payload: PlagiarismWebhookPayload) -> Answer:
        async with self.locks.hold(payload.submission_id):
            submission = await self.store.get_submission(payload.submission_id)
            answer = await self.store.get_answer(payload.submission_id, problem_id=payload.problem_id)
            if answer is None:
                raise NotFoundError(
                    f"Answer for problem {payload.problem_id} not found", "answer_not_found"
                )
            apply_plagiarism_result(answer, submission, payload)
            saved = await self.store.save_answer(answer)
            await self.store.save_submission(submission)
            logger.info(
                f"Recorded plagiarism verdict {payload.verdict} ({payload.max_similarity}%) "
                f"for submission {payload.submission_id} problem {payload.problem_id}"
            )
            return saved

    # ----- sweep -----

    async def auto_submit_expired(self, enabled: bool = AUTO_SUBMIT_ENABLED,
                                  grace_seconds: int = AUTO_SUBMIT_GRACE_PERIOD) -> Dict[str, int]:
        """Close in-progress attempts whose clocks ran out.

        With auto-submit enabled they are submitted as auto-submissions,
        otherwise they are only marked expired.
        """
        stats = {"checked": 0, "submitted": 0, "expired": 0, "failed": 0}
        assessments: Dict[str, AssessmentConfig] = {}
        for submission in await self.store.list_submissions_by_status(SubmissionStatus.IN_PROGRESS):
            stats["checked"] += 1
            try:
                assessment = assessments.get(submission.assessment_id)
                if assessment is None:
                    assessment = assessments[submission.assessment_id] = await self.store.get_assessment(
                        submission.assessment_id
                    )
                if not timer_engine.is_attempt_over(submission, assessment, self.clock.now(), grace_seconds):
                    continue
                if enabled:
                    await self.submit(submission.id, is_auto_submit=True)
                    stats["submitted"] += 1
                else:
                    await self._mark_expired(submission.id)
                    stats["expired"] += 1
            except AssessmentError as e:
                stats["failed"] += 1
                logger.warning(f"Auto-submit skipped submission {submission.id}: {e.message}")
            except Exception as e:
                stats["failed"] += 1
                logger.exception(f"Auto-submit failed for submission {submission.id}: {e}")
        logger.info(f"Auto-submit sweep finished: {stats}")
        return stats

    async def _mark_expired(self, submission_id: str) -> Submission:
        async with self.locks.hold(submission_id):
            submission = await self.store.get_submission(submission_id)
            if submission.status != SubmissionStatus.IN_PROGRESS:
                return submission
            timer_engine.freeze_running_section(submission, self.clock.now())
            submission.status = SubmissionStatus.EXPIRED
            return await self.store.save_submission(submission)
