"""
Time-guarded answer writes.

The ledger holds one Answer per (submission, question) or (submission, problem).
Callers hold the submission lock and have checked that the attempt is still
in progress; the ledger applies the time guard and the merge rules.
"""

import logging
from typing import Optional, Tuple

from clock import SystemClock
from constants import (
    DEFAULT_CODING_RESULT_MARKS,
    DEFAULT_PROBLEM_MARKS,
    DEFAULT_QUESTION_MARKS,
    GRACE_SECONDS,
    TRUST_CLIENT_MARKS,
)
from error_utils import NotFoundError, PayloadValidationError
from models import (
    Answer,
    AnswerStatus,
    AssessmentConfig,
    CodingResult,
    CodingResultRequest,
    SaveAnswerRequest,
    SectionConfig,
    Submission,
    answer_document_id,
)
from submission_store import SubmissionStore
from timer_engine import check_time_guard

logger = logging.getLogger(__name__)


def resolve_max_marks(section: SectionConfig, question_id: Optional[str], problem_id: Optional[str]) -> float:
    """Configured marks for a question or problem, falling back to the section and then to defaults."""
    if question_id:
        question = section.find_question(question_id)
        if question is not None and question.marks:
            return question.marks
        return section.marks_per_question or DEFAULT_QUESTION_MARKS
    problem = section.find_problem(problem_id)
    if problem is not None and problem.marks:
        return problem.marks
    return DEFAULT_PROBLEM_MARKS


def _target_status(request: SaveAnswerRequest, has_response: bool) -> AnswerStatus:
    if request.marked_for_review:
        return AnswerStatus.MARKED_FOR_REVIEW
    return AnswerStatus.ATTEMPTED if has_response else AnswerStatus.UNATTEMPTED


class AnswerLedger:
    def __init__(self, store: SubmissionStore, clock=None, grace_seconds: int = GRACE_SECONDS,
                 trust_client_marks: bool = TRUST_CLIENT_MARKS):
        self.store = store
        self.clock = clock or SystemClock()
        self.grace_seconds = grace_seconds
        self.trust_client_marks = trust_client_marks

    def _resolve_target(self, assessment: AssessmentConfig, request: SaveAnswerRequest) -> SectionConfig:
        if bool(request.question_id) == bool(request.problem_id):
            raise PayloadValidationError(
                "Exactly one of questionId or problemId is required", "invalid_answer_target"
            )
        section = assessment.find_section(request.section_id)
        if section is None:
            raise NotFoundError(f"Section {request.section_id} not found", "section_not_found")
        # Sections configured only by count accept any question id.
        if request.question_id and section.questions and section.find_question(request.question_id) is None:
            raise NotFoundError(f"Question {request.question_id} not found", "question_not_found")
        if request.problem_id and section.problems and section.find_problem(request.problem_id) is None:
            raise NotFoundError(f"Problem {request.problem_id} not found", "problem_not_found")
        return section

    async def save_answer(self, submission: Submission, assessment: AssessmentConfig,
                          request: SaveAnswerRequest, replay_token: Optional[str] = None) -> Answer:
        """Apply one answer write.

        ``replay_token`` identifies an entry of a buffered batch replayed at submit
        as ``"<batch>:<index>"``. An entry already recorded on the stored answer is
        not applied again, so retrying a failed submit with the same batch leaves
        the answer unchanged.
        """
        section = self._resolve_target(assessment, request)
        existing = await self.store.get_answer(submission.id, request.question_id, request.problem_id)
        if replay_token and existing is not None and replay_token in existing.replay_tokens:
            logger.info(f"Buffered entry {replay_token} already applied to answer {existing.id}")
            return existing

        now = self.clock.now()
        check_time_guard(submission, assessment, section, now, self.grace_seconds)

        if existing is not None:
            answer = self._merge(existing, request)
        else:
            answer = self._create(submission, section, request)
            answer.created_at = now
        answer.updated_at = now
        if replay_token:
            batch = replay_token.split(":", 1)[0]
            answer.replay_tokens = [t for t in answer.replay_tokens if t.split(":", 1)[0] == batch]
            answer.replay_tokens.append(replay_token)

        saved = await self.store.save_answer(answer)
        logger.info(
            f"Saved answer {saved.id} (status={saved.status.value}, client_scored={saved.client_scored})"
        )
        return saved

    def _client_marks(self, request: SaveAnswerRequest) -> Tuple[Optional[float], Optional[float]]:
        if not self.trust_client_marks:
            if request.marks_obtained is not None or request.max_marks is not None:
                logger.info("Ignoring client-supplied marks")
            return None, None
        return request.marks_obtained, request.max_marks

    def _merge(self, answer: Answer, request: SaveAnswerRequest) -> Answer:
        marks_obtained, max_marks = self._client_marks(request)
        value_changed = False

        if request.selected_answer is not None:
            answer.selected_answer = request.selected_answer
            value_changed = True
        if request.code is not None:
            answer.code = request.code
            answer.language = request.language or answer.language
            value_changed = True
        if request.time_spent is not None:
            answer.time_spent += request.time_spent

        if value_changed or request.marked_for_review is not None:
            answer.status = _target_status(request, answer.has_response)

        if marks_obtained is not None:
            answer.marks_obtained = marks_obtained
            answer.client_scored = True
        elif value_changed and answer.client_scored:
            # Previous client marks no longer describe this response.
            answer.marks_obtained = None
            answer.is_correct = None
            answer.client_scored = False
        if max_marks:
            answer.max_marks = max_marks
        return answer

    def _create(self, submission: Submission, section: SectionConfig, request: SaveAnswerRequest) -> Answer:
        marks_obtained, max_marks = self._client_marks(request)
        answer = Answer(
            id=answer_document_id(submission.id, request.question_id, request.problem_id),
            submission_id=submission.id,
            section_id=section.id,
            question_id=request.question_id,
            problem_id=request.problem_id,
            selected_answer=request.selected_answer,
            code=request.code,
            language=request.language,
            time_spent=request.time_spent or 0,
            max_marks=max_marks or resolve_max_marks(section, request.question_id, request.problem_id),
        )
        answer.status = _target_status(request, answer.has_response)
        if marks_obtained is not None:
            answer.marks_obtained = marks_obtained
            answer.client_scored = True
        return answer

    async def save_coding_result(self, submission: Submission, assessment: AssessmentConfig,
                                 problem_id: str, request: CodingResultRequest) -> Answer:
        """Record the judge's result for an explicitly submitted coding answer.

        The judge reports a 0-100 percentage; it is converted to marks out of the
        problem's allocation here.
        """
        answer = await self.store.get_answer(submission.id, problem_id=problem_id)

        section_id = (answer.section_id if answer is not None else None) or request.section_id
        if section_id:
            section = assessment.find_section(section_id)
            if section is None:
                raise NotFoundError(f"Section {section_id} not found", "section_not_found")
        else:
            section = assessment.section_for_problem(problem_id)
            if section is None:
                raise NotFoundError(f"Problem {problem_id} not found", "problem_not_found")

        problem = section.find_problem(problem_id)
        allocated = problem.marks if problem is not None and problem.marks else DEFAULT_CODING_RESULT_MARKS
        marks = (request.score / 100.0) * allocated

        now = self.clock.now()
        if answer is None:
            answer = Answer(
                id=answer_document_id(submission.id, problem_id=problem_id),
                submission_id=submission.id,
                section_id=section.id,
                problem_id=problem_id,
                created_at=now,
            )

        answer.code = request.code
        answer.language = request.language
        answer.coding_result = CodingResult(
            code=request.code,
            language=request.language,
            passed_tests=request.passed_tests,
            total_tests=request.total_tests,
            status=request.status,
            score=request.score,
            max_score=100.0,
            sample_results=request.sample_results,
            hidden_summary=request.hidden_summary,
        )
        answer.max_marks = allocated
        answer.marks_obtained = marks
        answer.is_correct = request.score == 100
        answer.client_scored = False
        answer.status = AnswerStatus.ATTEMPTED
        answer.updated_at = now

        saved = await self.store.save_answer(answer)
        logger.info(
            f"Saved coding result for problem {problem_id} on submission {submission.id}: "
            f"{marks:.2f}/{allocated} ({request.score}% of tests)"
        )
        return saved
