from fastapi import APIRouter, Depends
import logging

from dependencies import get_submission_service
from error_utils import AssessmentError, raise_http, safe_raise_http
from models import (
    CodingResultRequest,
    SaveAnswerRequest,
    StartSubmissionRequest,
    SubmitRequest,
)
from submission_service import SubmissionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/assessments/{assessment_id}/submission")
async def start_submission(
    assessment_id: str,
    request: StartSubmissionRequest,
    service: SubmissionService = Depends(get_submission_service)
):
    """Resume the candidate's in-progress attempt or create a new one."""
    try:
        submission = await service.get_or_create_submission(assessment_id, request.user_id)
        return submission.to_response()
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to start submission", e, error_code="submission_start_failed")


@router.post("/submissions/{submission_id}/sections/{section_id}/enter")
async def enter_section(
    submission_id: str,
    section_id: str,
    service: SubmissionService = Depends(get_submission_service)
):
    """Switch the running section clock to ``section_id``."""
    try:
        submission = await service.enter_section(submission_id, section_id)
        return {
            "currentSectionId": submission.current_section_id,
            "sectionStartedAt": submission.section_started_at,
            "sectionUsage": submission.usage_snapshot(),
        }
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to enter section", e, error_code="enter_section_failed")


@router.get("/submissions/{submission_id}/timer")
async def get_timer(
    submission_id: str,
    service: SubmissionService = Depends(get_submission_service)
):
    """Current global and per-section timers. Polled by the client; never blocks writers."""
    try:
        snapshot = await service.get_timer(submission_id)
        return snapshot.model_dump(mode="json", by_alias=True)
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to sync timer", e, error_code="timer_sync_failed")


@router.post("/submissions/{submission_id}/answers")
async def save_answer(
    submission_id: str,
    request: SaveAnswerRequest,
    service: SubmissionService = Depends(get_submission_service)
):
    try:
        answer = await service.save_answer(submission_id, request)
        return answer.to_response()
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to save answer", e, error_code="answer_save_failed")


@router.get("/submissions/{submission_id}/answers")
async def list_answers(
    submission_id: str,
    service: SubmissionService = Depends(get_submission_service)
):
    """Saved answers, for resuming an attempt."""
    try:
        answers = await service.get_answers(submission_id)
        return {"answers": [a.to_response() for a in answers]}
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to load answers", e, error_code="answers_load_failed")


@router.post("/submissions/{submission_id}/coding-results/{problem_id}")
async def save_coding_result(
    submission_id: str,
    problem_id: str,
    request: CodingResultRequest,
    service: SubmissionService = Depends(get_submission_service)
):
    """Store the judge's result for an explicitly submitted coding answer."""
    try:
        answer = await service.save_coding_result(submission_id, problem_id, request)
        return answer.to_response()
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to save coding result", e, error_code="coding_result_failed")


@router.post("/submissions/{submission_id}/submit")
async def submit_assessment(
    submission_id: str,
    request: SubmitRequest,
    service: SubmissionService = Depends(get_submission_service)
):
    """Final submit. Handles manual submissions and client-side timer expiry (isAutoSubmit)."""
    logger.info(
        f"Submit called for submission_id={submission_id}, auto_submitted={request.is_auto_submit}, "
        f"buffered={len(request.answers)}"
    )
    try:
        submission = await service.submit(submission_id, request.is_auto_submit, request.answers)
        return submission.to_response()
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to submit assessment. Please retry.", e, error_code="submission_failed")
